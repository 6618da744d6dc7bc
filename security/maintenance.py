"""
Batch jobs over access_tokens, meant to run from cron via `flask tokens-maintenance`.

Every job returns the number of tokens it removed (or would remove with
dry_run=True, in which case nothing is written).
"""
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from models import db
from models.access_token import AccessToken
from security.tokens import get_token_store
from utils.clock import utcnow


@dataclass
class SweepReport:
    dry_run: bool
    expired: int = 0
    old: int = 0
    over_limit: int = 0
    per_user: dict = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.expired + self.old + self.over_limit


def prune_expired(dry_run: bool = False) -> int:
    q = AccessToken.query.filter(AccessToken.expires_at.is_not(None), AccessToken.expires_at < utcnow())
    count = q.count()
    if count and not dry_run:
        q.delete(synchronize_session=False)
        db.session.commit()
    current_app.logger.info("prune_expired: %s tokens%s", count, " (dry run)" if dry_run else "")
    return count


def prune_older_than(days: int, dry_run: bool = False) -> int:
    if days < 0:
        raise ValueError("days must be >= 0")
    cutoff = utcnow() - timedelta(days=days)
    q = AccessToken.query.filter(AccessToken.created_at < cutoff)
    count = q.count()
    if count and not dry_run:
        q.delete(synchronize_session=False)
        db.session.commit()
    current_app.logger.info("prune_older_than(%s): %s tokens%s", days, count, " (dry run)" if dry_run else "")
    return count


def enforce_token_limits(dry_run: bool = False, report: SweepReport | None = None) -> int:
    store = get_token_store()
    max_tokens = store.max_tokens_per_user

    over = (
        db.session.query(AccessToken.user_id, func.count(AccessToken.id))
        .group_by(AccessToken.user_id)
        .having(func.count(AccessToken.id) > max_tokens)
        .all()
    )

    total = 0
    for user_id, _count in over:
        ids = store.excess_token_ids(user_id, max_tokens)
        if not ids:
            continue
        if not dry_run:
            AccessToken.query.filter(AccessToken.id.in_(ids)).delete(synchronize_session=False)
            db.session.commit()
        if report is not None:
            report.per_user[user_id] = len(ids)
        total += len(ids)

    current_app.logger.info("enforce_token_limits: %s tokens%s", total, " (dry run)" if dry_run else "")
    return total


def run_maintenance(*, expired: bool = False, old_days: int | None = None,
                    limit_tokens: bool = False, dry_run: bool = False) -> SweepReport:
    report = SweepReport(dry_run=dry_run)
    if expired:
        report.expired = prune_expired(dry_run)
    if old_days is not None:
        report.old = prune_older_than(old_days, dry_run)
    if limit_tokens:
        report.over_limit = enforce_token_limits(dry_run, report)
    return report
