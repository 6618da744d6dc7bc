import logging

import click
from flask import Flask, jsonify, request, g
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from routes import health_bp, auth_bp, api_auth_bp, admin_bp

from models import db
from models.user import User, ROLES, ROLE_ADMIN
from utils.auth_context import load_current_user
from utils.clock import SystemClock
from security.cache import MemoryCache, RedisCache
from security.credentials import WebSession
from security.csrf import require_csrf
from security.errors import AuthError, ErrorCode
from security.rate_limit import RateLimiter
from security.tokens import TokenStore


CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/api/auth/login",
    "/health",
}


def create_app(config_object=Config, *, clock=None, cache=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Shared services; tests inject a frozen clock and an in-memory cache
    clock = clock or SystemClock()
    if cache is None:
        redis_url = app.config.get("REDIS_URL")
        cache = RedisCache(redis_url) if redis_url else MemoryCache(clock)
    app.extensions["clock"] = clock
    app.extensions["cache"] = cache
    app.extensions["rate_limiter"] = RateLimiter(cache, clock)
    app.extensions["token_store"] = TokenStore(
        clock,
        prefix=app.config.get("TOKEN_PREFIX", ""),
        max_tokens_per_user=app.config.get("MAX_TOKENS_PER_USER", 10),
        abilities=app.config.get("TOKEN_ABILITIES"),
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_auth_bp)
    app.register_blueprint(admin_bp)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
            return None
        if request.path in CSRF_EXEMPT_PATHS:
            return None
        # Only cookie sessions need the double submit token
        if isinstance(getattr(g, "credential", None), WebSession):
            require_csrf()
        return None

    @app.errorhandler(AuthError)
    def _auth_error(err: AuthError):
        resp = jsonify(err.to_dict())
        if err.retry_after is not None:
            resp.headers["Retry-After"] = str(err.retry_after)
        return resp, err.status_code

    @app.errorhandler(SQLAlchemyError)
    def _db_error(err):
        db.session.rollback()
        app.logger.exception("database error on %s %s", request.method, request.path)
        return jsonify(AuthError(ErrorCode.INTERNAL_ERROR).to_dict()), 500

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    from security.lockout import reset_account_lock
    from security.maintenance import run_maintenance
    from security.password import hash_password

    def _find_user(email):
        return User.query.filter_by(email=email.strip().lower()).first()

    @app.cli.command("create-user")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--role", type=click.Choice(ROLES), default="user", show_default=True)
    @click.option("--name", default=None)
    def create_user(email, password, role, name):
        """Create a user account."""
        if _find_user(email):
            raise click.ClickException("User already exists")
        user = User(
            email=email.strip().lower(),
            name=name,
            role=role,
            password_hash=hash_password(password),
            created_at=app.extensions["clock"].now(),
        )
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created {user.email} ({user.role})")

    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to admin by email (bootstrap)."""
        user = _find_user(email)
        if not user:
            raise click.ClickException("User not found")
        user.role = ROLE_ADMIN
        db.session.commit()
        click.echo(f"{user.email} promoted to admin")

    @app.cli.command("unlock-user")
    @click.argument("email")
    def unlock_user(email):
        """Clear failed attempts and any account lock."""
        user = _find_user(email)
        if not user:
            raise click.ClickException("User not found")
        reset_account_lock(user)
        click.echo(f"{user.email} unlocked")

    @app.cli.command("tokens-maintenance")
    @click.option("--prune-expired", is_flag=True, help="Delete tokens past expires_at.")
    @click.option("--prune-old", is_flag=True, help="Delete tokens created more than --days ago.")
    @click.option("--days", type=click.IntRange(min=0), default=30, show_default=True)
    @click.option("--limit-tokens", is_flag=True, help="Trim users above MAX_TOKENS_PER_USER.")
    @click.option("--dry-run", is_flag=True, help="Report counts without deleting.")
    def tokens_maintenance(prune_expired, prune_old, days, limit_tokens, dry_run):
        """Clean up access tokens."""
        if not (prune_expired or prune_old or limit_tokens):
            prune_expired = True

        report = run_maintenance(
            expired=prune_expired,
            old_days=days if prune_old else None,
            limit_tokens=limit_tokens,
            dry_run=dry_run,
        )
        verb = "Would delete" if dry_run else "Deleted"
        if prune_expired:
            click.echo(f"{verb} {report.expired} expired tokens")
        if prune_old:
            click.echo(f"{verb} {report.old} tokens older than {days} days")
        if limit_tokens:
            for user_id, count in sorted(report.per_user.items()):
                click.echo(f"  user {user_id}: {count}")
            click.echo(f"{verb} {report.over_limit} tokens over the per-user limit")
        click.echo(f"Total: {report.total}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
