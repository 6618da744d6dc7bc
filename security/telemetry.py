"""
Per-token usage counters and suspicious-activity heuristics for the admin API.

Everything here lives in the cache with short TTLs and is advisory: anomalies are
logged, requests are never blocked from this module.
"""
from flask import current_app, request

from utils.audit import client_ip, client_user_agent, log_event
from utils.clock import utcnow


def _cache():
    return current_app.extensions["cache"]


def usage_key(token_id: int, now) -> str:
    return f"token_usage:{token_id}:{now.strftime('%Y-%m-%d-%H')}"


def record_token_usage(token_id: int) -> int:
    """Bump the per-hour counter and append to the rolling request pattern log."""
    cache = _cache()
    now = utcnow()
    hits = cache.increment(usage_key(token_id, now), 1, 3600)

    limit = current_app.config.get("REQUEST_PATTERN_LIMIT", 50)
    patterns = cache.get(f"request_patterns:{token_id}", []) or []
    patterns.append({
        "endpoint": request.path,
        "method": request.method,
        "timestamp": now.isoformat(),
        "ip": client_ip(),
    })
    cache.put(f"request_patterns:{token_id}", patterns[-limit:], 3600)
    return hits


def request_patterns(token_id: int) -> list:
    return _cache().get(f"request_patterns:{token_id}", []) or []


def detect_suspicious_activity(user) -> list[str]:
    """
    Returns the reasons this request looks unusual for `user` (empty list = normal).
    Remembers the current IP and user agent for the next comparison.
    """
    cache = _cache()
    fingerprint_ttl = current_app.config.get("ACTIVITY_FINGERPRINT_TTL_SECONDS", 86400)
    reasons = []

    ip = client_ip()
    ip_key = f"user_last_ip:{user.id}"
    last_ip = cache.get(ip_key)
    if last_ip and last_ip != ip:
        reasons.append("ip_changed")
    if last_ip != ip:
        cache.put(ip_key, ip, fingerprint_ttl)

    agent = client_user_agent()
    agent_key = f"user_last_agent:{user.id}"
    last_agent = cache.get(agent_key)
    if last_agent and last_agent != agent:
        reasons.append("user_agent_changed")
    if last_agent != agent:
        cache.put(agent_key, agent, fingerprint_ttl)

    threshold = current_app.config.get("RAPID_REQUEST_THRESHOLD", 100)
    count = cache.increment(f"rapid_requests:{user.id}", 1, 60)
    if count > threshold:
        reasons.append("rapid_requests")
    return reasons


def log_suspicious_activity(user, reasons: list[str]) -> None:
    log_event(
        "SUSPICIOUS_ACTIVITY",
        user_id=user.id,
        level="info",
        metadata={"email": user.email, "reasons": reasons, "endpoint": request.url},
    )


def usage_this_hour(token_id: int) -> int:
    return int(_cache().get(usage_key(token_id, utcnow()), 0) or 0)
