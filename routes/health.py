from flask import Blueprint, jsonify

from utils.clock import utcnow

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(status="ok", service="storefront-auth", timestamp=utcnow().isoformat()), 200
