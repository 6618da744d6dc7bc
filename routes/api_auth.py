"""Bearer-token API for admin clients: login, refresh and device management."""
from flask import Blueprint, jsonify, g

from routes.auth import read_login_payload
from security.authentication import (
    attempt_login,
    list_devices,
    logout as end_credential,
    refresh,
    revoke_all_devices,
    revoke_device,
    revoke_other_devices,
)
from utils.audit import client_ip
from utils.auth_context import login_required

api_auth_bp = Blueprint("api_auth", __name__, url_prefix="/api/auth")


@api_auth_bp.post("/login")
def login():
    email, password, data = read_login_payload()
    device_name = (data.get("device_name") or "").strip() or None
    remember = bool(data.get("remember_me"))

    result = attempt_login(
        email,
        password,
        ip=client_ip(),
        device_name=device_name,
        remember=remember,
        require_admin=True,
    )
    return jsonify(success=True, message="Login successful", data=result.to_dict()), 200


@api_auth_bp.post("/logout")
@login_required
def logout():
    end_credential(g.credential, g.user)
    return jsonify(success=True, message="Logged out successfully"), 200


@api_auth_bp.get("/me")
@login_required
def me():
    return jsonify(success=True, data=g.user.to_view()), 200


@api_auth_bp.post("/refresh")
@login_required
def refresh_token():
    data = refresh(g.credential, g.user)
    return jsonify(success=True, message="Token refreshed", data=data), 200


@api_auth_bp.get("/devices")
@login_required
def devices():
    return jsonify(success=True, data=list_devices(g.credential, g.user)), 200


@api_auth_bp.delete("/devices/<int:token_id>")
@login_required
def delete_device(token_id: int):
    data = revoke_device(g.credential, g.user, token_id)
    return jsonify(success=True, message="Device revoked", data=data), 200


@api_auth_bp.post("/revoke-others")
@login_required
def revoke_others():
    data = revoke_other_devices(g.credential, g.user)
    return jsonify(success=True, message="Other devices revoked", data=data), 200


@api_auth_bp.post("/revoke-all")
@login_required
def revoke_all():
    data = revoke_all_devices(g.credential, g.user)
    return jsonify(success=True, message="All tokens revoked successfully", data=data), 200
