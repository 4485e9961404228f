"""
/api/admin routes - Admin dashboard endpoints.

Handles:
- GET  /api/admin/stats            - Usage, cost and revenue statistics
- GET  /api/admin/emergency-toggle - Current kill-switch state
- POST /api/admin/emergency-toggle - Flip the kill-switch

All routes require admin authentication (X-Admin-Token or an ADMIN_EMAILS user).
"""

from flask import Blueprint, request, jsonify, g

from propertyperfect.middleware import require_admin, no_cache
from propertyperfect.services.admin_service import AdminService
from propertyperfect.utils.error_handlers import InvalidInput

bp = Blueprint("admin", __name__)


@bp.route("/stats", methods=["GET"])
@require_admin
@no_cache
def stats():
    return jsonify(AdminService.get_stats())


@bp.route("/emergency-toggle", methods=["GET"])
@require_admin
@no_cache
def get_emergency_toggle():
    return jsonify(AdminService.get_emergency())


@bp.route("/emergency-toggle", methods=["POST"])
@require_admin
def set_emergency_toggle():
    """
    Request body:
    {
        "disable": true
    }
    """
    data = request.get_json(silent=True)
    disable = data.get("disable") if isinstance(data, dict) else None
    if not isinstance(disable, bool):
        raise InvalidInput("disable must be a boolean")

    return jsonify(AdminService.set_emergency(disable, admin_email=g.admin_email))
