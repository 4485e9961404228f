"""
/api/user routes - Profile CRUD for the authenticated caller.

Handles:
- GET    /api/user - Profile + enhancement stats
- PUT    /api/user - Update firstName / lastName / preferences
- POST   /api/user - Create profile (201), or return the existing one (200)
- DELETE /api/user - Soft delete
"""

from flask import Blueprint, request, jsonify, g

from propertyperfect.db import DatabaseError
from propertyperfect.middleware import require_bearer, no_cache
from propertyperfect.services.user_service import UserService, DEFAULT_PREFERENCES
from propertyperfect.utils.error_handlers import InvalidInput, NotFound, PersistenceError

bp = Blueprint("user", __name__)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def _test_profile() -> dict:
    return {
        "id": g.user_id,
        "email": g.user.get("email"),
        "firstName": "Test",
        "lastName": "User",
        "creditBalance": None,
        "plan": "free",
        "preferences": dict(DEFAULT_PREFERENCES),
        "joinedAt": None,
        "updatedAt": None,
        "stats": {"totalEnhancements": 0, "thisMonth": 0, "successRate": 0.0},
        "testMode": True,
    }


@bp.route("/user", methods=["GET"])
@require_bearer
@no_cache
def get_user():
    if g.is_test_user:
        return jsonify({"user": _test_profile()})

    try:
        user = UserService.get(g.user_id)
        stats = UserService.get_stats(g.user_id) if user else None
    except DatabaseError as e:
        raise PersistenceError("Failed to fetch user data") from e
    if not user:
        raise NotFound("User not found")
    return jsonify({"user": UserService.to_public(user, stats)})


@bp.route("/user", methods=["PUT"])
@require_bearer
@no_cache
def update_user():
    data = _json_body()
    updates = data.get("updates")
    if g.is_test_user:
        return jsonify({"user": _test_profile()})

    user = UserService.update_profile(g.user_id, updates)
    if not user:
        raise NotFound("User not found")
    print(f"[USER] Updated profile user={g.user_id} fields={sorted(updates)}")
    return jsonify({"user": UserService.to_public(user)})


@bp.route("/user", methods=["POST"])
@require_bearer(allow_deleted=True)
@no_cache
def create_user():
    data = _json_body()
    email = data.get("email")
    first_name = data.get("firstName")
    last_name = data.get("lastName")
    for name, value in (("email", email), ("firstName", first_name), ("lastName", last_name)):
        if value is not None and not isinstance(value, str):
            raise InvalidInput(f"{name} must be a string")

    if g.is_test_user:
        return jsonify({"user": _test_profile()})

    user, created = UserService.create_profile(
        g.user_id,
        (email or "").strip(),
        (first_name or "").strip(),
        (last_name or "").strip(),
    )
    return jsonify({"user": UserService.to_public(user)}), 201 if created else 200


@bp.route("/user", methods=["DELETE"])
@require_bearer
@no_cache
def delete_user():
    if g.is_test_user:
        return jsonify({"success": True})
    if not UserService.soft_delete(g.user_id):
        raise NotFound("User not found")
    return jsonify({"success": True})
