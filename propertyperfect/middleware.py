"""
Middleware for PropertyPerfect routes.

Provides decorators for caller resolution in routes.

Usage:
    from propertyperfect.middleware import require_bearer, require_admin

    @bp.route("/api/jobs")
    @require_bearer
    def list_jobs():
        # g.user, g.user_id and g.is_test_user are available
        return jsonify({"userId": g.user_id})

    @bp.route("/api/admin/stats")
    @require_admin
    def stats():
        # Returns 401/403 if the caller is not an admin
        return jsonify({"ok": True})

Note: service imports are lazy (inside functions) to avoid circular imports.
"""

from functools import wraps
from flask import request, g, jsonify, make_response


def _get_identity_service():
    """Lazy import of IdentityService to avoid circular imports."""
    from propertyperfect.services.identity_service import IdentityService
    return IdentityService


def no_cache(f):
    """
    Decorator that adds Cache-Control headers to prevent caching.

    Use for per-user endpoints like /api/user, /api/jobs, /api/purchases.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        result = f(*args, **kwargs)

        if hasattr(result, "headers"):
            response = result
        elif isinstance(result, tuple):
            response = make_response(result[0], result[1] if len(result) > 1 else 200)
            if len(result) > 2:
                for key, value in result[2].items():
                    response.headers[key] = value
        else:
            response = make_response(result)

        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"

        return response

    return decorated


def require_bearer(f=None, *, allow_deleted: bool = False):
    """
    Decorator that requires a bearer credential (Supabase access token or,
    when enabled, the test token).

    Raises Unauthenticated (401) through the app error handlers.

    Sets on g:
        - g.user: dict with id, email, credit_balance, is_test
        - g.user_id: str
        - g.is_test_user: bool

    Usable bare (@require_bearer) or with options
    (@require_bearer(allow_deleted=True)).
    """
    def wrap(func):
        @wraps(func)
        def decorated(*args, **kwargs):
            IdentityService = _get_identity_service()
            user = IdentityService.authenticate(request, allow_deleted=allow_deleted)
            g.user = user
            g.user_id = str(user["id"])
            g.is_test_user = bool(user.get("is_test"))
            return func(*args, **kwargs)
        return decorated

    if f is not None:
        return wrap(f)
    return wrap


def require_admin(f):
    """
    Decorator that requires admin authentication.
    Supports two authentication methods:
      1. Token-based: X-Admin-Token header (for scripts/automation)
      2. Email-based: bearer token of a user in ADMIN_EMAILS (for the dashboard)

    Returns 503 if admin auth is not configured, 401 if not authenticated,
    403 if not an admin.

    Sets on g:
        - g.admin_auth_method: 'token' or 'email'
        - g.admin_email: The admin email (if email-based auth)
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        from propertyperfect.config import config
        IdentityService = _get_identity_service()

        if not config.ADMIN_AUTH_CONFIGURED:
            return jsonify({
                "error": {
                    "code": "ADMIN_NOT_CONFIGURED",
                    "message": "Admin authentication is not configured"
                }
            }), 503

        # Method 1: X-Admin-Token header
        admin_token = request.headers.get("X-Admin-Token")
        if admin_token:
            if config.ADMIN_TOKEN and admin_token == config.ADMIN_TOKEN:
                g.admin_auth_method = "token"
                g.admin_email = None
                return f(*args, **kwargs)
            print(f"[ADMIN] Rejected admin token from {request.remote_addr}")
            return jsonify({
                "error": {
                    "code": "INVALID_ADMIN_TOKEN",
                    "message": "Invalid admin token"
                }
            }), 403

        # Method 2: bearer user with an admin email
        token = IdentityService.extract_bearer_token(request)
        identity = IdentityService.resolve_bearer_token(token) if token else None
        if not identity:
            return jsonify({
                "error": {
                    "code": "UNAUTHENTICATED",
                    "message": "Authentication required"
                }
            }), 401

        email = identity.get("email")
        if not config.is_admin_email(email):
            return jsonify({
                "error": {
                    "code": "NOT_ADMIN",
                    "message": "You do not have admin privileges"
                }
            }), 403

        g.admin_auth_method = "email"
        g.admin_email = email
        return f(*args, **kwargs)

    return decorated
