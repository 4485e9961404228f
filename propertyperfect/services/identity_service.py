"""
Identity Service - Resolves bearer tokens to users.

Tokens are Supabase Auth access tokens. They are verified by asking Supabase
(GET {SUPABASE_URL}/auth/v1/user); the returned user id is the primary key
of our users table. The row is created lazily on first sight.

A reserved test token (TEST_AUTH_TOKEN, default "test-token") resolves to a
synthetic user when ALLOW_TEST_TOKEN is on. The synthetic user never
touches the database.

Usage:
    from propertyperfect.services.identity_service import IdentityService

    user = IdentityService.authenticate(request)   # raises Unauthenticated
    if user["is_test"]:
        ...
"""

from typing import Optional, Dict, Any

import requests

from propertyperfect.config import config
from propertyperfect.db import DatabaseError
from propertyperfect.services.user_service import UserService
from propertyperfect.utils.error_handlers import Unauthenticated, ServiceUnavailable, PersistenceError

TEST_USER_ID = "test-user"
TEST_USER_EMAIL = "test@propertyperfect.dev"


class IdentityService:
    """Service for resolving the caller of a request."""

    @staticmethod
    def extract_bearer_token(request) -> Optional[str]:
        """Return the token from 'Authorization: Bearer <token>', or None if absent/malformed."""
        header = request.headers.get("Authorization", "")
        if not header:
            return None
        parts = header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return None
        token = parts[1].strip()
        return token or None

    @staticmethod
    def is_test_token(token: Optional[str]) -> bool:
        return bool(
            token
            and config.ALLOW_TEST_TOKEN
            and config.TEST_AUTH_TOKEN
            and token == config.TEST_AUTH_TOKEN
        )

    @staticmethod
    def test_user() -> Dict[str, Any]:
        return {
            "id": TEST_USER_ID,
            "email": TEST_USER_EMAIL,
            "credit_balance": None,
            "is_test": True,
        }

    @staticmethod
    def resolve_bearer_token(token: str) -> Optional[Dict[str, Any]]:
        """
        Ask Supabase Auth who owns this access token.

        Returns:
            {"id", "email"} or None if the token is not valid

        Raises:
            ServiceUnavailable: If Supabase cannot be reached
        """
        if not config.SUPABASE_CONFIGURED:
            print("[AUTH] SUPABASE_URL / key not configured - cannot verify bearer token")
            return None

        apikey = config.SUPABASE_ANON_KEY or config.SUPABASE_SERVICE_ROLE_KEY
        try:
            resp = requests.get(
                f"{config.SUPABASE_URL}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": apikey,
                },
                timeout=config.AUTH_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            print(f"[AUTH] Supabase request failed: {type(e).__name__}: {e}")
            raise ServiceUnavailable("Authentication service unavailable") from e

        if resp.status_code in (401, 403):
            return None
        if resp.status_code >= 500:
            print(f"[AUTH] Supabase error {resp.status_code}: {resp.text[:200]}")
            raise ServiceUnavailable("Authentication service unavailable")
        if not resp.ok:
            print(f"[AUTH] Token rejected by Supabase: {resp.status_code}")
            return None

        try:
            data = resp.json()
        except ValueError:
            print("[AUTH] Supabase returned non-JSON user payload")
            return None

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            return None
        return {"id": str(user_id), "email": data.get("email")}

    @staticmethod
    def authenticate(request, allow_deleted: bool = False) -> Dict[str, Any]:
        """
        Resolve the request's bearer credential to a user.
        Soft-deleted accounts are refused unless allow_deleted is set.

        Returns:
            dict with id, email, credit_balance, is_test

        Raises:
            Unauthenticated: Missing, malformed or unknown credential
            ServiceUnavailable: Supabase unreachable
            PersistenceError: User row could not be loaded/created
        """
        token = IdentityService.extract_bearer_token(request)
        if not token:
            raise Unauthenticated("Missing or malformed bearer token")

        if IdentityService.is_test_token(token):
            return IdentityService.test_user()

        identity = IdentityService.resolve_bearer_token(token)
        if not identity:
            raise Unauthenticated("Invalid or expired token")

        try:
            user, created = UserService.ensure_user(identity["id"], identity.get("email"))
        except DatabaseError as e:
            print(f"[AUTH] Could not load user {identity['id']}: {e}")
            raise PersistenceError("Failed to load user account") from e

        if user.get("deleted_at") and not allow_deleted:
            raise Unauthenticated("Account has been deleted")

        return {
            "id": str(user["id"]),
            "email": user.get("email") or identity.get("email"),
            "credit_balance": int(user.get("credit_balance") or 0),
            "is_test": False,
            "created": created,
            "deleted": bool(user.get("deleted_at")),
        }
