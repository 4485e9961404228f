"""
User Service - User rows and profile CRUD.

Users are keyed by their Supabase Auth id. A row is created lazily the first
time an authenticated request arrives, seeded with the welcome bonus
(FREE_CREDITS_ON_SIGNUP) through a signup_grant ledger entry.
"""

import json
from typing import Optional, Dict, Any, Tuple

from propertyperfect.config import config
from propertyperfect.db import transaction, fetch_one, query_one, execute_returning, Tables, DatabaseError
from propertyperfect.services.wallet_service import WalletService, LedgerEntryType
from propertyperfect.services.job_service import JobService, JobStatus, month_start
from propertyperfect.utils.error_handlers import InvalidInput, PersistenceError
from propertyperfect.utils.helpers import iso


DEFAULT_PREFERENCES = {
    "emailNotifications": True,
    "processingNotifications": True,
    "marketingEmails": False,
}

# Request field -> column
PROFILE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "preferences": "preferences",
}

_USER_COLUMNS = """
    id, email, first_name, last_name, credit_balance, plan, preferences,
    created_at, updated_at, deleted_at
"""


class UserService:
    """Service for user rows."""

    # ─────────────────────────────────────────────────────────────
    # Read
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get(user_id: str, include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        if include_deleted:
            return query_one(f"SELECT {_USER_COLUMNS} FROM {Tables.USERS} WHERE id = %s", (user_id,))
        return query_one(
            f"SELECT {_USER_COLUMNS} FROM {Tables.USERS} WHERE id = %s AND deleted_at IS NULL",
            (user_id,),
        )

    # ─────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def ensure_user(
        user_id: str,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        cur=None,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Get the user row, inserting it (with the welcome bonus) if absent.

        Returns:
            (user, created)
        """
        if cur is None:
            with transaction() as own_cur:
                return UserService.ensure_user(user_id, email, first_name, last_name, cur=own_cur)

        cur.execute(
            f"""
            INSERT INTO {Tables.USERS}
                (id, email, first_name, last_name, credit_balance, plan, preferences, created_at, updated_at)
            VALUES (%s, %s, %s, %s, 0, 'free', %s::jsonb, NOW(), NOW())
            ON CONFLICT (id) DO NOTHING
            RETURNING {_USER_COLUMNS}
            """,
            (user_id, email, first_name, last_name, json.dumps(DEFAULT_PREFERENCES)),
        )
        user = fetch_one(cur)

        if user is None:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM {Tables.USERS} WHERE id = %s", (user_id,))
            return fetch_one(cur), False

        bonus = config.FREE_CREDITS_ON_SIGNUP
        if bonus > 0:
            user["credit_balance"] = WalletService.credit(
                user_id, bonus, LedgerEntryType.SIGNUP_GRANT, ref_type="signup", ref_id=user_id, cur=cur
            )
        print(f"[USER] Created user={user_id} email={email} bonus={bonus}")
        return user, True

    @staticmethod
    def create_profile(user_id: str, email: str, first_name: str, last_name: str) -> Tuple[Dict[str, Any], bool]:
        """
        Explicit profile creation. A row created lazily at sign-in (no name yet)
        counts as created. Returns the existing row (created=False) if the
        profile is already filled in; a soft-deleted user is restored.
        """
        if not email or not first_name or not last_name:
            raise InvalidInput("Missing required fields: email, firstName, lastName")

        try:
            user, created = UserService.ensure_user(user_id, email, first_name, last_name)
            if not created and (user.get("deleted_at") or not user.get("first_name")):
                created = not user.get("first_name") and not user.get("deleted_at")
                user = UserService._restore_profile(user_id, email, first_name, last_name)
        except DatabaseError as e:
            raise PersistenceError("Failed to create user account") from e
        return user, created

    @staticmethod
    def _restore_profile(user_id: str, email: str, first_name: str, last_name: str) -> Optional[Dict[str, Any]]:
        """Fill blank names on a lazily-created row and clear a soft delete."""
        return execute_returning(
            f"""
            UPDATE {Tables.USERS}
            SET email = COALESCE(email, %s),
                first_name = COALESCE(first_name, %s),
                last_name = COALESCE(last_name, %s),
                deleted_at = NULL,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {_USER_COLUMNS}
            """,
            (email, first_name, last_name, user_id),
        )

    # ─────────────────────────────────────────────────────────────
    # Update / Delete
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def update_profile(user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Update firstName / lastName / preferences.
        Preferences are merged into the stored object.

        Raises:
            InvalidInput: On unknown fields or wrong types
        """
        if not isinstance(updates, dict) or not updates:
            raise InvalidInput("updates must be a non-empty object")

        unknown = sorted(set(updates) - set(PROFILE_FIELDS))
        if unknown:
            raise InvalidInput(f"Fields cannot be updated: {', '.join(unknown)}")

        changes = {}
        for key, value in updates.items():
            column = PROFILE_FIELDS[key]
            if column == "preferences":
                if not isinstance(value, dict):
                    raise InvalidInput("preferences must be an object")
                changes[column] = value
            else:
                if value is not None and not isinstance(value, str):
                    raise InvalidInput(f"{key} must be a string")
                changes[column] = value.strip() if isinstance(value, str) else None

        try:
            return UserService._write_profile(user_id, changes)
        except DatabaseError as e:
            raise PersistenceError("Failed to update user data") from e

    @staticmethod
    def _write_profile(user_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply validated column changes; preferences are merged, not replaced."""
        assignments, params = [], []
        for column, value in changes.items():
            if column == "preferences":
                assignments.append("preferences = COALESCE(preferences, '{}'::jsonb) || %s::jsonb")
                params.append(json.dumps(value))
            else:
                assignments.append(f"{column} = %s")
                params.append(value)

        return execute_returning(
            f"""
            UPDATE {Tables.USERS}
            SET {", ".join(assignments)}, updated_at = NOW()
            WHERE id = %s AND deleted_at IS NULL
            RETURNING {_USER_COLUMNS}
            """,
            tuple(params + [user_id]),
        )

    @staticmethod
    def soft_delete(user_id: str) -> bool:
        try:
            row = execute_returning(
                f"""
                UPDATE {Tables.USERS}
                SET deleted_at = NOW(), updated_at = NOW()
                WHERE id = %s AND deleted_at IS NULL
                RETURNING id
                """,
                (user_id,),
            )
        except DatabaseError as e:
            raise PersistenceError("Failed to delete user account") from e
        if row:
            print(f"[USER] Soft-deleted user={user_id}")
        return row is not None

    # ─────────────────────────────────────────────────────────────
    # Presentation
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get_stats(user_id: str) -> Dict[str, Any]:
        """Enhancement stats for the profile page."""
        counts = JobService.count_by_status(user_id)
        total = sum(counts.values())
        finished = counts.get(JobStatus.COMPLETED, 0) + counts.get(JobStatus.FAILED, 0)
        success_rate = round(100.0 * counts.get(JobStatus.COMPLETED, 0) / finished, 1) if finished else 0.0
        return {
            "totalEnhancements": total,
            "thisMonth": JobService.count_by_user(user_id, since=month_start()),
            "successRate": success_rate,
        }

    @staticmethod
    def to_public(user: Dict[str, Any], stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        preferences = user.get("preferences") or {}
        if isinstance(preferences, str):
            preferences = json.loads(preferences)
        body = {
            "id": str(user["id"]),
            "email": user.get("email"),
            "firstName": user.get("first_name"),
            "lastName": user.get("last_name"),
            "creditBalance": int(user.get("credit_balance") or 0),
            "plan": user.get("plan") or "free",
            "preferences": {**DEFAULT_PREFERENCES, **preferences},
            "joinedAt": iso(user.get("created_at")),
            "updatedAt": iso(user.get("updated_at")),
        }
        if stats is not None:
            body["stats"] = stats
        return body
