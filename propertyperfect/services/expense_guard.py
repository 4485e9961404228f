"""
Expense Guardrails for Enhancement Jobs.

Provides the two pre-flight gates that sit in front of the paid model call:
1. Kill-switch (global flag that disables all enhancement processing)
2. Daily quotas (per user and per deployment, UTC day)

The kill-switch is process-wide state. It is seeded from
ENHANCEMENTS_DISABLED, overridden by the persisted app_settings row when a
database is configured, and re-read from app_settings at most every
KILL_SWITCH_REFRESH_SECONDS so all workers converge after an admin toggle.

Usage:
    from propertyperfect.services.expense_guard import ExpenseGuard

    ExpenseGuard.check_enabled()          # raises ServiceDisabled
    ExpenseGuard.check_quotas(user_id)    # raises QuotaExceeded
"""

from __future__ import annotations

import json
import time
from typing import Optional, Dict, Any

from propertyperfect.config import config
from propertyperfect.db import USE_DB, query_one, execute, Tables, DatabaseError
from propertyperfect.services.job_service import JobService, today_range
from propertyperfect.utils.error_handlers import ServiceDisabled, QuotaExceeded, PersistenceError
from propertyperfect.utils.helpers import log_db_continue

KILL_SWITCH_KEY = "enhancements_disabled"

# In-memory kill-switch state (per process)
_kill_switch: Dict[str, Any] = {
    "disabled": config.ENHANCEMENTS_DISABLED,
    "refreshed_at": 0.0,
    "updated_by": None,
}


def _load_persisted() -> Optional[bool]:
    """Read the persisted flag; None when absent or unreadable."""
    if not USE_DB:
        return None
    try:
        row = query_one(
            f"SELECT value FROM {Tables.APP_SETTINGS} WHERE key = %s",
            (KILL_SWITCH_KEY,),
        )
    except DatabaseError as e:
        log_db_continue("kill_switch_load", e)
        return None
    if not row:
        return None
    value = row.get("value")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            print(f"[EXPENSE_GUARD] Ignoring undecodable {KILL_SWITCH_KEY} setting: {e}")
            return None
    if isinstance(value, dict):
        value = value.get("disabled")
    return bool(value)


def _persist(disabled: bool, updated_by: Optional[str]) -> None:
    if not USE_DB:
        return
    try:
        execute(
            f"""
            INSERT INTO {Tables.APP_SETTINGS} (key, value, updated_at)
            VALUES (%s, %s::jsonb, NOW())
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
            """,
            (KILL_SWITCH_KEY, json.dumps({"disabled": disabled, "updated_by": updated_by})),
        )
    except DatabaseError as e:
        print(f"[EXPENSE_GUARD] ERROR persisting kill-switch: {e}")
        raise PersistenceError("Failed to persist kill-switch state") from e


class ExpenseGuard:
    """
    Pre-flight checks for enhancement jobs.
    Call before any credit is debited.
    """

    # ─────────────────────────────────────────────────────────────
    # Kill-switch
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def load() -> bool:
        """(Re)initialize the kill-switch from env, then from app_settings. Called at startup."""
        _kill_switch["disabled"] = config.ENHANCEMENTS_DISABLED
        _kill_switch["updated_by"] = None
        persisted = _load_persisted()
        if persisted is not None:
            _kill_switch["disabled"] = persisted
        _kill_switch["refreshed_at"] = time.time()
        print(f"[EXPENSE_GUARD] Kill-switch loaded: disabled={_kill_switch['disabled']}")
        return _kill_switch["disabled"]

    @staticmethod
    def is_disabled() -> bool:
        """Current kill-switch state, refreshed from app_settings when stale."""
        if USE_DB and time.time() - _kill_switch["refreshed_at"] >= config.KILL_SWITCH_REFRESH_SECONDS:
            persisted = _load_persisted()
            if persisted is not None and persisted != _kill_switch["disabled"]:
                print(f"[EXPENSE_GUARD] Kill-switch changed by another worker: disabled={persisted}")
                _kill_switch["disabled"] = persisted
            _kill_switch["refreshed_at"] = time.time()
        return bool(_kill_switch["disabled"])

    @staticmethod
    def set_disabled(disabled: bool, updated_by: Optional[str] = None) -> bool:
        """
        Flip the kill-switch and persist it.

        Raises:
            PersistenceError: If the database write fails (in-memory state unchanged)
        """
        _persist(disabled, updated_by)
        _kill_switch["disabled"] = bool(disabled)
        _kill_switch["updated_by"] = updated_by
        _kill_switch["refreshed_at"] = time.time()
        print(f"[EXPENSE_GUARD] Kill-switch set: disabled={disabled} by={updated_by}")
        return _kill_switch["disabled"]

    @staticmethod
    def check_enabled() -> None:
        """Raises ServiceDisabled when the kill-switch is on."""
        if ExpenseGuard.is_disabled():
            raise ServiceDisabled()

    # ─────────────────────────────────────────────────────────────
    # Quotas
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def check_quotas(user_id: str) -> None:
        """
        Enforce daily per-user and per-deployment job limits (UTC day).
        A limit of 0 disables that check.

        Raises:
            QuotaExceeded: When either limit is already reached
            DatabaseError: If counts cannot be read
        """
        start, end = today_range()

        user_limit = config.DAILY_USER_JOB_LIMIT
        if user_limit > 0:
            used = JobService.count_by_user(user_id, since=start, until=end)
            if used >= user_limit:
                print(f"[EXPENSE_GUARD] User quota reached: user={user_id} used={used}/{user_limit}")
                raise QuotaExceeded(
                    f"Daily limit of {user_limit} enhancements reached. Try again tomorrow.",
                    details={"scope": "user", "used": used, "limit": user_limit},
                )

        global_limit = config.DAILY_GLOBAL_JOB_LIMIT
        if global_limit > 0:
            used = JobService.count_all(since=start, until=end)
            if used >= global_limit:
                print(f"[EXPENSE_GUARD] Global quota reached: used={used}/{global_limit}")
                raise QuotaExceeded(
                    "Daily service capacity reached. Try again tomorrow.",
                    details={"scope": "global", "used": used, "limit": global_limit},
                )

    @staticmethod
    def get_status() -> dict:
        """Current guardrail state for admin display."""
        return {
            "enhancements_disabled": bool(_kill_switch["disabled"]),
            "updated_by": _kill_switch["updated_by"],
            "limits": {
                "daily_user_jobs": config.DAILY_USER_JOB_LIMIT,
                "daily_global_jobs": config.DAILY_GLOBAL_JOB_LIMIT,
            },
        }
