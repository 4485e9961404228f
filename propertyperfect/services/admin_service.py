"""
Admin service for the PropertyPerfect backend.

Provides admin-only operations:
- Usage, cost and revenue statistics
- The emergency kill-switch for enhancements

Usage:
    from propertyperfect.services.admin_service import AdminService

    stats = AdminService.get_stats()
    AdminService.set_emergency(disable=True, admin_email="ops@example.com")
"""

from typing import Dict, Any, Optional

from propertyperfect.config import config
from propertyperfect.db import query_scalar, Tables, DatabaseError
from propertyperfect.services.expense_guard import ExpenseGuard
from propertyperfect.services.job_service import JobService, today_range
from propertyperfect.utils.error_handlers import PersistenceError


class AdminService:
    """Admin operations service."""

    # ─────────────────────────────────────────────────────────────
    # Statistics
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get_stats() -> Dict[str, Any]:
        """
        Get system-wide statistics.

        Raises:
            PersistenceError: If any count cannot be read
        """
        start, end = today_range()
        try:
            total_users = AdminService._count_users()
            daily_enhancements = JobService.count_all(since=start, until=end)
            total_enhancements = JobService.count_all()
            active_users = JobService.distinct_users(since=start, until=end)
            jobs_by_status = JobService.count_by_status()
            revenue_cents = AdminService._total_revenue_cents()
        except DatabaseError as e:
            print(f"[ADMIN] ERROR loading stats: {e}")
            raise PersistenceError("Failed to load admin stats") from e

        daily_cost = round(daily_enhancements * config.COST_PER_ENHANCEMENT_USD, 2)
        if daily_cost >= config.DAILY_COST_LIMIT_USD:
            print(f"[ADMIN] WARNING daily cost ${daily_cost} at or above limit ${config.DAILY_COST_LIMIT_USD}")

        return {
            "totalUsers": total_users,
            "dailyEnhancements": daily_enhancements,
            "totalEnhancements": total_enhancements,
            "dailyCost": daily_cost,
            "dailyCostLimit": config.DAILY_COST_LIMIT_USD,
            "totalRevenue": round(revenue_cents / 100.0, 2),
            "activeUsers": active_users,
            "jobsByStatus": jobs_by_status,
            "enhancementsDisabled": ExpenseGuard.is_disabled(),
        }

    @staticmethod
    def _count_users() -> int:
        count = query_scalar(f"SELECT COUNT(*) FROM {Tables.USERS} WHERE deleted_at IS NULL")
        return int(count or 0)

    @staticmethod
    def _total_revenue_cents() -> int:
        total = query_scalar(f"SELECT COALESCE(SUM(amount_cents), 0) FROM {Tables.PURCHASES}")
        return int(total or 0)

    # ─────────────────────────────────────────────────────────────
    # Kill-switch
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get_emergency() -> Dict[str, Any]:
        disabled = ExpenseGuard.is_disabled()
        return {
            "disabled": disabled,
            "message": "Enhancements are disabled" if disabled else "Enhancements are enabled",
            **ExpenseGuard.get_status(),
        }

    @staticmethod
    def set_emergency(disable: bool, admin_email: Optional[str] = None) -> Dict[str, Any]:
        """Flip the kill-switch. Raises PersistenceError if it cannot be stored."""
        disabled = ExpenseGuard.set_disabled(disable, updated_by=admin_email or "admin_token")
        print(f"[ADMIN] Emergency toggle: disabled={disabled} by={admin_email or 'admin_token'}")
        return {
            "success": True,
            "disabled": disabled,
            "message": "Enhancements disabled" if disabled else "Enhancements enabled",
        }
