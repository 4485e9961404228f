"""
Job Service - Enhancement job records.

One row per enhancement attempt in enhancement_jobs.

Job Statuses:
- processing: Credit debited, model call in flight
- completed: Model returned (enhanced_image_url set)
- failed: Model call failed (error_message set)

Only processing -> completed and processing -> failed are allowed. Every
finalizing UPDATE carries "AND status = 'processing'" so a terminal row is
never rewritten.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple

import psycopg

from propertyperfect.db import (
    transaction,
    fetch_one,
    query_one,
    query_all,
    query_scalar,
    execute,
    Tables,
    DatabaseError,
)
from propertyperfect.utils.error_handlers import PersistenceError
from propertyperfect.utils.helpers import iso, short_ref


class JobStatus:
    """Valid job statuses."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = ("processing", "completed", "failed")
    TERMINAL = ("completed", "failed")


# Columns update() is allowed to touch
UPDATABLE_FIELDS = {
    "status",
    "enhanced_image_url",
    "error_message",
    "provider",
    "model",
    "prompt",
    "processing_ms",
    "completed_at",
}

_JOB_COLUMNS = """
    id, user_id, status, original_image_url, prompt, preset, enhanced_image_url,
    error_message, credits_used, provider, model, is_multi_turn, processing_ms,
    created_at, completed_at
"""


def today_range(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Current UTC day as [start, end)."""
    now = now or datetime.now(timezone.utc)
    start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def month_start(now: Optional[datetime] = None) -> datetime:
    """First instant of the current UTC month."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class JobService:
    """Service for enhancement job records."""

    # ─────────────────────────────────────────────────────────────
    # Create / Delete
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def new_job_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def create(job: Dict[str, Any], cur=None) -> Dict[str, Any]:
        """
        Insert a job row in 'processing'.

        Args:
            job: dict with id, user_id, original_image_url, prompt, preset,
                 credits_used, provider, model, is_multi_turn
            cur: Optional open cursor (joins the caller's transaction)

        Raises:
            PersistenceError: If the write fails
        """
        if cur is None:
            try:
                with transaction() as own_cur:
                    return JobService.create(job, cur=own_cur)
            except DatabaseError as e:
                print(f"[JOBS] ERROR creating job {job.get('id')}: {e}")
                raise PersistenceError("Failed to create job record") from e

        try:
            cur.execute(
                f"""
                INSERT INTO {Tables.ENHANCEMENT_JOBS}
                    (id, user_id, status, original_image_url, prompt, preset,
                     credits_used, provider, model, is_multi_turn, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
                RETURNING {_JOB_COLUMNS}
                """,
                (
                    job["id"],
                    job["user_id"],
                    JobStatus.PROCESSING,
                    job["original_image_url"],
                    job.get("prompt"),
                    job.get("preset"),
                    job.get("credits_used", 1),
                    job.get("provider"),
                    job.get("model"),
                    bool(job.get("is_multi_turn")),
                ),
            )
            row = fetch_one(cur)
        except psycopg.Error as e:
            print(f"[JOBS] ERROR creating job {job.get('id')}: {e}")
            raise PersistenceError("Failed to create job record") from e

        print(
            f"[JOBS] Created job={job['id']} user={job['user_id']} "
            f"image={short_ref(job['original_image_url'])}"
        )
        return row

    @staticmethod
    def delete(job_id: str) -> bool:
        """Delete a job row. Only used to undo a job whose debit never happened."""
        try:
            return execute(f"DELETE FROM {Tables.ENHANCEMENT_JOBS} WHERE id = %s", (job_id,)) > 0
        except DatabaseError as e:
            print(f"[JOBS] ERROR deleting job {job_id}: {e}")
            return False

    # ─────────────────────────────────────────────────────────────
    # Status Updates
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def update(job_id: str, fields: Dict[str, Any], only_processing: bool = False) -> bool:
        """
        Update whitelisted columns of a job.

        Failures are logged and reported as False; they are never escalated,
        since by the time a job is finalized the caller already has its answer.
        """
        if not job_id:
            print("[JOBS] update skipped: missing job_id")
            return False

        clean = {k: v for k, v in (fields or {}).items() if k in UPDATABLE_FIELDS}
        dropped = set(fields or {}) - set(clean)
        if dropped:
            print(f"[JOBS] update job={job_id} ignoring non-updatable fields: {sorted(dropped)}")
        if not clean:
            return False

        assignments = ", ".join(f"{col} = %s" for col in clean)
        params = list(clean.values()) + [job_id]
        where = "id = %s"
        if only_processing:
            where += " AND status = %s"
            params.append(JobStatus.PROCESSING)

        try:
            count = execute(
                f"UPDATE {Tables.ENHANCEMENT_JOBS} SET {assignments} WHERE {where}",
                tuple(params),
            )
        except DatabaseError as e:
            print(f"[JOBS] ERROR updating job {job_id}: {e}")
            return False

        if count == 0:
            print(f"[JOBS] update job={job_id} matched no row (missing or already final)")
            return False
        return True

    @staticmethod
    def mark_completed(job_id: str, enhanced_image_url: str, processing_ms: Optional[int] = None) -> bool:
        ok = JobService.update(
            job_id,
            {
                "status": JobStatus.COMPLETED,
                "enhanced_image_url": enhanced_image_url,
                "processing_ms": processing_ms,
                "completed_at": datetime.now(timezone.utc),
            },
            only_processing=True,
        )
        if ok:
            print(f"[JOBS] job={job_id} completed in {processing_ms}ms")
        return ok

    @staticmethod
    def mark_failed(job_id: str, error_message: str, processing_ms: Optional[int] = None) -> bool:
        ok = JobService.update(
            job_id,
            {
                "status": JobStatus.FAILED,
                "error_message": (error_message or "Unknown error")[:1000],
                "processing_ms": processing_ms,
                "completed_at": datetime.now(timezone.utc),
            },
            only_processing=True,
        )
        if ok:
            print(f"[JOBS] job={job_id} failed: {error_message}")
        return ok

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get(job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Get a job by id, optionally restricted to its owner."""
        if user_id:
            return query_one(
                f"SELECT {_JOB_COLUMNS} FROM {Tables.ENHANCEMENT_JOBS} WHERE id = %s AND user_id = %s",
                (job_id, user_id),
            )
        return query_one(
            f"SELECT {_JOB_COLUMNS} FROM {Tables.ENHANCEMENT_JOBS} WHERE id = %s",
            (job_id,),
        )

    @staticmethod
    def list_by_user(
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """Jobs for a user, newest first."""
        clauses, params = JobService._range_clause(since, until)
        return query_all(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM {Tables.ENHANCEMENT_JOBS}
            WHERE user_id = %s{clauses}
            ORDER BY created_at DESC
            LIMIT %s
            """,
            tuple([user_id] + params + [limit]),
        )

    @staticmethod
    def count_by_user(user_id: str, since: Optional[datetime] = None, until: Optional[datetime] = None) -> int:
        clauses, params = JobService._range_clause(since, until)
        count = query_scalar(
            f"SELECT COUNT(*) FROM {Tables.ENHANCEMENT_JOBS} WHERE user_id = %s{clauses}",
            tuple([user_id] + params),
        )
        return int(count or 0)

    @staticmethod
    def count_all(since: Optional[datetime] = None, until: Optional[datetime] = None) -> int:
        clauses, params = JobService._range_clause(since, until)
        count = query_scalar(
            f"SELECT COUNT(*) FROM {Tables.ENHANCEMENT_JOBS} WHERE TRUE{clauses}",
            tuple(params),
        )
        return int(count or 0)

    @staticmethod
    def count_by_status(user_id: Optional[str] = None) -> Dict[str, int]:
        """Job counts per status, zero-filled."""
        if user_id:
            rows = query_all(
                f"""
                SELECT status, COUNT(*) AS n FROM {Tables.ENHANCEMENT_JOBS}
                WHERE user_id = %s GROUP BY status
                """,
                (user_id,),
            )
        else:
            rows = query_all(
                f"SELECT status, COUNT(*) AS n FROM {Tables.ENHANCEMENT_JOBS} GROUP BY status"
            )
        counts = {status: 0 for status in JobStatus.ALL}
        for row in rows:
            counts[row["status"]] = int(row["n"] or 0)
        return counts

    @staticmethod
    def distinct_users(since: Optional[datetime] = None, until: Optional[datetime] = None) -> int:
        clauses, params = JobService._range_clause(since, until)
        count = query_scalar(
            f"SELECT COUNT(DISTINCT user_id) FROM {Tables.ENHANCEMENT_JOBS} WHERE TRUE{clauses}",
            tuple(params),
        )
        return int(count or 0)

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _range_clause(since: Optional[datetime], until: Optional[datetime]) -> Tuple[str, list]:
        clauses, params = "", []
        if since is not None:
            clauses += " AND created_at >= %s"
            params.append(since)
        if until is not None:
            clauses += " AND created_at < %s"
            params.append(until)
        return clauses, params

    @staticmethod
    def to_public(job: Dict[str, Any]) -> Dict[str, Any]:
        """Format a job row for API responses."""
        return {
            "id": str(job["id"]),
            "status": job["status"],
            "originalImageUrl": job.get("original_image_url"),
            "enhancedImageUrl": job.get("enhanced_image_url"),
            "prompt": job.get("prompt"),
            "preset": job.get("preset"),
            "errorMessage": job.get("error_message"),
            "creditsUsed": job.get("credits_used", 1),
            "provider": job.get("provider"),
            "model": job.get("model"),
            "isMultiTurn": bool(job.get("is_multi_turn")),
            "processingTime": job.get("processing_ms"),
            "createdAt": iso(job.get("created_at")),
            "completedAt": iso(job.get("completed_at")),
        }
