"""
Enhancement Service - Orchestrates one photo enhancement.

Flow (after the route has checked the kill-switch and the caller):
1. Validate the request body
2. Daily quotas (per user, per deployment)
3. Balance pre-check (no job row for a broke user)
4. ONE transaction: insert job (processing) + conditional debit + ledger row
5. Call the image model (single attempt, bounded timeout)
6. Finalize the job (completed / failed)

The debit is not refunded on model failure unless REFUND_ON_FAILURE is on.
The test user skips steps 2-4 and 6 entirely.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any

from propertyperfect.config import config
from propertyperfect.db import transaction, DatabaseError
from propertyperfect.services.expense_guard import ExpenseGuard
from propertyperfect.services.image_router import ImageRouter, ImageProviderError
from propertyperfect.services.job_service import JobService, JobStatus
from propertyperfect.services.prompt_service import (
    is_known_preset,
    resolve_prompt,
    build_model_prompt,
)
from propertyperfect.services.wallet_service import WalletService, LedgerEntryType
from propertyperfect.utils.error_handlers import (
    InvalidInput,
    InsufficientCredit,
    NotFound,
    PersistenceError,
    ServiceUnavailable,
)
from propertyperfect.utils.helpers import is_image_reference, iso, log_event, short_ref

MAX_PREVIOUS_PROMPTS = 20


@dataclass
class EnhanceRequest:
    image_url: str
    prompt: Optional[str] = None
    preset: Optional[str] = None
    previous_prompts: List[str] = field(default_factory=list)
    is_multi_turn: bool = False

    @classmethod
    def from_json(cls, body: Any) -> "EnhanceRequest":
        """
        Build a request from the POST /api/enhance JSON body.

        Raises:
            InvalidInput: On any malformed field
        """
        if not isinstance(body, dict):
            raise InvalidInput("Request body must be a JSON object")

        image_url = body.get("imageUrl")
        if not image_url or not isinstance(image_url, str) or not image_url.strip():
            raise InvalidInput("Image URL is required")
        image_url = image_url.strip()
        if not is_image_reference(image_url):
            raise InvalidInput("imageUrl must be an http(s) URL or a data:image/... URL")

        prompt = body.get("prompt")
        if prompt is not None and not isinstance(prompt, str):
            raise InvalidInput("prompt must be a string")

        preset = body.get("preset")
        if preset in ("", None):
            preset = None
        elif not isinstance(preset, str) or not is_known_preset(preset):
            raise InvalidInput(f"Unknown preset: {preset}")

        previous = body.get("previousPrompts")
        if previous is None:
            previous = []
        if not isinstance(previous, list) or not all(isinstance(p, str) for p in previous):
            raise InvalidInput("previousPrompts must be a list of strings")

        is_multi_turn = body.get("isMultiTurn", False)
        if not isinstance(is_multi_turn, bool):
            raise InvalidInput("isMultiTurn must be a boolean")

        return cls(
            image_url=image_url,
            prompt=prompt,
            preset=preset,
            previous_prompts=previous[-MAX_PREVIOUS_PROMPTS:],
            is_multi_turn=is_multi_turn,
        )


def _format_duration(ms: int) -> str:
    return f"{ms / 1000:.1f}s"


class EnhanceService:
    """Enhancement orchestration."""

    @staticmethod
    def enhance(user: Dict[str, Any], req: EnhanceRequest) -> Dict[str, Any]:
        """
        Run one enhancement for an authenticated user.

        Raises:
            QuotaExceeded, InsufficientCredit, PersistenceError, ServiceUnavailable
        """
        instruction = resolve_prompt(req.prompt, req.preset, req.previous_prompts, req.is_multi_turn)
        model_prompt = build_model_prompt(instruction, req.is_multi_turn)

        if user.get("is_test"):
            return EnhanceService._enhance_without_persistence(user, req, instruction, model_prompt)

        user_id = user["id"]

        # ── Eligibility ──────────────────────────────────────────
        try:
            ExpenseGuard.check_quotas(user_id)
            balance = WalletService.get_balance(user_id)
        except DatabaseError as e:
            print(f"[ENHANCE] ERROR reading eligibility for user={user_id}: {e}")
            raise PersistenceError("Failed to check account eligibility") from e

        cost = config.CREDITS_PER_JOB
        if balance < cost:
            print(f"[ENHANCE] Refused user={user_id}: balance={balance} < {cost}")
            raise InsufficientCredit(balance=balance, required=cost)

        # ── Job + debit (one transaction) ────────────────────────
        target = ImageRouter.describe()
        job_id = JobService.new_job_id()
        job = {
            "id": job_id,
            "user_id": user_id,
            "original_image_url": req.image_url,
            "prompt": instruction,
            "preset": req.preset,
            "credits_used": cost,
            "provider": target["provider"],
            "model": target["model"],
            "is_multi_turn": req.is_multi_turn,
        }
        try:
            with transaction() as cur:
                job_row = JobService.create(job, cur=cur)
                remaining = WalletService.debit(
                    user_id, cost, ref_type="enhancement_job", ref_id=job_id, cur=cur
                )
        except DatabaseError as e:
            print(f"[ENHANCE] ERROR creating job/debit for user={user_id}: {e}")
            raise PersistenceError("Failed to start enhancement job") from e

        print(
            f"[ENHANCE] job={job_id} user={user_id} preset={req.preset} "
            f"multi_turn={req.is_multi_turn} remaining={remaining}"
        )

        # ── Model call ───────────────────────────────────────────
        started = time.monotonic()
        try:
            result = ImageRouter.edit(req.image_url, model_prompt)
        except ImageProviderError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            JobService.mark_failed(job_id, str(e), elapsed_ms)
            refunded = EnhanceService._refund_if_enabled(user_id, job_id, cost)
            print(f"[ENHANCE] job={job_id} model failed ({e.kind}): {e} refunded={refunded}")
            raise ServiceUnavailable(
                "Image enhancement failed. Please try again later.",
                details={"jobId": job_id, "refunded": refunded},
            ) from e
        except Exception as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            JobService.mark_failed(job_id, f"{type(e).__name__}: {e}", elapsed_ms)
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        enhanced_url = result.get("image_url") or req.image_url
        image_changed = bool(result.get("image_url"))
        if not image_changed:
            print(f"[ENHANCE] job={job_id} model returned no image; returning original")

        JobService.mark_completed(job_id, enhanced_url, elapsed_ms)
        if not image_changed:
            log_event("enhance_no_image", {"job_id": job_id, "model_text": result.get("text")})

        return {
            "jobId": job_id,
            "status": JobStatus.COMPLETED,
            "originalImageUrl": req.image_url,
            "enhancedImageUrl": enhanced_url,
            "prompt": instruction,
            "preset": req.preset,
            "creditsUsed": cost,
            "remainingCredits": remaining,
            "processingTime": _format_duration(elapsed_ms),
            "processingMs": elapsed_ms,
            "createdAt": iso((job_row or {}).get("created_at")) or datetime.now(timezone.utc).isoformat(),
            "provider": result.get("provider") or target["provider"],
            "model": result.get("model") or target["model"],
            "imageChanged": image_changed,
            "isMultiTurn": req.is_multi_turn,
        }

    @staticmethod
    def _enhance_without_persistence(
        user: Dict[str, Any], req: EnhanceRequest, instruction: str, model_prompt: str
    ) -> Dict[str, Any]:
        """Test-token path: model call only; no quotas, credits, jobs or ledger."""
        job_id = f"test_{JobService.new_job_id()}"
        print(f"[ENHANCE] Test user request job={job_id} image={short_ref(req.image_url)}")

        started = time.monotonic()
        try:
            result = ImageRouter.edit(req.image_url, model_prompt)
        except ImageProviderError as e:
            print(f"[ENHANCE] Test job={job_id} model failed: {e}")
            raise ServiceUnavailable(
                "Image enhancement failed. Please try again later.",
                details={"jobId": job_id, "refunded": False},
            ) from e
        elapsed_ms = int((time.monotonic() - started) * 1000)

        return {
            "jobId": job_id,
            "status": JobStatus.COMPLETED,
            "originalImageUrl": req.image_url,
            "enhancedImageUrl": result.get("image_url") or req.image_url,
            "prompt": instruction,
            "preset": req.preset,
            "creditsUsed": 0,
            "remainingCredits": None,
            "processingTime": _format_duration(elapsed_ms),
            "processingMs": elapsed_ms,
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "provider": result.get("provider"),
            "model": result.get("model"),
            "imageChanged": bool(result.get("image_url")),
            "isMultiTurn": req.is_multi_turn,
            "testMode": True,
        }

    @staticmethod
    def _refund_if_enabled(user_id: str, job_id: str, amount: int) -> bool:
        if not config.REFUND_ON_FAILURE:
            return False
        try:
            WalletService.credit(
                user_id, amount, LedgerEntryType.REFUND, ref_type="enhancement_job", ref_id=job_id
            )
            return True
        except (DatabaseError, ValueError) as e:
            print(f"[ENHANCE] ERROR refunding job={job_id} user={user_id}: {e}")
            return False

    # ─────────────────────────────────────────────────────────────
    # Job history
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_jobs(user: Dict[str, Any], limit: int = 20, days: Optional[int] = None) -> List[Dict[str, Any]]:
        if user.get("is_test"):
            return []
        since = datetime.now(timezone.utc) - timedelta(days=days) if days else None
        try:
            jobs = JobService.list_by_user(user["id"], since=since, limit=limit)
        except DatabaseError as e:
            raise PersistenceError("Failed to load jobs") from e
        return [JobService.to_public(job) for job in jobs]

    @staticmethod
    def get_job(user: Dict[str, Any], job_id: str) -> Dict[str, Any]:
        if user.get("is_test"):
            raise NotFound("Job not found")
        try:
            job = JobService.get(job_id, user_id=user["id"])
        except DatabaseError as e:
            raise PersistenceError("Failed to load job") from e
        if not job:
            raise NotFound("Job not found")
        return JobService.to_public(job)
