"""
Shared fixtures for the PropertyPerfect test suite.

The suite runs without Postgres, Supabase, Stripe or an image model. The
`store` fixture swaps the persistence primitives of each service for an
in-memory FakeStore, replaces transaction() with a snapshot/restore
context manager, and stubs bearer-token resolution and the model call.

Run locally:
    python -m pytest propertyperfect/tests -v
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, Optional

import pytest
import stripe

from propertyperfect.config import config
from propertyperfect.services import enhance_service, expense_guard, purchase_service
from propertyperfect.services.admin_service import AdminService
from propertyperfect.services.identity_service import IdentityService
from propertyperfect.services.image_router import ImageRouter
from propertyperfect.services.job_service import JobService, JobStatus
from propertyperfect.services.purchase_service import PurchaseService
from propertyperfect.services.user_service import UserService
from propertyperfect.services.wallet_service import WalletService, LedgerEntryType, CREDIT_ENTRY_TYPES
from propertyperfect.utils.error_handlers import InsufficientCredit

ENHANCED_DATA_URL = "data:image/png;base64,iVBORw0KGgo="
SOURCE_IMAGE_URL = "https://images.example.com/living-room.jpg"


def _in_range(ts: datetime, since: Optional[datetime], until: Optional[datetime]) -> bool:
    if since is not None and ts < since:
        return False
    if until is not None and ts >= until:
        return False
    return True


class FakeStore:
    """In-memory stand-in for the users / ledger / jobs / purchases tables."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.ledger: list = []
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.purchases: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, Dict[str, Any]] = {}
        self.model_calls: list = []
        self.model_error: Optional[Exception] = None
        self.model_result: Dict[str, Any] = {
            "image_url": ENHANCED_DATA_URL,
            "mime_type": "image/png",
            "text": None,
            "provider": "gemini",
            "model": config.GEMINI_IMAGE_MODEL,
        }
        self._purchase_seq = 0

    # ── seeding ──────────────────────────────────────────────
    def add_user(self, user_id: str, balance: int = 0, email: Optional[str] = None, **fields) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        user = {
            "id": user_id,
            "email": email or f"{user_id}@example.com",
            "first_name": None,
            "last_name": None,
            "credit_balance": balance,
            "plan": "free",
            "preferences": {},
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        user.update(fields)
        self.users[user_id] = user
        return user

    def sign_in(self, user_id: str, balance: int = 0, email: Optional[str] = None, **fields) -> Dict[str, str]:
        """Seed a user plus a bearer token; returns request headers."""
        user = self.add_user(user_id, balance, email, **fields)
        token = f"tok-{user_id}"
        self.tokens[token] = {"id": user_id, "email": user["email"]}
        return {"Authorization": f"Bearer {token}"}

    def balance(self, user_id: str) -> int:
        return self.users[user_id]["credit_balance"]

    def ledger_for(self, user_id: str) -> list:
        return [e for e in self.ledger if e["user_id"] == user_id]

    def jobs_for(self, user_id: str) -> list:
        return [j for j in self.jobs.values() if j["user_id"] == user_id]

    # ── transaction support ──────────────────────────────────
    def snapshot(self):
        return copy.deepcopy((self.users, self.ledger, self.jobs, self.purchases, self._purchase_seq))

    def restore(self, snap) -> None:
        self.users, self.ledger, self.jobs, self.purchases, self._purchase_seq = snap

    @contextmanager
    def transaction(self):
        snap = self.snapshot()
        try:
            yield object()
        except Exception:
            self.restore(snap)
            raise

    # ── wallet ───────────────────────────────────────────────
    def _ledger_entry(self, user_id, entry_type, amount, balance_after, ref_type, ref_id):
        self.ledger.append({
            "user_id": user_id,
            "entry_type": entry_type,
            "amount": amount,
            "balance_after": balance_after,
            "ref_type": ref_type,
            "ref_id": ref_id,
        })

    def get_balance(self, user_id):
        user = self.users.get(user_id)
        return int(user["credit_balance"]) if user else 0

    def debit(self, user_id, amount=1, ref_type=None, ref_id=None, cur=None):
        user = self.users.get(user_id)
        if not user or user["credit_balance"] < amount:
            raise InsufficientCredit(required=amount)
        user["credit_balance"] -= amount
        self._ledger_entry(user_id, LedgerEntryType.JOB_DEBIT, -amount, user["credit_balance"], ref_type, ref_id)
        return user["credit_balance"]

    def credit(self, user_id, amount, entry_type=LedgerEntryType.PURCHASE_CREDIT, ref_type=None, ref_id=None, cur=None):
        if amount <= 0 or entry_type not in CREDIT_ENTRY_TYPES:
            raise ValueError("bad credit")
        user = self.users.get(user_id)
        if not user:
            raise ValueError(f"User not found: {user_id}")
        user["credit_balance"] += amount
        self._ledger_entry(user_id, entry_type, amount, user["credit_balance"], ref_type, ref_id)
        return user["credit_balance"]

    # ── jobs ─────────────────────────────────────────────────
    def create_job(self, job, cur=None):
        row = {
            "id": job["id"],
            "user_id": job["user_id"],
            "status": JobStatus.PROCESSING,
            "original_image_url": job["original_image_url"],
            "prompt": job.get("prompt"),
            "preset": job.get("preset"),
            "enhanced_image_url": None,
            "error_message": None,
            "credits_used": job.get("credits_used", 1),
            "provider": job.get("provider"),
            "model": job.get("model"),
            "is_multi_turn": bool(job.get("is_multi_turn")),
            "processing_ms": None,
            "created_at": job.get("created_at") or datetime.now(timezone.utc),
            "completed_at": None,
        }
        self.jobs[row["id"]] = row
        return dict(row)

    def update_job(self, job_id, fields, only_processing=False):
        job = self.jobs.get(job_id)
        if not job:
            return False
        if only_processing and job["status"] != JobStatus.PROCESSING:
            return False
        job.update(fields)
        return True

    def get_job(self, job_id, user_id=None):
        job = self.jobs.get(job_id)
        if not job or (user_id and job["user_id"] != user_id):
            return None
        return dict(job)

    def list_jobs(self, user_id, since=None, until=None, limit=20):
        jobs = [j for j in self.jobs_for(user_id) if _in_range(j["created_at"], since, until)]
        jobs.sort(key=lambda j: j["created_at"], reverse=True)
        return [dict(j) for j in jobs[:limit]]

    def count_jobs_by_user(self, user_id, since=None, until=None):
        return len([j for j in self.jobs_for(user_id) if _in_range(j["created_at"], since, until)])

    def count_jobs(self, since=None, until=None):
        return len([j for j in self.jobs.values() if _in_range(j["created_at"], since, until)])

    def count_jobs_by_status(self, user_id=None):
        counts = {status: 0 for status in JobStatus.ALL}
        for job in self.jobs.values():
            if user_id is None or job["user_id"] == user_id:
                counts[job["status"]] += 1
        return counts

    def distinct_job_users(self, since=None, until=None):
        return len({j["user_id"] for j in self.jobs.values() if _in_range(j["created_at"], since, until)})

    def delete_job(self, job_id):
        return self.jobs.pop(job_id, None) is not None

    # ── users ────────────────────────────────────────────────
    def get_user(self, user_id, include_deleted=False):
        user = self.users.get(user_id)
        if not user or (user["deleted_at"] and not include_deleted):
            return None
        return dict(user)

    def ensure_user(self, user_id, email=None, first_name=None, last_name=None, cur=None):
        if user_id in self.users:
            return dict(self.users[user_id]), False
        self.add_user(user_id, 0, email, first_name=first_name, last_name=last_name)
        if config.FREE_CREDITS_ON_SIGNUP > 0:
            WalletService.credit(
                user_id, config.FREE_CREDITS_ON_SIGNUP, LedgerEntryType.SIGNUP_GRANT,
                ref_type="signup", ref_id=user_id, cur=cur,
            )
        return dict(self.users[user_id]), True

    def restore_profile(self, user_id, email, first_name, last_name):
        user = self.users[user_id]
        user["email"] = user["email"] or email
        user["first_name"] = user["first_name"] or first_name
        user["last_name"] = user["last_name"] or last_name
        user["deleted_at"] = None
        return dict(user)

    def write_profile(self, user_id, changes):
        user = self.users.get(user_id)
        if not user or user["deleted_at"]:
            return None
        for column, value in changes.items():
            if column == "preferences":
                user["preferences"] = {**(user["preferences"] or {}), **value}
            else:
                user[column] = value
        user["updated_at"] = datetime.now(timezone.utc)
        return dict(user)

    def soft_delete(self, user_id):
        user = self.users.get(user_id)
        if not user or user["deleted_at"]:
            return False
        user["deleted_at"] = datetime.now(timezone.utc)
        return True

    # ── purchases ────────────────────────────────────────────
    def insert_purchase(self, cur, purchase):
        if purchase["stripe_session_id"] in self.purchases:
            return None
        self._purchase_seq += 1
        row = dict(purchase, id=self._purchase_seq, purchased_at=datetime.now(timezone.utc))
        self.purchases[purchase["stripe_session_id"]] = row
        return dict(row)

    def get_purchases(self, user_id, limit=20):
        rows = [p for p in self.purchases.values() if p["user_id"] == user_id]
        rows.sort(key=lambda p: p["id"], reverse=True)
        return [PurchaseService._format_purchase(p) for p in rows[:limit]]

    def count_users(self):
        return len([u for u in self.users.values() if not u["deleted_at"]])

    def revenue_cents(self):
        return sum(p["amount_cents"] for p in self.purchases.values())

    # ── identity / model ─────────────────────────────────────
    def resolve_bearer_token(self, token):
        return self.tokens.get(token)

    def edit_image(self, image_ref, prompt):
        self.model_calls.append({"image_ref": image_ref, "prompt": prompt})
        if self.model_error is not None:
            raise self.model_error
        return dict(self.model_result)


def checkout_event(session_id="cs_test_1", user_id="user-1", credits="75", plan="Professional",
                   payment_status="paid", amount_total=4900):
    return {
        "id": f"evt_{session_id}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_status": payment_status,
                "amount_total": amount_total,
                "currency": "usd",
                "customer_email": f"{user_id}@example.com",
                "metadata": {
                    "userId": user_id,
                    "userEmail": f"{user_id}@example.com",
                    "planType": plan,
                    "credits": credits,
                    "price": "49",
                },
            }
        },
    }


@pytest.fixture
def base_config(monkeypatch):
    """Deterministic development config; no secrets, default limits."""
    monkeypatch.setenv("FLASK_ENV", "development")
    monkeypatch.delenv("ALLOW_TEST_TOKEN", raising=False)
    settings = {
        "FLASK_ENV": "development",
        "_ALLOW_TEST_TOKEN_RAW": "",
        "TEST_AUTH_TOKEN": "test-token",
        "ADMIN_TOKEN": "",
        "ADMIN_EMAILS": [],
        "STRIPE_SECRET_KEY": "sk_test_dummy",
        "STRIPE_WEBHOOK_SECRET": "",
        "IMAGE_PROVIDER": "gemini",
        "ALLOWED_IMAGE_HOSTS": [],
        "ENHANCEMENTS_DISABLED": False,
        "DAILY_USER_JOB_LIMIT": 10,
        "DAILY_GLOBAL_JOB_LIMIT": 50,
        "REFUND_ON_FAILURE": False,
        "FREE_CREDITS_ON_SIGNUP": 5,
        "CREDITS_PER_JOB": 1,
    }
    for key, value in settings.items():
        monkeypatch.setattr(config, key, value)

    monkeypatch.setattr(expense_guard, "USE_DB", False)
    monkeypatch.setitem(expense_guard._kill_switch, "disabled", False)
    monkeypatch.setitem(expense_guard._kill_switch, "updated_by", None)
    return config


@pytest.fixture
def store(monkeypatch, base_config):
    fake = FakeStore()

    def patch(cls, name, fn):
        monkeypatch.setattr(cls, name, staticmethod(fn))

    patch(WalletService, "get_balance", fake.get_balance)
    patch(WalletService, "debit", fake.debit)
    patch(WalletService, "credit", fake.credit)

    patch(JobService, "create", fake.create_job)
    patch(JobService, "update", fake.update_job)
    patch(JobService, "get", fake.get_job)
    patch(JobService, "list_by_user", fake.list_jobs)
    patch(JobService, "count_by_user", fake.count_jobs_by_user)
    patch(JobService, "count_all", fake.count_jobs)
    patch(JobService, "count_by_status", fake.count_jobs_by_status)
    patch(JobService, "distinct_users", fake.distinct_job_users)
    patch(JobService, "delete", fake.delete_job)

    patch(UserService, "get", fake.get_user)
    patch(UserService, "ensure_user", fake.ensure_user)
    patch(UserService, "_restore_profile", fake.restore_profile)
    patch(UserService, "_write_profile", fake.write_profile)
    patch(UserService, "soft_delete", fake.soft_delete)

    patch(PurchaseService, "_insert_purchase", fake.insert_purchase)
    patch(PurchaseService, "get_purchases", fake.get_purchases)
    patch(AdminService, "_count_users", fake.count_users)
    patch(AdminService, "_total_revenue_cents", fake.revenue_cents)

    patch(IdentityService, "resolve_bearer_token", fake.resolve_bearer_token)
    patch(ImageRouter, "edit", fake.edit_image)

    monkeypatch.setattr(enhance_service, "transaction", fake.transaction)
    monkeypatch.setattr(purchase_service, "transaction", fake.transaction)
    return fake


@pytest.fixture
def app(store):
    from propertyperfect.app import create_app

    flask_app = create_app(init_database=False)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def stripe_sessions(monkeypatch):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="cs_test_new", url="https://checkout.stripe.com/c/pay/cs_test_new")

    monkeypatch.setattr(stripe.checkout.Session, "create", staticmethod(fake_create))
    return calls


@pytest.fixture
def dev_token_headers():
    return {"Authorization": "Bearer test-token"}
