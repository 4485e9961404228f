"""
Wallet Service - Manages credit balances and ledger.

═══════════════════════════════════════════════════════════════════════════════
SOURCE OF TRUTH
═══════════════════════════════════════════════════════════════════════════════

  BALANCE:    users.credit_balance (CHECK credit_balance >= 0)
  HISTORY:    credit_ledger, one row per balance mutation, written in the
              same transaction as the mutation

  INVARIANT:  users.credit_balance == SUM(credit_ledger.amount) per user

═══════════════════════════════════════════════════════════════════════════════

Debits are a single conditional UPDATE (balance >= amount in the WHERE
clause), so two concurrent requests can never spend the same credit.

Ledger entry types:
- signup_grant: Welcome credits on first sign-in (positive)
- job_debit: One credit consumed by an accepted enhancement job (negative)
- purchase_credit: Credits from a completed Stripe checkout (positive)
- refund: Credit returned after a failed job (positive)
- admin_adjust: Manual admin adjustment (positive)
"""

from typing import Optional, Dict, Any, List

from propertyperfect.db import (
    transaction,
    fetch_one,
    query_one,
    query_all,
    Tables,
)
from propertyperfect.utils.error_handlers import InsufficientCredit


class LedgerEntryType:
    """Valid ledger entry types."""
    SIGNUP_GRANT = "signup_grant"
    JOB_DEBIT = "job_debit"
    PURCHASE_CREDIT = "purchase_credit"
    REFUND = "refund"
    ADMIN_ADJUST = "admin_adjust"


CREDIT_ENTRY_TYPES = {
    LedgerEntryType.SIGNUP_GRANT,
    LedgerEntryType.PURCHASE_CREDIT,
    LedgerEntryType.REFUND,
    LedgerEntryType.ADMIN_ADJUST,
}


class WalletService:
    """
    Service for managing credit balances.

    Every mutation accepts an optional open cursor so callers can compose it
    with other writes (job insert, purchase insert) into one transaction.
    Without a cursor the mutation runs in its own transaction.
    """

    # ─────────────────────────────────────────────────────────────
    # Read Operations
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get_balance(user_id: str) -> int:
        """
        Get current credit balance for a user.
        Returns 0 if the user row doesn't exist.
        """
        row = query_one(
            f"SELECT credit_balance FROM {Tables.USERS} WHERE id = %s",
            (user_id,),
        )
        if row:
            return int(row.get("credit_balance", 0) or 0)
        return 0

    @staticmethod
    def get_ledger(user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent ledger entries for a user, newest first."""
        return query_all(
            f"""
            SELECT id, entry_type, amount, ref_type, ref_id, balance_after, created_at
            FROM {Tables.CREDIT_LEDGER}
            WHERE user_id = %s
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            (user_id, limit),
        )

    # ─────────────────────────────────────────────────────────────
    # Write Operations (Transactional)
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _add_ledger_entry(
        cur,
        user_id: str,
        entry_type: str,
        amount: int,
        balance_after: int,
        ref_type: Optional[str] = None,
        ref_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        cur.execute(
            f"""
            INSERT INTO {Tables.CREDIT_LEDGER}
                (user_id, entry_type, amount, ref_type, ref_id, balance_after, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, NOW())
            RETURNING *
            """,
            (user_id, entry_type, amount, ref_type, ref_id, balance_after),
        )
        return fetch_one(cur)

    @staticmethod
    def debit(
        user_id: str,
        amount: int = 1,
        ref_type: Optional[str] = None,
        ref_id: Optional[str] = None,
        cur=None,
    ) -> int:
        """
        Atomically subtract credits and record a job_debit ledger entry.

        Returns:
            The new balance

        Raises:
            InsufficientCredit: If the balance would go negative (nothing is changed)
            DatabaseError: On transaction failure
        """
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")

        if cur is None:
            with transaction() as own_cur:
                return WalletService.debit(user_id, amount, ref_type, ref_id, cur=own_cur)

        cur.execute(
            f"""
            UPDATE {Tables.USERS}
            SET credit_balance = credit_balance - %s, updated_at = NOW()
            WHERE id = %s AND credit_balance >= %s
            RETURNING credit_balance
            """,
            (amount, user_id, amount),
        )
        row = fetch_one(cur)
        if not row:
            print(f"[WALLET] Debit refused: user={user_id} amount={amount} (insufficient balance)")
            raise InsufficientCredit(required=amount)

        new_balance = int(row["credit_balance"])
        WalletService._add_ledger_entry(
            cur, user_id, LedgerEntryType.JOB_DEBIT, -amount, new_balance, ref_type, ref_id
        )
        print(f"[WALLET] Debited {amount} from user={user_id}, balance={new_balance}")
        return new_balance

    @staticmethod
    def credit(
        user_id: str,
        amount: int,
        entry_type: str = LedgerEntryType.PURCHASE_CREDIT,
        ref_type: Optional[str] = None,
        ref_id: Optional[str] = None,
        cur=None,
    ) -> int:
        """
        Add credits to a user's balance and record the ledger entry.

        Returns:
            The new balance

        Raises:
            ValueError: If amount is not positive, entry_type is not a credit type,
                        or the user row doesn't exist
            DatabaseError: On transaction failure
        """
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")
        if entry_type not in CREDIT_ENTRY_TYPES:
            raise ValueError(f"Unknown credit entry type: {entry_type}")

        if cur is None:
            with transaction() as own_cur:
                return WalletService.credit(user_id, amount, entry_type, ref_type, ref_id, cur=own_cur)

        cur.execute(
            f"""
            UPDATE {Tables.USERS}
            SET credit_balance = credit_balance + %s, updated_at = NOW()
            WHERE id = %s
            RETURNING credit_balance
            """,
            (amount, user_id),
        )
        row = fetch_one(cur)
        if not row:
            raise ValueError(f"User not found: {user_id}")

        new_balance = int(row["credit_balance"])
        WalletService._add_ledger_entry(
            cur, user_id, entry_type, amount, new_balance, ref_type, ref_id
        )
        print(f"[WALLET] Credited {amount} ({entry_type}) to user={user_id}, balance={new_balance}")
        return new_balance
