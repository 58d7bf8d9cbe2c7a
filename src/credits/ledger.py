"""Credit ledger backed by Supabase.

Balances live in ``profiles.credits``; every mutation goes through the
``apply_user_credits`` stored procedure, which applies the signed delta and
appends the matching ``credit_transactions`` row in one statement. The
procedure returns false instead of letting a debit take the balance below
zero, so the balance check and the write cannot interleave with another
request from the same user.
"""

from decimal import Decimal
from typing import Any

from supabase import Client

from src.pipeline.exceptions import InsufficientCreditsError, LedgerError
from src.utils.logging import get_logger

from .schemas import CreditAccount, CreditTransaction, TransactionKind

logger = get_logger(__name__)

APPLY_CREDITS_RPC = "apply_user_credits"


class CreditLedger:
    """Debit, credit and read a user's credit balance."""

    def __init__(self, client: Client):
        self.client = client

    async def get_balance(self, user_id: str) -> Decimal:
        """Return the current balance for a user.

        Raises:
            LedgerError: If the user has no profile row or the read fails.
        """
        try:
            response = (
                self.client.table("profiles")
                .select("credits")
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as e:
            logger.exception("balance_read_failed", user_id=user_id)
            raise LedgerError(str(e)) from e

        if not response.data:
            raise LedgerError(f"No credit account for user {user_id}")
        return Decimal(str(response.data[0].get("credits") or 0))

    async def get_account(self, user_id: str) -> CreditAccount:
        """Return the user's credit account.

        Raises:
            LedgerError: If the user has no profile row or the read fails.
        """
        return CreditAccount(user_id=user_id, balance=await self.get_balance(user_id))

    async def _apply(
        self,
        user_id: str,
        amount: Decimal,
        kind: TransactionKind,
        description: str,
        reference_id: str | None,
    ) -> bool:
        params: dict[str, Any] = {
            "user_id_param": user_id,
            "credit_amount": float(amount),
            "transaction_type_param": kind.value,
            "description_param": description,
            "reference_id_param": reference_id,
        }
        try:
            response = self.client.rpc(APPLY_CREDITS_RPC, params).execute()
        except Exception as e:
            logger.exception(
                "credit_delta_failed",
                user_id=user_id,
                amount=str(amount),
                kind=kind.value,
            )
            raise LedgerError(str(e)) from e
        return bool(response.data)

    async def debit(
        self,
        user_id: str,
        amount: Decimal,
        kind: TransactionKind = TransactionKind.USAGE,
        description: str = "",
        reference_id: str | None = None,
    ) -> None:
        """Take ``amount`` credits from the user, failing closed.

        Raises:
            ValueError: If amount is not positive.
            InsufficientCreditsError: If the balance is lower than amount.
            LedgerError: If the store call fails.
        """
        if amount <= 0:
            raise ValueError("Debit amount must be positive")

        applied = await self._apply(user_id, -amount, kind, description, reference_id)
        if not applied:
            balance = await self.get_balance(user_id)
            logger.warning(
                "debit_rejected",
                user_id=user_id,
                amount=str(amount),
                balance=str(balance),
            )
            raise InsufficientCreditsError(balance=balance, required=amount)

        logger.info(
            "credits_debited",
            user_id=user_id,
            amount=str(amount),
            kind=kind.value,
            reference_id=reference_id,
        )

    async def credit(
        self,
        user_id: str,
        amount: Decimal,
        kind: TransactionKind,
        description: str = "",
        reference_id: str | None = None,
    ) -> None:
        """Add ``amount`` credits to the user (refunds, purchases, adjustments).

        Raises:
            ValueError: If amount is not positive.
            LedgerError: If the store rejects or fails the call.
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        applied = await self._apply(user_id, amount, kind, description, reference_id)
        if not applied:
            raise LedgerError(f"Credit of {amount} rejected for user {user_id}")

        logger.info(
            "credits_added",
            user_id=user_id,
            amount=str(amount),
            kind=kind.value,
            reference_id=reference_id,
        )

    async def refund(
        self,
        user_id: str,
        amount: Decimal,
        description: str,
        reference_id: str | None = None,
    ) -> None:
        """Reverse a previous debit. Tagged ``refund``, never ``purchase``."""
        await self.credit(
            user_id,
            amount,
            TransactionKind.REFUND,
            description=description,
            reference_id=reference_id,
        )

    async def list_transactions(
        self, user_id: str, limit: int = 50
    ) -> list[CreditTransaction]:
        """Return the user's most recent transactions, newest first."""
        try:
            response = (
                self.client.table("credit_transactions")
                .select("id, user_id, amount, transaction_type, description, reference_id, created_at")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.exception("transactions_read_failed", user_id=user_id)
            raise LedgerError(str(e)) from e

        return [_to_transaction(row) for row in response.data or []]

    async def find_transactions(self, reference_id: str) -> list[CreditTransaction]:
        """Return all transactions tagged with a reference id."""
        try:
            response = (
                self.client.table("credit_transactions")
                .select("id, user_id, amount, transaction_type, description, reference_id, created_at")
                .eq("reference_id", reference_id)
                .execute()
            )
        except Exception as e:
            logger.exception("transactions_read_failed", reference_id=reference_id)
            raise LedgerError(str(e)) from e

        return [_to_transaction(row) for row in response.data or []]


def _to_transaction(row: dict[str, Any]) -> CreditTransaction:
    return CreditTransaction(
        id=str(row["id"]),
        user_id=row["user_id"],
        amount=Decimal(str(row["amount"])),
        kind=TransactionKind(row["transaction_type"]),
        description=row.get("description"),
        reference_id=row.get("reference_id"),
        created_at=row["created_at"],
    )
