"""Pydantic schemas for the credit ledger."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class TransactionKind(str, Enum):
    """Tag stored in credit_transactions.transaction_type."""

    USAGE = "usage"
    PURCHASE = "purchase"
    REFUND = "refund"
    SUBSCRIPTION = "subscription"
    ANALYSIS = "analysis"
    CHAT = "chat"
    ADJUSTMENT = "adjustment"


class CreditAccount(BaseModel):
    """A user's balance. Fractional credits are allowed."""

    user_id: str
    balance: Decimal


class CreditTransaction(BaseModel):
    """One append-only ledger row.

    ``amount`` is signed: negative for debits, positive for refunds and
    purchases.
    """

    id: str
    user_id: str
    amount: Decimal
    kind: TransactionKind
    description: str | None = None
    reference_id: str | None = None
    created_at: datetime
