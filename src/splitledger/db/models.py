from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class SplitType(str, Enum):
    EQUAL = "equal"
    EXACT = "exact"
    PERCENTAGE = "percentage"
    SHARES = "shares"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    DISPUTED = "disputed"


class SettlementMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CREDIT_CARD = "credit_card"
    PAYPAL = "paypal"
    VENMO = "venmo"
    OTHER = "other"


@dataclass(slots=True)
class Group:
    id: int
    name: str
    currency: str
    total_settled_cents: int = 0
    version: int = 0


@dataclass(slots=True)
class SplitLine:
    participant_id: int
    amount_cents: int
    percentage: Optional[Decimal] = None
    shares: Optional[Decimal] = None
    paid: bool = False
    paid_at: Optional[datetime] = None


@dataclass(slots=True)
class SplitExpense:
    id: int
    description: str
    total_cents: int
    currency: str
    paid_by: int
    split_type: SplitType
    splits: list[SplitLine]
    created_by: int
    group_id: Optional[int] = None
    is_settled: bool = False
    settled_at: Optional[datetime] = None
    version: int = 0

    def line_for(self, participant_id: int) -> Optional[SplitLine]:
        for line in self.splits:
            if line.participant_id == participant_id:
                return line
        return None


@dataclass(slots=True)
class Settlement:
    id: int
    paid_by: int
    paid_to: int
    amount_cents: int
    currency: str
    settled_at: datetime
    group_id: Optional[int] = None
    related_expenses: list[int] = field(default_factory=list)
    method: SettlementMethod = SettlementMethod.CASH
    notes: Optional[str] = None
    status: SettlementStatus = SettlementStatus.VERIFIED
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    # part of amount_cents that cleared split lines; the rest nets in the ledger
    applied_cents: int = 0
    # split flags and group totals have been updated for this payment
    is_applied: bool = False
    version: int = 0
