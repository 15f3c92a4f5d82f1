from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from splitledger.db.models import SettlementStatus, Settlement, SplitExpense

# Residuals at or below this magnitude are treated as settled.
TOLERANCE_CENTS = 0


@dataclass(slots=True, frozen=True)
class NetBalance:
    """Positive ``amount_cents`` means ``party_b`` owes ``party_a``."""

    party_a: int
    party_b: int
    amount_cents: int

    def to_dict(self) -> dict[str, Any]:
        return {"party_a": self.party_a, "party_b": self.party_b, "amount": self.amount_cents}


@dataclass(slots=True)
class SettlementSummary:
    total_paid: int = 0
    total_received: int = 0
    count: int = 0

    @property
    def net_balance(self) -> int:
        return self.total_received - self.total_paid


@dataclass(slots=True)
class PendingLine:
    expense_id: int
    description: str
    amount_cents: int
    group_id: Optional[int]


@dataclass(slots=True)
class SplitStatistics:
    total_splits: int = 0
    pending_payments: int = 0
    completed_payments: int = 0
    total_owed: int = 0
    total_owed_to: int = 0
    pending: list[PendingLine] = field(default_factory=list)


def _owe(acc: dict[tuple[int, int], int], debtor: int, creditor: int, amount_cents: int) -> None:
    key = (creditor, debtor) if creditor < debtor else (debtor, creditor)
    if key[0] == creditor:
        acc[key] = acc.get(key, 0) + amount_cents
    else:
        acc[key] = acc.get(key, 0) - amount_cents


def accumulate(
    expenses: Iterable[SplitExpense],
    settlements: Iterable[Settlement],
) -> dict[tuple[int, int], int]:
    """Fold expenses and settlements into signed amounts per ordered pair.

    For a key ``(lo, hi)`` a positive value means ``hi`` owes ``lo``. Only
    unpaid split lines are obligations. A settlement nets only the part of
    its amount that did not clear split lines, since the lines it cleared
    are already out of the fold.
    """
    acc: dict[tuple[int, int], int] = {}
    for expense in expenses:
        if expense.is_settled:
            continue
        for line in expense.splits:
            if line.participant_id == expense.paid_by or line.paid:
                continue
            _owe(acc, line.participant_id, expense.paid_by, line.amount_cents)

    for settlement in settlements:
        if settlement.status is not SettlementStatus.VERIFIED:
            continue
        unapplied = settlement.amount_cents - settlement.applied_cents
        if unapplied <= 0:
            continue
        # a payment from X to Y reduces what X owes Y
        _owe(acc, settlement.paid_by, settlement.paid_to, -unapplied)
    return acc


def to_net_balances(acc: dict[tuple[int, int], int]) -> list[NetBalance]:
    result: list[NetBalance] = []
    for (lo, hi), amount in sorted(acc.items()):
        if abs(amount) <= TOLERANCE_CENTS:
            continue
        if amount > 0:
            result.append(NetBalance(party_a=lo, party_b=hi, amount_cents=amount))
        else:
            result.append(NetBalance(party_a=hi, party_b=lo, amount_cents=-amount))
    return result


def compute_group_balances(
    group_id: int,
    unsettled_expenses: Iterable[SplitExpense],
    verified_settlements: Iterable[Settlement],
) -> list[NetBalance]:
    expenses = [e for e in unsettled_expenses if e.group_id == group_id]
    settlements = [s for s in verified_settlements if s.group_id == group_id]
    return to_net_balances(accumulate(expenses, settlements))


def compute_user_balances(
    user_id: int,
    unsettled_expenses: Iterable[SplitExpense],
    verified_settlements: Iterable[Settlement],
) -> list[NetBalance]:
    """Balances between ``user_id`` and every counterparty.

    Oriented like group balances: ``party_b`` owes ``party_a``. Use
    :func:`balance_summary` for the signed per-counterparty view.
    """
    acc = accumulate(unsettled_expenses, verified_settlements)
    return to_net_balances({pair: amount for pair, amount in acc.items() if user_id in pair})


def balance_summary(user_id: int, balances: Sequence[NetBalance]) -> list[dict[str, Any]]:
    summary = []
    for balance in balances:
        if balance.party_a == user_id:
            summary.append({"counterparty": balance.party_b, "amount": balance.amount_cents})
        elif balance.party_b == user_id:
            summary.append({"counterparty": balance.party_a, "amount": -balance.amount_cents})
    return summary


def split_statistics(user_id: int, expenses: Iterable[SplitExpense]) -> SplitStatistics:
    stats = SplitStatistics()
    for expense in expenses:
        line = expense.line_for(user_id)
        if line is None and expense.created_by != user_id:
            continue
        stats.total_splits += 1

        if line is not None:
            if line.paid:
                stats.completed_payments += 1
            else:
                stats.pending_payments += 1
                stats.total_owed += line.amount_cents
                stats.pending.append(
                    PendingLine(
                        expense_id=expense.id,
                        description=expense.description,
                        amount_cents=line.amount_cents,
                        group_id=expense.group_id,
                    )
                )

        if expense.paid_by == user_id:
            stats.total_owed_to += sum(
                other.amount_cents
                for other in expense.splits
                if not other.paid and other.participant_id != user_id
            )
    return stats
