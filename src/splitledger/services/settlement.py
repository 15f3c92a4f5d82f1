from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncContextManager, Awaitable, Callable, Optional, Protocol, Sequence

from splitledger.config import get_settings
from splitledger.db.models import (
    Group,
    Settlement,
    SettlementMethod,
    SettlementStatus,
    SplitExpense,
)
from splitledger.errors import (
    AlreadySettledError,
    ConcurrencyConflictError,
    ExpenseNotFoundError,
    GroupNotFoundError,
    InvalidAmountError,
    InvalidTransitionError,
    NotAParticipantError,
    SelfSettlementError,
    SettlementNotFoundError,
)
from splitledger.logging import get_logger

log = get_logger(__name__)


class SettlementStore(Protocol):
    def transaction(self) -> AsyncContextManager[object]: ...

    async def get_expense(self, expense_id: int, for_update: bool = False) -> SplitExpense | None: ...

    async def mark_line_paid(self, expense_id: int, participant_id: int, paid_at: datetime) -> bool: ...

    async def mark_expense_settled(self, expense_id: int, expected_version: int, settled_at: datetime) -> bool: ...

    async def get_group(self, group_id: int) -> Group | None: ...

    async def add_group_settled_total(self, group_id: int, expected_version: int, amount_cents: int) -> bool: ...

    async def insert_settlement(
        self,
        paid_by: int,
        paid_to: int,
        amount_cents: int,
        currency: str,
        group_id: Optional[int],
        related_expenses: Sequence[int],
        method: SettlementMethod,
        notes: Optional[str],
        status: SettlementStatus,
        settled_at: datetime,
    ) -> Settlement: ...

    async def record_applied_amount(self, settlement_id: int, expense_id: int, amount_cents: int) -> None: ...

    async def mark_settlement_applied(self, settlement_id: int, applied_cents: int) -> None: ...

    async def get_settlement(self, settlement_id: int) -> Settlement | None: ...

    async def update_settlement_status(
        self,
        settlement_id: int,
        expected_version: int,
        status: SettlementStatus,
        notes: Optional[str],
        verified_by: Optional[int],
        verified_at: Optional[datetime],
    ) -> bool: ...


ALLOWED_TRANSITIONS = {
    SettlementStatus.PENDING: {SettlementStatus.VERIFIED, SettlementStatus.DISPUTED},
    SettlementStatus.VERIFIED: {SettlementStatus.DISPUTED},
    SettlementStatus.DISPUTED: {SettlementStatus.VERIFIED},
}


def is_settled(expense: SplitExpense) -> bool:
    return all(line.paid for line in expense.splits)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _retry(attempt: Callable[[], Awaitable[bool]], what: str) -> None:
    retries = get_settings().max_update_retries
    for n in range(retries):
        if await attempt():
            return
        log.info("version.conflict", target=what, attempt=n + 1)
    raise ConcurrencyConflictError(f"gave up updating {what} after {retries} attempts")


async def _settle_expense_if_complete(store: SettlementStore, expense_id: int, now: datetime) -> bool:
    settled = False

    async def attempt() -> bool:
        nonlocal settled
        expense = await store.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(f"expense {expense_id} not found")
        if expense.is_settled:
            settled = True
            return True
        if not is_settled(expense):
            return True
        if await store.mark_expense_settled(expense.id, expense.version, now):
            settled = True
            log.info("expense.settled", expense_id=expense_id)
            return True
        return False

    await _retry(attempt, f"expense {expense_id}")
    return settled


async def _add_to_group_total(store: SettlementStore, group_id: int, amount_cents: int) -> None:
    async def attempt() -> bool:
        group = await store.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(f"group {group_id} not found")
        return await store.add_group_settled_total(group.id, group.version, amount_cents)

    await _retry(attempt, f"group {group_id}")


async def _apply_settlement(store: SettlementStore, settlement: Settlement, now: datetime) -> None:
    """Clear the payer's lines on the related expenses and bump the group total.

    A line is cleared only when the payment goes to that expense's payer and
    what is left of the amount covers the whole line. Whatever is not used
    on lines stays as a free-standing payment in the ledger.
    """
    remaining = settlement.amount_cents
    applied = 0
    for expense_id in settlement.related_expenses:
        # the row lock serialises writers on the same expense
        expense = await store.get_expense(expense_id, for_update=True)
        if expense is None:
            raise ExpenseNotFoundError(f"expense {expense_id} not found")
        line = expense.line_for(settlement.paid_by)

        skip = None
        if line is None:
            skip = "not_a_participant"
        elif expense.paid_by != settlement.paid_to:
            skip = "different_payee"
        elif line.paid:
            skip = "already_paid"
        elif line.amount_cents > remaining:
            skip = "insufficient_amount"
        elif not await store.mark_line_paid(expense_id, settlement.paid_by, now):
            skip = "already_paid"

        if skip is not None:
            log.info("settlement.expense.skip", settlement_id=settlement.id, expense_id=expense_id, reason=skip)
            continue

        assert line is not None
        remaining -= line.amount_cents
        applied += line.amount_cents
        await store.record_applied_amount(settlement.id, expense_id, line.amount_cents)
        log.info("split.paid", expense_id=expense_id, participant_id=settlement.paid_by)
        await _settle_expense_if_complete(store, expense_id, now)

    if settlement.group_id is not None:
        await _add_to_group_total(store, settlement.group_id, settlement.amount_cents)

    await store.mark_settlement_applied(settlement.id, applied)
    settlement.applied_cents = applied
    settlement.is_applied = True


async def mark_split_paid(store: SettlementStore, expense_id: int, participant_id: int) -> SplitExpense:
    """Mark a single participant's line as paid.

    Raises :class:`AlreadySettledError` if the line was already paid.
    """
    now = _now()
    async with store.transaction():
        expense = await store.get_expense(expense_id, for_update=True)
        if expense is None:
            raise ExpenseNotFoundError(f"expense {expense_id} not found")
        line = expense.line_for(participant_id)
        if line is None:
            raise NotAParticipantError(f"user {participant_id} is not a participant of expense {expense_id}")
        if not await store.mark_line_paid(expense_id, participant_id, now):
            raise AlreadySettledError(f"user {participant_id} already paid expense {expense_id}")
        log.info("split.paid", expense_id=expense_id, participant_id=participant_id)
        await _settle_expense_if_complete(store, expense_id, now)
        updated = await store.get_expense(expense_id)
    assert updated is not None
    return updated


async def record_settlement(
    store: SettlementStore,
    paid_by: int,
    paid_to: int,
    amount_cents: int,
    currency: str,
    group_id: Optional[int] = None,
    related_expenses: Sequence[int] = (),
    method: SettlementMethod = SettlementMethod.CASH,
    notes: Optional[str] = None,
    status: SettlementStatus = SettlementStatus.VERIFIED,
) -> Settlement:
    """Record a payment from ``paid_by`` to ``paid_to``.

    A verified payment clears split lines and counts toward the group total
    right away. A pending one is only stored until :func:`verify_settlement`.
    """
    if paid_by == paid_to:
        raise SelfSettlementError("cannot settle with yourself")
    if amount_cents <= 0:
        raise InvalidAmountError("settlement amount must be positive")
    if status is SettlementStatus.DISPUTED:
        raise InvalidTransitionError("a settlement cannot be created as disputed")

    now = _now()
    async with store.transaction():
        settlement = await store.insert_settlement(
            paid_by=paid_by,
            paid_to=paid_to,
            amount_cents=amount_cents,
            currency=currency.upper(),
            group_id=group_id,
            related_expenses=list(dict.fromkeys(related_expenses)),
            method=method,
            notes=notes,
            status=status,
            settled_at=now,
        )
        if status is SettlementStatus.VERIFIED:
            await _apply_settlement(store, settlement, now)

    log.info(
        "settlement.recorded",
        settlement_id=settlement.id,
        paid_by=paid_by,
        paid_to=paid_to,
        amount_cents=amount_cents,
        applied_cents=settlement.applied_cents,
        status=status.value,
        group_id=group_id,
    )
    return settlement


def _check_transition(settlement: Settlement, target: SettlementStatus) -> None:
    if target not in ALLOWED_TRANSITIONS.get(settlement.status, set()):
        raise InvalidTransitionError(
            f"settlement {settlement.id} cannot go from {settlement.status.value} to {target.value}"
        )


async def _transition(
    store: SettlementStore,
    settlement_id: int,
    target: SettlementStatus,
    change: Callable[[Settlement], None],
) -> Settlement:
    result: Settlement | None = None

    async def attempt() -> bool:
        nonlocal result
        settlement = await store.get_settlement(settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(f"settlement {settlement_id} not found")
        _check_transition(settlement, target)
        change(settlement)
        settlement.status = target
        if not await store.update_settlement_status(
            settlement.id,
            settlement.version,
            settlement.status,
            settlement.notes,
            settlement.verified_by,
            settlement.verified_at,
        ):
            return False
        settlement.version += 1
        result = settlement
        return True

    await _retry(attempt, f"settlement {settlement_id}")
    assert result is not None
    return result


async def dispute_settlement(store: SettlementStore, settlement_id: int, reason: str) -> Settlement:
    def change(settlement: Settlement) -> None:
        settlement.notes = (settlement.notes or "") + f"\n[DISPUTED]: {reason}"

    settlement = await _transition(store, settlement_id, SettlementStatus.DISPUTED, change)
    log.info("settlement.disputed", settlement_id=settlement_id)
    return settlement


async def verify_settlement(store: SettlementStore, settlement_id: int, verified_by: int) -> Settlement:
    now = _now()

    def change(settlement: Settlement) -> None:
        settlement.verified_by = verified_by
        settlement.verified_at = now

    async with store.transaction():
        settlement = await _transition(store, settlement_id, SettlementStatus.VERIFIED, change)
        # first verification of a payment recorded as pending
        if not settlement.is_applied:
            await _apply_settlement(store, settlement, now)
    log.info("settlement.verified", settlement_id=settlement_id, verified_by=verified_by)
    return settlement
