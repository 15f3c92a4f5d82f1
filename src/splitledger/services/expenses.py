from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from splitledger.config import get_settings
from splitledger.db.models import SplitExpense, SplitType
from splitledger.db.repo import SplitLedgerRepository
from splitledger.logging import get_logger
from splitledger.services.authz import assert_group_members
from splitledger.services.ledger import (
    NetBalance,
    SettlementSummary,
    SplitStatistics,
    compute_group_balances,
    compute_user_balances,
    split_statistics,
)
from splitledger.services.simplify import Transaction, simplify
from splitledger.services.split import SplitRule, compute_splits
from splitledger.utils.parse import parse_amount, parse_currency

log = get_logger(__name__)

Amount = str | int | Decimal


async def create_split_expense(
    repo: SplitLedgerRepository,
    description: str,
    amount: Amount,
    paid_by: int,
    participants: Sequence[int],
    split_type: SplitType | str,
    created_by: int,
    amounts: Optional[Sequence[Amount]] = None,
    percentages: Optional[Sequence[Amount]] = None,
    shares: Optional[Sequence[Amount]] = None,
    group_id: Optional[int] = None,
    currency: Optional[str] = None,
    notes: Optional[str] = None,
) -> SplitExpense:
    """Split and store an expense.

    ``amount`` and the exact ``amounts`` are in major units ("12.50") and are
    converted to cents here. Percentages and shares are plain numbers.
    """
    total_cents = parse_amount(amount)
    rule = SplitRule(
        amounts=[parse_amount(value) for value in amounts] if amounts is not None else None,
        percentages=[Decimal(str(value)) for value in percentages] if percentages is not None else None,
        shares=[Decimal(str(value)) for value in shares] if shares is not None else None,
    )
    lines = compute_splits(total_cents, participants, split_type, rule)

    if group_id is not None:
        await assert_group_members(repo.db, group_id, [paid_by, *participants])

    # the payer has already covered their own share
    now = datetime.now(timezone.utc)
    for line in lines:
        if line.participant_id == paid_by:
            line.paid = True
            line.paid_at = now

    expense = await repo.create_split_expense(
        description=description,
        total_cents=total_cents,
        currency=parse_currency(currency, get_settings().default_currency),
        paid_by=paid_by,
        split_type=SplitType(split_type),
        lines=lines,
        created_by=created_by,
        group_id=group_id,
        notes=notes,
    )
    log.info(
        "expense.created",
        expense_id=expense.id,
        split_type=expense.split_type.value,
        total_cents=total_cents,
        participants=len(lines),
        group_id=group_id,
    )
    return expense


async def load_group_balances(repo: SplitLedgerRepository, group_id: int) -> list[NetBalance]:
    async with repo.transaction(isolation="repeatable_read", readonly=True):
        expenses = await repo.list_unsettled_group_expenses(group_id)
        settlements = await repo.list_open_group_settlements(group_id)
    return compute_group_balances(group_id, expenses, settlements)


async def load_user_balances(repo: SplitLedgerRepository, user_id: int) -> list[NetBalance]:
    async with repo.transaction(isolation="repeatable_read", readonly=True):
        expenses = await repo.list_unsettled_user_expenses(user_id)
        settlements = await repo.list_open_user_settlements(user_id)
    return compute_user_balances(user_id, expenses, settlements)


async def load_group_plan(repo: SplitLedgerRepository, group_id: int) -> list[Transaction]:
    return simplify(await load_group_balances(repo, group_id))


async def load_split_statistics(repo: SplitLedgerRepository, user_id: int) -> SplitStatistics:
    return split_statistics(user_id, await repo.list_user_expenses(user_id))


async def load_settlement_summary(
    repo: SplitLedgerRepository,
    user_id: int,
    group_id: Optional[int] = None,
) -> SettlementSummary:
    return await repo.settlement_summary(user_id, group_id=group_id)
