from datetime import datetime, timezone

from splitledger.db.models import Settlement, SettlementStatus, SplitExpense, SplitLine, SplitType
from splitledger.services.ledger import (
    NetBalance,
    balance_summary,
    compute_group_balances,
    compute_user_balances,
    split_statistics,
)

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)


def make_expense(expense_id, paid_by, shares, group_id=1, paid=(), created_by=None):
    return SplitExpense(
        id=expense_id,
        description=f"expense {expense_id}",
        total_cents=sum(shares.values()),
        currency="INR",
        paid_by=paid_by,
        split_type=SplitType.EXACT,
        splits=[
            SplitLine(participant_id=user, amount_cents=amount, paid=user == paid_by or user in paid)
            for user, amount in shares.items()
        ],
        created_by=created_by or paid_by,
        group_id=group_id,
    )


def make_settlement(settlement_id, paid_by, paid_to, amount, group_id=1, status=SettlementStatus.VERIFIED, applied=0):
    return Settlement(
        id=settlement_id,
        paid_by=paid_by,
        paid_to=paid_to,
        amount_cents=amount,
        currency="INR",
        settled_at=NOW,
        group_id=group_id,
        status=status,
        applied_cents=applied,
        is_applied=applied > 0,
    )


def test_group_balances_net_opposite_debts():
    expenses = [
        make_expense(1, paid_by=1, shares={1: 1000, 2: 1000, 3: 1000}),
        make_expense(2, paid_by=2, shares={1: 400, 2: 400}),
    ]

    balances = compute_group_balances(1, expenses, [])

    assert set(balances) == {
        NetBalance(party_a=1, party_b=2, amount_cents=600),
        NetBalance(party_a=1, party_b=3, amount_cents=1000),
    }


def test_group_balances_flip_orientation():
    expenses = [make_expense(1, paid_by=3, shares={1: 500, 3: 500})]

    assert compute_group_balances(1, expenses, []) == [NetBalance(party_a=3, party_b=1, amount_cents=500)]


def test_verified_settlement_reduces_debt():
    expenses = [make_expense(1, paid_by=1, shares={1: 1000, 2: 1000})]
    settlements = [
        make_settlement(1, paid_by=2, paid_to=1, amount=300),
        make_settlement(2, paid_by=2, paid_to=1, amount=700, status=SettlementStatus.DISPUTED),
    ]

    assert compute_group_balances(1, expenses, settlements) == [NetBalance(party_a=1, party_b=2, amount_cents=700)]


def test_fully_netted_pair_is_dropped():
    expenses = [
        make_expense(1, paid_by=1, shares={1: 500, 2: 500}),
        make_expense(2, paid_by=2, shares={1: 500, 2: 500}),
    ]
    assert compute_group_balances(1, expenses, []) == []


def test_group_balances_ignore_other_groups():
    expenses = [
        make_expense(1, paid_by=1, shares={1: 500, 2: 500}),
        make_expense(2, paid_by=1, shares={1: 500, 2: 500}, group_id=9),
    ]
    assert compute_group_balances(1, expenses, []) == [NetBalance(party_a=1, party_b=2, amount_cents=500)]


def test_group_balances_are_idempotent():
    expenses = [
        make_expense(1, paid_by=1, shares={1: 1000, 2: 1000, 3: 1000}),
        make_expense(2, paid_by=3, shares={2: 250, 3: 250}),
    ]
    settlements = [make_settlement(1, paid_by=2, paid_to=1, amount=100)]

    first = compute_group_balances(1, expenses, settlements)
    second = compute_group_balances(1, expenses, settlements)

    assert set(first) == set(second)


def test_user_balances_oriented_to_user():
    expenses = [
        make_expense(1, paid_by=1, shares={1: 1000, 2: 1000}, group_id=None),
        make_expense(2, paid_by=3, shares={1: 400, 3: 400}, group_id=None),
        make_expense(3, paid_by=3, shares={2: 900, 3: 900}, group_id=None),
    ]

    balances = compute_user_balances(1, expenses, [])

    assert balances == [
        NetBalance(party_a=1, party_b=2, amount_cents=1000),
        NetBalance(party_a=3, party_b=1, amount_cents=400),
    ]
    assert balance_summary(1, balances) == [
        {"counterparty": 2, "amount": 1000},
        {"counterparty": 3, "amount": -400},
    ]


def test_user_balances_with_settlements():
    expenses = [
        make_expense(1, paid_by=1, shares={1: 1000, 2: 1000}, group_id=None),
        make_expense(2, paid_by=3, shares={1: 400, 3: 400}, group_id=None),
    ]
    settlements = [
        make_settlement(1, paid_by=2, paid_to=1, amount=300, group_id=None),
        make_settlement(2, paid_by=1, paid_to=3, amount=150, group_id=None),
        make_settlement(3, paid_by=2, paid_to=3, amount=500, group_id=None),
        make_settlement(4, paid_by=2, paid_to=1, amount=999, group_id=None, status=SettlementStatus.PENDING),
        make_settlement(5, paid_by=3, paid_to=1, amount=400, group_id=None, applied=400),
    ]

    balances = compute_user_balances(1, expenses, settlements)

    assert balances == [
        NetBalance(party_a=1, party_b=2, amount_cents=700),
        NetBalance(party_a=3, party_b=1, amount_cents=250),
    ]
    assert all(balance.amount_cents > 0 for balance in balances)
    assert balance_summary(1, balances) == [
        {"counterparty": 2, "amount": 700},
        {"counterparty": 3, "amount": -250},
    ]


def test_paid_lines_are_not_owed():
    expenses = [make_expense(1, paid_by=1, shares={1: 1000, 2: 1000, 3: 1000}, paid={2})]

    assert compute_group_balances(1, expenses, []) == [NetBalance(party_a=1, party_b=3, amount_cents=1000)]


def test_settlement_nets_only_unapplied_part():
    expenses = [make_expense(1, paid_by=1, shares={1: 1000, 2: 1000, 3: 1000}, paid={2})]
    settlements = [make_settlement(1, paid_by=2, paid_to=1, amount=1500, applied=1000)]

    assert set(compute_group_balances(1, expenses, settlements)) == {
        NetBalance(party_a=1, party_b=3, amount_cents=1000),
        NetBalance(party_a=2, party_b=1, amount_cents=500),
    }


def test_settled_expenses_are_skipped():
    expense = make_expense(1, paid_by=1, shares={1: 500, 2: 500})
    expense.is_settled = True
    assert compute_group_balances(1, [expense], []) == []


def test_split_statistics():
    expenses = [
        make_expense(1, paid_by=1, shares={1: 500, 2: 500, 3: 500}, paid={3}),
        make_expense(2, paid_by=2, shares={1: 300, 2: 300}),
        make_expense(3, paid_by=2, shares={2: 100, 3: 100}),
    ]

    stats = split_statistics(1, expenses)

    assert stats.total_splits == 2
    assert stats.completed_payments == 1
    assert stats.pending_payments == 1
    assert stats.total_owed == 300
    assert stats.total_owed_to == 500
    assert [line.expense_id for line in stats.pending] == [2]


def test_net_balance_to_dict():
    assert NetBalance(party_a=1, party_b=2, amount_cents=10).to_dict() == {"party_a": 1, "party_b": 2, "amount": 10}
