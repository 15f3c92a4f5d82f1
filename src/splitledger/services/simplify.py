"""Greedy debt simplification.

Repeatedly matches the largest creditor with the largest debtor. This is the
usual netting heuristic: it always clears every balance and needs at most
``n - 1`` payments, but it is not guaranteed to find the global minimum
number of transactions for every debt topology.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping

from splitledger.services.ledger import TOLERANCE_CENTS, NetBalance


@dataclass(slots=True, frozen=True)
class Transaction:
    from_party: int
    to_party: int
    amount_cents: int

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.from_party, "to": self.to_party, "amount": self.amount_cents}


def net_positions(balances: Iterable[NetBalance]) -> dict[int, int]:
    positions: dict[int, int] = {}
    for balance in balances:
        positions[balance.party_a] = positions.get(balance.party_a, 0) + balance.amount_cents
        positions[balance.party_b] = positions.get(balance.party_b, 0) - balance.amount_cents
    return positions


def settle_positions(positions: Mapping[int, int]) -> List[Transaction]:
    creditors: list[tuple[int, int]] = []
    debtors: list[tuple[int, int]] = []

    for party, balance in positions.items():
        if balance > TOLERANCE_CENTS:
            creditors.append((party, balance))
        elif balance < -TOLERANCE_CENTS:
            debtors.append((party, -balance))

    transactions: list[Transaction] = []

    while creditors and debtors:
        # stable sort keeps insertion order between equal amounts
        creditors.sort(key=lambda x: x[1], reverse=True)
        debtors.sort(key=lambda x: x[1], reverse=True)

        cred_id, cred_amount = creditors[0]
        debt_id, debt_amount = debtors[0]

        amount = min(cred_amount, debt_amount)
        transactions.append(Transaction(from_party=debt_id, to_party=cred_id, amount_cents=amount))

        cred_amount -= amount
        debt_amount -= amount

        if cred_amount <= TOLERANCE_CENTS:
            creditors.pop(0)
        else:
            creditors[0] = (cred_id, cred_amount)

        if debt_amount <= TOLERANCE_CENTS:
            debtors.pop(0)
        else:
            debtors[0] = (debt_id, debt_amount)

    return transactions


def simplify(balances: Iterable[NetBalance]) -> List[Transaction]:
    return settle_positions(net_positions(balances))


def apply_transactions(positions: Mapping[int, int], transactions: Iterable[Transaction]) -> dict[int, int]:
    after = dict(positions)
    for tx in transactions:
        after[tx.to_party] = after.get(tx.to_party, 0) - tx.amount_cents
        after[tx.from_party] = after.get(tx.from_party, 0) + tx.amount_cents
    return after
