from splitledger.services.ledger import NetBalance
from splitledger.services.simplify import Transaction, apply_transactions, net_positions, simplify


def test_simplify_star():
    balances = [
        NetBalance(party_a=1, party_b=3, amount_cents=5000),
        NetBalance(party_a=2, party_b=3, amount_cents=3000),
    ]

    transactions = simplify(balances)

    assert len(transactions) == 2
    assert set(transactions) == {
        Transaction(from_party=3, to_party=1, amount_cents=5000),
        Transaction(from_party=3, to_party=2, amount_cents=3000),
    }

    after = apply_transactions(net_positions(balances), transactions)
    assert all(value == 0 for value in after.values())


def test_simplify_chain_collapses():
    # 3 owes 2, 2 owes 1: one payment from 3 to 1 is enough
    balances = [
        NetBalance(party_a=2, party_b=3, amount_cents=1000),
        NetBalance(party_a=1, party_b=2, amount_cents=1000),
    ]

    assert simplify(balances) == [Transaction(from_party=3, to_party=1, amount_cents=1000)]


def test_simplify_empty():
    assert simplify([]) == []


def test_simplify_single_pair():
    assert simplify([NetBalance(party_a=1, party_b=2, amount_cents=250)]) == [
        Transaction(from_party=2, to_party=1, amount_cents=250)
    ]


def test_simplify_skips_zero_positions():
    balances = [
        NetBalance(party_a=1, party_b=2, amount_cents=700),
        NetBalance(party_a=2, party_b=1, amount_cents=700),
    ]
    assert simplify(balances) == []


def test_simplify_clears_every_position():
    balances = [
        NetBalance(party_a=1, party_b=2, amount_cents=1234),
        NetBalance(party_a=1, party_b=3, amount_cents=866),
        NetBalance(party_a=4, party_b=3, amount_cents=500),
        NetBalance(party_a=4, party_b=5, amount_cents=1),
        NetBalance(party_a=2, party_b=5, amount_cents=300),
    ]

    transactions = simplify(balances)

    after = apply_transactions(net_positions(balances), transactions)
    assert all(value == 0 for value in after.values())
    assert len(transactions) <= 4
    assert all(tx.amount_cents > 0 for tx in transactions)


def test_transaction_to_dict():
    assert Transaction(from_party=3, to_party=1, amount_cents=50).to_dict() == {"from": 3, "to": 1, "amount": 50}
