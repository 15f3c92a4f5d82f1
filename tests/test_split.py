from decimal import Decimal

import pytest

from splitledger.db.models import SplitType
from splitledger.errors import (
    InvalidAmountError,
    LengthMismatchError,
    PercentageMismatchError,
    SumMismatchError,
    UnknownSplitTypeError,
    ZeroSharesError,
)
from splitledger.services.split import SplitRule, compute_splits


def amounts(lines):
    return [line.amount_cents for line in lines]


def test_equal_split_remainder_goes_first():
    lines = compute_splits(10000, [1, 2, 3], SplitType.EQUAL)
    assert amounts(lines) == [3334, 3333, 3333]
    assert [line.participant_id for line in lines] == [1, 2, 3]
    assert sum(amounts(lines)) == 10000


def test_equal_split_even():
    assert amounts(compute_splits(1000, [1, 2, 3, 4], "equal")) == [250, 250, 250, 250]


def test_equal_split_larger_remainder():
    lines = compute_splits(1002, [1, 2, 3, 4, 5], SplitType.EQUAL)
    assert amounts(lines) == [202, 200, 200, 200, 200]


def test_exact_split():
    lines = compute_splits(10000, [1, 2], SplitType.EXACT, SplitRule(amounts=[6000, 4000]))
    assert amounts(lines) == [6000, 4000]


def test_exact_split_sum_mismatch():
    with pytest.raises(SumMismatchError):
        compute_splits(10000, [1, 2], SplitType.EXACT, SplitRule(amounts=[4000, 4000]))


def test_percentage_split():
    rule = SplitRule(percentages=[Decimal(50), Decimal(30), Decimal(20)])
    lines = compute_splits(100000, [1, 2, 3], SplitType.PERCENTAGE, rule)
    assert amounts(lines) == [50000, 30000, 20000]
    assert lines[1].percentage == Decimal(30)


def test_percentage_split_remainder_goes_last():
    rule = SplitRule(percentages=[Decimal("33.33"), Decimal("33.33"), Decimal("33.34")])
    lines = compute_splits(100, [1, 2, 3], SplitType.PERCENTAGE, rule)
    assert amounts(lines) == [33, 33, 34]
    assert sum(amounts(lines)) == 100


def test_percentage_split_within_tolerance():
    rule = SplitRule(percentages=[33.33, 33.33, 33.33])
    lines = compute_splits(10000, [1, 2, 3], SplitType.PERCENTAGE, rule)
    assert amounts(lines) == [3333, 3333, 3334]


def test_percentage_split_mismatch():
    rule = SplitRule(percentages=[Decimal(50), Decimal(40)])
    with pytest.raises(PercentageMismatchError):
        compute_splits(1000, [1, 2], SplitType.PERCENTAGE, rule)


def test_percentage_split_just_outside_tolerance():
    rule = SplitRule(percentages=[Decimal("33.33"), Decimal("33.33"), Decimal("33.32")])
    with pytest.raises(PercentageMismatchError):
        compute_splits(10000, [1, 2, 3], SplitType.PERCENTAGE, rule)


def test_shares_split():
    rule = SplitRule(shares=[Decimal(1), Decimal(1), Decimal(1)])
    lines = compute_splits(10000, [1, 2, 3], SplitType.SHARES, rule)
    assert amounts(lines) == [3333, 3333, 3334]
    assert lines[2].shares == Decimal(1)


def test_shares_split_weighted():
    rule = SplitRule(shares=[Decimal(2), Decimal(1)])
    lines = compute_splits(900, [1, 2], SplitType.SHARES, rule)
    assert amounts(lines) == [600, 300]


def test_shares_split_zero_total():
    with pytest.raises(ZeroSharesError):
        compute_splits(1000, [1, 2], SplitType.SHARES, SplitRule(shares=[0, 0]))


@pytest.mark.parametrize(
    "split_type, rule",
    [
        (SplitType.EXACT, SplitRule(amounts=[1000])),
        (SplitType.PERCENTAGE, SplitRule(percentages=[Decimal(100)])),
        (SplitType.SHARES, SplitRule(shares=[Decimal(1), Decimal(1), Decimal(1)])),
    ],
)
def test_rule_length_mismatch(split_type, rule):
    with pytest.raises(LengthMismatchError):
        compute_splits(1000, [1, 2], split_type, rule)


@pytest.mark.parametrize("total", [0, -100])
def test_non_positive_total(total):
    with pytest.raises(InvalidAmountError):
        compute_splits(total, [1, 2], SplitType.EQUAL)


def test_unknown_split_type():
    with pytest.raises(UnknownSplitTypeError):
        compute_splits(1000, [1, 2], "custom")


def test_missing_rule_data():
    with pytest.raises(InvalidAmountError):
        compute_splits(1000, [1, 2], SplitType.EXACT)


def test_splits_always_sum_to_total():
    participants = [1, 2, 3, 4, 5, 6, 7]
    for total in (1, 7, 99, 1001, 123457):
        for split_type, rule in (
            (SplitType.EQUAL, None),
            (SplitType.PERCENTAGE, SplitRule(percentages=[Decimal("14.28")] * 6 + [Decimal("14.32")])),
            (SplitType.SHARES, SplitRule(shares=[Decimal(n) for n in range(1, 8)])),
        ):
            lines = compute_splits(total, participants, split_type, rule)
            assert sum(amounts(lines)) == total
