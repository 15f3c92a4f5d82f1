from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from splitledger.db.models import SplitLine, SplitType
from splitledger.errors import (
    InvalidAmountError,
    LengthMismatchError,
    PercentageMismatchError,
    SumMismatchError,
    UnknownSplitTypeError,
    ZeroSharesError,
)

HUNDRED = Decimal(100)
# 33.33 x 3 is accepted as a full split
PERCENT_TOLERANCE = Decimal("0.01")


@dataclass(slots=True)
class SplitRule:
    amounts: Sequence[int] | None = None
    percentages: Sequence[Decimal] | None = None
    shares: Sequence[Decimal] | None = None


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_equal(amount_cents: int, participants: Sequence[int]) -> list[SplitLine]:
    n = len(participants)
    base_share = amount_cents // n
    shares = [base_share] * n
    # remainder goes to the first participant
    shares[0] += amount_cents - base_share * n
    return [SplitLine(participant_id=p, amount_cents=share) for p, share in zip(participants, shares)]


def split_exact(amount_cents: int, participants: Sequence[int], amounts: Sequence[int]) -> list[SplitLine]:
    _check_length(participants, amounts)
    if any(value < 0 for value in amounts):
        raise InvalidAmountError("exact amounts must be non-negative")
    actual = sum(amounts)
    if actual != amount_cents:
        raise SumMismatchError(amount_cents, actual)
    return [SplitLine(participant_id=p, amount_cents=int(a)) for p, a in zip(participants, amounts)]


def split_percentage(
    amount_cents: int, participants: Sequence[int], percentages: Sequence[Decimal]
) -> list[SplitLine]:
    _check_length(participants, percentages)
    values = [_to_decimal(p) for p in percentages]
    if any(value < 0 for value in values):
        raise InvalidAmountError("percentages must be non-negative")
    total_pct = sum(values, Decimal(0))
    if abs(total_pct - HUNDRED) > PERCENT_TOLERANCE:
        raise PercentageMismatchError(total_pct)

    amounts = _proportional(amount_cents, values, HUNDRED)
    return [
        SplitLine(participant_id=p, amount_cents=a, percentage=pct)
        for p, a, pct in zip(participants, amounts, values)
    ]


def split_shares(amount_cents: int, participants: Sequence[int], shares: Sequence[Decimal]) -> list[SplitLine]:
    _check_length(participants, shares)
    values = [_to_decimal(s) for s in shares]
    if any(value < 0 for value in values):
        raise InvalidAmountError("shares must be non-negative")
    total_shares = sum(values, Decimal(0))
    if total_shares == 0:
        raise ZeroSharesError("total shares must be greater than zero")

    amounts = _proportional(amount_cents, values, total_shares)
    return [
        SplitLine(participant_id=p, amount_cents=a, shares=s)
        for p, a, s in zip(participants, amounts, values)
    ]


def compute_splits(
    total_cents: int,
    participants: Sequence[int],
    split_type: SplitType | str,
    rule: SplitRule | None = None,
) -> list[SplitLine]:
    """Divide ``total_cents`` between ``participants`` according to ``split_type``.

    The returned lines always sum to ``total_cents`` exactly. Equal splits hand
    the rounding remainder to the first participant, percentage and shares
    splits to the last one. Validation happens before anything is built, so a
    failure never yields a partial result.
    """
    if total_cents <= 0:
        raise InvalidAmountError("total amount must be positive")
    if not participants:
        raise InvalidAmountError("participants must not be empty")
    if len(set(participants)) != len(participants):
        raise InvalidAmountError("participants must be unique")

    try:
        kind = SplitType(split_type)
    except ValueError as exc:
        raise UnknownSplitTypeError(f"unknown split type: {split_type!r}") from exc

    rule = rule or SplitRule()
    if kind is SplitType.EQUAL:
        return split_equal(total_cents, participants)
    if kind is SplitType.EXACT:
        return split_exact(total_cents, participants, _require(rule.amounts, "amounts"))
    if kind is SplitType.PERCENTAGE:
        return split_percentage(total_cents, participants, _require(rule.percentages, "percentages"))
    return split_shares(total_cents, participants, _require(rule.shares, "shares"))


def _proportional(amount_cents: int, weights: Sequence[Decimal], denominator: Decimal) -> list[int]:
    result: list[int] = []
    running = 0
    for weight in weights[:-1]:
        share = round_cents(Decimal(amount_cents) * weight / denominator)
        result.append(share)
        running += share
    # last participant absorbs the remainder
    result.append(amount_cents - running)
    return result


def _to_decimal(value: object) -> Decimal:
    # floats go through str so 33.3 stays 33.3
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)  # type: ignore[arg-type]


def _check_length(participants: Sequence[int], values: Sequence[object]) -> None:
    if len(values) != len(participants):
        raise LengthMismatchError(len(participants), len(values))


def _require(values: Sequence | None, name: str) -> Sequence:
    if values is None:
        raise InvalidAmountError(f"{name} are required for this split type")
    return values
