"""Domain errors raised by the split and settlement services.

Everything here is non-retriable (the caller has to correct its input) except
:class:`ConcurrencyConflictError`, which signals that optimistic updates kept
losing to concurrent writers.
"""

from __future__ import annotations

from splitledger.utils.parse import format_cents


class SplitLedgerError(Exception):
    pass


class InvalidAmountError(SplitLedgerError, ValueError):
    pass


class UnknownSplitTypeError(SplitLedgerError, ValueError):
    pass


class LengthMismatchError(SplitLedgerError, ValueError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"expected {expected} rule values, got {actual}")
        self.expected = expected
        self.actual = actual


class SumMismatchError(SplitLedgerError, ValueError):
    def __init__(self, total_cents: int, actual_cents: int) -> None:
        super().__init__(
            f"split amounts ({format_cents(actual_cents)}) must equal total amount ({format_cents(total_cents)})"
        )
        self.total_cents = total_cents
        self.actual_cents = actual_cents


class PercentageMismatchError(SplitLedgerError, ValueError):
    def __init__(self, actual: object) -> None:
        super().__init__(f"percentages must add up to 100, got {actual}")
        self.actual = actual


class ZeroSharesError(SplitLedgerError, ValueError):
    pass


class SelfSettlementError(SplitLedgerError, ValueError):
    pass


class AlreadySettledError(SplitLedgerError):
    pass


class MemberNotInGroupError(SplitLedgerError, PermissionError):
    def __init__(self, group_id: int, user_ids: list[int]) -> None:
        super().__init__(f"users {user_ids} are not active members of group {group_id}")
        self.group_id = group_id
        self.user_ids = user_ids


class NotAParticipantError(SplitLedgerError):
    pass


class ExpenseNotFoundError(SplitLedgerError, LookupError):
    pass


class SettlementNotFoundError(SplitLedgerError, LookupError):
    pass


class InvalidTransitionError(SplitLedgerError):
    pass


class ConcurrencyConflictError(SplitLedgerError):
    pass


class GroupNotFoundError(SplitLedgerError, LookupError):
    pass
