from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


def parse_amount(value: str | int | Decimal) -> int:
    """
    Convert a decimal amount in major units to integer cents.

    Accepts "12.5", "12,50", Decimal("12.505") (rounded half up) and ints.
    """
    if isinstance(value, str):
        text = value.strip().replace(" ", "").replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation as exc:
            raise ValueError(f"invalid amount: {value!r}") from exc
    else:
        amount = Decimal(value)

    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def format_cents(amount_cents: int, currency: str | None = None) -> str:
    sign = "-" if amount_cents < 0 else ""
    whole, cents = divmod(abs(amount_cents), 100)
    text = f"{sign}{whole}.{cents:02d}"
    return f"{text} {currency}" if currency else text


def parse_currency(value: str | None, default: str) -> str:
    code = (value or default).strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError(f"invalid currency code: {value!r}")
    return code
