"""
Amount normalization -- human decimal quantities to on-chain integers.

Contract:
    ``normalize_amount(quantity, decimals)`` converts a finite, non-negative
    decimal quantity into the fixed-point integer used on-chain at the given
    token precision.  Fractional digits beyond the precision are TRUNCATED,
    never rounded, so the on-chain value can never exceed what the user
    entered.

Architecture: dca_kernel/domain.  ZERO I/O.

Invariants enforced:
    - render_amount(normalize_amount(q, d), d) <= q for every valid (q, d).
    - decimals is an integer in [0, 255] (uint8 on-chain).
    - Floats are read through ``repr`` so binary artefacts never leak in.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Union

from dca_kernel.exceptions import InvalidAmountError

Quantity = Union[str, int, float, Decimal]

MAX_DECIMALS = 255
DEFAULT_DECIMALS = 18


def _check_decimals(value: Quantity, decimals: int) -> None:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise InvalidAmountError(value, decimals, "decimals must be an integer")
    if decimals < 0 or decimals > MAX_DECIMALS:
        raise InvalidAmountError(
            value, decimals, f"decimals must be within [0, {MAX_DECIMALS}]"
        )


def parse_decimal(value: Quantity, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    """Parse a human quantity into a finite, non-negative Decimal.

    Raises:
        InvalidAmountError: unparseable, NaN/infinite, negative, or bool input.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(value, decimals, "booleans are not quantities")

    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, float):
        parsed = Decimal(repr(value))
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidAmountError(value, decimals, "empty string")
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            raise InvalidAmountError(value, decimals, "not a decimal number") from None
    else:
        raise InvalidAmountError(
            value, decimals, f"unsupported type {type(value).__name__}"
        )

    if not parsed.is_finite():
        raise InvalidAmountError(value, decimals, "must be finite")
    if parsed < 0:
        raise InvalidAmountError(value, decimals, "must be non-negative")
    return parsed


def normalize_amount(value: Quantity, decimals: int) -> int:
    """Convert a human quantity to its fixed-point integer at ``decimals``.

    Excess fractional digits are truncated (ROUND_DOWN).

    Raises:
        InvalidAmountError: see ``parse_decimal``; also for bad ``decimals``.
    """
    _check_decimals(value, decimals)
    parsed = parse_decimal(value, decimals)

    # Enough precision for every integer digit plus the full scale.
    digits = len(parsed.as_tuple().digits) + max(parsed.as_tuple().exponent, 0)
    with localcontext() as ctx:
        ctx.prec = digits + decimals + 2
        scaled = parsed.scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def render_amount(raw: int, decimals: int) -> Decimal:
    """Inverse of ``normalize_amount``: integer units back to a Decimal."""
    _check_decimals(raw, decimals)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise InvalidAmountError(raw, decimals, "raw amount must be a non-negative int")
    with localcontext() as ctx:
        ctx.prec = len(str(raw)) + decimals + 2
        return Decimal(raw).scaleb(-decimals)


def quantize_amount(value: Quantity, decimals: int) -> str:
    """Human form truncated to ``decimals`` places, as stored on records."""
    raw = normalize_amount(value, decimals)
    rendered = render_amount(raw, decimals)
    if decimals == 0:
        return str(raw)
    return f"{rendered:.{decimals}f}"
