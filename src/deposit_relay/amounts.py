#!/usr/bin/env python3
"""Fixed-point amount normalization.

On-chain amounts arrive as raw integers in the token's fixed-point encoding
(18 decimals for native currency and the sale token, 6 or 18 for USDT
depending on the chain's deployment). Everything the relay stores is a
decimal string with exactly six fractional digits, rounded half away from
zero (``ROUND_HALF_UP`` on non-negative values).
"""

import logging
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any

logger = logging.getLogger(__name__)

NATIVE_DECIMALS: int = 18
TOKEN_DECIMALS: int = 18
DEFAULT_USDT_DECIMALS: int = 6

# USDT deployments that use 18-decimal accounting
USDT_DECIMALS_BY_CHAIN: dict[str, int] = {"BSC": 18}

OUTPUT_PLACES: int = 6
_QUANTUM = Decimal(1).scaleb(-OUTPUT_PLACES)

# uint256 values have up to 78 digits
DECIMAL_CONTEXT = Context(prec=100, rounding=ROUND_HALF_UP)
ZERO_AMOUNT: str = "0.000000"


def format_amount(value: Decimal) -> str:
    """Render a decimal with exactly six fractional digits."""
    return f"{value.quantize(_QUANTUM, context=DECIMAL_CONTEXT):f}"


def normalize_amount(raw: Any, decimals: int) -> str:
    """Convert a raw on-chain amount into a 6-decimal string.

    Integers and digit strings are treated as fixed-point values scaled by
    ``10**decimals``. A string that already contains a decimal point is
    taken as a human amount and only re-formatted, so normalizing a
    normalized value returns it unchanged.

    Zero, negative, non-finite or unparsable input yields ``"0.000000"``.

    Args:
        raw: Raw amount (int, digit string or decimal string)
        decimals: Fixed-point scale of the raw amount

    Returns:
        Decimal string such as ``"2.000000"``
    """
    if raw is None or isinstance(raw, bool):
        return ZERO_AMOUNT

    try:
        if isinstance(raw, int):
            value = Decimal(raw).scaleb(-decimals, context=DECIMAL_CONTEXT)
        elif isinstance(raw, Decimal):
            value = raw
        else:
            text = str(raw).strip()
            if "." in text:
                value = Decimal(text)
            else:
                base = 16 if text.lower().startswith("0x") else 10
                value = Decimal(int(text, base)).scaleb(-decimals, context=DECIMAL_CONTEXT)
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Unparsable amount {raw!r}, using {ZERO_AMOUNT}")
        return ZERO_AMOUNT

    if not value.is_finite() or value < 0:
        logger.warning(f"Invalid amount {raw!r}, using {ZERO_AMOUNT}")
        return ZERO_AMOUNT

    return format_amount(value)


def deposit_decimals(
    chain_name: str,
    event_name: str,
    overrides: Mapping[str, int] | None = None
) -> int:
    """Fixed-point scale of the ``tokenDeposit`` field of an event.

    Native deposits are always 18 decimals. USDT deposits are 6 decimals
    except on chains whose USDT contract uses 18 (BSC), or where an explicit
    per-chain override is configured.
    """
    if event_name != "BoughtWithUSDT":
        return NATIVE_DECIMALS
    if overrides and chain_name in overrides:
        return overrides[chain_name]
    return USDT_DECIMALS_BY_CHAIN.get(chain_name, DEFAULT_USDT_DECIMALS)


def parse_decimal(value: Any) -> Decimal:
    """Parse a total read back from the backend.

    PostgREST returns numeric columns as JSON numbers or strings; missing or
    null totals count as zero.
    """
    if value is None or value == "":
        return Decimal(0)
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        logger.warning(f"Unparsable stored total {value!r}, treating as 0")
        return Decimal(0)
    return parsed if parsed.is_finite() else Decimal(0)
