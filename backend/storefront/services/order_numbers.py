# storefront/services/order_numbers.py
"""
Human-readable order numbers.

Sequence: SSA0001 ... SSA9999, SSB0001 ... SSZ9999, SSAA0001 ... SSZZ9999.
Legacy two-letter numbers (SS0001 ... SS9999) roll over into SSA0001.
The unique constraint on orders.order_number arbitrates concurrent writers;
OrderStore retries with a fresh number on collision.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import Order

BASE_PREFIX = "SS"
FIRST_ORDER_NUMBER = "SSA0001"
MAX_SEQUENCE = 9999


class OrderNumberExhaustedError(RuntimeError):
    pass


def _bump_letter(letter: str) -> str:
    return chr(ord(letter) + 1)


def next_order_number(last: Optional[str]) -> str:
    """Return the number following `last` (or the first number when there is none)."""
    if not last:
        return FIRST_ORDER_NUMBER

    prefix, digits = last[:-4], last[-4:]
    if not prefix.startswith(BASE_PREFIX) or not digits.isdigit():
        raise ValueError(f"Invalid order number format: {last}")

    sequence = int(digits)
    if sequence < MAX_SEQUENCE:
        return f"{prefix}{sequence + 1:04d}"

    letters = prefix[len(BASE_PREFIX):]
    if letters == "":
        return FIRST_ORDER_NUMBER
    if len(letters) == 1:
        if letters == "Z":
            return f"{BASE_PREFIX}AA0001"
        return f"{BASE_PREFIX}{_bump_letter(letters)}0001"
    if len(letters) == 2:
        first, second = letters
        if second == "Z":
            if first == "Z":
                raise OrderNumberExhaustedError("Maximum order number reached (SSZZ9999)")
            return f"{BASE_PREFIX}{_bump_letter(first)}A0001"
        return f"{BASE_PREFIX}{first}{_bump_letter(second)}0001"

    raise ValueError(f"Invalid order number format: {last}")


async def latest_order_number(db: AsyncSession) -> Optional[str]:
    """Highest issued number: longer prefixes sort after shorter ones, then lexically."""
    result = await db.execute(
        select(Order.order_number)
        .order_by(func.length(Order.order_number).desc(), Order.order_number.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def generate_order_number(db: AsyncSession) -> str:
    return next_order_number(await latest_order_number(db))
