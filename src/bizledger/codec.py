"""Monetary and temporal conversions.

Money travels through the system as integer minor units (cents) and time as
integer nanoseconds since the Unix epoch. Conversion to decimals and calendar
dates happens only here, at the presentation boundary.
"""

from __future__ import annotations

import time
import uuid
from datetime import UTC, date, datetime, timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_MICROSECOND = 1_000
CENTS = Decimal("0.01")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

MoneyInput = Union[Decimal, int, float, str]


def cents_to_decimal(cents: int) -> Decimal:
    """Return ``cents`` as a two-place :class:`~decimal.Decimal`."""

    return (Decimal(cents) / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


def decimal_to_cents(value: MoneyInput) -> int:
    """Convert a display amount into integer cents, rounding half-up.

    Floats are routed through ``str`` so that ``0.1`` means ten cents rather
    than its binary approximation.

    Raises:
        ValueError: If ``value`` is not a finite number.
    """

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(cents: int, symbol: str = "₹") -> str:
    """Render ``cents`` for display, e.g. ``₹1,234.50`` or ``-₹12.00``."""

    amount = cents_to_decimal(cents)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def now_nanoseconds() -> int:
    return time.time_ns()


def datetime_to_nanoseconds(moment: datetime) -> int:
    """Convert an aware datetime into nanoseconds since the epoch.

    Integer arithmetic on the timedelta keeps the result exact.
    """

    if moment.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    delta = moment - _EPOCH
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    return micros * NANOS_PER_MICROSECOND


def nanoseconds_to_datetime(nanos: int, tz: tzinfo = UTC) -> datetime:
    """Convert nanoseconds since the epoch into an aware datetime in ``tz``."""

    micros = nanos // NANOS_PER_MICROSECOND
    return (_EPOCH + timedelta(microseconds=micros)).astimezone(tz)


def date_to_nanoseconds(value: Union[str, date], tz: tzinfo = UTC) -> int:
    """Return the nanosecond timestamp of local midnight for ``value``.

    ``value`` may be a :class:`~datetime.date` or an ISO ``YYYY-MM-DD``
    string as produced by date inputs.

    Raises:
        ValueError: If the string is not a valid ISO date.
    """

    day = date.fromisoformat(value.strip()) if isinstance(value, str) else value
    midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
    return datetime_to_nanoseconds(midnight)


def nanoseconds_to_date(nanos: int, tz: tzinfo = UTC) -> date:
    return nanoseconds_to_datetime(nanos, tz).date()


def format_date_input(nanos: int, tz: tzinfo = UTC) -> str:
    """Render ``nanos`` as ``YYYY-MM-DD`` in ``tz``.

    Inverse of :func:`date_to_nanoseconds` for the same ``tz``.
    """

    return nanoseconds_to_date(nanos, tz).isoformat()


def format_date(nanos: int, tz: tzinfo = UTC) -> str:
    """Render ``nanos`` for display, e.g. ``15 Mar 2024``."""

    day = nanoseconds_to_date(nanos, tz)
    return f"{day.day} {day.strftime('%b')} {day.year}"


def generate_id() -> str:
    """Mint a caller-side identifier, also used as an idempotency key."""

    return uuid.uuid4().hex
