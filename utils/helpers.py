"""Helper utilities for Ping Pong Match Tracker."""

import math
import re
import uuid
from datetime import date, datetime, timezone, tzinfo
from typing import Optional


def generate_id() -> str:
    """Generate a unique record ID."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds (the stored precision)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def parse_timestamp(value) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Accepts:
    - 2024-05-01T12:00:00.000Z (JavaScript toISOString format)
    - 2024-05-01T12:00:00+02:00 (explicit offset)
    - 2024-05-01T12:00:00 (naive, read as local time)
    - datetime instances
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        # fromisoformat only takes 3 or 6 fractional digits before 3.11
        match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$", text)
        if match:
            head, fraction, tail = match.groups()
            text = f"{head}.{fraction[:6].ljust(6, '0')}{tail}"
        dt = datetime.fromisoformat(text)
    else:
        raise TypeError(f"Cannot parse timestamp from {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as a UTC ISO-8601 string with milliseconds."""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    utc = dt.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def local_day(dt: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar day of a timestamp in the given (default: local) time zone."""
    return dt.astimezone(tz).date()


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves going up (2.5 -> 3), unlike the built-in round()."""
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def to_camel(name: str) -> str:
    """Convert snake_case to camelCase (player1_id -> player1Id)."""
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_snake(name: str) -> str:
    """Convert camelCase to snake_case (player1Id -> player1_id)."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def format_win_rate(win_rate: float) -> str:
    """Format win rate as percentage string."""
    return f"{win_rate:.0f}%" if float(win_rate).is_integer() else f"{win_rate:.1f}%"


def format_ratio(ratio: float) -> str:
    """Format a win/loss ratio, showing infinity as a symbol."""
    if math.isinf(ratio):
        return "∞"
    return f"{ratio:.2f}"


def format_streak(streak: int, is_winning: bool) -> str:
    """Format a streak as W3 / L2, or a dash when there is none."""
    if streak <= 0:
        return "-"
    return f"{'W' if is_winning else 'L'}{streak}"


def truncate_string(text: str, max_length: int = 100) -> str:
    """Truncate string with ellipsis if too long."""
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."
