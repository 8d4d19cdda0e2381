"""Utility modules for Ping Pong Match Tracker."""

# ANSI color codes for console output
class Colors:
    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"

def log(source: str, message: str, color: str = Colors.WHITE):
    """Print colored log with source tag."""
    print(f"{color}[{source}]{Colors.RESET} {message}")

from utils.helpers import (
    generate_id,
    utc_now,
    parse_timestamp,
    format_timestamp,
    local_day,
    round_half_up,
    to_camel,
    to_snake,
    format_win_rate,
    format_ratio,
    format_streak,
    truncate_string,
)

__all__ = [
    "Colors",
    "log",
    "generate_id",
    "utc_now",
    "parse_timestamp",
    "format_timestamp",
    "local_day",
    "round_half_up",
    "to_camel",
    "to_snake",
    "format_win_rate",
    "format_ratio",
    "format_streak",
    "truncate_string",
]
