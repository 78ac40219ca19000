from .timezone import (
    ensure_timezone_aware,
    format_for_storage,
    parse_from_storage,
    to_user_timezone,
    to_utc,
)

__all__ = [
    "ensure_timezone_aware",
    "format_for_storage",
    "parse_from_storage",
    "to_user_timezone",
    "to_utc",
]
