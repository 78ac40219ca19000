from .strategies import (
    KEY_SEPARATOR,
    ConstantKeyStrategy,
    KeyStrategy,
    PropertyKeyStrategy,
    format_key_value,
)

__all__ = [
    "KEY_SEPARATOR",
    "ConstantKeyStrategy",
    "KeyStrategy",
    "PropertyKeyStrategy",
    "format_key_value",
]
