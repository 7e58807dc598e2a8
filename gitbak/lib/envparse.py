"""
Typed environment-variable parsing.

Values that do not parse keep the caller's default; the caller is told
through the warnings list so it can report them once configuration is
resolved.
"""

import re
from typing import Mapping, Optional

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

TRUE_VALUES = ("true", "1", "yes")
FALSE_VALUES = ("false", "0", "no")


def _lookup(env: Mapping[str, str], key: str) -> Optional[str]:
    if not KEY_PATTERN.match(key):
        raise ValueError(f"Invalid environment key '{key}'")
    return env.get(key)


def get_str(env: Mapping[str, str], key: str, default: str) -> str:
    value = _lookup(env, key)
    if value is None:
        return default
    return value


def get_bool(env: Mapping[str, str], key: str, default: bool, warnings: Optional[list] = None) -> bool:
    """Parse true/1/yes or false/0/no (case-insensitive)."""
    value = _lookup(env, key)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    if warnings is not None:
        warnings.append(f"Ignoring {key}={value!r}: expected true/false")
    return default


def get_float(env: Mapping[str, str], key: str, default: float, warnings: Optional[list] = None) -> float:
    value = _lookup(env, key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        if warnings is not None:
            warnings.append(f"Ignoring {key}={value!r}: expected a number")
        return default


def get_int(env: Mapping[str, str], key: str, default: int, warnings: Optional[list] = None) -> int:
    value = _lookup(env, key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        if warnings is not None:
            warnings.append(f"Ignoring {key}={value!r}: expected an integer")
        return default
