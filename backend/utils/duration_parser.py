"""
Duration parsing utilities for configuration values.

Converts Go-style duration strings (e.g., "60s", "1m", "1h30m", "1.5h") into
seconds. Used for DECKHAND_WATCH_INTERVAL and similar settings.
"""

import re
from typing import Union

# Unit to seconds multipliers
_UNIT_SECONDS = {
    'ns': 1e-9,
    'us': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}

_COMPONENT = r'(\d+(?:\.\d+)?)(ns|us|ms|s|m|h)'
_FULL_PATTERN = re.compile(rf'(?:{_COMPONENT})+')


def parse_duration(duration: Union[str, int, float, None]) -> float:
    """
    Parse a duration string to seconds.

    Supported units:
    - ns, us, ms: sub-second units
    - s: seconds
    - m: minutes
    - h: hours

    Args:
        duration: Duration string (e.g., "30s", "1m30s") or a number of seconds

    Returns:
        Duration in seconds as float

    Raises:
        ValueError: If the value is empty, negative, or not a valid duration

    Examples:
        >>> parse_duration("30s")
        30.0
        >>> parse_duration("1m30s")
        90.0
        >>> parse_duration("1.5h")
        5400.0
        >>> parse_duration(45)
        45.0
    """
    if duration is None:
        raise ValueError("Duration is required")

    # Plain numbers are already seconds
    if isinstance(duration, (int, float)) and not isinstance(duration, bool):
        if duration < 0:
            raise ValueError(f"Duration cannot be negative: {duration}")
        return float(duration)

    duration_str = str(duration).strip()
    if not duration_str:
        raise ValueError("Duration is empty")

    if not _FULL_PATTERN.fullmatch(duration_str):
        raise ValueError(
            f"Invalid duration format: '{duration}'. "
            f"Expected format: <number><unit> (e.g., '30s', '1m', '1h30m'). "
            f"Valid units: ns, us, ms, s, m, h"
        )

    total = 0.0
    for value_str, unit in re.findall(_COMPONENT, duration_str):
        total += float(value_str) * _UNIT_SECONDS[unit]

    return total
