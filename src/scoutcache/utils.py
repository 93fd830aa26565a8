"""Utility functions and constants for scoutcache."""

import time

# Store layout constants
RECORDS_TABLE = "records"
METADATA_TABLE = "collection_metadata"
REQUIRED_TABLES = (RECORDS_TABLE, METADATA_TABLE)

HERD_MODULES = "herd_modules"

DEFAULT_TTL_MS = 24 * 60 * 60 * 1000  # 1 day


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch.

    Returns:
        Integer milliseconds

    Examples:
        >>> now_ms() > 0
        True
    """
    return int(time.time() * 1000)


def format_age(age_ms: int) -> str:
    """Render a millisecond age as a short human-readable string.

    Args:
        age_ms: Age in milliseconds

    Returns:
        String such as '42s', '5m 3s' or '2h 10m'

    Examples:
        >>> format_age(42_000)
        '42s'
        >>> format_age(303_000)
        '5m 3s'
        >>> format_age(7_800_000)
        '2h 10m'
    """
    seconds = max(0, int(age_ms // 1000))
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
