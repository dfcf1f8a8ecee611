"""Test helper utilities for caltodo tests.

This package provides shared constants and a deterministic clock so test
modules build the same partitions and timestamps.
"""

from tests.helpers.factories import (
    # Owners
    USER_ID,
    OTHER_USER_ID,

    # Dates
    SAMPLE_DATE,
    NEXT_DATE,

    # Time
    TickingClock,
)

__all__ = [
    # Owners
    "USER_ID",
    "OTHER_USER_ID",

    # Dates
    "SAMPLE_DATE",
    "NEXT_DATE",

    # Time
    "TickingClock",
]
