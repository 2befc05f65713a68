"""Exponential backoff schedule used between status checks."""

from __future__ import annotations

from collections.abc import Iterator


def next_delay(
    attempt: int,
    initial: float,
    maximum: float,
    multiplier: float = 2.0,
) -> float:
    """Seconds to wait before the check following ``attempt`` prior checks.

    ``min(initial * multiplier**attempt, maximum)``. No jitter.
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    if initial < 0 or maximum < 0:
        raise ValueError("delays must be >= 0")
    if multiplier <= 1:
        raise ValueError("multiplier must be > 1")

    if initial == 0:
        return 0.0
    try:
        delay = initial * multiplier**attempt
    except OverflowError:
        return float(maximum)
    return float(min(delay, maximum))


def delays(
    attempts: int,
    initial: float,
    maximum: float,
    multiplier: float = 2.0,
) -> Iterator[float]:
    for attempt in range(attempts):
        yield next_delay(attempt, initial, maximum, multiplier)
