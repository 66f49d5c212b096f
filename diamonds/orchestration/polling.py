from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

from ..infra.errors import ApprovalTimeoutError, RetryableError

T = TypeVar("T")


@dataclass(frozen=True)
class PollOptions:
    max_attempts: int = 30
    initial_delay_s: float = 8.0
    max_delay_s: float = 60.0
    jitter: bool = True


def backoff_delays(options: PollOptions, rng: Optional[random.Random] = None) -> Iterator[float]:
    """Delays between attempts: doubling from the initial delay up to the ceiling, plus up to half again as jitter."""
    r = rng or random.Random()
    delay = float(options.initial_delay_s)
    while True:
        base = min(delay, float(options.max_delay_s))
        yield base + (r.uniform(0, base / 2) if options.jitter and base > 0 else 0.0)
        delay = base * 2


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    options: PollOptions,
    *,
    sleep: Callable[[float], None] = time.sleep,
    describe: str = "",
    on_attempt: Optional[Callable[[int, Optional[T]], None]] = None,
    rng: Optional[random.Random] = None,
) -> T:
    """Call fetch until done(result) holds or the attempt budget runs out.

    The first attempt is immediate. RetryableErrors from fetch count as an
    attempt and are retried; on the last attempt they become a timeout.

    Raises:
        ApprovalTimeoutError: after max_attempts without done(result).
    """
    if options.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delays = backoff_delays(options, rng)
    for attempt in range(1, options.max_attempts + 1):
        result: Optional[T] = None
        try:
            result = fetch()
        except RetryableError as e:
            if attempt == options.max_attempts:
                raise ApprovalTimeoutError(
                    f"polling exceeded {options.max_attempts} attempts: {describe}: last error: {e}"
                ) from e
        if on_attempt is not None:
            on_attempt(attempt, result)
        if result is not None and done(result):
            return result
        if attempt < options.max_attempts:
            sleep(next(delays))

    raise ApprovalTimeoutError(f"polling exceeded {options.max_attempts} attempts: {describe}".rstrip(": "))
