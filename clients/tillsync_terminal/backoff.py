from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import timedelta


def compute_backoff_ms(attempts: int, *, base_ms: int, cap_ms: int, jitter_factor: float = 1.0) -> int:
    """Exponential delay for the given attempt count, scaled by ``jitter_factor``.

    Never returns less than 1 ms once ``attempts >= 1``.
    """
    if attempts < 1:
        return 0
    exponent = min(attempts - 1, 62)
    raw = min(cap_ms, base_ms * (2**exponent))
    return max(1, int(raw * jitter_factor))


@dataclass(frozen=True)
class BackoffPolicy:
    base_ms: int
    cap_ms: int
    jitter_ratio: float = 0.0

    def jitter_factor(self, jitter_key: str) -> float:
        if self.jitter_ratio <= 0:
            return 1.0
        # Seeded per key so the factor is stable across attempts of one record.
        return 1.0 - random.Random(jitter_key).random() * self.jitter_ratio

    def delay_ms(self, attempts: int, jitter_key: str = "") -> int:
        return compute_backoff_ms(
            attempts,
            base_ms=self.base_ms,
            cap_ms=self.cap_ms,
            jitter_factor=self.jitter_factor(jitter_key),
        )

    def delay(self, attempts: int, jitter_key: str = "") -> timedelta:
        return timedelta(milliseconds=self.delay_ms(attempts, jitter_key))
