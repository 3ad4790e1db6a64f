"""Leak threshold statistics over overnight flow readings."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List

from models.records import DailyMinimum, FlowReading, ThresholdSummary

THRESHOLD_FACTOR = 1.3
REPORT_QUANTUM = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> float:
    """Round to two decimals with halves going away from zero (1.125 -> 1.13)."""
    return float(Decimal(repr(value)).quantize(REPORT_QUANTUM, rounding=ROUND_HALF_UP))


def daily_minimums(readings: Iterable[FlowReading]) -> List[DailyMinimum]:
    """Lowest flow per date, in order of each date's first appearance.

    Dates are grouped by their literal text, so ``2/1/2024`` and ``02/01/2024``
    stay separate.
    """
    lowest: Dict[str, float] = {}
    for reading in readings:
        key = reading.date_key
        current = lowest.get(key)
        if current is None or reading.flow < current:
            lowest[key] = reading.flow
    return [DailyMinimum(date=date, min_flow=flow) for date, flow in lowest.items()]


class ThresholdCalculator:
    """Pure computation; only ``computed_at`` depends on the clock."""

    def __init__(
        self,
        factor: float = THRESHOLD_FACTOR,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.factor = factor
        self._clock = clock

    def compute(self, readings: Iterable[FlowReading]) -> ThresholdSummary:
        minimums = daily_minimums(readings)
        if minimums:
            mean = sum(entry.min_flow for entry in minimums) / len(minimums)
        else:
            mean = 0.0
        threshold = mean * self.factor

        return ThresholdSummary(
            mean_of_daily_minimums=round_half_up(mean),
            threshold=round_half_up(threshold),
            daily_minimums=tuple(minimums),
            computed_at=self._clock(),
            exact_mean=mean,
            exact_threshold=threshold,
        )


def compute_threshold(readings: Iterable[FlowReading]) -> ThresholdSummary:
    return ThresholdCalculator().compute(readings)
