"""Domain records passed between the CSV filter, the calculator and callers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Tuple


@dataclass(frozen=True, slots=True)
class FlowReading:
    """One overnight flow sample; ``timestamp`` is the CSV text, untouched."""

    timestamp: str
    flow: float

    @property
    def date_key(self) -> str:
        parts = self.timestamp.split(None, 1)
        return parts[0] if parts else ""


@dataclass(frozen=True, slots=True)
class DailyMinimum:
    date: str
    min_flow: float


@dataclass(frozen=True, slots=True)
class ThresholdSummary:
    """Leak threshold derived from the per-day minimum flows.

    ``mean_of_daily_minimums`` and ``threshold`` are rounded for reporting;
    ``exact_mean`` and ``exact_threshold`` keep full precision.
    """

    mean_of_daily_minimums: float
    threshold: float
    daily_minimums: Tuple[DailyMinimum, ...]
    computed_at: datetime
    exact_mean: float = 0.0
    exact_threshold: float = 0.0

    @property
    def computed_at_display(self) -> str:
        return self.computed_at.astimezone().strftime("%c")
