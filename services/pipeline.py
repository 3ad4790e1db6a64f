"""Filter-then-compute composition shared by the API processor and the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from models.records import ThresholdSummary
from services.csv_filter import CsvFilter, FilterReport
from services.errors import EmptyResultError
from services.threshold import ThresholdCalculator


@dataclass(frozen=True)
class Analysis:
    report: FilterReport
    summary: ThresholdSummary


def analyze_csv(
    raw: bytes | str,
    csv_filter: Optional[CsvFilter] = None,
    calculator: Optional[ThresholdCalculator] = None,
) -> Analysis:
    """Run both stages over ``raw``.

    Raises ``TokenizeError`` from the filter, and ``EmptyResultError`` when no
    row falls in the filter's window.
    """
    csv_filter = csv_filter or CsvFilter()
    calculator = calculator or ThresholdCalculator()

    report = csv_filter.scan(raw)
    if not report.readings:
        raise EmptyResultError(
            csv_filter.window.start, csv_filter.window.end, rows_seen=report.rows_seen
        )
    return Analysis(report=report, summary=calculator.compute(report.readings))
