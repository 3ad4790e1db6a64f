"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from models.records import FlowReading, ThresholdSummary
from services.csv_filter import RowIssue
from services.pipeline import Analysis


class ProcessingStatus(str, Enum):
    """Processing lifecycle states exposed via the API."""

    uploaded = "uploaded"
    processing = "processing"
    processed = "processed"
    partial = "partial"
    failed = "failed"


class PersistenceStatus(str, Enum):
    """Outcome of handing the filtered readings to the readings sink."""

    not_started = "not_started"
    pending = "pending"
    saved = "saved"
    failed = "failed"


class FileUploadResponse(BaseModel):
    """Immediate response payload after accepting a file upload."""

    file_id: str = Field(..., description="Generated identifier for the uploaded file.")


class FlowReadingOut(BaseModel):
    timestamp: str = Field(..., description="Timestamp exactly as it appears in the CSV.")
    flow: float

    @classmethod
    def from_record(cls, reading: FlowReading) -> "FlowReadingOut":
        return cls(timestamp=reading.timestamp, flow=reading.flow)


class DailyMinimumOut(BaseModel):
    date: str
    min_flow: float


class ThresholdSummaryOut(BaseModel):
    """Mean of the daily minimum flows and the 130% leak threshold."""

    mean_of_daily_minimums: float
    threshold: float
    daily_minimums: List[DailyMinimumOut] = Field(default_factory=list)
    computed_at: datetime
    computed_at_display: str

    @classmethod
    def from_record(cls, summary: ThresholdSummary) -> "ThresholdSummaryOut":
        return cls(
            mean_of_daily_minimums=summary.mean_of_daily_minimums,
            threshold=summary.threshold,
            daily_minimums=[
                DailyMinimumOut(date=entry.date, min_flow=entry.min_flow)
                for entry in summary.daily_minimums
            ],
            computed_at=summary.computed_at,
            computed_at_display=summary.computed_at_display,
        )


class ProcessingError(BaseModel):
    """Details about a row that was skipped, or about a failed file."""

    row_number: int = Field(..., ge=1)
    reason: str
    value: Optional[str] = None

    @classmethod
    def from_issue(cls, issue: RowIssue) -> "ProcessingError":
        return cls(row_number=issue.row_number, reason=issue.reason, value=issue.value)


class AnalysisResponse(BaseModel):
    """Synchronous analysis of an uploaded CSV."""

    readings: List[FlowReadingOut]
    summary: ThresholdSummaryOut
    excluded_count: int = Field(..., ge=0)
    skipped: List[ProcessingError] = Field(default_factory=list)

    @classmethod
    def from_analysis(cls, analysis: Analysis) -> "AnalysisResponse":
        report = analysis.report
        return cls(
            readings=[FlowReadingOut.from_record(reading) for reading in report.readings],
            summary=ThresholdSummaryOut.from_record(analysis.summary),
            excluded_count=report.excluded_count,
            skipped=[ProcessingError.from_issue(issue) for issue in report.skipped],
        )


class ProcessingResult(BaseModel):
    """Full record representing a processed file."""

    file_id: str
    status: ProcessingStatus
    uploaded_at: datetime
    processed_at: Optional[datetime] = None
    processing_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    readings: List[FlowReadingOut] = Field(default_factory=list)
    summary: Optional[ThresholdSummaryOut] = None
    excluded_count: int = Field(default=0, ge=0)
    errors: List[ProcessingError] = Field(default_factory=list)
    persistence: PersistenceStatus = PersistenceStatus.not_started
    persistence_error: Optional[str] = None
