"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile, status

from app.schemas import AnalysisResponse, FileUploadResponse, ProcessingResult
from services.errors import EmptyResultError, TokenizeError
from services.processor import ProcessorService, build_default_processor, read_upload

router = APIRouter()


def get_processor() -> ProcessorService:
    return build_default_processor()


@router.post(
    "/files",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=FileUploadResponse,
    summary="Upload a meter CSV for asynchronous threshold calculation.",
)
async def upload_file(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="CSV export of DMA flow readings."),
    processor: ProcessorService = Depends(get_processor),
) -> FileUploadResponse:
    try:
        file_id = processor.enqueue_file(background_tasks, file)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return FileUploadResponse(file_id=file_id)


@router.get(
    "/files/{file_id}",
    response_model=ProcessingResult,
    summary="Fetch processing status, overnight readings and threshold for a file.",
)
async def get_file_result(
    file_id: str,
    processor: ProcessorService = Depends(get_processor),
) -> ProcessingResult:
    try:
        return processor.fetch_result(file_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.post(
    "/analyze",
    response_model=AnalysisResponse,
    summary="Filter a meter CSV and compute its threshold in one request.",
)
def analyze_file(
    file: UploadFile = File(..., description="CSV export of DMA flow readings."),
    processor: ProcessorService = Depends(get_processor),
) -> AnalysisResponse:
    try:
        contents = read_upload(file)
        analysis = processor.analyze(contents)
    except EmptyResultError as exc:
        raise HTTPException(
            status_code=422,
            detail=str(exc),
        ) from exc
    except (TokenizeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    finally:
        file.file.close()

    return AnalysisResponse.from_analysis(analysis)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
