"""FastAPI application for the Gradesheet OCR API.

Provides REST endpoints for gradesheet extraction, strategy listing,
and health checks.
"""

import shutil
import time
import uuid
from typing import Annotated

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from gradesheet_ocr.benchmark.evaluator import compute_extraction_accuracy
from gradesheet_ocr.correction.corrector import CorrectionContext
from gradesheet_ocr.exceptions import (
    ConfigurationError,
    DecodeError,
    ExtractionError,
    GradesheetOCRError,
)
from gradesheet_ocr.pipeline.orchestrator import GradesheetPipeline
from gradesheet_ocr.utils.config import load_config
from gradesheet_ocr.utils.logger import get_logger

from .schemas import (
    CorrectionResponse,
    ExtractionResponse,
    HealthResponse,
    InsertionIntentResponse,
    QualityResponse,
    StrategiesResponse,
    StrategyInfo,
    StudentResponse,
)

logger = get_logger(__name__)

API_VERSION = "0.1.0"

app = FastAPI(
    title="Gradesheet OCR API",
    description="Extract student names and marks from photographed gradesheets",
    version=API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_pipeline() -> GradesheetPipeline:
    """Build a pipeline from the current configuration.

    Raises:
        ConfigurationError: If the configured provider cannot be built.
    """
    return GradesheetPipeline(load_config())


_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/tiff",
    "image/webp",
    "image/bmp",
    "application/octet-stream",
}


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    return HealthResponse(
        status="healthy",
        version=API_VERSION,
        provider=load_config().ocr.provider,
        tesseract_available=shutil.which("tesseract") is not None,
    )


@app.get("/strategies", response_model=StrategiesResponse)
async def list_strategies() -> StrategiesResponse:
    """List the configured recognition strategies and passes."""
    config = load_config()
    return StrategiesResponse(
        provider=config.ocr.provider,
        execution_mode=config.pipeline.execution_mode,
        strategies=[
            StrategyInfo(
                name=s.name,
                priority=s.priority,
                min_confidence=s.min_confidence,
                features=s.features,
                language_hints=s.language_hints,
                mode=s.mode,
            )
            for s in sorted(config.strategies, key=lambda s: s.priority)
        ],
        passes=[p.name for p in config.passes],
    )


@app.post("/extract", response_model=ExtractionResponse)
async def extract_gradesheet(
    file: Annotated[UploadFile, File(...)],
    expected_count: Annotated[int | None, Form()] = None,
    reference_names: Annotated[str | None, Form()] = None,
) -> ExtractionResponse:
    """Extract students and marks from an uploaded gradesheet photo.

    Args:
        file: Uploaded image (PNG, JPEG, TIFF, WebP or BMP).
        expected_count: Optional class size used for consistency checks.
        reference_names: Optional roster, one name per line.

    Returns:
        Students, detected mark types, confidence, warnings,
        corrections, image quality and the spreadsheet insertion plan.
    """
    start_time = time.time()

    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )

    context = CorrectionContext(
        reference_names=[
            line.strip() for line in (reference_names or "").splitlines() if line.strip()
        ],
        expected_count=expected_count,
    )

    try:
        pipeline = _get_pipeline()
        content = await file.read()
        result = await pipeline.run(content, context=context)
    except DecodeError as exc:
        raise HTTPException(status_code=422, detail=f"Unreadable image: {exc}") from exc
    except ExtractionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConfigurationError as exc:
        logger.error("Pipeline misconfigured: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except GradesheetOCRError as exc:
        logger.error("Extraction failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return ExtractionResponse(
        success=True,
        extraction_id=str(uuid.uuid4()),
        students=[StudentResponse(**s.to_dict()) for s in result.students],
        detected_mark_types=result.detected.to_dict(),
        confidence=result.confidence,
        accuracy_estimate=compute_extraction_accuracy(result.students, result.detected),
        strategy=result.strategy,
        warnings=result.warnings,
        corrections=[CorrectionResponse(**c.to_dict()) for c in result.corrections],
        quality=QualityResponse(**result.quality.to_dict()) if result.quality else None,
        applied_enhancements=result.applied_enhancements,
        insertion_plan=[InsertionIntentResponse(**i.to_dict()) for i in result.intents],
        processing_time_ms=(time.time() - start_time) * 1000,
    )
