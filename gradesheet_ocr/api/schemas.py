"""Pydantic request/response schemas for the FastAPI endpoints."""

from pydantic import BaseModel, Field


class StudentResponse(BaseModel):
    """Response schema for one extracted student."""

    number: int
    name: str
    marks: dict[str, float | None]
    uncertain: dict[str, bool] = Field(default_factory=dict)


class CorrectionResponse(BaseModel):
    """Response schema for a correction applied to a name or mark."""

    kind: str
    student_number: int
    field: str
    original: float | str | None
    corrected: float | str | None
    confidence: float


class InsertionIntentResponse(BaseModel):
    """Response schema for one planned spreadsheet cell write."""

    student_number: int
    student_name: str
    field: str
    value: float | None
    will_insert: bool


class QualityResponse(BaseModel):
    """Response schema for the input image quality metrics."""

    brightness: float
    contrast: float
    sharpness: float
    noise: float
    skew: float
    resolution: int
    overall_score: float


class ExtractionResponse(BaseModel):
    """Response schema for a gradesheet extraction request."""

    success: bool
    extraction_id: str
    students: list[StudentResponse]
    detected_mark_types: dict[str, bool]
    confidence: float
    accuracy_estimate: int
    strategy: str
    warnings: list[str]
    corrections: list[CorrectionResponse]
    quality: QualityResponse | None = None
    applied_enhancements: list[str] = Field(default_factory=list)
    insertion_plan: list[InsertionIntentResponse]
    processing_time_ms: float


class StrategyInfo(BaseModel):
    """Information about a configured recognition strategy."""

    name: str
    priority: int
    min_confidence: float
    features: list[str]
    language_hints: list[str]
    mode: str


class StrategiesResponse(BaseModel):
    """Response schema listing strategies and preprocessing passes."""

    provider: str
    execution_mode: str
    strategies: list[StrategyInfo]
    passes: list[str]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    provider: str
    tesseract_available: bool
