"""Tests for the FastAPI REST endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import make_student
from fastapi.testclient import TestClient

from gradesheet_ocr.api.app import app
from gradesheet_ocr.correction.corrector import Correction
from gradesheet_ocr.exceptions import (
    ConfigurationError,
    DecodeError,
    ExtractionError,
    ProviderError,
)
from gradesheet_ocr.extraction.models import DetectedMarkTypes
from gradesheet_ocr.pipeline.handoff import build_insertion_plan
from gradesheet_ocr.pipeline.orchestrator import PipelineResult, PipelineState
from gradesheet_ocr.preprocessing.quality import QualityMetrics


@pytest.fixture
def client() -> TestClient:
    """Create a FastAPI test client."""
    return TestClient(app)


def _make_result() -> PipelineResult:
    """Create a finished pipeline result for testing."""
    students = [
        make_student(1, "Ahmed Ali", exam1=15.0, activities=12.0),
        make_student(
            2, "Sara Idrissi", uncertain={"exam1": True}, exam1=15.0, activities=14.0
        ),
    ]
    detected = DetectedMarkTypes(exam1=True, activities=True)
    return PipelineResult(
        students=students,
        detected=detected,
        confidence=0.87,
        state=PipelineState.DONE,
        strategy="standard/document_text_high_accuracy",
        warnings=["Student 2 (Sara Idrissi): exam1 1.5 corrected to 15 (decimal shift)"],
        corrections=[Correction("decimal_shift", 2, "exam1", 1.5, 15.0, 0.8)],
        quality=QualityMetrics(0.8, 0.6, 0.4, 0.1, 0.5, 1200, 0.75),
        applied_enhancements=["contrast_enhancement"],
        intents=build_insertion_plan(students, detected),
    )


def _mock_pipeline(**run_kwargs) -> MagicMock:
    pipeline = MagicMock()
    pipeline.run = AsyncMock(**run_kwargs)
    return pipeline


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_returns_ok(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["provider"] in {"vision", "generative", "tesseract"}
        assert isinstance(data["tesseract_available"], bool)


class TestStrategiesEndpoint:
    """Tests for the /strategies endpoint."""

    def test_list_strategies(self, client: TestClient) -> None:
        response = client.get("/strategies")
        assert response.status_code == 200
        data = response.json()
        priorities = [s["priority"] for s in data["strategies"]]
        assert priorities == sorted(priorities)
        assert data["passes"]

    def test_strategies_have_required_fields(self, client: TestClient) -> None:
        data = client.get("/strategies").json()
        for strategy in data["strategies"]:
            for key in ("name", "min_confidence", "features", "language_hints", "mode"):
                assert key in strategy


class TestExtractEndpoint:
    """Tests for the /extract endpoint."""

    @patch("gradesheet_ocr.api.app._get_pipeline")
    def test_extract_success(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        mock_get.return_value = _mock_pipeline(return_value=_make_result())

        response = client.post(
            "/extract",
            files={"file": ("sheet.png", png_bytes, "image/png")},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [s["name"] for s in data["students"]] == ["Ahmed Ali", "Sara Idrissi"]
        assert data["students"][1]["uncertain"] == {"exam1": True}
        assert data["detected_mark_types"]["exam2"] is False
        assert data["corrections"][0]["kind"] == "decimal_shift"
        assert data["quality"]["resolution"] == 1200
        assert data["accuracy_estimate"] == 100

    @patch("gradesheet_ocr.api.app._get_pipeline")
    def test_extract_passes_context(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        pipeline = _mock_pipeline(return_value=_make_result())
        mock_get.return_value = pipeline

        client.post(
            "/extract",
            files={"file": ("sheet.png", png_bytes, "image/png")},
            data={"expected_count": "28", "reference_names": "Ahmed Ali\n\nSara Idrissi\n"},
        )
        context = pipeline.run.call_args.kwargs["context"]
        assert context.expected_count == 28
        assert context.reference_names == ["Ahmed Ali", "Sara Idrissi"]

    @patch("gradesheet_ocr.api.app._get_pipeline")
    def test_extract_response_schema(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        mock_get.return_value = _mock_pipeline(return_value=_make_result())
        data = client.post(
            "/extract", files={"file": ("sheet.png", png_bytes, "image/png")}
        ).json()
        for key in (
            "extraction_id",
            "students",
            "confidence",
            "strategy",
            "warnings",
            "insertion_plan",
            "processing_time_ms",
        ):
            assert key in data
        assert len(data["insertion_plan"]) == 10

    def test_extract_unsupported_file_type(self, client: TestClient) -> None:
        response = client.post(
            "/extract",
            files={"file": ("notes.txt", b"plain text", "text/plain")},
        )
        assert response.status_code == 400

    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (DecodeError("not an image"), 422),
            (ExtractionError("no students"), 422),
            (ProviderError("quota exceeded", status=429), 500),
        ],
    )
    @patch("gradesheet_ocr.api.app._get_pipeline")
    def test_extract_errors(
        self,
        mock_get: MagicMock,
        error: Exception,
        status: int,
        client: TestClient,
        png_bytes: bytes,
    ) -> None:
        mock_get.return_value = _mock_pipeline(side_effect=error)
        response = client.post(
            "/extract", files={"file": ("sheet.png", png_bytes, "image/png")}
        )
        assert response.status_code == status

    @patch("gradesheet_ocr.api.app._get_pipeline")
    def test_extract_misconfigured(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        mock_get.side_effect = ConfigurationError("missing API key")
        response = client.post(
            "/extract", files={"file": ("sheet.png", png_bytes, "image/png")}
        )
        assert response.status_code == 500
        assert "missing API key" in response.json()["detail"]
