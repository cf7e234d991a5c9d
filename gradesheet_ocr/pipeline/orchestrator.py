"""End-to-end gradesheet extraction pipeline.

Coordinates preprocessing passes, recognition strategies, fusion,
correction and the spreadsheet hand-off for one image at a time, with
progress reporting and cooperative cancellation.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from gradesheet_ocr.correction.corrector import (
    Correction,
    CorrectionContext,
    IntelligentTextCorrector,
)
from gradesheet_ocr.exceptions import CancellationError, ExtractionError, ProviderError
from gradesheet_ocr.extraction.fusion import fuse_results
from gradesheet_ocr.extraction.models import DetectedMarkTypes, ExtractionResult, Student
from gradesheet_ocr.extraction.scoring import score_result
from gradesheet_ocr.extraction.student_builder import (
    BuildOutcome,
    StudentBuilder,
    post_process_students,
)
from gradesheet_ocr.extraction.table_analyzer import TableStructureAnalyzer
from gradesheet_ocr.ocr.factory import create_provider
from gradesheet_ocr.ocr.layout import response_to_lines
from gradesheet_ocr.ocr.provider import OCRProvider, ProviderResponse
from gradesheet_ocr.preprocessing.cache import ImageCache
from gradesheet_ocr.preprocessing.pipeline import ImagePreprocessor, PreprocessedImage
from gradesheet_ocr.preprocessing.quality import QualityMetrics
from gradesheet_ocr.utils.cancellation import CancellationToken
from gradesheet_ocr.utils.config import AppConfig, PassConfig, StrategyConfig
from gradesheet_ocr.utils.logger import get_logger

from .handoff import InsertionIntent, SpreadsheetAdapter, build_insertion_plan
from .thresholds import ThresholdAdjustment, adapt_thresholds, image_quality_score

logger = get_logger(__name__)

ProgressCallback = Callable[[str, int], None]

STRUCTURED_TOKEN_CONFIDENCE = 0.8
EXTRACT_START = 20
EXTRACT_END = 70


class PipelineState(StrEnum):
    """Lifecycle of one pipeline invocation."""

    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    EXTRACTING = "extracting"
    FUSING = "fusing"
    CORRECTING = "correcting"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class PassTrace:
    """What happened during one preprocessing pass."""

    name: str
    applied_enhancements: list[str] = field(default_factory=list)
    strategies: list[str] = field(default_factory=list)
    best_confidence: float = 0.0
    succeeded: bool = False
    thresholds: list[ThresholdAdjustment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "applied_enhancements": self.applied_enhancements,
            "strategies": self.strategies,
            "best_confidence": round(self.best_confidence, 3),
            "succeeded": self.succeeded,
            "thresholds": [t.to_dict() for t in self.thresholds],
        }


@dataclass
class PipelineResult:
    """Final output of a successful invocation."""

    students: list[Student]
    detected: DetectedMarkTypes
    confidence: float
    state: PipelineState
    strategy: str = ""
    warnings: list[str] = field(default_factory=list)
    corrections: list[Correction] = field(default_factory=list)
    quality: QualityMetrics | None = None
    applied_enhancements: list[str] = field(default_factory=list)
    passes: list[PassTrace] = field(default_factory=list)
    intents: list[InsertionIntent] = field(default_factory=list)
    processing_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "students": [s.to_dict() for s in self.students],
            "detected_mark_types": self.detected.to_dict(),
            "confidence": round(self.confidence, 3),
            "state": self.state.value,
            "strategy": self.strategy,
            "warnings": self.warnings,
            "corrections": [c.to_dict() for c in self.corrections],
            "quality": self.quality.to_dict() if self.quality else None,
            "applied_enhancements": self.applied_enhancements,
            "passes": [p.to_dict() for p in self.passes],
            "insertion_plan": [i.to_dict() for i in self.intents],
            "processing_time": round(self.processing_time, 3),
        }


class _Progress:
    """Forwards progress to the caller, never letting the percentage drop."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self.callback = callback
        self.percent = 0

    def __call__(self, label: str, percent: int) -> None:
        self.percent = max(self.percent, min(100, int(percent)))
        if self.callback is not None:
            self.callback(label, self.percent)


@dataclass
class _Attempt:
    result: ExtractionResult
    succeeded: bool


class GradesheetPipeline:
    """Orchestrates extraction of one gradesheet image.

    Args:
        config: Application configuration.
        provider: Recognition backend; built from ``config.ocr`` when
            omitted.
        cache: Shared preprocessing cache.
        corrector: Name and mark corrector.
        spreadsheet: Optional writer invoked after a successful run.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        provider: OCRProvider | None = None,
        cache: ImageCache | None = None,
        corrector: IntelligentTextCorrector | None = None,
        spreadsheet: SpreadsheetAdapter | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.provider = provider if provider is not None else create_provider(self.config)
        self.cache = cache if cache is not None else ImageCache(
            self.config.cache.capacity, self.config.cache.ttl_seconds
        )
        self.preprocessor = ImagePreprocessor(self.cache)
        self.corrector = corrector or IntelligentTextCorrector(self.config.correction)
        self.spreadsheet = spreadsheet
        self.analyzer = TableStructureAnalyzer()
        self.builder = StudentBuilder()
        self.state = PipelineState.IDLE
        self._token: CancellationToken | None = None

    def cancel(self) -> None:
        """Cancel the invocation currently in progress, if any."""
        if self._token is not None:
            self._token.cancel()

    def run_sync(
        self,
        image_bytes: bytes,
        on_progress: ProgressCallback | None = None,
        context: CorrectionContext | None = None,
    ) -> PipelineResult:
        """Blocking wrapper around ``run`` for synchronous callers."""
        return asyncio.run(self.run(image_bytes, on_progress=on_progress, context=context))

    async def run(
        self,
        image_bytes: bytes,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        context: CorrectionContext | None = None,
    ) -> PipelineResult:
        """Extract students and marks from a gradesheet image.

        Args:
            image_bytes: Encoded gradesheet photograph.
            token: Cancellation token; a fresh one is created per call
                when omitted.
            on_progress: Called with a stage label and a percentage that
                never decreases.
            context: Roster and expected class size for correction.

        Returns:
            The corrected, post-processed result.

        Raises:
            DecodeError: If the image cannot be decoded.
            ExtractionError: If no strategy in any pass found students.
            CancellationError: If the token was cancelled. No partial
                result is returned and the spreadsheet is not written.
        """
        token = token or CancellationToken()
        self._token = token
        progress = _Progress(on_progress)
        started = time.perf_counter()
        try:
            return await self._run(image_bytes, token, progress, context, started)
        except CancellationError:
            self.state = PipelineState.CANCELLED
            logger.info("Extraction cancelled")
            raise
        finally:
            self._token = None

    async def _run(
        self,
        image_bytes: bytes,
        token: CancellationToken,
        progress: _Progress,
        context: CorrectionContext | None,
        started: float,
    ) -> PipelineResult:
        self._set_state(PipelineState.PREPROCESSING)
        progress("preprocessing", 10)
        token.raise_if_cancelled()

        passes = self.config.passes or [
            PassConfig(name="default", preprocessing=self.config.preprocessing)
        ]
        strategies = sorted(self.config.strategies, key=lambda s: s.priority)
        total_steps = max(1, len(passes) * len(strategies))

        attempts: list[_Attempt] = []
        traces: list[PassTrace] = []
        warnings: list[str] = []
        quality: QualityMetrics | None = None
        applied: list[str] = []
        steps_done = 0

        for pass_config in passes:
            token.raise_if_cancelled()
            prepared: PreprocessedImage = await token.run(
                asyncio.to_thread(
                    self.preprocessor.preprocess, image_bytes, pass_config.preprocessing
                )
            )
            if quality is None:
                quality, applied = prepared.quality, list(prepared.applied_enhancements)
                self._set_state(PipelineState.EXTRACTING)
                progress("extracting", EXTRACT_START)

            trace = PassTrace(pass_config.name, list(prepared.applied_enhancements))
            traces.append(trace)
            pass_threshold, thresholds = self._thresholds(
                pass_config, strategies, prepared, trace
            )

            def step_done() -> None:
                nonlocal steps_done
                steps_done += 1
                span = EXTRACT_END - EXTRACT_START
                progress("extracting", EXTRACT_START + span * steps_done // total_steps)

            pass_attempts, early_exit = await self._run_strategies(
                prepared, strategies, thresholds, pass_config, token, warnings, step_done
            )
            attempts.extend(pass_attempts)
            trace.strategies = [a.result.strategy for a in pass_attempts]
            trace.best_confidence = max(
                (a.result.confidence for a in pass_attempts), default=0.0
            )
            trace.succeeded = any(
                a.result.students and a.result.confidence >= pass_threshold
                for a in pass_attempts
            )
            logger.info(
                "Pass %s: %d results, best confidence %.2f",
                pass_config.name,
                len(pass_attempts),
                trace.best_confidence,
            )
            if early_exit or trace.succeeded:
                break

        progress("extracting", EXTRACT_END)
        token.raise_if_cancelled()

        with_data = [a for a in attempts if a.result.students]
        if not with_data:
            self._set_state(PipelineState.FAILED)
            raise ExtractionError(
                f"No students found after {len(attempts)} recognition attempts"
            )
        successful = [a.result for a in with_data if a.succeeded]
        chosen = successful or [a.result for a in with_data]
        if not successful:
            warnings.append("No strategy reached its confidence threshold; fusing all results")

        self._set_state(PipelineState.FUSING)
        progress("fusing", 80)
        fused = fuse_results(chosen, self.config.pipeline.fuzzy_match_threshold)
        token.raise_if_cancelled()

        self._set_state(PipelineState.CORRECTING)
        progress("correcting", 90)
        outcome = self.corrector.correct(fused.students, fused.detected, context)
        students = post_process_students(outcome.students)
        token.raise_if_cancelled()

        intents = build_insertion_plan(students, outcome.detected)
        result = PipelineResult(
            students=students,
            detected=outcome.detected,
            confidence=fused.confidence,
            state=PipelineState.DONE,
            strategy=fused.strategy,
            warnings=list(dict.fromkeys(warnings + fused.warnings + outcome.warnings)),
            corrections=outcome.corrections,
            quality=quality,
            applied_enhancements=applied,
            passes=traces,
            intents=intents,
            processing_time=time.perf_counter() - started,
        )
        self._set_state(PipelineState.DONE)
        progress("done", 100)

        if self.spreadsheet is not None:
            self.spreadsheet.write(students, outcome.detected, intents)
        logger.info(
            "Extracted %d students (confidence %.2f) in %.2fs",
            len(students),
            result.confidence,
            result.processing_time,
        )
        return result

    def _thresholds(
        self,
        pass_config: PassConfig,
        strategies: list[StrategyConfig],
        prepared: PreprocessedImage,
        trace: PassTrace,
    ) -> tuple[float, dict[str, float]]:
        """Acceptance thresholds for one pass and each of its strategies."""
        if not self.config.pipeline.adaptive_thresholds:
            return pass_config.min_confidence, {s.name: s.min_confidence for s in strategies}
        quality = image_quality_score(prepared, self.config.pipeline.default_image_quality)
        adjustments = adapt_thresholds(pass_config, strategies, quality)
        trace.thresholds = adjustments
        return adjustments[0].adjusted, {a.target: a.adjusted for a in adjustments[1:]}

    async def _run_strategies(
        self,
        prepared: PreprocessedImage,
        strategies: list[StrategyConfig],
        thresholds: dict[str, float],
        pass_config: PassConfig,
        token: CancellationToken,
        warnings: list[str],
        step_done: Callable[[], None],
    ) -> tuple[list[_Attempt], bool]:
        """Run every strategy of one pass.

        Returns:
            The attempts that produced a result, and whether the early
            exit confidence was reached.
        """
        early_exit_at = self.config.pipeline.early_exit_confidence
        attempts: list[_Attempt] = []

        if self.config.pipeline.execution_mode == "parallel":
            outcomes = await token.run(
                asyncio.gather(
                    *(
                        self._run_strategy(prepared, s, pass_config.name, token)
                        for s in strategies
                    ),
                    return_exceptions=True,
                )
            )
            for strategy, outcome in zip(strategies, outcomes):
                step_done()
                if isinstance(outcome, CancellationError):
                    raise outcome
                if isinstance(outcome, ProviderError):
                    self._record_failure(strategy, pass_config, outcome, warnings)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                attempts.append(
                    _Attempt(outcome, outcome.confidence >= thresholds[strategy.name])
                )
            early = any(
                a.result.students and a.result.confidence > early_exit_at for a in attempts
            )
            return attempts, early

        for strategy in strategies:
            token.raise_if_cancelled()
            try:
                result = await self._run_strategy(prepared, strategy, pass_config.name, token)
            except ProviderError as exc:
                self._record_failure(strategy, pass_config, exc, warnings)
                step_done()
                continue
            step_done()
            attempts.append(_Attempt(result, result.confidence >= thresholds[strategy.name]))
            if result.students and result.confidence > early_exit_at:
                logger.info(
                    "Early exit: %s reached confidence %.2f",
                    result.strategy,
                    result.confidence,
                )
                return attempts, True
        return attempts, False

    async def _run_strategy(
        self,
        prepared: PreprocessedImage,
        strategy: StrategyConfig,
        pass_name: str,
        token: CancellationToken,
    ) -> ExtractionResult:
        """Recognize the image with one strategy and score the result."""
        strategy = strategy.model_copy(deep=True)
        started = time.perf_counter()
        response = await token.run(
            self.provider.submit(prepared.image_bytes, strategy, token)
        )
        outcome = self.response_to_students(response)

        token_confidence = (
            response.average_confidence
            if response.text_blocks
            else STRUCTURED_TOKEN_CONFIDENCE
        )
        quality = image_quality_score(
            prepared, self.config.pipeline.default_image_quality
        )
        confidence = score_result(
            outcome.students, outcome.detected, token_confidence, quality
        )
        logger.debug(
            "Strategy %s/%s: %d students, confidence %.2f",
            pass_name,
            strategy.name,
            len(outcome.students),
            confidence,
        )
        return ExtractionResult(
            students=outcome.students,
            detected=outcome.detected,
            confidence=confidence,
            strategy=f"{pass_name}/{strategy.name}",
            priority=strategy.priority,
            processing_time=time.perf_counter() - started,
            warnings=outcome.warnings,
            raw_text=response.raw_full_text or "",
        )

    def response_to_students(self, response: ProviderResponse) -> BuildOutcome:
        """Turn a provider response into students and detected types."""
        if response.structured is not None:
            return self.builder.from_structured(response.structured)
        lines = response_to_lines(response)
        return self.builder.build(self.analyzer.analyze(lines))

    def _record_failure(
        self,
        strategy: StrategyConfig,
        pass_config: PassConfig,
        error: ProviderError,
        warnings: list[str],
    ) -> None:
        logger.warning(
            "Strategy %s failed in pass %s: %s", strategy.name, pass_config.name, error
        )
        warnings.append(f"Strategy {strategy.name} failed in pass {pass_config.name}: {error}")

    def _set_state(self, state: PipelineState) -> None:
        logger.debug("Pipeline state %s -> %s", self.state.value, state.value)
        self.state = state
