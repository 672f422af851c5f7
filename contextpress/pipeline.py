"""
Compression pipeline.

ContextCompressor runs a document through an ordered list of stages:

    token_analysis -> importance_analysis -> normalization -> filtering
        -> summarization -> strategy_compression -> validation

Each stage returns StageOk(content, metadata) or StageFailed(error, metadata).
A failed stage is recorded and the previous content is carried forward, so
one broken stage never loses the document.

Public API:
    ContextCompressor().compress(content, options=None, **overrides) -> CompressionResult
    ContextCompressor().decompress(compressed, metadata) -> DecompressionResult
    ContextCompressor().compress_many(documents, options=None, max_workers=...) -> List[CompressionResult]
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from .classifier import IMPORTANCE_RANK, ImportanceClassifier
from .config import DEFAULT_ENCODING, DEFAULT_MAX_WORKERS, DEFAULT_STRATEGY
from .errors import InvalidInput, StageFailure, StrategyNotFound
from .filter import InformationFilter
from .normalizer import ContentNormalizer
from .strategies import STRATEGIES, CompressionStrategy, get_strategy
from .summarizer import STRATEGIES as SUMMARY_STRATEGIES, TextSummarizer
from .tokens import analyze_token_distribution, get_token_counter

logger = logging.getLogger(__name__)

# =============================================================================
# Options & Results
# =============================================================================

class CompressionOptions(BaseModel):
    """Per-call options. Unset toggles fall back to the strategy's defaults."""

    strategy: str = DEFAULT_STRATEGY
    target_ratio: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    preserve_structure: Optional[bool] = None
    enable_summarization: Optional[bool] = None
    enable_normalization: bool = True
    enable_filtering: Optional[bool] = None
    min_importance: Optional[str] = None
    custom_filters: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    generate_metadata: bool = True
    summarization_strategy: str = "extractive"


@dataclass
class StageOk:
    content: str
    metadata: Dict[str, Any]


@dataclass
class StageFailed:
    error: StageFailure
    metadata: Dict[str, Any]


StageOutcome = Union[StageOk, StageFailed]


@dataclass
class StageRecord:
    name: str
    duration: float
    success: bool
    tokens_after: Optional[int] = None
    error: Optional[str] = None


@dataclass
class CompressionResult:
    original: str
    compressed: str
    original_tokens: int
    compressed_tokens: int
    compression_ratio: float
    tokens_reduced: int
    strategy: str
    processing_time: float
    success: bool
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def warnings(self) -> List[str]:
        return list(self.metadata.get("validation", {}).get("warnings", []))


@dataclass
class DecompressionResult:
    compressed: str
    decompressed: str
    strategy: str
    processing_time: float
    success: bool
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def compression_ratio(original_tokens: int, compressed_tokens: int) -> float:
    """Percent of tokens removed; 0 for empty input."""
    if original_tokens <= 0:
        return 0.0
    return round((original_tokens - compressed_tokens) / original_tokens * 100, 2)


# =============================================================================
# Context
# =============================================================================

@dataclass
class RunContext:
    """Resolved settings for one compress() call."""
    options: CompressionOptions
    strategy: CompressionStrategy
    target_ratio: float
    preserve_structure: bool
    enable_summarization: bool
    enable_filtering: bool
    min_importance: str


Stage = Tuple[str, Callable[[str, Dict[str, Any], RunContext], StageOutcome]]


class ContextCompressor:
    """Multi-stage document compressor."""

    def __init__(
        self,
        encoding: str = DEFAULT_ENCODING,
        classifier: Optional[ImportanceClassifier] = None,
        metrics=None,
    ):
        self.encoding = encoding
        self.token_counter = get_token_counter(encoding)
        self.classifier = classifier or ImportanceClassifier(encoding=encoding)
        self.normalizer = ContentNormalizer()
        self.filter = InformationFilter(self.classifier, encoding=encoding)
        self.summarizer = TextSummarizer(encoding=encoding)
        self.metrics = metrics

    # =========================================================================
    # Setup
    # =========================================================================

    def _resolve(self, options: Union[CompressionOptions, Dict[str, Any], None], overrides: Dict[str, Any]) -> RunContext:
        if isinstance(options, CompressionOptions):
            opts = CompressionOptions(**{**options.model_dump(), **overrides}) if overrides else options
        else:
            opts = CompressionOptions(**{**(options or {}), **overrides})

        if opts.strategy not in STRATEGIES:
            raise StrategyNotFound(opts.strategy, STRATEGIES)
        if opts.summarization_strategy not in SUMMARY_STRATEGIES:
            raise StrategyNotFound(opts.summarization_strategy, SUMMARY_STRATEGIES)
        if opts.min_importance is not None and opts.min_importance not in IMPORTANCE_RANK:
            raise ValueError(f"Unknown min_importance: {opts.min_importance!r}")

        strategy = get_strategy(opts.strategy, classifier=self.classifier)

        def pick(value, default):
            return default if value is None else value

        return RunContext(
            options=opts,
            strategy=strategy,
            target_ratio=pick(opts.target_ratio, strategy.target_ratio),
            preserve_structure=pick(opts.preserve_structure, strategy.preserve_structure),
            enable_summarization=pick(opts.enable_summarization, strategy.enable_summarization),
            # Token budgets are enforced by the filter, so a budget always turns it on
            enable_filtering=opts.max_tokens is not None or pick(opts.enable_filtering, strategy.enable_filtering),
            min_importance=pick(opts.min_importance, strategy.min_importance),
        )

    def stages(self, ctx: RunContext) -> List[Stage]:
        """Ordered stage list for a run; disabled stages are left out."""
        stages: List[Stage] = [
            ("token_analysis", self._token_analysis),
            ("importance_analysis", self._importance_analysis),
        ]
        if ctx.options.enable_normalization:
            stages.append(("normalization", self._normalization))
        if ctx.enable_filtering:
            stages.append(("filtering", self._filtering))
        if ctx.enable_summarization:
            stages.append(("summarization", self._summarization))
        stages.append(("strategy_compression", self._strategy_compression))
        stages.append(("validation", self._validation))
        return stages

    # =========================================================================
    # Stages
    # =========================================================================

    def _token_analysis(self, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        distribution = analyze_token_distribution(content, self.encoding)
        return StageOk(content, {**metadata, "token_analysis": {
            "total_tokens": self.token_counter.count(content),
            "distribution": [{k: v for k, v in d.items() if k != "content"} for d in distribution],
        }})

    def _importance_analysis(self, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        analysis = self.classifier.analyze_importance(content)
        return StageOk(content, {**metadata, "importance_analysis": {
            "summary": analysis.summary,
            "recommendations": analysis.recommendations,
            "sections": [
                {"name": s.name, "importance": s.importance, "score": s.score, "tokens": s.tokens,
                 "body_head": s.body[:50]}
                for s in analysis.sections
            ],
        }})

    def _normalization(self, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        result = self.normalizer.normalize(content)
        return StageOk(result.normalized, {**metadata, "normalization": result.metadata})

    def _filtering(self, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        result = self.filter.filter(
            content,
            min_importance=ctx.min_importance,
            max_tokens=ctx.options.max_tokens,
            preserve_structure=ctx.preserve_structure,
            custom_rules=ctx.options.custom_filters,
            include_metadata=False,
        )
        return StageOk(result.filtered, {**metadata, "filtering": {
            "sections_processed": result.sections_processed,
            "sections_preserved": result.sections_preserved,
            "sections_compressed": result.sections_compressed,
            "sections_removed": result.sections_removed,
            "compression_ratio": result.compression_ratio,
            "decisions": [vars(d).copy() for d in result.decisions],
        }})

    def _summarization(self, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        result = self.summarizer.summarize(content, ctx.target_ratio, ctx.options.summarization_strategy)
        if not result.summary or result.summary_tokens >= result.original_tokens:
            # Nothing gained; keep the input
            return StageOk(content, {**metadata, "summarization": {**result.metadata, "applied": False}})
        return StageOk(result.summary, {**metadata, "summarization": {
            **result.metadata,
            "applied": True,
            "key_points": result.key_points,
            "compression_ratio": result.compression_ratio,
        }})

    def _strategy_compression(self, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        outcome = ctx.strategy.compress(content)
        compressed = outcome.content
        if self.token_counter.count(compressed) > self.token_counter.count(content):
            compressed = content
        max_tokens = ctx.options.max_tokens
        if max_tokens is not None and self.token_counter.count(compressed) > max_tokens:
            compressed = content
        return StageOk(compressed, {**metadata, "strategy_compression": outcome.metadata})

    def _validation(self, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        return StageOk(content, {**metadata, "validation": self.validate(metadata.get("_original", ""), content, metadata, ctx)})

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, original: str, compressed: str, metadata: Dict[str, Any], ctx: RunContext) -> Dict[str, Any]:
        """Quality score (0-100) plus warnings and errors for a run."""
        errors: List[str] = []
        warnings: List[str] = []
        if not compressed.strip():
            errors.append("Compressed content is empty")

        compressed_tokens = self.token_counter.count(compressed)
        max_tokens = ctx.options.max_tokens
        if max_tokens is not None and compressed_tokens > max_tokens:
            warnings.append(f"Compressed content ({compressed_tokens} tokens) exceeds max_tokens ({max_tokens})")

        ratio = compression_ratio(self.token_counter.count(original), compressed_tokens)
        if ratio < 5:
            warnings.append(f"Compression ratio is very low ({ratio:.1f}%)")
        elif ratio > 90:
            warnings.append(f"Compression ratio is very high ({ratio:.1f}%); information may be lost")
        low, high = ctx.strategy.reduction_band
        if not low <= ratio <= high:
            warnings.append(
                f"Compression ratio {ratio:.1f}% is outside the {ctx.strategy.name} target range ({low:.0f}-{high:.0f}%)"
            )

        sections = metadata.get("importance_analysis", {}).get("sections", [])
        important = [s for s in sections if s["importance"] in ("critical", "high")]
        lowered = compressed.lower()
        retained = [s for s in important if s["name"].lower() in lowered or (s["body_head"] and s["body_head"].lower() in lowered)]
        lost_critical = [s["name"] for s in important if s["importance"] == "critical" and s not in retained]
        if lost_critical:
            warnings.append(f"Critical sections lost: {', '.join(lost_critical)}")
        preservation = len(retained) / len(important) if important else 1.0

        if 20 <= ratio <= 70:
            score = 40
        elif 10 <= ratio <= 80:
            score = 30
        elif 5 <= ratio <= 90:
            score = 20
        else:
            score = 10
        score += preservation * 30
        strategy_meta = metadata.get("strategy_compression")
        if strategy_meta is None:
            score += 15
        else:
            score += 20 if strategy_meta.get("preserved_sections") else 10
        score += 10

        return {
            "is_valid": not errors,
            "errors": errors,
            "warnings": warnings,
            "quality_score": round(max(0.0, min(100.0, score)), 1),
            "information_preservation": round(preservation * 100, 1),
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def run_stage(self, name: str, stage, content: str, metadata: Dict[str, Any], ctx: RunContext) -> StageOutcome:
        """Run one stage, turning any exception into StageFailed."""
        try:
            return stage(content, metadata, ctx)
        except Exception as exc:
            return StageFailed(StageFailure(name, exc), metadata)

    def compress(
        self,
        content: str,
        options: Union[CompressionOptions, Dict[str, Any], None] = None,
        **overrides,
    ) -> CompressionResult:
        """
        Compress a document.

        Unknown strategy names raise StrategyNotFound before any stage runs.
        Content problems never raise: the result has success=False and the
        original content.
        """
        ctx = self._resolve(options, overrides)
        start = time.perf_counter()
        strategy_name = ctx.strategy.name

        if not isinstance(content, str):
            return self._passthrough("", strategy_name, start, f"content must be a string, got {type(content).__name__}")

        try:
            original_tokens = self.token_counter.count(content)
            if not content.strip():
                return self._finish(content, content, original_tokens, strategy_name, start, {}, ctx)

            metadata: Dict[str, Any] = {"_original": content}
            records: List[StageRecord] = []
            current = content
            for name, stage in self.stages(ctx):
                stage_start = time.perf_counter()
                outcome = self.run_stage(name, stage, current, metadata, ctx)
                duration = (time.perf_counter() - stage_start) * 1000
                if isinstance(outcome, StageOk):
                    current, metadata = outcome.content, outcome.metadata
                    records.append(StageRecord(name, duration, True, self.token_counter.count(current)))
                    logger.debug("Stage %s ok in %.1fms", name, duration)
                else:
                    metadata = outcome.metadata
                    records.append(StageRecord(name, duration, False, error=str(outcome.error)))
                    logger.warning("Stage %s failed: %s", name, outcome.error)

            metadata.pop("_original", None)
            metadata["pipeline_stages"] = [vars(r).copy() for r in records]
            return self._finish(content, current, original_tokens, strategy_name, start, metadata, ctx)
        except Exception as exc:
            logger.warning("Compression failed, returning original: %s", exc)
            return self._passthrough(content, strategy_name, start, str(exc))

    def _finish(
        self,
        original: str,
        compressed: str,
        original_tokens: int,
        strategy: str,
        start: float,
        metadata: Dict[str, Any],
        ctx: RunContext,
    ) -> CompressionResult:
        compressed_tokens = self.token_counter.count(compressed)
        if compressed_tokens > original_tokens:
            compressed, compressed_tokens = original, original_tokens
            metadata["fallback_used"] = True

        processing_time = (time.perf_counter() - start) * 1000
        if ctx.options.generate_metadata:
            metadata.update({
                "compression_id": f"comp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
                "timestamp": datetime.now().isoformat(),
                "options": ctx.options.model_dump(),
            })
        else:
            metadata = {k: metadata[k] for k in ("strategy_compression", "validation", "fallback_used") if k in metadata}

        result = CompressionResult(
            original=original,
            compressed=compressed,
            original_tokens=original_tokens,
            compressed_tokens=compressed_tokens,
            compression_ratio=compression_ratio(original_tokens, compressed_tokens),
            tokens_reduced=original_tokens - compressed_tokens,
            strategy=strategy,
            processing_time=processing_time,
            success=True,
            metadata=metadata,
        )
        _log_token_savings(original_tokens, compressed_tokens, strategy)
        if self.metrics is not None:
            measurement = self.metrics.measure_compression(original, compressed, {
                **metadata, "processing_time": processing_time, "strategy": strategy,
            })
            result.metadata["measurement_id"] = measurement.id
        return result

    def _passthrough(self, content: str, strategy: str, start: float, error: str) -> CompressionResult:
        tokens = self.token_counter.count(content)
        return CompressionResult(
            original=content,
            compressed=content,
            original_tokens=tokens,
            compressed_tokens=tokens,
            compression_ratio=0.0,
            tokens_reduced=0,
            strategy=strategy,
            processing_time=(time.perf_counter() - start) * 1000,
            success=False,
            metadata={"fallback_used": True},
            error=error,
        )

    def decompress(self, compressed: str, metadata: Optional[Dict[str, Any]] = None) -> DecompressionResult:
        """Best-effort reversal using the strategy recorded in metadata; never raises."""
        start = time.perf_counter()
        metadata = metadata or {}
        strategy_name = (metadata.get("strategy_compression") or {}).get("strategy") or metadata.get("strategy") or DEFAULT_STRATEGY
        try:
            if not isinstance(compressed, str):
                raise InvalidInput(f"compressed must be a string, got {type(compressed).__name__}")
            strategy = get_strategy(strategy_name, classifier=self.classifier)
            decompressed = strategy.decompress(compressed)
            return DecompressionResult(
                compressed=compressed,
                decompressed=decompressed,
                strategy=strategy_name,
                processing_time=(time.perf_counter() - start) * 1000,
                success=True,
                metadata={"original_metadata": metadata, "note": "compression is lossy; markers removed only"},
            )
        except Exception as exc:
            logger.warning("Decompression failed, returning input: %s", exc)
            return DecompressionResult(
                compressed=compressed,
                decompressed=compressed,
                strategy="fallback",
                processing_time=(time.perf_counter() - start) * 1000,
                success=False,
                metadata={"original_metadata": metadata},
                error=str(exc),
            )

    def compress_many(
        self,
        documents: List[str],
        options: Union[CompressionOptions, Dict[str, Any], None] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> List[CompressionResult]:
        """Compress documents concurrently; results keep input order."""
        # Configuration errors surface before any document is processed
        self._resolve(options, {})
        if not documents:
            return []
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(documents)))) as executor:
            return list(executor.map(lambda doc: self.compress(doc, options), documents))

    def get_strategy_info(self, name: str) -> Dict[str, Any]:
        return get_strategy(name, classifier=self.classifier).config()


def _log_token_savings(original_tokens: int, compressed_tokens: int, strategy: str) -> None:
    if original_tokens <= 0:
        return
    saved = max(0, original_tokens - compressed_tokens)
    pct = (saved / original_tokens) * 100.0
    logger.info(
        "compress strategy=%s original_tokens=%s compressed_tokens=%s saved=%s (%.1f%%)",
        strategy,
        original_tokens,
        compressed_tokens,
        saved,
        pct,
    )


_default_compressor: Optional[ContextCompressor] = None


def compress(content: str, options: Union[CompressionOptions, Dict[str, Any], None] = None, **overrides) -> CompressionResult:
    """Module-level convenience wrapper around a shared ContextCompressor."""
    global _default_compressor
    if _default_compressor is None:
        _default_compressor = ContextCompressor()
    return _default_compressor.compress(content, options, **overrides)
