"""
Tests for the compression pipeline.

Run with: python -m pytest contextpress/tests/test_pipeline.py -v
"""

import pytest
from pydantic import ValidationError

from contextpress.classifier import ImportanceClassifier
from contextpress.errors import StrategyNotFound
from contextpress.metrics import CompressionMetrics, MeasurementStore
from contextpress.pipeline import CompressionOptions, CompressionResult, ContextCompressor
from contextpress.tokens import count_tokens

DOC = """# Project Context

This document tracks the current state of the parser rewrite.

## Goal
Deliver a streaming parser that must handle files larger than memory.

## Requirements
- [ ] Parse 1GB files with constant memory
- [ ] Keep error messages compatible with the old parser
- [x] Benchmark harness in place

## Architecture
The tokenizer feeds a pull-based event stream. The tree builder consumes events lazily.
Backpressure is handled by bounded queues between stages.

## Notes
Some loose thoughts about naming. We might rename the event types later.
Nothing here is decided yet, and most of it can wait until the next iteration.

## History
[2020-03-01 09:00] Initial prototype written in a weekend.
[2020-04-12 17:30] Prototype abandoned after the memory blowup.
The prototype used a recursive descent approach that loaded everything at once.
"""


@pytest.fixture
def compressor():
    return ContextCompressor(classifier=ImportanceClassifier(reference_year=2026))


class TestCompressBasics:
    """Result shape and invariants."""

    def test_empty_input(self, compressor):
        result = compressor.compress("")
        assert result.success
        assert result.original_tokens == 0
        assert result.compressed_tokens == 0
        assert result.compression_ratio == 0

    def test_ratio_formula(self, compressor):
        result = compressor.compress(DOC)
        expected = round((result.original_tokens - result.compressed_tokens) / result.original_tokens * 100, 2)
        assert result.compression_ratio == expected
        assert result.tokens_reduced == result.original_tokens - result.compressed_tokens
        assert result.original_tokens == count_tokens(DOC)
        assert result.compressed_tokens == count_tokens(result.compressed)

    @pytest.mark.parametrize("strategy", ["aggressive", "balanced", "minimal"])
    def test_never_expands(self, compressor, strategy):
        result = compressor.compress(DOC, {"strategy": strategy})
        assert result.success
        assert result.compressed_tokens <= result.original_tokens
        assert result.strategy == strategy

    def test_deterministic(self, compressor):
        assert compressor.compress(DOC).compressed == compressor.compress(DOC).compressed

    def test_overrides_as_keywords(self, compressor):
        assert compressor.compress(DOC, strategy="minimal").strategy == "minimal"

    def test_options_model_accepted(self, compressor):
        result = compressor.compress(DOC, CompressionOptions(strategy="aggressive"))
        assert result.strategy == "aggressive"

    def test_metadata_fields(self, compressor):
        result = compressor.compress(DOC)
        assert result.metadata["compression_id"].startswith("comp_")
        assert "timestamp" in result.metadata
        stages = [s["name"] for s in result.metadata["pipeline_stages"]]
        assert stages == [
            "token_analysis", "importance_analysis", "normalization", "filtering",
            "summarization", "strategy_compression", "validation",
        ]

    def test_metadata_can_be_reduced(self, compressor):
        result = compressor.compress(DOC, generate_metadata=False)
        assert "compression_id" not in result.metadata
        assert "pipeline_stages" not in result.metadata

    def test_minimal_skips_filtering_and_summarization(self, compressor):
        result = compressor.compress(DOC, {"strategy": "minimal"})
        stages = [s["name"] for s in result.metadata["pipeline_stages"]]
        assert "filtering" not in stages
        assert "summarization" not in stages

    def test_normalization_can_be_disabled(self, compressor):
        result = compressor.compress(DOC, enable_normalization=False)
        stages = [s["name"] for s in result.metadata["pipeline_stages"]]
        assert "normalization" not in stages


class TestConfigurationErrors:
    """Configuration mistakes raise."""

    def test_unknown_strategy_raises_before_any_stage(self, compressor, monkeypatch):
        calls = []
        monkeypatch.setattr(compressor, "stages", lambda ctx: calls.append(ctx) or [])
        with pytest.raises(StrategyNotFound):
            compressor.compress(DOC, {"strategy": "ultra"})
        assert calls == []

    def test_strategy_info(self, compressor):
        info = compressor.get_strategy_info("aggressive")
        assert info["name"] == "aggressive"
        assert info["target_ratio"] == 0.4
        assert info["min_importance"] == "high"

    def test_strategy_info_unknown(self, compressor):
        with pytest.raises(StrategyNotFound):
            compressor.get_strategy_info("turbo")

    def test_unknown_summarization_strategy(self, compressor):
        with pytest.raises(StrategyNotFound):
            compressor.compress(DOC, summarization_strategy="neural")

    @pytest.mark.parametrize("options", [
        {"target_ratio": 5},
        {"target_ratio": 0},
        {"max_tokens": 0},
    ])
    def test_invalid_option_values(self, compressor, options):
        with pytest.raises(ValidationError):
            compressor.compress(DOC, options)

    def test_invalid_min_importance(self, compressor):
        with pytest.raises(ValueError):
            compressor.compress(DOC, min_importance="urgent")


class TestFailSafe:
    """Content problems never raise."""

    @pytest.mark.parametrize("content", [None, 42, b"bytes"])
    def test_non_string_input(self, compressor, content):
        result = compressor.compress(content)
        assert not result.success
        assert result.compressed == result.original
        assert result.error

    def test_failed_stage_is_recorded_and_skipped(self, compressor, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("summarizer exploded")

        monkeypatch.setattr(compressor.summarizer, "summarize", boom)
        result = compressor.compress(DOC, {"strategy": "balanced"})
        assert result.success
        record = [s for s in result.metadata["pipeline_stages"] if s["name"] == "summarization"][0]
        assert record["success"] is False
        assert "summarizer exploded" in record["error"]
        later = [s for s in result.metadata["pipeline_stages"] if s["name"] == "strategy_compression"][0]
        assert later["success"] is True

    def test_unexpected_error_returns_original(self, compressor, monkeypatch):
        def broken(ctx):
            raise RuntimeError("stage list unavailable")

        monkeypatch.setattr(compressor, "stages", broken)
        result = compressor.compress(DOC)
        assert not result.success
        assert result.compressed == DOC
        assert result.compression_ratio == 0.0
        assert "stage list unavailable" in result.error


class TestTokenBudget:
    """max_tokens is a hard upper bound."""

    @pytest.mark.parametrize("strategy", ["aggressive", "balanced", "minimal"])
    @pytest.mark.parametrize("max_tokens", [10, 40, 90])
    def test_budget_respected(self, compressor, strategy, max_tokens):
        result = compressor.compress(DOC, {"strategy": strategy, "max_tokens": max_tokens})
        assert result.success
        assert result.compressed_tokens <= max_tokens

    def test_budget_overrides_disabled_filtering(self, compressor):
        result = compressor.compress(DOC, {"strategy": "minimal", "max_tokens": 40, "enable_filtering": False})
        assert result.compressed_tokens <= 40
        assert "filtering" in [s["name"] for s in result.metadata["pipeline_stages"]]

    def test_budget_overrun_is_warned(self, compressor, monkeypatch):
        # A failing filter leaves the document over budget
        def broken_filter(*args, **kwargs):
            raise RuntimeError("filter unavailable")

        monkeypatch.setattr(compressor.filter, "filter", broken_filter)
        result = compressor.compress(DOC, {"strategy": "minimal", "max_tokens": 10})
        assert result.compressed_tokens > 10
        assert any("exceeds max_tokens (10)" in w for w in result.warnings)


class TestValidation:
    """Validation stage output."""

    def test_quality_score_in_range(self, compressor):
        validation = compressor.compress(DOC).metadata["validation"]
        assert 0 <= validation["quality_score"] <= 100

    def test_aggressive_ratio_in_band_or_warned(self, compressor):
        result = compressor.compress(DOC, {"strategy": "aggressive"})
        in_band = 50 <= result.compression_ratio <= 70
        assert in_band or any("aggressive target range" in w for w in result.warnings)

    def test_empty_output_is_an_error(self, compressor):
        result = compressor.compress(DOC, {"strategy": "balanced", "max_tokens": 1})
        validation = result.metadata["validation"]
        if not result.compressed.strip():
            assert not validation["is_valid"]
            assert validation["errors"]


class TestDecompress:
    """Best-effort decompression."""

    def test_uses_recorded_strategy(self, compressor):
        result = compressor.compress(DOC, {"strategy": "balanced"})
        restored = compressor.decompress(result.compressed, result.metadata)
        assert restored.success
        assert restored.strategy == "balanced"
        assert "[condensed]" not in restored.decompressed

    def test_unknown_strategy_falls_back(self, compressor):
        restored = compressor.decompress("text", {"strategy_compression": {"strategy": "gone"}})
        assert not restored.success
        assert restored.strategy == "fallback"
        assert restored.decompressed == "text"

    def test_non_string_falls_back(self, compressor):
        restored = compressor.decompress(None, {})
        assert not restored.success


class TestConcurrency:
    """compress_many and injected metrics."""

    def test_compress_many_keeps_order(self, compressor):
        docs = [DOC, DOC.replace("parser", "lexer"), "", "# Tiny\nsmall body text"]
        results = compressor.compress_many(docs, {"strategy": "balanced"}, max_workers=4)
        assert [r.original for r in results] == docs
        assert all(isinstance(r, CompressionResult) for r in results)
        assert results[0].compressed == compressor.compress(DOC, {"strategy": "balanced"}).compressed

    def test_compress_many_validates_first(self, compressor):
        with pytest.raises(StrategyNotFound):
            compressor.compress_many([DOC], {"strategy": "ultra"})

    def test_compress_many_empty(self, compressor):
        assert compressor.compress_many([]) == []

    def test_measurements_recorded(self):
        store = MeasurementStore()
        compressor = ContextCompressor(metrics=CompressionMetrics(store))
        results = compressor.compress_many([DOC] * 6, max_workers=3)
        assert len(store) == 6
        ids = {r.metadata["measurement_id"] for r in results}
        assert len(ids) == 6
