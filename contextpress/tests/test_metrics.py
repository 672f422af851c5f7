"""
Tests for compression metrics, benchmarking and export.

Run with: python -m pytest contextpress/tests/test_metrics.py -v
"""

import csv
import io
import json
import threading

import pytest

from contextpress.errors import MeasurementNotFound, UnsupportedFormat
from contextpress.metrics import (
    CompressionMetrics,
    Measurement,
    MeasurementStore,
    grade_metric,
    letter_grade,
)

ORIGINAL = """# Plan

## Goal
Ship the parser rewrite before the deadline.

## Requirements
- Constant memory
- Compatible errors

## Notes
Loose thoughts about naming that can wait.
"""

COMPRESSED = """# Plan

## Goal
Ship the parser rewrite before the deadline.

## Requirements
- Constant memory
"""


@pytest.fixture
def metrics():
    return CompressionMetrics(MeasurementStore())


def _dummy(idx):
    return Measurement(
        id=f"m{idx}", timestamp="t", original="", compressed="", metadata={},
        metrics={"compression": {"original_tokens": 10, "compressed_tokens": 5, "compression_ratio": 50.0}},
        benchmark={},
    )


class TestGrading:
    """Benchmark grading."""

    @pytest.mark.parametrize("value,level", [(75, "excellent"), (50, "good"), (35, "acceptable"), (10, "poor"), (5, "failing")])
    def test_compression_ratio_levels(self, value, level):
        assert grade_metric("compression_ratio", value)["level"] == level

    @pytest.mark.parametrize("value,level", [(200, "excellent"), (2500, "good"), (4000, "acceptable"), (9000, "poor"), (20000, "failing")])
    def test_time_lower_is_better(self, value, level):
        assert grade_metric("compression_time", value)["level"] == level

    @pytest.mark.parametrize("score,grade", [(95, "A"), (90, "A"), (85, "B"), (70, "C"), (60, "D"), (59.9, "F")])
    def test_letter_grade(self, score, grade):
        assert letter_grade(score) == grade


class TestTextMeasures:
    """Readability, coherence, preservation."""

    def test_identical_text_fully_preserved(self, metrics):
        assert metrics.information_preservation(ORIGINAL, ORIGINAL) == 100.0
        assert metrics.structure_preservation(ORIGINAL, ORIGINAL) == 1.0

    def test_empty_compression_loses_everything(self, metrics):
        assert metrics.information_preservation(ORIGINAL, "") <= 10

    def test_readability_short_sentences(self, metrics):
        assert metrics.readability_score("The cat sat. The dog ran.") == 100.0

    def test_readability_long_words(self, metrics):
        assert metrics.readability_score("Internationalization considerations.") == 80.0

    def test_coherence_penalizes_level_skips(self, metrics):
        assert metrics.coherence_score("# A\n### C") == 95.0

    def test_coherence_penalizes_blank_runs(self, metrics):
        assert metrics.coherence_score("a\n\n\nb") == 98.0

    def test_completeness(self, metrics):
        assert metrics.completeness_score("goal and task", "goal only") == 50.0
        assert metrics.completeness_score("nothing special", "") == 100.0


class TestMeasure:
    """measure_compression."""

    def test_records_measurement(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED, {"processing_time": 12.0})
        assert measurement.id.startswith("metric_")
        assert len(metrics.store) == 1
        assert metrics.get_measurement(measurement.id) is measurement

    def test_metric_groups(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED)
        assert set(measurement.metrics) == {"compression", "performance", "quality", "efficiency"}
        compression = measurement.metrics["compression"]
        assert compression["compression_ratio"] > 0
        assert compression["original_size"] == len(ORIGINAL.encode("utf-8"))

    def test_benchmark_has_grade(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED)
        assert measurement.benchmark["overall_grade"] in {"A", "B", "C", "D", "F"}
        assert "performance" not in measurement.benchmark["categories"]

    def test_stage_analysis(self, metrics):
        stages = [
            {"name": "filtering", "duration": 2.0, "success": True, "tokens_after": 40},
            {"name": "summarization", "duration": 5.0, "success": False, "error": "boom"},
        ]
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED, {"pipeline_stages": stages, "processing_time": 8.0})
        analysis = measurement.metrics["performance"]["stage_analysis"]
        assert analysis["slowest_stage"] == "summarization"
        assert analysis["failed_stages"] == ["summarization"]

    def test_first_measurement_has_no_trend(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED)
        assert measurement.analysis["trend_analysis"] == {"available": False}
        assert measurement.analysis["comparative_analysis"] == {"available": False}

    def test_trend_after_history(self, metrics):
        metrics.measure_compression(ORIGINAL, ORIGINAL)
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED)
        trend = measurement.analysis["trend_analysis"]
        assert trend["available"]
        assert trend["window"] == 2
        assert measurement.analysis["comparative_analysis"]["vs_previous"]["compression_ratio"] > 0

    def test_low_ratio_recommendation(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, ORIGINAL)
        assert any("aggressive" in r for r in measurement.analysis["recommendations"])

    def test_cleanup(self, metrics):
        metrics.measure_compression(ORIGINAL, COMPRESSED)
        metrics.cleanup()
        assert len(metrics.store) == 0


class TestExport:
    """export_measurement."""

    def test_json(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED)
        data = json.loads(metrics.export_measurement(measurement.id, "json"))
        assert data["id"] == measurement.id
        assert "compression" in data["metrics"]

    def test_csv(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED)
        rows = list(csv.DictReader(io.StringIO(metrics.export_measurement(measurement.id, "csv"))))
        assert len(rows) == 1
        assert rows[0]["id"] == measurement.id
        assert "metrics.compression.compression_ratio" in rows[0]

    def test_report_layout(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, ORIGINAL)
        report = metrics.export_measurement(measurement.id, "report")
        lines = report.splitlines()
        assert lines[0] == "# Compression Performance Report"
        assert f"Measurement ID: {measurement.id}" in lines
        assert any(line.startswith("Generated at: ") for line in lines)
        assert report.index("## Summary") < report.index("## Benchmark") < report.index("## Recommendations")

    def test_unknown_format(self, metrics):
        measurement = metrics.measure_compression(ORIGINAL, COMPRESSED)
        with pytest.raises(UnsupportedFormat):
            metrics.export_measurement(measurement.id, "xml")

    def test_unknown_id(self, metrics):
        with pytest.raises(MeasurementNotFound):
            metrics.export_measurement("metric_missing", "json")


class TestStore:
    """MeasurementStore."""

    def test_recent_and_history(self):
        store = MeasurementStore()
        for i in range(7):
            store.append(_dummy(i))
        assert [m.id for m in store.recent(3)] == ["m4", "m5", "m6"]
        assert len(store.history()) == 7

    def test_session_stats(self):
        store = MeasurementStore()
        store.append(_dummy(1))
        store.append(_dummy(2))
        stats = store.session_stats()
        assert stats["total_tokens_saved"] == 10
        assert stats["average_compression_ratio"] == 50.0

    def test_concurrent_appends(self):
        store = MeasurementStore()

        def worker(offset):
            for i in range(50):
                store.append(_dummy(offset * 1000 + i))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 400

    def test_stores_are_independent(self):
        a, b = MeasurementStore(), MeasurementStore()
        a.append(_dummy(1))
        assert len(b) == 0
