"""
Compression metrics and benchmarking.

Measures a compression run (size, preservation, readability, performance),
grades it against fixed benchmarks, analyzes it against earlier runs, and
keeps an append-only measurement history in an injectable store.

Public API:
    CompressionMetrics(store=None).measure_compression(original, compressed, metadata) -> Measurement
    CompressionMetrics.export_measurement(measurement_id, fmt="json") -> str
"""

import csv
import io
import json
import logging
import re
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from .config import DEFAULT_ENCODING
from .errors import MeasurementNotFound, UnsupportedFormat
from .sections import HEADER_RE, iter_lines
from .tokens import get_token_counter

logger = logging.getLogger(__name__)

# =============================================================================
# Benchmarks
# =============================================================================

BENCHMARKS: Dict[str, Dict[str, Any]] = {
    "compression_ratio": {"excellent": 70, "good": 50, "acceptable": 30, "poor": 10},
    "compression_time": {"excellent": 1000, "good": 3000, "acceptable": 5000, "poor": 10000, "lower_is_better": True},
    "information_preservation": {"excellent": 90, "good": 80, "acceptable": 70, "poor": 50},
    "readability_score": {"excellent": 90, "good": 80, "acceptable": 70, "poor": 50},
}
BENCHMARK_CATEGORIES = {
    "compression": ["compression_ratio"],
    "performance": ["compression_time"],
    "quality": ["information_preservation", "readability_score"],
}
LEVEL_SCORES = {"excellent": 90, "good": 80, "acceptable": 70, "poor": 60, "failing": 40}
LETTER_GRADES = [(90, "A"), (80, "B"), (70, "C"), (60, "D")]

QUALITY_WEIGHTS = {
    "readability_score": 0.2,
    "structure_preservation": 0.25,
    "semantic_similarity": 0.25,
    "coherence_score": 0.15,
    "completeness_score": 0.15,
}

IMPORTANT_TERMS = [
    "goal", "objective", "requirement", "task", "milestone", "deadline",
    "priority", "criteria", "architecture", "implementation", "critical",
    "목표", "요구사항", "태스크", "마감일", "우선순위",
]
STOPWORDS = {
    "the", "and", "for", "with", "that", "this", "from", "have", "will",
    "been", "were", "they", "them", "their", "into", "also", "than", "then",
    "there", "which", "what", "when", "where", "while", "would", "should",
}
EN_KEYWORD_RE = re.compile(r"\b[a-zA-Z][a-zA-Z0-9_-]{3,}\b")
KO_KEYWORD_RE = re.compile(r"[가-힣]{2,}")
LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+", re.MULTILINE)
FENCE_OPEN_RE = re.compile(r"^\s*```", re.MULTILINE)

TREND_WINDOW = 5
TREND_THRESHOLD = 5.0  # percent change counted as a trend
EXPORT_FORMATS = ("json", "csv", "report")


def letter_grade(score: float) -> str:
    for threshold, grade in LETTER_GRADES:
        if score >= threshold:
            return grade
    return "F"


def grade_metric(name: str, value: float) -> Dict[str, Any]:
    """Grade a metric value against its benchmark thresholds."""
    bench = BENCHMARKS[name]
    lower_is_better = bench.get("lower_is_better", False)
    level = "failing"
    for candidate in ("excellent", "good", "acceptable", "poor"):
        threshold = bench[candidate]
        if (value <= threshold) if lower_is_better else (value >= threshold):
            level = candidate
            break
    return {"value": value, "level": level, "score": LEVEL_SCORES[level]}


def _keywords(text: str) -> set:
    words = {w.lower() for w in EN_KEYWORD_RE.findall(text)} - STOPWORDS
    return words | set(KO_KEYWORD_RE.findall(text))


def _words(text: str) -> set:
    return set(re.findall(r"\w+", text.lower()))


def _retention(original: int, compressed: int) -> float:
    if original == 0:
        return 1.0
    return min(compressed / original, 1.0)


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            flat[name] = json.dumps(value, ensure_ascii=False, default=str)
        else:
            flat[name] = value
    return flat


# =============================================================================
# Records & Store
# =============================================================================

@dataclass(frozen=True)
class Measurement:
    id: str
    timestamp: str
    original: str
    compressed: str
    metadata: Dict[str, Any]
    metrics: Dict[str, Any]
    benchmark: Dict[str, Any]
    analysis: Dict[str, Any] = field(default_factory=dict)


class MeasurementStore:
    """Thread-safe, append-only measurement history."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: List[Measurement] = []
        self._by_id: Dict[str, Measurement] = {}

    def append(self, measurement: Measurement) -> None:
        with self._lock:
            self._items.append(measurement)
            self._by_id[measurement.id] = measurement

    def get(self, measurement_id: str) -> Measurement:
        with self._lock:
            try:
                return self._by_id[measurement_id]
            except KeyError:
                raise MeasurementNotFound(f"Measurement not found: {measurement_id}") from None

    def history(self) -> List[Measurement]:
        with self._lock:
            return list(self._items)

    def recent(self, n: int = TREND_WINDOW) -> List[Measurement]:
        with self._lock:
            return list(self._items[-n:]) if n > 0 else []

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._by_id.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def session_stats(self) -> Dict[str, Any]:
        """Totals over the whole history."""
        items = self.history()
        original = sum(m.metrics["compression"]["original_tokens"] for m in items)
        compressed = sum(m.metrics["compression"]["compressed_tokens"] for m in items)
        ratios = [m.metrics["compression"]["compression_ratio"] for m in items]
        return {
            "measurements": len(items),
            "total_original_tokens": original,
            "total_compressed_tokens": compressed,
            "total_tokens_saved": original - compressed,
            "average_compression_ratio": round(float(np.mean(ratios)), 2) if ratios else 0.0,
        }


# =============================================================================
# Metrics
# =============================================================================

class CompressionMetrics:
    """Measure, grade, analyze and export compression runs."""

    def __init__(self, store: Optional[MeasurementStore] = None, encoding: str = DEFAULT_ENCODING):
        self.store = store if store is not None else MeasurementStore()
        self.token_counter = get_token_counter(encoding)

    # -- text measures ------------------------------------------------------

    def structure_preservation(self, original: str, compressed: str) -> float:
        """Average retention of headers, list items and code blocks (0-1)."""
        def counts(text: str):
            headers = sum(1 for _, line, in_code in iter_lines(text) if not in_code and HEADER_RE.match(line))
            return headers, len(LIST_ITEM_RE.findall(text)), len(FENCE_OPEN_RE.findall(text)) // 2
        orig, comp = counts(original), counts(compressed)
        return float(np.mean([_retention(o, c) for o, c in zip(orig, comp)]))

    def semantic_similarity(self, original: str, compressed: str) -> float:
        """Jaccard similarity of word sets (0-1)."""
        a, b = _words(original), _words(compressed)
        union = a | b
        return len(a & b) / len(union) if union else 1.0

    def information_preservation(self, original: str, compressed: str) -> float:
        """Weighted keyword, structure and lexical overlap, as a percentage."""
        orig_kw = _keywords(original)
        keyword_score = len(orig_kw & _keywords(compressed)) / len(orig_kw) if orig_kw else 1.0
        score = (
            keyword_score * 0.4
            + self.structure_preservation(original, compressed) * 0.3
            + self.semantic_similarity(original, compressed) * 0.3
        )
        return round(score * 100, 2)

    def readability_score(self, text: str) -> float:
        sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
        words = text.split()
        if not sentences or not words:
            return 0.0
        score = 100.0
        words_per_sentence = len(words) / len(sentences)
        chars_per_word = sum(len(w) for w in words) / len(words)
        if words_per_sentence > 20:
            score -= 20
        elif words_per_sentence > 15:
            score -= 10
        if chars_per_word > 7:
            score -= 20
        elif chars_per_word > 5:
            score -= 10
        return max(0.0, score)

    def coherence_score(self, text: str) -> float:
        score = 100.0
        lines = text.split("\n")
        for prev, line in zip(lines, lines[1:]):
            if not prev.strip() and not line.strip():
                score -= 2
        previous_level = 0
        for _, line, in_code in iter_lines(text):
            header = None if in_code else HEADER_RE.match(line)
            if header:
                level = len(header.group(1))
                if previous_level and level > previous_level + 1:
                    score -= 5
                previous_level = level
        return max(0.0, score)

    def completeness_score(self, original: str, compressed: str) -> float:
        """Share of important terms in the original that survive compression."""
        orig_lower, comp_lower = original.lower(), compressed.lower()
        present = [t for t in IMPORTANT_TERMS if t in orig_lower]
        if not present:
            return 100.0
        return round(sum(1 for t in present if t in comp_lower) / len(present) * 100, 2)

    # -- metric groups ------------------------------------------------------

    def compression_metrics(self, original: str, compressed: str) -> Dict[str, Any]:
        original_tokens = self.token_counter.count(original)
        compressed_tokens = self.token_counter.count(compressed)
        original_size = len(original.encode("utf-8"))
        compressed_size = len(compressed.encode("utf-8"))
        ratio = (original_tokens - compressed_tokens) / original_tokens * 100 if original_tokens else 0.0
        preservation = self.information_preservation(original, compressed)
        return {
            "original_tokens": original_tokens,
            "compressed_tokens": compressed_tokens,
            "tokens_reduced": original_tokens - compressed_tokens,
            "compression_ratio": round(ratio, 2),
            "original_size": original_size,
            "compressed_size": compressed_size,
            "size_reduction": original_size - compressed_size,
            "size_ratio": round((original_size - compressed_size) / original_size * 100, 2) if original_size else 0.0,
            "information_preservation": preservation,
            "compression_efficiency": round(ratio * preservation / 100, 2),
        }

    def performance_metrics(self, metadata: Dict[str, Any], original_tokens: int) -> Dict[str, Any]:
        processing_time = float(metadata.get("processing_time") or 0.0)
        stages = metadata.get("pipeline_stages") or []
        durations = [float(s.get("duration", 0.0)) for s in stages]
        stage_analysis = {
            "total_stages": len(stages),
            "successful_stages": sum(1 for s in stages if s.get("success")),
            "failed_stages": [s.get("name") for s in stages if not s.get("success")],
            "total_stage_time": round(float(np.sum(durations)), 3) if durations else 0.0,
            "slowest_stage": stages[int(np.argmax(durations))].get("name") if durations else None,
            "tokens_after": {s.get("name"): s.get("tokens_after") for s in stages if s.get("success")},
        }
        return {
            "processing_time": processing_time,
            "throughput": round(original_tokens / (processing_time / 1000), 2) if processing_time > 0 else 0.0,
            "stage_analysis": stage_analysis,
        }

    def quality_metrics(self, original: str, compressed: str, preservation: float) -> Dict[str, Any]:
        quality = {
            "readability_score": self.readability_score(compressed),
            "structure_preservation": round(self.structure_preservation(original, compressed) * 100, 2),
            "semantic_similarity": round(self.semantic_similarity(original, compressed) * 100, 2),
            "information_loss": round(100 - preservation, 2),
            "coherence_score": self.coherence_score(compressed),
            "completeness_score": self.completeness_score(original, compressed),
        }
        quality["overall_quality"] = round(sum(quality[k] * w for k, w in QUALITY_WEIGHTS.items()), 2)
        return quality

    # -- benchmark & analysis -----------------------------------------------

    def analyze_benchmark(self, metrics: Dict[str, Any]) -> Dict[str, Any]:
        values = {
            "compression_ratio": metrics["compression"]["compression_ratio"],
            "compression_time": metrics["performance"]["processing_time"],
            "information_preservation": metrics["compression"]["information_preservation"],
            "readability_score": metrics["quality"]["readability_score"],
        }
        graded = {
            name: grade_metric(name, value) for name, value in values.items()
            if not (name == "compression_time" and value <= 0)
        }
        categories = {}
        for category, names in BENCHMARK_CATEGORIES.items():
            scores = [graded[n]["score"] for n in names if n in graded]
            if scores:
                score = float(np.mean(scores))
                categories[category] = {"score": round(score, 1), "grade": letter_grade(score)}
        overall = float(np.mean([c["score"] for c in categories.values()])) if categories else 0.0
        return {
            "metrics": graded,
            "categories": categories,
            "overall_score": round(overall, 1),
            "overall_grade": letter_grade(overall),
        }

    def trend_analysis(self, previous: List[Measurement], metrics: Dict[str, Any]) -> Dict[str, Any]:
        if not previous:
            return {"available": False}

        def series(pick) -> Dict[str, Any]:
            values = [pick(m.metrics) for m in previous] + [pick(metrics)]
            first, last = values[0], values[-1]
            change = (last - first) / abs(first) * 100 if first else 0.0
            direction = "increasing" if change > TREND_THRESHOLD else "decreasing" if change < -TREND_THRESHOLD else "stable"
            return {"values": values, "change": round(change, 2), "direction": direction}

        return {
            "available": True,
            "window": len(previous) + 1,
            "compression_ratio": series(lambda m: m["compression"]["compression_ratio"]),
            "information_preservation": series(lambda m: m["compression"]["information_preservation"]),
            "overall_quality": series(lambda m: m["quality"]["overall_quality"]),
            "processing_time": series(lambda m: m["performance"]["processing_time"]),
        }

    def comparative_analysis(self, history: List[Measurement], metrics: Dict[str, Any]) -> Dict[str, Any]:
        if not history:
            return {"available": False}
        ratio = metrics["compression"]["compression_ratio"]
        preservation = metrics["compression"]["information_preservation"]
        ratios = np.array([m.metrics["compression"]["compression_ratio"] for m in history])
        preservations = np.array([m.metrics["compression"]["information_preservation"] for m in history])
        last = history[-1].metrics["compression"]
        return {
            "available": True,
            "vs_previous": {
                "compression_ratio": round(ratio - last["compression_ratio"], 2),
                "information_preservation": round(preservation - last["information_preservation"], 2),
            },
            "vs_average": {
                "compression_ratio": round(ratio - float(ratios.mean()), 2),
                "information_preservation": round(preservation - float(preservations.mean()), 2),
            },
            "vs_best": {
                "compression_ratio": round(ratio - float(ratios.max()), 2),
                "information_preservation": round(preservation - float(preservations.max()), 2),
            },
        }

    def generate_analysis(self, metrics: Dict[str, Any], benchmark: Dict[str, Any]) -> Dict[str, Any]:
        compression = metrics["compression"]
        ratio = compression["compression_ratio"]
        preservation = compression["information_preservation"]
        time_ms = metrics["performance"]["processing_time"]

        strengths = [f"Strong {name} results (score {c['score']:.0f})" for name, c in benchmark["categories"].items() if c["score"] >= 80]
        weaknesses = [f"Weak {name} results (score {c['score']:.0f})" for name, c in benchmark["categories"].items() if c["score"] < 60]

        recommendations = []
        if ratio < 30:
            recommendations.append("Compression ratio is low; try the aggressive strategy or a lower target ratio")
        if ratio > 80:
            recommendations.append("Compression ratio is very high; try the balanced or minimal strategy to keep more content")
        if time_ms > 5000:
            recommendations.append("Processing is slow; disable summarization or split the document")
        if preservation < 70:
            recommendations.append("Information preservation is low; raise min_importance coverage or use preserve rules")

        history = self.store.history()
        return {
            "summary": (
                f"Compressed {compression['original_tokens']} -> {compression['compressed_tokens']} tokens "
                f"({ratio:.1f}% reduction, {preservation:.1f}% information preserved); "
                f"overall grade {benchmark['overall_grade']}"
            ),
            "strengths": strengths,
            "weaknesses": weaknesses,
            "recommendations": recommendations,
            "trend_analysis": self.trend_analysis(history[-TREND_WINDOW:], metrics),
            "comparative_analysis": self.comparative_analysis(history, metrics),
        }

    # -- public API ---------------------------------------------------------

    def measure_compression(self, original: str, compressed: str, metadata: Optional[Dict[str, Any]] = None) -> Measurement:
        """Measure one run and append it to the store."""
        metadata = dict(metadata or {})
        original = original if isinstance(original, str) else ""
        compressed = compressed if isinstance(compressed, str) else ""

        compression = self.compression_metrics(original, compressed)
        metrics = {
            "compression": compression,
            "performance": self.performance_metrics(metadata, compression["original_tokens"]),
            "quality": self.quality_metrics(original, compressed, compression["information_preservation"]),
        }
        metrics["efficiency"] = {
            "efficiency_score": round(0.6 * compression["compression_ratio"] + 0.4 * compression["information_preservation"], 2),
            "tokens_saved_per_ms": round(
                compression["tokens_reduced"] / metrics["performance"]["processing_time"], 3
            ) if metrics["performance"]["processing_time"] > 0 else 0.0,
        }
        benchmark = self.analyze_benchmark(metrics)
        analysis = self.generate_analysis(metrics, benchmark)

        measurement = Measurement(
            id=f"metric_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=datetime.now().isoformat(),
            original=original,
            compressed=compressed,
            metadata=metadata,
            metrics=metrics,
            benchmark=benchmark,
            analysis=analysis,
        )
        self.store.append(measurement)
        logger.debug("Recorded measurement %s (grade %s)", measurement.id, benchmark["overall_grade"])
        return measurement

    def get_measurement(self, measurement_id: str) -> Measurement:
        return self.store.get(measurement_id)

    def export_measurement(self, measurement_id: str, fmt: str = "json") -> str:
        """Serialize a stored measurement as json, csv or a markdown report."""
        if fmt not in EXPORT_FORMATS:
            raise UnsupportedFormat(f"Unsupported export format: {fmt!r} (expected one of {', '.join(EXPORT_FORMATS)})")
        measurement = self.store.get(measurement_id)

        if fmt == "json":
            return json.dumps(asdict(measurement), indent=2, ensure_ascii=False, default=str)
        if fmt == "csv":
            row = {"id": measurement.id, "timestamp": measurement.timestamp}
            row.update(_flatten(measurement.metrics, "metrics"))
            row["benchmark.overall_score"] = measurement.benchmark["overall_score"]
            row["benchmark.overall_grade"] = measurement.benchmark["overall_grade"]
            buffer = io.StringIO()
            writer = csv.DictWriter(buffer, fieldnames=list(row.keys()))
            writer.writeheader()
            writer.writerow(row)
            return buffer.getvalue()
        return self.render_report(measurement)

    def render_report(self, measurement: Measurement) -> str:
        analysis = measurement.analysis
        lines = [
            "# Compression Performance Report",
            "",
            f"Measurement ID: {measurement.id}",
            f"Generated at: {datetime.now().isoformat()}",
            "",
            "## Summary",
            "",
            analysis.get("summary", ""),
            "",
            "## Benchmark",
            "",
            f"Overall score: {measurement.benchmark['overall_score']} ({measurement.benchmark['overall_grade']})",
        ]
        for title, key in (("Strengths", "strengths"), ("Weaknesses", "weaknesses"), ("Recommendations", "recommendations")):
            items = analysis.get(key) or []
            if items:
                lines += ["", f"## {title}", ""] + [f"- {item}" for item in items]
        return "\n".join(lines) + "\n"

    def cleanup(self) -> None:
        """Drop the whole measurement history."""
        self.store.clear()
