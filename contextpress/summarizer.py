"""
Text summarization.

Two heuristic strategies:
  - extractive: score sentence/line units and keep the best ``target_ratio``
    share of them, in their original order
  - abstractive: build a Key Concepts / Key Information / Structure outline

Public API:
    TextSummarizer().summarize(text, target_ratio=0.3, strategy="extractive") -> SummaryResult
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import DEFAULT_ENCODING
from .errors import StrategyNotFound
from .sections import HEADER_RE, FENCE_RE, iter_lines
from .tokens import get_token_counter

logger = logging.getLogger(__name__)

DEFAULT_TARGET_RATIO = 0.3
MIN_UNIT_LENGTH = 10

BULLET_RE = re.compile(r"^\s*[-*+]\s+")
NUMBERED_RE = re.compile(r"^\s*\d+\.\s+")
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+(?:\s+|$)|[^.!?]+$")
WORD_RE = re.compile(r"[^\w\s]")

STOPWORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "before", "after", "above", "below", "between", "under", "is", "are",
    "was", "were", "be", "been", "being", "have", "has", "had", "do",
    "does", "did", "will", "would", "could", "should", "may", "might",
    "must", "can", "this", "that", "these", "those", "it", "its", "they",
    "them", "their", "we", "our", "you", "your", "he", "she", "his", "her",
    "not", "all", "any", "each", "more", "most", "other", "some", "such",
    "only", "own", "same", "so", "than", "too", "very", "just", "also",
}

IMPORTANT_KEYWORDS = [
    "goal", "objective", "requirement", "critical", "important", "key",
    "main", "primary", "essential", "must", "should", "need", "implement",
    "develop", "create", "build", "design", "task", "subtask", "acceptance",
    "criteria", "purpose", "core", "mandatory", "execute", "generate",
    "construct", "architecture", "work", "sub", "approval", "standard",
]

# (score, condition) pairs for extractive unit scoring
LENGTH_BONUS, SHORT_PENALTY = 1.0, -0.5
KEYWORD_BONUS = 2.0
EARLY_BONUS, LATE_BONUS = 1.0, 0.5
STRUCTURE_BONUS = 3.0
DIGIT_BONUS = 0.5

KEY_POINT_PREFIXES = [
    (("goal", "objective", "purpose"), "Goal"),
    (("requirement", "must", "mandatory"), "Requirement"),
    (("criteria", "acceptance", "standard"), "Criteria"),
    (("task", "todo", "implement"), "Task"),
]
MAX_KEY_POINTS = 5

KEY_INFO_PATTERNS = [
    re.compile(r"\b(goal|objective|purpose)\b", re.IGNORECASE),
    re.compile(r"\b(requirement|condition)s?\b", re.IGNORECASE),
    re.compile(r"\b(criteria|standard)s?\b", re.IGNORECASE),
    re.compile(r"\b(task|work)s?\b", re.IGNORECASE),
    re.compile(r"\b(deadline|due)\b", re.IGNORECASE),
    re.compile(r"\b(important|key|core)\b", re.IGNORECASE),
    re.compile(r"\b(critical|severe|fatal)\b", re.IGNORECASE),
    re.compile(r"\b(must|essential|mandatory)\b", re.IGNORECASE),
]
KEY_INFO_WEIGHTS = {
    "critical": 5, "severe": 5, "fatal": 5, "must": 4, "essential": 4,
    "mandatory": 4, "goal": 3, "objective": 3, "purpose": 3,
    "requirement": 3, "deadline": 3, "important": 2, "key": 2, "core": 2,
}
LIST_CONCEPT_WEIGHT = 2

STRATEGIES = ("extractive", "abstractive")


@dataclass
class TextUnit:
    text: str
    index: int
    line: int
    structural: bool = False
    score: float = 0.0
    code: bool = False


@dataclass
class SummaryResult:
    original: str
    summary: str
    original_tokens: int
    summary_tokens: int
    compression_ratio: float
    strategy: str
    key_points: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def is_structural(line: str) -> bool:
    return bool(HEADER_RE.match(line) or BULLET_RE.match(line) or NUMBERED_RE.match(line))


def word_frequencies(text: str) -> Counter:
    words = WORD_RE.sub(" ", text.lower()).split()
    return Counter(w for w in words if len(w) > 2 and w not in STOPWORDS)


class TextSummarizer:
    """Heuristic extractive / abstractive summarizer."""

    def __init__(self, encoding: str = DEFAULT_ENCODING):
        self.token_counter = get_token_counter(encoding)

    def split_units(self, text: str) -> List[TextUnit]:
        """Headers, list items and whole fenced blocks are atomic; prose lines split into sentences."""
        units: List[TextUnit] = []
        block: List[str] = []
        block_start = 0

        def close_block() -> None:
            units.append(TextUnit("\n".join(block), len(units), block_start, structural=True, code=True))
            block.clear()

        for line_no, raw, in_code in iter_lines(text):
            if in_code:
                if not block:
                    block_start = line_no
                block.append(raw)
                if len(block) > 1 and FENCE_RE.match(raw):
                    close_block()
                continue
            line = raw.strip()
            if not line:
                continue
            if is_structural(raw):
                pieces = [(line, True)]
            else:
                pieces = [(m.group().strip(), False) for m in SENTENCE_RE.finditer(line) if m.group().strip()]
            for piece, structural in pieces:
                if len(piece) > MIN_UNIT_LENGTH:
                    units.append(TextUnit(piece, len(units), line_no, structural))
        # Unterminated fence runs to the end of the text
        if block:
            close_block()
        return units

    def score_units(self, units: List[TextUnit], frequencies: Counter) -> None:
        n = len(units)
        for unit in units:
            lowered = unit.text.lower()
            score = 0.0
            if 30 <= len(unit.text) <= 150:
                score += LENGTH_BONUS
            elif len(unit.text) < 30:
                score += SHORT_PENALTY
            score += sum(KEYWORD_BONUS for kw in IMPORTANT_KEYWORDS if kw in lowered)
            for word in WORD_RE.sub(" ", lowered).split():
                freq = frequencies.get(word, 0)
                if freq > 1:
                    score += math.log(freq)
            if unit.index < n * 0.3:
                score += EARLY_BONUS
            elif unit.index > n * 0.7:
                score += LATE_BONUS
            if unit.structural:
                score += STRUCTURE_BONUS
            if any(ch.isdigit() for ch in unit.text):
                score += DIGIT_BONUS
            unit.score = score

    def extractive(self, text: str, target_ratio: float) -> Tuple[str, Dict[str, Any]]:
        units = self.split_units(text)
        if not units:
            return "", {"total_units": 0, "selected_units": 0}
        self.score_units(units, word_frequencies(text))

        keep = max(1, math.ceil(len(units) * target_ratio))
        ranked = sorted(units, key=lambda u: (-u.score, u.index))[:keep]
        selected = sorted(ranked, key=lambda u: u.index)

        lines: List[str] = []
        previous_line: Optional[int] = None
        for unit in selected:
            if unit.line == previous_line:
                lines[-1] += " " + unit.text
            else:
                lines.append(unit.text)
            previous_line = unit.line
        return "\n".join(lines), {"total_units": len(units), "selected_units": len(selected)}

    def abstractive(self, text: str, target_ratio: float) -> Tuple[str, Dict[str, Any]]:
        concepts: List[Tuple[str, int]] = []
        structure: List[Tuple[int, str]] = []
        for _, line, in_code in iter_lines(text):
            if in_code:
                continue
            header = HEADER_RE.match(line)
            if header:
                level = len(header.group(1))
                concepts.append((header.group(2).strip(), 7 - level))
                structure.append((level, header.group(2).strip()))
            elif BULLET_RE.match(line) and len(line.strip()) > MIN_UNIT_LENGTH:
                concepts.append((BULLET_RE.sub("", line).strip(), LIST_CONCEPT_WEIGHT))
        concepts.sort(key=lambda c: -c[1])

        key_info: List[Tuple[str, float]] = []
        for unit in self.split_units(text):
            sentence = BULLET_RE.sub("", unit.text)
            if unit.code or HEADER_RE.match(sentence):
                continue
            matched = [p.search(sentence) for p in KEY_INFO_PATTERNS]
            hits = [m.group(1).lower() for m in matched if m]
            if not hits:
                continue
            score = float(sum(KEY_INFO_WEIGHTS.get(h, 1) for h in hits))
            if 50 <= len(sentence) <= 200:
                score += 1
            if "!" in sentence or "?" in sentence:
                score += 1
            key_info.append((sentence, score))
        key_info.sort(key=lambda k: -k[1])

        top_concepts = concepts[:math.ceil(len(concepts) * target_ratio)]
        top_info = key_info[:math.ceil(len(key_info) * target_ratio)]

        parts = ["## Key Concepts"] + [f"- {c}" for c, _ in top_concepts]
        if top_info:
            parts += ["", "## Key Information"] + [f"- {s}" for s, _ in top_info]
        outline = [(level, name) for level, name in structure if level <= 3]
        if outline:
            parts += ["", "## Structure"] + [f"{'#' * (level + 1)} {name}" for level, name in outline]

        summary = "\n".join(parts) if (top_concepts or top_info or outline) else ""
        return summary, {
            "concept_count": len(top_concepts),
            "key_info_count": len(top_info),
            "structure_elements": len(outline),
        }

    def extract_key_points(self, text: str) -> List[str]:
        points: List[str] = []
        for unit in self.split_units(text):
            if unit.code:
                continue
            lowered = unit.text.lower()
            for keywords, prefix in KEY_POINT_PREFIXES:
                if any(re.search(rf"\b{kw}", lowered) for kw in keywords):
                    clean = HEADER_RE.sub(r"\2", BULLET_RE.sub("", unit.text)).strip()
                    points.append(f"{prefix}: {clean}")
                    break
            if len(points) >= MAX_KEY_POINTS:
                break
        return points

    def summarize(
        self,
        text: str,
        target_ratio: float = DEFAULT_TARGET_RATIO,
        strategy: str = "extractive",
    ) -> SummaryResult:
        """Summarize text, keeping roughly ``target_ratio`` of its units."""
        if strategy not in STRATEGIES:
            raise StrategyNotFound(strategy, STRATEGIES)
        if not 0 < target_ratio <= 1:
            raise ValueError(f"target_ratio must be in (0, 1], got {target_ratio}")

        text = text if isinstance(text, str) else ""
        if not text.strip():
            return SummaryResult(text, "", 0, 0, 0.0, strategy)

        if strategy == "extractive":
            summary, metadata = self.extractive(text, target_ratio)
        else:
            summary, metadata = self.abstractive(text, target_ratio)

        original_tokens = self.token_counter.count(text)
        summary_tokens = self.token_counter.count(summary)
        return SummaryResult(
            original=text,
            summary=summary,
            original_tokens=original_tokens,
            summary_tokens=summary_tokens,
            compression_ratio=round((original_tokens - summary_tokens) / original_tokens * 100, 2) if original_tokens else 0.0,
            strategy=strategy,
            key_points=self.extract_key_points(text),
            metadata={**metadata, "target_ratio": target_ratio},
        )
