"""
Importance classification.

Scores every section with seven independent, table-driven heuristics and
maps the summed score onto an importance tier. Scoring is deterministic:
the same section at the same position always gets the same score.

Public API:
    ImportanceClassifier().analyze_importance(document, ...) -> ImportanceAnalysis
    tier_for_score(score) -> str
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from .config import DEFAULT_ENCODING
from .sections import Section, parse_sections, section_category
from .tokens import get_token_counter

logger = logging.getLogger(__name__)

# =============================================================================
# Tables
# =============================================================================

IMPORTANCE_ORDER = ["critical", "high", "medium", "low"]
IMPORTANCE_RANK = {tier: rank for rank, tier in enumerate(IMPORTANCE_ORDER)}

# Minimum score per tier, checked top-down
TIER_THRESHOLDS = [("critical", 8.0), ("high", 5.0), ("medium", 3.0)]

# tier -> (weight, multiplier); every occurrence of a keyword adds weight * multiplier
KEYWORD_WEIGHTS: Dict[str, Tuple[float, float]] = {
    "critical": (5, 1.5),
    "high": (4, 1.3),
    "medium": (3, 1.1),
    "low": (2, 1.0),
}

KEYWORD_TIERS: Dict[str, Dict[str, List[str]]] = {
    "en": {
        "critical": ["urgent", "critical", "blocking", "error", "failed", "must", "required", "essential"],
        "high": ["important", "priority", "deadline", "milestone", "goal", "objective", "key", "main"],
        "medium": ["enhancement", "improvement", "optimize", "should", "planned", "task", "feature"],
        "low": ["nice-to-have", "future", "consider", "optional", "example", "note"],
    },
    "ko": {
        "critical": ["긴급", "중대", "차단", "오류", "실패", "필수", "요구", "필수적"],
        "high": ["중요", "우선순위", "마감일", "마일스톤", "목표", "목적", "핵심", "주요"],
        "medium": ["개선", "향상", "최적화", "해야", "계획된", "태스크", "기능"],
        "low": ["좋으면", "미래", "고려", "선택적", "예시", "참고"],
    },
}

SECTION_WEIGHTS = {"critical": 5, "high": 4, "medium": 3, "low": 2}
DEFAULT_SECTION_WEIGHT = 1

# (pattern, score per occurrence)
STRUCTURE_PATTERNS: List[Tuple[re.Pattern, float]] = [
    (re.compile(r"- \[ \]"), 4),                       # open checkbox
    (re.compile(r"- \[x\]", re.IGNORECASE), 2),        # done checkbox
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), 2),    # bullet
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), 2),    # numbered item
    (re.compile(r"\*\*[^*]+\*\*"), 2),                 # bold
    (re.compile(r"\*[^*]+\*"), 1),                     # italic
    (re.compile(r"`[^`]+`"), 1),                       # inline code
    (re.compile(r"\[[^\]]+\]\([^)]+\)"), 1),           # link
]

POSITION_EARLY, POSITION_LATE = 0.3, 0.7
POSITION_SCORES = {"early": 1.2, "middle": 1.0, "late": 0.8}

LENGTH_OPTIMAL = (30, 150)
LENGTH_ACCEPTABLE = (15, 300)
LENGTH_SCORES = {"optimal": 1.2, "acceptable": 1.0, "other": 0.8}

HEADER_LEVEL_SCORES = {1: 5, 2: 4, 3: 3, 4: 2, 5: 1, 6: 1}

DATE_RE = re.compile(r"\b(\d{4})-\d{2}-\d{2}\b")
DATE_SCORE = 2
STATUS_SCORES = {"blocked": 5, "in_progress": 4, "pending": 3, "planned": 2, "completed": 1}
NUMBER_RE = re.compile(r"\d+%|\d+/\d+|\d+\.\d+")
NUMBER_SCORE, NUMBER_CAP = 0.5, 3.0
QUESTION_SCORE = 0.5

# Share of low-tier tokens above which a strategy is recommended
AGGRESSIVE_LOW_SHARE = 0.4
BALANCED_LOW_SHARE = 0.2
MINIMAL_SAVINGS = 10.0

_keyword_patterns: Dict[str, re.Pattern] = {}


def count_keyword(text: str, keyword: str) -> int:
    """
    Occurrences of keyword in lowercased text.

    ASCII keywords match on word boundaries; other scripts by substring.
    """
    if not keyword:
        return 0
    if not keyword.isascii():
        return text.count(keyword)
    pattern = _keyword_patterns.get(keyword)
    if pattern is None:
        pattern = re.compile(r"\b" + re.escape(keyword) + r"\b")
        _keyword_patterns[keyword] = pattern
    return len(pattern.findall(text))


def has_keyword(text: str, keywords) -> bool:
    lowered = text.lower()
    return any(count_keyword(lowered, kw.lower()) for kw in keywords)


def tier_for_score(score: float) -> str:
    """Monotonic step function from score to importance tier."""
    for tier, threshold in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return "low"


# =============================================================================
# Data Types
# =============================================================================

@dataclass
class ScoredSection(Section):
    score: float = 0.0
    importance: str = "low"
    tokens: int = 0
    breakdown: Optional[Dict[str, float]] = None


@dataclass
class ImportanceAnalysis:
    sections: List[ScoredSection]
    summary: Dict[str, Any]
    recommendations: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def by_importance(self, *tiers: str) -> List[ScoredSection]:
        return [s for s in self.sections if s.importance in tiers]


# =============================================================================
# Classifier
# =============================================================================

class ImportanceClassifier:
    """Heuristic section scorer."""

    def __init__(
        self,
        reference_year: Optional[int] = None,
        encoding: str = DEFAULT_ENCODING,
        keyword_tiers: Optional[Dict[str, Dict[str, List[str]]]] = None,
    ):
        self.reference_year = reference_year or date.today().year
        self.token_counter = get_token_counter(encoding)
        self.keyword_tiers = keyword_tiers or KEYWORD_TIERS

    # -- sub-scores ---------------------------------------------------------

    def keyword_score(self, text: str) -> float:
        lowered = text.lower()
        score = 0.0
        for tiers in self.keyword_tiers.values():
            for tier, keywords in tiers.items():
                weight, multiplier = KEYWORD_WEIGHTS[tier]
                hits = sum(count_keyword(lowered, kw) for kw in keywords)
                score += hits * weight * multiplier
        return score

    def section_type_score(self, name: str) -> float:
        tier = section_category(name)
        return SECTION_WEIGHTS[tier] if tier else DEFAULT_SECTION_WEIGHT

    def structure_score(self, text: str) -> float:
        return sum(len(pattern.findall(text)) * weight for pattern, weight in STRUCTURE_PATTERNS)

    def position_score(self, index: int, total: int) -> float:
        relative = index / total if total > 0 else 0.0
        if relative < POSITION_EARLY:
            return POSITION_SCORES["early"]
        if relative > POSITION_LATE:
            return POSITION_SCORES["late"]
        return POSITION_SCORES["middle"]

    def length_score(self, text: str) -> float:
        length = len(text)
        if LENGTH_OPTIMAL[0] <= length <= LENGTH_OPTIMAL[1]:
            return LENGTH_SCORES["optimal"]
        if LENGTH_ACCEPTABLE[0] <= length <= LENGTH_ACCEPTABLE[1]:
            return LENGTH_SCORES["acceptable"]
        return LENGTH_SCORES["other"]

    def header_level_score(self, level: int) -> float:
        return HEADER_LEVEL_SCORES.get(level, 1)

    def special_pattern_score(self, text: str) -> float:
        score = 0.0
        recent = [y for y in DATE_RE.findall(text) if int(y) == self.reference_year]
        score += len(recent) * DATE_SCORE

        lowered = text.lower()
        for status, value in STATUS_SCORES.items():
            if status in lowered:
                score += value

        score += min(len(NUMBER_RE.findall(text)) * NUMBER_SCORE, NUMBER_CAP)
        score += text.count("?") * QUESTION_SCORE
        return score

    def score_section(self, section: Section, index: int, total: int) -> Tuple[float, Dict[str, float]]:
        """Total score and its per-heuristic breakdown."""
        text = section.content
        breakdown = {
            "keywords": self.keyword_score(text),
            "section_type": self.section_type_score(section.name),
            "structure": self.structure_score(text),
            "position": self.position_score(index, total),
            "length": self.length_score(text),
            "header_level": self.header_level_score(section.level),
            "special_patterns": self.special_pattern_score(text),
        }
        return max(0.0, sum(breakdown.values())), breakdown

    def classify_sections(self, sections: List[Section], detailed_scoring: bool = False) -> List[ScoredSection]:
        total = len(sections)
        scored = []
        for idx, section in enumerate(sections):
            score, breakdown = self.score_section(section, idx, total)
            scored.append(ScoredSection(
                name=section.name,
                level=section.level,
                content=section.content,
                type=section.type,
                start_line=section.start_line,
                end_line=section.end_line,
                score=round(score, 2),
                importance=tier_for_score(score),
                tokens=self.token_counter.count(section.content),
                breakdown=breakdown if detailed_scoring else None,
            ))
        return scored

    # -- analysis -----------------------------------------------------------

    def analyze_importance(
        self,
        document: str,
        preserve_structure: bool = True,
        include_metadata: bool = True,
        detailed_scoring: bool = False,
    ) -> ImportanceAnalysis:
        """Score and label every section of a document."""
        sections = parse_sections(document) if isinstance(document, str) else []
        scored = self.classify_sections(sections, detailed_scoring=detailed_scoring)

        summary = self.summarize(scored)
        recommendations = self.recommend(scored, summary)

        ordered = scored if preserve_structure else sorted(scored, key=lambda s: -s.score)

        metadata: Dict[str, Any] = {}
        if include_metadata:
            scores = [s.score for s in scored]
            metadata = {
                "analysis_date": datetime.now().isoformat(),
                "total_sections": len(scored),
                "total_tokens": summary["total_tokens"],
                "average_score": summary["average_score"],
                "score_range": {"min": min(scores) if scores else 0.0, "max": max(scores) if scores else 0.0},
            }

        logger.debug("Classified %d sections (%s)", len(scored), summary["counts"])
        return ImportanceAnalysis(ordered, summary, recommendations, metadata)

    def summarize(self, scored: List[ScoredSection]) -> Dict[str, Any]:
        counts = {tier: 0 for tier in IMPORTANCE_ORDER}
        tokens = {tier: 0 for tier in IMPORTANCE_ORDER}
        for section in scored:
            counts[section.importance] += 1
            tokens[section.importance] += section.tokens

        n = len(scored)
        scores = [s.score for s in scored]
        return {
            "counts": counts,
            "tokens": tokens,
            "percentages": {t: round(c / n * 100, 1) if n else 0.0 for t, c in counts.items()},
            "average_score": round(sum(scores) / n, 2) if n else 0.0,
            "max_score": max(scores) if scores else 0.0,
            "min_score": min(scores) if scores else 0.0,
            "total_tokens": sum(tokens.values()),
        }

    def recommend(self, scored: List[ScoredSection], summary: Dict[str, Any]) -> Dict[str, Any]:
        """Advisory strategy recommendation from the share of low-tier tokens."""
        total = summary["total_tokens"]
        low = summary["tokens"]["low"]
        medium = summary["tokens"]["medium"]
        low_share = low / total if total > 0 else 0.0

        def names(*tiers: str) -> List[str]:
            return [s.name for s in scored if s.importance in tiers]

        if low_share > AGGRESSIVE_LOW_SHARE:
            return {
                "compression_strategy": "aggressive",
                "preserve_sections": names("critical", "high"),
                "remove_sections": names("low"),
                "compress_sections": names("medium"),
                "estimated_savings": round((low + medium * 0.5) / total * 100, 1),
            }
        if low_share > BALANCED_LOW_SHARE:
            return {
                "compression_strategy": "balanced",
                "preserve_sections": names("critical", "high", "medium"),
                "remove_sections": names("low"),
                "compress_sections": [],
                "estimated_savings": round(low / total * 100, 1),
            }
        return {
            "compression_strategy": "minimal",
            "preserve_sections": names("critical", "high", "medium", "low"),
            "remove_sections": [],
            "compress_sections": [],
            "estimated_savings": MINIMAL_SAVINGS,
        }
