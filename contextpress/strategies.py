"""
Compression strategies.

A strategy is a named bundle of pipeline settings plus its own final
compression pass:

    aggressive  keep critical/high, condense medium, drop low   (50-70% target)
    balanced    drop low, condense long lists and paragraphs    (30-50% target)
    minimal     formatting cleanup and stale log removal only   (10-30% target)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from .classifier import ImportanceClassifier, ScoredSection
from .config import LOG_RETENTION_DAYS
from .errors import StrategyNotFound
from .filter import LOG_TIMESTAMP_RE, split_sentences
from .normalizer import normalize_whitespace
from .sections import HEADER_RE, iter_lines, join_sections, parse_sections

logger = logging.getLogger(__name__)

CONDENSED_MARKER = " [condensed]"
ELLIPSIS_JOIN = " ... "
LIST_LINE_RE = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+")
RULE_LINE_RE = re.compile(r"^\s*-{3,}\s*$")


@dataclass
class StrategyOutcome:
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def _paragraphs(body: str) -> List[str]:
    return [p for p in re.split(r"\n\s*\n", body) if p.strip()]


def _is_prose(paragraph: str) -> bool:
    first = paragraph.lstrip().split("\n", 1)[0]
    return not (HEADER_RE.match(first) or LIST_LINE_RE.match(first) or first.startswith(("```", "~~~", "|", ">")))


class CompressionStrategy:
    """Base strategy: shared helpers and the settings contract."""

    name = "base"
    target_ratio = 0.6
    enable_summarization = True
    enable_filtering = True
    preserve_structure = True
    min_importance = "medium"
    reduction_band: Tuple[float, float] = (30.0, 50.0)
    compression_level = "medium"

    def __init__(
        self,
        classifier: Optional[ImportanceClassifier] = None,
        retention_days: int = LOG_RETENTION_DAYS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.classifier = classifier or ImportanceClassifier()
        self.retention = timedelta(days=retention_days)
        self.clock = clock

    def config(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "target_ratio": self.target_ratio,
            "enable_summarization": self.enable_summarization,
            "enable_filtering": self.enable_filtering,
            "preserve_structure": self.preserve_structure,
            "min_importance": self.min_importance,
            "reduction_band": self.reduction_band,
        }

    # -- helpers ------------------------------------------------------------

    def remove_old_logs(self, content: str) -> Tuple[str, int]:
        """Drop lines whose [YYYY-MM-DD HH:MM] stamp is past the retention window."""
        now = self.clock()
        kept, removed = [], 0
        for _, line, in_code in iter_lines(content):
            match = None if in_code else LOG_TIMESTAMP_RE.search(line)
            if match:
                try:
                    stamp = datetime.strptime(f"{match.group(1)} {match.group(2)}", "%Y-%m-%d %H:%M")
                except ValueError:
                    stamp = None
                if stamp is not None and now - stamp > self.retention:
                    removed += 1
                    continue
            kept.append(line)
        return "\n".join(kept), removed

    def dedupe_lines(self, content: str, predicate) -> str:
        seen = set()
        kept = []
        for _, line, in_code in iter_lines(content):
            if not in_code and predicate(line):
                key = re.sub(r"\s+", " ", line.strip().lower())
                if key in seen:
                    continue
                seen.add(key)
            kept.append(line)
        return "\n".join(kept)

    def condense_paragraphs(self, section: ScoredSection, condense: Callable[[str], Optional[str]]) -> str:
        """Rewrite prose paragraphs of a section body with condense (None keeps it)."""
        body = section.body
        paragraphs = []
        for paragraph in _paragraphs(body):
            shorter = condense(paragraph) if _is_prose(paragraph) else None
            paragraphs.append(shorter if shorter is not None and len(shorter) < len(paragraph) else paragraph)
        body_text = join_sections(paragraphs)
        if section.header and body_text:
            return f"{section.header}\n{body_text}"
        return section.header or body_text

    def classify(self, content: str) -> List[ScoredSection]:
        return self.classifier.classify_sections(parse_sections(content))

    # -- contract -----------------------------------------------------------

    def compress(self, content: str) -> StrategyOutcome:
        raise NotImplementedError

    def decompress(self, content: str) -> str:
        """Best-effort: compression is lossy, so only markers are removed."""
        return normalize_whitespace(content.replace(CONDENSED_MARKER, ""))


class AggressiveStrategy(CompressionStrategy):
    name = "aggressive"
    target_ratio = 0.4
    min_importance = "high"
    reduction_band = (50.0, 70.0)
    compression_level = "high"

    LONG_PARAGRAPH = 500

    def _first_and_last(self, paragraph: str) -> Optional[str]:
        if len(paragraph) <= self.LONG_PARAGRAPH:
            return None
        sentences = split_sentences(paragraph)
        if len(sentences) < 3:
            return None
        return sentences[0] + ELLIPSIS_JOIN + sentences[-1]

    def _first_sentence(self, paragraph: str) -> Optional[str]:
        sentences = split_sentences(paragraph)
        return sentences[0] if len(sentences) > 1 else None

    def compress(self, content: str) -> StrategyOutcome:
        sections = self.classify(content)
        kept, preserved, condensed, removed = [], [], [], []
        for section in sections:
            if section.importance in ("critical", "high"):
                kept.append(self.condense_paragraphs(section, self._first_and_last))
                preserved.append(section.name)
            elif section.importance == "medium":
                kept.append(self.condense_paragraphs(section, self._first_sentence))
                condensed.append(section.name)
            else:
                removed.append(section.name)

        if not kept and sections:
            best = max(sections, key=lambda s: s.score)
            kept.append(best.content)
            removed.remove(best.name)
            preserved.append(best.name)

        result = self.dedupe_lines(join_sections(kept), lambda line: bool(HEADER_RE.match(line)))
        result, old_logs = self.remove_old_logs(result)
        return StrategyOutcome(normalize_whitespace(result), {
            "strategy": self.name,
            "compression_level": self.compression_level,
            "preserved_sections": preserved,
            "condensed_sections": condensed,
            "removed_sections": removed,
            "old_logs_removed": old_logs,
        })


class BalancedStrategy(CompressionStrategy):
    name = "balanced"
    target_ratio = 0.6
    min_importance = "medium"
    reduction_band = (30.0, 50.0)
    compression_level = "medium"

    LONG_PARAGRAPH = 300

    def _first_two(self, paragraph: str) -> Optional[str]:
        if len(paragraph) <= self.LONG_PARAGRAPH:
            return None
        sentences = split_sentences(paragraph)
        if len(sentences) <= 3:
            return None
        return " ".join(sentences[:2]) + CONDENSED_MARKER

    def compress(self, content: str) -> StrategyOutcome:
        sections = self.classify(content)
        kept, preserved, removed = [], [], []
        for section in sections:
            if section.importance == "low":
                removed.append(section.name)
                continue
            kept.append(self.condense_paragraphs(section, self._first_two))
            preserved.append(section.name)

        if not kept and sections:
            kept = [s.content for s in sections]
            preserved, removed = [s.name for s in sections], []

        result = self.dedupe_lines(join_sections(kept), lambda line: bool(LIST_LINE_RE.match(line)))
        result, old_logs = self.remove_old_logs(result)
        return StrategyOutcome(normalize_whitespace(result), {
            "strategy": self.name,
            "compression_level": self.compression_level,
            "preserved_sections": preserved,
            "removed_sections": removed,
            "old_logs_removed": old_logs,
        })


class MinimalStrategy(CompressionStrategy):
    name = "minimal"
    target_ratio = 0.85
    enable_summarization = False
    enable_filtering = False
    min_importance = "low"
    reduction_band = (10.0, 30.0)
    compression_level = "low"

    def basic_cleanup(self, content: str) -> str:
        """Collapse repeated horizontal rules and drop empty bold markers."""
        kept: List[str] = []
        for _, line, in_code in iter_lines(content):
            if not in_code and RULE_LINE_RE.match(line):
                previous = next((l for l in reversed(kept) if l.strip()), None)
                if previous is not None and RULE_LINE_RE.match(previous):
                    continue
            kept.append(line)
        return re.sub(r"[ \t]?(?<!\S)\*\*[ \t]*\*\*(?!\S)", "", "\n".join(kept))

    def compress(self, content: str) -> StrategyOutcome:
        result, old_logs = self.remove_old_logs(content)
        result = normalize_whitespace(self.basic_cleanup(result))
        return StrategyOutcome(result, {
            "strategy": self.name,
            "compression_level": self.compression_level,
            "preserved_sections": [s.name for s in parse_sections(result)],
            "old_logs_removed": old_logs,
        })


STRATEGIES: Dict[str, Type[CompressionStrategy]] = {
    AggressiveStrategy.name: AggressiveStrategy,
    BalancedStrategy.name: BalancedStrategy,
    MinimalStrategy.name: MinimalStrategy,
}


def register_strategy(name: str, strategy_cls: Type[CompressionStrategy]) -> None:
    """Add or replace a named strategy."""
    if not (isinstance(strategy_cls, type) and issubclass(strategy_cls, CompressionStrategy)):
        raise TypeError("strategy_cls must be a CompressionStrategy subclass")
    STRATEGIES[name] = strategy_cls


def get_strategy(name: str, **kwargs) -> CompressionStrategy:
    """Instantiate a named strategy; unknown names raise StrategyNotFound."""
    try:
        strategy_cls = STRATEGIES[name]
    except (KeyError, TypeError):
        raise StrategyNotFound(name, STRATEGIES) from None
    return strategy_cls(**kwargs)
