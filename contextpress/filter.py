"""
Information filtering.

Decides, per section, whether to preserve it verbatim, compress it, or
remove it, then optionally packs the survivors into a token budget.

Decision order (first match wins):
    1. preserve rules
    2. remove rules (including stale timestamped logs)
    3. importance below ``min_importance`` -> remove
    4. compress rules -> compress
    5. otherwise preserve
"""

import logging
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .classifier import IMPORTANCE_ORDER, IMPORTANCE_RANK, ImportanceClassifier, ScoredSection, has_keyword
from .config import DEFAULT_ENCODING, LOG_RETENTION_DAYS
from .normalizer import normalize_whitespace
from .sections import HEADER_RE, iter_lines, join_sections, parse_sections
from .tokens import get_token_counter

logger = logging.getLogger(__name__)

DEFAULT_RULES: Dict[str, Dict[str, Any]] = {
    "preserve": {
        "importance": ["critical", "high"],
        "content": ["lists"],
        "keywords": ["goal", "requirement", "task", "milestone", "목표", "요구사항", "태스크"],
        "patterns": [r"^\s*[-*+]\s+\[.\]"],
    },
    "compress": {
        "importance": ["medium"],
        "content": [],
        "max_length": 200,
    },
    "remove": {
        "importance": ["low"],
        "content": ["old_logs", "examples"],
        "keywords": ["deprecated", "obsolete", "old", "구식", "폐기"],
        "patterns": [r"\[completed\]", r"\[archived\]"],
    },
}

LOG_TIMESTAMP_RE = re.compile(r"\[(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2})\]")
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+(?:\s+|$)|[^.!?]+$")
CONTENT_TYPE_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("lists", re.compile(r"^\s*(?:[-*+]|\d+\.)\s+")),
    ("code", re.compile(r"^\s*(?:```|~~~)")),
    ("images", re.compile(r"^\s*!\[")),
    ("links", re.compile(r"^\s*\[[^\]]*\]\([^)]*\)")),
]

ELLIPSIS = "..."
SEPARATOR = "\n\n"
MIN_BODY_LENGTH = 20
# Smallest leftover budget worth squeezing one more section into
MIN_FIT_TOKENS = 50

PRESERVE, COMPRESS, REMOVE = "preserve", "compress", "remove"


def merge_rules(custom_rules: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Dict[str, Any]]:
    """Shallow per-category merge of custom rules over the defaults."""
    custom_rules = custom_rules or {}
    return {
        category: {**defaults, **(custom_rules.get(category) or {})}
        for category, defaults in DEFAULT_RULES.items()
    }


def split_sentences(text: str) -> List[str]:
    return [m.group().strip() for m in SENTENCE_RE.finditer(text) if m.group().strip()]


def truncate(text: str, max_length: int) -> str:
    """Hard cut with an ellipsis, never longer than max_length (when max_length >= 3)."""
    if len(text) <= max_length:
        return text
    cut = max(max_length - len(ELLIPSIS), 0)
    return text[:cut].rstrip() + ELLIPSIS


def summarize_long_text(text: str, max_length: int) -> str:
    """First and last sentence around an ellipsis, else a hard cut."""
    if len(text) <= max_length:
        return text
    sentences = split_sentences(text)
    if len(sentences) > 2:
        candidate = f"{sentences[0]} {ELLIPSIS} {sentences[-1]}"
        if len(candidate) <= max_length:
            return candidate
    return truncate(text, max_length)


def remove_duplicate_lines(text: str) -> str:
    """Drop repeated lines (trim/case-insensitive); blank lines are kept."""
    seen: Set[str] = set()
    kept = []
    for line in text.split("\n"):
        key = line.strip().lower()
        if key:
            if key in seen:
                continue
            seen.add(key)
        kept.append(line)
    return "\n".join(kept)


@dataclass
class FilterDecision:
    section_name: str
    action: str
    reason: str


@dataclass
class FilterResult:
    original: str
    filtered: str
    compression_ratio: float
    sections_processed: int
    sections_preserved: int
    sections_compressed: int
    sections_removed: int
    decisions: List[FilterDecision] = field(default_factory=list)
    processing_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)


class InformationFilter:
    """Rule-based preserve / compress / remove filter with a token budget."""

    def __init__(
        self,
        classifier: Optional[ImportanceClassifier] = None,
        encoding: str = DEFAULT_ENCODING,
        retention_days: int = LOG_RETENTION_DAYS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.classifier = classifier or ImportanceClassifier(encoding=encoding)
        self.token_counter = get_token_counter(encoding)
        self.retention = timedelta(days=retention_days)
        self.clock = clock

    # =========================================================================
    # Rule matching
    # =========================================================================

    def content_types(self, section: ScoredSection) -> Set[str]:
        """Primary content type of the section body, plus category flags."""
        body = section.body
        types = {"text"}
        for name, pattern in CONTENT_TYPE_PATTERNS:
            if pattern.match(body):
                types = {name}
                break
        if self.is_old_log(section.content):
            types.add("old_logs")
        if section.type == "examples":
            types.add("examples")
        return types

    def is_old_log(self, content: str) -> bool:
        """True when the first [YYYY-MM-DD HH:MM] stamp is past the retention window."""
        match = LOG_TIMESTAMP_RE.search(content)
        if not match:
            return False
        try:
            stamp = datetime.strptime(f"{match.group(1)} {match.group(2)}", "%Y-%m-%d %H:%M")
        except ValueError:
            return False
        return self.clock() - stamp > self.retention

    def _matches(self, section: ScoredSection, rule: Dict[str, Any], types: Set[str]) -> bool:
        if section.importance in rule.get("importance", ()):
            return True
        if types & set(rule.get("content", ())):
            return True
        if rule.get("keywords") and has_keyword(section.content, rule["keywords"]):
            return True
        for pattern in rule.get("patterns", ()):
            if re.search(pattern, section.content, re.IGNORECASE | re.MULTILINE):
                return True
        return False

    def decide(
        self,
        section: ScoredSection,
        rules: Dict[str, Dict[str, Any]],
        min_importance: str,
    ) -> FilterDecision:
        types = self.content_types(section)
        if self._matches(section, rules["preserve"], types):
            return FilterDecision(section.name, PRESERVE, "matches_preserve_rules")
        if self._matches(section, rules["remove"], types):
            return FilterDecision(section.name, REMOVE, "matches_remove_rules")
        if IMPORTANCE_RANK[section.importance] > IMPORTANCE_RANK[min_importance]:
            return FilterDecision(section.name, REMOVE, "below_importance_threshold")

        compress = rules["compress"]
        max_length = compress.get("max_length")
        if self._matches(section, compress, types) or (max_length and len(section.content) > max_length):
            return FilterDecision(section.name, COMPRESS, "matches_compress_rules")
        return FilterDecision(section.name, PRESERVE, "meets_importance_threshold")

    # =========================================================================
    # Section compression
    # =========================================================================

    def compress_section(self, section: ScoredSection, max_length: int = 200) -> str:
        """Shorten a section body; the result is never longer than the input."""
        header, body = section.header, section.body
        budget = max(max_length - len(header) - 1, MIN_BODY_LENGTH) if header else max_length
        if len(body) > budget:
            body = summarize_long_text(body, budget)
        body = remove_duplicate_lines(body)
        result = normalize_whitespace(f"{header}\n{body}" if header else body)
        return result if len(result) <= len(section.content) else section.content

    def compress_to_token_limit(self, text: str, max_tokens: int) -> Optional[str]:
        """Shrink text to fit max_tokens; None when not even a header fits."""
        tokens = self.token_counter.count(text)
        if tokens <= max_tokens:
            return text
        target_length = math.floor(len(text) * max_tokens / tokens)
        candidate = summarize_long_text(text, target_length)
        if self.token_counter.count(candidate) <= max_tokens:
            return candidate
        return self._truncate_to_limit(text, max_tokens)

    def _truncate_to_limit(self, text: str, max_tokens: int) -> Optional[str]:
        """Longest word-prefix of text within max_tokens (binary search)."""
        ends = [m.end() for m in re.finditer(r"\S+", text)]
        if not ends:
            return None
        lo, hi = 0, len(ends)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self.token_counter.count(text[:ends[mid - 1]]) <= max_tokens:
                lo = mid
            else:
                hi = mid - 1
        return text[:ends[lo - 1]] if lo else None

    # =========================================================================
    # Token budget
    # =========================================================================

    def _assemble(self, texts: List[str], accepted: List[int], preserve_structure: bool) -> str:
        order = sorted(accepted) if preserve_structure else accepted
        return join_sections([texts[i] for i in order])

    def apply_token_limit(
        self,
        kept: Sequence[ScoredSection],
        texts: List[str],
        max_tokens: int,
        preserve_structure: bool = True,
    ) -> Tuple[List[int], List[str]]:
        """
        Greedily accept sections, most important first, while the joined
        output fits. The first section that overflows is squeezed into the
        leftover budget when enough remains; acceptance then stops.

        Returns accepted indices (in acceptance order) and dropped names.
        ``texts`` is updated in place for squeezed sections.
        """
        order = sorted(range(len(kept)), key=lambda i: IMPORTANCE_RANK[kept[i].importance])
        accepted: List[int] = []
        count = self.token_counter.count

        for position, idx in enumerate(order):
            if count(self._assemble(texts, accepted + [idx], preserve_structure)) <= max_tokens:
                accepted.append(idx)
                continue

            used = count(self._assemble(texts, accepted, preserve_structure))
            remaining = max_tokens - used - (count(SEPARATOR) if accepted else 0)
            if remaining >= MIN_FIT_TOKENS:
                fitted = self.compress_to_token_limit(texts[idx], remaining)
                if fitted:
                    previous = texts[idx]
                    texts[idx] = fitted
                    if count(self._assemble(texts, accepted + [idx], preserve_structure)) <= max_tokens:
                        accepted.append(idx)
                    else:
                        texts[idx] = previous
            dropped = [kept[i].name for i in order[position:] if i not in accepted]
            return accepted, dropped

        return accepted, []

    # =========================================================================
    # Reconstruction
    # =========================================================================

    def post_process(self, text: str) -> str:
        """Normalize whitespace, drop header-only sections, collapse repeated rules."""
        lines = list(iter_lines(normalize_whitespace(text)))
        kept: List[str] = []
        for pos, (_, line, in_code) in enumerate(lines):
            header = None if in_code else HEADER_RE.match(line)
            if header:
                level = len(header.group(1))
                nxt = next(((l, code) for _, l, code in lines[pos + 1:] if l.strip()), None)
                nxt_header = HEADER_RE.match(nxt[0]) if nxt is not None and not nxt[1] else None
                if nxt is None or (nxt_header and len(nxt_header.group(1)) <= level):
                    continue
            kept.append(line)
        result = "\n".join(kept)
        result = re.sub(r"(?:^---\s*\n+){2,}", "---\n", result, flags=re.MULTILINE)
        return normalize_whitespace(result)

    # =========================================================================
    # Filter
    # =========================================================================

    def filter(
        self,
        document: str,
        min_importance: str = "medium",
        max_tokens: Optional[int] = None,
        preserve_structure: bool = True,
        custom_rules: Optional[Dict[str, Dict[str, Any]]] = None,
        include_metadata: bool = True,
    ) -> FilterResult:
        """Apply the preserve / compress / remove policy to a document."""
        if min_importance not in IMPORTANCE_RANK:
            raise ValueError(f"min_importance must be one of {IMPORTANCE_ORDER}, got {min_importance!r}")
        start = time.perf_counter()
        document = document if isinstance(document, str) else ""
        rules = merge_rules(custom_rules)
        max_length = rules["compress"].get("max_length") or 200

        sections = self.classifier.classify_sections(parse_sections(document))
        decisions: List[FilterDecision] = []
        kept: List[ScoredSection] = []
        texts: List[str] = []
        for section in sections:
            decision = self.decide(section, rules, min_importance)
            decisions.append(decision)
            if decision.action == REMOVE:
                continue
            kept.append(section)
            texts.append(section.content if decision.action == PRESERVE else self.compress_section(section, max_length))

        if not preserve_structure:
            # Flat output: most important first, position breaks ties
            order = sorted(range(len(kept)), key=lambda i: IMPORTANCE_RANK[kept[i].importance])
            kept = [kept[i] for i in order]
            texts = [texts[i] for i in order]

        dropped: List[str] = []
        accepted = list(range(len(kept)))
        if max_tokens is not None:
            accepted, dropped = self.apply_token_limit(kept, texts, max_tokens, preserve_structure)

        filtered = self.post_process(self._assemble(texts, accepted, preserve_structure))
        if max_tokens is not None:
            # Post-processing can shift token boundaries; keep the hard limit
            while accepted and self.token_counter.count(filtered) > max_tokens:
                dropped.append(kept[accepted.pop()].name)
                filtered = self.post_process(self._assemble(texts, accepted, preserve_structure))

        original_tokens = self.token_counter.count(document)
        filtered_tokens = self.token_counter.count(filtered)
        counts = {action: sum(1 for d in decisions if d.action == action) for action in (PRESERVE, COMPRESS, REMOVE)}
        processed = len(decisions)

        metadata: Dict[str, Any] = {}
        if include_metadata:
            metadata = {
                "applied_rules": rules,
                "min_importance": min_importance,
                "max_tokens": max_tokens,
                "original_tokens": original_tokens,
                "filtered_tokens": filtered_tokens,
                "budget_dropped": dropped,
                "statistics": {
                    f"{name}_rate": round(counts[action] / processed * 100, 1) if processed else 0.0
                    for name, action in (("preservation", PRESERVE), ("compression", COMPRESS), ("removal", REMOVE))
                },
                "section_analysis": [
                    {
                        "name": s.name,
                        "importance": s.importance,
                        "score": s.score,
                        "tokens": s.tokens,
                        "action": d.action,
                        "reason": d.reason,
                    }
                    for s, d in zip(sections, decisions)
                ],
            }

        logger.debug(
            "Filtered %d sections: %d preserved, %d compressed, %d removed",
            processed, counts[PRESERVE], counts[COMPRESS], counts[REMOVE],
        )
        return FilterResult(
            original=document,
            filtered=filtered,
            compression_ratio=round((original_tokens - filtered_tokens) / original_tokens * 100, 2) if original_tokens else 0.0,
            sections_processed=processed,
            sections_preserved=counts[PRESERVE],
            sections_compressed=counts[COMPRESS],
            sections_removed=counts[REMOVE],
            decisions=decisions,
            processing_time=(time.perf_counter() - start) * 1000,
            metadata=metadata,
        )
