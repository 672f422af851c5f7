"""
Content normalization.

Safe, structure-preserving cleanup applied before filtering: filler phrase
removal, duplicate removal, whitespace and markdown normalization, and
header hierarchy repair. Fenced code blocks are never touched except by
the whitespace pass.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .sections import HEADER_RE, iter_lines

logger = logging.getLogger(__name__)

BULLET_RE = re.compile(r"^(\s*)[*+]\s+")
RULE_RE = re.compile(r"^\s*([-*_])(\s*\1){2,}\s*$")
QUOTE_RE = re.compile(r"^(\s*)>\s*")
INLINE_LINK_RE = re.compile(r"(?<!!)\[([^\]]+)\]\(([^)\s]+)\)")
LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+")


def normalize_whitespace(text: str) -> str:
    """
    Tabs to two spaces, trailing spaces stripped, 3+ newlines collapsed to a
    single blank line, outer whitespace stripped. Idempotent.
    """
    if not text:
        return ""
    result = text.replace("\t", "  ")
    result = re.sub(r"[ \t]+\n", "\n", result)
    result = re.sub(r"[ \t]+$", "", result)
    result = re.sub(r"\n{3,}", "\n\n", result)
    return result.strip()


def _key(line: str) -> str:
    return re.sub(r"\s+", " ", line.lower().strip())


@dataclass
class NormalizationResult:
    original: str
    normalized: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class ContentNormalizer:
    """Markdown-aware document cleanup."""

    FILLER_PHRASES = [
        r"\bplease note that\b",
        r"\bit is important to note that\b",
        r"\bas mentioned earlier\b",
        r"\bthat being said\b",
        r"\bhaving said that\b",
        r"\bfor your information\b",
        r"\bbasically\b",
        r"\bas you can see\b",
        r"\bit goes without saying\b",
        r"\bneedless to say\b",
        r"\bas a matter of fact\b",
    ]

    def __init__(self):
        self.filler_regex = re.compile(r"[ \t]*(?:" + "|".join(self.FILLER_PHRASES) + r"),?", re.IGNORECASE)

    def normalize(
        self,
        content: str,
        remove_filler: bool = True,
        remove_duplicates: bool = True,
        normalize_markdown: bool = True,
        normalize_links: bool = False,
        normalize_headers: bool = True,
    ) -> NormalizationResult:
        """Run the enabled normalization passes in a fixed order."""
        if not content:
            return NormalizationResult(content or "", "", {"operations": []})

        result = content
        operations: List[str] = []
        stats: Dict[str, int] = {}

        if remove_filler:
            result = self._map_prose(result, self.remove_filler)
            operations.append("remove_filler")
        if remove_duplicates:
            result, stats["duplicates_removed"] = self.remove_duplicates(result)
            operations.append("remove_duplicates")
        if normalize_markdown:
            result = self.normalize_markdown(result)
            operations.append("normalize_markdown")
        if normalize_links:
            result = self.normalize_links(result)
            operations.append("normalize_links")
        if normalize_headers:
            result = self.normalize_headers(result)
            operations.append("normalize_headers")

        result = normalize_whitespace(result)
        operations.append("normalize_whitespace")

        return NormalizationResult(content, result, {
            "operations": operations,
            "original_length": len(content),
            "normalized_length": len(result),
            **stats,
        })

    def remove_filler(self, line: str) -> str:
        stripped = self.filler_regex.sub("", line)
        if stripped != line and not line[:1].isspace():
            stripped = stripped.lstrip()
        return stripped

    def _map_prose(self, text: str, fn) -> str:
        """Apply fn to every line outside fenced code blocks."""
        return "\n".join(line if in_code else fn(line) for _, line, in_code in iter_lines(text))

    def remove_duplicates(self, text: str):
        """
        Drop repeated non-blank lines (compared case- and space-insensitively).

        Headers are compared together with their level; rules and code are
        never deduplicated.
        """
        seen = set()
        kept = []
        removed = 0
        for _, line, in_code in iter_lines(text):
            if in_code or not line.strip() or RULE_RE.match(line):
                kept.append(line)
                continue
            header = HEADER_RE.match(line)
            key = f"h{len(header.group(1))}:{_key(header.group(2))}" if header else _key(LIST_ITEM_RE.sub("- ", line))
            if key in seen:
                removed += 1
                continue
            seen.add(key)
            kept.append(line)
        return "\n".join(kept), removed

    def normalize_markdown(self, text: str) -> str:
        """Unify header spacing, bullet markers, rules and quote markers."""
        def fix(line: str) -> str:
            header = HEADER_RE.match(line)
            if header:
                return f"{header.group(1)} {header.group(2).strip()}"
            if RULE_RE.match(line):
                return "---"
            line = BULLET_RE.sub(r"\1- ", line)
            return QUOTE_RE.sub(r"\1> ", line)
        return self._map_prose(text, fix)

    def normalize_links(self, text: str) -> str:
        """Rewrite inline links to numbered reference links."""
        refs: Dict[str, int] = {}

        def to_ref(match: re.Match) -> str:
            url = match.group(2)
            if url not in refs:
                refs[url] = len(refs) + 1
            return f"[{match.group(1)}][{refs[url]}]"

        result = self._map_prose(text, lambda line: INLINE_LINK_RE.sub(to_ref, line))
        if refs:
            result = result.rstrip() + "\n\n" + "\n".join(f"[{n}]: {url}" for url, n in refs.items())
        return result

    def normalize_headers(self, text: str) -> str:
        """Repair skipped header levels (e.g. # followed by ###)."""
        previous = 0
        lines = []
        for _, line, in_code in iter_lines(text):
            header = None if in_code else HEADER_RE.match(line)
            if header:
                level = len(header.group(1))
                if previous and level > previous + 1:
                    level = previous + 1
                previous = level
                line = f"{'#' * level} {header.group(2)}"
            lines.append(line)
        return "\n".join(lines)
