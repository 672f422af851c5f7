"""
Token counting.

Counts approximate language-model tokens with tiktoken. The encoding is
fixed per counter, and counters are cached per encoding for the lifetime of
the process.

Public API:
    count_tokens(text, encoding=DEFAULT_ENCODING) -> int
    analyze_token_distribution(document) -> List[dict]
    count_file_tokens(path) -> int
"""

import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List

import tiktoken

from .config import DEFAULT_ENCODING
from .sections import parse_sections, section_spans

logger = logging.getLogger(__name__)


class TokenCounter:
    """Token counter backed by a tiktoken encoding."""

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        self.encoding_name = encoding_name
        self.encoder = None
        try:
            self.encoder = tiktoken.get_encoding(encoding_name)
        except Exception as exc:
            logger.warning("Could not load tiktoken encoding %s (%s); using word heuristic", encoding_name, exc)

    @property
    def using_tiktoken(self) -> bool:
        return self.encoder is not None

    def count(self, text: Any) -> int:
        """Count tokens in text. Non-string or empty input counts as 0."""
        if not isinstance(text, str) or not text:
            return 0
        if self.encoder is None:
            return self._fallback_count(text)
        try:
            # Special-token markers are ordinary text here
            return len(self.encoder.encode(text, disallowed_special=()))
        except Exception as exc:
            logger.debug("Token encoding failed: %s", exc)
            return self._fallback_count(text)

    def _fallback_count(self, text: str) -> int:
        """Word/punctuation heuristic used when no encoding could be loaded."""
        words = text.split()
        punct_count = len(re.findall(r"[.,!?;:'()\[\]{}#*`-]", text))
        return max(1, int((len(words) + punct_count) * 1.3))


_token_counters: Dict[str, TokenCounter] = {}
_counters_lock = threading.Lock()


def get_token_counter(encoding: str = DEFAULT_ENCODING) -> TokenCounter:
    """Get or create token counter instance for encoding."""
    with _counters_lock:
        if encoding not in _token_counters:
            _token_counters[encoding] = TokenCounter(encoding)
        return _token_counters[encoding]


def count_tokens(text: Any, encoding: str = DEFAULT_ENCODING) -> int:
    """Count tokens in text."""
    return get_token_counter(encoding).count(text)


def count_file_tokens(path, encoding: str = DEFAULT_ENCODING) -> int:
    """Count tokens in a UTF-8 file; missing or unreadable files count as 0."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Cannot read %s: %s", path, exc)
        return 0
    return count_tokens(text, encoding)


def analyze_token_distribution(document: str, encoding: str = DEFAULT_ENCODING) -> List[Dict[str, Any]]:
    """
    Per-section token counts for a document.

    Each section is counted over its raw line span, and the spans partition
    the document, so the section counts add up to the whole-document count.
    Percentages are relative to the sum of section counts (1 decimal).
    """
    if not isinstance(document, str) or not document.strip():
        return []

    sections = parse_sections(document)
    counter = get_token_counter(encoding)
    spans = section_spans(document, sections)
    counts = [counter.count(span) for span in spans]
    total = sum(counts)

    distribution = []
    for section, tokens in zip(sections, counts):
        distribution.append({
            "name": section.name,
            "tokens": tokens,
            "percentage": round(tokens / total * 100, 1) if total > 0 else 0.0,
            "content": section.content,
        })
    return distribution
