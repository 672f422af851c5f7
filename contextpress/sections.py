"""
Markdown section parsing.

A document is split, in one linear scan, into header-rooted sections.
Content that appears before the first header becomes an implicit
"Introduction" section. Header-looking lines inside fenced code blocks are
left alone.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

HEADER_RE = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
FENCE_RE = re.compile(r"^\s*(```|~~~)")

INTRODUCTION = "Introduction"
GENERAL = "general"

# Section-name substrings -> category weight. First match (in this order) names the type.
SECTION_CATEGORIES: Dict[str, List[str]] = {
    "critical": [
        "subtasks", "acceptance criteria", "requirements", "goal",
        "objectives", "current sprint", "active tasks",
    ],
    "high": [
        "description", "specifications", "architecture", "implementation",
        "planned tasks",
    ],
    "medium": ["testing", "documentation", "notes", "examples", "guidelines"],
    "low": ["output log", "history", "templates", "completed tasks", "old logs"],
}


@dataclass
class Section:
    name: str
    level: int
    content: str
    type: str = GENERAL
    start_line: int = 0
    end_line: int = 0

    @property
    def header(self) -> str:
        """The header line, or "" for the implicit introduction."""
        first = self.content.split("\n", 1)[0]
        return first if HEADER_RE.match(first) else ""

    @property
    def body(self) -> str:
        """Section content without its header line."""
        if not self.header:
            return self.content
        parts = self.content.split("\n", 1)
        return parts[1].strip() if len(parts) > 1 else ""


def identify_section_type(name: str) -> str:
    """Map a section name to the first category substring it contains."""
    lowered = name.lower()
    for keywords in SECTION_CATEGORIES.values():
        for keyword in keywords:
            if keyword in lowered:
                return keyword
    return GENERAL


def section_category(name: str) -> Optional[str]:
    """Category tier ("critical", "high", ...) of a section name, if any."""
    lowered = name.lower()
    for tier, keywords in SECTION_CATEGORIES.items():
        if any(keyword in lowered for keyword in keywords):
            return tier
    return None


def iter_lines(document: str) -> Iterator[Tuple[int, str, bool]]:
    """Yield (index, line, in_code) for each line; fence lines count as code."""
    in_code = False
    for idx, line in enumerate(document.split("\n")):
        if FENCE_RE.match(line):
            in_code = not in_code
            yield idx, line, True
            continue
        yield idx, line, in_code


def parse_sections(document: str) -> List[Section]:
    """Split a document into sections ordered by position."""
    if not isinstance(document, str) or not document.strip():
        return []

    sections: List[Section] = []
    name: Optional[str] = None
    level = 1
    buffer: List[str] = []
    start = 0

    def close(end: int) -> None:
        content = "\n".join(buffer).strip()
        if name is None and not content:
            return
        section_name = name if name is not None else INTRODUCTION
        sections.append(Section(
            name=section_name,
            level=level,
            content=content,
            type=identify_section_type(section_name),
            start_line=start,
            end_line=end,
        ))

    last_idx = 0
    for idx, line, in_code in iter_lines(document):
        last_idx = idx
        match = None if in_code else HEADER_RE.match(line)
        if match:
            close(idx - 1)
            name = match.group(2).strip()
            level = len(match.group(1))
            buffer = [line]
            start = idx
            continue
        if name is None and not buffer and not line.strip():
            # Leading blank lines before any content
            start = idx + 1
            continue
        buffer.append(line)

    close(last_idx)
    return sections


def section_spans(document: str, sections: List[Section]) -> List[str]:
    """
    Raw text spans for each section, partitioning the whole document.

    The first span also owns any leading blank lines; each span runs up to
    the line before the next section starts.
    """
    lines = document.split("\n")
    spans = []
    for i, _ in enumerate(sections):
        begin = 0 if i == 0 else sections[i].start_line
        end = sections[i + 1].start_line if i + 1 < len(sections) else len(lines)
        text = "\n".join(lines[begin:end])
        if end < len(lines):
            text += "\n"
        spans.append(text)
    return spans


def join_sections(contents: List[str]) -> str:
    """Join section contents with blank lines, skipping empty ones."""
    return "\n\n".join(c for c in contents if c and c.strip())
