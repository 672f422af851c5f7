"""
Tests for the text summarizer.

Run with: python -m pytest contextpress/tests/test_summarizer.py -v
"""

import math

import pytest

from contextpress.errors import StrategyNotFound
from contextpress.summarizer import TextSummarizer

WORDS = [
    "apple", "river", "stone", "cloud", "forest", "candle", "mirror", "harbor",
    "meadow", "lantern", "valley", "thunder", "garden", "marble", "window",
    "compass", "feather", "island", "canyon", "orchard",
]
TWENTY_UNITS = "\n".join(
    f"Sentence about the {word} appears on this line of plain text." for word in WORDS
)

PLAN = """# Release Plan

## Goal
The goal is to ship a stable release before the deadline.

## Requirements
- The build must pass on every supported platform.
- Documentation should cover the new configuration options.

## Notes
Some background information that matters less than the rest.
"""


@pytest.fixture
def summarizer():
    return TextSummarizer()


class TestExtractive:
    """Extractive summarization."""

    def test_selects_ceil_ratio_units(self, summarizer):
        result = summarizer.summarize(TWENTY_UNITS, target_ratio=0.3)
        lines = result.summary.split("\n")
        assert len(lines) == math.ceil(20 * 0.3)

    def test_selected_units_keep_original_order(self, summarizer):
        result = summarizer.summarize(TWENTY_UNITS, target_ratio=0.3)
        original_lines = TWENTY_UNITS.split("\n")
        positions = [original_lines.index(line) for line in result.summary.split("\n")]
        assert positions == sorted(positions)

    def test_ratio_one_keeps_everything(self, summarizer):
        result = summarizer.summarize(TWENTY_UNITS, target_ratio=1.0)
        assert result.summary == TWENTY_UNITS

    def test_summary_is_shorter(self, summarizer):
        result = summarizer.summarize(TWENTY_UNITS, target_ratio=0.3)
        assert result.summary_tokens < result.original_tokens
        assert result.compression_ratio > 0

    def test_deterministic(self, summarizer):
        first = summarizer.summarize(PLAN, target_ratio=0.5).summary
        second = summarizer.summarize(PLAN, target_ratio=0.5).summary
        assert first == second

    def test_structural_units_preferred(self, summarizer):
        result = summarizer.summarize(PLAN, target_ratio=0.5)
        assert "- The build must pass on every supported platform." in result.summary

    def test_key_points(self, summarizer):
        result = summarizer.summarize(PLAN, target_ratio=0.5)
        assert any(point.startswith("Goal:") for point in result.key_points)
        assert len(result.key_points) <= 5


class TestUnits:
    """Unit splitting."""

    def test_list_items_are_atomic(self, summarizer):
        units = summarizer.split_units("- first clause here. second clause here.")
        assert len(units) == 1
        assert units[0].structural

    def test_prose_split_into_sentences(self, summarizer):
        units = summarizer.split_units("The first sentence is here. The second sentence follows.")
        assert [u.text for u in units] == ["The first sentence is here.", "The second sentence follows."]

    def test_short_units_dropped(self, summarizer):
        units = summarizer.split_units("Tiny.\nThis line is long enough to keep.")
        assert [u.text for u in units] == ["This line is long enough to keep."]

    def test_code_block_is_one_unit(self, summarizer):
        block = "```python\nimport os\n# list files\nprint(os.listdir())\n```"
        units = summarizer.split_units(f"The script lists the working directory.\n{block}")
        assert [u.text for u in units] == ["The script lists the working directory.", block]
        assert units[1].code and units[1].structural

    def test_unterminated_code_block_kept(self, summarizer):
        units = summarizer.split_units("```\nx = 1")
        assert [u.text for u in units] == ["```\nx = 1"]

    def test_full_ratio_keeps_code_verbatim(self, summarizer):
        block = "```python\nimport os\n```"
        text = f"## Setup\nThe setup script needs the os module.\n{block}"
        result = summarizer.summarize(text, target_ratio=1.0)
        assert block in result.summary

    def test_code_comments_are_not_concepts(self, summarizer):
        text = "## Setup Steps\nThe goal is a working build.\n```bash\n# install dependencies\nmake\n```"
        result = summarizer.summarize(text, target_ratio=1.0, strategy="abstractive")
        assert "install dependencies" not in result.summary
        assert "- Setup Steps" in result.summary

    def test_header_is_unit(self, summarizer):
        units = summarizer.split_units("## Requirements Overview\nbody text that is long enough.")
        assert units[0].text == "## Requirements Overview"
        assert units[0].structural


class TestAbstractive:
    """Abstractive outline."""

    def test_outline_sections(self, summarizer):
        result = summarizer.summarize(PLAN, target_ratio=0.5, strategy="abstractive")
        assert result.summary.startswith("## Key Concepts")
        assert "## Key Information" in result.summary
        assert "## Structure" in result.summary

    def test_structure_headers_shifted_one_level(self, summarizer):
        result = summarizer.summarize(PLAN, target_ratio=0.5, strategy="abstractive")
        assert "## Release Plan" in result.summary
        assert "### Goal" in result.summary

    def test_metadata_counts(self, summarizer):
        result = summarizer.summarize(PLAN, target_ratio=0.5, strategy="abstractive")
        assert result.metadata["structure_elements"] == 4
        assert result.metadata["concept_count"] > 0


class TestEdgeCases:
    """Errors and degenerate input."""

    def test_unknown_strategy(self, summarizer):
        with pytest.raises(StrategyNotFound):
            summarizer.summarize(PLAN, strategy="neural")

    @pytest.mark.parametrize("ratio", [0, -0.5, 1.5])
    def test_invalid_ratio(self, summarizer, ratio):
        with pytest.raises(ValueError):
            summarizer.summarize(PLAN, target_ratio=ratio)

    def test_empty_text(self, summarizer):
        result = summarizer.summarize("")
        assert result.summary == ""
        assert result.original_tokens == 0
        assert result.compression_ratio == 0.0
