"""
Tests for input validation and prompt construction helpers.
"""

import pytest

from ai_story_guard.core.errors import ValidationError
from ai_story_guard.core.prompts import (
    continuation_prompt,
    parse_suggestions,
    require_chapters,
    sanitize_input,
    twist_prompt,
)


class TestParseSuggestions:
    """Test reading suggestion lists from model output."""

    def test_json_array(self):
        assert parse_suggestions('["One", "Two", "Three"]') == ["One", "Two", "Three"]

    def test_json_array_in_code_fence(self):
        text = '```json\n["A secret twin", "The map was fake"]\n```'
        assert parse_suggestions(text) == ["A secret twin", "The map was fake"]

    def test_numbered_lines_fallback(self):
        text = "Here are some ideas:\n1. A storm hits\n2) The train stops\n\n- A letter arrives\n* Too many"
        assert parse_suggestions(text) == ["Here are some ideas:", "A storm hits", "The train stops"]

    def test_blank_items_dropped(self):
        assert parse_suggestions('["One", "  ", ""]') == ["One"]

    @pytest.mark.parametrize("text", [None, "", "   \n  "])
    def test_empty_output(self, text):
        assert parse_suggestions(text) == []


class TestRequireChapters:
    """Test recent chapter validation."""

    def test_valid_list(self):
        assert require_chapters(("one", "two")) == ["one", "two"]

    def test_empty_list(self):
        assert require_chapters([]) == []

    def test_error_names_offending_item(self):
        with pytest.raises(ValidationError, match=r"recent_chapters\[1\] must be a string"):
            require_chapters(["ok", None])


class TestPromptBuilders:
    """Test prompt text construction."""

    def test_twist_prompt_numbers_chapters(self):
        prompt = twist_prompt("A road trip", ["They leave at dawn.", "The car breaks down."])

        assert "Chapter 1: They leave at dawn." in prompt
        assert "Chapter 2: The car breaks down." in prompt
        assert "Real-life context" not in prompt

    def test_unknown_continuation_theme_has_no_guidance(self):
        prompt = continuation_prompt("A road trip", [], "mystery")

        assert "Theme: mystery" in prompt
        assert "magical" not in prompt
        assert "romantic" not in prompt

    def test_sanitize_strips_markup(self):
        assert sanitize_input('<img src=x onerror=alert(1)>Hi <b>there</b>') == "Hi there"
