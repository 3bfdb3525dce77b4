"""
Tests for the fail-closed safety gate.
"""

from unittest.mock import Mock

import pytest

from ai_story_guard.core.errors import UpstreamFailure
from ai_story_guard.core.safety import MAX_CLASSIFIED_CHARS, Safe, SafetyGate, Unsafe, interpret_verdict


class TestInterpretVerdict:
    """Only the exact sentinel is safe."""

    def test_exact_sentinel_is_safe(self):
        assert interpret_verdict("SAFE") == Safe()

    @pytest.mark.parametrize("raw", ["  SAFE", "SAFE\n", " SAFE ", "\tSAFE"])
    def test_padded_sentinel_is_unsafe(self, raw):
        assert interpret_verdict(raw) == Unsafe(reason="unrecognized classifier response")

    def test_unsafe_with_reason(self):
        assert interpret_verdict("UNSAFE: graphic violence") == Unsafe(reason="graphic violence")

    def test_unsafe_without_reason(self):
        assert interpret_verdict("UNSAFE:") == Unsafe(reason="unspecified")

    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        "safe",
        "Safe",
        "SAFE.",
        "SAFE, mostly",
        "This is SAFE",
        "NOT SAFE",
        '{"verdict": "SAFE"}',
        "{malformed",
    ])
    def test_anything_else_is_unsafe(self, raw):
        assert isinstance(interpret_verdict(raw), Unsafe)

    @pytest.mark.parametrize("raw", [None, 1, {"verdict": "SAFE"}, ["SAFE"]])
    def test_non_string_is_unsafe(self, raw):
        assert isinstance(interpret_verdict(raw), Unsafe)


class TestSafetyGate:
    """Test classifier invocation and failure handling."""

    def test_safe_text(self):
        classifier = Mock()
        classifier.classify.return_value = "SAFE"

        assert SafetyGate(classifier).classify("A walk in the park") == Safe()

    def test_unsafe_text(self):
        classifier = Mock()
        classifier.classify.return_value = "UNSAFE: hate speech"

        verdict = SafetyGate(classifier).classify("...")
        assert verdict == Unsafe(reason="hate speech")

    def test_long_text_truncated(self):
        classifier = Mock()
        classifier.classify.return_value = "SAFE"

        SafetyGate(classifier).classify("x" * (MAX_CLASSIFIED_CHARS + 500))
        sent = classifier.classify.call_args[0][0]
        assert len(sent) == MAX_CLASSIFIED_CHARS

    def test_classifier_error_is_upstream_failure(self):
        classifier = Mock()
        classifier.classify.side_effect = TimeoutError("timed out")

        with pytest.raises(UpstreamFailure) as excinfo:
            SafetyGate(classifier).classify("hello")
        assert excinfo.value.retryable is True

    def test_classifier_upstream_failure_propagates(self):
        classifier = Mock()
        classifier.classify.side_effect = UpstreamFailure("Moderation failed", provider="openai")

        with pytest.raises(UpstreamFailure, match="Moderation failed"):
            SafetyGate(classifier).classify("hello")
