"""
Tests for the consistency analyzer and scorer.
"""

from datetime import datetime, timezone

import pytest

from ai_story_guard.core.consistency import (
    STATUS_ANALYZED,
    STATUS_NO_CHARACTERS,
    analyze_story,
    check_new_content,
)
from ai_story_guard.core.rules import (
    NO_CHARACTERS_SUGGESTION,
    RELATIONSHIP_REMEDIATION,
    SUGGESTION_TABLE,
    Severity,
    SuggestionTier,
)
from ai_story_guard.core.scoring import Issue, score, suggestion_tier, suggestions_for
from ai_story_guard.storage.models import ChapterRef, Character

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_character(name, description="", created=1):
    return Character(
        id=name.lower(),
        story_id="story-1",
        name=name,
        canonical_description=description,
        created_at=datetime(2024, 1, created)
    )


def make_chapters(*texts):
    return [
        ChapterRef(id=f"ch{i}", story_id="story-1", sequence_number=i, text=text)
        for i, text in enumerate(texts, start=1)
    ]


def issue(severity):
    return Issue(description="x", severity=severity, suggestion="y")


class TestScoring:
    """Test the score formula and suggestion table."""

    def test_no_issues_is_perfect(self):
        assert score([]) == 100

    def test_penalties(self):
        assert score([issue(Severity.LOW)]) == 90
        assert score([issue(Severity.MEDIUM), issue(Severity.LOW)]) == 80
        assert score([issue(Severity.HIGH)]) == 70

    def test_clamped_at_zero(self):
        assert score([issue(Severity.HIGH)] * 4) == 0

    @pytest.mark.parametrize("issues,characters,final,tier", [
        (0, 2, 100, SuggestionTier.POSITIVE),
        (0, 1, 100, SuggestionTier.NEUTRAL),
        (1, 2, 90, SuggestionTier.NEUTRAL),
        (3, 1, 69, SuggestionTier.REMEDIATION),
        (2, 3, 70, SuggestionTier.NEUTRAL),
    ])
    def test_suggestion_tier(self, issues, characters, final, tier):
        assert suggestion_tier(issues, characters, final) == tier

    def test_remediation_mentions_relationships_for_ensembles(self):
        assert suggestions_for(5, 1, 50) == list(SUGGESTION_TABLE[SuggestionTier.REMEDIATION])
        assert suggestions_for(5, 2, 50)[-1] == RELATIONSHIP_REMEDIATION


class TestAnalyzeStory:
    """Test report generation."""

    def test_no_characters(self):
        report = analyze_story("story-1", [], make_chapters("Some text"), now=NOW)

        assert report.score == 100
        assert report.issues == []
        assert report.suggestions == [NO_CHARACTERS_SUGGESTION]
        assert report.status == STATUS_NO_CHARACTERS

    def test_no_chapters_skips_coverage_and_relationships(self):
        cast = [make_character("Mara", "a fierce warrior queen"), make_character("Tomas", "a quiet scholar", 2)]
        report = analyze_story("story-1", cast, [], now=NOW)

        assert report.issues == []
        assert report.score == 100
        assert report.status == STATUS_ANALYZED

    def test_emotional_contradictions(self):
        alice = make_character("Alice", "happy and brave")
        chapters = make_chapters("Alice felt sad after the storm.", "Alice was scared of the wolves.")

        report = analyze_story("story-1", [alice], chapters, now=NOW)

        high = [i for i in report.issues if i.severity == Severity.HIGH]
        assert [i.description for i in high] == [
            "Contradictory emotions: happy and sad",
            "Contradictory emotions: brave and scared",
        ]
        assert all(i.character == "Alice" for i in high)
        assert report.score <= 40

    def test_keyword_coverage(self):
        mara = make_character("Mara", "a fierce warrior queen")
        chapters = make_chapters("Mara walked to the market.", "Mara slept.")

        report = analyze_story("story-1", [mara], chapters, now=NOW)

        assert [i.severity for i in report.issues] == [Severity.MEDIUM] * 3
        assert [i.description for i in report.issues] == [
            f'Potential inconsistency: "{word}" from original description not found in story content'
            for word in ("fierce", "warrior", "queen")
        ]
        assert report.score == 70

    def test_repeated_description_word_reported_once(self):
        mara = make_character("Mara", "fierce fierce queen")
        chapters = make_chapters("Mara walked to the market.")

        report = analyze_story("story-1", [mara], chapters, now=NOW)

        assert [i.description for i in report.issues] == [
            f'Potential inconsistency: "{word}" from original description not found in story content'
            for word in ("fierce", "queen")
        ]
        assert report.score == 80

    def test_rarely_interacting_characters(self):
        cast = [make_character("Alice", created=1), make_character("Bob", created=2)]
        chapters = make_chapters("Alice met Bob.", "Alice alone.", "Bob alone.", "Nobody.")

        report = analyze_story("story-1", cast, chapters, now=NOW)

        assert len(report.issues) == 1
        assert report.issues[0].severity == Severity.LOW
        assert report.issues[0].description == "Characters Alice and Bob rarely interact (1/4 chapters)"
        assert report.score == 90
        assert report.suggestions == list(SUGGESTION_TABLE[SuggestionTier.NEUTRAL])

    def test_characters_never_together_are_flagged(self):
        cast = [make_character("Alice", created=1), make_character("Bob", created=2)]
        chapters = make_chapters("Alice alone.", "Bob alone.")

        report = analyze_story("story-1", cast, chapters, now=NOW)

        assert len(report.issues) == 1
        assert report.issues[0].severity == Severity.LOW
        assert report.issues[0].description == "Characters Alice and Bob rarely interact (0/2 chapters)"
        assert report.score == 90

    def test_well_connected_characters_get_positive_suggestions(self):
        cast = [make_character("Alice", created=1), make_character("Bob", created=2)]
        chapters = make_chapters("Alice met Bob.", "Bob and Alice argued.", "Alice alone.")

        report = analyze_story("story-1", cast, chapters, now=NOW)

        assert report.issues == []
        assert report.suggestions == list(SUGGESTION_TABLE[SuggestionTier.POSITIVE])

    def test_issue_order_follows_creation_order(self):
        cast = [
            make_character("Bob", "cheerful baker", created=2),
            make_character("Alice", "daring pilot", created=1),
        ]
        chapters = make_chapters("Alice and Bob share tea.")

        report = analyze_story("story-1", cast, chapters, now=NOW)

        assert [i.character for i in report.issues] == ["Alice", "Alice", "Bob", "Bob"]
        assert [c["name"] for c in report.characters] == ["Alice", "Bob"]

    def test_deterministic(self):
        cast = [make_character("Alice", "happy pilot"), make_character("Bob", "grumpy", 2)]
        chapters = make_chapters("Alice is tall. Bob felt sad.", "Alice felt sad.")

        first = analyze_story("story-1", cast, chapters, now=NOW).to_dict()
        second = analyze_story("story-1", list(reversed(cast)), list(reversed(chapters)), now=NOW).to_dict()
        assert first == second

    def test_character_summary(self):
        alice = make_character("Alice", "tall")
        chapters = make_chapters("Alice is tall.", "Alice is tall again.", "Alice is brave.")

        report = analyze_story("story-1", [alice], chapters, now=NOW)
        summary = report.characters[0]

        assert len(summary["appearances"]) == 3
        traits = {t["name"]: t for t in summary["traits"]}
        assert traits["tall"]["chapters_in"] == 2
        assert traits["tall"]["consistency"] == "medium"
        assert traits["brave"]["type"] == "emotion"

    def test_report_dict_shape(self):
        report = analyze_story("story-1", [make_character("Alice")], make_chapters("Alice."), "ch1", now=NOW)
        data = report.to_dict()

        assert data["story_id"] == "story-1"
        assert data["chapter_id"] == "ch1"
        assert data["consistency_score"] == 100
        assert data["generated_at"] == NOW.isoformat()
        assert "new_content_check" not in data


class TestNewContentCheck:

    def test_negated_description_word_flagged(self):
        bob = make_character("Bob", "loyal friend")
        check = check_new_content([bob], "Bob was never loyal to anyone.")

        assert check.safe is False
        assert len(check.issues) == 1
        assert check.issues[0].severity == Severity.HIGH
        assert '"loyal"' in check.issues[0].description

    def test_clean_content(self):
        bob = make_character("Bob", "loyal friend")
        check = check_new_content([bob], "Bob stayed by her side.")

        assert check.safe is True
        assert check.to_dict()["issues"] == []

    def test_only_run_for_check_action(self):
        bob = make_character("Bob", "loyal friend")
        chapters = make_chapters("Bob is a loyal friend.")

        checked = analyze_story("s", [bob], chapters, new_content="not loyal", action="check", now=NOW)
        analyzed = analyze_story("s", [bob], chapters, new_content="not loyal", action="analyze", now=NOW)

        assert checked.new_content_check is not None
        assert checked.to_dict()["new_content_check"]["safe"] is False
        assert analyzed.new_content_check is None
