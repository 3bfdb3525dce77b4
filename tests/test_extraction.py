"""
Tests for character extraction and trait tracking.
"""

from datetime import datetime

from ai_story_guard.core.extraction import (
    count_mentions,
    description_keywords,
    detect_relationships,
    emotional_contradictions,
    emotional_states,
    extract,
    extract_traits,
    find_appearances,
    missing_keywords,
    relationship_key,
)
from ai_story_guard.core.rules import TraitKind
from ai_story_guard.storage.models import ChapterRef, Character


def make_character(name, description="", char_id=None, created=1):
    return Character(
        id=char_id or name.lower(),
        story_id="story-1",
        name=name,
        canonical_description=description,
        created_at=datetime(2024, 1, created)
    )


def make_chapter(number, text, chapter_id=None):
    return ChapterRef(
        id=chapter_id or f"ch{number}",
        story_id="story-1",
        sequence_number=number,
        text=text
    )


class TestTraitExtraction:
    """Test trait, possession and emotion harvesting."""

    def test_verbs_map_to_kinds(self):
        alice = make_character("Alice")
        chapters = [make_chapter(1, "Alice is tall. Alice has courage. Alice feels lonely.")]

        traits = {t.trait_token: t.trait_kind for t in extract_traits(alice, chapters)}
        assert traits == {
            "tall": TraitKind.TRAIT,
            "courage": TraitKind.POSSESSION,
            "lonely": TraitKind.EMOTION,
        }

    def test_short_tokens_skipped(self):
        alice = make_character("Alice")
        chapters = [make_chapter(1, "Alice is an engineer. Alice was so tired.")]

        assert extract_traits(alice, chapters) == ()

    def test_match_is_case_insensitive(self):
        alice = make_character("Alice")
        chapters = [make_chapter(1, "ALICE WAS Brilliant.")]

        traits = extract_traits(alice, chapters)
        assert [t.trait_token for t in traits] == ["brilliant"]

    def test_first_classification_wins_and_chapters_accumulate(self):
        alice = make_character("Alice")
        chapters = [
            make_chapter(2, "Alice felt proud of the harvest."),
            make_chapter(1, "Alice is proud. Alice is proud again."),
        ]

        traits = extract_traits(alice, chapters)
        assert len(traits) == 1
        assert traits[0].trait_kind == TraitKind.TRAIT
        assert traits[0].chapters == ("ch1", "ch2")

    def test_emotion_word_after_trait_verb_is_emotion(self):
        alice = make_character("Alice")
        chapters = [make_chapter(1, "Alice was scared of the dark.")]

        traits = extract_traits(alice, chapters)
        assert traits[0].trait_kind == TraitKind.EMOTION

    def test_name_must_be_whole_word(self):
        alice = make_character("Alice")
        chapters = [make_chapter(1, "Malice is everywhere. Alicea is tall.")]

        assert extract_traits(alice, chapters) == ()


class TestAppearances:

    def test_mentions_counted_per_chapter(self):
        bob = make_character("Bob")
        chapters = [
            make_chapter(1, "Bob waved. bob smiled. Bobby left."),
            make_chapter(2, "Nobody was home."),
            make_chapter(3, "Bob" + " returned" * 200),
        ]

        appearances = find_appearances(bob, chapters)
        assert [(a.chapter_id, a.mention_count) for a in appearances] == [("ch1", 2), ("ch3", 1)]
        assert [a.chapter_number for a in appearances] == [1, 3]
        assert appearances[0].has_description is False
        assert appearances[1].has_description is True

    def test_count_mentions_handles_empty_text(self):
        assert count_mentions("Bob", "") == 0


class TestKeywords:

    def test_description_keywords(self):
        assert description_keywords("a fierce warrior queen, fierce and proud") == [
            "fierce", "warrior", "queen", "proud",
        ]

    def test_missing_keywords_use_substring_match(self):
        queen = make_character("Mara", "a fierce warrior queen")
        chapters = [make_chapter(1, "Mara fought fiercely."), make_chapter(2, "The QUEEN rested.")]

        assert missing_keywords(queen, chapters) == ["warrior"]

    def test_no_chapters_reports_nothing(self):
        queen = make_character("Mara", "a fierce warrior queen")
        assert missing_keywords(queen, []) == []


class TestEmotions:

    def test_states_include_description_words(self):
        alice = make_character("Alice", "happy and brave")
        traits = extract_traits(alice, [make_chapter(1, "Alice felt sad.")])

        assert emotional_states(alice, traits) == {"happy", "brave", "sad"}

    def test_contradictions_follow_table_order(self):
        states = {"scared", "brave", "sad", "happy", "calm"}
        assert emotional_contradictions(states) == [("happy", "sad"), ("brave", "scared")]


class TestRelationships:

    def test_co_occurring_chapters(self):
        alice = make_character("Alice", created=1)
        bob = make_character("Bob", created=2)
        chapters = [
            make_chapter(1, "Alice met Bob."),
            make_chapter(2, "Alice walked alone."),
            make_chapter(3, "Bobby and Alice talked."),
        ]

        relationships = detect_relationships([alice, bob], chapters)
        assert len(relationships) == 1
        assert relationships[0].key == ("alice", "bob")
        assert relationships[0].co_occurring_chapters == ("ch1",)

    def test_one_entry_per_pair(self):
        cast = [make_character("Alice"), make_character("Bob"), make_character("Cara")]
        relationships = detect_relationships(cast, [make_chapter(1, "Alice, Bob and Cara.")])

        assert [r.key for r in relationships] == [("alice", "bob"), ("alice", "cara"), ("bob", "cara")]

    def test_relationship_key_is_unordered(self):
        assert relationship_key("Bob", "alice") == relationship_key("Alice", "BOB")

    def test_extract_keeps_only_own_relationships(self):
        alice = make_character("Alice")
        cast = [alice, make_character("Bob"), make_character("Cara")]
        chapters = [make_chapter(1, "Alice is brave. Bob met Cara.")]

        extraction = extract(alice, chapters, cast)
        assert [r.key for r in extraction.relationships] == [("alice", "bob"), ("alice", "cara")]
        assert [t.trait_token for t in extraction.traits] == ["brave"]
        assert len(extraction.appearances) == 1
