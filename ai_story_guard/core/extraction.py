"""
Character extraction and trait tracking.

Scans chapter text for each character and harvests appearances, trait
and emotion references, and co-occurrence with other characters. All
matching is case-insensitive and whole-word, and every function here is
pure over the chapter snapshot it is given.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from itertools import combinations
from typing import Dict, List, Pattern, Sequence, Set, Tuple

from ai_story_guard.storage.models import ChapterRef, Character

from .rules import (
    DESCRIPTIVE_CHAPTER_CHARS,
    EMOTION_ANTONYMS,
    EMOTION_VOCABULARY,
    MIN_KEYWORD_LENGTH,
    MIN_TRAIT_TOKEN_LENGTH,
    TRAIT_RULES,
    TraitKind,
)

_WORD_RE = re.compile(r"[\w'-]+")


def _verb_kinds() -> Dict[str, TraitKind]:
    kinds: Dict[str, TraitKind] = {}
    for rule in TRAIT_RULES:
        for verb in rule.verbs:
            kinds.setdefault(verb, rule.kind)
    return kinds


VERB_KINDS = _verb_kinds()


@dataclass(frozen=True)
class Appearance:
    """Mentions of a character in one chapter."""
    chapter_id: str
    chapter_number: int
    mention_count: int
    has_description: bool


@dataclass(frozen=True)
class TraitObservation:
    """A trait token and the chapters it was observed in, in reading order."""
    character_id: str
    trait_token: str
    trait_kind: TraitKind
    chapters: Tuple[str, ...]


@dataclass(frozen=True)
class RelationshipObservation:
    """Chapters in which both characters of an unordered pair appear."""
    character_a: str
    character_b: str
    co_occurring_chapters: Tuple[str, ...]

    @property
    def key(self) -> Tuple[str, str]:
        return relationship_key(self.character_a, self.character_b)


@dataclass(frozen=True)
class CharacterExtraction:
    character: Character
    appearances: Tuple[Appearance, ...]
    traits: Tuple[TraitObservation, ...]
    relationships: Tuple[RelationshipObservation, ...]


def relationship_key(name_a: str, name_b: str) -> Tuple[str, str]:
    """Key an unordered pair by its sorted lowercase names."""
    first, second = sorted((name_a.lower(), name_b.lower()))
    return first, second


def ordered_chapters(chapters: Sequence[ChapterRef]) -> List[ChapterRef]:
    """Chapters in reading order, independent of the order supplied."""
    return sorted(chapters, key=lambda c: (c.sequence_number, c.id))


@lru_cache(maxsize=256)
def name_pattern(name: str) -> Pattern[str]:
    """Whole-word, case-insensitive pattern for a character name."""
    return re.compile(rf"(?<!\w){re.escape(name.strip())}(?!\w)", re.IGNORECASE)


@lru_cache(maxsize=256)
def trait_pattern(name: str) -> Pattern[str]:
    """Pattern for '<name> <linking verb> <token>'."""
    verbs = "|".join(re.escape(verb) for verb in VERB_KINDS)
    return re.compile(
        rf"(?<!\w){re.escape(name.strip())}\s+({verbs})\s+(\w+)",
        re.IGNORECASE,
    )


def count_mentions(name: str, text: str) -> int:
    return len(name_pattern(name).findall(text or ""))


def mentions(name: str, text: str) -> bool:
    return name_pattern(name).search(text or "") is not None


def find_appearances(character: Character, chapters: Sequence[ChapterRef]) -> Tuple[Appearance, ...]:
    """Record every chapter that mentions the character at least once."""
    appearances = []
    for number, chapter in enumerate(ordered_chapters(chapters), start=1):
        count = count_mentions(character.name, chapter.text)
        if count > 0:
            appearances.append(Appearance(
                chapter_id=chapter.id,
                chapter_number=number,
                mention_count=count,
                has_description=len(chapter.text or "") > DESCRIPTIVE_CHAPTER_CHARS
            ))
    return tuple(appearances)


def classify_trait(verb: str, token: str) -> TraitKind:
    """Kind of a trait token given the verb that introduced it.

    A state word from the emotion vocabulary is an emotion even when it
    follows a plain trait verb, so "Alice was scared" and "Alice felt
    scared" are observed the same way.
    """
    kind = VERB_KINDS[verb.lower()]
    if kind == TraitKind.TRAIT and token in EMOTION_VOCABULARY:
        return TraitKind.EMOTION
    return kind


def extract_traits(character: Character, chapters: Sequence[ChapterRef]) -> Tuple[TraitObservation, ...]:
    """Harvest trait tokens for a character.

    Chapters are scanned in reading order and matches in text order. The
    first classification of a token wins; later sightings only add their
    chapter.
    """
    pattern = trait_pattern(character.name)
    kinds: Dict[str, TraitKind] = {}
    seen_in: Dict[str, List[str]] = {}

    for chapter in ordered_chapters(chapters):
        for match in pattern.finditer(chapter.text or ""):
            token = match.group(2).lower()
            if len(token) < MIN_TRAIT_TOKEN_LENGTH:
                continue
            if token not in kinds:
                kinds[token] = classify_trait(match.group(1), token)
                seen_in[token] = []
            if chapter.id not in seen_in[token]:
                seen_in[token].append(chapter.id)

    return tuple(
        TraitObservation(
            character_id=character.id,
            trait_token=token,
            trait_kind=kinds[token],
            chapters=tuple(seen_in[token])
        )
        for token in kinds
    )


def description_keywords(description: str) -> List[str]:
    """Distinct description words longer than three characters, in order."""
    keywords: List[str] = []
    for word in _WORD_RE.findall((description or "").lower()):
        word = word.strip("'-")
        if len(word) >= MIN_KEYWORD_LENGTH and word not in keywords:
            keywords.append(word)
    return keywords


def missing_keywords(character: Character, chapters: Sequence[ChapterRef]) -> List[str]:
    """Description keywords that no chapter contains as a substring.

    With no chapters the check is vacuous and nothing is reported.
    """
    if not chapters:
        return []
    texts = [(chapter.text or "").lower() for chapter in chapters]
    return [
        keyword for keyword in description_keywords(character.canonical_description)
        if not any(keyword in text for text in texts)
    ]


def emotional_states(character: Character, traits: Sequence[TraitObservation]) -> Set[str]:
    """Emotion tokens observed in the story plus those in the description."""
    states = {t.trait_token for t in traits if t.trait_kind == TraitKind.EMOTION}
    for word in _WORD_RE.findall((character.canonical_description or "").lower()):
        if word in EMOTION_VOCABULARY:
            states.add(word)
    return states


def emotional_contradictions(states: Set[str]) -> List[Tuple[str, str]]:
    """Antonym pairs with both members present, in table order."""
    return [(a, b) for a, b in EMOTION_ANTONYMS if a in states and b in states]


def detect_relationships(
    characters: Sequence[Character],
    chapters: Sequence[ChapterRef]
) -> List[RelationshipObservation]:
    """Co-occurrence for every unordered pair of characters.

    Pairs follow the order of the characters given, one entry per pair.
    """
    ordered = ordered_chapters(chapters)
    present = {
        character.id: [mentions(character.name, chapter.text) for chapter in ordered]
        for character in characters
    }

    relationships: Dict[Tuple[str, str], RelationshipObservation] = {}
    for first, second in combinations(characters, 2):
        key = relationship_key(first.name, second.name)
        if key in relationships:
            continue
        shared = tuple(
            chapter.id
            for chapter, a, b in zip(ordered, present[first.id], present[second.id])
            if a and b
        )
        relationships[key] = RelationshipObservation(
            character_a=first.name,
            character_b=second.name,
            co_occurring_chapters=shared
        )
    return list(relationships.values())


def extract(
    character: Character,
    chapters: Sequence[ChapterRef],
    story_characters: Sequence[Character] = ()
) -> CharacterExtraction:
    """Extract appearances, traits and relationships for one character.

    Args:
        character: Character to scan for
        chapters: Immutable chapter snapshot of the story
        story_characters: All characters of the story, used for
            relationship detection

    Returns:
        CharacterExtraction for the character
    """
    others = [c for c in story_characters if c.id != character.id]
    relationships = tuple(
        rel for rel in detect_relationships([character] + others, chapters)
        if character.name in (rel.character_a, rel.character_b)
    )
    return CharacterExtraction(
        character=character,
        appearances=find_appearances(character, chapters),
        traits=extract_traits(character, chapters),
        relationships=relationships
    )
