"""
Rule tables for the character consistency analyzer.

Extraction and suggestion behavior is data: changing a table here (and
bumping RULESET_VERSION) changes the analyzer without touching its code.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Tuple

RULESET_VERSION = "1"


class TraitKind(Enum):
    """Classification of a harvested trait token."""
    TRAIT = "trait"
    POSSESSION = "possession"
    EMOTION = "emotion"


class Severity(Enum):
    """Issue severity, in increasing order of impact on the score."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class TraitRule:
    """Linking verbs that introduce a trait token of a given kind."""
    verbs: Tuple[str, ...]
    kind: TraitKind


# Ordered: a verb belongs to the first rule that lists it
TRAIT_RULES: Tuple[TraitRule, ...] = (
    TraitRule(verbs=("is", "was", "seems", "appears", "looks"), kind=TraitKind.TRAIT),
    TraitRule(verbs=("has", "had", "possesses"), kind=TraitKind.POSSESSION),
    TraitRule(verbs=("feels", "felt"), kind=TraitKind.EMOTION),
)

# Tokens no longer than this are noise ("a", "an", "so")
MIN_TRAIT_TOKEN_LENGTH = 3

# Description words must be longer than this to count as keywords
MIN_KEYWORD_LENGTH = 4

EMOTION_ANTONYMS: Tuple[Tuple[str, str], ...] = (
    ("happy", "sad"),
    ("angry", "calm"),
    ("excited", "bored"),
    ("confident", "insecure"),
    ("brave", "scared"),
    ("hopeful", "hopeless"),
)

# State words reported after a trait verb ("Alice was scared") count as emotions
EMOTION_VOCABULARY: FrozenSet[str] = frozenset(
    word for pair in EMOTION_ANTONYMS for word in pair
)

NEGATIONS: Tuple[str, ...] = (
    "not", "never", "no", "without", "doesn't", "don't", "isn't", "aren't",
)

# Co-occurrence ratio below which a pair is reported as rarely interacting
RELATIONSHIP_RATIO_THRESHOLD = 0.3

# Traits recurring in at least this share of chapters are "high" consistency
TRAIT_CONSISTENCY_RATIO = 0.7

# Chapters longer than this are considered to describe what they mention
DESCRIPTIVE_CHAPTER_CHARS = 1000

ISSUE_PENALTY = 10
HIGH_SEVERITY_EXTRA_PENALTY = 20

NO_CHARACTERS_SUGGESTION = "No characters found for this story"


class SuggestionTier(Enum):
    POSITIVE = "positive"
    REMEDIATION = "remediation"
    NEUTRAL = "neutral"


REMEDIATION_SCORE_THRESHOLD = 70

SUGGESTION_TABLE: Dict[SuggestionTier, Tuple[str, ...]] = {
    SuggestionTier.POSITIVE: (
        "Great job maintaining character consistency!",
        "Consider developing character relationships further",
    ),
    SuggestionTier.REMEDIATION: (
        "Focus on maintaining consistent character traits and descriptions",
        "Review character development arcs for logical progression",
    ),
    SuggestionTier.NEUTRAL: (
        "Good character consistency overall",
        "Continue to develop character depth and relationships",
    ),
}

# Appended to remediation when the story has more than one character
RELATIONSHIP_REMEDIATION = "Develop relationships between characters more consistently"
