"""
Narrative/character consistency analysis.

Builds a cross-chapter model of each character and turns it into a
scored report. The analysis is a best-effort lexical heuristic: flagged
issues are hints for the writers, not ground truth.

Analysis order, which also fixes the order of reported issues:
1. Per character, in creation order: missing description keywords,
   then emotional contradictions
2. Per unordered character pair: rarely interacting characters
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ai_story_guard.storage.models import ChapterRef, Character

from .extraction import (
    CharacterExtraction,
    RelationshipObservation,
    description_keywords,
    detect_relationships,
    emotional_contradictions,
    emotional_states,
    find_appearances,
    extract_traits,
    missing_keywords,
    ordered_chapters,
)
from .rules import (
    NEGATIONS,
    NO_CHARACTERS_SUGGESTION,
    RELATIONSHIP_RATIO_THRESHOLD,
    TRAIT_CONSISTENCY_RATIO,
    Severity,
)
from .scoring import Issue, score, suggestions_for

STATUS_NO_CHARACTERS = "no_characters"
STATUS_ANALYZED = "analyzed"

ACTIONS = ("check", "analyze", "update")


@dataclass(frozen=True)
class NewContentCheck:
    """Result of checking a draft against the characters' descriptions."""
    content_preview: str
    issues: List[Issue]

    @property
    def safe(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_preview": self.content_preview,
            "issues": [issue.to_dict() for issue in self.issues],
            "safe": self.safe,
        }


@dataclass
class ConsistencyReport:
    """Snapshot of one analysis run. Superseded, never merged, by the next run."""
    story_id: str
    characters: List[Dict[str, Any]]
    issues: List[Issue]
    suggestions: List[str]
    score: int
    status: str
    generated_at: datetime
    chapter_id: Optional[str] = None
    new_content_check: Optional[NewContentCheck] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "story_id": self.story_id,
            "chapter_id": self.chapter_id,
            "characters": self.characters,
            "issues": [issue.to_dict() for issue in self.issues],
            "suggestions": self.suggestions,
            "consistency_score": self.score,
            "status": self.status,
            "generated_at": self.generated_at.isoformat(),
        }
        if self.new_content_check is not None:
            data["new_content_check"] = self.new_content_check.to_dict()
        return data


def _keyword_issue(character: Character, keyword: str) -> Issue:
    return Issue(
        character=character.name,
        description=(
            f'Potential inconsistency: "{keyword}" from original description '
            f"not found in story content"
        ),
        severity=Severity.MEDIUM,
        suggestion=f"Consider adding references to {keyword} to maintain character consistency"
    )


def _contradiction_issue(character: Character, positive: str, negative: str) -> Issue:
    return Issue(
        character=character.name,
        description=f"Contradictory emotions: {positive} and {negative}",
        severity=Severity.HIGH,
        suggestion="Consider the character's emotional consistency and development arc"
    )


def _relationship_issue(rel: RelationshipObservation, total_chapters: int) -> Issue:
    shared = len(rel.co_occurring_chapters)
    return Issue(
        description=(
            f"Characters {rel.character_a} and {rel.character_b} rarely interact "
            f"({shared}/{total_chapters} chapters)"
        ),
        severity=Severity.LOW,
        suggestion="Consider developing their relationship more consistently"
    )


def _character_summary(extraction: CharacterExtraction, total_chapters: int, issues: List[Issue]) -> Dict[str, Any]:
    character = extraction.character
    traits = []
    for trait in extraction.traits:
        chapters_in = len(trait.chapters)
        traits.append({
            "name": trait.trait_token,
            "type": trait.trait_kind.value,
            "chapters_in": chapters_in,
            "consistency": "high" if chapters_in >= total_chapters * TRAIT_CONSISTENCY_RATIO else "medium",
        })

    relationships = []
    for rel in extraction.relationships:
        other = rel.character_b if rel.character_a == character.name else rel.character_a
        relationships.append({
            "character": other,
            "chapters_together": len(rel.co_occurring_chapters),
        })

    return {
        "id": character.id,
        "name": character.name,
        "description": character.canonical_description,
        "appearances": [
            {
                "chapter_id": a.chapter_id,
                "chapter_number": a.chapter_number,
                "mention_count": a.mention_count,
                "has_description": a.has_description,
            }
            for a in extraction.appearances
        ],
        "traits": traits,
        "relationships": relationships,
        "consistency_issues": [i.description for i in issues if i.character == character.name],
    }


def check_new_content(characters: Sequence[Character], content: str) -> NewContentCheck:
    """Flag draft text that negates a word from a character's description.

    For example a character described as "loyal" and a draft containing
    "never loyal" yields a high-severity issue.
    """
    lowered = (content or "").lower()
    negations = "|".join(re.escape(neg) for neg in NEGATIONS)
    issues = []
    for character in characters:
        for keyword in description_keywords(character.canonical_description):
            pattern = rf"(?<!\w)(?:{negations})\s+{re.escape(keyword)}(?!\w)"
            if re.search(pattern, lowered):
                issues.append(Issue(
                    character=character.name,
                    description=(
                        f'Contradiction: Original character described as "{keyword}" '
                        f"but new content suggests otherwise"
                    ),
                    severity=Severity.HIGH,
                    suggestion=f"Keep {character.name} consistent with their established description"
                ))
    return NewContentCheck(content_preview=(content or "")[:100] + "...", issues=issues)


def analyze_story(
    story_id: str,
    characters: Sequence[Character],
    chapters: Sequence[ChapterRef],
    chapter_id: Optional[str] = None,
    new_content: Optional[str] = None,
    action: str = "analyze",
    now: Optional[datetime] = None
) -> ConsistencyReport:
    """Analyze character consistency across a story's chapters.

    Args:
        story_id: Story being analyzed
        characters: Characters of the story
        chapters: Chapter snapshot, fetched once for the whole run
        chapter_id: Chapter the analysis was requested for, if any
        new_content: Draft text to check when action is "check"
        action: One of "check", "analyze", "update"
        now: Report timestamp (defaults to the current UTC time)

    Returns:
        ConsistencyReport with issues in a deterministic order
    """
    generated_at = now or datetime.now(timezone.utc)

    if not characters:
        return ConsistencyReport(
            story_id=story_id,
            chapter_id=chapter_id,
            characters=[],
            issues=[],
            suggestions=[NO_CHARACTERS_SUGGESTION],
            score=100,
            status=STATUS_NO_CHARACTERS,
            generated_at=generated_at
        )

    ordered = ordered_chapters(chapters)
    cast = sorted(characters, key=lambda c: (c.created_at, c.id))
    total_chapters = len(ordered)

    relationships = detect_relationships(cast, ordered)
    issues: List[Issue] = []
    extractions: List[CharacterExtraction] = []

    for character in cast:
        traits = extract_traits(character, ordered)
        extraction = CharacterExtraction(
            character=character,
            appearances=find_appearances(character, ordered),
            traits=traits,
            relationships=tuple(
                rel for rel in relationships
                if character.name in (rel.character_a, rel.character_b)
            )
        )
        extractions.append(extraction)

        for keyword in missing_keywords(character, ordered):
            issues.append(_keyword_issue(character, keyword))

        for positive, negative in emotional_contradictions(emotional_states(character, traits)):
            issues.append(_contradiction_issue(character, positive, negative))

    if total_chapters >= 1:
        for rel in relationships:
            if len(rel.co_occurring_chapters) / total_chapters < RELATIONSHIP_RATIO_THRESHOLD:
                issues.append(_relationship_issue(rel, total_chapters))

    final_score = score(issues)
    report = ConsistencyReport(
        story_id=story_id,
        chapter_id=chapter_id,
        characters=[_character_summary(e, total_chapters, issues) for e in extractions],
        issues=issues,
        suggestions=suggestions_for(len(issues), len(cast), final_score),
        score=final_score,
        status=STATUS_ANALYZED,
        generated_at=generated_at
    )

    if new_content and action == "check":
        report.new_content_check = check_new_content(cast, new_content)

    return report
