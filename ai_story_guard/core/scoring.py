"""
Consistency scoring and suggestion lookup.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .rules import (
    HIGH_SEVERITY_EXTRA_PENALTY,
    ISSUE_PENALTY,
    RELATIONSHIP_REMEDIATION,
    REMEDIATION_SCORE_THRESHOLD,
    SUGGESTION_TABLE,
    Severity,
    SuggestionTier,
)


@dataclass(frozen=True)
class Issue:
    """A flagged consistency problem, optionally attached to a character."""
    description: str
    severity: Severity
    suggestion: str
    character: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "description": self.description,
            "severity": self.severity.value,
            "suggestion": self.suggestion,
        }
        if self.character is not None:
            data["character"] = self.character
        return data


def score(issues: Sequence[Issue]) -> int:
    """Compute the 0..100 consistency score.

    Every issue costs ISSUE_PENALTY points and high-severity issues cost
    HIGH_SEVERITY_EXTRA_PENALTY more, so a high issue costs 30 in total.

    Args:
        issues: Issues found by the analyzer

    Returns:
        Score clamped to [0, 100]
    """
    high = sum(1 for issue in issues if issue.severity == Severity.HIGH)
    raw = 100 - len(issues) * ISSUE_PENALTY - high * HIGH_SEVERITY_EXTRA_PENALTY
    return max(0, min(100, raw))


def suggestion_tier(issue_count: int, character_count: int, final_score: int) -> SuggestionTier:
    if issue_count == 0 and character_count >= 2:
        return SuggestionTier.POSITIVE
    if final_score < REMEDIATION_SCORE_THRESHOLD:
        return SuggestionTier.REMEDIATION
    return SuggestionTier.NEUTRAL


def suggestions_for(issue_count: int, character_count: int, final_score: int) -> List[str]:
    """Look up the report suggestions for an analysis outcome."""
    tier = suggestion_tier(issue_count, character_count, final_score)
    suggestions = list(SUGGESTION_TABLE[tier])
    if tier == SuggestionTier.REMEDIATION and character_count > 1:
        suggestions.append(RELATIONSHIP_REMEDIATION)
    return suggestions
