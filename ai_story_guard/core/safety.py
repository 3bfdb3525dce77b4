"""
Pre-flight safety moderation.

The gate is fail-closed: only the exact "SAFE" sentinel lets a request
through. Empty, malformed or ambiguous classifier output is unsafe.
"""

import logging
from dataclasses import dataclass
from typing import Protocol, Union

from .errors import AIServiceError, UpstreamFailure

logger = logging.getLogger(__name__)

SAFE_SENTINEL = "SAFE"
UNSAFE_PREFIX = "UNSAFE:"

# Only the start of long text is sent to the classifier
MAX_CLASSIFIED_CHARS = 1000


class ModerationClassifier(Protocol):
    """External classifier returning "SAFE" or "UNSAFE: <reason>"."""

    def classify(self, text: str) -> str:
        ...


@dataclass(frozen=True)
class Safe:
    pass


@dataclass(frozen=True)
class Unsafe:
    reason: str


SafetyVerdict = Union[Safe, Unsafe]


def interpret_verdict(raw: object) -> SafetyVerdict:
    """Map raw classifier output to a verdict.

    Args:
        raw: Whatever the classifier returned

    Returns:
        Safe only for the exact sentinel, with no surrounding whitespace
    """
    if not isinstance(raw, str):
        return Unsafe(reason="malformed classifier response")
    if raw == SAFE_SENTINEL:
        return Safe()

    verdict = raw.strip()
    if verdict.upper().startswith(UNSAFE_PREFIX):
        reason = verdict[len(UNSAFE_PREFIX):].strip()
        return Unsafe(reason=reason or "unspecified")
    if not verdict:
        return Unsafe(reason="empty classifier response")
    return Unsafe(reason="unrecognized classifier response")


class SafetyGate:
    """Classifies request text before any paid generation runs."""

    def __init__(self, classifier: ModerationClassifier):
        self.classifier = classifier

    def classify(self, text: str) -> SafetyVerdict:
        """Classify request text.

        Raises:
            UpstreamFailure: If the classifier errors or times out. A
                failed classification is never treated as safe.
        """
        try:
            raw = self.classifier.classify((text or "")[:MAX_CLASSIFIED_CHARS])
        except AIServiceError:
            raise
        except Exception as e:
            logger.warning("Safety classifier failed: %s", e)
            raise UpstreamFailure("Safety classifier unavailable", provider="moderation") from e

        verdict = interpret_verdict(raw)
        if isinstance(verdict, Unsafe):
            logger.info("Safety gate rejected request: %s", verdict.reason)
        return verdict
