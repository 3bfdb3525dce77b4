"""
Boundary types for the external generation provider.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .pricing import TokenUsage


class OutputMode(Enum):
    TEXT = "text"
    IMAGE = "image"


@dataclass(frozen=True)
class GenerationParams:
    """Provider call parameters. timeout bounds the whole call, in seconds."""
    mode: OutputMode = OutputMode.TEXT
    timeout: float = 30.0
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    user: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    """Opaque provider output: a text or an image URL."""
    text: Optional[str] = None
    url: Optional[str] = None
    usage: Optional[TokenUsage] = None


class GenerationProvider(Protocol):
    """External text/image generation service, billed per call."""

    def generate(self, prompt: str, params: GenerationParams) -> GenerationResult:
        ...
