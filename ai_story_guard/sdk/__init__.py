"""
SDK for AI Story Guard.

Provider adapters for the external generation and moderation services.
"""

from .openai_client import OpenAIGenerationProvider, OpenAIModerationClassifier

__all__ = ["OpenAIGenerationProvider", "OpenAIModerationClassifier"]
