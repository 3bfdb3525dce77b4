"""
OpenAI-backed generation provider and moderation classifier.

Provider failures and timeouts are raised as UpstreamFailure so that no
caller ever mistakes them for a result.
"""

import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from ..core.errors import UpstreamFailure
from ..core.generation import GenerationParams, GenerationResult, OutputMode
from ..core.pricing import TokenUsage

logger = logging.getLogger(__name__)

SAFETY_PROMPT = (
    "Analyze this text for safety violations (hate speech, sexual explicitness, "
    "or extreme violence): \"{text}\".\n"
    "Return ONLY \"SAFE\" if it is safe, or \"UNSAFE: [reason]\" if it is not."
)


def _require(value: str, name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{name} is required and cannot be empty")
    return value


class OpenAIGenerationProvider:
    """Text and image generation through the OpenAI API."""

    def __init__(
        self,
        text_model: str = "gpt-4o-mini",
        image_model: str = "dall-e-3",
        client: Optional[OpenAI] = None
    ):
        """Initialize the provider.

        Args:
            text_model: Chat model used for text generation (required)
            image_model: Image model used for image generation (required)
            client: Preconfigured OpenAI client; one is created from the
                environment when omitted

        Raises:
            ValueError: If a model name is missing/empty
        """
        self.text_model = _require(text_model, "text_model")
        self.image_model = _require(image_model, "image_model")
        self.client = client or OpenAI()

    def generate(self, prompt: str, params: GenerationParams) -> GenerationResult:
        """Run one generation call bounded by params.timeout.

        Raises:
            UpstreamFailure: On any API error or timeout
        """
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")

        try:
            if params.mode == OutputMode.IMAGE:
                return self._generate_image(prompt, params)
            return self._generate_text(prompt, params)
        except OpenAIError as e:
            logger.warning("OpenAI %s generation failed: %s", params.mode.value, e)
            raise UpstreamFailure(f"Generation failed: {e}", provider="openai") from e

    def _generate_text(self, prompt: str, params: GenerationParams) -> GenerationResult:
        kwargs = {}
        if params.max_tokens is not None:
            kwargs["max_tokens"] = params.max_tokens
        if params.temperature is not None:
            kwargs["temperature"] = params.temperature
        if params.user:
            kwargs["user"] = params.user

        response = self.client.chat.completions.create(
            model=self.text_model,
            messages=[{"role": "user", "content": prompt}],
            timeout=params.timeout,
            **kwargs
        )

        text = None
        if response.choices:
            text = response.choices[0].message.content

        usage = None
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens
            )
        return GenerationResult(text=text, usage=usage)

    def _generate_image(self, prompt: str, params: GenerationParams) -> GenerationResult:
        width = params.width or 1024
        height = params.height or 1024
        kwargs = {}
        if params.user:
            kwargs["user"] = params.user

        response = self.client.images.generate(
            model=self.image_model,
            prompt=prompt,
            n=1,
            size=f"{width}x{height}",
            response_format="url",
            timeout=params.timeout,
            **kwargs
        )
        url = response.data[0].url if response.data else None
        return GenerationResult(url=url)


class OpenAIModerationClassifier:
    """Asks a chat model for a SAFE / UNSAFE: <reason> verdict.

    The raw answer is returned unchanged; interpreting it (fail-closed)
    is the safety gate's job.
    """

    def __init__(self, model: str = "gpt-4o-mini", timeout: float = 10.0, client: Optional[OpenAI] = None):
        self.model = _require(model, "model")
        self.timeout = timeout
        self.client = client or OpenAI()

    def classify(self, text: str) -> str:
        """Classify text.

        Raises:
            UpstreamFailure: On any API error or timeout
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": SAFETY_PROMPT.format(text=text)}],
                temperature=0,
                max_tokens=50,
                timeout=self.timeout
            )
        except OpenAIError as e:
            logger.warning("OpenAI moderation failed: %s", e)
            raise UpstreamFailure(f"Moderation failed: {e}", provider="openai") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
