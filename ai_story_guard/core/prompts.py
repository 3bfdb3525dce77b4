"""
Input validation, sanitization and prompt construction for generation
requests.
"""

import json
import re
from typing import List, Optional

from .errors import ValidationError

MAX_CONTENT_LENGTH = 5000
MAX_CONTEXT_LENGTH = 1000
MAX_STORY_CONTENT_LENGTH = 15000
MIN_IMAGE_SIZE = 64
MAX_IMAGE_SIZE = 2048

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

AVATAR_STYLES = {
    "realistic": "photorealistic portrait, detailed features, soft studio lighting",
    "cartoon": "cartoon character design, Pixar style, vibrant colors",
    "anime": "anime character design, Studio Ghibli style, detailed features",
    "fantasy": "fantasy art portrait, painterly style, dramatic lighting",
}

ENHANCE_SYSTEM_PROMPT = (
    "You are a romantic co-writer helping a couple write their shared story.\n"
    "Enhance the following text with sensory details, emotional depth, and vivid imagery\n"
    "while preserving the user's voice and plot. Keep it playful and romantic.\n"
    "Return ONLY the enhanced text, no explanations or meta-commentary."
)

SUMMARY_STYLES = ("brief", "detailed", "teaser")

STYLE_TRANSFER_STYLES = ("romantic", "poetic", "humorous", "dramatic", "fairytale", "noir")

MAX_STORY_CONTEXT_LENGTH = 1000
MAX_CHAPTER_LENGTH = 5000
MAX_RECENT_CHAPTERS = 10
MAX_THEME_LENGTH = 50

# Twist and continuation answers are cut to this many suggestions
MAX_SUGGESTIONS = 3

CONTINUATION_THEMES = {
    "romance": "Keep suggestions romantic, focusing on emotional connection and relationship development.",
    "fantasy": "Include magical elements, adventures, and fantastical possibilities.",
    "our_future": (
        "Keep suggestions grounded in reality, focusing on realistic relationship "
        "milestones and shared dreams."
    ),
}

_LIST_MARKER_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def sanitize_input(text: str) -> str:
    """Strip markup and control characters that could smuggle instructions."""
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    text = _JS_PROTOCOL_RE.sub("", text)
    text = _EVENT_HANDLER_RE.sub("", text)
    text = _CONTROL_RE.sub("", text)
    return text.strip()


def require_text(value: object, field: str, max_length: int) -> str:
    """Validate a required free-text field.

    Raises:
        ValidationError: If the value is missing, blank, not a string or
            too long
    """
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field} is required and must be a string")
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds maximum length of {max_length} characters")
    if not value.strip():
        raise ValidationError(f"{field} cannot be empty")
    return value


def optional_text(value: Optional[str], field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds maximum length of {max_length} characters")
    return value


def require_image_size(width: int, height: int) -> None:
    for name, value in (("width", width), ("height", height)):
        if not isinstance(value, int) or not MIN_IMAGE_SIZE <= value <= MAX_IMAGE_SIZE:
            raise ValidationError(
                f"{name} must be an integer between {MIN_IMAGE_SIZE} and {MAX_IMAGE_SIZE}"
            )


def require_chapters(value: object, field: str = "recent_chapters") -> List[str]:
    """Validate a list of recent chapter texts.

    Raises:
        ValidationError: If the value is not a list, has too many items or
            holds a non-string or overlong chapter
    """
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be an array")
    if len(value) > MAX_RECENT_CHAPTERS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_RECENT_CHAPTERS} items")
    for i, chapter in enumerate(value):
        if not isinstance(chapter, str):
            raise ValidationError(f"{field}[{i}] must be a string")
        if len(chapter) > MAX_CHAPTER_LENGTH:
            raise ValidationError(
                f"{field}[{i}] exceeds maximum length of {MAX_CHAPTER_LENGTH} characters"
            )
    return list(value)


def parse_suggestions(text: Optional[str]) -> List[str]:
    """Read a list of suggestions from model output.

    A JSON array of strings is used as is. Anything else falls back to one
    suggestion per non-empty line with list numbering removed, keeping at
    most MAX_SUGGESTIONS.
    """
    raw = _CODE_FENCE_RE.sub("", (text or "").strip())
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]

    lines = [_LIST_MARKER_RE.sub("", line).strip() for line in raw.splitlines()]
    return [line for line in lines if line][:MAX_SUGGESTIONS]


def _chapter_lines(chapters: List[str]) -> str:
    return "\n".join(f"Chapter {i}: {text}" for i, text in enumerate(chapters, start=1))


def twist_prompt(story_context: str, chapters: List[str], context: Optional[str] = None) -> str:
    real_life = f'Real-life context: "{context}"\n' if context else ""
    return (
        f'Given this story context: "{story_context}"\n'
        f"Recent chapters: {_chapter_lines(chapters)}\n"
        f"{real_life}\n"
        f"Suggest 2-3 plot twists that would surprise and delight a couple writing this story together.\n"
        f"Each twist should be 1-2 sentences max. Consider their real-life context if provided.\n"
        f'Return as a JSON array of strings, like: ["twist 1", "twist 2", "twist 3"]'
    )


def continuation_prompt(story_context: str, chapters: List[str], theme: str) -> str:
    guidance = CONTINUATION_THEMES.get(theme, "")
    return (
        f'Story context: "{story_context}"\n'
        f"Theme: {theme}\n"
        f"Recent chapters: {_chapter_lines(chapters)}\n\n"
        f"{guidance}\n\n"
        f"Suggest 3 potential narrative directions for the next chapter.\n"
        f"Each should be 1-2 sentences max.\n"
        f'Return as a JSON array of strings: ["direction 1", "direction 2", "direction 3"]'
    )


def enhance_prompt(content: str, context: Optional[str] = None) -> str:
    if context:
        user_prompt = f'Context from their real life: "{context}"\n\nTheir chapter text: "{content}"'
    else:
        user_prompt = f'Their chapter text: "{content}"'
    return f"{ENHANCE_SYSTEM_PROMPT}\n\n{user_prompt}"


def avatar_prompt(character_name: str, character_description: str, style: str) -> str:
    style_description = AVATAR_STYLES.get(style, AVATAR_STYLES["realistic"])
    return (
        f"Character portrait of {character_name}: {character_description}. "
        f"{style_description}, centered composition, plain background"
    )


def cover_art_prompt(prompt: str, story_title: Optional[str], style: str) -> str:
    if story_title:
        return (
            f'Book cover for "{story_title}": {prompt}. Professional book cover design, '
            f"{style}, high quality, detailed illustration, cinematic lighting"
        )
    return (
        f"Professional book cover: {prompt}. {style}, high quality, "
        f"detailed illustration, cinematic lighting"
    )


def summary_prompt(story_content: str, title: Optional[str], style: str, max_length: int) -> str:
    body = f'Story: "{title}"\n\n{story_content[:4000]}' if title else story_content[:4000]
    return (
        f"Write a {style} summary of the following story in at most {max_length} words. "
        f"Return only the summary.\n\n{body}"
    )


def style_transfer_prompt(text: str, target_style: str) -> str:
    return (
        f"Rewrite the following passage in a {target_style} style. Keep the plot, "
        f"characters and meaning unchanged. Return only the rewritten passage.\n\n{text}"
    )


def narrative_analysis_prompt(story_content: str, detailed: bool) -> str:
    depth = "a detailed breakdown of" if detailed else "a short assessment of"
    return (
        f"Analyze the narrative of the following story and give {depth} pacing, "
        f"plot structure, character development and tone, with concrete suggestions.\n\n"
        f'Story Content: "{story_content[:MAX_STORY_CONTENT_LENGTH]}"'
    )
