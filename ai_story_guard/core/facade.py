"""
AI service facade.

Runs every request through the same state machine:

    RECEIVED -> CACHE_CHECK -> CACHE_HIT -> RESPOND
                            -> CACHE_MISS -> RATE_CHECK -> DENIED -> RESPOND_429
                                                        -> ALLOWED -> SAFETY_CHECK -> UNSAFE -> RESPOND_400
                                                                                   -> SAFE -> COMPUTE
    COMPUTE -> CACHE_WRITE -> USAGE_LOG -> RESPOND, or RESPOND_500 on failure

Operations that are not cacheable skip the cache states, and pure
analysis of already accepted story content skips the safety check.
Nothing is written before COMPUTE succeeds, and bookkeeping writes after
it never fail the response. No retries happen here; callers may retry
since cache lookups and rate checks are safe to repeat.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ai_story_guard.config.loader import RateLimitConfig, ServiceConfig
from ai_story_guard.storage.models import CacheKind, ChapterRef, Character, CostLedgerEntry
from ai_story_guard.storage.repository import (
    CacheRepository,
    ReportRepository,
    SqliteStoryStore,
    StoryStore,
    UsageRepository,
    insert_ledger_entry,
)

from . import prompts
from .cache import ContentCache
from .consistency import ACTIONS, analyze_story
from .errors import (
    AIServiceError,
    NotFoundError,
    RateLimitExceeded,
    SafetyRejection,
    UpstreamFailure,
    ValidationError,
)
from .generation import GenerationParams, GenerationProvider, GenerationResult, OutputMode
from .pricing import calculate_cost
from .rate_limiter import Denied, RateLimiter
from .rules import RULESET_VERSION
from .safety import ModerationClassifier, SafetyGate, Unsafe

logger = logging.getLogger(__name__)


class RequestState(Enum):
    RECEIVED = "received"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    RATE_CHECK = "rate_check"
    DENIED = "denied"
    ALLOWED = "allowed"
    SAFETY_CHECK = "safety_check"
    UNSAFE = "unsafe"
    SAFE = "safe"
    COMPUTE = "compute"
    CACHE_WRITE = "cache_write"
    USAGE_LOG = "usage_log"
    RESPOND = "respond"
    RESPOND_400 = "respond_400"
    RESPOND_429 = "respond_429"
    RESPOND_500 = "respond_500"


@dataclass
class RequestTrace:
    """States a request passed through, in order."""
    operation: str
    states: List[RequestState] = field(default_factory=list)

    def enter(self, state: RequestState) -> None:
        self.states.append(state)
        logger.debug("%s -> %s", self.operation, state.value)

    @property
    def final_state(self) -> Optional[RequestState]:
        return self.states[-1] if self.states else None


@dataclass(frozen=True)
class Operation:
    """How an operation moves through the state machine."""
    name: str
    kind: Optional[CacheKind]
    gated: bool


@dataclass(frozen=True)
class ServiceResponse:
    data: Any
    cached: bool
    trace: RequestTrace


CONSISTENCY = Operation("consistency", CacheKind.CONSISTENCY, gated=False)
ENHANCE = Operation("enhance", None, gated=True)
AVATAR = Operation("avatar", CacheKind.AVATAR, gated=True)
COVER_ART = Operation("cover-art", CacheKind.COVER_ART, gated=True)
SUMMARY = Operation("summary", CacheKind.SUMMARY, gated=True)
STYLE_TRANSFER = Operation("style-transfer", CacheKind.STYLE_TRANSFER, gated=True)
NARRATIVE_ANALYSIS = Operation("narrative-analysis", CacheKind.NARRATIVE_ANALYSIS, gated=True)
TWIST = Operation("twist", None, gated=True)
CONTINUATION = Operation("continuation", None, gated=True)

Compute = Callable[[], Tuple[Any, Decimal]]


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def snapshot_digest(characters: Sequence[Character], chapters: Sequence[ChapterRef]) -> str:
    """Digest of the story content an analysis reads.

    Any edit to a chapter or character changes the digest, so cached
    reports are never served for content they did not analyze.
    """
    h = hashlib.sha256()
    for c in sorted(characters, key=lambda c: c.id):
        h.update(f"c\x1f{c.id}\x1f{c.name}\x1f{c.canonical_description}\x1e".encode("utf-8"))
    for ch in sorted(chapters, key=lambda ch: ch.id):
        h.update(f"p\x1f{ch.id}\x1f{ch.sequence_number}\x1f{ch.text}\x1e".encode("utf-8"))
    return h.hexdigest()


class AIService:
    """Orchestrates cache, rate limiting, safety and generation per request."""

    def __init__(
        self,
        cache: ContentCache,
        rate_limiter: RateLimiter,
        safety_gate: SafetyGate,
        provider: GenerationProvider,
        story_store: StoryStore,
        report_repository: ReportRepository,
        ledger: Callable[[CostLedgerEntry], None],
        rate_limits: Optional[RateLimitConfig] = None,
        provider_timeout: float = 30.0
    ):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.safety_gate = safety_gate
        self.provider = provider
        self.story_store = story_store
        self.report_repository = report_repository
        self.ledger = ledger
        self.rate_limits = rate_limits or RateLimitConfig()
        self.provider_timeout = provider_timeout

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        provider: GenerationProvider,
        classifier: ModerationClassifier,
        story_store: Optional[StoryStore] = None
    ) -> "AIService":
        """Wire a service against the SQLite database named in config."""
        db_path = config.database
        return cls(
            cache=ContentCache(
                CacheRepository(db_path),
                default_ttl=config.cache.default_ttl(),
                ttl_by_kind=config.cache.ttl_by_kind()
            ),
            rate_limiter=RateLimiter(UsageRepository(db_path)),
            safety_gate=SafetyGate(classifier),
            provider=provider,
            story_store=story_store or SqliteStoryStore(db_path),
            report_repository=ReportRepository(db_path),
            ledger=partial(insert_ledger_entry, db_path=db_path),
            rate_limits=config.rate_limits,
            provider_timeout=config.provider_timeout_seconds
        )

    def _execute(
        self,
        operation: Operation,
        user_id: str,
        payload: Mapping[str, Any],
        compute: Compute,
        safety_text: Optional[str] = None,
        story_id: Optional[str] = None,
        persist: Optional[Callable[[Any], None]] = None
    ) -> ServiceResponse:
        trace = RequestTrace(operation.name)
        trace.enter(RequestState.RECEIVED)

        if operation.kind is not None:
            trace.enter(RequestState.CACHE_CHECK)
            entry = self.cache.get(operation.kind, payload)
            if entry is not None:
                trace.enter(RequestState.CACHE_HIT)
                trace.enter(RequestState.RESPOND)
                return ServiceResponse(data=entry.response, cached=True, trace=trace)
            trace.enter(RequestState.CACHE_MISS)

        trace.enter(RequestState.RATE_CHECK)
        limit = self.rate_limits.limit_for(operation.name)
        try:
            decision = self.rate_limiter.check_and_increment(user_id, limit)
        except Exception as e:
            trace.enter(RequestState.RESPOND_500)
            logger.exception("Could not record usage for %s", user_id)
            raise UpstreamFailure("Could not record AI usage", provider="usage-store") from e

        if isinstance(decision, Denied):
            trace.enter(RequestState.DENIED)
            trace.enter(RequestState.RESPOND_429)
            logger.info("Rate limit reached for %s on %s (%d/%d)",
                        user_id, operation.name, decision.count, limit)
            raise RateLimitExceeded(limit=limit, count=decision.count, retry_after=decision.retry_after)
        trace.enter(RequestState.ALLOWED)

        if operation.gated:
            trace.enter(RequestState.SAFETY_CHECK)
            try:
                verdict = self.safety_gate.classify(safety_text or "")
            except AIServiceError:
                trace.enter(RequestState.RESPOND_500)
                raise
            if isinstance(verdict, Unsafe):
                trace.enter(RequestState.UNSAFE)
                trace.enter(RequestState.RESPOND_400)
                raise SafetyRejection(verdict.reason)
            trace.enter(RequestState.SAFE)

        trace.enter(RequestState.COMPUTE)
        try:
            data, cost = compute()
        except AIServiceError:
            trace.enter(RequestState.RESPOND_500)
            raise
        except Exception as e:
            trace.enter(RequestState.RESPOND_500)
            logger.exception("%s failed during compute", operation.name)
            raise UpstreamFailure(f"{operation.name} failed") from e

        billed = False
        if operation.kind is not None:
            trace.enter(RequestState.CACHE_WRITE)
            try:
                self.cache.put(operation.kind, payload, data, cost, user_id=user_id, story_id=story_id)
                billed = True
            except Exception:
                logger.exception("Cache write failed for %s", operation.name)

        if persist is not None:
            try:
                persist(data)
            except Exception:
                logger.exception("Persisting %s result failed", operation.name)

        trace.enter(RequestState.USAGE_LOG)
        if not billed:
            try:
                self.ledger(CostLedgerEntry(
                    timestamp=datetime.now(timezone.utc),
                    kind=operation.name,
                    cost=cost,
                    user_id=user_id,
                    story_id=story_id
                ))
            except Exception:
                logger.exception("Cost ledger write failed for %s", operation.name)
        logger.info("%s completed for %s (cost %s)", operation.name, user_id, cost)

        trace.enter(RequestState.RESPOND)
        return ServiceResponse(data=data, cached=False, trace=trace)

    def _generate(self, prompt: str, params: GenerationParams) -> GenerationResult:
        try:
            return self.provider.generate(prompt, params)
        except AIServiceError:
            raise
        except Exception as e:
            logger.warning("Generation provider failed: %s", e)
            raise UpstreamFailure("AI service unavailable", provider="generation") from e

    def _text_params(self, user_id: str, max_tokens: int = 1000, temperature: float = 0.7) -> GenerationParams:
        return GenerationParams(
            mode=OutputMode.TEXT,
            timeout=self.provider_timeout,
            max_tokens=max_tokens,
            temperature=temperature,
            user=user_id
        )

    def _image_url(self, prompt: str, width: int, height: int, user_id: str) -> str:
        result = self._generate(prompt, GenerationParams(
            mode=OutputMode.IMAGE,
            timeout=self.provider_timeout,
            width=width,
            height=height,
            user=user_id
        ))
        if not result.url:
            raise UpstreamFailure("Image provider returned no URL", provider="generation")
        return result.url

    def consistency(
        self,
        user_id: str,
        story_id: str,
        chapter_id: Optional[str] = None,
        check_new_content: Optional[str] = None,
        action: str = "analyze"
    ) -> ServiceResponse:
        """Analyze character consistency for a story.

        The chapter snapshot is read once and the whole analysis runs
        over it. The report is stored as the latest snapshot for the
        story/chapter pair.

        Raises:
            ValidationError: If story_id or action is invalid
            NotFoundError: If chapter_id is not a chapter of the story
        """
        if not isinstance(story_id, str) or not story_id.strip():
            raise ValidationError("Story ID is required")
        if action not in ACTIONS:
            raise ValidationError(f"action must be one of: {list(ACTIONS)}")
        prompts.optional_text(check_new_content, "check_new_content", prompts.MAX_STORY_CONTENT_LENGTH)

        try:
            characters = self.story_store.get_characters(story_id)
            chapters = self.story_store.get_chapters(story_id)
        except Exception as e:
            logger.exception("Story store read failed for %s", story_id)
            raise UpstreamFailure("Failed to fetch story content", provider="story-store") from e

        if chapter_id is not None and chapter_id not in {c.id for c in chapters}:
            raise NotFoundError(f"Chapter {chapter_id} not found in story {story_id}")

        payload = {
            "story_id": story_id,
            "chapter_id": chapter_id,
            "action": action,
            "check_new_content": _digest(check_new_content) if check_new_content else None,
            "snapshot": snapshot_digest(characters, chapters),
            "ruleset": RULESET_VERSION,
        }

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            report = analyze_story(
                story_id, characters, chapters,
                chapter_id=chapter_id,
                new_content=check_new_content,
                action=action
            )
            return report.to_dict(), calculate_cost(CONSISTENCY.name)

        def persist(data: Dict[str, Any]) -> None:
            self.report_repository.upsert(story_id, chapter_id, data, user_id=user_id)

        return self._execute(CONSISTENCY, user_id, payload, compute, story_id=story_id, persist=persist)

    def enhance(self, user_id: str, content: str, context: Optional[str] = None) -> ServiceResponse:
        """Enhance chapter text with sensory and emotional detail. Not cached."""
        prompts.require_text(content, "Content", prompts.MAX_CONTENT_LENGTH)
        prompts.optional_text(context, "Context", prompts.MAX_CONTEXT_LENGTH)
        clean_content = prompts.sanitize_input(content)
        clean_context = prompts.sanitize_input(context) if context else ""
        if not clean_content:
            raise ValidationError("Content cannot be empty")

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            result = self._generate(
                prompts.enhance_prompt(clean_content, clean_context),
                self._text_params(user_id)
            )
            enhanced = (result.text or "").strip() or clean_content
            return {"enhancedContent": enhanced}, calculate_cost(ENHANCE.name, result.usage)

        safety_text = f"{clean_content}\n{clean_context}".strip()
        return self._execute(ENHANCE, user_id, {}, compute, safety_text=safety_text)

    def avatar(
        self,
        user_id: str,
        character_name: str,
        character_description: str,
        style: str = "realistic",
        width: int = 512,
        height: int = 512,
        story_id: Optional[str] = None
    ) -> ServiceResponse:
        """Generate a character portrait."""
        prompts.require_text(character_name, "character_name", 100)
        prompts.require_text(character_description, "character_description", prompts.MAX_CONTEXT_LENGTH)
        if style not in prompts.AVATAR_STYLES:
            raise ValidationError(f"style must be one of: {sorted(prompts.AVATAR_STYLES)}")
        prompts.require_image_size(width, height)

        name = prompts.sanitize_input(character_name)
        description = prompts.sanitize_input(character_description)
        prompt = prompts.avatar_prompt(name, description, style)
        payload = {
            "character_name": name,
            "character_description": description,
            "style": style,
            "width": width,
            "height": height,
        }

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            url = self._image_url(prompt, width, height, user_id)
            return {"url": url, "character_name": name}, calculate_cost(AVATAR.name)

        return self._execute(
            AVATAR, user_id, payload, compute,
            safety_text=f"{name}: {description}", story_id=story_id
        )

    def cover_art(
        self,
        user_id: str,
        prompt: str,
        story_title: Optional[str] = None,
        style: str = "professional book cover",
        width: int = 1024,
        height: int = 1024,
        story_id: Optional[str] = None
    ) -> ServiceResponse:
        """Generate book cover art for a story."""
        prompts.require_text(prompt, "Prompt", prompts.MAX_CONTEXT_LENGTH)
        prompts.optional_text(story_title, "story_title", 200)
        prompts.require_text(style, "style", 100)
        prompts.require_image_size(width, height)

        clean_prompt = prompts.sanitize_input(prompt)
        clean_title = prompts.sanitize_input(story_title) if story_title else None
        clean_style = prompts.sanitize_input(style)
        full_prompt = prompts.cover_art_prompt(clean_prompt, clean_title, clean_style)
        payload = {
            "prompt": clean_prompt,
            "story_title": clean_title,
            "style": clean_style,
            "width": width,
            "height": height,
        }

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            url = self._image_url(full_prompt, width, height, user_id)
            return {"url": url}, calculate_cost(COVER_ART.name)

        return self._execute(
            COVER_ART, user_id, payload, compute,
            safety_text=full_prompt, story_id=story_id
        )

    def summary(
        self,
        user_id: str,
        story_content: str,
        title: Optional[str] = None,
        style: str = "brief",
        max_length: int = 150,
        story_id: Optional[str] = None
    ) -> ServiceResponse:
        """Summarize story text."""
        prompts.require_text(story_content, "story_content", prompts.MAX_STORY_CONTENT_LENGTH)
        prompts.optional_text(title, "title", 200)
        if style not in prompts.SUMMARY_STYLES:
            raise ValidationError(f"style must be one of: {list(prompts.SUMMARY_STYLES)}")
        if isinstance(max_length, bool) or not isinstance(max_length, int) or not 20 <= max_length <= 1000:
            raise ValidationError("max_length must be an integer between 20 and 1000")

        content = prompts.sanitize_input(story_content)
        payload = {"story_content": content, "title": title, "style": style, "max_length": max_length}

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            result = self._generate(
                prompts.summary_prompt(content, title, style, max_length),
                self._text_params(user_id, max_tokens=max_length * 2, temperature=0.5)
            )
            if not result.text:
                raise UpstreamFailure("Summary provider returned no text", provider="generation")
            return {"summary": result.text.strip()}, calculate_cost(SUMMARY.name, result.usage)

        return self._execute(SUMMARY, user_id, payload, compute, safety_text=content, story_id=story_id)

    def style_transfer(
        self,
        user_id: str,
        text: str,
        target_style: str,
        story_id: Optional[str] = None
    ) -> ServiceResponse:
        """Rewrite a passage in another literary style."""
        prompts.require_text(text, "text", prompts.MAX_CONTENT_LENGTH)
        if target_style not in prompts.STYLE_TRANSFER_STYLES:
            raise ValidationError(f"target_style must be one of: {list(prompts.STYLE_TRANSFER_STYLES)}")

        clean_text = prompts.sanitize_input(text)
        payload = {"text": clean_text, "target_style": target_style}

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            result = self._generate(
                prompts.style_transfer_prompt(clean_text, target_style),
                self._text_params(user_id, max_tokens=2000)
            )
            if not result.text:
                raise UpstreamFailure("Style transfer provider returned no text", provider="generation")
            data = {"transformed_text": result.text.strip(), "target_style": target_style}
            return data, calculate_cost(STYLE_TRANSFER.name, result.usage)

        return self._execute(
            STYLE_TRANSFER, user_id, payload, compute,
            safety_text=clean_text, story_id=story_id
        )

    def narrative_analysis(
        self,
        user_id: str,
        story_content: str,
        include_detailed_breakdown: bool = False,
        story_id: Optional[str] = None
    ) -> ServiceResponse:
        """Have the text provider critique a story's narrative."""
        prompts.require_text(story_content, "story_content", prompts.MAX_STORY_CONTENT_LENGTH)
        content = prompts.sanitize_input(story_content)
        detailed = bool(include_detailed_breakdown)
        payload = {"story_content": content, "detailed": detailed}

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            result = self._generate(
                prompts.narrative_analysis_prompt(content, detailed),
                self._text_params(user_id, max_tokens=1500, temperature=0.3)
            )
            if not result.text:
                raise UpstreamFailure("Analysis provider returned no text", provider="generation")
            return {"analysis": result.text.strip()}, calculate_cost(NARRATIVE_ANALYSIS.name)

        return self._execute(
            NARRATIVE_ANALYSIS, user_id, payload, compute,
            safety_text=content, story_id=story_id
        )

    def _suggestion_inputs(
        self,
        story_context: str,
        recent_chapters: List[str]
    ) -> Tuple[str, List[str]]:
        prompts.require_text(story_context, "story_context", prompts.MAX_STORY_CONTEXT_LENGTH)
        chapters = prompts.require_chapters(recent_chapters)
        clean_context = prompts.sanitize_input(story_context)
        if not clean_context:
            raise ValidationError("story_context cannot be empty")
        return clean_context, [prompts.sanitize_input(chapter) for chapter in chapters]

    def twist(
        self,
        user_id: str,
        story_context: str,
        recent_chapters: List[str],
        context: Optional[str] = None
    ) -> ServiceResponse:
        """Suggest plot twists for the story so far. Not cached."""
        story, chapters = self._suggestion_inputs(story_context, recent_chapters)
        prompts.optional_text(context, "context", prompts.MAX_CONTEXT_LENGTH)
        real_life = prompts.sanitize_input(context) if context else ""

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            result = self._generate(
                prompts.twist_prompt(story, chapters, real_life),
                self._text_params(user_id, max_tokens=500, temperature=0.9)
            )
            twists = prompts.parse_suggestions(result.text)
            return {"twists": twists}, calculate_cost(TWIST.name, result.usage)

        safety_text = "\n".join([story, real_life] + chapters).strip()
        return self._execute(TWIST, user_id, {}, compute, safety_text=safety_text)

    def continuation(
        self,
        user_id: str,
        story_context: str,
        recent_chapters: List[str],
        theme: str = "romance"
    ) -> ServiceResponse:
        """Suggest directions for the next chapter. Not cached."""
        story, chapters = self._suggestion_inputs(story_context, recent_chapters)
        prompts.require_text(theme, "theme", prompts.MAX_THEME_LENGTH)
        clean_theme = prompts.sanitize_input(theme)

        def compute() -> Tuple[Dict[str, Any], Decimal]:
            result = self._generate(
                prompts.continuation_prompt(story, chapters, clean_theme),
                self._text_params(user_id, max_tokens=500, temperature=0.8)
            )
            suggestions = prompts.parse_suggestions(result.text)
            return {"suggestions": suggestions}, calculate_cost(CONTINUATION.name, result.usage)

        safety_text = "\n".join([story] + chapters).strip()
        return self._execute(CONTINUATION, user_id, {}, compute, safety_text=safety_text)
