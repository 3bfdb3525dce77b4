"""
HTTP interface for the AI content service.

One JSON endpoint per operation. Every error body is {"error": message}.
"""

import logging
from typing import Annotated, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ai_story_guard.config.loader import AuthConfig
from ai_story_guard.core.errors import AIServiceError, AuthenticationError, RateLimitExceeded
from ai_story_guard.core.facade import AIService, ServiceResponse

logger = logging.getLogger(__name__)


class ConsistencyRequest(BaseModel):
    story_id: str
    chapter_id: Optional[str] = None
    check_new_content: Optional[str] = None
    action: Literal["check", "analyze", "update"] = "analyze"


class EnhanceRequest(BaseModel):
    content: str
    context: Optional[str] = None


class TwistRequest(BaseModel):
    story_context: str
    recent_chapters: List[str] = Field(default_factory=list)
    context: Optional[str] = None


class ContinuationRequest(BaseModel):
    story_context: str
    recent_chapters: List[str] = Field(default_factory=list)
    theme: str = "romance"


class AvatarRequest(BaseModel):
    character_name: str
    character_description: str
    style: str = "realistic"
    width: int = 512
    height: int = 512
    story_id: Optional[str] = None


class CoverArtRequest(BaseModel):
    prompt: str
    story_title: Optional[str] = None
    style: str = "professional book cover"
    width: int = 1024
    height: int = 1024
    story_id: Optional[str] = None


class SummaryRequest(BaseModel):
    story_content: str
    title: Optional[str] = None
    style: str = "brief"
    max_length: int = 150
    story_id: Optional[str] = None


class StyleTransferRequest(BaseModel):
    text: str
    target_style: str
    story_id: Optional[str] = None


class NarrativeAnalysisRequest(BaseModel):
    story_content: str
    include_detailed_breakdown: bool = False
    story_id: Optional[str] = None


def _envelope(response: ServiceResponse) -> dict:
    return {"success": True, "data": response.data, "cached": response.cached}


def create_app(service: AIService, auth: AuthConfig) -> FastAPI:
    """Build the FastAPI application around a wired service.

    Args:
        service: Service the endpoints delegate to
        auth: Bearer token to user id mapping

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(title="ai-story-guard")

    def current_user(authorization: Annotated[Optional[str], Header()] = None) -> str:
        header = (authorization or "").strip()
        if not header:
            raise AuthenticationError("Missing authorization header")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Invalid authorization")
        user_id = auth.resolve(token.strip())
        if user_id is None:
            raise AuthenticationError("Invalid authorization")
        return user_id

    User = Annotated[str, Depends(current_user)]

    @app.exception_handler(AIServiceError)
    async def service_error_handler(request: Request, exc: AIServiceError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimitExceeded):
            headers = {"Retry-After": str(exc.retry_after)}
        if exc.http_status >= 500:
            logger.error("%s failed: %s", request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content={"error": exc.message}, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "")
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/consistency")
    def consistency(body: ConsistencyRequest, user_id: User):
        return _envelope(service.consistency(
            user_id,
            body.story_id,
            chapter_id=body.chapter_id,
            check_new_content=body.check_new_content,
            action=body.action
        ))

    @app.post("/enhance")
    def enhance(body: EnhanceRequest, user_id: User):
        response = service.enhance(user_id, body.content, context=body.context)
        return response.data

    @app.post("/twist")
    def twist(body: TwistRequest, user_id: User):
        response = service.twist(user_id, body.story_context, body.recent_chapters, context=body.context)
        return response.data

    @app.post("/continuation")
    def continuation(body: ContinuationRequest, user_id: User):
        response = service.continuation(user_id, body.story_context, body.recent_chapters, theme=body.theme)
        return response.data

    @app.post("/avatar")
    def avatar(body: AvatarRequest, user_id: User):
        return _envelope(service.avatar(
            user_id,
            body.character_name,
            body.character_description,
            style=body.style,
            width=body.width,
            height=body.height,
            story_id=body.story_id
        ))

    @app.post("/cover-art")
    def cover_art(body: CoverArtRequest, user_id: User):
        return _envelope(service.cover_art(
            user_id,
            body.prompt,
            story_title=body.story_title,
            style=body.style,
            width=body.width,
            height=body.height,
            story_id=body.story_id
        ))

    @app.post("/summary")
    def summary(body: SummaryRequest, user_id: User):
        return _envelope(service.summary(
            user_id,
            body.story_content,
            title=body.title,
            style=body.style,
            max_length=body.max_length,
            story_id=body.story_id
        ))

    @app.post("/style-transfer")
    def style_transfer(body: StyleTransferRequest, user_id: User):
        return _envelope(service.style_transfer(
            user_id, body.text, body.target_style, story_id=body.story_id
        ))

    @app.post("/narrative-analysis")
    def narrative_analysis(body: NarrativeAnalysisRequest, user_id: User):
        return _envelope(service.narrative_analysis(
            user_id,
            body.story_content,
            include_detailed_breakdown=body.include_detailed_breakdown,
            story_id=body.story_id
        ))

    return app
