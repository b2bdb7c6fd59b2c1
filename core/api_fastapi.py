# api_fastapi.py - Story progression API (FastAPI)
import asyncio
import json
import logging
from typing import Optional

from fastapi import FastAPI, Request, Depends, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from core.auth import require_user
from core.event_bus import get_event_bus, to_sse
from core.story_engine import StoryEngine, StoryError, PreconditionError

logger = logging.getLogger(__name__)

# =============================================================================
# APP SETUP
# =============================================================================

app = FastAPI(
    title="Amora Stories",
    docs_url=None,
    redoc_url=None,
    openapi_url=None
)

# =============================================================================
# ENGINE INSTANCE (dependency injection)
# =============================================================================

_engine: Optional[StoryEngine] = None


def set_engine(engine: Optional[StoryEngine]):
    """Register the StoryEngine used by route handlers."""
    global _engine
    _engine = engine
    logger.info("Story engine registered with FastAPI")


def get_engine() -> StoryEngine:
    """Dependency to get the engine instance."""
    if _engine is None:
        raise HTTPException(status_code=503, detail="Story engine not initialized")
    return _engine


# =============================================================================
# REQUEST LOGGING
# =============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests."""
    logger.info(f"REQ: {request.method} {request.url.path}")
    response = await call_next(request)
    if response.status_code >= 400:
        logger.warning(f"RSP: {response.status_code} {request.method} {request.url.path}")
    return response


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(StoryError)
async def story_error_handler(request: Request, exc: StoryError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=PreconditionError("Invalid request").to_dict())


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    kinds = {401: "unauthorized", 404: "not_found", 429: "rate_limited", 503: "unavailable"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": kinds.get(exc.status_code, "http_error"), "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def _read_json(request: Request) -> dict:
    """Parse a JSON object body or raise a precondition error."""
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise PreconditionError("Request body must be JSON")
    if not isinstance(data, dict):
        raise PreconditionError("Request body must be a JSON object")
    return data


def _required_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise PreconditionError(f"Missing required field: {key}")
    return value


# =============================================================================
# CORE ROUTES
# =============================================================================

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "engine": _engine is not None}


@app.get("/api/events")
async def event_stream(request: Request, replay: str = 'false', types: Optional[str] = None,
                       _=Depends(require_user)):
    """SSE endpoint for story events. `types` is a comma-separated filter."""
    do_replay = replay.lower() == 'true'
    wanted = [t.strip() for t in types.split(',') if t.strip()] if types else None

    def generate():
        for event in get_event_bus().subscribe(replay=do_replay, event_types=wanted):
            yield to_sse(event)

    return StreamingResponse(
        generate(),
        media_type='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no'
        }
    )


# =============================================================================
# STORY ROUTES
# =============================================================================

@app.get("/api/stories")
async def list_stories(user_id: str = Depends(require_user), engine=Depends(get_engine)):
    """Story catalog with this user's progress on each story."""
    rows = await asyncio.to_thread(engine.list_stories, user_id)
    stories = []
    for story, progress in rows:
        data = story.to_dict(full=False)
        data["userProgress"] = progress.to_dict() if progress else None
        stories.append(data)
    return {"success": True, "stories": stories}


@app.post("/api/stories/choice")
async def make_choice(request: Request, user_id: str = Depends(require_user), engine=Depends(get_engine)):
    data = await _read_json(request)
    story_id = _required_str(data, 'storyId')
    chapter_id = _required_str(data, 'chapterId')
    choice_id = _required_str(data, 'choiceId')

    result = await asyncio.to_thread(engine.make_choice, user_id, story_id, chapter_id, choice_id)
    return {"success": True, **result.to_dict()}


@app.get("/api/stories/{story_id}")
async def get_story(story_id: str, user_id: str = Depends(require_user), engine=Depends(get_engine)):
    story, progress = await asyncio.to_thread(engine.get_story, user_id, story_id)
    return {
        "success": True,
        "story": story.to_dict(full=True),
        "userProgress": progress.to_dict() if progress else None,
    }


@app.post("/api/stories/{story_id}/start")
async def start_story(story_id: str, user_id: str = Depends(require_user), engine=Depends(get_engine)):
    progress, chapter = await asyncio.to_thread(engine.start_story, user_id, story_id)
    return {"success": True, "progress": progress.to_dict(), "currentChapter": chapter.to_dict()}


@app.get("/api/stories/{story_id}/current")
async def get_current_chapter(story_id: str, user_id: str = Depends(require_user), engine=Depends(get_engine)):
    chapter, progress = await asyncio.to_thread(engine.get_current_chapter, user_id, story_id)
    return {"success": True, "chapter": chapter.to_dict(), "progress": progress.to_dict()}


@app.post("/api/stories/{story_id}/rate")
async def rate_story(story_id: str, request: Request, user_id: str = Depends(require_user),
                     engine=Depends(get_engine)):
    data = await _read_json(request)
    average = await asyncio.to_thread(engine.rate_story, user_id, story_id, data.get('rating'))
    return {"success": True, "message": "Rating submitted", "averageRating": round(average, 2)}


@app.get("/api/stories/{story_id}/stats")
async def get_story_stats(story_id: str, top: Optional[int] = None, _=Depends(require_user),
                          engine=Depends(get_engine)):
    stats = await asyncio.to_thread(engine.get_story_stats, story_id, top)
    return {"success": True, "stats": stats}
