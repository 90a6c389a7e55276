"""
FastAPI Application for the Step-by-Step Math Tutor

The browser UI talks to this app: each endpoint is one student intent
(start a problem, next step, "I didn't understand", full answer, ...)
forwarded to that session's SessionController.
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Awaitable, Callable, Literal, Optional
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from config import settings
from explainer import ExplanationClient
from media import (
    CameraAccessError,
    CameraCapture,
    CropRegion,
    ImageAttachment,
    InvalidImageError,
)
from profiles import ProfileNotFoundError, get_profile, list_profiles
from session import IntentResult, SessionController
from state import Language
from rate_limiter import (
    init_rate_limiter,
    close_rate_limiter,
    get_rate_limiter,
    RateLimitConfig
)

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class CreateSessionRequest(BaseModel):
    profile_id: str = Field(..., min_length=1)

class CropModel(BaseModel):
    x: float = Field(0, ge=0)
    y: float = Field(0, ge=0)
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)
    unit: Literal["px", "%"] = "px"

class AttachImageRequest(BaseModel):
    data_uri: str = Field(..., min_length=1, description="data:<mimetype>;base64,<data>")
    crop: Optional[CropModel] = None
    display_width: Optional[float] = Field(None, gt=0)
    display_height: Optional[float] = Field(None, gt=0)

class CameraCaptureRequest(BaseModel):
    crop: Optional[CropModel] = None
    display_width: Optional[float] = Field(None, gt=0)
    display_height: Optional[float] = Field(None, gt=0)

class StartProblemRequest(BaseModel):
    statement: str = ""

class ProfileModel(BaseModel):
    id: str
    name: str
    grade: str
    avatar: str
    description: str

class NotificationModel(BaseModel):
    title: str
    description: str
    variant: Literal["default", "destructive"]

class IntentResultModel(BaseModel):
    status: Literal["ok", "skipped", "error"]
    text: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None

class SessionResponse(BaseModel):
    session: dict
    profile: ProfileModel
    image: Optional[str] = None

class IntentResponse(BaseModel):
    result: IntentResultModel
    session: dict
    notifications: list[NotificationModel] = []

class HealthResponse(BaseModel):
    status: str
    version: str = "0.1.0"
    environment: str

# ============================================================================
# SESSION STORE
# ============================================================================

@dataclass
class TutorSession:
    controller: SessionController
    attachment: ImageAttachment = field(default_factory=ImageAttachment)
    last_seen: float = 0.0


class SessionStore:
    """
    In-process sessions; nothing survives a restart.

    A session untouched for `idle_timeout` seconds is dropped the next time
    the store is used (0 keeps sessions until they are deleted). Sessions
    with a call in flight are never dropped.
    """

    def __init__(self, idle_timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.idle_timeout = settings.session_idle_timeout if idle_timeout is None else idle_timeout
        self._clock = clock
        self._sessions: dict[str, TutorSession] = {}

    def create(self, controller: SessionController) -> TutorSession:
        self.evict_idle()
        session = TutorSession(controller=controller, last_seen=self._clock())
        self._sessions[controller.session_id] = session
        return session

    def get(self, session_id: str) -> TutorSession:
        self.evict_idle()
        session = self._sessions.get(session_id)
        if session is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Session not found")
        session.last_seen = self._clock()
        return session

    def delete(self, session_id: str) -> None:
        self.get(session_id)
        del self._sessions[session_id]

    def evict_idle(self) -> list[str]:
        if not self.idle_timeout:
            return []
        cutoff = self._clock() - self.idle_timeout
        expired = [
            session_id for session_id, session in self._sessions.items()
            if session.last_seen < cutoff and not session.controller.pending
        ]
        for session_id in expired:
            del self._sessions[session_id]
            logger.info(f"[Sessions] Expired idle session {session_id}")
        return expired

    def __len__(self) -> int:
        return len(self._sessions)


session_store = SessionStore()
_explanation_client: Optional[ExplanationClient] = None


def get_explanation_client() -> ExplanationClient:
    global _explanation_client
    if _explanation_client is None:
        _explanation_client = ExplanationClient()
    return _explanation_client


def get_session_store() -> SessionStore:
    return session_store

# ============================================================================
# HELPERS
# ============================================================================

def session_response(session: TutorSession) -> SessionResponse:
    controller = session.controller
    return SessionResponse(
        session=controller.snapshot(),
        profile=ProfileModel(**asdict(controller.profile)),
        image=session.attachment.image,
    )


def intent_response(controller: SessionController, result: IntentResult) -> IntentResponse:
    return IntentResponse(
        result=IntentResultModel(**result.to_dict()),
        session=controller.snapshot(),
        notifications=[NotificationModel(**asdict(n)) for n in controller.drain_notifications()],
    )


def crop_arguments(crop: Optional[CropModel], width: Optional[float], height: Optional[float]):
    region = CropRegion(**crop.model_dump()) if crop else None
    display_size = (width, height) if width and height else None
    return region, display_size


async def enforce_rate_limit(session_id: str) -> None:
    """
    Consume one token for an outgoing explanation-service call; 429 when exhausted.

    Installed as each controller's `before_call` hook, so intents that are
    skipped or served from cache cost nothing.
    """
    try:
        limiter = await get_rate_limiter()
    except RuntimeError:
        # Rate limiter not available, continue without limiting
        logger.debug("Rate limiter not available, skipping rate limit check")
        return

    allowed, remaining, reset_in = await limiter.check_rate_limit(session_id)
    if not allowed:
        raise HTTPException(
            status.HTTP_429_TOO_MANY_REQUESTS,
            f"Too many requests. Try again in {reset_in} seconds.",
            headers={"Retry-After": str(reset_in)}
        )


async def run_intent(tag: str, controller: SessionController, intent: Awaitable[IntentResult]) -> IntentResponse:
    try:
        result = await intent
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[{tag}] Error: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
    return intent_response(controller, result)

# ============================================================================
# LIFECYCLE & APP
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up Step-by-Step Tutor Backend...")

    try:
        await init_rate_limiter(
            settings.redis_url,
            RateLimitConfig(limit=settings.rate_limit_requests, window_seconds=settings.rate_limit_window)
        )
        logger.info(f"Rate limiter initialized ({settings.rate_limit_requests}/{settings.rate_limit_window}s per session)")
    except Exception as e:
        logger.warning(f"Rate limiter unavailable (Redis connection failed): {e}")

    yield

    logger.info("Shutting down...")
    await close_rate_limiter()

app = FastAPI(
    title="Step-by-Step Math Tutor API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(status="healthy", environment=settings.environment)

@app.get("/v1/quota")
async def get_quota(session_id: str):
    """Get current rate limit quota status for a session."""
    try:
        limiter = await get_rate_limiter()
        return await limiter.get_quota_status(session_id)
    except RuntimeError:
        return {
            "remaining": -1,  # -1 means unlimited
            "limit": -1,
            "window_seconds": settings.rate_limit_window,
            "reset_in_seconds": 0,
            "message": "Rate limiting not enabled"
        }

@app.get("/v1/profiles", response_model=list[ProfileModel])
async def get_profiles():
    return [ProfileModel(**asdict(p)) for p in list_profiles()]

@app.post("/v1/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    client: ExplanationClient = Depends(get_explanation_client),
    store: SessionStore = Depends(get_session_store),
):
    try:
        profile = get_profile(request.profile_id)
    except ProfileNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Unknown profile '{request.profile_id}'")

    controller = SessionController(profile, client)
    controller.before_call = lambda: enforce_rate_limit(controller.session_id)
    session = store.create(controller)
    logger.info(f"[Sessions] Created {session.controller.session_id} for {profile.id}")
    return session_response(session)

@app.get("/v1/sessions/{session_id}", response_model=SessionResponse)
async def read_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    return session_response(store.get(session_id))

@app.delete("/v1/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    store.delete(session_id)
    try:
        limiter = await get_rate_limiter()
        await limiter.reset_session(session_id)
    except RuntimeError:
        logger.debug("Rate limiter not available, nothing to reset")
    logger.info(f"[Sessions] Deleted {session_id}")

@app.post("/v1/sessions/{session_id}/image", response_model=SessionResponse)
async def attach_image(
    session_id: str,
    request: AttachImageRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Attach an uploaded image (data URI), optionally cropping it first."""
    session = store.get(session_id)
    region, display_size = crop_arguments(request.crop, request.display_width, request.display_height)
    try:
        session.attachment.set_pending(request.data_uri)
        session.attachment.crop_and_use(region, display_size)
    except InvalidImageError as e:
        session.attachment.cancel_crop()
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(e))
    return session_response(session)

@app.delete("/v1/sessions/{session_id}/image", response_model=SessionResponse)
async def remove_image(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = store.get(session_id)
    session.attachment.clear()
    return session_response(session)

@app.post("/v1/sessions/{session_id}/camera", response_model=SessionResponse)
def capture_photo(
    session_id: str,
    request: Optional[CameraCaptureRequest] = None,
    store: SessionStore = Depends(get_session_store),
):
    """Take a photo with the configured camera and attach it (sync: OpenCV blocks)."""
    session = store.get(session_id)
    request = request or CameraCaptureRequest()
    try:
        with CameraCapture() as camera:
            session.attachment.set_pending(camera.capture())
    except CameraAccessError as e:
        logger.warning(f"[Camera] {session_id}: {e}")
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))

    region, display_size = crop_arguments(request.crop, request.display_width, request.display_height)
    try:
        session.attachment.crop_and_use(region, display_size)
    except InvalidImageError as e:
        session.attachment.cancel_crop()
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(e))
    return session_response(session)

@app.post("/v1/sessions/{session_id}/problem", response_model=IntentResponse)
async def start_problem(
    session_id: str,
    request: StartProblemRequest,
    store: SessionStore = Depends(get_session_store),
):
    session = store.get(session_id)
    result = session.controller.start_problem(request.statement, session.attachment.image)
    return intent_response(session.controller, result)

@app.post("/v1/sessions/{session_id}/explanation/start", response_model=IntentResponse)
async def begin_explanation(session_id: str, store: SessionStore = Depends(get_session_store)):
    controller = store.get(session_id).controller
    return await run_intent("BeginExplanation", controller, controller.begin_step_by_step())

@app.post("/v1/sessions/{session_id}/explanation/next", response_model=IntentResponse)
async def next_step(session_id: str, store: SessionStore = Depends(get_session_store)):
    controller = store.get(session_id).controller
    return await run_intent("NextStep", controller, controller.next_step())

@app.post("/v1/sessions/{session_id}/explanation/re-explain", response_model=IntentResponse)
async def re_explain(session_id: str, store: SessionStore = Depends(get_session_store)):
    controller = store.get(session_id).controller
    return await run_intent("ReExplain", controller, controller.re_explain_last_step())

@app.post("/v1/sessions/{session_id}/solutions/{language}", response_model=IntentResponse)
async def full_solution(
    session_id: str,
    language: Language,
    store: SessionStore = Depends(get_session_store),
):
    controller = store.get(session_id).controller
    return await run_intent("FullSolution", controller, controller.request_full_solution(language))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.backend_port, reload=True)
