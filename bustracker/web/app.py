"""
FastAPI Web Application - Bus Tracker API
=========================================

JSON API behind the commuter app: tracking, schedules & bookings,
community reviews, notifications, chat assistant and the admin dashboard.
Each client gets its own session, identified by the session_token cookie
issued on login or registration. Endpoints are gated by that session,
admin endpoints by role.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..application import (
    AuthService,
    DataAccessLayer,
    SessionContext,
    SessionManager,
    AuthError,
    EmailInUseError,
    InvalidCredentialError,
    NotFoundError,
    TooManyAttemptsError,
)
from ..application.auth import hash_password
from ..application.dashboard import recent_negative, review_stats
from ..domain import transit
from ..domain.models import (
    Booking,
    BusStatus,
    ChatMessage,
    Notification,
    NotificationType,
    Review,
    User,
    new_id,
)
from ..infrastructure.config import Settings, get_settings
from ..infrastructure.llm import InferenceService
from ..infrastructure.persistence import LocalCache, init_with_seed_data
from ..infrastructure.remote import DocumentStore, create_document_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ON_SCHEDULE_MESSAGE = "Bus is running on schedule."
SESSION_COOKIE = "session_token"


# ── Services ───────────────────────────────────────────────────────

@dataclass
class Services:
    settings: Settings
    cache: LocalCache
    sessions: SessionManager
    inference: InferenceService
    data: DataAccessLayer
    auth: AuthService
    # One simulated fleet per session token
    fleets: Dict[str, transit.FleetSimulator] = field(default_factory=dict)


def build_services(
    settings: Settings,
    cache: Optional[LocalCache] = None,
    remote: Optional[DocumentStore] = None,
    inference: Optional[InferenceService] = None,
) -> Services:
    """Wire everything together. Pass components to override (tests)."""
    cache = cache or init_with_seed_data(settings.cache.db_file)
    remote = remote or create_document_store(settings.remote)
    inference = inference or InferenceService(settings.llm)

    sessions = SessionManager(cache)
    data = DataAccessLayer(cache, remote, inference, sessions, settings)
    auth = AuthService(cache, data, settings)
    auth.seed_credentials()

    return Services(
        settings=settings,
        cache=cache,
        sessions=sessions,
        inference=inference,
        data=data,
        auth=auth,
    )


# ── Globals ────────────────────────────────────────────────────────
services: Optional[Services] = None


# ── Lifespan ───────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    global services
    if services is None:
        settings = get_settings()
        for issue in settings.validate():
            logger.warning(issue)
        services = build_services(settings)
    logger.info("Services ready")
    yield


app = FastAPI(title="Bus Tracker", description="Commuter bus tracking API", lifespan=lifespan)


# ── Request bodies ─────────────────────────────────────────────────

class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class ProfileUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class BookingRequest(BaseModel):
    schedule_id: str


class ReviewRequest(BaseModel):
    text: str


class ReplyRequest(BaseModel):
    text: str


class NotificationRequest(BaseModel):
    title: str
    message: str
    type: NotificationType = NotificationType.GENERAL


class ChatTurn(BaseModel):
    role: str
    text: str


class ChatRequest(BaseModel):
    history: List[ChatTurn] = Field(default_factory=list)
    message: str = ""
    audio_base64: Optional[str] = None


# ── Error mapping ──────────────────────────────────────────────────

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    if isinstance(exc, TooManyAttemptsError):
        status = 429
    elif isinstance(exc, InvalidCredentialError):
        status = 401
    elif isinstance(exc, EmailInUseError):
        status = 409
    else:
        status = 400
    return JSONResponse(status_code=status, content={"detail": exc.message})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ── Auth helpers ───────────────────────────────────────────────

def _current_session(request: Request) -> Optional[SessionContext]:
    """Session for the request's cookie, or None."""
    return services.sessions.get(request.cookies.get(SESSION_COOKIE))


def _require_session(request: Request) -> SessionContext:
    session = _current_session(request)
    if not session:
        raise HTTPException(status_code=401, detail="Not signed in")
    return session


def _require_user(request: Request) -> User:
    """Current session user, or 401."""
    return _require_session(request).current


def _require_admin(request: Request) -> User:
    user = _require_user(request)
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _fleet(session: SessionContext) -> transit.FleetSimulator:
    return services.fleets.setdefault(session.token, transit.FleetSimulator())


def _begin_session(request: Request, response: Response, session: SessionContext) -> None:
    """Replace whatever session this client had with the new one."""
    previous = _current_session(request)
    if previous:
        _end_session(previous)
    services.fleets[session.token] = transit.FleetSimulator()
    response.set_cookie(key=SESSION_COOKIE, value=session.token, httponly=True, samesite="lax")


def _end_session(session: SessionContext) -> None:
    services.auth.logout(session)
    services.fleets.pop(session.token, None)


# ── Auth routes ────────────────────────────────────────────────

@app.post("/api/register")
async def register(body: RegisterRequest, request: Request, response: Response):
    session = services.sessions.open()
    user = await services.auth.register(body.username, body.email, body.password, session)
    _begin_session(request, response, session)
    return {"user": user.to_public_dict()}


@app.post("/api/login")
async def login(body: LoginRequest, request: Request, response: Response):
    session = services.sessions.open()
    user = await services.auth.login(body.email, body.password, session)
    _begin_session(request, response, session)
    return {"user": user.to_public_dict()}


@app.post("/api/logout")
async def logout(request: Request, response: Response):
    session = _current_session(request)
    if session:
        _end_session(session)
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}


@app.get("/api/session")
async def session_info(request: Request):
    session = _current_session(request)
    return {"user": session.current.to_public_dict() if session else None}


@app.get("/api/emails")
async def known_emails():
    """Sign-in suggestions."""
    return {"emails": await services.data.get_known_emails()}


@app.post("/api/password-reset")
async def request_password_reset(body: PasswordResetRequest):
    # Delivery of the token (e-mail) is not part of this service
    services.auth.request_password_reset(body.email)
    return {"message": f"Password reset requested for {body.email.strip()}."}


@app.post("/api/password-reset/confirm")
async def confirm_password_reset(body: PasswordResetConfirm):
    user = await services.auth.reset_password(body.token, body.new_password)
    return {"user": user.to_public_dict()}


# ── Profile ────────────────────────────────────────────────────

@app.get("/api/profile")
async def get_profile(request: Request):
    user = _require_user(request)
    bookings = await services.data.get_user_bookings(user.id)
    return {
        "user": user.to_public_dict(),
        "bookings": [b.to_dict() for b in bookings],
    }


@app.put("/api/profile")
async def update_profile(request: Request, body: ProfileUpdate):
    user = _require_user(request)
    new_email = (body.email or user.email).strip()

    if new_email != user.email or body.password:
        services.auth.update_credentials(user.email, new_email, body.password or None)

    updated = User.from_dict(user.to_dict())
    updated.username = body.username or user.username
    updated.email = new_email
    if body.password:
        updated.password = hash_password(body.password)

    saved = await services.data.update_user(updated)
    return {"user": saved.to_public_dict()}


@app.delete("/api/profile/routes/{route_id}")
async def remove_frequent_route(request: Request, route_id: str):
    user = _require_user(request)
    updated = await services.data.remove_frequent_route(user.id, route_id)
    return {"frequent_routes": updated.frequent_routes if updated else []}


# ── Tracking & schedules ───────────────────────────────────────

@app.get("/api/routes")
async def list_routes(request: Request):
    _require_user(request)
    return {"routes": [{"id": r.id, "label": r.label} for r in transit.ROUTES]}


@app.get("/api/schedules")
async def list_schedules(request: Request, route: str = ""):
    """Schedule for one route; viewing it records a frequent route."""
    user = _require_user(request)
    if not route:
        return {"route": None, "schedules": []}

    await services.data.add_frequent_route(user.id, route)
    return {
        "route": {"id": route, "label": transit.route_label(route)},
        "schedules": [asdict(item) for item in transit.schedules_for_route(route)],
    }


@app.get("/api/buses")
async def list_buses(request: Request):
    """Advance the simulation one step and return the fleet."""
    session = _require_session(request)
    user = session.current
    buses = _fleet(session).tick()
    return {
        "center": {"latitude": transit.CENTER_LAT, "longitude": transit.CENTER_LNG},
        "buses": [b.to_dict() for b in buses],
        "frequent_routes": user.frequent_routes,
    }


@app.get("/api/buses/{bus_id}/prediction")
async def bus_prediction(request: Request, bus_id: str):
    session = _require_session(request)
    bus = _fleet(session).get(bus_id)
    if not bus:
        raise HTTPException(status_code=404, detail="Bus not found")

    if bus.status != BusStatus.DELAYED:
        return {"bus_id": bus.id, "prediction": ON_SCHEDULE_MESSAGE}

    prediction = await asyncio.to_thread(
        services.inference.predict_delay, bus.route_name, bus.status.value
    )
    return {"bus_id": bus.id, "prediction": prediction}


# ── Bookings ───────────────────────────────────────────────────

@app.get("/api/bookings")
async def list_bookings(request: Request):
    user = _require_user(request)
    bookings = await services.data.get_user_bookings(user.id)
    return {"bookings": [b.to_dict() for b in bookings]}


@app.post("/api/bookings")
async def create_booking(request: Request, body: BookingRequest):
    user = _require_user(request)
    item = transit.get_schedule_item(body.schedule_id)
    if not item:
        raise HTTPException(status_code=404, detail="Schedule not found")

    booking = Booking(
        id=new_id(),
        user_id=user.id,
        route_id=item.route_id,
        route_name=transit.route_label(item.route_id),
        stop_name=item.stop_name,
        time=item.departure_time,
    )
    await services.data.create_booking(booking)
    return {"booking": booking.to_dict()}


# ── Reviews ────────────────────────────────────────────────────

@app.get("/api/reviews")
async def list_reviews(request: Request):
    _require_user(request)
    reviews = await services.data.get_reviews()
    return {"reviews": [r.to_dict() for r in reviews]}


@app.post("/api/reviews")
async def submit_review(request: Request, body: ReviewRequest):
    user = _require_user(request)
    text = body.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Review text is required")

    analysis = await asyncio.to_thread(services.inference.analyze_sentiment, text)
    review = Review(
        id=new_id(),
        user_id=user.id,
        username=user.username,
        text=text,
        sentiment=analysis.sentiment,
        sentiment_score=analysis.score,
    )
    await services.data.add_review(review)
    return {"review": review.to_dict()}


@app.post("/api/reviews/{review_id}/reply")
async def reply_to_review(request: Request, review_id: str, body: ReplyRequest):
    _require_admin(request)
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="Reply text is required")
    reply = await services.data.reply_to_review(review_id, body.text.strip())
    return {"review_id": review_id, **reply}


# ── Notifications ──────────────────────────────────────────────

@app.get("/api/notifications")
async def list_notifications(request: Request):
    user = _require_user(request)
    notifications = await services.data.get_notifications()
    items = [{**n.to_dict(), "read": user.has_read(n.id)} for n in notifications]
    return {
        "notifications": items,
        "unread": sum(1 for item in items if not item["read"]),
    }


@app.post("/api/notifications")
async def post_notification(request: Request, body: NotificationRequest):
    admin = _require_admin(request)
    if not body.title.strip() or not body.message.strip():
        raise HTTPException(status_code=400, detail="Title and message are required")

    notification = Notification(
        id=new_id(),
        title=body.title.strip(),
        message=body.message.strip(),
        type=body.type,
        author=admin.username,
    )
    await services.data.add_notification(notification)
    return {"notification": notification.to_dict()}


@app.post("/api/notifications/{notification_id}/read")
async def mark_notification_read(request: Request, notification_id: str):
    user = _require_user(request)
    updated = await services.data.mark_notification_read(user.id, notification_id)
    return {"read_notification_ids": updated.read_notification_ids}


@app.post("/api/notifications/read-all")
async def mark_all_notifications_read(request: Request):
    user = _require_user(request)
    updated = await services.data.mark_all_notifications_read(user.id)
    return {"read_notification_ids": updated.read_notification_ids}


# ── Chat ───────────────────────────────────────────────────────

@app.post("/api/chat")
async def chat(request: Request, body: ChatRequest):
    _require_user(request)
    if not body.message.strip() and not body.audio_base64:
        raise HTTPException(status_code=400, detail="Message or audio is required")

    history = [ChatMessage(role=turn.role, text=turn.text) for turn in body.history]
    reply = await asyncio.to_thread(
        services.inference.chat, history, body.message, body.audio_base64
    )
    return {"reply": asdict(ChatMessage(role="model", text=reply))}


# ── Admin ──────────────────────────────────────────────────────

@app.get("/api/admin/dashboard")
async def admin_dashboard(request: Request):
    _require_admin(request)
    reviews = await services.data.get_reviews()
    return {
        "stats": review_stats(reviews),
        "needs_attention": [r.to_dict() for r in recent_negative(reviews)],
        "reviews": [r.to_dict() for r in reviews],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
