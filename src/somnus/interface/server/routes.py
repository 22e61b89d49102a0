"""
API Routes for the dream journal.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from somnus.auth.session import (
    SessionClaims,
    authenticate_admin,
    check_password,
    has_role,
    hash_password,
    is_reserved_username,
    ADMIN_ROLE,
)
from somnus.brain.llm_gateway import GatewayError, GatewayNotConfiguredError, UpstreamClientError
from somnus.core.database import Dream, DuplicateUsername, Feedback, User
from somnus.core.system_logger import log_event
from somnus.interface.server.auth import (
    clear_session_cookie,
    get_session,
    require_admin,
    require_session,
    set_session_cookie,
)
from somnus.journal import analytics
from somnus.journal.service import AccountRequired, DreamNotFound

logger = logging.getLogger("somnus.server.routes")

USERNAME_TAKEN = "This username is already taken."
NO_JOURNAL = "This account cannot keep a journal"

router = APIRouter(prefix="/api")

# --- Models ---

class CamelModel(BaseModel):
    class Config:
        populate_by_name = True

class RegisterRequest(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None
    zodiac_sign: Optional[str] = Field(default=None, alias="zodiacSign")

class LoginRequest(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None

class ProfileUpdateRequest(CamelModel):
    username: Optional[str] = None
    zodiac_sign: Optional[str] = Field(default=None, alias="zodiacSign")

class DreamCreateRequest(CamelModel):
    text: Optional[str] = None
    title: Optional[str] = None
    interpretation: Optional[str] = None
    date: Optional[datetime] = None
    language: str = "tr"

class DreamUpdateRequest(CamelModel):
    title: Optional[str] = None
    interpretation: Optional[str] = None

class SyncEntry(CamelModel):
    text: str
    title: Optional[str] = None
    interpretation: Optional[str] = None
    date: Optional[datetime] = None

class SyncRequest(CamelModel):
    dreams: Any = None

class TextRequest(CamelModel):
    text: Optional[str] = None
    language: str = "tr"

class ChatMessageModel(CamelModel):
    role: str = "user"
    content: Optional[str] = None

class ChatRequest(CamelModel):
    messages: Optional[List[ChatMessageModel]] = None

class WeeklyRequest(CamelModel):
    language: str = "tr"

class FeedbackRequest(CamelModel):
    message: Optional[str] = None
    email: Optional[str] = None

# --- Serialization ---

def _local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive local time."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value

def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "zodiacSign": user.zodiac_sign,
        "createdAt": user.created_at.isoformat(),
    }

def dream_to_dict(dream: Dream) -> Dict[str, Any]:
    return {
        "id": dream.id,
        "text": dream.text,
        "title": dream.title,
        "interpretation": dream.interpretation,
        "date": dream.date.isoformat(),
        "userId": dream.user_id,
    }

def feedback_to_dict(feedback: Feedback) -> Dict[str, Any]:
    return {
        "id": feedback.id,
        "message": feedback.message,
        "email": feedback.email,
        "userId": feedback.user_id,
        "username": feedback.username,
        "createdAt": feedback.created_at.isoformat(),
    }

def _upstream_failure(e: GatewayError, fallback: str) -> HTTPException:
    if isinstance(e, GatewayNotConfiguredError):
        return HTTPException(status_code=500, detail="API key not configured")
    if isinstance(e, UpstreamClientError):
        return HTTPException(status_code=500, detail=f"API Error: {e.status_code}")
    return HTTPException(status_code=500, detail=fallback)

# --- Auth ---

@router.post("/auth/register")
async def register(request: Request, body: RegisterRequest):
    if not body.username or not body.password:
        raise HTTPException(status_code=400, detail="Username and password required")

    store = request.app.state.store
    if is_reserved_username(request.app.state.config, body.username):
        log_event("AUTH_REGISTER", {"username": body.username, "ok": False, "reason": "reserved"}, level="WARNING")
        raise HTTPException(status_code=409, detail=USERNAME_TAKEN)
    if await store.get_user_by_username(body.username):
        raise HTTPException(status_code=409, detail=USERNAME_TAKEN)

    try:
        user = await store.create_user(body.username, hash_password(body.password), body.zodiac_sign)
    except DuplicateUsername:
        # Lost a race against a concurrent registration
        raise HTTPException(status_code=409, detail=USERNAME_TAKEN)
    log_event("AUTH_REGISTER", {"username": user.username}, user_id=user.id)

    response = JSONResponse({"success": True, "user": user_to_dict(user)})
    set_session_cookie(request, response, SessionClaims(user_id=user.id, username=user.username))
    return response

@router.post("/auth/login")
async def login(request: Request, body: LoginRequest):
    if not body.username or not body.password:
        raise HTTPException(status_code=400, detail="Username and password required")

    config = request.app.state.config

    # The environment admin is checked first and needs no user row.
    claims = authenticate_admin(config, body.username, body.password)
    user_payload: Dict[str, Any]
    if claims is not None:
        user_payload = {"id": claims.user_id, "username": claims.username, "isAdmin": True}
    else:
        user = await request.app.state.store.get_user_by_username(body.username)
        if user is None or not check_password(body.password, user.password_hash):
            log_event("AUTH_LOGIN", {"username": body.username, "ok": False}, level="WARNING")
            raise HTTPException(status_code=401, detail="Invalid username or password")
        claims = SessionClaims(user_id=user.id, username=user.username)
        user_payload = user_to_dict(user)
        user_payload["isAdmin"] = has_role(claims, ADMIN_ROLE, config)

    log_event("AUTH_LOGIN", {"username": claims.username, "ok": True}, user_id=claims.user_id)
    response = JSONResponse({"success": True, "user": user_payload})
    set_session_cookie(request, response, claims)
    return response

@router.post("/auth/logout")
async def logout(request: Request):
    response = JSONResponse({"success": True})
    clear_session_cookie(request, response)
    return response

@router.get("/auth/me")
async def me(request: Request):
    claims = get_session(request)
    if claims is None:
        return {"user": None}

    is_admin = has_role(claims, ADMIN_ROLE, request.app.state.config)
    user = await request.app.state.store.get_user(claims.user_id)
    if user is not None:
        return {"user": {**user_to_dict(user), "isAdmin": is_admin}}
    if is_admin:
        return {"user": {"id": claims.user_id, "username": claims.username, "isAdmin": True}}
    return {"user": None}

@router.get("/auth/check-username")
async def check_username(request: Request, username: Optional[str] = None):
    if not username:
        raise HTTPException(status_code=400, detail="Username required")
    if is_reserved_username(request.app.state.config, username):
        return {"available": False}
    existing = await request.app.state.store.get_user_by_username(username)
    return {"available": existing is None}

@router.post("/auth/update")
async def update_profile(request: Request, body: ProfileUpdateRequest, claims: SessionClaims = Depends(require_session)):
    if body.username is None and body.zodiac_sign is None:
        raise HTTPException(status_code=400, detail="Invalid data")

    store = request.app.state.store
    if body.username is not None:
        if not body.username.strip():
            raise HTTPException(status_code=400, detail="Invalid data")
        renaming_to_self = body.username.strip().lower() == claims.username.lower()
        if is_reserved_username(request.app.state.config, body.username) and not renaming_to_self:
            raise HTTPException(status_code=409, detail=USERNAME_TAKEN)
        existing = await store.get_user_by_username(body.username)
        if existing is not None and existing.id != claims.user_id:
            raise HTTPException(status_code=409, detail=USERNAME_TAKEN)

    try:
        user = await store.update_user(claims.user_id, username=body.username, zodiac_sign=body.zodiac_sign)
    except DuplicateUsername:
        raise HTTPException(status_code=409, detail=USERNAME_TAKEN)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    response = JSONResponse({"success": True, "user": user_to_dict(user)})
    # The username lives inside the token, so a rename needs a fresh one.
    set_session_cookie(request, response, SessionClaims(user_id=user.id, username=user.username))
    return response

# --- Dreams ---

@router.get("/dreams")
async def list_dreams(request: Request, claims: SessionClaims = Depends(require_session)):
    dreams = await request.app.state.journal.list_dreams(claims.user_id)
    return [dream_to_dict(d) for d in dreams]

@router.post("/dreams")
async def create_dream(
    request: Request,
    body: DreamCreateRequest,
    background_tasks: BackgroundTasks,
    claims: SessionClaims = Depends(require_session),
):
    journal = request.app.state.journal
    try:
        dream = await journal.create_dream(
            claims.user_id,
            body.text or "",
            title=body.title,
            interpretation=body.interpretation,
            date=_local_naive(body.date),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AccountRequired:
        raise HTTPException(status_code=403, detail=NO_JOURNAL)

    if not dream.title and request.app.state.gateway.is_configured:
        background_tasks.add_task(journal.attach_title, dream.id, dream.text, body.language)
    return dream_to_dict(dream)

@router.patch("/dreams/{dream_id}")
async def update_dream(request: Request, dream_id: str, body: DreamUpdateRequest, claims: SessionClaims = Depends(require_session)):
    try:
        dream = await request.app.state.journal.update_dream(
            claims.user_id, dream_id, title=body.title, interpretation=body.interpretation
        )
    except DreamNotFound:
        raise HTTPException(status_code=404, detail="Not found or unauthorized")
    return dream_to_dict(dream)

@router.delete("/dreams/{dream_id}")
async def delete_dream(request: Request, dream_id: str, claims: SessionClaims = Depends(require_session)):
    try:
        await request.app.state.journal.delete_dream(claims.user_id, dream_id)
    except DreamNotFound:
        raise HTTPException(status_code=404, detail="Not found or unauthorized")
    return {"success": True}

@router.post("/dreams/sync")
async def sync_dreams(request: Request, body: SyncRequest, claims: SessionClaims = Depends(require_session)):
    if not isinstance(body.dreams, list):
        raise HTTPException(status_code=400, detail="Invalid data format")
    try:
        entries = [SyncEntry.model_validate(d) for d in body.dreams]
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid data format")

    try:
        created = await request.app.state.journal.sync_dreams(claims.user_id, [
            {"text": e.text, "title": e.title, "interpretation": e.interpretation, "date": _local_naive(e.date)}
            for e in entries
        ])
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid data format")
    except AccountRequired:
        raise HTTPException(status_code=403, detail=NO_JOURNAL)
    return {"success": True, "count": len(created), "ids": [d.id for d in created]}

# --- Journal analytics ---

@router.get("/stats")
async def journal_stats(request: Request, claims: SessionClaims = Depends(require_session)):
    dreams = await request.app.state.store.list_dreams(claims.user_id)
    return analytics.journal_stats(dreams)

@router.post("/analysis/weekly")
async def weekly_analysis(request: Request, body: WeeklyRequest, claims: SessionClaims = Depends(require_session)):
    dreams = await request.app.state.store.list_dreams(claims.user_id)
    now = datetime.now()
    analysis = await request.app.state.weekly.summarize(dreams, body.language, now=now)
    return {"analysis": analysis, **analytics.week_overview(dreams, now)}

@router.get("/analysis/monthly")
async def monthly_analysis(request: Request, claims: SessionClaims = Depends(require_session)):
    dreams = await request.app.state.store.list_dreams(claims.user_id)
    return analytics.month_overview(dreams)

# --- LLM ---

@router.post("/interpret")
async def interpret(request: Request, body: TextRequest):
    if not body.text:
        raise HTTPException(status_code=400, detail="Dream text is required")
    try:
        interpretation = await request.app.state.interpreter.interpret(body.text, body.language)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError as e:
        raise _upstream_failure(e, "All API keys failed to generate an interpretation.")
    return {"interpretation": interpretation}

@router.post("/generate-title")
async def generate_title(request: Request, body: TextRequest):
    if not body.text:
        raise HTTPException(status_code=400, detail="Dream text is required")
    try:
        title = await request.app.state.interpreter.generate_title(body.text, body.language)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError as e:
        raise _upstream_failure(e, "Failed to generate title")
    return {"title": title}

@router.post("/chat")
async def chat(request: Request, body: ChatRequest):
    if not body.messages:
        raise HTTPException(status_code=400, detail="Messages array is required")
    try:
        reply = await request.app.state.interpreter.chat([m.model_dump() for m in body.messages])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError as e:
        raise _upstream_failure(e, "All API keys failed or rate limited")
    return {"response": reply}

# --- Feedback ---

@router.post("/feedback")
async def submit_feedback(request: Request, body: FeedbackRequest):
    if not body.message or not body.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    claims = get_session(request)
    feedback = await request.app.state.store.create_feedback(
        body.message.strip(),
        email=body.email,
        user_id=claims.user_id if claims else None,
        username=claims.username if claims else None,
    )
    return {"success": True, "feedback": feedback_to_dict(feedback)}

# --- Admin ---

@router.get("/admin/stats")
async def admin_stats(request: Request, claims: SessionClaims = Depends(require_admin)):
    store = request.app.state.store
    users = await store.list_users_with_counts()
    dreams = await store.list_all_dreams()
    feedbacks = await store.list_feedback()
    total_dreams = await store.count_dreams()

    week_ago = datetime.now() - timedelta(days=7)
    return {
        "stats": {
            "totalDreams": total_dreams,
            "totalUsers": len(users),
            "thisWeekDreams": sum(1 for row in dreams if row["dream"].date >= week_ago),
            "interpretedDreams": sum(1 for row in dreams if row["dream"].interpretation),
            "totalFeedbacks": len(feedbacks),
        },
        "users": [{**user_to_dict(row["user"]), "dreamCount": row["dream_count"]} for row in users],
        "dreams": [{
            "id": row["dream"].id,
            "text": row["dream"].text,
            "date": row["dream"].date.isoformat(),
            "interpretation": row["dream"].interpretation,
            "username": row["username"],
            "userId": row["dream"].user_id,
        } for row in dreams],
        "feedbacks": [feedback_to_dict(f) for f in feedbacks],
    }
