import hmac
import logging
import math
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

import database
from access import AccessGate, bootstrap_ids_from_env
from activity_log import LogBuffer, collection_writer
from auth import Identity, current_identity, decode_token, optional_identity
from database import count_documents, get_db, get_documents, optional_db
from errors import EcowasteError, UnauthorizedError
from moderation import ModerationService, visible_comments
from schemas import (
    ActivityEvent,
    CommentIn,
    CommentModeration,
    FeedbackStatusUpdate,
    ProjectStatusUpdate,
    RoleUpdate,
)
from submissions import submit_comment, submit_feedback, submit_project
from users import handle_identity_event, list_users

APP_NAME = "EcoWaste API"
ADMIN_BOOTSTRAP_IDS = bootstrap_ids_from_env()
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET")
LOG_FLUSH_INTERVAL = float(os.getenv("LOG_FLUSH_INTERVAL", "30"))
LOG_MAX_QUEUE = int(os.getenv("LOG_MAX_QUEUE", "100"))

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

log_buffer = LogBuffer(
    collection_writer(lambda: get_db()["log"]),
    flush_interval=LOG_FLUSH_INTERVAL,
    max_queue_size=LOG_MAX_QUEUE,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    buffer = log_buffer
    buffer.start()
    try:
        yield
    finally:
        await run_in_threadpool(buffer.stop, True)


app = FastAPI(title=APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Errors ----------

@app.exception_handler(EcowasteError)
async def ecowaste_error_handler(request: Request, exc: EcowasteError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.title, "message": exc.message})


# ---------- Request logging ----------

def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.monotonic()
    buffer = log_buffer
    identity = decode_token(request.headers.get("authorization"))
    context = {
        "route": request.url.path,
        "user_id": identity.id if identity else None,
        "ip": client_ip(request),
        "user_agent": request.headers.get("user-agent", "unknown"),
    }
    method, url = request.method, str(request.url)
    await run_in_threadpool(
        buffer.info, f"API Request: {method} {url}", data={"method": method, "url": url}, **context
    )
    try:
        response = await call_next(request)
    except Exception as e:
        duration = int((time.monotonic() - started) * 1000)
        await run_in_threadpool(
            buffer.error,
            f"API Error: {method} {url} ({duration}ms) - {e}",
            data={"method": method, "url": url, "error": str(e), "duration": duration},
            **context,
        )
        raise

    duration = int((time.monotonic() - started) * 1000)
    status = response.status_code
    level = "error" if status >= 500 else "warning" if status >= 400 else "info"
    await run_in_threadpool(
        buffer.log,
        level,
        f"API Response: {method} {url} {status} ({duration}ms)",
        data={"method": method, "url": url, "status": status, "duration": duration},
        **context,
    )
    return response


# ---------- Dependencies ----------

def get_log_buffer() -> LogBuffer:
    return log_buffer


def get_gate(db=Depends(get_db)) -> AccessGate:
    return AccessGate(db, ADMIN_BOOTSTRAP_IDS)


def get_moderation(db=Depends(get_db), gate: AccessGate = Depends(get_gate), buffer: LogBuffer = Depends(get_log_buffer)):
    return ModerationService(db, gate, buffer)


def require_admin(identity: Identity = Depends(current_identity), gate: AccessGate = Depends(get_gate)) -> Identity:
    gate.require_admin(identity.id)
    return identity


def pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit) if limit else 0}


# ---------- Basic routes ----------

@app.get("/")
def root():
    return {"message": f"{APP_NAME} running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "timestamp": int(time.time() * 1000),
        "environment": os.getenv("ENVIRONMENT", "development"),
    }


@app.get("/test")
def test_database():
    info = {
        "backend": "running",
        "database": "disconnected",
        "database_url": "set" if database.DATABASE_URL else "not set",
        "collections": [],
        "pendingLogs": log_buffer.pending,
    }
    try:
        if database.db is not None:
            info["database"] = "connected"
            info["collections"] = database.db.list_collection_names()[:10]
    except PyMongoError as e:
        info["database"] = f"error: {str(e)[:80]}"
    return info


# ---------- Projects ----------

@app.post("/api/projects", status_code=201)
def create_project(
    payload: Dict[str, Any] = Body(...),
    identity: Identity = Depends(current_identity),
    db=Depends(get_db),
    buffer: LogBuffer = Depends(get_log_buffer),
):
    project_id = submit_project(db, identity, payload)
    buffer.info(
        "Project proposal submitted",
        user_id=identity.id,
        route="/api/projects",
        data={"action": "project_create", "projectId": project_id},
    )
    return {"success": True, "message": "Project proposal submitted successfully", "projectId": project_id}


@app.get("/api/projects/mine")
def my_projects(identity: Identity = Depends(current_identity), db=Depends(get_db)):
    return {"projects": get_documents(db, "project", {"userId": identity.id})}


@app.get("/api/projects/public")
def public_projects(db=Depends(get_db)):
    return {"projects": get_documents(db, "project", {"status": "approved", "visibility": "public"})}


# ---------- Comments ----------

@app.post("/api/comments", status_code=201)
def create_comment(body: CommentIn, identity: Identity = Depends(current_identity), db=Depends(get_db)):
    comment = submit_comment(db, identity, body.projectId, body.content)
    return {
        "success": True,
        "message": "Comment submitted successfully and awaiting moderation",
        "comment": comment,
    }


@app.get("/api/comments")
def get_comments(
    projectId: str,
    identity: Optional[Identity] = Depends(optional_identity),
    db=Depends(get_db),
    gate: AccessGate = Depends(get_gate),
):
    viewer = identity.id if identity else None
    return {"success": True, "comments": visible_comments(db, gate, projectId, viewer)}


# ---------- Feedback ----------

@app.post("/api/feedback", status_code=201)
def create_feedback(
    payload: Dict[str, Any] = Body(...),
    identity: Identity = Depends(current_identity),
    db=Depends(get_db),
    buffer: LogBuffer = Depends(get_log_buffer),
):
    feedback = submit_feedback(db, identity, payload)
    buffer.info(
        "Feedback report submitted",
        user_id=identity.id,
        route="/api/feedback",
        data={"action": "report_submit", "feedbackId": feedback["id"]},
    )
    return {"success": True, "feedback": feedback}


@app.get("/api/feedback")
def list_feedback(
    status: Optional[str] = None,
    userId: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(current_identity),
    db=Depends(get_db),
):
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if userId:
        query["userId"] = userId
    total = count_documents(db, "feedback", query)
    items = get_documents(db, "feedback", query, limit=limit, skip=(page - 1) * limit)
    return {"success": True, "data": items, "pagination": pagination(total, page, limit)}


# ---------- Activity logs ----------

@app.post("/api/logs/activity")
def log_activity(
    event: ActivityEvent,
    request: Request,
    identity: Optional[Identity] = Depends(optional_identity),
    buffer: LogBuffer = Depends(get_log_buffer),
):
    buffer.info(
        f"{event.action} {event.path}",
        user_id=identity.id if identity else None,
        route=event.path,
        data={
            "action": event.action,
            "elementId": event.elementId,
            "elementText": event.elementText,
            "details": event.details,
        },
        ip=client_ip(request),
        user_agent=event.userAgent or request.headers.get("user-agent"),
    )
    return {"success": True}


# ---------- Identity provider webhook ----------

@app.post("/api/webhooks/identity")
def identity_webhook(
    event: Dict[str, Any] = Body(...),
    x_webhook_secret: Optional[str] = Header(None),
    db=Depends(get_db),
):
    if not WEBHOOK_SECRET:
        raise EcowasteError("Webhook secret not set")
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, WEBHOOK_SECRET):
        raise UnauthorizedError("Invalid webhook secret")
    result = handle_identity_event(db, event)
    return {"message": "Webhook processed successfully", "result": result}


# ---------- Admin endpoints ----------

@app.get("/api/admin/check")
def check_admin(identity: Identity = Depends(current_identity), db=Depends(optional_db)):
    if db is None:
        return {"isAdmin": False}
    return {"isAdmin": AccessGate(db, ADMIN_BOOTSTRAP_IDS).is_authorized_admin(identity.id)}


@app.get("/api/admin/status")
def admin_status(gate: AccessGate = Depends(get_gate)):
    return {"status": "success", "adminCount": gate.admin_count()}


@app.post("/api/admin/setup")
def setup_first_admin(identity: Identity = Depends(current_identity), gate: AccessGate = Depends(get_gate)):
    user = gate.bootstrap_first_admin(
        identity.id,
        {"firstName": identity.firstName, "lastName": identity.lastName, "email": identity.email},
    )
    return {"message": "First admin user created successfully", "userId": identity.id, "mongoId": str(user["_id"])}


@app.get("/api/admin/projects")
def admin_projects(status: Optional[str] = None, admin: Identity = Depends(require_admin), db=Depends(get_db)):
    query = {"status": status} if status else {}
    return {"success": True, "projects": get_documents(db, "project", query)}


@app.post("/api/admin/projects/status")
def update_project_status(
    body: ProjectStatusUpdate,
    identity: Identity = Depends(current_identity),
    moderation: ModerationService = Depends(get_moderation),
):
    project = moderation.set_project_status(identity.id, body.projectId, body.status, body.adminComment)
    return {"success": True, "message": f"Project status updated to {body.status}", "project": project}


@app.get("/api/admin/comments/pending")
def pending_comments(admin: Identity = Depends(require_admin), db=Depends(get_db)):
    comments = get_documents(db, "comment", {"status": "pending"})
    return {
        "success": True,
        "comments": [
            {
                "id": c["id"],
                "content": c.get("content"),
                "userName": c.get("userName"),
                "status": c.get("status"),
                "createdAt": c.get("createdAt"),
                "projectId": c.get("projectId"),
            }
            for c in comments
        ],
    }


@app.post("/api/admin/comments/moderate")
def moderate_comment(
    body: CommentModeration,
    identity: Identity = Depends(current_identity),
    moderation: ModerationService = Depends(get_moderation),
):
    comment = moderation.moderate_comment(identity.id, body.commentId, body.status)
    return {
        "success": True,
        "message": f"Comment {body.status}",
        "comment": {
            "id": comment["id"],
            "content": comment.get("content"),
            "status": comment.get("status"),
            "updatedAt": comment.get("updatedAt"),
        },
    }


@app.post("/api/admin/feedback/status")
def update_feedback_status(
    body: FeedbackStatusUpdate,
    identity: Identity = Depends(current_identity),
    moderation: ModerationService = Depends(get_moderation),
):
    feedback = moderation.set_feedback_status(identity.id, body.feedbackId, body.status, body.adminComment)
    return {"success": True, "feedback": feedback}


@app.get("/api/admin/users")
def admin_users(admin: Identity = Depends(require_admin), db=Depends(get_db)):
    return {"users": list_users(db)}


@app.post("/api/admin/users/role")
def set_role(
    body: RoleUpdate,
    identity: Identity = Depends(current_identity),
    moderation: ModerationService = Depends(get_moderation),
):
    user = moderation.set_user_role(identity.id, body.userId, body.role)
    return {
        "success": True,
        "message": f"User role updated to {body.role}",
        "user": {
            "id": user["id"],
            "externalId": user.get("externalId"),
            "name": f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip(),
            "email": user.get("email"),
            "role": user.get("role"),
        },
    }


@app.get("/api/admin/logs")
def admin_logs(
    level: Optional[str] = None,
    userId: Optional[str] = None,
    route: Optional[str] = None,
    action: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    admin: Identity = Depends(require_admin),
    db=Depends(get_db),
):
    query: Dict[str, Any] = {}
    if level:
        query["level"] = level
    if userId:
        query["userId"] = userId
    if route:
        query["route"] = route
    if action:
        query["data.action"] = action
    if startDate or endDate:
        query["timestamp"] = {}
        if startDate:
            query["timestamp"]["$gte"] = startDate
        if endDate:
            query["timestamp"]["$lte"] = endDate

    total = count_documents(db, "log", query)
    logs = get_documents(db, "log", query, limit=limit, skip=(page - 1) * limit, sort_field="timestamp")
    return {"logs": logs, "pagination": pagination(total, page, limit)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
