"""
User submissions: project proposals, comments and feedback reports.

Everything starts out `pending` and waits for moderation.
"""
import logging
from typing import Any, Dict

import pydantic
from pymongo.errors import PyMongoError

from auth import Identity
from database import create_document, oid
from errors import NotFoundError, PersistenceError, ValidationError
from schemas import Comment, Feedback, Project

logger = logging.getLogger(__name__)

PROJECT_REQUIRED_FIELDS = (
    "title", "description", "category", "location",
    "budget", "timeline", "contactName", "contactEmail",
)


def _describe(err: pydantic.ValidationError) -> str:
    parts = []
    for e in err.errors():
        field = ".".join(str(p) for p in e.get("loc", ()))
        parts.append(f"{field}: {e.get('msg')}" if field else e.get("msg", ""))
    return "; ".join(parts)


def submit_project(database, identity: Identity, data: Dict[str, Any]) -> str:
    missing = [f for f in PROJECT_REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    fields = {k: v for k, v in data.items() if k not in ("status", "userId", "userEmail", "adminComment")}
    try:
        project = Project(**fields, userId=identity.id, userEmail=identity.email, status="pending")
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e))

    project_id = create_document(database, "project", project.model_dump(exclude_none=True))
    logger.info("Project proposal %s submitted by %s", project_id, identity.id)
    return project_id


def submit_comment(database, identity: Identity, project_id: str, content: str) -> dict:
    if not project_id or not content or not content.strip():
        raise ValidationError("Project ID and comment content are required")
    try:
        project = database["project"].find_one({"_id": oid(project_id)}, {"_id": 1})
    except PyMongoError as e:
        raise PersistenceError(f"Failed to read project: {e}")
    if not project:
        raise NotFoundError("Project not found")

    comment = Comment(
        projectId=project_id,
        userId=identity.id,
        userEmail=identity.email,
        userName=identity.name,
        content=content.strip(),
    )
    data = comment.model_dump()
    comment_id = create_document(database, "comment", data)
    logger.info("Comment %s created for project %s", comment_id, project_id)
    return {"id": comment_id, "content": data["content"], "status": data["status"]}


def submit_feedback(database, identity: Identity, data: Dict[str, Any]) -> dict:
    required = ("title", "description", "address", "lat", "lng", "imageUrl")
    missing = [f for f in required if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    try:
        feedback = Feedback(
            title=data["title"],
            description=data["description"],
            location={
                "address": data["address"],
                "coordinates": {"lat": data["lat"], "lng": data["lng"]},
            },
            imageUrl=data["imageUrl"],
            severity=data.get("severity") or "medium",
            userId=identity.id,
            userEmail=identity.email,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e))

    doc = feedback.model_dump(exclude_none=True)
    doc["id"] = create_document(database, "feedback", doc)
    logger.info("Feedback report %s submitted by %s", doc["id"], identity.id)
    return doc
