"""
Admin moderation of projects, comments, feedback reports and user roles.

Status changes are unrestricted: any value of the entity's status set may
follow any other, and the last write wins.
"""
import logging
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from access import AccessGate
from activity_log import LogBuffer
from database import now, oid, serialize
from errors import NotFoundError, PersistenceError, ValidationError
from schemas import FEEDBACK_STATUSES, MODERATION_DECISIONS, PROJECT_STATUSES, ROLES

logger = logging.getLogger(__name__)


class ModerationService:
    def __init__(self, database, gate: AccessGate, log_buffer: Optional[LogBuffer] = None):
        self.db = database
        self.gate = gate
        self.log_buffer = log_buffer

    def _update(self, collection: str, query: dict, fields: dict, label: str) -> dict:
        fields["updatedAt"] = now()
        try:
            doc = self.db[collection].find_one_and_update(
                query, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to update {label}: {e}")
        if not doc:
            raise NotFoundError(f"{label.capitalize()} not found")
        return doc

    def _record(self, actor: str, message: str, **data) -> None:
        logger.info(message)
        if self.log_buffer is not None:
            self.log_buffer.info(message, user_id=actor, data={"action": "admin_action", **data})

    def set_project_status(self, actor: str, project_id: str, status: str, admin_comment: Optional[str] = None) -> dict:
        self.gate.require_admin(actor)
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"Invalid status value: {status!r}")
        fields = {"status": status}
        if admin_comment:
            fields["adminComment"] = admin_comment
        project = self._update("project", {"_id": oid(project_id)}, fields, "project")
        self._record(actor, f"Updated project {project_id} status to {status}", projectId=project_id, status=status)
        if status == "approved":
            self.notify_project_approved(project)
        return serialize(project)

    def notify_project_approved(self, project: dict) -> None:
        # Owners are not notified yet; the approval only shows up in the activity log.
        logger.info("Project %s has been approved for %s", project.get("_id"), project.get("userId"))

    def moderate_comment(self, actor: str, comment_id: str, status: str) -> dict:
        self.gate.require_admin(actor)
        if status not in MODERATION_DECISIONS:
            raise ValidationError("Comment status must be 'approved' or 'rejected'")
        comment = self._update("comment", {"_id": oid(comment_id)}, {"status": status}, "comment")
        self._record(actor, f"Comment {comment_id} status updated to {status}", commentId=comment_id, status=status)
        return serialize(comment)

    def set_feedback_status(self, actor: str, feedback_id: str, status: str, admin_comment: Optional[str] = None) -> dict:
        self.gate.require_admin(actor)
        if status not in FEEDBACK_STATUSES:
            raise ValidationError(f"Invalid status value: {status!r}")
        fields = {"status": status}
        if admin_comment:
            fields["adminComment"] = admin_comment
        feedback = self._update("feedback", {"_id": oid(feedback_id)}, fields, "feedback")
        self._record(actor, f"Feedback {feedback_id} status updated to {status}", feedbackId=feedback_id, status=status)
        return serialize(feedback)

    def set_user_role(self, actor: str, target: str, role: str) -> dict:
        self.gate.require_admin(actor)
        if not target or role not in ROLES:
            raise ValidationError("Invalid user ID or role")
        user = self._update("user", {"externalId": target}, {"role": role}, "user")
        if target == actor and role != "admin":
            logger.warning("Admin %s revoked their own admin role", actor)
        self._record(actor, f"User {target} role updated to {role}", targetUserId=target, role=role)
        return serialize(user)


def visible_comments(database, gate: AccessGate, project_id: str, viewer: Optional[str] = None) -> List[dict]:
    """Comments of a project as `viewer` may see them, newest first.

    Admins and the project owner see every comment; anyone else, signed in or
    not, only sees approved ones.
    """
    try:
        project = database["project"].find_one({"_id": oid(project_id)}, {"userId": 1})
    except PyMongoError as e:
        raise PersistenceError(f"Failed to read project: {e}")
    if not project:
        raise NotFoundError("Project not found")

    can_view_all = bool(viewer) and (project.get("userId") == viewer or gate.is_authorized_admin(viewer))
    query = {"projectId": project_id}
    if not can_view_all:
        query["status"] = "approved"

    try:
        comments = list(database["comment"].find(query).sort("createdAt", -1))
    except PyMongoError as e:
        raise PersistenceError(f"Failed to read comments: {e}")

    return [
        {
            "id": str(c["_id"]),
            "content": c.get("content"),
            "userName": c.get("userName"),
            "status": c.get("status"),
            "createdAt": c.get("createdAt"),
            "isOwner": bool(viewer) and c.get("userId") == viewer,
        }
        for c in comments
    ]
