"""
Database Schemas for EcoWaste

Each Pydantic model represents a MongoDB collection.
Collection name = lowercase of class name (User -> "user", Project -> "project",
Comment -> "comment", Feedback -> "feedback", Log -> "log").
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal['user', 'admin']
ProjectCategory = Literal['segregation', 'disposal', 'sanitization', 'other']
ProjectVisibility = Literal['public', 'private', 'moderated']
ProjectStatus = Literal['pending', 'approved', 'in_progress', 'completed', 'rejected']
CommentStatus = Literal['pending', 'approved', 'rejected']
FeedbackStatus = Literal['pending', 'under_review', 'resolved', 'rejected']
Severity = Literal['low', 'medium', 'high', 'critical']
LogLevel = Literal['info', 'warning', 'error', 'debug']
LogAction = Literal[
    'page_view',
    'button_click',
    'form_submit',
    'project_create',
    'project_update',
    'report_submit',
    'admin_action',
    'error',
]

PROJECT_STATUSES = ProjectStatus.__args__
MODERATION_DECISIONS = ('approved', 'rejected')
FEEDBACK_STATUSES = FeedbackStatus.__args__
ROLES = Role.__args__
LOG_LEVELS = LogLevel.__args__


class User(BaseModel):
    externalId: str = Field(..., description="Identity provider user id")
    firstName: Optional[str] = Field('', description="Given name")
    lastName: Optional[str] = Field('', description="Family name")
    email: Optional[str] = Field('', description="Primary email address")
    imageUrl: Optional[str] = Field('', description="Avatar URL")
    role: Role = Field('user', description="Role of the account")


class Project(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: ProjectCategory
    location: str = Field(..., min_length=1)
    budget: float = Field(..., ge=0, description="Requested budget, never negative")
    timeline: str = Field(..., min_length=1)
    contactName: str = Field(..., min_length=1)
    contactEmail: EmailStr
    contactPhone: Optional[str] = None
    visibility: ProjectVisibility = Field('moderated')
    status: ProjectStatus = Field('pending')
    userId: str = Field(..., description="Owner identity")
    userEmail: str = Field('', description="Owner email")
    adminComment: Optional[str] = None


class Comment(BaseModel):
    projectId: str
    userId: str
    userEmail: str = ''
    userName: str = ''
    content: str = Field(..., min_length=1)
    status: CommentStatus = Field('pending')


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Location(BaseModel):
    address: str = Field(..., min_length=1, description="Nearest address or landmark")
    coordinates: Coordinates


class Feedback(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    location: Location
    imageUrl: str = Field(..., min_length=1, description="Reference to the uploaded image")
    userId: str
    userEmail: str = ''
    severity: Severity = Field('medium')
    status: FeedbackStatus = Field('pending')
    adminComment: Optional[str] = None


class Log(BaseModel):
    level: LogLevel = Field('info')
    message: str
    userId: Optional[str] = None
    route: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    ip: Optional[str] = None
    userAgent: Optional[str] = None
    timestamp: datetime


# ---------- Request bodies ----------
# Status values stay plain strings so the workflow decides what is valid.

class ProjectStatusUpdate(BaseModel):
    projectId: str
    status: str
    adminComment: Optional[str] = None


class CommentModeration(BaseModel):
    commentId: str
    status: str


class FeedbackStatusUpdate(BaseModel):
    feedbackId: str
    status: str
    adminComment: Optional[str] = None


class RoleUpdate(BaseModel):
    userId: str
    role: str


class CommentIn(BaseModel):
    projectId: str
    content: str


class ActivityEvent(BaseModel):
    action: LogAction
    path: str
    elementId: Optional[str] = None
    elementText: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    userAgent: Optional[str] = None
