from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError, field_validator
from datetime import date, datetime
from typing import Optional, List

from auth.roles import Role
from models import TaskPriority
from task_lifecycle import TaskStatus

_email_adapter = TypeAdapter(EmailStr)


def _email_of(value):
    # Relationships arrive as User rows when serializing from the ORM
    return getattr(value, "email", value)


def normalize_email(value: str) -> str:
    """Normalize an address the way EmailStr fields are; invalid input is returned as-is."""
    try:
        return _email_adapter.validate_python(value)
    except ValidationError:
        return value


# Auth schemas
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None


class PasswordUpdate(BaseModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)


# User schemas
class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: Role
    is_enabled: bool
    is_locked: bool
    created_at: Optional[datetime] = None


class RoleUpdate(BaseModel):
    # Parsed with auth.roles.parse_role so unknown names map to USR-005
    role: str


# Comment schemas
class CommentBase(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)


class CommentCreate(CommentBase):
    pass


class CommentUpdate(CommentBase):
    pass


class Comment(CommentBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    author: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("author", mode="before")
    @classmethod
    def author_email(cls, value):
        return _email_of(value)


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[date] = None


class TaskCreate(TaskBase):
    executor_email: Optional[EmailStr] = None


class TaskReplace(TaskBase):
    """Full edit: omitted optional fields are cleared, except the executor, which is kept unless sent."""

    executor_email: Optional[EmailStr] = None


class TaskPatch(BaseModel):
    """Partial edit: only fields present in the request body are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    executor_email: Optional[EmailStr] = None


class ExecutorAssignment(BaseModel):
    # None unassigns the task
    executor_email: Optional[EmailStr] = None


class StatusUpdate(BaseModel):
    status: TaskStatus


class Task(TaskBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    author: str
    executor: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("author", "executor", mode="before")
    @classmethod
    def participant_email(cls, value):
        return _email_of(value)


class TaskWithComments(Task):
    comments: List[Comment] = Field(default_factory=list)


# Error schema
class ErrorDetail(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    status: int
    error: str
    message: str
    path: str
    timestamp: datetime
    details: List[ErrorDetail] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    version: str
