"""
Authorization policy: one decision rule per operation.

Every route asks this module (through ``auth.dependencies.authorize``)
before reading or mutating a resource:

    decision = decide(principal, TaskSnapshot.from_task(task), Operation.TASK_EDIT)

Rules are pure predicates over the acting principal and an immutable
snapshot of the resource's ownership fields. The policy never touches the
database; callers load the resource (and answer "does it exist?") first.

Rule table:

    Task     create / read              any authenticated principal
    Task     edit / delete              author, or ADMIN
    Task     assign executor            author
    Task     change status              author, current executor, or ADMIN
    Comment  create / read              any authenticated principal
    Comment  edit                       author (no admin override)
    Comment  delete                     author, or ADMIN
    User     read self / password       any authenticated principal
    User     list / role / lock / delete  ADMIN

Anonymous principals and disabled or locked accounts are denied everything
with NOT_AUTHENTICATED.
"""

import enum
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from auth.context import Principal


class Operation(str, enum.Enum):
    TASK_CREATE = "task:create"
    TASK_READ = "task:read"
    TASK_EDIT = "task:edit"
    TASK_DELETE = "task:delete"
    TASK_ASSIGN_EXECUTOR = "task:assign_executor"
    TASK_CHANGE_STATUS = "task:change_status"
    COMMENT_CREATE = "comment:create"
    COMMENT_READ = "comment:read"
    COMMENT_EDIT = "comment:edit"
    COMMENT_DELETE = "comment:delete"
    USER_READ_SELF = "user:read_self"
    USER_CHANGE_PASSWORD = "user:change_password"
    USER_LIST = "user:list"
    USER_UPDATE_ROLE = "user:update_role"
    USER_LOCK = "user:lock"
    USER_DELETE = "user:delete"

    @property
    def resource_type(self) -> str:
        return self.value.split(":", 1)[0]


class DenyReason(str, enum.Enum):
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ROLE"
    NOT_OWNER = "NOT_OWNER"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision.allow()


@dataclass(frozen=True)
class TaskSnapshot:
    """Ownership fields of a task, captured before the decision."""

    author: str
    executor: Optional[str] = None

    @classmethod
    def from_task(cls, task) -> "TaskSnapshot":
        return cls(
            author=task.author.email,
            executor=task.executor.email if task.executor is not None else None,
        )


@dataclass(frozen=True)
class CommentSnapshot:
    """Ownership fields of a comment, captured before the decision."""

    author: str

    @classmethod
    def from_comment(cls, comment) -> "CommentSnapshot":
        return cls(author=comment.author.email)


Resource = Union[TaskSnapshot, CommentSnapshot, None]
Rule = Callable[[Principal, Resource], Decision]


def is_task_author(principal: Principal, task: TaskSnapshot) -> bool:
    return principal.email == task.author


def is_task_executor(principal: Principal, task: TaskSnapshot) -> bool:
    return task.executor is not None and principal.email == task.executor


def is_task_participant(principal: Principal, task: TaskSnapshot) -> bool:
    return is_task_author(principal, task) or is_task_executor(principal, task)


def is_comment_author(principal: Principal, comment: CommentSnapshot) -> bool:
    return principal.email == comment.author


def _snapshot(resource: Resource, expected: type, rule_name: str):
    if not isinstance(resource, expected):
        raise ValueError(f"{rule_name} needs a {expected.__name__}, got {type(resource).__name__}")
    return resource


def _any_authenticated(principal: Principal, resource: Resource) -> Decision:
    return ALLOW


def _admin_only(principal: Principal, resource: Resource) -> Decision:
    if principal.is_admin:
        return ALLOW
    return Decision.deny(DenyReason.INSUFFICIENT_ROLE)


def _task_author_or_admin(principal: Principal, resource: Resource) -> Decision:
    task = _snapshot(resource, TaskSnapshot, "task author-or-admin rule")
    if is_task_author(principal, task) or principal.is_admin:
        return ALLOW
    return Decision.deny(DenyReason.NOT_OWNER)


def _task_author_only(principal: Principal, resource: Resource) -> Decision:
    task = _snapshot(resource, TaskSnapshot, "task author rule")
    if is_task_author(principal, task):
        return ALLOW
    return Decision.deny(DenyReason.NOT_OWNER)


def _task_participant_or_admin(principal: Principal, resource: Resource) -> Decision:
    task = _snapshot(resource, TaskSnapshot, "task participant rule")
    if is_task_participant(principal, task) or principal.is_admin:
        return ALLOW
    return Decision.deny(DenyReason.NOT_OWNER)


def _comment_author_only(principal: Principal, resource: Resource) -> Decision:
    comment = _snapshot(resource, CommentSnapshot, "comment author rule")
    if is_comment_author(principal, comment):
        return ALLOW
    return Decision.deny(DenyReason.NOT_OWNER)


def _comment_author_or_admin(principal: Principal, resource: Resource) -> Decision:
    comment = _snapshot(resource, CommentSnapshot, "comment author-or-admin rule")
    if is_comment_author(principal, comment) or principal.is_admin:
        return ALLOW
    return Decision.deny(DenyReason.NOT_OWNER)


RULES: Dict[Operation, Rule] = {
    Operation.TASK_CREATE: _any_authenticated,
    Operation.TASK_READ: _any_authenticated,
    Operation.TASK_EDIT: _task_author_or_admin,
    Operation.TASK_DELETE: _task_author_or_admin,
    Operation.TASK_ASSIGN_EXECUTOR: _task_author_only,
    Operation.TASK_CHANGE_STATUS: _task_participant_or_admin,
    Operation.COMMENT_CREATE: _any_authenticated,
    Operation.COMMENT_READ: _any_authenticated,
    Operation.COMMENT_EDIT: _comment_author_only,
    Operation.COMMENT_DELETE: _comment_author_or_admin,
    Operation.USER_READ_SELF: _any_authenticated,
    Operation.USER_CHANGE_PASSWORD: _any_authenticated,
    Operation.USER_LIST: _admin_only,
    Operation.USER_UPDATE_ROLE: _admin_only,
    Operation.USER_LOCK: _admin_only,
    Operation.USER_DELETE: _admin_only,
}


def decide(principal: Optional[Principal], resource: Resource, operation: Operation) -> Decision:
    """
    Decide whether ``principal`` may perform ``operation`` on ``resource``.

    Args:
        principal: The acting principal, or None for an anonymous request
        resource: Ownership snapshot of the target (None for create, read and
            user-administration operations)
        operation: The operation being attempted

    Returns:
        Decision.allow() or Decision.deny(reason)

    Raises:
        ValueError: if the rule needs a snapshot of a different kind
    """
    if principal is None or not principal.is_active:
        return Decision.deny(DenyReason.NOT_AUTHENTICATED)
    return RULES[Operation(operation)](principal, resource)
