from fastapi import FastAPI, Depends, Query, Response, status
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional
from datetime import date
import logging
import os
import sys

import uvicorn

from database import get_db, engine, Base, SessionLocal
import models
import schemas
from errors import (
    COMMENT_NOT_FOUND,
    TASK_INVALID_DATE_RANGE,
    TASK_NOT_FOUND,
    USER_NOT_FOUND,
    BadRequestError,
    NotFoundError,
    register_exception_handlers,
)
from task_lifecycle import next_status
from time_utils import is_valid_date_range
from auth.context import Principal
from auth.dependencies import authorize, get_current_principal
from auth.policy import CommentSnapshot, Operation, TaskSnapshot
from auth.roles import Role, parse_role
from auth.routes import router as auth_router
from auth.security import hash_password, is_production_like

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

app = FastAPI(
    title="Task Tracker API",
    description="A multi-user task tracker with role- and ownership-based access control",
    version=APP_VERSION,
    responses={
        401: {"model": schemas.ErrorResponse},
        403: {"model": schemas.ErrorResponse},
        404: {"model": schemas.ErrorResponse},
    },
)

register_exception_handlers(app)

# Register authentication router
app.include_router(auth_router)


# ============== Startup: Ensure Admin User Exists ==============

DEFAULT_ADMIN_EMAIL = "admin@example.com"
DEFAULT_ADMIN_PASSWORD = "admin123"


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@app.on_event("startup")
async def startup():
    """
    Create tables and ensure an admin account exists.

    Admin bootstrap is controlled by BOOTSTRAP_ADMIN (default true) and uses
    ADMIN_EMAIL / ADMIN_PASSWORD. The default password is refused in
    production-like environments.
    """
    Base.metadata.create_all(bind=engine)

    if not _env_flag("BOOTSTRAP_ADMIN", True):
        logger.debug("Admin bootstrap disabled (BOOTSTRAP_ADMIN=false)")
        return

    admin_email = os.environ.get("ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL).strip()
    admin_password = os.environ.get("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD)
    is_default_password = admin_password.strip() == DEFAULT_ADMIN_PASSWORD

    db = SessionLocal()
    try:
        admin = db.query(models.User).filter(models.User.email == admin_email).first()
        if admin:
            logger.info(f"Admin user already exists (email: {admin_email})")
            return

        # Security: Validate password strength in production-like environments
        if is_production_like() and (is_default_password or len(admin_password.strip()) < 8):
            logger.error(
                "=" * 80 + "\n"
                "❌ STARTUP FAILED: Secure ADMIN_PASSWORD is required in production/staging!\n"
                "❌ Password must be at least 8 characters and not the default 'admin123'.\n"
                "❌ Example: ADMIN_PASSWORD=$(openssl rand -base64 32)\n" +
                "=" * 80
            )
            sys.exit(1)

        admin = models.User(
            email=admin_email,
            password_hash=hash_password(admin_password),
            role=Role.ADMIN,
            is_enabled=True,
            is_locked=False,
        )
        db.add(admin)
        db.commit()

        if is_default_password:
            logger.warning(
                "=" * 80 + "\n"
                f"⚠️  SECURITY WARNING: Admin user {admin_email} created with DEFAULT password 'admin123'\n"
                "⚠️  This is OK for local development but DANGEROUS for production!\n"
                "⚠️  Set ADMIN_PASSWORD environment variable to use a custom password.\n" +
                "=" * 80
            )
        else:
            logger.info(f"✅ Admin user created with custom password (email: {admin_email})")
    except Exception as e:
        logger.error(f"Failed to ensure admin user exists: {e}")
        db.rollback()
        # Don't fail startup - the app can run without a bootstrap admin
    finally:
        db.close()


# Health check
@app.get("/health", response_model=schemas.HealthResponse)
def health_check():
    return {"status": "healthy", "version": APP_VERSION}


# ============== Lookup helpers ==============

def get_task_or_404(db: Session, task_id: int, lock: bool = False) -> models.Task:
    """
    Load a task by id, optionally locking the row for the rest of the transaction.

    Raises:
        NotFoundError: 404 (TASK-001) if the task does not exist
    """
    query = db.query(models.Task).filter(models.Task.id == task_id)
    if lock:
        query = query.with_for_update()
    task = query.first()
    if not task:
        raise NotFoundError(f"Task with id {task_id} not found.", code=TASK_NOT_FOUND)
    return task


def get_comment_or_404(db: Session, comment_id: int, lock: bool = False) -> models.Comment:
    query = db.query(models.Comment).filter(models.Comment.id == comment_id)
    if lock:
        query = query.with_for_update()
    comment = query.first()
    if not comment:
        raise NotFoundError(f"Comment with id {comment_id} not found.", code=COMMENT_NOT_FOUND)
    return comment


def get_user_or_404(db: Session, user_id: int, lock: bool = False) -> models.User:
    query = db.query(models.User).filter(models.User.id == user_id)
    if lock:
        query = query.with_for_update()
    user = query.first()
    if not user:
        raise NotFoundError(f"User with id {user_id} not found.", code=USER_NOT_FOUND)
    return user


def get_user_by_email_or_404(db: Session, email: str) -> models.User:
    user = db.query(models.User).filter(models.User.email == email).first()
    if not user:
        raise NotFoundError(f"User with email {email} not found.", code=USER_NOT_FOUND)
    return user


def acting_user(db: Session, principal: Principal) -> models.User:
    """Return the user row behind an authenticated principal."""
    user = db.query(models.User).filter(models.User.email == principal.email).first()
    if not user:
        raise NotFoundError("Authenticated user not found.", code=USER_NOT_FOUND)
    return user


# ============== Users ==============

@app.get("/api/users", response_model=List[schemas.UserResponse])
def list_users(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List all users (admin only)."""
    authorize(principal, None, Operation.USER_LIST)
    logger.debug(f"Admin {principal.email} listing all users")
    return db.query(models.User).order_by(models.User.id).all()


def _ensure_not_last_admin(db: Session, user: models.User, action: str) -> None:
    # Guard: the system must keep at least one active admin
    if user.role != Role.ADMIN or not user.is_enabled or user.is_locked:
        return
    admin_count = db.query(models.User).filter(
        models.User.role == Role.ADMIN,
        models.User.is_enabled == True,  # noqa: E712
        models.User.is_locked == False,  # noqa: E712
    ).count()
    if admin_count <= 1:
        logger.warning(f"Attempt to {action} the last admin user {user.email}")
        raise BadRequestError(f"Cannot {action} the last admin user. Promote another user to admin first.")


@app.put("/api/users/{user_id}/role", response_model=schemas.UserResponse)
def update_user_role(
    user_id: int,
    role_update: schemas.RoleUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Change a user's role (admin only). Unknown role names are rejected with USR-005."""
    logger.debug(f"Admin {principal.email} changing role of user {user_id}")

    authorize(principal, None, Operation.USER_UPDATE_ROLE)
    user = get_user_or_404(db, user_id, lock=True)

    new_role = parse_role(role_update.role)
    if new_role != Role.ADMIN:
        _ensure_not_last_admin(db, user, "demote")

    user.role = new_role
    db.commit()
    db.refresh(user)

    logger.info(f"Role of {user.email} set to {new_role.value} by {principal.email}")
    return user


def _set_locked(db: Session, principal: Principal, user_id: int, locked: bool) -> models.User:
    authorize(principal, None, Operation.USER_LOCK)
    user = get_user_or_404(db, user_id, lock=True)

    if locked:
        if user.email == principal.email:
            raise BadRequestError("Cannot lock your own account.")
        _ensure_not_last_admin(db, user, "lock")

    user.is_locked = locked
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.email} {'locked' if locked else 'unlocked'} by {principal.email}")
    return user


@app.post("/api/users/{user_id}/lock", response_model=schemas.UserResponse)
def lock_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Lock a user account (admin only). Locked accounts cannot log in or act."""
    return _set_locked(db, principal, user_id, True)


@app.post("/api/users/{user_id}/unlock", response_model=schemas.UserResponse)
def unlock_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Unlock a user account (admin only)."""
    return _set_locked(db, principal, user_id, False)


@app.delete("/api/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    Delete a user (admin only).

    Tasks the user authored are deleted with their comments, the user's
    comments are deleted, and tasks they executed become unassigned.
    """
    logger.debug(f"Admin {principal.email} deleting user {user_id}")

    authorize(principal, None, Operation.USER_DELETE)
    user = get_user_or_404(db, user_id, lock=True)

    # Guard 1: Prevent self-deletion (admin locking themselves out)
    if user.email == principal.email:
        logger.warning(f"Admin {principal.email} attempted to delete their own account")
        raise BadRequestError("Cannot delete your own account. Ask another admin to remove your account.")

    # Guard 2: Prevent deleting the last admin (system lockout)
    _ensure_not_last_admin(db, user, "delete")

    db.delete(user)
    db.commit()

    logger.info(f"User deleted: {user.email} (ID: {user_id})")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============== Tasks ==============

@app.post("/api/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Create a task authored by the caller, optionally with an executor."""
    authorize(principal, None, Operation.TASK_CREATE)
    logger.debug(f"User {principal.email} creating task '{task.title}'")

    author = acting_user(db, principal)
    executor = get_user_by_email_or_404(db, task.executor_email) if task.executor_email else None

    # SECURITY: Always use the authenticated principal as author, never request data
    db_task = models.Task(
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        due_date=task.due_date,
        author_id=author.id,
        executor_id=executor.id if executor else None,
    )
    db.add(db_task)
    db.commit()
    db.refresh(db_task)

    logger.info(f"Task {db_task.id} created by {principal.email}")
    return db_task


@app.get("/api/tasks", response_model=List[schemas.Task])
def list_tasks(
    status_filter: Optional[schemas.TaskStatus] = Query(None, alias="status"),
    priority: Optional[schemas.TaskPriority] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List tasks, optionally filtered by status and priority."""
    authorize(principal, None, Operation.TASK_READ)
    logger.debug(f"User {principal.email} listing tasks (status={status_filter}, priority={priority})")

    query = db.query(models.Task)
    if status_filter is not None:
        query = query.filter(models.Task.status == status_filter)
    if priority is not None:
        query = query.filter(models.Task.priority == priority)
    return query.order_by(models.Task.id).all()


@app.get("/api/tasks/my", response_model=List[schemas.Task])
def list_my_tasks(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List tasks where the caller is the executor."""
    authorize(principal, None, Operation.TASK_READ)

    me = acting_user(db, principal)
    return db.query(models.Task)\
        .filter(models.Task.executor_id == me.id)\
        .order_by(models.Task.id)\
        .all()


@app.get("/api/tasks/between-dates", response_model=List[schemas.Task])
def list_tasks_between_dates(
    start: Optional[date] = None,
    end: Optional[date] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    List tasks whose due date falls within [start, end] (inclusive).

    Either bound may be omitted. Tasks without a due date are never included.
    """
    authorize(principal, None, Operation.TASK_READ)

    if not is_valid_date_range(start, end):
        raise BadRequestError(
            f"Start date {start} must not be after end date {end}.",
            code=TASK_INVALID_DATE_RANGE,
        )

    query = db.query(models.Task).filter(models.Task.due_date.isnot(None))
    if start is not None:
        query = query.filter(models.Task.due_date >= start)
    if end is not None:
        query = query.filter(models.Task.due_date <= end)
    return query.order_by(models.Task.due_date, models.Task.id).all()


@app.get("/api/tasks/by-user/{email}", response_model=List[schemas.Task])
def list_tasks_by_user(
    email: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List tasks authored by or assigned to the user with the given email."""
    authorize(principal, None, Operation.TASK_READ)

    user = get_user_by_email_or_404(db, schemas.normalize_email(email))
    return db.query(models.Task)\
        .filter(or_(models.Task.author_id == user.id, models.Task.executor_id == user.id))\
        .order_by(models.Task.id)\
        .all()


@app.get("/api/tasks/{task_id}", response_model=schemas.TaskWithComments)
def get_task(
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get a task by id with its comments."""
    logger.debug(f"User {principal.email} requesting task {task_id}")

    task = get_task_or_404(db, task_id)
    authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_READ)
    return task


def _apply_task_edit(db: Session, principal: Principal, task: models.Task, changes: dict) -> None:
    """Apply field changes to a locked task, checking the executor rule when it changes."""
    if "executor_email" in changes:
        email = changes.pop("executor_email")
        executor = get_user_by_email_or_404(db, email) if email else None
        if task.executor_id != (executor.id if executor else None):
            authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_ASSIGN_EXECUTOR)
            task.executor = executor

    for key, value in changes.items():
        setattr(task, key, value)


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def replace_task(
    task_id: int,
    task_update: schemas.TaskReplace,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Replace every editable field of a task (author or admin)."""
    logger.debug(f"User {principal.email} replacing task {task_id}")

    task = get_task_or_404(db, task_id, lock=True)
    authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_EDIT)

    changes = task_update.model_dump()
    # Omitted executor keeps the current one; an explicit null clears it
    if "executor_email" not in task_update.model_fields_set:
        changes.pop("executor_email")

    _apply_task_edit(db, principal, task, changes)
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} replaced by {principal.email}")
    return task


@app.patch("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskPatch,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Update the fields present in the request body (author or admin)."""
    logger.debug(f"User {principal.email} updating task {task_id}")

    task = get_task_or_404(db, task_id, lock=True)
    authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_EDIT)

    changes = task_update.model_dump(exclude_unset=True)
    for required in ("title", "status", "priority"):
        if required in changes and changes[required] is None:
            raise BadRequestError(f"Field '{required}' cannot be null.")

    _apply_task_edit(db, principal, task, dict(changes))
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} updated by {principal.email}: {sorted(changes)}")
    return task


@app.delete("/api/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Delete a task and its comments (author or admin)."""
    logger.debug(f"User {principal.email} deleting task {task_id}")

    task = get_task_or_404(db, task_id, lock=True)
    authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_DELETE)

    db.delete(task)
    db.commit()

    logger.info(f"Task {task_id} deleted by {principal.email}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put("/api/tasks/{task_id}/executor", response_model=schemas.Task)
def assign_executor(
    task_id: int,
    assignment: schemas.ExecutorAssignment,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Assign or clear the executor of a task (author only)."""
    logger.debug(f"User {principal.email} assigning executor of task {task_id}")

    task = get_task_or_404(db, task_id, lock=True)
    authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_ASSIGN_EXECUTOR)

    executor = get_user_by_email_or_404(db, assignment.executor_email) if assignment.executor_email else None
    task.executor = executor
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} executor set to {executor.email if executor else None} by {principal.email}")
    return task


@app.put("/api/tasks/{task_id}/status", response_model=schemas.Task)
def change_status(
    task_id: int,
    status_update: schemas.StatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Set the status of a task (author, executor or admin). Any status may be set."""
    logger.debug(f"User {principal.email} changing status of task {task_id} to {status_update.status.value}")

    task = get_task_or_404(db, task_id, lock=True)
    authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_CHANGE_STATUS)

    previous = task.status
    task.status = status_update.status
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} status {previous.value} -> {task.status.value} by {principal.email}")
    return task


@app.post("/api/tasks/{task_id}/advance", response_model=schemas.Task)
def advance_status(
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Move a task one step along the happy path; terminal statuses stay put."""
    task = get_task_or_404(db, task_id, lock=True)
    authorize(principal, TaskSnapshot.from_task(task), Operation.TASK_CHANGE_STATUS)

    previous = task.status
    task.status = next_status(previous)
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} advanced {previous.value} -> {task.status.value} by {principal.email}")
    return task


# ============== Comments ==============

@app.get("/api/tasks/{task_id}/comments", response_model=List[schemas.Comment])
def list_comments(
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List comments for a task, oldest first."""
    logger.debug(f"User {principal.email} listing comments for task {task_id}")

    get_task_or_404(db, task_id)
    authorize(principal, None, Operation.COMMENT_READ)

    return db.query(models.Comment)\
        .filter(models.Comment.task_id == task_id)\
        .order_by(models.Comment.created_at, models.Comment.id)\
        .all()


@app.post("/api/tasks/{task_id}/comments", response_model=schemas.Comment, status_code=status.HTTP_201_CREATED)
def create_comment(
    task_id: int,
    comment: schemas.CommentCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Create a comment on a task."""
    logger.debug(f"User {principal.email} creating comment on task {task_id}")

    get_task_or_404(db, task_id)
    authorize(principal, None, Operation.COMMENT_CREATE)

    # SECURITY: Always use the authenticated principal as author, never request data
    db_comment = models.Comment(
        text=comment.text,
        task_id=task_id,
        author_id=acting_user(db, principal).id,
    )
    db.add(db_comment)
    db.commit()
    db.refresh(db_comment)

    logger.info(f"Comment {db_comment.id} added to task {task_id} by {principal.email}")
    return db_comment


@app.put("/api/comments/{comment_id}", response_model=schemas.Comment)
def update_comment(
    comment_id: int,
    comment_update: schemas.CommentUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Edit a comment (its author only; admins cannot rewrite other users' words)."""
    logger.debug(f"User {principal.email} updating comment {comment_id}")

    comment = get_comment_or_404(db, comment_id, lock=True)
    authorize(principal, CommentSnapshot.from_comment(comment), Operation.COMMENT_EDIT)

    comment.text = comment_update.text
    db.commit()
    db.refresh(comment)
    return comment


@app.delete("/api/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_comment(
    comment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Delete a comment (author or admin)."""
    logger.debug(f"User {principal.email} deleting comment {comment_id}")

    comment = get_comment_or_404(db, comment_id, lock=True)
    authorize(principal, CommentSnapshot.from_comment(comment), Operation.COMMENT_DELETE)

    db.delete(comment)
    db.commit()

    logger.info(f"Comment {comment_id} deleted by {principal.email}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"🚀 Task Tracker API starting on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
