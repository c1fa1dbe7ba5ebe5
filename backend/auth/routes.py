"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration
- Login (stateless bearer tokens, no server-side session)
- Current principal profile
- Password change
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import LoginRequest, PasswordUpdate, RegisterRequest, TokenResponse, UserResponse
from auth.context import Principal
from auth.dependencies import authorize, get_current_principal, get_token_service
from auth.policy import Operation
from auth.roles import DEFAULT_ROLE
from auth.security import TokenService, hash_password, verify_password
from errors import (
    PASSWORD_UNCHANGED,
    USER_ALREADY_EXISTS,
    USER_NOT_FOUND,
    WRONG_CURRENT_PASSWORD,
    BadRequestError,
    ConflictError,
    NotAuthenticatedError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid email or password."


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account with the default role.

    Args:
        request: Registration data (email, password)
        db: Database session

    Returns:
        Created user object

    Raises:
        ConflictError: 409 (USR-001) if the email is already registered
    """
    logger.info(f"Registration attempt for email: {request.email}")

    existing_user = db.query(User).filter(User.email == request.email).first()
    if existing_user:
        logger.info(f"Registration failed: email already exists: {request.email}")
        raise ConflictError("A user with this email already exists.", code=USER_ALREADY_EXISTS)

    new_user = User(
        email=request.email,
        password_hash=hash_password(request.password),
        role=DEFAULT_ROLE,
        is_enabled=True,
        is_locked=False,
    )
    db.add(new_user)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent registration of the same email
        db.rollback()
        logger.info(f"Registration failed: email registered concurrently: {request.email}")
        raise ConflictError("A user with this email already exists.", code=USER_ALREADY_EXISTS)
    db.refresh(new_user)

    logger.info(f"User registered successfully: {new_user.email} (ID: {new_user.id})")
    return new_user


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Login with email and password.

    Returns:
        Access token for API requests

    Raises:
        NotAuthenticatedError: 401 (AUTH-001) if the credentials are invalid
            or the account is disabled or locked
    """
    logger.info(f"Login attempt for email: {request.email}")

    user = db.query(User).filter(User.email == request.email).first()
    if not user:
        logger.info(f"Login failed: user not found: {request.email}")
        raise NotAuthenticatedError(INVALID_CREDENTIALS)

    if not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed: invalid password: {request.email}")
        raise NotAuthenticatedError(INVALID_CREDENTIALS)

    if not user.is_enabled or user.is_locked:
        logger.info(f"Login failed: account disabled or locked: {request.email}")
        raise NotAuthenticatedError("This account is disabled or locked.")

    issued = tokens.issue(user.email)
    logger.info(f"User logged in successfully: {user.email} (ID: {user.id})")
    return TokenResponse(access_token=issued.token, expires_at=issued.expires_at)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Get the profile of the authenticated user."""
    authorize(principal, None, Operation.USER_READ_SELF)

    user = db.query(User).filter(User.email == principal.email).first()
    if not user:
        raise NotFoundError("Authenticated user not found.", code=USER_NOT_FOUND)
    return user


@router.patch("/me/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    request: PasswordUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Change the authenticated user's password.

    Raises:
        BadRequestError: 400 (USR-003) if the current password is wrong
        ConflictError: 409 (USR-004) if the new password equals the current one
    """
    authorize(principal, None, Operation.USER_CHANGE_PASSWORD)
    logger.debug(f"Password change requested by {principal.email}")

    user = db.query(User).filter(User.email == principal.email).with_for_update().first()
    if not user:
        raise NotFoundError("Authenticated user not found.", code=USER_NOT_FOUND)

    if not verify_password(request.old_password, user.password_hash):
        logger.info(f"Password change failed: wrong current password for {principal.email}")
        raise BadRequestError("The current password is incorrect.", code=WRONG_CURRENT_PASSWORD)

    if request.old_password == request.new_password:
        logger.info(f"Password change failed: new password equals current for {principal.email}")
        raise ConflictError("The new password must differ from the current one.", code=PASSWORD_UNCHANGED)

    user.password_hash = hash_password(request.new_password)
    db.commit()
    logger.info(f"Password changed for {principal.email}")
