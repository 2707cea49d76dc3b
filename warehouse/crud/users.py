"""
CRUD operations for users, plus the login/refresh/logout session flow.

This module contains all database operations for user management.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_password_hash,
    token_claims,
    verify_password,
)
from ..config import LOCKOUT_MINUTES, MAX_FAILED_LOGIN_ATTEMPTS
from ..errors import AuthenticationError, ConflictError
from ..validators import ensure_required_fields

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    """
    Retrieve a single user by ID.

    Args:
        db: Database session
        user_id: ID of the user to retrieve

    Returns:
        User object or None if not found
    """
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def get_users(db: Session, skip: int = 0, limit: int = 100) -> List[models.User]:
    """
    Retrieve a list of users with pagination.

    Args:
        db: Database session
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return
    """
    return db.query(models.User).order_by(models.User.id).offset(skip).limit(limit).all()


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    """
    Create a user with an explicit role and permission list.

    Raises:
        ConflictError: if the email is already registered
    """
    if get_user_by_email(db, user.email):
        raise ConflictError("Email already registered")

    db_user = models.User(
        name=user.name,
        email=user.email,
        password_hash=get_password_hash(user.password),
        role=user.role,
        permissions=[p.model_dump() for p in user.permissions],
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"User {db_user.id} ({db_user.email}) created with role {db_user.role}")
    return db_user


def register_user(db: Session, user: schemas.UserRegister) -> models.User:
    """Self-service registration; always creates a plain user with no grants."""
    return create_user(db, schemas.UserCreate(name=user.name, email=user.email, password=user.password))


def update_user(db: Session, user_id: int, user: schemas.UserUpdate) -> Optional[models.User]:
    """
    Update an existing user.

    Args:
        db: Database session
        user_id: ID of the user to update
        user: Updated user data (only provided fields will be updated)

    Returns:
        Updated User object or None if not found

    Raises:
        ConflictError: if the new email belongs to another user
    """
    db_user = get_user(db, user_id)
    if db_user is None:
        return None

    update_data = user.model_dump(exclude_unset=True)
    ensure_required_fields(models.User, update_data)
    if update_data.get("email") and update_data["email"] != db_user.email:
        if get_user_by_email(db, update_data["email"]):
            raise ConflictError("Email already registered")
    if "password" in update_data:
        password = update_data.pop("password")
        if password:
            db_user.password_hash = get_password_hash(password)
    if update_data.get("permissions") is not None:
        update_data["permissions"] = [dict(p) for p in update_data["permissions"]]

    for key, value in update_data.items():
        setattr(db_user, key, value)
    db.commit()
    db.refresh(db_user)
    return db_user


def delete_user(db: Session, user_id: int) -> bool:
    """
    Delete a user from the database.

    Returns:
        True if user was deleted, False if user not found
    """
    db_user = get_user(db, user_id)
    if db_user is None:
        return False
    db.delete(db_user)
    db.commit()
    return True


def _issue_tokens(db: Session, db_user: models.User) -> dict:
    claims = token_claims(db_user)
    refresh_token = create_refresh_token({"sub": claims["sub"]})
    db_user.refresh_token = refresh_token
    db.commit()
    return {
        "access_token": create_access_token(claims),
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


def authenticate(db: Session, email: str, password: str, now: Optional[datetime] = None) -> dict:
    """
    Check credentials and issue an access/refresh token pair.

    Consecutive failures are counted; reaching MAX_FAILED_LOGIN_ATTEMPTS locks
    the account for LOCKOUT_MINUTES. A successful login resets the counter.

    Returns:
        dict with access_token, refresh_token and token_type

    Raises:
        AuthenticationError: for unknown email, wrong password, a locked or inactive account
    """
    now = now or datetime.utcnow()
    db_user = get_user_by_email(db, email)
    if db_user is None:
        raise AuthenticationError("Invalid email or password")

    if db_user.lockout_until and db_user.lockout_until > now:
        raise AuthenticationError("Account is temporarily locked. Try again later.")

    if not verify_password(password, db_user.password_hash):
        db_user.failed_login_attempts = (db_user.failed_login_attempts or 0) + 1
        if db_user.failed_login_attempts >= MAX_FAILED_LOGIN_ATTEMPTS:
            db_user.lockout_until = now + timedelta(minutes=LOCKOUT_MINUTES)
            db_user.failed_login_attempts = 0
            logger.warning(f"User {db_user.id} locked out until {db_user.lockout_until}")
        db.commit()
        raise AuthenticationError("Invalid email or password")

    if not db_user.is_active:
        raise AuthenticationError("User account is inactive")

    db_user.failed_login_attempts = 0
    db_user.lockout_until = None
    db_user.last_login = now
    logger.info(f"User {db_user.id} logged in")
    return _issue_tokens(db, db_user)


def refresh_session(db: Session, refresh_token: str) -> dict:
    """
    Exchange a refresh token for a new token pair.

    The token must be the one currently stored for the user; it is rotated.

    Raises:
        AuthenticationError: if the token is invalid, revoked or the user is gone
    """
    user_id = decode_refresh_token(refresh_token)
    db_user = get_user(db, user_id)
    if db_user is None or not db_user.is_active or db_user.refresh_token != refresh_token:
        raise AuthenticationError("Invalid refresh token")
    return _issue_tokens(db, db_user)


def logout(db: Session, db_user: models.User) -> None:
    db_user.refresh_token = None
    db.commit()
    logger.info(f"User {db_user.id} logged out")
