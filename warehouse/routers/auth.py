"""
Authentication endpoints: register, login, refresh, logout and the current user.
"""
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..crud import users as crud_users
from ..database import get_db
from ..rate_limit import LOGIN_LIMIT, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserRegister, db: Session = Depends(get_db)):
    """
    Create a plain user account.

    Returns:
        The created user

    Raises:
        ConflictError: 409 if the email is already registered
    """
    return crud_users.register_user(db, user)


@router.post("/login", response_model=schemas.Token)
@limiter.limit(LOGIN_LIMIT)
def login(request: Request, credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    """
    Exchange email and password for an access/refresh token pair.

    Five consecutive failures lock the account for fifteen minutes.
    """
    client_ip = request.client.host if request.client else "unknown"
    logger.debug(f"Login attempt for {credentials.email} from {client_ip}")
    return crud_users.authenticate(db, credentials.email, credentials.password)


@router.post("/refresh", response_model=schemas.Token)
def refresh(body: schemas.RefreshRequest, db: Session = Depends(get_db)):
    return crud_users.refresh_session(db, body.refresh_token)


@router.post("/logout")
def logout(db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    crud_users.logout(db, current_user)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=schemas.User)
def me(current_user: models.User = Depends(get_current_user)):
    return current_user
