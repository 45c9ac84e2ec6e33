"""Registration, login and session tokens.

Passwords are hashed with bcrypt. Session tokens are HS256 JWTs carrying
the user's ``id`` and ``role`` and expire after 24 hours.
Clients send them back as ``Authorization: Bearer <token>``.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import bcrypt
import jwt
from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from catalogue import models
from catalogue.models import Role
from catalogue.schemas import TokenClaim, TokenResponse
from exceptions.exceptions import (
    AuthError,
    ConflictError,
    ForbiddenError,
    ServiceUnavailable,
    ValidationError,
)

load_dotenv()
logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10
BCRYPT_MAX_PASSWORD_BYTES = 72
MIN_USERNAME_LENGTH = 3
JWT_ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(hours=24)

INVALID_CREDENTIALS = "Invalid credentials"

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed stored hash or over-long password
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("not-a-real-password")


def _secret_key() -> str:
    secret = os.getenv("JWT_SECRET_KEY")
    if not secret:
        raise RuntimeError("JWT_SECRET_KEY is not set")
    return secret


def register_user(db: Session, username: Optional[str], email: Optional[str], password: Optional[str]) -> models.User:
    """Create a student account.

    Raises ValidationError for missing fields and ConflictError when the
    email or username is already taken.
    """
    username = (username or "").strip()
    email = (email or "").strip()
    password = password or ""

    if not username or not email or not password:
        raise ValidationError("Username, email, and password are required")
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters")
    if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")

    try:
        if db.query(models.User.id).filter(models.User.email == email).first():
            raise ConflictError("Email already exists")
        if db.query(models.User.id).filter(models.User.username == username).first():
            raise ConflictError("Username already exists")

        db_user = models.User(
            username=username,
            email=email,
            password=hash_password(password),
            role=Role.STUDENT.value,
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
    except IntegrityError:
        # lost a race against a concurrent registration
        db.rollback()
        raise ConflictError("User already exists")
    except SQLAlchemyError as e:
        db.rollback()
        raise ServiceUnavailable("register", str(e))

    logger.info(f"Registered user {db_user.id} ({db_user.username})")
    return db_user


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """Exact match first, then a case-insensitive match for mixed-case rows."""
    try:
        user = db.query(models.User).filter(models.User.email == email).first()
        if user is None:
            user = (
                db.query(models.User)
                .filter(func.lower(models.User.email) == email.lower())
                .order_by(models.User.id)
                .first()
            )
        return user
    except SQLAlchemyError as e:
        raise ServiceUnavailable("fetch", str(e))


def create_access_token(user: models.User) -> str:
    expires = datetime.now(timezone.utc) + TOKEN_LIFETIME
    payload = {"id": user.id, "role": user.role, "exp": expires}
    return jwt.encode(payload, _secret_key(), algorithm=JWT_ALGORITHM)


def login(db: Session, email: Optional[str], password: Optional[str]) -> TokenResponse:
    if not email or not password:
        raise ValidationError("Email and password are required")

    email = email.strip()
    user = get_user_by_email(db, email)

    if user is None:
        # keep the response time in line with a wrong password
        verify_password(password, _dummy_hash())
        logger.info(f"Login failed: no user for email {email!r}")
        raise AuthError(INVALID_CREDENTIALS)

    if not verify_password(password, user.password):
        logger.info(f"Login failed: password mismatch for user {user.id}")
        raise AuthError(INVALID_CREDENTIALS)

    logger.info(f"Login successful for user {user.id}")
    return TokenResponse(token=create_access_token(user), role=user.role)


def authorize(token: Optional[str]) -> TokenClaim:
    if not token:
        raise AuthError("Access token required")
    try:
        payload = jwt.decode(
            token,
            _secret_key(),
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
        return TokenClaim(id=payload["id"], role=payload["role"])
    except (jwt.InvalidTokenError, KeyError, SchemaValidationError):
        raise AuthError("Invalid or expired token")


def require_role(claim: TokenClaim, role: Role) -> None:
    if claim.role != role:
        raise ForbiddenError(f"{role.value.capitalize()} access required")


def get_current_claim(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenClaim:
    return authorize(credentials.credentials if credentials else None)
