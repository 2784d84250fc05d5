"""Authentication service - JWT token handling, password hashing and user records"""

from datetime import datetime, timedelta
from typing import Optional
import secrets
import uuid

from jose import JWTError, jwt
import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from copilot.config import settings
from copilot.db.models import User
from copilot.errors import ValidationFailure


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash using bcrypt directly."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt directly."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


def check_password_strength(password: Optional[str]) -> str:
    if not password or len(password) < settings.min_password_length:
        raise ValidationFailure(
            f"Password must be at least {settings.min_password_length} characters"
        )
    return password


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_secret() -> str:
    """Random URL-safe secret for reset links"""
    return secrets.token_urlsafe(24)


def generate_otp() -> str:
    """Numeric one-time password"""
    return "".join(secrets.choice("0123456789") for _ in range(settings.otp_length))


def create_access_token(user_id: str) -> str:
    """Create a JWT access token"""
    expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": datetime.utcnow(),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(
        to_encode,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str) -> Optional[str]:
    """Decode a JWT token and return the user ID"""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm]
        )
        return payload.get("sub")
    except JWTError:
        return None


async def authenticate_user(
    db: AsyncSession,
    email: str,
    password: str
) -> Optional[User]:
    """Authenticate a user by email and password. Google accounts have no password."""
    user = await get_user_by_email(db, email)

    if not user or not user.hashed_password:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def create_user(
    db: AsyncSession,
    email: str,
    hashed_password: Optional[str],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    user_id: Optional[str] = None,
) -> User:
    """Create a user. ``user_id`` lets a finished signup keep its pending id."""
    user = User(
        id=user_id or str(uuid.uuid4()),
        email=normalize_email(email),
        hashed_password=hashed_password,
        first_name=first_name,
        last_name=last_name,
    )
    db.add(user)
    await db.flush()
    return user


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    """Get a user by ID"""
    result = await db.execute(
        select(User).where(User.id == user_id)
    )
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    """Get a user by email"""
    result = await db.execute(
        select(User).where(User.email == normalize_email(email))
    )
    return result.scalar_one_or_none()
