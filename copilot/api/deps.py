"""Request dependencies: clients built at startup, services, current user"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from copilot.config import settings
from copilot.db import get_db, User
from copilot.errors import AlreadyLoggedIn, AuthenticationFailure
from copilot.schemas import UserResponse
from copilot.services.account_service import AccountService
from copilot.services.attachment_tracker import AttachmentTracker
from copilot.services.auth_service import decode_access_token, get_user_by_id
from copilot.services.chat_orchestrator import ChatOrchestrator
from copilot.services.completion_gateway import CompletionGateway
from copilot.services.google_identity import GoogleIdentity
from copilot.services.mail_service import Mailer
from copilot.services.session_store import SessionStore
from copilot.services.storage_service import ProfileImageStorage

security = HTTPBearer(auto_error=False)  # The session cookie is checked as well


def serialize_user(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump(by_alias=True)


# ----------------------------------------------------------------------
# Clients created in the lifespan (overridden in tests)
# ----------------------------------------------------------------------
def get_gateway(request: Request) -> CompletionGateway:
    return request.app.state.gateway


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_storage(request: Request) -> ProfileImageStorage:
    return request.app.state.storage


def get_google(request: Request) -> GoogleIdentity:
    return request.app.state.google


# ----------------------------------------------------------------------
# Per-request services
# ----------------------------------------------------------------------
def get_session_store(db: AsyncSession = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_orchestrator(
    store: SessionStore = Depends(get_session_store),
    gateway: CompletionGateway = Depends(get_gateway),
) -> ChatOrchestrator:
    return ChatOrchestrator(store, gateway)


def get_tracker(
    store: SessionStore = Depends(get_session_store),
    gateway: CompletionGateway = Depends(get_gateway),
) -> AttachmentTracker:
    return AttachmentTracker(store, gateway)


def get_account_service(
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    google: GoogleIdentity = Depends(get_google),
) -> AccountService:
    return AccountService(db, mailer, google)


# ----------------------------------------------------------------------
# Current user
# ----------------------------------------------------------------------
async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """User for the Bearer token or, failing that, the session cookie."""
    user_id = None

    # 1. Try Bearer token
    if credentials and credentials.credentials:
        user_id = decode_access_token(credentials.credentials)

    # 2. Fall back to cookie
    if not user_id:
        cookie_token = request.cookies.get(settings.cookie_name)
        if cookie_token:
            user_id = decode_access_token(cookie_token)

    if not user_id:
        return None

    user = await get_user_by_id(db, user_id)
    if not user or not user.is_active:
        return None
    return user


async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthenticationFailure("Not Logged")
    return user


async def ensure_logged_out(user: Optional[User] = Depends(get_optional_user)) -> None:
    """Guard for signup, login and reset routes."""
    if user is not None:
        raise AlreadyLoggedIn(serialize_user(user))
