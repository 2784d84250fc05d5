from copilot.services.session_store import SessionStore, Exchange, Attachment, SessionSummary
from copilot.services.completion_gateway import CompletionGateway, normalize_response
from copilot.services.chat_orchestrator import ChatOrchestrator, ChatResult
from copilot.services.attachment_tracker import AttachmentTracker, AttachResult
from copilot.services.auth_service import (
    verify_password, get_password_hash, create_access_token,
    decode_access_token, authenticate_user, create_user,
    get_user_by_id, get_user_by_email
)
from copilot.services.account_service import AccountService
from copilot.services.mail_service import Mailer
from copilot.services.storage_service import ProfileImageStorage
from copilot.services.google_identity import GoogleIdentity

__all__ = [
    # Chat core
    "SessionStore",
    "Exchange",
    "Attachment",
    "SessionSummary",
    "CompletionGateway",
    "normalize_response",
    "ChatOrchestrator",
    "ChatResult",
    "AttachmentTracker",
    "AttachResult",
    # Accounts
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "decode_access_token",
    "authenticate_user",
    "create_user",
    "get_user_by_id",
    "get_user_by_email",
    "AccountService",
    "Mailer",
    "ProfileImageStorage",
    "GoogleIdentity",
]
