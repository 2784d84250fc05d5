"""
Database models for the CoPilot chat backend

- Users and their transient pending records (signup, reset, OTP)
- Chat sessions with raw provider turns, display exchanges and attached files
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Union
from enum import Enum
import uuid

from sqlalchemy import (
    String, Text, DateTime, Integer, Boolean, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.ext.declarative import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class PendingKind(str, Enum):
    """What a pending record is waiting for"""
    REGISTER = "register"   # Signup awaiting email verification / profile
    RESET = "reset"         # Password reset secret
    OTP = "otp"             # One-time login password


class SessionMode(str, Enum):
    """Stored discriminator for CompletionMode"""
    FREEFORM = "freeform"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Freeform:
    """Plain chat completion over the stored turns."""


@dataclass(frozen=True)
class AssistantBound:
    """Provider-side assistant built over the session's files."""
    assistant_id: str


CompletionMode = Union[Freeform, AssistantBound]


class User(Base):
    """Registered account"""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # None for Google accounts
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profile_image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)  # S3 URL
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationships
    chat_sessions: Mapped[List["ChatSession"]] = relationship(
        "ChatSession", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class PendingRecord(Base):
    """
    Short-lived record for an in-progress signup, password reset or OTP login.
    One live record per (kind, email); re-requests overwrite it.
    """
    __tablename__ = "pending_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    kind: Mapped[str] = mapped_column(String(20))  # PendingKind value
    email: Mapped[str] = mapped_column(String(255))
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)  # Reset / OTP target
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    secret: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    manual: Mapped[bool] = mapped_column(Boolean, default=True)  # False for Google signups
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0)  # Wrong OTP guesses
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)

    __table_args__ = (
        UniqueConstraint("kind", "email", name="uq_pending_kind_email"),
    )


class ChatSession(Base):
    """One conversation owned by a user"""
    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    mode: Mapped[str] = mapped_column(String(20), default=SessionMode.FREEFORM.value)
    assistant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # Set iff mode == assistant
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="chat_sessions")
    turns: Mapped[List["ChatTurn"]] = relationship(
        "ChatTurn", back_populates="session", order_by="ChatTurn.id",
        cascade="all, delete-orphan", passive_deletes=True
    )
    exchanges: Mapped[List["ChatExchange"]] = relationship(
        "ChatExchange", back_populates="session", order_by="ChatExchange.id",
        cascade="all, delete-orphan", passive_deletes=True
    )
    files: Mapped[List["ChatFile"]] = relationship(
        "ChatFile", back_populates="session", order_by="ChatFile.id",
        cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def completion_mode(self) -> CompletionMode:
        if self.mode == SessionMode.ASSISTANT.value and self.assistant_id:
            return AssistantBound(self.assistant_id)
        return Freeform()

    @completion_mode.setter
    def completion_mode(self, value: CompletionMode) -> None:
        if isinstance(value, AssistantBound):
            self.mode = SessionMode.ASSISTANT.value
            self.assistant_id = value.assistant_id
        else:
            self.mode = SessionMode.FREEFORM.value
            self.assistant_id = None


class ChatTurn(Base):
    """Role-tagged turn replayed to the completion provider"""
    __tablename__ = "chat_turns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_sessions.id", ondelete="CASCADE"))
    role: Mapped[str] = mapped_column(String(20))  # "user" or "assistant"
    content: Mapped[str] = mapped_column(Text)

    session: Mapped["ChatSession"] = relationship("ChatSession", back_populates="turns")

    __table_args__ = (
        Index("ix_chat_turns_session", "session_id", "id"),
    )


class ChatExchange(Base):
    """Prompt/response pair rendered by the UI"""
    __tablename__ = "chat_exchanges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_sessions.id", ondelete="CASCADE"))
    prompt: Mapped[str] = mapped_column(Text)
    response: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    session: Mapped["ChatSession"] = relationship("ChatSession", back_populates="exchanges")

    __table_args__ = (
        Index("ix_chat_exchanges_session", "session_id", "id"),
    )


class ChatFile(Base):
    """Provider file attached to a session"""
    __tablename__ = "chat_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_sessions.id", ondelete="CASCADE"))
    file_id: Mapped[str] = mapped_column(String(255))  # Provider-side id
    file_name: Mapped[str] = mapped_column(String(1024))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    session: Mapped["ChatSession"] = relationship("ChatSession", back_populates="files")

    __table_args__ = (
        UniqueConstraint("session_id", "file_name", name="uq_chat_files_session_name"),
    )
