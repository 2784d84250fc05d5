"""
Session Store - persistence for chat sessions

Every exchange is written as one user turn, one assistant turn and one
display exchange in a single transaction, so the raw turn list is always
exactly twice as long as the exchange list.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from copilot.db.models import (
    ChatSession, ChatTurn, ChatExchange, ChatFile, CompletionMode, AssistantBound,
)
from copilot.errors import Conflict, NotFound, UpstreamFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Exchange:
    """One prompt and its completed response"""
    prompt: str
    response: str


@dataclass(frozen=True)
class Attachment:
    """Provider file id plus the name the user uploaded it under"""
    file_id: str
    file_name: str


@dataclass
class SessionSummary:
    session_id: str
    exchanges: List[Exchange] = field(default_factory=list)


class SessionStore:
    """Chat session persistence bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def create_session(
        self,
        user_id: str,
        exchange: Exchange,
        session_id: Optional[str] = None,
    ) -> str:
        """
        Create a session holding its first exchange.

        Raises:
            Conflict: ``session_id`` is already taken.
        """
        session = ChatSession(id=session_id or str(uuid.uuid4()), user_id=user_id)
        self.db.add(session)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("Session already exists")

        self._add_exchange(session.id, exchange)
        await self._commit()
        return session.id

    async def create_empty_session(
        self,
        user_id: str,
        attachment: Optional[Attachment] = None,
        mode: Optional[CompletionMode] = None,
    ) -> str:
        """Create a session with no exchanges (first event is a file upload)."""
        session = ChatSession(id=str(uuid.uuid4()), user_id=user_id)
        if mode is not None:
            session.completion_mode = mode
        if attachment is not None:
            session.files = [ChatFile(file_id=attachment.file_id, file_name=attachment.file_name)]
        self.db.add(session)
        await self._commit()
        return session.id

    async def insert_or_append(self, user_id: str, session_id: str, exchange: Exchange) -> str:
        """
        Append to the session if it exists, create it otherwise.

        A concurrent create for the same id resolves to an append.
        """
        if await self._find(user_id, session_id) is None:
            try:
                return await self.create_session(user_id, exchange, session_id=session_id)
            except Conflict:
                logger.info(f"Session {session_id} was created concurrently, appending instead")

        await self.append_exchange(user_id, session_id, exchange)
        return session_id

    async def append_exchange(
        self,
        user_id: str,
        session_id: str,
        exchange: Exchange,
        files: Sequence[Attachment] = (),
        assistant_id: Optional[str] = None,
    ) -> None:
        """
        Append an exchange to both turn sequences.

        Optionally adds files (a name already present is not duplicated) and
        rebinds the session to ``assistant_id``.

        Raises:
            NotFound: no session matches (user_id, session_id).
        """
        session = await self.get_session(user_id, session_id, with_files=bool(files))

        self._add_exchange(session.id, exchange)

        if files:
            present = {f.file_name for f in session.files}
            for attachment in files:
                if attachment.file_name not in present:
                    session.files.append(ChatFile(
                        file_id=attachment.file_id,
                        file_name=attachment.file_name,
                    ))
                    present.add(attachment.file_name)

        if assistant_id is not None:
            session.completion_mode = AssistantBound(assistant_id)

        session.updated_at = datetime.utcnow()
        await self._commit()

    async def upsert_file(
        self,
        user_id: str,
        session_id: str,
        attachment: Attachment,
        mode: CompletionMode,
    ) -> None:
        """Attach a file (replacing the id of a same-named one) and set the mode."""
        session = await self.get_session(user_id, session_id, with_files=True)

        existing = next((f for f in session.files if f.file_name == attachment.file_name), None)
        if existing:
            existing.file_id = attachment.file_id
        else:
            session.files.append(ChatFile(
                file_id=attachment.file_id,
                file_name=attachment.file_name,
            ))

        session.completion_mode = mode
        session.updated_at = datetime.utcnow()
        await self._commit()

    async def remove_file(
        self,
        user_id: str,
        session_id: str,
        file_name: str,
        mode: CompletionMode,
    ) -> None:
        """Detach a file by name and set the mode."""
        session = await self.get_session(user_id, session_id, with_files=True)

        existing = next((f for f in session.files if f.file_name == file_name), None)
        if existing is None:
            raise NotFound("File not found")

        session.files.remove(existing)
        session.completion_mode = mode
        session.updated_at = datetime.utcnow()
        await self._commit()

    async def delete_all_sessions(self, user_id: str) -> int:
        """
        Delete every session of a user. Turns, exchanges and files cascade.

        Raises:
            NotFound: the user has no sessions.
        """
        result = await self.db.execute(
            delete(ChatSession).where(ChatSession.user_id == user_id)
        )
        await self._commit()

        if not result.rowcount:
            raise NotFound("No chats to delete")
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_session(
        self,
        user_id: str,
        session_id: str,
        with_files: bool = False,
    ) -> ChatSession:
        session = await self._find(user_id, session_id, with_files=with_files)
        if session is None:
            raise NotFound("Session not found")
        return session

    async def get_exchanges(self, user_id: str, session_id: str) -> List[Exchange]:
        await self.get_session(user_id, session_id)

        result = await self.db.execute(
            select(ChatExchange)
            .where(ChatExchange.session_id == session_id)
            .order_by(ChatExchange.id.asc())
        )
        return [Exchange(prompt=e.prompt, response=e.response) for e in result.scalars().all()]

    async def get_raw_turns(self, user_id: str, session_id: str) -> List[Dict[str, str]]:
        """Stored turns in provider message format."""
        await self.get_session(user_id, session_id)

        result = await self.db.execute(
            select(ChatTurn)
            .where(ChatTurn.session_id == session_id)
            .order_by(ChatTurn.id.asc())
        )
        return [{"role": t.role, "content": t.content} for t in result.scalars().all()]

    async def get_all_sessions(self, user_id: str) -> List[SessionSummary]:
        result = await self.db.execute(
            select(ChatSession)
            .where(ChatSession.user_id == user_id)
            .options(selectinload(ChatSession.exchanges))
            .order_by(ChatSession.created_at.asc(), ChatSession.id.asc())
            .execution_options(populate_existing=True)
        )
        return [
            SessionSummary(
                session_id=s.id,
                exchanges=[Exchange(prompt=e.prompt, response=e.response) for e in s.exchanges],
            )
            for s in result.scalars().all()
        ]

    async def list_files(self, user_id: str, session_id: str) -> List[Attachment]:
        session = await self.get_session(user_id, session_id, with_files=True)
        return [Attachment(file_id=f.file_id, file_name=f.file_name) for f in session.files]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _find(
        self,
        user_id: str,
        session_id: str,
        with_files: bool = False,
    ) -> Optional[ChatSession]:
        query = select(ChatSession).where(
            ChatSession.id == session_id,
            ChatSession.user_id == user_id,
        )
        if with_files:
            query = query.options(selectinload(ChatSession.files))
        query = query.execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    def _add_exchange(self, session_id: str, exchange: Exchange) -> None:
        # Added in order: autoincrement ids define turn order
        self.db.add_all([
            ChatTurn(session_id=session_id, role="user", content=exchange.prompt),
            ChatTurn(session_id=session_id, role="assistant", content=exchange.response),
            ChatExchange(session_id=session_id, prompt=exchange.prompt, response=exchange.response),
        ])

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Chat store commit failed: {e}")
            raise UpstreamFailure("DB gets something wrong", status_code=500) from e
