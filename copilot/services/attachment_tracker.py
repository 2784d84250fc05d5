"""
File Attachment Tracker

Keeps a session's file set and its bound assistant in step: every change
to the set builds a new assistant over all remaining files, and an empty
set puts the session back in freeform mode.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from copilot.db.models import AssistantBound, CompletionMode, Freeform
from copilot.errors import NotFound, ValidationFailure
from copilot.services.completion_gateway import CompletionGateway
from copilot.services.session_store import Attachment, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class AttachResult:
    session_id: str
    file_id: str
    file_name: str
    assistant_id: str


class AttachmentTracker:
    def __init__(self, store: SessionStore, gateway: CompletionGateway):
        self.store = store
        self.gateway = gateway

    async def attach(
        self,
        user_id: str,
        session_id: Optional[str],
        file_name: str,
        content: bytes,
    ) -> AttachResult:
        """Upload a file and bind the session to an assistant over all its files."""
        if not file_name:
            raise ValidationFailure("File name is required")
        if not content:
            raise ValidationFailure("File is empty")

        # Unknown session fails before the upload
        current = await self.store.list_files(user_id, session_id) if session_id else []

        file_id = await self.gateway.upload_file(file_name, content)
        return await self._bind(user_id, session_id, current, Attachment(file_id, file_name))

    async def register(
        self,
        user_id: str,
        session_id: Optional[str],
        file_id: str,
        file_name: str,
    ) -> AttachResult:
        """Attach a file that is already uploaded to the provider."""
        if not file_id or not file_name:
            raise ValidationFailure("file_id and file_name are required")

        current = await self.store.list_files(user_id, session_id) if session_id else []
        return await self._bind(user_id, session_id, current, Attachment(file_id, file_name))

    async def detach(self, user_id: str, session_id: str, file_name: str) -> CompletionMode:
        """Remove a file by name and rebuild or clear the assistant."""
        if not file_name:
            raise ValidationFailure("File name is required")

        current = await self.store.list_files(user_id, session_id)
        if not any(f.file_name == file_name for f in current):
            raise NotFound("File not found")

        remaining = [f.file_id for f in current if f.file_name != file_name]
        if remaining:
            mode: CompletionMode = AssistantBound(await self.gateway.build_assistant(remaining))
        else:
            mode = Freeform()

        await self.store.remove_file(user_id, session_id, file_name, mode)
        logger.info(f"Detached {file_name} from session {session_id}, {len(remaining)} file(s) left")
        return mode

    async def list_files(self, user_id: str, session_id: str) -> List[str]:
        return [f.file_name for f in await self.store.list_files(user_id, session_id)]

    async def _bind(
        self,
        user_id: str,
        session_id: Optional[str],
        current: List[Attachment],
        attachment: Attachment,
    ) -> AttachResult:
        # A file with the same name is replaced, not duplicated
        file_ids = [f.file_id for f in current if f.file_name != attachment.file_name]
        file_ids.append(attachment.file_id)

        assistant_id = await self.gateway.build_assistant(file_ids)
        mode = AssistantBound(assistant_id)

        if session_id:
            await self.store.upsert_file(user_id, session_id, attachment, mode)
        else:
            session_id = await self.store.create_empty_session(user_id, attachment, mode)
            logger.info(f"Created session {session_id} for upload of {attachment.file_name}")

        return AttachResult(
            session_id=session_id,
            file_id=attachment.file_id,
            file_name=attachment.file_name,
            assistant_id=assistant_id,
        )
