"""
Chat Orchestrator - one prompt in, one persisted exchange out

Chooses between a new session, a freeform continuation and an
assistant-bound continuation, calls the completion gateway, normalizes the
answer and stores it. Nothing is stored when the completion fails.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from copilot.db.models import AssistantBound, CompletionMode, Freeform
from copilot.errors import ValidationFailure
from copilot.services.completion_gateway import CompletionGateway, normalize_response
from copilot.services.session_store import Exchange, SessionStore

logger = logging.getLogger(__name__)


def _require_prompt(prompt: str) -> None:
    if not prompt or not prompt.strip():
        raise ValidationFailure("Prompt is required")


@dataclass
class ChatResult:
    session_id: str
    content: str
    mode: CompletionMode


class ChatOrchestrator:
    def __init__(self, store: SessionStore, gateway: CompletionGateway):
        self.store = store
        self.gateway = gateway

    async def handle_prompt(
        self,
        user_id: str,
        prompt: str,
        session_id: Optional[str] = None,
    ) -> ChatResult:
        """
        Complete a prompt and persist the exchange.

        Without ``session_id`` a new session is started with no prior turns.
        With it, the session's completion mode decides the provider path.
        """
        if not session_id:
            return await self.start_session(user_id, prompt)
        return await self.continue_session(user_id, session_id, prompt)

    async def start_session(self, user_id: str, prompt: str) -> ChatResult:
        _require_prompt(prompt)
        logger.info(f"New session for user {user_id}")
        raw = await self.gateway.complete_freeform([], prompt)
        content = normalize_response(raw)

        session_id = await self.store.insert_or_append(
            user_id, str(uuid.uuid4()), Exchange(prompt=prompt, response=content)
        )
        return ChatResult(session_id=session_id, content=content, mode=Freeform())

    async def continue_session(self, user_id: str, session_id: str, prompt: str) -> ChatResult:
        _require_prompt(prompt)
        # Raises NotFound before any provider call
        session = await self.store.get_session(user_id, session_id)
        mode = session.completion_mode

        if isinstance(mode, AssistantBound):
            logger.info(f"Session {session_id}: assistant {mode.assistant_id}")
            raw = await self.gateway.complete_with_assistant(mode.assistant_id, prompt)
        else:
            logger.info(f"Session {session_id}: freeform")
            turns = await self.store.get_raw_turns(user_id, session_id)
            raw = await self.gateway.complete_freeform(turns, prompt, stream=True)

        content = normalize_response(raw)
        await self.store.append_exchange(
            user_id, session_id, Exchange(prompt=prompt, response=content)
        )
        return ChatResult(session_id=session_id, content=content, mode=mode)
