"""
Chat API

- POST /chat starts a session with its first exchange
- PUT /chat continues a session (freeform or through its assistant)
- /chat/upload and /chat/deletefile manage the files an assistant reads
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from copilot.api.deps import get_current_user, get_orchestrator, get_session_store, get_tracker
from copilot.config import settings
from copilot.db import User
from copilot.errors import ValidationFailure, envelope
from copilot.schemas import ChatContinue, ChatPrompt, DeleteFileRequest, SessionHistory
from copilot.services.attachment_tracker import AttachmentTracker
from copilot.services.chat_orchestrator import ChatOrchestrator
from copilot.services.session_store import SessionStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("")
async def start_chat(
    body: ChatPrompt,
    current_user: User = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Send a prompt. Without ``sessionId`` a new session is created; with
    one, the prompt continues that session.
    """
    result = await orchestrator.handle_prompt(current_user.id, body.prompt, body.session_id)
    return envelope(data={"_id": result.session_id, "content": result.content})


@router.put("")
async def continue_chat(
    body: ChatContinue,
    current_user: User = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.handle_prompt(current_user.id, body.prompt, body.session_id)
    return envelope(data={"content": result.content, "chatId": result.session_id})


@router.get("/saved")
async def saved_chat(
    session_id: str = Query(..., alias="sessionId"),
    current_user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_session_store),
):
    """Display exchanges of one session, oldest first"""
    exchanges = await store.get_exchanges(current_user.id, session_id)
    return envelope(data=[asdict(e) for e in exchanges])


@router.get("/history")
async def chat_history(
    current_user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_session_store),
):
    sessions = await store.get_all_sessions(current_user.id)
    data = [
        SessionHistory(
            chat_id=s.session_id,
            chat=[asdict(e) for e in s.exchanges],
        ).model_dump(by_alias=True)
        for s in sessions
    ]
    return envelope(data=data)


@router.delete("/all")
async def delete_all_chats(
    current_user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_session_store),
):
    deleted = await store.delete_all_sessions(current_user.id)
    logger.info(f"User {current_user.id} deleted {deleted} session(s)")
    return envelope(data={"deleted": deleted})


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------
@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    session_id: Optional[str] = Form(None, alias="sessionId"),
    current_user: User = Depends(get_current_user),
    tracker: AttachmentTracker = Depends(get_tracker),
):
    """Upload a file and bind the session's assistant to it"""
    if file.size is not None and file.size > settings.max_upload_size:
        raise ValidationFailure("File is too large")

    content = await file.read()
    if len(content) > settings.max_upload_size:
        raise ValidationFailure("File is too large")

    result = await tracker.attach(current_user.id, session_id or None, file.filename or "", content)
    return envelope(data={
        "file_id": result.file_id,
        "file_name": result.file_name,
        "chatId": result.session_id,
    })


@router.get("/upload")
async def list_files(
    session_id: str = Query(..., alias="sessionId"),
    current_user: User = Depends(get_current_user),
    tracker: AttachmentTracker = Depends(get_tracker),
):
    names = await tracker.list_files(current_user.id, session_id)
    return envelope(data=names)


@router.post("/deletefile")
async def delete_file(
    body: DeleteFileRequest,
    current_user: User = Depends(get_current_user),
    tracker: AttachmentTracker = Depends(get_tracker),
):
    await tracker.detach(current_user.id, body.session_id, body.file_name)
    return envelope()
