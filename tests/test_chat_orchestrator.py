"""
Tests for the Chat Orchestrator

Real Session Store on SQLite, completion gateway replaced by AsyncMocks.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from copilot.db import init_db, drop_db, async_session_maker, AssistantBound, Freeform
from copilot.errors import CompletionTimeout, NotFound, UpstreamFailure, ValidationFailure
from copilot.services import create_user
from copilot.services.chat_orchestrator import ChatOrchestrator
from copilot.services.completion_gateway import CompletionGateway
from copilot.services.session_store import Attachment, Exchange, SessionStore


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def db_session():
    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession):
    user = await create_user(db_session, email="carol@example.com", hashed_password=None)
    await db_session.commit()
    return user


@pytest.fixture
def gateway():
    gateway = MagicMock(spec=CompletionGateway)
    gateway.complete_freeform = AsyncMock(return_value="\n\nFreeform answer")
    gateway.complete_with_assistant = AsyncMock(return_value="\nAssistant answer")
    return gateway


@pytest.fixture
def store(db_session: AsyncSession):
    return SessionStore(db_session)


@pytest.fixture
def orchestrator(store: SessionStore, gateway):
    return ChatOrchestrator(store, gateway)


@pytest.mark.asyncio
async def test_first_prompt_creates_session(orchestrator, store, gateway, test_user):
    result = await orchestrator.handle_prompt(test_user.id, "Hello")

    assert result.content == "Freeform answer"
    assert result.mode == Freeform()
    gateway.complete_freeform.assert_awaited_once_with([], "Hello")
    assert await store.get_exchanges(test_user.id, result.session_id) == [
        Exchange("Hello", "Freeform answer")
    ]


@pytest.mark.asyncio
async def test_each_new_prompt_without_session_gets_its_own_session(orchestrator, test_user):
    first = await orchestrator.handle_prompt(test_user.id, "one")
    second = await orchestrator.handle_prompt(test_user.id, "two")

    assert first.session_id != second.session_id


@pytest.mark.asyncio
async def test_continuation_streams_over_stored_turns(orchestrator, store, gateway, test_user):
    first = await orchestrator.handle_prompt(test_user.id, "q1")
    gateway.complete_freeform.return_value = "a2"

    result = await orchestrator.handle_prompt(test_user.id, "q2", first.session_id)

    assert result.session_id == first.session_id
    gateway.complete_freeform.assert_awaited_with(
        [{"role": "user", "content": "q1"}, {"role": "assistant", "content": "Freeform answer"}],
        "q2",
        stream=True,
    )
    turns = await store.get_raw_turns(test_user.id, first.session_id)
    assert [t["content"] for t in turns] == ["q1", "Freeform answer", "q2", "a2"]


@pytest.mark.asyncio
async def test_assistant_bound_session_uses_assistant(orchestrator, store, gateway, test_user):
    session_id = await store.create_empty_session(
        test_user.id, Attachment("file-1", "doc.pdf"), AssistantBound("asst-1")
    )

    result = await orchestrator.handle_prompt(test_user.id, "Summarize", session_id)

    assert result.content == "Assistant answer"
    assert result.mode == AssistantBound("asst-1")
    gateway.complete_with_assistant.assert_awaited_once_with("asst-1", "Summarize")
    gateway.complete_freeform.assert_not_awaited()
    assert await store.get_exchanges(test_user.id, session_id) == [Exchange("Summarize", "Assistant answer")]


@pytest.mark.asyncio
async def test_unknown_session_fails_before_provider_call(orchestrator, gateway, test_user):
    with pytest.raises(NotFound):
        await orchestrator.handle_prompt(test_user.id, "hi", "no-such-session")
    gateway.complete_freeform.assert_not_awaited()
    gateway.complete_with_assistant.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_prompt_is_rejected(orchestrator, gateway, test_user):
    with pytest.raises(ValidationFailure):
        await orchestrator.handle_prompt(test_user.id, "   ")
    gateway.complete_freeform.assert_not_awaited()


@pytest.mark.asyncio
async def test_blank_continuation_is_rejected(orchestrator, store, gateway, test_user):
    first = await orchestrator.handle_prompt(test_user.id, "q1")
    gateway.complete_freeform.reset_mock()

    with pytest.raises(ValidationFailure):
        await orchestrator.continue_session(test_user.id, first.session_id, " \n ")
    gateway.complete_freeform.assert_not_awaited()
    assert len(await store.get_exchanges(test_user.id, first.session_id)) == 1


@pytest.mark.asyncio
async def test_nothing_is_stored_when_completion_fails(orchestrator, store, gateway, test_user):
    first = await orchestrator.handle_prompt(test_user.id, "q1")
    gateway.complete_freeform.side_effect = UpstreamFailure("provider down")

    with pytest.raises(UpstreamFailure):
        await orchestrator.handle_prompt(test_user.id, "q2", first.session_id)

    assert len(await store.get_exchanges(test_user.id, first.session_id)) == 1
    assert len(await store.get_raw_turns(test_user.id, first.session_id)) == 2


@pytest.mark.asyncio
async def test_assistant_timeout_stores_nothing(orchestrator, store, gateway, test_user):
    session_id = await store.create_empty_session(
        test_user.id, Attachment("file-1", "doc.pdf"), AssistantBound("asst-1")
    )
    gateway.complete_with_assistant.side_effect = CompletionTimeout()

    with pytest.raises(CompletionTimeout):
        await orchestrator.handle_prompt(test_user.id, "slow", session_id)

    assert await store.get_exchanges(test_user.id, session_id) == []


@pytest.mark.asyncio
async def test_no_session_is_created_when_first_completion_fails(orchestrator, store, gateway, test_user):
    gateway.complete_freeform.side_effect = UpstreamFailure("provider down")

    with pytest.raises(UpstreamFailure):
        await orchestrator.handle_prompt(test_user.id, "hello")

    assert await store.get_all_sessions(test_user.id) == []
