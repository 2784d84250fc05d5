"""
Tests for the Session Store

Covers create / append / insert-or-append, the raw-turn and display
sequences staying in step, ownership checks and bulk deletion.
"""

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from copilot.db import init_db, drop_db, async_session_maker, AssistantBound, Base, ChatSession, Freeform
from copilot.errors import Conflict, NotFound
from copilot.services import create_user
from copilot.services.session_store import Attachment, Exchange, SessionStore


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def db_session():
    """Get a database session"""
    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession):
    user = await create_user(db_session, email="alice@example.com", hashed_password=None, first_name="Alice")
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession):
    user = await create_user(db_session, email="bob@example.com", hashed_password=None, first_name="Bob")
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def store(db_session: AsyncSession):
    return SessionStore(db_session)


@pytest.mark.asyncio
async def test_create_session_holds_first_exchange(store: SessionStore, test_user):
    session_id = await store.create_session(test_user.id, Exchange("hi", "Hello!"))

    assert await store.get_exchanges(test_user.id, session_id) == [Exchange("hi", "Hello!")]
    assert await store.get_raw_turns(test_user.id, session_id) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello!"},
    ]
    session = await store.get_session(test_user.id, session_id)
    assert session.completion_mode == Freeform()


@pytest.mark.asyncio
async def test_create_session_with_taken_id_conflicts(store: SessionStore, test_user):
    await store.create_session(test_user.id, Exchange("a", "b"), session_id="fixed-id")

    async with async_session_maker() as other_db:
        with pytest.raises(Conflict):
            await SessionStore(other_db).create_session(
                test_user.id, Exchange("c", "d"), session_id="fixed-id"
            )


@pytest.mark.asyncio
async def test_insert_or_append_creates_then_appends(store: SessionStore, test_user):
    first = await store.insert_or_append(test_user.id, "s-1", Exchange("one", "1"))
    second = await store.insert_or_append(test_user.id, "s-1", Exchange("two", "2"))

    assert first == second == "s-1"
    exchanges = await store.get_exchanges(test_user.id, "s-1")
    assert [e.prompt for e in exchanges] == ["one", "two"]


@pytest.mark.asyncio
async def test_insert_or_append_resolves_concurrent_create(store: SessionStore, test_user, monkeypatch):
    # Another request creates the session between our lookup and our insert
    async with async_session_maker() as other_db:
        await SessionStore(other_db).create_session(test_user.id, Exchange("a", "1"), session_id="race-id")

    real_find = store._find
    lookups = []

    async def stale_find(*args, **kwargs):
        lookups.append(args)
        if len(lookups) == 1:
            return None
        return await real_find(*args, **kwargs)

    monkeypatch.setattr(store, "_find", stale_find)

    session_id = await store.insert_or_append(test_user.id, "race-id", Exchange("b", "2"))

    assert session_id == "race-id"
    exchanges = await store.get_exchanges(test_user.id, "race-id")
    assert [e.prompt for e in exchanges] == ["a", "b"]
    assert len(await store.get_raw_turns(test_user.id, "race-id")) == 4


@pytest.mark.asyncio
async def test_turns_stay_twice_the_exchanges(store: SessionStore, test_user):
    session_id = await store.create_session(test_user.id, Exchange("q0", "a0"))
    for i in range(1, 4):
        await store.append_exchange(test_user.id, session_id, Exchange(f"q{i}", f"a{i}"))

    exchanges = await store.get_exchanges(test_user.id, session_id)
    turns = await store.get_raw_turns(test_user.id, session_id)

    assert len(turns) == 2 * len(exchanges) == 8
    assert [t["role"] for t in turns] == ["user", "assistant"] * 4
    assert [t["content"] for t in turns[::2]] == [e.prompt for e in exchanges]
    assert [t["content"] for t in turns[1::2]] == [e.response for e in exchanges]


@pytest.mark.asyncio
async def test_append_to_unknown_session_is_not_found(store: SessionStore, test_user):
    with pytest.raises(NotFound):
        await store.append_exchange(test_user.id, "missing", Exchange("q", "a"))


@pytest.mark.asyncio
async def test_sessions_are_scoped_to_their_owner(store: SessionStore, test_user, other_user):
    session_id = await store.create_session(test_user.id, Exchange("mine", "ok"))

    with pytest.raises(NotFound):
        await store.get_exchanges(other_user.id, session_id)
    with pytest.raises(NotFound):
        await store.append_exchange(other_user.id, session_id, Exchange("x", "y"))


@pytest.mark.asyncio
async def test_append_adds_files_once_and_rebinds_assistant(store: SessionStore, test_user):
    session_id = await store.create_session(test_user.id, Exchange("q", "a"))

    await store.append_exchange(
        test_user.id, session_id, Exchange("q2", "a2"),
        files=[Attachment("f-1", "report.pdf")],
        assistant_id="asst-1",
    )
    await store.append_exchange(
        test_user.id, session_id, Exchange("q3", "a3"),
        files=[Attachment("f-2", "report.pdf"), Attachment("f-3", "data.csv")],
    )

    files = await store.list_files(test_user.id, session_id)
    assert [f.file_name for f in files] == ["report.pdf", "data.csv"]
    assert files[0].file_id == "f-1"

    session = await store.get_session(test_user.id, session_id)
    assert session.completion_mode == AssistantBound("asst-1")


@pytest.mark.asyncio
async def test_upsert_and_remove_file(store: SessionStore, test_user):
    session_id = await store.create_empty_session(test_user.id)

    await store.upsert_file(test_user.id, session_id, Attachment("f-1", "a.txt"), AssistantBound("asst-1"))
    await store.upsert_file(test_user.id, session_id, Attachment("f-2", "a.txt"), AssistantBound("asst-2"))

    files = await store.list_files(test_user.id, session_id)
    assert files == [Attachment("f-2", "a.txt")]

    await store.remove_file(test_user.id, session_id, "a.txt", Freeform())
    assert await store.list_files(test_user.id, session_id) == []
    session = await store.get_session(test_user.id, session_id)
    assert session.completion_mode == Freeform()
    assert session.assistant_id is None

    with pytest.raises(NotFound):
        await store.remove_file(test_user.id, session_id, "a.txt", Freeform())


@pytest.mark.asyncio
async def test_get_all_sessions_in_creation_order(store: SessionStore, test_user, other_user):
    first = await store.create_session(test_user.id, Exchange("first", "1"))
    second = await store.create_session(test_user.id, Exchange("second", "2"))
    await store.create_session(other_user.id, Exchange("not mine", "x"))
    await store.append_exchange(test_user.id, first, Exchange("again", "3"))

    sessions = await store.get_all_sessions(test_user.id)

    assert [s.session_id for s in sessions] == [first, second]
    assert [e.prompt for e in sessions[0].exchanges] == ["first", "again"]


@pytest.mark.asyncio
async def test_get_all_sessions_breaks_timestamp_ties_by_id(store: SessionStore, db_session: AsyncSession, test_user):
    await store.create_session(test_user.id, Exchange("later id", "1"), session_id="session-b")
    await store.create_session(test_user.id, Exchange("earlier id", "2"), session_id="session-a")
    same_moment = datetime(2026, 1, 1, 12, 0, 0)
    await db_session.execute(
        update(ChatSession).where(ChatSession.user_id == test_user.id).values(created_at=same_moment)
    )
    await db_session.commit()

    for _ in range(3):
        sessions = await store.get_all_sessions(test_user.id)
        assert [s.session_id for s in sessions] == ["session-a", "session-b"]


@pytest.mark.asyncio
async def test_delete_all_sessions(store: SessionStore, test_user, other_user):
    session_id = await store.create_session(test_user.id, Exchange("a", "b"))
    await store.create_session(test_user.id, Exchange("c", "d"))
    kept = await store.create_session(other_user.id, Exchange("e", "f"))

    assert await store.delete_all_sessions(test_user.id) == 2
    assert await store.get_all_sessions(test_user.id) == []
    with pytest.raises(NotFound):
        await store.get_raw_turns(test_user.id, session_id)
    assert len(await store.get_exchanges(other_user.id, kept)) == 1

    with pytest.raises(NotFound):
        await store.delete_all_sessions(test_user.id)


# ============ Concurrency ============

@pytest_asyncio.fixture
async def file_session_maker(tmp_path):
    """Separate connections per session, unlike the shared in-memory engine"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrent.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_appends_to_different_sessions(file_session_maker):
    owners = {}
    async with file_session_maker() as db:
        for tag in ("alice", "bob"):
            user = await create_user(db, email=f"{tag}@example.com", hashed_password=None)
            await db.commit()
            session_id = await SessionStore(db).create_session(user.id, Exchange(f"{tag}-q0", f"{tag}-a0"))
            owners[tag] = (user.id, session_id)

    async def append_many(tag: str):
        user_id, session_id = owners[tag]
        async with file_session_maker() as db:
            store = SessionStore(db)
            for i in range(1, 6):
                await store.append_exchange(user_id, session_id, Exchange(f"{tag}-q{i}", f"{tag}-a{i}"))

    await asyncio.gather(append_many("alice"), append_many("bob"))

    async with file_session_maker() as db:
        store = SessionStore(db)
        for tag, (user_id, session_id) in owners.items():
            turns = await store.get_raw_turns(user_id, session_id)
            assert len(turns) == 12
            assert [t["content"] for t in turns[::2]] == [f"{tag}-q{i}" for i in range(6)]
            assert [t["content"] for t in turns[1::2]] == [f"{tag}-a{i}" for i in range(6)]
            assert len(await store.get_exchanges(user_id, session_id)) == 6
