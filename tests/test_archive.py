"""Tests for the archive tier, run against both backends."""

from datetime import datetime, timedelta

import pytest

from mnemo.core.errors import ValidationError
from mnemo.core.types import Role, Turn, TurnFlags
from mnemo.memory.archive import InMemoryArchive
from mnemo.memory.sqlite_archive import SQLiteArchive

BASE_TIME = datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture(params=["memory", "sqlite"])
async def archive(request, tmp_path):
    """Create an archive for each backend."""
    if request.param == "memory":
        yield InMemoryArchive()
        return

    store = SQLiteArchive(tmp_path / "archive.db")
    await store.connect()
    yield store
    await store.close()


def make_turn(
    text: str,
    importance: float = 0.5,
    offset: int = 0,
    user_id: str = "user-1",
    conversation_id: str = "conv-1",
) -> Turn:
    turn = Turn.create(user_id, conversation_id, text, created_at=BASE_TIME + timedelta(minutes=offset))
    turn.importance = importance
    return turn


@pytest.mark.asyncio
async def test_search_ranks_by_importance_then_recency(archive):
    """Matches come back by importance, newest first among equals."""
    old_low = make_turn("deploy the api on friday", importance=0.3, offset=0)
    high = make_turn("deploy approved by the team", importance=0.9, offset=1)
    new_low = make_turn("deploy rollback plan", importance=0.3, offset=2)
    unrelated = make_turn("lunch at noon", importance=1.0, offset=3)
    for turn in (old_low, high, new_low, unrelated):
        await archive.append(turn)

    results = await archive.search("user-1", "deploy")

    assert [t.id for t in results] == [high.id, new_low.id, old_low.id]


@pytest.mark.asyncio
async def test_search_respects_max_results(archive):
    """At most max_results turns are returned."""
    for i in range(4):
        await archive.append(make_turn(f"release note {i}", offset=i))

    assert len(await archive.search("user-1", "release", max_results=2)) == 2
    assert await archive.search("user-1", "release", max_results=0) == []


@pytest.mark.asyncio
async def test_search_is_per_user(archive):
    """Users never see each other's turns."""
    await archive.append(make_turn("secret roadmap", user_id="user-1"))

    assert await archive.search("user-2", "roadmap") == []


@pytest.mark.asyncio
async def test_search_with_special_characters(archive):
    """Operators and quotes in the query are matched literally."""
    await archive.append(make_turn("deploy checklist"))

    results = await archive.search("user-1", 'deploy AND "NEAR(')

    assert len(results) == 1


@pytest.mark.asyncio
async def test_get_round_trip(archive):
    """get returns the stored turn with its metadata."""
    turn = make_turn("Should we use Redis?", importance=0.75)
    turn.role = Role.ASSISTANT
    turn.flags = TurnFlags(is_question=True)
    turn.extracted_entities = ["redis"]
    await archive.append(turn)

    stored = await archive.get(turn.id)

    assert stored is not None
    assert stored.text == "Should we use Redis?"
    assert stored.role == Role.ASSISTANT
    assert stored.importance == 0.75
    assert stored.created_at == turn.created_at
    assert stored.flags.is_question
    assert stored.extracted_entities == ["redis"]
    assert await archive.get("missing") is None


@pytest.mark.asyncio
async def test_delete_checks_owner(archive):
    """A turn can only be deleted by its owner."""
    turn = make_turn("to be forgotten")
    await archive.append(turn)

    assert not await archive.delete("user-2", turn.id)
    assert await archive.delete("user-1", turn.id)
    assert await archive.get(turn.id) is None
    assert await archive.search("user-1", "forgotten") == []


@pytest.mark.asyncio
async def test_delete_user(archive):
    """delete_user removes every turn of that user only."""
    await archive.append(make_turn("one", offset=0))
    await archive.append(make_turn("two", offset=1, conversation_id="conv-2"))
    await archive.append(make_turn("other", user_id="user-2"))

    assert await archive.delete_user("user-1") == 2
    assert await archive.conversation("user-1", "conv-1") == []
    assert len(await archive.conversation("user-2", "conv-1")) == 1


@pytest.mark.asyncio
async def test_conversation_history(archive):
    """conversation returns the latest turns in chronological order."""
    for i in range(5):
        await archive.append(make_turn(f"turn {i}", offset=i))
    await archive.append(make_turn("elsewhere", conversation_id="conv-2"))

    history = await archive.conversation("user-1", "conv-1", limit=3)

    assert [t.text for t in history] == ["turn 2", "turn 3", "turn 4"]


@pytest.fixture
async def sqlite_archive(tmp_path):
    """Create a temporary SQLite archive."""
    store = SQLiteArchive(tmp_path / "fts.db")
    await store.connect()
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_fts_table_exists(sqlite_archive):
    """Verify FTS5 virtual table was created."""
    async with sqlite_archive.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='turns_fts'"
    ) as cursor:
        result = await cursor.fetchone()
        assert result is not None, "turns_fts table does not exist"


@pytest.mark.asyncio
async def test_fts_triggers_exist(sqlite_archive):
    """Verify FTS sync triggers were created."""
    async with sqlite_archive.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='trigger' AND name IN ('turns_ai', 'turns_ad')"
    ) as cursor:
        results = await cursor.fetchall()
        assert len(results) == 2, f"Expected 2 triggers, found {len(results)}"


@pytest.mark.asyncio
async def test_fts_stemming(sqlite_archive):
    """Porter stemming matches inflected forms."""
    await sqlite_archive.append(make_turn("we are deploying tomorrow"))

    results = await sqlite_archive.search("user-1", "deployed")

    assert len(results) == 1


@pytest.mark.asyncio
async def test_conn_requires_connect(tmp_path):
    """Using the archive before connect() is an error."""
    store = SQLiteArchive(tmp_path / "unused.db")
    with pytest.raises(RuntimeError):
        _ = store.conn


@pytest.mark.asyncio
async def test_reappend_replaces_turn(archive):
    """Appending a turn id twice keeps one copy, the latest one."""
    turn = make_turn("deploy the parser")
    await archive.append(turn)
    turn.importance = 0.9
    await archive.append(turn)

    results = await archive.search("user-1", "parser")
    assert [t.id for t in results] == [turn.id]
    assert results[0].importance == 0.9
    assert len(await archive.conversation("user-1", "conv-1")) == 1
    assert await archive.delete_user("user-1") == 1


@pytest.mark.asyncio
async def test_reads_validate_user_id(archive):
    with pytest.raises(ValidationError):
        await archive.search("user-1\n", "parser")
    with pytest.raises(ValidationError):
        await archive.conversation("bad user", "conv-1")
