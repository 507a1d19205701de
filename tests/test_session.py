"""
Tests for the session data model and session store.
"""

import asyncio
import json
import time

import pytest

from pico_agent.errors import CorrelationError, PersistenceError, SessionDataError
from pico_agent.session import Message, Role, Session, SessionStore, ToolCall, sanitize_key


def test_message_constructors():
    """Test the role-specific message constructors."""
    assert Message.user("Hello").role == Role.USER
    assert Message.assistant("Hi there").content == "Hi there"
    assert Message.system("You are helpful").role == Role.SYSTEM

    tool_msg = Message.tool_result("call_1", "Success")
    assert tool_msg.role == Role.TOOL
    assert tool_msg.tool_call_id == "call_1"
    assert tool_msg.is_tool_result()

    call = ToolCall(id="call_1", name="search", arguments={"q": "rust"})
    assistant = Message.assistant_with_tools("", [call])
    assert assistant.has_tool_calls()
    assert assistant.content == ""


def test_session_rejects_uncorrelated_tool_result():
    """A tool result must answer a call made earlier in the session."""
    session = Session(key="chat:1")
    session.add_message(Message.user("hi"))

    with pytest.raises(CorrelationError):
        session.add_message(Message.tool_result("call_missing", "data"))

    session.add_message(Message.assistant_with_tools("", [ToolCall(id="call_1", name="search")]))
    session.add_message(Message.tool_result("call_1", "data"))
    assert len(session) == 3


def test_session_clone_is_independent():
    """Mutating a clone leaves the original untouched."""
    session = Session(key="a")
    session.add_message(Message.user("one"))

    copy = session.clone()
    copy.add_message(Message.user("two"))

    assert len(session) == 1
    assert len(copy) == 2


def test_message_from_dict_rejects_bad_role():
    """Unknown roles are a data error, not silently accepted."""
    with pytest.raises(SessionDataError):
        Message.from_dict({"role": "robot", "content": "beep"})

    with pytest.raises(SessionDataError):
        Message.from_dict({"content": "no role"})


def test_message_to_dict_omits_absent_fields():
    """Plain messages serialize without tool fields."""
    assert Message.user("hi").to_dict() == {"role": "user", "content": "hi"}


def test_sanitize_key():
    """Test filename sanitization of session keys."""
    assert sanitize_key("simple") == "simple"
    assert sanitize_key("telegram:chat123") == "telegram_chat123"
    assert sanitize_key("path/to/session") == "path_to_session"
    assert sanitize_key('a:b/c\\d*e?f"g<h>i|j') == "a_b_c_d_e_f_g_h_i_j"


@pytest.mark.asyncio
async def test_get_or_create_new_session(memory_store):
    """Test creating and retrieving a session."""
    session = await memory_store.get_or_create("test-session")

    assert session.key == "test-session"
    assert session.is_empty()


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(disk_store):
    """Repeated get_or_create returns equal sessions and writes nothing."""
    first = await disk_store.get_or_create("same")
    second = await disk_store.get_or_create("same")

    assert first.key == second.key
    assert first.messages == second.messages
    assert await disk_store.cache_size() == 1
    assert list(disk_store.storage_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_returned_sessions_are_copies(memory_store):
    """Changes are invisible to the store until saved."""
    session = await memory_store.get_or_create("k")
    session.add_message(Message.user("unsaved"))

    reloaded = await memory_store.get_or_create("k")
    assert reloaded.is_empty()

    await memory_store.save(session)
    reloaded = await memory_store.get_or_create("k")
    assert len(reloaded) == 1


@pytest.mark.asyncio
async def test_get_nonexistent(memory_store):
    """get never creates."""
    assert await memory_store.get("nonexistent") is None
    assert not await memory_store.exists("nonexistent")


@pytest.mark.asyncio
async def test_delete(memory_store):
    """Test deleting a session."""
    await memory_store.get_or_create("test-session")
    assert await memory_store.exists("test-session")

    await memory_store.delete("test-session")
    assert not await memory_store.exists("test-session")


@pytest.mark.asyncio
async def test_delete_missing_is_not_an_error(disk_store):
    """Deleting a session that was never saved succeeds."""
    await disk_store.delete("never-saved")


@pytest.mark.asyncio
async def test_list_memory(memory_store):
    """Test listing cached sessions."""
    for name in ["session-c", "session-a", "session-b"]:
        await memory_store.get_or_create(name)

    assert await memory_store.list() == ["session-a", "session-b", "session-c"]


@pytest.mark.asyncio
async def test_clear_cache(memory_store):
    """Test clearing the cache."""
    await memory_store.get_or_create("session1")
    await memory_store.get_or_create("session2")
    assert await memory_store.cache_size() == 2

    await memory_store.clear_cache()
    assert await memory_store.cache_size() == 0


@pytest.mark.asyncio
async def test_file_persistence_round_trip(tmp_path):
    """Saved sessions reload identically from a fresh store."""
    storage = tmp_path / "sessions"
    store = SessionStore(storage)

    session = await store.get_or_create("all-types")
    session.add_message(Message.system("You are a helpful assistant"))
    session.add_message(Message.user("Search for rust programming"))
    session.add_message(Message.assistant_with_tools(
        "Let me search for that.",
        [ToolCall(id="call_1", name="search", arguments={"q": "rust"})],
    ))
    session.add_message(Message.tool_result("call_1", "Found 100 results"))
    session.add_message(Message.assistant("I found 100 results about Rust. ✓"))
    await store.save(session)

    fresh = SessionStore(storage)
    loaded = await fresh.get_or_create("all-types")

    assert [m.role for m in loaded.messages] == [
        Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT,
    ]
    assert [m.content for m in loaded.messages] == [m.content for m in session.messages]
    assert loaded.messages[2].tool_calls == [ToolCall(id="call_1", name="search", arguments={"q": "rust"})]
    assert loaded.messages[3].tool_call_id == "call_1"


@pytest.mark.asyncio
async def test_persisted_document_format(disk_store):
    """The file holds the key and role/content/tool fields."""
    session = await disk_store.get_or_create("chat:1")
    session.add_message(Message.user("hello"))
    await disk_store.save(session)

    path = disk_store.storage_dir / "chat_1.json"
    data = json.loads(path.read_text(encoding="utf-8"))

    assert data["key"] == "chat:1"
    assert data["messages"] == [{"role": "user", "content": "hello"}]


@pytest.mark.asyncio
async def test_illegal_key_characters_use_sanitized_file(disk_store):
    """Keys with illegal filename characters round-trip through save/exists/delete."""
    key = 'web:user/42?x="y"'
    session = await disk_store.get_or_create(key)
    session.add_message(Message.user("hi"))
    await disk_store.save(session)

    path = disk_store.storage_dir / f"{sanitize_key(key)}.json"
    assert path.exists()

    await disk_store.clear_cache()
    assert await disk_store.exists(key)
    loaded = await disk_store.get(key)
    assert loaded is not None and loaded.key == key

    await disk_store.delete(key)
    assert not path.exists()
    assert not await disk_store.exists(key)


@pytest.mark.asyncio
async def test_list_merges_disk_and_cache(disk_store):
    """list reports persisted keys after the cache is cleared."""
    for name in ["alpha", "beta", "gamma"]:
        session = await disk_store.get_or_create(name)
        await disk_store.save(session)
    await disk_store.get_or_create("only-cached")
    await disk_store.clear_cache()
    await disk_store.get_or_create("delta")

    assert await disk_store.list() == ["alpha", "beta", "delta", "gamma"]


@pytest.mark.asyncio
async def test_corrupt_file_is_a_data_error(disk_store):
    """A corrupt document surfaces as SessionDataError."""
    (disk_store.storage_dir / "broken.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(SessionDataError):
        await disk_store.get_or_create("broken")


@pytest.mark.asyncio
async def test_failed_write_keeps_cache_at_last_save(disk_store, monkeypatch):
    """A failed disk write raises PersistenceError and leaves the cache unchanged."""
    session = await disk_store.get_or_create("k")
    session.add_message(Message.user("first"))
    await disk_store.save(session)

    def fail(*args, **kwargs):
        raise PersistenceError("disk full")

    monkeypatch.setattr(disk_store, "_write_file", fail)
    session.add_message(Message.user("second"))

    with pytest.raises(PersistenceError):
        await disk_store.save(session)

    cached = await disk_store.get("k")
    assert [m.content for m in cached.messages] == ["first"]


@pytest.mark.asyncio
async def test_concurrent_access_different_keys(memory_store):
    """Concurrent saves on different keys do not interfere."""

    async def worker(i: int) -> None:
        session = await memory_store.get_or_create(f"key-{i}")
        session.add_message(Message.user(f"Message {i}"))
        await memory_store.save(session)

    await asyncio.gather(*(worker(i) for i in range(10)))

    for i in range(10):
        session = await memory_store.get(f"key-{i}")
        assert [m.content for m in session.messages] == [f"Message {i}"]



@pytest.mark.asyncio
async def test_cancelled_save_keeps_cache_in_step_with_disk(disk_store, monkeypatch):
    """A save cancelled mid-write leaves cache and file holding the same messages."""
    write_file = disk_store._write_file

    def slow_write(path, session):
        time.sleep(0.3)
        write_file(path, session)

    monkeypatch.setattr(disk_store, "_write_file", slow_write)
    session = await disk_store.get_or_create("k")
    session.add_message(Message.user("hello"))

    task = asyncio.create_task(disk_store.save(session))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    cached = await disk_store.get("k")
    on_disk = json.loads((disk_store.storage_dir / "k.json").read_text(encoding="utf-8"))
    assert len(cached) == 1
    assert len(on_disk["messages"]) == 1
