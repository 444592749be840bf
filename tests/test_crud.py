import asyncio
import uuid

import pytest

from chat_api import crud
from chat_api.database import DatabaseConnector
from chat_api.errors import ConflictError


async def make_user(connector, email="bob@example.com"):
    async with connector.session() as db:
        user = await crud.create_user(db, email, "not-a-real-hash", "Bob")
    return user.id


async def test_append_exchange_creates_then_extends_conversation(connector):
    user_id = await make_user(connector)

    first = await crud.append_exchange(connector, user_id, "hello", "hi there")
    second = await crud.append_exchange(connector, user_id, "how are you?", "fine")

    assert first.persisted and second.persisted
    assert await crud.load_history(connector, user_id) == [
        {"role": "user", "content": "hello"},
        {"role": "ai", "content": "hi there"},
        {"role": "user", "content": "how are you?"},
        {"role": "ai", "content": "fine"},
    ]
    async with connector.session() as db:
        conversation = await crud.get_conversation_for_user(db, user_id)
        assert conversation is not None


async def test_load_history_is_idempotent(connector):
    user_id = await make_user(connector)
    await crud.append_exchange(connector, user_id, "q", "a")

    first = await crud.load_history(connector, user_id)
    second = await crud.load_history(connector, user_id)

    assert first == second


async def test_load_history_without_conversation_is_empty(connector):
    await connector.acquire()

    assert await crud.load_history(connector, uuid.uuid4()) == []


async def test_persistence_failure_is_reported_not_raised(database_url):
    def refuse(url, **kwargs):
        raise OSError("connection refused")

    connector = DatabaseConnector(database_url, engine_factory=refuse)

    result = await crud.append_exchange(connector, uuid.uuid4(), "hello", "hi")

    assert result.persisted is False
    assert result.error
    assert await crud.load_history(connector, uuid.uuid4()) == []


async def test_persistence_timeout_is_reported(connector, monkeypatch):
    user_id = await make_user(connector)

    async def slow(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(crud, "_append_exchange", slow)

    result = await crud.append_exchange(connector, user_id, "hello", "hi", timeout=0.05)

    assert result == crud.PersistResult.failed("timeout")
    assert await crud.load_history(connector, user_id) == []


async def test_duplicate_email_at_store_level_is_a_conflict(connector):
    await make_user(connector, "carol@example.com")

    with pytest.raises(ConflictError):
        await make_user(connector, "Carol@Example.com")
