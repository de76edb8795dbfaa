"""
持久化网关测试
"""

import pytest

from genai_chat_lib import (
    AgentConfig,
    ChatConfig,
    ChatMessage,
    ChatType,
    PersistenceError,
    RedisStore,
    UserContext,
)


@pytest.mark.asyncio
async def test_history_round_trip_preserves_order(store):
    messages = [
        ChatMessage(role="user", content="Hi there!"),
        ChatMessage(role="model", content="Hello!"),
        ChatMessage(role="tool", content='{"tool_response": {}}'),
        ChatMessage(role="model", content="完成"),
    ]
    for message in messages:
        await store.save_chat_message("c1", message)

    history = await store.get_chat_history("c1")
    assert [(m.role, m.content) for m in history] == [(m.role, m.content) for m in messages]


@pytest.mark.asyncio
async def test_history_of_unknown_chat_is_empty(store):
    assert await store.get_chat_history("never-used") == []


@pytest.mark.asyncio
async def test_key_layout(store, fake_redis):
    await store.create_agent(AgentConfig(id="a1"))
    await store.create_chat(ChatConfig(id="c1", agent_id="a1", user_id="u1"))
    await store.update_user_context(UserContext(id="u1", context="ctx"))
    await store.save_chat_message("c1", ChatMessage(role="user", content="hi"))

    assert set(fake_redis.values) == {"agent:a1", "chat:c1", "user:u1"}
    assert fake_redis.sets["agents:set"] == {b"a1"}
    assert fake_redis.sets["chats:set"] == {b"c1"}
    assert fake_redis.sets["users:set"] == {b"u1"}
    assert list(fake_redis.lists) == ["chat_history:c1"]


@pytest.mark.asyncio
async def test_agent_crud(store):
    await store.create_agent(AgentConfig(id="a1", persona="p"))
    await store.create_agent(AgentConfig(id="a2"))

    assert (await store.get_agent("a1")).persona == "p"
    assert await store.get_agent("missing") is None
    assert [a.id for a in await store.list_agents()] == ["a1", "a2"]

    await store.remove_agent("a1")
    assert await store.get_agent("a1") is None
    assert [a.id for a in await store.list_agents()] == ["a2"]


@pytest.mark.asyncio
async def test_user_context(store):
    await store.update_user_context(UserContext(id="u1", context="喜欢猫"))
    assert (await store.find_user_by_id("u1")).context == "喜欢猫"

    await store.remove_user("u1")
    assert await store.find_user_by_id("u1") is None


@pytest.mark.asyncio
async def test_list_chats_by_user_filters(store):
    await store.create_chat(ChatConfig(id="c1", agent_id="a1", user_id="u1"))
    await store.create_chat(ChatConfig(id="c2", agent_id="a2", user_id="u1"))
    await store.create_chat(
        ChatConfig(id="c3", agent_id="a1", user_id="u1", type=ChatType.BACKGROUND)
    )
    await store.create_chat(ChatConfig(id="c4", agent_id="a1", user_id="u2"))

    assert [c.id for c in await store.list_chats()] == ["c1", "c2", "c3", "c4"]
    assert [c.id for c in await store.list_chats_by_user("u1")] == ["c1", "c2"]
    assert [c.id for c in await store.list_chats_by_user("u1", agent_id="a1")] == ["c1"]
    assert [
        c.id for c in await store.list_chats_by_user("u1", include_background=True)
    ] == ["c1", "c2", "c3"]


@pytest.mark.asyncio
async def test_remove_chat_deletes_history(store, fake_redis):
    await store.create_chat(ChatConfig(id="c1", user_id="u1"))
    await store.save_chat_message("c1", ChatMessage(role="user", content="hi"))

    await store.remove_chat("c1")

    assert await store.get_chat("c1") is None
    assert await store.get_chat_history("c1") == []
    assert "chat_history:c1" not in fake_redis.lists


@pytest.mark.asyncio
async def test_stale_index_entry_is_skipped(store, fake_redis):
    await store.create_agent(AgentConfig(id="a1"))
    fake_redis.sets["agents:set"].add(b"ghost")
    assert [a.id for a in await store.list_agents()] == ["a1"]


@pytest.mark.asyncio
async def test_write_failure_raises_persistence_error(store, fake_redis):
    fake_redis.fail_next_write = True
    with pytest.raises(PersistenceError) as exc_info:
        await store.save_chat_message("c1", ChatMessage(role="user", content="hi"))
    assert "c1" in str(exc_info.value)
    assert fake_redis.lists == {}


@pytest.mark.asyncio
async def test_read_failure_raises_persistence_error(store, fake_redis):
    fake_redis.fail_reads = True
    with pytest.raises(PersistenceError):
        await store.get_chat_history("c1")
    with pytest.raises(PersistenceError):
        await store.get_agent("a1")


@pytest.mark.asyncio
async def test_corrupt_record_raises_persistence_error(store, fake_redis):
    fake_redis.values["agent:bad"] = b"{not json"
    with pytest.raises(PersistenceError):
        await store.get_agent("bad")


@pytest.mark.asyncio
async def test_disabled_store_noops():
    store = RedisStore(disabled=True)

    await store.create_agent(AgentConfig(id="a1"))
    await store.save_chat_message("c1", ChatMessage(role="user", content="hi"))

    assert await store.get_agent("a1") is None
    assert await store.list_agents() == []
    assert await store.get_chat_history("c1") == []


def test_store_requires_client_unless_disabled():
    with pytest.raises(ValueError):
        RedisStore()


@pytest.mark.asyncio
async def test_chat_id_cannot_collide_with_history_list(store, fake_redis):
    """会话配置键与消息列表键不在同一命名空间"""
    await store.create_chat(ChatConfig(id="history:c1", user_id="u1"))
    await store.save_chat_message("c1", ChatMessage(role="user", content="hi"))

    assert not set(fake_redis.values) & set(fake_redis.lists)
    assert (await store.get_chat("history:c1")).user_id == "u1"
    assert [m.content for m in await store.get_chat_history("c1")] == ["hi"]
