"""
GenAI 客户端测试
"""

import httpx
import pytest

from genai_chat_lib import (
    AgentConfig,
    AgentNotFoundError,
    ChatConfig,
    EmbedError,
    EmbedOptions,
    Tool,
)


@pytest.mark.asyncio
async def test_agent_lifecycle(client):
    await client.new_agent(AgentConfig(id="a1", persona="p1"))
    await client.new_agent(AgentConfig(id="a2"))

    agent = await client.get_agent("a1")
    assert agent.config.persona == "p1"
    assert agent.config.default_model == "test-model"
    assert [a.id for a in await client.list_agents()] == ["a1", "a2"]

    await client.remove_agent("a1")
    with pytest.raises(AgentNotFoundError) as exc_info:
        await client.get_agent("a1")
    assert exc_info.value.agent_id == "a1"


@pytest.mark.asyncio
async def test_agents_share_chat_locks(client):
    """同一客户端创建的智能体对同一会话使用同一把锁"""
    agent = await client.new_agent(AgentConfig(id="a1"))
    chat = await agent.new_chat(ChatConfig(user_id="u1"))
    again = await (await client.get_agent("a1")).get_chat(chat.id)
    assert chat.lock is again.lock


@pytest.mark.asyncio
async def test_update_user_context(client, store):
    await client.update_user_context("u1", "喜欢猫")
    assert (await store.find_user_by_id("u1")).context == "喜欢猫"


@pytest.mark.asyncio
async def test_embed_uses_defaults(client, api):
    api.embeddings.append([0.1, 0.2])

    vector = await client.embed("hello")

    assert vector == [0.1, 0.2]
    call = api.embed_calls[0]
    assert call["model"] == "test-embed"
    assert call["task_type"] == "RETRIEVAL_DOCUMENT"
    assert call["output_dimensionality"] is None
    assert call["content"].parts[0].text == "hello"


@pytest.mark.asyncio
async def test_embed_options(client, api):
    api.embeddings.append([1.0])

    await client.embed("q", EmbedOptions(model="m", dimensions=256, task_type="RETRIEVAL_QUERY"))

    call = api.embed_calls[0]
    assert (call["model"], call["task_type"], call["output_dimensionality"]) == (
        "m",
        "RETRIEVAL_QUERY",
        256,
    )


@pytest.mark.asyncio
async def test_embed_failure_is_wrapped(client, api):
    api.embeddings.append(httpx.ConnectError("down"))
    with pytest.raises(EmbedError):
        await client.embed("hello")


@pytest.mark.asyncio
async def test_empty_embedding_is_an_error(client, api):
    api.embeddings.append([])
    with pytest.raises(EmbedError):
        await client.embed("hello")


@pytest.mark.asyncio
async def test_embed_bulk(client, api):
    api.embeddings.extend([[1.0], [2.0], [3.0]])
    assert await client.embed_bulk(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]


@pytest.mark.asyncio
async def test_embed_bulk_error_names_index_and_truncated_text(client, api):
    long_text = "x" * 300
    api.embeddings.extend([[1.0], httpx.ConnectError("down")])

    with pytest.raises(EmbedError) as exc_info:
        await client.embed_bulk(["ok", long_text])

    message = str(exc_info.value)
    assert "第 1 条" in message
    assert "x" * 250 + "..." in message
    assert "x" * 251 not in message


def test_build_wire_tools(client):
    assert client.build_wire_tools([]) is None
    wire = client.build_wire_tool(Tool(name="t", description="d"))
    assert wire.to_wire() == {"functionDeclarations": [{"name": "t", "description": "d"}]}
