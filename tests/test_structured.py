"""
结构化输出测试
"""

from typing import List, Optional

import pytest
from pydantic import BaseModel

from conftest import text_response
from genai_chat_lib import (
    AgentConfig,
    ChatConfig,
    EmptyResponseError,
    Prompt,
    StructuredAgent,
    StructuredOutputError,
    build_schema_from_type,
    generate_structured,
    send_structured,
)


class Weather(BaseModel):
    city: str
    temp_c: float
    note: Optional[str] = None


@pytest.mark.asyncio
async def test_generate_structured_injects_schema_and_parses(client, api):
    agent = await client.new_agent(AgentConfig(id="a1"))
    api.responses.append(text_response('{"city": "Cairo", "temp_c": 12}'))

    result = await generate_structured(agent, "u1", Prompt(text="weather?"), Weather)

    assert result == Weather(city="Cairo", temp_c=12.0)
    generation = api.generate_calls[0]["config"].generation_config
    assert generation.response_mime_type == "application/json"
    assert generation.response_schema == build_schema_from_type(Weather).to_wire()
    # 默认配置中的温度保留
    assert generation.temperature == 0.01


@pytest.mark.asyncio
async def test_generate_structured_list_type(client, api):
    agent = await client.new_agent(AgentConfig(id="a1"))
    api.responses.append(text_response('["a", "b"]'))

    assert await generate_structured(agent, "", Prompt(text="list"), List[str]) == ["a", "b"]


@pytest.mark.asyncio
async def test_invalid_json_raises_structured_output_error(client, api):
    agent = await client.new_agent(AgentConfig(id="a1"))
    api.responses.append(text_response("not json at all"))

    with pytest.raises(StructuredOutputError):
        await generate_structured(agent, "", Prompt(text="weather?"), Weather)


@pytest.mark.asyncio
async def test_empty_text_raises_empty_response_error(client, api):
    agent = await client.new_agent(AgentConfig(id="a1"))
    api.responses.append(text_response(""))

    with pytest.raises(EmptyResponseError):
        await generate_structured(agent, "", Prompt(text="weather?"), Weather)


@pytest.mark.asyncio
async def test_send_structured_in_chat(client, api):
    agent = await client.new_agent(AgentConfig(id="a1"))
    chat = await agent.new_chat(ChatConfig(user_id="u1"))
    api.responses.append(text_response('{"city": "Oslo", "temp_c": -3}'))

    result = await send_structured(chat, Prompt(text="Oslo?"), Weather)

    assert result.temp_c == -3.0
    history = await chat.get_history()
    assert [m.role for m in history] == ["user", "model"]


@pytest.mark.asyncio
async def test_structured_agent(client, api, store):
    weather_agent = await StructuredAgent.create(
        client, "weather", "天气助手", "只返回 JSON", "weather-model", Weather
    )
    api.responses.append(text_response('{"city": "Cairo", "temp_c": 30}'))

    result = await weather_agent.generate_content("开罗现在多少度？")

    assert result.city == "Cairo"
    call = api.generate_calls[0]
    assert call["model"] == "weather-model"
    assert call["config"].generation_config.response_schema["type"] == "OBJECT"

    # 持久化的配置中保存推导出的Schema
    stored = await store.get_agent("weather")
    schema_config = stored.default_generation_config.response_schema_config
    assert schema_config.wire_schema is not None

    await weather_agent.update_config(persona="新的天气助手")
    assert (await store.get_agent("weather")).persona == "新的天气助手"
