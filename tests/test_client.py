"""
推理API客户端测试（httpx.MockTransport）
"""

import json

import httpx
import pytest

from genai_chat_lib import GeminiAPIClient
from genai_chat_lib.schemas import (
    WireContent,
    WireGenerationConfig,
    WirePart,
    WireRequestConfig,
)

BASE_URL = "https://llm.test/v1beta"


def _candidate_payload(*texts):
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": t} for t in texts]}}
        ]
    }


def _client(handler) -> GeminiAPIClient:
    return GeminiAPIClient(
        api_key="test-key",
        base_url=BASE_URL,
        httpx_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _user(text):
    return WireContent(role="user", parts=[WirePart(text=text)])


@pytest.mark.asyncio
async def test_generate_content_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_candidate_payload("hi"))

    api = _client(handler)
    config = WireRequestConfig(generation_config=WireGenerationConfig(temperature=0.5))

    response = await api.generate_content("gemini-test", [_user("hello")], config)

    assert seen["url"] == f"{BASE_URL}/models/gemini-test:generateContent"
    assert seen["key"] == "test-key"
    assert seen["body"] == {
        "contents": [{"role": "user", "parts": [{"text": "hello"}]}],
        "generationConfig": {"temperature": 0.5},
    }
    assert response.candidates[0].content.parts[0].text == "hi"
    await api.aclose()


@pytest.mark.asyncio
async def test_model_path_prefix_is_not_doubled():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(200, json=_candidate_payload("ok"))

    api = _client(handler)
    await api.generate_content("models/gemini-test", [_user("x")])
    assert seen["path"] == "/v1beta/models/gemini-test:generateContent"


@pytest.mark.asyncio
async def test_http_error_is_reraised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "quota exceeded"}})

    api = _client(handler)
    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await api.generate_content("m", [_user("x")])
    assert exc_info.value.response.status_code == 429


@pytest.mark.asyncio
async def test_stream_generate_content_parses_sse():
    seen = {}
    body = (
        f"data: {json.dumps(_candidate_payload('Hel'))}\n\n"
        "data: {broken json\n\n"
        ": keep-alive comment\n\n"
        f"data: {json.dumps(_candidate_payload('lo'))}\n\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["alt"] = request.url.params.get("alt")
        return httpx.Response(
            200, content=body.encode("utf-8"), headers={"Content-Type": "text/event-stream"}
        )

    api = _client(handler)
    chunks = [chunk async for chunk in api.stream_generate_content("m", [_user("x")])]

    assert seen["path"] == "/v1beta/models/m:streamGenerateContent"
    assert seen["alt"] == "sse"
    assert [c.candidates[0].content.parts[0].text for c in chunks] == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_stream_http_error_is_reraised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "internal"}})

    api = _client(handler)
    with pytest.raises(httpx.HTTPStatusError):
        async for _ in api.stream_generate_content("m", [_user("x")]):
            pass


@pytest.mark.asyncio
async def test_embed_content():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embedding": {"values": [0.5, 0.25]}})

    api = _client(handler)
    values = await api.embed_content(
        "embed-model", WireContent(parts=[WirePart(text="hi")]), "RETRIEVAL_QUERY", 2
    )

    assert values == [0.5, 0.25]
    assert seen["path"] == "/v1beta/models/embed-model:embedContent"
    assert seen["body"] == {
        "model": "models/embed-model",
        "content": {"parts": [{"text": "hi"}]},
        "taskType": "RETRIEVAL_QUERY",
        "outputDimensionality": 2,
    }


# --- 多轮会话对象 ---


@pytest.mark.asyncio
async def test_chat_sends_history_and_records_turn():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_candidate_payload(f"reply {len(bodies)}"))

    api = _client(handler)
    chat = api.create_chat("m", history=[_user("earlier"), WireContent(role="model", parts=[WirePart(text="ok")])])

    await chat.send_message([WirePart(text="first")])
    await chat.send_message([WirePart(text="second")])

    assert [c["parts"][0]["text"] for c in bodies[1]["contents"]] == [
        "earlier",
        "ok",
        "first",
        "reply 1",
        "second",
    ]
    assert len(chat.history) == 6


@pytest.mark.asyncio
async def test_chat_stream_merges_text_into_one_turn():
    body = "".join(
        f"data: {json.dumps(_candidate_payload(t))}\n\n" for t in ("a", "b", "c")
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body.encode("utf-8"))

    api = _client(handler)
    chat = api.create_chat("m")
    chunks = [c async for c in chat.send_message_stream([WirePart(text="go")])]

    assert len(chunks) == 3
    assert [c.role for c in chat.history] == ["user", "model"]
    assert chat.history[1].parts[0].text == "abc"


@pytest.mark.asyncio
async def test_chat_stream_closed_early_records_nothing():
    body = "".join(
        f"data: {json.dumps(_candidate_payload(t))}\n\n" for t in ("a", "b")
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body.encode("utf-8"))

    api = _client(handler)
    chat = api.create_chat("m")
    stream = chat.send_message_stream([WirePart(text="go")])
    await stream.__anext__()
    await stream.aclose()

    assert chat.history == []
