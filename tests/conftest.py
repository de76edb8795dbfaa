"""
测试公共设施

- FakeRedis: 只实现存储用到的 redis 命令，可强制下一次写入/读取失败
- FakeAPIClient: 按脚本返回响应的推理API替身，记录调用次数与请求内容
"""

import asyncio
import os
import sys
from typing import Any, Dict, List, Optional, Set

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from genai_chat_lib import GenAIClient, RedisStore
from genai_chat_lib.client import GeminiChat
from genai_chat_lib.schemas import (
    WireCandidate,
    WireContent,
    WireFunctionCall,
    WireGenerateResponse,
    WirePart,
)


class FakeRedis:
    """内存中的 redis.asyncio 替身，值以 bytes 保存（与 decode_responses=False 一致）"""

    def __init__(self) -> None:
        self.values: Dict[str, bytes] = {}
        self.sets: Dict[str, Set[bytes]] = {}
        self.lists: Dict[str, List[bytes]] = {}
        self.fail_next_write = False
        self.fail_reads = False
        self.write_count = 0

    @staticmethod
    def _encode(value: Any) -> bytes:
        return value.encode("utf-8") if isinstance(value, str) else value

    def _check_write(self) -> None:
        if self.fail_next_write:
            self.fail_next_write = False
            raise RedisConnectionError("forced write failure")
        self.write_count += 1

    def _check_read(self) -> None:
        if self.fail_reads:
            raise RedisConnectionError("forced read failure")

    async def set(self, key: str, value: Any) -> bool:
        self._check_write()
        self.values[key] = self._encode(value)
        return True

    async def get(self, key: str) -> Optional[bytes]:
        self._check_read()
        return self.values.get(key)

    async def delete(self, *keys: str) -> int:
        self._check_write()
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.lists.pop(key, None) is not None)
        return removed

    async def sadd(self, key: str, *members: Any) -> int:
        self._check_write()
        target = self.sets.setdefault(key, set())
        before = len(target)
        target.update(self._encode(m) for m in members)
        return len(target) - before

    async def srem(self, key: str, *members: Any) -> int:
        self._check_write()
        target = self.sets.get(key, set())
        before = len(target)
        for member in members:
            target.discard(self._encode(member))
        return before - len(target)

    async def smembers(self, key: str) -> Set[bytes]:
        self._check_read()
        return set(self.sets.get(key, set()))

    async def rpush(self, key: str, *values: Any) -> int:
        self._check_write()
        target = self.lists.setdefault(key, [])
        target.extend(self._encode(v) for v in values)
        return len(target)

    async def lrange(self, key: str, start: int, end: int) -> List[bytes]:
        self._check_read()
        items = self.lists.get(key, [])
        if end == -1:
            return list(items[start:])
        return list(items[start : end + 1])

    async def aclose(self) -> None:
        pass


def text_response(*texts: str) -> WireGenerateResponse:
    """由若干文本片段组成的响应"""
    return WireGenerateResponse(
        candidates=[
            WireCandidate(
                content=WireContent(role="model", parts=[WirePart(text=t) for t in texts])
            )
        ]
    )


def function_call_response(name: str, args: Dict[str, Any]) -> WireGenerateResponse:
    """只包含一个函数调用的响应"""
    return WireGenerateResponse(
        candidates=[
            WireCandidate(
                content=WireContent(
                    role="model",
                    parts=[WirePart(function_call=WireFunctionCall(name=name, args=args))],
                )
            )
        ]
    )


class FakeAPIClient:
    """
    推理API替身

    responses / stream_scripts 中的元素按顺序消费；元素为异常时抛出。
    responses 中的元素为可调用对象时，调用它并使用其返回值。
    stream_gate 设置后，流式脚本中的 None 元素会在此等待。
    """

    def __init__(self) -> None:
        self.responses: List[Any] = []
        self.stream_scripts: List[List[Any]] = []
        self.embeddings: List[Any] = []
        self.stream_gate: Optional[asyncio.Event] = None
        self.generate_calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Dict[str, Any]] = []
        self.embed_calls: List[Dict[str, Any]] = []
        self.stream_closed = False

    @property
    def call_count(self) -> int:
        return len(self.generate_calls) + len(self.stream_calls)

    async def generate_content(self, model, contents, config=None):
        self.generate_calls.append({"model": model, "contents": contents, "config": config})
        result = self.responses.pop(0)
        if callable(result):
            result = result()
        if isinstance(result, Exception):
            raise result
        return result

    async def stream_generate_content(self, model, contents, config=None):
        self.stream_calls.append({"model": model, "contents": contents, "config": config})
        script = self.stream_scripts.pop(0)
        try:
            for item in script:
                if item is None:
                    await self.stream_gate.wait()
                    continue
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.stream_closed = True

    async def embed_content(self, model, content, task_type=None, output_dimensionality=None):
        self.embed_calls.append(
            {
                "model": model,
                "content": content,
                "task_type": task_type,
                "output_dimensionality": output_dimensionality,
            }
        )
        result = self.embeddings.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def create_chat(self, model, config=None, history=None):
        return GeminiChat(self, model, config=config, history=history)

    async def aclose(self) -> None:
        pass


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> RedisStore:
    return RedisStore(fake_redis)


@pytest.fixture
def api() -> FakeAPIClient:
    return FakeAPIClient()


@pytest.fixture
def client(api: FakeAPIClient, store: RedisStore) -> GenAIClient:
    return GenAIClient(api, store, default_model="test-model", default_embedding_model="test-embed")
