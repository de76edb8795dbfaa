"""
会话模块

该模块包含:
- Chat: 绑定一个用户与一个智能体的有状态会话
- ChatStream: 流式发送返回的异步迭代器
- ChatLockRegistry: 按会话 id 分配的互斥锁
- ChatPhase: 会话所处阶段

会话的持久状态完全在消息历史中；内存中的 GeminiChat 只是把历史重放给上游后得到的句柄。
消息历史必须严格按轮次顺序写入：用户消息在调用模型之前写入（失败即中止），
模型/工具消息在调用之后写入（失败只记录日志）。
"""

import asyncio
import json
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import BaseModel
from pydantic_core import PydanticSerializationError, to_jsonable_python

from .adapter import (
    generation_config_to_wire,
    prompt_to_wire_content,
    stream_events_from_response,
    wire_response_to_model_response,
)
from .client import GeminiAPIClient, GeminiChat
from .config_merger import resolve_generation_config
from .exceptions import (
    ContentConversionError,
    EmptyResponseError,
    GenerateError,
    PersistenceError,
    StreamError,
)
from .logger_config import (
    get_logger,
    log_chat_event,
    log_llm_interaction,
    log_tool_response,
)
from .schemas import (
    ChatConfig,
    ChatMessage,
    FunctionCall,
    FunctionCallDetectedEvent,
    GenerationConfig,
    ModelResponse,
    Prompt,
    StreamEndEvent,
    StreamErrorEvent,
    TextDeltaEvent,
    WireContent,
    WireGenerateResponse,
    WirePart,
    WireRequestConfig,
)
from .store import RedisStore

# 流式事件队列容量，消费者处理不过来时生产者在此等待
STREAM_QUEUE_SIZE = 64


class ChatPhase(str, Enum):
    """会话阶段，仅用于观察"""

    IDLE = "IDLE"
    SENDING = "SENDING"
    AWAITING_TOOL_RESULT = "AWAITING_TOOL_RESULT"


class ChatLockRegistry:
    """
    按会话 id 分配互斥锁

    同一进程内对同一会话的发送操作依次执行，不同会话互不影响。
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock

    def discard(self, chat_id: str) -> None:
        """会话删除后释放其锁（锁仍被持有时保留）"""
        lock = self._locks.get(chat_id)
        if lock is not None and not lock.locked():
            del self._locks[chat_id]


def _history_text(prompt: Prompt) -> str:
    """用户消息在历史中的文本：文本、结构化内容 JSON、附件引用"""
    lines: List[str] = []
    if prompt.text:
        lines.append(prompt.text)
    if prompt.structured_text:
        lines.append(json.dumps(prompt.structured_text, ensure_ascii=False))
    for file in prompt.files:
        lines.append(f"[file: {file.name or file.path or file.mime_type}]")
    return "\n".join(lines)


def _serialize_tool_result(result: Any) -> str:
    """工具结果序列化为缩进 JSON"""
    try:
        if isinstance(result, BaseModel):
            payload = result.model_dump(mode="json")
        else:
            payload = to_jsonable_python(result)
        return json.dumps(payload, indent=2, ensure_ascii=False)
    except (PydanticSerializationError, TypeError, ValueError) as e:
        raise ContentConversionError(
            "工具结果无法序列化为 JSON", operation="工具结果", original_error=e
        ) from e


def format_tool_response(function_call: FunctionCall, result: Any) -> str:
    """
    构造回传给模型的工具结果文本

    该文本同时作为 tool 消息写入历史，重放时与上游看到的内容一致。
    """
    result_json = _serialize_tool_result(result)
    name_json = json.dumps(function_call.name, ensure_ascii=False)
    return f'{{"tool_response": {{"name": {name_json}, "result": {result_json}}}}}'


def history_to_wire_contents(messages: List[ChatMessage]) -> List[WireContent]:
    """历史消息转换为上游对话轮次，tool 消息以 user 角色重放"""
    contents: List[WireContent] = []
    for message in messages:
        role = "model" if message.role == "model" else "user"
        contents.append(WireContent(role=role, parts=[WirePart(text=message.content)]))
    return contents


class Chat:
    """
    有状态会话

    通过 Agent.new_chat / Agent.get_chat 获得，不直接构造。
    """

    def __init__(
        self,
        config: ChatConfig,
        session: GeminiChat,
        store: RedisStore,
        lock: asyncio.Lock,
        system_instruction: Optional[WireContent] = None,
    ):
        self._config = config
        self._session = session
        self._store = store
        self._lock = lock
        self._system_instruction = system_instruction
        self._phase = ChatPhase.IDLE

    @classmethod
    async def create(
        cls,
        config: ChatConfig,
        api_client: GeminiAPIClient,
        store: RedisStore,
        lock: asyncio.Lock,
        system_instruction: Optional[WireContent] = None,
    ) -> "Chat":
        """
        构建会话：读取历史并重放到上游会话对象中

        Args:
            config: 已解析生成配置的会话配置
            api_client: 推理API客户端
            store: 持久化网关
            lock: 该会话的互斥锁
            system_instruction: 系统指令（人设、系统指令、用户上下文）

        Raises:
            ConfigConversionError: 生成配置无法转换
            PersistenceError: 历史读取失败
        """
        request_config = generation_config_to_wire(config.generation_config)
        request_config.system_instruction = system_instruction

        messages = await store.get_chat_history(config.id)
        session = api_client.create_chat(
            config.model, config=request_config, history=history_to_wire_contents(messages)
        )
        log_chat_event(config.id, "hydrate", f"重放 {len(messages)} 条历史消息")
        return cls(config, session, store, lock, system_instruction=system_instruction)

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def user_id(self) -> str:
        return self._config.user_id

    @property
    def agent_id(self) -> str:
        return self._config.agent_id

    @property
    def config(self) -> ChatConfig:
        return self._config

    @property
    def phase(self) -> ChatPhase:
        return self._phase

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def _request_config(self, override: Optional[GenerationConfig]) -> Optional[WireRequestConfig]:
        """有覆盖配置时合并出本次调用的请求配置，否则使用会话的基础配置"""
        if override is None:
            return None
        merged = resolve_generation_config(self._config.generation_config, override)
        request_config = generation_config_to_wire(merged)
        request_config.system_instruction = self._system_instruction
        return request_config

    def _model_for(self, prompt: Optional[Prompt] = None) -> str:
        if prompt is not None and prompt.model:
            return prompt.model
        return self._config.model

    async def _persist_required(self, message: ChatMessage) -> None:
        """调用模型之前的写入，失败直接抛出"""
        await self._store.save_chat_message(self.id, message)
        log_chat_event(self.id, message.role, message.content)

    async def _persist_best_effort(self, message: ChatMessage) -> None:
        """调用模型之后的写入，失败只记录日志，不影响已经得到的结果"""
        try:
            await self._store.save_chat_message(self.id, message)
        except PersistenceError as e:
            get_logger("会话").warning(f"[{self.id}] {message.role} 消息写入失败: {e}")
            return
        log_chat_event(self.id, message.role, message.content)

    def _finish_turn(self, function_call_seen: bool) -> None:
        self._phase = (
            ChatPhase.AWAITING_TOOL_RESULT if function_call_seen else ChatPhase.IDLE
        )

    async def _send(
        self, parts: List[WirePart], model: str, request_config: Optional[WireRequestConfig]
    ) -> ModelResponse:
        self._phase = ChatPhase.SENDING
        try:
            response = await self._session.send_message(parts, model=model, config=request_config)
        except (httpx.HTTPError, ValueError) as e:
            self._phase = ChatPhase.IDLE
            log_llm_interaction("调用", details=self.id, error=str(e))
            raise GenerateError(
                "模型调用失败", operation="发送消息", identity=self.id, original_error=e
            ) from e

        try:
            model_response = wire_response_to_model_response(response.candidates)
        except EmptyResponseError:
            self._phase = ChatPhase.IDLE
            raise

        if model_response.text:
            await self._persist_best_effort(ChatMessage(role="model", content=model_response.text))
        self._finish_turn(model_response.function_call is not None)
        return model_response

    async def send_message(
        self, prompt: Prompt, override: Optional[GenerationConfig] = None
    ) -> ModelResponse:
        """
        发送一条消息

        Args:
            prompt: 提示词
            override: 本次调用的覆盖配置

        Returns:
            ModelResponse: 模型输出（文本和/或工具调用）

        Raises:
            PromptConversionError: 提示词无效
            ConfigConversionError: 覆盖配置无法转换
            PersistenceError: 用户消息写入失败，此时不会调用模型
            GenerateError: 模型调用失败
            EmptyResponseError: 模型返回空响应
        """
        async with self._lock:
            content = prompt_to_wire_content(prompt)
            request_config = self._request_config(override)
            await self._persist_required(ChatMessage(role="user", content=_history_text(prompt)))
            return await self._send(content.parts, self._model_for(prompt), request_config)

    async def send_message_stream(
        self, prompt: Prompt, override: Optional[GenerationConfig] = None
    ) -> "ChatStream":
        """
        流式发送一条消息

        用户消息写入失败时在返回之前抛出。返回的 ChatStream 持有会话锁，直到上游结束或流被取消。

        使用示例:
            stream = await chat.send_message_stream(Prompt(text="你好"))
            async with stream:
                async for response in stream:
                    ...
        """
        content = prompt_to_wire_content(prompt)
        request_config = self._request_config(override)

        await self._lock.acquire()
        try:
            await self._persist_required(ChatMessage(role="user", content=_history_text(prompt)))
        except BaseException:
            self._lock.release()
            raise

        self._phase = ChatPhase.SENDING
        upstream = self._session.send_message_stream(
            content.parts, model=self._model_for(prompt), config=request_config
        )
        return ChatStream(self, upstream)

    async def send_tool_response(
        self, function_call: FunctionCall, result: Any
    ) -> ModelResponse:
        """
        回传工具执行结果并继续生成

        Args:
            function_call: 模型请求的工具调用
            result: 工具执行结果，可以是任何可序列化为 JSON 的值或 pydantic 模型

        Raises:
            ContentConversionError: 结果无法序列化
            GenerateError: 模型调用失败
            EmptyResponseError: 模型返回空响应
        """
        async with self._lock:
            tool_text = format_tool_response(function_call, result)
            log_tool_response(function_call.name, function_call.args, result)
            await self._persist_best_effort(ChatMessage(role="tool", content=tool_text))
            return await self._send([WirePart(text=tool_text)], self._model_for(), None)

    async def get_history(self) -> List[ChatMessage]:
        """按写入顺序返回完整消息历史"""
        return await self._store.get_chat_history(self.id)


class ChatStream:
    """
    流式发送结果

    后台生产者任务读取上游流，把事件放入有界队列；消费者每取一个事件得到一个 ModelResponse。
    上游出错时产生一个带 error 的 ModelResponse 而不是抛出异常。

    整个轮次由生产者负责：上游结束（包括出错后结束）时累积的文本写入一次历史，然后释放会话锁，
    与消费者是否读完无关。消费者读到工具调用后直接 break 再调用 send_tool_response 是安全的。
    只有 cancel()（以及 aclose()、提前离开 async with、取消消费者任务）会丢弃尚未写入的文本。
    未读事件超过队列容量时生产者会等待消费者，此时放弃的流需要 cancel() 或 aclose() 才会释放锁。
    """

    def __init__(
        self,
        chat: Chat,
        upstream: AsyncIterator[WireGenerateResponse],
        max_buffered: int = STREAM_QUEUE_SIZE,
    ):
        self._chat = chat
        self._upstream = upstream
        self._queue: "asyncio.Queue" = asyncio.Queue(maxsize=max_buffered)
        self._accumulated: List[str] = []
        self._function_call_seen = False
        self._closed = False
        self._lock_released = False
        self._producer = asyncio.create_task(self._produce())

    @property
    def closed(self) -> bool:
        return self._closed

    async def _relay(self) -> None:
        """读取上游并转发事件，上游错误转为一个错误事件"""
        try:
            async for chunk in self._upstream:
                for event in stream_events_from_response(chunk):
                    if isinstance(event, TextDeltaEvent):
                        self._accumulated.append(event.text)
                    elif isinstance(event, FunctionCallDetectedEvent):
                        self._function_call_seen = True
                    await self._queue.put(event)
        except (httpx.HTTPError, ValueError) as e:
            log_llm_interaction("流式调用", details=self._chat.id, error=str(e))
            await self._queue.put(StreamErrorEvent(error=self._stream_error(e)))
        except Exception as e:
            get_logger("会话").error(f"[{self._chat.id}] 读取上游流时出现意外错误: {e!r}")
            await self._queue.put(StreamErrorEvent(error=self._stream_error(e)))

    def _stream_error(self, cause: Exception) -> StreamError:
        return StreamError(
            "流式调用失败", operation="流式发送", identity=self._chat.id, original_error=cause
        )

    async def _complete_turn(self) -> None:
        """上游结束：累积文本写入一次历史"""
        text = "".join(self._accumulated)
        if text:
            await self._chat._persist_best_effort(ChatMessage(role="model", content=text))
        self._chat._finish_turn(self._function_call_seen)

    async def _produce(self) -> None:
        try:
            await self._relay()
            await self._complete_turn()
        finally:
            try:
                aclose = getattr(self._upstream, "aclose", None)
                if aclose is not None:
                    await aclose()
            finally:
                self._release_lock()
        await self._queue.put(StreamEndEvent())

    def _release_lock(self) -> None:
        if not self._lock_released:
            self._lock_released = True
            self._chat.lock.release()

    def cancel(self) -> None:
        """停止读取上游并丢弃尚未写入的文本"""
        if self._closed:
            return
        self._closed = True
        if self._lock_released:
            # 轮次已经结束
            self._producer.cancel()
            return
        self._producer.cancel()
        self._accumulated.clear()
        self._chat._phase = ChatPhase.IDLE
        self._release_lock()
        log_chat_event(self._chat.id, "stream_cancelled")

    async def aclose(self) -> None:
        """取消流并等待生产者任务退出"""
        self.cancel()
        if not self._producer.done():
            await asyncio.wait([self._producer])

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> ModelResponse:
        if self._closed:
            raise StopAsyncIteration

        try:
            event = await self._queue.get()
        except asyncio.CancelledError:
            # 消费者所在任务被取消
            self.cancel()
            raise

        if isinstance(event, TextDeltaEvent):
            return ModelResponse(text=event.text)
        if isinstance(event, FunctionCallDetectedEvent):
            return ModelResponse(function_call=event.function_call)
        if isinstance(event, StreamErrorEvent):
            return ModelResponse(error=event.error)

        self._closed = True
        raise StopAsyncIteration

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
