"""
持久化网关

智能体配置、会话配置、用户上下文以 JSON 形式保存在 `{类型}:{id}` 键下，
并在 `{类型}s:set` 集合中维护 id 索引；会话消息保存在 `chat_history:{id}` 列表中，只追加不修改。

公开接口:
- RedisStore: 基于 redis.asyncio 的存储实现

内部方法:
- _decode: 将 redis 返回值统一为字符串
"""

import os
from typing import List, Optional, Type, TypeVar, Union

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from .exceptions import PersistenceError
from .logger_config import get_logger, log_persistence
from .schemas import AgentConfig, ChatConfig, ChatMessage, ChatType, UserContext

AGENT_KEY_PREFIX = "agent:"
AGENTS_SET_KEY = "agents:set"
CHAT_KEY_PREFIX = "chat:"
CHATS_SET_KEY = "chats:set"
USER_KEY_PREFIX = "user:"
USERS_SET_KEY = "users:set"
CHAT_HISTORY_KEY_PREFIX = "chat_history:"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _decode(raw: Union[bytes, str]) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return raw


class RedisStore:
    """
    持久化网关

    每次 set / sadd / rpush 都是独立的原子操作，不提供跨记录的事务。
    disabled=True 时写操作直接返回，读操作返回 None 或空列表，仅用于离线测试。
    """

    def __init__(self, redis_client: Optional["redis.Redis"] = None, disabled: bool = False):
        """
        初始化持久化网关

        Args:
            redis_client: redis.asyncio 客户端
            disabled: 是否禁用持久化
        """
        if redis_client is None and not disabled:
            raise ValueError("未禁用持久化时必须提供 redis 客户端")
        self._redis = redis_client
        self.disabled = disabled

    @classmethod
    def from_url(
        cls, url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    ) -> "RedisStore":
        """根据连接地址创建存储"""
        return cls(redis.from_url(url, decode_responses=False))

    async def aclose(self) -> None:
        """关闭 redis 连接"""
        if self._redis is not None:
            await self._redis.aclose()

    # --- 通用读写 ---

    async def _save_record(
        self, operation: str, key: str, index_key: str, member: str, record: BaseModel
    ) -> None:
        if self.disabled:
            return
        try:
            await self._redis.set(key, record.model_dump_json())
            await self._redis.sadd(index_key, member)
        except RedisError as e:
            log_persistence(operation, key, success=False, error=str(e))
            raise PersistenceError(
                "写入记录失败", operation=operation, identity=key, original_error=e
            ) from e
        log_persistence(operation, key)

    async def _load_record(
        self, operation: str, key: str, model_cls: Type[ModelT]
    ) -> Optional[ModelT]:
        if self.disabled:
            return None
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            log_persistence(operation, key, success=False, error=str(e))
            raise PersistenceError(
                "读取记录失败", operation=operation, identity=key, original_error=e
            ) from e

        if raw is None:
            return None
        try:
            return model_cls.model_validate_json(_decode(raw))
        except (ValidationError, UnicodeDecodeError) as e:
            raise PersistenceError(
                "记录解析失败", operation=operation, identity=key, original_error=e
            ) from e

    async def _delete_record(
        self, operation: str, keys: List[str], index_key: str, member: str
    ) -> None:
        if self.disabled:
            return
        try:
            await self._redis.delete(*keys)
            await self._redis.srem(index_key, member)
        except RedisError as e:
            log_persistence(operation, keys[0], success=False, error=str(e))
            raise PersistenceError(
                "删除记录失败", operation=operation, identity=keys[0], original_error=e
            ) from e
        log_persistence(operation, keys[0])

    async def _list_ids(self, operation: str, index_key: str) -> List[str]:
        if self.disabled:
            return []
        try:
            members = await self._redis.smembers(index_key)
        except RedisError as e:
            raise PersistenceError(
                "读取索引失败", operation=operation, identity=index_key, original_error=e
            ) from e
        return sorted(_decode(member) for member in members)

    async def _list_records(
        self, operation: str, index_key: str, key_prefix: str, model_cls: Type[ModelT]
    ) -> List[ModelT]:
        records: List[ModelT] = []
        for record_id in await self._list_ids(operation, index_key):
            record = await self._load_record(operation, f"{key_prefix}{record_id}", model_cls)
            if record is None:
                # 索引中残留的 id
                get_logger("存储").warning(f"{index_key} 中的 '{record_id}' 没有对应记录")
                continue
            records.append(record)
        return records

    # --- 智能体 ---

    async def create_agent(self, config: AgentConfig) -> None:
        """保存智能体配置，同一 id 再次保存即为更新"""
        await self._save_record(
            "保存智能体", f"{AGENT_KEY_PREFIX}{config.id}", AGENTS_SET_KEY, config.id, config
        )

    async def get_agent(self, agent_id: str) -> Optional[AgentConfig]:
        return await self._load_record("读取智能体", f"{AGENT_KEY_PREFIX}{agent_id}", AgentConfig)

    async def list_agents(self) -> List[AgentConfig]:
        return await self._list_records("列出智能体", AGENTS_SET_KEY, AGENT_KEY_PREFIX, AgentConfig)

    async def remove_agent(self, agent_id: str) -> None:
        await self._delete_record(
            "删除智能体", [f"{AGENT_KEY_PREFIX}{agent_id}"], AGENTS_SET_KEY, agent_id
        )

    # --- 用户上下文 ---

    async def update_user_context(self, user: UserContext) -> None:
        await self._save_record(
            "保存用户上下文", f"{USER_KEY_PREFIX}{user.id}", USERS_SET_KEY, user.id, user
        )

    async def find_user_by_id(self, user_id: str) -> Optional[UserContext]:
        return await self._load_record("读取用户上下文", f"{USER_KEY_PREFIX}{user_id}", UserContext)

    async def remove_user(self, user_id: str) -> None:
        await self._delete_record(
            "删除用户上下文", [f"{USER_KEY_PREFIX}{user_id}"], USERS_SET_KEY, user_id
        )

    # --- 会话 ---

    async def create_chat(self, config: ChatConfig) -> None:
        await self._save_record(
            "保存会话", f"{CHAT_KEY_PREFIX}{config.id}", CHATS_SET_KEY, config.id, config
        )

    async def get_chat(self, chat_id: str) -> Optional[ChatConfig]:
        return await self._load_record("读取会话", f"{CHAT_KEY_PREFIX}{chat_id}", ChatConfig)

    async def list_chats(self) -> List[ChatConfig]:
        return await self._list_records("列出会话", CHATS_SET_KEY, CHAT_KEY_PREFIX, ChatConfig)

    async def list_chats_by_user(
        self,
        user_id: str,
        agent_id: Optional[str] = None,
        include_background: bool = False,
    ) -> List[ChatConfig]:
        """
        列出用户的会话

        Args:
            user_id: 用户 id
            agent_id: 只列出该智能体的会话
            include_background: 是否包含后台会话
        """
        chats = []
        for chat in await self.list_chats():
            if chat.user_id != user_id:
                continue
            if agent_id is not None and chat.agent_id != agent_id:
                continue
            if chat.type == ChatType.BACKGROUND and not include_background:
                continue
            chats.append(chat)
        return chats

    async def remove_chat(self, chat_id: str) -> None:
        """删除会话配置及其消息历史"""
        await self._delete_record(
            "删除会话",
            [f"{CHAT_KEY_PREFIX}{chat_id}", f"{CHAT_HISTORY_KEY_PREFIX}{chat_id}"],
            CHATS_SET_KEY,
            chat_id,
        )

    # --- 会话消息 ---

    async def save_chat_message(self, chat_id: str, message: ChatMessage) -> None:
        """追加一条会话消息"""
        if self.disabled:
            return
        key = f"{CHAT_HISTORY_KEY_PREFIX}{chat_id}"
        try:
            await self._redis.rpush(key, message.model_dump_json())
        except RedisError as e:
            log_persistence("保存消息", key, success=False, error=str(e))
            raise PersistenceError(
                "保存消息失败", operation="保存消息", identity=chat_id, original_error=e
            ) from e
        log_persistence("保存消息", key)

    async def get_chat_history(self, chat_id: str) -> List[ChatMessage]:
        """按写入顺序返回会话消息，没有消息时返回空列表"""
        if self.disabled:
            return []
        key = f"{CHAT_HISTORY_KEY_PREFIX}{chat_id}"
        try:
            raw_messages = await self._redis.lrange(key, 0, -1)
        except RedisError as e:
            raise PersistenceError(
                "读取消息失败", operation="读取消息", identity=chat_id, original_error=e
            ) from e

        try:
            return [ChatMessage.model_validate_json(_decode(raw)) for raw in raw_messages]
        except (ValidationError, UnicodeDecodeError) as e:
            raise PersistenceError(
                "消息解析失败", operation="读取消息", identity=chat_id, original_error=e
            ) from e
