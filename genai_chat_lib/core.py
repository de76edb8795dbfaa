"""
GenAI 客户端

面向调用方的入口：管理智能体与用户上下文，提供向量化与工具声明转换。
推理API客户端与持久化网关由调用方注入，同一进程内可以存在多个互不影响的客户端。
"""

import os
from typing import List, Optional

import httpx

from .agent import Agent
from .chat import ChatLockRegistry
from .client import GeminiAPIClient
from .exceptions import AgentNotFoundError, EmbedError
from .logger_config import get_logger, log_llm_interaction
from .schemas import (
    AgentConfig,
    EmbedOptions,
    Tool,
    UserContext,
    WireContent,
    WirePart,
    WireTool,
)
from .store import RedisStore
from .tools import build_wire_tool, build_wire_tools

DEFAULT_MODEL = "gemini-2.5-flash-lite"
DEFAULT_EMBEDDING_MODEL = "gemini-embedding-001"
DEFAULT_EMBEDDING_TASK_TYPE = "RETRIEVAL_DOCUMENT"

# 向量化错误信息中文本的最大长度
_ERROR_TEXT_LIMIT = 250


def _truncate(text: str, limit: int = _ERROR_TEXT_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class GenAIClient:
    """
    GenAI 客户端

    使用示例:
        api_client = GeminiAPIClient(api_key="your-key")
        store = RedisStore.from_url("redis://localhost:6379/0")
        client = GenAIClient(api_client, store)

        agent = await client.new_agent(AgentConfig(id="assistant", persona="你是一个助手"))
        chat = await agent.new_chat(ChatConfig(user_id="u1"))
        response = await chat.send_message(Prompt(text="你好"))
    """

    def __init__(
        self,
        api_client: GeminiAPIClient,
        store: RedisStore,
        default_model: str = os.getenv("GENAI_DEFAULT_MODEL", DEFAULT_MODEL),
        default_embedding_model: str = os.getenv(
            "GENAI_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL
        ),
    ):
        """
        初始化客户端

        Args:
            api_client: 推理API客户端
            store: 持久化网关
            default_model: 智能体未指定模型时使用的模型
            default_embedding_model: 向量化默认模型
        """
        self.api_client = api_client
        self.store = store
        self.default_model = default_model
        self.default_embedding_model = default_embedding_model
        self._chat_locks = ChatLockRegistry()

    def _agent(self, config: AgentConfig) -> Agent:
        return Agent(
            config,
            self.api_client,
            self.store,
            self._chat_locks,
            default_model=self.default_model,
        )

    # --- 智能体 ---

    async def new_agent(self, config: AgentConfig) -> Agent:
        """
        创建并持久化智能体

        未设置默认模型时使用客户端默认模型，未设置默认生成配置时使用温度 0.01 的默认配置。

        Raises:
            PersistenceError: 配置写入失败
        """
        agent = self._agent(config)
        await self.store.create_agent(agent.config)
        get_logger("客户端").info(f"创建智能体 '{agent.id}'")
        return agent

    async def get_agent(self, agent_id: str) -> Agent:
        """
        读取智能体

        Raises:
            AgentNotFoundError: 智能体不存在
        """
        config = await self.store.get_agent(agent_id)
        if config is None:
            raise AgentNotFoundError(agent_id, operation="读取智能体")
        return self._agent(config)

    async def list_agents(self) -> List[AgentConfig]:
        return await self.store.list_agents()

    async def remove_agent(self, agent_id: str) -> None:
        await self.store.remove_agent(agent_id)

    # --- 用户上下文 ---

    async def update_user_context(self, user_id: str, context: str) -> None:
        """保存用户上下文，之后的生成与新构建的会话会注入它"""
        await self.store.update_user_context(UserContext(id=user_id, context=context))

    # --- 向量化 ---

    async def embed(self, text: str, options: Optional[EmbedOptions] = None) -> List[float]:
        """
        文本向量化

        Args:
            text: 文本
            options: 模型、维度、任务类型

        Returns:
            List[float]: 向量

        Raises:
            EmbedError: 调用失败或没有返回向量
        """
        options = options or EmbedOptions()
        model = options.model or self.default_embedding_model
        content = WireContent(parts=[WirePart(text=text)])

        try:
            values = await self.api_client.embed_content(
                model,
                content,
                task_type=options.task_type or DEFAULT_EMBEDDING_TASK_TYPE,
                output_dimensionality=options.dimensions or None,
            )
        except (httpx.HTTPError, ValueError) as e:
            log_llm_interaction("向量化", details=model, error=str(e))
            raise EmbedError(
                f"向量化失败: '{_truncate(text)}'", operation="向量化", original_error=e
            ) from e

        if not values:
            raise EmbedError(f"没有返回向量: '{_truncate(text)}'", operation="向量化")
        return values

    async def embed_bulk(
        self, texts: List[str], options: Optional[EmbedOptions] = None
    ) -> List[List[float]]:
        """
        批量向量化，按顺序逐条调用，任何一条失败即中止

        Raises:
            EmbedError: 错误信息包含失败文本的序号与截断后的内容
        """
        vectors: List[List[float]] = []
        for index, text in enumerate(texts):
            try:
                vectors.append(await self.embed(text, options))
            except EmbedError as e:
                raise EmbedError(
                    f"第 {index} 条文本向量化失败: '{_truncate(text)}'",
                    operation="批量向量化",
                    original_error=e.original_error,
                ) from e
        return vectors

    # --- 工具 ---

    def build_wire_tool(self, tool: Tool) -> WireTool:
        return build_wire_tool(tool)

    def build_wire_tools(self, tools: List[Tool]) -> Optional[List[WireTool]]:
        return build_wire_tools(tools)

    async def aclose(self) -> None:
        """关闭推理API与存储连接"""
        await self.api_client.aclose()
        await self.store.aclose()
