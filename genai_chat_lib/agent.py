"""
智能体模块

智能体持有可复用的人设、系统指令、默认模型与默认生成配置（含默认工具），
可以直接单次生成，也是会话（Chat）的工厂。
"""

from typing import List, Optional

import httpx

from .adapter import (
    build_system_instruction,
    generation_config_to_wire,
    prompt_to_wire_content,
    wire_response_to_model_response,
)
from .chat import Chat, ChatLockRegistry
from .client import GeminiAPIClient
from .config_merger import clone_generation_config, resolve_generation_config
from .exceptions import (
    ChatNotFoundError,
    GenerateError,
    PersistenceError,
    ToolNotFoundError,
)
from .logger_config import get_logger, log_llm_interaction
from .schemas import (
    AgentConfig,
    ChatConfig,
    GenerationConfig,
    ModelResponse,
    Prompt,
    Tool,
    WireContent,
)
from .store import RedisStore

# 未提供默认生成配置时使用的温度
DEFAULT_TEMPERATURE = 0.01


class Agent:
    """
    智能体

    通过 GenAIClient.new_agent / GenAIClient.get_agent 获得。
    """

    def __init__(
        self,
        config: AgentConfig,
        api_client: GeminiAPIClient,
        store: RedisStore,
        chat_locks: ChatLockRegistry,
        default_model: str = "",
    ):
        """
        初始化智能体

        Args:
            config: 智能体配置（会被拷贝）
            api_client: 推理API客户端
            store: 持久化网关
            chat_locks: 会话锁注册表
            default_model: 配置中没有默认模型时使用的模型
        """
        self._config = config.model_copy(deep=True)
        if self._config.default_generation_config is None:
            self._config.default_generation_config = GenerationConfig(
                temperature=DEFAULT_TEMPERATURE
            )
        if not self._config.default_model:
            self._config.default_model = default_model

        self._api_client = api_client
        self._store = store
        self._chat_locks = chat_locks

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def config(self) -> AgentConfig:
        return self._config

    # --- 配置与工具 ---

    async def _replace_config(self, config: AgentConfig) -> None:
        """先持久化新配置，成功后再替换内存中的配置"""
        await self._store.create_agent(config)
        self._config = config

    async def update_config(
        self, persona: Optional[str] = None, system_instruction: Optional[str] = None
    ) -> None:
        """更新人设和/或系统指令，只影响之后创建的会话与生成"""
        config = self._config.model_copy(deep=True)
        if persona is not None:
            config.persona = persona
        if system_instruction is not None:
            config.system_instruction = system_instruction
        await self._replace_config(config)

    def list_tools(self) -> List[Tool]:
        return list(self._config.default_generation_config.tools)

    async def add_tool(self, tool: Tool) -> None:
        """
        添加默认工具，同名工具会被替换

        Raises:
            PersistenceError: 配置写入失败
        """
        config = self._config.model_copy(deep=True)
        tools = [t for t in config.default_generation_config.tools if t.name != tool.name]
        tools.append(tool)
        config.default_generation_config.tools = tools
        await self._replace_config(config)
        get_logger("智能体").info(f"[{self.id}] 添加工具 '{tool.name}'")

    async def remove_tool(self, tool_name: str) -> None:
        """
        移除默认工具

        Raises:
            ToolNotFoundError: 没有该名称的工具
            PersistenceError: 配置写入失败
        """
        config = self._config.model_copy(deep=True)
        tools = config.default_generation_config.tools
        remaining = [t for t in tools if t.name != tool_name]
        if len(remaining) == len(tools):
            raise ToolNotFoundError(tool_name, operation="移除工具", identity=self.id)
        config.default_generation_config.tools = remaining
        await self._replace_config(config)
        get_logger("智能体").info(f"[{self.id}] 移除工具 '{tool_name}'")

    # --- 生成 ---

    async def _system_instruction(self, user_id: str) -> Optional[WireContent]:
        """人设 + 系统指令 + 用户上下文；用户上下文读取失败时忽略"""
        context = ""
        if user_id:
            try:
                user = await self._store.find_user_by_id(user_id)
            except PersistenceError as e:
                get_logger("智能体").warning(f"读取用户 '{user_id}' 的上下文失败，忽略: {e}")
                user = None
            if user is not None:
                context = user.context

        return build_system_instruction(
            self._config.persona, self._config.system_instruction, context
        )

    async def generate(
        self,
        user_id: str,
        prompt: Prompt,
        override: Optional[GenerationConfig] = None,
    ) -> ModelResponse:
        """
        单次生成，不写入任何会话历史

        Args:
            user_id: 用户 id，用于注入用户上下文
            prompt: 提示词
            override: 本次调用的覆盖配置

        Returns:
            ModelResponse: 模型输出

        Raises:
            ConfigConversionError: 生成配置无法转换
            PromptConversionError: 提示词无效或附件转换失败
            GenerateError: 模型调用失败
            EmptyResponseError: 模型返回空响应
        """
        merged = resolve_generation_config(self._config.default_generation_config, override)
        request_config = generation_config_to_wire(merged)
        # 提示词无效时不访问存储
        content = prompt_to_wire_content(prompt)
        request_config.system_instruction = await self._system_instruction(user_id)

        model = prompt.model or self._config.default_model

        try:
            response = await self._api_client.generate_content(model, [content], request_config)
        except (httpx.HTTPError, ValueError) as e:
            log_llm_interaction("生成", details=f"{self.id} {model}", error=str(e))
            raise GenerateError(
                "模型调用失败", operation="生成", identity=self.id, original_error=e
            ) from e

        log_llm_interaction("生成", details=f"{self.id} {model}")
        return wire_response_to_model_response(response.candidates)

    # --- 会话 ---

    async def _build_chat(self, config: ChatConfig) -> Chat:
        system_instruction = await self._system_instruction(config.user_id)
        return await Chat.create(
            config,
            self._api_client,
            self._store,
            self._chat_locks.get(config.id),
            system_instruction=system_instruction,
        )

    def _resolve_chat_config(self, config: ChatConfig) -> ChatConfig:
        """会话未设置的生成配置与模型继承智能体的默认值"""
        if config.generation_config is None:
            config.generation_config = clone_generation_config(
                self._config.default_generation_config
            )
        if not config.model:
            config.model = self._config.default_model
        return config

    async def new_chat(self, chat_config: ChatConfig) -> Chat:
        """
        创建会话：写入智能体 id，解析继承的配置，持久化后构建会话

        Raises:
            PersistenceError: 会话配置写入或历史读取失败
            ConfigConversionError: 生成配置无法转换
        """
        config = chat_config.model_copy(deep=True)
        config.agent_id = self.id
        config = self._resolve_chat_config(config)
        await self._store.create_chat(config)
        get_logger("智能体").info(f"[{self.id}] 创建会话 '{config.id}'")
        return await self._build_chat(config)

    async def get_chat(self, chat_id: str) -> Chat:
        """
        读取会话配置并重新构建会话

        Raises:
            ChatNotFoundError: 会话不存在或不属于该智能体
        """
        config = await self._store.get_chat(chat_id)
        if config is None or config.agent_id != self.id:
            raise ChatNotFoundError(chat_id, operation="读取会话")
        return await self._build_chat(self._resolve_chat_config(config))

    async def list_chats_by_user(
        self, user_id: str, include_background: bool = False
    ) -> List[ChatConfig]:
        return await self._store.list_chats_by_user(
            user_id, agent_id=self.id, include_background=include_background
        )

    async def remove_chat(self, chat_id: str) -> None:
        """删除会话配置与消息历史"""
        await self._store.remove_chat(chat_id)
        self._chat_locks.discard(chat_id)
