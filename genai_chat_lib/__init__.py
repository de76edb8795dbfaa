"""
GenAI Chat Lib - 智能体与会话库

在 Gemini 推理API之上提供有状态的"智能体 + 会话"抽象，会话历史持久化在 Redis 中。

主要功能:
- 🤖 智能体 - 可复用的人设、系统指令、默认模型与默认工具
- 💬 会话 - 历史重放、同步/流式发送、工具调用往返，按轮次顺序持久化
- 🛠️ 工具声明 - 从 pydantic 模型、dataclass 或函数签名推导参数Schema
- 📐 结构化输出 - 按目标类型约束并校验模型输出
- 🔢 向量化 - 单条与批量文本向量化

使用示例:
    from genai_chat_lib import (
        GenAIClient, GeminiAPIClient, RedisStore,
        AgentConfig, ChatConfig, GenerationConfig, Prompt, tool,
    )

    @tool
    def get_weather(city: str) -> str:
        \"\"\"查询天气

        Args:
            city: 城市名称
        \"\"\"

    client = GenAIClient(GeminiAPIClient(api_key="your-key"), RedisStore.from_url())

    agent = await client.new_agent(AgentConfig(id="assistant", persona="你是天气助手"))
    await agent.add_tool(get_weather.genai_tool)

    chat = await agent.new_chat(ChatConfig(user_id="u1"))
    response = await chat.send_message(Prompt(text="开罗天气怎么样？"))
    if response.function_call:
        response = await chat.send_tool_response(response.function_call, {"temp": "12C"})
    print(response.text)
"""

__version__ = "0.1.0"
__description__ = "智能体与会话库 - 基于 Gemini 推理API与 Redis 持久化"

from .schemas import (
    AgentConfig,
    ChatConfig,
    ChatMessage,
    ChatType,
    EmbedOptions,
    FileConfig,
    FunctionCall,
    FunctionCallingMode,
    GenerationConfig,
    ModelResponse,
    Prompt,
    SchemaConfig,
    Tool,
    ToolConfig,
    UserContext,
    ChatStreamEvent,
    TextDeltaEvent,
    FunctionCallDetectedEvent,
    StreamErrorEvent,
    StreamEndEvent,
)

from .config_merger import (
    clone_generation_config,
    merge_generation_config,
    resolve_generation_config,
)

from .tools import (
    tool,
    tool_from_function,
    new_tool_from_signatures,
    build_schema_from_type,
    tool_to_wire_declaration,
)

from .client import GeminiAPIClient, GeminiChat

from .store import RedisStore

from .chat import Chat, ChatStream, ChatPhase, ChatLockRegistry

from .agent import Agent

from .core import GenAIClient

from .structured import (
    generate_structured,
    send_structured,
    StructuredAgent,
)

from .logger_config import (
    enable_logging,
    disable_logging,
    is_logging_enabled,
    setup_logger,
)

from .exceptions import (
    GenAIClientError,
    PromptConversionError,
    PromptValidationError,
    ContentConversionError,
    ConfigConversionError,
    InvalidModeError,
    EmptyResponseError,
    GenerateError,
    StreamError,
    EmbedError,
    StructuredOutputError,
    PersistenceError,
    ToolNotFoundError,
    ChatNotFoundError,
    AgentNotFoundError,
)

__all__ = [
    # 核心类
    "GenAIClient",
    "Agent",
    "Chat",
    "ChatStream",
    "ChatPhase",
    "ChatLockRegistry",
    "GeminiAPIClient",
    "GeminiChat",
    "RedisStore",
    # 配置与数据模型
    "AgentConfig",
    "ChatConfig",
    "ChatMessage",
    "ChatType",
    "EmbedOptions",
    "FileConfig",
    "FunctionCall",
    "FunctionCallingMode",
    "GenerationConfig",
    "ModelResponse",
    "Prompt",
    "SchemaConfig",
    "Tool",
    "ToolConfig",
    "UserContext",
    # 流式事件
    "ChatStreamEvent",
    "TextDeltaEvent",
    "FunctionCallDetectedEvent",
    "StreamErrorEvent",
    "StreamEndEvent",
    # 配置合并
    "clone_generation_config",
    "merge_generation_config",
    "resolve_generation_config",
    # 工具相关
    "tool",
    "tool_from_function",
    "new_tool_from_signatures",
    "build_schema_from_type",
    "tool_to_wire_declaration",
    # 结构化输出
    "generate_structured",
    "send_structured",
    "StructuredAgent",
    # 日志控制
    "enable_logging",
    "disable_logging",
    "is_logging_enabled",
    "setup_logger",
    # 异常类
    "GenAIClientError",
    "PromptConversionError",
    "PromptValidationError",
    "ContentConversionError",
    "ConfigConversionError",
    "InvalidModeError",
    "EmptyResponseError",
    "GenerateError",
    "StreamError",
    "EmbedError",
    "StructuredOutputError",
    "PersistenceError",
    "ToolNotFoundError",
    "ChatNotFoundError",
    "AgentNotFoundError",
]
