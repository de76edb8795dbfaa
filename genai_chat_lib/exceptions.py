"""
GenAI 会话库的自定义异常

该模块包含:
- 提示词/配置转换相关的异常
- 模型调用相关的异常
- 持久化与查找相关的异常

公开接口:
- GenAIClientError: 所有库异常的基类
- PromptConversionError / PromptValidationError / ContentConversionError
- ConfigConversionError / InvalidModeError
- EmptyResponseError / GenerateError / StreamError / EmbedError
- PersistenceError / ToolNotFoundError / ChatNotFoundError / AgentNotFoundError
- StructuredOutputError
"""

from typing import Optional


class GenAIClientError(Exception):
    """库异常基类，携带操作名与相关标识，便于定位问题"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        identity: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.identity = identity
        self.original_error = original_error

        prefix = ""
        if operation and identity:
            prefix = f"[{operation} {identity}] "
        elif operation:
            prefix = f"[{operation}] "

        if original_error is not None:
            message = f"{message}: {original_error}"
        super().__init__(f"{prefix}{message}")


# --- 提示词与配置转换 ---


class PromptConversionError(GenAIClientError):
    """提示词转换为请求内容失败"""

    pass


class PromptValidationError(PromptConversionError):
    """
    提示词校验失败

    提示词的文本、结构化内容和文件全部为空时抛出，此时不会发起任何网络调用。
    """

    def __init__(self, message: str = "提示词不能为空：文本、结构化内容和文件至少需要提供一项", **kwargs):
        super().__init__(message, **kwargs)


class ContentConversionError(PromptConversionError):
    """内容转换失败（包括本地文件读取失败）"""

    pass


class ConfigConversionError(GenAIClientError):
    """生成配置无法转换为请求格式"""

    pass


class InvalidModeError(ConfigConversionError):
    """无法识别的工具调用模式"""

    def __init__(self, mode: str, **kwargs):
        self.mode = mode
        super().__init__(f"无效的工具调用模式 '{mode}'", **kwargs)


# --- 模型调用 ---


class EmptyResponseError(GenAIClientError):
    """模型返回空响应（没有候选结果，或首个候选结果没有内容）"""

    def __init__(self, message: str = "模型返回了空响应", **kwargs):
        super().__init__(message, **kwargs)


class GenerateError(GenAIClientError):
    """模型调用本身失败（网络、配额、鉴权等）"""

    pass


class StreamError(GenerateError):
    """流式调用过程中失败"""

    pass


class EmbedError(GenAIClientError):
    """向量化调用失败"""

    pass


class StructuredOutputError(GenAIClientError):
    """模型输出无法解析为目标结构"""

    pass


# --- 持久化与查找 ---


class PersistenceError(GenAIClientError):
    """存储读写失败"""

    pass


class ToolNotFoundError(GenAIClientError):
    """移除不存在的工具"""

    def __init__(self, tool_name: str, **kwargs):
        self.tool_name = tool_name
        super().__init__(f"工具 '{tool_name}' 未找到", **kwargs)


class ChatNotFoundError(GenAIClientError):
    """会话不存在"""

    def __init__(self, chat_id: str, **kwargs):
        self.chat_id = chat_id
        kwargs.setdefault("identity", chat_id)
        super().__init__(f"会话 '{chat_id}' 不存在", **kwargs)


class AgentNotFoundError(GenAIClientError):
    """智能体不存在"""

    def __init__(self, agent_id: str, **kwargs):
        self.agent_id = agent_id
        kwargs.setdefault("identity", agent_id)
        super().__init__(f"智能体 '{agent_id}' 不存在", **kwargs)
