"""
GenAI 会话库的数据模型定义模块

该模块包含:
- 推理API请求/响应相关的底层模型（Gemini REST 格式，camelCase 别名）
- 智能体、会话、提示词等领域模型
- 会话流式输出使用的事件类型

公开接口:
- GenerationConfig / AgentConfig / ChatConfig: 配置模型
- Tool / SchemaConfig / ToolConfig: 工具声明模型
- Prompt / FileConfig: 提示词模型
- ChatMessage / ModelResponse / FunctionCall: 会话消息与模型输出
- ChatStreamEvent: 流式事件联合类型

内部方法:
- _WireModel: 底层模型的公共配置
"""

from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional, Union, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel

# --- 推理API 请求/响应相关的底层模型 ---


class _WireModel(BaseModel):
    """底层模型基类，字段以 camelCase 形式收发"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """转换为请求体中使用的字典"""
        return self.model_dump(by_alias=True, exclude_none=True)


class WireSchema(_WireModel):
    """API参数Schema（OpenAPI 子集）"""

    type: Optional[str] = None
    format: Optional[str] = None
    description: Optional[str] = None
    nullable: Optional[bool] = None
    enum: Optional[List[str]] = None
    properties: Optional[Dict[str, "WireSchema"]] = None
    property_ordering: Optional[List[str]] = None
    required: Optional[List[str]] = None
    items: Optional["WireSchema"] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None


class WireBlob(_WireModel):
    """内联二进制数据（base64 编码）"""

    mime_type: str
    data: str


class WireFileData(_WireModel):
    """远程文件引用"""

    mime_type: str
    file_uri: str


class WireFunctionCall(_WireModel):
    """API函数调用模型"""

    id: Optional[str] = None
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class WireFunctionResponse(_WireModel):
    """API函数结果模型"""

    name: str
    response: Dict[str, Any] = Field(default_factory=dict)


class WirePart(_WireModel):
    """内容片段，未识别的片段类型保留在额外字段中"""

    model_config = ConfigDict(extra="allow")

    text: Optional[str] = None
    inline_data: Optional[WireBlob] = None
    file_data: Optional[WireFileData] = None
    function_call: Optional[WireFunctionCall] = None
    function_response: Optional[WireFunctionResponse] = None
    thought: Optional[bool] = None


class WireContent(_WireModel):
    """一轮对话内容"""

    role: Optional[str] = None
    parts: List[WirePart] = Field(default_factory=list)


class WireFunctionDeclaration(_WireModel):
    """函数声明，模型据此决定何时调用工具"""

    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None


class WireTool(_WireModel):
    """工具声明集合"""

    function_declarations: List[WireFunctionDeclaration] = Field(default_factory=list)


class WireFunctionCallingConfig(_WireModel):
    """函数调用配置"""

    mode: str
    allowed_function_names: Optional[List[str]] = None


class WireToolConfig(_WireModel):
    """工具配置"""

    function_calling_config: WireFunctionCallingConfig


class WireGenerationConfig(_WireModel):
    """采样与输出限制参数"""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[float] = None
    max_output_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    response_mime_type: Optional[str] = None
    response_schema: Optional[Dict[str, Any]] = None


class WireRequestConfig(_WireModel):
    """一次请求除 contents 以外的全部配置"""

    system_instruction: Optional[WireContent] = None
    tools: Optional[List[WireTool]] = None
    tool_config: Optional[WireToolConfig] = None
    generation_config: Optional[WireGenerationConfig] = None


class WireCandidate(_WireModel):
    """候选结果"""

    content: Optional[WireContent] = None
    finish_reason: Optional[str] = None
    index: Optional[int] = None


class WireGenerateResponse(_WireModel):
    """generateContent / streamGenerateContent 的响应（流式时为单个块）"""

    model_config = ConfigDict(protected_namespaces=())

    candidates: List[WireCandidate] = Field(default_factory=list)
    prompt_feedback: Optional[Dict[str, Any]] = None
    usage_metadata: Optional[Dict[str, Any]] = None
    model_version: Optional[str] = None
    response_id: Optional[str] = None


# --- 工具与生成配置 ---


class FunctionCallingMode(str, Enum):
    """工具调用模式"""

    UNSPECIFIED = "MODE_UNSPECIFIED"
    AUTO = "AUTO"  # 模型自行决定调用工具还是直接回复
    ANY = "ANY"  # 模型只能输出工具调用
    NONE = "NONE"  # 模型不会调用工具
    VALIDATED = "VALIDATED"  # 模型自行决定，但使用约束解码校验调用


class SchemaConfig(BaseModel):
    """
    参数Schema来源，三选一：

    - raw_schema: JSON Schema 字典，原样使用
    - schema_type: Python 类型（pydantic 模型、dataclass、List[...] 等），反射推导
    - wire_schema: 预先构建的 WireSchema，原样使用
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    raw_schema: Optional[Dict[str, Any]] = None
    schema_type: Optional[Any] = Field(default=None, exclude=True)
    wire_schema: Optional[WireSchema] = None

    @model_serializer(mode="wrap")
    def _serialize_with_derived_schema(self, handler):
        """Python 类型无法序列化，持久化时写入推导出的 wire_schema"""
        data = handler(self)
        if self.schema_type is not None and self.wire_schema is None:
            from .tools import build_schema_from_type

            data["wire_schema"] = build_schema_from_type(self.schema_type).to_wire()
        return data


class Tool(BaseModel):
    """模型可以请求调用方执行的工具"""

    name: str
    description: str = ""
    request_config: Optional[SchemaConfig] = None
    response_config: Optional[SchemaConfig] = None


class ToolConfig(BaseModel):
    """工具调用配置，mode 在转换时校验"""

    mode: str = ""
    allowed_tools: List[str] = Field(default_factory=list)


class GenerationConfig(BaseModel):
    """一次模型调用的可调参数"""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[float] = None
    max_output_tokens: int = 0  # 0 表示未设置
    stop_sequences: List[str] = Field(default_factory=list)
    response_schema_config: Optional[SchemaConfig] = None
    tools: List[Tool] = Field(default_factory=list)
    tool_config: Optional[ToolConfig] = None


# --- 智能体与会话配置 ---


class AgentConfig(BaseModel):
    """智能体配置：人设、系统指令、默认模型与默认生成配置"""

    id: str
    persona: str = ""
    system_instruction: str = ""
    default_model: str = ""
    default_generation_config: Optional[GenerationConfig] = None


class ChatType(str, Enum):
    """会话类型，后台会话默认不出现在列表中"""

    CONVERSATIONAL = "CONVERSATIONAL"
    BACKGROUND = "BACKGROUND"


class ChatConfig(BaseModel):
    """会话配置"""

    id: str = Field(default_factory=lambda: f"chat_{uuid4().hex}")
    agent_id: str = ""
    user_id: str = ""
    model: str = ""
    generation_config: Optional[GenerationConfig] = None
    type: ChatType = ChatType.CONVERSATIONAL


class UserContext(BaseModel):
    """用户上下文，生成时作为额外的系统指令注入"""

    id: str
    context: str = ""


class EmbedOptions(BaseModel):
    """向量化选项"""

    model: str = ""
    dimensions: int = 0
    task_type: str = ""


# --- 提示词 ---


class FileConfig(BaseModel):
    """
    提示词附件

    contents 不为空时直接使用并忽略 path；path 可以是本地路径或 http(s) 地址。
    """

    path: str = ""
    contents: Optional[bytes] = None
    name: str = ""
    context: str = ""
    mime_type: str = ""
    metadata: Optional[Dict[str, Any]] = None


class Prompt(BaseModel):
    """应用层提示词"""

    text: str = ""
    structured_text: Optional[Dict[str, Any]] = None
    files: List[FileConfig] = Field(default_factory=list)
    model: str = ""

    def is_empty(self) -> bool:
        """文本、结构化内容和文件是否全部为空"""
        return not self.text and not self.structured_text and not self.files


# --- 会话消息与模型输出 ---


class ChatMessage(BaseModel):
    """持久化的会话消息，按写入顺序构成会话历史"""

    role: Literal["user", "model", "tool"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)


class FunctionCall(BaseModel):
    """模型请求的工具调用"""

    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ModelResponse(BaseModel):
    """
    统一的模型输出

    通常 text、function_call、error 三者只有一个有值，
    但上游交错输出时 text 与 function_call 可能同时存在。
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    text: str = ""
    function_call: Optional[FunctionCall] = None
    error: Optional[Exception] = Field(default=None, exclude=True)


# --- 会话流式执行产生的事件 ---


class TextDeltaEvent(BaseModel):
    """文本增量事件"""

    text: str


class FunctionCallDetectedEvent(BaseModel):
    """检测到工具调用事件"""

    function_call: FunctionCall


class StreamErrorEvent(BaseModel):
    """上游流出错事件"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    error: Exception


class StreamEndEvent(BaseModel):
    """上游流结束事件"""

    pass


# 会话流事件联合类型
ChatStreamEvent = Union[
    TextDeltaEvent,
    FunctionCallDetectedEvent,
    StreamErrorEvent,
    StreamEndEvent,
]
