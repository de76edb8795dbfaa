"""
提示词与响应转换模块

该模块包含:
- 应用层提示词到请求内容（WireContent）的转换
- 生成配置到请求配置（WireRequestConfig）的转换
- 候选结果到统一模型输出（ModelResponse）的转换
- 流式响应块到会话流事件的转换

公开接口:
- prompt_to_wire_content: 提示词转换为一轮用户内容
- file_config_to_part: 附件转换为内容片段
- is_remote_url: 判断路径是否为远程地址
- wire_response_to_model_response: 候选结果转换为模型输出
- function_calling_mode_to_wire: 工具调用模式转换
- generation_config_to_wire: 生成配置转换
- build_system_instruction: 组装系统指令
- stream_events_from_response: 流式响应块转换为事件
"""

import base64
import json
from pathlib import Path
from typing import List, Optional

from .exceptions import (
    ConfigConversionError,
    ContentConversionError,
    EmptyResponseError,
    InvalidModeError,
    PromptValidationError,
)
from .logger_config import get_logger
from .schemas import (
    ChatStreamEvent,
    FileConfig,
    FunctionCall,
    FunctionCallDetectedEvent,
    FunctionCallingMode,
    GenerationConfig,
    ModelResponse,
    Prompt,
    TextDeltaEvent,
    WireBlob,
    WireCandidate,
    WireContent,
    WireFileData,
    WireFunctionCallingConfig,
    WireGenerateResponse,
    WireGenerationConfig,
    WirePart,
    WireRequestConfig,
    WireToolConfig,
)
from .tools import build_wire_tools, resolve_schema

DEFAULT_MIME_TYPE = "application/octet-stream"
USER_CONTEXT_TEMPLATE = "User Context: {context}"

_MODE_ALIASES = {
    "": FunctionCallingMode.AUTO,
    "UNSPECIFIED": FunctionCallingMode.UNSPECIFIED,
    "MODE_UNSPECIFIED": FunctionCallingMode.UNSPECIFIED,
    "AUTO": FunctionCallingMode.AUTO,
    "ANY": FunctionCallingMode.ANY,
    "NONE": FunctionCallingMode.NONE,
    "VALIDATED": FunctionCallingMode.VALIDATED,
}


def is_remote_url(path: str) -> bool:
    """只有 http:// 与 https:// 视为远程地址"""
    return path.startswith("http://") or path.startswith("https://")


def file_config_to_part(file: FileConfig) -> WirePart:
    """
    附件转换为内容片段

    - contents 不为空: 内联数据
    - path 为远程地址: 文件引用
    - path 为本地路径: 读取文件后内联

    Args:
        file: 附件配置

    Returns:
        WirePart: 内容片段

    Raises:
        ContentConversionError: 既没有 contents 也没有 path，或本地文件读取失败
    """
    mime_type = file.mime_type or DEFAULT_MIME_TYPE

    if file.contents:
        data = file.contents
    elif not file.path:
        raise ContentConversionError(
            "附件必须提供 contents 或 path", operation="文件转换", identity=file.name or None
        )
    elif is_remote_url(file.path):
        return WirePart(file_data=WireFileData(mime_type=mime_type, file_uri=file.path))
    else:
        try:
            data = Path(file.path).read_bytes()
        except OSError as e:
            raise ContentConversionError(
                "读取本地文件失败", operation="文件转换", identity=file.path, original_error=e
            ) from e

    return WirePart(
        inline_data=WireBlob(
            mime_type=mime_type, data=base64.b64encode(data).decode("ascii")
        )
    )


def prompt_to_wire_content(prompt: Prompt) -> WireContent:
    """
    提示词转换为一轮用户内容

    片段顺序: 文本、结构化内容（JSON 文本）、按列表顺序的附件。

    Raises:
        PromptValidationError: 文本、结构化内容和文件全部为空
        ContentConversionError: 结构化内容无法序列化或附件转换失败
    """
    if prompt.is_empty():
        raise PromptValidationError(operation="提示词转换")

    parts: List[WirePart] = []
    if prompt.text:
        parts.append(WirePart(text=prompt.text))

    if prompt.structured_text:
        try:
            structured = json.dumps(prompt.structured_text, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ContentConversionError(
                "结构化内容无法序列化", operation="提示词转换", original_error=e
            ) from e
        parts.append(WirePart(text=structured))

    for file in prompt.files:
        parts.append(file_config_to_part(file))

    return WireContent(role="user", parts=parts)


def wire_response_to_model_response(candidates: List[WireCandidate]) -> ModelResponse:
    """
    候选结果转换为模型输出

    只处理第一个候选结果。多个函数调用片段时保留最后一个；
    文本片段以换行拼接；其他类型的片段序列化为 JSON 文本，不丢弃信息。

    Raises:
        EmptyResponseError: 没有候选结果，或第一个候选结果没有内容片段
    """
    if not candidates:
        raise EmptyResponseError("模型没有返回候选结果")

    first = candidates[0]
    if first.content is None or not first.content.parts:
        raise EmptyResponseError("候选结果没有内容")

    texts: List[str] = []
    function_call: Optional[FunctionCall] = None

    for part in first.content.parts:
        if part.function_call is not None:
            function_call = FunctionCall(
                name=part.function_call.name, args=part.function_call.args
            )
        elif part.text is not None:
            if part.text:
                texts.append(part.text)
        else:
            texts.append(json.dumps(part.to_wire(), ensure_ascii=False))

    return ModelResponse(text="\n".join(texts).strip(), function_call=function_call)


def stream_events_from_response(chunk: WireGenerateResponse) -> List[ChatStreamEvent]:
    """
    流式响应块转换为事件

    文本片段产生 TextDeltaEvent，函数调用片段立即产生 FunctionCallDetectedEvent。
    没有内容的块（例如只带用量信息的结尾块）不产生事件。
    """
    if not chunk.candidates or chunk.candidates[0].content is None:
        return []

    events: List[ChatStreamEvent] = []
    for part in chunk.candidates[0].content.parts:
        if part.function_call is not None:
            events.append(
                FunctionCallDetectedEvent(
                    function_call=FunctionCall(
                        name=part.function_call.name, args=part.function_call.args
                    )
                )
            )
        elif part.text:
            events.append(TextDeltaEvent(text=part.text))
    return events


def function_calling_mode_to_wire(mode: str) -> str:
    """
    工具调用模式转换，不区分大小写，空字符串视为 AUTO

    Raises:
        InvalidModeError: 无法识别的模式
    """
    key = (mode or "").strip().upper()
    if key not in _MODE_ALIASES:
        raise InvalidModeError(mode, operation="配置转换")
    return _MODE_ALIASES[key].value


def generation_config_to_wire(config: Optional[GenerationConfig]) -> WireRequestConfig:
    """
    生成配置转换为请求配置（不含系统指令）

    Args:
        config: 已合并的生成配置

    Returns:
        WireRequestConfig: 请求配置

    Raises:
        ConfigConversionError: 配置为 None 或工具调用模式无效
    """
    if config is None:
        raise ConfigConversionError("生成配置不能为空", operation="配置转换")

    generation = WireGenerationConfig(
        temperature=config.temperature,
        top_p=config.top_p,
        top_k=config.top_k,
        max_output_tokens=config.max_output_tokens or None,
        stop_sequences=list(config.stop_sequences) or None,
    )

    response_schema = resolve_schema(config.response_schema_config, "response_schema")
    if response_schema is not None:
        generation.response_mime_type = "application/json"
        generation.response_schema = response_schema

    tool_config = None
    if config.tool_config is not None:
        tool_config = WireToolConfig(
            function_calling_config=WireFunctionCallingConfig(
                mode=function_calling_mode_to_wire(config.tool_config.mode),
                allowed_function_names=list(config.tool_config.allowed_tools) or None,
            )
        )

    wire_config = WireRequestConfig(
        tools=build_wire_tools(config.tools),
        tool_config=tool_config,
        generation_config=generation,
    )
    get_logger("配置转换").trace(f"请求配置: {wire_config.to_wire()}")
    return wire_config


def build_system_instruction(
    persona: str = "", system_instruction: str = "", user_context: str = ""
) -> Optional[WireContent]:
    """
    组装系统指令：人设、系统指令、用户上下文，各自成为一个片段

    Returns:
        Optional[WireContent]: 三者皆为空时返回 None
    """
    parts: List[WirePart] = []
    if persona:
        parts.append(WirePart(text=persona))
    if system_instruction:
        parts.append(WirePart(text=system_instruction))
    if user_context:
        parts.append(WirePart(text=USER_CONTEXT_TEMPLATE.format(context=user_context)))

    if not parts:
        return None
    return WireContent(parts=parts)
