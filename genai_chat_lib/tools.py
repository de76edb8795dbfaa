"""
工具声明模块

该模块包含:
- Python 类型到 WireSchema 的反射推导
- 工具到函数声明（WireFunctionDeclaration）的转换
- 从函数签名构建工具的 @tool 装饰器

公开接口:
- build_schema_from_type: 根据Python类型生成Schema
- resolve_schema: 按固定优先级解析 SchemaConfig
- tool_to_wire_declaration: 工具转换为函数声明
- build_wire_tool / build_wire_tools: 工具转换为请求中的工具声明
- new_tool_from_signatures: 根据请求/响应类型构建工具
- tool_from_function / tool: 根据函数签名构建工具

内部方法:
- _unwrap_optional: 拆出 Optional 的内部类型
- _schema_from_model / _schema_from_dataclass: 对象类型的Schema
- _parse_docstring: 解析函数文档
"""

import dataclasses
import inspect
import types
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel

from .logger_config import get_logger, log_schema_generation
from .schemas import SchemaConfig, Tool, WireFunctionDeclaration, WireSchema, WireTool

TYPE_STRING = "STRING"
TYPE_INTEGER = "INTEGER"
TYPE_NUMBER = "NUMBER"
TYPE_BOOLEAN = "BOOLEAN"
TYPE_OBJECT = "OBJECT"
TYPE_ARRAY = "ARRAY"

_UNION_TYPES = (Union, getattr(types, "UnionType", Union))

# 基础类型映射
_PRIMITIVE_TYPES = {
    str: TYPE_STRING,
    int: TYPE_INTEGER,
    float: TYPE_NUMBER,
    bool: TYPE_BOOLEAN,
}

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def _unwrap_optional(param_type: Any) -> Tuple[Any, bool]:
    """
    拆出 Optional[T] 的内部类型

    Returns:
        (内部类型, 是否可为 None)
    """
    if get_origin(param_type) in _UNION_TYPES:
        args = get_args(param_type)
        non_none = [arg for arg in args if arg is not type(None)]
        if len(non_none) == 1 and len(non_none) != len(args):
            return non_none[0], True
    return param_type, False


def _apply_constraints(schema: WireSchema, metadata: List[Any]) -> None:
    """将 pydantic Field 上的长度约束写入Schema"""
    for item in metadata:
        min_len = getattr(item, "min_length", None)
        max_len = getattr(item, "max_length", None)
        if schema.type == TYPE_ARRAY:
            if min_len is not None:
                schema.min_items = min_len
            if max_len is not None:
                schema.max_items = max_len
        else:
            if min_len is not None:
                schema.min_length = min_len
            if max_len is not None:
                schema.max_length = max_len


def _schema_from_model(model: type) -> WireSchema:
    """pydantic 模型：字段别名优先，有默认值或可为 None 的字段不是必需的"""
    properties: Dict[str, WireSchema] = {}
    ordering: List[str] = []
    required: List[str] = []

    for field_name, field in model.model_fields.items():
        name = field.alias or field_name
        _, nullable = _unwrap_optional(field.annotation)

        field_schema = build_schema_from_type(field.annotation)
        if field.description:
            field_schema.description = field.description
        _apply_constraints(field_schema, field.metadata)

        properties[name] = field_schema
        ordering.append(name)
        if field.is_required() and not nullable:
            required.append(name)

    return WireSchema(
        type=TYPE_OBJECT,
        properties=properties,
        property_ordering=ordering,
        required=required or None,
    )


def _schema_from_dataclass(cls: type) -> WireSchema:
    """dataclass：metadata 中的 alias / description 对应序列化名与描述"""
    properties: Dict[str, WireSchema] = {}
    ordering: List[str] = []
    required: List[str] = []
    type_hints = get_type_hints(cls)

    for field in dataclasses.fields(cls):
        name = field.metadata.get("alias", field.name)
        annotation = type_hints.get(field.name, field.type)
        _, nullable = _unwrap_optional(annotation)

        field_schema = build_schema_from_type(annotation)
        if field.metadata.get("description"):
            field_schema.description = field.metadata["description"]

        properties[name] = field_schema
        ordering.append(name)

        has_default = (
            field.default is not dataclasses.MISSING
            or field.default_factory is not dataclasses.MISSING
        )
        if not has_default and not nullable:
            required.append(name)

    return WireSchema(
        type=TYPE_OBJECT,
        properties=properties,
        property_ordering=ordering,
        required=required or None,
    )


def build_schema_from_type(param_type: Any) -> WireSchema:
    """
    根据Python类型生成Schema

    Args:
        param_type: Python类型

    Returns:
        WireSchema: Schema定义，未知类型按字符串处理
    """
    inner_type, nullable = _unwrap_optional(param_type)
    schema = _build_schema(inner_type)
    if nullable:
        schema.nullable = True
    return schema


def _build_schema(param_type: Any) -> WireSchema:
    origin = get_origin(param_type)

    # 多类型 Union 取第一个非 None 类型
    if origin in _UNION_TYPES:
        args = [arg for arg in get_args(param_type) if arg is not type(None)]
        return build_schema_from_type(args[0]) if args else WireSchema(type=TYPE_STRING)

    if origin is Literal:
        return WireSchema(type=TYPE_STRING, enum=[str(v) for v in get_args(param_type)])

    # 处理泛型类型
    if origin in _SEQUENCE_TYPES:
        args = get_args(param_type)
        element_type = args[0] if args else str
        return WireSchema(type=TYPE_ARRAY, items=build_schema_from_type(element_type))
    if origin is dict:
        return WireSchema(type=TYPE_OBJECT)

    if param_type in _PRIMITIVE_TYPES:
        return WireSchema(type=_PRIMITIVE_TYPES[param_type])

    if inspect.isclass(param_type):
        if issubclass(param_type, BaseModel):
            return _schema_from_model(param_type)
        if dataclasses.is_dataclass(param_type):
            return _schema_from_dataclass(param_type)
        if issubclass(param_type, Enum):
            return WireSchema(
                type=TYPE_STRING, enum=[str(member.value) for member in param_type]
            )
        if param_type in _SEQUENCE_TYPES:
            return WireSchema(type=TYPE_ARRAY, items=WireSchema(type=TYPE_STRING))
        if param_type is dict:
            return WireSchema(type=TYPE_OBJECT)

    return WireSchema(type=TYPE_STRING)


def resolve_schema(
    config: Optional[SchemaConfig], owner: str = ""
) -> Optional[Dict[str, Any]]:
    """
    按固定优先级解析 SchemaConfig：raw_schema > schema_type > wire_schema

    调用方应只设置其中一项；设置了多项时记录警告并按上述优先级取值。

    Args:
        config: Schema来源配置
        owner: 所属工具名称，用于日志

    Returns:
        Optional[Dict[str, Any]]: 请求中使用的Schema字典
    """
    if config is None:
        return None

    sources = [
        name
        for name, value in (
            ("raw_schema", config.raw_schema),
            ("schema_type", config.schema_type),
            ("wire_schema", config.wire_schema),
        )
        if value is not None
    ]
    if len(sources) > 1:
        get_logger("工具系统").warning(
            f"'{owner}' 同时设置了多个Schema来源 {sources}，使用 {sources[0]}"
        )

    if config.raw_schema is not None:
        return dict(config.raw_schema)
    if config.schema_type is not None:
        schema = build_schema_from_type(config.schema_type).to_wire()
        log_schema_generation(owner, schema)
        return schema
    if config.wire_schema is not None:
        return config.wire_schema.to_wire()
    return None


def tool_to_wire_declaration(tool: Tool) -> WireFunctionDeclaration:
    """
    将工具转换为函数声明

    Args:
        tool: 工具定义

    Returns:
        WireFunctionDeclaration: 函数声明
    """
    return WireFunctionDeclaration(
        name=tool.name,
        description=tool.description or None,
        parameters=resolve_schema(tool.request_config, tool.name),
        response=resolve_schema(tool.response_config, tool.name),
    )


def build_wire_tool(tool: Tool) -> WireTool:
    """单个工具转换为请求中的工具声明"""
    return WireTool(function_declarations=[tool_to_wire_declaration(tool)])


def build_wire_tools(tools: Optional[List[Tool]]) -> Optional[List[WireTool]]:
    """
    工具列表转换为请求中的工具声明列表

    Returns:
        Optional[List[WireTool]]: 每个工具一项；工具列表为空时返回 None
    """
    if not tools:
        return None
    return [build_wire_tool(tool) for tool in tools]


def new_tool_from_signatures(
    name: str,
    description: str,
    request_type: Any,
    response_type: Any = None,
) -> Tool:
    """
    根据请求/响应类型构建工具，Schema 在构建时即推导完成

    Args:
        name: 工具名称
        description: 工具描述
        request_type: 请求参数类型
        response_type: 响应类型

    Returns:
        Tool: 工具定义
    """
    response_config = None
    if response_type is not None:
        response_config = SchemaConfig(wire_schema=build_schema_from_type(response_type))
    return Tool(
        name=name,
        description=description,
        request_config=SchemaConfig(wire_schema=build_schema_from_type(request_type)),
        response_config=response_config,
    )


def _parse_docstring(func: Callable) -> Tuple[str, Dict[str, str]]:
    """
    解析函数文档

    Returns:
        (Args 之前的描述, 参数名到描述的映射)
    """
    doc = inspect.getdoc(func) or ""
    summary_lines: List[str] = []
    param_docs: Dict[str, str] = {}
    in_args_section = False

    for line in doc.split("\n"):
        line = line.strip()
        if line.startswith("Args:"):
            in_args_section = True
            continue
        if line.startswith("Returns:") or line.startswith("Raises:"):
            in_args_section = False
            continue

        if in_args_section:
            if ":" in line:
                param_name, desc = line.split(":", 1)
                param_name = param_name.split("(")[0].strip()
                if param_name and desc.strip():
                    param_docs[param_name] = desc.strip()
        elif line and not param_docs:
            summary_lines.append(line)

    return " ".join(summary_lines), param_docs


def _parameters_schema(func: Callable, param_docs: Dict[str, str]) -> WireSchema:
    """根据函数签名生成参数Schema"""
    signature = inspect.signature(func)
    type_hints = get_type_hints(func)

    properties: Dict[str, WireSchema] = {}
    ordering: List[str] = []
    required: List[str] = []

    for param_name, param in signature.parameters.items():
        # 跳过self和cls参数
        if param_name in ("self", "cls"):
            continue

        param_type = type_hints.get(param_name, str)
        param_schema = build_schema_from_type(param_type)
        if param_name in param_docs:
            param_schema.description = param_docs[param_name]

        properties[param_name] = param_schema
        ordering.append(param_name)

        _, nullable = _unwrap_optional(param_type)
        if param.default is inspect.Parameter.empty and not nullable:
            required.append(param_name)

    return WireSchema(
        type=TYPE_OBJECT,
        properties=properties,
        property_ordering=ordering,
        required=required or None,
    )


def tool_from_function(
    func: Callable, name: Optional[str] = None, description: Optional[str] = None
) -> Tool:
    """
    根据函数签名构建工具

    参数Schema来自签名与类型注解，参数描述来自文档的 Args 部分，
    响应Schema来自返回值注解。工具由调用方执行，这里只描述它。

    Args:
        func: 要描述的函数
        name: 工具名称，默认使用函数名
        description: 工具描述，默认使用文档首段

    Returns:
        Tool: 工具定义
    """
    summary, param_docs = _parse_docstring(func)
    tool_name = name or func.__name__

    response_config = None
    return_type = get_type_hints(func).get("return")
    if return_type is not None and return_type is not type(None):
        response_config = SchemaConfig(wire_schema=build_schema_from_type(return_type))

    request_schema = _parameters_schema(func, param_docs)
    log_schema_generation(tool_name, request_schema.to_wire())

    return Tool(
        name=tool_name,
        description=description or summary or f"工具函数 {tool_name}",
        request_config=SchemaConfig(wire_schema=request_schema),
        response_config=response_config,
    )


def tool(
    func: Optional[Callable] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
):
    """
    将函数描述为工具的装饰器，工具定义保存在 func.genai_tool 上

    支持 @tool 与 @tool(name=..., description=...) 两种写法。

    Returns:
        Callable: 原函数（未修改行为）
    """

    def decorator(f: Callable) -> Callable:
        setattr(f, "genai_tool", tool_from_function(f, name=name, description=description))
        return f

    if func is None:
        return decorator
    return decorator(func)
