"""
生成配置合并

基础配置与单次调用的覆盖配置按字段合并，覆盖配置中未设置的字段不会改动基础配置。

公开接口:
- clone_generation_config: 深拷贝生成配置
- merge_generation_config: 将覆盖配置合并进基础配置
- resolve_generation_config: 先拷贝再合并，不修改传入的基础配置
"""

from typing import Optional

from .schemas import GenerationConfig


def clone_generation_config(src: Optional[GenerationConfig]) -> GenerationConfig:
    """
    深拷贝生成配置

    智能体的默认配置会被并发调用共享，合并前必须先拷贝。

    Args:
        src: 源配置，为 None 时返回空配置

    Returns:
        GenerationConfig: 新的配置对象
    """
    if src is None:
        return GenerationConfig()
    return src.model_copy(deep=True)


def merge_generation_config(
    base: GenerationConfig, override: Optional[GenerationConfig]
) -> GenerationConfig:
    """
    将覆盖配置按字段合并进基础配置（原地修改 base）

    - temperature / top_p / top_k: 覆盖值不为 None 时替换
    - max_output_tokens: 覆盖值不为 0 时替换（因此无法通过覆盖显式设为 0）
    - stop_sequences / tools: 覆盖列表非空时整体替换，不做部分合并
    - response_schema_config / tool_config: 覆盖值存在时整体替换

    Args:
        base: 基础配置
        override: 覆盖配置

    Returns:
        GenerationConfig: 合并后的 base
    """
    if override is None:
        return base

    if override.temperature is not None:
        base.temperature = override.temperature
    if override.top_p is not None:
        base.top_p = override.top_p
    if override.top_k is not None:
        base.top_k = override.top_k

    if override.max_output_tokens != 0:
        base.max_output_tokens = override.max_output_tokens

    if override.stop_sequences:
        base.stop_sequences = list(override.stop_sequences)

    if override.response_schema_config is not None:
        base.response_schema_config = override.response_schema_config

    if override.tools:
        base.tools = list(override.tools)

    if override.tool_config is not None:
        base.tool_config = override.tool_config

    return base


def resolve_generation_config(
    base: Optional[GenerationConfig], override: Optional[GenerationConfig] = None
) -> GenerationConfig:
    """拷贝基础配置后合并覆盖配置，返回新的配置对象"""
    return merge_generation_config(clone_generation_config(base), override)
