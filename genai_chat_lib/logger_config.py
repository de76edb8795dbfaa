"""
日志配置模块

库默认不输出任何日志；调用 enable_logging 后只在 loguru 上追加本库自己的处理器，
处理器只接收绑定了 genai_chat_lib 命名空间的记录，主应用程序的日志配置保持不变。

公开接口:
- enable_logging / disable_logging / is_logging_enabled: 日志开关
- setup_logger: 重新配置本库的控制台与文件输出
- get_logger: 获取绑定命名空间的日志器（禁用时返回空日志器）
- log_llm_interaction / log_http_request / log_persistence /
  log_chat_event / log_tool_response / log_schema_generation: 领域日志

环境变量:
- GENAI_CHAT_LOG_LEVEL: enable_logging 未指定级别时使用的级别
- GENAI_CHAT_LOG_FILE: 设置后 enable_logging 同时输出到该文件
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

_LIBRARY_NAMESPACE = "genai_chat_lib"

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[name]}:{function}:{line} | {message}"
)

_LOGGING_ENABLED = False
_CURRENT_LOG_LEVEL = "INFO"
# 本库添加的处理器，只移除这些
_HANDLER_IDS: List[int] = []


def _belongs_to_library(record) -> bool:
    name = record["extra"].get("name") or ""
    return name == _LIBRARY_NAMESPACE or name.startswith(_LIBRARY_NAMESPACE + ".")


def _add_library_handler(sink: Any, **options: Any) -> None:
    handler_id = logger.add(sink, filter=_belongs_to_library, level=_CURRENT_LOG_LEVEL, **options)
    _HANDLER_IDS.append(handler_id)


def _remove_library_handlers() -> None:
    while _HANDLER_IDS:
        handler_id = _HANDLER_IDS.pop()
        try:
            logger.remove(handler_id)
        except ValueError:
            # 已被应用程序移除
            pass


def enable_logging(enabled: bool = True, log_level: Optional[str] = None) -> None:
    """
    启用或禁用库的日志输出

    Args:
        enabled: 是否启用日志
        log_level: 日志级别，未指定时读取 GENAI_CHAT_LOG_LEVEL，默认 INFO
    """
    global _LOGGING_ENABLED
    if not enabled:
        disable_logging()
        return

    _LOGGING_ENABLED = True
    log_file = os.getenv("GENAI_CHAT_LOG_FILE", "")
    setup_logger(
        log_level=log_level or os.getenv("GENAI_CHAT_LOG_LEVEL", "INFO"),
        log_file=log_file or None,
        file_output=bool(log_file),
    )


def disable_logging() -> None:
    """关闭日志并移除本库添加的处理器"""
    global _LOGGING_ENABLED
    _LOGGING_ENABLED = False
    _remove_library_handlers()


def is_logging_enabled() -> bool:
    return _LOGGING_ENABLED


def setup_logger(
    log_file: Optional[str] = None,
    log_level: str = "INFO",
    console_output: bool = True,
    file_output: bool = False,
    max_file_size: str = "10 MB",
    rotation_count: int = 3,
) -> None:
    """
    重新配置本库的日志处理器（日志未启用时只记录级别）

    Args:
        log_file: 日志文件路径，默认当前目录下的 genai_chat_lib.log
        log_level: 日志级别
        console_output: 是否输出到标准错误
        file_output: 是否输出到文件
        max_file_size: 单个文件的轮转大小
        rotation_count: 保留的轮转文件数
    """
    global _CURRENT_LOG_LEVEL
    _CURRENT_LOG_LEVEL = log_level.upper()
    _remove_library_handlers()

    if not _LOGGING_ENABLED:
        return

    if console_output:
        _add_library_handler(sys.stderr, format=_CONSOLE_FORMAT, colorize=True)
    if file_output:
        _add_library_handler(
            Path(log_file or Path.cwd() / f"{_LIBRARY_NAMESPACE}.log"),
            format=_FILE_FORMAT,
            rotation=max_file_size,
            retention=rotation_count,
            encoding="utf-8",
        )


class _NoOpLogger:
    """日志禁用时的空日志器，任何日志方法都直接返回"""

    def bind(self, **kwargs):
        return self

    def __getattr__(self, name: str):
        return self._ignore

    @staticmethod
    def _ignore(*args, **kwargs) -> None:
        return None


_NOOP_LOGGER = _NoOpLogger()


def get_logger(name: Optional[str] = None):
    """
    获取日志器

    日志状态在调用时读取，因此应在使用处获取，而不是在模块导入时缓存。

    Args:
        name: 子名称，会拼接在库命名空间之后
    """
    if not _LOGGING_ENABLED:
        return _NOOP_LOGGER
    return logger.bind(name=f"{_LIBRARY_NAMESPACE}.{name}" if name else _LIBRARY_NAMESPACE)


# 领域日志


def log_llm_interaction(
    action: str, details: Optional[str] = None, error: Optional[str] = None
):
    """记录模型交互信息"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("模型交互")
    if error:
        lib_logger.error(f"模型 {action} 失败: {error}")
        if details:
            lib_logger.debug(f"详细信息: {details}")
    else:
        lib_logger.info(f"模型 {action}")
        if details:
            lib_logger.debug(f"详细信息: {details}")


def log_http_request(
    method: str,
    url: str,
    status_code: Optional[int] = None,
    error: Optional[str] = None,
):
    """记录HTTP请求"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("HTTP请求")
    if error:
        lib_logger.error(f"{method} {url} 失败: {error}")
    else:
        lib_logger.info(f"{method} {url} 响应码: {status_code}")


def log_persistence(
    action: str, key: str, success: bool = True, error: Optional[str] = None
):
    """记录存储读写"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("存储")
    if success:
        lib_logger.debug(f"{action} {key}")
    else:
        lib_logger.warning(f"{action} {key} 失败: {error}")


def log_chat_event(chat_id: str, event_type: str, content: str = ""):
    """记录会话事件"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("会话")
    if content:
        lib_logger.debug(f"[{chat_id}] [{event_type}] {content}")
    else:
        lib_logger.debug(f"[{chat_id}] [{event_type}]")


def log_tool_response(tool_name: str, args: Dict[str, Any], result: Any = None):
    """记录工具结果回传"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("工具结果")
    lib_logger.info(f"工具 '{tool_name}' 结果回传，参数: {args}")
    if result is not None:
        # 限制结果长度避免日志过大
        result_str = str(result)
        if len(result_str) > 200:
            result_str = result_str[:200] + "..."
        lib_logger.debug(f"工具 '{tool_name}' 结果: {result_str}")


def log_schema_generation(tool_name: str, schema: Dict[str, Any]):
    """记录Schema生成"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("Schema生成")
    lib_logger.debug(f"为 '{tool_name}' 生成Schema")
    lib_logger.trace(f"Schema内容: {schema}")
