"""
推理API客户端

通过 Generative Language REST API 与 Gemini 模型交互，支持非流式、流式（SSE）调用与向量化，
并提供多轮会话对象 GeminiChat。
"""

import json
import os
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .logger_config import get_logger, log_http_request
from .schemas import (
    WireContent,
    WireGenerateResponse,
    WirePart,
    WireRequestConfig,
)

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def _extract_error_details(status_code: int, error_text: str) -> str:
    """从错误响应中提取API给出的错误信息"""
    try:
        error_json = json.loads(error_text)
        if isinstance(error_json, dict) and "error" in error_json:
            error_info = error_json["error"]
            if isinstance(error_info, dict) and "message" in error_info:
                return f"API错误: {error_info['message']}"
            return f"API错误: {error_info}"
        return f"响应内容: {error_text[:200]}..."
    except ValueError:
        return f"HTTP {status_code} 错误"


class GeminiAPIClient:
    """
    推理API客户端

    负责构造请求体并解析响应，不做任何重试。HTTP 错误记录日志后原样抛出
    （httpx.HTTPStatusError / httpx.RequestError），由调用方包装。
    """

    def __init__(
        self,
        api_key: str = os.getenv("GEMINI_API_KEY", ""),
        base_url: str = os.getenv("GEMINI_API_BASE", DEFAULT_API_BASE),
        httpx_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """
        初始化推理API客户端

        Args:
            api_key: API密钥
            base_url: API基础URL
            httpx_client: 可选的httpx异步客户端
            timeout: 单次请求超时时间（秒）
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx_client or httpx.AsyncClient()
        self._headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @staticmethod
    def _model_path(model: str) -> str:
        if "/" in model:
            return model
        return f"models/{model}"

    def _url(self, model: str, method: str) -> str:
        return f"{self.base_url}/{self._model_path(model)}:{method}"

    @staticmethod
    def _build_payload(
        contents: List[WireContent], config: Optional[WireRequestConfig]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"contents": [c.to_wire() for c in contents]}
        if config is not None:
            payload.update(config.to_wire())
        return payload

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """发送非流式请求并返回 JSON 响应"""
        lib_logger = get_logger("推理API")
        try:
            response = await self._client.post(
                url, headers=self._headers, json=payload, timeout=self.timeout
            )
            log_http_request("POST", url, response.status_code)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            error_details = _extract_error_details(e.response.status_code, e.response.text)
            lib_logger.error(
                f"[错误] HTTP错误: {e.response.status_code} - {error_details}"
            )
            raise
        except httpx.RequestError as e:
            log_http_request("POST", url, error=str(e))
            raise
        except json.JSONDecodeError as e:
            lib_logger.error(f"[错误] JSON解码失败: {e}")
            raise

    async def generate_content(
        self,
        model: str,
        contents: List[WireContent],
        config: Optional[WireRequestConfig] = None,
    ) -> WireGenerateResponse:
        """
        非流式生成

        Args:
            model: 模型名称
            contents: 完整的对话内容（历史 + 本轮）
            config: 请求配置

        Returns:
            WireGenerateResponse: 响应
        """
        data = await self._post(
            self._url(model, "generateContent"), self._build_payload(contents, config)
        )
        return WireGenerateResponse.model_validate(data)

    async def stream_generate_content(
        self,
        model: str,
        contents: List[WireContent],
        config: Optional[WireRequestConfig] = None,
    ) -> AsyncIterator[WireGenerateResponse]:
        """
        流式生成

        Yields:
            WireGenerateResponse: 每个 SSE 数据块对应的部分响应
        """
        lib_logger = get_logger("推理API")
        url = f"{self._url(model, 'streamGenerateContent')}?alt=sse"
        stream_headers = self._headers.copy()
        stream_headers["Accept"] = "text/event-stream"

        try:
            async with self._client.stream(
                "POST",
                url,
                headers=stream_headers,
                json=self._build_payload(contents, config),
                timeout=self.timeout,
            ) as response:
                log_http_request("POST", url, response.status_code)
                # 在开始处理流之前检查状态码
                if response.status_code >= 400:
                    error_content = await response.aread()
                    error_details = _extract_error_details(
                        response.status_code, error_content.decode("utf-8", "replace")
                    )
                    lib_logger.error(
                        f"[错误] HTTP错误: {response.status_code} - {error_details}"
                    )
                    response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data_json_str = line[len("data:") :].strip()
                    if not data_json_str:
                        continue

                    try:
                        chunk = json.loads(data_json_str)
                    except json.JSONDecodeError as e:
                        lib_logger.warning(
                            f"[警告] JSON解码失败: {e}, 行: '{data_json_str}'"
                        )
                        continue

                    yield WireGenerateResponse.model_validate(chunk)

        except httpx.HTTPStatusError:
            # 错误已经在上面被记录了，这里只需要重新抛出
            raise
        except httpx.RequestError as e:
            log_http_request("POST", url, error=str(e))
            raise

    async def embed_content(
        self,
        model: str,
        content: WireContent,
        task_type: Optional[str] = None,
        output_dimensionality: Optional[int] = None,
    ) -> List[float]:
        """
        向量化单条内容

        Returns:
            List[float]: 向量
        """
        payload: Dict[str, Any] = {
            "model": self._model_path(model),
            "content": content.to_wire(),
        }
        if task_type:
            payload["taskType"] = task_type
        if output_dimensionality:
            payload["outputDimensionality"] = output_dimensionality

        data = await self._post(self._url(model, "embedContent"), payload)
        return list(data.get("embedding", {}).get("values", []))

    def create_chat(
        self,
        model: str,
        config: Optional[WireRequestConfig] = None,
        history: Optional[List[WireContent]] = None,
    ) -> "GeminiChat":
        """创建多轮会话对象，history 为已有的对话轮次"""
        return GeminiChat(self, model, config=config, history=history)

    async def aclose(self) -> None:
        """关闭底层 httpx 客户端"""
        await self._client.aclose()


class GeminiChat:
    """
    多轮会话对象

    保存模型名、基础请求配置和对话轮次。每次发送时携带完整历史，
    调用成功完成后才把本轮的用户内容与模型内容追加到历史中。
    """

    def __init__(
        self,
        api_client: GeminiAPIClient,
        model: str,
        config: Optional[WireRequestConfig] = None,
        history: Optional[List[WireContent]] = None,
    ):
        self._api_client = api_client
        self.model = model
        self.config = config
        self._history: List[WireContent] = list(history or [])

    @property
    def history(self) -> List[WireContent]:
        return list(self._history)

    def _record_turn(self, user_content: WireContent, model_parts: List[WirePart]) -> None:
        if not model_parts:
            return
        self._history.append(user_content)
        self._history.append(WireContent(role="model", parts=model_parts))

    async def send_message(
        self,
        parts: List[WirePart],
        model: Optional[str] = None,
        config: Optional[WireRequestConfig] = None,
    ) -> WireGenerateResponse:
        """
        发送一轮用户内容

        Args:
            parts: 本轮用户内容片段
            model: 本次调用使用的模型，默认使用会话模型
            config: 本次调用的请求配置，默认使用会话配置
        """
        user_content = WireContent(role="user", parts=parts)
        response = await self._api_client.generate_content(
            model or self.model, self._history + [user_content], config or self.config
        )

        if response.candidates and response.candidates[0].content is not None:
            self._record_turn(user_content, response.candidates[0].content.parts)
        return response

    async def send_message_stream(
        self,
        parts: List[WirePart],
        model: Optional[str] = None,
        config: Optional[WireRequestConfig] = None,
    ) -> AsyncIterator[WireGenerateResponse]:
        """
        流式发送一轮用户内容

        流被提前关闭时不会记录本轮内容。
        """
        user_content = WireContent(role="user", parts=parts)
        model_parts: List[WirePart] = []

        async for chunk in self._api_client.stream_generate_content(
            model or self.model, self._history + [user_content], config or self.config
        ):
            if chunk.candidates and chunk.candidates[0].content is not None:
                for part in chunk.candidates[0].content.parts:
                    _append_part(model_parts, part)
            yield chunk

        self._record_turn(user_content, model_parts)


def _append_part(parts: List[WirePart], part: WirePart) -> None:
    """相邻的纯文本片段合并为一个"""
    if (
        parts
        and part.text is not None
        and part.function_call is None
        and parts[-1].text is not None
        and parts[-1].function_call is None
        and bool(part.thought) == bool(parts[-1].thought)
    ):
        parts[-1] = parts[-1].model_copy(update={"text": parts[-1].text + part.text})
        return
    parts.append(part)
