"""各 Provider 客户端共享的 HTTP 调用与错误映射。"""

import json
from typing import Any, Callable, Dict, Optional

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from chat_core.providers.registry import ProviderInfo


class HttpProviderClient:
    """基于 httpx 的同步客户端基类。

    - 网络错误（DNS 失败、连接超时等）统一包装为 NetworkError。
    - 429 包装为 RateLimitError，其他 >=400 包装为 ApiError。
    - 流式调用按行回调，回调中抛出的异常（例如取消）会中断连接并向上传播。
    """

    def __init__(self, info: ProviderInfo, timeout: float = 60.0):
        self.info = info
        self.name = info.id
        self._timeout = timeout

    def _base_url(self, base_url: str) -> str:
        return (base_url or self.info.base_url).rstrip("/")

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                resp = client.post(url, json=payload, headers=headers)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"Network error: {e}", provider=self.name)
        self._raise_for_status(resp)
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(code="API_ERROR", message=f"Invalid JSON response: {e}", http_status=502)

    def _stream(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        handle_line: Callable[[str], None],
    ) -> None:
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                with client.stream("POST", url, json=payload, headers=headers) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp)
                    for line in resp.iter_lines():
                        if line:
                            handle_line(line)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"Network error: {e}", provider=self.name)

    def _raise_for_status(self, resp: Any) -> None:
        if resp.status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT",
                message=f"{self.info.name} rate limit: {self._error_text(resp)}",
                http_status=429,
                provider=self.name,
            )
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=self._error_text(resp),
                http_status=resp.status_code,
                provider=self.name,
            )

    @staticmethod
    def _error_text(resp: Any) -> str:
        """优先取厂商 JSON 中的 error.message，否则返回原始文本。"""

        text = getattr(resp, "text", "") or ""
        try:
            data = json.loads(text)
        except (TypeError, ValueError):
            return text
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
            if isinstance(err, str):
                return err
        return text


def sse_data(line: str) -> Optional[Dict[str, Any]]:
    """解析一行 SSE，返回 data 中的 JSON 对象；空行、注释、[DONE] 返回 None。"""

    data_str = line.strip()
    if data_str.startswith("event:") or data_str.startswith(":"):
        return None
    if data_str.startswith("data:"):
        data_str = data_str[5:].strip()
    if not data_str or data_str == "[DONE]":
        return None
    try:
        obj = json.loads(data_str)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """解析工具调用的 arguments 字段。

    OpenAI 兼容协议会把 arguments 作为 JSON 字符串返回，这里做一层
    json.loads 尝试，失败时保留原始字符串到 `_raw`，避免信息丢失。
    """

    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"_raw": raw}
        return parsed if isinstance(parsed, dict) else {"_raw": raw}
    return {}


def split_data_url(url: str) -> tuple:
    """把 data:<mime>;base64,<data> 拆成 (mime, data)。非 data URL 返回 (None, url)。"""

    if not url.startswith("data:") or "," not in url:
        return None, url
    header, data = url.split(",", 1)
    mime = header[5:].split(";", 1)[0] or "application/octet-stream"
    return mime, data
