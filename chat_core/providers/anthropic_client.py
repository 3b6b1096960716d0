"""Anthropic Messages API 适配器。

与 OpenAI 兼容协议的主要差异：
- 使用 x-api-key 头与 anthropic-version。
- system 提示词放在顶层字段，而非消息列表。
- 图片与文档以 base64 source 块发送，支持原生 PDF / 文本文档。
- 工具调用以 tool_use / tool_result 内容块表示。
"""

import base64
import binascii
from typing import Any, Dict, List, Sequence, Union

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import (
    ContentPart,
    ProviderRequest,
    ProviderResponse,
    TextWithImages,
    ToolCallRecord,
    payload_text,
)
from chat_core.providers.base import StreamCallback
from chat_core.providers.http_base import HttpProviderClient, split_data_url, sse_data
from chat_core.tools.definitions import ToolDef, ToolResult

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class AnthropicClient(HttpProviderClient):
    """Anthropic 提供方客户端实现。"""

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        msgs: List[Dict[str, Any]] = []
        for turn in request.history:
            content = turn.content if turn.role == "user" else payload_text(turn.content)
            msgs.append({"role": turn.role, "content": self._content_blocks(content)})
        msgs.append({"role": "user", "content": self._content_blocks(request.content)})
        return msgs

    def chat(
        self,
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        tools: Sequence[ToolDef] = (),
    ) -> ProviderResponse:
        payload = self._build_payload(request, messages, tools, stream=False)
        data = self._post(self._url(request), payload, self._headers(request))
        return self._parse_response(data)

    def chat_stream(
        self,
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        on_chunk: StreamCallback,
    ) -> ProviderResponse:
        payload = self._build_payload(request, messages, (), stream=True)
        pieces: List[str] = []
        usage: Dict[str, int] = {}

        def handle(line: str) -> None:
            data = sse_data(line)
            if data is None:
                return
            kind = data.get("type")
            if kind == "message_start":
                usage.update((data.get("message") or {}).get("usage") or {})
            elif kind == "content_block_delta":
                delta = data.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    pieces.append(delta["text"])
                    on_chunk(delta["text"])
            elif kind == "message_delta":
                usage.update(data.get("usage") or {})
            elif kind == "error":
                err = data.get("error") or {}
                raise ApiError(code="API_ERROR", message=str(err.get("message") or err), http_status=500)

        self._stream(self._url(request), payload, self._headers(request), handle)
        return ProviderResponse(content="".join(pieces), usage=usage or None)

    def tool_round_messages(
        self,
        response: ProviderResponse,
        results: List[ToolResult],
    ) -> List[Dict[str, Any]]:
        assistant = response.message or {"role": "assistant", "content": response.content}
        tool_results = [
            {
                "type": "tool_result",
                "tool_use_id": r.call_id,
                "content": r.content,
                "is_error": r.is_error,
            }
            for r in results
        ]
        return [assistant, {"role": "user", "content": tool_results}]

    def _url(self, request: ProviderRequest) -> str:
        return f"{self._base_url(request.base_url)}/messages"

    @staticmethod
    def _headers(request: ProviderRequest) -> Dict[str, str]:
        return {
            "x-api-key": request.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _build_payload(
        self,
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        tools: Sequence[ToolDef],
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": messages,
            "temperature": request.temperature,
            "stream": stream,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.json_schema()}
                for t in tools
            ]
        return payload

    @staticmethod
    def _content_blocks(content: Union[str, List[ContentPart], TextWithImages]) -> Any:
        if isinstance(content, str):
            return content
        if isinstance(content, TextWithImages):
            blocks: List[Dict[str, Any]] = [{"type": "text", "text": content.text}]
            for b64 in content.images:
                blocks.append(
                    {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": b64}}
                )
            return blocks

        blocks = []
        for part in content:
            if part.type == "text":
                blocks.append({"type": "text", "text": part.text or ""})
            elif part.type == "image_url" and part.image_url:
                mime, data = split_data_url(part.image_url)
                if mime:
                    blocks.append({"type": "image", "source": {"type": "base64", "media_type": mime, "data": data}})
                else:
                    blocks.append({"type": "image", "source": {"type": "url", "url": data}})
            elif part.type == "document" and part.document:
                doc = part.document
                if doc.media_type == "application/pdf":
                    source = {"type": "base64", "media_type": doc.media_type, "data": doc.data}
                else:
                    # 文本类文档以 text source 发送
                    try:
                        text = base64.b64decode(doc.data).decode("utf-8", errors="replace")
                    except (binascii.Error, ValueError):
                        text = ""
                    source = {"type": "text", "media_type": "text/plain", "data": text}
                blocks.append({"type": "document", "source": source, "title": doc.name})
        return blocks

    def _parse_response(self, data: Dict[str, Any]) -> ProviderResponse:
        texts: List[str] = []
        tool_calls: List[ToolCallRecord] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                texts.append(block.get("text") or "")
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCallRecord(
                        id=block.get("id") or f"tool_call_{len(tool_calls)}",
                        name=block.get("name") or "",
                        arguments=block.get("input") or {},
                    )
                )
        return ProviderResponse(
            content="".join(texts),
            usage=data.get("usage"),
            tool_calls=tool_calls,
            message={"role": "assistant", "content": data.get("content") or []},
            raw=data,
        )
