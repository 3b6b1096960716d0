"""Ollama /api/chat 适配器。

图片通过消息上的 images 旁路数组发送（不带 data URL 前缀的 base64），
流式响应为逐行 JSON（NDJSON），最后一行 done=true 携带 token 统计。
"""

import json
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
from chat_core.providers.http_base import HttpProviderClient, parse_arguments, split_data_url
from chat_core.tools.definitions import ToolDef, ToolResult


def _usage_from(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: data[k] for k in ("prompt_eval_count", "eval_count") if k in data}


class OllamaClient(HttpProviderClient):
    """Ollama 本地服务客户端实现。"""

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        msgs: List[Dict[str, Any]] = []
        if request.system_prompt:
            msgs.append({"role": "system", "content": request.system_prompt})
        for turn in request.history:
            msgs.append({"role": turn.role, "content": payload_text(turn.content)})
        msgs.append({"role": "user", **self._user_fields(request.content)})
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
        usage: Dict[str, Any] = {}

        def handle(line: str) -> None:
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                return
            if data.get("error"):
                raise ApiError(code="API_ERROR", message=str(data["error"]), http_status=500)
            text = (data.get("message") or {}).get("content")
            if text:
                pieces.append(text)
                on_chunk(text)
            if data.get("done"):
                usage.update(_usage_from(data))

        self._stream(self._url(request), payload, self._headers(request), handle)
        return ProviderResponse(content="".join(pieces), usage=usage or None)

    def tool_round_messages(
        self,
        response: ProviderResponse,
        results: List[ToolResult],
    ) -> List[Dict[str, Any]]:
        assistant = response.message or {"role": "assistant", "content": response.content}
        return [assistant] + [{"role": "tool", "content": r.content} for r in results]

    def _url(self, request: ProviderRequest) -> str:
        return f"{self._base_url(request.base_url)}/api/chat"

    @staticmethod
    def _headers(request: ProviderRequest) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if request.api_key:
            headers["Authorization"] = f"Bearer {request.api_key}"
        return headers

    @staticmethod
    def _user_fields(content: Union[str, List[ContentPart], TextWithImages]) -> Dict[str, Any]:
        if isinstance(content, str):
            return {"content": content}
        if isinstance(content, TextWithImages):
            fields: Dict[str, Any] = {"content": content.text}
            if content.images:
                fields["images"] = list(content.images)
            return fields
        images = []
        for part in content:
            if part.type == "image_url" and part.image_url:
                mime, data = split_data_url(part.image_url)
                if mime:
                    images.append(data)
        fields = {"content": payload_text(content)}
        if images:
            fields["images"] = images
        return fields

    @staticmethod
    def _build_payload(
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        tools: Sequence[ToolDef],
        stream: bool,
    ) -> Dict[str, Any]:
        options: Dict[str, Any] = {"temperature": request.temperature}
        if request.max_tokens:
            options["num_predict"] = request.max_tokens
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": stream,
            "options": options,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.json_schema()},
                }
                for t in tools
            ]
        return payload

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> ProviderResponse:
        msg = data.get("message") or {}
        tool_calls: List[ToolCallRecord] = []
        for idx, call in enumerate(msg.get("tool_calls") or []):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCallRecord(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or "",
                    arguments=parse_arguments(func.get("arguments")),
                )
            )
        message: Dict[str, Any] = {"role": "assistant", "content": msg.get("content") or ""}
        if msg.get("tool_calls"):
            message["tool_calls"] = msg["tool_calls"]
        return ProviderResponse(
            content=message["content"],
            usage=_usage_from(data) or None,
            tool_calls=tool_calls,
            message=message,
            raw=data,
        )
