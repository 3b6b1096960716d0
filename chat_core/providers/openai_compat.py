"""OpenAI 兼容协议适配器。

OpenAI、Gemini（OpenAI 兼容端点）、Mistral、DeepSeek、LM Studio、
OpenRouter、Requesty、Replicate、n8n 共用本客户端。

本模块负责：

1. 接收统一的 ProviderRequest，转换为 /chat/completions 请求格式
   （多模态内容转为 content 数组）。
2. 调用 HTTP 接口，流式时解析 SSE 的 data 行。
3. 将响应 JSON 解析为 ProviderResponse（含工具调用、usage、生成图片）。
"""

import json
from typing import Any, Dict, List, Sequence, Union

from chat_core.domain.models import (
    ContentPart,
    Cost,
    GeneratedImage,
    ProviderRequest,
    ProviderResponse,
    TextWithImages,
    ToolCallRecord,
    payload_text,
)
from chat_core.providers.base import StreamCallback
from chat_core.providers.http_base import HttpProviderClient, parse_arguments, sse_data
from chat_core.tools.definitions import ToolDef, ToolResult


class OpenAICompatClient(HttpProviderClient):
    """OpenAI 兼容 Provider 客户端实现。"""

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        msgs: List[Dict[str, Any]] = []
        if request.system_prompt:
            msgs.append({"role": "system", "content": request.system_prompt})
        for turn in request.history:
            content = turn.content if turn.role == "user" else payload_text(turn.content)
            msgs.append({"role": turn.role, "content": self._content_payload(content)})
        msgs.append({"role": "user", "content": self._content_payload(request.content)})
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
        state: Dict[str, Any] = {"usage": None}

        def handle(line: str) -> None:
            data = sse_data(line)
            if data is None:
                return
            if data.get("usage"):
                state["usage"] = data["usage"]
            for ch in data.get("choices") or []:
                text = (ch.get("delta") or {}).get("content")
                if text:
                    pieces.append(text)
                    on_chunk(text)

        self._stream(self._url(request), payload, self._headers(request), handle)
        return ProviderResponse(content="".join(pieces), usage=state["usage"])

    def tool_round_messages(
        self,
        response: ProviderResponse,
        results: List[ToolResult],
    ) -> List[Dict[str, Any]]:
        assistant = response.message or {
            "role": "assistant",
            "content": response.content,
            "tool_calls": [self._serialize_call(c) for c in response.tool_calls],
        }
        msgs = [assistant]
        for r in results:
            msgs.append({"role": "tool", "tool_call_id": r.call_id, "content": r.content})
        return msgs

    def _url(self, request: ProviderRequest) -> str:
        return f"{self._base_url(request.base_url)}/chat/completions"

    @staticmethod
    def _headers(request: ProviderRequest) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if request.api_key:
            headers["Authorization"] = f"Bearer {request.api_key}"
        return headers

    def _build_payload(
        self,
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        tools: Sequence[ToolDef],
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "temperature": request.temperature,
            "stream": stream,
        }
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens
        if stream:
            payload["stream_options"] = {"include_usage": True}
        if tools:
            payload["tools"] = [self._serialize_tool(t) for t in tools]
            payload["tool_choice"] = "auto"
        return payload

    @staticmethod
    def _content_payload(content: Union[str, List[ContentPart], TextWithImages]) -> Any:
        if isinstance(content, str):
            return content
        if isinstance(content, TextWithImages):
            parts: List[Dict[str, Any]] = [{"type": "text", "text": content.text}]
            for b64 in content.images:
                parts.append({"type": "image_url", "image_url": {"url": f"data:image/png;base64,{b64}"}})
            return parts
        return [p.to_payload() for p in content]

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 function tool 描述。"""

        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.json_schema(),
            },
        }

    @staticmethod
    def _serialize_call(call: ToolCallRecord) -> Dict[str, Any]:
        return {
            "id": call.id,
            "type": "function",
            "function": {
                "name": call.name,
                "arguments": json.dumps(call.arguments, ensure_ascii=False),
            },
        }

    def _parse_response(self, data: Dict[str, Any]) -> ProviderResponse:
        """将原始响应 JSON 解析为 ProviderResponse。"""

        choices = data.get("choices") or []
        msg = (choices[0].get("message") if choices else None) or {}
        content = msg.get("content") or ""
        if isinstance(content, list):
            content = "".join(p.get("text", "") for p in content if isinstance(p, dict))

        tool_calls: List[ToolCallRecord] = []
        for idx, call in enumerate(msg.get("tool_calls") or []):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCallRecord(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or call.get("name") or "",
                    arguments=parse_arguments(func.get("arguments")),
                )
            )

        images: List[GeneratedImage] = []
        for img in msg.get("images") or []:
            url = ((img or {}).get("image_url") or {}).get("url")
            if url:
                images.append(GeneratedImage(url=url))

        usage = data.get("usage")
        cost = None
        if isinstance(usage, dict) and isinstance(usage.get("cost"), (int, float)):
            # OpenRouter 会直接返回本次调用的美元费用
            total = float(usage["cost"])
            cost = Cost(input_cost=0.0, output_cost=0.0, total_cost=total, provider=self.name)

        message: Dict[str, Any] = {"role": "assistant", "content": content}
        if tool_calls:
            message["tool_calls"] = [self._serialize_call(c) for c in tool_calls]
        return ProviderResponse(
            content=content,
            usage=usage,
            tool_calls=tool_calls,
            cost=cost,
            images=images,
            message=message,
            raw=data,
        )
