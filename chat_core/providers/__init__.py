"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base) 与共享 HTTP 逻辑 (http_base)。
- 维护 Provider 能力表 (registry) 与价格表 (pricing)。
- 提供各线协议的具体实现 (openai_compat、anthropic_client、ollama_client)。

ProviderRegistry 是编排层唯一依赖的入口：send() 按 provider id
选择客户端，并在启用工具时驱动多轮工具调用循环。
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from chat_core.domain.exceptions import ApiError, ValidationError
from chat_core.domain.models import Cost, ProviderRequest, ProviderResponse, ToolCallRecord
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.base import ProviderClient, StreamCallback
from chat_core.providers.ollama_client import OllamaClient
from chat_core.providers.openai_compat import OpenAICompatClient
from chat_core.providers.registry import PROVIDER_REGISTRY, ProviderInfo
from chat_core.tools.definitions import ToolCall, ToolDef, ToolResult
from chat_core.tools.runtime import ToolRuntime

STREAM_CHUNK_SIZE = 32
MAX_ROUNDS_HINT = (
    "You have reached the maximum number of tool calls for this turn. "
    "Answer the question now using the information gathered so far, without calling more tools."
)

_CLIENT_FACTORIES: Dict[str, Callable[[ProviderInfo, float], ProviderClient]] = {
    "openai": OpenAICompatClient,
    "anthropic": AnthropicClient,
    "ollama": OllamaClient,
}


def _merge_usage(total: Dict[str, Any], raw: Optional[Dict[str, Any]]) -> None:
    """把一轮调用的原始 usage 累加到 total（只累加数值字段）。"""

    for key, value in (raw or {}).items():
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            total[key] = total.get(key, 0) + value


def _merge_cost(costs: List[Optional[Cost]]) -> Optional[Cost]:
    """累加各轮 Provider 自报的费用；任一轮缺失时返回 None，交由价格表按累计 usage 计算。"""

    if not costs or any(c is None for c in costs):
        return None
    first = costs[0]
    return Cost(
        input_cost=sum(c.input_cost for c in costs),
        output_cost=sum(c.output_cost for c in costs),
        total_cost=sum(c.total_cost for c in costs),
        currency=first.currency,
        provider=first.provider,
        model=first.model,
    )


class ProviderRegistry:
    """按 provider id 统一发送请求。"""

    def __init__(self, tool_runtime: Optional[ToolRuntime] = None, timeout: float = 60.0):
        self._tool_runtime = tool_runtime
        self._timeout = timeout
        self._clients: Dict[str, ProviderClient] = {}

    def register_client(self, provider_id: str, client: ProviderClient) -> None:
        self._clients[provider_id.lower()] = client

    def get_client(self, provider_id: str) -> ProviderClient:
        key = (provider_id or "").lower()
        client = self._clients.get(key)
        if client is not None:
            return client
        info = PROVIDER_REGISTRY.get(key)
        if info is None:
            raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_id!r}")
        client = _CLIENT_FACTORIES[info.api_style](info, self._timeout)
        self._clients[key] = client
        return client

    def send(
        self,
        request: ProviderRequest,
        on_stream_chunk: Optional[StreamCallback] = None,
        cancel_token: Any = None,
    ) -> ProviderResponse:
        """发送一次请求。

        - 未启用工具：on_stream_chunk 存在则走流式，否则批量。
        - 启用工具：以非流式完成工具循环，最终回答按本地切片回调 on_stream_chunk。
        """

        client = self.get_client(request.provider_id)
        messages = client.build_messages(request)
        tools = list(request.tools) if request.tool_calling_enabled else []
        if not tools:
            if on_stream_chunk is not None:
                return client.chat_stream(request, messages, on_stream_chunk)
            return client.chat(request, messages)

        info = PROVIDER_REGISTRY.get(request.provider_id.lower())
        if info is not None and not info.capabilities.supports_tool_calls:
            raise ApiError(
                code="TOOL_CALLING_UNSUPPORTED",
                message=f"Tool calling is not supported by {info.name}",
                provider=info.id,
            )
        return self._run_with_tools(client, request, messages, tools, on_stream_chunk, cancel_token)

    def _run_with_tools(
        self,
        client: ProviderClient,
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        tools: Sequence[ToolDef],
        on_stream_chunk: Optional[StreamCallback],
        cancel_token: Any,
    ) -> ProviderResponse:
        """工具模式：多轮工具调用循环，超过最大轮数后不带工具再请求一次总结。"""

        executed: List[ToolCallRecord] = []
        usage_total: Dict[str, Any] = {}
        costs: List[Optional[Cost]] = []
        current = list(messages)

        for round_num in range(1, request.max_tool_rounds + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            resp = client.chat(request, current, tools)
            _merge_usage(usage_total, resp.usage)
            costs.append(resp.cost)
            if not resp.tool_calls:
                return self._finish(resp, executed, usage_total, costs, on_stream_chunk)

            logger.log(
                logging.INFO,
                "Model requested tools",
                extra={"extra": {
                    "provider": request.provider_id,
                    "round": round_num,
                    "tools": [c.name for c in resp.tool_calls],
                }},
            )
            results: List[ToolResult] = []
            for call in resp.tool_calls:
                result = self._call_tool(call)
                call.result = result.content
                call.error = result.is_error
                executed.append(call)
                results.append(result)
            current.extend(client.tool_round_messages(resp, results))

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        logger.warning(
            "Reached max tool rounds",
            extra={"extra": {"provider": request.provider_id, "max_rounds": request.max_tool_rounds}},
        )
        current.append({"role": "user", "content": MAX_ROUNDS_HINT})
        resp = client.chat(request, current)
        _merge_usage(usage_total, resp.usage)
        costs.append(resp.cost)
        return self._finish(resp, executed, usage_total, costs, on_stream_chunk)

    def _call_tool(self, call: ToolCallRecord) -> ToolResult:
        if self._tool_runtime is None:
            return ToolResult(call_id=call.id, content="Error: no tool runtime configured", is_error=True)
        try:
            return self._tool_runtime.call_tool(ToolCall(id=call.id, name=call.name, arguments=call.arguments))
        except Exception as exc:
            logger.warning(
                "Tool runtime call failed",
                extra={"extra": {"tool": call.name, "error": str(exc)}},
            )
            return ToolResult(call_id=call.id, content=f"Error: {exc}", is_error=True)

    @staticmethod
    def _finish(
        resp: ProviderResponse,
        executed: List[ToolCallRecord],
        usage_total: Dict[str, Any],
        costs: List[Optional[Cost]],
        on_stream_chunk: Optional[StreamCallback],
    ) -> ProviderResponse:
        # 本地模拟流式输出最终回答
        if on_stream_chunk is not None:
            content = resp.content or ""
            for i in range(0, len(content), STREAM_CHUNK_SIZE):
                on_stream_chunk(content[i: i + STREAM_CHUNK_SIZE])
        return ProviderResponse(
            content=resp.content,
            usage=usage_total or None,
            tool_calls=executed,
            cost=_merge_cost(costs),
            images=resp.images,
            message=resp.message,
            raw=resp.raw,
        )


def create_registry(settings: Any = None, tool_runtime: Optional[ToolRuntime] = None) -> ProviderRegistry:
    """根据配置创建 ProviderRegistry，默认取全局配置中的超时时间。"""

    if settings is None:
        from chat_core.config.settings import settings as app_settings

        settings = app_settings
    return ProviderRegistry(tool_runtime=tool_runtime, timeout=getattr(settings, "http_timeout", 60.0))


__all__ = ["ProviderRegistry", "create_registry", "ProviderClient"]
