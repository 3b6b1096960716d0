"""Provider 抽象接口。

ProviderRegistry 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每种线协议实现一个 ProviderClient（openai 兼容、anthropic、ollama）。
- 负责：把 ProviderRequest 转成厂商消息列表、发送请求，
  并把响应 JSON 解析为 ProviderResponse。
- 工具循环由 Registry 统一驱动，客户端只负责把工具结果
  拼成各自协议下的续聊消息（tool_round_messages）。
"""

from typing import Any, Callable, Dict, List, Protocol, Sequence

from chat_core.domain.models import ProviderRequest, ProviderResponse
from chat_core.tools.definitions import ToolDef, ToolResult

StreamCallback = Callable[[str], None]


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。"""

    name: str

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        ...

    def chat(
        self,
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        tools: Sequence[ToolDef] = (),
    ) -> ProviderResponse:
        """执行一次非流式调用。"""
        ...

    def chat_stream(
        self,
        request: ProviderRequest,
        messages: List[Dict[str, Any]],
        on_chunk: StreamCallback,
    ) -> ProviderResponse:
        """执行一次流式调用，每个文本增量回调 on_chunk，结束后返回汇总结果。"""
        ...

    def tool_round_messages(
        self,
        response: ProviderResponse,
        results: List[ToolResult],
    ) -> List[Dict[str, Any]]:
        ...
