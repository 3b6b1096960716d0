"""流式 / 批量调度决策。

纯函数：只依赖参数与静态能力表，每次请求重新计算，不做缓存，
因此会话中途工具服务器上下线会立即影响下一次决策。
"""

from chat_core.providers.registry import get_capabilities


def tools_active(
    tool_calling_enabled: bool,
    connected_tool_server_count: int,
    available_tool_count: int,
) -> bool:
    """工具开关打开且至少有一个已连接服务器和一个可用工具。"""

    return bool(tool_calling_enabled) and connected_tool_server_count > 0 and available_tool_count > 0


def should_stream(
    provider_id: str,
    tool_calling_enabled: bool,
    connected_tool_server_count: int,
    available_tool_count: int,
    has_stream_consumer: bool = True,
) -> bool:
    if not has_stream_consumer:
        return False
    caps = get_capabilities(provider_id)
    # 流式接口不返回 usage 的 Provider 走批量，保证 token 统计完整
    if not caps.streaming_reports_usage:
        return False
    if not caps.streaming_supports_tools and tools_active(
        tool_calling_enabled, connected_tool_server_count, available_tool_count
    ):
        return False
    return True
