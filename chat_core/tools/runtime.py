from typing import List, Protocol

from .definitions import ToolCall, ToolDef, ToolResult


class ToolRuntime(Protocol):
    """工具运行时协议：报告已连接服务器与可用工具，并执行调用。"""

    def get_connected_server_ids(self) -> List[str]:
        ...

    def get_available_tools(self) -> List[ToolDef]:
        ...

    def call_tool(self, call: ToolCall) -> ToolResult:
        ...
