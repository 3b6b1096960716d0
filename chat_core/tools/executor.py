from typing import Callable, Dict, Any, List, Optional
import logging

from chat_core.infrastructure.logging.logger import logger
from .definitions import ToolCall, ToolResult, ToolDef


ToolFunc = Callable[[Dict[str, Any]], str]


class ToolExecutor:
    """进程内工具运行时：把若干 Python 函数注册为一个工具服务器。

    工具函数抛出的异常会被包装为 is_error=True 的 ToolResult，
    交还给模型，而不是中断整轮对话。
    """

    def __init__(self, server_id: str = "local"):
        self._server_id = server_id
        self._tools: Dict[str, ToolFunc] = {}
        self._defs: Dict[str, ToolDef] = {}
        self._connected = True

    def register(self, tool: ToolDef, func: ToolFunc) -> None:
        if tool.server_id != self._server_id:
            tool = ToolDef(
                name=tool.name,
                description=tool.description,
                params=tool.params,
                server_id=self._server_id,
            )
        self._defs[tool.name] = tool
        self._tools[tool.name] = func

    def disconnect(self) -> None:
        self._connected = False

    def connect(self) -> None:
        self._connected = True

    def get_connected_server_ids(self) -> List[str]:
        return [self._server_id] if self._connected else []

    def get_available_tools(self) -> List[ToolDef]:
        if not self._connected:
            return []
        return list(self._defs.values())

    def call_tool(self, call: ToolCall) -> ToolResult:
        func: Optional[ToolFunc] = self._tools.get(call.name) if self._connected else None
        if func is None:
            return ToolResult(call_id=call.id, content=f"Tool not registered: {call.name}", is_error=True)
        try:
            result = func(call.arguments)
        except Exception as exc:
            logger.log(
                logging.WARNING,
                "Tool execution failed",
                extra={"extra": {"tool": call.name, "error": str(exc)}},
            )
            return ToolResult(call_id=call.id, content=f"Error: {exc}", is_error=True)
        return ToolResult(call_id=call.id, content=str(result))
