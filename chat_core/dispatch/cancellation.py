import threading

from chat_core.domain.exceptions import TurnCancelled


class CancelToken:
    """线程安全的取消标记，UI 线程调用 cancel()，工作线程在挂起点检查。"""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled()
