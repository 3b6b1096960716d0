from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Protocol
from datetime import datetime

from .models import ChatTurn


@dataclass
class Conversation:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    meta: Dict[str, Any]


class HistoryStore(Protocol):
    """对话历史存储协议（只追加）。"""

    def create_conversation(self, title: str = "", meta: Optional[Dict[str, Any]] = None) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self) -> List[Conversation]:
        ...

    def append_turn(self, conversation_id: str, turn: ChatTurn) -> None:
        ...

    def list_turns(self, conversation_id: str) -> List[ChatTurn]:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...
