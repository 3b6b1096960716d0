import json
import os
import shutil
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional, Union
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import HistoryStore, Conversation
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import (
    ChatTurn,
    ContentPart,
    Cost,
    DocumentBlock,
    GeneratedImage,
    Source,
    Timing,
    ToolCallRecord,
    Usage,
)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(raw: str) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def turn_to_dict(turn: ChatTurn) -> Dict[str, Any]:
    payload = asdict(turn)
    payload["timestamp"] = _iso(turn.timestamp)
    return payload


def _content_from(raw: Union[str, List[Dict[str, Any]], None]) -> Union[str, List[ContentPart]]:
    if not isinstance(raw, list):
        return raw or ""
    parts = []
    for item in raw:
        doc = item.get("document")
        parts.append(
            ContentPart(
                type=item["type"],
                text=item.get("text"),
                image_url=item.get("image_url"),
                document=DocumentBlock(**doc) if doc else None,
                document_url=item.get("document_url"),
            )
        )
    return parts


def turn_from_dict(data: Dict[str, Any]) -> ChatTurn:
    return ChatTurn(
        id=data["id"],
        role=data["role"],
        content=_content_from(data.get("content")),
        timestamp=_parse_dt(data["timestamp"]),
        usage=Usage(**data["usage"]) if data.get("usage") else None,
        cost=Cost(**data["cost"]) if data.get("cost") else None,
        timing=Timing(**data["timing"]) if data.get("timing") else None,
        tool_calls=[ToolCallRecord(**c) for c in data.get("tool_calls") or []],
        sources=[Source(**s) for s in data.get("sources") or []],
        images=[GeneratedImage(**i) for i in data.get("images") or []],
        status=data.get("status") or "complete",
        error_category=data.get("error_category"),
        attachments=list(data.get("attachments") or []),
    )


class JsonHistoryStore(HistoryStore):
    """每个会话一个目录：meta.json（原子替换）+ turns.jsonl（只追加）。"""

    def __init__(self, root: Union[str, Path, None] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def create_conversation(self, title: str = "", meta: Optional[Dict[str, Any]] = None) -> Conversation:
        cid = f"c-{uuid4().hex}"
        cdir = self._conv_root / cid
        cdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        conv = Conversation(id=cid, title=title, created_at=now, updated_at=now, meta=dict(meta or {}))
        self._write_meta(cdir, conv)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        meta_path = self._conv_root / conversation_id / "meta.json"
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        return self._to_conversation(data)

    def list_conversations(self) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in sorted(self._conv_root.glob("*/")):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                items.append(self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError):
                continue
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    def append_turn(self, conversation_id: str, turn: ChatTurn) -> None:
        cdir = self._conv_root / conversation_id
        if not cdir.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        line = json.dumps(turn_to_dict(turn), ensure_ascii=False)
        # 同一进程内的并发追加按加锁顺序写入，不会交错
        with self._lock:
            try:
                with (cdir / "turns.jsonl").open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
            conv = self.get_conversation(conversation_id)
            conv.updated_at = datetime.now(timezone.utc)
            if not conv.title and turn.role == "user":
                conv.title = turn.text[:50]
            self._write_meta(cdir, conv)

    def list_turns(self, conversation_id: str) -> List[ChatTurn]:
        path = self._conv_root / conversation_id / "turns.jsonl"
        items: List[ChatTurn] = []
        if not path.exists():
            return items
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                items.append(turn_from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError):
                continue
        return items

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_root / conversation_id
        if not cdir.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        """更新会话标题。"""
        conv = self.get_conversation(conversation_id)
        conv.title = title
        conv.updated_at = datetime.now(timezone.utc)
        self._write_meta(self._conv_root / conversation_id, conv)

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "title": conv.title,
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
            "meta": conv.meta,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            title=data.get("title") or "",
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
            meta=data.get("meta") or {},
        )
