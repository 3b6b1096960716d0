from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from chat_core.domain.models import Attachment


@dataclass
class ParsedDocument:
    """文档解析结果：正文 + 元数据（format、title、sheets、event_count、pages 等）。"""

    text: str
    success: bool = True
    error: Optional[str] = None
    processing_time_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class DocumentParser(Protocol):
    def supports(self, attachment: Attachment) -> bool:
        ...

    def parse(self, attachment: Attachment) -> ParsedDocument:
        ...
