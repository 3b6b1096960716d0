"""文本类附件的解析接口与具体解析器。

二进制办公格式（docx、xlsx、pptx、pdf）不在这里处理，需要时接入外部 DocumentParser。
"""

import csv
import io
import json
import time
from abc import ABC, abstractmethod
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional

from chat_core.attachments.base import ParsedDocument
from chat_core.domain.models import Attachment


def _decode(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


class Parser(ABC):
    """附件解析器基类。"""

    extensions: tuple = ()
    format_name: str = "Text"

    @abstractmethod
    def parse(self, attachment: Attachment) -> ParsedDocument:
        """把附件解析为规范化文本与元数据。"""


class TextParser(Parser):
    extensions = (".txt", ".log")
    format_name = "Text"

    def parse(self, attachment: Attachment) -> ParsedDocument:
        return ParsedDocument(text=_decode(attachment.data), metadata={"format": self.format_name})


class MarkdownParser(TextParser):
    extensions = (".md", ".markdown")
    format_name = "Markdown"


class JsonParser(Parser):
    """JSON 解析器，输出确定性的规范化文本（键排序）。"""

    extensions = (".json",)
    format_name = "JSON"

    def parse(self, attachment: Attachment) -> ParsedDocument:
        payload: Any = json.loads(_decode(attachment.data))
        metadata: Dict[str, Any] = {"format": self.format_name}
        if isinstance(payload, dict):
            text = json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)
            metadata["keys"] = sorted(payload.keys())
        elif isinstance(payload, list):
            text = json.dumps(payload, ensure_ascii=False, indent=2)
            metadata["length"] = len(payload)
        else:
            text = str(payload)
        return ParsedDocument(text=text, metadata=metadata)


class CsvParser(Parser):
    extensions = (".csv",)
    format_name = "CSV"

    def parse(self, attachment: Attachment) -> ParsedDocument:
        rows = list(csv.reader(io.StringIO(_decode(attachment.data))))
        text = "\n".join(" | ".join(cell.strip() for cell in row) for row in rows if row)
        return ParsedDocument(text=text, metadata={"format": self.format_name, "rows": len(rows)})


class _TextCollector(HTMLParser):
    _SKIP = {"script", "style"}

    def __init__(self) -> None:
        super().__init__()
        self.parts: List[str] = []
        self.title: Optional[str] = None
        self._stack: List[str] = []

    def handle_starttag(self, tag: str, attrs) -> None:
        self._stack.append(tag)

    def handle_endtag(self, tag: str) -> None:
        if self._stack and self._stack[-1] == tag:
            self._stack.pop()

    def handle_data(self, data: str) -> None:
        current = self._stack[-1] if self._stack else ""
        if current in self._SKIP:
            return
        text = data.strip()
        if not text:
            return
        if current == "title" and self.title is None:
            self.title = text
            return
        self.parts.append(text)


class HtmlParser(Parser):
    extensions = (".html", ".htm")
    format_name = "HTML"

    def parse(self, attachment: Attachment) -> ParsedDocument:
        collector = _TextCollector()
        collector.feed(_decode(attachment.data))
        collector.close()
        metadata: Dict[str, Any] = {"format": self.format_name}
        if collector.title:
            metadata["title"] = collector.title
        return ParsedDocument(text="\n".join(collector.parts), metadata=metadata)


class IcsParser(Parser):
    """iCalendar：每个事件一行（标题与开始时间）。"""

    extensions = (".ics",)
    format_name = "Calendar"

    def parse(self, attachment: Attachment) -> ParsedDocument:
        events: List[Dict[str, str]] = []
        current: Optional[Dict[str, str]] = None
        for raw in _decode(attachment.data).splitlines():
            line = raw.strip()
            if line == "BEGIN:VEVENT":
                current = {}
            elif line == "END:VEVENT" and current is not None:
                events.append(current)
                current = None
            elif current is not None and ":" in line:
                key, value = line.split(":", 1)
                current[key.split(";", 1)[0]] = value
        lines = [f"- {e.get('SUMMARY', '(no title)')} ({e.get('DTSTART', '?')})" for e in events]
        return ParsedDocument(
            text="\n".join(lines),
            metadata={"format": self.format_name, "event_count": len(events)},
        )


class ParserRegistry:
    """按文件扩展名选择解析器。"""

    def __init__(self, parsers: Optional[List[Parser]] = None) -> None:
        self._parsers: Dict[str, Parser] = {}
        defaults = [TextParser(), MarkdownParser(), JsonParser(), CsvParser(), HtmlParser(), IcsParser()]
        for parser in parsers or defaults:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def supports(self, attachment: Attachment) -> bool:
        return attachment.extension in self._parsers

    def parse(self, attachment: Attachment) -> ParsedDocument:
        parser = self._parsers.get(attachment.extension)
        if parser is None:
            raise ValueError(f"No parser registered for extension: {attachment.extension or attachment.name}")
        started = time.perf_counter()
        doc = parser.parse(attachment)
        doc.processing_time_ms = (time.perf_counter() - started) * 1000
        return doc
