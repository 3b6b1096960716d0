"""附件文本抽取。

对不支持原生文件的 Provider，把附件转换为可拼进提示词的文本：
纯文本直接解码；PDF 与常见文档格式交给 DocumentParser；
其余类型只给出文件名与大小说明。任何失败都返回占位文本，不抛异常。
"""

import logging
from typing import Optional

from chat_core.attachments.base import DocumentParser, ParsedDocument
from chat_core.attachments.parsers import ParserRegistry
from chat_core.domain.exceptions import AttachmentError
from chat_core.domain.models import Attachment
from chat_core.infrastructure.logging.logger import logger

PLAIN_TEXT_EXTENSIONS = frozenset({".txt", ".md", ".log"})
PARSEABLE_EXTENSIONS = frozenset({
    ".docx", ".doc", ".xlsx", ".xls", ".ods", ".csv", ".html", ".htm",
    ".ics", ".json", ".rtf", ".xml", ".pptx", ".ppt",
})

PARSING_STATUS_SUCCESS = "✅ Parsing Status: Success"
PARSING_STATUS_FAILED = "❌ Parsing Status: Failed"
PARSING_STATUS_FAILED_FALLBACK = "⚠️ Parsing Status: Failed (using fallback)"


def size_kb(attachment: Attachment) -> int:
    return int(attachment.size / 1024 + 0.5)


def failure_placeholder(attachment: Attachment, reason: str) -> str:
    return (
        f"[{attachment.name} - {size_kb(attachment)}KB]\n"
        f"Error: Failed to parse document - {reason}\n"
        "Please describe the content you'd like me to analyze."
    )


class TextExtractor:
    def __init__(self, parser: Optional[DocumentParser] = None):
        self._parser = parser if parser is not None else ParserRegistry()

    def extract(self, attachment: Attachment) -> str:
        """返回附件的文本表示，永不抛异常。"""

        try:
            return self._extract(attachment)
        except Exception as exc:
            logger.log(
                logging.WARNING,
                "Attachment text extraction failed",
                extra={"extra": {"file": attachment.name, "error": str(exc)}},
            )
            return failure_placeholder(attachment, str(exc) or type(exc).__name__)

    def _extract(self, attachment: Attachment) -> str:
        ext = attachment.extension
        if attachment.mime_type == "text/plain" or ext in PLAIN_TEXT_EXTENSIONS:
            return attachment.data.decode("utf-8", errors="replace")
        if attachment.mime_type == "application/pdf" or ext == ".pdf":
            return self._extract_pdf(attachment)
        if ext in PARSEABLE_EXTENSIONS:
            return self._format_parsed(attachment, self._parse(attachment))
        return (
            f"[File: {attachment.name} - {size_kb(attachment)}KB]\n"
            f"File type: {attachment.mime_type}\n"
            "Note: Text extraction not supported for this file type."
        )

    def _parse(self, attachment: Attachment) -> ParsedDocument:
        if not self._parser.supports(attachment):
            raise AttachmentError(
                code="UNSUPPORTED_DOCUMENT",
                message=f"No document parser available for {attachment.extension or attachment.mime_type}",
            )
        return self._parser.parse(attachment)

    def _extract_pdf(self, attachment: Attachment) -> str:
        header = f"[PDF Document: {attachment.name} - {size_kb(attachment)}KB]"
        if not self._parser.supports(attachment):
            return (
                f"{header}\nNote: PDF parsing not available in this environment.\n\n"
                "Please describe what you'd like me to analyze about this PDF."
            )
        doc = self._parser.parse(attachment)
        if not doc.success or not doc.text:
            return (
                f"{header}\n{PARSING_STATUS_FAILED}\nError: {doc.error or 'Unknown error'}\n\n"
                "The PDF file was uploaded but text extraction failed. You can:\n"
                "• Describe the content you'd like me to analyze\n"
                "• Copy and paste text from the PDF\n"
                "• Convert the PDF to a text file and upload that instead"
            )
        pages = doc.metadata.get("pages") or 1
        return f"{header}\n{PARSING_STATUS_SUCCESS}\nPages: {pages}\n\nContent:\n{doc.text}"

    @staticmethod
    def _format_parsed(attachment: Attachment, doc: ParsedDocument) -> str:
        meta = doc.metadata
        lines = [f"[{meta.get('format') or 'Document'}: {attachment.name}]"]
        if not doc.success:
            lines.append(PARSING_STATUS_FAILED_FALLBACK)
            if doc.error:
                lines.append(f"Error: {doc.error}")
        else:
            lines.append(PARSING_STATUS_SUCCESS)
        if doc.processing_time_ms:
            lines.append(f"Processing Time: {round(doc.processing_time_ms)}ms")
        if meta.get("title") and meta["title"] != attachment.name:
            lines.append(f"Title: {meta['title']}")
        if meta.get("sheets"):
            lines.append(f"Sheets: {', '.join(meta['sheets'])}")
        if meta.get("event_count"):
            lines.append(f"Events: {meta['event_count']}")
        return "\n".join(lines) + f"\n\nContent:\n{doc.text}"
