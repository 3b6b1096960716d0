"""Provider 原生文件处理管线。

标记了 native_file_pipeline 的 Provider 优先走这里；管线抛出异常时，
ContentAdapter 会回退到通用的 parts 处理。
"""

import base64
from typing import List, Protocol, Sequence

from chat_core.domain.exceptions import AttachmentError
from chat_core.domain.models import Attachment, ContentPart

MISTRAL_MAX_DOCUMENT_BYTES = 50 * 1024 * 1024
_MISTRAL_DOCUMENT_HINTS = ("pdf", "document", "word", "excel")


def data_url(attachment: Attachment) -> str:
    encoded = base64.b64encode(attachment.data).decode("ascii")
    return f"data:{attachment.mime_type or 'application/octet-stream'};base64,{encoded}"


class NativeFilePipeline(Protocol):
    def process(self, text: str, files: Sequence[Attachment]) -> List[ContentPart]:
        ...


class MistralFilePipeline:
    """Mistral 视觉/文档输入：图片走 image_url，PDF 与 Office 文档走 document_url。"""

    def process(self, text: str, files: Sequence[Attachment]) -> List[ContentPart]:
        parts = [ContentPart(type="text", text=text)]
        for f in files:
            parts.append(self._prepare(f))
        return parts

    @staticmethod
    def _prepare(attachment: Attachment) -> ContentPart:
        if attachment.is_image:
            return ContentPart(type="image_url", image_url=data_url(attachment))
        mime = (attachment.mime_type or "").lower()
        if any(hint in mime for hint in _MISTRAL_DOCUMENT_HINTS):
            if attachment.size > MISTRAL_MAX_DOCUMENT_BYTES:
                raise AttachmentError(
                    code="FILE_TOO_LARGE",
                    message=f"File {attachment.name} exceeds Mistral's 50MB document limit",
                )
            return ContentPart(type="document_url", document_url=data_url(attachment))
        raise AttachmentError(
            code="UNSUPPORTED_FILE",
            message=f"File type {attachment.mime_type} not supported by Mistral",
        )
