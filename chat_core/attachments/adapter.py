"""内容适配器：把「文本 + 附件」编码成目标 Provider 能接受的形态。

形态由能力表决定：
- parts：text / image_url / document 片段数组；
- images：一段文本 + 旁路 base64 图片数组（Ollama）；
- text：纯文本，图片用占位说明代替。

单个附件的失败只会变成一段占位文本，adapt() 本身不抛异常。
"""

import base64
import logging
from typing import Dict, List, Optional, Sequence

from chat_core.attachments.base import DocumentParser
from chat_core.attachments.extraction import TextExtractor, failure_placeholder
from chat_core.attachments.native import MistralFilePipeline, NativeFilePipeline, data_url
from chat_core.domain.models import Attachment, ContentPart, DocumentBlock, ProviderPayload, TextWithImages
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import ProviderCapabilities, get_capabilities

DEFAULT_ANALYZE_MESSAGE = "Please analyze the attached content."


def image_placeholder(attachment: Attachment) -> str:
    return (
        f"\n\n[Image attached: {attachment.name} - "
        "Please describe what you'd like me to analyze about this image.]"
    )


def _is_native_document(attachment: Attachment) -> bool:
    mime = attachment.mime_type or ""
    return mime == "application/pdf" or mime.startswith("text/")


class ContentAdapter:
    def __init__(
        self,
        parser: Optional[DocumentParser] = None,
        native_pipelines: Optional[Dict[str, NativeFilePipeline]] = None,
    ):
        self._extractor = TextExtractor(parser)
        if native_pipelines is None:
            native_pipelines = {"mistral": MistralFilePipeline()}
        self._native = native_pipelines

    def adapt(self, text: str, files: Optional[Sequence[Attachment]], provider_id: str) -> ProviderPayload:
        if not files:
            return text
        caps = get_capabilities(provider_id)
        lead = text or DEFAULT_ANALYZE_MESSAGE

        pipeline = self._native.get((provider_id or "").lower()) if caps.native_file_pipeline else None
        if pipeline is not None:
            try:
                return pipeline.process(lead, files)
            except Exception as exc:
                logger.log(
                    logging.WARNING,
                    "Native file pipeline failed, falling back to generic processing",
                    extra={"extra": {"provider": provider_id, "error": str(exc)}},
                )

        if caps.content_shape == "parts":
            return self._to_parts(lead, files, caps)
        if caps.content_shape == "images":
            return self._to_text_with_images(lead, files)
        return self._to_text(lead, files)

    def _to_parts(self, lead: str, files: Sequence[Attachment], caps: ProviderCapabilities) -> List[ContentPart]:
        text_part = ContentPart(type="text", text=lead)
        parts = [text_part]
        for f in files:
            try:
                if f.is_image and caps.supports_vision:
                    parts.append(ContentPart(type="image_url", image_url=data_url(f)))
                elif caps.supports_native_documents and _is_native_document(f):
                    encoded = base64.b64encode(f.data).decode("ascii")
                    parts.append(
                        ContentPart(
                            type="document",
                            document=DocumentBlock(name=f.name, media_type=f.mime_type, data=encoded),
                        )
                    )
                elif f.is_image:
                    text_part.text += image_placeholder(f)
                else:
                    text_part.text += f"\n\n[File: {f.name}]\n{self._extractor.extract(f)}"
            except Exception as exc:
                text_part.text += "\n\n" + failure_placeholder(f, str(exc))
        return parts

    def _to_text_with_images(self, lead: str, files: Sequence[Attachment]) -> TextWithImages:
        text = lead
        images: List[str] = []
        for f in files:
            try:
                if f.is_image:
                    images.append(base64.b64encode(f.data).decode("ascii"))
                else:
                    text += f"\n\n[File: {f.name}]\n{self._extractor.extract(f)}"
            except Exception as exc:
                text += "\n\n" + failure_placeholder(f, str(exc))
        return TextWithImages(text=text, images=images)

    def _to_text(self, lead: str, files: Sequence[Attachment]) -> str:
        text = lead
        for f in files:
            if f.is_image:
                text += image_placeholder(f)
            else:
                text += f"\n\n[File: {f.name}]\n{self._extractor.extract(f)}"
        return text
