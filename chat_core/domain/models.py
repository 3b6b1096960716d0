"""统一的对话与结果数据模型。

本模块定义了在不同 Provider 之间共享的标准数据结构：

- ChatTurn: 一条对话记录（user/assistant），助手消息附带 usage、cost、
  timing、工具调用与引用来源等遥测信息。
- ContentPart / TextWithImages: 适配后的多模态内容形态。
- ProviderRequest / ProviderResponse: 发给 Provider 的请求与其原始返回。
- ChatSettings / RAGOptions / AgentProfile: 每轮对话使用的不可变配置快照。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON
和这些模型之间做转换。
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union, TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from chat_core.tools.definitions import ToolDef


Role = Literal["user", "assistant"]
SourceType = Literal["knowledge_base", "web", "document"]
TurnStatus = Literal["streaming", "complete", "cancelled", "error"]
PartType = Literal["text", "image_url", "document", "document_url"]
AggregationStrategy = Literal["relevance", "balanced", "comprehensive"]


def new_turn_id() -> str:
    """生成按时间递增的消息 id。"""

    return f"m-{time.time_ns():x}-{uuid4().hex[:8]}"


@dataclass
class Attachment:
    """用户上传的文件（对核心来说是不透明的字节）。"""

    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return (self.mime_type or "").startswith("image/")

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return f".{ext.lower()}" if dot else ""


@dataclass
class DocumentBlock:
    """Provider 原生解析的文档块（如 Anthropic document）。"""

    name: str
    media_type: str
    data: str  # base64


@dataclass
class ContentPart:
    """多模态内容中的一个片段。"""

    type: PartType
    text: Optional[str] = None
    image_url: Optional[str] = None  # data URL
    document: Optional[DocumentBlock] = None
    document_url: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """转换为 OpenAI 风格的 content 数组元素。"""

        if self.type == "text":
            return {"type": "text", "text": self.text or ""}
        if self.type == "image_url":
            return {"type": "image_url", "image_url": {"url": self.image_url}}
        if self.type == "document_url":
            return {"type": "document_url", "document_url": self.document_url}
        doc = self.document
        return {
            "type": "document",
            "document": {
                "name": doc.name if doc else "",
                "media_type": doc.media_type if doc else "",
                "data": doc.data if doc else "",
            },
        }


@dataclass
class TextWithImages:
    """文本 + 图片旁路数组（Ollama 风格），images 为不带 data URL 前缀的 base64。"""

    text: str
    images: List[str] = field(default_factory=list)


ProviderPayload = Union[str, List[ContentPart], TextWithImages]


def payload_text(content: Union[str, List[ContentPart], TextWithImages]) -> str:
    """抽取内容中的纯文本部分，用于历史回放与日志。"""

    if isinstance(content, str):
        return content
    if isinstance(content, TextWithImages):
        return content.text
    return "\n".join(p.text or "" for p in content if p.type == "text")


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class Cost:
    input_cost: float
    output_cost: float
    total_cost: float
    currency: str = "USD"
    provider: str = ""
    model: str = ""


@dataclass
class Timing:
    start_time: float  # 毫秒
    end_time: float
    duration: float
    tokens_per_second: Optional[float] = None


@dataclass
class ToolCallRecord:
    """一次工具调用及其结果，原样保存在助手消息上。"""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    result: Optional[str] = None
    error: bool = False


@dataclass
class Source:
    type: SourceType
    title: str
    url: Optional[str] = None
    score: Optional[float] = None
    snippet: Optional[str] = None


@dataclass
class GeneratedImage:
    url: str  # data URL 或远程地址
    mime_type: str = "image/png"
    alt: str = ""


@dataclass
class ChatTurn:
    """对话中的一条消息。

    由编排层在调用 Provider 时创建（内容为空），流式过程中原地追加内容，
    调用结束后定稿，再交给历史存储（只追加）。
    """

    role: Role
    content: Union[str, List[ContentPart]] = ""
    id: str = field(default_factory=new_turn_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    usage: Optional[Usage] = None
    cost: Optional[Cost] = None
    timing: Optional[Timing] = None
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    sources: List[Source] = field(default_factory=list)
    images: List[GeneratedImage] = field(default_factory=list)
    status: TurnStatus = "complete"
    error_category: Optional[str] = None
    attachments: List[str] = field(default_factory=list)  # 用户消息附带的文件名

    @property
    def text(self) -> str:
        return payload_text(self.content)


@dataclass(frozen=True)
class RAGOptions:
    max_results_per_kb: int = 3
    relevance_threshold: float = 0.1
    context_window_tokens: int = 4000
    aggregation_strategy: AggregationStrategy = "relevance"
    include_source_attribution: bool = True


@dataclass(frozen=True)
class ProviderSettings:
    """单个 Provider 的凭证与地址。"""

    api_key: str = ""
    base_url: str = ""


@dataclass(frozen=True)
class ChatSettings:
    """一轮对话使用的不可变设置快照。"""

    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    system_prompt: str = ""
    rag_enabled: bool = False
    tool_calling_enabled: bool = False
    rag_options: RAGOptions = field(default_factory=RAGOptions)
    history_length: int = 10
    max_tool_rounds: int = 5
    providers: Mapping[str, ProviderSettings] = field(default_factory=dict)

    def credentials_for(self, provider_id: str) -> ProviderSettings:
        return self.providers.get(provider_id) or ProviderSettings()


@dataclass(frozen=True)
class AgentProfile:
    """命名 Agent 的配置：固定 provider、模型、提示词与知识库。"""

    id: str
    name: str
    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    system_prompt: str = ""
    rag_enabled: bool = False
    tool_calling_enabled: bool = False
    knowledge_base_ids: Tuple[str, ...] = ()
    rag_options: RAGOptions = field(default_factory=RAGOptions)


@dataclass(frozen=True)
class ProviderRequest:
    """发给 ProviderRegistry 的一次请求（瞬时对象）。"""

    provider_id: str
    model: str
    content: ProviderPayload
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    system_prompt: str = ""
    tool_calling_enabled: bool = False
    history: Tuple[ChatTurn, ...] = ()
    tools: Tuple["ToolDef", ...] = ()
    max_tool_rounds: int = 5


@dataclass
class ProviderResponse:
    """Provider 客户端的原始返回（usage 为任意厂商格式的字典）。"""

    content: str = ""
    usage: Optional[Dict[str, Any]] = None
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    cost: Optional[Cost] = None
    images: List[GeneratedImage] = field(default_factory=list)
    message: Optional[Dict[str, Any]] = None
    raw: Optional[dict] = None
