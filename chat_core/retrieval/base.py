"""检索服务协议与结果模型。

向量索引与检索算法不在本包范围内，只通过 Retriever 协议消费。
"""

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from chat_core.domain.models import RAGOptions


@dataclass
class RetrievedChunk:
    """一条检索命中的文本片段，source 为其来源文档名。"""

    text: str
    source: str
    score: Optional[float] = None
    knowledge_base_id: Optional[str] = None


@dataclass
class RetrievalResult:
    """检索结果：要么是现成的 augmented_prompt，要么是排好序的 results。"""

    success: bool
    augmented_prompt: Optional[str] = None
    results: List[RetrievedChunk] = field(default_factory=list)
    error: Optional[str] = None


class Retriever(Protocol):
    def validate_ids(self, knowledge_base_ids: Sequence[str]) -> List[str]:
        """返回其中真实存在的知识库 id。"""
        ...

    def search(self, knowledge_base_ids: Sequence[str], query: str, options: RAGOptions) -> RetrievalResult:
        """多知识库检索。"""
        ...

    def search_legacy(self, query: str, limit: int) -> RetrievalResult:
        """单次全库检索（多知识库检索失败时的回退路径）。"""
        ...
