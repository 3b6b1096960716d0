"""检索增强器。

流程：
1. 校验知识库 id，丢弃不存在的 id。
2. 判断是否为「汇总类」问题（all/total/sum/...），汇总类问题扩大检索预算，
   并按来源文档去重以覆盖尽量多的文档。
3. 过滤低于相关度阈值的片段，按上下文窗口裁剪后拼成增强提示词。
4. 多知识库检索失败时回退到单次全库检索，再失败则原样返回提示词。

检索失败永远不会中断本轮对话。
"""

import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence

from chat_core.domain.exceptions import RetrievalError
from chat_core.domain.models import RAGOptions, Source
from chat_core.infrastructure.logging.logger import logger
from chat_core.retrieval.base import RetrievalResult, RetrievedChunk, Retriever

COMPREHENSIVE_PATTERN = re.compile(r"\b(all|total|sum|add|combine|every|each)\b", re.IGNORECASE)
COMPREHENSIVE_BUDGET = 20
FOCUSED_BUDGET = 10
FOCUSED_TOP_N = 5
MAX_DIVERSIFIED_SOURCES = 8
SNIPPET_LENGTH = 150

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)

COMPREHENSIVE_INTRO = (
    "You are an expert assistant with access to comprehensive documentation. "
    "Based on the following AUTHORITATIVE context from ALL documents in the knowledge base, "
    "provide a detailed and accurate response"
)
FOCUSED_INTRO = (
    "You are an expert assistant with access to specialized documentation. "
    "Based on the following AUTHORITATIVE context from the knowledge base, provide an accurate "
    "and detailed response. Use ONLY the information provided in the context below, and clearly "
    "indicate if the context doesn't contain sufficient information to answer the question"
)

ProgressCallback = Callable[[bool, Optional[str]], None]


@dataclass
class AugmentationResult:
    augmented_prompt: str
    sources: List[Source] = field(default_factory=list)
    knowledge_base_ids: List[str] = field(default_factory=list)
    strategy: str = "none"  # none / multi / legacy


def is_comprehensive_query(query: str) -> bool:
    return bool(COMPREHENSIVE_PATTERN.search(query or ""))


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text or ""))


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """按估算 token 数截断文本，保留原始空白与标点。"""

    if max_tokens <= 0:
        return ""
    for count, match in enumerate(_TOKEN_PATTERN.finditer(text), 1):
        if count == max_tokens:
            end = match.end()
            return text if end >= len(text.rstrip()) else text[:end] + "..."
    return text


def select_chunks(chunks: Sequence[RetrievedChunk], comprehensive: bool) -> List[RetrievedChunk]:
    """汇总类问题每个来源取排名最高的一条（最多 8 个来源），否则取全局前 5。"""

    if not comprehensive:
        return list(chunks[:FOCUSED_TOP_N])
    picked: List[RetrievedChunk] = []
    seen = set()
    for chunk in chunks:
        if chunk.source in seen:
            continue
        seen.add(chunk.source)
        picked.append(chunk)
        if len(picked) >= MAX_DIVERSIFIED_SOURCES:
            break
    return picked


def _snippet(text: str) -> str:
    return text[:SNIPPET_LENGTH] + "..." if len(text) > SNIPPET_LENGTH else text


class RetrievalAugmenter:
    def __init__(self, retriever: Optional[Retriever] = None):
        self._retriever = retriever

    def augment(
        self,
        prompt: str,
        knowledge_base_ids: Optional[Sequence[str]],
        options: Optional[RAGOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        enabled: bool = True,
    ) -> AugmentationResult:
        unchanged = AugmentationResult(augmented_prompt=prompt)
        ids = [i for i in (knowledge_base_ids or []) if i]
        if not enabled or not ids or self._retriever is None:
            return unchanged

        opts = options or RAGOptions()
        self._notify(on_progress, True, prompt)
        try:
            try:
                return self._augment_multi(prompt, ids, opts)
            except Exception as exc:
                logger.warning(
                    "Multi knowledge base search failed, falling back to legacy search",
                    extra={"extra": {"error": str(exc), "knowledge_base_ids": ids}},
                )
            try:
                return self._augment_legacy(prompt, opts)
            except Exception as exc:
                logger.warning(
                    "Legacy knowledge base search failed, sending prompt unchanged",
                    extra={"extra": {"error": str(exc)}},
                )
                return unchanged
        finally:
            self._notify(on_progress, False, None)

    def _augment_multi(self, prompt: str, ids: List[str], opts: RAGOptions) -> AugmentationResult:
        valid = list(self._retriever.validate_ids(ids))
        if not valid:
            logger.info("No valid knowledge bases selected", extra={"extra": {"requested": ids}})
            return AugmentationResult(augmented_prompt=prompt)

        comprehensive = is_comprehensive_query(prompt)
        if comprehensive:
            per_kb = max(opts.max_results_per_kb, math.ceil(COMPREHENSIVE_BUDGET / len(valid)))
            opts = replace(opts, max_results_per_kb=per_kb, aggregation_strategy="comprehensive")

        result = self._retriever.search(valid, prompt, opts)
        if not result.success:
            raise RetrievalError(code="RETRIEVAL_FAILED", message=result.error or "knowledge base search failed")

        if result.results:
            return self._build(prompt, result.results, opts, comprehensive, valid, "multi")
        if result.augmented_prompt:
            sources = [
                Source(
                    type="knowledge_base",
                    title=f"Knowledge Base: {kb}",
                    snippet="Multi-knowledge base search results",
                )
                for kb in valid
            ]
            return AugmentationResult(
                augmented_prompt=result.augmented_prompt,
                sources=sources,
                knowledge_base_ids=valid,
                strategy="multi",
            )
        return AugmentationResult(augmented_prompt=prompt, knowledge_base_ids=valid)

    def _augment_legacy(self, prompt: str, opts: RAGOptions) -> AugmentationResult:
        comprehensive = is_comprehensive_query(prompt)
        limit = COMPREHENSIVE_BUDGET if comprehensive else FOCUSED_BUDGET
        result: RetrievalResult = self._retriever.search_legacy(prompt, limit)
        if not result.success:
            raise RetrievalError(code="RETRIEVAL_FAILED", message=result.error or "legacy search failed")
        return self._build(prompt, result.results, opts, comprehensive, [], "legacy")

    def _build(
        self,
        prompt: str,
        chunks: Sequence[RetrievedChunk],
        opts: RAGOptions,
        comprehensive: bool,
        ids: List[str],
        strategy: str,
    ) -> AugmentationResult:
        relevant = [c for c in chunks if c.score is None or c.score >= opts.relevance_threshold]
        selected = select_chunks(relevant, comprehensive)
        if not selected:
            return AugmentationResult(augmented_prompt=prompt, knowledge_base_ids=ids)

        per_chunk = max(opts.context_window_tokens // len(selected), 1)
        blocks = []
        for i, chunk in enumerate(selected, 1):
            label = f"[Context {i} from {chunk.source}]" if opts.include_source_attribution else f"[Context {i}]"
            blocks.append(f"{label}:\n{truncate_to_tokens(chunk.text, per_chunk)}")

        intro = COMPREHENSIVE_INTRO if comprehensive else FOCUSED_INTRO
        augmented = (
            f"{intro}:\n\n"
            "===== KNOWLEDGE BASE CONTEXT (PRIORITY SOURCE) =====\n"
            + "\n\n".join(blocks)
            + "\n===== END KNOWLEDGE BASE CONTEXT =====\n\n"
            "IMPORTANT: Answer based primarily on the knowledge base context above. "
            "If the context doesn't contain the needed information, clearly state what's missing.\n\n"
            f"User Question: {prompt}"
        )
        sources = [
            Source(type="knowledge_base", title=c.source, score=c.score, snippet=_snippet(c.text))
            for c in selected
        ]
        logger.log(
            logging.INFO,
            "Augmented prompt with knowledge base context",
            extra={"extra": {"strategy": strategy, "chunks": len(selected), "comprehensive": comprehensive}},
        )
        return AugmentationResult(
            augmented_prompt=augmented,
            sources=sources,
            knowledge_base_ids=ids,
            strategy=strategy,
        )

    @staticmethod
    def _notify(callback: Optional[ProgressCallback], active: bool, query: Optional[str]) -> None:
        if callback is None:
            return
        try:
            callback(active, query)
        except Exception as exc:
            logger.warning("Retrieval progress callback failed", extra={"extra": {"error": str(exc)}})
