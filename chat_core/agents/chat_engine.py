"""对话编排引擎。

一轮对话的执行顺序：

1. 预检凭证（需要密钥的 Provider 未配置时，直接生成认证错误，不触达网络）。
2. 检索增强（可选）。
3. 内容适配（附件 → Provider 形态）。
4. 历史窗口裁剪与流式/批量决策（每次请求重新计算）。
5. 调用 ProviderRegistry，流式增量原地追加到助手消息。
6. 响应归一化（usage / cost / timing / sources）。
7. 失败时分类并生成错误消息；最终把用户消息与助手消息追加到历史存储，
   写入失败只记日志，助手消息照常返回。
"""

import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from chat_core.agents.profiles import AgentRepository
from chat_core.attachments.adapter import ContentAdapter
from chat_core.dispatch.cancellation import CancelToken
from chat_core.dispatch.error_classifier import ClassifiedError, ErrorCategory, describe, raw_message, user_message
from chat_core.dispatch.policy import should_stream
from chat_core.domain.conversation import HistoryStore
from chat_core.domain.exceptions import AgentNotFoundError, BusinessError, MissingCredentialError, TurnCancelled
from chat_core.domain.models import Attachment, ChatSettings, ChatTurn, ProviderRequest, Source
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers import ProviderRegistry
from chat_core.providers.registry import requires_credential
from chat_core.responses.normalizer import ResponseNormalizer, compute_timing
from chat_core.retrieval.augmenter import ProgressCallback, RetrievalAugmenter
from chat_core.retrieval.base import Retriever
from chat_core.tools.definitions import ToolDef
from chat_core.tools.runtime import ToolRuntime

StreamConsumer = Callable[[str], None]


def _now_ms() -> float:
    return time.time() * 1000


class ChatEngine:
    def __init__(
        self,
        registry: ProviderRegistry,
        retriever: Optional[Retriever] = None,
        content_adapter: Optional[ContentAdapter] = None,
        tool_runtime: Optional[ToolRuntime] = None,
        history_store: Optional[HistoryStore] = None,
        agent_repository: Optional[AgentRepository] = None,
        normalizer: Optional[ResponseNormalizer] = None,
    ):
        self._registry = registry
        self._augmenter = RetrievalAugmenter(retriever)
        self._adapter = content_adapter or ContentAdapter()
        self._tool_runtime = tool_runtime
        self._store = history_store
        self._agents = agent_repository
        self._normalizer = normalizer or ResponseNormalizer()

    def send_message(
        self,
        text: str,
        settings: ChatSettings,
        files: Optional[Sequence[Attachment]] = None,
        history: Optional[Sequence[ChatTurn]] = None,
        on_stream_chunk: Optional[StreamConsumer] = None,
        cancel_token: Optional[CancelToken] = None,
        conversation_id: Optional[str] = None,
        on_retrieval_progress: Optional[ProgressCallback] = None,
        knowledge_base_ids: Optional[Sequence[str]] = None,
    ) -> ChatTurn:
        """发送一条用户消息，返回定稿后的助手消息（成功、取消或错误）。

        Args:
            text: 用户输入
            settings: 本轮使用的设置快照
            files: 附件列表
            history: 历史消息；为 None 且配置了存储与 conversation_id 时从存储读取
            on_stream_chunk: 流式增量回调，为 None 时走批量调用
            cancel_token: 取消令牌
            conversation_id: 会话 id，提供时把本轮消息追加到历史存储
            on_retrieval_progress: 检索进度回调 (active, query)
            knowledge_base_ids: 本轮检索的知识库

        Returns:
            助手消息 ChatTurn，status 为 complete / cancelled / error
        """

        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "provider": settings.provider,
            "model": settings.model,
        }
        if conversation_id:
            log_ctx["conversation_id"] = conversation_id
        if history is None:
            history = self._load_history(conversation_id)

        user_turn = ChatTurn(role="user", content=text, attachments=[f.name for f in files or ()])
        assistant = ChatTurn(role="assistant", content="", status="streaming")
        start = _now_ms()
        kb_sources: List[Source] = []
        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            request, stream, kb_sources = self._prepare(
                text, settings, files, history, knowledge_base_ids, on_retrieval_progress,
                on_stream_chunk is not None, log_ctx,
            )
            on_chunk = self._chunk_handler(assistant, on_stream_chunk, cancel_token) if stream else None
            response = self._registry.send(request, on_chunk, cancel_token)

            end = _now_ms()
            normalized = self._normalizer.normalize(
                response, response.tool_calls, start, end, settings.provider, settings.model
            )
            assistant.content = response.content or assistant.text
            assistant.usage = normalized.usage
            assistant.cost = normalized.cost
            assistant.timing = normalized.timing
            assistant.tool_calls = list(response.tool_calls)
            assistant.sources = kb_sources + normalized.sources
            assistant.images = list(response.images)
            cancelled = cancel_token is not None and cancel_token.is_cancelled
            assistant.status = "cancelled" if cancelled else "complete"
            self._log(
                logging.INFO,
                "Completed chat turn",
                log_ctx,
                streamed=stream,
                total_tokens=normalized.usage.total_tokens,
                duration_ms=round(normalized.timing.duration),
                tool_calls=len(assistant.tool_calls),
                sources=len(assistant.sources),
            )
        except TurnCancelled:
            assistant.status = "cancelled"
            assistant.sources = kb_sources
            assistant.timing = compute_timing(start, _now_ms(), 0)
            self._log(logging.INFO, "Chat turn cancelled", log_ctx, partial_length=len(assistant.text))
        except Exception as exc:
            self._apply_error(assistant, exc, log_ctx)
            assistant.timing = compute_timing(start, _now_ms(), 0)

        self._persist(conversation_id, user_turn, assistant, log_ctx)
        return assistant

    def send_message_with_agent(
        self,
        agent_id: str,
        text: str,
        settings: ChatSettings,
        files: Optional[Sequence[Attachment]] = None,
        history: Optional[Sequence[ChatTurn]] = None,
        on_stream_chunk: Optional[StreamConsumer] = None,
        cancel_token: Optional[CancelToken] = None,
        conversation_id: Optional[str] = None,
        on_retrieval_progress: Optional[ProgressCallback] = None,
    ) -> ChatTurn:
        """使用命名 Agent 发送消息。

        provider、模型、提示词与知识库由 Agent 配置固定，凭证仍取自 settings。
        """

        profile = self._agents.get_agent(agent_id) if self._agents is not None else None
        if profile is None:
            log_ctx = {"trace_id": f"tr-{uuid4().hex}", "agent_id": agent_id}
            assistant = ChatTurn(role="assistant", content="")
            self._apply_error(
                assistant,
                AgentNotFoundError(code="AGENT_NOT_FOUND", message=f"Agent not found: {agent_id}"),
                log_ctx,
                category=ErrorCategory.UNKNOWN,
            )
            user_turn = ChatTurn(role="user", content=text, attachments=[f.name for f in files or ()])
            self._persist(conversation_id, user_turn, assistant, log_ctx)
            return assistant

        agent_settings = replace(
            settings,
            provider=profile.provider,
            model=profile.model,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
            system_prompt=profile.system_prompt,
            rag_enabled=profile.rag_enabled and bool(profile.knowledge_base_ids),
            tool_calling_enabled=profile.tool_calling_enabled,
            rag_options=profile.rag_options,
        )
        return self.send_message(
            text,
            agent_settings,
            files=files,
            history=history,
            on_stream_chunk=on_stream_chunk,
            cancel_token=cancel_token,
            conversation_id=conversation_id,
            on_retrieval_progress=on_retrieval_progress,
            knowledge_base_ids=profile.knowledge_base_ids,
        )

    def _prepare(
        self,
        text: str,
        settings: ChatSettings,
        files: Optional[Sequence[Attachment]],
        history: Sequence[ChatTurn],
        knowledge_base_ids: Optional[Sequence[str]],
        on_retrieval_progress: Optional[ProgressCallback],
        has_consumer: bool,
        log_ctx: Dict[str, Any],
    ) -> Tuple[ProviderRequest, bool, List[Source]]:
        provider = settings.provider
        creds = settings.credentials_for(provider)
        if requires_credential(provider) and not creds.api_key:
            raise MissingCredentialError(provider)

        augmentation = self._augmenter.augment(
            text,
            knowledge_base_ids,
            settings.rag_options,
            on_retrieval_progress,
            enabled=settings.rag_enabled,
        )
        content = self._adapter.adapt(augmentation.augmented_prompt, files, provider)

        server_ids, tools = self._tool_inventory(settings)
        stream = should_stream(
            provider,
            settings.tool_calling_enabled,
            len(server_ids),
            len(tools),
            has_stream_consumer=has_consumer,
        )
        window = self._history_window(history, settings.history_length)
        self._log(
            logging.INFO,
            "Dispatching chat request",
            log_ctx,
            streamed=stream,
            history=len(window),
            attachments=len(files or ()),
            retrieval=augmentation.strategy,
            tools=len(tools),
        )
        request = ProviderRequest(
            provider_id=provider,
            model=settings.model,
            content=content,
            api_key=creds.api_key,
            base_url=creds.base_url,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            system_prompt=settings.system_prompt,
            tool_calling_enabled=settings.tool_calling_enabled and bool(tools),
            history=window,
            tools=tuple(tools),
            max_tool_rounds=settings.max_tool_rounds,
        )
        return request, stream, augmentation.sources

    def _tool_inventory(self, settings: ChatSettings) -> Tuple[List[str], List[ToolDef]]:
        if not settings.tool_calling_enabled or self._tool_runtime is None:
            return [], []
        server_ids = list(self._tool_runtime.get_connected_server_ids())
        tools = list(self._tool_runtime.get_available_tools()) if server_ids else []
        return server_ids, tools

    @staticmethod
    def _history_window(history: Sequence[ChatTurn], length: int) -> Tuple[ChatTurn, ...]:
        # 错误提示不是模型的回答，不带入上下文
        usable = [t for t in history if t.status != "error"]
        if length <= 0:
            return ()
        return tuple(usable[-length:])

    def _chunk_handler(
        self,
        assistant: ChatTurn,
        consumer: Optional[StreamConsumer],
        cancel_token: Optional[CancelToken],
    ) -> Callable[[str], None]:
        def on_chunk(delta: str) -> None:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            assistant.content = assistant.text + delta
            if consumer is None:
                return
            try:
                consumer(delta)
            except Exception as exc:
                logger.warning("Stream consumer failed", extra={"extra": {"error": str(exc)}})

        return on_chunk

    def _apply_error(
        self,
        assistant: ChatTurn,
        exc: BaseException,
        log_ctx: Dict[str, Any],
        category: Optional[ErrorCategory] = None,
    ) -> None:
        # 指定类别时不做关键词匹配，避免 id 中的词误判类别
        if category is None:
            classified = describe(exc)
        else:
            raw = raw_message(exc)
            classified = ClassifiedError(category=category, raw_message=raw, user_message=user_message(category, raw))
        assistant.content = classified.user_message
        assistant.status = "error"
        assistant.error_category = classified.category.value
        self._log(
            logging.ERROR,
            "Chat turn failed",
            log_ctx,
            category=classified.category.value,
            error=classified.raw_message,
            error_type=type(exc).__name__,
        )

    def _load_history(self, conversation_id: Optional[str]) -> List[ChatTurn]:
        if self._store is None or not conversation_id:
            return []
        return self._store.list_turns(conversation_id)

    def _persist(
        self,
        conversation_id: Optional[str],
        user_turn: ChatTurn,
        assistant: ChatTurn,
        log_ctx: Dict[str, Any],
    ) -> None:
        if self._store is None or not conversation_id:
            return
        try:
            self._store.append_turn(conversation_id, user_turn)
            self._store.append_turn(conversation_id, assistant)
        except BusinessError as exc:
            # 写历史失败不影响本轮结果，助手消息照常返回
            self._log(
                logging.ERROR,
                "Failed to store chat turns",
                log_ctx,
                error_code=exc.code,
                error=exc.message,
            )
            return
        self._log(
            logging.INFO,
            "Stored chat turns",
            log_ctx,
            user_message_id=user_turn.id,
            assistant_message_id=assistant.id,
            status=assistant.status,
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
