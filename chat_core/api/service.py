"""对外 API 服务模块。

提供简化的函数接口供上层应用（桌面界面、CLI 等）调用。
全局配置只在这里读取，并转换成每轮对话的 ChatSettings 快照。
"""

from typing import Any, Dict, List, Optional, Sequence

from chat_core.agents.chat_engine import ChatEngine, StreamConsumer
from chat_core.agents.profiles import YamlAgentRepository
from chat_core.config.settings import settings
from chat_core.dispatch.cancellation import CancelToken
from chat_core.domain.conversation import HistoryStore
from chat_core.domain.models import Attachment, ChatTurn
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonHistoryStore, turn_to_dict
from chat_core.providers import create_registry
from chat_core.retrieval.augmenter import ProgressCallback
from chat_core.retrieval.base import Retriever
from chat_core.tools.runtime import ToolRuntime


_store: Optional[HistoryStore] = None
_engine: Optional[ChatEngine] = None


def get_history_store() -> HistoryStore:
    global _store
    if _store is None:
        _store = JsonHistoryStore(root=settings.storage_root)
    return _store


def get_default_engine(
    retriever: Optional[Retriever] = None,
    tool_runtime: Optional[ToolRuntime] = None,
) -> ChatEngine:
    """获取默认的 ChatEngine 实例（单例）。首次调用时可注入检索服务与工具运行时。"""
    global _engine
    if _engine is None:
        _engine = ChatEngine(
            registry=create_registry(settings, tool_runtime=tool_runtime),
            retriever=retriever,
            tool_runtime=tool_runtime,
            history_store=get_history_store(),
            agent_repository=YamlAgentRepository(settings.agents_file),
        )
    return _engine


def reset_default_engine() -> None:
    global _store, _engine
    _store = None
    _engine = None


def start_conversation(title: str = "") -> str:
    conv = get_history_store().create_conversation(title=title, meta={"provider": settings.default_provider})
    return conv.id


def send_message(
    text: str,
    files: Optional[Sequence[Attachment]] = None,
    conversation_id: Optional[str] = None,
    on_stream_chunk: Optional[StreamConsumer] = None,
    cancel_token: Optional[CancelToken] = None,
    on_retrieval_progress: Optional[ProgressCallback] = None,
    knowledge_base_ids: Optional[Sequence[str]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    """发送一条消息，返回可直接序列化为 JSON 的助手消息字典。

    Args:
        text: 用户输入内容
        files: 附件（可选）
        conversation_id: 会话ID（可选，提供时追加到该会话历史）
        on_stream_chunk: 流式增量回调（可选）
        cancel_token: 取消令牌（可选）
        on_retrieval_progress: 检索进度回调（可选）
        knowledge_base_ids: 本轮检索的知识库（可选）
        **overrides: 覆盖默认设置，例如 provider="openai", model="gpt-4o-mini"

    Returns:
        助手消息字典（含 usage、cost、timing、sources、status）
    """
    chat_settings = settings.to_chat_settings(**overrides)
    turn = get_default_engine().send_message(
        text,
        chat_settings,
        files=files,
        on_stream_chunk=on_stream_chunk,
        cancel_token=cancel_token,
        conversation_id=conversation_id,
        on_retrieval_progress=on_retrieval_progress,
        knowledge_base_ids=knowledge_base_ids,
    )
    return turn_to_dict(turn)


def send_message_with_agent(
    agent_id: str,
    text: str,
    files: Optional[Sequence[Attachment]] = None,
    conversation_id: Optional[str] = None,
    on_stream_chunk: Optional[StreamConsumer] = None,
    cancel_token: Optional[CancelToken] = None,
    on_retrieval_progress: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    """使用 agents.yaml 中定义的 Agent 发送消息。"""
    turn = get_default_engine().send_message_with_agent(
        agent_id,
        text,
        settings.to_chat_settings(),
        files=files,
        on_stream_chunk=on_stream_chunk,
        cancel_token=cancel_token,
        conversation_id=conversation_id,
        on_retrieval_progress=on_retrieval_progress,
    )
    return turn_to_dict(turn)


def get_conversation_turns(conversation_id: str) -> List[ChatTurn]:
    try:
        return get_history_store().list_turns(conversation_id)
    except Exception as e:
        logger.error(f"Failed to load conversation {conversation_id}: {e}", exc_info=True)
        raise
