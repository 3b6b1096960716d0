import pytest

from chat_core.dispatch.cancellation import CancelToken
from chat_core.dispatch.policy import should_stream, tools_active
from chat_core.domain.exceptions import TurnCancelled


def test_no_consumer_means_batch() -> None:
    assert should_stream("openai", False, 0, 0, has_stream_consumer=False) is False


def test_provider_without_stream_usage_is_batch() -> None:
    assert should_stream("deepseek", False, 0, 0) is False


def test_gemini_batches_only_when_tools_active() -> None:
    assert should_stream("gemini", True, 1, 3) is False
    assert should_stream("gemini", True, 0, 3) is True
    assert should_stream("gemini", True, 1, 0) is True
    assert should_stream("gemini", False, 1, 3) is True


def test_decision_flips_when_server_connects() -> None:
    # 同一会话中途工具服务器上线，下一次决策立即改变
    before = should_stream("gemini", True, 0, 0)
    after = should_stream("gemini", True, 1, 2)
    assert before is True
    assert after is False


def test_pure_function_is_deterministic() -> None:
    args = ("openai", True, 2, 5)
    assert all(should_stream(*args) is True for _ in range(5))


def test_unknown_provider_streams() -> None:
    assert should_stream("some-new-provider", False, 0, 0) is True


def test_tools_active_requires_all_three() -> None:
    assert tools_active(True, 1, 1) is True
    assert tools_active(False, 1, 1) is False
    assert tools_active(True, 0, 1) is False
    assert tools_active(True, 1, 0) is False


def test_cancel_token() -> None:
    token = CancelToken()
    token.raise_if_cancelled()
    token.cancel()
    assert token.is_cancelled
    with pytest.raises(TurnCancelled):
        token.raise_if_cancelled()
