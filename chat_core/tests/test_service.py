import pytest

from chat_core.api import service
from chat_core.config.settings import AppSettings


@pytest.fixture
def app(tmp_path, monkeypatch, clean_env):
    monkeypatch.setenv("CHAT_CORE_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    monkeypatch.chdir(tmp_path)
    cfg = AppSettings(
        default_provider="openai",
        default_model="gpt-4o-mini",
        storage_root=str(tmp_path / ".storage"),
        agents_file=str(tmp_path / "agents.yaml"),
    )
    monkeypatch.setattr(service, "settings", cfg)
    service.reset_default_engine()
    yield cfg
    service.reset_default_engine()


def test_send_message_without_key_returns_error_dict(app) -> None:
    cid = service.start_conversation()
    result = service.send_message("hello", conversation_id=cid)
    assert result["role"] == "assistant"
    assert result["status"] == "error"
    assert result["error_category"] == "AuthenticationError"
    assert isinstance(result["timestamp"], str)

    turns = service.get_conversation_turns(cid)
    assert [t.role for t in turns] == ["user", "assistant"]
    assert service.get_history_store().get_conversation(cid).meta == {"provider": "openai"}


def test_unknown_agent_through_service(app) -> None:
    result = service.send_message_with_agent("ghost", "hi")
    assert result["status"] == "error"
    assert "Agent not found: ghost" in result["content"]


def test_engine_is_a_singleton(app) -> None:
    assert service.get_default_engine() is service.get_default_engine()
