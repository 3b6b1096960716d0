from typing import Any, Dict, List

import pytest

from chat_core.dispatch.cancellation import CancelToken
from chat_core.domain.exceptions import ApiError, TurnCancelled, ValidationError
from chat_core.domain.models import Cost, ProviderRequest, ProviderResponse, ToolCallRecord
from chat_core.providers import MAX_ROUNDS_HINT, ProviderRegistry, create_registry
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.ollama_client import OllamaClient
from chat_core.providers.openai_compat import OpenAICompatClient
from chat_core.tools.definitions import ToolDef, ToolParam
from chat_core.tools.executor import ToolExecutor

SEARCH = ToolDef(
    name="web_search",
    description="Search the web",
    params={"query": ToolParam(name="query", description="Query", required=True)},
)


class FakeClient:
    """按脚本依次返回响应的假 Provider 客户端。"""

    def __init__(self, responses: List[ProviderResponse], stream_chunks: List[str] = ()):
        self.responses = list(responses)
        self.stream_chunks = list(stream_chunks)
        self.chat_calls: List[Dict[str, Any]] = []
        self.stream_calls = 0

    def build_messages(self, request):
        return [{"role": "user", "content": request.content}]

    def chat(self, request, messages, tools=()):
        self.chat_calls.append({"messages": list(messages), "tools": list(tools)})
        return self.responses.pop(0)

    def chat_stream(self, request, messages, on_chunk):
        self.stream_calls += 1
        for c in self.stream_chunks:
            on_chunk(c)
        return ProviderResponse(content="".join(self.stream_chunks), usage={"prompt_tokens": 1})

    def tool_round_messages(self, response, results):
        return [{"role": "assistant", "content": response.content}] + [
            {"role": "tool", "content": r.content} for r in results
        ]


def _tool_response(*names: str, usage=None) -> ProviderResponse:
    return ProviderResponse(
        content="",
        usage=usage,
        tool_calls=[ToolCallRecord(id=f"c{i}", name=n, arguments={"query": "q"}) for i, n in enumerate(names)],
    )


def _request(**kw) -> ProviderRequest:
    base = dict(provider_id="openai", model="gpt-4o-mini", content="question", api_key="k")
    base.update(kw)
    return ProviderRequest(**base)


def _executor() -> ToolExecutor:
    ex = ToolExecutor()
    ex.register(SEARCH, lambda args: f"results for {args['query']}: https://example.com/a")
    return ex


def test_get_client_by_api_style() -> None:
    registry = ProviderRegistry()
    assert isinstance(registry.get_client("openai"), OpenAICompatClient)
    assert isinstance(registry.get_client("Anthropic"), AnthropicClient)
    assert isinstance(registry.get_client("ollama"), OllamaClient)
    assert registry.get_client("openai") is registry.get_client("OPENAI")
    with pytest.raises(ValidationError):
        registry.get_client("nope")


def test_create_registry_uses_timeout() -> None:
    class Cfg:
        http_timeout = 5.0

    registry = create_registry(Cfg())
    assert registry.get_client("openai")._timeout == 5.0


def test_plain_batch_and_stream() -> None:
    registry = ProviderRegistry()
    fake = FakeClient([ProviderResponse(content="batch")], stream_chunks=["a", "b"])
    registry.register_client("openai", fake)

    assert registry.send(_request()).content == "batch"
    chunks = []
    assert registry.send(_request(), chunks.append).content == "ab"
    assert chunks == ["a", "b"]
    assert fake.stream_calls == 1


def test_tool_loop_executes_and_merges_usage() -> None:
    registry = ProviderRegistry(tool_runtime=_executor())
    fake = FakeClient([
        _tool_response("web_search", usage={"prompt_tokens": 10, "completion_tokens": 2}),
        ProviderResponse(content="final answer", usage={"prompt_tokens": 20, "completion_tokens": 5}),
    ])
    registry.register_client("openai", fake)

    resp = registry.send(_request(tool_calling_enabled=True, tools=(SEARCH,)))
    assert resp.content == "final answer"
    assert resp.usage == {"prompt_tokens": 30, "completion_tokens": 7}
    assert [(c.name, c.error) for c in resp.tool_calls] == [("web_search", False)]
    assert resp.tool_calls[0].result.startswith("results for q")
    # 第二轮请求包含工具结果
    assert fake.chat_calls[1]["messages"][-1]["role"] == "tool"
    assert [t.name for t in fake.chat_calls[0]["tools"]] == ["web_search"]


def test_tool_errors_are_returned_to_model() -> None:
    ex = ToolExecutor()
    ex.register(SEARCH, lambda args: 1 / 0)
    registry = ProviderRegistry(tool_runtime=ex)
    fake = FakeClient([_tool_response("web_search", "missing_tool"), ProviderResponse(content="sorry")])
    registry.register_client("openai", fake)

    resp = registry.send(_request(tool_calling_enabled=True, tools=(SEARCH,)))
    assert resp.content == "sorry"
    assert [c.error for c in resp.tool_calls] == [True, True]
    assert "division by zero" in resp.tool_calls[0].result
    assert "Tool not registered" in resp.tool_calls[1].result


def test_max_rounds_forces_final_answer() -> None:
    registry = ProviderRegistry(tool_runtime=_executor())
    fake = FakeClient([
        _tool_response("web_search"),
        _tool_response("web_search"),
        ProviderResponse(content="summary"),
    ])
    registry.register_client("openai", fake)

    resp = registry.send(_request(tool_calling_enabled=True, tools=(SEARCH,), max_tool_rounds=2))
    assert resp.content == "summary"
    assert len(resp.tool_calls) == 2
    last = fake.chat_calls[-1]
    assert last["tools"] == []
    assert last["messages"][-1] == {"role": "user", "content": MAX_ROUNDS_HINT}


def test_final_answer_emitted_in_chunks() -> None:
    registry = ProviderRegistry(tool_runtime=_executor())
    text = "x" * 70
    registry.register_client("openai", FakeClient([ProviderResponse(content=text)]))
    chunks = []
    registry.send(_request(tool_calling_enabled=True, tools=(SEARCH,)), chunks.append)
    assert [len(c) for c in chunks] == [32, 32, 6]
    assert "".join(chunks) == text


def test_unsupported_tool_provider_raises() -> None:
    registry = ProviderRegistry(tool_runtime=_executor())
    registry.register_client("replicate", FakeClient([]))
    with pytest.raises(ApiError) as exc:
        registry.send(_request(provider_id="replicate", tool_calling_enabled=True, tools=(SEARCH,)))
    assert exc.value.code == "TOOL_CALLING_UNSUPPORTED"
    assert "Tool calling is not supported by Replicate" in exc.value.message


def test_tools_disabled_ignores_tool_list() -> None:
    registry = ProviderRegistry(tool_runtime=_executor())
    fake = FakeClient([ProviderResponse(content="plain")])
    registry.register_client("replicate", fake)
    resp = registry.send(_request(provider_id="replicate", tools=(SEARCH,)))
    assert resp.content == "plain"
    assert fake.chat_calls[0]["tools"] == []


def test_cancel_between_rounds() -> None:
    token = CancelToken()

    def search(args):
        token.cancel()
        return "partial"

    ex = ToolExecutor()
    ex.register(SEARCH, search)
    registry = ProviderRegistry(tool_runtime=ex)
    fake = FakeClient([_tool_response("web_search"), ProviderResponse(content="never")])
    registry.register_client("openai", fake)
    with pytest.raises(TurnCancelled):
        registry.send(_request(tool_calling_enabled=True, tools=(SEARCH,)), cancel_token=token)
    assert len(fake.chat_calls) == 1


def test_disconnected_executor_reports_error() -> None:
    ex = _executor()
    ex.disconnect()
    assert ex.get_connected_server_ids() == []
    assert ex.get_available_tools() == []
    registry = ProviderRegistry(tool_runtime=ex)
    registry.register_client("openai", FakeClient([_tool_response("web_search"), ProviderResponse(content="ok")]))
    resp = registry.send(_request(tool_calling_enabled=True, tools=(SEARCH,)))
    assert resp.tool_calls[0].error is True


def test_reported_cost_summed_across_tool_rounds() -> None:
    registry = ProviderRegistry(tool_runtime=_executor())
    first = _tool_response("web_search", usage={"prompt_tokens": 100, "completion_tokens": 10})
    first.cost = Cost(input_cost=0.0, output_cost=0.0, total_cost=0.5, provider="OpenRouter")
    fake = FakeClient([
        first,
        ProviderResponse(
            content="done",
            usage={"prompt_tokens": 200, "completion_tokens": 20},
            cost=Cost(input_cost=0.0, output_cost=0.0, total_cost=0.25, provider="OpenRouter"),
        ),
    ])
    registry.register_client("openrouter", fake)

    resp = registry.send(_request(provider_id="openrouter", tool_calling_enabled=True, tools=(SEARCH,)))
    assert resp.usage == {"prompt_tokens": 300, "completion_tokens": 30}
    assert resp.cost.total_cost == pytest.approx(0.75)
    assert resp.cost.provider == "OpenRouter"


def test_partial_reported_cost_left_to_price_table() -> None:
    registry = ProviderRegistry(tool_runtime=_executor())
    fake = FakeClient([
        _tool_response("web_search", usage={"prompt_tokens": 100}),
        ProviderResponse(
            content="done",
            usage={"prompt_tokens": 50},
            cost=Cost(input_cost=0.0, output_cost=0.0, total_cost=0.25),
        ),
    ])
    registry.register_client("openrouter", fake)

    resp = registry.send(_request(provider_id="openrouter", tool_calling_enabled=True, tools=(SEARCH,)))
    assert resp.cost is None
