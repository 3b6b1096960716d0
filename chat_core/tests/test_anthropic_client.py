import base64
import json

import pytest

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import ChatTurn, ContentPart, DocumentBlock, ProviderRequest, ProviderResponse
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.registry import get_provider_info
from chat_core.tools.definitions import ToolDef, ToolResult


def _client() -> AnthropicClient:
    return AnthropicClient(get_provider_info("anthropic"), timeout=1.0)


def _request(**kw) -> ProviderRequest:
    base = dict(provider_id="anthropic", model="claude-3-5-haiku-20241022", content="hi", api_key="ak")
    base.update(kw)
    return ProviderRequest(**base)


def _sse(event: dict) -> str:
    return "data: " + json.dumps(event)


def test_content_blocks_for_images_and_documents() -> None:
    text_doc = base64.b64encode("plain notes".encode("utf-8")).decode("ascii")
    parts = [
        ContentPart(type="text", text="read these"),
        ContentPart(type="image_url", image_url="data:image/jpeg;base64,/9j/"),
        ContentPart(type="document", document=DocumentBlock(name="a.pdf", media_type="application/pdf", data="JVBE")),
        ContentPart(type="document", document=DocumentBlock(name="n.txt", media_type="text/plain", data=text_doc)),
    ]
    msgs = _client().build_messages(_request(content=parts))
    blocks = msgs[-1]["content"]
    assert blocks[0] == {"type": "text", "text": "read these"}
    assert blocks[1]["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "/9j/"}
    assert blocks[2]["source"]["type"] == "base64"
    assert blocks[2]["title"] == "a.pdf"
    assert blocks[3]["source"] == {"type": "text", "media_type": "text/plain", "data": "plain notes"}


def test_system_prompt_is_top_level(fake_http) -> None:
    captured = fake_http(response={"content": [{"type": "text", "text": "hello"}], "usage": {"input_tokens": 4}})
    client = _client()
    req = _request(system_prompt="be kind", history=(ChatTurn(role="user", content="before"),))
    res = client.chat(req, client.build_messages(req))
    payload = captured["payload"]
    assert payload["system"] == "be kind"
    assert all(m["role"] != "system" for m in payload["messages"])
    assert payload["max_tokens"] == 4096
    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["headers"]["x-api-key"] == "ak"
    assert captured["headers"]["anthropic-version"] == "2023-06-01"
    assert res.content == "hello"
    assert res.usage == {"input_tokens": 4}


def test_tool_use_blocks_parsed(fake_http) -> None:
    captured = fake_http(
        response={
            "content": [
                {"type": "text", "text": "let me search"},
                {"type": "tool_use", "id": "tu_1", "name": "web_search", "input": {"query": "news"}},
            ],
        }
    )
    tool = ToolDef(name="web_search", description="search")
    client = _client()
    req = _request(tools=(tool,))
    res = client.chat(req, client.build_messages(req), tools=[tool])
    assert captured["payload"]["tools"][0]["input_schema"]["type"] == "object"
    assert [(c.id, c.name, c.arguments) for c in res.tool_calls] == [("tu_1", "web_search", {"query": "news"})]

    follow = client.tool_round_messages(res, [ToolResult(call_id="tu_1", content="r", is_error=False)])
    assert follow[0]["content"][1]["type"] == "tool_use"
    assert follow[1] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "r", "is_error": False}],
    }


def test_stream_events(fake_http) -> None:
    fake_http(lines=[
        "event: message_start",
        _sse({"type": "message_start", "message": {"usage": {"input_tokens": 9, "output_tokens": 1}}}),
        _sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi "}}),
        _sse({"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{"}}),
        _sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "there"}}),
        _sse({"type": "message_delta", "usage": {"output_tokens": 6}}),
        _sse({"type": "message_stop"}),
    ])
    chunks = []
    client = _client()
    req = _request()
    res = client.chat_stream(req, client.build_messages(req), chunks.append)
    assert chunks == ["Hi ", "there"]
    assert res.content == "Hi there"
    assert res.usage == {"input_tokens": 9, "output_tokens": 6}


def test_stream_error_event_raises(fake_http) -> None:
    fake_http(lines=[_sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})])
    client = _client()
    req = _request()
    with pytest.raises(ApiError, match="Overloaded"):
        client.chat_stream(req, client.build_messages(req), lambda _: None)


def test_tool_round_without_raw_message() -> None:
    msgs = _client().tool_round_messages(ProviderResponse(content="x"), [ToolResult(call_id="a", content="b")])
    assert msgs[0] == {"role": "assistant", "content": "x"}
