import json

import pytest

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import ChatTurn, ContentPart, ProviderRequest, TextWithImages
from chat_core.providers.ollama_client import OllamaClient
from chat_core.providers.registry import get_provider_info
from chat_core.tools.definitions import ToolResult


def _client() -> OllamaClient:
    return OllamaClient(get_provider_info("ollama"), timeout=1.0)


def _request(**kw) -> ProviderRequest:
    base = dict(provider_id="ollama", model="llama3.2", content="hi")
    base.update(kw)
    return ProviderRequest(**base)


def test_images_sent_on_side_channel() -> None:
    req = _request(content=TextWithImages(text="what is it", images=["QUJD"]), system_prompt="sys")
    msgs = _client().build_messages(req)
    assert msgs[0] == {"role": "system", "content": "sys"}
    assert msgs[-1] == {"role": "user", "content": "what is it", "images": ["QUJD"]}


def test_parts_content_is_flattened() -> None:
    parts = [ContentPart(type="text", text="see"), ContentPart(type="image_url", image_url="data:image/png;base64,Zm9v")]
    history = (ChatTurn(role="assistant", content=[ContentPart(type="text", text="old")]),)
    msgs = _client().build_messages(_request(content=parts, history=history))
    assert msgs[0] == {"role": "assistant", "content": "old"}
    assert msgs[-1] == {"role": "user", "content": "see", "images": ["Zm9v"]}


def test_chat_payload_and_usage(fake_http) -> None:
    captured = fake_http(
        response={
            "message": {"role": "assistant", "content": "fine"},
            "done": True,
            "prompt_eval_count": 12,
            "eval_count": 4,
        }
    )
    client = _client()
    req = _request(max_tokens=64, temperature=0.2)
    res = client.chat(req, client.build_messages(req))
    assert captured["url"] == "http://localhost:11434/api/chat"
    assert captured["payload"]["options"] == {"temperature": 0.2, "num_predict": 64}
    assert captured["payload"]["stream"] is False
    assert res.content == "fine"
    assert res.usage == {"prompt_eval_count": 12, "eval_count": 4}


def test_tool_calls_parsed(fake_http) -> None:
    fake_http(
        response={
            "message": {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"function": {"name": "search", "arguments": {"query": "q"}}}],
            },
            "done": True,
        }
    )
    client = _client()
    req = _request()
    res = client.chat(req, client.build_messages(req))
    assert [(c.id, c.name, c.arguments) for c in res.tool_calls] == [("tool_call_0", "search", {"query": "q"})]
    follow = client.tool_round_messages(res, [ToolResult(call_id="tool_call_0", content="found")])
    assert follow[0]["tool_calls"][0]["function"]["name"] == "search"
    assert follow[1] == {"role": "tool", "content": "found"}


def test_stream_ndjson(fake_http) -> None:
    fake_http(lines=[
        json.dumps({"message": {"content": "Hel"}, "done": False}),
        "not json",
        json.dumps({"message": {"content": "lo"}, "done": False}),
        json.dumps({"message": {"content": ""}, "done": True, "prompt_eval_count": 2, "eval_count": 2}),
    ])
    chunks = []
    client = _client()
    req = _request()
    res = client.chat_stream(req, client.build_messages(req), chunks.append)
    assert chunks == ["Hel", "lo"]
    assert res.content == "Hello"
    assert res.usage == {"prompt_eval_count": 2, "eval_count": 2}


def test_stream_error_line(fake_http) -> None:
    fake_http(lines=[json.dumps({"error": "model 'nope' not found"})])
    client = _client()
    req = _request(model="nope")
    with pytest.raises(ApiError, match="not found"):
        client.chat_stream(req, client.build_messages(req), lambda _: None)
