from typing import Any, Dict, List, Optional

import pytest

from chat_core.config.settings import _KEYED_PROVIDERS


@pytest.fixture
def clean_env(monkeypatch):
    """清除会影响 AppSettings 的环境变量（各 Provider 密钥与默认 provider/模型）。"""

    for p in _KEYED_PROVIDERS:
        monkeypatch.delenv(f"{p.upper()}_API_KEY", raising=False)
    monkeypatch.delenv("DEFAULT_PROVIDER", raising=False)
    monkeypatch.delenv("DEFAULT_MODEL", raising=False)


@pytest.fixture
def fake_http(monkeypatch):
    """把 httpx.Client 替换为返回固定响应的假客户端，返回记录请求的 dict。"""

    def install(
        response: Optional[Dict[str, Any]] = None,
        lines: Optional[List[str]] = None,
        status_code: int = 200,
        text: str = "",
    ) -> Dict[str, Any]:
        captured: Dict[str, Any] = {"calls": 0}

        class Resp:
            def __init__(self):
                self.status_code = status_code
                self.text = text

            def json(self):
                return response

            def read(self):
                return text.encode("utf-8")

            def iter_lines(self):
                for line in lines or []:
                    yield line

        class StreamCtx:
            def __enter__(self):
                return Resp()

            def __exit__(self, *a):
                return False

        class Client:
            def __init__(self, *a, **kw):
                captured["timeout"] = kw.get("timeout")

            def __enter__(self):
                return self

            def __exit__(self, *a):
                return False

            def post(self, url, json=None, headers=None, **_):
                captured.update(url=url, payload=json, headers=headers)
                captured["calls"] += 1
                return Resp()

            def stream(self, method, url, json=None, headers=None, **_):
                captured.update(url=url, payload=json, headers=headers)
                captured["calls"] += 1
                return StreamCtx()

        monkeypatch.setattr("httpx.Client", Client)
        return captured

    return install
