"""从网页搜索类工具的自由文本输出中提取引用来源。

SourceExtractionStrategy 持有一个有序的提取器列表，第一个产出
至少一条结果的提取器胜出；全部落空时返回一条通用来源。
提取器是纯函数 (text, query) -> List[Source]，可以单独测试与替换。
"""

import json
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from chat_core.domain.models import Source, ToolCallRecord
from chat_core.infrastructure.logging.logger import logger

WEB_SEARCH_TOOLS = frozenset({
    "web_search",
    "web-search",
    "search",
    "google_search",
    "tavily-search",
    "brave_web_search",
    "brave_local_search",
    "web-fetch",
    "fetch",
    "fetch_content",
})

MAX_BARE_URLS = 5

_NUMBERED = re.compile(r"(\d+)\.\s*\*\*([^*]+)\*\*[^\n]*\n[^\n]*🔗\s*(https?://[^\s\n]+)")
_TITLED = re.compile(r"\*\*([^*]+)\*\*[^\n]*\n[^\n]*(?:🔗|URL:)\s*(https?://[^\s\n]+)")
_BARE_URL = re.compile(r"https?://[^\s)]+")

Extractor = Callable[[str, str], List[Source]]


def _snippet(query: str) -> str:
    return f"Search result for: {query}"


def _web(title: str, url: Optional[str], snippet: str) -> Source:
    return Source(type="web", title=title.strip() or "Web result", url=url, snippet=snippet)


def extract_json_results(text: str, query: str) -> List[Source]:
    """结构化 JSON 结果：Tavily results[]、Brave web.results[]、单个 {url, title} 对象。"""

    stripped = (text or "").strip()
    if not stripped or stripped[0] not in "[{":
        return []
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return []

    items: Iterable[Any] = []
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        if isinstance(data.get("results"), list):
            items = data["results"]
        elif isinstance((data.get("web") or {}).get("results"), list):
            items = data["web"]["results"]
        elif data.get("url"):
            items = [data]

    sources: List[Source] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("url"):
            continue
        snippet = item.get("content") or item.get("description") or item.get("snippet") or _snippet(query)
        sources.append(_web(str(item.get("title") or "Web result"), str(item["url"]), str(snippet)))
    return sources


def extract_numbered_results(text: str, query: str) -> List[Source]:
    """`1. **标题** ...\\n ... 🔗 url` 形式的编号结果。"""

    return [_web(m.group(2), m.group(3), _snippet(query)) for m in _NUMBERED.finditer(text or "")]


def extract_titled_results(text: str, query: str) -> List[Source]:
    """`**标题**\\n ... (🔗|URL:) url` 形式的结果，按 URL 去重。"""

    seen = set()
    sources: List[Source] = []
    for m in _TITLED.finditer(text or ""):
        url = m.group(2)
        if url in seen:
            continue
        seen.add(url)
        sources.append(_web(m.group(1), url, _snippet(query)))
    return sources


def extract_bare_urls(text: str, query: str) -> List[Source]:
    urls = _BARE_URL.findall(text or "")[:MAX_BARE_URLS]
    return [_web(f"Web result {i}", url, _snippet(query)) for i, url in enumerate(urls, 1)]


DEFAULT_EXTRACTORS: Sequence[Extractor] = (
    extract_json_results,
    extract_numbered_results,
    extract_titled_results,
    extract_bare_urls,
)


def generic_source(query: str) -> Source:
    return Source(
        type="web",
        title=f"Web search: {query}",
        snippet="Web search was performed but specific sources could not be extracted",
    )


class SourceExtractionStrategy:
    """按顺序尝试提取器，第一个非空结果胜出。"""

    def __init__(self, extractors: Sequence[Extractor] = DEFAULT_EXTRACTORS):
        self._extractors = list(extractors)

    def extract(self, text: str, query: str) -> List[Source]:
        for extractor in self._extractors:
            try:
                found = extractor(text, query)
            except Exception as exc:
                logger.warning(
                    "Source extractor failed",
                    extra={"extra": {"extractor": getattr(extractor, "__name__", str(extractor)), "error": str(exc)}},
                )
                continue
            if found:
                return found
        return [generic_source(query)]


def _query_of(call: ToolCallRecord) -> str:
    args: Dict[str, Any] = call.arguments if isinstance(call.arguments, dict) else {}
    query = args.get("query") or args.get("url")
    return str(query) if query else "web search"


def extract_web_sources(
    tool_calls: Sequence[ToolCallRecord],
    response_text: str,
    strategy: Optional[SourceExtractionStrategy] = None,
) -> List[Source]:
    """对每个网页搜索类工具调用提取来源；优先扫描工具结果，没有结果时扫描回答正文。"""

    strategy = strategy or SourceExtractionStrategy()
    sources: List[Source] = []
    seen = set()
    for call in tool_calls:
        if call.name not in WEB_SEARCH_TOOLS:
            continue
        text = call.result if call.result else response_text
        for src in strategy.extract(text or "", _query_of(call)):
            key = (src.type, src.title, src.url)
            if key in seen:
                continue
            seen.add(key)
            sources.append(src)
    return sources
