import json

from chat_core.domain.models import ToolCallRecord
from chat_core.responses.sources import (
    SourceExtractionStrategy,
    extract_bare_urls,
    extract_json_results,
    extract_numbered_results,
    extract_titled_results,
    extract_web_sources,
)


def test_tavily_json_results() -> None:
    text = json.dumps({"results": [
        {"title": "Python", "url": "https://python.org", "content": "Official site"},
        {"title": "No url"},
    ]})
    sources = extract_json_results(text, "python")
    assert len(sources) == 1
    assert (sources[0].title, sources[0].url, sources[0].snippet) == ("Python", "https://python.org", "Official site")


def test_brave_json_results() -> None:
    text = json.dumps({"web": {"results": [{"title": "Docs", "url": "https://docs.python.org", "description": "d"}]}})
    assert [s.url for s in extract_json_results(text, "q")] == ["https://docs.python.org"]


def test_invalid_json_yields_nothing() -> None:
    assert extract_json_results("{not json", "q") == []
    assert extract_json_results("plain text", "q") == []


def test_numbered_results() -> None:
    text = "1. **First Result** - summary\n   🔗 https://a.example/one\n2. **Second** x\n 🔗 https://b.example"
    sources = extract_numbered_results(text, "thing")
    assert [(s.title, s.url) for s in sources] == [
        ("First Result", "https://a.example/one"),
        ("Second", "https://b.example"),
    ]
    assert sources[0].snippet == "Search result for: thing"


def test_titled_results_dedupe_by_url() -> None:
    text = "**Alpha**\nURL: https://x.example\n**Alpha again**\nURL: https://x.example\n"
    sources = extract_titled_results(text, "q")
    assert [s.title for s in sources] == ["Alpha"]


def test_bare_urls_capped_at_five() -> None:
    text = " ".join(f"https://site{i}.example" for i in range(8))
    sources = extract_bare_urls(text, "q")
    assert len(sources) == 5
    assert sources[0].title == "Web result 1"


def test_strategy_falls_back_to_generic() -> None:
    sources = SourceExtractionStrategy().extract("nothing useful here", "weather")
    assert len(sources) == 1
    assert sources[0].title == "Web search: weather"
    assert sources[0].url is None


def test_strategy_skips_failing_extractor() -> None:
    def broken(text, query):
        raise ValueError("bad regex day")

    strategy = SourceExtractionStrategy([broken, extract_bare_urls])
    assert [s.url for s in strategy.extract("go to https://ok.example", "q")] == ["https://ok.example"]


def test_first_non_empty_extractor_wins() -> None:
    text = "1. **Numbered** a\n 🔗 https://n.example\nalso https://other.example"
    sources = SourceExtractionStrategy().extract(text, "q")
    assert [s.url for s in sources] == ["https://n.example"]


def test_extract_web_sources_uses_query_and_response_fallback() -> None:
    calls = [
        ToolCallRecord(id="1", name="brave_web_search", arguments={"query": "cats"}, result=None),
        ToolCallRecord(id="2", name="fetch", arguments={"url": "https://dogs.example"}, result="nothing"),
        ToolCallRecord(id="3", name="read_file", arguments={}, result="https://ignored.example"),
    ]
    sources = extract_web_sources(calls, "Cats are at https://cats.example")
    assert [s.url for s in sources] == ["https://cats.example", None]
    assert sources[1].title == "Web search: https://dogs.example"


def test_duplicate_sources_across_calls_are_merged() -> None:
    calls = [
        ToolCallRecord(id="1", name="web_search", arguments={"query": "a"}, result="https://same.example"),
        ToolCallRecord(id="2", name="search", arguments={"query": "b"}, result="https://same.example"),
    ]
    assert len(extract_web_sources(calls, "")) == 1


def test_generic_source_text_is_stable_when_fed_back() -> None:
    first = SourceExtractionStrategy().extract("no links at all", "weather")
    again = SourceExtractionStrategy().extract(f"{first[0].title}\n{first[0].snippet}", "weather")
    assert again == first
