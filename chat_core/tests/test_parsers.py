import pytest

from chat_core.attachments.base import ParsedDocument
from chat_core.attachments.extraction import TextExtractor
from chat_core.attachments.parsers import CsvParser, HtmlParser, IcsParser, JsonParser, Parser, ParserRegistry
from chat_core.domain.models import Attachment


def _file(name: str, text: str, mime: str = "application/octet-stream") -> Attachment:
    return Attachment(name=name, mime_type=mime, data=text.encode("utf-8"))


def test_json_parser_sorts_keys() -> None:
    doc = JsonParser().parse(_file("a.json", '{"b": 1, "a": [1, 2]}'))
    assert doc.text.index('"a"') < doc.text.index('"b"')
    assert doc.metadata == {"format": "JSON", "keys": ["a", "b"]}


def test_csv_parser_rows() -> None:
    doc = CsvParser().parse(_file("t.csv", "name, qty\napple, 3\n"))
    assert doc.text == "name | qty\napple | 3"
    assert doc.metadata["rows"] == 2


def test_html_parser_skips_scripts_and_keeps_title() -> None:
    html = "<html><head><title>Report</title><style>p{}</style></head><body><p>Hello</p><script>x()</script></body></html>"
    doc = HtmlParser().parse(_file("r.html", html))
    assert doc.text == "Hello"
    assert doc.metadata["title"] == "Report"


def test_ics_parser_events() -> None:
    ics = "\n".join([
        "BEGIN:VCALENDAR",
        "BEGIN:VEVENT",
        "SUMMARY:Standup",
        "DTSTART;TZID=UTC:20240101T090000",
        "END:VEVENT",
        "BEGIN:VEVENT",
        "END:VEVENT",
        "END:VCALENDAR",
    ])
    doc = IcsParser().parse(_file("cal.ics", ics))
    assert doc.text.splitlines() == ["- Standup (20240101T090000)", "- (no title) (?)"]
    assert doc.metadata["event_count"] == 2


def test_registry_dispatches_by_extension() -> None:
    registry = ParserRegistry()
    md = _file("README.MD", "# Title")
    assert registry.supports(md)
    doc = registry.parse(md)
    assert doc.text == "# Title"
    assert doc.metadata["format"] == "Markdown"
    assert doc.processing_time_ms is not None


def test_registry_rejects_unknown_extension() -> None:
    registry = ParserRegistry()
    docx = _file("memo.docx", "")
    assert not registry.supports(docx)
    with pytest.raises(ValueError):
        registry.parse(docx)


def test_custom_parser_registration() -> None:
    class PdfStub(Parser):
        extensions = (".pdf",)
        format_name = "PDF"

        def parse(self, attachment):
            return ParsedDocument(text="page one", metadata={"format": "PDF", "pages": 1})

    registry = ParserRegistry()
    registry.register(PdfStub())
    text = TextExtractor(registry).extract(_file("paper.pdf", "%PDF", mime="application/pdf"))
    assert "✅ Parsing Status: Success" in text
    assert text.endswith("Content:\npage one")


def test_pdf_without_parser_gives_note() -> None:
    text = TextExtractor().extract(_file("paper.pdf", "%PDF", mime="application/pdf"))
    assert text.startswith("[PDF Document: paper.pdf - 0KB]")
    assert "PDF parsing not available" in text


def test_failed_pdf_parse_lists_options() -> None:
    class FailingPdf(Parser):
        extensions = (".pdf",)

        def parse(self, attachment):
            return ParsedDocument(text="", success=False, error="encrypted")

    text = TextExtractor(ParserRegistry([FailingPdf()])).extract(_file("x.pdf", "%PDF", mime="application/pdf"))
    assert "❌ Parsing Status: Failed" in text
    assert "Error: encrypted" in text


def test_invalid_json_becomes_placeholder() -> None:
    text = TextExtractor().extract(_file("bad.json", "{nope"))
    assert text.startswith("[bad.json - 0KB]")
    assert "Failed to parse document" in text


def test_plain_text_decoded() -> None:
    assert TextExtractor().extract(_file("app.log", "line1\nline2")) == "line1\nline2"
