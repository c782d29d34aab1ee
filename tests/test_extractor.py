import pytest

from docingest.pipeline.errors import CorruptDocument, ExtractionServiceError, UnsupportedFormat
from docingest.pipeline.extraction_client import ExtractionResult, PageSpan
from docingest.pipeline.extractor import Extractor
from docingest.pipeline.retry import RetryPolicy
from docingest.pipeline.types import SourceDocument
from tests.fakes import FakeExtractionClient


def _document(content: bytes, media_type: str, path: str = "docs/sample") -> SourceDocument:
    return SourceDocument(doc_id="doc", source_path=path, content=content, media_type=media_type)


def _extract(
    document: SourceDocument,
    policy: RetryPolicy,
    client: FakeExtractionClient | None = None,
    **kwargs,
) -> list[tuple[str, int | None, str | None]]:
    extractor = Extractor(client=client or FakeExtractionClient(), retry_policy=policy, **kwargs)
    return [
        (block.text, block.page_number, block.section)
        for block in extractor.extract(document)
    ]


def test_markdown_headings_start_sections(no_sleep_policy: RetryPolicy) -> None:
    content = b"# Title\nintro text\n## Sub\nbody\n```\n# not heading\n```\n"

    blocks = _extract(_document(content, "text/markdown"), no_sleep_policy)

    assert blocks == [
        ("# Title\nintro text", None, "Title"),
        ("## Sub\nbody\n```\n# not heading\n```", None, "Sub"),
    ]


def test_html_drops_markup_and_follows_headings(no_sleep_policy: RetryPolicy) -> None:
    content = (
        b"<html><head><title>T</title><style>p {}</style></head><body>"
        b"<p>Lead</p><h2>Setup <em>fast</em></h2><p>Step one</p>"
        b"<!-- hidden --><script>bad()</script><h2>Use</h2><p>Run</p>"
        b"</body></html>"
    )

    blocks = _extract(_document(content, "text/html"), no_sleep_policy)

    assert blocks == [
        ("Lead", None, None),
        ("Setup fast Step one", None, "Setup fast"),
        ("Use Run", None, "Use"),
    ]


def test_csv_rows_become_labelled_blocks(no_sleep_policy: RetryPolicy) -> None:
    content = b"name,qty\nbolt,4\n,\nnut,\n"

    blocks = _extract(_document(content, "text/csv"), no_sleep_policy)

    assert blocks == [
        ("name: bolt\nqty: 4", None, "row 1"),
        ("name: nut", None, "row 3"),
    ]


def test_csv_cells_beyond_the_header_are_kept_unlabelled(no_sleep_policy: RetryPolicy) -> None:
    content = b"name,qty\nbolt,4,zinc plated,M8\nnut\n"

    blocks = _extract(_document(content, "text/csv"), no_sleep_policy)

    assert blocks == [
        ("name: bolt\nqty: 4\nzinc plated\nM8", None, "row 1"),
        ("name: nut", None, "row 2"),
    ]


def test_json_list_items_become_blocks(no_sleep_policy: RetryPolicy) -> None:
    blocks = _extract(_document(b'[{"a": 1}, "x"]', "application/json"), no_sleep_policy)

    assert blocks == [('{\n  "a": 1\n}', None, "[0]"), ('"x"', None, "[1]")]


def test_invalid_json_is_corrupt(no_sleep_policy: RetryPolicy) -> None:
    with pytest.raises(CorruptDocument, match="not valid JSON"):
        _extract(_document(b"{broken", "application/json"), no_sleep_policy)


def test_invalid_utf8_is_corrupt(no_sleep_policy: RetryPolicy) -> None:
    with pytest.raises(CorruptDocument, match="not valid UTF-8"):
        _extract(_document(b"\xff\xfe\xfa", "text/plain"), no_sleep_policy)


def test_unknown_media_type_is_rejected_eagerly(no_sleep_policy: RetryPolicy) -> None:
    extractor = Extractor(client=FakeExtractionClient(), retry_policy=no_sleep_policy)

    with pytest.raises(UnsupportedFormat, match="application/octet-stream"):
        extractor.extract(_document(b"\x00\x01", "application/octet-stream"))


def test_scanned_document_splits_on_form_feed(no_sleep_policy: RetryPolicy) -> None:
    client = FakeExtractionClient()

    blocks = _extract(_document(b"png", "image/png"), no_sleep_policy, client)

    assert blocks == [("scanned page one", 1, None), ("scanned page two", 2, None)]
    assert client.calls == 1


def test_scanned_document_prefers_page_spans(no_sleep_policy: RetryPolicy) -> None:
    client = FakeExtractionClient(
        ExtractionResult(
            content="AAAA BBBB",
            pages=(PageSpan(page_number=2, offset=5, length=4), PageSpan(1, 0, 4)),
        )
    )

    blocks = _extract(_document(b"pdf", "application/pdf"), no_sleep_policy, client)

    assert blocks == [("AAAA", 1, None), ("BBBB", 2, None)]


def test_service_failures_are_retried(no_sleep_policy: RetryPolicy) -> None:
    client = FakeExtractionClient(failures=2)

    blocks = _extract(_document(b"png", "image/png"), no_sleep_policy, client)

    assert len(blocks) == 2
    assert client.calls == 3


def test_service_failure_surfaces_after_retries(no_sleep_policy: RetryPolicy) -> None:
    client = FakeExtractionClient(failures=5)

    with pytest.raises(ExtractionServiceError):
        _extract(_document(b"png", "image/png"), no_sleep_policy, client)

    assert client.calls == 3


def test_local_pdf_parser_reports_corrupt_file(no_sleep_policy: RetryPolicy) -> None:
    client = FakeExtractionClient()

    with pytest.raises(CorruptDocument, match="not a readable PDF"):
        _extract(
            _document(b"not a pdf at all", "application/pdf"),
            no_sleep_policy,
            client,
            local_pdf_parser=True,
        )

    assert client.calls == 0
