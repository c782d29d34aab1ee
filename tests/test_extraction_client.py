import httpx
import pytest

from docingest.pipeline.errors import (
    CorruptDocument,
    ExtractionServiceError,
    UnsupportedFormat,
)
from docingest.pipeline.extraction_client import HttpExtractionClient, PageSpan


def _client(handler, **kwargs) -> HttpExtractionClient:
    return HttpExtractionClient(
        base_url="http://extract.local",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def test_extraction_client_sends_bytes_and_parses_page_spans() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = request.content
        captured["content_type"] = request.headers.get("content-type")
        captured["auth"] = request.headers.get("authorization")
        return httpx.Response(
            200,
            json={
                "content": "first pagesecond page",
                "pages": [
                    {"page_number": 1, "spans": [{"offset": 0, "length": 10}]},
                    {"page_number": 2, "spans": [{"offset": 10, "length": 11}]},
                ],
            },
        )

    result = _client(handler, api_key="key").analyze(b"%PDF-1.7", "application/pdf")

    assert captured == {
        "url": "http://extract.local/analyze",
        "body": b"%PDF-1.7",
        "content_type": "application/pdf",
        "auth": "Bearer key",
    }
    assert result.content == "first pagesecond page"
    assert result.pages == (
        PageSpan(page_number=1, offset=0, length=10),
        PageSpan(page_number=2, offset=10, length=11),
    )


def test_extraction_client_accepts_content_without_pages() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(200, json={"content": "one\ftwo"})

    result = _client(handler).analyze(b"img", "image/png")

    assert result.content == "one\ftwo"
    assert result.pages == ()


@pytest.mark.parametrize(
    ("status_code", "error_type"),
    [(415, UnsupportedFormat), (400, CorruptDocument), (422, CorruptDocument)],
)
def test_extraction_client_maps_input_rejections(status_code: int, error_type: type) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(status_code, text="bad input")

    with pytest.raises(error_type):
        _client(handler).analyze(b"data", "image/png")


def test_extraction_client_marks_server_errors_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(503, headers={"Retry-After": "not-a-number"})

    with pytest.raises(ExtractionServiceError) as exc_info:
        _client(handler).analyze(b"data", "image/png")

    assert exc_info.value.retryable is True
    assert exc_info.value.retry_after is None


def test_extraction_client_treats_forbidden_as_permanent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(403)

    with pytest.raises(ExtractionServiceError) as exc_info:
        _client(handler).analyze(b"data", "image/png")

    assert exc_info.value.retryable is False


def test_extraction_client_rejects_malformed_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(200, json={"content": "x", "pages": [{"spans": [{"offset": "0"}]}]})

    with pytest.raises(ExtractionServiceError, match="malformed page span"):
        _client(handler).analyze(b"data", "image/png")
