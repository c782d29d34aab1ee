from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from docingest.pipeline.errors import CorruptDocument, ExtractionServiceError, UnsupportedFormat

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class PageSpan:
    page_number: int
    offset: int
    length: int


@dataclass(frozen=True)
class ExtractionResult:
    content: str
    pages: tuple[PageSpan, ...] = ()


class ExtractionClient(Protocol):
    def analyze(self, content: bytes, media_type: str) -> ExtractionResult: ...


def parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _parse_pages(raw_pages: object) -> tuple[PageSpan, ...]:
    if raw_pages is None:
        return ()
    if not isinstance(raw_pages, list):
        raise ExtractionServiceError("Invalid extraction payload: 'pages' must be a list")

    spans: list[PageSpan] = []
    for position, page in enumerate(raw_pages, start=1):
        if not isinstance(page, dict):
            raise ExtractionServiceError("Invalid extraction payload: page must be an object")
        page_number = page.get("page_number", position)
        for span in page.get("spans") or []:
            offset = span.get("offset") if isinstance(span, dict) else None
            length = span.get("length") if isinstance(span, dict) else None
            if not isinstance(offset, int) or not isinstance(length, int):
                raise ExtractionServiceError("Invalid extraction payload: malformed page span")
            spans.append(PageSpan(page_number=int(page_number), offset=offset, length=length))
    return tuple(spans)


class HttpExtractionClient:
    """Client for a layout/OCR text-recognition service.

    The service accepts raw document bytes and answers with the recognized
    text as one flat stream plus per-page character spans into it.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client or httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        self._http_client.close()

    def analyze(self, content: bytes, media_type: str) -> ExtractionResult:
        headers = {"Content-Type": media_type}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            response = self._http_client.post(
                f"{self._base_url}/analyze",
                content=content,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise ExtractionServiceError(f"extraction request failed: {exc}") from exc

        if response.status_code == 415:
            raise UnsupportedFormat(f"extraction service does not accept {media_type}")
        if response.status_code in {400, 422}:
            raise CorruptDocument(f"extraction service rejected input: {response.text[:200]}")
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise ExtractionServiceError(
                f"extraction service returned {response.status_code}",
                retry_after=parse_retry_after(response),
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExtractionServiceError(str(exc), retryable=False) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExtractionServiceError("Invalid extraction payload: not JSON") from exc

        text = payload.get("content") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise ExtractionServiceError("Invalid extraction payload: missing content")

        return ExtractionResult(content=text, pages=_parse_pages(payload.get("pages")))
