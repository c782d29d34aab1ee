from __future__ import annotations

import csv
from io import BytesIO, StringIO
from itertools import zip_longest
import json
import re
from typing import Callable, Iterator

from bs4 import BeautifulSoup, Comment
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docingest.pipeline.errors import CorruptDocument, IngestionError, UnsupportedFormat
from docingest.pipeline.extraction_client import ExtractionClient, ExtractionResult
from docingest.pipeline.retry import RetryPolicy
from docingest.pipeline.types import SourceDocument, TextBlock

SERVICE_MEDIA_TYPES = frozenset(
    {"application/pdf", "image/png", "image/jpeg", "image/tiff", "image/bmp"}
)

PAGE_BREAK = "\f"
_MARKDOWN_HEADING = re.compile(r"^ {0,3}(#{1,6})[ \t]+(.+?)[ \t#]*$")
_HTML_HEADINGS = ("h1", "h2", "h3", "h4", "h5", "h6")


def _decode_utf8(document: SourceDocument) -> str:
    try:
        return document.content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CorruptDocument(f"{document.source_path} is not valid UTF-8: {exc}") from exc


def _block(
    document: SourceDocument,
    text: str,
    *,
    page: int | None = None,
    section: str | None = None,
) -> TextBlock | None:
    cleaned = text.strip()
    if not cleaned:
        return None
    return TextBlock(doc_id=document.doc_id, text=cleaned, page_number=page, section=section)


def split_pages(document: SourceDocument, result: ExtractionResult) -> Iterator[TextBlock]:
    """Cut a flat recognition stream back into per-page blocks.

    Page spans reported by the service take precedence; without them the
    stream is split on form-feed page markers.
    """
    if result.pages:
        page_text: dict[int, list[str]] = {}
        for span in sorted(result.pages, key=lambda item: (item.page_number, item.offset)):
            page_text.setdefault(span.page_number, []).append(
                result.content[span.offset : span.offset + span.length]
            )
        for page_number in sorted(page_text):
            block = _block(document, "".join(page_text[page_number]), page=page_number)
            if block is not None:
                yield block
        return

    for page_number, text in enumerate(result.content.split(PAGE_BREAK), start=1):
        block = _block(document, text, page=page_number)
        if block is not None:
            yield block


def parse_markdown(document: SourceDocument) -> Iterator[TextBlock]:
    section: str | None = None
    lines: list[str] = []
    in_fence = False

    for line in _decode_utf8(document).splitlines():
        if line.lstrip().startswith(("```", "~~~")):
            in_fence = not in_fence
        match = None if in_fence else _MARKDOWN_HEADING.match(line)
        if match is None:
            lines.append(line)
            continue
        block = _block(document, "\n".join(lines), section=section)
        if block is not None:
            yield block
        section = match.group(2).strip()
        lines = [line]

    block = _block(document, "\n".join(lines), section=section)
    if block is not None:
        yield block


def parse_html(document: SourceDocument) -> Iterator[TextBlock]:
    soup = BeautifulSoup(_decode_utf8(document), "html.parser")
    for element in soup(["script", "style", "noscript", "template"]):
        element.decompose()

    body = soup.body or soup
    heading = None
    section: str | None = None
    parts: list[str] = []

    for node in body.find_all(string=True):
        if isinstance(node, Comment):
            continue
        text = node.strip()
        if not text:
            continue
        parent_heading = node.find_parent(_HTML_HEADINGS)
        if parent_heading is None:
            parts.append(text)
            continue
        if parent_heading is heading:
            continue
        block = _block(document, " ".join(parts), section=section)
        if block is not None:
            yield block
        heading = parent_heading
        section = parent_heading.get_text(" ", strip=True)
        parts = [section]

    block = _block(document, " ".join(parts), section=section)
    if block is not None:
        yield block


def parse_plain_text(document: SourceDocument) -> Iterator[TextBlock]:
    block = _block(document, _decode_utf8(document))
    if block is not None:
        yield block


def parse_csv(document: SourceDocument) -> Iterator[TextBlock]:
    reader = csv.reader(StringIO(_decode_utf8(document)))
    try:
        header = next(reader, None)
        if header is None:
            return
        for row_number, row in enumerate(reader, start=1):
            pairs = [
                f"{name}: {value}" if name else value
                for name, value in zip_longest(header, row, fillvalue="")
                if value.strip()
            ]
            block = _block(document, "\n".join(pairs), section=f"row {row_number}")
            if block is not None:
                yield block
    except csv.Error as exc:
        raise CorruptDocument(f"{document.source_path} is not valid CSV: {exc}") from exc


def parse_json(document: SourceDocument) -> Iterator[TextBlock]:
    try:
        payload = json.loads(_decode_utf8(document))
    except json.JSONDecodeError as exc:
        raise CorruptDocument(f"{document.source_path} is not valid JSON: {exc}") from exc

    if isinstance(payload, list):
        for position, item in enumerate(payload):
            block = _block(
                document,
                json.dumps(item, ensure_ascii=False, indent=2),
                section=f"[{position}]",
            )
            if block is not None:
                yield block
        return

    block = _block(document, json.dumps(payload, ensure_ascii=False, indent=2))
    if block is not None:
        yield block


def parse_pdf_locally(document: SourceDocument) -> Iterator[TextBlock]:
    try:
        reader = PdfReader(BytesIO(document.content))
        if reader.is_encrypted:
            reader.decrypt("")
        pages = list(reader.pages)
    except (PyPdfError, ValueError) as exc:
        raise CorruptDocument(f"{document.source_path} is not a readable PDF: {exc}") from exc

    for page_number, page in enumerate(pages, start=1):
        try:
            text = page.extract_text() or ""
        except (PyPdfError, ValueError) as exc:
            raise CorruptDocument(
                f"{document.source_path} page {page_number} is unreadable: {exc}"
            ) from exc
        block = _block(document, text, page=page_number)
        if block is not None:
            yield block


LOCAL_PARSERS: dict[str, Callable[[SourceDocument], Iterator[TextBlock]]] = {
    "text/markdown": parse_markdown,
    "text/html": parse_html,
    "text/plain": parse_plain_text,
    "text/csv": parse_csv,
    "application/json": parse_json,
}


class Extractor:
    def __init__(
        self,
        *,
        client: ExtractionClient,
        retry_policy: RetryPolicy,
        local_pdf_parser: bool = False,
    ) -> None:
        self._client = client
        self._retry_policy = retry_policy
        self._local_pdf_parser = local_pdf_parser

    def extract(
        self,
        document: SourceDocument,
        *,
        on_retry: Callable[[int, IngestionError, float], None] | None = None,
    ) -> Iterator[TextBlock]:
        """Lazily yield the text blocks of ``document``.

        Raises ``UnsupportedFormat``, ``CorruptDocument`` or, after the retry
        policy gives up, ``ExtractionServiceError``.
        """
        media_type = document.media_type
        if media_type in LOCAL_PARSERS:
            return LOCAL_PARSERS[media_type](document)
        if media_type == "application/pdf" and self._local_pdf_parser:
            return parse_pdf_locally(document)
        if media_type in SERVICE_MEDIA_TYPES:
            return self._extract_with_service(document, on_retry)
        raise UnsupportedFormat(f"unsupported media type {media_type} for {document.source_path}")

    def _extract_with_service(
        self,
        document: SourceDocument,
        on_retry: Callable[[int, IngestionError, float], None] | None,
    ) -> Iterator[TextBlock]:
        result = self._retry_policy.call(
            lambda: self._client.analyze(document.content, document.media_type),
            on_retry=on_retry,
        )
        yield from split_pages(document, result)
