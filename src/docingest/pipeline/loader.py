from __future__ import annotations

from glob import glob
import hashlib
from pathlib import Path

from docingest.pipeline.errors import SourceReadError
from docingest.pipeline.types import SourceDocument, SourceFile

MEDIA_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
    ".html": "text/html",
    ".htm": "text/html",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".json": "application/json",
}

UNKNOWN_MEDIA_TYPE = "application/octet-stream"


def _has_wildcard(value: str) -> bool:
    return any(character in value for character in "*?[")


def detect_media_type(path: Path) -> str:
    return MEDIA_TYPES.get(path.suffix.lower(), UNKNOWN_MEDIA_TYPE)


def document_id(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def source_key(path: Path, source_root: Path) -> str:
    """Stable identity of ``path``: its location relative to ``source_root``.

    Files outside the source root fall back to their resolved absolute path,
    so the key never depends on which selector found the file.
    """
    resolved = path.resolve()
    try:
        return resolved.relative_to(source_root.resolve()).as_posix()
    except ValueError:
        return resolved.as_posix()


def resolve_selector(selector: str) -> list[Path]:
    if _has_wildcard(selector):
        matches = [Path(match) for match in glob(selector, recursive=True)]
    else:
        path = Path(selector)
        if not path.exists():
            raise FileNotFoundError(f"Input path not found: {selector}")
        matches = [path] if path.is_file() else list(path.rglob("*"))

    return sorted(match for match in matches if match.is_file())


def discover_documents(selector: str, *, source_root: Path) -> list[SourceFile]:
    sources: list[SourceFile] = []
    for path in resolve_selector(selector):
        key = source_key(path, source_root)
        sources.append(
            SourceFile(
                doc_id=document_id(key),
                source_path=key,
                path=path,
                media_type=detect_media_type(path),
            )
        )
    return sources


def read_source(source: SourceFile) -> SourceDocument:
    try:
        content = source.path.read_bytes()
    except OSError as exc:
        raise SourceReadError(f"cannot read {source.source_path}: {exc}") from exc
    return SourceDocument(
        doc_id=source.doc_id,
        source_path=source.source_path,
        content=content,
        media_type=source.media_type,
    )
