from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from typing import Protocol
import uuid

from docingest.pipeline.errors import BlobWriteError


class BlobStore(Protocol):
    def put(self, key: str, content: bytes) -> None: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...


class FileBlobStore:
    """Blob container backed by a directory; ``put`` overwrites atomically."""

    def __init__(self, root: Path, container: str) -> None:
        if not container or "/" in container or container in {".", ".."}:
            raise ValueError(f"Invalid blob container name: {container!r}")
        self.container_dir = root / container

    def _path_for(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if not key or relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.container_dir.joinpath(*relative.parts)

    def put(self, key: str, content: bytes) -> None:
        target = self._path_for(key)
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(content)
            os.replace(tmp_path, target)
        except OSError as exc:
            raise BlobWriteError(f"failed to write blob {key}: {exc}") from exc
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise BlobWriteError(f"failed to delete blob {key}: {exc}") from exc
