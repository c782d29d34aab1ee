from pathlib import Path

import pytest

from docingest.pipeline.blob_store import FileBlobStore


def test_put_overwrites_and_leaves_no_temp_files(blob_store: FileBlobStore) -> None:
    blob_store.put("docs/a.md", b"first")
    blob_store.put("docs/a.md", b"second")

    assert (blob_store.container_dir / "docs" / "a.md").read_bytes() == b"second"
    assert [path.name for path in (blob_store.container_dir / "docs").iterdir()] == ["a.md"]


def test_exists_and_delete(blob_store: FileBlobStore) -> None:
    blob_store.put("a.txt", b"x")
    assert blob_store.exists("a.txt")

    blob_store.delete("a.txt")
    blob_store.delete("a.txt")

    assert not blob_store.exists("a.txt")


@pytest.mark.parametrize("key", ["", "/etc/passwd", "../escape.txt", "docs/../../x"])
def test_rejects_keys_outside_container(blob_store: FileBlobStore, key: str) -> None:
    with pytest.raises(ValueError, match="Invalid blob key"):
        blob_store.put(key, b"x")


@pytest.mark.parametrize("container", ["", "a/b", ".."])
def test_rejects_invalid_container_names(tmp_path: Path, container: str) -> None:
    with pytest.raises(ValueError, match="Invalid blob container"):
        FileBlobStore(tmp_path, container)
