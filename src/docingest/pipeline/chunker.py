from __future__ import annotations

from bisect import bisect_right
from typing import Iterable

from docingest.pipeline.tokenizer import Token, Tokenizer
from docingest.pipeline.types import Chunk, TextBlock

DEFAULT_CHUNK_SIZE = 1024
DEFAULT_CHUNK_OVERLAP = 128


def validate_chunking(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if chunk_overlap < 0:
        raise ValueError("chunk_overlap must be >= 0")
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")


def window_bounds(token_count: int, *, chunk_size: int, chunk_overlap: int) -> list[tuple[int, int]]:
    """Half-open token windows covering ``token_count`` tokens.

    Windows advance by ``chunk_size - chunk_overlap``; the last one is cut at
    the end of the stream and the walk stops as soon as a window reaches it.
    """
    validate_chunking(chunk_size, chunk_overlap)

    bounds: list[tuple[int, int]] = []
    stride = chunk_size - chunk_overlap
    cursor = 0
    while cursor < token_count:
        end = min(token_count, cursor + chunk_size)
        bounds.append((cursor, end))
        if end >= token_count:
            break
        cursor += stride
    return bounds


def chunk_blocks(
    blocks: Iterable[TextBlock],
    *,
    tokenizer: Tokenizer,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[Chunk]:
    validate_chunking(chunk_size, chunk_overlap)

    tokens: list[Token] = []
    block_starts: list[int] = []
    block_list: list[TextBlock] = []
    doc_id: str | None = None

    for block in blocks:
        block_tokens = tokenizer.encode(block.text)
        if not block_tokens:
            continue
        if doc_id is None:
            doc_id = block.doc_id
        elif block.doc_id != doc_id:
            raise ValueError(f"blocks from different documents: {doc_id} and {block.doc_id}")
        block_starts.append(len(tokens))
        block_list.append(block)
        tokens.extend(block_tokens)

    if doc_id is None:
        return []

    chunks: list[Chunk] = []
    for index, (start, end) in enumerate(
        window_bounds(len(tokens), chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    ):
        first_block = bisect_right(block_starts, start) - 1
        last_block = bisect_right(block_starts, end - 1) - 1

        pieces: list[str] = []
        for position in range(first_block, last_block + 1):
            block_start = block_starts[position]
            block_end = (
                block_starts[position + 1] if position + 1 < len(block_starts) else len(tokens)
            )
            piece = tokenizer.decode(tokens[max(start, block_start) : min(end, block_end)])
            if piece:
                pieces.append(piece)

        spanned = block_list[first_block : last_block + 1]
        chunks.append(
            Chunk(
                doc_id=doc_id,
                sequence_index=index,
                text="\n".join(pieces),
                start_offset=start,
                end_offset=end,
                section=spanned[0].section,
                pages=tuple(
                    sorted({block.page_number for block in spanned if block.page_number is not None})
                ),
            )
        )

    return chunks
