from __future__ import annotations

from typing import Protocol, Sequence

import tiktoken

Token = int | str


class Tokenizer(Protocol):
    name: str

    def encode(self, text: str) -> list[Token]: ...

    def decode(self, tokens: Sequence[Token]) -> str: ...


def _utf8_sequence_length(lead: int) -> int:
    if lead >> 5 == 0b110:
        return 2
    if lead >> 4 == 0b1110:
        return 3
    if lead >> 3 == 0b11110:
        return 4
    return 1


def decode_whole_characters(data: bytes) -> str:
    """Decode UTF-8 bytes cut at arbitrary token edges.

    A character split by the cut is dropped at either end instead of being
    replaced with U+FFFD.
    """
    start = 0
    while start < len(data) and data[start] & 0xC0 == 0x80:
        start += 1
    end = len(data)
    for back in range(1, min(4, end - start) + 1):
        lead = data[end - back]
        if lead & 0xC0 == 0x80:
            continue
        if _utf8_sequence_length(lead) > back:
            end -= back
        break
    return data[start:end].decode("utf-8", errors="replace")


class TiktokenTokenizer:
    def __init__(
        self,
        encoding_name: str = "cl100k_base",
        *,
        encoding: tiktoken.Encoding | None = None,
    ) -> None:
        self.name = encoding_name
        self._encoding = encoding or tiktoken.get_encoding(encoding_name)

    def encode(self, text: str) -> list[Token]:
        return list(self._encoding.encode(text, disallowed_special=()))

    def decode(self, tokens: Sequence[Token]) -> str:
        pieces = self._encoding.decode_tokens_bytes([int(token) for token in tokens])
        return decode_whole_characters(b"".join(pieces))


class WhitespaceTokenizer:
    """Splits on runs of whitespace; decoding joins tokens with single spaces."""

    name = "whitespace"

    def encode(self, text: str) -> list[Token]:
        return list(text.split())

    def decode(self, tokens: Sequence[Token]) -> str:
        return " ".join(str(token) for token in tokens)


def get_tokenizer(name: str) -> Tokenizer:
    normalized = name.strip().lower()
    if normalized == WhitespaceTokenizer.name:
        return WhitespaceTokenizer()
    return TiktokenTokenizer(normalized)
