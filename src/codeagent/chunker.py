"""Boundary-aligned line chunking."""

import math
from typing import List

from .analyzer import CodeAnalyzer
from .languages import detect_purpose, is_boundary
from .models import Chunk

DEFAULT_CHUNK_SIZE = 500
DEFAULT_MAX_CHUNK_SIZE = 2000


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def split_lines(content: str) -> List[str]:
    """Split on newline characters only, keeping them; form feeds and Unicode separators stay in their line."""
    lines = content.split("\n")
    tail = lines.pop()
    result = [line + "\n" for line in lines]
    if tail:
        result.append(tail)
    return result


class ChunkSplitter:
    """Split file text into contiguous chunks.

    A chunk is closed before a line when the buffer already holds more than
    ``chunk_size`` characters and the line starts a semantic unit, or when the
    line would push the buffer past ``max_chunk_size``. Chunks keep their raw
    text so a file's chunks join back to the original content.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE):
        if chunk_size <= 0 or max_chunk_size < chunk_size:
            raise ValueError("chunk sizes must satisfy 0 < chunk_size <= max_chunk_size")
        self.chunk_size = chunk_size
        self.max_chunk_size = max_chunk_size

    def split(self, path: str, content: str, language: str) -> List[Chunk]:
        chunks: List[Chunk] = []
        buffer: List[str] = []
        buffer_len = 0
        start_line = 1

        for line_no, line in enumerate(split_lines(content), start=1):
            if buffer and (
                (buffer_len > self.chunk_size and is_boundary(line, language))
                or buffer_len + len(line) > self.max_chunk_size
            ):
                chunks.append(self._make_chunk(path, "".join(buffer), start_line, line_no - 1, language))
                buffer = []
                buffer_len = 0
                start_line = line_no
            buffer.append(line)
            buffer_len += len(line)

        if buffer:
            end_line = start_line + len(buffer) - 1
            chunks.append(self._make_chunk(path, "".join(buffer), start_line, end_line, language))
        return chunks

    @staticmethod
    def _make_chunk(path: str, text: str, start_line: int, end_line: int, language: str) -> Chunk:
        return Chunk(
            id=f"{path}:{start_line}-{end_line}",
            content=text,
            file_path=path,
            start_line=start_line,
            end_line=end_line,
            token_count=estimate_tokens(text),
            language=language,
            functions=tuple(CodeAnalyzer.extract_functions(text, language)),
            classes=tuple(CodeAnalyzer.extract_classes(text, language)),
            purpose=detect_purpose(text),
        )
