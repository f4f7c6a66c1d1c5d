"""Sparse bag-of-words embeddings and cosine similarity."""

import math
from collections import Counter
from typing import Dict, List, Optional

from .analyzer import CodeAnalyzer
from .models import Chunk, EmbeddingEntry


def tokenize(text: str) -> List[str]:
    return text.lower().split()


def term_vector(text: str) -> Dict[str, int]:
    return dict(Counter(tokenize(text)))


def magnitude(vector: Dict[str, int]) -> float:
    return math.sqrt(sum(count * count for count in vector.values()))


def cosine_similarity(a: Dict[str, int], mag_a: float, b: Dict[str, int], mag_b: float) -> float:
    """Cosine similarity of two term vectors; 0.0 without overlap or on zero magnitude."""
    if mag_a == 0 or mag_b == 0:
        return 0.0
    if len(a) > len(b):
        a, b = b, a
    dot = sum(count * b[term] for term, count in a.items() if term in b)
    if dot == 0:
        return 0.0
    return dot / (mag_a * mag_b)


class EmbeddingIndex:
    """In-memory embedding store keyed by chunk id, in insertion order."""

    def __init__(self):
        self._entries: Dict[str, EmbeddingEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, chunk_id: str) -> bool:
        return chunk_id in self._entries

    def get(self, chunk_id: str) -> Optional[EmbeddingEntry]:
        return self._entries.get(chunk_id)

    def add(self, chunk: Chunk) -> EmbeddingEntry:
        vector = term_vector(chunk.content)
        entry = EmbeddingEntry(
            chunk_id=chunk.id,
            vector=vector,
            magnitude=magnitude(vector),
            purpose=chunk.purpose,
            functions=list(chunk.functions),
            classes=list(chunk.classes),
            doc_excerpts=CodeAnalyzer.extract_doc_excerpts(chunk.content, chunk.language),
        )
        self._entries[chunk.id] = entry
        return entry

    def remove(self, chunk_id: str) -> None:
        self._entries.pop(chunk_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def score(self, query: str) -> List[tuple]:
        """Return ``(chunk_id, score)`` for every entry, in insertion order."""
        query_vector = term_vector(query)
        query_mag = magnitude(query_vector)
        return [
            (chunk_id, cosine_similarity(query_vector, query_mag, entry.vector, entry.magnitude))
            for chunk_id, entry in self._entries.items()
        ]
