"""Session-aware retrieval of code context for a request."""

import logging
from typing import Any, Dict, List, Optional

from .indexer import CodebaseIndexer
from .models import ContextBundle, SearchResult

logger = logging.getLogger(__name__)

FOLLOW_UP_SEARCH_LIMIT = 4
NEW_REQUEST_SEARCH_LIMIT = 8


class ContextRetriever:
    """Builds a ContextBundle from the index and the session's continuity context.

    Follow-up requests start from every chunk of the files the previous
    operation modified, then add a small semantic search. New requests use a
    plain semantic search.
    """

    def __init__(
        self,
        indexer: Optional[CodebaseIndexer],
        follow_up_limit: int = FOLLOW_UP_SEARCH_LIMIT,
        search_limit: int = NEW_REQUEST_SEARCH_LIMIT,
    ):
        self.indexer = indexer
        self.follow_up_limit = follow_up_limit
        self.search_limit = search_limit

    def retrieve(self, request: str, session_context: Optional[Dict[str, Any]] = None) -> ContextBundle:
        session_type = session_context["type"] if session_context else "none"
        bundle = ContextBundle(query=request, session_type=session_type)
        if self.indexer is None:
            return bundle

        chunks: List[SearchResult] = []
        if session_type == "follow_up" and session_context.get("last_files_modified"):
            for path in session_context["last_files_modified"]:
                chunks.extend(SearchResult(chunk=chunk, score=1.0) for chunk in self.indexer.get_file_chunks(path))
            chunks.extend(self.indexer.search(request, self.follow_up_limit))
            seen = set()
            unique = []
            for result in chunks:
                if result.chunk.id not in seen:
                    seen.add(result.chunk.id)
                    unique.append(result)
            chunks = unique
        else:
            chunks = self.indexer.search(request, self.search_limit)

        bundle.relevant_chunks = chunks
        for result in chunks:
            if result.chunk.file_path not in bundle.relevant_files:
                bundle.relevant_files.append(result.chunk.file_path)
        bundle.dependencies = [
            record
            for record in (self.indexer.get_dependencies(path) for path in bundle.relevant_files)
            if record is not None
        ]
        stats = self.indexer.get_index_stats()
        bundle.total_files = stats["total_files"]
        bundle.total_chunks = stats["total_chunks"]
        logger.debug(
            f"Retrieved {len(chunks)} chunks from {len(bundle.relevant_files)} files ({session_type})"
        )
        return bundle
