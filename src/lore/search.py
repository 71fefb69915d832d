"""Semantic search over a project's knowledge.

Embeds the query once, asks the vector store for the nearest entries, then
resolves each hit back to its full record (or session metadata, for
"session-<id>" entries). The vector store and the record store are not
updated transactionally together, so a hit whose record no longer exists
is dropped, not reported.
"""

import logging
from dataclasses import dataclass, field

from lore.embeddings import EmbeddingProvider
from lore.models import EntryType, KnowledgeType, parse_session_entry_id
from lore.store import RecordStore
from lore.vec import VectorStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


@dataclass
class SearchResult:
    """A vector hit resolved against the record store."""

    id: str
    type: str
    score: float
    snippet: str
    content: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "score": round(self.score, 4),
            "snippet": self.snippet,
            "content": self.content,
        }


class KnowledgeSearch:
    """Retrieval facade over the record store and the vector store.

    Example:
        search = KnowledgeSearch(store, vectors, engine)
        for result in search.search("why sqlite", limit=5, type_filter="decision"):
            print(result.score, result.snippet)
    """

    def __init__(self, store: RecordStore, vectors: VectorStore, engine: EmbeddingProvider):
        self._store = store
        self._vectors = vectors
        self._engine = engine

    def search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        type_filter: EntryType | KnowledgeType | str | None = None,
    ) -> list[SearchResult]:
        """Return up to `limit` hydrated results, most similar first.

        Raises:
            EmbeddingUnavailableError: The query could not be embedded.
        """
        if not query or not query.strip() or limit <= 0:
            return []

        if isinstance(type_filter, (EntryType, KnowledgeType)):
            type_filter = type_filter.value

        vector = self._engine.embed(query)
        hits = self._vectors.search(vector, k=limit, type_filter=type_filter)
        if not hits:
            return []

        index = self._store.load_index()
        records = {record.id: record for record in index.knowledge.records()}
        sessions = {session.id: session for session in index.sessions}

        results: list[SearchResult] = []
        for hit in hits:
            session_id = parse_session_entry_id(hit.id)
            if session_id is not None:
                source = sessions.get(session_id)
            else:
                source = records.get(hit.id)

            if source is None:
                logger.debug(f"Dropping orphaned search hit {hit.id}")
                continue

            results.append(
                SearchResult(
                    id=hit.id,
                    type=hit.type,
                    score=hit.score,
                    snippet=hit.snippet,
                    content=source.to_dict(),
                )
            )
        return results
