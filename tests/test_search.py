"""Tests for semantic search and result hydration."""

import pytest

pytest.importorskip("numpy")

from lore.models import (
    Decision,
    EmbeddingEntry,
    EntryType,
    Insight,
    KnowledgeType,
    ProjectIndex,
    SessionMetadata,
    Task,
)
from lore.search import KnowledgeSearch, SearchResult
from lore.store import RecordStore
from lore.vec import VectorStore


@pytest.fixture
def search(record_store: RecordStore, linear_vector_store: VectorStore, embedder) -> KnowledgeSearch:
    """A KnowledgeSearch over three records and one session summary."""
    decision = Decision(
        id="d1",
        topic="database",
        decision="Use SQLite for local storage",
        rationale="no server to run",
        session_id="001",
    )
    task = Task(id="t1", title="Write migration tests for the notes table", session_created="001")
    insight = Insight(id="i1", content="Timezone info is lost on naive datetimes", session_id="001")
    session = SessionMetadata(id="001", summary="Set up the storage layer", key_topics=["database"])

    index = ProjectIndex(total_sessions=1, sessions=[session])
    for record in (decision, task, insight):
        index.knowledge.add(record)
    record_store.save_index(index)

    entries = [EmbeddingEntry.for_record(r) for r in (decision, task, insight)]
    entries.append(EmbeddingEntry.for_session(session))
    linear_vector_store.insert_batch(zip(entries, embedder.embed_batch([e.text for e in entries])))
    return KnowledgeSearch(record_store, linear_vector_store, embedder)


class TestKnowledgeSearch:
    """Tests for KnowledgeSearch.search."""

    def test_best_match_first(self, search: KnowledgeSearch):
        results = search.search("migration tests notes table", limit=4)
        assert results[0].id == "t1"
        assert results[0].type == "task"
        assert results[0].content["title"] == "Write migration tests for the notes table"

    def test_scores_descending(self, search: KnowledgeSearch):
        scores = [r.score for r in search.search("sqlite storage", limit=4)]
        assert scores == sorted(scores, reverse=True)

    def test_session_hit_hydrates_metadata(self, search: KnowledgeSearch):
        [result] = search.search("storage layer", type_filter=EntryType.SESSION)
        assert result.id == "session-001"
        assert result.content["summary"] == "Set up the storage layer"

    def test_type_filter_accepts_knowledge_type(self, search: KnowledgeSearch):
        results = search.search("sqlite", type_filter=KnowledgeType.INSIGHT)
        assert [r.id for r in results] == ["i1"]

    def test_type_filter_accepts_string(self, search: KnowledgeSearch):
        assert [r.id for r in search.search("sqlite", type_filter="decision")] == ["d1"]

    def test_limit(self, search: KnowledgeSearch):
        assert len(search.search("storage", limit=2)) == 2

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query(self, search: KnowledgeSearch, query: str):
        assert search.search(query) == []

    def test_non_positive_limit(self, search: KnowledgeSearch):
        assert search.search("sqlite", limit=0) == []

    def test_orphaned_hit_dropped(self, search: KnowledgeSearch, record_store: RecordStore):
        """A vector whose record was removed from the index is not reported."""
        record_store.delete_record("d1")
        ids = [r.id for r in search.search("sqlite local storage", limit=10)]
        assert "d1" not in ids
        assert "t1" in ids

    def test_empty_stores(self, record_store: RecordStore, linear_vector_store: VectorStore, embedder):
        assert KnowledgeSearch(record_store, linear_vector_store, embedder).search("anything") == []


class TestSearchResult:
    def test_to_dict_rounds_score(self):
        result = SearchResult(id="a", type="task", score=0.123456789, snippet="x", content={"id": "a"})
        data = result.to_dict()
        assert data["score"] == 0.1235
        assert data["content"] == {"id": "a"}
