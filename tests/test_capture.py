"""Tests for session capture and manual knowledge operations."""

import json
from dataclasses import replace
from pathlib import Path

import pytest

pytest.importorskip("numpy")

from lore.capture import MANUAL_SESSION_ID, SessionCapture
from lore.config import LoreConfig
from lore.errors import EmbeddingUnavailableError, RecordNotFoundError, RecordValidationError
from lore.models import FileAction, FileChange, KnowledgeType, TaskPriority, TaskStatus
from lore.store import RecordStore
from lore.transcript import parse_transcript_text
from lore.vec import VectorStore


def _transcript(*assistant_texts: str):
    lines = [json.dumps({"type": "user", "message": {"content": "Please rework the storage layer"}})]
    lines += [json.dumps({"type": "assistant", "message": {"content": text}}) for text in assistant_texts]
    return parse_transcript_text("\n".join(lines))


@pytest.fixture
def capture(record_store: RecordStore, linear_vector_store: VectorStore, embedder) -> SessionCapture:
    return SessionCapture(record_store, linear_vector_store, embedder)


@pytest.fixture
def failing_capture(record_store: RecordStore, linear_vector_store: VectorStore, failing_embedder) -> SessionCapture:
    return SessionCapture(record_store, linear_vector_store, failing_embedder)


def _store_with(config: LoreConfig, project_hash: str, **overrides) -> RecordStore:
    return RecordStore(project_hash, replace(config, **overrides))


# --- Session capture ---


class TestCapture:
    """Tests for capturing a new session."""

    def test_sample_transcript(self, capture: SessionCapture, record_store: RecordStore, sample_transcript_text: str):
        result = capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")

        assert result.session_id == "001"
        assert result.is_update is False
        assert result.used_markers is True
        assert result.counts == {"decisions": 1, "patterns": 1, "tasks": 1, "insights": 1}
        assert len(result.added_ids) == 4
        assert result.summary == "Please set up the storage layer for the notes app. Files: Created storage.py"

        index = record_store.load_index()
        assert index.total_sessions == 1
        assert [s.claude_session_id for s in index.sessions] == ["claude-1"]
        assert index.topics == {"database": [index.knowledge.decisions[0].id]}

    def test_session_file_written(self, capture: SessionCapture, record_store: RecordStore, sample_transcript_text: str):
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        session = record_store.load_session("001")
        assert session.metadata.decisions_count == 1
        assert [(c.path, c.action) for c in session.file_changes] == [("/repo/src/storage.py", FileAction.CREATED)]
        assert session.metadata.files_modified == 1

    def test_vectors_indexed(self, capture: SessionCapture, linear_vector_store: VectorStore, sample_transcript_text: str):
        result = capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        assert linear_vector_store.count() == 5
        assert linear_vector_store.exists("session-001")
        assert all(linear_vector_store.exists(record_id) for record_id in result.added_ids)

    def test_transcript_copied(
        self, capture: SessionCapture, record_store: RecordStore, sample_transcript_text: str, tmp_path: Path
    ):
        source = tmp_path / "session.jsonl"
        source.write_text(sample_transcript_text, encoding="utf-8")
        capture.capture(parse_transcript_text(sample_transcript_text), "claude-1", transcript_path=source)
        assert record_store.transcript_path("001").read_text(encoding="utf-8") == sample_transcript_text

    def test_new_claude_session_gets_next_id(self, capture: SessionCapture, sample_transcript_text: str):
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        result = capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-2")
        assert result.session_id == "002"
        assert result.is_update is False

    def test_empty_transcript(self, capture: SessionCapture, linear_vector_store: VectorStore):
        result = capture.capture(parse_transcript_text(""), claude_session_id="claude-1")
        assert result.counts == {"decisions": 0, "patterns": 0, "tasks": 0, "insights": 0}
        assert linear_vector_store.count() == 1

    def test_embedding_failure_writes_nothing(
        self,
        failing_capture: SessionCapture,
        record_store: RecordStore,
        linear_vector_store: VectorStore,
        sample_transcript_text: str,
    ):
        with pytest.raises(EmbeddingUnavailableError):
            failing_capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        assert not record_store.index_path.exists()
        assert not record_store.session_path("001").exists()
        assert linear_vector_store.count() == 0


class TestRecapture:
    """Tests for re-capturing the same conversation."""

    def test_updates_same_session(self, capture: SessionCapture, record_store: RecordStore, sample_transcript_text: str):
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        result = capture.capture(
            _transcript("[D] database: Use PostgreSQL for storage because we need concurrent writers"),
            claude_session_id="claude-1",
        )

        assert result.session_id == "001"
        assert result.is_update is True
        assert result.counts == {"decisions": 1, "patterns": 1, "tasks": 1, "insights": 1}

        index = record_store.load_index()
        assert index.total_sessions == 1
        assert len(index.sessions) == 1
        [decision] = index.knowledge.decisions
        assert decision.decision.startswith("Use PostgreSQL")

    def test_embeddings_replaced(
        self, capture: SessionCapture, linear_vector_store: VectorStore, sample_transcript_text: str
    ):
        first = capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        capture.capture(
            _transcript("[D] database: Use PostgreSQL for storage because we need concurrent writers"),
            claude_session_id="claude-1",
        )
        assert linear_vector_store.count() == 5
        old_decision_id = first.added_ids[0]
        assert not linear_vector_store.exists(old_decision_id)

    def test_file_changes_accumulate(
        self, capture: SessionCapture, record_store: RecordStore, sample_transcript_text: str
    ):
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        edit = json.dumps(
            {
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "name": "Edit", "input": {"file_path": "/repo/b.py"}}]},
            }
        )
        capture.capture(parse_transcript_text(edit), claude_session_id="claude-1")
        paths = [c.path for c in record_store.load_session("001").file_changes]
        assert paths == ["/repo/src/storage.py", "/repo/b.py"]

    def test_corrupt_session_file_recaptured(
        self, capture: SessionCapture, record_store: RecordStore, sample_transcript_text: str
    ):
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        path = record_store.session_path("001")
        data = json.loads(path.read_text(encoding="utf-8"))
        data["decisions"] = ["oops"]
        path.write_text(json.dumps(data), encoding="utf-8")

        result = capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        assert result.is_update is True
        assert len(record_store.load_session("001").decisions) == 1

    def test_append_policy_keeps_both(
        self,
        sample_config: LoreConfig,
        sample_project_hash: str,
        linear_vector_store: VectorStore,
        embedder,
        sample_transcript_text: str,
    ):
        store = _store_with(sample_config, sample_project_hash, merge_policy="append")
        capture = SessionCapture(store, linear_vector_store, embedder)
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        result = capture.capture(
            _transcript("[D] database: Use PostgreSQL for storage because we need concurrent writers"),
            claude_session_id="claude-1",
        )
        assert result.counts["decisions"] == 2


class TestCaptureHousekeeping:
    """Tests for pending changes and session pruning during capture."""

    def test_pending_changes_merged_and_cleared(
        self, capture: SessionCapture, record_store: RecordStore, sample_transcript_text: str
    ):
        record_store.pending_changes().append(FileChange(path="/repo/notes.md", tool_name="Edit"))
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")

        paths = {c.path for c in record_store.load_session("001").file_changes}
        assert paths == {"/repo/notes.md", "/repo/src/storage.py"}
        assert record_store.pending_changes().load() == []

    def test_change_tracked_during_capture_is_kept(
        self,
        record_store: RecordStore,
        linear_vector_store: VectorStore,
        embedder,
        sample_transcript_text: str,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """A change appended by another process mid-capture waits for the next capture."""
        embed_batch = embedder.embed_batch

        def embed_while_tracker_appends(texts):
            record_store.pending_changes().append(FileChange(path="/repo/concurrent.py"))
            return embed_batch(texts)

        monkeypatch.setattr(embedder, "embed_batch", embed_while_tracker_appends)
        capture = SessionCapture(record_store, linear_vector_store, embedder)
        capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")

        assert [c.path for c in record_store.load_session("001").file_changes] == ["/repo/src/storage.py"]
        assert [c.path for c in record_store.pending_changes().load()] == ["/repo/concurrent.py"]

    def test_oldest_session_pruned(
        self,
        sample_config: LoreConfig,
        sample_project_hash: str,
        linear_vector_store: VectorStore,
        embedder,
        sample_transcript_text: str,
    ):
        store = _store_with(sample_config, sample_project_hash, max_sessions_stored=1)
        capture = SessionCapture(store, linear_vector_store, embedder)
        first = capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-1")
        second = capture.capture(parse_transcript_text(sample_transcript_text), claude_session_id="claude-2")

        assert second.pruned_sessions == ["001"]
        index = store.load_index()
        assert [s.id for s in index.sessions] == ["002"]
        assert not store.session_path("001").exists()
        # Records from a pruned session stay searchable.
        assert store.get(first.added_ids[0]) is not None
        assert linear_vector_store.exists(first.added_ids[0])


# --- Saving free text ---


class TestSaveConversation:
    CONVERSATION = (
        "User: Which database should the notes app use?\n"
        "Assistant: [D] database: Use SQLite for local storage because it needs no server\n"
    )

    def test_records_filed_under_manual(self, capture: SessionCapture, record_store: RecordStore):
        result = capture.save_conversation(self.CONVERSATION)
        assert result.session_id == MANUAL_SESSION_ID
        assert result.counts["decisions"] == 1
        [decision] = record_store.load_all().decisions
        assert decision.session_id == MANUAL_SESSION_ID

    def test_known_records_skipped(self, capture: SessionCapture, linear_vector_store: VectorStore):
        capture.save_conversation(self.CONVERSATION)
        again = capture.save_conversation(self.CONVERSATION)
        assert again.added_ids == []
        assert linear_vector_store.count() == 1

    def test_accepts_jsonl(self, capture: SessionCapture, sample_transcript_text: str):
        result = capture.save_conversation(sample_transcript_text)
        assert len(result.added_ids) == 4

    def test_nothing_found(self, capture: SessionCapture, embedder):
        result = capture.save_conversation("User: hi\nAssistant: hello")
        assert result.added_ids == []
        assert embedder.batch_calls == 0


# --- Manual records ---


class TestManualRecords:
    """Tests for add_* operations."""

    def test_add_decision(self, capture: SessionCapture, record_store: RecordStore, linear_vector_store: VectorStore):
        decision = capture.add_decision("Use REST for the public API", topic="Public API", rationale="  simple ")
        assert decision.topic == "public-api"
        assert decision.rationale == "simple"
        assert decision.session_id == MANUAL_SESSION_ID
        assert record_store.get(decision.id) == decision
        assert linear_vector_store.exists(decision.id)

    def test_add_decision_detects_topic(self, capture: SessionCapture):
        assert capture.add_decision("Use pytest for everything").topic == "testing"

    def test_empty_decision(self, capture: SessionCapture):
        with pytest.raises(RecordValidationError):
            capture.add_decision("   ")

    def test_supersedes(self, capture: SessionCapture, record_store: RecordStore):
        old = capture.add_decision("Use SQLite", topic="database")
        new = capture.add_decision("Use PostgreSQL", topic="database", supersedes=old.id)
        assert new.supersedes == old.id
        assert record_store.get(old.id) is not None

    def test_supersedes_unknown(self, capture: SessionCapture):
        with pytest.raises(RecordNotFoundError):
            capture.add_decision("Use PostgreSQL", supersedes="nope")

    def test_supersedes_non_decision(self, capture: SessionCapture):
        task = capture.add_task("Pick a database")
        with pytest.raises(RecordNotFoundError):
            capture.add_decision("Use PostgreSQL", supersedes=task.id)

    def test_add_pattern_generates_name(self, capture: SessionCapture):
        pattern = capture.add_pattern("Always use barrel files for re-exports")
        assert pattern.name == "barrel-files-reexports"

    def test_add_task_priority(self, capture: SessionCapture):
        assert capture.add_task("Fix the flaky login test", priority="high").priority is TaskPriority.HIGH

    def test_add_task_invalid_priority(self, capture: SessionCapture, record_store: RecordStore):
        with pytest.raises(RecordValidationError):
            capture.add_task("Fix the flaky login test", priority="urgent")
        assert len(record_store.load_all()) == 0

    def test_add_insight(self, capture: SessionCapture):
        insight = capture.add_insight("The ORM drops timezones", context="naive datetimes")
        assert insight.context == "naive datetimes"

    def test_embedding_failure_writes_nothing(
        self, failing_capture: SessionCapture, record_store: RecordStore, linear_vector_store: VectorStore
    ):
        with pytest.raises(EmbeddingUnavailableError):
            failing_capture.add_insight("The ORM drops timezones")
        assert len(record_store.load_all()) == 0
        assert linear_vector_store.count() == 0


class TestCompleteTask:
    def test_complete(self, capture: SessionCapture, record_store: RecordStore, linear_vector_store: VectorStore):
        task = capture.add_task("Add migration tests")
        done = capture.complete_task(task.id, session_id="002")
        assert done.status is TaskStatus.COMPLETED
        assert record_store.get(task.id).status is TaskStatus.COMPLETED
        assert linear_vector_store.exists(task.id)

    def test_unknown(self, capture: SessionCapture):
        with pytest.raises(RecordNotFoundError):
            capture.complete_task("nope")


class TestForget:
    """Tests for deleting records and their embeddings together."""

    @pytest.fixture
    def seeded(self, capture: SessionCapture):
        return {
            "decision": capture.add_decision("Use SQLite", topic="database"),
            "task": capture.add_task("Add migration tests"),
            "insight": capture.add_insight("The ORM drops timezones"),
        }

    def test_forget_one(self, capture: SessionCapture, seeded, record_store: RecordStore, linear_vector_store):
        task_id = seeded["task"].id
        assert capture.forget(record_id=task_id) == [task_id]
        assert record_store.get(task_id) is None
        assert not linear_vector_store.exists(task_id)
        assert linear_vector_store.count() == 2

    def test_forget_kind(self, capture: SessionCapture, seeded, linear_vector_store):
        assert capture.forget(kind="decision") == [seeded["decision"].id]
        assert linear_vector_store.count_by_type() == {"task": 1, "insight": 1}

    def test_forget_kind_enum(self, capture: SessionCapture, seeded):
        assert capture.forget(kind=KnowledgeType.INSIGHT) == [seeded["insight"].id]

    def test_forget_everything(self, capture: SessionCapture, seeded, record_store: RecordStore, linear_vector_store):
        assert len(capture.forget(everything=True)) == 3
        assert len(record_store.load_all()) == 0
        assert linear_vector_store.count() == 0

    def test_forget_unknown(self, capture: SessionCapture, seeded):
        with pytest.raises(RecordNotFoundError):
            capture.forget(record_id="nope")

    @pytest.mark.parametrize(
        "kwargs",
        [{}, {"record_id": "x", "everything": True}, {"kind": "task", "record_id": "x"}],
    )
    def test_needs_exactly_one_selector(self, capture: SessionCapture, kwargs):
        with pytest.raises(ValueError):
            capture.forget(**kwargs)
