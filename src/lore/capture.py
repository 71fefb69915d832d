"""Session capture and manual knowledge operations.

SessionCapture ties extraction, the record store and the vector store
together. Every write path follows the same order:

1. Build the records to persist.
2. Embed all of their texts in one batch.
3. Only then touch the stores.

An embedding failure in step 2 therefore leaves both stores as they were.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from lore.classifier import detect_topic, generate_pattern_name, slugify_label
from lore.config import LoreConfig
from lore.embeddings import EmbeddingProvider
from lore.errors import RecordNotFoundError, RecordValidationError
from lore.extractors import KnowledgeExtractor
from lore.merge import merge_file_changes, merge_session, merge_topics, novel_records
from lore.models import (
    Decision,
    EmbeddingEntry,
    EntryType,
    FileAction,
    FileChange,
    Insight,
    KnowledgeRecord,
    KnowledgeSet,
    KnowledgeType,
    Pattern,
    ProcessedSession,
    SessionMetadata,
    Task,
    TaskPriority,
    record_session_id,
    utc_now,
)
from lore.store import RecordStore
from lore.transcript import ParsedTranscript, estimate_tokens, modified_files, parse_any
from lore.vec import VectorStore

logger = logging.getLogger(__name__)

# WHAT: Session id owning records that didn't come from a captured session.
MANUAL_SESSION_ID = "manual"


@dataclass
class CaptureResult:
    """Outcome of a capture or save."""

    session_id: str
    is_update: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    added_ids: list[str] = field(default_factory=list)
    pruned_sessions: list[str] = field(default_factory=list)
    used_markers: bool = False
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "is_update": self.is_update,
            "counts": dict(self.counts),
            "added_ids": list(self.added_ids),
            "pruned_sessions": list(self.pruned_sessions),
            "used_markers": self.used_markers,
            "summary": self.summary,
        }


def _counts(knowledge: KnowledgeSet) -> dict[str, int]:
    return {
        "decisions": len(knowledge.decisions),
        "patterns": len(knowledge.patterns),
        "tasks": len(knowledge.tasks),
        "insights": len(knowledge.insights),
    }


class SessionCapture:
    """Captures sessions and manages individual records for one project.

    Example:
        capture = SessionCapture(store, vectors, engine)
        result = capture.capture(parse_transcript(path), claude_session_id="abc-123")
    """

    def __init__(
        self,
        store: RecordStore,
        vectors: VectorStore,
        engine: EmbeddingProvider,
        extractor: KnowledgeExtractor | None = None,
        config: LoreConfig | None = None,
    ):
        self._store = store
        self._vectors = vectors
        self._engine = engine
        self._extractor = extractor or KnowledgeExtractor()
        self._config = config or store.config

    def _embed(self, entries: list[EmbeddingEntry]) -> list[tuple[EmbeddingEntry, list[float]]]:
        """Embed entries in one batch. Raises EmbeddingUnavailableError."""
        if not entries:
            return []
        vectors = self._engine.embed_batch([entry.text for entry in entries])
        return list(zip(entries, vectors, strict=True))

    # ---------------- Session capture ----------------

    def capture(
        self,
        transcript: ParsedTranscript,
        claude_session_id: str = "",
        transcript_path: str | Path | None = None,
    ) -> CaptureResult:
        """Extract, merge, persist and index one session.

        Re-capturing the same Claude session updates its Lore session:
        prior records are merged with the new pass by key (later wins) and
        the session's embeddings are replaced.

        Args:
            transcript: Parsed transcript.
            claude_session_id: Id of the originating conversation, used to
                detect re-captures.
            transcript_path: Raw transcript to copy beside the session file.

        Returns:
            CaptureResult for the captured session.

        Raises:
            EmbeddingUnavailableError: Nothing was written.
        """
        index = self._store.load_index()
        existing = self._store.find_session_by_claude_id(claude_session_id, index)
        is_update = existing is not None
        session_id = existing.id if existing else self._store.next_session_id(index)

        extracted = self._extractor.extract(transcript, session_id)
        prior = self._store.records_for_session(session_id, index) if is_update else KnowledgeSet()
        prior_session = self._store.load_session(session_id) if is_update else None

        incoming = extracted.knowledge_set()
        if self._config.merge_policy == "append":
            merged = KnowledgeSet.from_records([*prior.records(), *novel_records(prior, incoming).records()])
        else:
            merged = merge_session(prior, incoming)

        pending = self._store.pending_changes()
        consumed = pending.load()
        now = utc_now()
        new_changes = [
            FileChange(path=path, action=FileAction(action), timestamp=now, tool_name=tool)
            for path, action, tool in modified_files(transcript)
        ]
        file_changes = merge_file_changes(
            prior_session.file_changes if prior_session else [],
            [*consumed, *new_changes],
        )

        token_count = estimate_tokens(transcript)
        metadata = SessionMetadata(
            id=session_id,
            claude_session_id=claude_session_id,
            start_time=existing.start_time if existing else now,
            end_time=now,
            token_count=token_count,
            summary=extracted.summary,
            decisions_count=len(merged.decisions),
            patterns_count=len(merged.patterns),
            tasks_count=len(merged.tasks),
            insights_count=len(merged.insights),
            files_modified=len(file_changes),
            key_topics=merge_topics(existing.key_topics if existing else [], extracted.key_topics),
            tags=list(existing.tags) if existing else [],
        )

        entries = [EmbeddingEntry.for_record(record) for record in merged.records()]
        entries.append(EmbeddingEntry.for_session(metadata))
        embedded = self._embed(entries)

        # Stores are only touched from here on.
        for kind in KnowledgeType:
            records = index.knowledge.by_kind(kind)
            records[:] = [r for r in records if record_session_id(r) != session_id]
            records.extend(merged.by_kind(kind))

        if existing:
            index.total_tokens += token_count - existing.token_count
            index.sessions = [metadata if s.id == session_id else s for s in index.sessions]
        else:
            index.total_sessions += 1
            index.total_tokens += token_count
            index.sessions.append(metadata)

        self._store.save_session(
            ProcessedSession(
                metadata=metadata,
                decisions=list(merged.decisions),
                patterns=list(merged.patterns),
                tasks=list(merged.tasks),
                insights=list(merged.insights),
                file_changes=file_changes,
            )
        )
        if transcript_path:
            self._store.copy_transcript(session_id, transcript_path)

        pruned = self._store.prune_old_sessions(index)
        self._store.save_index(index)
        self._vectors.replace_session(session_id, embedded)
        # Entries appended while this capture ran stay for the next one.
        pending.discard(consumed)

        logger.info(
            f"Session {session_id} {'updated' if is_update else 'captured'}: "
            f"{_counts(merged)}, {len(file_changes)} files"
        )
        return CaptureResult(
            session_id=session_id,
            is_update=is_update,
            counts=_counts(merged),
            added_ids=[record.id for record in merged.records()],
            pruned_sessions=pruned,
            used_markers=extracted.used_markers,
            summary=extracted.summary,
        )

    def save_conversation(self, text: str) -> CaptureResult:
        """Extract from free text and add only records not already stored.

        Accepts plain "User:/Assistant:" text or JSONL. Records are filed
        under the "manual" session.
        """
        transcript = parse_any(text)
        extracted = self._extractor.extract(transcript, MANUAL_SESSION_ID)

        index = self._store.load_index()
        novel = novel_records(index.knowledge, extracted.knowledge_set())
        embedded = self._embed([EmbeddingEntry.for_record(record) for record in novel.records()])

        if embedded:
            for record in novel.records():
                index.knowledge.add(record)
            self._store.save_index(index)
            self._vectors.insert_batch(embedded)

        skipped = len(extracted.records()) - len(novel)
        logger.info(f"Saved conversation: {len(novel)} new records, {skipped} already known")
        return CaptureResult(
            session_id=MANUAL_SESSION_ID,
            counts=_counts(novel),
            added_ids=[record.id for record in novel.records()],
            used_markers=extracted.used_markers,
            summary=extracted.summary,
        )

    # ---------------- Manual records ----------------

    def _add(self, record: KnowledgeRecord) -> KnowledgeRecord:
        embedded = self._embed([EmbeddingEntry.for_record(record)])
        index = self._store.load_index()
        index.knowledge.add(record)
        self._store.save_index(index)
        self._vectors.insert_batch(embedded)
        logger.info(f"Added {type(record).__name__.lower()} {record.id}")
        return record

    def add_decision(
        self,
        decision: str,
        topic: str | None = None,
        rationale: str = "",
        supersedes: str | None = None,
        session_id: str = MANUAL_SESSION_ID,
    ) -> Decision:
        """Record a decision.

        Args:
            decision: What was decided.
            topic: Topic key. Detected from the text when omitted.
            rationale: Why.
            supersedes: Id of an earlier decision this one replaces. The
                earlier decision is kept.
            session_id: Owning session.

        Raises:
            RecordValidationError: Empty decision text.
            RecordNotFoundError: `supersedes` names no stored decision.
        """
        if not decision.strip():
            raise RecordValidationError("decision text is required")
        if supersedes and not isinstance(self._store.get(supersedes), Decision):
            raise RecordNotFoundError(supersedes)

        record = Decision(
            topic=slugify_label(topic) if topic else detect_topic(decision),
            decision=decision.strip(),
            rationale=rationale.strip(),
            session_id=session_id,
            supersedes=supersedes,
        )
        return self._add(record)

    def add_pattern(
        self,
        description: str,
        name: str | None = None,
        usage: str = "",
        session_id: str = MANUAL_SESSION_ID,
    ) -> Pattern:
        if not description.strip():
            raise RecordValidationError("pattern description is required")
        record = Pattern(
            name=slugify_label(name) if name else generate_pattern_name(description),
            description=description.strip(),
            usage=usage.strip(),
            session_id=session_id,
        )
        return self._add(record)

    def add_task(
        self,
        title: str,
        description: str | None = None,
        priority: TaskPriority | str | None = None,
        session_id: str = MANUAL_SESSION_ID,
    ) -> Task:
        if not title.strip():
            raise RecordValidationError("task title is required")
        if isinstance(priority, str):
            try:
                priority = TaskPriority(priority)
            except ValueError:
                raise RecordValidationError(f"invalid task priority {priority!r}") from None
        record = Task(
            title=title.strip(),
            description=description.strip() if description else None,
            priority=priority,
            session_created=session_id,
        )
        return self._add(record)

    def add_insight(
        self,
        content: str,
        context: str | None = None,
        session_id: str = MANUAL_SESSION_ID,
    ) -> Insight:
        if not content.strip():
            raise RecordValidationError("insight content is required")
        record = Insight(content=content.strip(), context=context, session_id=session_id)
        return self._add(record)

    # ---------------- Mutations ----------------

    def complete_task(self, task_id: str, session_id: str | None = None) -> Task:
        """Mark a task completed and refresh its embedding.

        Raises:
            RecordNotFoundError: No task has this id.
        """
        task = self._store.get(task_id)
        if not isinstance(task, Task):
            raise RecordNotFoundError(task_id)
        entry = EmbeddingEntry.for_record(task)
        vector = self._engine.embed(entry.text)

        task = self._store.complete_task(task_id, session_id)
        self._vectors.insert(EmbeddingEntry.for_record(task), vector)
        return task

    def forget(
        self,
        record_id: str | None = None,
        kind: KnowledgeType | str | None = None,
        everything: bool = False,
    ) -> list[str]:
        """Delete records and their embeddings.

        Exactly one of record_id, kind or everything selects what goes.

        Returns:
            Ids of the deleted records.

        Raises:
            RecordNotFoundError: record_id names no stored record.
            ValueError: No selector, or more than one.
        """
        selectors = sum([record_id is not None, kind is not None, everything])
        if selectors != 1:
            raise ValueError("forget needs exactly one of record_id, kind or everything")

        if everything:
            removed = self._store.delete_all()
            self._vectors.clear()
        elif kind is not None:
            kind = KnowledgeType(kind) if isinstance(kind, str) else kind
            removed = self._store.delete_type(kind)
            self._vectors.delete_by_type(EntryType(kind.value))
        else:
            removed = [self._store.delete_record(record_id)]
            self._vectors.delete(record_id)

        ids = [record.id for record in removed]
        logger.info(f"Forgot {len(ids)} records")
        return ids
