"""JSON-backed record store for Lore.

Per-project layout under ~/.lore/projects/<hash>/:

    index.json                  ProjectIndex: sessions + all knowledge records
    sessions/<id>.json          ProcessedSession for one captured session
    sessions/<id>.jsonl         Copy of the raw transcript
    pending-changes.json        File changes recorded between captures
    pending-changes.json.lock   Advisory lock for the file above

Loads are lenient: a missing, unreadable or malformed file yields an empty
default, and an individual invalid record is skipped with a warning rather
than discarding the whole index. Saves use temp file + rename.
"""

import json
import logging
import shutil
from pathlib import Path

from lore.config import LoreConfig, get_project_dir
from lore.errors import RecordNotFoundError, RecordValidationError
from lore.locking import AdvisoryLock, lock_path_for
from lore.models import (
    FileChange,
    KnowledgeRecord,
    KnowledgeSet,
    KnowledgeType,
    ProcessedSession,
    ProjectIndex,
    SessionMetadata,
    Task,
    TaskStatus,
    generate_id,
    kind_of,
    record_from_dict,
    record_session_id,
    utc_now,
)

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
SESSIONS_DIRNAME = "sessions"
PENDING_FILENAME = "pending-changes.json"

# WHAT: Index keys holding each record list, in KnowledgeType order.
RECORD_KEYS: dict[KnowledgeType, str] = {
    KnowledgeType.DECISION: "decisions",
    KnowledgeType.PATTERN: "patterns",
    KnowledgeType.TASK: "tasks",
    KnowledgeType.INSIGHT: "insights",
}


def _read_json(path: Path):
    """Read a JSON file, returning None if missing, empty or invalid."""
    if not path.exists():
        return None
    try:
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            return None
        return json.loads(content)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring unreadable {path.name}: {e}")
        return None


def _write_json(path: Path, data) -> None:
    """Write JSON atomically (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        content = json.dumps(data, indent=2, ensure_ascii=False)
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def _safe_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def index_from_dict(data) -> ProjectIndex:
    """Build a ProjectIndex from parsed JSON, skipping invalid entries.

    Never raises: anything that isn't an object yields an empty index.
    """
    index = ProjectIndex()
    if not isinstance(data, dict):
        return index

    index.version = str(data.get("version") or index.version)
    index.project_path = str(data.get("project_path") or "")
    index.last_updated = str(data.get("last_updated") or index.last_updated)
    index.total_sessions = _safe_int(data.get("total_sessions"))
    index.total_tokens = _safe_int(data.get("total_tokens"))

    for raw in data.get("sessions") or []:
        try:
            if not isinstance(raw, dict):
                raise RecordValidationError("session entry must be an object")
            index.sessions.append(SessionMetadata.from_dict(raw))
        except (RecordValidationError, TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid session entry in index: {e}")

    for kind, key in RECORD_KEYS.items():
        for raw in data.get(key) or []:
            try:
                index.knowledge.add(record_from_dict(kind, raw))
            except RecordValidationError as e:
                logger.warning(f"Skipping invalid {kind.value} in index: {e}")

    index.topics = build_topics(index.knowledge)
    # Never hand out a session id the index already uses.
    index.total_sessions = max(index.total_sessions, len(index.sessions))
    return index


def build_topics(knowledge: KnowledgeSet) -> dict[str, list[str]]:
    """Map each decision topic to the ids of its decisions."""
    topics: dict[str, list[str]] = {}
    for decision in knowledge.decisions:
        topics.setdefault(decision.topic, []).append(decision.id)
    return topics


class RecordStore:
    """Knowledge records, sessions and transcripts for a single project.

    The whole index is read and written per operation. Record counts are
    in the hundreds to low thousands, where that is cheap.
    """

    def __init__(self, project_hash: str, config: LoreConfig | None = None):
        self._project_hash = project_hash
        self._config = config or LoreConfig()
        self._project_dir = get_project_dir(project_hash, self._config)
        self._index_path = self._project_dir / INDEX_FILENAME
        self._sessions_dir = self._project_dir / SESSIONS_DIRNAME

    @property
    def project_hash(self) -> str:
        return self._project_hash

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def index_path(self) -> Path:
        return self._index_path

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    @property
    def config(self) -> LoreConfig:
        return self._config

    # ---------------- Index ----------------

    def load_index(self) -> ProjectIndex:
        """Load index.json. Missing or malformed -> empty index."""
        return index_from_dict(_read_json(self._index_path))

    def save_index(self, index: ProjectIndex) -> None:
        """Save index.json atomically, refreshing last_updated and topics."""
        index.last_updated = utc_now()
        index.topics = build_topics(index.knowledge)
        _write_json(self._index_path, index.to_dict())

    def load_all(self) -> KnowledgeSet:
        """Return every knowledge record in the index."""
        return self.load_index().knowledge

    def save_all(self, knowledge: KnowledgeSet) -> None:
        """Replace every knowledge record in the index."""
        index = self.load_index()
        index.knowledge = knowledge
        self.save_index(index)

    def generate_id(self) -> str:
        return generate_id()

    def get(self, record_id: str) -> KnowledgeRecord | None:
        """Return the record with this id, or None."""
        for record in self.load_all().records():
            if record.id == record_id:
                return record
        return None

    def records_for_session(self, session_id: str, index: ProjectIndex | None = None) -> KnowledgeSet:
        """Return the records that originated in session_id."""
        knowledge = (index or self.load_index()).knowledge
        return KnowledgeSet.from_records(r for r in knowledge.records() if record_session_id(r) == session_id)

    # ---------------- Sessions ----------------

    def next_session_id(self, index: ProjectIndex | None = None) -> str:
        """Return the next zero-padded session id ("001", "002", ...)."""
        index = index or self.load_index()
        return str(index.total_sessions + 1).zfill(self._config.session_id_padding)

    def find_session_by_claude_id(
        self, claude_session_id: str, index: ProjectIndex | None = None
    ) -> SessionMetadata | None:
        """Return the session captured from this Claude session id, if any."""
        if not claude_session_id:
            return None
        index = index or self.load_index()
        for session in index.sessions:
            if session.claude_session_id == claude_session_id:
                return session
        return None

    def get_session_metadata(self, session_id: str, index: ProjectIndex | None = None) -> SessionMetadata | None:
        index = index or self.load_index()
        for session in index.sessions:
            if session.id == session_id:
                return session
        return None

    def normalize_session_id(self, session_id: str) -> str:
        """Re-pad a numeric session id ("7" -> "007"). Others pass through."""
        session_id = session_id.strip()
        if not session_id.isdigit():
            return session_id
        return str(int(session_id)).zfill(self._config.session_id_padding)

    def list_sessions(self) -> list[SessionMetadata]:
        """Return session metadata, most recently ended first."""
        return sorted(self.load_index().sessions, key=lambda s: s.end_time, reverse=True)

    def tag_session(self, session_id: str, tags: list[str], remove: bool = False) -> SessionMetadata:
        """Add tags to a session, or remove them.

        Tags keep their first-added order and are never duplicated. The
        session file's copy of the metadata is updated too.

        Raises:
            RecordNotFoundError: No session has this id.
        """
        index = self.load_index()
        session = self.get_session_metadata(session_id, index)
        if session is None:
            raise RecordNotFoundError(session_id)

        if remove:
            session.tags = [t for t in session.tags if t not in tags]
        else:
            for tag in tags:
                if tag not in session.tags:
                    session.tags.append(tag)
        self.save_index(index)

        processed = self.load_session(session_id)
        if processed is not None:
            processed.metadata.tags = list(session.tags)
            self.save_session(processed)
        return session

    def session_path(self, session_id: str) -> Path:
        return self._sessions_dir / f"{session_id}.json"

    def transcript_path(self, session_id: str) -> Path:
        return self._sessions_dir / f"{session_id}.jsonl"

    def load_session(self, session_id: str) -> ProcessedSession | None:
        """Load sessions/<id>.json. Missing or invalid -> None."""
        data = _read_json(self.session_path(session_id))
        if data is None:
            return None
        try:
            return ProcessedSession.from_dict(data)
        except (RecordValidationError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring invalid session file {session_id}: {e}")
            return None

    def save_session(self, session: ProcessedSession) -> None:
        _write_json(self.session_path(session.metadata.id), session.to_dict())

    def copy_transcript(self, session_id: str, source: str | Path) -> Path | None:
        """Copy a raw transcript next to its session file.

        Returns:
            The copy's path, or None if the source doesn't exist.
        """
        source = Path(source)
        if not source.is_file():
            return None
        target = self.transcript_path(session_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        return target

    def delete_session_files(self, session_id: str) -> None:
        """Remove a session's JSON file and transcript copy, if present."""
        self.session_path(session_id).unlink(missing_ok=True)
        self.transcript_path(session_id).unlink(missing_ok=True)

    def prune_old_sessions(self, index: ProjectIndex | None = None) -> list[str]:
        """Drop the oldest sessions beyond max_sessions_stored.

        Oldest is by end_time. Only the session metadata and its files go;
        records that originated in a pruned session stay in the index and
        stay searchable.

        Args:
            index: Index to prune in place. When omitted, the index is
                loaded and saved here.

        Returns:
            Ids of the pruned sessions.
        """
        owns_index = index is None
        index = index or self.load_index()

        limit = self._config.max_sessions_stored
        if limit <= 0 or len(index.sessions) <= limit:
            return []

        oldest = sorted(index.sessions, key=lambda s: s.end_time)[: len(index.sessions) - limit]
        pruned = {s.id for s in oldest}
        for session_id in pruned:
            self.delete_session_files(session_id)
        index.sessions = [s for s in index.sessions if s.id not in pruned]

        logger.info(f"Pruned {len(pruned)} sessions (limit {limit})")
        if owns_index:
            self.save_index(index)
        return [s.id for s in oldest]

    # ---------------- Record mutations ----------------

    def complete_task(self, task_id: str, session_id: str | None = None) -> Task:
        """Mark a task completed.

        Raises:
            RecordNotFoundError: No task has this id.
        """
        index = self.load_index()
        task = next((t for t in index.knowledge.tasks if t.id == task_id), None)
        if task is None:
            raise RecordNotFoundError(task_id)

        task.status = TaskStatus.COMPLETED
        task.timestamp_completed = utc_now()
        if session_id:
            task.session_completed = session_id
        self.save_index(index)

        session = self.load_session(task.session_created)
        if session is not None:
            session.tasks = [task if t.id == task_id else t for t in session.tasks]
            self.save_session(session)
        return task

    def delete_record(self, record_id: str) -> KnowledgeRecord:
        """Remove one record from the index and its session file.

        Raises:
            RecordNotFoundError: No record has this id.
        """
        index = self.load_index()
        record = next((r for r in index.knowledge.records() if r.id == record_id), None)
        if record is None:
            raise RecordNotFoundError(record_id)

        records = index.knowledge.by_kind(kind_of(record))
        records[:] = [r for r in records if r.id != record_id]
        self.save_index(index)
        self._remove_from_session_file(record)
        return record

    def delete_type(self, kind: KnowledgeType) -> list[KnowledgeRecord]:
        """Remove every record of one type. Returns the removed records."""
        index = self.load_index()
        records = index.knowledge.by_kind(kind)
        removed = list(records)
        records.clear()
        self.save_index(index)
        for record in removed:
            self._remove_from_session_file(record)
        return removed

    def delete_all(self) -> list[KnowledgeRecord]:
        """Remove every record and session.

        The session counter is kept so later session ids stay unique.
        """
        index = self.load_index()
        removed = index.knowledge.records()
        for session in index.sessions:
            self.delete_session_files(session.id)
        index.knowledge = KnowledgeSet()
        index.sessions = []
        index.total_tokens = 0
        self.save_index(index)
        return removed

    def _remove_from_session_file(self, record: KnowledgeRecord) -> None:
        session = self.load_session(record_session_id(record))
        if session is None:
            return
        kind = kind_of(record)
        key = RECORD_KEYS[kind]
        kept = [r for r in getattr(session, key) if r.id != record.id]
        if len(kept) != len(getattr(session, key)):
            setattr(session, key, kept)
            self.save_session(session)

    # ---------------- Pending changes ----------------

    def pending_changes(self) -> "PendingChanges":
        return PendingChanges(self._project_dir / PENDING_FILENAME, self._config)


class PendingChanges:
    """Append-only log of file changes recorded between captures.

    Every read-modify-write holds the advisory lock, since a tracker in
    another process may append while a capture drains the log.
    """

    def __init__(self, path: Path, config: LoreConfig | None = None):
        config = config or LoreConfig()
        self.path = Path(path)
        self._lock = AdvisoryLock(
            lock_path_for(self.path),
            timeout=config.lock_timeout_seconds,
            stale_after=config.lock_stale_seconds,
        )

    def _read(self) -> list[FileChange]:
        data = _read_json(self.path)
        if not isinstance(data, list):
            return []
        changes = []
        for raw in data:
            try:
                if isinstance(raw, dict):
                    changes.append(FileChange.from_dict(raw))
            except RecordValidationError as e:
                logger.debug(f"Skipping invalid pending change: {e}")
        return changes

    def load(self) -> list[FileChange]:
        with self._lock:
            return self._read()

    def append(self, change: FileChange) -> None:
        """Append one change.

        Raises:
            LockTimeoutError: The log stayed locked by another process.
        """
        with self._lock:
            changes = self._read()
            changes.append(change)
            _write_json(self.path, [c.to_dict() for c in changes])

    def discard(self, consumed: list[FileChange]) -> int:
        """Remove the given changes from the log, keeping anything newer.

        The log is re-read under the lock, so entries appended after
        `consumed` was loaded survive.

        Returns:
            Number of entries removed.
        """
        remaining = [c.to_dict() for c in consumed]
        with self._lock:
            kept = []
            for change in self._read():
                data = change.to_dict()
                if data in remaining:
                    remaining.remove(data)
                else:
                    kept.append(data)
            removed = len(consumed) - len(remaining)
            _write_json(self.path, kept)
        return removed
