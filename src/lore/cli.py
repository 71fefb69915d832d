"""CLI commands for Lore.

Capture and retrieval: capture, save-conversation, search, status.
Records: add-decision, record-pattern, add-task, add-insight,
complete-task, forget. Sessions: list-sessions, get-session,
tag-session. Hook: track-file.

Used by __main__.py. Every command prints one JSON object to stdout:

    {"success": true, "message": "...", "data": {...}}

and returns 0 on success, 1 on failure. track-file always returns 0 so a
failing hook never blocks the editor.
"""

import json
import sys
from contextlib import contextmanager
from pathlib import Path

from lore.capture import MANUAL_SESSION_ID, SessionCapture
from lore.config import LoreConfig, load_config
from lore.db import get_db_path
from lore.embeddings import engine_from_config
from lore.errors import LoreError
from lore.extractors import KnowledgeExtractor
from lore.models import EntryType, FileAction, FileChange, KnowledgeType, TaskStatus
from lore.project import identify_project
from lore.scorer import QualityScorer
from lore.search import KnowledgeSearch
from lore.store import RecordStore
from lore.transcript import file_change_from_hook, parse_transcript
from lore.vec import VectorStore

# Failures a command reports instead of crashing on.
_COMMAND_ERRORS = (LoreError, OSError, ValueError)


def _emit(success: bool, message: str, data=None) -> int:
    output = {"success": success, "message": message}
    if data is not None:
        output["data"] = data
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0 if success else 1


class _Project:
    """Store, vector store and engine for the project in cwd."""

    def __init__(self, cwd: str | None, config: LoreConfig):
        identity = identify_project(cwd)
        self.identity = identity
        self.config = config
        self.store = RecordStore(identity["hash"], config)
        self.engine = engine_from_config(config)
        self.vectors = VectorStore(get_db_path(identity["hash"], config), dimension=config.embedding_dimension)

    def capture(self) -> SessionCapture:
        scorer = QualityScorer.from_config(self.engine, self.config)
        extractor = KnowledgeExtractor(scorer, heuristics_enabled=self.config.heuristics_enabled)
        return SessionCapture(self.store, self.vectors, self.engine, extractor, self.config)

    def search(self) -> KnowledgeSearch:
        return KnowledgeSearch(self.store, self.vectors, self.engine)


@contextmanager
def _open_project(cwd: str | None = None):
    project = _Project(cwd, load_config())
    try:
        yield project
    finally:
        project.vectors.close()


def cmd_capture(transcript_path: str, session_id: str = "", cwd: str | None = None) -> int:
    """Capture a transcript file as a session.

    session_id is the originating conversation id; capturing the same id
    again updates that session. Defaults to the transcript's file stem.
    """
    path = Path(transcript_path)
    if not path.is_file():
        return _emit(False, f"Transcript not found: {transcript_path}")
    try:
        transcript = parse_transcript(path)
        if transcript.is_empty:
            return _emit(False, f"Transcript has no messages: {transcript_path}")
        with _open_project(cwd) as project:
            result = project.capture().capture(transcript, session_id or path.stem, transcript_path=path)
        verb = "updated" if result.is_update else "saved"
        return _emit(True, f"Session {result.session_id} {verb}", result.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to capture session: {e}")


def cmd_save_conversation(source: str, cwd: str | None = None) -> int:
    """Extract knowledge from a conversation file ("-" for stdin)."""
    try:
        text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
        if not text.strip():
            return _emit(False, "Conversation is empty")
        with _open_project(cwd) as project:
            result = project.capture().save_conversation(text)
        total = sum(result.counts.values())
        return _emit(True, f"Saved {total} new records", result.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to save conversation: {e}")


def cmd_search(query: str, type_filter: str | None = None, limit: int = 10, cwd: str | None = None) -> int:
    """Search stored knowledge by meaning."""
    if type_filter is not None and type_filter not in {t.value for t in EntryType}:
        return _emit(False, f"Unknown type: {type_filter}")
    try:
        with _open_project(cwd) as project:
            results = project.search().search(query, limit=limit, type_filter=type_filter)
        return _emit(True, f"{len(results)} results", [r.to_dict() for r in results])
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Search failed: {e}")


def cmd_complete_task(task_id: str, session_id: str | None = None, cwd: str | None = None) -> int:
    try:
        with _open_project(cwd) as project:
            task = project.capture().complete_task(task_id, session_id)
        return _emit(True, f"Task completed: {task.title}", task.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to complete task: {e}")


def cmd_forget(
    record_id: str | None = None,
    kind: str | None = None,
    everything: bool = False,
    cwd: str | None = None,
) -> int:
    """Delete one record, every record of a type, or everything."""
    if kind is not None and kind not in {t.value for t in KnowledgeType}:
        return _emit(False, f"Unknown type: {kind}")
    try:
        with _open_project(cwd) as project:
            removed = project.capture().forget(record_id=record_id, kind=kind, everything=everything)
        return _emit(True, f"Forgot {len(removed)} records", {"removed": removed})
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to forget: {e}")


def cmd_status(cwd: str | None = None) -> int:
    """Print project identity, record counts and vector store state.

    Does not load the embedding model.
    """
    try:
        identity = identify_project(cwd)
        config = load_config()
        store = RecordStore(identity["hash"], config)
        index = store.load_index()

        with VectorStore(get_db_path(identity["hash"], config), dimension=config.embedding_dimension) as vectors:
            vector_stats = vectors.stats()

        tasks = index.knowledge.tasks
        data = {
            "project": identity["path"],
            "hash": identity["hash"],
            "sessions": len(index.sessions),
            "total_sessions": index.total_sessions,
            "total_tokens": index.total_tokens,
            "decisions": len(index.knowledge.decisions),
            "patterns": len(index.knowledge.patterns),
            "tasks": {
                "pending": sum(1 for t in tasks if t.status is TaskStatus.PENDING),
                "completed": sum(1 for t in tasks if t.status is TaskStatus.COMPLETED),
                "total": len(tasks),
            },
            "insights": len(index.knowledge.insights),
            "topics": sorted(index.topics),
            "last_updated": index.last_updated,
            "vectors": vector_stats,
        }
        return _emit(True, f"Lore status for {identity['path']}", data)
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Status failed: {e}")


# ---------------- Manual records ----------------


def cmd_add_decision(
    decision: str,
    topic: str | None = None,
    rationale: str = "",
    supersedes: str | None = None,
    session_id: str | None = None,
    cwd: str | None = None,
) -> int:
    try:
        with _open_project(cwd) as project:
            record = project.capture().add_decision(
                decision,
                topic=topic,
                rationale=rationale,
                supersedes=supersedes,
                session_id=session_id or MANUAL_SESSION_ID,
            )
        return _emit(True, f"Decision recorded: {record.topic}", record.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to record decision: {e}")


def cmd_record_pattern(
    description: str,
    name: str | None = None,
    usage: str = "",
    session_id: str | None = None,
    cwd: str | None = None,
) -> int:
    """Record a pattern. The name is derived from the description when omitted."""
    try:
        with _open_project(cwd) as project:
            record = project.capture().add_pattern(
                description, name=name, usage=usage, session_id=session_id or MANUAL_SESSION_ID
            )
        return _emit(True, f"Pattern recorded: {record.name}", record.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to record pattern: {e}")


def cmd_add_task(
    title: str,
    description: str | None = None,
    priority: str | None = None,
    session_id: str | None = None,
    cwd: str | None = None,
) -> int:
    try:
        with _open_project(cwd) as project:
            record = project.capture().add_task(
                title, description=description, priority=priority, session_id=session_id or MANUAL_SESSION_ID
            )
        return _emit(True, f"Task added: {record.title}", record.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to add task: {e}")


def cmd_add_insight(
    content: str,
    context: str | None = None,
    session_id: str | None = None,
    cwd: str | None = None,
) -> int:
    try:
        with _open_project(cwd) as project:
            record = project.capture().add_insight(content, context=context, session_id=session_id or MANUAL_SESSION_ID)
        return _emit(True, "Insight recorded", record.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to record insight: {e}")


# ---------------- Sessions ----------------


def _record_store(cwd: str | None) -> RecordStore:
    """Record store for the project in cwd, without opening the vector store."""
    return RecordStore(identify_project(cwd)["hash"], load_config())


def cmd_list_sessions(cwd: str | None = None) -> int:
    """List session metadata, most recent first."""
    try:
        sessions = _record_store(cwd).list_sessions()
        data = {"sessions": [s.to_dict() for s in sessions], "total_sessions": len(sessions)}
        return _emit(True, f"Found {len(sessions)} sessions", data)
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to list sessions: {e}")


def cmd_get_session(session_id: str, cwd: str | None = None) -> int:
    """Print one session file: metadata, records and file changes."""
    try:
        store = _record_store(cwd)
        session_id = store.normalize_session_id(session_id)
        session = store.load_session(session_id)
        if session is None:
            return _emit(False, f"Session {session_id} not found")
        return _emit(True, f"Session {session_id}: {session.metadata.summary[:100]}", session.to_dict())
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to load session: {e}")


def cmd_tag_session(session_id: str, tags: list[str], remove: bool = False, cwd: str | None = None) -> int:
    """Add tags to a session, or remove them with remove=True."""
    if not tags:
        return _emit(False, "No tags given")
    try:
        store = _record_store(cwd)
        session_id = store.normalize_session_id(session_id)
        session = store.tag_session(session_id, tags, remove=remove)
        verb = "removed from" if remove else "added to"
        data = {"session_id": session.id, "tags": list(session.tags), "action": "removed" if remove else "added"}
        return _emit(True, f"Tags {verb} session {session.id}: {', '.join(tags)}", data)
    except _COMMAND_ERRORS as e:
        return _emit(False, f"Failed to tag session: {e}")


# ---------------- Hook ----------------


def _read_payload(source: str) -> dict:
    """Read a hook payload from a JSON file or stdin ("-"). Invalid -> {}."""
    try:
        raw = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        payload = json.loads(raw)
    except (json.JSONDecodeError, OSError):
        return {}
    return payload if isinstance(payload, dict) else {}


def cmd_track_file(source: str = "-", cwd: str | None = None) -> int:
    """Append one file change from a PostToolUse payload to the pending log.

    The payload's own cwd picks the project when present. Payloads for
    other events or tools are ignored.
    """
    payload = _read_payload(source)
    tracked = file_change_from_hook(payload)
    if tracked is None:
        _emit(True, "Nothing to track")
        return 0

    path, action, tool_name = tracked
    try:
        store = RecordStore(identify_project(payload.get("cwd") or cwd)["hash"], load_config())
        change = FileChange(path=path, action=FileAction(action), tool_name=tool_name)
        store.pending_changes().append(change)
        _emit(True, f"Tracked {action} {path}", change.to_dict())
    except _COMMAND_ERRORS as e:
        _emit(False, f"Failed to track file: {e}")
    return 0
