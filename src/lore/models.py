"""Core data models for the Lore knowledge store.

Defines the four knowledge record types (Decision, Pattern, Task, Insight),
the session and project-index containers that persist them, and the
embedding entry written to the vector store. Every consumer dispatches
over the closed set of record types through the helpers at the bottom of
this module, so adding a type is a compile-visible change in one place.
"""

import enum
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from lore.errors import RecordValidationError


class KnowledgeType(enum.Enum):
    """The four kinds of knowledge Lore extracts and stores."""

    DECISION = "decision"
    PATTERN = "pattern"
    TASK = "task"
    INSIGHT = "insight"


class EntryType(enum.Enum):
    """Kinds of rows in the vector store.

    Mirrors KnowledgeType plus SESSION for per-session summary entries.
    """

    DECISION = "decision"
    PATTERN = "pattern"
    TASK = "task"
    INSIGHT = "insight"
    SESSION = "session"


class TaskStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FileAction(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


# WHAT: Prefix for the pseudo-id of a session summary embedding.
SESSION_ENTRY_PREFIX = "session-"

_WHITESPACE_RE = re.compile(r"\s+")


def generate_id() -> str:
    """Return a new opaque record id (never reused)."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def normalize_text(text: str) -> str:
    """Lowercase, collapse whitespace and trim. Used as the dedup key."""
    return _WHITESPACE_RE.sub(" ", text.lower()).strip()


# ============================================================
# Validation helpers
# ============================================================


def _require_str(data: dict, key: str, kind: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise RecordValidationError(f"{kind} record missing required string field {key!r}")
    return value


def _optional_str(data: dict, key: str, kind: str, default: str | None = None) -> str | None:
    value = data.get(key, default)
    if value is None or isinstance(value, str):
        return value
    raise RecordValidationError(f"{kind} record field {key!r} must be a string")


def _str_list(data: dict, key: str, kind: str) -> list[str]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise RecordValidationError(f"{kind} record field {key!r} must be a list of strings")
    return list(value)


def _enum_value(enum_cls, data: dict, key: str, kind: str, default=None):
    raw = data.get(key)
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        raise RecordValidationError(f"{kind} record field {key!r} has invalid value {raw!r}") from None


# ============================================================
# Knowledge records
# ============================================================


@dataclass
class Decision:
    """A choice made during a session, keyed by topic.

    `supersedes` links to an earlier decision's id. The earlier decision is
    kept; the link only records the history.
    """

    topic: str = "general"
    decision: str = ""
    rationale: str = ""
    session_id: str = ""
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=utc_now)
    supersedes: str | None = None
    alternatives: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        data = {
            "id": self.id,
            "topic": self.topic,
            "decision": self.decision,
            "rationale": self.rationale,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "alternatives": list(self.alternatives),
            "tags": list(self.tags),
        }
        if self.supersedes:
            data["supersedes"] = self.supersedes
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Decision":
        """Deserialize and validate. Raises RecordValidationError."""
        kind = "decision"
        return cls(
            id=_require_str(data, "id", kind),
            topic=_require_str(data, "topic", kind),
            decision=_require_str(data, "decision", kind),
            rationale=_optional_str(data, "rationale", kind, "") or "",
            session_id=_require_str(data, "session_id", kind),
            timestamp=_optional_str(data, "timestamp", kind) or utc_now(),
            supersedes=_optional_str(data, "supersedes", kind),
            alternatives=_str_list(data, "alternatives", kind),
            tags=_str_list(data, "tags", kind),
        )


@dataclass
class Pattern:
    """A recurring convention, keyed by a short slug name."""

    name: str = "pattern"
    description: str = ""
    usage: str = ""
    session_id: str = ""
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=utc_now)
    examples: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "usage": self.usage,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "examples": list(self.examples),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Pattern":
        """Deserialize and validate. Raises RecordValidationError."""
        kind = "pattern"
        return cls(
            id=_require_str(data, "id", kind),
            name=_require_str(data, "name", kind),
            description=_require_str(data, "description", kind),
            usage=_optional_str(data, "usage", kind, "") or "",
            session_id=_require_str(data, "session_id", kind),
            timestamp=_optional_str(data, "timestamp", kind) or utc_now(),
            examples=_str_list(data, "examples", kind),
            tags=_str_list(data, "tags", kind),
        )


@dataclass
class Task:
    """A unit of follow-up work. Status is the only field that transitions."""

    title: str = ""
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority | None = None
    session_created: str = ""
    session_completed: str | None = None
    id: str = field(default_factory=generate_id)
    timestamp_created: str = field(default_factory=utc_now)
    timestamp_completed: str | None = None
    tags: list[str] = field(default_factory=list)

    @property
    def session_id(self) -> str:
        """Originating session (alias of session_created)."""
        return self.session_created

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        data = {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "session_created": self.session_created,
            "timestamp_created": self.timestamp_created,
            "tags": list(self.tags),
        }
        if self.description:
            data["description"] = self.description
        if self.priority is not None:
            data["priority"] = self.priority.value
        if self.session_completed:
            data["session_completed"] = self.session_completed
        if self.timestamp_completed:
            data["timestamp_completed"] = self.timestamp_completed
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Deserialize and validate. Raises RecordValidationError."""
        kind = "task"
        return cls(
            id=_require_str(data, "id", kind),
            title=_require_str(data, "title", kind),
            description=_optional_str(data, "description", kind),
            status=_enum_value(TaskStatus, data, "status", kind, TaskStatus.PENDING),
            priority=_enum_value(TaskPriority, data, "priority", kind),
            session_created=_require_str(data, "session_created", kind),
            session_completed=_optional_str(data, "session_completed", kind),
            timestamp_created=_optional_str(data, "timestamp_created", kind) or utc_now(),
            timestamp_completed=_optional_str(data, "timestamp_completed", kind),
            tags=_str_list(data, "tags", kind),
        )


@dataclass
class Insight:
    """A learned fact about the codebase or its tools."""

    content: str = ""
    context: str | None = None
    session_id: str = ""
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=utc_now)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        data = {
            "id": self.id,
            "content": self.content,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "tags": list(self.tags),
        }
        if self.context:
            data["context"] = self.context
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Insight":
        """Deserialize and validate. Raises RecordValidationError."""
        kind = "insight"
        return cls(
            id=_require_str(data, "id", kind),
            content=_require_str(data, "content", kind),
            context=_optional_str(data, "context", kind),
            session_id=_require_str(data, "session_id", kind),
            timestamp=_optional_str(data, "timestamp", kind) or utc_now(),
            tags=_str_list(data, "tags", kind),
        )


KnowledgeRecord = Decision | Pattern | Task | Insight

RECORD_CLASSES: dict[KnowledgeType, type] = {
    KnowledgeType.DECISION: Decision,
    KnowledgeType.PATTERN: Pattern,
    KnowledgeType.TASK: Task,
    KnowledgeType.INSIGHT: Insight,
}


# ============================================================
# Closed-set dispatch
# ============================================================


def kind_of(record: KnowledgeRecord) -> KnowledgeType:
    """Return the KnowledgeType of a record. Raises TypeError otherwise."""
    if isinstance(record, Decision):
        return KnowledgeType.DECISION
    if isinstance(record, Pattern):
        return KnowledgeType.PATTERN
    if isinstance(record, Task):
        return KnowledgeType.TASK
    if isinstance(record, Insight):
        return KnowledgeType.INSIGHT
    raise TypeError(f"Not a knowledge record: {type(record).__name__}")


def record_from_dict(kind: KnowledgeType, data: dict) -> KnowledgeRecord:
    """Deserialize a record of the given kind. Raises RecordValidationError."""
    if not isinstance(data, dict):
        raise RecordValidationError(f"{kind.value} record must be an object, got {type(data).__name__}")
    return RECORD_CLASSES[kind].from_dict(data)


def record_session_id(record: KnowledgeRecord) -> str:
    """Return the originating session of a record."""
    if isinstance(record, Task):
        return record.session_created
    kind_of(record)
    return record.session_id


def merge_key(record: KnowledgeRecord) -> str:
    """Return the key that identifies "the same" record across re-captures.

    Decisions by topic, patterns by name, tasks by title, insights by
    normalized content.
    """
    kind = kind_of(record)
    if kind is KnowledgeType.DECISION:
        return record.topic
    if kind is KnowledgeType.PATTERN:
        return record.name
    if kind is KnowledgeType.TASK:
        return record.title
    return normalize_text(record.content)


def primary_text(record: KnowledgeRecord) -> str:
    """Return the record's main human-readable text."""
    kind = kind_of(record)
    if kind is KnowledgeType.DECISION:
        return record.decision
    if kind is KnowledgeType.PATTERN:
        return record.description
    if kind is KnowledgeType.TASK:
        return record.description or record.title
    return record.content


def embedding_text(record: KnowledgeRecord) -> str:
    """Return the text embedded for a record (distinct from display text)."""
    kind = kind_of(record)
    if kind is KnowledgeType.DECISION:
        return f"{record.topic}: {record.decision}. Rationale: {record.rationale}"
    if kind is KnowledgeType.PATTERN:
        return f"{record.name}: {record.description}. Usage: {record.usage}"
    if kind is KnowledgeType.TASK:
        return f"{record.title}: {record.description}" if record.description else record.title
    return f"{record.content} (Context: {record.context})" if record.context else record.content


def session_entry_id(session_id: str) -> str:
    """Return the vector-store pseudo-id for a session summary."""
    return f"{SESSION_ENTRY_PREFIX}{session_id}"


def parse_session_entry_id(entry_id: str) -> str | None:
    """Return the session id for a "session-<id>" entry, else None."""
    if entry_id.startswith(SESSION_ENTRY_PREFIX):
        return entry_id[len(SESSION_ENTRY_PREFIX) :]
    return None


# ============================================================
# Sessions and the project index
# ============================================================


@dataclass
class FileChange:
    """A file touched during a session."""

    path: str
    action: FileAction = FileAction.MODIFIED
    timestamp: str = field(default_factory=utc_now)
    tool_name: str = ""

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "action": self.action.value,
            "timestamp": self.timestamp,
            "tool_name": self.tool_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileChange":
        return cls(
            path=_require_str(data, "path", "file change"),
            action=_enum_value(FileAction, data, "action", "file change", FileAction.MODIFIED),
            timestamp=_optional_str(data, "timestamp", "file change") or utc_now(),
            tool_name=_optional_str(data, "tool_name", "file change", "") or "",
        )


@dataclass
class SessionMetadata:
    """Summary row for one captured session, kept in the project index."""

    id: str
    claude_session_id: str = ""
    start_time: str = field(default_factory=utc_now)
    end_time: str = field(default_factory=utc_now)
    token_count: int = 0
    summary: str = ""
    decisions_count: int = 0
    patterns_count: int = 0
    tasks_count: int = 0
    insights_count: int = 0
    files_modified: int = 0
    key_topics: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "claude_session_id": self.claude_session_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "token_count": self.token_count,
            "summary": self.summary,
            "decisions_count": self.decisions_count,
            "patterns_count": self.patterns_count,
            "tasks_count": self.tasks_count,
            "insights_count": self.insights_count,
            "files_modified": self.files_modified,
            "key_topics": list(self.key_topics),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionMetadata":
        kind = "session"
        return cls(
            id=_require_str(data, "id", kind),
            claude_session_id=_optional_str(data, "claude_session_id", kind, "") or "",
            start_time=_optional_str(data, "start_time", kind) or utc_now(),
            end_time=_optional_str(data, "end_time", kind) or utc_now(),
            token_count=int(data.get("token_count", 0) or 0),
            summary=_optional_str(data, "summary", kind, "") or "",
            decisions_count=int(data.get("decisions_count", 0) or 0),
            patterns_count=int(data.get("patterns_count", 0) or 0),
            tasks_count=int(data.get("tasks_count", 0) or 0),
            insights_count=int(data.get("insights_count", 0) or 0),
            files_modified=int(data.get("files_modified", 0) or 0),
            key_topics=_str_list(data, "key_topics", kind),
            tags=_str_list(data, "tags", kind),
        )


def session_text(metadata: SessionMetadata) -> str:
    """Return the text embedded for a session summary entry."""
    if metadata.key_topics:
        return f"{metadata.summary}. Topics: {', '.join(metadata.key_topics)}"
    return metadata.summary


@dataclass
class ProcessedSession:
    """Everything captured for one session, persisted as sessions/<id>.json."""

    metadata: SessionMetadata
    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    file_changes: list[FileChange] = field(default_factory=list)

    def records(self) -> list[KnowledgeRecord]:
        return [*self.decisions, *self.patterns, *self.tasks, *self.insights]

    def to_dict(self) -> dict:
        return {
            "metadata": self.metadata.to_dict(),
            "decisions": [d.to_dict() for d in self.decisions],
            "patterns": [p.to_dict() for p in self.patterns],
            "tasks": [t.to_dict() for t in self.tasks],
            "insights": [i.to_dict() for i in self.insights],
            "file_changes": [c.to_dict() for c in self.file_changes],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessedSession":
        """Deserialize a session file. Raises RecordValidationError."""
        if not isinstance(data, dict) or not isinstance(data.get("metadata"), dict):
            raise RecordValidationError("session file missing metadata")

        def items(key: str) -> list:
            value = data.get(key) or []
            if not isinstance(value, list):
                raise RecordValidationError(f"session field {key!r} must be a list")
            return value

        file_changes = []
        for raw in items("file_changes"):
            if not isinstance(raw, dict):
                raise RecordValidationError("file change must be an object")
            file_changes.append(FileChange.from_dict(raw))

        return cls(
            metadata=SessionMetadata.from_dict(data["metadata"]),
            decisions=[record_from_dict(KnowledgeType.DECISION, d) for d in items("decisions")],
            patterns=[record_from_dict(KnowledgeType.PATTERN, p) for p in items("patterns")],
            tasks=[record_from_dict(KnowledgeType.TASK, t) for t in items("tasks")],
            insights=[record_from_dict(KnowledgeType.INSIGHT, i) for i in items("insights")],
            file_changes=file_changes,
        )


@dataclass
class KnowledgeSet:
    """The four record lists, grouped. Used by the index and by merges."""

    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)

    def records(self) -> list[KnowledgeRecord]:
        return [*self.decisions, *self.patterns, *self.tasks, *self.insights]

    def by_kind(self, kind: KnowledgeType) -> list:
        """Return the live list for a kind (mutations are visible)."""
        if kind is KnowledgeType.DECISION:
            return self.decisions
        if kind is KnowledgeType.PATTERN:
            return self.patterns
        if kind is KnowledgeType.TASK:
            return self.tasks
        return self.insights

    def add(self, record: KnowledgeRecord) -> None:
        self.by_kind(kind_of(record)).append(record)

    def __len__(self) -> int:
        return len(self.decisions) + len(self.patterns) + len(self.tasks) + len(self.insights)

    @classmethod
    def from_records(cls, records) -> "KnowledgeSet":
        result = cls()
        for record in records:
            result.add(record)
        return result


@dataclass
class ProjectIndex:
    """All knowledge for one project plus the retained session list."""

    project_path: str = ""
    version: str = "1.0.0"
    last_updated: str = field(default_factory=utc_now)
    total_sessions: int = 0
    total_tokens: int = 0
    sessions: list[SessionMetadata] = field(default_factory=list)
    knowledge: KnowledgeSet = field(default_factory=KnowledgeSet)
    topics: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "project_path": self.project_path,
            "last_updated": self.last_updated,
            "total_sessions": self.total_sessions,
            "total_tokens": self.total_tokens,
            "sessions": [s.to_dict() for s in self.sessions],
            "decisions": [d.to_dict() for d in self.knowledge.decisions],
            "patterns": [p.to_dict() for p in self.knowledge.patterns],
            "tasks": [t.to_dict() for t in self.knowledge.tasks],
            "insights": [i.to_dict() for i in self.knowledge.insights],
            "topics": {k: list(v) for k, v in self.topics.items()},
        }


# ============================================================
# Vector store entries
# ============================================================


@dataclass
class EmbeddingEntry:
    """One row of the vector store: the embedded text and its owner.

    `id` equals the owning record's id, or "session-<id>" for a session
    summary. `text` is what was embedded, not the display text.
    """

    id: str
    type: EntryType
    text: str
    session_id: str | None = None

    @classmethod
    def for_record(cls, record: KnowledgeRecord) -> "EmbeddingEntry":
        return cls(
            id=record.id,
            type=EntryType(kind_of(record).value),
            text=embedding_text(record),
            session_id=record_session_id(record) or None,
        )

    @classmethod
    def for_session(cls, metadata: SessionMetadata) -> "EmbeddingEntry":
        return cls(
            id=session_entry_id(metadata.id),
            type=EntryType.SESSION,
            text=session_text(metadata),
            session_id=metadata.id,
        )
