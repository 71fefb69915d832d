"""Knowledge extraction pipeline.

Converts a parsed transcript into typed knowledge records:

1. Assistant messages are cleaned (system/tool content and code removed).
2. Explicit markers are extracted. Marker candidates skip quality scoring.
3. If no marker appears anywhere, heuristic triggers run instead, and
   their candidates must pass the quality scorer.
4. Candidates become records: decisions get a topic, patterns a name,
   tasks a title.

A summary and the session's key topics are derived alongside.
"""

import logging
import re
from dataclasses import dataclass, field

from lore.classifier import detect_topic, extract_key_topics, generate_pattern_name, slugify_label
from lore.heuristics import HeuristicExtractor
from lore.markers import Candidate, MarkerExtractor, clean_messages, has_markers, is_system_content
from lore.models import (
    Decision,
    Insight,
    KnowledgeRecord,
    KnowledgeSet,
    KnowledgeType,
    Pattern,
    Task,
    TaskPriority,
)
from lore.scorer import QualityScorer
from lore.transcript import ParsedTranscript

logger = logging.getLogger(__name__)

TASK_TITLE_LENGTH = 100
SUMMARY_REQUEST_LENGTH = 150
SUMMARY_LENGTH = 400
SUMMARY_MAX_FILES = 5
DEFAULT_SUMMARY = "Session with no captured summary"

# WHAT: User messages that are commands, file listings or tool echoes,
# not requests worth summarizing.
_SKIPPED_USER_MESSAGE_RES: list[re.Pattern] = [
    re.compile(r"^<command-"),
    re.compile(r"^# /"),
]
_SKIPPED_CLEANED_RES: list[re.Pattern] = [
    re.compile(r"^\s*[\[{]"),
    re.compile(r"^[0-9]+→"),
    re.compile(r"^[A-Z]:\\|^/[a-z]", re.IGNORECASE),
    re.compile(r"^[MADRCU?!]\s+"),
]
_TAG_RE = re.compile(r"<[^>]+>")
_FENCED_RE = re.compile(r"```[\s\S]*?```")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ExtractedKnowledge:
    """Everything extracted from one transcript in one pass."""

    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    summary: str = DEFAULT_SUMMARY
    key_topics: list[str] = field(default_factory=list)
    used_markers: bool = False

    def records(self) -> list[KnowledgeRecord]:
        return [*self.decisions, *self.patterns, *self.tasks, *self.insights]

    def knowledge_set(self) -> KnowledgeSet:
        return KnowledgeSet(list(self.decisions), list(self.patterns), list(self.tasks), list(self.insights))

    def counts(self) -> dict[str, int]:
        return {
            "decisions": len(self.decisions),
            "patterns": len(self.patterns),
            "tasks": len(self.tasks),
            "insights": len(self.insights),
        }


def record_from_candidate(candidate: Candidate, session_id: str) -> KnowledgeRecord:
    """Build a record from a candidate.

    Args:
        candidate: Marker or heuristic candidate.
        session_id: Originating session for the new record.

    Returns:
        Decision, Pattern, Task or Insight with a fresh id.
    """
    text = candidate.raw_text
    kind = candidate.type

    if kind is KnowledgeType.DECISION:
        topic = slugify_label(candidate.label) if candidate.label else detect_topic(text)
        return Decision(topic=topic, decision=text, rationale=candidate.rationale, session_id=session_id)

    if kind is KnowledgeType.PATTERN:
        name = slugify_label(candidate.label) if candidate.label else generate_pattern_name(text)
        return Pattern(name=name, description=text, usage=candidate.rationale, session_id=session_id)

    if kind is KnowledgeType.TASK:
        first_line = text.split("\n", 1)[0].strip()
        title = first_line[:TASK_TITLE_LENGTH]
        if candidate.multiline or len(text) > TASK_TITLE_LENGTH:
            description = text
        else:
            description = None
        priority = TaskPriority(candidate.priority) if candidate.priority else None
        return Task(title=title, description=description, priority=priority, session_created=session_id)

    if kind is KnowledgeType.INSIGHT:
        return Insight(content=text, session_id=session_id)

    raise TypeError(f"Unknown candidate type: {kind!r}")


class KnowledgeExtractor:
    """Runs marker and heuristic extraction over a transcript.

    Example:
        extractor = KnowledgeExtractor(QualityScorer(engine))
        knowledge = extractor.extract(parse_transcript(path), session_id="004")
    """

    def __init__(self, scorer: QualityScorer | None = None, heuristics_enabled: bool = True):
        """Initialize the extractor.

        Args:
            scorer: Quality scorer for heuristic candidates. Without one,
                the heuristic path is skipped.
            heuristics_enabled: Run heuristics when no markers are present.
        """
        self._scorer = scorer
        self._heuristics_enabled = heuristics_enabled

    def candidates(self, transcript: ParsedTranscript) -> tuple[list[Candidate], bool]:
        """Return (candidates, used_markers) for a transcript."""
        messages = clean_messages(transcript.assistant_messages)

        if any(has_markers(message) for message in messages):
            markers = MarkerExtractor()
            offset = 0
            for message in messages:
                markers.feed(message, offset)
                offset += len(message) + 1
            return markers.candidates, True

        if not (self._heuristics_enabled and self._scorer is not None):
            return [], False

        heuristics = HeuristicExtractor(self._scorer)
        offset = 0
        for message in messages:
            heuristics.feed(message, offset)
            offset += len(message) + 1
        return heuristics.candidates, False

    def extract(self, transcript: ParsedTranscript, session_id: str) -> ExtractedKnowledge:
        """Extract knowledge records, summary and key topics.

        Args:
            transcript: Parsed transcript.
            session_id: Session the new records belong to.

        Returns:
            ExtractedKnowledge with per-type deduplicated records.
        """
        candidates, used_markers = self.candidates(transcript)
        knowledge = ExtractedKnowledge(used_markers=used_markers)

        for candidate in candidates:
            record = record_from_candidate(candidate, session_id)
            if isinstance(record, Decision):
                knowledge.decisions.append(record)
            elif isinstance(record, Pattern):
                knowledge.patterns.append(record)
            elif isinstance(record, Task):
                knowledge.tasks.append(record)
            else:
                knowledge.insights.append(record)

        knowledge.summary = generate_summary(transcript)
        knowledge.key_topics = extract_key_topics(transcript.assistant_messages)

        logger.info(
            f"Extracted {len(candidates)} records from session {session_id} "
            f"({'markers' if used_markers else 'heuristics'}): {knowledge.counts()}"
        )
        return knowledge


def generate_summary(transcript: ParsedTranscript) -> str:
    """Summarize a session from its first real request and files touched.

    Returns:
        At most 400 characters; a fixed placeholder when nothing qualifies.
    """
    parts: list[str] = []

    for message in transcript.user_messages:
        if any(p.search(message) for p in _SKIPPED_USER_MESSAGE_RES) or is_system_content(message):
            continue
        cleaned = _TAG_RE.sub("", message)
        cleaned = _FENCED_RE.sub("", cleaned)
        cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
        if len(cleaned) < 15 or any(p.search(cleaned) for p in _SKIPPED_CLEANED_RES):
            continue
        parts.append(cleaned[:SUMMARY_REQUEST_LENGTH])
        break

    actions: list[str] = []
    for call in transcript.tool_calls:
        verb = {"Write": "Created", "Edit": "Modified"}.get(call.name)
        path = call.input.get("file_path")
        if verb is None or not isinstance(path, str) or not path:
            continue
        filename = re.split(r"[/\\]", path)[-1]
        if filename and not filename.startswith("."):
            action = f"{verb} {filename}"
            if action not in actions:
                actions.append(action)

    if actions:
        parts.append(f"Files: {', '.join(actions[:SUMMARY_MAX_FILES])}")

    summary = ". ".join(parts)[:SUMMARY_LENGTH]
    return summary or DEFAULT_SUMMARY


def extract_knowledge(
    transcript: ParsedTranscript,
    session_id: str,
    scorer: QualityScorer | None = None,
) -> ExtractedKnowledge:
    """Convenience wrapper: one KnowledgeExtractor pass."""
    return KnowledgeExtractor(scorer).extract(transcript, session_id)
