"""Explicit marker extraction.

Recognizes knowledge markers written into assistant text:

- Short markers at the start of a line: ``[D] topic: text``,
  ``[P] name: text``, ``[T] text``, ``[I] text``. A ``label: text`` line
  always stands alone. Any other marker line opens a block that takes the
  following non-blank lines until the first blank line or the next marker.
- Legacy bracket markers: ``[DECISION: topic] text``, ``[PATTERN: name]``,
  ``[TASK: high]``, ``[TASK]``, ``[INSIGHT]``. A legacy block may also be
  closed with a ``[/]`` line.

Markers inside fenced or inline code are never recognized, and text that
reads like documentation about the marker syntax itself is rejected.
"""

import re
from dataclasses import dataclass

from lore.models import KnowledgeType, normalize_text
from lore.parser import strip_code

# WHAT: Absolute length windows for marker candidates (chars, after trim).
# WHY: Markers skip quality scoring, so these are the only size guard.
SINGLE_LINE_WINDOW = (10, 500)
MULTI_LINE_WINDOW = (10, 2000)

MARKER_CODES: dict[str, KnowledgeType] = {
    "D": KnowledgeType.DECISION,
    "P": KnowledgeType.PATTERN,
    "T": KnowledgeType.TASK,
    "I": KnowledgeType.INSIGHT,
}

LEGACY_NAMES: dict[str, KnowledgeType] = {
    "DECISION": KnowledgeType.DECISION,
    "PATTERN": KnowledgeType.PATTERN,
    "TASK": KnowledgeType.TASK,
    "INSIGHT": KnowledgeType.INSIGHT,
}

TASK_PRIORITIES = frozenset({"low", "medium", "high", "critical"})

# Types whose single-line form carries a "label:" (topic or name).
LABELLED_TYPES = frozenset({KnowledgeType.DECISION, KnowledgeType.PATTERN})

_MARKER_LINE_RE = re.compile(r"^\[(D|P|T|I)\][ \t]*(.*)$", re.IGNORECASE)
_LEGACY_LINE_RE = re.compile(
    r"^\[(DECISION|PATTERN|TASK|INSIGHT)(?:[ \t]*:[ \t]*([^\]\n]*))?\][ \t]*(.*)$",
    re.IGNORECASE,
)
_BLOCK_CLOSE_RE = re.compile(r"^\[/\]$")
_LABEL_RE = re.compile(r"^([^:\s][^:]*?):\s+(.+)$", re.DOTALL)
_FENCE_RE = re.compile(r"^(```|~~~)")

MAX_LABEL_LENGTH = 50

# ============================================================
# System content filtering
# ============================================================

# WHAT: Text that comes from the harness or tools, never from the assistant.
SYSTEM_BLOCKLIST: list[re.Pattern] = [
    re.compile(r"system-reminder", re.IGNORECASE),
    re.compile(r"CRITICAL:.*READ-ONLY", re.IGNORECASE),
    re.compile(r"malware", re.IGNORECASE),
    re.compile(r"refuse to improve", re.IGNORECASE),
    re.compile(r"must not.*edit", re.IGNORECASE),
    re.compile(r"</?function_results>", re.IGNORECASE),
    re.compile(r"\[Omitted long matching line\]", re.IGNORECASE),
    re.compile(r"you should|you must|you can not|please ensure", re.IGNORECASE),
    re.compile(r"when.*user.*asks", re.IGNORECASE),
    re.compile(r"IMPORTANT:"),
    re.compile(r"^\s*\d+→", re.MULTILINE),
]

_SYSTEM_BLOCK_RE = re.compile(r"<system-reminder>[\s\S]*?</system-reminder>", re.IGNORECASE)
_FUNCTION_RESULTS_RE = re.compile(r"<function_results>[\s\S]*?</function_results>", re.IGNORECASE)

# WHAT: Phrases that mark text as talk *about* markers rather than a marker.
DOCUMENTATION_PATTERNS: list[re.Pattern] = [
    re.compile(r"marker\s+(about|was|for|is|are|isn't|weren't|that)", re.IGNORECASE),
    re.compile(r"the\s+\[?(DECISION|PATTERN|TASK|INSIGHT)\b", re.IGNORECASE),
    re.compile(r"earlier\s+\[?(DECISION|PATTERN|TASK|INSIGHT)\b", re.IGNORECASE),
    re.compile(r"no\s+(new\s+)?\[?(DECISION|PATTERN|TASK|INSIGHT)\b", re.IGNORECASE),
    re.compile(r"^\s*`"),
    re.compile(r"`\s*$"),
    re.compile(r"^\s*\.\.\."),
    re.compile(r"\.\.\.\s*$"),
    re.compile(r"\[/?(DECISION|PATTERN|TASK|INSIGHT)[:\s]*\]", re.IGNORECASE),
    re.compile(r"example:", re.IGNORECASE),
    re.compile(r"template:", re.IGNORECASE),
    re.compile(r"e\.g\.,?\s*\[", re.IGNORECASE),
    re.compile(r"for instance.*\[", re.IGNORECASE),
    re.compile(r"extractor?\s+(captured|grabbed|found|matched|picked)", re.IGNORECASE),
    re.compile(r"extraction\s+(captured|grabbed|found|matched|picked)", re.IGNORECASE),
    re.compile(r"was(n't)?\s+(captured|extracted|marked)", re.IGNORECASE),
]


def is_system_content(text: str) -> bool:
    """Return True if text looks like harness or tool output."""
    return any(pattern.search(text) for pattern in SYSTEM_BLOCKLIST)


def is_documentation_content(text: str) -> bool:
    """Return True if text reads like documentation of the marker syntax."""
    return any(pattern.search(text) for pattern in DOCUMENTATION_PATTERNS)


def clean_messages(messages: list[str]) -> list[str]:
    """Strip system, tool and code content from assistant messages.

    Removes <system-reminder> and <function_results> blocks, fenced code
    and inline code spans, then drops individual lines that still match
    the system blocklist. Messages that end up empty are dropped.
    """
    cleaned: list[str] = []
    for message in messages:
        text = _SYSTEM_BLOCK_RE.sub("", message)
        text = _FUNCTION_RESULTS_RE.sub("", text)
        text = strip_code(text)
        lines = [line for line in text.split("\n") if not is_system_content(line)]
        text = "\n".join(lines).strip()
        if text:
            cleaned.append(text)
    return cleaned


# ============================================================
# Candidates
# ============================================================


@dataclass
class Candidate:
    """A transient extraction candidate, consumed by record building.

    `label` is the topic/name (decisions, patterns) supplied by a marker.
    `source_offset` is the character offset in the scanned text.
    """

    type: KnowledgeType
    raw_text: str
    source_offset: int
    label: str | None = None
    origin: str = "marker"
    multiline: bool = False
    rationale: str = ""
    priority: str | None = None

    @property
    def normalized(self) -> str:
        return normalize_text(self.raw_text)


@dataclass
class _OpenBlock:
    type: KnowledgeType
    offset: int
    first_line: str
    legacy: bool = False
    label: str | None = None
    priority: str | None = None
    single_line: bool = False

    def __post_init__(self):
        self.lines: list[str] = []


def has_markers(text: str) -> bool:
    """Return True if any line outside fenced code starts with a marker."""
    in_code = False
    for line in text.split("\n"):
        stripped = line.strip()
        if _FENCE_RE.match(stripped):
            in_code = not in_code
            continue
        if not in_code and (_MARKER_LINE_RE.match(stripped) or _LEGACY_LINE_RE.match(stripped)):
            return True
    return False


class MarkerExtractor:
    """Line-by-line marker scanner with per-pass dedup.

    One instance is one extraction pass: the "seen" sets live on the
    instance, so feeding several messages through the same extractor
    deduplicates across all of them.
    """

    def __init__(self):
        self._seen: dict[KnowledgeType, set[str]] = {kind: set() for kind in KnowledgeType}
        self.candidates: list[Candidate] = []

    def feed(self, text: str, base_offset: int = 0) -> list[Candidate]:
        """Scan one text and return the candidates it produced.

        Args:
            text: Cleaned assistant text.
            base_offset: Added to every candidate's source_offset.

        Returns:
            Candidates from this text that were not already seen.
        """
        produced: list[Candidate] = []
        block: _OpenBlock | None = None
        in_code = False
        offset = base_offset

        for line in text.split("\n"):
            line_offset = offset
            offset += len(line) + 1
            stripped = line.strip()

            if _FENCE_RE.match(stripped):
                block = self._close(block, produced)
                in_code = not in_code
                continue
            if in_code:
                continue

            opened = self._open(stripped, line_offset)
            if opened is not None:
                self._close(block, produced)
                if opened.single_line:
                    block = self._close(opened, produced)
                else:
                    block = opened
                continue

            if block is None:
                continue
            if not stripped or _BLOCK_CLOSE_RE.match(stripped):
                block = self._close(block, produced)
                continue
            block.lines.append(line.rstrip())

        self._close(block, produced)
        self.candidates.extend(produced)
        return produced

    def _open(self, stripped: str, offset: int) -> _OpenBlock | None:
        match = _MARKER_LINE_RE.match(stripped)
        if match:
            kind = MARKER_CODES[match.group(1).upper()]
            remainder = match.group(2).strip()
            return _OpenBlock(kind, offset, remainder, single_line=bool(_LABEL_RE.match(remainder)))

        legacy = _LEGACY_LINE_RE.match(stripped)
        if legacy:
            kind = LEGACY_NAMES[legacy.group(1).upper()]
            label = (legacy.group(2) or "").strip() or None
            priority = None
            if kind is KnowledgeType.TASK:
                if label and label.lower() in TASK_PRIORITIES:
                    priority = label.lower()
                label = None
            elif kind is KnowledgeType.INSIGHT:
                label = None
            return _OpenBlock(kind, offset, legacy.group(3).strip(), legacy=True, label=label, priority=priority)

        return None

    def _close(self, block: _OpenBlock | None, produced: list[Candidate]) -> None:
        """Turn an open block into a candidate (if it qualifies). Returns None."""
        if block is None:
            return None

        multiline = bool(block.lines)
        label = block.label
        first = block.first_line

        if block.type in LABELLED_TYPES and label is None and first:
            labelled = _LABEL_RE.match(first)
            if labelled and len(labelled.group(1).strip()) <= MAX_LABEL_LENGTH:
                label = labelled.group(1).strip().lower()
                first = labelled.group(2).strip()

        parts = ([first] if first else []) + block.lines
        text = "\n".join(parts).strip()

        low, high = MULTI_LINE_WINDOW if multiline else SINGLE_LINE_WINDOW
        if not (low <= len(text) <= high):
            return None
        if is_documentation_content(text) or (label and is_documentation_content(label)):
            return None

        normalized = normalize_text(text)
        seen = self._seen[block.type]
        if normalized in seen:
            return None
        seen.add(normalized)

        produced.append(
            Candidate(
                type=block.type,
                raw_text=text,
                source_offset=block.offset,
                label=label,
                multiline=multiline,
                priority=block.priority,
            )
        )
        return None


def extract_marker_candidates(text: str) -> list[Candidate]:
    """Extract marker candidates from one text in a single pass.

    Example:
        >>> [c.label for c in extract_marker_candidates("[D] database: Use SQLite")]
        ['database']
    """
    extractor = MarkerExtractor()
    return extractor.feed(text)
