"""Structural text parsing for Lore extraction.

Splits assistant text into typed segments (prose, header, bullet, code,
blockquote) and finds sentence boundaries without tripping over periods
inside abbreviations, version numbers, code references, URLs or inline
code spans.

Ambiguous periods are protected by masking: every protected span is
replaced by a run of placeholder characters of the same length before
boundaries are searched, so offsets in the masked text map one-to-one
onto the original.
"""

import enum
import re
from dataclasses import dataclass, field


class SegmentType(enum.Enum):
    PROSE = "prose"
    HEADER = "header"
    BULLET = "bullet"
    CODE = "code"
    BLOCKQUOTE = "blockquote"


@dataclass
class Segment:
    """A contiguous piece of text with a structural type.

    `offset` is the character offset of the segment's first line in the
    parsed text and `line` its zero-based line number.
    """

    type: SegmentType
    content: str
    level: int | None = None
    line: int = 0
    offset: int = 0


@dataclass
class SentenceMatch:
    """A complete sentence located in a larger text."""

    text: str
    start: int
    end: int
    following: list[str] = field(default_factory=list)


_FENCE_RE = re.compile(r"^(```|~~~)")
_HEADER_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_BULLET_RE = re.compile(r"^(\s*)[-*+]\s+(.+)$")
_BLOCKQUOTE_RE = re.compile(r"^\s*>\s?(.*)$")

_FENCED_BLOCK_RE = re.compile(r"(```|~~~)[\s\S]*?(\1|\Z)")
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")

# WHAT: Spans whose periods are never sentence boundaries, applied in order.
# Abbreviations come before code identifiers so "e.g." is taken whole.
_PROTECTED_PATTERNS: list[re.Pattern] = [
    _INLINE_CODE_RE,
    re.compile(r"\bhttps?://[^\s)>\]]*[^\s)>\].,;:!?]"),
    re.compile(r"\bwww\.[^\s)>\]]*[^\s)>\].,;:!?]"),
    re.compile(
        r"\b(?:e\.g|i\.e|etc|vs|cf|approx|incl|esp|resp|Mr|Mrs|Ms|Dr|Prof|Inc|Ltd|Jr|Sr|Fig|al)\.",
        re.IGNORECASE,
    ),
    re.compile(r"\bv?\d+(?:\.\d+)+\b"),
    re.compile(r"[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)+(?:\(\))?"),
]

_MASK_CHAR = "\x1a"

# WHAT: A boundary is terminal punctuation (plus closing quotes/brackets)
# followed by whitespace and a capitalized start, or by end of text.
# A blank line always ends a sentence.
_BOUNDARY_RE = re.compile(
    r"[.!?]+[\"')\]]*(?=\s+[\"'(\[]?[A-Z" + _MASK_CHAR + r"]|\s*$)|\n[ \t]*\n"
)


def parse_segments(text: str) -> list[Segment]:
    """Split text into typed segments, line by line.

    A line starting with ``` or ~~~ (after trimming) toggles code mode.
    Everything between the fences becomes a single CODE segment. An
    unterminated fence still yields its code segment at end of input.

    Args:
        text: Raw text (typically one assistant message).

    Returns:
        Segments in document order. Blank lines produce no segment.
    """
    segments: list[Segment] = []
    in_code = False
    code_lines: list[str] = []
    code_line = 0
    code_offset = 0
    offset = 0

    for line_no, line in enumerate(text.split("\n")):
        line_offset = offset
        offset += len(line) + 1
        stripped = line.strip()

        if _FENCE_RE.match(stripped):
            if in_code:
                segments.append(Segment(SegmentType.CODE, "\n".join(code_lines), line=code_line, offset=code_offset))
                code_lines = []
                in_code = False
            else:
                in_code = True
                code_line = line_no
                code_offset = line_offset
            continue

        if in_code:
            code_lines.append(line)
            continue

        if not stripped:
            continue

        header = _HEADER_RE.match(stripped)
        if header:
            segments.append(
                Segment(SegmentType.HEADER, header.group(2).strip(), len(header.group(1)), line_no, line_offset)
            )
            continue

        bullet = _BULLET_RE.match(line)
        if bullet:
            indent = len(bullet.group(1).replace("\t", "  "))
            segments.append(
                Segment(SegmentType.BULLET, bullet.group(2).strip(), indent // 2, line_no, line_offset)
            )
            continue

        quote = _BLOCKQUOTE_RE.match(line)
        if quote:
            segments.append(Segment(SegmentType.BLOCKQUOTE, quote.group(1).strip(), line=line_no, offset=line_offset))
            continue

        segments.append(Segment(SegmentType.PROSE, stripped, line=line_no, offset=line_offset))

    if in_code:
        segments.append(Segment(SegmentType.CODE, "\n".join(code_lines), line=code_line, offset=code_offset))

    return segments


def strip_code(text: str) -> str:
    """Remove fenced code blocks and inline code spans from text."""
    text = _FENCED_BLOCK_RE.sub("", text)
    return _INLINE_CODE_RE.sub("", text)


def _mask_protected(text: str) -> str:
    """Replace protected spans with same-length placeholder runs."""
    masked = text
    for pattern in _PROTECTED_PATTERNS:
        masked = pattern.sub(lambda m: _MASK_CHAR * len(m.group(0)), masked)
    return masked


def sentence_spans(text: str) -> list[tuple[int, int]]:
    """Return (start, end) offsets of every sentence in text, trimmed."""
    masked = _mask_protected(text)
    spans: list[tuple[int, int]] = []
    start = 0

    for match in _BOUNDARY_RE.finditer(masked):
        _append_trimmed(text, start, match.end(), spans)
        start = match.end()
    _append_trimmed(text, start, len(text), spans)

    return spans


def _append_trimmed(text: str, start: int, end: int, spans: list[tuple[int, int]]) -> None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if end > start:
        spans.append((start, end))


def split_sentences(text: str) -> list[str]:
    """Split text into complete sentences.

    Example:
        >>> split_sentences("We chose v2.0.1 of the lib, e.g. fs.mkdir() usage, for speed.")
        ['We chose v2.0.1 of the lib, e.g. fs.mkdir() usage, for speed.']
    """
    return [text[start:end] for start, end in sentence_spans(text)]


def containing_sentence(text: str, offset: int, following: int = 2) -> SentenceMatch | None:
    """Return the sentence containing a character offset.

    Args:
        text: Text the offset refers to.
        offset: Character offset (e.g. a regex match start).
        following: How many subsequent sentences to attach.

    Returns:
        SentenceMatch, or None if the offset falls outside every sentence.
    """
    spans = sentence_spans(text)
    for i, (start, end) in enumerate(spans):
        if start <= offset < end:
            after = [text[s:e] for s, e in spans[i + 1 : i + 1 + following]]
            return SentenceMatch(text[start:end], start, end, after)
    return None
