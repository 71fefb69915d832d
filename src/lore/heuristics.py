"""Heuristic trigger extraction, used when a text carries no markers.

Triggers are a declarative, ordered table of (type, pattern) rules. Every
sentence in prose, bullet and blockquote segments is checked against the
table; the first matching rule decides the sentence's type. The complete
sentence becomes the candidate, and only candidates that pass quality
scoring are kept.
"""

import logging
import re
from dataclasses import dataclass

from lore.markers import Candidate, is_documentation_content
from lore.models import KnowledgeType
from lore.parser import Segment, SegmentType, parse_segments, sentence_spans
from lore.scorer import QualityScorer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerRule:
    """One trigger: text matching `pattern` is a candidate of `type`."""

    type: KnowledgeType
    pattern: re.Pattern
    name: str


def _rules(kind: KnowledgeType, entries: list[tuple[str, str]], flags: int = re.IGNORECASE) -> list[TriggerRule]:
    return [TriggerRule(kind, re.compile(pattern, flags), name) for name, pattern in entries]


# WHAT: Trigger tables per type. Order matters: within the combined table
# the first matching rule claims the sentence.
DECISION_RULES = _rules(
    KnowledgeType.DECISION,
    [
        ("decided", r"\b(?:we(?:'ve| have)?\s+)?decided\s+(?:to|on|that)\b"),
        ("chose", r"\b(?:chose|chosen|choosing)\b"),
        ("going-with", r"\bgoing\s+with\b"),
        ("opted", r"\bopted\s+(?:for|to)\b"),
        ("settled-on", r"\bsettled\s+on\b"),
        ("will-use", r"\bwe(?:'ll|\s+will)\s+use\b"),
        ("switched", r"\b(?:switched|migrated|moved)\s+(?:from\s+\w+\s+)?to\b"),
        ("instead-of", r"\b(?:use|using|prefer)\s+\w+(?:\s+\w+)?\s+instead\s+of\b"),
        ("selected", r"\bselected\b"),
    ],
)

PATTERN_RULES = _rules(
    KnowledgeType.PATTERN,
    [
        ("pattern-is", r"\bthe\s+pattern\s+(?:is|here\s+is)\b"),
        ("by-convention", r"\bby\s+convention\b"),
        ("convention-is", r"\b(?:the|our)\s+convention\s+(?:is|here)\b"),
        ("always", r"\balways\s+(?:use|prefer|put|keep|name|wrap|return|call)\b"),
        ("never", r"\bnever\s+(?:use|put|call|import|mutate)\b"),
        ("we-follow", r"\bwe\s+follow\b"),
        ("consistently", r"\bconsistently\b"),
        ("follows-pattern", r"\bfollow(?:s|ing)?\s+the\s+[\w-]+\s+pattern\b"),
    ],
)

INSIGHT_RULES = _rules(
    KnowledgeType.INSIGHT,
    [
        ("interestingly", r"\binterestingly\b"),
        ("turns-out", r"\bturn(?:s|ed)\s+out\b"),
        ("discovered", r"\bdiscovered\s+(?:that\b)?"),
        ("learned", r"\blearned\s+(?:that\b)?"),
        ("realized", r"\brealized\s+(?:that\b)?"),
        ("issue-was", r"\bthe\s+(?:issue|problem|bug)\s+was\b"),
        ("root-cause", r"\broot\s+cause\b"),
        ("reason-was", r"\bthe\s+reason\s+(?:is|was)\b"),
        ("found-that", r"\bfound\s+that\b"),
    ],
)

TASK_RULES = _rules(
    KnowledgeType.TASK,
    [("todo", r"\b(?:TODO|FIXME)\b")],
    flags=0,
) + _rules(
    KnowledgeType.TASK,
    [
        ("still-need", r"\bstill\s+(?:have|need)\s+to\b"),
        ("next-step", r"\bnext\s+step\b"),
        ("need-to", r"\bneeds?\s+to\b"),
        ("should", r"\bshould\b"),
        ("must", r"\bmust\b"),
        ("follow-up", r"\bfollow[- ]up\b"),
    ],
)

TRIGGER_RULES: list[TriggerRule] = [*DECISION_RULES, *PATTERN_RULES, *INSIGHT_RULES, *TASK_RULES]

# WHAT: Accepted candidate length (chars) per type.
LENGTH_WINDOWS: dict[KnowledgeType, tuple[int, int]] = {
    KnowledgeType.DECISION: (20, 500),
    KnowledgeType.PATTERN: (25, 500),
    KnowledgeType.TASK: (15, 300),
    KnowledgeType.INSIGHT: (20, 500),
}

# Types whose follow-up sentences may supply a rationale or usage note.
EXPLAINED_TYPES = frozenset({KnowledgeType.DECISION, KnowledgeType.PATTERN})

EXTRACTABLE_SEGMENTS = frozenset({SegmentType.PROSE, SegmentType.BULLET, SegmentType.BLOCKQUOTE})

_CAUSAL_RE = re.compile(
    r"\b(because|since|for\s+(?:this|that|the|a|these|those)\s+(?:\w+\s+)?reasons?|when|in\s+order\s+to|so\s+that|due\s+to)\b",
    re.IGNORECASE,
)
_EMPHASIS_RE = re.compile(r"(\*\*|__|\*|`)")
_LEADING_ENUM_RE = re.compile(r"^(?:\d+[.)]\s+|[-*+]\s+)")
_WHITESPACE_RE = re.compile(r"\s+")

RATIONALE_LOOKAHEAD = 2


def clean_sentence(sentence: str) -> str:
    """Strip markdown emphasis, inline-code ticks and list numbering."""
    text = _EMPHASIS_RE.sub("", sentence)
    text = _LEADING_ENUM_RE.sub("", text.strip())
    return _WHITESPACE_RE.sub(" ", text).strip()


def match_rule(sentence: str, rules: list[TriggerRule] = TRIGGER_RULES) -> tuple[TriggerRule, re.Match] | None:
    """Return the first rule matching sentence, with its match."""
    for rule in rules:
        match = rule.pattern.search(sentence)
        if match:
            return rule, match
    return None


def find_rationale(sentence: str, trigger_end: int, following: list[str]) -> str:
    """Find a causal explanation for a decision or pattern.

    A connective later in the matched sentence yields the clause from the
    connective on. Otherwise the first of the following sentences that
    contains a connective is used whole.
    """
    own = _CAUSAL_RE.search(sentence, trigger_end)
    if own:
        return clean_sentence(sentence[own.start() :]).rstrip(".")
    for candidate in following[:RATIONALE_LOOKAHEAD]:
        if _CAUSAL_RE.search(candidate):
            return clean_sentence(candidate)
    return ""


def _paragraphs(segments: list[Segment]) -> list[tuple[str, int]]:
    """Group extractable segments into (text, offset) units.

    Consecutive prose lines form one paragraph so sentences can span a
    line wrap; bullets and blockquote lines stand alone.
    """
    units: list[tuple[str, int]] = []
    current: list[str] = []
    current_offset = 0
    last_line = -2

    for segment in segments:
        if segment.type is SegmentType.PROSE and current and segment.line == last_line + 1:
            current.append(segment.content)
            last_line = segment.line
            continue
        if current:
            units.append((" ".join(current), current_offset))
            current = []
        if segment.type is SegmentType.PROSE:
            current = [segment.content]
            current_offset = segment.offset
            last_line = segment.line
        elif segment.type in EXTRACTABLE_SEGMENTS:
            units.append((segment.content, segment.offset))

    if current:
        units.append((" ".join(current), current_offset))
    return units


class HeuristicExtractor:
    """Trigger-phrase extractor with quality scoring.

    Like MarkerExtractor, an instance is one extraction pass and
    deduplicates by normalized text across everything fed to it.
    """

    def __init__(
        self,
        scorer: QualityScorer,
        rules: list[TriggerRule] | None = None,
        windows: dict[KnowledgeType, tuple[int, int]] | None = None,
    ):
        self._scorer = scorer
        self._rules = rules if rules is not None else TRIGGER_RULES
        self._windows = windows if windows is not None else LENGTH_WINDOWS
        self._seen: dict[KnowledgeType, set[str]] = {kind: set() for kind in KnowledgeType}
        self.candidates: list[Candidate] = []

    def find_candidates(self, text: str, base_offset: int = 0) -> list[Candidate]:
        """Return unscored trigger candidates from text (no dedup)."""
        found: list[Candidate] = []
        for unit, unit_offset in _paragraphs(parse_segments(text)):
            spans = sentence_spans(unit)
            for index, (start, end) in enumerate(spans):
                sentence = unit[start:end]
                hit = match_rule(sentence, self._rules)
                if hit is None:
                    continue
                rule, match = hit

                cleaned = clean_sentence(sentence)
                low, high = self._windows[rule.type]
                if not (low <= len(cleaned) <= high) or is_documentation_content(cleaned):
                    continue

                rationale = ""
                if rule.type in EXPLAINED_TYPES:
                    following = [unit[s:e] for s, e in spans[index + 1 : index + 1 + RATIONALE_LOOKAHEAD]]
                    rationale = find_rationale(sentence, match.end(), following)

                found.append(
                    Candidate(
                        type=rule.type,
                        raw_text=cleaned,
                        source_offset=base_offset + unit_offset + start,
                        label=None,
                        origin="heuristic",
                        rationale=rationale,
                    )
                )
        return found

    def feed(self, text: str, base_offset: int = 0) -> list[Candidate]:
        """Extract, dedup and score candidates from one text.

        Returns:
            Candidates that passed quality scoring, in document order.
        """
        fresh: list[Candidate] = []
        for candidate in self.find_candidates(text, base_offset):
            normalized = candidate.normalized
            seen = self._seen[candidate.type]
            if normalized in seen:
                continue
            seen.add(normalized)
            fresh.append(candidate)

        by_kind: dict[KnowledgeType, list[Candidate]] = {}
        for candidate in fresh:
            by_kind.setdefault(candidate.type, []).append(candidate)

        kept: set[int] = set()
        for kind, group in by_kind.items():
            scores = self._scorer.score_many([c.raw_text for c in group], kind)
            for candidate, result in zip(group, scores, strict=True):
                if result.passed:
                    kept.add(id(candidate))
                else:
                    logger.debug(f"Rejected {kind.value} candidate ({'; '.join(result.reasons)}): {candidate.raw_text[:60]}")

        accepted = [c for c in fresh if id(c) in kept]
        self.candidates.extend(accepted)
        return accepted


def extract_heuristic_candidates(text: str, scorer: QualityScorer) -> list[Candidate]:
    """Run a single heuristic pass over text."""
    return HeuristicExtractor(scorer).feed(text)
