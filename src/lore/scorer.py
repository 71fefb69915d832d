"""Quality scoring for extraction candidates.

A candidate is compared by embedding similarity against a small bank of
curated "golden" examples for its knowledge type; the best similarity is
its score. Cheap syntactic rules reject obvious junk before any embedding
call. When the embedding provider is unavailable the scorer falls back to
a point-additive heuristic against the same thresholds, so an extraction
pass never fails because the model is missing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from lore.config import DEFAULT_MIN_LENGTHS, DEFAULT_QUALITY_THRESHOLDS
from lore.embeddings import EmbeddingProvider
from lore.errors import EmbeddingUnavailableError
from lore.models import KnowledgeType

logger = logging.getLogger(__name__)

# ============================================================
# Golden examples
# ============================================================

GOLDEN_DECISIONS = (
    "We decided to use Bun as the runtime because it has native TypeScript support and fast SQLite bindings",
    "Going with React for the frontend due to its component model and large ecosystem",
    "Using SQLite for storage since it's embedded and requires no separate server process",
    "Chose PostgreSQL over MySQL for better JSON support and advanced features",
    "We'll implement authentication using JWT tokens for stateless session management",
    "Selected Tailwind CSS for styling because of utility-first approach and build-time optimization",
    "Decided to use a monorepo structure with Turborepo for better code sharing",
    "Going with REST over GraphQL for simpler implementation and caching",
    "We opted for server-side rendering with Next.js for better SEO and initial load performance",
    "Choosing TypeScript strict mode for better type safety across the codebase",
)

GOLDEN_TASKS = (
    "Add unit tests for the authentication module",
    "Implement error handling for API endpoints",
    "Update documentation with new configuration options",
    "Refactor the database queries to use prepared statements",
    "Set up CI/CD pipeline for automated deployments",
    "Create migration scripts for the new schema",
    "Add input validation for user registration form",
    "Implement rate limiting for public API endpoints",
    "Write integration tests for the payment flow",
    "Fix the memory leak in the WebSocket handler",
)

GOLDEN_PATTERNS = (
    "Use barrel files to re-export from feature directories for cleaner imports",
    "Implement the repository pattern for all database operations to abstract storage",
    "Follow the convention of prefixing private methods with underscore",
    "Structure components with hooks at top, handlers in middle, render at bottom",
    "Use discriminated unions for action types in reducers",
    "Apply the facade pattern for third-party service integrations",
    "Name test files with .test.ts suffix and colocate with source files",
    "Use environment variables for all configuration with sensible defaults",
)

GOLDEN_INSIGHTS = (
    "The performance bottleneck was in the N+1 query pattern we were using for comments",
    "Turns out the library doesn't support tree-shaking so we need to use named imports",
    "The API rate limits are per-user not per-app which changes our caching strategy",
    "Discovered that the timeout was caused by a missing await on the database call",
    "The memory usage spikes were from not properly disposing of event listeners",
    "Found that Safari handles date parsing differently than Chrome",
)

GOLDEN_EXAMPLES: dict[KnowledgeType, tuple[str, ...]] = {
    KnowledgeType.DECISION: GOLDEN_DECISIONS,
    KnowledgeType.TASK: GOLDEN_TASKS,
    KnowledgeType.PATTERN: GOLDEN_PATTERNS,
    KnowledgeType.INSIGHT: GOLDEN_INSIGHTS,
}

# WHAT: Golden-example vectors, keyed by (model name, type).
# Filled on first use and kept for the life of the process.
_golden_cache: dict[tuple[str, KnowledgeType], list[list[float]]] = {}


def reset_golden_cache() -> None:
    """Forget all cached golden-example vectors."""
    _golden_cache.clear()


# ============================================================
# Cheap rejection rules
# ============================================================

# WHAT: (pattern, reason) pairs checked before any embedding call.
REJECTION_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"[,:]\s*$"), "Incomplete (ends with colon/comma)"),
    (re.compile(r"^[\s\W]*$"), "Only punctuation/whitespace"),
    (re.compile(r"^(and|or|but|so|then|also|however)\s", re.IGNORECASE), "Starts with continuation word"),
    (re.compile(r"system-reminder|<function_results>|CRITICAL:.*READ-ONLY|malware", re.IGNORECASE), "System content"),
    (re.compile(r"^(the|a|an|this|that|it|they|we|i)\s*$", re.IGNORECASE), "Only pronoun/article"),
]

_REGEX_LITERAL_RE = re.compile(r"/[^/\s][^/]*/[gimsuvy]*")
MAX_BACKTICKS = 4
SHORT_REGEX_LENGTH = 50

# Heuristic fallback signals
_SUBJECT_RE = re.compile(r"\b(we|i|the team|our)\b", re.IGNORECASE)
_ACTION_RE = re.compile(r"\b(use|implement|add|create|build|configure|chose|decided|selected)\b", re.IGNORECASE)
_RATIONALE_RE = re.compile(r"\b(because|since|due to|for|as)\b", re.IGNORECASE)
_DECISION_WORDS_RE = re.compile(r"\b(decided|chose|selected|opted|going with|will use)\b", re.IGNORECASE)
_TASK_WORDS_RE = re.compile(r"\b(add|implement|fix|update|create|write|test)\b", re.IGNORECASE)

HEURISTIC_BASE = 0.5
HEURISTIC_BONUS = 0.1
HEURISTIC_LONG_TEXT = 50


@dataclass
class QualityScore:
    """Result of scoring one candidate.

    `method` is "rejected", "embedding" or "heuristic".
    """

    score: float
    passed: bool
    reasons: list[str] = field(default_factory=list)
    method: str = "embedding"


def _as_kind(kind: KnowledgeType | str) -> KnowledgeType:
    return kind if isinstance(kind, KnowledgeType) else KnowledgeType(kind)


class QualityScorer:
    """Scores candidates against golden examples.

    Example:
        scorer = QualityScorer(engine, thresholds={"insight": 0.25})
        result = scorer.score("We decided to use SQLite because it is embedded", "decision")
        if result.passed:
            ...
    """

    def __init__(
        self,
        engine: EmbeddingProvider | None,
        thresholds: dict[str, float] | None = None,
        min_lengths: dict[str, int] | None = None,
    ):
        """Initialize the scorer.

        Args:
            engine: Embedding provider, or None to always use heuristics.
            thresholds: Per-type overrides merged over the defaults.
            min_lengths: Per-type overrides merged over the defaults.
        """
        self._engine = engine
        self._thresholds = dict(DEFAULT_QUALITY_THRESHOLDS)
        self._thresholds.update(thresholds or {})
        self._min_lengths = dict(DEFAULT_MIN_LENGTHS)
        self._min_lengths.update(min_lengths or {})

    @classmethod
    def from_config(cls, engine: EmbeddingProvider | None, config) -> QualityScorer:
        return cls(engine, thresholds=config.quality_thresholds, min_lengths=config.min_lengths)

    @property
    def engine(self) -> EmbeddingProvider | None:
        return self._engine

    def threshold(self, kind: KnowledgeType | str) -> float:
        return self._thresholds[_as_kind(kind).value]

    def min_length(self, kind: KnowledgeType | str) -> int:
        return self._min_lengths[_as_kind(kind).value]

    def with_thresholds(self, **overrides: float) -> QualityScorer:
        """Return a scorer sharing this engine with some thresholds replaced."""
        thresholds = dict(self._thresholds)
        thresholds.update(overrides)
        return QualityScorer(self._engine, thresholds, self._min_lengths)

    def quick_reject(self, text: str, kind: KnowledgeType | str) -> str | None:
        """Return a rejection reason, or None if text deserves scoring."""
        kind = _as_kind(kind)
        stripped = text.strip()

        if len(stripped) < self._min_lengths[kind.value]:
            return f"Too short ({len(stripped)} < {self._min_lengths[kind.value]} chars)"
        for pattern, reason in REJECTION_RULES:
            if pattern.search(stripped):
                return reason
        if _REGEX_LITERAL_RE.search(stripped) and len(stripped) < SHORT_REGEX_LENGTH:
            return "Looks like a regex literal"
        if stripped.count("`") > MAX_BACKTICKS:
            return "Contains code (too many backticks)"
        return None

    def score(self, text: str, kind: KnowledgeType | str) -> QualityScore:
        """Score one candidate text.

        Args:
            text: Candidate text.
            kind: Knowledge type the candidate claims to be.

        Returns:
            QualityScore with score in [0, 1].
        """
        return self.score_many([text], kind)[0]

    def score_many(self, texts: list[str], kind: KnowledgeType | str) -> list[QualityScore]:
        """Score several candidates of one type with one batch embedding call."""
        kind = _as_kind(kind)
        results: list[QualityScore | None] = [None] * len(texts)
        pending: list[int] = []

        for i, text in enumerate(texts):
            reason = self.quick_reject(text, kind)
            if reason is not None:
                results[i] = QualityScore(0.0, False, [reason], method="rejected")
            else:
                pending.append(i)

        if pending:
            scored = self._embedding_scores([texts[i].strip() for i in pending], kind)
            if scored is None:
                scored = [self.heuristic_score(texts[i], kind) for i in pending]
            for i, result in zip(pending, scored, strict=True):
                results[i] = result

        return results  # type: ignore[return-value]

    def _embedding_scores(self, texts: list[str], kind: KnowledgeType) -> list[QualityScore] | None:
        """Return embedding-based scores, or None if the provider failed."""
        if self._engine is None:
            return None
        try:
            golden = self._golden_vectors(kind)
            vectors = self._engine.embed_batch(texts)
        except EmbeddingUnavailableError as e:
            logger.info(f"Embedding unavailable, using heuristic scoring: {e.reason}")
            return None

        import numpy as np

        bank = np.asarray(golden, dtype=np.float32)
        bank_norms = np.linalg.norm(bank, axis=1)
        threshold = self._thresholds[kind.value]
        examples = GOLDEN_EXAMPLES[kind]
        results = []

        for vector in vectors:
            query = np.asarray(vector, dtype=np.float32)
            denom = bank_norms * float(np.linalg.norm(query))
            with np.errstate(divide="ignore", invalid="ignore"):
                sims = np.where(denom > 0, bank @ query / denom, 0.0)
            best = int(np.argmax(sims))
            score = float(min(1.0, max(0.0, sims[best])))
            reasons = [
                f"Similarity {score * 100:.1f}% (threshold: {threshold * 100:.0f}%)",
                f"Closest example: {examples[best][:60]}",
            ]
            results.append(QualityScore(score, score >= threshold, reasons, method="embedding"))

        return results

    def _golden_vectors(self, kind: KnowledgeType) -> list[list[float]]:
        key = (self._engine.model_name, kind)
        cached = _golden_cache.get(key)
        if cached is None:
            logger.debug(f"Embedding golden examples for {kind.value} ({self._engine.model_name})")
            cached = self._engine.embed_batch(list(GOLDEN_EXAMPLES[kind]))
            _golden_cache[key] = cached
        return cached

    def heuristic_score(self, text: str, kind: KnowledgeType | str) -> QualityScore:
        """Point-additive fallback score used without an embedding provider."""
        kind = _as_kind(kind)
        score = HEURISTIC_BASE
        reasons = ["Heuristic scoring (embedding unavailable)"]

        bonuses = [
            (len(text.strip()) >= HEURISTIC_LONG_TEXT, "Substantial length"),
            (bool(_SUBJECT_RE.search(text)), "Has subject"),
            (bool(_ACTION_RE.search(text)), "Has action verb"),
            (bool(_RATIONALE_RE.search(text)), "Has rationale"),
            (kind is KnowledgeType.DECISION and bool(_DECISION_WORDS_RE.search(text)), "Decision language"),
            (kind is KnowledgeType.TASK and bool(_TASK_WORDS_RE.search(text)), "Task language"),
        ]
        for applies, reason in bonuses:
            if applies:
                score += HEURISTIC_BONUS
                reasons.append(reason)

        score = round(min(1.0, score), 4)
        return QualityScore(score, score >= self._thresholds[kind.value], reasons, method="heuristic")
