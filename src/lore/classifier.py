"""Deterministic topic and name classification.

Decisions get a topic label from an ordered keyword table (first match
wins). Patterns get a short hyphenated name built from their first
content words.
"""

import re

# WHAT: Ordered (pattern, topic) table for decisions.
# WHY: Order is significant. "Use SQLite for the session store" hits
# state-management before database because "store" comes first here.
DECISION_TOPICS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\b(architecture|structure|organization|layout)\b", re.IGNORECASE), "architecture"),
    (re.compile(r"\b(state\s*management|redux|zustand|context|store)\b", re.IGNORECASE), "state-management"),
    (re.compile(r"\b(database|db|postgres|mysql|mongo|prisma|drizzle|sqlite)\b", re.IGNORECASE), "database"),
    (re.compile(r"\b(api|rest|graphql|endpoint|route)\b", re.IGNORECASE), "api"),
    (re.compile(r"\b(auth|authentication|login|jwt|oauth|session)\b", re.IGNORECASE), "authentication"),
    (re.compile(r"\b(test|testing|jest|vitest|cypress|pytest)\b", re.IGNORECASE), "testing"),
    (re.compile(r"\b(style|css|tailwind|scss|styled)\b", re.IGNORECASE), "styling"),
    (re.compile(r"\b(deploy|hosting|vercel|aws|docker)\b", re.IGNORECASE), "deployment"),
    (re.compile(r"\b(lint|format|eslint|prettier|biome|ruff)\b", re.IGNORECASE), "code-quality"),
    (re.compile(r"\b(type|typescript|interface|schema|zod)\b", re.IGNORECASE), "typing"),
    (re.compile(r"\b(component|react|vue|angular|svelte)\b", re.IGNORECASE), "components"),
    (re.compile(r"\b(package|dependency|library|npm|bun|pip)\b", re.IGNORECASE), "dependencies"),
    (re.compile(r"\b(error|exception|handling|validation)\b", re.IGNORECASE), "error-handling"),
    (re.compile(r"\b(cache|caching|memoization)\b", re.IGNORECASE), "caching"),
    (re.compile(r"\b(file|folder|directory|naming)\b", re.IGNORECASE), "file-organization"),
]

DEFAULT_TOPIC = "general"
DEFAULT_PATTERN_NAME = "pattern"

# WHAT: Words skipped when deriving a pattern name.
PATTERN_NAME_STOPWORDS = frozenset(
    {"the", "a", "an", "to", "for", "with", "use", "we", "i", "will", "should", "always", "and", "of", "in"}
)

MAX_NAME_WORDS = 4
MAX_NAME_LENGTH = 50

_NON_ALPHA_RE = re.compile(r"[^a-z]")
_SLUG_SPACE_RE = re.compile(r"\s+")


def detect_topic(text: str) -> str:
    """Return the first matching topic label for text, or "general"."""
    for pattern, topic in DECISION_TOPICS:
        if pattern.search(text):
            return topic
    return DEFAULT_TOPIC


def generate_pattern_name(text: str) -> str:
    """Derive a short slug name (at most 4 content words) from text.

    Example:
        >>> generate_pattern_name("Always use barrel files for re-exports")
        'barrel-files-reexports'
    """
    words: list[str] = []
    for raw in text.lower().split():
        if raw in PATTERN_NAME_STOPWORDS:
            continue
        word = _NON_ALPHA_RE.sub("", raw)
        if len(word) > 2 and word not in PATTERN_NAME_STOPWORDS:
            words.append(word)
        if len(words) == MAX_NAME_WORDS:
            break
    name = "-".join(words)[:MAX_NAME_LENGTH].rstrip("-")
    return name or DEFAULT_PATTERN_NAME


def slugify_label(label: str) -> str:
    """Normalize a marker-supplied topic or name: lowercase, hyphenated."""
    return _SLUG_SPACE_RE.sub("-", label.strip().lower())


def extract_key_topics(texts: list[str]) -> list[str]:
    """Return every topic label whose pattern occurs in any of texts."""
    combined = "\n".join(texts)
    return [topic for pattern, topic in DECISION_TOPICS if pattern.search(combined)]
