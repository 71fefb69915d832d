"""Deduplication and session merge rules.

Two reconciliation policies exist and each is used in exactly one place:

- Overwrite-by-key (session re-capture): the prior session's records seed
  a map keyed by topic / name / title / normalized content, the new pass
  is applied over it, and the merged set replaces the session's records.
  No two records with the same merge key survive for one session.
- Append-only dedup (manual conversation saves): only records whose
  normalized content is not already in the index are added.
"""

from lore.models import FileChange, KnowledgeRecord, KnowledgeSet, KnowledgeType, kind_of, merge_key, normalize_text


def merge_session(existing: KnowledgeSet, incoming: KnowledgeSet) -> KnowledgeSet:
    """Merge a re-capture pass over a session's prior records.

    Keys keep the position where they were first seen; the value is the
    last record written for that key.

    Args:
        existing: Records previously persisted for the session.
        incoming: Records from the new extraction pass.

    Returns:
        The merged set. Records from `incoming` win on key collisions.
    """
    merged = KnowledgeSet()
    for kind in KnowledgeType:
        by_key: dict[str, KnowledgeRecord] = {}
        for record in [*existing.by_kind(kind), *incoming.by_kind(kind)]:
            by_key[merge_key(record)] = record
        merged.by_kind(kind).extend(by_key.values())
    return merged


def merge_file_changes(existing: list[FileChange], incoming: list[FileChange]) -> list[FileChange]:
    """Merge file changes by path, keeping the latest action per path."""
    by_path: dict[str, FileChange] = {}
    for change in [*existing, *incoming]:
        by_path[change.path] = change
    return list(by_path.values())


def merge_topics(existing: list[str], incoming: list[str]) -> list[str]:
    """Union two topic lists, preserving first-seen order."""
    return list(dict.fromkeys([*existing, *incoming]))


def content_key(record: KnowledgeRecord) -> str:
    """Return the normalized-content key used by append-only dedup."""
    kind = kind_of(record)
    if kind is KnowledgeType.DECISION:
        return normalize_text(f"{record.topic}:{record.decision}")
    if kind is KnowledgeType.PATTERN:
        return normalize_text(f"{record.name}:{record.description}")
    if kind is KnowledgeType.TASK:
        return normalize_text(record.title)
    return normalize_text(record.content)


def novel_records(existing: KnowledgeSet, incoming: KnowledgeSet) -> KnowledgeSet:
    """Return the records of `incoming` whose content is not in `existing`.

    Duplicates inside `incoming` are collapsed to their first occurrence.
    """
    novel = KnowledgeSet()
    for kind in KnowledgeType:
        seen = {content_key(record) for record in existing.by_kind(kind)}
        for record in incoming.by_kind(kind):
            key = content_key(record)
            if key in seen:
                continue
            seen.add(key)
            novel.by_kind(kind).append(record)
    return novel
