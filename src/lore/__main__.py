"""CLI entry point for Lore.

Usage:
    lore capture <transcript> [--session-id ID]   # capture or re-capture a session
    lore save-conversation <file|->                # extract from free text
    lore search <query> [--type T] [--limit N]     # semantic search
    lore status                                    # counts and vector backend

    lore add-decision <text> [--topic T] [--rationale R] [--supersedes ID] [--session ID]
    lore record-pattern <description> [--name N] [--usage U] [--session ID]
    lore add-task <title> [--description D] [--priority P] [--session ID]
    lore add-insight <content> [--context C] [--session ID]
    lore complete-task <id> [--session ID]         # mark a task completed
    lore forget <id>                               # delete one record
    lore forget --type <decision|pattern|task|insight>
    lore forget --all

    lore list-sessions                             # most recent first
    lore get-session <id>
    lore tag-session <id> <tag>... [--remove]

    lore track-file [payload.json|-]               # PostToolUse hook payload

    python -m lore status      # same
"""

import logging
import os
import sys

from lore.cli import (
    cmd_add_decision,
    cmd_add_insight,
    cmd_add_task,
    cmd_capture,
    cmd_complete_task,
    cmd_forget,
    cmd_get_session,
    cmd_list_sessions,
    cmd_record_pattern,
    cmd_save_conversation,
    cmd_search,
    cmd_status,
    cmd_tag_session,
    cmd_track_file,
)

COMMANDS = (
    "capture",
    "save-conversation",
    "search",
    "status",
    "add-decision",
    "record-pattern",
    "add-task",
    "add-insight",
    "complete-task",
    "forget",
    "list-sessions",
    "get-session",
    "tag-session",
    "track-file",
)
USAGE = f"Usage: lore <{'|'.join(COMMANDS)}> [args]\n"


def _pop_option(args: list[str], *names: str) -> str | None:
    """Remove `--name value` from args and return value (None if absent)."""
    for name in names:
        if name in args:
            i = args.index(name)
            if i + 1 >= len(args):
                raise ValueError(f"{name} needs a value")
            value = args[i + 1]
            del args[i : i + 2]
            return value
    return None


def _require_text(args: list[str], error: str) -> str:
    """Join the remaining positional args, raising ValueError when empty."""
    text = " ".join(args).strip()
    if not text:
        raise ValueError(error)
    return text


def _configure_logging() -> None:
    level = os.environ.get("LORE_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _dispatch(command: str, args: list[str]) -> int | None:
    """Run a command. Returns None for an unknown command."""
    if command == "status":
        return cmd_status()

    if command == "capture":
        session_id = _pop_option(args, "--session-id", "-s") or ""
        if not args:
            raise ValueError("capture needs a transcript path")
        return cmd_capture(args[0], session_id=session_id)

    if command == "save-conversation":
        if not args:
            raise ValueError("save-conversation needs a file (or -)")
        return cmd_save_conversation(args[0])

    if command == "search":
        type_filter = _pop_option(args, "--type", "-t")
        limit = _pop_option(args, "--limit", "-n")
        query = " ".join(args).strip()
        if not query:
            raise ValueError("search needs a query")
        return cmd_search(query, type_filter=type_filter, limit=int(limit) if limit else 10)

    if command == "complete-task":
        session_id = _pop_option(args, "--session", "-s")
        if not args:
            raise ValueError("complete-task needs a task id")
        return cmd_complete_task(args[0], session_id=session_id)

    if command == "forget":
        everything = "--all" in args
        if everything:
            args.remove("--all")
        kind = _pop_option(args, "--type", "-t")
        record_id = args[0] if args else None
        if sum([everything, kind is not None, record_id is not None]) != 1:
            raise ValueError("forget needs exactly one of <id>, --type T or --all")
        return cmd_forget(record_id=record_id, kind=kind, everything=everything)

    if command == "add-decision":
        topic = _pop_option(args, "--topic", "-t")
        rationale = _pop_option(args, "--rationale", "-r") or ""
        supersedes = _pop_option(args, "--supersedes")
        session_id = _pop_option(args, "--session", "-s")
        text = _require_text(args, "add-decision needs the decision text")
        return cmd_add_decision(
            text, topic=topic, rationale=rationale, supersedes=supersedes, session_id=session_id
        )

    if command == "record-pattern":
        name = _pop_option(args, "--name", "-n")
        usage = _pop_option(args, "--usage", "-u") or ""
        session_id = _pop_option(args, "--session", "-s")
        text = _require_text(args, "record-pattern needs a description")
        return cmd_record_pattern(text, name=name, usage=usage, session_id=session_id)

    if command == "add-task":
        description = _pop_option(args, "--description", "-d")
        priority = _pop_option(args, "--priority", "-p")
        session_id = _pop_option(args, "--session", "-s")
        text = _require_text(args, "add-task needs a title")
        return cmd_add_task(text, description=description, priority=priority, session_id=session_id)

    if command == "add-insight":
        context = _pop_option(args, "--context", "-c")
        session_id = _pop_option(args, "--session", "-s")
        text = _require_text(args, "add-insight needs the insight text")
        return cmd_add_insight(text, context=context, session_id=session_id)

    if command == "list-sessions":
        return cmd_list_sessions()

    if command == "get-session":
        if not args:
            raise ValueError("get-session needs a session id")
        return cmd_get_session(args[0])

    if command == "tag-session":
        remove = "--remove" in args or "-r" in args
        args = [a for a in args if a not in ("--remove", "-r")]
        if len(args) < 2:
            raise ValueError("tag-session needs a session id and at least one tag")
        return cmd_tag_session(args[0], args[1:], remove=remove)

    if command == "track-file":
        return cmd_track_file(args[0] if args else "-")

    return None


def main() -> None:
    """Parse command from argv, dispatch to its handler, exit with its code."""
    if len(sys.argv) < 2:
        sys.stderr.write(USAGE)
        sys.exit(1)

    command = sys.argv[1].strip().lower()
    if command in ("-h", "--help"):
        sys.stderr.write(__doc__ or USAGE)
        sys.exit(0)

    _configure_logging()
    try:
        code = _dispatch(command, list(sys.argv[2:]))
    except ValueError as e:
        sys.stderr.write(f"{e}\n{USAGE}")
        sys.exit(1)

    if code is None:
        sys.stderr.write(f"Unknown command: {command}. {USAGE}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
