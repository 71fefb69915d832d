"""Project identity resolution for Lore.

Knowledge is stored per project under ~/.lore/projects/<hash>/. The hash
is derived from the project root, which comes from the environment when a
host tool sets it and from the working directory otherwise.
"""

import hashlib
import os
from pathlib import Path

# WHAT: Environment variables that name the project root, checked in order.
PROJECT_ROOT_ENV_VARS = ("LORE_PROJECT_ROOT", "CLAUDE_PROJECT_DIR")


def resolve_project_root(cwd: str | None = None) -> Path:
    """Return the project root directory.

    Args:
        cwd: Explicit directory. When None, the environment and then
            os.getcwd() are consulted.

    Returns:
        Resolved absolute path.
    """
    if cwd:
        return Path(cwd).resolve()
    for name in PROJECT_ROOT_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            return Path(value).resolve()
    return Path(os.getcwd()).resolve()


def get_project_hash(project_path: str | Path) -> str:
    """Generate a deterministic hash for a project directory.

    Uses SHA-256 of the absolute, resolved path, truncated to 16 hex
    characters.

    Args:
        project_path: Path to the project directory.

    Returns:
        16-character hex string identifying this project.
    """
    resolved = str(Path(project_path).resolve())
    return hashlib.sha256(resolved.encode("utf-8")).hexdigest()[:16]


def identify_project(cwd: str | None = None) -> dict:
    """Return {"path", "hash"} for the project containing cwd."""
    root = resolve_project_root(cwd)
    return {"path": str(root), "hash": get_project_hash(root)}
