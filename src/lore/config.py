"""Configuration management for Lore.

Handles loading, saving, and resolving paths for the Lore data directory.
Every setting has a default, so Lore works without a config file. User
overrides are stored in ~/.lore/config.json (or $LORE_HOME/config.json).
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

# WHAT: Minimum golden-example similarity for a candidate to pass, per type.
# WHY: Insights and patterns are phrased more loosely than decisions and
# tasks, so they get a lower bar.
DEFAULT_QUALITY_THRESHOLDS: dict[str, float] = {
    "decision": 0.35,
    "task": 0.40,
    "pattern": 0.35,
    "insight": 0.30,
}

# WHAT: Minimum candidate length (chars) before any scoring happens.
DEFAULT_MIN_LENGTHS: dict[str, int] = {
    "decision": 20,
    "task": 15,
    "pattern": 25,
    "insight": 20,
}

MERGE_POLICIES = ("overwrite", "append")


def _default_lore_home() -> Path:
    """Return the default Lore home directory ($LORE_HOME or ~/.lore)."""
    env_home = os.environ.get("LORE_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".lore"


@dataclass
class LoreConfig:
    """Configuration for the Lore knowledge store.

    Thresholds and minimum lengths are tuning knobs, not fixed law; tests
    and callers override them freely.
    """

    # WHAT: Root directory for all Lore data.
    # WHY: One global location with per-project isolation under projects/.
    lore_home: Path = field(default_factory=_default_lore_home)

    # Embedding provider
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimension: int = 384
    embedding_device: str | None = None
    max_embed_chars: int = 8000

    # Session retention
    max_sessions_stored: int = 100
    session_id_padding: int = 3
    merge_policy: str = "overwrite"

    # Quality scoring
    quality_thresholds: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_QUALITY_THRESHOLDS))
    min_lengths: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MIN_LENGTHS))
    heuristics_enabled: bool = True

    # Pending-changes lock
    lock_timeout_seconds: float = 5.0
    lock_stale_seconds: float = 30.0

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        data = asdict(self)
        data["lore_home"] = str(self.lore_home)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LoreConfig":
        """Deserialize from a dictionary, with defaults for missing keys.

        Threshold and min-length maps are merged over the defaults so a
        partial override (e.g. only "insight") keeps the other types.
        """
        defaults = cls()
        thresholds = dict(defaults.quality_thresholds)
        thresholds.update(_numeric_map(data.get("quality_thresholds"), float))
        min_lengths = dict(defaults.min_lengths)
        min_lengths.update(_numeric_map(data.get("min_lengths"), int))

        merge_policy = data.get("merge_policy", defaults.merge_policy)
        if merge_policy not in MERGE_POLICIES:
            merge_policy = defaults.merge_policy

        return cls(
            lore_home=Path(data["lore_home"]).expanduser() if data.get("lore_home") else defaults.lore_home,
            embedding_model=data.get("embedding_model", defaults.embedding_model),
            embedding_dimension=data.get("embedding_dimension", defaults.embedding_dimension),
            embedding_device=data.get("embedding_device", defaults.embedding_device),
            max_embed_chars=data.get("max_embed_chars", defaults.max_embed_chars),
            max_sessions_stored=data.get("max_sessions_stored", defaults.max_sessions_stored),
            session_id_padding=data.get("session_id_padding", defaults.session_id_padding),
            merge_policy=merge_policy,
            quality_thresholds=thresholds,
            min_lengths=min_lengths,
            heuristics_enabled=data.get("heuristics_enabled", defaults.heuristics_enabled),
            lock_timeout_seconds=data.get("lock_timeout_seconds", defaults.lock_timeout_seconds),
            lock_stale_seconds=data.get("lock_stale_seconds", defaults.lock_stale_seconds),
        )


def _numeric_map(value, cast) -> dict:
    """Coerce a {type: number} mapping from JSON, dropping unusable entries."""
    if not isinstance(value, dict):
        return {}
    result = {}
    for key, raw in value.items():
        try:
            result[str(key)] = cast(raw)
        except (TypeError, ValueError):
            continue
    return result


def get_lore_home(config: LoreConfig | None = None) -> Path:
    """Return the Lore home directory, creating it if needed.

    Args:
        config: Optional config override. Uses default if not provided.

    Returns:
        Path to ~/.lore/ (or configured override).
    """
    home = config.lore_home if config else _default_lore_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def get_project_dir(project_hash: str, config: LoreConfig | None = None) -> Path:
    """Return the project-specific data directory, creating it if needed.

    Args:
        project_hash: 16-character hex hash identifying the project.
        config: Optional config override.

    Returns:
        Path to ~/.lore/projects/<hash>/
    """
    home = get_lore_home(config)
    project_dir = home / "projects" / project_hash
    project_dir.mkdir(parents=True, exist_ok=True)
    return project_dir


def get_config_path(config: LoreConfig | None = None) -> Path:
    """Return the path to the global config file."""
    home = config.lore_home if config else _default_lore_home()
    return home / "config.json"


def load_config(lore_home: Path | None = None) -> LoreConfig:
    """Load configuration from ~/.lore/config.json.

    Returns default config if the file doesn't exist or is invalid.

    Args:
        lore_home: Override the Lore home directory.
                   Useful for testing with tmp directories.
    """
    config_path = (lore_home or _default_lore_home()) / "config.json"

    config = LoreConfig()
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                config = LoreConfig.from_dict(data)
        except (json.JSONDecodeError, OSError):
            # WHAT: Return defaults if config is corrupted or unreadable.
            # WHY: A bad config file must never stop a capture or search.
            config = LoreConfig()

    if lore_home is not None:
        config.lore_home = lore_home
    return config


def save_config(config: LoreConfig) -> None:
    """Save configuration to <lore_home>/config.json.

    Creates the directory structure if needed. Uses atomic write
    (temp file + rename) for crash safety.
    """
    config.lore_home.mkdir(parents=True, exist_ok=True)
    config_path = config.lore_home / "config.json"
    tmp_path = config_path.with_suffix(".json.tmp")

    try:
        content = json.dumps(config.to_dict(), indent=2)
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.rename(config_path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
