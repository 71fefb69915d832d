"""SQLite database management for the Lore vector store.

Provides connection management, schema creation and sqlite-vec loading for
embeddings.db. Uses WAL mode so a search can read while a capture writes.

Two vector representations can live in the same file:
- embedding_vectors: every vector as a little-endian float32 BLOB, always
  written. This is what the linear-scan backend reads.
- vec_embeddings + vec_id_map: a sqlite-vec vec0 index and the mapping
  from its integer rowids to record ids. Created only when sqlite-vec
  loads.

Schema version is tracked for migrations:
- Version 1: embeddings metadata + embedding_vectors
- Version 2: vec_id_map for the sqlite-vec backend
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from lore.config import LoreConfig, get_project_dir

logger = logging.getLogger(__name__)

# WHAT: Current schema version for migration tracking.
SCHEMA_VERSION = 2

# WHAT: Largest k a vec0 KNN query accepts.
VEC_MAX_K = 4096


def get_db_path(project_hash: str, config: LoreConfig | None = None) -> Path:
    """Return path to the project's embeddings database.

    Args:
        project_hash: 16-character hex hash identifying the project.
        config: Optional config override.

    Returns:
        Path to ~/.lore/projects/<hash>/embeddings.db
    """
    return get_project_dir(project_hash, config) / "embeddings.db"


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection to an embeddings database.

    Configures:
    - WAL mode for concurrent reads during writes
    - NORMAL synchronous mode (safe with WAL, faster than FULL)
    - Row factory for dict-like access

    Args:
        db_path: Database file, or ":memory:".

    Returns:
        sqlite3.Connection configured for Lore use.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row

    # WHAT: WAL mode allows concurrent readers during writes.
    # WHY: A file-change tracker or search may run while a capture writes.
    conn.execute("PRAGMA journal_mode=WAL")

    # WHAT: NORMAL synchronous is safe with WAL and faster than FULL.
    conn.execute("PRAGMA synchronous=NORMAL")

    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create the metadata and fallback-vector tables if they don't exist.

    Idempotent. Native (sqlite-vec) tables are created separately by
    initialize_vec_schema, only when the extension is loaded.

    Args:
        conn: SQLite connection to initialize.
    """
    conn.executescript("""
        -- One row per indexed record or session summary
        CREATE TABLE IF NOT EXISTS embeddings (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            text TEXT NOT NULL,
            session_id TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_embeddings_type ON embeddings(type);
        CREATE INDEX IF NOT EXISTS idx_embeddings_session_id ON embeddings(session_id);

        -- Verbatim float32 vectors for the linear-scan backend
        CREATE TABLE IF NOT EXISTS embedding_vectors (
            id TEXT PRIMARY KEY,
            vector BLOB NOT NULL
        );

        -- Schema version tracking
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL,
            description TEXT NOT NULL
        );
    """)

    _record_schema_version(conn, 1, "Embeddings metadata and fallback vectors")
    conn.commit()


def initialize_vec_schema(conn: sqlite3.Connection, dimension: int) -> bool:
    """Create the sqlite-vec index and its rowid mapping table.

    The connection must already have sqlite-vec loaded.

    Args:
        conn: SQLite connection.
        dimension: Vector dimension for the vec0 column.

    Returns:
        True if the native tables exist afterwards, False otherwise.
    """
    try:
        # WHAT: vec0 first, so a connection without the extension creates
        # nothing. vec_id_map uses AUTOINCREMENT so a deleted rowid is never
        # handed out again.
        # WHY: vec0 does not accept text keys; the mapping owns rowids.
        conn.executescript(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS vec_embeddings USING vec0(
                embedding float[{int(dimension)}] distance_metric=cosine
            );

            CREATE TABLE IF NOT EXISTS vec_id_map (
                vec_rowid INTEGER PRIMARY KEY AUTOINCREMENT,
                embedding_id TEXT UNIQUE NOT NULL
            );
        """)
        _record_schema_version(conn, 2, "sqlite-vec index with rowid mapping")
        conn.commit()
        return True
    except sqlite3.OperationalError as e:
        logger.warning(f"Could not create sqlite-vec tables: {e}")
        return False


def _record_schema_version(conn: sqlite3.Connection, version: int, description: str) -> None:
    """Record a schema version if not already present."""
    cursor = conn.execute("SELECT version FROM schema_version WHERE version = ?", (version,))
    if cursor.fetchone() is not None:
        return
    now = datetime.now(timezone.utc).isoformat()
    conn.execute(
        "INSERT INTO schema_version (version, applied_at, description) VALUES (?, ?, ?)",
        (version, now, description),
    )


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return current schema version, or 0 if not initialized."""
    try:
        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row and row[0] is not None else 0
    except sqlite3.OperationalError:
        # Table missing: uninitialized database
        return 0


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE name = ?", (name,))
    return cursor.fetchone() is not None


def check_vec_available() -> bool:
    """Check if the sqlite-vec extension can be loaded in this Python.

    Returns:
        True if sqlite-vec is available, False otherwise.
    """
    conn = None
    try:
        import sqlite_vec

        conn = sqlite3.connect(":memory:")
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        return True
    except (ImportError, sqlite3.OperationalError, AttributeError):
        return False
    finally:
        if conn is not None:
            try:
                conn.enable_load_extension(False)
            except (sqlite3.OperationalError, AttributeError):
                pass
            conn.close()


def load_vec_extension(conn: sqlite3.Connection) -> bool:
    """Load sqlite-vec extension into a connection.

    Args:
        conn: SQLite connection.

    Returns:
        True if loaded successfully, False otherwise.
    """
    try:
        import sqlite_vec

        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        return True
    except (ImportError, sqlite3.OperationalError, AttributeError):
        return False
    finally:
        try:
            conn.enable_load_extension(False)
        except (sqlite3.OperationalError, AttributeError):
            pass


def get_database_stats(conn: sqlite3.Connection) -> dict:
    """Return statistics about the embeddings database.

    Args:
        conn: SQLite connection.

    Returns:
        Dict with entry counts, schema version and native index state.
    """
    stats = {}

    cursor = conn.execute("SELECT COUNT(*) FROM embeddings")
    stats["entry_count"] = cursor.fetchone()[0]

    cursor = conn.execute("SELECT COUNT(*) FROM embedding_vectors")
    stats["fallback_vectors"] = cursor.fetchone()[0]

    stats["schema_version"] = get_schema_version(conn)
    stats["native_index"] = table_exists(conn, "vec_id_map")
    if stats["native_index"]:
        cursor = conn.execute("SELECT COUNT(*) FROM vec_id_map")
        stats["native_vectors"] = cursor.fetchone()[0]
    else:
        stats["native_vectors"] = 0

    return stats
