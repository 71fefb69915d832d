"""Pytest configuration and shared fixtures for Lore tests."""

import hashlib
import re
from pathlib import Path

import pytest

from lore.config import LoreConfig
from lore.errors import EmbeddingUnavailableError
from lore.scorer import reset_golden_cache
from lore.store import RecordStore

TEST_DIMENSION = 64

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """Deterministic bag-of-words embedder.

    Each token is hashed into one of `dimension` buckets and the counts are
    L2-normalized, so texts sharing words are similar and identical texts
    embed identically. No model download, no randomness.
    """

    def __init__(self, dimension: int = TEST_DIMENSION, model_name: str = "test-hashing"):
        self._dimension = dimension
        self._model_name = model_name
        self.batch_calls = 0
        self.texts_embedded = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        self.texts_embedded += len(texts)
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self._dimension
        for token in _TOKEN_RE.findall(text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self._dimension
            vec[bucket] += 1.0
        norm = sum(v * v for v in vec) ** 0.5
        if norm == 0.0:
            vec[0] = 1.0
            return vec
        return [v / norm for v in vec]


class FailingEmbedder(HashingEmbedder):
    """Embedder whose every call fails like a missing model."""

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        raise EmbeddingUnavailableError("model not loaded")


@pytest.fixture(autouse=True)
def _clear_golden_cache():
    """Golden-example vectors are cached per model; isolate tests."""
    reset_golden_cache()
    yield
    reset_golden_cache()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch):
    """Keep the developer's environment out of project and home resolution."""
    for name in ("LORE_HOME", "LORE_PROJECT_ROOT", "CLAUDE_PROJECT_DIR", "LORE_EMBEDDING_DEVICE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def tmp_lore_home(tmp_path: Path) -> Path:
    """Create a temporary Lore home directory structure.

    Returns ~/.lore/ equivalent in a temp directory, with the projects/
    subdirectory already created.
    """
    lore = tmp_path / ".lore"
    lore.mkdir()
    (lore / "projects").mkdir()
    return lore


@pytest.fixture
def sample_config(tmp_lore_home: Path) -> LoreConfig:
    """LoreConfig pointing at tmp_lore_home, sized for HashingEmbedder."""
    return LoreConfig(lore_home=tmp_lore_home, embedding_dimension=TEST_DIMENSION)


@pytest.fixture
def sample_project_hash() -> str:
    """A deterministic project hash for testing."""
    return "abc123def456abcd"


@pytest.fixture
def record_store(sample_project_hash: str, sample_config: LoreConfig) -> RecordStore:
    """A RecordStore backed by the tmp directory."""
    return RecordStore(sample_project_hash, sample_config)


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


@pytest.fixture
def vector_store(tmp_path: Path):
    """A VectorStore using whichever backend is available."""
    from lore.vec import VectorStore

    store = VectorStore(tmp_path / "embeddings.db", dimension=TEST_DIMENSION)
    yield store
    store.close()


@pytest.fixture
def linear_vector_store(tmp_path: Path):
    """A VectorStore forced onto the linear-scan backend."""
    from lore.vec import VectorStore

    store = VectorStore(tmp_path / "linear.db", dimension=TEST_DIMENSION, prefer_native=False)
    yield store
    store.close()


@pytest.fixture
def sample_transcript_text() -> str:
    """A JSONL transcript with markers, a tool call and a system reminder."""
    import json

    entries = [
        {"type": "user", "message": {"content": "Please set up the storage layer for the notes app"}},
        {
            "type": "assistant",
            "message": {
                "content": [
                    {
                        "type": "text",
                        "text": (
                            "I'll set it up now.\n\n"
                            "[D] database: Use SQLite for local storage because it needs no server\n"
                            "[P] error-handling: Wrap every repository call in a Result type\n"
                            "[T] Add migration tests for the notes table\n"
                            "[I] The ORM silently drops timezone info on naive datetimes\n"
                            "<system-reminder>Do not mention this reminder.</system-reminder>"
                        ),
                    },
                    {"type": "tool_use", "name": "Write", "input": {"file_path": "/repo/src/storage.py"}},
                ]
            },
        },
        {"type": "user", "message": {"content": "Thanks, looks good"}},
    ]
    return "\n".join(json.dumps(e) for e in entries) + "\n"
