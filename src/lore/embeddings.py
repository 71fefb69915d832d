"""Embedding generation for Lore.

Uses SentenceTransformers for local embedding generation. The model is
loaded lazily on first use. Vectors are L2-normalized, so a dot product
is a cosine similarity.

Unlike search-time degradations elsewhere, a missing or failing model is
reported by raising EmbeddingUnavailableError: a record without a vector
cannot be indexed, so callers decide how to degrade (the quality scorer
falls back to heuristics, indexing propagates the failure).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from lore.config import DEFAULT_EMBEDDING_MODEL
from lore.errors import EmbeddingUnavailableError

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSION = 384

# WHAT: Inputs longer than this are truncated before embedding, never rejected.
MAX_EMBED_CHARS = 8000


class EmbeddingProvider(Protocol):
    """What Lore needs from an embedding backend."""

    @property
    def dimension(self) -> int: ...

    @property
    def model_name(self) -> str: ...

    def embed(self, text: str) -> list[float]: ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


def check_sentence_transformers_available() -> bool:
    """Check if sentence-transformers is installed."""
    try:
        import sentence_transformers  # noqa: F401

        return True
    except ImportError:
        return False


def truncate_for_embedding(text: str, max_chars: int = MAX_EMBED_CHARS) -> str:
    """Cut text to max_chars."""
    return text if len(text) <= max_chars else text[:max_chars]


class EmbeddingEngine:
    """Generate embeddings using SentenceTransformers.

    Example:
        engine = EmbeddingEngine()
        if engine.is_available():
            vector = engine.embed("Use SQLite for local storage")
            vectors = engine.embed_batch(["Hello", "World"])
    """

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        cache_dir: str | Path | None = None,
        device: str | None = None,
        dimension: int = EMBEDDING_DIMENSION,
        max_chars: int = MAX_EMBED_CHARS,
    ):
        """Initialize embedding engine.

        Args:
            model_name: HuggingFace model name or local path.
            cache_dir: Directory to cache downloaded models.
            device: Device to use ('cpu', 'cuda', 'mps'). Defaults to
                $LORE_EMBEDDING_DEVICE or 'cpu'.
            dimension: Expected vector dimension, used until the model
                reports its own.
            max_chars: Truncation cap applied to every input.
        """
        self._model_name = model_name
        self._cache_dir = str(cache_dir) if cache_dir else None
        self._device = device or self._detect_device()
        self._dimension = dimension
        self._max_chars = max_chars
        self._model: SentenceTransformer | None = None
        self._load_attempted = False
        self._load_error: str | None = None

    @staticmethod
    def _detect_device() -> str:
        """Return the device from $LORE_EMBEDDING_DEVICE, defaulting to CPU."""
        return os.environ.get("LORE_EMBEDDING_DEVICE") or "cpu"

    def _load_model(self) -> bool:
        """Load the model, returning True on success."""
        if self._load_attempted:
            return self._model is not None

        self._load_attempted = True

        if not check_sentence_transformers_available():
            self._load_error = "sentence-transformers not installed"
            logger.warning("sentence-transformers not installed. Install with: pip install sentence-transformers")
            return False

        try:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {self._model_name}")
            self._model = SentenceTransformer(
                self._model_name,
                cache_folder=self._cache_dir,
                device=self._device,
            )
            reported = self._model.get_sentence_embedding_dimension()
            if reported:
                self._dimension = int(reported)
            logger.info(f"Embedding model loaded on device: {self._device}")
            return True

        except Exception as e:
            self._load_error = str(e)
            logger.error(f"Failed to load embedding model: {e}")
            return False

    @property
    def model(self) -> SentenceTransformer | None:
        """Get the loaded model, loading it if necessary."""
        if not self._load_attempted:
            self._load_model()
        return self._model

    def is_available(self) -> bool:
        """Check if the embedding engine is ready to use."""
        return self.model is not None

    def get_load_error(self) -> str | None:
        """Get the error message if model failed to load."""
        if not self._load_attempted:
            self._load_model()
        return self._load_error

    @property
    def dimension(self) -> int:
        """Return embedding dimension (384 for all-MiniLM-L6-v2)."""
        return self._dimension

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model_name

    def _require_model(self) -> SentenceTransformer:
        model = self.model
        if model is None:
            raise EmbeddingUnavailableError(self._load_error or "model not loaded")
        return model

    def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed. Truncated to max_chars.

        Returns:
            Normalized embedding vector.

        Raises:
            EmbeddingUnavailableError: If the model is missing or encoding fails.
        """
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str], batch_size: int = 32) -> list[list[float]]:
        """Generate embeddings for multiple texts, preserving input order.

        A failure anywhere in the batch fails the whole batch.

        Args:
            texts: Texts to embed. Each is truncated to max_chars.
            batch_size: Number of texts the model encodes at once.

        Returns:
            One vector per input text, in input order.

        Raises:
            EmbeddingUnavailableError: If the model is missing or encoding fails.
        """
        if not texts:
            return []

        model = self._require_model()
        inputs = [truncate_for_embedding(t, self._max_chars) for t in texts]

        try:
            embeddings = model.encode(
                inputs,
                batch_size=batch_size,
                convert_to_numpy=True,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except Exception as e:
            logger.error(f"Batch embedding failed: {e}")
            raise EmbeddingUnavailableError(f"encoding failed: {e}") from e

        if len(embeddings) != len(inputs):
            raise EmbeddingUnavailableError(f"model returned {len(embeddings)} vectors for {len(inputs)} inputs")
        return [emb.tolist() for emb in embeddings]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors, in [-1, 1].

    Raises:
        ValueError: If the vectors differ in length.
    """
    import numpy as np

    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        raise ValueError(f"Dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


# WHAT: The process-wide engine handle, replaced only when a different
# model is requested. Callers receive it by reference.
_default_engine: EmbeddingEngine | None = None


def get_embedding_engine(
    model_name: str = DEFAULT_EMBEDDING_MODEL,
    cache_dir: str | Path | None = None,
    device: str | None = None,
    dimension: int = EMBEDDING_DIMENSION,
    max_chars: int = MAX_EMBED_CHARS,
) -> EmbeddingEngine:
    """Get or create the shared embedding engine for model_name."""
    global _default_engine

    if _default_engine is None or _default_engine.model_name != model_name:
        if _default_engine is not None:
            logger.info(f"Switching embedding model: {_default_engine.model_name} -> {model_name}")
        _default_engine = EmbeddingEngine(
            model_name=model_name,
            cache_dir=cache_dir,
            device=device,
            dimension=dimension,
            max_chars=max_chars,
        )
    return _default_engine


def engine_from_config(config) -> EmbeddingEngine:
    """Return the shared engine configured from a LoreConfig."""
    return get_embedding_engine(
        model_name=config.embedding_model,
        device=config.embedding_device,
        dimension=config.embedding_dimension,
        max_chars=config.max_embed_chars,
    )
