"""Tests for Lore embedding generation."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

np = pytest.importorskip("numpy")

import lore.embeddings
from lore.config import DEFAULT_EMBEDDING_MODEL, LoreConfig
from lore.embeddings import (
    EMBEDDING_DIMENSION,
    EmbeddingEngine,
    check_sentence_transformers_available,
    cosine_similarity,
    engine_from_config,
    get_embedding_engine,
    truncate_for_embedding,
)
from lore.errors import EmbeddingUnavailableError

# --- Fixtures ---


@pytest.fixture
def mock_sentence_transformer():
    """Create a mock SentenceTransformer that returns normalized embeddings."""
    mock_model = MagicMock()

    def encode_side_effect(
        texts,
        convert_to_numpy=True,
        normalize_embeddings=True,
        batch_size=32,
        show_progress_bar=False,
    ):
        vecs = np.random.randn(len(texts), EMBEDDING_DIMENSION).astype(np.float32)
        return vecs / np.linalg.norm(vecs, axis=1, keepdims=True)

    mock_model.encode = MagicMock(side_effect=encode_side_effect)
    mock_model.get_sentence_embedding_dimension.return_value = EMBEDDING_DIMENSION
    return mock_model


@pytest.fixture
def embedding_engine(mock_sentence_transformer):
    """Create an EmbeddingEngine with mocked model."""
    engine = EmbeddingEngine()
    engine._model = mock_sentence_transformer
    engine._load_attempted = True
    return engine


@pytest.fixture
def unavailable_engine():
    """An engine whose model load already failed."""
    engine = EmbeddingEngine()
    engine._load_attempted = True
    engine._model = None
    engine._load_error = "Model not found"
    return engine


@pytest.fixture(autouse=True)
def reset_default_engine():
    lore.embeddings._default_engine = None
    yield
    lore.embeddings._default_engine = None


# --- Test check_sentence_transformers_available ---


class TestCheckSentenceTransformersAvailable:
    """Tests for check_sentence_transformers_available function."""

    def test_returns_bool(self):
        assert isinstance(check_sentence_transformers_available(), bool)


# --- Test EmbeddingEngine initialization ---


class TestEmbeddingEngineInit:
    """Tests for EmbeddingEngine initialization."""

    def test_default_model_name(self):
        assert EmbeddingEngine().model_name == DEFAULT_EMBEDDING_MODEL

    def test_custom_cache_dir(self):
        engine = EmbeddingEngine(cache_dir="/tmp/models")
        assert engine._cache_dir == "/tmp/models"

    def test_default_device_is_cpu(self):
        assert EmbeddingEngine()._device == "cpu"

    def test_device_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LORE_EMBEDDING_DEVICE", "mps")
        assert EmbeddingEngine()._device == "mps"

    def test_dimension_before_load(self):
        assert EmbeddingEngine(dimension=768).dimension == 768

    def test_load_not_attempted_initially(self):
        """Model should not be loaded until first use."""
        engine = EmbeddingEngine()
        assert engine._load_attempted is False
        assert engine._model is None


# --- Test loading ---


class TestModelLoading:
    """Tests for lazy model loading."""

    def test_load_uses_reported_dimension(self, mock_sentence_transformer):
        mock_sentence_transformer.get_sentence_embedding_dimension.return_value = 512
        with patch("lore.embeddings.check_sentence_transformers_available", return_value=True), patch(
            "sentence_transformers.SentenceTransformer", return_value=mock_sentence_transformer
        ):
            engine = EmbeddingEngine(dimension=384)
            assert engine.is_available()
        assert engine.dimension == 512

    def test_load_failure_is_recorded(self):
        with patch("lore.embeddings.check_sentence_transformers_available", return_value=True), patch(
            "sentence_transformers.SentenceTransformer", side_effect=OSError("no network")
        ):
            engine = EmbeddingEngine()
            assert engine.is_available() is False
        assert "no network" in engine.get_load_error()

    def test_missing_package(self):
        with patch("lore.embeddings.check_sentence_transformers_available", return_value=False):
            engine = EmbeddingEngine()
            assert engine.is_available() is False
        assert engine.get_load_error() == "sentence-transformers not installed"

    def test_load_attempted_once(self):
        with patch("lore.embeddings.check_sentence_transformers_available", return_value=False) as check:
            engine = EmbeddingEngine()
            engine.is_available()
            engine.is_available()
        assert check.call_count == 1


# --- Test embed / embed_batch ---


class TestEmbeddingEngineEmbed:
    """Tests for EmbeddingEngine.embed and embed_batch."""

    def test_embed_returns_floats(self, embedding_engine):
        result = embedding_engine.embed("Hello world")
        assert len(result) == EMBEDDING_DIMENSION
        assert all(isinstance(x, float) for x in result)

    def test_embed_batch_preserves_count(self, embedding_engine):
        assert len(embedding_engine.embed_batch(["Hello", "World", "Test"])) == 3

    def test_embed_batch_empty_list(self, embedding_engine):
        assert embedding_engine.embed_batch([]) == []
        embedding_engine._model.encode.assert_not_called()

    def test_inputs_are_truncated(self, mock_sentence_transformer):
        engine = EmbeddingEngine(max_chars=10)
        engine._model = mock_sentence_transformer
        engine._load_attempted = True
        engine.embed("x" * 50)
        sent = mock_sentence_transformer.encode.call_args[0][0]
        assert sent == ["x" * 10]

    def test_normalization_requested(self, embedding_engine):
        embedding_engine.embed_batch(["a", "b"], batch_size=5)
        kwargs = embedding_engine._model.encode.call_args.kwargs
        assert kwargs["normalize_embeddings"] is True
        assert kwargs["batch_size"] == 5

    def test_unavailable_raises(self, unavailable_engine):
        with pytest.raises(EmbeddingUnavailableError, match="Model not found"):
            unavailable_engine.embed("Hello")

    def test_encode_failure_raises(self, embedding_engine):
        embedding_engine._model.encode.side_effect = RuntimeError("CUDA out of memory")
        with pytest.raises(EmbeddingUnavailableError, match="encoding failed"):
            embedding_engine.embed_batch(["Hello"])

    def test_wrong_vector_count_raises(self, embedding_engine):
        embedding_engine._model.encode.side_effect = None
        embedding_engine._model.encode.return_value = np.zeros((1, EMBEDDING_DIMENSION), dtype=np.float32)
        with pytest.raises(EmbeddingUnavailableError):
            embedding_engine.embed_batch(["a", "b"])


# --- Test cosine_similarity ---


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError, match="Dimension mismatch"):
            cosine_similarity([1.0], [1.0, 0.0])


# --- Test module-level functions ---


class TestModuleFunctions:
    """Tests for the shared engine handle."""

    def test_get_embedding_engine_singleton(self):
        assert get_embedding_engine() is get_embedding_engine()

    def test_switching_model_replaces_engine(self):
        first = get_embedding_engine()
        second = get_embedding_engine(model_name="custom/model")
        assert first is not second
        assert second.model_name == "custom/model"

    def test_engine_from_config(self):
        config = LoreConfig(embedding_model="custom/model", embedding_dimension=128, max_embed_chars=100)
        engine = engine_from_config(config)
        assert engine.model_name == "custom/model"
        assert engine.dimension == 128

    def test_truncate_for_embedding(self):
        assert truncate_for_embedding("abcdef", 3) == "abc"
        assert truncate_for_embedding("abc", 3) == "abc"
