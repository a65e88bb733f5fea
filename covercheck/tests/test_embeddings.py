"""
Tests for embedding batching and the sentence-transformer embedder.

The real model is replaced with a small stand-in so no weights are
downloaded.
"""

import numpy as np
import pytest
from covercheck.core import embeddings
from covercheck.core.embeddings import (
    EmbeddingError,
    SentenceTransformerEmbedder,
    batch_by_chars,
    clear_model_cache,
    embed_in_batches,
    iter_embedding_batches,
)


class FakeSentenceTransformer:
    """Minimal SentenceTransformer stand-in."""

    loads = 0

    def __init__(self, model_name):
        if model_name == "missing/model":
            raise OSError("model not found")
        FakeSentenceTransformer.loads += 1
        self.model_name = model_name

    def get_sentence_embedding_dimension(self):
        return 4

    def encode(self, texts, convert_to_numpy=True, normalize_embeddings=True,
               batch_size=32, show_progress_bar=False):
        vectors = np.array([[len(t), 1.0, 0.0, 0.0] for t in texts], dtype=np.float32)
        if normalize_embeddings:
            vectors = vectors / np.linalg.norm(vectors, axis=1, keepdims=True)
        return vectors


@pytest.fixture(autouse=True)
def fake_model(monkeypatch):
    monkeypatch.setattr(embeddings, "SentenceTransformer", FakeSentenceTransformer)
    FakeSentenceTransformer.loads = 0
    clear_model_cache()
    yield
    clear_model_cache()


class TestSentenceTransformerEmbedder:
    """Tests for SentenceTransformerEmbedder."""

    def test_embed_returns_float64_vectors(self):
        """One normalized float64 vector per text."""
        embedder = SentenceTransformerEmbedder("fake/model")
        vectors = embedder.embed(["alpha", "beta gamma"])
        assert len(vectors) == 2
        assert vectors[0].dtype == np.float64
        assert np.linalg.norm(vectors[1]) == pytest.approx(1.0)

    def test_dimensions(self):
        """Dimensions come from the model."""
        assert SentenceTransformerEmbedder("fake/model").dimensions == 4

    def test_model_cached(self):
        """The model is loaded once per name."""
        embedder = SentenceTransformerEmbedder("fake/model")
        embedder.embed(["a"])
        embedder.embed(["b"])
        SentenceTransformerEmbedder("fake/model").embed(["c"])
        assert FakeSentenceTransformer.loads == 1

    def test_empty_inputs_rejected(self):
        """Empty lists and blank texts raise EmbeddingError."""
        embedder = SentenceTransformerEmbedder("fake/model")
        with pytest.raises(EmbeddingError):
            embedder.embed([])
        with pytest.raises(EmbeddingError, match="index 1"):
            embedder.embed(["ok", "   "])

    def test_load_failure(self):
        """Model load failures are wrapped."""
        with pytest.raises(EmbeddingError, match="missing/model"):
            SentenceTransformerEmbedder("missing/model").embed(["text"])


class TestBatchByChars:
    """Tests for batch_by_chars."""

    def test_single_batch(self):
        """Small inputs fit in one batch."""
        assert batch_by_chars(["a", "bb", "ccc"], max_chars=10) == [["a", "bb", "ccc"]]

    def test_splits_on_budget(self):
        """A batch closes before exceeding the budget."""
        assert batch_by_chars(["aaaa", "bbbb", "cc"], max_chars=8) == [["aaaa", "bbbb"], ["cc"]]

    def test_oversized_text_alone(self):
        """A text longer than the budget gets its own batch."""
        batches = batch_by_chars(["x" * 20, "y"], max_chars=5)
        assert batches == [["x" * 20], ["y"]]

    def test_empty(self):
        """No texts, no batches."""
        assert batch_by_chars([]) == []


class TestEmbedInBatches:
    """Tests for embed_in_batches."""

    def test_progress_reported_per_batch(self):
        """Progress fires after every batch with cumulative counts."""
        progress = []
        vectors = embed_in_batches(
            SentenceTransformerEmbedder("fake/model"),
            ["aaaa", "bbbb", "cccc"],
            on_progress=lambda *args: progress.append(args),
            max_chars=8,
        )
        assert len(vectors) == 3
        assert progress == [(1, 2, 2), (2, 2, 3)]

    def test_wrong_count_raises(self):
        """An embedder returning the wrong number of vectors is an error."""
        class Short:
            model_name = "short"
            dimensions = 2

            def embed(self, texts):
                return [np.zeros(2)]

        with pytest.raises(EmbeddingError):
            embed_in_batches(Short(), ["a", "b"])

    def test_iter_is_lazy(self):
        """Each batch is embedded only when the previous one has been consumed."""
        class Counting:
            model_name = "counting"
            dimensions = 1

            def __init__(self):
                self.calls = 0

            def embed(self, texts):
                self.calls += 1
                return [np.ones(1) for _ in texts]

        embedder = Counting()
        batches = iter_embedding_batches(embedder, ["aaaa", "bbbb", "cccc"], max_chars=4)
        assert embedder.calls == 0
        number, total, processed, vectors = next(batches)
        assert (number, total, processed, len(vectors)) == (1, 3, 1, 1)
        assert embedder.calls == 1
