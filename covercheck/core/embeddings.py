"""
Embedding generation using sentence-transformers.

This module is the embedding provider for local scoring runs. It converts
text into vector embeddings with a local sentence-transformer model; no
external API calls are made.

Model Selection:
The default model (BAAI/bge-base-en-v1.5) gives 768-dimensional,
L2-normalized embeddings with strong semantic-similarity quality.

Batching:
Texts are grouped into batches capped by total character count
(MAX_CHARS_PER_BATCH) so one huge document does not share a batch with
hundreds of chunks. Progress is reported after every batch, which is what
the pipeline's embedding_batch events are built from.
"""

from typing import Callable, Iterator, List, Optional, Protocol, Tuple
import numpy as np
from loguru import logger
from sentence_transformers import SentenceTransformer

from covercheck.core.models import Vector


# Default embedding model - production quality, good accuracy
DEFAULT_MODEL = "BAAI/bge-base-en-v1.5"

# Character budget per embedding batch
MAX_CHARS_PER_BATCH = 150_000

# Module-level model cache to avoid reloading
_model_cache: dict[str, SentenceTransformer] = {}

# (batch_number, total_batches, texts_processed)
ProgressCallback = Callable[[int, int, int], None]


class EmbeddingError(Exception):
    """Raised when embedding generation fails."""
    pass


class Embedder(Protocol):
    """Anything that can turn texts into vectors."""

    model_name: str

    @property
    def dimensions(self) -> int: ...

    def embed(self, texts: List[str]) -> List[Vector]: ...


def _get_model(model_name: str) -> SentenceTransformer:
    """
    Get or load a sentence-transformer model.

    Models are cached at module level to avoid expensive reloading.

    Raises:
        EmbeddingError: If model cannot be loaded
    """
    if model_name not in _model_cache:
        logger.info(f"Loading embedding model '{model_name}'")
        try:
            _model_cache[model_name] = SentenceTransformer(model_name)
        except Exception as e:
            raise EmbeddingError(f"Failed to load model '{model_name}': {e}")
    return _model_cache[model_name]


def clear_model_cache() -> None:
    """Clear the model cache to free memory."""
    _model_cache.clear()


def batch_by_chars(texts: List[str], max_chars: int = MAX_CHARS_PER_BATCH) -> List[List[str]]:
    """
    Group texts into consecutive batches of at most max_chars characters.

    A single text longer than max_chars gets a batch of its own. Order is
    preserved.
    """
    batches: List[List[str]] = []
    current: List[str] = []
    current_chars = 0
    for text in texts:
        if current and current_chars + len(text) > max_chars:
            batches.append(current)
            current = []
            current_chars = 0
        current.append(text)
        current_chars += len(text)
    if current:
        batches.append(current)
    return batches


class SentenceTransformerEmbedder:
    """
    Embedder backed by a local sentence-transformer model.

    Embeddings are L2-normalized, so cosine similarity equals dot product.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL, batch_size: int = 32):
        self.model_name = model_name
        self.batch_size = batch_size

    @property
    def dimensions(self) -> int:
        return _get_model(self.model_name).get_sentence_embedding_dimension()

    def embed(self, texts: List[str]) -> List[Vector]:
        """
        Embed texts in one model call.

        Raises:
            EmbeddingError: If any text is empty or encoding fails
        """
        if not texts:
            raise EmbeddingError("Cannot embed empty list of texts")

        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise EmbeddingError(f"Text at index {i} is empty")

        model = _get_model(self.model_name)
        try:
            embeddings = model.encode(
                texts,
                convert_to_numpy=True,
                normalize_embeddings=True,
                batch_size=self.batch_size,
                show_progress_bar=False,
            )
        except Exception as e:
            raise EmbeddingError(f"Failed to generate embeddings: {e}")
        return [np.asarray(emb, dtype=np.float64) for emb in embeddings]


def iter_embedding_batches(
    embedder: Embedder,
    texts: List[str],
    max_chars: int = MAX_CHARS_PER_BATCH,
) -> Iterator[Tuple[int, int, int, List[Vector]]]:
    """
    Embed texts batch by batch, yielding as soon as each batch is done.

    Yields:
        (batch_number, total_batches, texts_processed, batch_vectors)

    Raises:
        EmbeddingError: If the embedder fails or returns the wrong count
    """
    batches = batch_by_chars(texts, max_chars)
    processed = 0
    for number, batch in enumerate(batches, start=1):
        result = embedder.embed(batch)
        if len(result) != len(batch):
            raise EmbeddingError(
                f"Embedder returned {len(result)} vectors for {len(batch)} texts"
            )
        processed += len(batch)
        logger.debug(f"Embedded batch {number}/{len(batches)} ({processed} texts)")
        yield number, len(batches), processed, list(result)


def embed_in_batches(
    embedder: Embedder,
    texts: List[str],
    on_progress: Optional[ProgressCallback] = None,
    max_chars: int = MAX_CHARS_PER_BATCH,
) -> List[Vector]:
    """
    Embed texts batch by batch, reporting progress after each batch.

    Returns:
        One vector per input text, in input order

    Raises:
        EmbeddingError: If the embedder fails or returns the wrong count
    """
    vectors: List[Vector] = []
    for number, total, processed, batch_vectors in iter_embedding_batches(
        embedder, texts, max_chars
    ):
        vectors.extend(batch_vectors)
        if on_progress is not None:
            on_progress(number, total, processed)
    return vectors
