"""Sentence embeddings for promotion records.

The model is loaded once on a background thread. ``embed`` waits for the load
up to a timeout and otherwise uses a deterministic character-bucket vector, so
callers always receive a vector of the expected size.
"""

from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import numpy as np

from ..domain.errors import EmbeddingFailure
from ..logging import get_logger

LOG = get_logger("embedding")

DEFAULT_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
DEFAULT_FALLBACK_DIM = 256


def hash_embedding(text: str, dimension: int = DEFAULT_FALLBACK_DIM) -> List[float]:
    """Bucket each character by code point modulo ``dimension`` and L2-normalize."""
    if dimension <= 0:
        raise ValueError("dimension must be positive")
    vec = np.zeros(dimension, dtype=np.float64)
    for ch in text or "":
        vec[ord(ch) % dimension] += 1.0
    norm = float(np.linalg.norm(vec))
    if norm > 0:
        vec /= norm
    return vec.tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of equal-length vectors; 0.0 when either has zero magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} != {vb.shape[0]}")
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


class TextEmbedder:
    def __init__(
        self,
        model_name: Optional[str] = DEFAULT_MODEL,
        *,
        fallback_dim: int = DEFAULT_FALLBACK_DIM,
        load_timeout: float = 60.0,
        cache_folder: Optional[str] = None,
    ) -> None:
        self.model_name = model_name
        self.fallback_dim = int(fallback_dim)
        self.load_timeout = load_timeout
        self.cache_folder = cache_folder
        self._model = None
        self._model_dim: Optional[int] = None
        self._loaded = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        if not model_name:
            LOG.info("Embedding model disabled; using character-bucket vectors")
            self._loaded.set()

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------
    def _load_model(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer

            LOG.info(f"Loading embedding model {self.model_name}...")
            model = SentenceTransformer(self.model_name, cache_folder=self.cache_folder, device="cpu")
            self._model_dim = int(model.get_sentence_embedding_dimension())
            self._model = model
            LOG.info(f"Embedding model ready (dimension={self._model_dim})")
        except Exception as exc:
            LOG.error(f"Failed to load embedding model {self.model_name}: {exc}")
            LOG.warning("Falling back to character-bucket vectors")
            self._model = None
        finally:
            self._loaded.set()

    def start(self) -> "TextEmbedder":
        """Begin loading the model in the background (idempotent)."""
        with self._lock:
            if self._thread is None and not self._loaded.is_set():
                self._thread = threading.Thread(target=self._load_model, name="embedding-loader", daemon=True)
                self._thread.start()
        return self

    def wait_until_loaded(self, timeout: Optional[float] = None) -> bool:
        if not self._loaded.is_set():
            self.start()
        return self._loaded.wait(self.load_timeout if timeout is None else timeout)

    @property
    def model_available(self) -> bool:
        return self._loaded.is_set() and self._model is not None

    @property
    def dimension(self) -> int:
        """Expected vector size: the model's when loaded, otherwise the fallback size."""
        if self.model_available and self._model_dim:
            return self._model_dim
        return self.fallback_dim

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------
    def _encode(self, text: str) -> List[float]:
        if not self.wait_until_loaded():
            raise EmbeddingFailure(f"model not loaded within {self.load_timeout}s")
        if self._model is None:
            raise EmbeddingFailure("model unavailable")
        try:
            out = self._model.encode(text, convert_to_numpy=True, normalize_embeddings=True, show_progress_bar=False)
        except Exception as exc:
            raise EmbeddingFailure(f"encode failed: {exc}") from exc
        return [float(x) for x in np.asarray(out).ravel()]

    def embed(self, text: str, dimension: Optional[int] = None) -> List[float]:
        """Return an embedding of ``dimension`` floats (default: ``self.dimension``)."""
        if self.model_name:
            try:
                vec = self._encode(text)
                if dimension is None or len(vec) == dimension:
                    return vec
                raise EmbeddingFailure(f"model produced {len(vec)} values, index expects {dimension}")
            except EmbeddingFailure as exc:
                LOG.warning(f"Embedding fallback in use: {exc}")
        return hash_embedding(text, dimension or self.dimension)
