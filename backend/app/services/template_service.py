"""
Biometric template generation and comparison

Templates are fixed-length float32 vectors derived from captured images.
The generator sits behind the narrow TemplateGenerator interface
(images -> vector) so a real face model can replace the hash-based
generator without touching the enrollment workflow, the worker or the
identification matcher.

Storage format: little-endian float32 bytes (see encode_template).
"""
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

TEMPLATE_DIM = 128
_STORAGE_DTYPE = np.dtype("<f4")


class TemplateGenerator(ABC):
    """Turns a set of image byte strings into a template vector."""

    version: str = "unknown"

    @abstractmethod
    def generate(self, images: Sequence[bytes]) -> Optional[np.ndarray]:
        """Return a 1-D float32 vector, or None if nothing usable was supplied."""


class HashTemplateGenerator(TemplateGenerator):
    """
    Deterministic placeholder generator.

    SHA-256 of the concatenated image bytes, expanded to TEMPLATE_DIM values
    in [-1, 1]. Identical inputs give identical templates (score 1.0);
    anything else scores close to an arbitrary pair of hashes.
    """

    version = "face-emb-v0-stub"

    def __init__(self, dim: int = TEMPLATE_DIM):
        self.dim = dim

    def generate(self, images: Sequence[bytes]) -> Optional[np.ndarray]:
        payload = b"".join(img for img in images if img)
        if not payload:
            return None
        digest = hashlib.sha256(payload).digest()
        raw = np.frombuffer(digest, dtype=np.uint8).astype(np.float32)
        values = np.resize(raw, self.dim)  # repeats hash[i % 32]
        return (values / 255.0) * 2.0 - 1.0


def encode_template(vector: np.ndarray) -> bytes:
    """Serialize a template for the BiometricEnrollment.template column."""
    return np.asarray(vector, dtype=_STORAGE_DTYPE).tobytes()


def decode_template(data: bytes) -> np.ndarray:
    if not data or len(data) % _STORAGE_DTYPE.itemsize:
        raise ValueError("Template bytes are empty or not float32 aligned")
    return np.frombuffer(data, dtype=_STORAGE_DTYPE).astype(np.float32)


def cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """
    Cosine similarity between two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If vectors have different dimensions
    """
    a = np.asarray(vec1, dtype=np.float32)
    b = np.asarray(vec2, dtype=np.float32)
    if a.shape != b.shape:
        raise ValueError(f"Vector dimension mismatch: {a.shape} vs {b.shape}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def batch_cosine_similarity(query: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    """
    Cosine similarity between a query and each row of a candidate matrix.

    Zero-norm rows score 0.0.
    """
    query_vec = np.asarray(query, dtype=np.float32)
    matrix = np.asarray(candidates, dtype=np.float32)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    if matrix.ndim != 2 or matrix.shape[1] != query_vec.shape[0]:
        raise ValueError(
            f"Dimension mismatch: query={query_vec.shape}, candidates={matrix.shape}"
        )

    query_norm = np.linalg.norm(query_vec)
    if query_norm == 0:
        return np.zeros(matrix.shape[0], dtype=np.float32)

    norms = np.linalg.norm(matrix, axis=1)
    safe_norms = np.where(norms == 0, 1.0, norms)
    scores = (matrix @ query_vec) / (safe_norms * query_norm)
    return np.where(norms == 0, 0.0, scores)


# Global singleton instance
_template_generator: Optional[TemplateGenerator] = None


def get_template_generator() -> TemplateGenerator:
    """
    Get the global TemplateGenerator instance.

    Creates the instance on first call (lazy initialization).
    """
    global _template_generator

    if _template_generator is None:
        _template_generator = HashTemplateGenerator()
        logger.info(
            "Global TemplateGenerator instance created",
            extra={
                "event_type": "template_generator_singleton_created",
                "template_version": _template_generator.version,
            },
        )

    return _template_generator
