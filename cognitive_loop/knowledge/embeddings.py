"""
Deterministic pseudo-embeddings for concept terms.

Not a learned model: the vector is a pure function of the term, so the same
term always yields a bit-identical vector.
"""

import hashlib

import numpy as np


def embed_term(term: str, dimensions: int = 384) -> np.ndarray:
    """
    SHA-256 the term, map each byte to [-1, 1] (reusing bytes cyclically
    to fill `dimensions`), then L2-normalize.
    """
    digest = np.frombuffer(hashlib.sha256(term.encode("utf-8")).digest(), dtype=np.uint8)
    raw = np.resize(digest, dimensions).astype(np.float64) / 127.5 - 1.0
    norm = np.linalg.norm(raw)
    if norm == 0:
        return raw
    return raw / norm


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is zero."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    if np.array_equal(a, b):
        return 1.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))
