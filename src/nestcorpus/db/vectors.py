"""Vector serialization (sqlite-vec float32 blobs) and similarity math."""

from __future__ import annotations

import math
import struct

import sqlite_vec


def serialize_vector(vector: list[float]) -> bytes:
    """Pack *vector* into the compact float32 blob format sqlite-vec reads."""
    return sqlite_vec.serialize_float32(vector)


def deserialize_vector(blob: bytes) -> list[float]:
    """Unpack a float32 blob written by serialize_vector()."""
    count = len(blob) // 4
    return list(struct.unpack(f"{count}f", blob))


def norm(vector: list[float]) -> float:
    return math.sqrt(sum(x * x for x in vector))


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Return dot(a, b) / (|a| * |b|), in [-1, 1].

    Zero-norm vectors (and vectors of different dimension) score 0.0
    instead of raising.
    """
    if len(a) != len(b) or not a:
        return 0.0
    norm_a = norm(a)
    norm_b = norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    # Clamp float drift so cosine_similarity(v, v) never exceeds 1.
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))
