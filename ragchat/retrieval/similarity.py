"""Vector similarity."""

import math
from collections.abc import Sequence

from ragchat.errors import DimensionMismatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Returns 0.0 when either vector has zero magnitude, so a blank
    embedding reads as "no similarity" instead of NaN.

    Raises:
        DimensionMismatch: if the vectors differ in length.
    """
    if len(a) != len(b):
        msg = f"Vectors must have the same dimensions ({len(a)} != {len(b)})"
        raise DimensionMismatch(msg)

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
