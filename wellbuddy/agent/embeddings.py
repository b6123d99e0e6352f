import math
from typing import Iterable, List, Protocol, Sequence


class Embedder(Protocol):
    dimensions: int

    async def embed(self, text: str) -> List[float]:
        ...


def l2_normalize(vector: Iterable[float]) -> List[float]:
    values = [float(v) for v in vector]
    norm = math.sqrt(sum(v * v for v in values))
    if not math.isfinite(norm) or norm <= 0:
        return [0.0 for _ in values]
    return [v / norm for v in values]


def zero_vector(dimensions: int) -> List[float]:
    return [0.0] * dimensions


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity, defined as 0 for empty, zero-length or mismatched vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class HashingEmbedder:
    """Deterministic offline embedder: hashed byte features, L2-normalised.

    Good enough for local runs and tests; similar strings share buckets.
    """

    def __init__(self, dimensions: int = 768) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        output = zero_vector(self.dimensions)
        if not text:
            return output
        prime = 16777619
        hash_value = 2166136261
        for index, byte in enumerate(text.lower().encode("utf-8", errors="ignore")):
            hash_value = ((hash_value ^ byte) * prime) & 0xFFFFFFFF
            output[(hash_value + index * 31) % self.dimensions] += (byte / 255.0) * 2 - 1
        return l2_normalize(output)
