"""Distinct second offsets within a span."""

from __future__ import annotations

from numpy.random import Generator


def sample_unique_seconds(count: int, span_seconds: int, rng: Generator) -> list[int]:
    """
    Return `count` distinct offsets in [0, span_seconds), ascending.

    Sampling is uniform without replacement. When `count` covers the whole
    span, every offset is returned. `span_seconds` is floored at 1.
    """
    if count < 0:
        raise ValueError(f"count must be >= 0; got {count}")
    span = max(1, int(span_seconds))
    if count >= span:
        return list(range(span))
    if count == 0:
        return []
    picked = rng.choice(span, size=count, replace=False)
    return sorted(int(s) for s in picked)
