"""
Break repeated inter-event gaps in a sorted timestamp sequence.

Timestamps are whole epoch seconds. A gap is `max(1, t[i] - t[i-1])`. When a
gap value repeats, the later timestamp is nudged to another free second of its
own UTC hour so the stream never settles into a fixed period. Uniqueness is
best-effort: if no slot exists the duplicate is kept, so count and ordering
are always preserved.
"""

from __future__ import annotations

import logging
from collections import defaultdict

_LOGGER = logging.getLogger(__name__)

HOUR_SECONDS = 3600
SEARCH_RADIUS = 300


def _hour_start(ts: int) -> int:
    return ts - ts % HOUR_SECONDS


def _gap(prev: int, curr: int) -> int:
    return max(1, curr - prev)


def count_duplicate_gaps(times: list[int]) -> int:
    """Number of gaps whose value already appeared earlier in the sequence."""
    seen: set[int] = set()
    duplicates = 0
    for prev, curr in zip(times, times[1:]):
        gap = _gap(prev, curr)
        if gap in seen:
            duplicates += 1
        seen.add(gap)
    return duplicates


def enforce_unique_intervals(times: list[int], radius: int = SEARCH_RADIUS) -> list[int]:
    """
    Return a copy of `times` with repeated gaps relocated where possible.

    Left to right from index 1, a repeated gap triggers a search for a new
    second in the same hour, strictly between the neighbours: outward from the
    current second (+r before -r, r <= radius), then a linear scan of the whole
    permissible range. Occupied seconds and used gaps are skipped.
    """
    if len(times) <= 1:
        return list(times)
    out = list(times)
    used_gaps: set[int] = set()
    occupied: dict[int, set[int]] = defaultdict(set)
    for ts in out:
        occupied[_hour_start(ts)].add(ts % HOUR_SECONDS)

    relocated = 0
    kept = 0
    for i in range(1, len(out)):
        prev = out[i - 1]
        curr = out[i]
        gap = _gap(prev, curr)
        if gap not in used_gaps:
            used_gaps.add(gap)
            continue

        hour_start = _hour_start(curr)
        hour_end = hour_start + HOUR_SECONDS - 1
        lower = max(hour_start, prev + 1)
        upper = min(hour_end, out[i + 1] - 1) if i + 1 < len(out) else hour_end
        if lower > upper:
            used_gaps.add(gap)
            kept += 1
            continue

        taken = occupied[hour_start]
        base_sec = curr - hour_start
        taken.discard(base_sec)
        low_sec = lower - hour_start
        high_sec = upper - hour_start

        found: int | None = None
        for r in range(1, radius + 1):
            for cand_sec in (base_sec + r, base_sec - r):
                if cand_sec < low_sec or cand_sec > high_sec or cand_sec in taken:
                    continue
                if _gap(prev, hour_start + cand_sec) in used_gaps:
                    continue
                found = cand_sec
                break
            if found is not None:
                break

        if found is None:
            for cand_sec in range(low_sec, high_sec + 1):
                if cand_sec in taken:
                    continue
                if _gap(prev, hour_start + cand_sec) in used_gaps:
                    continue
                found = cand_sec
                break

        if found is None:
            kept += 1
        else:
            curr = hour_start + found
            gap = _gap(prev, curr)
            relocated += 1
        out[i] = curr
        used_gaps.add(gap)
        taken.add(curr - hour_start)

    _LOGGER.debug("Interval pass relocated=%d kept_duplicates=%d", relocated, kept)
    return out
