from typing import Iterable

from sequenceTracker import SequenceTracker


def compute_gaps(store: SequenceTracker) -> set[int]:
    """
    Returns every sequence inside the observed [min, max] range that the
    store does not hold. An empty store has no range and therefore no gaps.
    """
    if store.is_empty():
        return set()

    low, high = store.range()
    return {seq for seq in range(low, high + 1) if not store.contains(seq)}


def missing_from_total(store: SequenceTracker, known_total: int) -> set[int]:
    """Sequences of [1, known_total] still absent from the store."""
    return {seq for seq in range(1, known_total + 1) if not store.contains(seq)}


def format_ranges(sequences: Iterable[int]) -> str:
    """Renders sequences compactly for logs, e.g. {2, 3, 4, 7} -> '2-4, 7'."""
    ordered = sorted(sequences)
    if not ordered:
        return "none"

    parts = []
    start = prev = ordered[0]
    for seq in ordered[1:]:
        if seq == prev + 1:
            prev = seq
            continue
        parts.append(str(start) if start == prev else f"{start}-{prev}")
        start = prev = seq
    parts.append(str(start) if start == prev else f"{start}-{prev}")
    return ", ".join(parts)
