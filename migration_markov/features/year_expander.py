"""Training-year expansion for "multiple years" mode.

A sparse selection of training years is widened with each year's
immediate neighbours (when data exists for them), then scanned for
consecutive ``(y, y + 1)`` pairs.  Each pair yields one transition
matrix.  Gaps are skipped, never bridged.
"""

from __future__ import annotations

from typing import Iterable


def expand_years(selected: Iterable[int], available: Iterable[int]) -> list[int]:
    """Add ``y - 1`` and ``y + 1`` for each selected year when available.

    Returns the expanded set sorted ascending.
    """
    selected_set = {int(y) for y in selected}
    available_set = {int(y) for y in available}

    expanded = set(selected_set)
    for y in selected_set:
        if y - 1 in available_set:
            expanded.add(y - 1)
        if y + 1 in available_set:
            expanded.add(y + 1)

    return sorted(expanded)


def consecutive_pairs(expanded: Iterable[int]) -> list[tuple[int, int]]:
    """Emit ``(y, y + 1)`` for every adjacent pair with exactly a one-year gap."""
    years = sorted(expanded)
    return [
        (y1, y2)
        for y1, y2 in zip(years, years[1:])
        if y2 - y1 == 1
    ]
