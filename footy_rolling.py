"""
Footy Algo — Rolling Goal Statistics
Bounded per-team goal windows and their bucket-weighted averages.

Windows hold (goals_for, goals_against) pairs, most recent first. A weighted
average splits the window into consecutive buckets of bucket_size entries
(the last bucket may be shorter), averages each bucket, then combines the
bucket means with recency-first weights:

    avg = Σ w_i · mean_i / Σ w_i      (only non-empty buckets)

Weights shorter than the bucket count are padded with the last weight
(1.0 when empty); extra weights are ignored.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)

Entry = Tuple[int, int]     # (goals_for, goals_against)


class RollingWindow:
    """Fixed-capacity window; appending past capacity drops the oldest entry."""

    __slots__ = ("_entries",)

    def __init__(self, capacity: int, entries: Optional[Iterable[Entry]] = None):
        self._entries: deque = deque(maxlen=max(1, int(capacity)))
        for entry in reversed(list(entries or [])):
            self._entries.appendleft(entry)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def add(self, goals_for: int, goals_against: int) -> None:
        self._entries.appendleft((goals_for, goals_against))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"RollingWindow(capacity={self.capacity}, entries={list(self._entries)})"


def add_entry(window: RollingWindow, goals_for: int, goals_against: int,
              capacity: Optional[int] = None) -> RollingWindow:
    """
    Prepend one entry. A capacity different from the window's own returns a
    resized window (oldest entries beyond the new capacity are dropped).
    """
    if capacity is not None and capacity != window.capacity:
        window = RollingWindow(capacity, window)
    window.add(goals_for, goals_against)
    return window


@dataclass(frozen=True)
class WindowAverage:
    gf: float
    ga: float
    n:  int


@dataclass(frozen=True)
class OutcomeRates:
    """Weighted win / draw / loss frequencies from one side's window."""
    win:  float
    draw: float
    loss: float
    n:    int


def _weight_for(weights: Sequence[float], idx: int) -> float:
    if not weights:
        return 1.0
    return weights[idx] if idx < len(weights) else weights[-1]


def _bucket_combine(entries: List[Entry], bucket_size: int, weights: Sequence[float],
                    project: Callable[[Entry], Sequence[float]], width: int
                    ) -> Tuple[List[float], int]:
    size = max(1, int(bucket_size))
    totals = [0.0] * width
    weight_sum = 0.0
    used = 0
    for bucket_idx, start in enumerate(range(0, len(entries), size)):
        bucket = entries[start:start + size]
        w = _weight_for(weights, bucket_idx)
        sums = [0.0] * width
        for entry in bucket:
            for k, value in enumerate(project(entry)):
                sums[k] += value
        for k in range(width):
            totals[k] += w * sums[k] / len(bucket)
        weight_sum += w
        used += len(bucket)
    if weight_sum <= 0:
        return [0.0] * width, used
    return [t / weight_sum for t in totals], used


def weighted_average(window: Iterable[Entry], bucket_size: int,
                     weights: Sequence[float]) -> WindowAverage:
    entries = list(window)
    if not entries:
        return WindowAverage(0.0, 0.0, 0)
    (gf, ga), n = _bucket_combine(entries, bucket_size, weights,
                                  lambda e: (e[0], e[1]), 2)
    return WindowAverage(gf, ga, n)


def _outcome(entry: Entry) -> Tuple[float, float, float]:
    gf, ga = entry
    return (1.0 if gf > ga else 0.0, 1.0 if gf == ga else 0.0, 1.0 if gf < ga else 0.0)


def weighted_outcome_rates(window: Iterable[Entry], bucket_size: int,
                           weights: Sequence[float]) -> OutcomeRates:
    """Same bucket weighting as weighted_average, applied to result indicators."""
    entries = list(window)
    if not entries:
        return OutcomeRates(0.0, 0.0, 0.0, 0)
    (win, draw, loss), n = _bucket_combine(entries, bucket_size, weights, _outcome, 3)
    return OutcomeRates(win, draw, loss, n)
