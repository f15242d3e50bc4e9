"""Distance gate between a claimed output vector and a target vector."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .errors import ShapeMismatch


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two equal-length output vectors.

    Raises:
        ShapeMismatch: if the vectors differ in length. Never truncates or pads.
    """
    if len(a) != len(b):
        raise ShapeMismatch(len(a), len(b))
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.sqrt(np.sum(diff * diff)))


def is_accepted(distance: float, threshold: float) -> bool:
    """Strict acceptance: a distance equal to the threshold is rejected."""
    return distance < threshold


@dataclass(frozen=True)
class MatchResult:
    distance: float
    accepted: bool

    def __bool__(self) -> bool:
        return self.accepted


class DistanceMatcher:
    """Applies a configured acceptance threshold to vector distances."""

    def __init__(self, threshold: float):
        if not threshold > 0:
            raise ValueError(f"threshold must be positive, got {threshold!r}")
        self.threshold = float(threshold)

    def distance(self, a: Sequence[float], b: Sequence[float]) -> float:
        return distance(a, b)

    def is_accepted(self, d: float) -> bool:
        return is_accepted(d, self.threshold)

    def evaluate(self, claimed: Sequence[float], target: Sequence[float]) -> MatchResult:
        d = distance(claimed, target)
        return MatchResult(distance=d, accepted=is_accepted(d, self.threshold))


__all__ = ["DistanceMatcher", "MatchResult", "distance", "is_accepted"]
