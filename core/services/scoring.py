"""
Scoring primitives for hybrid retrieval.

Pure functions only: no I/O. The composite score of a candidate is

    fulltext_weight * text + semantic_weight * vector + distance_weight * distance

clamped to ``[0, sum of weights]`` and divided by the sum of the weights in
play, so it always lands in ``[0, 1]`` and ``min_score`` compares against a
normalized value. A signal that failed or timed out contributes with weight 0.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional

EARTH_RADIUS_KM = 6371.0
# A zero radius would divide by zero; treat it as "at the point" instead
MIN_RADIUS_KM = 0.001


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def distance_score(distance_km: float, max_distance_km: float) -> float:
    """Inverse-distance score: 1 at the point, 0 at (or beyond) the radius."""
    radius = max(max_distance_km, MIN_RADIUS_KM)
    return clamp(1.0 - min(distance_km / radius, 1.0))


def vector_score(cosine_distance: float) -> float:
    """Map cosine distance (0..2) onto a [0, 1] similarity."""
    return clamp(1.0 - cosine_distance / 2.0)


@dataclass(frozen=True)
class SignalWeights:
    fulltext: float = 0.5
    semantic: float = 0.5
    distance: float = 0.0

    @property
    def total(self) -> float:
        return self.fulltext + self.semantic + self.distance

    def without(self, *signals: str) -> "SignalWeights":
        """Copy with the named signals ("fulltext", "semantic", "distance") zeroed."""
        return replace(self, **{name: 0.0 for name in signals})


@dataclass(frozen=True)
class SignalScores:
    text: float = 0.0
    vector: float = 0.0
    distance: float = 0.0


def composite_score(scores: SignalScores, weights: SignalWeights) -> float:
    """Weighted, clamped and normalized composite in [0, 1]."""
    total = weights.total
    if total <= 0:
        return 0.0
    raw = (
        weights.fulltext * clamp(scores.text)
        + weights.semantic * clamp(scores.vector)
        + weights.distance * clamp(scores.distance)
    )
    return clamp(raw, 0.0, total) / total


def _timestamp(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else 0.0


def rank(candidates: Iterable, min_score: float, top_k: int) -> List:
    """
    Keep candidates scoring at least ``min_score``, best first, at most ``top_k``.

    Candidates need ``score`` and ``context`` (with ``trust_level`` and
    ``updated_at``). Equal scores go to the higher trust level, then to the most
    recently updated context.
    """
    kept = [c for c in candidates if c.score >= min_score]
    kept.sort(
        key=lambda c: (
            -c.score,
            -(c.context.trust_level or 0),
            -_timestamp(c.context.updated_at),
        )
    )
    return kept[:top_k]
