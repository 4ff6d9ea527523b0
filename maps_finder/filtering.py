"""Re-check provider results against the true search circle."""
from __future__ import annotations

import dataclasses
import logging
from typing import Iterable, List

from .geo import distance_m
from .models import Candidate, Coordinate

logger = logging.getLogger(__name__)


def filter_by_distance(
    candidates: Iterable[Candidate], center: Coordinate, radius_m: float
) -> List[Candidate]:
    """Keep candidates within ``radius_m`` of ``center``, in input order.

    Provider-side circles and rectangles only bound the requested area, so
    every search result passes through here. Kept candidates carry their
    great-circle distance; candidates without a location are kept as-is.
    """
    kept: List[Candidate] = []
    dropped = 0
    for candidate in candidates:
        if candidate.location is None:
            kept.append(candidate)
            continue
        distance = distance_m(center, candidate.location)
        if distance <= radius_m:
            kept.append(dataclasses.replace(candidate, distance_meters=distance))
        else:
            dropped += 1
    if dropped:
        logger.debug("Dropped %s candidates outside %.0f m", dropped, radius_m)
    return kept
