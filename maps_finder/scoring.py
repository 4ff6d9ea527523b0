"""Ranking scores: Bayesian average and popularity bonus.

Both algorithms write into ``ScoredCandidate.score`` so callers never need
to know which one ran.
"""
from __future__ import annotations

import math
from typing import Iterable, List, Optional

from . import config
from .models import Candidate, ScoredCandidate, ScoringParams


def bayesian_average(rating: float, v: int, m: float, c: float) -> float:
    """(C*m + R*v) / (C + v): regress ``rating`` toward ``m`` by ``c`` reviews."""
    return (c * m + rating * v) / (c + v)


def popularity_score(rating: float, v: int, weight: float) -> float:
    bonus = math.log10(v + 1)
    return rating * (1 + bonus * weight)


def prior_mean(candidates: Iterable[Candidate], default: float) -> float:
    total_weighted = 0.0
    total_weight = 0
    for candidate in candidates:
        weight = max(candidate.user_rating_count or 0, 1)
        total_weighted += (candidate.rating or 0.0) * weight
        total_weight += weight
    if total_weight == 0:
        return default
    return total_weighted / total_weight


def eligible(candidates: Iterable[Candidate], min_reviews: int) -> List[Candidate]:
    return [
        c
        for c in candidates
        if c.rating is not None
        and c.rating > 0
        and (c.user_rating_count or 0) >= min_reviews
    ]


def score_candidates(
    candidates: Iterable[Candidate],
    algorithm: str = config.ALGORITHM_BAYESIAN,
    params: Optional[ScoringParams] = None,
) -> List[ScoredCandidate]:
    if params is None:
        params = ScoringParams.from_config()
    if algorithm not in config.ALGORITHMS:
        raise ValueError(f"Unknown scoring algorithm: {algorithm}")

    valid = eligible(candidates, params.min_reviews)
    if not valid:
        return []

    if algorithm == config.ALGORITHM_POPULARITY:
        scored = [
            ScoredCandidate(
                candidate=c,
                score=popularity_score(c.rating, c.user_rating_count or 0, params.popularity_weight),
            )
            for c in valid
        ]
    else:
        m = prior_mean(valid, params.default_prior_mean)
        scored = [
            ScoredCandidate(
                candidate=c,
                score=bayesian_average(
                    c.rating, c.user_rating_count or 0, m, params.confidence_threshold
                ),
            )
            for c in valid
        ]

    # sorted() is stable, so equal scores keep provider order
    return sorted(scored, key=lambda s: s.score, reverse=True)
