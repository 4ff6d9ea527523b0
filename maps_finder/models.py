"""Data model shared by the pipeline stages."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from . import config

SOURCE_PRECISE = "precise"
SOURCE_APPROXIMATE = "approximate"
SOURCE_MANUAL = "manual"
SOURCE_EXPLICIT = "explicit"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    def to_api(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class ResolvedLocation:
    coordinate: Coordinate
    source: str
    label: Optional[str] = None


# --- Location intents ---


@dataclass(frozen=True)
class CurrentDevice:
    pass


@dataclass(frozen=True)
class FreeTextQuery:
    text: str
    # Set when the text came from a chosen autocomplete suggestion.
    place_id: Optional[str] = None


@dataclass(frozen=True)
class ExplicitCoordinate:
    coordinate: Coordinate


LocationIntent = Union[CurrentDevice, FreeTextQuery, ExplicitCoordinate]


# --- Provider results ---


@dataclass(frozen=True)
class Candidate:
    id: str
    display_name: Optional[str] = None
    rating: Optional[float] = None
    user_rating_count: Optional[int] = None
    formatted_address: Optional[str] = None
    short_formatted_address: Optional[str] = None
    location: Optional[Coordinate] = None
    distance_meters: Optional[float] = None

    @property
    def address(self) -> str:
        return self.formatted_address or self.short_formatted_address or ""


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    score: float

    @property
    def distance_meters(self) -> Optional[float]:
        return self.candidate.distance_meters

    @property
    def distance_km(self) -> Optional[float]:
        if self.candidate.distance_meters is None:
            return None
        return round(self.candidate.distance_meters / 1000.0, 1)


@dataclass(frozen=True)
class Suggestion:
    place_id: str
    main_text: str
    secondary_text: str = ""
    full_text: str = ""


# --- Requests ---


@dataclass(frozen=True)
class CategoryQuery:
    category: str

    def __post_init__(self) -> None:
        if self.category not in config.PLACE_CATEGORIES:
            raise ValueError(f"Unknown place category: {self.category}")


@dataclass(frozen=True)
class TextQuery:
    text: str

    def __post_init__(self) -> None:
        if not self.text or not self.text.strip():
            raise ValueError("Text query must not be empty")


Query = Union[CategoryQuery, TextQuery]


@dataclass(frozen=True)
class ScoringParams:
    confidence_threshold: float = config.BAYES_CONFIDENCE_THRESHOLD
    default_prior_mean: float = config.BAYES_DEFAULT_PRIOR_MEAN
    min_reviews: int = config.MIN_REVIEWS
    popularity_weight: float = config.POPULARITY_WEIGHT

    @classmethod
    def from_config(cls) -> "ScoringParams":
        return cls(
            confidence_threshold=config.BAYES_CONFIDENCE_THRESHOLD,
            default_prior_mean=config.BAYES_DEFAULT_PRIOR_MEAN,
            min_reviews=config.MIN_REVIEWS,
            popularity_weight=config.POPULARITY_WEIGHT,
        )


@dataclass(frozen=True)
class SearchRequest:
    query: Query
    location_intent: LocationIntent
    radius_meters: float = config.DEFAULT_RADIUS_KM * 1000
    algorithm: str = config.DEFAULT_ALGORITHM
    scoring: Optional[ScoringParams] = None

    def __post_init__(self) -> None:
        if not 0 < self.radius_meters <= config.MAX_RADIUS_M:
            raise ValueError(f"radius_meters must be in (0, {config.MAX_RADIUS_M}]")
        if self.algorithm not in config.ALGORITHMS:
            raise ValueError(f"algorithm must be one of: {', '.join(config.ALGORITHMS)}")


@dataclass
class RankedResult:
    origin: ResolvedLocation
    algorithm: str
    items: List[ScoredCandidate] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_rows(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for item in self.items:
            place = item.candidate
            rows.append(
                {
                    "placeId": place.id,
                    "name": place.display_name or "Unknown",
                    "rating": place.rating or 0,
                    "reviewCount": place.user_rating_count or 0,
                    "score": item.score,
                    "address": place.address,
                    "distanceKm": item.distance_km,
                }
            )
        return rows
