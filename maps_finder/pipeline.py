"""Pipeline orchestration."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from . import config
from .errors import ConfigurationError
from .filtering import filter_by_distance
from .http import HttpClient, RequestMetrics
from .location import (
    ConsentGate,
    DevicePositioning,
    GeoResolver,
    IpLocation,
    IpLocationService,
)
from .models import (
    Candidate,
    CategoryQuery,
    Coordinate,
    RankedResult,
    SearchRequest,
    TextQuery,
)
from .places_client import PlacesClient
from .scoring import score_candidates
from .storage import Store, StoreConsent

logger = logging.getLogger(__name__)


class SearchOrchestrator:
    """resolve location -> fetch -> distance filter -> score -> top N.

    Each ``execute`` call owns its candidates end to end. Failures before
    ranking propagate unchanged and nothing is retried.
    """

    def __init__(
        self,
        places: PlacesClient,
        resolver: GeoResolver,
        top_n: Optional[int] = None,
    ) -> None:
        self.places = places
        self.resolver = resolver
        self.top_n = top_n if top_n is not None else config.TOP_RESULTS_TO_SHOW
        if self.top_n < 1:
            raise ValueError("top_n must be >= 1")

    def execute(self, request: SearchRequest) -> RankedResult:
        origin = self.resolver.resolve(request.location_intent)
        center = origin.coordinate
        logger.info(
            "Searching around %.5f,%.5f (%s), radius %.0f m",
            center.latitude,
            center.longitude,
            origin.source,
            request.radius_meters,
        )

        candidates = self._fetch(request, center)
        if not candidates:
            logger.info("Provider returned no places")
            return RankedResult(origin=origin, algorithm=request.algorithm)

        nearby = filter_by_distance(candidates, center, request.radius_meters)
        scored = score_candidates(nearby, request.algorithm, request.scoring)
        top = scored[: self.top_n]
        logger.info(
            "Ranked %s places (%s fetched, %s within radius, %s scored) by %s",
            len(top),
            len(candidates),
            len(nearby),
            len(scored),
            request.algorithm,
        )
        return RankedResult(origin=origin, algorithm=request.algorithm, items=top)

    def _fetch(self, request: SearchRequest, center: Coordinate) -> List[Candidate]:
        query = request.query
        if isinstance(query, CategoryQuery):
            return self.places.search_by_category(query.category, center, request.radius_meters)
        if isinstance(query, TextQuery):
            return self.places.search_by_text(query.text, center, request.radius_meters)
        raise TypeError(f"Unsupported query: {query!r}")


def build_orchestrator(
    api_key: Optional[str],
    store: Store,
    consent_prompt: Callable[[], bool],
    device: Optional[DevicePositioning] = None,
    ip_service: Optional[IpLocation] = None,
    metrics: Optional[RequestMetrics] = None,
    top_n: Optional[int] = None,
) -> SearchOrchestrator:
    if not (api_key or "").strip():
        raise ConfigurationError(f"Missing {config.API_KEY_ENV}")
    http_client = HttpClient(
        api_key,
        timeout=config.HTTP_TIMEOUT_SECONDS,
        retry_max=config.HTTP_RETRY_MAX,
        backoff_base=config.HTTP_BACKOFF_BASE,
        backoff_max=config.HTTP_BACKOFF_MAX,
        metrics=metrics,
    )
    places = PlacesClient(http_client)
    resolver = GeoResolver(
        places,
        device=device,
        ip_service=ip_service if ip_service is not None else IpLocationService(),
        consent_gate=ConsentGate(StoreConsent(store), consent_prompt),
    )
    return SearchOrchestrator(places, resolver, top_n=top_n)
