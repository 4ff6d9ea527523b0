"""Places API client and response parsing."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from . import config
from .errors import ConfigurationError, GeocodeFailed, ProviderError
from .geo import circle_to_bounds, match_lat_lng
from .http import HttpClient
from .models import Candidate, Coordinate, Suggestion

logger = logging.getLogger(__name__)

# Geocoding statuses that mean "nothing found" rather than "request failed"
_GEOCODE_EMPTY_STATUSES = {"OK", "ZERO_RESULTS"}


class PlacesClient:
    def __init__(
        self,
        http_client: HttpClient,
        field_mask: str = config.PLACES_FIELD_MASK,
        max_results: int = config.MAX_RESULTS_FROM_API,
    ) -> None:
        if not (http_client.api_key or "").strip():
            raise ConfigurationError(f"Missing {config.API_KEY_ENV}")
        self.http = http_client
        self.field_mask = field_mask
        self.max_results = max_results

    def search_by_category(
        self, category: str, center: Coordinate, radius_m: float
    ) -> List[Candidate]:
        body = build_nearby_search_body(category, center, radius_m, self.max_results)
        response = self.http.post_json(config.PLACES_NEARBY_SEARCH_URL, body, self.field_mask)
        places = parse_places_response(response)
        logger.info("Nearby search %r returned %s places", category, len(places))
        return places

    def search_by_text(self, query: str, center: Coordinate, radius_m: float) -> List[Candidate]:
        body = build_text_search_body(query, center, radius_m, self.max_results)
        response = self.http.post_json(config.PLACES_TEXT_SEARCH_URL, body, self.field_mask)
        places = parse_places_response(response)
        logger.info("Text search %r returned %s places", query, len(places))
        return places

    def geocode(self, text: str) -> Coordinate:
        literal = match_lat_lng(text)
        if literal is not None:
            try:
                return Coordinate(latitude=literal[0], longitude=literal[1])
            except ValueError as exc:
                raise GeocodeFailed(str(exc)) from exc

        response = self.http.get_json(
            config.GEOCODING_URL,
            params={"address": text, "key": self.http.api_key},
            kind="geocode",
            with_key_header=False,
        )
        status = response.get("status")
        if status not in _GEOCODE_EMPTY_STATUSES:
            raise ProviderError(response.get("error_message") or status or "provider error")
        coordinate = parse_geocode_response(response)
        if coordinate is None:
            raise GeocodeFailed(f"No geocoding result for {text!r}")
        return coordinate

    def autocomplete(self, partial_text: str) -> List[Suggestion]:
        text = (partial_text or "").strip()
        if len(text) < config.AUTOCOMPLETE_MIN_CHARS:
            return []
        response = self.http.post_json(
            config.PLACES_AUTOCOMPLETE_URL, {"input": text}, kind="autocomplete"
        )
        return parse_autocomplete_response(response)

    def place_location(self, place_id: str) -> Coordinate:
        url = config.PLACES_DETAILS_URL_TEMPLATE.format(place_id=quote(place_id, safe=""))
        response = self.http.get_json(
            url, field_mask=config.PLACES_DETAILS_FIELD_MASK, kind="details"
        )
        coordinate = _parse_location(response.get("location"))
        if coordinate is None:
            raise GeocodeFailed(f"No location data for place {place_id}")
        return coordinate


def build_nearby_search_body(
    category: str, center: Coordinate, radius_m: float, max_results: int
) -> Dict[str, Any]:
    return {
        "includedTypes": [category],
        "maxResultCount": max_results,
        "locationRestriction": {
            "circle": {
                "center": center.to_api(),
                "radius": min(float(radius_m), float(config.MAX_RADIUS_M)),
            }
        },
    }


def build_text_search_body(
    query: str, center: Coordinate, radius_m: float, max_results: int
) -> Dict[str, Any]:
    # Text Search only accepts a rectangle as a location restriction.
    bounds = circle_to_bounds(center, radius_m)
    return {
        "textQuery": query,
        "maxResultCount": max_results,
        "locationRestriction": {
            "rectangle": {
                "low": {"latitude": bounds["south"], "longitude": bounds["west"]},
                "high": {"latitude": bounds["north"], "longitude": bounds["east"]},
            }
        },
    }


# Adapter/mapper for Places response fields


def _parse_location(location: Any) -> Optional[Coordinate]:
    if not isinstance(location, dict):
        return None
    lat = location.get("latitude", location.get("lat"))
    lon = location.get("longitude", location.get("lng"))
    if lat is None or lon is None:
        return None
    try:
        return Coordinate(latitude=float(lat), longitude=float(lon))
    except ValueError:
        logger.warning("Ignoring out-of-range location %s,%s", lat, lon)
        return None


def parse_places_response(response: Dict[str, Any]) -> List[Candidate]:
    places = response.get("places") or []
    parsed: List[Candidate] = []
    for p in places:
        place_id = p.get("id")
        if not place_id:
            continue
        display = p.get("displayName")
        if isinstance(display, dict):
            name = display.get("text")
        else:
            name = display
        rating = p.get("rating")
        user_rating_count = p.get("userRatingCount")
        parsed.append(
            Candidate(
                id=place_id,
                display_name=name,
                rating=float(rating) if rating is not None else None,
                user_rating_count=int(user_rating_count) if user_rating_count is not None else None,
                formatted_address=p.get("formattedAddress"),
                short_formatted_address=p.get("shortFormattedAddress"),
                location=_parse_location(p.get("location")),
            )
        )
    return parsed


def parse_geocode_response(response: Dict[str, Any]) -> Optional[Coordinate]:
    results = response.get("results") or []
    if response.get("status") != "OK" or not results:
        return None
    location = (results[0].get("geometry") or {}).get("location")
    return _parse_location(location)


def parse_autocomplete_response(response: Dict[str, Any]) -> List[Suggestion]:
    suggestions: List[Suggestion] = []
    for s in response.get("suggestions") or []:
        prediction = s.get("placePrediction")
        if not prediction:
            continue
        full_text = (prediction.get("text") or {}).get("text") or ""
        structured = prediction.get("structuredFormat") or {}
        main_text = (structured.get("mainText") or {}).get("text") or full_text.split(",")[0]
        secondary_text = (structured.get("secondaryText") or {}).get("text") or ""
        suggestions.append(
            Suggestion(
                place_id=prediction.get("placeId") or "",
                main_text=main_text,
                secondary_text=secondary_text,
                full_text=full_text,
            )
        )
        if len(suggestions) >= config.AUTOCOMPLETE_MAX_SUGGESTIONS:
            break
    return suggestions
