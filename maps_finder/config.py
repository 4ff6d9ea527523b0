"""Project configuration.

Loads user-defined search parameters from search_config.json when available,
falling back to sensible defaults. Keep API request shapes centralized here.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

_REPO_ROOT = Path(__file__).resolve().parent.parent

API_KEY_ENV = "GOOGLE_MAPS_API_KEY"

# --- API endpoints ---

PLACES_API_BASE = "https://places.googleapis.com/v1"
PLACES_NEARBY_SEARCH_URL = f"{PLACES_API_BASE}/places:searchNearby"
PLACES_TEXT_SEARCH_URL = f"{PLACES_API_BASE}/places:searchText"
PLACES_AUTOCOMPLETE_URL = f"{PLACES_API_BASE}/places:autocomplete"
PLACES_DETAILS_URL_TEMPLATE = f"{PLACES_API_BASE}/places/{{place_id}}"
GEOCODING_URL = "https://maps.googleapis.com/maps/api/geocode/json"

# --- Field masks ---

PLACES_FIELD_MASK = (
    "places.id,places.displayName,places.rating,places.userRatingCount,"
    "places.formattedAddress,places.shortFormattedAddress,places.location"
)
PLACES_DETAILS_FIELD_MASK = "location"

# --- Search defaults ---

DEFAULT_RADIUS_KM = 5.0
MAX_RADIUS_KM = 50.0
MAX_RADIUS_M = 50000
MAX_RESULTS_FROM_API = 20
TOP_RESULTS_TO_SHOW = 3
EARTH_RADIUS_M = 6371000.0

ALGORITHM_BAYESIAN = "bayesian"
ALGORITHM_POPULARITY = "popularity"
ALGORITHMS: Tuple[str, ...] = (ALGORITHM_BAYESIAN, ALGORITHM_POPULARITY)
DEFAULT_ALGORITHM = ALGORITHM_BAYESIAN

# Google place types offered for category search
PLACE_CATEGORIES: List[str] = [
    "restaurant",
    "cafe",
    "bar",
    "bakery",
    "meal_takeaway",
    "barber_shop",
    "beauty_salon",
    "hair_care",
    "gym",
    "dentist",
    "doctor",
    "pharmacy",
    "veterinary_care",
    "car_repair",
    "car_wash",
    "gas_station",
    "supermarket",
    "book_store",
    "clothing_store",
    "pet_store",
    "lodging",
    "park",
    "museum",
    "movie_theater",
]

# --- Scoring ---

BAYES_CONFIDENCE_THRESHOLD = 20
BAYES_DEFAULT_PRIOR_MEAN = 3.7
MIN_REVIEWS = 1
POPULARITY_WEIGHT = 0.3

# --- Location ---

DEVICE_TIMEOUT_MS = 5000
DEVICE_HIGH_ACCURACY = True
IP_LOCATION_SERVICES: List[str] = [
    "https://ipapi.co/json/",
    "https://ip-api.com/json/",
]
IP_LOOKUP_TIMEOUT_SECONDS = 10

# --- Autocomplete ---

AUTOCOMPLETE_DEBOUNCE_SECONDS = 0.3
AUTOCOMPLETE_MIN_CHARS = 2
AUTOCOMPLETE_MAX_SUGGESTIONS = 5

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 20
HTTP_RETRY_MAX = 3
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Store ---

STORE_DB_PATH = "maps_finder.db"


def load_search_config(path: Optional[str] = None) -> bool:
    """Load search configuration from a JSON file.

    Updates module-level globals with values from the config file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "search_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    globals_ref = globals()

    radius_km = data.get("default_radius_km")
    if radius_km is not None:
        radius_km = float(radius_km)
        if radius_km <= 0 or radius_km > MAX_RADIUS_KM:
            raise ValueError(f"default_radius_km must be in (0, {MAX_RADIUS_KM}]")
        globals_ref["DEFAULT_RADIUS_KM"] = radius_km

    top_n = data.get("top_n")
    if top_n is not None:
        if int(top_n) < 1:
            raise ValueError("top_n must be >= 1")
        globals_ref["TOP_RESULTS_TO_SHOW"] = int(top_n)

    algorithm = data.get("algorithm")
    if algorithm is not None:
        if algorithm not in ALGORITHMS:
            raise ValueError(f"algorithm must be one of: {', '.join(ALGORITHMS)}")
        globals_ref["DEFAULT_ALGORITHM"] = algorithm

    scoring = data.get("scoring", {})
    if "confidence_threshold" in scoring:
        globals_ref["BAYES_CONFIDENCE_THRESHOLD"] = float(scoring["confidence_threshold"])
    if "default_prior_mean" in scoring:
        globals_ref["BAYES_DEFAULT_PRIOR_MEAN"] = float(scoring["default_prior_mean"])
    if "min_reviews" in scoring:
        globals_ref["MIN_REVIEWS"] = int(scoring["min_reviews"])
    if "popularity_weight" in scoring:
        globals_ref["POPULARITY_WEIGHT"] = float(scoring["popularity_weight"])

    categories = data.get("categories", [])
    if categories:
        globals_ref["PLACE_CATEGORIES"] = list(categories)

    device_timeout = data.get("device_timeout_ms")
    if device_timeout is not None:
        globals_ref["DEVICE_TIMEOUT_MS"] = int(device_timeout)

    store_path = data.get("store_path")
    if store_path:
        globals_ref["STORE_DB_PATH"] = str(store_path)

    return True
