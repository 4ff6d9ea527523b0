"""CLI entrypoint."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv as _load_dotenv

from maps_finder import config
from maps_finder.errors import SearchError
from maps_finder.http import HttpClient, RequestMetrics
from maps_finder.location import StaticPositioning
from maps_finder.models import (
    CategoryQuery,
    Coordinate,
    CurrentDevice,
    ExplicitCoordinate,
    FreeTextQuery,
    LocationIntent,
    SearchRequest,
    TextQuery,
)
from maps_finder.pipeline import build_orchestrator
from maps_finder.places_client import PlacesClient
from maps_finder.reporting import (
    ensure_dir,
    render_rows,
    search_params,
    write_json_object,
    write_results_json,
)
from maps_finder.storage import Store

logger = logging.getLogger("maps_finder.run")

IP_CONSENT_NOTICE = (
    "Precise location is unavailable. Your IP address can be sent to a third-party "
    "geolocation service (ipapi.co) to determine your approximate location."
)


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find the best-rated places nearby")
    # With no action, the last search mode and query are reused.
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        "--category", type=str, choices=config.PLACE_CATEGORIES, help="Search by place type"
    )
    action.add_argument("--text", type=str, help="Free-text search (e.g. 'vegan pizza')")
    action.add_argument("--autocomplete", type=str, help="Print location suggestions and exit")
    action.add_argument("--last", action="store_true", help="Print the last cached results")
    action.add_argument(
        "--forget", action="store_true", help="Clear stored consent, preferences and results"
    )
    action.add_argument("--preflight", action="store_true", help="Run offline checks only")

    parser.add_argument("--near", type=str, default=None, help="Location text or 'lat,lng'")
    parser.add_argument(
        "--here",
        action="store_true",
        help="Search around the current location even if the last search used another one",
    )
    parser.add_argument(
        "--place-id", type=str, default=None, help="Place id of a chosen suggestion for --near"
    )
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lon", type=float, default=None)
    parser.add_argument(
        "--device-lat", type=float, default=None, help="Device position fix (latitude)"
    )
    parser.add_argument(
        "--device-lon", type=float, default=None, help="Device position fix (longitude)"
    )
    parser.add_argument("--radius-km", type=float, default=None)
    parser.add_argument("--algorithm", choices=config.ALGORITHMS, default=None)
    parser.add_argument("--top", type=int, default=config.TOP_RESULTS_TO_SHOW)
    parser.add_argument(
        "--yes-ip-location",
        action="store_true",
        help="Allow approximate IP-based location without asking",
    )
    parser.add_argument("--store-path", type=str, default=config.STORE_DB_PATH)
    parser.add_argument("--out", type=str, default=None, help="Also write results.json here")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def terminal_consent_prompt(auto_allow: bool = False) -> Callable[[], bool]:
    def prompt() -> bool:
        if auto_allow:
            return True
        if not sys.stdin.isatty():
            return False
        print(IP_CONSENT_NOTICE, file=sys.stderr)
        try:
            answer = input("Use approximate location? [y/N] ")
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)
            return False
        return answer.strip().lower() in ("y", "yes")

    return prompt


def location_intent_from_args(args: argparse.Namespace) -> LocationIntent:
    if args.lat is not None or args.lon is not None:
        if args.lat is None or args.lon is None:
            raise ValueError("--lat and --lon must be given together")
        return ExplicitCoordinate(Coordinate(latitude=args.lat, longitude=args.lon))
    if args.near is not None:
        if not args.near.strip():
            raise ValueError("Please enter a location")
        return FreeTextQuery(args.near.strip(), place_id=args.place_id)
    return CurrentDevice()


def device_from_args(args: argparse.Namespace) -> Optional[StaticPositioning]:
    if args.device_lat is None or args.device_lon is None:
        return None
    return StaticPositioning(Coordinate(latitude=args.device_lat, longitude=args.device_lon))


def build_preferences(args: argparse.Namespace) -> Dict[str, Any]:
    by_category = args.category is not None
    if args.near:
        custom_location = args.near.strip()
    elif args.lat is not None and args.lon is not None:
        custom_location = f"{args.lat},{args.lon}"
    else:
        custom_location = ""
    return {
        "searchByCategory": by_category,
        "lastCategory": args.category if by_category else None,
        "lastBusinessType": args.text if not by_category else None,
        "radiusKm": args.radius_km,
        "useCurrentLocation": not custom_location,
        "lastCustomLocation": custom_location,
        "algorithm": args.algorithm,
    }


def apply_preferences(args: argparse.Namespace, prefs: Optional[Dict[str, Any]]) -> None:
    """Fill options left off the command line from the last search, then config."""
    prefs = prefs or {}

    if args.category is None and args.text is None:
        last_category = prefs.get("lastCategory")
        last_text = (prefs.get("lastBusinessType") or "").strip()
        if prefs.get("searchByCategory") and last_category in config.PLACE_CATEGORIES:
            args.category = last_category
        elif last_text:
            args.text = last_text
        else:
            raise ValueError("Nothing to search for: pass --category or --text")

    if args.radius_km is None:
        radius = prefs.get("radiusKm")
        args.radius_km = float(radius) if radius else config.DEFAULT_RADIUS_KM

    if args.algorithm is None:
        algorithm = prefs.get("algorithm")
        args.algorithm = algorithm if algorithm in config.ALGORITHMS else config.DEFAULT_ALGORITHM

    explicit_location = args.near is not None or args.lat is not None or args.lon is not None
    if not explicit_location and not args.here and prefs.get("useCurrentLocation") is False:
        custom_location = (prefs.get("lastCustomLocation") or "").strip()
        if custom_location:
            args.near = custom_location


def run_search(args: argparse.Namespace, api_key: Optional[str], store: Store) -> int:
    if args.category is not None:
        query = CategoryQuery(args.category)
        query_label = args.category
    else:
        query = TextQuery(args.text)
        query_label = args.text.strip()

    request = SearchRequest(
        query=query,
        location_intent=location_intent_from_args(args),
        radius_meters=args.radius_km * 1000,
        algorithm=args.algorithm,
    )
    metrics = RequestMetrics()
    orchestrator = build_orchestrator(
        api_key,
        store,
        terminal_consent_prompt(args.yes_ip_location),
        device=device_from_args(args),
        metrics=metrics,
        top_n=args.top,
    )
    result = orchestrator.execute(request)
    logger.info(
        "Network requests: %s %s (retries: %s)", metrics.total, metrics.network, metrics.retries
    )

    rows = result.to_rows()
    print(render_rows(rows))

    params = search_params(result, query_label, args.radius_km)
    store.save_last_results(rows, params)
    store.save_preferences(build_preferences(args))
    if args.out:
        ensure_dir(args.out)
        write_results_json(os.path.join(args.out, "results.json"), rows)
        write_json_object(os.path.join(args.out, "search.json"), params)
    return 0


def run_autocomplete(text: str, api_key: Optional[str]) -> int:
    places = PlacesClient(
        HttpClient(
            api_key or "",
            timeout=config.HTTP_TIMEOUT_SECONDS,
            retry_max=config.HTTP_RETRY_MAX,
            backoff_base=config.HTTP_BACKOFF_BASE,
            backoff_max=config.HTTP_BACKOFF_MAX,
        )
    )
    suggestions = places.autocomplete(text)
    if not suggestions:
        print("No suggestions.")
    for s in suggestions:
        secondary = f" ({s.secondary_text})" if s.secondary_text else ""
        print(f"{s.main_text}{secondary}  [place id: {s.place_id}]")
    return 0


def run_last(store: Store) -> int:
    last = store.get_last_results()
    if not last:
        print("No cached results.")
        return 0
    params = last.get("searchParams") or {}
    print(
        "Last search: {query} near {location} ({radius} km, {algorithm})".format(
            query=params.get("searchQuery"),
            location=params.get("location"),
            radius=params.get("radiusKm"),
            algorithm=params.get("algorithm"),
        )
    )
    print(render_rows(last.get("results") or []))
    return 0


def run_preflight(api_key: Optional[str], store_path: str) -> int:
    ok = True

    if api_key:
        print("API key: OK")
    else:
        print("API key: MISSING")
        ok = False

    try:
        store = Store(store_path)
        store.close()
        print(f"Store: OK ({store_path})")
    except Exception as exc:
        print(f"Store: FAIL ({exc})")
        ok = False

    print(f"Categories: {len(config.PLACE_CATEGORIES)}")
    print(f"Defaults: radius={config.DEFAULT_RADIUS_KM} km, top={config.TOP_RESULTS_TO_SHOW}")
    print("Preflight: PASS" if ok else "Preflight: FAIL")
    return 0 if ok else 1


def main(argv: Optional[list] = None) -> int:
    load_env()
    config.load_search_config()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    api_key = (os.environ.get(config.API_KEY_ENV) or "").strip() or None

    if args.preflight:
        return run_preflight(api_key, args.store_path)

    store = Store(args.store_path)
    try:
        if args.forget:
            store.clear_all()
            print("Stored consent, preferences and results cleared.")
            return 0
        if args.last:
            return run_last(store)
        if args.autocomplete is not None:
            return run_autocomplete(args.autocomplete, api_key)
        apply_preferences(args, store.get_preferences())
        return run_search(args, api_key, store)
    except SearchError as exc:
        print(f"Error: {exc.user_message}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
