"""Location resolution: device fix, consented IP fallback, or a typed location.

``GeoResolver`` runs the "current location" request as a small state machine:

    TRY_DEVICE --ok--> RESOLVED (precise)
        | unsupported / denied / timeout
        v
    CHECK_CONSENT --granted--> TRY_IP_FALLBACK
        | not granted
        v
    REQUEST_CONSENT --deny--> FAILED (LocationDenied)
        | allow (persisted)
        v
    TRY_IP_FALLBACK --ok--> RESOLVED (approximate)
        | lookup failed
        v
    FAILED (LocationUnavailable)

Free-text locations go through the places gateway, explicit coordinates are
passed through untouched.
"""
from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import requests

from . import config
from .errors import GeocodeFailed, LocationDenied, LocationUnavailable
from .models import (
    SOURCE_APPROXIMATE,
    SOURCE_EXPLICIT,
    SOURCE_MANUAL,
    SOURCE_PRECISE,
    Coordinate,
    CurrentDevice,
    ExplicitCoordinate,
    FreeTextQuery,
    LocationIntent,
    ResolvedLocation,
)

logger = logging.getLogger(__name__)


class PositioningError(RuntimeError):
    """Device positioning is unsupported, denied or failed."""


class IpLookupError(RuntimeError):
    pass


class DevicePositioning(Protocol):
    def get_current_position(self, timeout_ms: int, high_accuracy: bool) -> Coordinate:
        ...


class IpLocation(Protocol):
    def lookup(self) -> Tuple[Coordinate, Optional[str]]:
        ...


class ConsentStore(Protocol):
    def get(self) -> bool:
        ...

    def set(self, value: bool) -> None:
        ...


class Geocoder(Protocol):
    def geocode(self, text: str) -> Coordinate:
        ...

    def place_location(self, place_id: str) -> Coordinate:
        ...


class State(enum.Enum):
    TRY_DEVICE = "try_device"
    CHECK_CONSENT = "check_consent"
    REQUEST_CONSENT = "request_consent"
    TRY_IP_FALLBACK = "try_ip_fallback"
    RESOLVED = "resolved"
    FAILED = "failed"


class StaticPositioning:
    """Device positioning that always reports one fixed coordinate."""

    def __init__(self, coordinate: Coordinate) -> None:
        self.coordinate = coordinate

    def get_current_position(self, timeout_ms: int, high_accuracy: bool) -> Coordinate:
        return self.coordinate


class ConsentGate:
    """One-time consent for IP-based location, shared across searches.

    Check and prompt happen under one lock. A caller that queued behind a
    prompt reuses that prompt's answer instead of asking again. Only an
    allow is persisted.
    """

    def __init__(self, store: ConsentStore, prompt: Callable[[], bool]) -> None:
        self.store = store
        self.prompt = prompt
        self._lock = threading.Lock()
        self._decisions = 0
        self._last_decision = False

    def is_granted(self) -> bool:
        return bool(self.store.get())

    @property
    def decisions(self) -> int:
        return self._decisions

    def request(self, seen: Optional[int] = None) -> bool:
        """Ask once. ``seen`` is the decision count the caller observed before
        checking ``is_granted``; an answer given since then is reused.
        """
        if seen is None:
            seen = self._decisions
        with self._lock:
            if self.store.get():
                return True
            if self._decisions != seen:
                return self._last_decision
            decision = bool(self.prompt())
            if decision:
                self.store.set(True)
            self._last_decision = decision
            self._decisions += 1
            return decision


def parse_ip_location(data: Dict[str, Any]) -> Optional[Coordinate]:
    lat = data.get("latitude", data.get("lat"))
    lon = data.get("longitude", data.get("lon"))
    if lat is None or lon is None:
        return None
    try:
        return Coordinate(latitude=float(lat), longitude=float(lon))
    except (TypeError, ValueError):
        return None


class IpLocationService:
    """Approximate location from the caller's public IP, first service that answers wins."""

    def __init__(
        self,
        urls: Optional[List[str]] = None,
        timeout: float = config.IP_LOOKUP_TIMEOUT_SECONDS,
    ) -> None:
        self.urls = list(urls if urls is not None else config.IP_LOCATION_SERVICES)
        self.timeout = timeout
        self.session = requests.Session()

    def lookup(self) -> Tuple[Coordinate, Optional[str]]:
        for url in self.urls:
            try:
                resp = self.session.get(url, timeout=self.timeout)
                resp.raise_for_status()
                data = resp.json()
            except (requests.RequestException, ValueError) as exc:
                logger.warning("IP location lookup via %s failed: %s", url, exc)
                continue
            coordinate = parse_ip_location(data) if isinstance(data, dict) else None
            if coordinate is not None:
                return coordinate, data.get("city")
            logger.warning("No location data from %s", url)
        raise IpLookupError("Could not determine location")


class GeoResolver:
    def __init__(
        self,
        geocoder: Geocoder,
        device: Optional[DevicePositioning] = None,
        ip_service: Optional[IpLocation] = None,
        consent_gate: Optional[ConsentGate] = None,
        device_timeout_ms: Optional[int] = None,
    ) -> None:
        self.geocoder = geocoder
        self.device = device
        self.ip_service = ip_service
        self.consent_gate = consent_gate
        self.device_timeout_ms = (
            device_timeout_ms if device_timeout_ms is not None else config.DEVICE_TIMEOUT_MS
        )

    def resolve(
        self, intent: LocationIntent, consent_gate: Optional[ConsentGate] = None
    ) -> ResolvedLocation:
        if isinstance(intent, ExplicitCoordinate):
            c = intent.coordinate
            return ResolvedLocation(c, SOURCE_EXPLICIT, label=f"{c.latitude:.5f},{c.longitude:.5f}")
        if isinstance(intent, FreeTextQuery):
            return self._resolve_text(intent)
        if isinstance(intent, CurrentDevice):
            return self._resolve_current(consent_gate or self.consent_gate)
        raise TypeError(f"Unsupported location intent: {intent!r}")

    def _resolve_text(self, intent: FreeTextQuery) -> ResolvedLocation:
        text = (intent.text or "").strip()
        if intent.place_id:
            coordinate = self.geocoder.place_location(intent.place_id)
        elif text:
            coordinate = self.geocoder.geocode(text)
        else:
            raise GeocodeFailed("Empty location")
        return ResolvedLocation(coordinate, SOURCE_MANUAL, label=text or None)

    def _resolve_current(self, gate: Optional[ConsentGate]) -> ResolvedLocation:
        state = State.TRY_DEVICE
        seen: Optional[int] = None
        while True:
            logger.debug("Location state: %s", state.value)
            if state is State.TRY_DEVICE:
                coordinate = self._try_device()
                if coordinate is not None:
                    return ResolvedLocation(coordinate, SOURCE_PRECISE)
                state = State.CHECK_CONSENT
            elif state is State.CHECK_CONSENT:
                if gate is None:
                    raise LocationUnavailable("No consent capability for IP fallback")
                seen = gate.decisions
                state = State.TRY_IP_FALLBACK if gate.is_granted() else State.REQUEST_CONSENT
            elif state is State.REQUEST_CONSENT:
                if not gate.request(seen):
                    raise LocationDenied()
                state = State.TRY_IP_FALLBACK
            elif state is State.TRY_IP_FALLBACK:
                return self._try_ip()

    def _try_device(self) -> Optional[Coordinate]:
        if self.device is None:
            logger.info("Device positioning unsupported, falling back")
            return None
        timeout_s = self.device_timeout_ms / 1000.0
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(
                self.device.get_current_position,
                self.device_timeout_ms,
                config.DEVICE_HIGH_ACCURACY,
            )
            return future.result(timeout=timeout_s)
        except (FuturesTimeoutError, TimeoutError):
            logger.info("Device positioning timed out after %.1fs", timeout_s)
            return None
        except PositioningError as exc:
            logger.info("Device positioning failed: %s", exc)
            return None
        except Exception as exc:
            logger.info("Device positioning raised %s: %s", type(exc).__name__, exc)
            return None
        finally:
            # A hung device call must not block the fallback.
            executor.shutdown(wait=False)

    def _try_ip(self) -> ResolvedLocation:
        if self.ip_service is None:
            raise LocationUnavailable("No IP location service configured")
        try:
            coordinate, city = self.ip_service.lookup()
        except IpLookupError as exc:
            raise LocationUnavailable(str(exc)) from exc
        return ResolvedLocation(coordinate, SOURCE_APPROXIMATE, label=city)
