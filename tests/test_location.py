import threading
import time

import pytest
import requests

from maps_finder.errors import GeocodeFailed, LocationDenied, LocationUnavailable
from maps_finder.location import (
    ConsentGate,
    GeoResolver,
    IpLocationService,
    IpLookupError,
    PositioningError,
    StaticPositioning,
    parse_ip_location,
)
from maps_finder.models import (
    Coordinate,
    CurrentDevice,
    ExplicitCoordinate,
    FreeTextQuery,
)

GPS_FIX = Coordinate(52.2297, 21.0122)
IP_FIX = Coordinate(52.23, 21.01)


class MemoryConsentStore:
    def __init__(self, value=False):
        self.value = value
        self.writes = []

    def get(self):
        return self.value

    def set(self, value):
        self.writes.append(value)
        self.value = value


class FakePrompt:
    def __init__(self, answer):
        self.answer = answer
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.answer


class FakeIpService:
    def __init__(self, result=(IP_FIX, "Warsaw"), error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def lookup(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class FailingDevice:
    def get_current_position(self, timeout_ms, high_accuracy):
        raise PositioningError("permission denied")


class DeniedDevice:
    def get_current_position(self, timeout_ms, high_accuracy):
        raise PermissionError("User denied Geolocation")


class HangingDevice:
    def __init__(self):
        self.release = threading.Event()
        self.seen = {}

    def get_current_position(self, timeout_ms, high_accuracy):
        self.seen = {"timeout_ms": timeout_ms, "high_accuracy": high_accuracy}
        self.release.wait(5)
        return GPS_FIX


class FakeGeocoder:
    def __init__(self, coordinate=Coordinate(40.7128, -74.006), error=None):
        self.coordinate = coordinate
        self.error = error
        self.geocoded = []
        self.details = []

    def geocode(self, text):
        self.geocoded.append(text)
        if self.error:
            raise self.error
        return self.coordinate

    def place_location(self, place_id):
        self.details.append(place_id)
        if self.error:
            raise self.error
        return self.coordinate


def make_resolver(device=None, consent=False, answer=True, ip=None, timeout_ms=5000):
    store = MemoryConsentStore(consent)
    prompt = FakePrompt(answer)
    ip = ip or FakeIpService()
    resolver = GeoResolver(
        FakeGeocoder(),
        device=device,
        ip_service=ip,
        consent_gate=ConsentGate(store, prompt),
        device_timeout_ms=timeout_ms,
    )
    return resolver, store, prompt, ip


def test_device_fix_is_precise_and_never_prompts():
    resolver, store, prompt, ip = make_resolver(device=StaticPositioning(GPS_FIX))
    resolved = resolver.resolve(CurrentDevice())
    assert resolved.coordinate == GPS_FIX
    assert resolved.source == "precise"
    assert prompt.calls == 0
    assert ip.calls == 0


def test_device_timeout_then_deny_consent():
    device = HangingDevice()
    resolver, store, prompt, ip = make_resolver(device=device, answer=False, timeout_ms=50)
    started = time.monotonic()
    with pytest.raises(LocationDenied):
        resolver.resolve(CurrentDevice())
    device.release.set()
    assert time.monotonic() - started < 2
    assert device.seen == {"timeout_ms": 50, "high_accuracy": True}
    assert prompt.calls == 1
    assert ip.calls == 0
    assert store.writes == []


def test_device_timeout_then_allow_consent_uses_ip_and_persists():
    device = HangingDevice()
    resolver, store, prompt, ip = make_resolver(device=device, answer=True, timeout_ms=50)
    resolved = resolver.resolve(CurrentDevice())
    assert resolved.coordinate == IP_FIX
    assert resolved.source == "approximate"
    assert resolved.label == "Warsaw"
    assert store.value is True
    assert store.writes == [True]

    # Consent is remembered for later searches.
    resolver.resolve(CurrentDevice())
    device.release.set()
    assert prompt.calls == 1
    assert ip.calls == 2


def test_existing_consent_skips_prompt():
    resolver, store, prompt, ip = make_resolver(device=FailingDevice(), consent=True)
    resolved = resolver.resolve(CurrentDevice())
    assert resolved.source == "approximate"
    assert prompt.calls == 0
    assert store.writes == []


def test_any_device_error_falls_back_to_consent():
    resolver, store, prompt, ip = make_resolver(device=DeniedDevice(), answer=True)
    resolved = resolver.resolve(CurrentDevice())
    assert resolved.source == "approximate"
    assert resolved.coordinate == IP_FIX
    assert prompt.calls == 1


def test_no_device_counts_as_unsupported():
    resolver, store, prompt, ip = make_resolver(device=None, consent=True)
    assert resolver.resolve(CurrentDevice()).coordinate == IP_FIX


def test_ip_failure_is_location_unavailable():
    ip = FakeIpService(error=IpLookupError("all services down"))
    resolver, store, prompt, _ = make_resolver(device=FailingDevice(), consent=True, ip=ip)
    with pytest.raises(LocationUnavailable):
        resolver.resolve(CurrentDevice())


def test_no_consent_gate_is_location_unavailable():
    resolver = GeoResolver(FakeGeocoder(), device=FailingDevice(), ip_service=FakeIpService())
    with pytest.raises(LocationUnavailable):
        resolver.resolve(CurrentDevice())


def test_gate_passed_per_call_overrides_default():
    resolver = GeoResolver(FakeGeocoder(), device=None, ip_service=FakeIpService())
    gate = ConsentGate(MemoryConsentStore(True), FakePrompt(False))
    assert resolver.resolve(CurrentDevice(), gate).source == "approximate"


def test_free_text_is_geocoded_as_manual():
    geocoder = FakeGeocoder()
    resolver = GeoResolver(geocoder)
    resolved = resolver.resolve(FreeTextQuery("  New York, NY "))
    assert geocoder.geocoded == ["New York, NY"]
    assert resolved.source == "manual"
    assert resolved.label == "New York, NY"


def test_free_text_with_place_id_uses_details():
    geocoder = FakeGeocoder()
    resolver = GeoResolver(geocoder)
    resolver.resolve(FreeTextQuery("Times Square", place_id="abc"))
    assert geocoder.details == ["abc"]
    assert geocoder.geocoded == []


def test_geocode_failure_propagates():
    resolver = GeoResolver(FakeGeocoder(error=GeocodeFailed("nothing")))
    with pytest.raises(GeocodeFailed):
        resolver.resolve(FreeTextQuery("qwertyuiop"))
    with pytest.raises(GeocodeFailed):
        GeoResolver(FakeGeocoder()).resolve(FreeTextQuery("   "))


def test_explicit_coordinate_passes_through():
    geocoder = FakeGeocoder()
    resolver = GeoResolver(geocoder)
    resolved = resolver.resolve(ExplicitCoordinate(GPS_FIX))
    assert resolved.coordinate == GPS_FIX
    assert resolved.source == "explicit"
    assert geocoder.geocoded == []


def test_concurrent_requests_prompt_once():
    store = MemoryConsentStore(False)
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def slow_prompt():
        calls.append(1)
        entered.set()
        release.wait(5)
        return False

    gate = ConsentGate(store, slow_prompt)
    results = []

    def ask():
        results.append(gate.request())

    first = threading.Thread(target=ask)
    first.start()
    entered.wait(5)
    second = threading.Thread(target=ask)
    second.start()
    time.sleep(0.05)
    release.set()
    first.join(5)
    second.join(5)

    assert len(calls) == 1
    assert results == [False, False]


def test_answer_given_after_caller_checked_is_reused():
    store = MemoryConsentStore(False)
    prompt = FakePrompt(False)
    gate = ConsentGate(store, prompt)

    seen = gate.decisions
    assert gate.is_granted() is False
    # Another search prompts and is denied before this caller asks.
    assert gate.request() is False

    assert gate.request(seen) is False
    assert prompt.calls == 1

    # A fresh search is asked again since a denial is not stored.
    assert gate.request() is False
    assert prompt.calls == 2
    assert store.writes == []


def test_parse_ip_location_variants():
    assert parse_ip_location({"latitude": 52.2, "longitude": 21.0}) == Coordinate(52.2, 21.0)
    assert parse_ip_location({"lat": 0.0, "lon": 0.0}) == Coordinate(0.0, 0.0)
    assert parse_ip_location({"status": "fail"}) is None


class FakeIpResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self.payload


class FakeIpSession:
    def __init__(self, responses):
        self.responses = responses
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        return self.responses[url]


def test_ip_service_falls_back_to_second_provider():
    service = IpLocationService(urls=["https://one/", "https://two/"])
    service.session = FakeIpSession(
        {
            "https://one/": FakeIpResponse({}, status_code=429),
            "https://two/": FakeIpResponse({"lat": 48.85, "lon": 2.35, "city": "Paris"}),
        }
    )
    coordinate, city = service.lookup()
    assert coordinate == Coordinate(48.85, 2.35)
    assert city == "Paris"
    assert service.session.urls == ["https://one/", "https://two/"]


def test_ip_service_all_failed():
    service = IpLocationService(urls=["https://one/"])
    service.session = FakeIpSession({"https://one/": FakeIpResponse({"error": True})})
    with pytest.raises(IpLookupError):
        service.lookup()
