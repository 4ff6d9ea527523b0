import json
import os
from pathlib import Path

import run
from maps_finder import config
from maps_finder.models import (
    Candidate,
    Coordinate,
    RankedResult,
    ResolvedLocation,
    ScoredCandidate,
)
from maps_finder.storage import Store, StoreConsent


def _parse_env_file(env_path: Path, *, override: bool = False) -> None:
    for line in env_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if override or key not in os.environ:
            os.environ[key] = val


def test_load_env_is_optional_and_does_not_override_env(tmp_path: Path, monkeypatch):
    env_path = tmp_path / ".env"
    env_path.write_text("GOOGLE_MAPS_API_KEY=from-dotenv\n", encoding="utf-8")

    called: dict[str, Path] = {}

    def fake_load_dotenv(*, dotenv_path, override=False):
        called["dotenv_path"] = Path(dotenv_path).resolve()
        _parse_env_file(Path(dotenv_path), override=bool(override))
        return True

    monkeypatch.setattr(run, "_load_dotenv", fake_load_dotenv)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "from-env")

    run.load_env(root_dir=tmp_path)

    assert called["dotenv_path"] == env_path.resolve()
    assert os.environ.get("GOOGLE_MAPS_API_KEY") == "from-env"


def test_load_env_missing_file_is_noop(tmp_path: Path, monkeypatch):
    def fail(**kwargs):
        raise AssertionError("should not be called")

    monkeypatch.setattr(run, "_load_dotenv", fail)
    run.load_env(root_dir=tmp_path)


class FakeOrchestrator:
    def __init__(self, result):
        self.result = result
        self.requests = []

    def execute(self, request):
        self.requests.append(request)
        return self.result


def _result():
    candidate = Candidate(
        id="p1",
        display_name="Corner Cafe",
        rating=4.7,
        user_rating_count=320,
        formatted_address="5 Market Sq",
        distance_meters=830.0,
    )
    return RankedResult(
        origin=ResolvedLocation(Coordinate(52.2, 21.0), "explicit"),
        algorithm="bayesian",
        items=[ScoredCandidate(candidate, 4.61)],
    )


def _isolate(monkeypatch, tmp_path):
    monkeypatch.setattr(run, "load_env", lambda *a, **k: None)
    monkeypatch.setattr(config, "load_search_config", lambda *a, **k: False)


def test_search_prints_caches_and_writes_results(tmp_path, monkeypatch, capsys):
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "dummy")
    fake = FakeOrchestrator(_result())
    captured = {}

    def fake_build(api_key, store, consent_prompt, device=None, metrics=None, top_n=None):
        captured.update(api_key=api_key, top_n=top_n, device=device)
        return fake

    monkeypatch.setattr(run, "build_orchestrator", fake_build)
    store_path = str(tmp_path / "store.db")
    out_dir = tmp_path / "out"

    code = run.main(
        [
            "--category", "cafe",
            "--lat", "52.2", "--lon", "21.0",
            "--radius-km", "2",
            "--store-path", store_path,
            "--out", str(out_dir),
        ]
    )

    assert code == 0
    assert captured["api_key"] == "dummy"
    assert captured["top_n"] == config.TOP_RESULTS_TO_SHOW
    request = fake.requests[0]
    assert request.radius_meters == 2000
    assert request.query.category == "cafe"
    assert "1. Corner Cafe - 0.8 km" in capsys.readouterr().out

    rows = json.loads((out_dir / "results.json").read_text(encoding="utf-8"))
    assert rows[0]["placeId"] == "p1"
    search = json.loads((out_dir / "search.json").read_text(encoding="utf-8"))
    assert search["algorithm"] == "bayesian"
    assert search["radiusKm"] == 2.0

    store = Store(store_path)
    last = store.get_last_results()
    assert last["results"][0]["name"] == "Corner Cafe"
    assert last["searchParams"]["searchQuery"] == "cafe"
    assert store.get_preferences()["lastCategory"] == "cafe"
    store.close()

    assert run.main(["--last", "--store-path", store_path]) == 0
    assert "Corner Cafe" in capsys.readouterr().out


def test_missing_api_key_reports_configuration_error(tmp_path, monkeypatch, capsys):
    _isolate(monkeypatch, tmp_path)
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)

    code = run.main(["--text", "ramen", "--near", "52.2,21.0", "--store-path", str(tmp_path / "s.db")])

    assert code == 1
    err = capsys.readouterr().err
    assert "API key not configured" in err
    assert "Traceback" not in err


def test_forget_clears_consent(tmp_path, monkeypatch, capsys):
    _isolate(monkeypatch, tmp_path)
    store_path = str(tmp_path / "store.db")
    store = Store(store_path)
    StoreConsent(store).set(True)
    store.close()

    assert run.main(["--forget", "--store-path", store_path]) == 0

    store = Store(store_path)
    assert StoreConsent(store).get() is False
    store.close()


def test_location_intent_from_args():
    args = run.parse_args(["--text", "tacos", "--near", " Austin, TX ", "--place-id", "abc"])
    intent = run.location_intent_from_args(args)
    assert intent.text == "Austin, TX"
    assert intent.place_id == "abc"

    args = run.parse_args(["--category", "bar"])
    assert type(run.location_intent_from_args(args)).__name__ == "CurrentDevice"
    assert run.device_from_args(args) is None

    args = run.parse_args(["--category", "bar", "--device-lat", "1", "--device-lon", "2"])
    assert run.device_from_args(args).coordinate == Coordinate(1.0, 2.0)


def test_consent_prompt_auto_allow_and_non_interactive(monkeypatch):
    assert run.terminal_consent_prompt(auto_allow=True)() is True

    class NotATty:
        def isatty(self):
            return False

    monkeypatch.setattr(run.sys, "stdin", NotATty())
    assert run.terminal_consent_prompt()() is False


def test_omitted_options_come_from_last_search(tmp_path, monkeypatch, capsys):
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "dummy")
    fake = FakeOrchestrator(_result())
    monkeypatch.setattr(run, "build_orchestrator", lambda *a, **k: fake)
    store_path = str(tmp_path / "store.db")

    first = [
        "--text", "ramen",
        "--near", "Austin, TX",
        "--radius-km", "3",
        "--algorithm", "popularity",
        "--store-path", store_path,
    ]
    assert run.main(first) == 0
    assert run.main(["--store-path", store_path]) == 0

    repeated = fake.requests[1]
    assert repeated.query.text == "ramen"
    assert repeated.location_intent.text == "Austin, TX"
    assert repeated.radius_meters == 3000
    assert repeated.algorithm == "popularity"

    # Explicit flags win over stored ones.
    assert run.main(["--category", "bar", "--radius-km", "1", "--store-path", store_path]) == 0
    overridden = fake.requests[2]
    assert overridden.query.category == "bar"
    assert overridden.radius_meters == 1000
    assert overridden.algorithm == "popularity"
    assert overridden.location_intent.text == "Austin, TX"

    assert run.main(["--here", "--store-path", store_path]) == 0
    here = fake.requests[3]
    assert type(here.location_intent).__name__ == "CurrentDevice"
    assert here.query.category == "bar"

    store = Store(store_path)
    assert store.get_preferences()["useCurrentLocation"] is True
    store.close()


def test_explicit_coordinates_are_remembered_as_custom_location():
    args = run.parse_args(["--category", "cafe", "--lat", "52.2", "--lon", "21.0"])
    run.apply_preferences(args, None)
    prefs = run.build_preferences(args)
    assert prefs["useCurrentLocation"] is False
    assert prefs["lastCustomLocation"] == "52.2,21.0"
    assert prefs["radiusKm"] == config.DEFAULT_RADIUS_KM

    later = run.parse_args(["--category", "cafe"])
    run.apply_preferences(later, prefs)
    assert later.near == "52.2,21.0"


def test_no_query_and_no_history_is_an_error(tmp_path, monkeypatch, capsys):
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "dummy")

    assert run.main(["--store-path", str(tmp_path / "store.db")]) == 1
    err = capsys.readouterr().err
    assert "--category or --text" in err
    assert "Traceback" not in err


def test_consent_prompt_treats_eof_and_interrupt_as_deny(monkeypatch):
    class Tty:
        def isatty(self):
            return True

    monkeypatch.setattr(run.sys, "stdin", Tty())
    for error in (EOFError, KeyboardInterrupt):

        def closed(prompt="", error=error):
            raise error()

        monkeypatch.setattr("builtins.input", closed)
        assert run.terminal_consent_prompt()() is False
