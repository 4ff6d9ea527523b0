"""Debounced location suggestions where newer input supersedes older requests."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Protocol

from . import config
from .errors import ProviderError
from .models import Suggestion

logger = logging.getLogger(__name__)

ResultsCallback = Callable[[List[Suggestion]], None]
TimerFactory = Callable[..., threading.Timer]


class SuggestionSource(Protocol):
    def autocomplete(self, partial_text: str) -> List[Suggestion]:
        ...


class AutocompleteSession:
    def __init__(
        self,
        source: SuggestionSource,
        delay_seconds: float = config.AUTOCOMPLETE_DEBOUNCE_SECONDS,
        min_chars: int = config.AUTOCOMPLETE_MIN_CHARS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.source = source
        self.delay_seconds = delay_seconds
        self.min_chars = min_chars
        self.timer_factory = timer_factory
        self._lock = threading.Lock()
        self._generation = 0
        self._timer: Optional[threading.Timer] = None

    def on_input(self, text: str, on_results: ResultsCallback) -> None:
        text = (text or "").strip()
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if len(text) >= self.min_chars:
                self._timer = self.timer_factory(
                    self.delay_seconds, self._fetch, args=(generation, text, on_results)
                )
                self._timer.daemon = True
                self._timer.start()
        if len(text) < self.min_chars:
            on_results([])

    def close(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _fetch(self, generation: int, text: str, on_results: ResultsCallback) -> None:
        if not self._is_current(generation):
            return
        try:
            suggestions = self.source.autocomplete(text)
        except ProviderError as exc:
            logger.warning("Autocomplete failed: %s", exc)
            suggestions = []
        if not self._is_current(generation):
            logger.debug("Discarding stale suggestions for %r", text)
            return
        on_results(suggestions)
