"""Observability hooks for calendar API calls.

The gateway reports through an injected :class:`Observability` object
instead of process-wide registries. Export format is up to the
implementation; :class:`InMemoryMetrics` keeps values for inspection and
:class:`LoggingMetrics` writes them to the log.
"""

import logging
import threading
from collections import defaultdict
from typing import Protocol

logger = logging.getLogger(__name__)

API_REQUESTS_TOTAL = "google_calendar_api_requests_total"
API_RESPONSE_DURATION_SECONDS = "google_calendar_api_response_duration_seconds"
API_ERRORS_TOTAL = "google_calendar_api_errors_total"
RATE_LIMIT_HITS_TOTAL = "google_calendar_rate_limit_hits_total"

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


class Observability(Protocol):
    """Sink for counters and histograms."""

    def increment_counter(self, name: str, labels: dict[str, str] | None = None) -> None: ...

    def observe_histogram(
        self, name: str, labels: dict[str, str] | None, value: float
    ) -> None: ...


class InMemoryMetrics:
    """Thread-safe in-process metric store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, dict[LabelKey, int]] = defaultdict(lambda: defaultdict(int))
        self._histograms: dict[str, dict[LabelKey, list[float]]] = defaultdict(
            lambda: defaultdict(list)
        )

    def increment_counter(self, name: str, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._counters[name][_label_key(labels)] += 1

    def observe_histogram(self, name: str, labels: dict[str, str] | None, value: float) -> None:
        with self._lock:
            self._histograms[name][_label_key(labels)].append(value)

    def counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(name, {}).get(_label_key(labels), 0)

    def observations(self, name: str, labels: dict[str, str] | None = None) -> list[float]:
        """Copy of the values recorded for a histogram."""
        with self._lock:
            return list(self._histograms.get(name, {}).get(_label_key(labels), []))

    def snapshot(self) -> dict[str, dict[str, object]]:
        """All metrics keyed by name, for the doctor command and debugging."""
        with self._lock:
            counters = {
                name: {str(dict(key)): value for key, value in series.items()}
                for name, series in self._counters.items()
            }
            histograms = {
                name: {
                    str(dict(key)): {"count": len(values), "sum": sum(values)}
                    for key, values in series.items()
                }
                for name, series in self._histograms.items()
            }
        return {"counters": counters, "histograms": histograms}


class LoggingMetrics:
    """Writes every observation to the debug log."""

    def increment_counter(self, name: str, labels: dict[str, str] | None = None) -> None:
        logger.debug("metric counter %s %s +1", name, labels or {})

    def observe_histogram(self, name: str, labels: dict[str, str] | None, value: float) -> None:
        logger.debug("metric histogram %s %s %.6f", name, labels or {}, value)
