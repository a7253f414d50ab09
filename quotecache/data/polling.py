"""Background polling cache for quote data.

:class:`PollingCacheService` owns a set of tracked identifiers, a repeating
timer per identifier that asks a quote fetcher for fresh data, a thread-safe
cache of the last known :class:`QuoteRecord` for each identifier, and a list of
update callbacks. Fetch failures never reach readers: the cache entry simply
stays as it was until a later tick succeeds.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from quotecache.infra.metrics import MetricsSink

from .clients import FetchError, QuoteFetcher, QuoteRecord, QuoteValue

UpdateCallback = Callable[[str, QuoteRecord], None]
FetchFunction = Callable[[str], QuoteValue]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollState(Enum):
    """Lifecycle of a polling service: IDLE -> POLLING -> STOPPED."""

    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


class InvalidArgumentError(ValueError):
    """Raised synchronously for empty identifiers or a non-positive interval."""


class ServiceStoppedError(RuntimeError):
    """Raised when a lifecycle operation is attempted after shutdown."""


class CallbackError(Exception):
    """An update callback raised while being notified. Logged, never propagated."""

    def __init__(self, identifier: str, callback: UpdateCallback, cause: BaseException) -> None:
        self.identifier = identifier
        self.callback = callback
        self.cause = cause
        name = getattr(callback, "__qualname__", repr(callback))
        super().__init__(f"Update callback {name} failed for {identifier}: {cause}")


@dataclass
class FetchOutcome:
    """Result of one fetch attempt: either a value or the error that replaced it."""

    identifier: str
    value: Optional[QuoteValue] = None
    error: Optional[FetchError] = None
    latency_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None


@dataclass
class PollingTask:
    """Repeating timer state for a single identifier."""

    identifier: str
    interval_seconds: int
    thread: Optional[threading.Thread] = None


class PollingCacheService:
    """Keep a local cache of quotes refreshed on a fixed interval.

    Each identifier gets its own daemon timer thread, so a slow fetch for one
    symbol never holds up another. The first tick runs as soon as the timer
    starts. A cycle for an identifier that is still running when the next one
    is due causes that next one to be skipped rather than queued.

    Readers (:meth:`get`, :meth:`get_all`) only take the cache lock for a
    dictionary lookup and never wait on the network.
    """

    def __init__(
        self,
        fetcher: Union[QuoteFetcher, FetchFunction],
        *,
        name: str = "quotes",
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsSink] = None,
        shutdown_timeout: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        fetch = getattr(fetcher, "fetch", None)
        if callable(fetch):
            self._fetch: FetchFunction = fetch
        elif callable(fetcher):
            self._fetch = fetcher
        else:
            raise TypeError("fetcher must provide fetch(identifier) or be callable")

        self._fetcher = fetcher
        self._name = name
        self._clock = clock or _utcnow
        self.metrics = metrics
        self.shutdown_timeout = shutdown_timeout
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._cache: Dict[str, QuoteRecord] = {}
        self._cycle_locks: Dict[str, threading.Lock] = {}
        self._tasks: Dict[str, PollingTask] = {}
        self._callbacks: List[UpdateCallback] = []
        self._state = PollState.IDLE
        self._interval: Optional[int] = None

    # --- Lifecycle --------------------------------------------------------
    def register(self, identifiers: Iterable[str]) -> List[str]:
        """Insert placeholder records for identifiers not tracked yet.

        Returns the identifiers that were newly added. Polling is not started
        here, but identifiers added while already polling get a timer right away.
        """

        symbols = self._validate_identifiers(identifiers)
        now = self._clock()
        added: List[str] = []
        with self._lock:
            self._ensure_active("register")
            for symbol in symbols:
                if symbol in self._cache:
                    continue
                self._cache[symbol] = QuoteRecord.placeholder(symbol, now)
                self._cycle_locks[symbol] = threading.Lock()
                added.append(symbol)
            tracked = len(self._cache)
            if self._state is PollState.POLLING:
                self._start_timers_unlocked(added)

        if added:
            self.logger.info(
                "Registered %d identifiers for %s", len(added), self._name,
                extra={"event": "register", "service": self._name, "identifiers": added},
            )
            self._set_gauge("tracked_symbols", tracked)
        return added

    def start_polling(self, identifiers: Iterable[str], interval_seconds: int) -> None:
        """Register ``identifiers`` and make sure each one has a running timer.

        The interval given on the first call is used for every timer; a later
        call with a different interval only adds identifiers.
        """

        symbols = self._validate_identifiers(identifiers)
        self._validate_interval(interval_seconds)
        self.register(symbols)

        with self._lock:
            self._ensure_active("start_polling")
            if self._state is PollState.IDLE:
                self._state = PollState.POLLING
                self._interval = interval_seconds
                self.logger.info(
                    "Starting %s polling every %ss", self._name, interval_seconds,
                    extra={"event": "polling_started", "service": self._name, "interval_seconds": interval_seconds},
                )
            elif interval_seconds != self._interval:
                self.logger.warning(
                    "Ignoring interval %ss for %s; already polling every %ss",
                    interval_seconds, self._name, self._interval,
                    extra={"event": "interval_ignored", "service": self._name},
                )

            self._start_timers_unlocked(list(self._cache))

    def _start_timers_unlocked(self, symbols: List[str]) -> None:
        # caller holds self._lock
        interval = self._interval
        if interval is None:
            return
        for symbol in symbols:
            if symbol in self._tasks:
                continue
            task = PollingTask(identifier=symbol, interval_seconds=interval)
            task.thread = threading.Thread(
                target=self._run_timer,
                args=(task,),
                name=f"quotecache-{self._name}-{symbol}",
                daemon=True,
            )
            self._tasks[symbol] = task
            task.thread.start()

    def shutdown(self) -> None:
        """Stop every timer, close the fetcher and freeze the cache.

        Cached records stay readable. Calling this more than once is harmless.
        """

        with self._lock:
            if self._state is PollState.STOPPED:
                return
            self._state = PollState.STOPPED
            self._stop_event.set()
            threads = [task.thread for task in self._tasks.values() if task.thread is not None]

        self.logger.info("Shutting down %s polling service", self._name, extra={"event": "shutdown", "service": self._name})

        deadline = time.monotonic() + self.shutdown_timeout
        current = threading.current_thread()
        for thread in threads:
            if thread is current:
                continue
            thread.join(max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                self.logger.warning(
                    "Timer %s still busy after shutdown; its result will be discarded", thread.name,
                    extra={"event": "shutdown_timeout", "service": self._name},
                )

        close = getattr(self._fetcher, "close", None)
        if callable(close):
            try:
                close()
            except Exception:
                self.logger.exception("Failed to close fetcher for %s", self._name)

    def __enter__(self) -> "PollingCacheService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # --- Reads ------------------------------------------------------------
    def get(self, identifier: str) -> Optional[QuoteRecord]:
        """Return the cached record, or ``None`` if never registered."""

        with self._lock:
            return self._cache.get(identifier)

    def get_all(self, identifiers: Iterable[str]) -> Dict[str, QuoteRecord]:
        """Return a record for every requested identifier.

        Unregistered identifiers get a synthesized placeholder instead of
        being left out.
        """

        if isinstance(identifiers, str):
            raise InvalidArgumentError("expected a collection of identifiers, got a single string")
        requested = list(identifiers)
        now = self._clock()
        with self._lock:
            return {
                symbol: self._cache.get(symbol) or QuoteRecord.placeholder(symbol, now)
                for symbol in requested
            }

    def on_update(self, callback: UpdateCallback) -> UpdateCallback:
        """Register a callback invoked as ``callback(identifier, record)`` after each successful fetch."""

        if not callable(callback):
            raise InvalidArgumentError("callback must be callable")
        with self._lock:
            self._callbacks.append(callback)
        return callback

    def is_polling(self) -> bool:
        return self._state is PollState.POLLING

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def name(self) -> str:
        return self._name

    @property
    def interval_seconds(self) -> Optional[int]:
        return self._interval

    @property
    def identifiers(self) -> List[str]:
        with self._lock:
            return sorted(self._cache)

    # --- Fetch-and-update cycle ------------------------------------------
    def refresh(self, identifier: str) -> bool:
        """Run one fetch-and-update cycle on the calling thread.

        Returns ``True`` if the cache entry was replaced.
        """

        with self._lock:
            if identifier not in self._cycle_locks:
                raise InvalidArgumentError(f"{identifier!r} is not registered")
        return self._run_cycle(identifier)

    def _run_timer(self, task: PollingTask) -> None:
        interval = task.interval_seconds
        next_due = time.monotonic()
        while not self._stop_event.is_set():
            self._run_cycle(task.identifier)

            next_due += interval
            now = time.monotonic()
            if now >= next_due:
                missed = int((now - next_due) // interval) + 1
                next_due += missed * interval
                self._incr("ticks_skipped_total", missed)
                self.logger.debug("Skipped %d overdue ticks for %s", missed, task.identifier)
            self._stop_event.wait(max(0.0, next_due - time.monotonic()))

    def _run_cycle(self, identifier: str) -> bool:
        with self._lock:
            cycle_lock = self._cycle_locks[identifier]
        if not cycle_lock.acquire(blocking=False):
            self._incr("ticks_skipped_total")
            self.logger.debug("Fetch for %s still running; skipping tick", identifier)
            return False

        try:
            if self._stop_event.is_set():
                return False
            self._incr("ticks_total")

            outcome = self._attempt_fetch(identifier)
            if not outcome.ok:
                if self._stop_event.is_set():
                    self._discard(identifier)
                else:
                    self._record_failure(outcome)
                return False

            self._incr("fetch_success_total")
            self._set_gauge("fetch_latency_seconds", outcome.latency_seconds)
            record = self._store(identifier, outcome.value)
            if record is None:
                return False
            self._notify(identifier, record)
            return True
        finally:
            cycle_lock.release()

    def _attempt_fetch(self, identifier: str) -> FetchOutcome:
        started = time.monotonic()
        try:
            value = self._coerce_value(identifier, self._fetch(identifier))
        except FetchError as exc:
            return FetchOutcome(identifier, error=exc, latency_seconds=time.monotonic() - started)
        except Exception as exc:
            return FetchOutcome(identifier, error=FetchError(identifier, exc), latency_seconds=time.monotonic() - started)
        return FetchOutcome(identifier, value=value, latency_seconds=time.monotonic() - started)

    def _coerce_value(self, identifier: str, value: Any) -> QuoteValue:
        if isinstance(value, QuoteValue):
            return value
        if isinstance(value, Mapping):
            return QuoteValue(
                primary_value=value.get("primary_value"),
                reference_value=value.get("reference_value"),
            )
        raise FetchError(identifier, f"unexpected fetch result {type(value).__name__}")

    def _record_failure(self, outcome: FetchOutcome) -> None:
        self._incr("fetch_failure_total")
        self.logger.warning(
            "Failed to fetch %s: %s", outcome.identifier, outcome.error.cause if outcome.error else "no value",
            extra={"event": "fetch_failed", "service": self._name, "identifier": outcome.identifier},
        )

    def _discard(self, identifier: str) -> None:
        self._incr("discarded_after_shutdown_total")
        self.logger.debug("Discarding result for %s fetched after shutdown", identifier)

    def _store(self, identifier: str, value: QuoteValue) -> Optional[QuoteRecord]:
        with self._lock:
            stopped = self._state is PollState.STOPPED
            if not stopped:
                now = self._clock()
                previous = self._cache.get(identifier)
                if previous is not None and now < previous.last_updated:
                    now = previous.last_updated
                record = QuoteRecord.from_value(identifier, value, now)
                self._cache[identifier] = record
        if stopped:
            self._discard(identifier)
            return None
        self.logger.debug(
            "Updated %s: primary=%s reference=%s", identifier, record.primary_value, record.reference_value
        )
        return record

    def _notify(self, identifier: str, record: QuoteRecord) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            if self._stop_event.is_set():
                return
            try:
                callback(identifier, record)
            except Exception as exc:
                error = CallbackError(identifier, callback, exc)
                self._incr("callback_error_total")
                self.logger.exception(
                    str(error), extra={"event": "callback_failed", "service": self._name, "identifier": identifier}
                )

    # --- Validation -------------------------------------------------------
    def _ensure_active(self, operation: str) -> None:
        if self._state is PollState.STOPPED:
            raise ServiceStoppedError(f"Cannot {operation}: {self._name} service has been shut down")

    def _validate_identifiers(self, identifiers: Iterable[str]) -> List[str]:
        if isinstance(identifiers, str):
            raise InvalidArgumentError("expected a collection of identifiers, got a single string")
        if identifiers is None:
            raise InvalidArgumentError("identifiers must not be None")

        symbols: List[str] = []
        for identifier in identifiers:
            if not isinstance(identifier, str) or not identifier.strip():
                raise InvalidArgumentError(f"invalid identifier {identifier!r}")
            if identifier not in symbols:
                symbols.append(identifier)
        if not symbols:
            raise InvalidArgumentError("at least one identifier is required")
        return symbols

    def _validate_interval(self, interval_seconds: Any) -> None:
        if isinstance(interval_seconds, bool) or not isinstance(interval_seconds, int) or interval_seconds <= 0:
            raise InvalidArgumentError(f"interval_seconds must be a positive integer, got {interval_seconds!r}")

    # --- Metrics ----------------------------------------------------------
    def _incr(self, name: str, value: int = 1) -> None:
        if self.metrics is not None:
            self.metrics.incr(name, value)

    def _set_gauge(self, name: str, value: float) -> None:
        if self.metrics is not None:
            self.metrics.set_gauge(name, value)


__all__ = [
    "PollingCacheService",
    "PollingTask",
    "PollState",
    "FetchOutcome",
    "InvalidArgumentError",
    "ServiceStoppedError",
    "CallbackError",
]
