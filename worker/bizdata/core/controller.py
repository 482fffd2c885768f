"""Long-running, rate limited collection of business listings.

The controller owns a small state machine (idle, running, paused, stopped,
failed) and at most one background worker thread. The worker pages through a
:class:`~bizdata.vendors.base.ListingSource`, normalizes every raw record and
accumulates the results in memory. Callers interact through non-blocking
control calls (``start``/``pause``/``resume``/``stop``), read consistent
snapshots, or subscribe to be handed a fresh snapshot after every mutation.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from bizdata.core.config import ConfigError
from bizdata.core.rate_limiter import RateLimiter
from bizdata.etl import export
from bizdata.etl.transform import dedupe_key, to_business_listing
from bizdata.models import BusinessListing, CollectionConfig, CollectionSnapshot, Page, Query, RunState
from bizdata.vendors.base import FetchError, ListingSource

logger = logging.getLogger(__name__)

Subscriber = Callable[[CollectionSnapshot], None]


class CollectionController:
    def __init__(
        self,
        source: ListingSource,
        credential: Optional[str] = None,
        config: Optional[CollectionConfig] = None,
    ) -> None:
        self._source = source
        self._credential = credential
        self._config = config or CollectionConfig()
        self._limiter = RateLimiter(self._config.requests_per_second)

        self._lock = threading.Lock()
        self._state_changed = threading.Condition(self._lock)
        self._subscribers: List[Subscriber] = []
        self._worker: Optional[threading.Thread] = None
        self._interrupt = threading.Event()
        self._delivery_lock = threading.RLock()
        self._delivered_version = 0
        self._version = 0

        self._run_id: Optional[str] = None
        self._state = RunState.IDLE
        self._query: Optional[Query] = None
        self._listings: List[BusinessListing] = []
        self._seen_keys: Set[Tuple[str, str, str]] = set()
        self._pages_fetched = 0
        self._total: Optional[int] = None
        self._progress: Optional[float] = 0.0
        self._status_message = "Ready"
        self._log_messages: List[str] = []
        self._last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def config(self) -> CollectionConfig:
        with self._lock:
            return self._config

    def snapshot(self) -> CollectionSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for snapshot updates; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def export_csv(self) -> str:
        return export.export_csv(self.snapshot().listings)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self, query: Query) -> bool:
        """Begin a new run. Returns ``False`` if a run is already active."""
        if not isinstance(query, Query):
            raise ConfigError("start() expects a Query")
        if not self._credential:
            raise ConfigError("A bearer credential is required before collection can start.")

        with self._lock:
            if self._state.is_active or self._worker is not None:
                logger.warning("Ignoring start request; a collection run is already active (state=%s)", self._state.value)
                return False

            run_id = str(uuid.uuid4())
            self._run_id = run_id
            self._query = query
            self._listings = []
            self._seen_keys = set()
            self._pages_fetched = 0
            self._total = None
            self._progress = 0.0 if self._config.max_pages else None
            self._log_messages = []
            self._last_error = None
            self._state = RunState.RUNNING
            self._status_message = "Collecting..."
            self._interrupt = threading.Event()
            self._log(f"Started collection for '{query.category}' in '{query.location}'")

            worker = threading.Thread(
                target=self._run,
                args=(run_id, query, self._interrupt),
                name=f"collector-{run_id[:8]}",
                daemon=True,
            )
            self._worker = worker
            worker.start()
            snapshot = self._changed_locked()

        self._publish(snapshot)
        return True

    def pause(self) -> bool:
        with self._lock:
            if self._state is not RunState.RUNNING:
                logger.warning("Cannot pause from state=%s", self._state.value)
                return False
            self._state = RunState.PAUSED
            self._status_message = "Paused"
            self._interrupt.set()
            self._log("Collection paused")
            self._state_changed.notify_all()
            snapshot = self._changed_locked()
        self._publish(snapshot)
        return True

    def resume(self) -> bool:
        with self._lock:
            if self._state is not RunState.PAUSED:
                logger.warning("Cannot resume from state=%s", self._state.value)
                return False
            self._state = RunState.RUNNING
            self._status_message = "Collecting..."
            self._interrupt.clear()
            self._log("Collection resumed")
            self._state_changed.notify_all()
            snapshot = self._changed_locked()
        self._publish(snapshot)
        return True

    def stop(self) -> bool:
        with self._lock:
            if not self._state.is_active:
                logger.warning("Cannot stop from state=%s", self._state.value)
                return False
            self._state = RunState.STOPPED
            self._interrupt.set()
            count = len(self._listings)
            self._status_message = f"Stopped: {count} listings collected"
            self._log(f"Collection stopped after {self._pages_fetched} pages with {count} listings")
            self._state_changed.notify_all()
            snapshot = self._changed_locked()
        self._publish(snapshot)
        return True

    def update_config(self, config: CollectionConfig) -> bool:
        """Swap the run configuration; refused while a run is fetching."""
        with self._lock:
            if self._state is RunState.RUNNING:
                logger.warning("Refusing configuration change while a run is in progress")
                return False
            self._config = config
            self._limiter.update_rate(config.requests_per_second)
        logger.info(
            "Configuration updated: delay=%.2fs page_limit=%d max_pages=%s dedupe=%s",
            config.request_delay_seconds,
            config.page_limit,
            config.max_pages,
            config.dedupe,
        )
        return True

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker to exit; ``True`` once no worker is running."""
        with self._lock:
            worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        self.stop()
        return self.join(timeout)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self, run_id: str, query: Query, interrupt: threading.Event) -> None:
        page = 0
        try:
            while True:
                if not self._await_running(run_id):
                    return
                # Interrupted by pause or stop before a permit was granted.
                if not self._limiter.acquire(interrupt):
                    continue

                with self._lock:
                    if not self._is_current(run_id):
                        return
                    if self._state is RunState.PAUSED:
                        self._limiter.refund()
                        continue
                    config = self._config
                    self._status_message = f"Fetching page {page + 1}..."
                    snapshot = self._changed_locked()
                self._publish(snapshot)

                try:
                    result = self._source.fetch(query, page, self._credential, page_size=config.page_limit)
                    listings = [to_business_listing(raw) for raw in result.records]
                except FetchError as exc:
                    self._fail(run_id, page, exc)
                    return

                if not self._record_page(run_id, page, result, listings, config):
                    return
                page += 1
        except Exception as exc:  # noqa: BLE001
            logger.exception("Collection worker crashed on page %d", page + 1)
            self._fail(run_id, page, exc)
        finally:
            try:
                self._source.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to close listing source %s: %s", self._source.name, exc)
            with self._lock:
                if self._worker is threading.current_thread():
                    self._worker = None

    def _await_running(self, run_id: str) -> bool:
        with self._lock:
            while self._run_id == run_id and self._state is RunState.PAUSED:
                self._state_changed.wait()
            return self._run_id == run_id and self._state is RunState.RUNNING

    def _is_current(self, run_id: str) -> bool:
        return self._run_id == run_id and self._state.is_active

    def _record_page(
        self,
        run_id: str,
        page: int,
        result: Page,
        listings: List[BusinessListing],
        config: CollectionConfig,
    ) -> bool:
        """Append a fetched page; returns ``True`` when the loop should continue."""
        with self._lock:
            if not self._is_current(run_id):
                logger.debug("Discarding page %d for run %s; run is no longer active", page + 1, run_id)
                return False

            added = 0
            skipped = 0
            for listing in listings:
                if config.dedupe:
                    key = dedupe_key(listing)
                    if key in self._seen_keys:
                        skipped += 1
                        continue
                    self._seen_keys.add(key)
                self._listings.append(listing)
                added += 1

            self._pages_fetched += 1
            if result.total is not None:
                self._total = result.total

            message = f"Fetched page {page + 1}: {added} listings"
            if skipped:
                message += f" ({skipped} duplicates skipped)"
            self._log(message)

            count = len(self._listings)
            finished = not result.has_more or (
                config.max_pages is not None and self._pages_fetched >= config.max_pages
            )
            if finished:
                # Also reached from Paused when the page was in flight as pause() landed.
                self._state = RunState.STOPPED
                self._progress = 1.0
                self._status_message = f"Completed: {count} listings collected"
                self._log(f"Collection complete: {count} listings collected from {self._pages_fetched} pages")
                self._state_changed.notify_all()
            else:
                self._progress = self._estimate_progress(config)
                self._status_message = f"{count} listings collected"
            snapshot = self._changed_locked()

        self._publish(snapshot)
        return not finished

    def _fail(self, run_id: str, page: int, exc: Exception) -> None:
        with self._lock:
            if not self._is_current(run_id):
                logger.debug("Dropping error for inactive run %s: %s", run_id, exc)
                return
            # An active run may be Paused here if its in-flight page failed.
            kind = getattr(exc, "kind", "unexpected_error")
            message = str(exc) or exc.__class__.__name__
            self._last_error = message
            self._log(f"Page {page + 1} failed ({kind}): {message}", level=logging.ERROR)
            self._state = RunState.FAILED
            self._status_message = f"Failed: {message}"
            self._state_changed.notify_all()
            snapshot = self._changed_locked()
        self._publish(snapshot)

    def _estimate_progress(self, config: CollectionConfig) -> Optional[float]:
        if config.max_pages:
            return min(1.0, self._pages_fetched / config.max_pages)
        if self._total is not None:
            page_size = self._source.effective_page_size(config.page_limit)
            estimated_pages = max(1, math.ceil(self._total / page_size))
            return min(1.0, self._pages_fetched / estimated_pages)
        return None

    # ------------------------------------------------------------------
    # Helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _log(self, message: str, level: int = logging.INFO) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        self._log_messages.append(f"[{stamp}] {message}")
        logger.log(level, "[run %s] %s", (self._run_id or "-")[:8], message)

    def _changed_locked(self) -> CollectionSnapshot:
        self._version += 1
        return self._snapshot_locked()

    def _snapshot_locked(self) -> CollectionSnapshot:
        return CollectionSnapshot(
            run_id=self._run_id,
            version=self._version,
            state=self._state,
            query=self._query,
            listings=tuple(self._listings),
            collected_count=len(self._listings),
            pages_fetched=self._pages_fetched,
            progress=self._progress,
            status_message=self._status_message,
            log_messages=tuple(self._log_messages),
            last_error=self._last_error,
        )

    def _publish(self, snapshot: CollectionSnapshot) -> None:
        """Deliver ``snapshot`` unless a newer one already went out.

        Delivery is serialized so subscribers see versions in increasing order
        and the last snapshot they receive matches the controller state.
        """
        with self._delivery_lock:
            if snapshot.version <= self._delivered_version:
                return
            self._delivered_version = snapshot.version
            with self._lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                # A subscriber that called back into the controller has already
                # delivered something newer.
                if self._delivered_version != snapshot.version:
                    break
                try:
                    callback(snapshot)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Snapshot subscriber %r raised: %s", callback, exc)
