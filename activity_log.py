"""
Buffered activity log.

Entries are queued in memory and written to the `log` collection in bulk by a
background thread, every `flush_interval` seconds or as soon as the queue
reaches `max_queue_size`. `log()` itself never writes: it only queues the
entry and wakes the flush thread. Logging is best effort: nothing in here
raises into the caller.

A failed write puts the batch back at the front of the queue so the next
flush retries it. While the store is failing, size-triggered wakes are
suspended until one `flush_interval` has passed, and the queue keeps at most
`max_retained` entries (oldest dropped first).

Every entry gets its `_id` when it is queued, so a batch that was partly
written before failing can be retried without duplicating documents.

Entries still queued when the process exits without `stop(force_flush=True)`
are lost.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import BulkWriteError

from schemas import LOG_LEVELS

logger = logging.getLogger(__name__)

_STDLIB_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

DUPLICATE_KEY = 11000

Writer = Callable[[List[Dict[str, Any]]], Any]


def only_duplicates(error: BulkWriteError) -> bool:
    """True when every failed write in the bulk error hit an existing `_id`."""
    write_errors = error.details.get("writeErrors") or []
    if error.details.get("writeConcernErrors"):
        return False
    return bool(write_errors) and all(e.get("code") == DUPLICATE_KEY for e in write_errors)


def collection_writer(get_collection: Callable[[], Any]) -> Writer:
    """
    Build a writer that bulk-inserts entries into a MongoDB collection.

    Inserts are unordered, so one entry already present from an earlier partial
    write does not stop the rest. Duplicate-key failures alone count as
    delivered.
    """

    def write(entries: List[Dict[str, Any]]) -> None:
        try:
            get_collection().insert_many(entries, ordered=False)
        except BulkWriteError as e:
            if not only_duplicates(e):
                raise
            logger.info("Skipped %d log entries already stored", len(e.details["writeErrors"]))

    return write


class LogBuffer:
    def __init__(
        self,
        writer: Writer,
        flush_interval: float = 30.0,
        max_queue_size: int = 100,
        max_retained: Optional[int] = None,
    ) -> None:
        self._writer = writer
        self.flush_interval = max(0.01, float(flush_interval))
        self.max_queue_size = max(1, int(max_queue_size))
        if max_retained is None:
            max_retained = self.max_queue_size * 10
        self.max_retained = max(self.max_queue_size, int(max_retained))
        self.dropped = 0
        self._queue: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._flushing = False
        self._retry_after = 0.0
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def backing_off(self) -> bool:
        return time.monotonic() < self._retry_after

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._wake.clear()
        self._thread = threading.Thread(target=self._run, name="log-buffer-flush", daemon=True)
        self._thread.start()

    def stop(self, force_flush: bool = True) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=self.flush_interval + 5)
            self._thread = None
        if force_flush:
            self.flush()

    def _run(self) -> None:
        while True:
            woken = self._wake.wait(self.flush_interval)
            self._wake.clear()
            if self._stop.is_set():
                return
            # the timer always retries; size wakes wait out the back-off
            if woken and self.backing_off:
                continue
            self.flush()

    def _trim(self) -> int:
        """Drop the oldest entries above `max_retained`. Caller holds the lock."""
        overflow = len(self._queue) - self.max_retained
        if overflow <= 0:
            return 0
        del self._queue[:overflow]
        self.dropped += overflow
        return overflow

    def log(
        self,
        level: str,
        message: str,
        user_id: Optional[str] = None,
        route: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        try:
            if level not in LOG_LEVELS:
                level = "info"
            entry: Dict[str, Any] = {
                "_id": ObjectId(),
                "timestamp": datetime.now(timezone.utc),
                "level": level,
                "message": str(message),
            }
            if user_id:
                entry["userId"] = user_id
            if route:
                entry["route"] = route
            if data is not None:
                entry["data"] = data
            if ip:
                entry["ip"] = ip
            if user_agent:
                entry["userAgent"] = user_agent

            logger.log(_STDLIB_LEVELS[level], "%s", entry["message"])

            with self._lock:
                self._queue.append(entry)
                dropped = self._trim()
                size = len(self._queue)
            if dropped:
                logger.warning("Log queue full, dropped %d oldest entries", dropped)
            if size >= self.max_queue_size and not self.backing_off:
                self._wake.set()
        except Exception:
            logger.exception("Failed to queue log entry")

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("debug", message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("info", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("warning", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("error", message, **kwargs)

    def flush(self) -> int:
        """Write everything queued so far. Returns how many entries were persisted."""
        with self._lock:
            if self._flushing or not self._queue:
                return 0
            self._flushing = True
            batch = self._queue
            self._queue = []

        try:
            # copies, so fields a driver adds on insert never leak into a retried batch
            self._writer([dict(entry) for entry in batch])
        except Exception as e:
            self._retry_after = time.monotonic() + self.flush_interval
            with self._lock:
                self._queue = batch + self._queue
                dropped = self._trim()
            logger.error("Failed to flush %d log entries, will retry: %s", len(batch), e)
            if dropped:
                logger.warning("Log queue full, dropped %d oldest entries", dropped)
            return 0
        else:
            self._retry_after = 0.0
            return len(batch)
        finally:
            with self._lock:
                self._flushing = False
