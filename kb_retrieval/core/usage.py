"""
Usage counting for retrieved documents.
Increments go through a bounded queue drained by one background worker, off the request path.
"""

import queue
import threading
from typing import Callable, Dict, Iterable, Optional

from ..util.logging import logger

_STOP = object()


class UsageTracker:
    """
    Best-effort usage counter.

    record() never blocks: when the queue is full the update is dropped and
    counted. A failing sink is logged and counted, never raised to callers.
    """

    def __init__(self, sink: Optional[Callable[[str, int], None]] = None, queue_size: int = 1000,
                 cache_max_size: int = 100, loader: Optional[Callable[[str], Optional[int]]] = None):
        """
        Initialize the tracker.

        Args:
            sink: Optional persistence hook called as sink(document_id, new_count)
            queue_size: Maximum pending updates
            cache_max_size: Usage counts kept in memory before trimming to the most used
            loader: Optional lookup of the persisted count for ids not in the cache
        """
        self.sink = sink
        self.loader = loader
        self.cache_max_size = cache_max_size
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self.processed = 0
        self.dropped = 0
        self.failed = 0

    def start(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="usage-tracker", daemon=True)
            self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        worker = self._worker
        if worker is None or not worker.is_alive():
            return
        # Blocking put: the worker is draining, so space frees up
        self._queue.put(_STOP)
        worker.join(timeout)
        self._worker = None

    def record(self, document_ids: Iterable[str]) -> None:
        """Queue one increment per id without waiting."""
        self.start()
        for document_id in document_ids:
            try:
                self._queue.put_nowait(document_id)
            except queue.Full:
                self.dropped += 1
                logger.warning(f"Usage queue full, dropping increment for {document_id}")

    def flush(self) -> None:
        """Block until every queued increment has been applied."""
        if self._worker is None:
            return
        self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._apply(item)
            finally:
                self._queue.task_done()

    def _apply(self, document_id: str) -> None:
        base = self._counts.get(document_id)
        if base is None:
            base = self._load(document_id)

        with self._lock:
            count = self._counts.get(document_id, base) + 1
            self._counts[document_id] = count
            if len(self._counts) > self.cache_max_size:
                self._cleanup(keep=document_id)

        if self.sink is not None:
            try:
                self.sink(document_id, count)
            except Exception as e:
                self.failed += 1
                logger.log_operation(
                    "usage.increment", "failed", {"record_id": document_id, "error": str(e)[:200]}
                )
                return
        self.processed += 1

    def _load(self, document_id: str) -> int:
        if self.loader is None:
            return 0
        try:
            return self.loader(document_id) or 0
        except Exception as e:
            logger.log_operation(
                "usage.load", "failed", {"record_id": document_id, "error": str(e)[:200]}
            )
            return 0

    def _cleanup(self, keep: Optional[str] = None) -> None:
        """Keep the most used entries, plus keep when given. Caller holds the lock."""
        ranked = sorted(
            ((k, v) for k, v in self._counts.items() if k != keep), key=lambda item: item[1], reverse=True
        )
        if keep is None:
            self._counts = dict(ranked[:self.cache_max_size])
            return
        kept = dict(ranked[:max(0, self.cache_max_size - 1)])
        kept[keep] = self._counts[keep]
        self._counts = kept

    def get_count(self, document_id: str) -> int:
        return self._counts.get(document_id, 0)

    def set_count(self, document_id: str, count: int) -> None:
        with self._lock:
            self._counts[document_id] = count
            if len(self._counts) > self.cache_max_size:
                self._cleanup()

    def forget(self, document_id: str) -> None:
        with self._lock:
            self._counts.pop(document_id, None)

    def clear(self) -> None:
        with self._lock:
            self._counts.clear()

    def stats(self) -> Dict[str, int]:
        return {
            "cache_size": len(self._counts),
            "pending": self._queue.qsize(),
            "processed": self.processed,
            "dropped": self.dropped,
            "failed": self.failed,
        }
