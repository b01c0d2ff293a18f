# matrix/outbox.py
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from matrix.remote_store import RemoteResult

logger = logging.getLogger(__name__)

MAX_HISTORY = 1000


@dataclass(frozen=True)
class Delivery:
    label: str
    success: bool
    message: str
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Outbox:
    """
    Queue for remote writes nobody waits on.

    A single worker delivers tasks in submission order. Each outcome is kept
    in `deliveries` and handed to the optional callbacks, so callers and
    tests can observe eventual delivery. Nothing is retried.
    """

    def __init__(self, synchronous: bool = False, max_history: int = MAX_HISTORY):
        self.synchronous = synchronous
        self.max_history = max_history
        self._executor = None if synchronous else ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="matrix-outbox"
        )
        self._lock = threading.Lock()
        self._pending: List[Future] = []
        self.deliveries: List[Delivery] = []

    def submit(
        self,
        label: str,
        call: Callable[[], RemoteResult],
        on_success: Optional[Callable[[RemoteResult], None]] = None,
        on_failure: Optional[Callable[[RemoteResult], None]] = None,
    ) -> Future:
        def run() -> RemoteResult:
            try:
                result = call()
            except Exception as e:
                logger.exception(f"Outbox task {label} raised")
                result = RemoteResult(False, str(e))
            self._record(label, result)
            callback = on_success if result.success else on_failure
            if callback is not None:
                try:
                    callback(result)
                except Exception:
                    logger.exception(f"Outbox callback for {label} raised")
            return result

        if self._executor is None:
            future = Future()
            future.set_result(run())
            return future

        future = self._executor.submit(run)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def _record(self, label: str, result: RemoteResult) -> None:
        if result.success:
            logger.info(f"Outbox delivered {label}")
        else:
            logger.error(f"Outbox delivery failed for {label}: {result.message}")
        with self._lock:
            self.deliveries.append(Delivery(label, result.success, result.message))
            if len(self.deliveries) > self.max_history:
                self.deliveries = self.deliveries[-self.max_history:]

    def in_flight(self) -> int:
        with self._lock:
            return sum(1 for f in self._pending if not f.done())

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for everything submitted so far. True when nothing is left in flight."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def failures(self) -> List[Delivery]:
        with self._lock:
            return [d for d in self.deliveries if not d.success]

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_pending)
