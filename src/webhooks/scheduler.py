import heapq
import itertools
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(order=True)
class ScheduledTask:
    due: float
    seq: int
    fn: Callable = field(compare=False)
    args: tuple = field(compare=False, default=())
    key: str | None = field(compare=False, default=None)
    cancelled: bool = field(compare=False, default=False)


class DeliveryScheduler:
    """Delayed-task queue that runs jobs off the request path.

    After ``start()`` a timer thread waits for the earliest due task and hands
    it to a worker pool. Without ``start()`` nothing runs on its own and
    ``run_due()`` executes due tasks on the calling thread, which together with
    an injected ``clock`` lets tests step through retry schedules.

    Tasks live in memory only and are lost on restart.
    """

    def __init__(self, max_workers: int = 8, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._max_workers = max_workers
        self._heap: list[ScheduledTask] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._executor: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._running = False

    def now(self) -> float:
        return self._clock()

    def schedule(self, delay: float, fn: Callable, *args, key: str | None = None) -> ScheduledTask:
        """Run ``fn(*args)`` once ``delay`` seconds have passed."""
        task = ScheduledTask(
            due=self._clock() + max(delay, 0.0),
            seq=next(self._seq),
            fn=fn,
            args=args,
            key=key,
        )
        with self._cond:
            heapq.heappush(self._heap, task)
            self._cond.notify()
        return task

    def cancel(self, key: str) -> int:
        """Drop every queued task carrying ``key``. Returns how many were dropped."""
        dropped = 0
        with self._cond:
            for task in self._heap:
                if task.key == key and not task.cancelled:
                    task.cancelled = True
                    dropped += 1
        return dropped

    def pending(self, key: str | None = None) -> list[ScheduledTask]:
        """Queued, non-cancelled tasks in due order."""
        with self._cond:
            tasks = sorted(t for t in self._heap if not t.cancelled)
        return [t for t in tasks if key is None or t.key == key]

    def run_due(self) -> int:
        """Run every task that is due now on the calling thread.

        Tasks scheduled by a running task are picked up in the same call when
        they are already due.
        """
        ran = 0
        while True:
            task = self._pop_due()
            if task is None:
                return ran
            self._run(task)
            ran += 1

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="webhook-delivery",
        )
        self._thread = threading.Thread(target=self._loop, name="delivery-scheduler", daemon=True)
        self._thread.start()

    def stop(self, wait: bool = True) -> None:
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        if self._executor:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def _pop_due(self) -> ScheduledTask | None:
        with self._cond:
            while self._heap and self._heap[0].cancelled:
                heapq.heappop(self._heap)
            if self._heap and self._heap[0].due <= self._clock():
                return heapq.heappop(self._heap)
        return None

    def _loop(self) -> None:
        while True:
            with self._cond:
                while self._running:
                    while self._heap and self._heap[0].cancelled:
                        heapq.heappop(self._heap)
                    if self._heap and self._heap[0].due <= self._clock():
                        break
                    timeout = self._heap[0].due - self._clock() if self._heap else None
                    self._cond.wait(timeout)
                if not self._running:
                    return
                task = heapq.heappop(self._heap)
            self._executor.submit(self._run, task)

    def _run(self, task: ScheduledTask) -> None:
        if task.cancelled:
            return
        try:
            task.fn(*task.args)
        except Exception:
            logger.exception("Scheduled task %s failed", getattr(task.fn, "__name__", task.fn))
