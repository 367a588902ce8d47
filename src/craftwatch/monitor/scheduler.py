"""Periodic task runner with skip-on-overlap semantics."""

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

import schedule
import structlog

from craftwatch.metrics import TASK_OVERLAPS

log = structlog.get_logger()


class TaskScheduler:
    """Runs named tasks on fixed periods in a worker pool.

    A tick that arrives while the previous run of the same task is still in
    flight is skipped, so a slow poll never stacks up behind itself.
    Exceptions stop at the task boundary and are logged.
    """

    def __init__(self, max_workers: int = 8):
        self._scheduler = schedule.Scheduler()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="task")
        self._tasks: dict[str, Callable[[], None]] = {}
        self._inflight: dict[str, Future] = {}
        self._lock = threading.Lock()

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    def add(self, name: str, interval: float, func: Callable[[], None]) -> None:
        """Run ``func`` every ``interval`` seconds under ``name``."""
        if name in self._tasks:
            raise ValueError(f"task {name!r} already scheduled")
        self._tasks[name] = func
        self._scheduler.every(interval).seconds.do(self.trigger, name).tag(name)
        log.info("Task scheduled", task=name, interval=interval)

    def remove(self, name: str) -> None:
        self._scheduler.clear(name)
        self._tasks.pop(name, None)

    def trigger(self, name: str) -> Future | None:
        """Submit one run of ``name`` unless the previous one is still running."""
        with self._lock:
            previous = self._inflight.get(name)
            if previous is not None and not previous.done():
                TASK_OVERLAPS.labels(task=name).inc()
                log.debug("Skipping tick, previous run still in flight", task=name)
                return None
            future = self._executor.submit(self._run_task, name)
            self._inflight[name] = future
            return future

    def _run_task(self, name: str) -> None:
        func = self._tasks.get(name)
        if func is None:
            return
        try:
            func()
        except Exception:
            log.exception("Task failed", task=name)

    def run_pending(self) -> None:
        self._scheduler.run_pending()

    def run_all(self) -> list[Future]:
        """Trigger every task once, now. Returns the submitted futures."""
        futures = [self.trigger(name) for name in list(self._tasks)]
        return [f for f in futures if f is not None]

    def run(self, stop_event: threading.Event, tick: float = 0.5) -> None:
        """Drive the schedule until ``stop_event`` is set."""
        while not stop_event.is_set():
            self.run_pending()
            stop_event.wait(tick)

    def shutdown(self, wait: bool = True) -> None:
        self._scheduler.clear()
        self._executor.shutdown(wait=wait, cancel_futures=True)
