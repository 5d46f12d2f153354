from __future__ import annotations

import logging
import threading

from .errors import PreparationError
from .media import MediaBackend, PreparedData
from .progress import PREPARE, ProgressChannel
from .task_store import TaskStore
from .tasks import TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 2


class _Flight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: PreparedData | None = None
        self.error: str | None = None


class Prefetcher:
    """Prepares upcoming tasks in the background.

    At most one preparation runs per path; later requests for the same path
    join it. Each preparation gets its own daemon thread, so a stuck backend
    call holds up only its own task. Results always land on the task through
    the store, even when the task has left the window by then.
    """

    def __init__(
        self,
        store: TaskStore,
        backend: MediaBackend,
        progress: ProgressChannel | None = None,
        *,
        window_size: int = DEFAULT_WINDOW,
    ) -> None:
        self.window_size = max(0, window_size)
        self._store = store
        self._backend = backend
        self._progress = progress
        self._inflight: dict[str, _Flight] = {}
        self._failed: set[str] = set()
        self._lock = threading.Lock()

    def arm(self, window_size: int | None = None) -> list[str]:
        size = self.window_size if window_size is None else max(0, window_size)
        started: list[str] = []
        for task in self._store.window(size):
            if task.status != TaskStatus.PENDING or task.prepared is not None:
                continue
            with self._lock:
                if task.path in self._failed:
                    continue
            _, created = self._start(task.path, background=True)
            if created:
                started.append(task.path)
        return started

    def request(self, path: str) -> bool:
        with self._lock:
            self._failed.discard(path)
        _, created = self._start(path, background=False)
        return created

    def prepare(self, path: str, timeout: float | None = None) -> PreparedData:
        task = self._store.get(path)
        if task is None:
            raise PreparationError(path, "unknown task")
        if task.prepared is not None:
            return task.prepared
        with self._lock:
            self._failed.discard(path)
        flight, _ = self._start(path, background=False)
        if flight is None:
            task = self._store.get(path)
            if task is not None and task.prepared is not None:
                return task.prepared
            raise PreparationError(path, "task is no longer pending")
        if not flight.done.wait(timeout):
            raise PreparationError(path, "timed out waiting for preparation")
        if flight.error is not None:
            raise PreparationError(path, flight.error)
        if flight.result is None:
            raise PreparationError(path, "preparation did not complete")
        return flight.result

    def is_inflight(self, path: str) -> bool:
        with self._lock:
            return path in self._inflight

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._lock:
            flights = list(self._inflight.values())
        return all(flight.done.wait(timeout) for flight in flights)

    def _start(self, path: str, *, background: bool) -> tuple[_Flight | None, bool]:
        with self._lock:
            flight = self._inflight.get(path)
            if flight is not None:
                return flight, False
            task = self._store.get(path)
            if task is None or task.prepared is not None:
                return None, False
            flight = _Flight()
            self._inflight[path] = flight
        self._store.begin_loading(path)
        thread = threading.Thread(
            target=self._run,
            args=(path, flight, background),
            name=f"prepare:{path}",
            daemon=True,
        )
        thread.start()
        return flight, True

    def _run(self, path: str, flight: _Flight, background: bool) -> None:
        report = self._progress.reporter(path, PREPARE) if self._progress else _ignore_progress
        try:
            prepared = self._backend.prepare_task(path, report)
        except Exception as exc:
            flight.error = _describe(exc)
            self._store.fail_loading(path, flight.error)
            if background:
                with self._lock:
                    self._failed.add(path)
                logger.warning("Prefetch failed for %s: %s", path, flight.error)
            else:
                logger.error("Preparation failed for %s: %s", path, flight.error)
        else:
            flight.result = prepared
            self._store.finish_loading(path, prepared)
            logger.debug("Prepared %s (%d frames)", path, prepared.frame_count)
        finally:
            with self._lock:
                self._inflight.pop(path, None)
            flight.done.set()


def _describe(exc: BaseException) -> str:
    if isinstance(exc, PreparationError):
        return exc.reason
    return str(exc) or exc.__class__.__name__


def _ignore_progress(message: str, percent: float) -> None:
    return None
