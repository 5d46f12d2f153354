from __future__ import annotations

import math
import queue
import threading
from dataclasses import dataclass

from .media import ProgressCallback

PREPARE = "prepare"
GENERATE = "generate"


@dataclass(frozen=True)
class ProgressUpdate:
    path: str
    operation: str
    message: str
    percent: float


class ProgressChannel:
    """One queue per task path, polled by the UI.

    Percent never decreases within one operation on one path; a new operation
    starts from zero after begin().
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._maxsize = maxsize
        self._queues: dict[str, queue.Queue[ProgressUpdate]] = {}
        self._floors: dict[tuple[str, str], float] = {}
        self._latest: dict[str, ProgressUpdate] = {}
        self._lock = threading.Lock()

    def begin(self, path: str, operation: str) -> None:
        with self._lock:
            self._floors[(path, operation)] = 0.0

    def publish(self, path: str, operation: str, message: str, percent: float) -> ProgressUpdate:
        with self._lock:
            key = (path, operation)
            floor = self._floors.get(key, 0.0)
            value = max(floor, _clamp_percent(percent)) if math.isfinite(percent) else floor
            self._floors[key] = value
            update = ProgressUpdate(path=path, operation=operation, message=message, percent=value)
            self._latest[path] = update
            channel = self._queues.setdefault(path, queue.Queue(maxsize=self._maxsize))
            while True:
                try:
                    channel.put_nowait(update)
                    break
                except queue.Full:
                    try:
                        channel.get_nowait()
                    except queue.Empty:
                        pass
            return update

    def reporter(self, path: str, operation: str) -> ProgressCallback:
        self.begin(path, operation)

        def report(message: str, percent: float) -> None:
            self.publish(path, operation, message, percent)

        return report

    def drain(self, path: str | None = None) -> list[ProgressUpdate]:
        with self._lock:
            if path is None:
                channels = list(self._queues.values())
            else:
                channel = self._queues.get(path)
                channels = [channel] if channel is not None else []
        updates: list[ProgressUpdate] = []
        for channel in channels:
            while True:
                try:
                    updates.append(channel.get_nowait())
                except queue.Empty:
                    break
        return updates

    def latest(self, path: str) -> ProgressUpdate | None:
        with self._lock:
            return self._latest.get(path)

    def discard(self, path: str) -> None:
        with self._lock:
            self._queues.pop(path, None)
            self._latest.pop(path, None)
            for key in [key for key in self._floors if key[0] == path]:
                del self._floors[key]


def _clamp_percent(percent: float) -> float:
    return max(0.0, min(100.0, float(percent)))
