from __future__ import annotations

import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Callable, Iterable

from .errors import EmptyBatch, InvalidTransition, ValidationError
from .media import PreparedData
from .tasks import (
    PREPARED_STATUSES,
    BatchSnapshot,
    Task,
    TaskStatus,
    TaskView,
    check_transition,
    view_of,
)

logger = logging.getLogger(__name__)

Listener = Callable[[BatchSnapshot], None]


class TaskStore:
    """Ordered task list plus the active index.

    Every mutation runs under one lock and hands a fresh snapshot to the
    listener (normally a Checkpointer) before the lock is released, so
    checkpoint writes follow mutation order.
    """

    def __init__(
        self,
        input_root: str | Path,
        output_root: str | Path,
        on_change: Listener | None = None,
    ) -> None:
        self.input_root = str(input_root)
        self.output_root = str(output_root)
        self.skipped_with_reason: list[tuple[str, str]] = []
        self._tasks: list[Task] = []
        self._active_index = 0
        self._current: Task | None = None
        self._lock = threading.RLock()
        self._on_change = on_change

    def initialize(self, paths: Iterable[str]) -> None:
        unique = list(dict.fromkeys(str(path) for path in paths))
        if not unique:
            raise EmptyBatch(self.input_root)
        with self._lock:
            self._tasks = [Task.from_path(path) for path in unique]
            self._active_index = 0
            self._current = None
            self.skipped_with_reason = []
            self._commit()

    def restore(self, snapshot: BatchSnapshot) -> None:
        if not snapshot.tasks:
            raise EmptyBatch(snapshot.input_root)
        with self._lock:
            self._tasks = [_restored_task(view) for view in snapshot.tasks]
            self._active_index = min(snapshot.active_index, len(self._tasks))
            self._current = None
            self.skipped_with_reason = [
                (task.path, task.last_error)
                for task in self._tasks
                if task.status == TaskStatus.ERROR and task.last_error
            ]
            self._commit()

    def append(self, paths: Iterable[str]) -> int:
        with self._lock:
            known = {task.path for task in self._tasks}
            added = 0
            for path in paths:
                path = str(path)
                if path in known:
                    continue
                known.add(path)
                self._tasks.append(Task.from_path(path))
                added += 1
            if added:
                self._commit()
            return added

    def set_listener(self, listener: Listener | None) -> None:
        with self._lock:
            self._on_change = listener

    @property
    def active_index(self) -> int:
        with self._lock:
            return self._active_index

    @property
    def active(self) -> TaskView | None:
        with self._lock:
            task = self._active_task()
            return view_of(task) if task is not None else None

    @property
    def is_finished(self) -> bool:
        with self._lock:
            return self._active_index >= len(self._tasks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def snapshot(self) -> BatchSnapshot:
        with self._lock:
            return self._snapshot()

    def get(self, path: str) -> TaskView | None:
        with self._lock:
            task = self._find(path)
            return view_of(task) if task is not None else None

    def times_offered(self, path: str) -> int:
        with self._lock:
            task = self._find(path)
            return task.times_offered if task is not None else 0

    def window(self, size: int) -> list[TaskView]:
        with self._lock:
            start = self._active_index + 1
            return [view_of(task) for task in self._tasks[start : start + max(0, size)]]

    def counts(self) -> Counter[TaskStatus]:
        with self._lock:
            return Counter(task.status for task in self._tasks)

    def advance(self) -> TaskView | None:
        with self._lock:
            index = self._active_index
            while index < len(self._tasks) and self._tasks[index].is_decided:
                index += 1
            self._active_index = index
            if index >= len(self._tasks):
                self._current = None
                self._commit()
                return None
            task = self._tasks[index]
            if task is not self._current:
                task.times_offered += 1
                self._current = task
            self._commit()
            return view_of(task)

    def mark_active(
        self,
        status: TaskStatus,
        error: str | None = None,
        result: str | None = None,
    ) -> TaskView:
        with self._lock:
            task = self._require_active()
            check_transition(task.status, status)
            if status == TaskStatus.READY and task.prepared is None:
                raise ValidationError(f"{task.name} has no prepared frames")
            if status == TaskStatus.PROCESSING and self._processing_task() is not None:
                raise InvalidTransition("task", task.status.value, status.value)
            if status == TaskStatus.COMPLETED and result is None:
                raise ValidationError("Completing a task requires the generation result")
            if status == TaskStatus.ERROR and not error:
                raise ValidationError("Marking a task as failed requires an error")
            task.status = status
            if status == TaskStatus.COMPLETED:
                task.result = result
                task.last_error = None
            elif status == TaskStatus.ERROR:
                task.last_error = error
                task.prepared = None
                self.skipped_with_reason.append((task.path, error))
            self._commit()
            return view_of(task)

    def skip_active(self, reason: str | None = None) -> TaskView:
        with self._lock:
            task = self._require_active()
            check_transition(task.status, TaskStatus.SKIPPED)
            task.status = TaskStatus.SKIPPED
            task.prepared = None
            if reason:
                task.last_error = reason
                self.skipped_with_reason.append((task.path, reason))
            self._commit()
            return view_of(task)

    def postpone_active(self) -> TaskView:
        with self._lock:
            task = self._require_active()
            check_transition(task.status, TaskStatus.POSTPONED)
            task.status = TaskStatus.POSTPONED
            self._tasks.pop(self._active_index)
            task.status = TaskStatus.PENDING
            self._tasks.append(task)
            self._current = None
            self._commit()
            return view_of(task)

    def begin_loading(self, path: str) -> bool:
        with self._lock:
            task = self._find(path)
            if task is None or task.status != TaskStatus.PENDING or task.prepared is not None:
                return False
            task.status = TaskStatus.LOADING
            self._commit()
            return True

    def finish_loading(self, path: str, prepared: PreparedData) -> TaskView | None:
        with self._lock:
            task = self._find(path)
            if task is None:
                return None
            if task.status in {TaskStatus.PENDING, TaskStatus.LOADING}:
                task.prepared = prepared
                task.status = TaskStatus.READY
                self._commit()
            elif task.status in PREPARED_STATUSES and task.prepared is None:
                task.prepared = prepared
                self._commit()
            return view_of(task)

    def fail_loading(self, path: str, reason: str | None = None) -> TaskView | None:
        with self._lock:
            task = self._find(path)
            if task is None:
                return None
            if task.status == TaskStatus.LOADING:
                task.status = TaskStatus.PENDING
                self._commit()
                logger.debug("Back to pending after failed preparation: %s (%s)", path, reason)
            return view_of(task)

    def reset(self, path: str) -> TaskView:
        with self._lock:
            task = self._find(path)
            if task is None:
                raise ValidationError(f"Unknown task: {path}")
            self._reset(task)
            self._commit()
            return view_of(task)

    def reset_failed(self) -> int:
        with self._lock:
            failed = [task for task in self._tasks if task.status == TaskStatus.ERROR]
            for task in failed:
                self._reset(task)
            if failed:
                self._commit()
            return len(failed)

    def _reset(self, task: Task) -> None:
        check_transition(task.status, TaskStatus.PENDING)
        index = self._tasks.index(task)
        self._tasks.pop(index)
        if index < self._active_index:
            self._active_index -= 1
        task.status = TaskStatus.PENDING
        task.last_error = None
        task.prepared = None
        self.skipped_with_reason = [
            entry for entry in self.skipped_with_reason if entry[0] != task.path
        ]
        self._tasks.append(task)
        if self._current is task:
            self._current = None

    def _active_task(self) -> Task | None:
        if 0 <= self._active_index < len(self._tasks):
            return self._tasks[self._active_index]
        return None

    def _require_active(self) -> Task:
        task = self._active_task()
        if task is None:
            raise ValidationError("No active task")
        return task

    def _processing_task(self) -> Task | None:
        for task in self._tasks:
            if task.status == TaskStatus.PROCESSING:
                return task
        return None

    def _find(self, path: str) -> Task | None:
        for task in self._tasks:
            if task.path == path:
                return task
        return None

    def _snapshot(self) -> BatchSnapshot:
        return BatchSnapshot(
            input_root=self.input_root,
            output_root=self.output_root,
            tasks=tuple(view_of(task) for task in self._tasks),
            active_index=self._active_index,
        )

    def _commit(self) -> None:
        if self._on_change is not None:
            self._on_change(self._snapshot())


def _restored_task(view: TaskView) -> Task:
    status = view.status
    prepared = view.prepared
    # Interrupted work is offered again; generation restarts from the editor.
    if status in {TaskStatus.LOADING, TaskStatus.POSTPONED, TaskStatus.PROCESSING}:
        status = TaskStatus.READY if prepared is not None else TaskStatus.PENDING
    elif status == TaskStatus.READY and prepared is None:
        status = TaskStatus.PENDING
    elif status in {TaskStatus.SKIPPED, TaskStatus.ERROR}:
        prepared = None
    if status != view.status:
        logger.debug("Restored %s as %s (was %s)", view.path, status.value, view.status.value)
    return Task(
        path=view.path,
        name=view.name,
        status=status,
        prepared=prepared,
        last_error=view.last_error,
        result=view.result,
    )
