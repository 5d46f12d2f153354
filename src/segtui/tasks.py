from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import InvalidTransition
from .media import PreparedData


class TaskStatus(Enum):
    PENDING = "pending"
    LOADING = "loading"
    READY = "ready"
    PROCESSING = "processing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    POSTPONED = "postponed"
    ERROR = "error"


# advance() never lands on these; only an explicit reset brings them back.
DECIDED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.SKIPPED, TaskStatus.ERROR})

PREPARED_STATUSES = frozenset({TaskStatus.READY, TaskStatus.PROCESSING, TaskStatus.COMPLETED})

_TRANSITIONS: frozenset[tuple[TaskStatus, TaskStatus]] = frozenset(
    {
        (TaskStatus.PENDING, TaskStatus.LOADING),
        (TaskStatus.PENDING, TaskStatus.READY),
        (TaskStatus.PENDING, TaskStatus.SKIPPED),
        (TaskStatus.PENDING, TaskStatus.POSTPONED),
        (TaskStatus.LOADING, TaskStatus.READY),
        (TaskStatus.LOADING, TaskStatus.PENDING),
        (TaskStatus.LOADING, TaskStatus.SKIPPED),
        (TaskStatus.LOADING, TaskStatus.POSTPONED),
        (TaskStatus.READY, TaskStatus.PROCESSING),
        (TaskStatus.READY, TaskStatus.SKIPPED),
        (TaskStatus.READY, TaskStatus.POSTPONED),
        (TaskStatus.PROCESSING, TaskStatus.COMPLETED),
        (TaskStatus.PROCESSING, TaskStatus.ERROR),
        (TaskStatus.PROCESSING, TaskStatus.READY),
        (TaskStatus.POSTPONED, TaskStatus.PENDING),
        (TaskStatus.ERROR, TaskStatus.PENDING),
        (TaskStatus.SKIPPED, TaskStatus.PENDING),
    }
)


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return (current, target) in _TRANSITIONS


def check_transition(current: TaskStatus, target: TaskStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition("task", current.value, target.value)


def display_name(path: str) -> str:
    return Path(path).name or path


@dataclass
class Task:
    path: str
    name: str
    status: TaskStatus = TaskStatus.PENDING
    prepared: PreparedData | None = None
    last_error: str | None = None
    result: str | None = None
    times_offered: int = 0

    @classmethod
    def from_path(cls, path: str) -> Task:
        return cls(path=path, name=display_name(path))

    @property
    def is_decided(self) -> bool:
        return self.status in DECIDED_STATUSES


@dataclass(frozen=True)
class TaskView:
    path: str
    name: str
    status: TaskStatus
    prepared: PreparedData | None
    last_error: str | None
    result: str | None


@dataclass(frozen=True)
class BatchSnapshot:
    input_root: str
    output_root: str
    tasks: tuple[TaskView, ...]
    active_index: int

    @property
    def active(self) -> TaskView | None:
        if 0 <= self.active_index < len(self.tasks):
            return self.tasks[self.active_index]
        return None

    @property
    def is_finished(self) -> bool:
        return self.active_index >= len(self.tasks)


def view_of(task: Task) -> TaskView:
    return TaskView(
        path=task.path,
        name=task.name,
        status=task.status,
        prepared=task.prepared,
        last_error=task.last_error,
        result=task.result,
    )
