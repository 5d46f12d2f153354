from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from .errors import (
    EmptySelection,
    IncompatibleInputs,
    InvalidControllerState,
    PreparationError,
)
from .media import GenerateOptions, MediaBackend, PreparedData, SegmentRange
from .prefetch import Prefetcher
from .progress import GENERATE, ProgressChannel
from .selection import SegmentSelection
from .task_store import TaskStore
from .tasks import TaskStatus, TaskView

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    AWAITING_SELECTION = "awaiting_selection"
    EDITING = "editing"
    GENERATING = "generating"
    AWAITING_DISPOSITION = "awaiting_disposition"
    FINISHED = "finished"


class Disposition(Enum):
    KEEP = "keep"
    DELETE = "delete"


class FailurePolicy(Enum):
    SKIP_AND_CONTINUE = "skip_and_continue"


@dataclass(frozen=True)
class AutomationPolicy:
    on_success: Disposition = Disposition.KEEP
    on_failure: FailurePolicy = FailurePolicy.SKIP_AND_CONTINUE
    force_on_incompatible: bool = True


class OutcomeKind(Enum):
    SUCCEEDED = "succeeded"
    INCOMPATIBLE = "incompatible"
    FAILED = "failed"


@dataclass(frozen=True)
class DispositionOutcome:
    path: str
    disposition: Disposition
    error: str | None = None

    @property
    def deleted(self) -> bool:
        return self.disposition == Disposition.DELETE and self.error is None


@dataclass(frozen=True)
class GenerationOutcome:
    kind: OutcomeKind
    path: str
    message: str
    disposition: DispositionOutcome | None = None


@dataclass(frozen=True)
class BatchSummary:
    total: int
    completed: int
    skipped: int
    failed: int
    remaining: int
    failures: tuple[tuple[str, str], ...]
    disposition_errors: tuple[tuple[str, str], ...]


_EDIT_STATES = frozenset({ControllerState.EDITING})
_SKIP_STATES = frozenset({ControllerState.EDITING, ControllerState.AWAITING_SELECTION})


class PipelineController:
    """Drives one task at a time: load, edit, generate, dispose, advance.

    Transitions happen under the controller lock. Preparation and generation
    run outside it; the GENERATING state keeps other operations out while a
    backend call is in flight.
    """

    def __init__(
        self,
        store: TaskStore,
        backend: MediaBackend,
        prefetcher: Prefetcher,
        *,
        progress: ProgressChannel | None = None,
        policy: AutomationPolicy | None = None,
        options: GenerateOptions | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.prefetcher = prefetcher
        self.progress = progress
        self.policy = policy
        self.options = options or GenerateOptions()
        self.selection = SegmentSelection()
        self.state = ControllerState.AWAITING_SELECTION
        self.pending_decision: IncompatibleInputs | None = None
        self.disposition_errors: list[tuple[str, str]] = []
        self._result: str | None = None
        self._pending_segments: list[SegmentRange] = []
        self._pending_options: GenerateOptions | None = None
        self._lock = threading.RLock()

    @property
    def active(self) -> TaskView | None:
        return self.store.active

    @property
    def prepared(self) -> PreparedData | None:
        task = self.store.active
        return task.prepared if task is not None else None

    def start(self) -> ControllerState:
        with self._lock:
            return self._advance()

    def refresh(self) -> ControllerState:
        with self._lock:
            if self.state == ControllerState.AWAITING_SELECTION:
                task = self.store.active
                if task is not None and task.prepared is not None:
                    self._enter_editing(task)
            return self.state

    def load_active(self, timeout: float | None = None) -> ControllerState:
        with self._lock:
            if self.state == ControllerState.EDITING:
                return self.state
            self._require({ControllerState.AWAITING_SELECTION}, "load a task")
            task = self.store.active
            if task is None:
                raise InvalidControllerState("load a task", "no task is active")
            path = task.path
        self.prefetcher.prepare(path, timeout)
        with self._lock:
            task = self.store.active
            if self.state != ControllerState.AWAITING_SELECTION or task is None or task.path != path:
                return self.state
            if task.prepared is None:
                raise PreparationError(path, "task changed while loading")
            self._enter_editing(task)
            return self.state

    def select_frame(self, frame: int) -> tuple[int, int]:
        with self._lock:
            self._require(_EDIT_STATES, "select frames")
            return self.selection.select_frame(frame)

    def confirm_range(self) -> tuple[int, int]:
        with self._lock:
            self._require(_EDIT_STATES, "confirm a range")
            return self.selection.confirm_range()

    def remove_range(self, index: int) -> tuple[int, int]:
        with self._lock:
            self._require(_EDIT_STATES, "remove a range")
            return self.selection.remove_range(index)

    def cancel_open_range(self) -> None:
        with self._lock:
            self._require(_EDIT_STATES, "cancel a range")
            self.selection.cancel_open_range()

    def generate(self, options: GenerateOptions | None = None) -> GenerationOutcome:
        with self._lock:
            self._require(_EDIT_STATES, "generate")
            if not self.selection:
                raise EmptySelection()
            task = self.store.mark_active(TaskStatus.PROCESSING)
            self.state = ControllerState.GENERATING
            segments = self.selection.segments()
            logger.info("Generating %d segment(s) for %s", len(segments), task.path)
        return self._run_generation(task.path, segments, options or self.options)

    def retry_generation(self, force: bool = True) -> GenerationOutcome:
        with self._lock:
            self._require({ControllerState.GENERATING}, "retry generation")
            if self.pending_decision is None or self._pending_options is None:
                raise InvalidControllerState("retry generation", "generation is still running")
            task = self._active_or_fail("retry generation")
            options = self._pending_options.forced() if force else self._pending_options
            segments = list(self._pending_segments)
            self.pending_decision = None
        return self._run_generation(task.path, segments, options)

    def abandon_generation(self) -> ControllerState:
        with self._lock:
            self._require({ControllerState.GENERATING}, "abandon generation")
            if self.pending_decision is None:
                raise InvalidControllerState("abandon generation", "generation is still running")
            self.store.mark_active(TaskStatus.READY)
            self.pending_decision = None
            self.state = ControllerState.EDITING
            return self.state

    def dispose(self, delete_source: bool) -> DispositionOutcome:
        with self._lock:
            self._require({ControllerState.AWAITING_DISPOSITION}, "choose a disposition")
            return self._dispose(Disposition.DELETE if delete_source else Disposition.KEEP)

    def skip(self) -> ControllerState:
        with self._lock:
            self._require_skippable("skip")
            task = self.store.skip_active()
            logger.info("Skipped %s", task.path)
            self._forget_progress(task.path)
            return self._advance()

    def postpone(self) -> ControllerState:
        with self._lock:
            self._require_skippable("postpone")
            task = self.store.postpone_active()
            logger.info("Postponed %s", task.path)
            return self._advance()

    def retry_failed(self) -> int:
        with self._lock:
            self._require(
                {ControllerState.EDITING, ControllerState.AWAITING_SELECTION, ControllerState.FINISHED},
                "retry failed tasks",
            )
            count = self.store.reset_failed()
            if count and self.state == ControllerState.FINISHED:
                self._advance()
            elif count:
                self.prefetcher.arm()
            return count

    def summary(self) -> BatchSummary:
        counts = self.store.counts()
        total = sum(counts.values())
        completed = counts[TaskStatus.COMPLETED]
        skipped = counts[TaskStatus.SKIPPED]
        failed = counts[TaskStatus.ERROR]
        return BatchSummary(
            total=total,
            completed=completed,
            skipped=skipped,
            failed=failed,
            remaining=total - completed - skipped - failed,
            failures=tuple(self.store.skipped_with_reason),
            disposition_errors=tuple(self.disposition_errors),
        )

    def _run_generation(
        self, path: str, segments: list[SegmentRange], options: GenerateOptions
    ) -> GenerationOutcome:
        report = self.progress.reporter(path, GENERATE) if self.progress else _ignore_progress
        try:
            message = self.backend.generate_output(
                path, segments, self.store.output_root, options, report
            )
        except IncompatibleInputs as exc:
            with self._lock:
                if options.force:
                    return self._fail(path, f"Incompatible inputs: {exc.detail}")
                logger.warning("Incompatible inputs for %s: %s", path, exc.detail)
                self.pending_decision = exc
                self._pending_segments = segments
                self._pending_options = options
            if self.policy is not None and self.policy.force_on_incompatible:
                return self.retry_generation(force=True)
            if self.policy is not None:
                with self._lock:
                    self.pending_decision = None
                    return self._fail(path, f"Incompatible inputs: {exc.detail}")
            return GenerationOutcome(OutcomeKind.INCOMPATIBLE, path, exc.detail)
        except Exception as exc:
            with self._lock:
                return self._fail(path, str(exc) or exc.__class__.__name__)
        with self._lock:
            return self._succeed(path, message)

    def _succeed(self, path: str, message: str) -> GenerationOutcome:
        logger.info("Generated output for %s: %s", path, message)
        self._result = message
        self._pending_options = None
        self._pending_segments = []
        if self.policy is None:
            self.state = ControllerState.AWAITING_DISPOSITION
            return GenerationOutcome(OutcomeKind.SUCCEEDED, path, message)
        disposition = self._dispose(self.policy.on_success)
        return GenerationOutcome(OutcomeKind.SUCCEEDED, path, message, disposition)

    def _fail(self, path: str, reason: str) -> GenerationOutcome:
        logger.error("Generation failed for %s: %s", path, reason)
        self.store.mark_active(TaskStatus.ERROR, error=reason)
        self._forget_progress(path)
        self._pending_options = None
        self._pending_segments = []
        self._advance()
        return GenerationOutcome(OutcomeKind.FAILED, path, reason)

    def _dispose(self, disposition: Disposition) -> DispositionOutcome:
        task = self.store.mark_active(TaskStatus.COMPLETED, result=self._result or "")
        error: str | None = None
        if disposition == Disposition.DELETE:
            try:
                self.backend.delete_source(task.path)
            except OSError as exc:
                error = str(exc) or exc.__class__.__name__
                self.disposition_errors.append((task.path, error))
                logger.error("Could not delete %s: %s", task.path, error)
            else:
                logger.info("Deleted source %s", task.path)
        self._result = None
        self._forget_progress(task.path)
        self._advance()
        return DispositionOutcome(path=task.path, disposition=disposition, error=error)

    def _advance(self) -> ControllerState:
        task = self.store.advance()
        self.selection.clear()
        self.pending_decision = None
        if task is None:
            self.state = ControllerState.FINISHED
            summary = self.summary()
            logger.info(
                "Batch finished: %d completed, %d skipped, %d failed",
                summary.completed,
                summary.skipped,
                summary.failed,
            )
            return self.state
        self.state = ControllerState.AWAITING_SELECTION
        if task.prepared is not None and task.status in {TaskStatus.PENDING, TaskStatus.READY}:
            self._enter_editing(task)
        else:
            self.prefetcher.request(task.path)
        self.prefetcher.arm()
        return self.state

    def _enter_editing(self, task: TaskView) -> None:
        if task.status == TaskStatus.PENDING:
            task = self.store.mark_active(TaskStatus.READY)
        prepared = task.prepared
        self.selection.clear(prepared.frame_count if prepared is not None else None)
        self.state = ControllerState.EDITING

    def _forget_progress(self, path: str) -> None:
        if self.progress is not None:
            self.progress.discard(path)

    def _active_or_fail(self, operation: str) -> TaskView:
        task = self.store.active
        if task is None:
            raise InvalidControllerState(operation, "no task is active")
        return task

    def _require(self, allowed: set[ControllerState] | frozenset[ControllerState], operation: str) -> None:
        if self.state not in allowed:
            raise InvalidControllerState(operation, self.state.value.replace("_", " "))

    def _require_skippable(self, operation: str) -> None:
        self._require(_SKIP_STATES, operation)
        self._active_or_fail(operation)


def _ignore_progress(message: str, percent: float) -> None:
    return None
