from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from .checkpoint import Checkpointer, checkpoint_path, load_checkpoint
from .errors import EmptyBatch
from .media import MediaBackend
from .task_store import TaskStore
from .tasks import DECIDED_STATUSES, BatchSnapshot

logger = logging.getLogger(__name__)


@dataclass
class Batch:
    store: TaskStore
    checkpointer: Checkpointer
    resumed: bool = False
    added: int = 0
    dropped: list[str] = field(default_factory=list)


def default_output_root(input_root: str | Path) -> Path:
    return Path(input_root).expanduser().resolve() / "segments"


def open_batch(
    input_root: str | Path,
    output_root: str | Path | None,
    backend: MediaBackend,
    *,
    variant: str | None = None,
    fresh: bool = False,
) -> Batch:
    """Build the task store for a directory, resuming a matching checkpoint.

    A checkpoint is reused only when it was written for the same input
    directory. Files found since are appended as pending; tasks whose source
    is gone survive only when they were already decided.
    """
    input_path = Path(input_root).expanduser().resolve()
    output_path = (
        Path(output_root).expanduser().resolve()
        if output_root is not None
        else default_output_root(input_path)
    )
    paths = backend.list_media_files(str(input_path))
    output_path.mkdir(parents=True, exist_ok=True)
    checkpointer = Checkpointer(checkpoint_path(output_path, variant))
    store = TaskStore(input_path, output_path)

    snapshot = None if fresh else load_checkpoint(output_path, variant)
    if snapshot is not None and snapshot.input_root != str(input_path):
        logger.warning(
            "Checkpoint %s belongs to %s, starting a new batch",
            checkpointer.path,
            snapshot.input_root,
        )
        snapshot = None

    batch = Batch(store=store, checkpointer=checkpointer)
    reconciled = _reconcile(snapshot, paths, batch.dropped) if snapshot is not None else None
    if reconciled is not None:
        store.restore(reconciled)
        batch.resumed = True
        batch.added = store.append(paths)
        logger.info(
            "Resumed batch from %s: %d task(s), %d new, %d dropped",
            checkpointer.path,
            len(store),
            batch.added,
            len(batch.dropped),
        )
    else:
        if not paths:
            raise EmptyBatch(str(input_path))
        store.initialize(paths)
        logger.info("Started batch for %s with %d task(s)", input_path, len(store))

    store.set_listener(checkpointer)
    checkpointer.write(store.snapshot())
    return batch


def _reconcile(
    snapshot: BatchSnapshot, paths: list[str], dropped: list[str]
) -> BatchSnapshot | None:
    present = set(paths)
    kept = []
    index = snapshot.active_index
    for position, task in enumerate(snapshot.tasks):
        if task.path in present or task.status in DECIDED_STATUSES:
            kept.append(task)
            continue
        dropped.append(task.path)
        logger.info("Dropping task with missing source: %s", task.path)
        if position < snapshot.active_index:
            index -= 1
    if not kept:
        return None
    return replace(snapshot, tasks=tuple(kept), active_index=min(index, len(kept)))
