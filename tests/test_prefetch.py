from __future__ import annotations

import threading

import pytest

from conftest import FakeBackend
from segtui.errors import PreparationError
from segtui.prefetch import Prefetcher
from segtui.progress import PREPARE, ProgressChannel
from segtui.task_store import TaskStore
from segtui.tasks import TaskStatus

PATHS = ["/videos/a.mp4", "/videos/b.mp4", "/videos/c.mp4", "/videos/d.mp4"]


def _setup(window: int = 2) -> tuple[TaskStore, FakeBackend, Prefetcher]:
    backend = FakeBackend(PATHS, frame_count=20)
    store = TaskStore("/videos", "/out")
    store.initialize(PATHS)
    store.advance()
    return store, backend, Prefetcher(store, backend, window_size=window)


def test_arm_prepares_window_in_background() -> None:
    store, backend, prefetcher = _setup(window=2)
    started = prefetcher.arm()
    assert started == PATHS[1:3]
    assert prefetcher.wait_idle(5)
    assert store.get(PATHS[1]).status == TaskStatus.READY
    assert store.get(PATHS[2]).prepared is not None
    assert store.get(PATHS[3]).status == TaskStatus.PENDING
    assert backend.prepare_calls[PATHS[3]] == 0


def test_zero_window_prefetches_nothing() -> None:
    store, backend, prefetcher = _setup(window=0)
    assert prefetcher.arm() == []
    assert sum(backend.prepare_calls.values()) == 0


def test_arm_skips_prepared_tasks() -> None:
    store, backend, prefetcher = _setup(window=1)
    prefetcher.arm()
    prefetcher.wait_idle(5)
    assert prefetcher.arm() == []
    assert backend.prepare_calls[PATHS[1]] == 1


def test_prepare_joins_inflight_preparation() -> None:
    store, backend, prefetcher = _setup(window=1)
    gate = threading.Event()
    backend.gates[PATHS[1]] = gate
    prefetcher.arm()
    assert prefetcher.is_inflight(PATHS[1])
    assert store.get(PATHS[1]).status == TaskStatus.LOADING
    results = []
    waiter = threading.Thread(target=lambda: results.append(prefetcher.prepare(PATHS[1], 5)))
    waiter.start()
    gate.set()
    waiter.join(5)
    assert results and results[0].frame_count == 20
    assert backend.prepare_calls[PATHS[1]] == 1


def test_prepare_returns_cached_data_without_backend_call() -> None:
    store, backend, prefetcher = _setup()
    first = prefetcher.prepare(PATHS[0], 5)
    second = prefetcher.prepare(PATHS[0], 5)
    assert first is second
    assert backend.prepare_calls[PATHS[0]] == 1


def test_background_failure_leaves_task_pending() -> None:
    store, backend, prefetcher = _setup(window=1)
    backend.prepare_failures[PATHS[1]] = 1
    prefetcher.arm()
    prefetcher.wait_idle(5)
    task = store.get(PATHS[1])
    assert task.status == TaskStatus.PENDING
    assert task.prepared is None
    assert prefetcher.arm() == []


def test_unexpected_backend_error_returns_task_to_pending() -> None:
    store, backend, prefetcher = _setup(window=1)
    backend.prepare_errors[PATHS[1]] = KeyError("width")
    prefetcher.arm()
    assert prefetcher.wait_idle(5)
    task = store.get(PATHS[1])
    assert task.status == TaskStatus.PENDING
    assert not prefetcher.is_inflight(PATHS[1])
    prepared = prefetcher.prepare(PATHS[1], 5)
    assert prepared.frame_count == 20


def test_on_demand_unexpected_error_raises_preparation_error() -> None:
    store, backend, prefetcher = _setup()
    backend.prepare_errors[PATHS[0]] = TypeError("no video stream")
    with pytest.raises(PreparationError) as excinfo:
        prefetcher.prepare(PATHS[0], 5)
    assert excinfo.value.reason == "no video stream"
    assert store.get(PATHS[0]).status == TaskStatus.PENDING


def test_on_demand_prepare_retries_after_background_failure() -> None:
    store, backend, prefetcher = _setup(window=1)
    backend.prepare_failures[PATHS[1]] = 1
    prefetcher.arm()
    prefetcher.wait_idle(5)
    prepared = prefetcher.prepare(PATHS[1], 5)
    assert prepared.frame_count == 20
    assert backend.prepare_calls[PATHS[1]] == 2
    assert store.get(PATHS[1]).status == TaskStatus.READY


def test_on_demand_failure_raises() -> None:
    store, backend, prefetcher = _setup()
    backend.prepare_failures[PATHS[0]] = 1
    with pytest.raises(PreparationError) as excinfo:
        prefetcher.prepare(PATHS[0], 5)
    assert "decoder exploded" in str(excinfo.value)
    assert store.get(PATHS[0]).status == TaskStatus.PENDING


def test_unknown_path_raises() -> None:
    _, _, prefetcher = _setup()
    with pytest.raises(PreparationError):
        prefetcher.prepare("/videos/missing.mp4", 1)


def test_result_lands_after_task_leaves_window() -> None:
    store, backend, prefetcher = _setup(window=1)
    gate = threading.Event()
    backend.gates[PATHS[1]] = gate
    prefetcher.arm()
    store.skip_active()
    store.advance()
    store.postpone_active()
    gate.set()
    prefetcher.wait_idle(5)
    task = store.get(PATHS[1])
    assert task.status == TaskStatus.READY
    assert task.prepared is not None


def test_progress_is_published_per_task() -> None:
    backend = FakeBackend(PATHS[:2], frame_count=5)
    store = TaskStore("/videos", "/out")
    store.initialize(PATHS[:2])
    store.advance()
    progress = ProgressChannel()
    prefetcher = Prefetcher(store, backend, progress, window_size=1)
    prefetcher.arm()
    prefetcher.wait_idle(5)
    updates = progress.drain(PATHS[1])
    assert [update.operation for update in updates] == [PREPARE, PREPARE]
    assert updates[-1].percent == 100.0
    assert progress.drain(PATHS[0]) == []
