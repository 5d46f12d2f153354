from __future__ import annotations

from conftest import FakeBackend
from segtui.app import _offer_key
from segtui.pipeline import ControllerState, PipelineController
from segtui.prefetch import Prefetcher
from segtui.task_store import TaskStore


def test_offer_key_changes_when_the_only_task_is_postponed() -> None:
    backend = FakeBackend(["/videos/only.mp4"], frame_count=20)
    store = TaskStore("/videos", "/out")
    store.initialize(backend.files)
    controller = PipelineController(store, backend, Prefetcher(store, backend, window_size=0))
    controller.start()
    controller.load_active(timeout=5)
    controller.select_frame(2)
    controller.select_frame(6)
    controller.confirm_range()
    before = _offer_key(controller)

    controller.postpone()

    assert controller.state == ControllerState.EDITING
    assert controller.active.path == "/videos/only.mp4"
    assert controller.selection.ranges == []
    assert _offer_key(controller) != before


def test_offer_key_is_none_when_finished() -> None:
    backend = FakeBackend(["/videos/only.mp4"])
    store = TaskStore("/videos", "/out")
    store.initialize(backend.files)
    controller = PipelineController(store, backend, Prefetcher(store, backend, window_size=0))
    controller.start()
    controller.skip()
    assert _offer_key(controller) is None
