from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.theme import Theme
from textual.widgets import Label, ListItem, ListView, ProgressBar, Static
from textual_image.widget import Image as PreviewImage

from .batch import Batch, default_output_root, open_batch
from .checkpoint import checkpoint_path, load_checkpoint
from .config import ON_SUCCESS_CHOICES, load_config
from .errors import SegtuiError
from .ffmpeg_backend import FfmpegBackend
from .logs import configure_logging
from .media import FrameInfo, GenerateOptions
from .paths import config_path, log_path
from .pipeline import (
    AutomationPolicy,
    ControllerState,
    Disposition,
    GenerationOutcome,
    OutcomeKind,
    PipelineController,
)
from .prefetch import Prefetcher
from .progress import ProgressChannel
from .selection import CoveredRun, FrameEntry
from .tasks import BatchSnapshot, TaskStatus, TaskView
from .ui.screens import DispositionScreen, HelpScreen, IncompatibleScreen, SummaryScreen

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2
TIP_TEXT = "Tip: press ? for help"
HELP_TEXT = """Keyboard shortcuts
q  quit (progress is saved after every step)
?  help

Frames
up/down  move through frames
space  add the highlighted frame to the open range
enter  confirm the open range
escape  drop the open range
x  remove the confirmed range under the cursor

Task
g  generate segments for the confirmed ranges
s  skip this file
p  postpone this file to the end of the batch
r  retry loading a file that failed to prepare
f  retry every failed file

Confirmed ranges collapse into a single [start-end] row.
Ranges may touch but never share a frame.
"""

STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.LOADING: "cyan",
    TaskStatus.READY: "bold",
    TaskStatus.PROCESSING: "yellow",
    TaskStatus.COMPLETED: "green",
    TaskStatus.SKIPPED: "dim italic",
    TaskStatus.POSTPONED: "magenta",
    TaskStatus.ERROR: "red",
}

TOKYO_NIGHT_THEME = Theme(
    name="tokyo-night",
    primary="#7aa2f7",
    secondary="#7dcfff",
    accent="#bb9af7",
    warning="#e0af68",
    error="#f7768e",
    success="#9ece6a",
    foreground="#c0caf5",
    background="#1a1b26",
    surface="#1f2335",
    panel="#24283b",
    boost="#2f334d",
)


class TaskListItem(ListItem):
    def __init__(self, task: TaskView, active: bool) -> None:
        self.task_path = task.path
        self._label = Label(_format_task_label(task, active))
        super().__init__(self._label, classes="task-item")

    def refresh_label(self, task: TaskView, active: bool) -> None:
        self._label.update(_format_task_label(task, active))


class FrameListItem(ListItem):
    def __init__(self, entry: FrameEntry, open_range: tuple[int, int] | None) -> None:
        self.entry = entry
        self._label = Label(_format_frame_label(entry, open_range))
        classes = "frame-run" if isinstance(entry, CoveredRun) else "frame-item"
        super().__init__(self._label, classes=classes)

    def refresh_label(self, open_range: tuple[int, int] | None) -> None:
        self._label.update(_format_frame_label(self.entry, open_range))


class SegtuiApp(App):
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("space", "select_frame", "Select"),
        ("enter", "confirm_range", "Confirm"),
        ("escape", "cancel_range", "Cancel Range"),
        ("x", "remove_range", "Remove Range"),
        ("g", "generate", "Generate"),
        ("s", "skip", "Skip"),
        ("p", "postpone", "Postpone"),
        ("r", "reload_task", "Reload"),
        ("f", "retry_failed", "Retry Failed"),
        ("?", "help", "Help"),
    ]

    CSS = """
    Screen {
        background: $background;
        color: $text;
    }

    #root {
        height: 100%;
    }

    #main {
        height: 1fr;
        padding: 1 1;
    }

    #left, #middle, #right {
        padding: 1 1;
        background: $surface;
    }

    #left {
        width: 30%;
        border: round $secondary;
    }

    #middle {
        width: 30%;
        border: round $primary;
        background: $panel;
    }

    #right {
        width: 40%;
        border: round $accent;
    }

    #task_list, #frame_list {
        height: 1fr;
    }

    ListView {
        background: transparent;
    }

    ListView > .list-item {
        padding: 0 1;
    }

    .frame-run {
        color: $success;
    }

    #frame_image {
        width: 100%;
        height: 1fr;
    }

    #frame_text {
        height: auto;
        color: $text-muted;
    }

    #progress {
        width: 100%;
        height: 1;
        padding: 0 1;
    }

    #status_bar {
        height: 1;
        padding: 0 1;
        background: $boost;
        color: $text;
    }

    .hidden {
        display: none;
    }
    """

    def __init__(
        self,
        controller: PipelineController,
        progress: ProgressChannel,
        *,
        batch: Batch | None = None,
        default_delete: bool = False,
    ) -> None:
        super().__init__()
        self.register_theme(TOKYO_NIGHT_THEME)
        self.theme = TOKYO_NIGHT_THEME.name
        self.controller = controller
        self.progress = progress
        self.batch = batch
        self.default_delete = default_delete
        self._task_list: ListView | None = None
        self._frame_list: ListView | None = None
        self._frame_image: PreviewImage | None = None
        self._frame_text: Static | None = None
        self._progress_bar: ProgressBar | None = None
        self._status_bar: Static | None = None
        self._shown_snapshot: BatchSnapshot | None = None
        self._shown_offer: tuple[str, int] | None = None
        self._loading: str | None = None
        self._busy = False
        self._summary_shown = False

    def compose(self) -> ComposeResult:
        with Vertical(id="root"):
            with Horizontal(id="main"):
                with Vertical(id="left"):
                    yield Label("Files", id="tasks_label")
                    yield ListView(id="task_list")
                with Vertical(id="middle"):
                    yield Label("Frames", id="frames_label")
                    yield ListView(id="frame_list")
                    yield Label("", id="ranges_label")
                with Vertical(id="right"):
                    yield PreviewImage(None, id="frame_image")
                    yield Static("Waiting for frames...", id="frame_text")
            yield ProgressBar(total=100, show_eta=False, id="progress")
            yield Static(TIP_TEXT, id="status_bar")

    def on_mount(self) -> None:
        self._task_list = self.query_one("#task_list", ListView)
        self._frame_list = self.query_one("#frame_list", ListView)
        self._frame_image = self.query_one("#frame_image", PreviewImage)
        self._frame_text = self.query_one("#frame_text", Static)
        self._progress_bar = self.query_one("#progress", ProgressBar)
        self._status_bar = self.query_one("#status_bar", Static)
        if self.batch is not None and self.batch.resumed:
            self._set_status(f"Resumed batch ({self.batch.added} new file(s))")
        self.controller.start()
        self._after_transition()
        self._frame_list.focus()
        self.set_interval(POLL_INTERVAL, self._poll)

    def action_help(self) -> None:
        self.push_screen(HelpScreen(HELP_TEXT))

    def action_select_frame(self) -> None:
        entry = self._highlighted_entry()
        if not isinstance(entry, FrameInfo):
            self._set_status("Move to a frame to select it")
            return
        try:
            start, end = self.controller.select_frame(entry.frame_number)
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        self._refresh_frame_labels()
        self._set_status(f"Open range {start}-{end} (enter to confirm)")

    def action_confirm_range(self) -> None:
        try:
            start, end = self.controller.confirm_range()
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        self._render_frames(focus_frame=end)
        self._set_status(f"Confirmed {start}-{end}")

    def action_cancel_range(self) -> None:
        try:
            self.controller.cancel_open_range()
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        self._refresh_frame_labels()

    def action_remove_range(self) -> None:
        entry = self._highlighted_entry()
        if not isinstance(entry, CoveredRun):
            self._set_status("Move to a confirmed range to remove it")
            return
        try:
            start, end = self.controller.remove_range(entry.index)
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        self._render_frames(focus_frame=start)
        self._set_status(f"Removed {start}-{end}")

    def action_generate(self) -> None:
        if self._busy:
            return
        if self.controller.state != ControllerState.EDITING:
            self._set_status("Nothing to generate yet")
            return
        if not self.controller.selection:
            self._set_status("Confirm at least one range first")
            return
        self._run_generation(lambda: self.controller.generate())

    def action_skip(self) -> None:
        self._move_on(self.controller.skip, "Skipped")

    def action_postpone(self) -> None:
        self._move_on(self.controller.postpone, "Postponed")

    def action_reload_task(self) -> None:
        if self.controller.state == ControllerState.AWAITING_SELECTION:
            self._start_loading(force=True)

    def action_retry_failed(self) -> None:
        try:
            count = self.controller.retry_failed()
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        if count == 0:
            self._set_status("No failed files")
            return
        self._set_status(f"Retrying {count} failed file(s)")
        self._after_transition()

    def on_list_view_highlighted(self, event: ListView.Highlighted) -> None:
        if isinstance(event.item, FrameListItem):
            self._show_entry(event.item.entry)

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        if isinstance(event.item, FrameListItem):
            self.action_confirm_range()

    def _move_on(self, operation, verb: str) -> None:
        if self._busy:
            return
        active = self.controller.active
        try:
            operation()
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        if active is not None:
            self._set_status(f"{verb} {active.name}")
        self._after_transition()

    def _run_generation(self, call) -> None:
        self._busy = True
        self._set_status("Generating...")

        def worker() -> None:
            try:
                outcome = call()
            except Exception as exc:
                self.call_from_thread(self._apply_generation_error, _short_error(str(exc) or exc.__class__.__name__))
                return
            self.call_from_thread(self._apply_generation, outcome)

        threading.Thread(target=worker, daemon=True).start()

    def _apply_generation_error(self, message: str) -> None:
        self._busy = False
        self._set_status(message)
        self._after_transition()

    def _apply_generation(self, outcome: GenerationOutcome) -> None:
        self._busy = False
        if outcome.kind == OutcomeKind.INCOMPATIBLE:
            self.push_screen(IncompatibleScreen(outcome.message), self._handle_incompatible)
            return
        if outcome.kind == OutcomeKind.FAILED:
            self._set_status(f"Failed: {_short_error(outcome.message)}")
            self._after_transition()
            return
        if self.controller.state == ControllerState.AWAITING_DISPOSITION:
            active = self.controller.active
            name = active.name if active is not None else ""
            self.push_screen(
                DispositionScreen(name, outcome.message, default_delete=self.default_delete),
                self._handle_disposition,
            )
            return
        disposition = outcome.disposition
        if disposition is not None and disposition.error:
            self._set_status(f"Could not delete: {_short_error(disposition.error)}")
        else:
            self._set_status(outcome.message)
        self._after_transition()

    def _handle_incompatible(self, force: bool | None) -> None:
        if force:
            self._run_generation(lambda: self.controller.retry_generation(force=True))
            return
        try:
            self.controller.abandon_generation()
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        self._set_status("Generation cancelled")
        self._after_transition()

    def _handle_disposition(self, delete: bool | None) -> None:
        try:
            outcome = self.controller.dispose(bool(delete))
        except SegtuiError as exc:
            self._set_status(str(exc))
            return
        if outcome.error:
            self._set_status(f"Could not delete: {_short_error(outcome.error)}")
        elif outcome.deleted:
            self._set_status(f"Deleted {Path(outcome.path).name}")
        else:
            self._set_status(f"Kept {Path(outcome.path).name}")
        self._after_transition()

    def _after_transition(self) -> None:
        state = self.controller.refresh()
        self._render_tasks()
        active = self.controller.active
        if state == ControllerState.FINISHED:
            self._clear_frames("All files handled.")
            if not self._summary_shown:
                self._summary_shown = True
                self.push_screen(SummaryScreen(self.controller.summary()))
            return
        self._summary_shown = False
        if state == ControllerState.AWAITING_SELECTION:
            self._clear_frames("Preparing frames...")
            self._start_loading()
            return
        if state == ControllerState.EDITING and active is not None:
            offer = _offer_key(self.controller)
            if self._shown_offer != offer:
                self._shown_offer = offer
                self._render_frames()
            else:
                self._refresh_frame_labels()

    def _start_loading(self, force: bool = False) -> None:
        active = self.controller.active
        if active is None:
            return
        if self._loading == active.path and not force:
            return
        self._loading = active.path
        path = active.path

        def worker() -> None:
            try:
                self.controller.load_active()
            except Exception as exc:
                self.call_from_thread(self._apply_load_error, path, str(exc) or exc.__class__.__name__)
                return
            self.call_from_thread(self._apply_loaded, path)

        threading.Thread(target=worker, daemon=True).start()

    def _apply_loaded(self, path: str) -> None:
        if self._loading == path:
            self._loading = None
        self._after_transition()

    def _apply_load_error(self, path: str, message: str) -> None:
        if self._loading == path:
            self._loading = None
        active = self.controller.active
        if active is None or active.path != path:
            self._after_transition()
            return
        self._clear_frames(f"{_short_error(message)}\n\nr to retry, s to skip, p to postpone")
        self._set_status(f"Could not prepare {Path(path).name}")
        self._render_tasks()

    def _poll(self) -> None:
        active = self.controller.active
        if active is not None and self._progress_bar is not None:
            updates = self.progress.drain(active.path)
            if updates:
                latest = updates[-1]
                self._progress_bar.update(total=100, progress=latest.percent)
                if self.controller.state in {
                    ControllerState.AWAITING_SELECTION,
                    ControllerState.GENERATING,
                }:
                    self._set_status(latest.message)
        snapshot = self.controller.store.snapshot()
        if snapshot != self._shown_snapshot:
            self._render_tasks(snapshot)

    def _render_tasks(self, snapshot: BatchSnapshot | None = None) -> None:
        list_view = self._task_list
        if list_view is None:
            return
        snapshot = snapshot or self.controller.store.snapshot()
        self._shown_snapshot = snapshot
        items = [child for child in list_view.children if isinstance(child, TaskListItem)]
        same_order = len(items) == len(snapshot.tasks) and all(
            item.task_path == task.path for item, task in zip(items, snapshot.tasks)
        )
        if same_order:
            for index, (item, task) in enumerate(zip(items, snapshot.tasks)):
                item.refresh_label(task, index == snapshot.active_index)
        else:
            list_view.clear()
            list_view.extend(
                TaskListItem(task, index == snapshot.active_index)
                for index, task in enumerate(snapshot.tasks)
            )
        if 0 <= snapshot.active_index < len(snapshot.tasks):
            list_view.index = snapshot.active_index
        counts = self.controller.store.counts()
        done = counts[TaskStatus.COMPLETED] + counts[TaskStatus.SKIPPED] + counts[TaskStatus.ERROR]
        self.query_one("#tasks_label", Label).update(f"Files {done}/{len(snapshot.tasks)}")

    def _render_frames(self, focus_frame: int | None = None) -> None:
        list_view = self._frame_list
        prepared = self.controller.prepared
        if list_view is None or prepared is None:
            return
        if focus_frame is None:
            entry = self._highlighted_entry()
            focus_frame = _entry_start(entry) if entry is not None else None
        selection = self.controller.selection
        entries = selection.collapse(prepared.frames)
        open_range = selection.open_range
        items = [FrameListItem(entry, open_range) for entry in entries]
        highlight_index = 0
        if focus_frame is not None:
            for index, entry in enumerate(entries):
                if _entry_covers(entry, focus_frame):
                    highlight_index = index
                    break
        list_view.clear()
        if items:
            list_view.extend(items)
            list_view.index = highlight_index
        else:
            list_view.index = None
        self._render_ranges()
        if items:
            self._show_entry(entries[highlight_index])

    def _refresh_frame_labels(self) -> None:
        if self._frame_list is None:
            return
        open_range = self.controller.selection.open_range
        for child in self._frame_list.children:
            if isinstance(child, FrameListItem):
                child.refresh_label(open_range)
        self._render_ranges()

    def _render_ranges(self) -> None:
        selection = self.controller.selection
        ranges = ", ".join(f"{start}-{end}" for start, end in selection.ranges) or "none"
        text = f"Ranges: {ranges}"
        if selection.open_range is not None:
            start, end = selection.open_range
            text += f"  (open {start}-{end})"
        self.query_one("#ranges_label", Label).update(text)

    def _clear_frames(self, message: str) -> None:
        self._shown_offer = None
        if self._frame_list is not None:
            self._frame_list.clear()
            self._frame_list.index = None
        self._show_frame_message(message)
        self.query_one("#ranges_label", Label).update("")

    def _highlighted_entry(self) -> FrameEntry | None:
        if self._frame_list is None:
            return None
        child = self._frame_list.highlighted_child
        if isinstance(child, FrameListItem):
            return child.entry
        return None

    def _show_entry(self, entry: FrameEntry) -> None:
        if isinstance(entry, CoveredRun):
            self._show_frame_message(
                f"Range {entry.index + 1}: frames {entry.start}-{entry.end} ({entry.length} frames)"
            )
            return
        caption = f"Frame {entry.frame_number} at {entry.timestamp:.3f}s"
        preview = Path(entry.preview_ref) if entry.preview_ref else None
        if preview is None or not preview.exists():
            self._show_frame_message(f"{caption}\n(no preview)")
            return
        if self._frame_image is None or self._frame_text is None:
            return
        try:
            _update_image_widget(self._frame_image, preview)
        except (OSError, ValueError) as exc:
            self._show_frame_message(f"{caption}\nPreview error: {_short_error(str(exc))}")
            return
        self._frame_image.remove_class("hidden")
        self._frame_text.update(caption)

    def _show_frame_message(self, message: str) -> None:
        if self._frame_image is None or self._frame_text is None:
            return
        self._frame_text.update(message)
        self._frame_image.add_class("hidden")

    def _set_status(self, message: str) -> None:
        if self._status_bar is not None:
            self._status_bar.update(message)


def _offer_key(controller: PipelineController) -> tuple[str, int] | None:
    active = controller.active
    if active is None:
        return None
    return active.path, controller.store.times_offered(active.path)


def _format_task_label(task: TaskView, active: bool) -> Text:
    marker = ">" if active else " "
    text = Text(f"{marker} ")
    text.append(f"{task.status.value:<10}", style=STATUS_STYLES.get(task.status, ""))
    text.append(f" {task.name}")
    if task.status == TaskStatus.ERROR and task.last_error:
        text.append(f"  {_short_error(task.last_error)}", style="red")
    return text


def _format_frame_label(entry: FrameEntry, open_range: tuple[int, int] | None) -> str:
    if isinstance(entry, CoveredRun):
        return f"[{entry.start}-{entry.end}] {entry.length} frames"
    marker = " "
    if open_range is not None and open_range[0] <= entry.frame_number <= open_range[1]:
        marker = "*"
    return f"{marker} {entry.frame_number:>6}  {entry.timestamp:9.3f}s"


def _entry_start(entry: FrameEntry) -> int:
    return entry.start if isinstance(entry, CoveredRun) else entry.frame_number


def _entry_covers(entry: FrameEntry, frame: int) -> bool:
    if isinstance(entry, CoveredRun):
        return entry.start <= frame <= entry.end
    return entry.frame_number >= frame


def _update_image_widget(widget: PreviewImage, path: Path) -> None:
    setter = getattr(widget, "set_image", None)
    if callable(setter):
        setter(path)
        return
    widget.image = path


def _short_error(message: str) -> str:
    line = message.splitlines()[0] if message else ""
    return (line[:77] + "...") if len(line) > 80 else line


def _normalize_output_format(value: str) -> str:
    return value.strip().lower().lstrip(".")


def _is_valid_output_format(value: str) -> bool:
    if not value:
        return False
    return value.isalnum() and len(value) <= 6


def _cli_help_text() -> str:
    return "\n".join(
        [
            "Segment every video in INPUT_DIR by picking frame ranges, one file at a time.",
            "",
            "Progress is saved after every step to OUTPUT_DIR/.segtui_progress.json",
            "(.segtui_<variant>_progress.json with --variant); run the same command",
            "again to resume. Use --fresh to ignore a saved batch.",
            "",
            f"Config: {config_path()}",
            f"Log:    {log_path()}",
        ]
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="segtui",
        description="Supervised frame-range segmentation for a directory of videos.",
        epilog=_cli_help_text(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("input_dir", nargs="?", help="Directory with source videos")
    parser.add_argument(
        "output_dir",
        nargs="?",
        help="Directory for segments and the progress file (default: INPUT_DIR/segments)",
    )
    parser.add_argument("--window", type=int, help="Number of upcoming files to prepare ahead")
    parser.add_argument("--format", dest="output_format", help="Output format, e.g. mp4 or mkv")
    parser.add_argument("--depth", type=int, help="How many subdirectory levels to scan")
    parser.add_argument("--copy", action="store_true", help="Stream copy instead of re-encoding")
    parser.add_argument(
        "--unattended",
        action="store_true",
        help="Dispose and move on after each generation without asking",
    )
    parser.add_argument(
        "--delete-source",
        action="store_true",
        help="Delete sources after successful generation (default answer when attended)",
    )
    parser.add_argument("--fresh", action="store_true", help="Ignore any saved progress")
    parser.add_argument("--variant", help="Keep a separate progress file under this name")
    parser.add_argument("--status", action="store_true", help="Print saved progress and exit")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    return parser


def print_status(output_root: Path, variant: str | None, console: Console | None = None) -> bool:
    console = console or Console()
    snapshot = load_checkpoint(output_root, variant)
    if snapshot is None:
        console.print(f"No saved progress at {checkpoint_path(output_root, variant)}")
        return False
    table = Table(title=f"{snapshot.input_root} -> {snapshot.output_root}")
    table.add_column("#", justify="right")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    for index, task in enumerate(snapshot.tasks):
        marker = f"{index + 1}" + ("*" if index == snapshot.active_index else "")
        detail = task.last_error or task.result or ""
        table.add_row(
            marker,
            task.name,
            Text(task.status.value, style=STATUS_STYLES.get(task.status, "")),
            detail,
        )
    console.print(table)
    return True


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    config, config_error = load_config()
    if config_error:
        logger.warning("%s", config_error)

    input_dir = args.input_dir or config.input_dir
    if not input_dir:
        parser.error("INPUT_DIR is required")
    output_arg = args.output_dir or config.output_dir
    output_root = (
        Path(output_arg).expanduser().resolve() if output_arg else default_output_root(input_dir)
    )
    variant = args.variant or config.variant
    if args.status:
        print_status(output_root, variant)
        return

    output_format = _normalize_output_format(args.output_format or config.output_format)
    if not _is_valid_output_format(output_format):
        parser.error(f"Invalid output format: {args.output_format or config.output_format}")
    window = args.window if args.window is not None else config.prefetch_window
    if window < 0:
        parser.error("--window must be zero or more")
    depth = args.depth if args.depth is not None else config.max_depth
    delete = args.delete_source or config.on_success == ON_SUCCESS_CHOICES[1]

    backend = FfmpegBackend(extensions=config.extensions, max_depth=max(0, depth))
    try:
        batch = open_batch(input_dir, output_root, backend, variant=variant, fresh=args.fresh)
    except (SegtuiError, OSError) as exc:
        parser.error(str(exc))
    progress = ProgressChannel()
    prefetcher = Prefetcher(batch.store, backend, progress, window_size=window)
    policy = None
    if args.unattended or config.unattended:
        policy = AutomationPolicy(on_success=Disposition.DELETE if delete else Disposition.KEEP)
    controller = PipelineController(
        batch.store,
        backend,
        prefetcher,
        progress=progress,
        policy=policy,
        options=GenerateOptions(
            output_format=output_format,
            reencode=config.reencode and not args.copy,
        ),
    )
    app = SegtuiApp(controller, progress, batch=batch, default_delete=delete)
    app.run()
    if batch.checkpointer.last_error:
        print(f"Warning: progress could not be saved: {batch.checkpointer.last_error}", file=sys.stderr)
