from __future__ import annotations

from textual import events
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Label, Static

from ..pipeline import BatchSummary


class HelpScreen(ModalScreen[None]):
    BINDINGS = [("escape", "close", "Close"), ("?", "close", "Close")]

    CSS = """
    HelpScreen {
        align: center middle;
        background: $surface 80%;
    }

    #help_dialog {
        width: 70%;
        max-width: 80;
        height: 80%;
        max-height: 90%;
        padding: 1 2;
        border: heavy $accent;
        background: $panel;
    }

    #help_scroll {
        height: 1fr;
    }

    #help_text {
        width: 100%;
    }
    """

    def __init__(self, help_text: str) -> None:
        super().__init__()
        self._help_text = help_text

    def compose(self) -> ComposeResult:
        with Vertical(id="help_dialog"):
            with VerticalScroll(id="help_scroll"):
                yield Static(self._help_text, id="help_text", markup=False)
            yield Button("Close", id="help_close")

    def on_mount(self) -> None:
        self.query_one("#help_scroll", VerticalScroll).focus()

    def action_close(self) -> None:
        self.dismiss(None)

    def on_key(self, event: events.Key) -> None:
        if event.key in {"up", "down", "pageup", "pagedown", "tab", "shift+tab"}:
            return
        if event.key == "escape" or event.character == "?":
            self.action_close()
        event.stop()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "help_close":
            self.dismiss(None)


class DispositionScreen(ModalScreen[bool]):
    """Asks whether to delete the source after a successful generation.

    Dismisses with True to delete and False to keep. Escape keeps the file.
    """

    BINDINGS = [
        ("escape", "keep", "Keep"),
        ("k", "keep", "Keep"),
        ("d", "delete", "Delete"),
    ]

    CSS = """
    DispositionScreen {
        align: center middle;
        background: $surface 80%;
    }

    #disposition_dialog {
        width: 70%;
        max-width: 80;
        height: auto;
        padding: 1 2;
        border: heavy $success;
        background: $panel;
    }

    #disposition_result {
        color: $text-muted;
        margin-bottom: 1;
    }
    """

    def __init__(self, name: str, result: str, default_delete: bool = False) -> None:
        super().__init__()
        self._name = name
        self._result = result
        self._default_delete = default_delete

    def compose(self) -> ComposeResult:
        with Vertical(id="disposition_dialog"):
            yield Label(f"Finished {self._name}")
            yield Static(self._result, id="disposition_result", markup=False)
            yield Label("Delete the source file?")
            with Horizontal():
                yield Button("Keep (k)", id="disposition_keep")
                yield Button("Delete (d)", id="disposition_delete", variant="error")

    def on_mount(self) -> None:
        default = "#disposition_delete" if self._default_delete else "#disposition_keep"
        self.query_one(default, Button).focus()

    def action_keep(self) -> None:
        self.dismiss(False)

    def action_delete(self) -> None:
        self.dismiss(True)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "disposition_keep":
            self.dismiss(False)
        elif event.button.id == "disposition_delete":
            self.dismiss(True)


class IncompatibleScreen(ModalScreen[bool]):
    BINDINGS = [("escape", "cancel", "Cancel"), ("f", "force", "Force")]

    CSS = """
    IncompatibleScreen {
        align: center middle;
        background: $surface 80%;
    }

    #incompatible_dialog {
        width: 70%;
        max-width: 80;
        height: auto;
        padding: 1 2;
        border: heavy $warning;
        background: $panel;
    }

    #incompatible_detail {
        color: $warning;
        margin-bottom: 1;
    }
    """

    def __init__(self, detail: str) -> None:
        super().__init__()
        self._detail = detail

    def compose(self) -> ComposeResult:
        with Vertical(id="incompatible_dialog"):
            yield Label("The source cannot be cut as-is.")
            yield Static(self._detail, id="incompatible_detail", markup=False)
            yield Label("Re-encode anyway, or go back to editing?")
            with Horizontal():
                yield Button("Force (f)", id="incompatible_force", variant="warning")
                yield Button("Cancel", id="incompatible_cancel")

    def action_force(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "incompatible_force":
            self.dismiss(True)
        elif event.button.id == "incompatible_cancel":
            self.dismiss(False)


class SummaryScreen(ModalScreen[None]):
    BINDINGS = [("escape", "close", "Close"), ("enter", "close", "Close"), ("q", "close", "Close")]

    CSS = """
    SummaryScreen {
        align: center middle;
        background: $surface 80%;
    }

    #summary_dialog {
        width: 80%;
        max-width: 100;
        height: 80%;
        padding: 1 2;
        border: heavy $accent;
        background: $panel;
    }

    #summary_scroll {
        height: 1fr;
    }
    """

    def __init__(self, summary: BatchSummary) -> None:
        super().__init__()
        self._summary = summary

    def compose(self) -> ComposeResult:
        with Vertical(id="summary_dialog"):
            yield Label("Batch finished")
            with VerticalScroll(id="summary_scroll"):
                yield Static(format_summary(self._summary), markup=False)
            yield Button("Close", id="summary_close")

    def action_close(self) -> None:
        self.dismiss(None)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "summary_close":
            self.dismiss(None)


def format_summary(summary: BatchSummary) -> str:
    lines = [
        f"Total:     {summary.total}",
        f"Completed: {summary.completed}",
        f"Skipped:   {summary.skipped}",
        f"Failed:    {summary.failed}",
    ]
    if summary.remaining:
        lines.append(f"Remaining: {summary.remaining}")
    if summary.failures:
        lines.append("")
        lines.append("Failures:")
        lines.extend(f"  {path}: {reason}" for path, reason in summary.failures)
    if summary.disposition_errors:
        lines.append("")
        lines.append("Could not delete:")
        lines.extend(f"  {path}: {reason}" for path, reason in summary.disposition_errors)
    return "\n".join(lines)
