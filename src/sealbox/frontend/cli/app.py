"""Textual TUI for local SealBox envelope operations.

Pick a file path, press one of the four operation buttons and the result is
written to the results store and listed in the artifact table.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import pyperclip
from textual import on
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, Static
from textual.logging import TextualHandler
from textual.worker import WorkerState

from sealbox.core.exceptions import FatalInitError, InputError, OperationError, StorageError
from sealbox.core.models import Operation, OperationResult, Stage
from sealbox.frontend.cli.context import AppContext, build_context
from sealbox.frontend.cli.logging_config import configure_logging

logger = logging.getLogger(__name__)

OPERATION_BUTTONS = {
    "encode-cert": Operation.ENCODE_CERT,
    "encode-sym": Operation.ENCODE_SYM,
    "decode-cert": Operation.DECODE_CERT,
    "decode-sym": Operation.DECODE_SYM,
}

KEYS_WORKER = "_init_keys_worker"


def _human_size(num: int) -> str:
    # Simple human-readable bytes formatter.
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if num < 1024:
            return f"{num:.1f} {unit}" if unit != "B" else f"{num} B"
        num /= 1024
    return f"{num:.1f} PB"


def copy_to_clipboard(text: str) -> None:
    """Copy text to the system clipboard (raises pyperclip.PyperclipException)."""
    pyperclip.copy(text)


# === Modal definitions ===


class SaveArtifactModal(ModalScreen[Optional[str]]):
    def __init__(self, artifact: str):
        super().__init__()
        self.artifact = artifact

    def compose(self) -> ComposeResult:  # pragma: no cover - UI only
        with Vertical(classes="dialog"):
            yield Static(f"Save {self.artifact}", classes="title")
            yield Label("Destination path (Enter to save, Esc to cancel)")
            self.dest_input = Input(placeholder=f"./{self.artifact}")
            yield self.dest_input
            with Horizontal():
                yield Button("Cancel (Esc)", id="cancel")
                yield Button("Save (Enter)", id="ok", variant="primary")

    def on_mount(self) -> None:  # pragma: no cover
        self.set_focus(self.dest_input)

    def on_button_pressed(self, event: Button.Pressed) -> None:  # pragma: no cover
        if event.button.id == "cancel":
            self.dismiss(None)
            return
        self.dismiss(self.dest_input.value.strip() or self.artifact)

    def on_key(self, event) -> None:  # pragma: no cover
        if event.key == "escape":
            self.dismiss(None)
        elif event.key == "enter":
            self.dismiss(self.dest_input.value.strip() or self.artifact)


class SealBoxApp(App):
    """Encode and decode local files with the process-wide key material."""

    TITLE = "SealBox"

    CSS = """
    #controls { height: auto; border: heavy $surface; padding: 0 1; }
    #buttons { height: auto; }
    #buttons Button { margin: 0 1 0 0; }
    #main { border: heavy $surface; }
    .title { padding: 1 1; text-style: bold; }
    #status { padding: 0 1 1 1; height: 3; color: $text-muted; }
    ModalScreen { align: center middle; background: rgba(0,0,0,0.45); }
    .dialog { width: 75%; height: auto; padding: 1; border: heavy $surface; background: $boost; }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("c", "copy_name", "Copy Name"),
        ("g", "save_artifact", "Save As"),
    ]

    def __init__(self, ctx: AppContext | None = None):
        self.ctx = ctx or build_context()
        super().__init__()

        self.path_input: Input | None = None
        self.table: DataTable | None = None
        self.status: Static | None = None
        self.row_keys: list[str] = []
        self.last_result: OperationResult | None = None
        self.status_message = ""

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Vertical(id="controls"):
            yield Static("Input file", classes="title")
            self.path_input = Input(placeholder="/path/to/file", id="path")
            yield self.path_input
            with Horizontal(id="buttons"):
                yield Button("Encode (cert)", id="encode-cert", disabled=True)
                yield Button("Encode (sym)", id="encode-sym", disabled=True)
                yield Button("Decode (cert)", id="decode-cert", disabled=True)
                yield Button("Decode (sym)", id="decode-sym", disabled=True)
        with Vertical(id="main"):
            yield Static("Artifacts", classes="title")
            self.table = DataTable(id="artifacts", cursor_type="row")
            yield self.table
            self.status = Static("", id="status")
            yield self.status
        yield Footer()

    def on_mount(self) -> None:
        assert self.table is not None
        self.table.add_columns("Name", "Size")
        self.refresh_artifacts()
        if self.ctx.provider.ready:
            self._set_operations_enabled(True)
            self._set_status("Keys ready")
            return
        self._set_status("Generating key material...")
        self.run_worker(
            self.ctx.provider.initialize,
            name=KEYS_WORKER,
            exclusive=True,
            thread=True,
            exit_on_error=False,
        )

    def on_worker_state_changed(self, event) -> None:
        """Enable the operations once key generation finishes."""
        if event.worker.name != KEYS_WORKER:
            return
        if event.state == WorkerState.SUCCESS:
            self._set_operations_enabled(True)
            self._set_status("Keys ready")
        elif event.state == WorkerState.ERROR:
            logger.error("Key generation failed: %s", event.worker.error)
            self._set_status(f"Key generation failed: {event.worker.error}")
            self.notify("Key generation failed; operations disabled", severity="error")

    def refresh_artifacts(self) -> None:
        assert self.table is not None
        self.table.clear(columns=False)
        self.row_keys = []
        try:
            names = self.ctx.results.list_names()
        except StorageError as exc:  # pragma: no cover - UI-only
            self._set_status(f"Error listing artifacts: {exc}")
            return
        for name in names:
            try:
                size = _human_size(self.ctx.results.size(name))
            except StorageError:
                # removed between listing and stat
                continue
            self.table.add_row(name, size, key=name)
            self.row_keys.append(name)

    def action_refresh(self) -> None:
        self.refresh_artifacts()
        self._set_status(f"Artifacts: {len(self.row_keys)}")

    # === Operations ===

    @on(Button.Pressed)
    def _operation_pressed(self, event: Button.Pressed) -> None:
        operation = OPERATION_BUTTONS.get(event.button.id or "")
        if operation is None:
            # modal buttons bubble up here too
            return
        assert self.path_input is not None
        path = self.path_input.value.strip()
        self.run_worker(
            self.run_operation(operation, path),
            name="operation_worker",
            exit_on_error=False,
        )

    async def run_operation(self, operation: Operation, path: str) -> Optional[OperationResult]:
        """Read ``path`` and run ``operation`` on its bytes."""
        if not path:
            self._set_status("Enter a file path first")
            return None
        source = Path(path).expanduser()
        if not source.is_file():
            self._set_status(f"File not found: {path}")
            self.notify(f"File not found: {path}", severity="error")
            return None

        limit = self.ctx.settings.max_upload_bytes
        try:
            size = source.stat().st_size
        except OSError as exc:
            self._set_status(f"Could not read {path}: {exc}")
            return None
        if size > limit:
            # refuse before loading the file into memory
            error = InputError(f"File too large: {size} bytes exceeds the {limit} byte limit")
            self._set_status(f"{operation.value} failed at {Stage.RECEIVED.value}: {error}")
            self.notify(f"{operation.value} failed: {error}", severity="error")
            return None

        self._set_status(f"Running {operation.value} on {source.name}...")
        try:
            data = await asyncio.to_thread(source.read_bytes)
        except OSError as exc:
            self._set_status(f"Could not read {path}: {exc}")
            return None

        try:
            result = await self.ctx.orchestrator.process(operation, data, source.name)
        except OperationError as exc:
            self._set_status(f"{operation.value} failed at {exc.stage.value}: {exc.message}")
            self.notify(f"{operation.value} failed: {exc.message}", severity="error")
            return None
        except FatalInitError as exc:
            self._set_status(f"Unavailable: {exc}")
            self.notify("Key material is not available", severity="error")
            return None

        self.last_result = result
        self.refresh_artifacts()
        self._set_status(
            f"{result.output_artifact_name} • {_human_size(result.size)} • sha256 {result.sha256[:12]}"
        )
        self.notify(f"Created {result.output_artifact_name}")
        return result

    # === Artifact actions ===

    def action_copy_name(self) -> None:
        name = self._selected_artifact()
        if not name:
            self._set_status("No artifact selected")
            return
        try:
            copy_to_clipboard(name)
        except pyperclip.PyperclipException as exc:
            self.notify(f"Clipboard unavailable: {exc}", severity="warning")
            return
        self.notify(f"Copied {name}")

    def action_save_artifact(self) -> None:
        name = self._selected_artifact()
        if not name:
            self._set_status("No artifact selected")
            return
        self.push_screen(
            SaveArtifactModal(name),
            lambda dest: self._handle_save(name, dest),
        )

    def _handle_save(self, name: str, dest: Optional[str]) -> None:
        if not dest:
            return
        try:
            target = Path(dest).expanduser()
            target.write_bytes(self.ctx.results.get(name))
        except (StorageError, OSError) as exc:
            logger.warning("Saving %s failed: %s", name, exc)
            self._set_status(f"Save failed: {exc}")
            return
        self._set_status(f"Saved {name} to {target}")

    def action_quit(self) -> None:
        """Release the cipher pool before leaving."""
        self.ctx.orchestrator.close()
        self.exit()

    # === Helpers ===

    def _selected_artifact(self) -> Optional[str]:
        if not self.table or self.table.cursor_row is None:
            return None
        idx = self.table.cursor_row
        if 0 <= idx < len(self.row_keys):
            return self.row_keys[idx]
        return None

    def _set_operations_enabled(self, enabled: bool) -> None:
        for button_id in OPERATION_BUTTONS:
            self.query_one(f"#{button_id}", Button).disabled = not enabled

    def _set_status(self, message: str) -> None:
        self.status_message = message
        if self.status:
            self.status.update(message)


def main() -> None:  # pragma: no cover
    ctx = build_context()
    configure_logging(ctx.settings.log_level, handlers=[TextualHandler()])
    SealBoxApp(ctx).run()


if __name__ == "__main__":  # pragma: no cover
    main()
