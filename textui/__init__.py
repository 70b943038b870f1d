"""TextUI - Textual-based terminal UI for ScanLedger."""

import threading
from typing import Callable, Optional, TYPE_CHECKING

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Header, Footer, Static, RichLog, ProgressBar, Label
from textual.binding import Binding

from scanledger import ScanLedger, __version__

if TYPE_CHECKING:
    from workflows import LedgerService, OperationResult


class HeaderInfo(Static):
    """Header widget showing scanned folders and record counts."""

    def __init__(self, folders: str = "", state_dir: str = "", **kwargs) -> None:
        super().__init__(**kwargs)
        self.folders = folders
        self.state_dir = state_dir

    def compose(self) -> ComposeResult:
        yield Static(f"Folders: {self.folders}", id="folders-line")
        yield Static(f"State: {self.state_dir}", id="state-line")
        yield Static("", id="counts-line")

    def update_counts(self, text: str) -> None:
        self.query_one("#counts-line", Static).update(text)


class ScanLedgerApp(App):
    """Textual app for ScanLedger with dual-pane log view."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 1;
        grid-rows: auto 1fr auto;
    }

    #header-info {
        height: auto;
        padding: 0 1;
        background: $surface;
        border-bottom: solid $primary;
    }

    #main-content {
        height: 1fr;
    }

    #left-panel {
        width: 1fr;
        border-right: solid $primary;
    }

    #right-panel {
        width: 1fr;
    }

    .panel-title {
        height: 1;
        background: $primary;
        color: $text;
        text-align: center;
        text-style: bold;
    }

    .log-panel {
        height: 1fr;
    }

    #footer-bar {
        height: 3;
        padding: 0 1;
        background: $surface;
        border-top: solid $primary;
    }

    #progress-container {
        height: 1;
        margin-top: 1;
    }

    #progress-bar {
        width: 1fr;
    }

    #progress-label {
        width: auto;
        min-width: 15;
        text-align: right;
        margin-left: 1;
    }
    """

    BINDINGS = [
        Binding("s", "scan", "Scan"),
        Binding("a", "analyze", "Analyze"),
        Binding("r", "rename", "Rename"),
        Binding("x", "stop", "Stop"),
        Binding("q", "quit", "Quit"),
        Binding("ctrl+c", "quit", "Quit"),
    ]

    def __init__(self, service: "LedgerService",
                 process_func: Optional[Callable[[], None]] = None) -> None:
        super().__init__()
        self.service = service
        self._process_func = process_func

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield HeaderInfo(", ".join(self.service.folders), self.service.registry.state_dir,
                         id="header-info")

        with Horizontal(id="main-content"):
            with Vertical(id="left-panel"):
                yield Static("ACTIVITY", classes="panel-title")
                yield RichLog(id="activity-log", classes="log-panel", highlight=True, markup=True)

            with Vertical(id="right-panel"):
                yield Static("DEBUG LOG", classes="panel-title")
                yield RichLog(id="debug-log", classes="log-panel", highlight=True, markup=True)

        with Horizontal(id="footer-bar"):
            with Horizontal(id="progress-container"):
                yield ProgressBar(id="progress-bar", show_eta=True)
                yield Label("0/0 files", id="progress-label")

        yield Footer()

    def on_mount(self) -> None:
        """Called when app is mounted - wire up ScanLedger UI references."""
        self.title = f"ScanLedger v{__version__}"
        self.theme = "textual-light"

        # Set the app reference on ScanLedger for thread-safe UI updates
        ScanLedger.set_app(self)
        self.refresh_counts()
        self.set_interval(1.0, self.refresh_counts)

        if self._process_func:
            thread = threading.Thread(target=self._process_func, daemon=True)
            thread.start()

    def on_unmount(self) -> None:
        """Called when app is unmounted - clear ScanLedger UI references."""
        ScanLedger.set_app(None)

    def refresh_counts(self) -> None:
        counts = self.service.counts()
        progress = self.service.progress()
        text = (f"Records: {counts['total']}  new: {counts['new']}  "
                f"analyzed: {counts['analyzed']}  bad: {counts['bad']}  "
                f"renamed: {counts['renamed']}")
        if progress.status == "running":
            text += f"  |  {progress.operation}: {progress.current_item}"
        self.query_one("#header-info", HeaderInfo).update_counts(text)

    def _run_in_background(self, operation: Callable[[], "OperationResult"]) -> None:
        """Run a service call off the UI thread and log its outcome."""
        if self.service.busy:
            self.add_debug("[yellow]Another operation is already running[/yellow]")
            return

        def worker() -> None:
            result = operation()
            color = "green" if result.success else "red"
            ScanLedger.print_right(f"[{color}]{result.message}[/{color}]")

        threading.Thread(target=worker, daemon=True).start()

    def action_scan(self) -> None:
        self._run_in_background(self.service.scan)

    def action_analyze(self) -> None:
        self._run_in_background(self.service.analyze_all)

    def action_rename(self) -> None:
        self._run_in_background(self.service.rename_all)

    def action_stop(self) -> None:
        # stop() logs through ScanLedger, which must be called off the UI thread
        def worker() -> None:
            result = self.service.stop()
            ScanLedger.print_right(result.message)

        threading.Thread(target=worker, daemon=True).start()

    def add_activity(self, line1: str, line2: str) -> None:
        """Add an activity entry to the left log."""
        log = self.query_one("#activity-log", RichLog)
        log.write(f"{line1}\n{line2}\n")

    def add_debug(self, message: str) -> None:
        """Add a debug message to the right log."""
        log = self.query_one("#debug-log", RichLog)
        log.write(message)

    def set_progress(self, current: int, total: int) -> None:
        """Update the progress bar."""
        bar = self.query_one("#progress-bar", ProgressBar)
        bar.update(total=total, progress=current)
        self.query_one("#progress-label", Label).update(f"{current}/{total} files")


def run_app(service: "LedgerService",
            process_func: Optional[Callable[[], None]] = None) -> None:
    """Run the ScanLedger TextUI app."""
    app = ScanLedgerApp(service, process_func=process_func)
    app.run()
