"""Live progress display for queue runs using rich."""

import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.text import Text


def _format_elapsed(elapsed: float) -> str:
    if elapsed < 60:
        return f"{elapsed:.1f}s"
    if elapsed < 3600:
        return f"{int(elapsed // 60)}m {int(elapsed % 60)}s"
    return f"{int(elapsed // 3600)}h {int((elapsed % 3600) // 60)}m"


class DisplayLogHandler(logging.Handler):
    """Routes log records into the display's activity log."""

    def __init__(self, display: "CreditsProgressDisplay"):
        super().__init__(level=logging.INFO)
        self.display = display

    def emit(self, record: logging.LogRecord):
        try:
            self.display.add_log(record.getMessage())
        except Exception:
            self.handleError(record)


class CreditsProgressDisplay:
    """Polls queue progress and renders status, activity and results panes."""

    def __init__(self, progress_source: Callable[[], Dict[str, Any]], console: Optional[Console] = None):
        self.progress_source = progress_source
        self.lock = threading.Lock()
        self.log: deque = deque(maxlen=100)
        self.activity_log_max_lines = 10

        self.console = console or Console()
        self.live: Optional[Live] = None
        self.running = False
        self.display_thread: Optional[threading.Thread] = None

    def add_log(self, message: str):
        with self.lock:
            self.log.append(f"[{time.strftime('%H:%M:%S')}] {message}")

    def _status_pane(self, progress: Dict[str, Any]) -> Panel:
        text = Text()
        text.append(" Credits Detection ", style="bold green on dark_blue")
        text.append(" (Press Ctrl+C to cancel)\n\n", style="dim")
        text.append("Item: ", style="dim")
        text.append(f"{progress['processed_items']}/{progress['total_items']}: ", style="bright_white")
        text.append(f"{progress['current_item'] or '-'}\n", style="bright_white")
        text.append("Item progress: ", style="dim")
        text.append(f"{progress['current_item_progress']:.0f}%\n", style="bright_white")
        text.append("Overall: ", style="dim")
        text.append(f"{progress['percent_complete']:.0f}%", style="bright_white")

        start = progress.get("start_time")
        if start is not None:
            end = progress.get("end_time") or datetime.now()
            text.append("  Elapsed: ", style="dim")
            text.append(_format_elapsed((end - start).total_seconds()), style="bright_white")
        remaining = progress.get("estimated_seconds_remaining")
        if remaining is not None:
            text.append("  Remaining: ", style="dim")
            text.append(f"~{_format_elapsed(remaining)}", style="bright_white")
        return Panel(text, title="Status", border_style="green")

    def _log_pane(self) -> Panel:
        text = Text()
        with self.lock:
            messages = list(self.log)[-self.activity_log_max_lines:]
        if messages:
            for message in reversed(messages):
                text.append(f"{message}\n", style="dim")
        else:
            text.append("No activity yet...\n", style="dim")
        return Panel(text, title="Activity Log", border_style="blue")

    def _results_pane(self, progress: Dict[str, Any]) -> Panel:
        text = Text()
        text.append("Succeeded: ", style="dim")
        text.append(f"{progress['successful_items']}", style="green")
        text.append("  Failed: ", style="dim")
        text.append(f"{progress['failed_items']}\n", style="red")
        text.append("─" * 40 + "\n", style="dim")

        for label, detail in progress["success_details"].items():
            text.append("✓ ", style="green")
            text.append(f"{label}", style="bright_white")
            text.append(f"  {detail}\n", style="dim")
        for label, reason in progress["failure_reasons"].items():
            text.append("✗ ", style="red")
            text.append(f"{label}\n", style="bright_white")
            text.append(f"  → {reason[:100]}\n", style="dim")
        return Panel(text, title="Results", border_style="cyan")

    def _create_layout(self) -> Layout:
        progress = self.progress_source()
        layout = Layout()
        layout.split_column(
            Layout(self._status_pane(progress), size=8),
            Layout(self._log_pane(), size=12),
            Layout(self._results_pane(progress)),
        )
        return layout

    def start(self):
        def run_display():
            self.running = True
            try:
                with Live(self._create_layout(), refresh_per_second=4, screen=False, console=self.console) as live:
                    self.live = live
                    while self.running:
                        live.update(self._create_layout())
                        time.sleep(0.25)
                    live.update(self._create_layout())
            finally:
                self.running = False

        self.display_thread = threading.Thread(target=run_display, daemon=True)
        self.display_thread.start()

    def stop(self):
        self.running = False
        if self.display_thread is not None:
            self.display_thread.join(timeout=2.0)

    def print_summary(self, progress: Dict[str, Any]):
        self.console.print(self._results_pane(progress))
