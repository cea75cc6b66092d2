"""
Dashboard TUI

Architectural Intent:
- Textual-based dashboard for monitoring regional endpoints
- Instance table refreshed on an interval straight from the inventory store
- Region table shows which regions currently hold an active endpoint
- Sync key runs one reconciliation pass and reports the drift it healed
"""

from datetime import datetime
import logging

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import DataTable, Footer, Header, Log

from anywhere.application.use_cases.cloud_reconciler import CloudReconciler
from anywhere.application.use_cases.provisioning_orchestrator import (
    ProvisioningOrchestrator,
)
from anywhere.domain.errors import AnywhereError

logger = logging.getLogger(__name__)

SEVERITY_STYLES = {
    "info": "green",
    "warning": "yellow",
    "error": "red",
}

STATUS_STYLES = {
    "pending": "cyan",
    "creating": "cyan",
    "running": "green",
    "deleting": "yellow",
    "error": "bold red",
}


class Dashboard(App):
    """A Textual app to watch regional proxy endpoints."""

    CSS = """
    Screen {
        layout: vertical;
    }
    #instances_table {
        width: 3fr;
        border: solid green;
    }
    #regions_table {
        width: 1fr;
        border: solid blue;
    }
    Log {
        height: 1fr;
        border: solid yellow;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("s", "sync", "Sync Now"),
        ("+", "increase_interval", "Slower"),
        ("-", "decrease_interval", "Faster"),
    ]

    def __init__(
        self,
        orchestrator: ProvisioningOrchestrator,
        reconciler: CloudReconciler,
        refresh_interval: float = 5.0,
    ):
        super().__init__()
        self.orchestrator = orchestrator
        self.reconciler = reconciler
        self._refresh_interval = refresh_interval
        self._log_max_lines: int = 500
        self._log_lines: list[str] = []
        self._timer = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Vertical(
            Horizontal(
                DataTable(id="instances_table"),
                DataTable(id="regions_table"),
            ),
            Log(id="activity_log"),
        )
        yield Footer()

    def on_mount(self) -> None:
        instances = self.query_one("#instances_table", DataTable)
        instances.add_columns("UUID", "Region", "Status", "Address", "Updated")
        regions = self.query_one("#regions_table", DataTable)
        regions.add_columns("Region", "Name", "Active")

        self.log_message("Dashboard initialized.")
        self.log_message(
            f"Refresh interval: {self._refresh_interval}s (use +/- to adjust)"
        )
        self.refresh_tables()
        self._timer = self.set_interval(self._refresh_interval, self.refresh_tables)

    def log_message(self, message: str, severity: str = "info") -> None:
        log_widget = self.query_one(Log)
        timestamp = datetime.now().strftime("%H:%M:%S")
        line = f"[{timestamp}] [{severity.upper()}] {message}"
        self._log_lines.append(line)

        # Cap log growth
        if len(self._log_lines) > self._log_max_lines:
            self._log_lines = self._log_lines[-self._log_max_lines:]

        log_widget.write_line(line)

    def refresh_tables(self) -> None:
        try:
            views = self.orchestrator.list_instances()
            regions = self.orchestrator.list_regions()
        except AnywhereError as e:
            self.log_message(f"Inventory read failed: {e}", severity="error")
            return

        instances = self.query_one("#instances_table", DataTable)
        instances.clear()
        for view in views:
            style = STATUS_STYLES.get(view.status, "")
            status = f"[{style}]{view.status}[/{style}]" if style else view.status
            instances.add_row(
                view.uuid,
                view.region_name,
                status,
                view.public_address or "-",
                view.updated_at[:19].replace("T", " "),
                key=view.uuid,
            )

        active = {v.region for v in views if v.status in ("pending", "creating", "running")}
        region_table = self.query_one("#regions_table", DataTable)
        region_table.clear()
        for region in regions:
            region_table.add_row(
                region.region,
                region.name,
                "yes" if region.region in active else "-",
                key=region.region,
            )

    def action_refresh(self) -> None:
        self.refresh_tables()
        self.log_message("Refreshed.")

    async def action_sync(self) -> None:
        self.log_message("Reconciling with the cloud...")
        try:
            summary = await self.reconciler.sync_once()
        except AnywhereError as e:
            self.log_message(f"Sync failed: {e}", severity="error")
            return
        self.log_message(
            f"Sync: {summary.updated} updated, {summary.created} created, "
            f"{summary.adopted} adopted, {summary.soft_deleted} soft-deleted"
        )
        for region in summary.failed_regions:
            self.log_message(f"Region {region} unreachable", severity="warning")
        self.refresh_tables()

    def action_increase_interval(self) -> None:
        self._refresh_interval = min(60.0, self._refresh_interval + 1.0)
        self._restart_timer()
        self.log_message(f"Refresh interval: {self._refresh_interval}s")

    def action_decrease_interval(self) -> None:
        self._refresh_interval = max(1.0, self._refresh_interval - 1.0)
        self._restart_timer()
        self.log_message(f"Refresh interval: {self._refresh_interval}s")

    def _restart_timer(self) -> None:
        if self._timer:
            self._timer.stop()
        self._timer = self.set_interval(self._refresh_interval, self.refresh_tables)
