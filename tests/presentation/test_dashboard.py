"""Tests for the Textual dashboard."""

import pytest
from textual.widgets import DataTable

from anywhere.application.use_cases.cloud_reconciler import CloudReconciler
from anywhere.presentation.tui.dashboard import Dashboard


@pytest.fixture
def reconciler(store, gateway, config):
    return CloudReconciler(store, gateway, config.region_codes)


class TestDashboard:
    @pytest.mark.asyncio
    async def test_tables_show_inventory(self, orchestrator, reconciler):
        uuid = await orchestrator.request_create("ap-east-1")
        await orchestrator.drain()

        app = Dashboard(orchestrator, reconciler, refresh_interval=60)
        async with app.run_test() as pilot:
            await pilot.pause()
            instances = app.query_one("#instances_table", DataTable)
            regions = app.query_one("#regions_table", DataTable)
            assert instances.row_count == 1
            assert instances.get_row(uuid)[1] == "Hong Kong"
            assert regions.row_count == 3
            assert regions.get_row("ap-east-1")[2] == "yes"
            assert regions.get_row("us-east-1")[2] == "-"

    @pytest.mark.asyncio
    async def test_sync_key_imports_cloud_instances(self, orchestrator, reconciler,
                                                    gateway):
        gateway.inject_instance("eu-west-1", ownership_tag="u9",
                                public_address="203.0.113.9")
        app = Dashboard(orchestrator, reconciler, refresh_interval=60)
        async with app.run_test() as pilot:
            await pilot.press("s")
            await pilot.pause()
            instances = app.query_one("#instances_table", DataTable)
            assert instances.row_count == 1
            assert any("1 created" in line for line in app._log_lines)

    @pytest.mark.asyncio
    async def test_interval_actions(self, orchestrator, reconciler):
        app = Dashboard(orchestrator, reconciler, refresh_interval=5)
        async with app.run_test() as pilot:
            app.action_increase_interval()
            assert app._refresh_interval == 6
            app.action_decrease_interval()
            app.action_decrease_interval()
            await pilot.pause()
            assert app._refresh_interval == 4
