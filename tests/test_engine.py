"""
Tests for the SchedulingEngine facade.
"""

import pytest

from conftest import TOMORROW, booking_item
from vet_scheduling.engine import SchedulingEngine
from vet_scheduling.services import HttpSmsGateway, SmtpEmailGateway
from vet_scheduling.utils.config import SchedulingSettings


class TestSchedulingEngine:
    """Test cases for building and shutting down the engine."""

    def test_services_share_settings(self, scheduler, settings):
        assert scheduler.settings is settings
        assert scheduler.lifecycle.settings is settings
        assert scheduler.groups.reminders is scheduler.reminders
        assert scheduler.lifecycle.guard is scheduler.guard

    @pytest.mark.asyncio
    async def test_from_database_url(self, catalog):
        """Test building a working engine from a URL."""
        settings = SchedulingSettings(sms_api_token="abc")
        engine = SchedulingEngine.from_database_url(
            "sqlite+aiosqlite:///:memory:", settings=settings, catalog=catalog
        )

        assert isinstance(engine.reminders.sms_gateway, HttpSmsGateway)
        assert isinstance(engine.reminders.email_gateway, SmtpEmailGateway)
        assert await engine.wait_until_ready(timeout=1)
        assert await engine.create_schema()

        day = await engine.availability(TOMORROW)
        assert len(day.slots) == 109

        await engine.shutdown()
        assert not engine.sweep_scheduler.is_running

    @pytest.mark.asyncio
    async def test_shutdown_stops_sweep(self, session_manager, settings, catalog, clock, staff):
        engine = SchedulingEngine(session_manager, settings=settings, catalog=catalog, clock=clock)
        await engine.create_appointment(booking_item(), staff)
        engine.start_background_tasks()

        await engine.shutdown()

        assert not engine.sweep_scheduler.is_running
