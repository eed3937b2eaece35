"""
Tests for the process wiring in app/services/automation.py.
"""

from datetime import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.config import settings
from app.models.schemas import ContactInfo
from app.providers.selenium_driver import MockBrowserDriver, SeleniumBrowserDriver
from app.services.automation import (
    AutomationService,
    build_browser_driver,
    build_orchestrator,
    build_trigger_loop,
    get_trigger_time,
)


class TestBuilders:
    """Tests for the settings-driven builders."""

    def test_trigger_time_from_settings(self) -> None:
        with patch("app.services.automation.settings") as mock_settings:
            mock_settings.trigger_hour = 18
            mock_settings.trigger_minute = 30

            assert get_trigger_time() == time(18, 30)

    def test_mock_browser_driver(self) -> None:
        with patch("app.services.automation.settings") as mock_settings:
            mock_settings.browser_driver = "MOCK"

            assert isinstance(build_browser_driver(), MockBrowserDriver)

    def test_selenium_browser_driver_by_default(self) -> None:
        assert isinstance(build_browser_driver(), SeleniumBrowserDriver)

    def test_orchestrator_uses_given_collaborators(self) -> None:
        browser = MockBrowserDriver()
        mailbox = AsyncMock()
        sink = AsyncMock()

        orchestrator = build_orchestrator(browser=browser, mailbox=mailbox, result_sinks=[sink])

        assert orchestrator.browser is browser
        assert orchestrator.waiter.mailbox is mailbox
        assert orchestrator.result_sinks == [sink]
        assert orchestrator.browser_start_timeout == settings.browser_start_timeout_seconds
        assert orchestrator.run_timeout == settings.run_timeout_seconds

    def test_trigger_loop_reads_enabled_flag(self) -> None:
        orchestrator = build_orchestrator(browser=MockBrowserDriver(), mailbox=AsyncMock(), result_sinks=[])
        with patch("app.services.automation.settings") as mock_settings:
            mock_settings.timezone = "America/Toronto"
            mock_settings.trigger_hour = 18
            mock_settings.trigger_minute = 0
            mock_settings.tick_interval_seconds = 60
            mock_settings.automation_enabled = False
            mock_settings.trigger_grace_minutes = 0
            mock_settings.lead_days = 2

            loop = build_trigger_loop(orchestrator)

        assert loop.enabled is False
        assert loop.orchestrator is orchestrator


class TestAutomationService:
    """Tests for AutomationService lifecycle."""

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self) -> None:
        browser = MockBrowserDriver()
        orchestrator = build_orchestrator(browser=browser, mailbox=AsyncMock(), result_sinks=[])
        orchestrator.contact = ContactInfo("Sam Lee", "6135550100", "sam@example.com")
        trigger_loop = MagicMock()
        trigger_loop.stop = AsyncMock()

        service = AutomationService()
        service.configure(orchestrator, trigger_loop)
        service.start()
        await service.shutdown()

        trigger_loop.start.assert_called_once()
        trigger_loop.stop.assert_awaited_once()
        assert browser.closed is True

    @pytest.mark.asyncio
    async def test_shutdown_before_start_is_noop(self) -> None:
        await AutomationService().shutdown()
