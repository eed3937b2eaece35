"""
Wait strategy helper for Selenium operations against the reservation portal.

The wait mode is configured via the WAIT_MODE environment variable:
- FIXED: sleep fixed durations (most predictable, slowest)
- EVENT_DRIVEN: WebDriverWait only (fastest)
- HYBRID: WebDriverWait plus a small buffer sleep (default)

The contact review pause is applied in every mode. It paces form submission
so the portal does not see an instantly submitted form.
"""

import logging
import time as time_module
from typing import Any

from selenium.common.exceptions import TimeoutException
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.support import expected_conditions
from selenium.webdriver.support.ui import WebDriverWait

from app.config import WaitMode, settings

logger = logging.getLogger(__name__)

HYBRID_BUFFER_SECONDS = 0.3


class WaitStrategy:
    """
    Wait methods whose behavior depends on the configured wait mode.

    Usage:
        waits = WaitStrategy()
        waits.wait_for_dom_ready(driver, timeout=15.0)
        element = waits.wait_for_element(driver, (By.CSS_SELECTOR, "select[name='sport']"))
    """

    def __init__(self, mode: WaitMode | None = None, review_pause: float | None = None) -> None:
        self.mode = mode or settings.wait_mode
        self.review_pause_seconds = (
            review_pause if review_pause is not None else settings.contact_review_pause_seconds
        )
        logger.info(f"WaitStrategy initialized with mode: {self.mode.value}")

    def _buffer(self) -> None:
        if self.mode == WaitMode.HYBRID:
            time_module.sleep(HYBRID_BUFFER_SECONDS)

    def wait_for_dom_ready(self, driver: WebDriver, timeout: float, fixed_duration: float = 2.0) -> bool:
        """
        Wait until document.readyState is "complete".

        Returns:
            True once the document is ready, False if the timeout expired.
        """
        if self.mode == WaitMode.FIXED:
            time_module.sleep(min(fixed_duration, timeout))
            return driver.execute_script("return document.readyState") == "complete"

        try:
            WebDriverWait(driver, timeout).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
        except TimeoutException:
            logger.warning(f"{self.mode.value} mode: document not ready after {timeout}s")
            return False

        self._buffer()
        return True

    def wait_for_element(
        self,
        driver: WebDriver,
        locator: tuple[str, str],
        timeout: float = 10.0,
        fixed_duration: float = 1.0,
        condition: str = "presence",
    ) -> Any | None:
        """
        Wait for an element and return it, or None if it never appeared.

        In FIXED mode the sleep happens first and a single lookup follows.
        condition is one of "presence", "visible" or "clickable".
        """
        if self.mode == WaitMode.FIXED:
            time_module.sleep(fixed_duration)
            found = driver.find_elements(*locator)
            return found[0] if found else None

        conditions = {
            "presence": expected_conditions.presence_of_element_located,
            "visible": expected_conditions.visibility_of_element_located,
            "clickable": expected_conditions.element_to_be_clickable,
        }
        expected = conditions.get(condition, expected_conditions.presence_of_element_located)

        element = None
        try:
            element = WebDriverWait(driver, timeout).until(expected(locator))
            logger.debug(f"{self.mode.value} mode: element {locator} found")
        except TimeoutException:
            logger.warning(f"{self.mode.value} mode: timeout waiting for element {locator}")

        self._buffer()
        return element

    def wait_after_action(self, fixed_duration: float = 0.5) -> None:
        """Pause after a click or value assignment so the page can react."""
        if self.mode == WaitMode.FIXED:
            time_module.sleep(fixed_duration)
        else:
            self._buffer()

    def review_pause(self) -> None:
        """Pause between filling the contact form and submitting it."""
        logger.debug(f"Contact review pause {self.review_pause_seconds}s")
        time_module.sleep(self.review_pause_seconds)
