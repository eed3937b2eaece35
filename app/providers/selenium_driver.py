import asyncio
import functools
import logging
import os
import time as time_module
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, TypeVar

from selenium import webdriver
from selenium.common.exceptions import (
    ElementClickInterceptedException,
    JavascriptException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By
from webdriver_manager.chrome import ChromeDriverManager

from app.config import settings
from app.providers.base import BrowserDriver
from app.providers.portal_dom_schema import DOM
from app.providers.wait_helper import WaitStrategy

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_EXCEPTIONS = (
    StaleElementReferenceException,
    ElementClickInterceptedException,
    TimeoutException,
)

# Assigns a value instantly and fires the events frameworks listen for.
SET_VALUE_SCRIPT = """
const el = arguments[0];
const value = arguments[1];
el.focus();
el.value = value;
el.dispatchEvent(new Event('input', { bubbles: true }));
el.dispatchEvent(new Event('change', { bubbles: true }));
el.dispatchEvent(new Event('blur', { bubbles: true }));
return el.value === value;
"""

SELECT_OPTION_SCRIPT = """
const select = arguments[0];
const wanted = arguments[1].toLowerCase();
for (const option of select.options) {
    if (option.text.trim().toLowerCase().includes(wanted)) {
        select.value = option.value;
        select.dispatchEvent(new Event('input', { bubbles: true }));
        select.dispatchEvent(new Event('change', { bubbles: true }));
        select.dispatchEvent(new Event('blur', { bubbles: true }));
        return option.text.trim();
    }
}
return null;
"""

FILL_CONTACT_SCRIPT = """
const [nameSelectors, phoneSelectors, emailSelectors, values] = arguments;
const find = (selectors) => {
    for (const selector of selectors) {
        const el = document.querySelector(selector);
        if (el) return el;
    }
    return null;
};
const assign = (el, value) => {
    if (!el) return false;
    el.focus();
    el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    el.dispatchEvent(new Event('blur', { bubbles: true }));
    return true;
};
return {
    name: assign(find(nameSelectors), values.name),
    phone: assign(find(phoneSelectors), values.phone),
    email: assign(find(emailSelectors), values.email),
};
"""


def with_retry(
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for retrying operations that may fail due to transient Selenium issues.

    Uses exponential backoff between attempts. Only retries on specified exception types.

    Args:
        max_attempts: Maximum number of attempts (default 3)
        backoff_base: Base delay in seconds, doubled each attempt (default 0.5)
        exceptions: Tuple of exception types to retry on
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Exception | None = None
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        delay = backoff_base * (2**attempt)
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        time_module.sleep(delay)
                    else:
                        logger.error(f"All {max_attempts} attempts failed for {func.__name__}: {e}")
            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator


class SeleniumBrowserDriver(BrowserDriver):
    """
    Headless Chrome session driving the reservation portal.

    One session lives for the duration of a run: it is opened by start() and
    torn down by close(). All Selenium calls are blocking, so they run on a
    dedicated single worker thread; keeping every call on the same thread
    avoids WebDriver thread-affinity issues.
    """

    def __init__(self, wait_strategy: WaitStrategy | None = None, headless: bool | None = None) -> None:
        self.waits = wait_strategy or WaitStrategy()
        self.headless = settings.headless if headless is None else headless
        self._driver: webdriver.Chrome | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="selenium")

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    def _create_driver(self) -> webdriver.Chrome:
        """Create a Chrome WebDriver instance with automation markers hidden."""
        options = Options()
        if self.headless:
            options.add_argument("--headless=new")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--disable-gpu")
        options.add_argument("--window-size=1440,900")
        options.add_argument("--disable-blink-features=AutomationControlled")
        options.add_experimental_option("excludeSwitches", ["enable-automation"])
        options.add_experimental_option("useAutomationExtension", False)

        # CHROMEDRIVER_PATH wins over ChromeDriverManager's automatic download
        chromedriver_path = os.environ.get("CHROMEDRIVER_PATH")
        if chromedriver_path and os.path.exists(chromedriver_path):
            service = Service(chromedriver_path)
        else:
            service = Service(ChromeDriverManager().install())
        driver = webdriver.Chrome(service=service, options=options)

        driver.execute_cdp_cmd(
            "Page.addScriptToEvaluateOnNewDocument",
            {
                "source": """
                Object.defineProperty(navigator, 'webdriver', {
                    get: () => undefined
                })
            """
            },
        )
        return driver

    def _require_driver(self) -> webdriver.Chrome:
        if self._driver is None:
            raise WebDriverException("Browser session not started")
        return self._driver

    async def start(self) -> bool:
        return await self._call(self._start_sync)

    def _start_sync(self) -> bool:
        if self._driver is not None:
            return True
        try:
            self._driver = self._create_driver()
            logger.info("Browser session started")
            return True
        except (WebDriverException, OSError, ValueError) as e:
            logger.error(f"Could not start browser session: {e}")
            return False

    async def navigate(self, url: str) -> bool:
        return await self._call(self._navigate_sync, url)

    def _navigate_sync(self, url: str) -> bool:
        try:
            driver = self._require_driver()
            driver.set_page_load_timeout(settings.page_load_timeout_seconds)
            logger.info(f"Navigating to {url}")
            driver.get(url)
            return True
        except TimeoutException:
            logger.error(f"Page load timed out for {url}")
            return False
        except WebDriverException as e:
            logger.error(f"Navigation to {url} failed: {e}")
            return False

    async def wait_for_dom_ready(self, timeout: float) -> bool:
        return await self._call(self._wait_for_dom_ready_sync, timeout)

    def _wait_for_dom_ready_sync(self, timeout: float) -> bool:
        if self._driver is None:
            return False
        try:
            return self.waits.wait_for_dom_ready(self._driver, timeout)
        except WebDriverException as e:
            logger.error(f"Error waiting for DOM ready: {e}")
            return False

    async def find_and_click(self, selector: str) -> bool:
        return await self._call(self._find_and_click_safe, selector)

    def _find_and_click_safe(self, selector: str) -> bool:
        try:
            return self._find_and_click_sync(selector)
        except WebDriverException as e:
            logger.error(f"Click on '{selector}' failed: {e}")
            self._capture_diagnostic_info("click_failed")
            return False

    @with_retry(max_attempts=3, backoff_base=0.5)
    def _find_and_click_sync(self, selector: str) -> bool:
        driver = self._require_driver()
        element = self.waits.wait_for_element(
            driver, (By.CSS_SELECTOR, selector), timeout=settings.action_timeout_seconds
        )
        if element is None:
            logger.warning(f"Element not found: {selector}")
            return False

        driver.execute_script("arguments[0].scrollIntoView({block: 'center'});", element)
        # JavaScript click bypasses overlays intercepting the pointer
        driver.execute_script("arguments[0].click();", element)
        self.waits.wait_after_action()
        return True

    async def type_text(self, text: str, selector: str) -> bool:
        return await self._call(self._type_text_safe, text, selector)

    def _type_text_safe(self, text: str, selector: str) -> bool:
        try:
            return self._type_text_sync(text, selector)
        except WebDriverException as e:
            logger.error(f"Entering '{text}' into '{selector}' failed: {e}")
            self._capture_diagnostic_info("type_failed")
            return False

    @with_retry(max_attempts=2, backoff_base=0.5)
    def _type_text_sync(self, text: str, selector: str) -> bool:
        """
        Enter text into the control matching selector.

        <select> controls get the first option whose label contains text.
        <input>/<textarea> controls get the value assigned directly. Any other
        element is treated as a container of choices, and the first clickable
        descendant whose label contains text is clicked.
        """
        driver = self._require_driver()
        element = self.waits.wait_for_element(
            driver, (By.CSS_SELECTOR, selector), timeout=settings.action_timeout_seconds
        )
        if element is None:
            logger.warning(f"Element not found: {selector}")
            return False

        tag = element.tag_name.lower()
        if tag == "select":
            chosen = driver.execute_script(SELECT_OPTION_SCRIPT, element, text)
            if chosen is None:
                logger.warning(f"No option matching '{text}' in {selector}")
                return False
            logger.info(f"Selected option: {chosen}")
        elif tag in ("input", "textarea"):
            if not driver.execute_script(SET_VALUE_SCRIPT, element, text):
                return False
        else:
            wanted = text.strip().lower()
            candidates = element.find_elements(By.CSS_SELECTOR, "button, a, label, [role='button'], li")
            match = next((c for c in candidates if wanted in c.text.strip().lower()), None)
            if match is None:
                logger.warning(f"No choice labelled '{text}' in {selector}")
                return False
            driver.execute_script("arguments[0].click();", match)

        self.waits.wait_after_action()
        return True

    async def fill_all_contact_fields(self, name: str, phone: str, email: str) -> bool:
        return await self._call(self._fill_contact_sync, name, phone, email)

    def _fill_contact_sync(self, name: str, phone: str, email: str) -> bool:
        """Fill name, phone and email in one script, pause for review, then submit the form."""
        try:
            driver = self._require_driver()
            filled = driver.execute_script(
                FILL_CONTACT_SCRIPT,
                list(DOM.CONTACT.name_fields),
                list(DOM.CONTACT.phone_fields),
                list(DOM.CONTACT.email_fields),
                {"name": name, "phone": phone, "email": email},
            )
            missing = [field for field, ok in (filled or {}).items() if not ok]
            if not filled or missing:
                logger.warning(f"Contact fields not found: {missing or 'all'}")
                self._capture_diagnostic_info("contact_fields_missing")
                return False

            self.waits.review_pause()
            return self._find_and_click_sync(DOM.CONTACT.contact_submit)
        except (JavascriptException, WebDriverException) as e:
            logger.error(f"Filling contact form failed: {e}")
            return False

    async def is_email_verification_required(self) -> bool:
        return await self._call(self._is_verification_required_sync)

    def _is_verification_required_sync(self) -> bool:
        if self._driver is None:
            return False
        try:
            if self._driver.find_elements(By.CSS_SELECTOR, DOM.VERIFICATION.code_input):
                return True
            page_text = self._driver.find_element(By.TAG_NAME, "body").text.lower()
            return any(marker in page_text for marker in DOM.VERIFICATION.page_markers)
        except WebDriverException as e:
            logger.warning(f"Could not inspect page for verification step: {e}")
            return False

    async def close(self) -> None:
        await self._call(self._close_sync)

    def _close_sync(self) -> None:
        if self._driver is None:
            return
        try:
            self._driver.quit()
        except WebDriverException as e:
            logger.warning(f"Error closing browser session: {e}")
        finally:
            self._driver = None

    def _capture_diagnostic_info(self, context: str) -> None:
        """Save a screenshot and page source to /tmp for post-mortem debugging."""
        if self._driver is None:
            return
        try:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            screenshot_path = f"/tmp/recbooker_debug_{context}_{timestamp}.png"
            html_path = f"/tmp/recbooker_debug_{context}_{timestamp}.html"

            self._driver.save_screenshot(screenshot_path)
            with open(html_path, "w", encoding="utf-8") as f:
                f.write(self._driver.page_source)
            logger.info(f"Saved debug artifacts to {screenshot_path} and {html_path}")
        except (OSError, WebDriverException) as e:
            logger.warning(f"Failed to capture diagnostic info: {e}")


class MockBrowserDriver(BrowserDriver):
    """
    In-memory browser driver for local runs and tests.

    Every call is recorded in `calls`. Selectors listed in `missing_selectors`
    behave as absent elements, and `verification_required` controls whether the
    email verification step appears after the contact form.
    """

    def __init__(
        self,
        verification_required: bool = False,
        missing_selectors: set[str] | None = None,
        page_loads: bool = True,
        starts: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.verification_required = verification_required
        self.missing_selectors = missing_selectors or set()
        self.page_loads = page_loads
        self.starts = starts
        self.delay = delay
        self.calls: list[tuple[str, ...]] = []
        self.closed = False

    async def _step(self, *call: str) -> None:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)

    async def start(self) -> bool:
        self.closed = False
        await self._step("start")
        return self.starts

    async def navigate(self, url: str) -> bool:
        await self._step("navigate", url)
        return True

    async def wait_for_dom_ready(self, timeout: float) -> bool:
        await self._step("wait_for_dom_ready")
        return self.page_loads

    async def find_and_click(self, selector: str) -> bool:
        await self._step("find_and_click", selector)
        return selector not in self.missing_selectors

    async def type_text(self, text: str, selector: str) -> bool:
        await self._step("type_text", text, selector)
        return selector not in self.missing_selectors

    async def fill_all_contact_fields(self, name: str, phone: str, email: str) -> bool:
        await self._step("fill_all_contact_fields", name, phone, email)
        return "contact" not in self.missing_selectors

    async def is_email_verification_required(self) -> bool:
        return self.verification_required

    async def close(self) -> None:
        self.calls.append(("close",))
        self.closed = True
