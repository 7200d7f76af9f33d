"""Browser controller for wsprobe with selector fallback and Cloudflare-aware navigation."""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Literal, Optional, Sequence

from playwright.async_api import (
    Browser,
    BrowserContext,
    Locator,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from config import MonitorConfig
from exceptions import (
    BrowserNotStartedError,
    ElementNotFoundError,
    NavigationError,
    ScreenshotError,
)
from url_filter import UrlFilter
from ws_monitor import WebSocketMonitor, setup_monitoring

BrowserType = Literal["chromium", "firefox", "webkit"]

CLOUDFLARE_INDICATORS = [
    'text="Checking your browser before accessing"',
    'text="Just a moment"',
    'text="Please wait"',
    '[id*="cf-"]',
    '[class*="cf-"]',
    'iframe[src*="challenges.cloudflare.com"]',
    'iframe[src*="cloudflare"]',
    'text="DDoS protection by Cloudflare"',
    'text="Ray ID"',
]
CLOUDFLARE_TITLES = ("just a moment", "checking your browser")
CLOUDFLARE_CHECK_INTERVAL_MS = 1000


class SimpleBrowser:
    """Playwright browser manager for driving pages whose WebSockets are probed."""

    def __init__(
        self,
        browser_type: BrowserType = "chromium",
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 720,
        slow_mo: int = 0,
        navigation_timeout_ms: float = 15000,
        action_timeout_ms: float = 5000,
        cloudflare_wait_ms: float = 30000,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser_type = browser_type
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.slow_mo = slow_mo
        self.navigation_timeout_ms = navigation_timeout_ms
        self.action_timeout_ms = action_timeout_ms
        self.cloudflare_wait_ms = cloudflare_wait_ms
        self.logger = logger or logging.getLogger("browser")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._console_messages: list[dict[str, Any]] = []

    def _ensure_started(self) -> None:
        """Raise if browser not started."""
        if self.page is None:
            raise BrowserNotStartedError()

    async def start(self) -> None:
        """Start the browser with specified engine."""
        self._playwright = await async_playwright().start()

        browser_launcher = getattr(self._playwright, self.browser_type)
        launch_options: dict[str, Any] = {"headless": self.headless}
        if self.slow_mo > 0:
            launch_options["slow_mo"] = self.slow_mo

        self.browser = await browser_launcher.launch(**launch_options)
        self.context = await self.browser.new_context(
            viewport={"width": self.viewport_width, "height": self.viewport_height}
        )
        self.context.set_default_timeout(self.action_timeout_ms)
        self.context.set_default_navigation_timeout(self.navigation_timeout_ms)
        self.page = await self.context.new_page()
        self.page.on("console", self._handle_console)

        self.logger.info(f"Browser started: {self.browser_type} (headless={self.headless})")

    def _handle_console(self, msg: Any) -> None:
        """Capture console messages."""
        self._console_messages.append({
            "type": msg.type,
            "text": msg.text,
        })
        # Keep only last 100 messages
        if len(self._console_messages) > 100:
            self._console_messages = self._console_messages[-100:]

    async def close(self) -> None:
        """Close the browser and clean up resources."""
        if self.page:
            await self.page.close()
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self._playwright:
            await self._playwright.stop()
        self.page = None
        self.context = None
        self.browser = None
        self._playwright = None
        self.logger.info("Browser closed")

    async def __aenter__(self) -> SimpleBrowser:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ─────────────────────────────────────────────────────────────────────────
    # WebSocket monitoring
    # ─────────────────────────────────────────────────────────────────────────

    def monitor_websockets(
        self,
        url_filter: UrlFilter = None,
        config: Optional[MonitorConfig] = None,
    ) -> WebSocketMonitor:
        """Attach a WebSocket monitor to the current page. Call before navigating."""
        self._ensure_started()
        return setup_monitoring(self.page, url_filter=url_filter, config=config)

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def goto(
        self,
        url: str,
        wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "load",
        timeout: Optional[float] = None,
    ) -> None:
        """Navigate to a URL with configurable wait strategy."""
        self._ensure_started()
        timeout = timeout if timeout is not None else self.navigation_timeout_ms
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(f"Navigation timed out: {url}", url=url, timeout=timeout) from e
        except Exception as e:
            raise NavigationError(f"Navigation failed: {e}", url=url) from e

    async def wait_for_load_state(
        self,
        state: Literal["load", "domcontentloaded", "networkidle"] = "networkidle",
        timeout: float = 10000,
    ) -> bool:
        """Wait for page to reach specified load state. Returns False on timeout."""
        self._ensure_started()
        try:
            await self.page.wait_for_load_state(state, timeout=timeout)
            return True
        except PlaywrightTimeout:
            return False

    async def is_cloudflare_challenge(self) -> bool:
        """Check the page for Cloudflare challenge markers, title and URL."""
        self._ensure_started()
        try:
            for selector in CLOUDFLARE_INDICATORS:
                if await self.page.locator(selector).first.is_visible():
                    return True

            title = (await self.page.title()).lower()
            if any(marker in title for marker in CLOUDFLARE_TITLES):
                return True

            return "challenges.cloudflare.com" in (self.page.url or "")
        except Exception as e:
            self.logger.debug(f"Cloudflare check failed: {e}")
            return False

    async def wait_for_cloudflare_challenge(self, max_wait_ms: Optional[float] = None) -> bool:
        """Wait for a Cloudflare challenge to clear. Returns False if it is still there."""
        max_wait_ms = max_wait_ms if max_wait_ms is not None else self.cloudflare_wait_ms

        if not await self.is_cloudflare_challenge():
            self.logger.debug("No Cloudflare challenge detected")
            return True

        self.logger.info("Cloudflare challenge detected, waiting for completion...")
        if not self.headless:
            self.logger.info("If the challenge needs manual interaction, complete it in the browser")

        deadline = time.monotonic() + max_wait_ms / 1000.0
        while time.monotonic() < deadline:
            await asyncio.sleep(CLOUDFLARE_CHECK_INTERVAL_MS / 1000.0)
            if not await self.is_cloudflare_challenge():
                self.logger.info("Cloudflare challenge completed")
                await self.wait_for_load_state("networkidle", timeout=5000)
                return True

        self.logger.warning("Cloudflare challenge timeout - challenge may still be active")
        return False

    async def navigate_with_cloudflare_handling(self, url: str) -> bool:
        """Navigate, sit out any Cloudflare challenge, then let the page settle."""
        await self.goto(url, wait_until="domcontentloaded")
        cleared = await self.wait_for_cloudflare_challenge()
        await self.wait_for_load_state("networkidle", timeout=10000)
        return cleared

    # ─────────────────────────────────────────────────────────────────────────
    # Element location with selector fallback
    # ─────────────────────────────────────────────────────────────────────────

    async def wait_for_element(
        self,
        selectors: Sequence[str],
        timeout_ms: Optional[float] = None,
    ) -> Optional[Locator]:
        """Return the first selector's element that becomes visible, or None."""
        self._ensure_started()
        timeout_ms = timeout_ms if timeout_ms is not None else self.action_timeout_ms
        for selector in selectors:
            element = self.page.locator(selector).first
            try:
                await element.wait_for(state="visible", timeout=timeout_ms)
                return element
            except PlaywrightTimeout:
                continue
        return None

    async def find_element(
        self,
        selectors: Sequence[str],
        timeout_ms: float = 1000,
    ) -> Locator:
        """Return the first visible element among candidate selectors."""
        element = await self.wait_for_element(selectors, timeout_ms=timeout_ms)
        if element is None:
            raise ElementNotFoundError(
                "Element not found. None of the selectors matched or visible: "
                + ", ".join(selectors),
                selectors=selectors,
            )
        return element

    async def click(self, selectors: Sequence[str], timeout_ms: float = 1000) -> None:
        """Click the first visible element among candidate selectors."""
        element = await self.find_element(selectors, timeout_ms=timeout_ms)
        await element.click()

    async def type_in_terminal(
        self,
        selectors: Sequence[str],
        text: str,
        press_enter: bool = True,
        delay: float = 0,
    ) -> None:
        """Focus a terminal element and type through the keyboard."""
        element = await self.find_element(selectors, timeout_ms=self.action_timeout_ms)
        await element.click()
        await self.page.keyboard.type(text, delay=delay)
        if press_enter:
            await self.page.keyboard.press("Enter")

    # ─────────────────────────────────────────────────────────────────────────
    # Page info and evidence
    # ─────────────────────────────────────────────────────────────────────────

    async def screenshot(self, path: Optional[Path] = None, full_page: bool = True) -> bytes:
        """Take a screenshot, optionally saving it to ``path``."""
        self._ensure_started()
        try:
            if path is not None:
                path.parent.mkdir(parents=True, exist_ok=True)
                return await self.page.screenshot(path=str(path), full_page=full_page)
            return await self.page.screenshot(full_page=full_page)
        except Exception as e:
            raise ScreenshotError(f"Screenshot failed: {e}") from e

    def get_url(self) -> str:
        """Get current page URL."""
        self._ensure_started()
        return self.page.url

    def get_console_messages(self) -> list[dict[str, Any]]:
        """Get captured console messages."""
        return list(self._console_messages)

    def get_console_errors(self) -> list[str]:
        return [m["text"] for m in self._console_messages if m.get("type") == "error"]
