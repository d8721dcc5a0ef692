import asyncio
import logging
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright_stealth import Stealth

from job_harvester.fetchers.base import FetchError, PageFetcher

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF = 2  # seconds
PAGE_TIMEOUT = 90000  # milliseconds
SETTLE_TIMEOUT = 20000  # milliseconds
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
DEBUG_SCREENSHOT = "debug-screenshot.png"
COOKIE_CONSENT_SELECTORS = [
    'button:has-text("Accept All")',
    'button:has-text("Accept")',
    'button:has-text("OK")',
    '[id*="cookie"] button',
    '[class*="cookie"] button',
]


def playwright_proxy(proxy_url: str) -> dict[str, str]:
    """
    Split a proxy URL into Playwright's launch settings. Chromium takes the
    credentials separately from the server address.
    """
    parsed = urlparse(proxy_url)
    server = f"{parsed.scheme}://{parsed.hostname}"
    if parsed.port:
        server = f"{server}:{parsed.port}"

    settings = {"server": server}
    if parsed.username:
        settings["username"] = unquote(parsed.username)
    if parsed.password:
        settings["password"] = unquote(parsed.password)
    return settings


class BrowserPageFetcher(PageFetcher):
    """
    Fetches pages with a stealth-patched headless Chromium.
    The browser starts on the first fetch; every fetch gets its own tab so
    detail pages in one window can load side by side.
    """

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
        headless: bool = True,
        proxy: str | None = None,
        screenshot_path: str = DEBUG_SCREENSHOT,
    ) -> None:
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.headless = headless
        self.proxy = proxy
        self.screenshot_path = screenshot_path
        self._stealth_cm: Any = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._start_lock = asyncio.Lock()

    async def _ensure_context(self) -> BrowserContext:
        async with self._start_lock:
            if self._context is None:
                self._stealth_cm = Stealth().use_async(async_playwright())
                pw = await self._stealth_cm.__aenter__()
                launch_options: dict[str, Any] = {
                    "headless": self.headless,
                    "args": [
                        "--disable-blink-features=AutomationControlled",
                        "--no-sandbox",
                        "--disable-setuid-sandbox",
                    ],
                }
                if self.proxy:
                    launch_options["proxy"] = playwright_proxy(self.proxy)
                self._browser = await pw.chromium.launch(**launch_options)
                self._context = await self._browser.new_context(
                    user_agent=USER_AGENT,
                    viewport={"width": 1920, "height": 1080},
                    locale="en-US",
                )
                logger.info(f"Browser launched (headless: {self.headless}, proxy: {bool(self.proxy)}).")
            return self._context

    async def fetch(self, url: str) -> str:
        context = await self._ensure_context()

        for attempt in range(1, self.max_retries + 1):
            page = await context.new_page()
            try:
                response = await page.goto(url, timeout=PAGE_TIMEOUT, wait_until="domcontentloaded")

                # Wait for Cloudflare challenge to resolve if present
                await self._wait_for_cloudflare(page)

                if response and response.status >= 400:
                    raise FetchError(url, f"HTTP {response.status}")

                await self._accept_cookies(page)
                try:
                    await page.wait_for_load_state("networkidle", timeout=SETTLE_TIMEOUT)
                except Exception as e:
                    logger.debug(f"Page did not reach network idle for {url}: {e}")

                return await page.content()
            except Exception as e:
                if attempt == self.max_retries:
                    logger.error(f"Failed after {self.max_retries} attempts fetching {url}: {e}")
                    if isinstance(e, FetchError):
                        raise
                    raise FetchError(url, str(e)) from e
                backoff = self.initial_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"Fetch attempt {attempt}/{self.max_retries} failed for {url}: {e}. "
                    f"Retrying in {backoff}s..."
                )
                await asyncio.sleep(backoff)
            finally:
                await page.close()

        raise FetchError(url, "no fetch attempts were made")

    @staticmethod
    async def _wait_for_cloudflare(page: Page, timeout: int = 30000) -> None:
        """
        Wait for Cloudflare challenge page to resolve.
        Detects the "Just a moment..." challenge page and waits for it to pass.
        """
        try:
            title = await page.title()
            if "just a moment" in title.lower():
                logger.info("Cloudflare challenge detected, waiting for resolution...")
                await page.wait_for_function(
                    "() => !document.title.toLowerCase().includes('just a moment')",
                    timeout=timeout,
                )
                await page.wait_for_load_state("domcontentloaded")
                logger.info("Cloudflare challenge resolved.")
        except Exception as e:
            logger.warning(f"Cloudflare wait issue: {e}")

    @staticmethod
    async def _accept_cookies(page: Page) -> bool:
        """Click the first visible cookie-consent button. Returns True if one was clicked."""
        for selector in COOKIE_CONSENT_SELECTORS:
            try:
                button = page.locator(selector).first
                if await button.is_visible(timeout=2000):
                    await button.click()
                    logger.info("Clicked cookie consent")
                    return True
            except Exception as e:
                logger.debug(f"Cookie consent selector '{selector}' failed: {e}")
        return False

    async def capture_screenshot(self, url: str) -> str | None:
        """
        Reload a page and save a full-page screenshot for diagnosis.
        Failures are logged and give None; this never aborts a run.
        """
        context = await self._ensure_context()
        page = await context.new_page()
        try:
            await page.goto(url, timeout=PAGE_TIMEOUT, wait_until="domcontentloaded")
            await self._wait_for_cloudflare(page)
            path = Path(self.screenshot_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            return str(path)
        except Exception as e:
            logger.warning(f"Could not capture debug screenshot of {url}: {e}")
            return None
        finally:
            await page.close()

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._stealth_cm is not None:
            await self._stealth_cm.__aexit__(None, None, None)
            self._stealth_cm = None
