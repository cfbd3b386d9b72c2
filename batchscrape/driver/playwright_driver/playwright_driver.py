"""Playwright executor for JavaScript-heavy websites.

This module provides two pieces:

1. BrowserSession - an explicitly owned browser resource. The browser is
   launched lazily on first use, shared by reference with every executor
   call, and shut down only by close() (or leaving ``async with``). Nothing
   is stored in module-level state.
2. PlaywrightExecutor - the TargetExecutor that navigates to a target, runs
   its scripted actions and extracts the requested content.

Every execute() call gets its own browser context and page, so concurrent
calls never mutate a shared page and the batch driver's concurrency bound is
safe to rely on without extra locking.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import (
    Error as PlaywrightError,
)
from playwright.async_api import (
    TimeoutError as PlaywrightTimeoutError,
)
from typing_extensions import assert_never

from batchscrape.common.exceptions import (
    HTTPStatusFailure,
    RequestTimeoutException,
    ScriptFailure,
    SelectorNotFoundFailure,
)
from batchscrape.common.extraction import NO_CONTENT
from batchscrape.data_types import (
    ClickAction,
    OutputFormat,
    Payload,
    ProxyConfig,
    ScriptAction,
    ScrollAction,
    Target,
    TypeAction,
    WaitAction,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1280, "height": 720}
LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


class BrowserSession:
    """A lazily launched browser shared by many executor calls.

    Example:
        async with BrowserSession(headless=True) as session:
            executor = PlaywrightExecutor(session)
            result = await run_batch(targets, executor)
    """

    def __init__(
        self,
        browser_type: str = "chromium",
        headless: bool = True,
        launch_args: list[str] | None = None,
    ) -> None:
        """Initialize the session. No browser is started yet.

        Args:
            browser_type: "chromium", "firefox" or "webkit"
                (default: "chromium").
            headless: Run the browser in headless mode (default: True).
            launch_args: Extra browser command line arguments.
        """
        self.browser_type = browser_type
        self.headless = headless
        self.launch_args = LAUNCH_ARGS if launch_args is None else launch_args
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    async def browser(self) -> Browser:
        """Return the shared browser, launching it on first use."""
        async with self._lock:
            if self._browser is None:
                logger.info(f"Launching {self.browser_type} browser")
                self._playwright = await async_playwright().start()
                try:
                    launcher = getattr(self._playwright, self.browser_type)
                    self._browser = await launcher.launch(
                        headless=self.headless, args=self.launch_args
                    )
                except BaseException:
                    await self._playwright.stop()
                    self._playwright = None
                    raise
            return self._browser

    @asynccontextmanager
    async def page(
        self,
        viewport: dict[str, int] | None = None,
        proxy: ProxyConfig | None = None,
    ) -> AsyncIterator[Page]:
        """Open a page in a fresh browser context, closed on exit.

        Args:
            viewport: Viewport size (default: 1280x720).
            proxy: Optional proxy for this context's traffic.

        Yields:
            A new Page owned by the caller for the duration of the block.
        """
        browser = await self.browser()
        context_kwargs: dict[str, Any] = {
            "viewport": viewport or DEFAULT_VIEWPORT
        }
        if proxy is not None:
            context_kwargs["proxy"] = proxy.to_playwright()

        context = await browser.new_context(**context_kwargs)
        try:
            yield await context.new_page()
        finally:
            await context.close()

    async def close(self) -> None:
        """Close the browser and stop Playwright. Safe to call twice."""
        async with self._lock:
            browser, self._browser = self._browser, None
            playwright, self._playwright = self._playwright, None
        if browser is not None:
            logger.info("Closing browser")
            try:
                await browser.close()
            finally:
                if playwright is not None:
                    await playwright.stop()
        elif playwright is not None:
            await playwright.stop()

    async def __aenter__(self) -> BrowserSession:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def _pause(delay_ms: int | None) -> None:
    if delay_ms:
        await asyncio.sleep(delay_ms / 1000)


async def run_action(page: Page, action: ScriptAction) -> None:
    """Perform one scripted action on a page.

    Args:
        page: The page to act on.
        action: The action to perform.
    """
    match action:
        case ClickAction():
            await page.click(action.selector)
            await _pause(action.delay_ms)
        case TypeAction():
            await page.type(action.selector, action.text)
            await _pause(action.delay_ms)
        case WaitAction():
            await _pause(action.delay_ms)
        case ScrollAction():
            await page.evaluate(
                "() => window.scrollTo(0, document.body.scrollHeight)"
            )
            await _pause(action.delay_ms)
        case _:
            assert_never(action)


class PlaywrightExecutor:
    """TargetExecutor that renders targets in a real browser.

    The executor borrows a BrowserSession; it never launches or closes the
    browser itself.

    Args:
        session: The BrowserSession to open pages in.
        viewport: Viewport size for every page (default: 1280x720).
    """

    def __init__(
        self,
        session: BrowserSession,
        viewport: dict[str, int] | None = None,
    ) -> None:
        self.session = session
        self.viewport = viewport or DEFAULT_VIEWPORT

    async def execute(self, target: Target, timeout: float) -> Payload:
        """Navigate to a target, run its actions and extract content.

        Args:
            target: The target to render.
            timeout: Attempt timeout in seconds, applied to navigation and
                every wait.

        Returns:
            Payload with the extracted content.

        Raises:
            RequestTimeoutException: If navigation or a wait times out.
            HTTPStatusFailure: If the navigation response is an error status.
            SelectorNotFoundFailure: If the selector matches nothing.
            ScriptFailure: If any other browser operation fails.
        """
        timeout_ms = timeout * 1000
        logger.debug(f"Rendering {target.url}", extra={"url": target.url})

        try:
            async with self.session.page(self.viewport, target.proxy) as page:
                page.set_default_timeout(timeout_ms)
                response = await page.goto(
                    target.url, wait_until="networkidle", timeout=timeout_ms
                )
                if response is not None and not response.ok:
                    raise HTTPStatusFailure(
                        status_code=response.status,
                        url=target.url,
                        reason=response.status_text,
                    )

                if target.wait_for_selector:
                    await page.wait_for_selector(target.wait_for_selector)
                await _pause(target.wait_for_ms)

                for action in target.actions:
                    await run_action(page, action)

                content = await self._extract(page, target)
                return Payload(
                    content=content or NO_CONTENT,
                    status_code=response.status if response else None,
                    final_url=page.url,
                )
        except PlaywrightTimeoutError as e:
            logger.warning(f"Playwright timeout for {target.url}: {e}")
            raise RequestTimeoutException(
                url=target.url, timeout_seconds=timeout
            ) from e
        except PlaywrightError as e:
            raise ScriptFailure(f"Browser error at {target.url}: {e}") from e

    async def _extract(self, page: Page, target: Target) -> str:
        """Pull the requested content out of the rendered page."""
        if target.format is OutputFormat.SCREENSHOT:
            image = await page.screenshot(full_page=True, type="png")
            encoded = base64.b64encode(image).decode("ascii")
            return f"data:image/png;base64,{encoded}"

        if target.selector:
            element = await page.query_selector(target.selector)
            if element is None:
                raise SelectorNotFoundFailure(
                    selector=target.selector, url=target.url
                )
            if target.format is OutputFormat.HTML:
                return await element.evaluate("el => el.outerHTML")
            return ((await element.text_content()) or "").strip()

        if target.format is OutputFormat.HTML:
            return await page.content()
        text = await page.evaluate(
            "() => document.body ? document.body.textContent : ''"
        )
        return (text or "").strip()
