"""Playwright-based executor for JavaScript-heavy websites.

This module provides a browser session with an explicit lifecycle and an
executor that renders targets, runs scripted actions and extracts content.
"""

from batchscrape.driver.playwright_driver.playwright_driver import (
    BrowserSession,
    PlaywrightExecutor,
    run_action,
)

__all__ = ["BrowserSession", "PlaywrightExecutor", "run_action"]
