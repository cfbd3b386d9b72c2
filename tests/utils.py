"""Test utilities for batch driver tests.

This module provides instrumented executors and callbacks for exercising
BatchDriver without network access.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from batchscrape.common.exceptions import ExecutorFailure, NetworkFailure
from batchscrape.data_types import Payload, Target


def collect_results_async() -> tuple[
    Callable[[Any], Awaitable[None]], list[Any]
]:
    """Create an async callback that collects results in a list.

    Returns:
        A tuple of (async_callback_function, results_list).

    Example:
        callback, results = collect_results_async()
        driver = BatchDriver(executor, on_item_complete=callback)
        await driver.run(targets)
        assert len(results) == len(targets)
    """
    results: list[Any] = []

    async def callback(data: Any) -> None:
        results.append(data)

    return callback, results


class ScriptedExecutor:
    """Executor whose outcome per URL is scripted in advance.

    ``failures_before_success`` maps a URL to the number of failed attempts
    before it succeeds; ``None`` means it always fails. URLs not listed
    succeed immediately.

    Every call is recorded, and the number of concurrently running calls is
    tracked so tests can assert on the observed maximum.
    """

    def __init__(
        self,
        failures_before_success: dict[str, int | None] | None = None,
        latency: float = 0.0,
        failure: Callable[[Target], ExecutorFailure] | None = None,
    ) -> None:
        self.failures_before_success = failures_before_success or {}
        self.latency = latency
        self.failure = failure or (
            lambda target: NetworkFailure(f"connection refused: {target.url}")
        )
        self.calls: list[tuple[str, float]] = []
        self.active = 0
        self.max_active = 0
        self._attempts: dict[str, int] = {}

    def attempts_for(self, url: str) -> int:
        return self._attempts.get(url, 0)

    async def execute(self, target: Target, timeout: float) -> Payload:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.calls.append((target.url, time.monotonic()))
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            attempt = self._attempts.get(target.url, 0)
            self._attempts[target.url] = attempt + 1

            if target.url in self.failures_before_success:
                needed = self.failures_before_success[target.url]
                if needed is None or attempt < needed:
                    raise self.failure(target)
            return Payload(content=f"content of {target.url}", status_code=200)
        finally:
            self.active -= 1


class HangingExecutor:
    """Executor that never returns for URLs in ``hang_urls``."""

    def __init__(self, hang_urls: set[str]) -> None:
        self.hang_urls = hang_urls
        self.calls = 0
        self.cancelled = 0

    async def execute(self, target: Target, timeout: float) -> Payload:
        self.calls += 1
        if target.url in self.hang_urls:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        return Payload(content="fast")
