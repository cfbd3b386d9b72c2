"""Batch driver implementation.

This module contains the driver that runs an ordered batch of targets
through a TargetExecutor using concurrent asyncio tasks.

The BatchDriver:

1. Validates the whole request before dispatching anything
2. Runs one task per target, gated by a FIFO ConcurrencyLimiter
3. Retries failed attempts according to a linear RetryPolicy, holding the
   slot while it waits
4. Reassembles results in submission order once every task has finished

Individual target failures never fail the batch. Only a malformed request
(BatchValidationError) or corrupted limiter accounting
(LimiterInvariantError) propagate out of run().
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, cast

from pydantic import ValidationError

from batchscrape.common.exceptions import (
    BatchValidationError,
    ExecutorFailure,
    ExhaustedRetries,
    LimiterInvariantError,
    RequestTimeoutException,
    ScriptFailure,
)
from batchscrape.common.request_manager import TargetExecutor
from batchscrape.data_types import (
    Attempt,
    BatchItemResult,
    BatchOptions,
    BatchResult,
    Target,
)
from batchscrape.driver.limiter import ConcurrencyLimiter
from batchscrape.driver.retry import RetryPolicy

logger = logging.getLogger(__name__)


def build_options(**kwargs: Any) -> BatchOptions:
    """Validate keyword options into a BatchOptions.

    Raises:
        BatchValidationError: If an option is unknown, mistyped or out of
            range.
    """
    unknown = set(kwargs) - set(BatchOptions.model_fields)
    if unknown:
        raise BatchValidationError(
            f"unknown option(s): {', '.join(sorted(unknown))}"
        )
    try:
        return BatchOptions(**kwargs)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first["loc"]) or None
        raise BatchValidationError(first["msg"], field=field) from e


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BatchDriver:
    """Run a batch of targets with bounded concurrency and retries.

    Example usage:
        async with StaticExecutor() as executor:
            driver = BatchDriver(executor, build_options(concurrency=2))
            result = await driver.run([Target(url=u) for u in urls])
        print(render_summary(result))
    """

    def __init__(
        self,
        executor: TargetExecutor,
        options: BatchOptions | None = None,
        on_item_complete: Callable[[BatchItemResult], Awaitable[None]]
        | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the driver.

        Args:
            executor: TargetExecutor performing each attempt. The driver does
                not own it and never closes it.
            options: Validated batch options. Defaults to BatchOptions().
            on_item_complete: Optional async callback invoked as each target
                reaches its terminal result, in completion order.
            sleep: Coroutine function used for pacing and backoff delays.
        """
        self.executor = executor
        self.options = options or BatchOptions()
        self.on_item_complete = on_item_complete
        self.sleep = sleep
        self.retry_policy = RetryPolicy(
            max_retries=self.options.max_retries,
            base_delay_ms=self.options.retry_base_delay_ms,
        )
        self.limiter: ConcurrencyLimiter | None = None

    def _validate_targets(self, targets: Iterable[Target]) -> list[Target]:
        """Check the submitted targets and apply the batch proxy.

        Returns:
            The targets to run, in submission order.

        Raises:
            BatchValidationError: If the list is empty or holds anything the
                executor cannot run.
        """
        if targets is None or isinstance(targets, (str, bytes)):
            raise BatchValidationError(
                "must be a sequence of targets", field="targets"
            )
        submitted = list(targets)
        if not submitted:
            raise BatchValidationError(
                "at least one target is required", field="targets"
            )

        validate_target = getattr(self.executor, "validate_target", None)
        prepared: list[Target] = []
        for index, target in enumerate(submitted):
            if not isinstance(target, Target):
                raise BatchValidationError(
                    f"item {index} is {type(target).__name__}, not Target",
                    field="targets",
                )
            if not target.url:
                raise BatchValidationError(
                    f"item {index} has an empty URL", field="targets"
                )
            if target.proxy is None and self.options.proxy is not None:
                target = replace(target, proxy=self.options.proxy)
            if validate_target is not None:
                validate_target(target)
            prepared.append(target)
        return prepared

    async def run(self, targets: Iterable[Target]) -> BatchResult:
        """Run every target to a terminal result.

        Args:
            targets: Non-empty sequence of targets. Order is preserved in the
                result.

        Returns:
            BatchResult with exactly one item per target, in submission order.

        Raises:
            BatchValidationError: If the request is malformed. Raised before
                any target is dispatched.
            LimiterInvariantError: If slot accounting is violated.
        """
        prepared = self._validate_targets(targets)
        self.limiter = ConcurrencyLimiter(self.options.concurrency)
        results: list[BatchItemResult | None] = [None] * len(prepared)

        logger.info(
            f"Starting batch of {len(prepared)} target(s) "
            f"(concurrency={self.options.concurrency}, "
            f"max_retries={self.options.max_retries}, "
            f"timeout={self.options.timeout_sec}s)"
        )

        tasks = [
            asyncio.create_task(
                self._run_target(index, target, self.limiter, results)
            )
            for index, target in enumerate(prepared)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        missing = [index for index, item in enumerate(results) if item is None]
        if missing:
            raise LimiterInvariantError(
                f"No result recorded for target(s) {missing}"
            )

        batch_result = BatchResult(
            items=tuple(item for item in results if item is not None)
        )
        logger.info(
            f"Batch finished: {batch_result.success_count} succeeded, "
            f"{batch_result.failure_count} failed of {batch_result.total}"
        )
        return batch_result

    async def _run_target(
        self,
        index: int,
        target: Target,
        limiter: ConcurrencyLimiter,
        results: list[BatchItemResult | None],
    ) -> None:
        """Run one target inside a slot and record its result."""
        async with limiter.slot():
            pacing = self.retry_policy.pacing_delay(
                index, self.options.delay_ms
            )
            if pacing:
                await self.sleep(pacing)
            item = await self._attempt_loop(index, target)

        results[index] = item
        if self.on_item_complete:
            try:
                await self.on_item_complete(item)
            except Exception:
                logger.exception(
                    f"on_item_complete failed for target {index}",
                    extra={"url": target.url, "index": index},
                )

    async def _attempt_loop(
        self, index: int, target: Target
    ) -> BatchItemResult:
        """Execute attempts until one succeeds or the policy gives up."""
        timeout = self.options.timeout_sec
        retries = 0

        while True:
            attempt = Attempt(number=retries, started_at=_now())
            log_extra = {
                "url": target.url,
                "index": index,
                "attempt": retries,
            }
            logger.debug(
                f"Target {index} attempt {retries}: {target.url}",
                extra=log_extra,
            )

            try:
                attempt.outcome = await asyncio.wait_for(
                    self.executor.execute(target, timeout), timeout=timeout
                )
            except TimeoutError:
                attempt.outcome = RequestTimeoutException(
                    url=target.url, timeout_seconds=timeout
                )
            except ExecutorFailure as e:
                attempt.outcome = e
            except LimiterInvariantError:
                raise
            except Exception as e:
                logger.debug(
                    f"Unexpected executor error for {target.url}",
                    exc_info=True,
                    extra=log_extra,
                )
                attempt.outcome = ScriptFailure(f"{type(e).__name__}: {e}")

            if attempt.succeeded:
                return BatchItemResult(
                    index=index,
                    target=target,
                    success=True,
                    payload=attempt.outcome,  # type: ignore[arg-type]
                    attempts_made=attempt.number + 1,
                    completed_at=_now(),
                )

            failure = cast(ExecutorFailure, attempt.outcome)
            if not self.retry_policy.should_retry(retries):
                exhausted = ExhaustedRetries(
                    attempts=attempt.number + 1, last_error=failure
                )
                logger.warning(
                    f"Target {index} ({target.url}) failed: {exhausted}",
                    extra=log_extra | {"error_kind": failure.kind.value},
                )
                return BatchItemResult(
                    index=index,
                    target=target,
                    success=False,
                    error_kind=failure.kind,
                    error_message=failure.message,
                    attempts_made=exhausted.attempts,
                    completed_at=_now(),
                )

            retries += 1
            delay = self.retry_policy.backoff_delay(retries)
            logger.warning(
                f"Target {index} ({target.url}) attempt {attempt.number} "
                f"failed with {failure.kind.value}: {failure.message}; "
                f"retry #{retries} in {delay:.1f}s",
                extra=log_extra | {"error_kind": failure.kind.value},
            )
            if delay:
                await self.sleep(delay)


async def run_batch(
    targets: Iterable[Target],
    executor: TargetExecutor,
    on_item_complete: Callable[[BatchItemResult], Awaitable[None]]
    | None = None,
    **options: Any,
) -> BatchResult:
    """Validate options and run a batch in one call.

    Args:
        targets: Non-empty sequence of targets.
        executor: TargetExecutor performing each attempt.
        on_item_complete: Optional async per-target completion callback.
        **options: BatchOptions fields (concurrency, delay_ms, max_retries,
            timeout_sec, retry_base_delay_ms, proxy).

    Returns:
        The ordered BatchResult.

    Raises:
        BatchValidationError: If options or targets are malformed.
    """
    driver = BatchDriver(
        executor,
        build_options(**options),
        on_item_complete=on_item_complete,
    )
    return await driver.run(targets)
