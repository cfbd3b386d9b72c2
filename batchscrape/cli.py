"""batchscrape CLI: scrape one URL or a batch of URLs.

Usage:
    batchscrape scrape URL                          # Static fetch, text output
    batchscrape scrape URL --browser --format html  # Render in a browser
    batchscrape batch URL [URL ...]                 # Batch with retries
    batchscrape batch URL ... --concurrency 5 --max-retries 3 --json
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import click

from batchscrape.common.exceptions import (
    BatchValidationError,
    ExecutorFailure,
)
from batchscrape.common.request_manager import StaticExecutor, TargetExecutor
from batchscrape.data_types import (
    OutputFormat,
    ProxyConfig,
    ScriptAction,
    Target,
    parse_action,
)
from batchscrape.driver.aggregator import render_summary, summarize
from batchscrape.driver.batch_driver import BatchDriver, build_options


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_proxy(
    value: str | None,
    protocol: str,
    username: str | None,
    password: str | None,
) -> ProxyConfig | None:
    """Build a ProxyConfig from a ``host:port`` option value.

    Raises:
        click.BadParameter: If the value is not ``host:port``.
    """
    if value is None:
        return None
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise click.BadParameter(
            f"Invalid proxy '{value}'. Expected format: 'host:port'",
            param_hint="--proxy",
        )
    return ProxyConfig(
        host=host,
        port=int(port),
        protocol=protocol,  # type: ignore[arg-type]
        username=username,
        password=password,
    )


def parse_viewport(value: str | None) -> dict[str, int] | None:
    """Parse a ``WIDTHxHEIGHT`` option value into a viewport dict.

    Raises:
        click.BadParameter: If the value is not two positive integers.
    """
    if value is None:
        return None
    width, sep, height = value.lower().partition("x")
    if (
        not sep
        or not width.isdigit()
        or not height.isdigit()
        or int(width) == 0
        or int(height) == 0
    ):
        raise click.BadParameter(
            f"Invalid viewport '{value}'. Expected format: 'WIDTHxHEIGHT'",
            param_hint="--viewport",
        )
    return {"width": int(width), "height": int(height)}


def parse_actions(actions_json: str | None) -> tuple[ScriptAction, ...]:
    """Parse the ``--actions`` JSON list into ScriptAction variants.

    Raises:
        click.BadParameter: If the JSON is invalid or an action is malformed.
    """
    if actions_json is None:
        return ()
    try:
        raw_actions = json.loads(actions_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(
            f"Invalid JSON for --actions: {e}", param_hint="--actions"
        ) from e
    if not isinstance(raw_actions, list) or not all(
        isinstance(raw, dict) for raw in raw_actions
    ):
        raise click.BadParameter(
            "--actions must be a JSON list of objects", param_hint="--actions"
        )
    try:
        return tuple(parse_action(raw) for raw in raw_actions)
    except BatchValidationError as e:
        raise click.BadParameter(e.message, param_hint="--actions") from e


@asynccontextmanager
async def open_executor(
    browser: bool,
    headless: bool = True,
    viewport: dict[str, int] | None = None,
) -> AsyncIterator[TargetExecutor]:
    """Create an executor and shut down its resources on exit."""
    if browser:
        try:
            from batchscrape.driver.playwright_driver import (
                BrowserSession,
                PlaywrightExecutor,
            )
        except ImportError as e:
            raise click.ClickException(
                f"Missing dependency: {e}. "
                "Install the 'playwright' extra: "
                "pip install batchscrape[playwright]"
            ) from e

        async with BrowserSession(headless=headless) as session:
            yield PlaywrightExecutor(session, viewport=viewport)
    else:
        async with StaticExecutor() as executor:
            yield executor


format_option = click.option(
    "--format",
    "output_format",
    type=click.Choice([f.value for f in OutputFormat]),
    default=OutputFormat.TEXT.value,
    show_default=True,
    help="Output format (screenshot requires --browser).",
)
selector_option = click.option(
    "--selector", default=None, help="CSS selector of the content to extract."
)
browser_option = click.option(
    "--browser",
    is_flag=True,
    help="Render pages in a headless browser instead of a static fetch.",
)
timeout_option = click.option(
    "--timeout",
    type=float,
    default=30,
    show_default=True,
    help="Per-attempt timeout in seconds.",
)
wait_for_option = click.option(
    "--wait-for",
    type=click.IntRange(min=0),
    default=None,
    help="Milliseconds to wait after load (browser only).",
)
wait_for_selector_option = click.option(
    "--wait-for-selector",
    default=None,
    help="Selector to wait for after load (browser only).",
)
actions_option = click.option(
    "--actions",
    "actions_json",
    default=None,
    help=(
        "JSON list of browser actions. "
        'Example: \'[{"type": "click", "selector": "#more"}]\''
    ),
)
viewport_option = click.option(
    "--viewport",
    default=None,
    help="Browser viewport as WIDTHxHEIGHT (default: 1280x720).",
)
headed_option = click.option(
    "--headed", is_flag=True, help="Show the browser window."
)


@click.group()
@click.version_option(package_name="batchscrape")
def cli() -> None:
    """batchscrape: concurrent web scraping with retries."""


@cli.command()
@click.argument("url")
@selector_option
@format_option
@browser_option
@timeout_option
@wait_for_option
@wait_for_selector_option
@actions_option
@viewport_option
@headed_option
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def scrape(
    url: str,
    selector: str | None,
    output_format: str,
    browser: bool,
    timeout: float,
    wait_for: int | None,
    wait_for_selector: str | None,
    actions_json: str | None,
    viewport: str | None,
    headed: bool,
    verbose: bool,
) -> None:
    """Scrape a single URL and print the extracted content.

    \b
    Examples:
        batchscrape scrape https://example.com --selector h1
        batchscrape scrape https://example.com --browser --format screenshot
    """
    _configure_logging(verbose)
    target = Target(
        url=url,
        selector=selector,
        format=OutputFormat(output_format),
        actions=parse_actions(actions_json),
        wait_for_ms=wait_for,
        wait_for_selector=wait_for_selector,
    )
    viewport_size = parse_viewport(viewport)

    async def _go() -> str:
        async with open_executor(
            browser, headless=not headed, viewport=viewport_size
        ) as executor:
            validate_target = getattr(executor, "validate_target", None)
            if validate_target is not None:
                validate_target(target)
            payload = await asyncio.wait_for(
                executor.execute(target, timeout), timeout=timeout
            )
            return payload.content

    try:
        content = asyncio.run(_go())
    except BatchValidationError as e:
        raise click.BadParameter(e.message) from e
    except ExecutorFailure as e:
        raise click.ClickException(f"{e.kind.value}: {e.message}") from e
    except TimeoutError as e:
        raise click.ClickException(f"timeout: {url} after {timeout}s") from e

    click.echo(content)


@cli.command()
@click.argument("urls", nargs=-1, required=True)
@selector_option
@format_option
@browser_option
@timeout_option
@wait_for_option
@wait_for_selector_option
@actions_option
@viewport_option
@headed_option
@click.option(
    "--concurrency",
    type=click.IntRange(1, 10),
    default=3,
    show_default=True,
    help="Maximum targets running at once.",
)
@click.option(
    "--delay",
    type=click.IntRange(min=0),
    default=1000,
    show_default=True,
    help="Milliseconds to wait before each target after the first.",
)
@click.option(
    "--max-retries",
    type=click.IntRange(0, 5),
    default=2,
    show_default=True,
    help="Retries per target after the first attempt.",
)
@click.option("--proxy", default=None, help="Proxy as host:port.")
@click.option(
    "--proxy-protocol",
    type=click.Choice(["http", "https", "socks4", "socks5"]),
    default="http",
    show_default=True,
)
@click.option("--proxy-user", default=None, help="Proxy username.")
@click.option("--proxy-password", default=None, help="Proxy password.")
@click.option("--json", "as_json", is_flag=True, help="Print a JSON summary.")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def batch(
    urls: tuple[str, ...],
    selector: str | None,
    output_format: str,
    browser: bool,
    timeout: float,
    wait_for: int | None,
    wait_for_selector: str | None,
    actions_json: str | None,
    viewport: str | None,
    headed: bool,
    concurrency: int,
    delay: int,
    max_retries: int,
    proxy: str | None,
    proxy_protocol: str,
    proxy_user: str | None,
    proxy_password: str | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """Scrape several URLs concurrently, retrying failures.

    Every URL gets the same selector, format, waits and actions.
    Results are printed in the order the URLs were given.

    \b
    Examples:
        batchscrape batch https://a.example https://b.example --selector h1
        batchscrape batch URL1 URL2 URL3 --concurrency 2 --max-retries 0
        batchscrape batch URL1 URL2 --proxy proxy.local:8080 --json
    """
    _configure_logging(verbose)
    proxy_config = parse_proxy(
        proxy, proxy_protocol, proxy_user, proxy_password
    )
    options_kwargs: dict[str, Any] = {
        "concurrency": concurrency,
        "delay_ms": delay,
        "max_retries": max_retries,
        "timeout_sec": timeout,
        "proxy": proxy_config,
    }
    actions = parse_actions(actions_json)
    viewport_size = parse_viewport(viewport)
    targets = [
        Target(
            url=url,
            selector=selector,
            format=OutputFormat(output_format),
            actions=actions,
            wait_for_ms=wait_for,
            wait_for_selector=wait_for_selector,
        )
        for url in urls
    ]

    async def _go():
        async with open_executor(
            browser, headless=not headed, viewport=viewport_size
        ) as executor:
            driver = BatchDriver(executor, build_options(**options_kwargs))
            return await driver.run(targets)

    try:
        result = asyncio.run(_go())
    except BatchValidationError as e:
        raise click.BadParameter(e.message) from e

    if as_json:
        click.echo(json.dumps(summarize(result.items).to_dict(), indent=2))
    else:
        click.echo(render_summary(result))


def main() -> None:
    """Entry point for the ``batchscrape`` console script."""
    cli()
