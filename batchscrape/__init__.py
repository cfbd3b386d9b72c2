"""
Batch scraping engine.

This module runs ordered batches of scraping targets with bounded
concurrency, linear retry backoff and per-attempt timeouts, and returns one
result per target in submission order. Fetching is delegated to executors:
a static httpx/lxml executor and a Playwright executor.
"""
