"""Shared HTTP plumbing for the providers that talk REST through httpx."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from .config import config


@asynccontextmanager
async def open_client(
    client: httpx.AsyncClient | None,
    timeout: float | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one owned by this call.

    An injected client is never closed here; its owner manages its lifetime.
    """
    if client is not None:
        yield client
        return

    async with httpx.AsyncClient(
        timeout=timeout if timeout is not None else config.REQUEST_TIMEOUT,
        headers=config.get_api_headers(),
    ) as owned_client:
        yield owned_client
