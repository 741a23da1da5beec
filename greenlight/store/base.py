"""Deadline plumbing shared by the store implementations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from greenlight.exceptions import StoreUnavailableError


@asynccontextmanager
async def bounded(
    timeout: float,
    operation: str,
    errors: tuple[type[BaseException], ...] = (),
) -> AsyncIterator[None]:
    """Run the body under ``timeout`` seconds.

    Deadline expiry and any of ``errors`` (driver exceptions) surface as
    StoreUnavailableError. GreenlightError raised by the body passes through.
    """
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError:
        raise StoreUnavailableError(f"{operation}: exceeded {timeout}s deadline") from None
    except errors as exc:
        raise StoreUnavailableError(f"{operation}: {exc}") from exc
