"""Bridge blocking gateway calls onto the asyncio event loop."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Awaitable, Callable

BlockingRunner = Callable[..., Awaitable[Any]]

_GATEWAY_EXECUTOR = ThreadPoolExecutor(
    max_workers=4, thread_name_prefix="otpflow-gateway"
)


async def run_blocking(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking HTTP call off-loop and resume with its result."""
    loop = asyncio.get_running_loop()
    call = partial(fn, *args, **kwargs)
    return await loop.run_in_executor(_GATEWAY_EXECUTOR, call)
