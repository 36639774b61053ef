import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from .settings import settings

logger = logging.getLogger(__name__)


class BlockingRunner:
    """Runs CPU-bound or disk-bound calls (bcrypt, PDF rendering) off the event loop."""

    def __init__(self, max_workers: int):
        self.max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="escrow-blocking"
            )
        return self._executor

    async def run_blocking(self, func: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
            logger.info("Blocking executor shut down")


asyncio_run = BlockingRunner(max_workers=settings.BLOCKING_WORKERS)
