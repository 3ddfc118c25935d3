import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SessionRunner:
    """
    Owns the event loop every session runs on.

    Flask serves requests from worker threads, so the loop runs in its own
    daemon thread and handlers hand it coroutines through ``submit``.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name='halfway-loop', daemon=True)

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> 'SessionRunner':
        if not self._thread.is_alive():
            self._thread.start()
        return self

    def submit(self, coro: Awaitable, timeout: Optional[float] = None) -> Any:
        """Run ``coro`` on the loop and block until it finishes"""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout)

    def call(self, fn: Callable[[], Any], timeout: Optional[float] = None) -> Any:
        """Run a plain callable on the loop thread"""
        async def _call():
            return fn()
        return self.submit(_call(), timeout)

    def stop(self) -> None:
        if not self._thread.is_alive():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        if not self._thread.is_alive():
            self.loop.close()
        else:
            logger.warning("Event loop thread did not stop within 5s")
