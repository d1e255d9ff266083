import asyncio
import inspect
import logging

from asyncio import AbstractEventLoop
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


DEFAULT_KEEPALIVE_INTERVAL = 5.0


class KeepAlive:
    """
    The KeepAlive object periodically calls a coroutine function that sends
    a keep-alive frame to hold an idle connection open.

    Unlike a general purpose timer a keep-alive never stops itself. If the
    send function raises an exception it is logged and the next send is
    still scheduled. Only a call to :meth:`stop` ends it.
    """

    def __init__(
        self,
        send_func: Callable[[], Awaitable],
        interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        loop: AbstractEventLoop = None,
    ):
        """
        :param send_func: A coroutine function, taking no arguments, that will
          be called upon each expiry of the interval.

        :param interval: a float value representing the number of seconds to
          wait between sends. Defaults to 5 seconds.

        :param loop: a specific loop instance to use. If not specified the
          running loop is used.
        """
        if not inspect.iscoroutinefunction(send_func):
            raise Exception(f"send_func must be a coroutine function, got {send_func}")

        if interval <= 0:
            raise ValueError(f"interval must be greater than zero, got {interval}")

        self.interval = interval
        self.loop = loop

        self._func = send_func
        self._handle = None  # type: Optional[asyncio.TimerHandle]
        self._task = None  # type: Optional[asyncio.Task]
        self._started = False
        self._running = False
        self.sends = 0

    @property
    def started(self):
        """ Return True if the keep-alive has been started """
        return self._started

    @property
    def running(self):
        """ Return True if a keep-alive send is currently in progress """
        return self._running

    async def start(self, delay: float = None) -> None:
        """ Start sending keep-alives

        :param delay: An optional value representing an initial delay, in
          seconds, to wait before the first send. If not specified the
          interval is used.
        """
        if self._started:
            logger.warning("Keep-alive is already started")
            return

        self.loop = self.loop or asyncio.get_running_loop()
        self._started = True
        self._running = False
        self._schedule(self.interval if delay is None else delay)

    async def stop(self) -> None:
        """ Stop sending keep-alives.

        Any send that is in progress is cancelled and awaited.
        """
        if not self._started:
            logger.warning("Keep-alive is already stopped")
            return

        task = self.cancel()
        if task:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def cancel(self) -> Optional[asyncio.Task]:
        """ Stop scheduling sends without waiting.

        This can be called from a plain callback. Any send in progress is
        cancelled and its task is returned so a caller can await it.
        """
        self._started = False
        if self._handle:
            self._handle.cancel()
        self._handle = None

        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            return task
        self._running = False
        return None

    def _schedule(self, delay: float) -> None:
        self._handle = self.loop.call_later(delay, self._on_expiry)

    def _on_expiry(self) -> None:
        """ Called upon expiry of the interval to send a keep-alive """
        self._handle = None
        if not self._started:
            return

        if self._running:
            logger.warning("Keep-alive send is still running, skipping this one")
        else:
            self._task = self.loop.create_task(self._runner())

        self._schedule(self.interval)

    async def _runner(self):
        """ Execute the send function, absorbing any failure """
        self._running = True
        try:
            await self._func()
            self.sends += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Keep-alive send failed")
        finally:
            self._running = False
