import asyncio
import inspect
import logging

from signal import SIGTERM, SIGINT
from typing import Awaitable, Optional

logger = logging.getLogger(__name__)


def _check_awaitable(name: str, obj) -> None:
    if not (inspect.isawaitable(obj) or inspect.iscoroutinefunction(obj)):
        raise TypeError(
            f"{name} must be a coroutine or a coroutine function "
            f"that takes no arguments, got {obj!r}"
        )


def run(
    main: Optional[Awaitable[None]] = None, *, finalize: Optional[Awaitable[None]] = None,
):
    """ Run a Quartz client script on a new event loop.

    The loop keeps running after ``main`` completes so that connected
    clients continue to receive messages. It stops on SIGINT or SIGTERM, on
    an unhandled exception in any task, or when some code stops it.

    .. code-block:: python

        client = QuartzClient(on_message=handle)

        async def main():
            await client.connect("127.0.0.1", 2566)
            await client.send(MessageHeader.create("getProduction"), {"pos": 0})

        run(main, finalize=client.close)

    :param main: A coroutine, or coroutine function, that connects clients
      and sends the first messages.

    :param finalize: An optional coroutine, or coroutine function, run while
      shutting down. Use it to close clients gracefully.

    :raises TypeError: if main or finalize can not be awaited.
    """
    if main:
        _check_awaitable("main", main)
    if finalize:
        _check_awaitable("finalize", finalize)

    logger.debug("Runner starting")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler(sig):
        logger.info(f"Caught {sig.name}, stopping.")
        loop.call_soon(loop.stop)

    loop.add_signal_handler(SIGINT, signal_handler, SIGINT)
    loop.add_signal_handler(SIGTERM, signal_handler, SIGTERM)

    def exception_handler(loop, context):
        logger.error(f"Caught exception: {context}")
        loop.call_soon(loop.stop)

    loop.set_exception_handler(exception_handler)

    def on_main_done(task):
        if not task.cancelled() and task.exception():
            loop.call_exception_handler(
                {"message": "Exception in main coroutine", "exception": task.exception()}
            )

    try:
        if main:
            if inspect.iscoroutinefunction(main):
                main = main()  # type: ignore
            main_task = loop.create_task(main)
            main_task.add_done_callback(on_main_done)
        loop.run_forever()
    finally:
        logger.debug("Runner shutting down")
        if finalize:
            if inspect.iscoroutinefunction(finalize):
                finalize = finalize()  # type: ignore
            loop.run_until_complete(finalize)

        # Anything still running, such as a publishing loop, is cancelled
        pending_tasks = asyncio.all_tasks(loop=loop)
        if pending_tasks:
            logger.debug(f"Cancelling {len(pending_tasks)} pending tasks.")
            for task in pending_tasks:
                task.cancel()
            loop.run_until_complete(
                asyncio.gather(*pending_tasks, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        loop.remove_signal_handler(SIGINT)
        loop.remove_signal_handler(SIGTERM)
        asyncio.set_event_loop(None)
        loop.close()

        logger.debug("Runner stopped")
