import asyncio
import logging
import os
import signal
import socket
import unittest

from quartz import ConnectionStates, MessageHeader, QuartzClient
from quartz.framing import FrameReader
from quartz.runner import run


HEADER = MessageHeader("u1", "getProduction", "JSON", "Demo", "subscribe")


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def not_a_coroutine():
    pass


async def stop_soon():
    await asyncio.sleep(0.05)
    asyncio.get_running_loop().stop()


class LoopbackService(object):
    """ A minimal service that records every byte it receives """

    def __init__(self):
        self.received = bytearray()
        self.server = None
        self.port = None

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader, writer):
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                self.received.extend(data)
        except ConnectionError:
            pass
        finally:
            writer.close()

    def frames(self):
        return list(FrameReader().feed(bytes(self.received)))


class RunnerTestCase(unittest.TestCase):
    def test_main_must_be_awaitable(self):
        with self.assertRaises(TypeError) as exc:
            run(not_a_coroutine)
        self.assertIn(
            "main must be a coroutine or a coroutine function", str(exc.exception)
        )

    def test_finalize_must_be_awaitable(self):
        with self.assertRaises(TypeError) as exc:
            run(stop_soon, finalize=not_a_coroutine)
        self.assertIn(
            "finalize must be a coroutine or a coroutine function", str(exc.exception)
        )

    def test_main_and_finalize_forms(self):
        async def finalize():
            pass

        run(stop_soon)
        run(stop_soon())
        run(stop_soon, finalize=finalize)
        run(stop_soon, finalize=finalize())

    def test_client_is_closed_by_finalize(self):
        service = LoopbackService()
        client = QuartzClient(keepalive_interval=60.0)

        async def main():
            await service.start()
            await client.connect("127.0.0.1", service.port)
            await client.send(HEADER, {"pos": 0})
            await asyncio.sleep(0.1)
            asyncio.get_running_loop().stop()

        async def finalize():
            await client.close()
            await service.stop()

        run(main, finalize=finalize)

        self.assertEqual(client.state, ConnectionStates.Disconnected)
        frames = service.frames()
        self.assertEqual(len(frames), 1)
        self.assertEqual(frames[0].header, HEADER)
        self.assertEqual(frames[0].body, '{"pos":0}')

    def test_connect_failure_stops_the_runner(self):
        client = QuartzClient()
        port = unused_port()

        async def main():
            await client.connect("127.0.0.1", port)

        with self.assertLogs("quartz.runner", level=logging.ERROR) as log:
            run(main, finalize=client.close)
        self.assertIn("Caught exception", log.output[0])
        self.assertIn("ConnectFault", log.output[0])
        self.assertEqual(client.state, ConnectionStates.Disconnected)

    def test_signals_stop_the_runner(self):
        for sig in (signal.SIGINT, signal.SIGTERM):
            with self.subTest(sig.name):
                client = QuartzClient()

                async def main():
                    await asyncio.sleep(0.05)
                    os.kill(os.getpid(), sig)

                with self.assertLogs("quartz.runner", level=logging.INFO) as log:
                    run(main, finalize=client.close)
                self.assertIn(f"Caught {sig.name}", log.output[0])

    def test_publishing_task_is_cancelled_on_shutdown(self):
        service = LoopbackService()
        client = QuartzClient(keepalive_interval=60.0)
        published = 0

        async def publish():
            nonlocal published
            while True:
                if await client.send(HEADER._replace(uid=str(published)), "{}"):
                    published += 1
                await asyncio.sleep(0.02)

        async def main():
            await service.start()
            await client.connect("127.0.0.1", service.port)
            asyncio.get_running_loop().create_task(publish())
            await asyncio.sleep(0.1)
            asyncio.get_running_loop().stop()

        async def finalize():
            await client.close()
            await service.stop()

        with self.assertLogs("quartz.runner", level=logging.DEBUG) as log:
            run(main, finalize=finalize)
        self.assertTrue(any("pending tasks" in msg for msg in log.output))
        self.assertGreater(published, 0)


if __name__ == "__main__":
    unittest.main()
