import asyncio
import enum
import inspect
import logging

from typing import Any, Optional, Tuple, Union

from quartz.errors import ConnectFault, SendFault
from quartz.framing import MAX_PENDING_SIZE
from quartz.header import MessageHeader
from quartz.keepalive import DEFAULT_KEEPALIVE_INTERVAL, KeepAlive
from quartz.stream.protocols.sentinel import SentinelStreamProtocol

logger = logging.getLogger(__name__)


class ConnectionStates(enum.Enum):
    Disconnected = 0
    Connected = 1


class QuartzClient(object):
    """
    A client is used to exchange framed messages with a Quartz service over
    a single TCP connection.

    Once connected, the client extracts frames from the stream and passes
    each one to the ``on_message`` callback. A keep-alive frame is sent
    periodically to hold the connection open.

    A client instance supports a single connection. Once the connection has
    ended, by a call to :meth:`disconnect` or by the peer closing it, a new
    instance must be created to connect again. There is no automatic
    reconnection.

    .. code-block:: python

        async with QuartzClient(on_message=handle) as client:
            await client.connect("127.0.0.1", 2566)
            header = MessageHeader.create("getProduction", receiver="StreamDemo")
            if not await client.send(header, {"pos": 0}):
                print("send failed")

    """

    protocol_class = SentinelStreamProtocol

    def __init__(
        self,
        on_message=None,
        on_connected=None,
        on_disconnected=None,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        max_pending_size: int = MAX_PENDING_SIZE,
        loop=None,
    ):
        """ Initialise client

        :param on_message: A callback function that will be called with the
          client, the message header and the body text each time a frame is
          extracted from the stream. It may be a coroutine function. If not
          supplied received messages are logged.

        :param on_connected: A callback that will be called with the client
          once the connection is established.

        :param on_disconnected: A callback that will be called with the client
          when the connection has ended, for whatever reason.

        :param keepalive_interval: The number of seconds between keep-alive
          frames. Default value is 5 seconds.

        :param max_pending_size: The maximum number of bytes of an incomplete
          frame to hold while waiting for the rest of it.
        """
        self.loop = loop
        self._on_message_handler = on_message
        self._on_connected_handler = on_connected
        self._on_disconnected_handler = on_disconnected
        self._max_pending_size = max_pending_size

        self._state = ConnectionStates.Disconnected
        self._protocol = None  # type: Optional[SentinelStreamProtocol]
        self._used = False
        self._write_lock = None  # type: Optional[asyncio.Lock]
        self._keepalive = KeepAlive(self._send_keepalive, interval=keepalive_interval)
        self._cancelled_send = None  # type: Optional[asyncio.Task]
        self._handler_tasks = set()
        self._closer = None  # type: Optional[asyncio.Future]

    @property
    def state(self) -> ConnectionStates:
        """ Return the connection state of the client """
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionStates.Connected

    @property
    def raddr(self) -> Optional[Tuple[str, int]]:
        """ Return the remote address the client is connected with """
        return self._protocol.raddr if self._protocol else None

    @property
    def laddr(self) -> Optional[Tuple[str, int]]:
        """ Return the local address the client is using """
        return self._protocol.laddr if self._protocol else None

    async def connect(self, host: str, port: int) -> None:
        """ Connect to a Quartz service.

        :param host: The address or host name to connect to.

        :param port: The port to connect to.

        :raises ConnectFault: if the address is invalid, the connection is
          refused or the client has already been used.
        """
        if self._closer is not None:
            raise ConnectFault("Client has been closed")

        if self._used:
            raise ConnectFault(
                "Client has already been connected, a new client is required"
            )
        self._used = True

        self.loop = self.loop or asyncio.get_running_loop()
        self._write_lock = asyncio.Lock()

        logger.debug(f"Connecting to {host}:{port}")

        try:
            _transport, self._protocol = await self.loop.create_connection(
                self._protocol_factory, host=host, port=port
            )
        except (OSError, ValueError, OverflowError) as exc:
            # When connecting to "localhost", some systems try to connect to
            # both 127.0.0.1 and ::1 resulting in an OSError(Multiple errors
            # occurred) that wraps two ConnectionRefusedErrors
            logger.error(f"Connection to {host}:{port} failed: {exc}")
            raise ConnectFault(f"Connection to {host}:{port} failed: {exc}") from exc

        # The peer may have closed the connection before we got here
        if not self._protocol.connected:
            raise ConnectFault(f"Connection to {host}:{port} was closed by the peer")

        self._state = ConnectionStates.Connected
        await self._keepalive.start()

        logger.info(f"Connected to {host}:{port}")

        # Don't let poor user code break the library
        try:
            if self._on_connected_handler:
                self._on_connected_handler(self)
        except Exception:
            logger.exception("Error in on_connected callback method")

    async def disconnect(self) -> None:
        """ Stop sending keep-alives and close the connection.

        This method waits until the connection has been closed. It is safe
        to call more than once.
        """
        if self._keepalive.started:
            await self._keepalive.stop()

        # A send cancelled when the peer closed the connection
        task, self._cancelled_send = self._cancelled_send, None
        if task:
            await asyncio.gather(task, return_exceptions=True)

        protocol = self._protocol
        if protocol is None:
            return

        protocol.close()
        await protocol.wait_closed()

    async def close(self) -> None:
        """ Disconnect and release all resources held by the client.

        Release happens exactly once no matter how many times this method is
        called. Concurrent callers all wait for it to complete.
        """
        if self._closer is None:
            self._closer = asyncio.ensure_future(self._dispose())
        await asyncio.shield(self._closer)

    async def wait_closed(self) -> None:
        """ Wait until the connection has ended """
        if self._protocol:
            await self._protocol.wait_closed()

    async def write_frame(
        self, header: Union[MessageHeader, str, bytes], body: Any = ""
    ) -> None:
        """ Write a single frame to the stream.

        Frames are written one at a time so that concurrent writers never
        interleave their bytes. The protocol hands each frame to the
        transport as one contiguous buffer and the transport takes care of
        writing all of it.

        :param header: a MessageHeader, or header text that has already been
          serialized.

        :param body: a str holding pre-serialized body text or any other
          object which is serialized as JSON.

        :raises SendFault: if the client is not connected, the frame can not
          be encoded or the write fails.
        """
        await self._write(lambda protocol: protocol.send_frame(header, body))

    async def send(self, header: Union[MessageHeader, str, bytes], body: Any = "") -> bool:
        """ Send a message.

        :param header: a MessageHeader describing the message.

        :param body: a str holding pre-serialized body text or any other
          object which is serialized as JSON.

        :returns: True if the frame was written or False if it could not be.
          Use :meth:`write_frame` to get the reason for a failure.
        """
        try:
            await self.write_frame(header, body)
        except SendFault as exc:
            logger.debug(f"Send failed: {exc}")
            return False
        return True

    async def send_keepalive(self) -> None:
        """ Send an empty frame to keep the connection open.

        :raises SendFault: if the frame could not be written.
        """
        await self._write(lambda protocol: protocol.send_keepalive())

    async def _write(self, write_func) -> None:
        protocol = self._protocol
        if self._state is not ConnectionStates.Connected or protocol is None:
            raise SendFault("Client is not connected")

        async with self._write_lock:
            await protocol.wait_writable()
            try:
                write_func(protocol)
            except Exception as exc:
                raise SendFault(f"Unable to write frame: {exc}") from exc

    async def _send_keepalive(self) -> None:
        try:
            await self.send_keepalive()
        except SendFault as exc:
            logger.warning(f"Keep-alive send failed: {exc}")

    async def _dispose(self) -> None:
        await self.disconnect()

        tasks = list(self._handler_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._handler_tasks.clear()

        self._protocol = None
        self._on_message_handler = None
        self._on_connected_handler = None
        self._on_disconnected_handler = None
        logger.debug("Client closed")

    def _protocol_factory(self):
        """ Return a protocol instance to handle the connection """
        return self.protocol_class(
            on_message=self.on_message,
            on_peer_unavailable=self.on_peer_unavailable,
            max_pending_size=self._max_pending_size,
        )

    def on_peer_unavailable(self, prot, exc) -> None:
        """ Called from the protocol when its transport is no longer
        available. No further messages can be sent or received.

        :param prot: The protocol instance responsible for the connection.

        :param exc: The exception that caused the connection to end, or None
          if it ended normally (e.g. the peer closed it).
        """
        was_connected = self._state is ConnectionStates.Connected
        self._state = ConnectionStates.Disconnected
        self._cancelled_send = self._keepalive.cancel()

        if exc:
            logger.warning(f"Connection lost: {exc}")
        else:
            logger.info("Connection closed")

        # Don't let poor user code break the library
        try:
            if was_connected and self._on_disconnected_handler:
                self._on_disconnected_handler(self)
        except Exception:
            logger.exception("Error in on_disconnected callback method")

    def on_message(self, prot, header: MessageHeader, body: str) -> None:
        """ Called by the protocol when it extracts a message from the stream.

        :param prot: The protocol instance that received the message.

        :param header: The decoded message header.

        :param body: The message body text.
        """
        if not self._on_message_handler:
            logger.info(
                f"Received {header.type} message. name={header.name}, "
                f"uid={header.uid}, body={body}"
            )
            return

        try:
            maybe_awaitable = self._on_message_handler(self, header, body)
            if inspect.isawaitable(maybe_awaitable):
                task = asyncio.ensure_future(maybe_awaitable)
                self._handler_tasks.add(task)
                task.add_done_callback(self._on_handler_done)
        except Exception:
            logger.exception("Error in on_message callback method")

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(
                "Error in on_message callback method", exc_info=task.exception()
            )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()
