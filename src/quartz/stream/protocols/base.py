import asyncio
import binascii
import logging
import os

from typing import Optional, Tuple


logger = logging.getLogger(__name__)


class BaseStreamProtocol(asyncio.Protocol):
    """
    This class implements the connection handling expected by the client.

    This protocol implementation is not capable of extracting atomic messages
    from a stream. Subclasses implement ``data_received`` to parse messages
    and pass each one to the message handler callback.

    It also tracks transport write flow control so that writers can wait
    until the transport is ready to accept more data.
    """

    def __init__(
        self, on_message=None, on_peer_available=None, on_peer_unavailable=None,
    ):
        """

        :param on_message: A callback function that will be passed each message
          that the protocol extracts from the stream.

        :param on_peer_available: A callback function that will be called when
          the protocol is connected with a transport. In this state the protocol
          can send and receive messages.

        :param on_peer_unavailable: A callback function that will be called when
          the protocol has lost the connection with its transport. In this state
          the protocol can not send or receive messages.
        """
        self._on_message_handler = on_message
        self._on_peer_available_handler = on_peer_available
        self._on_peer_unavailable_handler = on_peer_unavailable
        self._remote_address = None  # type: Optional[Tuple[str, int]]
        self._local_address = None  # type: Optional[Tuple[str, int]]
        self._identity = b""

        self._writable = asyncio.Event()
        self._writable.set()
        self._closed = None  # type: Optional[asyncio.Future]

        self.transport = None

    @property
    def raddr(self) -> Tuple[str, int]:
        """ Return the remote address the protocol is connected with """
        return self._remote_address

    @property
    def laddr(self) -> Tuple[str, int]:
        """ Return the local address the protocol is using """
        return self._local_address

    @property
    def identity(self):
        """ Return the protocol's unique identifier, used in log messages """
        return self._identity

    @property
    def connected(self) -> bool:
        """ Return True if the protocol has a transport that is not closing """
        return self.transport is not None and not self.transport.is_closing()

    def connection_made(self, transport):
        """
        Called by the event loop when the protocol is connected with a transport.
        """
        self.transport = transport
        self._closed = asyncio.get_running_loop().create_future()

        # Depending on the socket family, the address may be a 2-tuple for
        # IPv4 or a 4-tuple for IPv6 which is converted to the 2-tuple form.
        def get_host_port(info) -> Tuple[str, int]:
            if info and len(info) == 4:
                host, port, _flowinfo, _scopeid = info
                info = (host, port)
            return info

        self._remote_address = get_host_port(transport.get_extra_info("peername"))
        self._local_address = get_host_port(transport.get_extra_info("sockname"))
        self._identity = binascii.hexlify(os.urandom(5))

        logger.debug(
            f"Connection made. id={self._identity}, "
            f"laddr={self._local_address}, "
            f"raddr={self._remote_address}"
        )

        # Don't let user code break the library
        try:
            if self._on_peer_available_handler:
                self._on_peer_available_handler(self)
        except Exception:
            logger.exception("Error in on_peer_available callback method")

    def eof_received(self):
        """
        Called by the event loop when the peer has closed its side of the
        connection. Returning a false value lets the transport close itself,
        which results in a call to connection_lost.
        """
        logger.debug(f"Peer closed the connection. id={self._identity}")
        return False

    def connection_lost(self, exc):
        """
        Called by the event loop when the protocol is disconnected from a transport.
        """
        logger.debug(
            f"Connection lost. id={self._identity}, "
            f"laddr={self._local_address}, "
            f"raddr={self._remote_address}, "
            f"reason={exc}"
        )

        self.transport = None
        # Release any writer waiting on flow control so it observes the loss
        self._writable.set()

        # Don't let user code break the library
        try:
            if self._on_peer_unavailable_handler:
                self._on_peer_unavailable_handler(self, exc)
        except Exception:
            logger.exception("Error in on_peer_unavailable callback method")

        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)

    def pause_writing(self):
        logger.debug(f"Transport write buffer is full. id={self._identity}")
        self._writable.clear()

    def resume_writing(self):
        logger.debug(f"Transport write buffer has drained. id={self._identity}")
        self._writable.set()

    async def wait_writable(self) -> None:
        """ Wait until the transport is willing to accept more data """
        await self._writable.wait()

    async def wait_closed(self) -> None:
        """ Wait until the connection has been lost """
        if self._closed is not None:
            await asyncio.shield(self._closed)

    def close(self):
        """
        Close this connection.
        """
        logger.debug(
            f"Closing connection. id={self._identity}, "
            f"laddr={self._local_address}, raddr={self._remote_address}"
        )

        if self.transport:
            self.transport.close()

    def send(self, data: bytes):
        """ Sends a message by writing it to the transport.

        :param data: a bytes object containing the message.

        :raises ConnectionError: if the protocol has no usable transport.
        """
        if not self.connected:
            raise ConnectionError("Protocol is not connected")

        logger.debug(f"Sending msg with {len(data)} bytes")

        self.transport.write(data)
