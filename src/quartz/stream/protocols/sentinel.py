import logging

from typing import Any, Union

from quartz.framing import (
    KEEPALIVE_FRAME,
    MAX_PENDING_SIZE,
    FrameReader,
    encode_frame,
    is_keepalive_probe,
)
from quartz.header import MessageHeader
from .base import BaseStreamProtocol

logger = logging.getLogger(__name__)


class SentinelStreamProtocol(BaseStreamProtocol):
    """
    The sentinel protocol implements the message framing used by the Quartz
    service. Each message is wrapped in sentinel bytes that mark the start
    of the header, the divide between header and body and the end of the
    body.

    .. code-block:: console

        +------+----------------+------+----------------+------+
        | 0x01 |  header        | 0x02 |  body          | 0x03 |
        +------+----------------+------+----------------+------+

    Any read of exactly three bytes is treated as a keep-alive probe and is
    discarded without being scanned for frames.

    Upon extracting a message from the stream the protocol passes the decoded
    header and the body text to the on_message handler.
    """

    def __init__(
        self,
        on_message=None,
        on_peer_available=None,
        on_peer_unavailable=None,
        max_pending_size: int = MAX_PENDING_SIZE,
    ):
        super().__init__(
            on_message=on_message,
            on_peer_available=on_peer_available,
            on_peer_unavailable=on_peer_unavailable,
        )
        self._reader = FrameReader(max_pending_size=max_pending_size)
        self.keepalives_received = 0

    @property
    def pending(self) -> int:
        """ Return the number of buffered bytes not yet forming a frame """
        return self._reader.pending

    def send_frame(self, header: Union[MessageHeader, str, bytes], body: Any = ""):
        """ Sends a message by wrapping it in a frame and writing it to the
        transport as a single write.

        :param header: a MessageHeader or pre-serialized header text.

        :param body: body text, or an object to serialize as JSON.
        """
        self.send(encode_frame(header, body))

    def send_keepalive(self):
        """ Send an empty frame to keep the connection open """
        self.send(KEEPALIVE_FRAME)

    def data_received(self, data):
        """ Process some bytes received from the transport.

        Upon receiving some bytes from the stream they are added to a buffer
        and then any complete frames in the buffer are extracted.

        This method should support the worst case scenario of receiving a
        single byte at a time, however, a more likely scenario is receiving
        one or more messages at once.
        """
        if is_keepalive_probe(data):
            self.keepalives_received += 1
            logger.debug(f"Keep-alive received. id={self._identity}")
            return

        for header, body in self._reader.feed(data):
            # Don't let user code break the library
            try:
                if self._on_message_handler:
                    self._on_message_handler(self, header, body)
            except Exception:
                logger.exception("Error in on_message callback method")

    def connection_lost(self, exc):
        if self._reader.pending:
            logger.debug(
                f"Discarding {self._reader.pending} bytes of an incomplete frame. "
                f"id={self._identity}"
            )
            self._reader.clear()
        super().connection_lost(exc)
