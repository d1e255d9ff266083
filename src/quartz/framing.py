"""
Messages are delimited on the stream using three sentinel bytes that wrap
a JSON header and a text body.

.. code-block:: console

    +------+----------------+------+----------------+------+
    | 0x01 |  header        | 0x02 |  body          | 0x03 |
    +------+----------------+------+----------------+------+
    | start|  JSON text     | div. |  UTF-8 text    | end  |
    +------+----------------+------+----------------+------+

The header and body text must not contain any of the sentinel byte values.
This is not checked when a frame is encoded. Text produced by the JSON
serializer always satisfies it because JSON escapes control characters.

A frame with an empty header and an empty body (the three bytes
``01 02 03``) is used as a keep-alive.
"""

import logging

from typing import Any, Iterator, NamedTuple, Union

from quartz import serialization
from quartz.errors import DecodeFault
from quartz.header import MessageHeader

logger = logging.getLogger(__name__)


FRAME_START = 0x01
FRAME_DIVIDER = 0x02
FRAME_END = 0x03

KEEPALIVE_FRAME = bytes((FRAME_START, FRAME_DIVIDER, FRAME_END))

# Limit the amount of unconsumed data held while waiting for a frame to
# complete as a precaution against a peer that never sends an end marker.
MAX_PENDING_SIZE = 16 * 1024 * 1024


class Frame(NamedTuple):
    header: MessageHeader
    body: str


def is_keepalive_probe(data: bytes) -> bool:
    """ Return True if a chunk read from the stream is a keep-alive probe.

    Any read of exactly three bytes is treated as a keep-alive. A genuine
    frame that is three bytes long can not be told apart from a probe and
    is also discarded.
    """
    return len(data) == len(KEEPALIVE_FRAME)


def _to_bytes(value: Union[MessageHeader, str, bytes]) -> bytes:
    if isinstance(value, MessageHeader):
        return value.encode()
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raise TypeError(f"Expected a MessageHeader, str or bytes, got {type(value)}")


def encode_frame(header: Union[MessageHeader, str, bytes], body: Any = "") -> bytes:
    """ Return a complete frame as a single contiguous bytes object.

    :param header: a MessageHeader, or header text that has already been
      serialized.

    :param body: a str holding pre-serialized body text, bytes holding UTF-8
      body text, or any other object which is serialized to JSON.
    """
    if not isinstance(body, (str, bytes, bytearray)):
        body = serialization.dumps(body, serialization.DATA_TYPE_JSON)

    header_bytes = _to_bytes(header)
    body_bytes = _to_bytes(body)

    frame = bytearray()
    frame.append(FRAME_START)
    frame.extend(header_bytes)
    frame.append(FRAME_DIVIDER)
    frame.extend(body_bytes)
    frame.append(FRAME_END)
    return bytes(frame)


def _decode_parts(header: bytes, body: bytes) -> Frame:
    try:
        body_text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeFault(f"Invalid body: {exc}") from None
    return Frame(MessageHeader.decode(header), body_text)


def decode_frame(data: bytes) -> Frame:
    """ Decode a single complete frame.

    :raises DecodeFault: if the data is not exactly one well formed frame.
    """
    data = bytes(data)
    if len(data) < 3 or data[0] != FRAME_START or data[-1] != FRAME_END:
        raise DecodeFault("Frame must begin with a start marker and end with an end marker")

    divider = data.find(FRAME_DIVIDER, 1)
    if divider == -1:
        raise DecodeFault("Frame has no divider marker")

    return _decode_parts(data[1:divider], data[divider + 1 : -1])


class FrameReader(object):
    """
    A frame reader extracts frames from a byte stream that has been split
    into arbitrary chunks.

    Each chunk is appended to a reassembly buffer that is owned by the
    reader. Complete frames are then extracted from the buffer and any
    trailing partial frame is kept until more data arrives.

    .. code-block:: python

        reader = FrameReader()
        for frame in reader.feed(chunk):
            handle(frame.header, frame.body)

    """

    def __init__(self, max_pending_size: int = MAX_PENDING_SIZE):
        self.max_pending_size = max_pending_size
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """ Return the number of unconsumed bytes held by the reader """
        return len(self._buffer)

    def clear(self) -> None:
        """ Discard any unconsumed bytes """
        self._buffer.clear()

    def feed(self, data: bytes) -> Iterator[Frame]:
        """ Add some bytes received from the stream.

        The data is buffered immediately. The returned iterator lazily
        extracts every complete frame now present in the buffer. Bytes that
        do not yet form a complete frame stay buffered for the next call.

        Each frame is removed from the buffer before it is yielded, so
        iterators from earlier calls never see it again.
        """
        self._buffer.extend(data)
        return self._extract()

    def _extract(self) -> Iterator[Frame]:
        buf = self._buffer
        while True:
            start = buf.find(FRAME_START)
            if start == -1:
                break

            divider = buf.find(FRAME_DIVIDER, start + 1)
            if divider == -1:
                break

            end = buf.find(FRAME_END, divider + 1)
            if end == -1:
                break

            if start:
                logger.warning(
                    f"Discarding {start} bytes preceding a frame start marker"
                )

            header = bytes(buf[start + 1 : divider])
            body = bytes(buf[divider + 1 : end])
            del buf[: end + 1]

            if not header and not body:
                # keep-alive that arrived together with other data
                logger.debug("Skipping keep-alive frame")
                continue

            try:
                frame = _decode_parts(header, body)
            except DecodeFault as exc:
                logger.error(f"Dropping frame with {len(header)} byte header: {exc}")
                continue

            yield frame

        if len(buf) > self.max_pending_size:
            logger.error(
                f"Pending data ({len(buf)} bytes) exceeds maximum "
                f"({self.max_pending_size} bytes). Discarding it."
            )
            buf.clear()
