import json
import uuid

from typing import NamedTuple, Union

from quartz.errors import DecodeFault


# Maps the wire key names to the MessageHeader attribute names. The order of
# this mapping is the order that keys appear in a serialized header.
HEADER_FIELDS = (
    ("UID", "uid"),
    ("name", "name"),
    ("dataType", "data_type"),
    ("receiver", "receiver"),
    ("type", "type"),
    ("dataLen", "data_len"),
    ("interval", "interval"),
)

INTEGER_FIELDS = ("data_len", "interval")


class MessageHeader(NamedTuple):
    """
    The header carries the metadata that describes a message body. It is
    serialized to JSON and placed between the start and divider sentinels
    of a frame.

    .. code-block:: console

        {"UID":"...","name":"getProduction","dataType":"JSON",
         "receiver":"StreamDemo","type":"subscribe","dataLen":0,"interval":0}

    The uid is assigned by the caller and is expected to be unique per sent
    message, however this is not enforced.
    """

    uid: str
    name: str
    data_type: str
    receiver: str
    type: str
    data_len: int = 0
    interval: int = 0

    @classmethod
    def create(
        cls,
        name: str,
        receiver: str,
        type: str = "subscribe",
        data_type: str = "JSON",
        **kwargs,
    ) -> "MessageHeader":
        """ Return a new header with a freshly generated uid """
        return cls(str(uuid.uuid4()), name, data_type, receiver, type, **kwargs)

    def as_dict(self) -> dict:
        """ Return the header as a dict keyed by the wire key names """
        return {key: getattr(self, attr) for key, attr in HEADER_FIELDS}

    def to_json(self) -> str:
        return json.dumps(self.as_dict(), separators=(",", ":"))

    def encode(self) -> bytes:
        """ Return the header serialized to UTF-8 JSON bytes """
        return self.to_json().encode("utf-8")

    @classmethod
    def decode(cls, data: Union[bytes, str]) -> "MessageHeader":
        """ Decode a serialized header.

        Missing text fields decode as an empty string and missing integer
        fields decode as zero. Unknown keys are ignored.

        :param data: a bytes or str object holding the JSON header text.

        :raises DecodeFault: if the data is not a UTF-8 JSON object or a
          field holds a value of the wrong type.
        """
        try:
            text = data if isinstance(data, str) else bytes(data).decode("utf-8")
            obj = json.loads(text)
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeFault(f"Invalid header: {exc}") from None

        if not isinstance(obj, dict):
            raise DecodeFault(
                f"Invalid header: expected a JSON object, got {type(obj).__name__}"
            )

        values = {}
        for key, attr in HEADER_FIELDS:
            value = obj.get(key)
            if attr in INTEGER_FIELDS:
                if value is None:
                    value = 0
                # bool is a subclass of int but is never a valid length
                if isinstance(value, bool) or not isinstance(value, int):
                    raise DecodeFault(
                        f"Invalid header: '{key}' must be an integer, got {value!r}"
                    )
            elif value is None:
                value = ""
            elif not isinstance(value, str):
                raise DecodeFault(
                    f"Invalid header: '{key}' must be a string, got {value!r}"
                )
            values[attr] = value

        return cls(**values)
