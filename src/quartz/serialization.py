"""
Message bodies are carried as opaque UTF-8 text. This module provides a
registry of serializers that convert Python objects to and from that text.
Serializers are looked up using the ``dataType`` value carried in a message
header (e.g. ``JSON``). Lookups are case-insensitive.
"""

import abc
import json

from collections import namedtuple
from typing import Any, Optional

try:
    import yaml

    have_yaml = True
except ImportError:
    have_yaml = False


DATA_TYPE_JSON = "JSON"
DATA_TYPE_TEXT = "TEXT"
DATA_TYPE_YAML = "YAML"


codec = namedtuple("codec", ("data_type", "serializer"))


class ISerializer(abc.ABC):
    """
    This class represents the base interface for a serializer.
    """

    @abc.abstractmethod  # pragma: no branch
    def encode(self, data, **kwargs) -> str:
        """ Returns serialized data as a str object. """

    @abc.abstractmethod  # pragma: no branch
    def decode(self, text: str, **kwargs):
        """ Returns deserialized data """


class SerializerRegistry(object):
    """ This registry keeps track of serialization strategies.

    A data type name (as carried in a message header) is mapped to an
    encoder and decoder.
    """

    def __init__(self):
        self._serializers = {}
        self._default_codec = None

    @property
    def serializers(self):
        """ Return a dict of the available serializers (codecs) """
        return self._serializers

    def register(self, data_type: str, serializer: ISerializer):
        """ Register a new serializer.

        :param data_type: The data type name used in message headers to
          identify this serialization method.

        :param serializer: An object that implements the ISerializer interface
          that can encode objects and decode text back into the original object.
        """
        if not isinstance(serializer, ISerializer):
            raise Exception(
                f"Invalid serializer '{data_type}'. Expected an instance of ISerializer"
            )

        self._serializers[data_type.upper()] = codec(data_type.upper(), serializer)

    def set_default(self, data_type: str):
        """ Set the default serialization method used for structured bodies.

        :param data_type: The name of a registered serialization method (e.g. JSON)

        Raises:
            Exception: If the serialization method requested is not available.
        """
        if data_type.upper() not in self._serializers:
            raise Exception(f"Invalid serializer {data_type}")

        self._default_codec = data_type.upper()

    def get_codec(self, data_type: str):
        try:
            return self._serializers[data_type.upper()]
        except KeyError:
            raise Exception(f"Serializer '{data_type}' does not exist") from None

    def get_serializer(self, data_type: str) -> ISerializer:
        return self.get_codec(data_type).serializer

    def dumps(self, data: Any, data_type: Optional[str] = None, **kwargs) -> str:
        """ Encode data into body text.

        :param data: The message data to send.

        :param data_type: A string naming the serialization strategy to apply
          to the data (e.g. ``JSON``). If not specified then a best effort
          guess is made. A str is passed through as pre-serialized text, bytes
          are decoded as UTF-8 and anything else uses the default serializer.

        Raises:
            Exception: If the serialization method requested is not available.
        """
        if data_type:
            serializer = self.get_serializer(data_type)
            return serializer.encode(data, **kwargs)

        if isinstance(data, str):
            return data

        if isinstance(data, (bytes, bytearray)):
            return bytes(data).decode("utf-8")

        serializer = self._serializers[self._default_codec].serializer
        return serializer.encode(data, **kwargs)

    def loads(self, text: str, data_type: Optional[str] = None, **kwargs) -> Any:
        """ Decode body text.

        Deserialize body text that was serialized using `dumps` based on
        `data_type`. Empty text is returned unchanged.

        :param text: The message body text to deserialize.

        :param data_type: The data type name, typically taken from the message
          header (e.g. ``header.data_type``). Defaults to TEXT.

        Raises:
            Exception: If the serialization method requested is not available.
        """
        if text:
            serializer = self.get_serializer(data_type or DATA_TYPE_TEXT)
            return serializer.decode(text, **kwargs)
        return text


def register_text(registry: SerializerRegistry) -> None:
    """ Register an encoder/decoder for TEXT serialization. """

    class TextSerializer(ISerializer):
        def encode(self, text: str, **kwargs) -> str:
            if not isinstance(text, str):
                raise Exception(f"Can only serialize str type, got {type(text)}")
            return text

        def decode(self, text: str, **kwargs) -> str:
            return text

    registry.register(DATA_TYPE_TEXT, TextSerializer())


def register_json(registry: SerializerRegistry) -> None:
    """ Register an encoder/decoder for JSON serialization. """

    class JsonSerializer(ISerializer):
        def encode(self, data: Any, **kwargs) -> str:
            """ Encode an object into compact JSON text.

            Non-ASCII characters are escaped so the text can never contain
            anything other than printable ASCII and JSON escapes.
            """
            return json.dumps(data, separators=(",", ":"))

        def decode(self, text: str, **kwargs) -> Any:
            """ Decode *text* back into the original data structure.

            :returns: A Python object.
            """
            return json.loads(text)

    registry.register(DATA_TYPE_JSON, JsonSerializer())


def register_yaml(registry: SerializerRegistry) -> None:
    """ Register an encoder/decoder for YAML serialization.

    It is slower than JSON, but allows for more data types to be serialized.
    Useful if you need to send data such as dates.
    """

    if have_yaml:

        class YamlSerializer(ISerializer):
            def encode(self, data: Any, **kwargs) -> str:
                return yaml.safe_dump(data)

            def decode(self, text: str, **kwargs) -> Any:
                return yaml.safe_load(text)

        registry.register(DATA_TYPE_YAML, YamlSerializer())


def initialize(registry: SerializerRegistry):
    """ Register serialization methods and set a default """
    register_text(registry)
    register_json(registry)
    register_yaml(registry)

    registry.set_default(DATA_TYPE_JSON)


"""
.. data:: registry

Global registry of serializers/deserializers.
"""
registry = SerializerRegistry()

dumps = registry.dumps

loads = registry.loads

initialize(registry)
