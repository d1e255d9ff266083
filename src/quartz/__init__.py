__version__ = "0.1.0"

from .errors import QuartzError, ConnectFault, SendFault, DecodeFault
from .header import MessageHeader
from .framing import Frame, FrameReader, encode_frame, decode_frame
from .stream.client import ConnectionStates, QuartzClient
