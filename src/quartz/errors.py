class QuartzError(Exception):
    """ Base class for all errors raised by this library """


class ConnectFault(QuartzError):
    """ Raised when a connection to the service can not be established.

    This covers unparsable or unresolvable addresses, refused connections
    and attempts to reuse a client instance that has already been used.
    """


class SendFault(QuartzError):
    """ Raised when a frame could not be written to the stream """


class DecodeFault(QuartzError):
    """ Raised when a frame header or body can not be decoded """
