import logging
import unittest
import unittest.mock

from quartz.framing import KEEPALIVE_FRAME, encode_frame
from quartz.header import MessageHeader
from quartz.stream.protocols.sentinel import SentinelStreamProtocol


HEADER = MessageHeader("u1", "getProduction", "JSON", "Demo", "subscribe")


def create_transport_mock():
    transport_mock = unittest.mock.Mock()
    transport_mock.is_closing.return_value = False
    transport_mock.get_extra_info.side_effect = lambda name: {
        "peername": ("127.0.0.1", 2566),
        "sockname": ("127.0.0.1", 50000),
    }.get(name)
    return transport_mock


class SentinelStreamProtocolTestCase(unittest.TestCase):
    def test_error_raised_when_sending_without_transport(self):
        p = SentinelStreamProtocol()
        with self.assertRaises(ConnectionError):
            p.send_frame(HEADER, "{}")

    def test_send_frame_writes_a_single_frame(self):
        p = SentinelStreamProtocol()
        transport_mock = create_transport_mock()
        p.transport = transport_mock

        p.send_frame(HEADER, '{"pos":0}')

        transport_mock.write.assert_called_once_with(encode_frame(HEADER, '{"pos":0}'))

    def test_send_keepalive(self):
        p = SentinelStreamProtocol()
        transport_mock = create_transport_mock()
        p.transport = transport_mock

        p.send_keepalive()

        transport_mock.write.assert_called_once_with(b"\x01\x02\x03")

    def test_message_received(self):
        on_message_mock = unittest.mock.Mock()
        p = SentinelStreamProtocol(on_message=on_message_mock)

        p.data_received(encode_frame(HEADER, '{"pos":0}'))

        on_message_mock.assert_called_once_with(p, HEADER, '{"pos":0}')

    def test_message_received_in_worst_case_delivery_scenario(self):
        on_message_mock = unittest.mock.Mock()

        p = SentinelStreamProtocol(on_message=on_message_mock)

        msg = encode_frame(HEADER, "Hello World")

        # Send the test message 1 byte at a time
        for b in msg:
            p.data_received(bytes([b]))

        self.assertTrue(on_message_mock.called)
        self.assertEqual(on_message_mock.call_count, 1)

    def test_multiple_messages_in_one_read(self):
        on_message_mock = unittest.mock.Mock()
        p = SentinelStreamProtocol(on_message=on_message_mock)

        second = HEADER._replace(uid="u2")
        p.data_received(encode_frame(HEADER, "1") + encode_frame(second, "2"))

        self.assertEqual(on_message_mock.call_count, 2)
        calls = on_message_mock.call_args_list
        self.assertEqual(calls[0], unittest.mock.call(p, HEADER, "1"))
        self.assertEqual(calls[1], unittest.mock.call(p, second, "2"))

    def test_keepalive_probe_is_discarded(self):
        on_message_mock = unittest.mock.Mock()
        p = SentinelStreamProtocol(on_message=on_message_mock)

        p.data_received(KEEPALIVE_FRAME)

        self.assertFalse(on_message_mock.called)
        self.assertEqual(p.keepalives_received, 1)
        self.assertEqual(p.pending, 0)

    def test_three_byte_read_inside_a_frame_is_discarded(self):
        # A three byte read is always treated as a keep-alive, even when it
        # happens to be part of a frame. The frame is then lost.
        on_message_mock = unittest.mock.Mock()
        p = SentinelStreamProtocol(on_message=on_message_mock)

        msg = encode_frame(HEADER, "body")
        p.data_received(msg[:10])
        p.data_received(msg[10:13])
        p.data_received(msg[13:])

        self.assertFalse(on_message_mock.called)

    def test_exception_in_message_handler_does_not_break_protocol(self):
        on_message_mock = unittest.mock.Mock(side_effect=Exception("Boom"))
        p = SentinelStreamProtocol(on_message=on_message_mock)

        with self.assertLogs(
            "quartz.stream.protocols.sentinel", level=logging.ERROR
        ) as log:
            p.data_received(encode_frame(HEADER, "1") + encode_frame(HEADER, "2"))
        self.assertIn("Error in on_message callback method", log.output[0])

        # Both messages were delivered despite the first raising
        self.assertEqual(on_message_mock.call_count, 2)


class SentinelStreamProtocolConnectionTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_connection_callbacks(self):
        on_peer_available_mock = unittest.mock.Mock()
        on_peer_unavailable_mock = unittest.mock.Mock()
        p = SentinelStreamProtocol(
            on_peer_available=on_peer_available_mock,
            on_peer_unavailable=on_peer_unavailable_mock,
        )

        p.connection_made(create_transport_mock())
        on_peer_available_mock.assert_called_once_with(p)
        self.assertTrue(p.connected)
        self.assertEqual(p.raddr, ("127.0.0.1", 2566))
        self.assertEqual(p.laddr, ("127.0.0.1", 50000))

        p.connection_lost(None)
        on_peer_unavailable_mock.assert_called_once_with(p, None)
        self.assertFalse(p.connected)

        # wait_closed returns once the connection has been lost
        await p.wait_closed()

    async def test_truncated_frame_is_discarded_when_connection_lost(self):
        on_message_mock = unittest.mock.Mock()
        p = SentinelStreamProtocol(on_message=on_message_mock)
        p.connection_made(create_transport_mock())

        msg = encode_frame(HEADER, "body")
        p.data_received(msg[:-5])
        self.assertGreater(p.pending, 0)

        # The peer closing the stream ends the connection
        self.assertFalse(p.eof_received())
        p.connection_lost(None)

        self.assertFalse(on_message_mock.called)
        self.assertEqual(p.pending, 0)

    async def test_flow_control(self):
        p = SentinelStreamProtocol()
        p.connection_made(create_transport_mock())

        p.pause_writing()
        self.assertFalse(p._writable.is_set())
        p.resume_writing()
        await p.wait_writable()

        # Losing the connection releases any waiting writer
        p.pause_writing()
        p.connection_lost(ConnectionResetError())
        await p.wait_writable()


if __name__ == "__main__":
    unittest.main()
