"""Tests for the line-oriented PHD2 socket."""

import pytest

from phd2link.clients.connection import PHD2Connection
from phd2link.clients.exceptions import PHD2ConnectionError


class TestPHD2Connection:
    """Test socket lifecycle and line framing."""

    async def test_connect_and_read_greeting(self, fake_server):
        connection = PHD2Connection(connect_timeout=2.0)
        assert await connection.connect(fake_server.host, fake_server.port) is True
        assert connection.is_connected is True

        line = await connection.read_line()
        assert line.startswith('{"Event": "Version"')
        assert not line.endswith("\r")

        await connection.close()
        assert connection.is_connected is False

    async def test_connect_refused_returns_false(self, fake_server):
        port = fake_server.port
        await fake_server.stop()

        connection = PHD2Connection(connect_timeout=2.0)
        assert await connection.connect("127.0.0.1", port) is False
        assert connection.is_connected is False

    async def test_write_line_appends_crlf(self, fake_server):
        connection = PHD2Connection(connect_timeout=2.0)
        await connection.connect(fake_server.host, fake_server.port)

        await connection.write_line('{"method":"loop","id":5}')
        await connection.read_line()
        await connection.read_line()
        reply = await connection.read_line()

        assert fake_server.raw_requests == [b'{"method":"loop","id":5}\r\n']
        assert '"id": 5' in reply
        await connection.close()

    async def test_write_without_socket_raises(self):
        connection = PHD2Connection()
        with pytest.raises(PHD2ConnectionError):
            await connection.write_line("{}")

    async def test_read_after_peer_close_returns_none(self, fake_server):
        connection = PHD2Connection(connect_timeout=2.0)
        await connection.connect(fake_server.host, fake_server.port)
        await fake_server.wait_for_client()
        await fake_server.drop_clients()

        lines = []
        while True:
            line = await connection.read_line()
            if line is None:
                break
            lines.append(line)

        assert len(lines) == 2
        await connection.close()

    async def test_terminate_unblocks_reader(self, fake_server):
        connection = PHD2Connection(connect_timeout=2.0)
        await connection.connect(fake_server.host, fake_server.port)
        await connection.read_line()
        await connection.read_line()

        connection.terminate()
        assert connection.is_connected is False
        await connection.close()

    async def test_close_is_idempotent(self):
        connection = PHD2Connection()
        await connection.close()
        await connection.close()
        assert await connection.read_line() is None

    async def test_over_limit_line_is_discarded(self, fake_server):
        connection = PHD2Connection(connect_timeout=2.0, line_limit=1024)
        await connection.connect(fake_server.host, fake_server.port)
        await fake_server.wait_for_client()
        await connection.read_line()
        await connection.read_line()

        await fake_server.send_line('{"Event": "Alert", "Msg": "' + "x" * 5000 + '"}')
        await fake_server.send_event({"Event": "AppState", "State": "Looping"})

        lines = []
        while not lines or "AppState" not in lines[-1]:
            line = await connection.read_line()
            assert line is not None
            lines.append(line)

        assert lines[0] == ""
        assert connection.is_connected is True
        await connection.close()
