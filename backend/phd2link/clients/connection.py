"""Line-oriented TCP connection to a PHD2 server."""

import asyncio
import logging
from typing import Optional

from phd2link.clients.exceptions import PHD2ConnectionError

BASE_PORT = 4400
LINE_TERMINATOR = "\r\n"

# StreamReader buffer limit; longer lines are dropped, not fatal
MAX_LINE_LENGTH = 16 * 1024 * 1024


def port_for_instance(instance: int) -> int:
    """Return the TCP port PHD2 instance N listens on (instance 1 -> 4400)."""
    if instance < 1:
        raise ValueError(f"PHD2 instance must be >= 1, got {instance}")
    return BASE_PORT + instance - 1


class PHD2Connection:
    """Owns one socket and exposes line reads and writes.

    connect() reports failure as False instead of raising, and leaves the
    object ready for another attempt.
    """

    def __init__(
        self,
        connect_timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
        line_limit: int = MAX_LINE_LENGTH,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self._connect_timeout = connect_timeout
        self._line_limit = line_limit
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self, host: str, port: int) -> bool:
        """Open the TCP stream.

        Returns:
            True if the socket was opened, False otherwise
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=self._line_limit), timeout=self._connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            self.logger.error(f"Could not open PHD2 socket {host}:{port}: {e!r}")
            await self.close()
            return False

        self.logger.debug(f"Socket open to {host}:{port}")
        return True

    async def read_line(self) -> Optional[str]:
        """Read one line without its terminator.

        Returns:
            The decoded line, "" if an over-long line was discarded, or None
            on end-of-stream or read failure
        """
        if self._reader is None:
            return None

        try:
            raw = await self._reader.readline()
        except ValueError as e:
            # Line exceeded the buffer limit; the stream itself is still usable
            self.logger.warning(f"Discarding PHD2 line longer than {self._line_limit} bytes: {e}")
            return ""
        except (OSError, asyncio.IncompleteReadError) as e:
            self.logger.debug(f"Read failed: {e!r}")
            return None

        if not raw:
            return None

        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def write_line(self, line: str) -> None:
        """Write one CRLF-terminated line.

        Raises:
            PHD2ConnectionError: If the socket is closed or the write fails
        """
        if not self.is_connected:
            raise PHD2ConnectionError("PHD2 socket is not open")

        try:
            self._writer.write((line + LINE_TERMINATOR).encode("utf-8"))
            await self._writer.drain()
        except OSError as e:
            raise PHD2ConnectionError(f"Failed to write to PHD2: {e}") from e

    def terminate(self) -> None:
        """Force the socket closed so a pending read_line() returns None."""
        if self._writer is not None:
            self._writer.close()

    async def close(self) -> None:
        """Release the socket. Safe to call more than once."""
        writer = self._writer
        self._reader = None
        self._writer = None

        if writer is None:
            return

        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            # Peer already reset the connection
            self.logger.debug(f"Error while closing PHD2 socket: {e!r}")
