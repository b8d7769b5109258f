"""Duplex byte stream between the session and the IMAP server."""

import logging
import socket
import ssl
from typing import Optional, Protocol

from imap_preview.errors import TransportError

logger = logging.getLogger(__name__)

# Longest line returned by a single read; longer lines arrive in pieces.
MAX_LINE = 1000000


class Transport(Protocol):
    """Line-buffered read, raw write."""

    closed: bool

    def write(self, data: bytes) -> None:
        ...

    def read_line(self, timeout: Optional[float] = None) -> bytes:
        """Return the next line including its terminator, or b"" at end of stream."""
        ...

    def close(self) -> None:
        ...


class SocketTransport:
    """Transport over a (usually TLS-wrapped) TCP socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._reader = sock.makefile("rb")
        self.closed = False

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        ssl_context: Optional[ssl.SSLContext] = None,
        timeout: Optional[float] = None,
    ) -> "SocketTransport":
        """Open a connection to *host*:*port*.

        Args:
            host: Server host name
            port: Server port
            ssl_context: Context used to wrap the socket, or None for plain TCP
            timeout: Connect timeout in seconds

        Returns:
            Connected transport

        Raises:
            TransportError: If the connection or TLS handshake fails
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise TransportError(f"Failed to connect to {host}:{port}: {e}") from e

        if ssl_context is not None:
            try:
                sock = ssl_context.wrap_socket(sock, server_hostname=host)
            except (OSError, ssl.SSLError) as e:
                sock.close()
                raise TransportError(f"TLS handshake with {host}:{port} failed: {e}") from e

        logger.info("Connected to %s:%d%s", host, port, " (TLS)" if ssl_context else "")
        return cls(sock)

    def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportError("Transport is closed")
        self._sock.sendall(data)

    def read_line(self, timeout: Optional[float] = None) -> bytes:
        if self.closed:
            return b""
        self._sock.settimeout(timeout)
        return self._reader.readline(MAX_LINE)

    def close(self) -> None:
        """Close the connection. A read blocked in another thread returns."""
        if self.closed:
            return
        self.closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected by the peer
            pass
        self._reader.close()
        self._sock.close()
