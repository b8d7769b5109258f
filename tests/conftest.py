"""Shared fixtures for the IMAP preview tests."""

from typing import Callable, List, Optional, Union

import pytest

from imap_preview.config import FetchConfig, ImapConfig

Scripted = Union[bytes, str, BaseException]


class FakeTransport:
    """In-memory transport that replays scripted server output.

    Each scripted item is one line (str or bytes, terminator included) or an
    exception to raise from ``read_line``. Once the script is exhausted,
    reads return b"" (end of stream).
    """

    def __init__(self, lines: Optional[List[Scripted]] = None) -> None:
        self.script: List[Scripted] = list(lines or [])
        self.written: List[bytes] = []
        self.timeouts: List[Optional[float]] = []
        self.closed = False
        self.fail_write: Optional[BaseException] = None

    def feed(self, *lines: Scripted) -> None:
        self.script.extend(lines)

    def write(self, data: bytes) -> None:
        if self.fail_write is not None:
            raise self.fail_write
        self.written.append(data)

    def read_line(self, timeout: Optional[float] = None) -> bytes:
        self.timeouts.append(timeout)
        if self.closed or not self.script:
            return b""
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return item.encode("utf-8")
        return item

    def close(self) -> None:
        self.closed = True

    @property
    def sent(self) -> List[str]:
        return [data.decode("utf-8") for data in self.written]


@pytest.fixture
def transport() -> FakeTransport:
    """Create an empty scripted transport."""
    return FakeTransport()


@pytest.fixture
def imap_config() -> ImapConfig:
    """Create a basic IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        port=993,
        username="test@example.com",
        password="password",
        use_ssl=True,
    )


@pytest.fixture
def fetch_config() -> FetchConfig:
    """Create the default fetch configuration."""
    return FetchConfig()


@pytest.fixture
def transport_factory(transport: FakeTransport) -> Callable[[ImapConfig], FakeTransport]:
    """Factory handing the scripted transport to a MailboxReader."""

    def factory(config: ImapConfig) -> FakeTransport:
        return transport

    return factory


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    """Factory for additional scripted transports."""
    return FakeTransport
