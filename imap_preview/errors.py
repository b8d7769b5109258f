"""Exceptions raised by the IMAP preview client."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from imap_preview.session import RawResponse


class ImapError(Exception):
    """Base class for all IMAP preview errors."""


class TransportError(ImapError):
    """The underlying connection could not be opened or died unexpectedly."""


class ProtocolError(ImapError):
    """The completion of a command could not be determined.

    Attributes:
        response: Whatever was accumulated before the failure, if anything.
    """

    def __init__(self, message: str, response: Optional["RawResponse"] = None) -> None:
        super().__init__(message)
        self.response = response


class CommandTimeoutError(ImapError, TimeoutError):
    """No completion arrived before the command deadline expired."""

    def __init__(self, message: str, response: Optional["RawResponse"] = None) -> None:
        super().__init__(message)
        self.response = response


class AuthenticationError(ImapError):
    """The server rejected the LOGIN command."""
