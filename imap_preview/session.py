"""IMAP session driver: tagged command dispatch and response accumulation."""

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from imap_preview.classifier import (
    DEFAULT_GREETING_THRESHOLD,
    Verdict,
    classify,
    tagged_status,
)
from imap_preview.errors import CommandTimeoutError, ProtocolError, TransportError
from imap_preview.transport import Transport

logger = logging.getLogger(__name__)

LINE_TERMINATOR = "\r\n"

DEFAULT_TIMEOUT = 30.0

# Atoms that can go on the wire without quoting
_ATOM = re.compile(r"^[\w!#$&'+,./:;<=>?@^`|~-]+$")

_SELECTING_VERBS = ("SELECT", "EXAMINE")
_DESELECTING_VERBS = ("CLOSE", "UNSELECT")


def quote(value: str) -> str:
    """Return *value* as an IMAP quoted string unless it is a plain atom."""
    if value and _ATOM.match(value):
        return value
    value = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{value}"'


def unquote(value: str) -> str:
    """Undo :func:`quote`."""
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


@dataclass(frozen=True)
class Command:
    """A tagged command as written to the server."""

    tag: str
    verb: str
    args: Tuple[str, ...] = ()

    def encode(self) -> bytes:
        return (" ".join((self.tag, self.verb) + self.args) + LINE_TERMINATOR).encode("utf-8")

    def __str__(self) -> str:
        args = self.args
        if self.verb.upper() == "LOGIN" and args:
            args = args[:1] + ("****",) * (len(args) - 1)
        return " ".join((self.tag, self.verb) + args)


class Completion(enum.Enum):
    """How the response to a command ended."""

    TAGGED = "tagged"
    GREETING = "greeting"
    EOF = "eof"


@dataclass
class RawResponse:
    """Lines collected for one command, tagged completion line included."""

    tag: str
    lines: List[str] = field(default_factory=list)
    status: Optional[str] = None
    completion: Optional[Completion] = None

    @property
    def text(self) -> str:
        return "".join(self.lines)

    @property
    def ok(self) -> bool:
        return self.status == "OK"

    @property
    def closed_early(self) -> bool:
        """True if the stream ended before the tagged completion line."""
        return self.completion is Completion.EOF

    def __len__(self) -> int:
        return len(self.lines)


class Session:
    """A live IMAP conversation over a single transport.

    Commands are strictly sequential: each call to :meth:`send_command`
    returns only after the response for its tag has ended, so at most one
    command is ever outstanding. A session shared between threads needs
    external locking around :meth:`send_command`.

    Attributes:
        selected: Name of the selected mailbox, or None.
        closed: True once the transport has been closed.
    """

    def __init__(
        self,
        transport: Transport,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        greeting_threshold: Optional[int] = DEFAULT_GREETING_THRESHOLD,
        strict: bool = False,
        tag_prefix: str = "a",
        observer: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        """Initialize the session.

        Args:
            transport: Connected duplex stream
            timeout: Seconds allowed per command, or None to wait forever
            greeting_threshold: Size bound of the small-greeting heuristic
            strict: Disable the greeting heuristic and treat an early end of
                stream as a ProtocolError
            tag_prefix: Alphabetic prefix of generated tags
            observer: Called as ``observer(direction, line)`` for every sent
                command (">") and received line ("<")
        """
        self.transport = transport
        self.timeout = timeout
        self.greeting_threshold = None if strict else greeting_threshold
        self.strict = strict
        self.tag_prefix = tag_prefix
        self.observer = observer
        self.selected: Optional[str] = None
        self.closed = False
        self._counter = 1
        self._abandoned: Dict[str, Command] = {}

    @classmethod
    def open(cls, transport: Transport, **kwargs) -> "Session":
        """Wrap a live transport. No protocol exchange takes place.

        Raises:
            TransportError: If the transport is already closed
        """
        if transport is None or getattr(transport, "closed", False):
            raise TransportError("Cannot open a session on a closed transport")
        return cls(transport, **kwargs)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type=None, exc_val=None, exc_tb=None) -> None:
        self.close()

    @property
    def next_tag(self) -> str:
        return f"{self.tag_prefix}{self._counter}"

    def read_greeting(self) -> str:
        """Read the untagged server greeting sent on connect."""
        self._check_open()
        deadline = self._deadline()
        partial = RawResponse(tag="*")
        data = self._read(deadline, partial, "greeting")
        if not data:
            self.close()
            raise ProtocolError("Connection closed before the server greeting")
        line = data.decode("utf-8", errors="replace")
        logger.info("Server greeting: %s", line.strip())
        return line

    def send_command(self, verb: str, *args: str) -> RawResponse:
        """Send a tagged command and collect its response.

        Args:
            verb: Command name, e.g. "SELECT"
            *args: Arguments, already quoted where needed

        Returns:
            The accumulated response

        Raises:
            TransportError: If the session is closed or the write fails
            ProtocolError: If the read fails, or the stream ends before any
                line (or, in strict mode, before the tagged completion)
            CommandTimeoutError: If the deadline expires
        """
        self._check_open()
        command = Command(self.next_tag, verb, tuple(args))
        self._counter += 1

        self._trace(">", str(command))
        try:
            self.transport.write(command.encode())
        except TransportError:
            self.close()
            raise
        except OSError as e:
            self.close()
            raise TransportError(f"Failed to send {command.verb}: {e}") from e

        response = self._collect(command)
        self._update_state(command, response)
        return response

    def logout(self) -> RawResponse:
        """Send LOGOUT, await its completion and close the transport."""
        return self.send_command("LOGOUT")

    def close(self) -> None:
        """Close the transport. Pending and further commands fail."""
        if self.closed:
            return
        self.closed = True
        self.selected = None
        try:
            self.transport.close()
        except OSError as e:
            logger.debug("Error closing transport: %s", e)

    def _collect(self, command: Command) -> RawResponse:
        response = RawResponse(tag=command.tag)
        deadline = self._deadline()
        size = 0

        while True:
            data = self._read(deadline, response, command.verb)
            if not data:
                return self._end_of_stream(command, response)

            line = data.decode("utf-8", errors="replace")
            if self._abandoned and not self._owns(command, line):
                continue

            response.lines.append(line)
            size += len(data)

            verdict = classify(line, command.tag, size, self.greeting_threshold)
            if verdict is Verdict.DONE:
                response.status = tagged_status(line, command.tag)
                response.completion = Completion.TAGGED
                return response
            if verdict is Verdict.GREETING:
                logger.warning(
                    "%s ended early on untagged OK after %d bytes; "
                    "tagged completion for %s was not seen",
                    command.verb,
                    size,
                    command.tag,
                )
                self._abandoned[command.tag] = command
                response.completion = Completion.GREETING
                return response

    def _read(self, deadline: Optional[float], response: RawResponse, what: str) -> bytes:
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.close()
                raise CommandTimeoutError(f"Timed out waiting for {what} response", response)
        try:
            data = self.transport.read_line(remaining)
        except TimeoutError as e:
            self.close()
            raise CommandTimeoutError(f"Timed out waiting for {what} response", response) from e
        except OSError as e:
            self.close()
            raise ProtocolError(f"Read failed during {what}: {e}", response) from e
        if data:
            self._trace("<", data.decode("utf-8", errors="replace").rstrip("\r\n"))
        return data

    def _end_of_stream(self, command: Command, response: RawResponse) -> RawResponse:
        self.close()
        if command.verb.upper() == "LOGOUT" and response.lines:
            response.completion = Completion.EOF
            return response
        if not response.lines or self.strict:
            raise ProtocolError(
                f"Connection closed before {command.tag} {command.verb} completed",
                response,
            )
        logger.warning(
            "Connection closed before %s %s completed; returning %d partial lines",
            command.tag,
            command.verb,
            len(response.lines),
        )
        response.completion = Completion.EOF
        return response

    def _owns(self, command: Command, line: str) -> bool:
        """Decide whether *line* belongs to *command* while an earlier tag is pending.

        The server answers in order, so every line up to the tagged
        completion of a command cut short earlier still belongs to that
        command and is dropped without feeding the greeting heuristic.
        """
        if self._is_abandoned_completion(line):
            return False
        if tagged_status(line, command.tag) is None:
            logger.debug("Dropped trailing line of %s: %s", ", ".join(self._abandoned), line.strip())
            return False
        logger.warning(
            "Completion for %s arrived before the pending %s; giving up on it",
            command.tag,
            ", ".join(self._abandoned),
        )
        self._abandoned.clear()
        return True

    def _is_abandoned_completion(self, line: str) -> bool:
        for tag, command in self._abandoned.items():
            status = tagged_status(line, tag)
            if status is None:
                continue
            del self._abandoned[tag]
            logger.debug("Dropped late completion for %s: %s", tag, line.strip())
            # The command still takes effect, e.g. a SELECT cut short earlier
            self._update_state(command, RawResponse(tag, [line], status, Completion.TAGGED))
            return True
        return False

    def _update_state(self, command: Command, response: RawResponse) -> None:
        verb = command.verb.upper()
        if verb in _SELECTING_VERBS and command.args and response.ok:
            self.selected = unquote(command.args[0])
        elif verb in _DESELECTING_VERBS and response.ok:
            self.selected = None
        elif verb == "LOGOUT":
            self.close()

    def _check_open(self) -> None:
        if self.closed:
            raise TransportError("Session is closed")

    def _deadline(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return time.monotonic() + self.timeout

    def _trace(self, direction: str, line: str) -> None:
        logger.debug("%s %s", direction, line)
        if self.observer is not None:
            self.observer(direction, line)
