"""High-level mailbox reader built on the IMAP session driver."""

import logging
from typing import Callable, Iterable, List, Optional

from imap_preview.config import FetchConfig, ImapConfig, create_ssl_context
from imap_preview.errors import AuthenticationError, ImapError, TransportError
from imap_preview.models import FetchReport, MessagePreview
from imap_preview.parser import (
    decode_body_excerpt,
    extract_body_excerpt,
    extract_flags,
    extract_header_set,
    extract_mailbox_names,
    extract_message_ids,
)
from imap_preview.session import RawResponse, Session, quote
from imap_preview.transport import SocketTransport, Transport

logger = logging.getLogger(__name__)

TRANSFER_ENCODING_FIELD = "Content-Transfer-Encoding"


class MailboxReader:
    """Connects, logs in and previews the most recent messages of a mailbox.

    Session-level failures (TransportError, ProtocolError,
    CommandTimeoutError) propagate to the caller; a bad FETCH result for one
    message is recorded in the report and processing moves on.
    """

    def __init__(
        self,
        config: ImapConfig,
        fetch_config: Optional[FetchConfig] = None,
        transport_factory: Optional[Callable[[ImapConfig], Transport]] = None,
    ) -> None:
        """Initialize the reader.

        Args:
            config: Server and account configuration
            fetch_config: Fetch options, defaults when omitted
            transport_factory: Builds the transport; a TLS socket by default
        """
        self.config = config
        self.fetch_config = fetch_config or FetchConfig()
        self.transport_factory = transport_factory or _socket_transport
        self.session: Optional[Session] = None

    @property
    def connected(self) -> bool:
        return self.session is not None and not self.session.closed

    def __enter__(self) -> "MailboxReader":
        self.connect()
        return self

    def __exit__(self, exc_type=None, exc_val=None, exc_tb=None) -> None:
        self.disconnect()

    def connect(self) -> None:
        """Open the transport, wait for the greeting and log in.

        Raises:
            TransportError: If the connection cannot be established
            OSError: If the configured TLS CA bundle cannot be loaded
            AuthenticationError: If the server rejects the credentials
        """
        transport = self.transport_factory(self.config)
        session = Session.open(
            transport,
            timeout=self.config.timeout,
            greeting_threshold=self.fetch_config.greeting_threshold,
            strict=self.fetch_config.strict,
            tag_prefix=self.fetch_config.tag_prefix,
        )
        try:
            session.read_greeting()
            response = session.send_command(
                "LOGIN", quote(self.config.username), quote(self.config.password)
            )
        except ImapError:
            session.close()
            raise

        if not response.ok:
            session.close()
            raise AuthenticationError(
                f"Login failed for {self.config.username}: {_status_line(response)}"
            )

        self.session = session
        logger.info("Logged in to %s as %s", self.config.host, self.config.username)

    def disconnect(self) -> None:
        """Log out gracefully, falling back to closing the transport."""
        if self.session is None:
            return
        session, self.session = self.session, None
        if session.closed:
            return
        try:
            session.logout()
        except ImapError as e:
            logger.warning("Error during logout: %s", e)
        finally:
            session.close()

    def list_mailboxes(self) -> List[str]:
        """List all mailboxes on the server."""
        response = self._session().send_command("LIST", '""', '"*"')
        if _rejected(response):
            logger.warning("LIST failed: %s", _status_line(response))
        return extract_mailbox_names(response)

    def select(self, mailbox: Optional[str] = None, readonly: Optional[bool] = None) -> RawResponse:
        """Select (or examine, when read-only) a mailbox.

        Returns:
            The raw response. A response cut short by the greeting
            heuristic has no status; only NO or BAD mean failure.
        """
        mailbox = mailbox or self.fetch_config.mailbox
        if readonly is None:
            readonly = self.fetch_config.readonly
        verb = "EXAMINE" if readonly else "SELECT"
        response = self._session().send_command(verb, quote(mailbox))
        if _rejected(response):
            logger.warning("%s %s failed: %s", verb, mailbox, _status_line(response))
        return response

    def search(self, criteria: str = "ALL") -> List[str]:
        """Search the selected mailbox and return message sequence numbers."""
        response = self._session().send_command("SEARCH", criteria)
        if _rejected(response):
            logger.warning("SEARCH %s failed: %s", criteria, _status_line(response))
        return extract_message_ids(response)

    def fetch_headers(
        self, message_id: str, fields: Optional[Iterable[str]] = None
    ) -> RawResponse:
        """FETCH flags and selected header fields without setting \\Seen."""
        fields = list(fields or self.fetch_config.header_fields)
        names = " ".join(name.upper() for name in fields)
        return self._session().send_command(
            "FETCH", message_id, f"(FLAGS BODY.PEEK[HEADER.FIELDS ({names})])"
        )

    def fetch_body(self, message_id: str, size: Optional[int] = None) -> RawResponse:
        """FETCH the first *size* bytes of the message body."""
        size = size or self.fetch_config.body_bytes
        return self._session().send_command("FETCH", message_id, f"BODY.PEEK[TEXT]<0.{size}>")

    def fetch_preview(self, message_id: str) -> Optional[MessagePreview]:
        """Fetch headers and a body excerpt for one message.

        Returns:
            The preview, or None if the server rejected the FETCH or none of
            the requested headers could be found.
        """
        fields = list(self.fetch_config.header_fields)
        header_response = self.fetch_headers(message_id, fields + [TRANSFER_ENCODING_FIELD])
        if _rejected(header_response):
            logger.warning(
                "Header FETCH for message %s failed: %s",
                message_id,
                _status_line(header_response),
            )
            return None

        headers = extract_header_set(header_response, fields + [TRANSFER_ENCODING_FIELD])
        transfer_encoding = headers.pop(TRANSFER_ENCODING_FIELD, None)
        if not headers:
            logger.warning("No headers found in FETCH result for message %s", message_id)
            return None

        body_response = self.fetch_body(message_id)
        body = ""
        if not _rejected(body_response):
            excerpt = extract_body_excerpt(body_response, body_response.tag)
            body = decode_body_excerpt(excerpt, transfer_encoding)
        else:
            logger.warning(
                "Body FETCH for message %s failed: %s",
                message_id,
                _status_line(body_response),
            )

        return MessagePreview(
            message_id=message_id,
            headers=headers,
            flags=extract_flags(header_response),
            body=body,
        )

    def fetch_recent(self, count: Optional[int] = None) -> FetchReport:
        """Preview the *count* most recent messages of the configured mailbox."""
        count = count or self.fetch_config.max_messages
        mailbox = self.fetch_config.mailbox
        report = FetchReport(mailbox=mailbox)

        if _rejected(self.select(mailbox)):
            return report

        recent = self.search("RECENT")
        logger.info("%d recent messages in %s", len(recent), mailbox)

        message_ids = self.search("ALL")
        report.found = len(message_ids)
        if not message_ids:
            logger.info("No messages found in %s", mailbox)
            return report
        logger.info("Found %d messages in %s", report.found, mailbox)

        # Sequence numbers ascend with arrival, so the newest are last
        for message_id in message_ids[-count:]:
            preview = self.fetch_preview(message_id)
            if preview is None:
                report.failed.append(message_id)
            else:
                report.previews.append(preview)

        logger.info("Parsed %d of %d fetched messages", report.parsed, len(message_ids[-count:]))
        return report

    def _session(self) -> Session:
        if self.session is None or self.session.closed:
            raise TransportError("Not connected to IMAP server")
        return self.session


def _socket_transport(config: ImapConfig) -> Transport:
    ssl_context = create_ssl_context(config.tls_ca_bundle) if config.use_ssl else None
    return SocketTransport.connect(config.host, config.port, ssl_context, config.timeout)


def _status_line(response: RawResponse) -> str:
    if response.lines:
        return response.lines[-1].strip()
    return "no response"


def _rejected(response: RawResponse) -> bool:
    """True if the server answered NO or BAD.

    A response cut short by the greeting heuristic or by end of stream has
    no status but still carries data, so it is not treated as a rejection.
    """
    return response.status in ("NO", "BAD")

