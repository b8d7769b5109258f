"""Data models for message previews."""

import email.utils
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from email.header import decode_header
from typing import Dict, List, Optional

from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)


def decode_mime_header(header_value: Optional[str]) -> str:
    """Decode a MIME header value.

    Args:
        header_value: MIME header value

    Returns:
        Decoded header value
    """
    if not header_value:
        return ""

    try:
        parts = decode_header(header_value)
    except Exception as e:  # email.errors.HeaderParseError and friends
        logger.debug("Could not decode header %r: %s", header_value, e)
        return header_value

    decoded_parts = []
    for part, encoding in parts:
        if isinstance(part, bytes):
            if encoding:
                try:
                    decoded_parts.append(part.decode(encoding))
                except (LookupError, UnicodeDecodeError):
                    # If the encoding is not recognized, try with utf-8
                    decoded_parts.append(part.decode("utf-8", errors="replace"))
            else:
                decoded_parts.append(part.decode("utf-8", errors="replace"))
        else:
            decoded_parts.append(part)

    return "".join(decoded_parts)


@dataclass
class EmailAddress:
    """Email address representation."""

    name: str
    address: str

    @classmethod
    def parse(cls, address_str: str) -> "EmailAddress":
        """Parse email address string.

        Args:
            address_str: Email address string (e.g., "John Doe <john@example.com>")

        Returns:
            EmailAddress object

        Raises:
            ValueError: If the email address format is invalid.
        """
        name = ""
        address = address_str.strip()

        match = re.match(r'"?([^"<]*)"?\s*<([^>]*)>', address)
        if match:
            name = match.group(1).strip()
            address = match.group(2).strip()

        if "@" not in address:
            raise ValueError(f"Invalid email address: '{address}' (missing @)")
        try:
            result = validate_email(address, check_deliverability=False)
        except EmailNotValidError as e:
            raise ValueError(f"Invalid email address '{address}': {e}") from e

        return cls(name=name, address=result.normalized)

    def __str__(self) -> str:
        """Return string representation."""
        if self.name:
            return f"{self.name} <{self.address}>"
        return self.address


@dataclass
class MessagePreview:
    """Headers and a body excerpt of one message.

    ``message_id`` is the sequence number returned by SEARCH; it is only
    meaningful within the session and mailbox selection that produced it.
    """

    message_id: str
    headers: Dict[str, str] = field(default_factory=dict)
    flags: List[str] = field(default_factory=list)
    body: str = ""

    @property
    def subject(self) -> str:
        return self.headers.get("Subject", "")

    @property
    def sender(self) -> Optional[EmailAddress]:
        """Parsed From header, or None if absent or not an address."""
        value = self.headers.get("From")
        if not value:
            return None
        try:
            return EmailAddress.parse(value)
        except ValueError:
            return None

    @property
    def date(self) -> Optional[datetime]:
        value = self.headers.get("Date")
        if not value:
            return None
        try:
            return email.utils.parsedate_to_datetime(value)
        except (ValueError, TypeError):
            return None

    def matches(self, keyword: str) -> bool:
        """Case-insensitive keyword match over subject, sender and body."""
        needle = keyword.lower()
        haystacks = (self.subject, self.headers.get("From", ""), self.body)
        return any(needle in text.lower() for text in haystacks)

    def summary(self) -> str:
        """Return a summary of the message."""
        date = self.date
        date_str = f"{date:%Y-%m-%d %H:%M:%S}" if date else self.headers.get("Date", "Unknown date")
        sender = self.sender
        sender_str = str(sender) if sender else self.headers.get("From", "")
        lines = [
            f"Message: {self.message_id}",
            f"From: {sender_str}",
            f"Subject: {self.subject}",
            f"Date: {date_str}",
        ]
        if self.flags:
            lines.append(f"Flags: {' '.join(self.flags)}")
        if self.body:
            lines.append(f"Body preview: {self.body}")
        return "\n".join(lines)


@dataclass
class FetchReport:
    """Outcome of previewing the most recent messages of a mailbox."""

    mailbox: str
    found: int = 0
    previews: List[MessagePreview] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def parsed(self) -> int:
        return len(self.previews)

    def filter(self, keyword: str) -> List[MessagePreview]:
        """Return the previews matching *keyword*."""
        return [preview for preview in self.previews if preview.matches(keyword)]
