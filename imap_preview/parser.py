"""Extract structured data from accumulated IMAP responses.

Every function here is pure and tolerant: server payload is free-form text,
so missing or garbled structure yields an empty result instead of an error.
Each heuristic is kept in its own function so that server quirks can be
handled, and tested, in isolation.
"""

import base64
import binascii
import logging
import quopri
import re
from typing import Dict, Iterable, List, Optional, Union

from imap_preview.models import decode_mime_header
from imap_preview.session import RawResponse, unquote

logger = logging.getLogger(__name__)

SEARCH_MARKER = "* SEARCH"
LITERAL_OPENER = "{"

_FLAGS_RE = re.compile(r"FLAGS \(([^)]*)\)")
_LIST_RE = re.compile(r'^\* (?:LIST|LSUB) \([^)]*\) (?:"(?:[^"\\]|\\.)*"|NIL) (.+?)\s*$')

Raw = Union[RawResponse, str]


def _text(raw: Raw) -> str:
    if isinstance(raw, RawResponse):
        return raw.text
    return raw or ""


def extract_message_ids(raw: Raw) -> List[str]:
    """Return message IDs from every ``* SEARCH`` line, in order of appearance.

    >>> extract_message_ids("* SEARCH 3 7 12\\r\\n")
    ['3', '7', '12']
    """
    ids: List[str] = []
    for line in _text(raw).split("\n"):
        if SEARCH_MARKER in line:
            ids.extend(line.split(SEARCH_MARKER, 1)[1].split())
    return ids


def extract_header_field(raw: Raw, field_name: str) -> Optional[str]:
    """Return the value of the first line containing ``field_name + ":"``.

    A following line that starts with a space or tab is treated as a folded
    continuation and appended with a single space. Only one continuation line
    is joined, and encoded words are left as they are (see
    :func:`extract_header_set` for decoding).

    Returns:
        The trimmed value, or None if the field does not appear.
    """
    token = f"{field_name}:"
    lines = _text(raw).split("\n")
    for i, line in enumerate(lines):
        if token not in line:
            continue
        value = line.split(token, 1)[1].strip()
        if i + 1 < len(lines) and lines[i + 1][:1] in (" ", "\t"):
            continuation = lines[i + 1].strip()
            if continuation:
                value = f"{value} {continuation}" if value else continuation
        return value
    return None


def extract_header_set(raw: Raw, field_names: Iterable[str]) -> Dict[str, str]:
    """Extract and MIME-decode several header fields.

    Fields that do not appear are left out of the mapping.
    """
    headers: Dict[str, str] = {}
    for name in field_names:
        value = extract_header_field(raw, name)
        if value is not None:
            headers[name] = decode_mime_header(value)
    return headers


def extract_flags(raw: Raw) -> List[str]:
    """Return the flags of the first ``FLAGS (...)`` item in a FETCH result."""
    match = _FLAGS_RE.search(_text(raw))
    if not match:
        return []
    return match.group(1).split()


def extract_body_excerpt(raw: Raw, tag: str) -> str:
    """Return the body data of a partial ``BODY[TEXT]`` FETCH.

    The data starts on the line after the first ``{`` and ends at the last
    line break before the last ``<tag> OK``. Without the tagged line it runs
    to the end of the text. The byte count inside the braces is ignored, so
    a body that itself contains ``<tag> OK`` is cut at the wrong place, and
    the closing parenthesis of the FETCH item stays in the excerpt.

    Returns:
        The trimmed excerpt, or "" if no literal is present.
    """
    text = _text(raw)
    start = text.find(LITERAL_OPENER)
    if start == -1:
        return ""

    newline = text.find("\n", start)
    if newline == -1:
        return ""
    body_start = newline + 1

    body_end = text.rfind(f"{tag} OK")
    if body_end == -1:
        return text[body_start:].strip()

    last_newline = text.rfind("\n", 0, body_end)
    if last_newline < body_start:
        return text[body_start:body_end].strip()
    return text[body_start:last_newline].strip()


def extract_mailbox_names(raw: Raw) -> List[str]:
    """Return mailbox names from untagged LIST or LSUB lines."""
    names: List[str] = []
    for line in _text(raw).split("\n"):
        match = _LIST_RE.match(line.strip())
        if match:
            names.append(unquote(match.group(1)))
    return names


def decode_base64url(data: str) -> bytes:
    """Decode base64 or URL-safe base64, restoring missing padding.

    Raises:
        ValueError: If *data* is not valid base64
    """
    data = "".join(data.split())
    data = data.replace("-", "+").replace("_", "/")
    missing = len(data) % 4
    if missing:
        data += "=" * (4 - missing)
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 data: {e}") from e


def decode_body_excerpt(excerpt: str, transfer_encoding: Optional[str]) -> str:
    """Decode an excerpt according to its Content-Transfer-Encoding.

    The excerpt is a byte range, so a base64 body is cut back to whole
    4-character groups before decoding. Undecodable input is returned
    unchanged.
    """
    encoding = (transfer_encoding or "").strip().lower()
    if encoding == "base64":
        compact = "".join(excerpt.split())
        compact = compact[: len(compact) - len(compact) % 4]
        try:
            return decode_base64url(compact).decode("utf-8", errors="replace")
        except ValueError as e:
            logger.debug("Leaving base64 excerpt undecoded: %s", e)
            return excerpt
    if encoding == "quoted-printable":
        return quopri.decodestring(excerpt.encode("utf-8")).decode("utf-8", errors="replace")
    return excerpt
