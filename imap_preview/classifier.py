"""Decide whether the response to the outstanding command has ended."""

import enum
from typing import Optional

STATUS_WORDS = ("OK", "NO", "BAD")

GREETING_MARKER = "* OK"

# Accumulated response size (bytes) under which an untagged "* OK" line
# ends the response early.
DEFAULT_GREETING_THRESHOLD = 200


class Verdict(enum.Enum):
    """Outcome of classifying one response line."""

    CONTINUE = "continue"
    DONE = "done"
    GREETING = "greeting"


def tagged_status(line: str, tag: str) -> Optional[str]:
    """Return the status word if *line* is the tagged completion for *tag*.

    The tag must be the leading token of the line and be followed by one of
    OK, NO or BAD. A status word elsewhere in the line (for instance inside a
    header value) does not count.
    """
    tokens = line.strip().split(None, 2)
    if len(tokens) < 2 or tokens[0] != tag:
        return None
    if tokens[1] in STATUS_WORDS:
        return tokens[1]
    return None


def is_greeting_shortcut(
    line: str, accumulated_size: int, threshold: Optional[int] = DEFAULT_GREETING_THRESHOLD
) -> bool:
    """Check the small-greeting early exit.

    Some servers answer informational commands with nothing but an untagged
    ``* OK`` line. Treating such a line as the end of a short response keeps
    the client from waiting forever. This is a heuristic: a legitimate
    multi-line response that carries ``* OK`` within the first *threshold*
    bytes is cut short. Passing ``threshold=None`` disables it.
    """
    if threshold is None:
        return False
    return GREETING_MARKER in line and accumulated_size < threshold


def classify(
    line: str,
    tag: str,
    accumulated_size: int,
    threshold: Optional[int] = DEFAULT_GREETING_THRESHOLD,
) -> Verdict:
    """Classify *line* for the outstanding command *tag*.

    Args:
        line: The line just read, terminator included.
        tag: Tag of the outstanding command.
        accumulated_size: Bytes accumulated so far, *line* included.
        threshold: Greeting heuristic threshold, or None for strict mode.

    Returns:
        DONE for the tagged completion line, GREETING when the early-exit
        heuristic fires, CONTINUE otherwise.
    """
    if tagged_status(line, tag) is not None:
        return Verdict.DONE
    if is_greeting_shortcut(line, accumulated_size, threshold):
        return Verdict.GREETING
    return Verdict.CONTINUE
