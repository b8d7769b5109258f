"""Command-line entry point for the IMAP preview client."""

import argparse
import logging
import os
import sys
from typing import List, Optional

from imap_preview import __version__
from imap_preview.config import load_config
from imap_preview.errors import AuthenticationError, ImapError
from imap_preview.mailbox import MailboxReader

logger = logging.getLogger("imap_preview")


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imap-preview",
        description="Preview the most recent messages of an IMAP mailbox",
    )
    parser.add_argument(
        "--config",
        help="Path to configuration file (env: IMAP_PREVIEW_CONFIG)",
        default=os.environ.get("IMAP_PREVIEW_CONFIG"),
    )
    parser.add_argument("--mailbox", help="Mailbox to preview (default from config)")
    parser.add_argument(
        "--count",
        type=positive_int,
        help="Number of most recent messages to fetch (default from config)",
    )
    parser.add_argument(
        "--match",
        metavar="KEYWORD",
        help="Only show messages whose subject, sender or body contains KEYWORD",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Disable the small-greeting heuristic and fail on truncated responses",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List mailboxes before fetching",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (shows the protocol exchange)",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information and exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the IMAP preview client."""
    args = build_parser().parse_args(argv)

    if args.version:
        print(f"imap-preview version {__version__}")
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(args.config)
    except (ValueError, FileNotFoundError) as e:
        logger.error("Configuration error: %s", e)
        return 2

    if args.mailbox:
        config.fetch.mailbox = args.mailbox
    if args.count is not None:
        config.fetch.max_messages = args.count
    if args.strict:
        config.fetch.strict = True

    try:
        with MailboxReader(config.imap, config.fetch) as reader:
            if args.list:
                for name in reader.list_mailboxes():
                    print(name)
            report = reader.fetch_recent()
    except AuthenticationError as e:
        logger.error("%s", e)
        return 1
    except ImapError as e:
        logger.error("IMAP session failed: %s", e)
        return 1
    except OSError as e:
        # Unreadable or invalid TLS CA bundle, raised before connecting
        logger.error("TLS configuration error: %s", e)
        return 2

    previews = report.filter(args.match) if args.match else report.previews
    for preview in previews:
        print(preview.summary())
        print()

    print(f"Found {report.found} messages, parsed {report.parsed}")
    if report.failed:
        print(f"Failed to parse: {', '.join(report.failed)}")
    if args.match:
        print(f"{len(previews)} matched '{args.match}'")
    return 0


if __name__ == "__main__":
    sys.exit(main())
