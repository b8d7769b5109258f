"""Minimal IMAP client that previews the most recent messages of a mailbox."""

__version__ = "0.1.0"
