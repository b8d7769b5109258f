"""Configuration handling for the IMAP preview client."""

import logging
import os
import ssl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from imap_preview.classifier import DEFAULT_GREETING_THRESHOLD

logger = logging.getLogger(__name__)

DEFAULT_HOST = "imap.gmail.com"
DEFAULT_HEADER_FIELDS = ["From", "Subject", "Date"]


def _maybe_load_dotenv() -> None:
    """Load .env file only when explicitly opted in via IMAP_PREVIEW_LOAD_DOTENV=true."""
    if os.environ.get("IMAP_PREVIEW_LOAD_DOTENV", "").lower() == "true":
        from dotenv import load_dotenv

        load_dotenv()
        logger.warning(".env file loaded (IMAP_PREVIEW_LOAD_DOTENV=true)")


def create_ssl_context(ca_bundle: Optional[str] = None) -> ssl.SSLContext:
    """Create an SSL context with certificate verification and optional custom CA bundle.

    Args:
        ca_bundle: Path to a custom CA bundle file (PEM format).
            If None, uses the system default certificate store.

    Returns:
        Configured SSL context with verification enabled.

    Raises:
        FileNotFoundError: If the specified CA bundle file does not exist.
        ssl.SSLError: If the CA bundle file cannot be loaded.
    """
    context = ssl.create_default_context()
    if ca_bundle:
        bundle_path = Path(ca_bundle)
        if not bundle_path.exists():
            raise FileNotFoundError(f"TLS CA bundle file not found: {ca_bundle}")
        context.load_verify_locations(ca_bundle)
        logger.info("Loaded custom CA bundle: %s", ca_bundle)
    return context


@dataclass
class ImapConfig:
    """IMAP server and account configuration."""

    host: str
    port: int
    username: str
    password: str
    use_ssl: bool = True
    tls_ca_bundle: Optional[str] = None
    timeout: Optional[float] = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImapConfig":
        """Create configuration from dictionary.

        Password is resolved exclusively from the IMAP_PASSWORD environment
        variable. The 'password' key in config dict is ignored.
        """
        if data.get("password"):
            logger.warning(
                "Ignoring 'password' in IMAP config; "
                "use IMAP_PASSWORD environment variable instead"
            )

        password = os.environ.get("IMAP_PASSWORD")
        if not password:
            raise ValueError(
                "IMAP password must be specified via IMAP_PASSWORD environment variable"
            )

        tls_ca_bundle = (
            os.environ.get("IMAP_TLS_CA_BUNDLE") or data.get("tls_ca_bundle") or None
        )
        timeout = data.get("timeout", 30.0)

        return cls(
            host=data["host"],
            port=int(data.get("port", 993 if data.get("use_ssl", True) else 143)),
            username=data["username"],
            password=password,
            use_ssl=data.get("use_ssl", True),
            tls_ca_bundle=tls_ca_bundle,
            timeout=float(timeout) if timeout is not None else None,
        )


@dataclass
class FetchConfig:
    """What to fetch and how strictly to parse responses."""

    mailbox: str = "INBOX"
    readonly: bool = False
    max_messages: int = 5
    header_fields: List[str] = field(default_factory=lambda: list(DEFAULT_HEADER_FIELDS))
    body_bytes: int = 500
    greeting_threshold: Optional[int] = DEFAULT_GREETING_THRESHOLD
    strict: bool = False
    tag_prefix: str = "a"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FetchConfig":
        """Create configuration from dictionary, applying defaults."""
        max_messages = int(data.get("max_messages", 5))
        if max_messages < 1:
            raise ValueError(f"max_messages must be positive, got {max_messages}")

        body_bytes = int(data.get("body_bytes", 500))
        if body_bytes < 1:
            raise ValueError(f"body_bytes must be positive, got {body_bytes}")

        tag_prefix = str(data.get("tag_prefix", "a"))
        if not tag_prefix.isalpha():
            raise ValueError(f"tag_prefix must be alphabetic, got {tag_prefix!r}")

        greeting_threshold = data.get("greeting_threshold", DEFAULT_GREETING_THRESHOLD)
        if greeting_threshold is not None:
            greeting_threshold = int(greeting_threshold)
            if greeting_threshold < 1:
                raise ValueError(f"greeting_threshold must be positive or null, got {greeting_threshold}")

        return cls(
            mailbox=data.get("mailbox", "INBOX"),
            readonly=bool(data.get("readonly", False)),
            max_messages=max_messages,
            header_fields=list(data.get("header_fields") or DEFAULT_HEADER_FIELDS),
            body_bytes=body_bytes,
            greeting_threshold=greeting_threshold,
            strict=bool(data.get("strict", False)),
            tag_prefix=tag_prefix,
        )


@dataclass
class ClientConfig:
    """Client configuration."""

    imap: ImapConfig
    fetch: FetchConfig = field(default_factory=FetchConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create configuration from dictionary."""
        return cls(
            imap=ImapConfig.from_dict(data.get("imap", {})),
            fetch=FetchConfig.from_dict(data.get("fetch") or {}),
        )


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def load_config(config_path: Optional[str] = None) -> ClientConfig:
    """Load configuration from file or environment variables.

    Args:
        config_path: Path to configuration file

    Returns:
        Client configuration

    Raises:
        ValueError: If configuration is invalid
    """
    _maybe_load_dotenv()

    # Default locations to check for config file
    default_locations = [
        Path("config.yaml"),
        Path("config.yml"),
        Path("~/.config/imap-preview/config.yaml"),
        Path("/etc/imap-preview/config.yaml"),
    ]

    config_data: Dict[str, Any] = {}
    if config_path:
        try:
            config_data = _read_yaml(Path(config_path))
            logger.info("Loaded configuration from %s", config_path)
        except FileNotFoundError:
            logger.warning("Configuration file not found: %s", config_path)
    else:
        for path in default_locations:
            expanded_path = path.expanduser()
            if expanded_path.exists():
                config_data = _read_yaml(expanded_path)
                logger.info("Loaded configuration from %s", expanded_path)
                break

    if not config_data:
        logger.info("No configuration file found, using environment variables")
        if not os.environ.get("IMAP_USERNAME"):
            raise ValueError(
                "No configuration file found and IMAP_USERNAME environment variable not set"
            )

        config_data = {
            "imap": {
                "host": os.environ.get("IMAP_HOST", DEFAULT_HOST),
                "port": int(os.environ.get("IMAP_PORT", "993")),
                "username": os.environ.get("IMAP_USERNAME"),
                "use_ssl": os.environ.get("IMAP_USE_SSL", "true").lower() == "true",
            },
            "fetch": {
                "mailbox": os.environ.get("IMAP_MAILBOX", "INBOX"),
                "max_messages": int(os.environ.get("IMAP_MAX_MESSAGES", "5")),
            },
        }

    try:
        return ClientConfig.from_dict(config_data)
    except KeyError as e:
        raise ValueError(f"Missing required configuration: {e}")
