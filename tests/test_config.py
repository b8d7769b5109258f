"""Tests for the config module."""

import logging
from unittest.mock import patch

import pytest
import yaml

from imap_preview.classifier import DEFAULT_GREETING_THRESHOLD
from imap_preview.config import (
    ClientConfig,
    FetchConfig,
    ImapConfig,
    create_ssl_context,
    load_config,
)


class TestImapConfig:
    """Test cases for the ImapConfig class."""

    def test_init(self):
        """Test ImapConfig initialization."""
        config = ImapConfig(
            host="imap.example.com",
            port=993,
            username="test@example.com",
            password="password"
        )

        assert config.host == "imap.example.com"
        assert config.port == 993
        assert config.username == "test@example.com"
        assert config.password == "password"
        assert config.use_ssl is True  # Default value
        assert config.timeout == 30.0

    def test_from_dict(self, monkeypatch):
        """Test creating ImapConfig from a dictionary."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")

        data = {
            "host": "imap.example.com",
            "port": 993,
            "username": "test@example.com",
            "use_ssl": True,
            "timeout": 10,
        }

        config = ImapConfig.from_dict(data)
        assert config.host == "imap.example.com"
        assert config.port == 993
        assert config.username == "test@example.com"
        assert config.password == "env_password"
        assert config.use_ssl is True
        assert config.timeout == 10.0

        # Test with non-SSL port default
        config = ImapConfig.from_dict({
            "host": "imap.example.com",
            "username": "test@example.com",
            "use_ssl": False
        })
        assert config.port == 143

    def test_from_dict_no_timeout(self, monkeypatch):
        """Test that a null timeout means no deadline."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")
        config = ImapConfig.from_dict({
            "host": "imap.example.com",
            "username": "test@example.com",
            "timeout": None,
        })
        assert config.timeout is None

    def test_from_dict_warns_on_config_password(self, monkeypatch, caplog):
        """Test that password in config dict is ignored with a warning."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")

        data = {
            "host": "imap.example.com",
            "username": "test@example.com",
            "password": "dict_password"
        }

        with caplog.at_level(logging.WARNING, logger="imap_preview.config"):
            config = ImapConfig.from_dict(data)

        assert config.password == "env_password"
        assert "Ignoring 'password' in IMAP config" in caplog.text

    def test_from_dict_missing_password(self, monkeypatch):
        """Test error when password env var is not set."""
        monkeypatch.delenv("IMAP_PASSWORD", raising=False)

        with pytest.raises(ValueError) as excinfo:
            ImapConfig.from_dict({"host": "imap.example.com", "username": "test@example.com"})

        assert "IMAP password must be specified" in str(excinfo.value)

    def test_from_dict_missing_required_fields(self, monkeypatch):
        """Test error when required fields are missing."""
        monkeypatch.setenv("IMAP_PASSWORD", "password")

        with pytest.raises(KeyError):
            ImapConfig.from_dict({"username": "test@example.com"})

        with pytest.raises(KeyError):
            ImapConfig.from_dict({"host": "imap.example.com"})

    def test_ca_bundle_env_override(self, monkeypatch):
        """Test that IMAP_TLS_CA_BUNDLE overrides the file setting."""
        monkeypatch.setenv("IMAP_PASSWORD", "password")
        monkeypatch.setenv("IMAP_TLS_CA_BUNDLE", "/env/ca.pem")
        config = ImapConfig.from_dict({
            "host": "imap.example.com",
            "username": "test@example.com",
            "tls_ca_bundle": "/file/ca.pem",
        })
        assert config.tls_ca_bundle == "/env/ca.pem"


class TestFetchConfig:
    """Test cases for the FetchConfig class."""

    def test_defaults(self):
        """Test default fetch settings."""
        config = FetchConfig()
        assert config.mailbox == "INBOX"
        assert config.readonly is False
        assert config.max_messages == 5
        assert config.header_fields == ["From", "Subject", "Date"]
        assert config.body_bytes == 500
        assert config.greeting_threshold == DEFAULT_GREETING_THRESHOLD
        assert config.strict is False
        assert config.tag_prefix == "a"

    def test_from_dict(self):
        """Test overriding fetch settings."""
        config = FetchConfig.from_dict({
            "mailbox": "Archive",
            "readonly": True,
            "max_messages": 10,
            "header_fields": ["Subject", "To"],
            "body_bytes": 1024,
            "greeting_threshold": None,
            "strict": True,
            "tag_prefix": "t",
        })
        assert config.mailbox == "Archive"
        assert config.readonly is True
        assert config.max_messages == 10
        assert config.header_fields == ["Subject", "To"]
        assert config.body_bytes == 1024
        assert config.greeting_threshold is None
        assert config.strict is True
        assert config.tag_prefix == "t"

    def test_default_header_fields_not_shared(self):
        """Test that each instance gets its own header field list."""
        first = FetchConfig()
        first.header_fields.append("To")
        assert FetchConfig().header_fields == ["From", "Subject", "Date"]

    def test_greeting_threshold_from_string(self):
        """Test that a quoted threshold is read as a number."""
        assert FetchConfig.from_dict({"greeting_threshold": "150"}).greeting_threshold == 150

    @pytest.mark.parametrize(
        "data",
        [
            {"greeting_threshold": 0},
            {"greeting_threshold": "big"},
            {"max_messages": 0},
            {"body_bytes": -1},
            {"tag_prefix": "a1"},
            {"tag_prefix": ""},
        ],
    )
    def test_invalid_values(self, data):
        """Test validation of fetch settings."""
        with pytest.raises(ValueError):
            FetchConfig.from_dict(data)


class TestClientConfig:
    """Test cases for the ClientConfig class."""

    def test_from_dict(self, monkeypatch):
        """Test creating ClientConfig with and without a fetch section."""
        monkeypatch.setenv("IMAP_PASSWORD", "password")

        config = ClientConfig.from_dict({
            "imap": {"host": "imap.example.com", "username": "test@example.com"},
        })
        assert config.imap.host == "imap.example.com"
        assert config.fetch == FetchConfig()

        config = ClientConfig.from_dict({
            "imap": {"host": "imap.example.com", "username": "test@example.com"},
            "fetch": {"max_messages": 3},
        })
        assert config.fetch.max_messages == 3


class TestLoadConfig:
    """Test cases for the load_config function."""

    def test_load_from_file(self, monkeypatch, tmp_path):
        """Test loading configuration from a file."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")

        config_data = {
            "imap": {
                "host": "imap.example.com",
                "port": 993,
                "username": "test@example.com",
            },
            "fetch": {"mailbox": "Archive", "max_messages": 2},
        }

        config_file = tmp_path / "config.yaml"
        with open(config_file, "w") as f:
            yaml.dump(config_data, f)

        config = load_config(str(config_file))

        assert config.imap.host == "imap.example.com"
        assert config.imap.port == 993
        assert config.imap.username == "test@example.com"
        assert config.imap.password == "env_password"
        assert config.fetch.mailbox == "Archive"
        assert config.fetch.max_messages == 2

    def test_load_from_default_location(self, monkeypatch, tmp_path):
        """Test loading config.yaml from the working directory."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text(
            yaml.dump({"imap": {"host": "imap.local", "username": "me@local.test"}})
        )

        config = load_config()
        assert config.imap.host == "imap.local"

    def test_load_from_env(self, monkeypatch):
        """Test falling back to environment variables."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")
        monkeypatch.setenv("IMAP_USERNAME", "env@example.com")
        monkeypatch.setenv("IMAP_MAILBOX", "Work")
        monkeypatch.setenv("IMAP_MAX_MESSAGES", "7")
        monkeypatch.delenv("IMAP_HOST", raising=False)
        monkeypatch.delenv("IMAP_PORT", raising=False)
        monkeypatch.delenv("IMAP_USE_SSL", raising=False)

        with patch("pathlib.Path.exists", return_value=False):
            config = load_config("nonexistent.yaml")

        assert config.imap.host == "imap.gmail.com"
        assert config.imap.port == 993
        assert config.imap.username == "env@example.com"
        assert config.imap.use_ssl is True
        assert config.fetch.mailbox == "Work"
        assert config.fetch.max_messages == 7

    def test_load_no_source(self, monkeypatch):
        """Test error when neither file nor environment configures the client."""
        monkeypatch.delenv("IMAP_USERNAME", raising=False)

        with patch("pathlib.Path.exists", return_value=False):
            with pytest.raises(ValueError) as excinfo:
                load_config("nonexistent.yaml")

        assert "IMAP_USERNAME" in str(excinfo.value)

    def test_load_missing_key(self, monkeypatch, tmp_path):
        """Test that a missing required key becomes ValueError."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"imap": {"host": "imap.example.com"}}))

        with pytest.raises(ValueError) as excinfo:
            load_config(str(config_file))

        assert "Missing required configuration" in str(excinfo.value)

    def test_load_invalid_yaml(self, tmp_path):
        """Test that malformed YAML becomes ValueError."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("imap: [unterminated\n")

        with pytest.raises(ValueError) as excinfo:
            load_config(str(config_file))

        assert "Invalid YAML" in str(excinfo.value)

    def test_load_non_mapping(self, tmp_path):
        """Test that a YAML file without a mapping is rejected."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            load_config(str(config_file))

    def test_dotenv_opt_in(self, monkeypatch):
        """Test that .env is only loaded when explicitly enabled."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")
        monkeypatch.setenv("IMAP_USERNAME", "env@example.com")

        with patch("dotenv.load_dotenv") as mock_load:
            monkeypatch.delenv("IMAP_PREVIEW_LOAD_DOTENV", raising=False)
            load_config("nonexistent.yaml")
            mock_load.assert_not_called()

            monkeypatch.setenv("IMAP_PREVIEW_LOAD_DOTENV", "true")
            load_config("nonexistent.yaml")
            mock_load.assert_called_once()


class TestCreateSslContext:
    """Test cases for create_ssl_context."""

    def test_default_verifies(self):
        """Test that certificate verification is enabled."""
        import ssl

        context = create_ssl_context()
        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is True

    def test_missing_bundle(self, tmp_path):
        """Test a CA bundle path that does not exist."""
        with pytest.raises(FileNotFoundError):
            create_ssl_context(str(tmp_path / "missing.pem"))
