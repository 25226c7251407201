"""Configuration handling for imapbox."""

import logging
import os
import ssl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"imap": 143, "pop3": 110, "nntp": 119}
DEFAULT_SSL_PORTS = {"imap": 993, "pop3": 995, "nntp": 563}


def _maybe_load_dotenv() -> None:
    """Load .env file only when explicitly opted in via IMAPBOX_LOAD_DOTENV=true."""
    if os.environ.get("IMAPBOX_LOAD_DOTENV", "").lower() == "true":
        from dotenv import load_dotenv

        load_dotenv()
        logger.warning(
            ".env file loaded (IMAPBOX_LOAD_DOTENV=true), "
            "disable in production for security"
        )


def create_ssl_context(
    ca_bundle: Optional[str] = None, verify: bool = True
) -> ssl.SSLContext:
    """Create an SSL context with an optional custom CA bundle.

    Args:
        ca_bundle: Path to a custom CA bundle file (PEM format).
            If None, uses the system default certificate store.
        verify: Verify the server certificate and host name. Only disabled
            by the ``novalidate-cert`` connection flag.

    Returns:
        Configured SSL context.

    Raises:
        FileNotFoundError: If the specified CA bundle file does not exist.
        ssl.SSLError: If the CA bundle file cannot be loaded.
    """
    context = ssl.create_default_context()
    if ca_bundle:
        bundle_path = Path(ca_bundle)
        if not bundle_path.exists():
            raise FileNotFoundError(
                f"TLS CA bundle file not found: {ca_bundle}"
            )
        context.load_verify_locations(ca_bundle)
        logger.info("Loaded custom CA bundle: %s", ca_bundle)
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        logger.warning("Certificate validation disabled (novalidate-cert)")
    return context


@dataclass
class MailboxConfig:
    """Mail server connection configuration."""

    host: str
    username: str
    password: str
    port: Optional[int] = None
    service: str = "imap"
    mailbox: str = "INBOX"
    flags: Dict[str, Any] = field(default_factory=dict)
    options: int = 0
    tls_ca_bundle: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MailboxConfig":
        """Create configuration from dictionary.

        Password is resolved exclusively from the IMAP_PASSWORD environment
        variable. The 'password' key in config dict is ignored for security.

        ``flags`` may be a mapping of flag name to value or a list of bare
        flag names. The legacy ``use_ssl`` key adds the ``ssl`` flag.
        """
        if data.get("password"):
            logger.warning(
                "Ignoring 'password' in mailbox config, "
                "use IMAP_PASSWORD environment variable instead"
            )

        password = os.environ.get("IMAP_PASSWORD")
        if not password:
            raise ValueError(
                "Mailbox password must be specified via IMAP_PASSWORD environment variable"
            )

        service = str(data.get("service", "imap")).lower()

        raw_flags = data.get("flags") or {}
        if isinstance(raw_flags, list):
            flags: Dict[str, Any] = {str(name): None for name in raw_flags}
        elif isinstance(raw_flags, dict):
            flags = dict(raw_flags)
        else:
            raise ValueError(f"Invalid flags configuration: {raw_flags!r}")

        use_ssl = data.get("use_ssl")
        if use_ssl:
            flags.setdefault("ssl", None)

        port = data.get("port")
        if port is None and use_ssl is not None:
            ports = DEFAULT_SSL_PORTS if use_ssl else DEFAULT_PORTS
            port = ports.get(service)

        options = data.get("options", 0)
        try:
            options = int(options)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid options bitmask: {options!r}")

        tls_ca_bundle = (
            os.environ.get("IMAP_TLS_CA_BUNDLE") or data.get("tls_ca_bundle") or None
        )

        return cls(
            host=data["host"],
            username=data["username"],
            password=password,
            port=int(port) if port is not None else None,
            service=service,
            mailbox=data.get("mailbox", "INBOX"),
            flags=flags,
            options=options,
            tls_ca_bundle=tls_ca_bundle,
        )


def load_config(config_path: Optional[str] = None) -> MailboxConfig:
    """Load configuration from file or environment variables.

    Args:
        config_path: Path to configuration file

    Returns:
        Mailbox configuration

    Raises:
        ValueError: If configuration is invalid
    """
    _maybe_load_dotenv()

    # Default locations to check for config file
    default_locations = [
        Path("config.yaml"),
        Path("config.yml"),
        Path("~/.config/imapbox/config.yaml"),
        Path("/etc/imapbox/config.yaml"),
    ]

    config_data: Dict[str, Any] = {}
    if config_path:
        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {config_path}")
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {config_path}")
    else:
        for path in default_locations:
            expanded_path = path.expanduser()
            if expanded_path.exists():
                with open(expanded_path, "r") as f:
                    config_data = yaml.safe_load(f) or {}
                logger.info(f"Loaded configuration from {expanded_path}")
                break

    # Section may be nested under "mailbox" or given at top level
    if "mailbox" in config_data and isinstance(config_data["mailbox"], dict):
        config_data = config_data["mailbox"]

    if not config_data:
        logger.info("No configuration file found, using environment variables")
        if not os.environ.get("IMAP_HOST"):
            raise ValueError(
                "No configuration file found and IMAP_HOST environment variable not set"
            )

        config_data = {
            "host": os.environ.get("IMAP_HOST"),
            "username": os.environ.get("IMAP_USERNAME"),
            "service": os.environ.get("IMAP_SERVICE", "imap"),
            "mailbox": os.environ.get("IMAP_MAILBOX", "INBOX"),
        }
        if os.environ.get("IMAP_PORT"):
            config_data["port"] = int(os.environ["IMAP_PORT"])
        if os.environ.get("IMAP_USE_SSL") is not None:
            config_data["use_ssl"] = os.environ["IMAP_USE_SSL"].lower() == "true"

        env_flags = os.environ.get("IMAP_FLAGS")
        if env_flags:
            flags: Dict[str, Any] = {}
            for token in env_flags.split(","):
                token = token.strip()
                if not token:
                    continue
                name, sep, value = token.partition("=")
                flags[name] = value if sep else None
            config_data["flags"] = flags

    try:
        return MailboxConfig.from_dict(config_data)
    except KeyError as e:
        raise ValueError(f"Missing required configuration: {e}")
