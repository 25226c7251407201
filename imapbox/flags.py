"""Connection flags and server connection strings.

A connection string has the form ``{host:port/service/flag/name=value}mailbox``.
Flags modify how the connection is made, e.g. ``ssl`` to require a secure
connection or ``novalidate-cert`` to accept self-signed certificates.
"""

import enum
import logging
from typing import Dict, Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Flags that need SSL support in the host library
SSL_FLAGS = ("ssl", "validate-cert", "novalidate-cert", "tls", "notls")

# Mutually exclusive pairs; checked key to value and value to key
EXCLUSIVE_FLAGS = {"validate-cert": "novalidate-cert", "tls": "notls"}

FlagValue = Union[None, bool, str, int]


class Options(enum.IntFlag):
    """Open options passed alongside the connection string."""

    NONE = 0
    DEBUG = 1
    READONLY = 2
    ANONYMOUS = 4
    HALFOPEN = 64
    SECURE = 256
    CLOSE_EXPUNGE = 32768


def exclusive_counterpart(flag: str) -> Optional[str]:
    """Return the flag that cannot coexist with *flag*, if any."""
    if flag in EXCLUSIVE_FLAGS:
        return EXCLUSIVE_FLAGS[flag]
    for key, value in EXCLUSIVE_FLAGS.items():
        if value == flag:
            return key
    return None


class ConnectionFlags:
    """Ordered set of connection flags.

    Each flag is stored either bare (value ``None``) or with a string value,
    which renders as ``name=value``.
    """

    ssl_enabled = True

    def __init__(self) -> None:
        self._flags: Dict[str, Optional[str]] = {}

    def set(self, flag: str, value: FlagValue = None) -> None:
        """Set or clear a flag.

        Args:
            flag: Flag name, e.g. ``ssl`` or ``user``
            value: ``None``/``True`` for a bare flag, ``False`` to clear it,
                anything else to store ``flag=value``
        """
        if not self.ssl_enabled and flag in SSL_FLAGS:
            logger.debug("SSL support disabled, ignoring flag %s", flag)
            return

        counterpart = exclusive_counterpart(flag)
        if counterpart is not None and counterpart in self._flags:
            del self._flags[counterpart]

        if value is None or value is True:
            self._flags[flag] = None
        elif value is False:
            self._flags.pop(flag, None)
        else:
            self._flags[flag] = str(value)

    def remove(self, flag: str) -> None:
        self._flags.pop(flag, None)

    def get(self, flag: str, default: Optional[str] = None) -> Optional[str]:
        return self._flags.get(flag, default)

    def items(self) -> Iterator[Tuple[str, Optional[str]]]:
        return iter(list(self._flags.items()))

    def tokens(self) -> Iterator[str]:
        """Yield flags as they appear in the connection string."""
        for name, value in self._flags.items():
            yield name if value is None else f"{name}={value}"

    def __contains__(self, flag: object) -> bool:
        return flag in self._flags

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._flags))

    def __len__(self) -> int:
        return len(self._flags)

    def __repr__(self) -> str:
        return f"ConnectionFlags({list(self.tokens())!r})"


def build_server_string(
    host: str,
    port: Optional[int] = None,
    service: str = "imap",
    flags: Optional[ConnectionFlags] = None,
    mailbox: Optional[str] = None,
) -> str:
    """Build the connection string for a server, service and mailbox.

    Args:
        host: Server host name
        port: Server port, omitted when None
        service: ``imap``, ``pop3`` or ``nntp``; ``imap`` is implied
        flags: Connection flags
        mailbox: Mailbox name, omitted when None

    Returns:
        Connection string, e.g. ``{imap.example.com:993/ssl}INBOX``
    """
    server_string = "{" + host

    if port is not None:
        server_string += f":{port}"

    if service != "imap":
        server_string += "/" + service

    if flags is not None:
        for token in flags.tokens():
            server_string += "/" + token

    server_string += "}"

    if mailbox is not None:
        server_string += mailbox

    return server_string
