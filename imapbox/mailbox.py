"""Connection to a mail server and access to the messages of one mailbox."""

import logging
import numbers
from typing import List, Optional

from imapbox.backends import MailStream, Uid, create_stream
from imapbox.config import MailboxConfig
from imapbox.exceptions import MailboxError
from imapbox.flags import ConnectionFlags, FlagValue, build_server_string
from imapbox.message import Message

logger = logging.getLogger(__name__)


class Mailbox:
    """Connection parameters for a mailbox and lazy access to its messages.

    Nothing touches the network until a method needs the stream. Changing
    the mailbox of an open connection reselects it on the same stream.

    Example::

        box = Mailbox("imap.example.com", 993)
        box.set_authentication("user@example.com", "secret")
        box.set_mailbox("INBOX")
        for message in box.search("UNSEEN", limit=10):
            print(message.subject)
    """

    def __init__(self, server_path: str, port: Optional[int] = 143, service: str = "imap"):
        self.server_path = server_path
        self.port = port
        self.service = service
        self.flags = ConnectionFlags()
        self.mailbox: Optional[str] = None
        self.username: Optional[str] = None
        self.password: Optional[str] = None
        self.options = 0
        self.tls_ca_bundle: Optional[str] = None
        self._stream: Optional[MailStream] = None

        if port == 143:
            self.set_flag("novalidate-cert")
        elif port == 993:
            self.set_flag("ssl")

    @classmethod
    def from_config(cls, config: MailboxConfig) -> "Mailbox":
        """Create a mailbox from loaded configuration."""
        mailbox = cls(config.host, config.port, config.service)
        mailbox.set_authentication(config.username, config.password)
        for flag, value in config.flags.items():
            mailbox.set_flag(flag, value)
        mailbox.set_options(config.options)
        mailbox.tls_ca_bundle = config.tls_ca_bundle
        mailbox.set_mailbox(config.mailbox)
        return mailbox

    def set_authentication(self, username: Optional[str], password: Optional[str]) -> None:
        self.username = username
        self.password = password

    def set_mailbox(self, mailbox: str = "") -> None:
        """Set the mailbox to use, reselecting it if the stream is open."""
        if self._stream is not None:
            self._stream.reopen(mailbox)
        self.mailbox = mailbox

    def set_flag(self, flag: str, value: FlagValue = None) -> None:
        """Set or clear a connection flag.

        Most flags are bare words, so ``value`` is optional. Passing
        ``False`` clears the flag; the exclusive counterpart of the flag
        (``tls``/``notls``, ``validate-cert``/``novalidate-cert``) is always
        removed.
        """
        self.flags.set(flag, value)

    def set_options(self, bitmask: int = 0) -> None:
        """Set the option bitmask used when the connection is opened.

        Raises:
            MailboxError: If bitmask is not an integer.
        """
        if isinstance(bitmask, bool) or not isinstance(bitmask, numbers.Integral):
            raise MailboxError(f"Options must be an integer bitmask, got {bitmask!r}")
        self.options = int(bitmask)

    @property
    def server_string(self) -> str:
        """The connection string, e.g. ``{imap.example.com:993/ssl}INBOX``."""
        return build_server_string(
            self.server_path, self.port, self.service, self.flags, self.mailbox
        )

    @property
    def connected(self) -> bool:
        return self._stream is not None

    def get_stream(self) -> MailStream:
        """Return the open stream, connecting on first use.

        Raises:
            MailboxConnectionError: If the connection cannot be opened.
            UnsupportedServiceError: If the service has no backend.
        """
        if self._stream is None:
            logger.info("Opening %s", self.server_string)
            stream = create_stream(
                self.service,
                self.server_path,
                self.port,
                self.username,
                self.password,
                self.flags,
                options=self.options,
                tls_ca_bundle=self.tls_ca_bundle,
            )
            try:
                stream.open(self.mailbox)
            except MailboxError:
                stream.close()
                raise
            self._stream = stream
        return self._stream

    def close(self, expunge: bool = False) -> None:
        if self._stream is not None:
            logger.info("Closing %s", self.server_string)
            self._stream.close(expunge=expunge)
            self._stream = None

    def __enter__(self) -> "Mailbox":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def num_messages(self) -> int:
        """Return the number of messages in the current mailbox."""
        return self.get_stream().num_messages()

    def search(self, criteria: str = "ALL", limit: Optional[int] = None) -> List[Message]:
        """Return the messages matching an IMAP search criteria string.

        The criteria follow RFC 3501 section 6.4.4, e.g. ``UNSEEN`` or
        ``FROM "alice" SINCE 1-Jan-2024``.

        Args:
            criteria: Search criteria
            limit: Maximum number of messages to return

        Returns:
            Messages in server order, empty if nothing matched
        """
        uids = self.get_stream().search(criteria)
        if limit is not None and len(uids) > limit:
            uids = uids[:limit]
        logger.debug("Search %r matched %d messages", criteria, len(uids))
        return [Message(uid, self) for uid in uids]

    def get_recent_messages(self, limit: Optional[int] = None) -> List[Message]:
        return self.search("RECENT", limit)

    def get_messages(self, limit: Optional[int] = None) -> List[Message]:
        """Return the messages of the current mailbox in sequence order."""
        count = self.num_messages()
        if limit is not None and limit < count:
            count = limit
        if count < 1:
            return []
        return [Message(uid, self) for uid in self.get_stream().uids(count)]

    def get_message(self, uid: Uid) -> Message:
        return Message(uid, self)

    def expunge(self) -> bool:
        """Remove all messages flagged for deletion from the mailbox."""
        self.get_stream().expunge()
        return True

    def __repr__(self) -> str:
        return f"Mailbox({self.server_string!r})"
