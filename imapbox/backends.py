"""Mail streams backed by the host client libraries.

Every protocol detail is left to the client library: ``imapclient`` for IMAP
and ``poplib`` for POP3. A stream only translates connection flags and
options into library calls and converts responses into plain Python values.
"""

import email
import logging
import poplib
from contextlib import contextmanager
from email.message import Message
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple, Type, Union

import imapclient
from imapclient.exceptions import IMAPClientError

from imapbox.config import create_ssl_context
from imapbox.exceptions import (
    MailboxConnectionError,
    MailboxError,
    UnsupportedServiceError,
)
from imapbox.flags import ConnectionFlags, Options
from imapbox.structure import BodyPart

logger = logging.getLogger(__name__)

Uid = Union[int, str]

DELETED = "\\Deleted"


class MailStream:
    """An open connection to one mailbox on a server."""

    service = ""
    host_errors: Tuple[Type[BaseException], ...] = (OSError,)

    def __init__(
        self,
        host: str,
        port: Optional[int],
        username: Optional[str],
        password: Optional[str],
        flags: ConnectionFlags,
        options: int = 0,
        tls_ca_bundle: Optional[str] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.flags = flags
        self.options = Options(options)
        self.tls_ca_bundle = tls_ca_bundle
        self.mailbox: Optional[str] = None
        self.last_error: Optional[str] = None
        self.secure = False

    @contextmanager
    def translate_errors(
        self, action: str, error_class: Type[MailboxError] = MailboxError
    ) -> Iterator[None]:
        """Re-raise client library errors as MailboxError."""
        try:
            yield
        except MailboxError:
            raise
        except self.host_errors as e:
            self.last_error = str(e)
            logger.error("%s %s failed: %s", self.service, action, e)
            raise error_class(f"{action} failed: {e}") from e

    @property
    def login_user(self) -> Optional[str]:
        return self.flags.get("user") or self.username

    @property
    def use_ssl(self) -> bool:
        return "ssl" in self.flags

    @property
    def readonly(self) -> bool:
        return "readonly" in self.flags or bool(self.options & Options.READONLY)

    @property
    def debug(self) -> bool:
        return "debug" in self.flags or bool(self.options & Options.DEBUG)

    def ssl_context(self):
        return create_ssl_context(
            self.tls_ca_bundle, verify="novalidate-cert" not in self.flags
        )

    def check_secure(self) -> None:
        """Refuse to send credentials over an unencrypted connection when asked to."""
        wants_secure = "secure" in self.flags or bool(self.options & Options.SECURE)
        if wants_secure and not self.secure:
            raise MailboxConnectionError(
                f"Refusing to authenticate to {self.host} over an unencrypted connection"
            )

    def open(self, mailbox: Optional[str]) -> None:
        raise NotImplementedError

    def reopen(self, mailbox: Optional[str]) -> None:
        raise NotImplementedError

    def close(self, expunge: bool = False) -> None:
        raise NotImplementedError

    def num_messages(self) -> int:
        raise NotImplementedError

    def search(self, criteria: str) -> List[Uid]:
        raise NotImplementedError

    def uids(self, count: int) -> List[Uid]:
        """Return the UIDs of messages with sequence numbers 1..count."""
        raise NotImplementedError

    def fetch_headers(self, uid: Uid) -> bytes:
        raise NotImplementedError

    def fetch_structure(self, uid: Uid) -> BodyPart:
        raise NotImplementedError

    def fetch_body(self, uid: Uid, part_id: Optional[str] = None) -> bytes:
        """Return a body section, still in its transfer encoding.

        A ``part_id`` of None returns the whole body without headers.
        """
        raise NotImplementedError

    def fetch_flags(self, uid: Uid) -> List[str]:
        raise NotImplementedError

    def fetch_size(self, uid: Uid) -> int:
        raise NotImplementedError

    def set_flags(self, uid: Uid, flags: Sequence[str], enable: bool = True) -> None:
        raise NotImplementedError

    def expunge(self) -> None:
        raise NotImplementedError


class ImapStream(MailStream):
    """Stream on an IMAP server through ``imapclient.IMAPClient``."""

    service = "imap"
    host_errors = (IMAPClientError, OSError)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.client: Optional[imapclient.IMAPClient] = None

    def open(self, mailbox: Optional[str]) -> None:
        if self.debug:
            logging.getLogger("imapclient").setLevel(logging.DEBUG)

        with self.translate_errors("connect", MailboxConnectionError):
            ssl_context = None
            if self.use_ssl or "notls" not in self.flags:
                ssl_context = self.ssl_context()

            self.client = imapclient.IMAPClient(
                self.host,
                port=self.port,
                ssl=self.use_ssl,
                ssl_context=ssl_context if self.use_ssl else None,
            )
            self.secure = self.use_ssl

            if not self.use_ssl and "notls" not in self.flags:
                if "tls" in self.flags or self.client.has_capability("STARTTLS"):
                    self.client.starttls(ssl_context)
                    self.secure = True

            self.check_secure()

            if "anonymous" in self.flags or self.options & Options.ANONYMOUS:
                self.client.login("anonymous", self.password or "")
            else:
                self.client.login(self.login_user, self.password)
            logger.info("Connected to IMAP server %s as %s", self.host, self.login_user)

            if not self.options & Options.HALFOPEN:
                self._select(mailbox)

    def _select(self, mailbox: Optional[str]) -> None:
        if not mailbox:
            self.mailbox = None
            return
        self.client.select_folder(mailbox, readonly=self.readonly)
        self.mailbox = mailbox
        logger.debug("Selected mailbox %s (readonly=%s)", mailbox, self.readonly)

    def reopen(self, mailbox: Optional[str]) -> None:
        with self.translate_errors("reopen", MailboxConnectionError):
            self._select(mailbox)

    def close(self, expunge: bool = False) -> None:
        if self.client is None:
            return
        try:
            if self.mailbox and (expunge or self.options & Options.CLOSE_EXPUNGE):
                self.client.close_folder()
            self.client.logout()
        except self.host_errors as e:
            logger.warning(f"Error during IMAP logout: {e}")
        finally:
            self.client = None
            self.mailbox = None

    def _require_mailbox(self) -> None:
        if self.client is None:
            raise MailboxError("Stream is not open")
        if not self.mailbox:
            raise MailboxError("No mailbox selected")

    def num_messages(self) -> int:
        self._require_mailbox()
        with self.translate_errors("status"):
            status = self.client.folder_status(self.mailbox, [b"MESSAGES"])
        return int(status[b"MESSAGES"])

    def search(self, criteria: str) -> List[Uid]:
        self._require_mailbox()
        with self.translate_errors("search"):
            return list(self.client.search(criteria))

    def uids(self, count: int) -> List[Uid]:
        self._require_mailbox()
        if count < 1:
            return []
        with self.translate_errors("fetch UID"):
            self.client.use_uid = False
            try:
                response = self.client.fetch(f"1:{count}", ["UID"])
            finally:
                self.client.use_uid = True
        return [response[seq][b"UID"] for seq in sorted(response)]

    def _fetch_item(self, uid: Uid, item: str, key: bytes):
        self._require_mailbox()
        with self.translate_errors(f"fetch {item}"):
            response = self.client.fetch([uid], [item])
        if uid not in response or key not in response[uid]:
            raise MailboxError(f"Message {uid} not found in {self.mailbox}")
        return response[uid][key]

    def fetch_headers(self, uid: Uid) -> bytes:
        return self._fetch_item(uid, "BODY.PEEK[HEADER]", b"BODY[HEADER]")

    def fetch_structure(self, uid: Uid) -> BodyPart:
        return BodyPart.from_bodystructure(
            self._fetch_item(uid, "BODYSTRUCTURE", b"BODYSTRUCTURE")
        )

    def fetch_body(self, uid: Uid, part_id: Optional[str] = None) -> bytes:
        section = part_id or "TEXT"
        data = self._fetch_item(
            uid, f"BODY.PEEK[{section}]", f"BODY[{section}]".encode("ascii")
        )
        return data or b""

    def fetch_flags(self, uid: Uid) -> List[str]:
        flags = self._fetch_item(uid, "FLAGS", b"FLAGS")
        return [f.decode() if isinstance(f, bytes) else str(f) for f in flags]

    def fetch_size(self, uid: Uid) -> int:
        return int(self._fetch_item(uid, "RFC822.SIZE", b"RFC822.SIZE"))

    def set_flags(self, uid: Uid, flags: Sequence[str], enable: bool = True) -> None:
        self._require_mailbox()
        with self.translate_errors("store flags"):
            if enable:
                self.client.add_flags([uid], list(flags))
            else:
                self.client.remove_flags([uid], list(flags))

    def expunge(self) -> None:
        self._require_mailbox()
        with self.translate_errors("expunge"):
            self.client.expunge()
        logger.info("Expunged deleted messages from %s", self.mailbox)


class Pop3Stream(MailStream):
    """Stream on a POP3 maildrop through ``poplib``.

    POP3 has a single mailbox, no server side search and no flags. Messages
    are identified by their UIDL, deletions are staged with DELE and only
    committed by ``expunge()`` or a closing expunge.
    """

    service = "pop3"
    host_errors = (poplib.error_proto, OSError)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.connection: Optional[poplib.POP3] = None
        self._numbers: Dict[str, int] = {}
        self._deleted: Set[str] = set()
        self._messages: Dict[str, Message] = {}

    def open(self, mailbox: Optional[str]) -> None:
        self._check_mailbox(mailbox)
        with self.translate_errors("connect", MailboxConnectionError):
            if self.use_ssl:
                self.connection = poplib.POP3_SSL(
                    self.host, self.port or poplib.POP3_SSL_PORT, context=self.ssl_context()
                )
                self.secure = True
            else:
                self.connection = poplib.POP3(self.host, self.port or poplib.POP3_PORT)
                self.secure = False
                if "notls" not in self.flags and ("tls" in self.flags or self._has_stls()):
                    self.connection.stls(context=self.ssl_context())
                    self.secure = True

            if self.debug:
                self.connection.set_debuglevel(1)

            self.check_secure()
            self.connection.user(self.login_user)
            self.connection.pass_(self.password)
            logger.info("Connected to POP3 server %s as %s", self.host, self.login_user)
            self._load_uids()
        self.mailbox = mailbox or "INBOX"

    def _has_stls(self) -> bool:
        try:
            return "STLS" in self.connection.capa()
        except poplib.error_proto:
            return False

    @staticmethod
    def _check_mailbox(mailbox: Optional[str]) -> None:
        if mailbox and mailbox.upper() != "INBOX":
            raise MailboxError(f"POP3 has no mailbox named {mailbox!r}, only INBOX")

    def _load_uids(self) -> None:
        _, listing, _ = self.connection.uidl()
        self._numbers = {}
        for line in listing:
            number, uid = line.decode("ascii").split(None, 1)
            self._numbers[uid.strip()] = int(number)
        self._deleted = set()
        self._messages = {}

    def reopen(self, mailbox: Optional[str]) -> None:
        self._check_mailbox(mailbox)
        self.mailbox = mailbox or "INBOX"

    def close(self, expunge: bool = False) -> None:
        if self.connection is None:
            return
        try:
            if self._deleted and not (expunge or self.options & Options.CLOSE_EXPUNGE):
                # QUIT commits DELE, so unmark first
                self.connection.rset()
            self.connection.quit()
        except self.host_errors as e:
            logger.warning(f"Error during POP3 quit: {e}")
        finally:
            self.connection = None
            self._deleted = set()
            self._messages = {}

    def _number(self, uid: Uid) -> int:
        if self.connection is None:
            raise MailboxError("Stream is not open")
        try:
            return self._numbers[str(uid)]
        except KeyError:
            raise MailboxError(f"Message {uid} not found in maildrop")

    def num_messages(self) -> int:
        if self.connection is None:
            raise MailboxError("Stream is not open")
        with self.translate_errors("stat"):
            count, _ = self.connection.stat()
        return count

    def search(self, criteria: str) -> List[Uid]:
        if criteria.strip().upper() != "ALL":
            raise MailboxError(f"POP3 does not support search criteria {criteria!r}")
        return [uid for uid in self._numbers if uid not in self._deleted]

    def uids(self, count: int) -> List[Uid]:
        # STAT does not count messages marked with DELE
        ordered = sorted(
            (uid for uid in self._numbers if uid not in self._deleted),
            key=self._numbers.get,
        )
        return ordered[: max(count, 0)]

    def _message(self, uid: Uid) -> Message:
        key = str(uid)
        if key not in self._messages:
            number = self._number(uid)
            with self.translate_errors("retrieve"):
                _, lines, _ = self.connection.retr(number)
            self._messages[key] = email.message_from_bytes(b"\r\n".join(lines))
        return self._messages[key]

    def fetch_headers(self, uid: Uid) -> bytes:
        number = self._number(uid)
        with self.translate_errors("top"):
            _, lines, _ = self.connection.top(number, 0)
        return b"\r\n".join(lines) + b"\r\n"

    def fetch_structure(self, uid: Uid) -> BodyPart:
        return BodyPart.from_message(self._message(uid))

    def fetch_body(self, uid: Uid, part_id: Optional[str] = None) -> bytes:
        node = self._message(uid)
        if part_id is not None:
            for index in part_id.split("."):
                children = node.get_payload()
                position = int(index) - 1
                if not isinstance(children, list) or not 0 <= position < len(children):
                    raise MailboxError(f"Message {uid} has no part {part_id}")
                node = children[position]

        payload = node.get_payload()
        if isinstance(payload, list):
            if part_id is None:
                raw = node.as_bytes()
                _, _, body = raw.partition(b"\n\n")
                return body
            return b"".join(inner.as_bytes() for inner in payload)
        if isinstance(payload, bytes):
            return payload
        return payload.encode("utf-8", errors="surrogateescape")

    def fetch_flags(self, uid: Uid) -> List[str]:
        self._number(uid)
        return [DELETED] if str(uid) in self._deleted else []

    def fetch_size(self, uid: Uid) -> int:
        number = self._number(uid)
        with self.translate_errors("list"):
            response = self.connection.list(number)
        return int(response.split()[2])

    def set_flags(self, uid: Uid, flags: Sequence[str], enable: bool = True) -> None:
        number = self._number(uid)
        if DELETED not in flags:
            logger.debug("POP3 ignores flags %s", ", ".join(flags))
            return
        with self.translate_errors("delete"):
            if enable:
                self.connection.dele(number)
                self._deleted.add(str(uid))
            elif str(uid) in self._deleted:
                # RSET unmarks everything, so restage the others
                self.connection.rset()
                self._deleted.discard(str(uid))
                for other in self._deleted:
                    self.connection.dele(self._numbers[other])

    def expunge(self) -> None:
        if self.connection is None:
            raise MailboxError("Stream is not open")
        with self.translate_errors("expunge"):
            self.connection.quit()
        logger.info("Committed %d deletions on %s", len(self._deleted), self.host)
        self.connection = None
        self.open(self.mailbox)


STREAMS: Dict[str, Type[MailStream]] = {
    "imap": ImapStream,
    "pop3": Pop3Stream,
}


def create_stream(service: str, *args, **kwargs) -> MailStream:
    """Create an unopened stream for *service*.

    Raises:
        UnsupportedServiceError: If no backend handles the service.
    """
    try:
        stream_class = STREAMS[service.lower()]
    except KeyError:
        raise UnsupportedServiceError(service)
    return stream_class(*args, **kwargs)
