"""Messages and attachments of a mailbox, fetched lazily."""

import email.utils
import logging
import os
from datetime import datetime
from email.message import Message as MimeMessage
from email.parser import BytesHeaderParser
from typing import TYPE_CHECKING, List, Optional, Union

from imapbox.backends import DELETED, Uid
from imapbox.models import EmailAddress, decode_mime_header, parse_address_list
from imapbox.structure import BodyPart, decode, parameters_from_structure

if TYPE_CHECKING:
    from imapbox.mailbox import Mailbox

logger = logging.getLogger(__name__)


class Message:
    """A message identified by its UID.

    Headers, structure and body parts are fetched on first access and
    cached on the instance.
    """

    def __init__(self, uid: Uid, mailbox: "Mailbox"):
        self.uid = uid
        self.mailbox = mailbox
        self._headers: Optional[MimeMessage] = None
        self._structure: Optional[BodyPart] = None
        self._attachments: Optional[List["Attachment"]] = None
        self._flags: Optional[List[str]] = None
        self._size: Optional[int] = None

    @property
    def stream(self):
        return self.mailbox.get_stream()

    @property
    def headers(self) -> MimeMessage:
        if self._headers is None:
            raw = self.stream.fetch_headers(self.uid)
            self._headers = BytesHeaderParser().parsebytes(raw)
        return self._headers

    def get_header(self, name: str) -> str:
        return decode_mime_header(self.headers.get(name))

    @property
    def subject(self) -> str:
        return self.get_header("Subject")

    @property
    def message_id(self) -> str:
        return (self.headers.get("Message-ID") or "").strip()

    @property
    def date(self) -> Optional[datetime]:
        date_str = self.headers.get("Date")
        if not date_str:
            return None
        try:
            return email.utils.parsedate_to_datetime(date_str)
        except (ValueError, TypeError):
            logger.debug("Unparseable Date header %r on message %s", date_str, self.uid)
            return None

    @property
    def from_(self) -> Optional[EmailAddress]:
        addresses = parse_address_list(self.headers.get("From"))
        return addresses[0] if addresses else None

    @property
    def to(self) -> List[EmailAddress]:
        return parse_address_list(self.headers.get("To"))

    @property
    def cc(self) -> List[EmailAddress]:
        return parse_address_list(self.headers.get("Cc"))

    @property
    def reply_to(self) -> List[EmailAddress]:
        return parse_address_list(self.headers.get("Reply-To"))

    @property
    def flags(self) -> List[str]:
        if self._flags is None:
            self._flags = self.stream.fetch_flags(self.uid)
        return self._flags

    @property
    def size(self) -> int:
        if self._size is None:
            self._size = self.stream.fetch_size(self.uid)
        return self._size

    @property
    def structure(self) -> BodyPart:
        if self._structure is None:
            self._structure = self.stream.fetch_structure(self.uid)
        return self._structure

    def get_message_body(self, html: bool = False) -> Optional[str]:
        """Return the text of the message.

        Args:
            html: Prefer the ``text/html`` part over ``text/plain``

        Returns:
            Decoded body text, or None when the message has no such part
        """
        wanted = "html" if html else "plain"
        for part in self.structure.walk():
            if part.type == "text" and part.subtype == wanted and not part.is_attachment:
                return self._decode_text(part)
        return None

    def _decode_text(self, part: BodyPart) -> str:
        data = decode(self.stream.fetch_body(self.uid, part.part_id), part.encoding)
        charset = part.charset or "utf-8"
        try:
            return data.decode(charset, errors="replace")
        except LookupError:
            logger.warning("Unknown charset %r on message %s", charset, self.uid)
            return data.decode("utf-8", errors="replace")

    def get_attachments(self) -> List["Attachment"]:
        if self._attachments is None:
            self._attachments = [
                Attachment(self, part) for part in self.structure.walk() if part.is_attachment
            ]
        return self._attachments

    def set_flag(self, flag: str, enable: bool = True) -> None:
        self.stream.set_flags(self.uid, [flag], enable)
        self._flags = None

    def delete(self) -> None:
        """Flag the message for deletion; ``Mailbox.expunge()`` removes it."""
        self.set_flag(DELETED)

    def summary(self) -> str:
        """Return a summary of the message."""
        date = self.date
        date_str = f"{date:%Y-%m-%d %H:%M:%S}" if date else "Unknown date"
        return (
            f"UID: {self.uid}\n"
            f"From: {self.from_ or ''}\n"
            f"To: {', '.join(str(a) for a in self.to)}\n"
            f"Date: {date_str}\n"
            f"Subject: {self.subject}\n"
            f"Attachments: {len(self.get_attachments())}"
        )

    def __repr__(self) -> str:
        return f"Message(uid={self.uid!r})"


class Attachment:
    """A body part carrying a file."""

    def __init__(self, message: Message, part: BodyPart):
        self.message = message
        self.part = part
        self.part_id = part.part_id
        self.size = part.size
        self.encoding = part.encoding
        self.mime_type = part.mime_type
        self._data: Optional[bytes] = None

        parameters = parameters_from_structure(part)
        filename = parameters.get("filename") or parameters.get("name")
        self.filename: Optional[str] = decode_mime_header(filename) if filename else None

    def get_data(self) -> bytes:
        """Return the decoded content, fetching it on first call."""
        if self._data is None:
            raw = self.message.stream.fetch_body(self.message.uid, self.part_id)
            self._data = decode(raw, self.encoding)
        return self._data

    def save_to_directory(self, path: Union[str, os.PathLike]) -> bool:
        """Save the attachment under its own filename in *path*.

        Returns:
            False if path is not a directory or the attachment has no filename
        """
        if not os.path.isdir(path) or not self.filename:
            return False
        # Never let a filename escape the target directory
        name = os.path.basename(self.filename)
        if name in ("", ".", ".."):
            return False
        return self.save_as(os.path.join(path, name))

    def save_as(self, path: Union[str, os.PathLike]) -> bool:
        """Write the attachment to *path*.

        Returns:
            False if the file or its directory is not writable, True once written
        """
        directory = os.path.dirname(os.path.abspath(path))
        if os.path.isdir(path):
            return False
        if os.path.exists(path):
            if not os.access(path, os.W_OK):
                return False
        elif not os.path.isdir(directory) or not os.access(directory, os.W_OK):
            return False

        data = self.get_data()
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error("Failed to save attachment %s to %s: %s", self.filename, path, e)
            return False
        logger.info("Saved attachment %s (%d bytes) to %s", self.filename, self.size, path)
        return True

    def __repr__(self) -> str:
        return f"Attachment(filename={self.filename!r}, mime_type={self.mime_type!r})"
