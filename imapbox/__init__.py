"""Object-oriented access to IMAP and POP3 mailboxes."""

from imapbox.exceptions import (
    MailboxConnectionError,
    MailboxError,
    UnsupportedServiceError,
)
from imapbox.mailbox import Mailbox
from imapbox.message import Attachment, Message

__version__ = "0.1.0"

__all__ = [
    "Attachment",
    "Mailbox",
    "MailboxConnectionError",
    "MailboxError",
    "Message",
    "UnsupportedServiceError",
]
