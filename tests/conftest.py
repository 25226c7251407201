"""Shared fixtures for imapbox tests."""

from unittest.mock import MagicMock

import pytest

from imapbox.backends import MailStream
from imapbox.mailbox import Mailbox

HEADERS = (
    b"From: Alice Example <alice@example.com>\r\n"
    b"To: Bob <bob@example.com>, carol@example.com\r\n"
    b"Subject: =?utf-8?q?Quarterly_r=C3=A9port?=\r\n"
    b"Date: Tue, 01 Oct 2024 09:30:00 +0000\r\n"
    b"Message-ID: <abc123@example.com>\r\n"
    b"\r\n"
)

# imapclient BodyData for multipart/mixed with a text part and a PDF
MULTIPART_BODYSTRUCTURE = (
    [
        (
            b"text", b"plain", (b"charset", b"utf-8"), None, None,
            b"quoted-printable", 27, 1, None, None, None, None,
        ),
        (
            b"application", b"pdf", (b"name", b"report.pdf"), None, None,
            b"base64", 16, None, (b"attachment", (b"filename", b"report.pdf")),
            None, None,
        ),
    ],
    b"mixed",
    (b"boundary", b"XYZ"),
    None,
    None,
    None,
)


@pytest.fixture
def mock_stream():
    """A MailStream double returning canned responses."""
    stream = MagicMock(spec=MailStream)
    stream.num_messages.return_value = 3
    stream.search.return_value = [11, 12, 13]
    stream.uids.return_value = [11, 12, 13]
    stream.fetch_headers.return_value = HEADERS
    stream.fetch_flags.return_value = ["\\Seen"]
    stream.fetch_size.return_value = 2048
    return stream


@pytest.fixture
def mailbox(mock_stream):
    """A Mailbox whose stream is already open."""
    box = Mailbox("imap.example.com", 993)
    box.set_authentication("user@example.com", "secret")
    box.mailbox = "INBOX"
    box._stream = mock_stream
    return box
