"""Tests for messages and attachments."""

import base64
import os
from datetime import datetime, timezone

import pytest

from imapbox.message import Attachment, Message
from imapbox.structure import BodyPart
from tests.conftest import MULTIPART_BODYSTRUCTURE

PDF_BYTES = b"%PDF-1.4 fake!!"


@pytest.fixture
def multipart_stream(mock_stream):
    """Stream serving a text part and a PDF attachment."""
    mock_stream.fetch_structure.return_value = BodyPart.from_bodystructure(
        MULTIPART_BODYSTRUCTURE
    )
    bodies = {
        "1": b"Caf=C3=A9 at nine=\r\n, see attached.",
        "2": base64.encodebytes(PDF_BYTES),
    }
    mock_stream.fetch_body.side_effect = lambda uid, part_id=None: bodies[part_id]
    return mock_stream


@pytest.fixture
def message(mailbox, multipart_stream):
    return Message(11, mailbox)


class TestMessage:
    """Test header and body access."""

    def test_headers(self, message, mock_stream):
        """Test decoded header properties."""
        assert message.subject == "Quarterly réport"
        assert message.message_id == "<abc123@example.com>"
        assert message.date == datetime(2024, 10, 1, 9, 30, tzinfo=timezone.utc)
        assert message.from_.address == "alice@example.com"
        assert message.from_.name == "Alice Example"
        assert [a.address for a in message.to] == ["bob@example.com", "carol@example.com"]
        assert message.cc == []

        # Headers are fetched once
        mock_stream.fetch_headers.assert_called_once_with(11)

    def test_missing_date(self, message, mock_stream):
        """Test a message without a usable Date header."""
        mock_stream.fetch_headers.return_value = b"Subject: x\r\nDate: yesterday\r\n\r\n"
        assert message.date is None
        assert message.from_ is None

    def test_flags_and_size(self, message, mock_stream):
        """Test flags and size are fetched and cached."""
        assert message.flags == ["\\Seen"]
        assert message.flags == ["\\Seen"]
        mock_stream.fetch_flags.assert_called_once_with(11)
        assert message.size == 2048

    def test_plain_body(self, message, mock_stream):
        """Test decoding the plain text part."""
        assert message.get_message_body() == "Café at nine, see attached."
        mock_stream.fetch_body.assert_called_once_with(11, "1")

    def test_html_body_missing(self, message):
        """Test that a missing HTML part returns None."""
        assert message.get_message_body(html=True) is None

    def test_single_part_body(self, message, mock_stream):
        """Test a non-multipart message is fetched without a section."""
        mock_stream.fetch_structure.return_value = BodyPart.from_bodystructure(
            (b"text", b"html", (b"charset", b"iso-8859-1"), None, None, b"8bit", 10, 1)
        )
        mock_stream.fetch_body.side_effect = None
        mock_stream.fetch_body.return_value = "<p>d\xe9j\xe0</p>".encode("iso-8859-1")

        assert message.get_message_body(html=True) == "<p>déjà</p>"
        mock_stream.fetch_body.assert_called_once_with(11, None)

    def test_unknown_charset(self, message, mock_stream):
        """Test that an unknown charset falls back to utf-8."""
        mock_stream.fetch_structure.return_value = BodyPart.from_bodystructure(
            (b"text", b"plain", (b"charset", b"x-martian"), None, None, b"7bit", 5, 1)
        )
        mock_stream.fetch_body.side_effect = None
        mock_stream.fetch_body.return_value = b"hello"
        assert message.get_message_body() == "hello"

    def test_attachments(self, message):
        """Test that only attachment parts are listed."""
        attachments = message.get_attachments()
        assert len(attachments) == 1
        assert attachments[0].filename == "report.pdf"
        assert message.get_attachments() is attachments

    def test_delete(self, message, mock_stream):
        """Test flagging for deletion."""
        message.delete()
        mock_stream.set_flags.assert_called_once_with(11, ["\\Deleted"], True)

    def test_set_flag_resets_cache(self, message, mock_stream):
        """Test that changing a flag refetches flags."""
        assert message.flags == ["\\Seen"]
        message.set_flag("\\Seen", False)
        mock_stream.set_flags.assert_called_once_with(11, ["\\Seen"], False)
        mock_stream.fetch_flags.return_value = []
        assert message.flags == []

    def test_summary(self, message):
        """Test the text summary."""
        summary = message.summary()
        assert "UID: 11" in summary
        assert "From: Alice Example <alice@example.com>" in summary
        assert "Subject: Quarterly réport" in summary
        assert "Date: 2024-10-01 09:30:00" in summary
        assert "Attachments: 1" in summary


class TestAttachment:
    """Test attachment data and saving."""

    @pytest.fixture
    def attachment(self, message):
        return message.get_attachments()[0]

    def test_properties(self, attachment):
        """Test metadata taken from the structure."""
        assert isinstance(attachment, Attachment)
        assert attachment.part_id == "2"
        assert attachment.mime_type == "application/pdf"
        assert attachment.encoding == "base64"
        assert attachment.size == 16

    def test_get_data_cached(self, attachment, mock_stream):
        """Test that data is fetched once and decoded."""
        assert attachment.get_data() == PDF_BYTES
        assert attachment.get_data() == PDF_BYTES
        mock_stream.fetch_body.assert_called_once_with(11, "2")

    def test_filename_fallback_to_name(self, message):
        """Test the name parameter when there is no filename."""
        part = BodyPart(type="image", subtype="png", parameters={"name": "logo.png"})
        assert Attachment(message, part).filename == "logo.png"

    def test_no_filename(self, message):
        """Test an attachment without any name."""
        part = BodyPart(type="application", subtype="octet-stream", disposition="attachment")
        attachment = Attachment(message, part)
        assert attachment.filename is None

    def test_encoded_filename(self, message):
        """Test a MIME encoded filename."""
        part = BodyPart(
            type="application",
            subtype="pdf",
            disposition_parameters={"filename": "=?utf-8?q?r=C3=A9sum=C3=A9.pdf?="},
        )
        assert Attachment(message, part).filename == "résumé.pdf"

    def test_save_to_directory(self, attachment, tmp_path):
        """Test saving under the original filename."""
        assert attachment.save_to_directory(str(tmp_path)) is True
        assert (tmp_path / "report.pdf").read_bytes() == PDF_BYTES

    def test_save_to_missing_directory(self, attachment, tmp_path):
        """Test that a missing directory is refused."""
        assert attachment.save_to_directory(str(tmp_path / "nope")) is False

    def test_save_without_filename(self, message, tmp_path):
        """Test that an unnamed attachment cannot be saved to a directory."""
        part = BodyPart(type="application", subtype="octet-stream", disposition="attachment")
        assert Attachment(message, part).save_to_directory(str(tmp_path)) is False

    def test_save_as(self, attachment, tmp_path):
        """Test saving to an explicit path, overwriting an existing file."""
        target = tmp_path / "copy.bin"
        target.write_bytes(b"old")
        assert attachment.save_as(str(target)) is True
        assert target.read_bytes() == PDF_BYTES

    def test_save_as_missing_parent(self, attachment, tmp_path):
        """Test that a path in a missing directory is refused."""
        assert attachment.save_as(str(tmp_path / "missing" / "file.pdf")) is False

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores permissions")
    def test_save_as_read_only(self, attachment, tmp_path):
        """Test that a read-only file is refused."""
        target = tmp_path / "locked.pdf"
        target.write_bytes(b"")
        target.chmod(0o444)
        assert attachment.save_as(str(target)) is False

    @pytest.mark.parametrize("filename", ["..", ".", "docs/"])
    def test_save_to_directory_rejects_directory_names(self, message, tmp_path, filename):
        """Test that a filename naming a directory is refused."""
        target = tmp_path / "sub"
        target.mkdir()
        part = BodyPart(
            type="application",
            subtype="pdf",
            disposition="attachment",
            disposition_parameters={"filename": filename},
            part_id="2",
        )
        assert Attachment(message, part).save_to_directory(str(target)) is False
        assert list(target.iterdir()) == []

    def test_save_as_directory(self, attachment, tmp_path):
        """Test that an existing directory is not a valid target."""
        assert attachment.save_as(str(tmp_path)) is False

    def test_save_as_write_error(self, attachment, tmp_path, monkeypatch):
        """Test that an OS error while writing is reported as a failure."""
        def fail(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("imapbox.message.open", fail, raising=False)
        assert attachment.save_as(str(tmp_path / "report.pdf")) is False
