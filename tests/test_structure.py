"""Tests for body structures and transfer decoding."""

import base64
import email
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from imapbox.structure import BodyPart, decode, parameters_from_structure, type_to_string
from tests.conftest import MULTIPART_BODYSTRUCTURE


class TestDecode:
    """Test the transfer-encoding dispatch."""

    def test_base64(self):
        """Test base64 with line breaks."""
        encoded = base64.encodebytes(b"hello attachment" * 10)
        assert decode(encoded, "base64") == b"hello attachment" * 10

    def test_base64_missing_padding(self):
        """Test that missing padding is tolerated."""
        assert decode(b"aGVsbG8", "BASE64") == b"hello"

    def test_quoted_printable(self):
        """Test quoted-printable with a soft line break."""
        assert decode(b"caf=C3=A9 au=\r\n lait", "quoted-printable") == "café au lait".encode()

    @pytest.mark.parametrize("encoding", ["7bit", "8bit", "binary", None, "x-unknown"])
    def test_passthrough(self, encoding):
        """Test encodings that leave data unchanged."""
        assert decode(b"plain =3D text", encoding) == b"plain =3D text"

    def test_str_input(self):
        """Test that str input is accepted."""
        assert decode("aGVsbG8=", "base64") == b"hello"

    def test_none(self):
        """Test that a missing body decodes to empty bytes."""
        assert decode(None, "base64") == b""


class TestTypeToString:
    """Test primary type normalisation."""

    def test_numeric_codes(self):
        """Test the legacy numeric codes."""
        assert type_to_string(0) == "text"
        assert type_to_string(3) == "application"
        assert type_to_string(7) == "other"
        assert type_to_string(42) == "other"

    def test_names(self):
        """Test string and bytes names."""
        assert type_to_string("IMAGE") == "image"
        assert type_to_string(b"audio") == "audio"
        assert type_to_string("x-custom") == "other"


class TestFromBodystructure:
    """Test building trees from imapclient responses."""

    def test_multipart(self):
        """Test section ids, encodings and dispositions."""
        root = BodyPart.from_bodystructure(MULTIPART_BODYSTRUCTURE)

        assert root.is_multipart
        assert root.subtype == "mixed"
        assert root.parameters == {"boundary": "XYZ"}

        text, pdf = list(root.walk())
        assert text.part_id == "1"
        assert text.mime_type == "text/plain"
        assert text.charset == "utf-8"
        assert text.encoding == "quoted-printable"
        assert not text.is_attachment

        assert pdf.part_id == "2"
        assert pdf.mime_type == "application/pdf"
        assert pdf.encoding == "base64"
        assert pdf.disposition == "attachment"
        assert pdf.size == 16
        assert pdf.is_attachment
        assert root.find("2") is pdf

    def test_single_part(self):
        """Test that a non-multipart message has no section id."""
        root = BodyPart.from_bodystructure(
            (b"text", b"html", (b"charset", b"iso-8859-1"), None, None, b"7bit", 120, 4)
        )
        assert root.part_id is None
        assert root.mime_type == "text/html"
        assert root.charset == "iso-8859-1"
        assert list(root.walk()) == [root]
        assert root.find(None) is root

    def test_nested_ids(self):
        """Test section ids of nested multiparts."""
        alternative = (
            [
                (b"text", b"plain", None, None, None, b"7bit", 5, 1),
                (b"text", b"html", None, None, None, b"7bit", 9, 1),
            ],
            b"alternative",
        )
        image = (b"image", b"png", (b"name", b"logo.png"), b"<logo@x>", None, b"base64", 40)
        root = BodyPart.from_bodystructure(([alternative, image], b"related"))

        ids = [part.part_id for part in root.walk()]
        assert ids == ["1.1", "1.2", "2"]
        assert root.find("2").content_id == "logo@x"
        assert root.find("2").is_attachment

    def test_rfc2231_filename(self):
        """Test that encoded filename parameters are decoded."""
        part = BodyPart.from_bodystructure(
            (
                b"application", b"octet-stream", None, None, None, b"base64", 10, None,
                (b"attachment", (b"filename*", b"utf-8''r%C3%A9sum%C3%A9.txt")),
            )
        )
        assert parameters_from_structure(part)["filename"] == "résumé.txt"


class TestFromMessage:
    """Test building trees from parsed messages."""

    def test_multipart_message(self):
        """Test that parsed messages get the same section ids."""
        message = MIMEMultipart()
        message.attach(MIMEText("Hello", "plain", "utf-8"))
        pdf = MIMEApplication(b"%PDF-1.4", "pdf")
        pdf.add_header("Content-Disposition", "attachment", filename="report.pdf")
        message.attach(pdf)

        parsed = email.message_from_bytes(message.as_bytes())
        root = BodyPart.from_message(parsed)

        text, attachment = list(root.walk())
        assert text.part_id == "1"
        assert text.encoding == "base64"
        assert text.charset == "utf-8"
        assert attachment.part_id == "2"
        assert attachment.mime_type == "application/pdf"
        assert attachment.disposition == "attachment"
        assert parameters_from_structure(attachment)["filename"] == "report.pdf"

    def test_single_part_message(self):
        """Test a plain single part message."""
        parsed = email.message_from_string("Subject: hi\n\nbody text\n")
        root = BodyPart.from_message(parsed)
        assert root.part_id is None
        assert root.mime_type == "text/plain"
        assert root.encoding == "7bit"

    def test_8bit_size_counts_bytes(self):
        """Test that non-ASCII 8bit payloads are measured in bytes."""
        raw = (
            b"Content-Type: text/plain; charset=utf-8\r\n"
            b"Content-Transfer-Encoding: 8bit\r\n"
            b"\r\n"
            + "café".encode("utf-8")
        )
        root = BodyPart.from_message(email.message_from_bytes(raw))
        assert root.encoding == "8bit"
        assert root.size == 5
