"""Header and address helpers shared by messages and tools."""

import email.utils
import logging
import re
from dataclasses import dataclass
from email.header import decode_header
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)


def decode_mime_header(header_value: Optional[str]) -> str:
    """Decode a MIME header value.

    Args:
        header_value: MIME header value

    Returns:
        Decoded header value
    """
    if not header_value:
        return ""

    decoded_parts = []
    for part, encoding in decode_header(str(header_value)):
        if isinstance(part, bytes):
            if encoding:
                try:
                    decoded_parts.append(part.decode(encoding))
                except (LookupError, UnicodeDecodeError):
                    # If the encoding is not recognized, try with utf-8
                    decoded_parts.append(part.decode("utf-8", errors="replace"))
            else:
                decoded_parts.append(part.decode("utf-8", errors="replace"))
        else:
            decoded_parts.append(part)

    return "".join(decoded_parts)


@dataclass
class EmailAddress:
    """Email address representation."""

    name: str
    address: str

    @classmethod
    def parse(cls, address_str: str) -> "EmailAddress":
        """Parse email address string.

        Args:
            address_str: Email address string (e.g., "John Doe <john@example.com>")

        Returns:
            EmailAddress object

        Raises:
            ValueError: If the email address format is invalid.
        """
        name = ""
        address = address_str.strip()

        # Extract name and address with angle brackets
        match = re.match(r'"?([^"<]*)"?\s*<([^>]*)>', address_str.strip())
        if match:
            name = match.group(1).strip()
            address = match.group(2).strip()

        if '@' in address:
            try:
                result = validate_email(address, check_deliverability=False)
                address = result.normalized
            except EmailNotValidError as e:
                raise ValueError(f"Invalid email address '{address}': {e}") from e
        elif address:
            raise ValueError(f"Invalid email address: '{address}' (missing @)")

        return cls(name=name, address=address)

    def __str__(self) -> str:
        """Return string representation."""
        if self.name:
            return f"{self.name} <{self.address}>"
        return self.address


def parse_address_list(header_value: Optional[str]) -> List[EmailAddress]:
    """Parse an address header (To, Cc, ...) into EmailAddress objects.

    Addresses that fail validation are kept verbatim; mail already
    delivered to the mailbox is not rejected for a malformed header.
    """
    addresses: List[EmailAddress] = []
    if not header_value:
        return addresses
    # Split before decoding; encoded display names may contain commas
    for name, addr in email.utils.getaddresses([str(header_value)]):
        if not addr:
            continue
        name = decode_mime_header(name)
        try:
            parsed = EmailAddress.parse(addr)
            parsed.name = name
        except ValueError:
            logger.debug("Keeping unvalidated address %r", addr)
            parsed = EmailAddress(name=name, address=addr)
        addresses.append(parsed)
    return addresses
