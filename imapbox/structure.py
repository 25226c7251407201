"""MIME body structure of a message and transfer decoding of its parts."""

import base64
import binascii
import email.utils
import logging
import quopri
import urllib.parse
from dataclasses import dataclass, field
from email.message import Message
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

# Legacy numeric primary type codes
MIME_TYPES = (
    "text",
    "multipart",
    "message",
    "application",
    "audio",
    "image",
    "video",
    "other",
)

PASSTHROUGH_ENCODINGS = ("7bit", "8bit", "binary")


def type_to_string(value: Union[int, str, bytes, None]) -> str:
    """Normalise a MIME primary type.

    Accepts the numeric type codes (0 text ... 7 other) as well as type
    names. Anything unrecognised becomes ``other``.
    """
    if isinstance(value, int):
        if 0 <= value < len(MIME_TYPES):
            return MIME_TYPES[value]
        return "other"
    name = _to_str(value).lower()
    return name if name in MIME_TYPES else "other"


def decode(data: Union[bytes, str, None], encoding: Optional[str]) -> bytes:
    """Undo the content transfer encoding of a body part.

    Args:
        data: Encoded body as fetched from the server
        encoding: Transfer encoding name, e.g. ``base64``

    Returns:
        Decoded bytes. Unknown encodings are returned unchanged.
    """
    if data is None:
        return b""
    if isinstance(data, str):
        data = data.encode("utf-8", errors="surrogateescape")

    encoding = (encoding or "7bit").lower()

    if encoding == "base64":
        compact = b"".join(data.split())
        compact += b"=" * (-len(compact) % 4)
        try:
            return base64.b64decode(compact)
        except (binascii.Error, ValueError) as e:
            logger.warning("Invalid base64 body part (%s), returning raw data", e)
            return data
    if encoding == "quoted-printable":
        return quopri.decodestring(data)
    if encoding not in PASSTHROUGH_ENCODINGS:
        logger.debug("Unknown transfer encoding %r, returning data unchanged", encoding)
    return data


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _pairs_to_dict(params: Optional[Sequence[Any]]) -> Dict[str, str]:
    """Turn a flat ``(key, value, key, value)`` parameter list into a dict.

    RFC 2231 encoded parameters (``filename*``) are decoded and stored under
    their plain name.
    """
    result: Dict[str, str] = {}
    if not params:
        return result
    items = list(params)
    for i in range(0, len(items) - 1, 2):
        key = _to_str(items[i]).lower()
        value = _to_str(items[i + 1])
        if key.endswith("*"):
            key = key.rstrip("*")
            charset, language, text = email.utils.decode_rfc2231(value)
            text = urllib.parse.unquote(text, encoding="latin-1")
            value = email.utils.collapse_rfc2231_value((charset, language, text))
        result[key] = value
    return result


@dataclass
class BodyPart:
    """One node of a message's MIME tree."""

    type: str
    subtype: str
    parameters: Dict[str, str] = field(default_factory=dict)
    disposition: Optional[str] = None
    disposition_parameters: Dict[str, str] = field(default_factory=dict)
    encoding: str = "7bit"
    size: int = 0
    part_id: Optional[str] = None
    content_id: Optional[str] = None
    parts: List["BodyPart"] = field(default_factory=list)

    @property
    def mime_type(self) -> str:
        return f"{self.type}/{self.subtype}"

    @property
    def is_multipart(self) -> bool:
        return self.type == "multipart"

    @property
    def charset(self) -> Optional[str]:
        return self.parameters.get("charset")

    @property
    def is_attachment(self) -> bool:
        """True for leaf parts that carry a file rather than message text."""
        if self.is_multipart:
            return False
        if self.disposition == "attachment":
            return True
        params = parameters_from_structure(self)
        return "filename" in params or "name" in params

    def walk(self) -> Iterator["BodyPart"]:
        """Yield leaf parts depth first."""
        if self.is_multipart:
            for part in self.parts:
                yield from part.walk()
        else:
            yield self

    def find(self, part_id: Optional[str]) -> Optional["BodyPart"]:
        if self.part_id == part_id and not self.is_multipart:
            return self
        for part in self.parts:
            found = part.find(part_id)
            if found is not None:
                return found
        return None

    @classmethod
    def from_bodystructure(cls, data: Sequence[Any], part_id: Optional[str] = None) -> "BodyPart":
        """Create the tree from an imapclient BODYSTRUCTURE response.

        Args:
            data: ``BodyData`` as returned by ``IMAPClient.fetch``
            part_id: Section id of this node, None for the message itself

        Returns:
            BodyPart tree with section ids assigned
        """
        if data and isinstance(data[0], list):
            # Multipart: ([parts], subtype, params, disposition, ...)
            children = [
                cls.from_bodystructure(child, _child_id(part_id, index))
                for index, child in enumerate(data[0], start=1)
            ]
            disposition, disposition_params = _parse_disposition(_at(data, 3))
            return cls(
                type="multipart",
                subtype=_to_str(_at(data, 1)).lower(),
                parameters=_pairs_to_dict(_at(data, 2)),
                disposition=disposition,
                disposition_parameters=disposition_params,
                part_id=part_id,
                parts=children,
            )

        body_type = type_to_string(_at(data, 0))
        subtype = _to_str(_at(data, 1)).lower()

        # Disposition follows type-specific extension fields
        if body_type == "text":
            disposition_index = 9
        elif body_type == "message" and subtype == "rfc822":
            disposition_index = 11
        else:
            disposition_index = 8
        disposition, disposition_params = _parse_disposition(_at(data, disposition_index))

        content_id = _at(data, 3)
        size = _at(data, 6)
        return cls(
            type=body_type,
            subtype=subtype,
            parameters=_pairs_to_dict(_at(data, 2)),
            disposition=disposition,
            disposition_parameters=disposition_params,
            encoding=_to_str(_at(data, 5)).lower() or "7bit",
            size=int(size) if size is not None else 0,
            part_id=part_id,
            content_id=_to_str(content_id).strip("<>") or None,
        )

    @classmethod
    def from_message(cls, message: Message, part_id: Optional[str] = None) -> "BodyPart":
        """Create the tree from a parsed ``email.message.Message``."""
        disposition = message.get_content_disposition()
        disposition_params: Dict[str, str] = {}
        filename = message.get_param("filename", header="content-disposition")
        if filename is not None:
            disposition_params["filename"] = email.utils.collapse_rfc2231_value(filename)

        parameters: Dict[str, str] = {}
        for key, value in message.get_params(failobj=[])[1:]:
            parameters[key.lower()] = email.utils.collapse_rfc2231_value(value)

        content_type = message.get_content_type()
        main_type, _, subtype = content_type.partition("/")

        if main_type == "multipart" and message.is_multipart():
            children = [
                cls.from_message(child, _child_id(part_id, index))
                for index, child in enumerate(message.get_payload(), start=1)
            ]
            return cls(
                type="multipart",
                subtype=subtype,
                parameters=parameters,
                disposition=disposition,
                disposition_parameters=disposition_params,
                part_id=part_id,
                parts=children,
            )

        payload = message.get_payload()
        if isinstance(payload, list):
            size = sum(len(inner.as_bytes()) for inner in payload)
        else:
            # 8bit payloads are held as surrogate-escaped text
            if isinstance(payload, str):
                payload = payload.encode("utf-8", errors="surrogateescape")
            size = len(payload) if isinstance(payload, bytes) else 0
        content_id = message.get("Content-ID")
        return cls(
            type=type_to_string(main_type),
            subtype=subtype,
            parameters=parameters,
            disposition=disposition,
            disposition_parameters=disposition_params,
            encoding=(message.get("Content-Transfer-Encoding") or "7bit").strip().lower(),
            size=size,
            part_id=part_id,
            content_id=content_id.strip().strip("<>") if content_id else None,
        )


def parameters_from_structure(part: BodyPart) -> Dict[str, str]:
    """Merge content-type and disposition parameters of a part.

    Disposition parameters take precedence.
    """
    parameters = dict(part.parameters)
    parameters.update(part.disposition_parameters)
    return parameters


def _child_id(parent: Optional[str], index: int) -> str:
    return str(index) if parent is None else f"{parent}.{index}"


def _at(data: Sequence[Any], index: int) -> Any:
    return data[index] if len(data) > index else None


def _parse_disposition(value: Any) -> Tuple[Optional[str], Dict[str, str]]:
    if not value or not isinstance(value, (list, tuple)):
        return None, {}
    name = _to_str(value[0]).lower() or None
    params = _pairs_to_dict(value[1]) if len(value) > 1 else {}
    return name, params
