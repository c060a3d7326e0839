import os
from email import errors as email_errors
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union
import logging

from spamscanner.errors import AttachmentDecodeError, ParseError
from spamscanner.schemas import Attachment, Message

logger = logging.getLogger(__name__)

RawMessage = Union[bytes, bytearray, str, os.PathLike]


def _read_raw(raw: RawMessage) -> bytes:
    if isinstance(raw, os.PathLike) or (
            isinstance(raw, str) and '\n' not in raw and os.path.isfile(raw)):
        try:
            return Path(raw).read_bytes()
        except OSError as e:
            raise ParseError(f"Could not read message file {raw}: {e}") from e
    if isinstance(raw, str):
        return raw.encode('utf-8', errors='surrogateescape')
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    raise ParseError(f"Unsupported message input type: {type(raw).__name__}")


def parse_message(raw: RawMessage) -> Message:
    """
    Parse a raw RFC 5322 message into a Message

    Args:
        raw: Message bytes, message text, or a path to an .eml file

    Returns:
        Message with headers in order, the first text/plain and text/html
        bodies, and every attachment's decoded bytes

    Raises:
        ParseError: empty or unreadable input
    """
    data = _read_raw(raw)
    if not data.strip():
        raise ParseError("Empty message")

    try:
        msg = BytesParser(policy=policy.default).parsebytes(data)
    except (email_errors.MessageError, ValueError, TypeError) as e:
        raise ParseError(f"Failed to parse message: {e}") from e

    if not msg.keys():
        raise ParseError("Message has no header fields")

    defects: List[str] = [type(defect).__name__ for defect in msg.defects]
    text, html = _get_bodies(msg)
    attachments = _get_attachments(msg, defects)

    return Message(
        headers=_get_headers(msg),
        text=text,
        html=html,
        attachments=attachments,
        defects=defects
    )


def _get_headers(msg: EmailMessage) -> List[Tuple[str, str]]:
    headers = []
    for name, value in msg.raw_items():
        try:
            headers.append((name, str(msg.policy.header_fetch_parse(name, value))))
        except (ValueError, IndexError, email_errors.HeaderParseError):
            # Keep the folded raw value when structured parsing fails
            headers.append((name, ' '.join(str(value).split())))
    return headers


def _is_attachment(part: EmailMessage) -> bool:
    return part.get_content_disposition() == 'attachment' or (
        bool(part.get_filename()) and not part.is_multipart()
    )


def _part_text(part: EmailMessage) -> Optional[str]:
    try:
        return part.get_content()
    except (LookupError, UnicodeError, ValueError) as e:
        # Unknown charset: decode the transfer encoding only
        logger.debug(f"Falling back to lossy decode of {part.get_content_type()} part: {e}")
        payload = part.get_payload(decode=True)
        if payload is None:
            return None
        return payload.decode('utf-8', errors='replace')


def _walk(part: EmailMessage) -> Iterator[EmailMessage]:
    """Like ``walk`` but never descends into attachments (attached messages)"""
    yield part
    if part.is_multipart() and not _is_attachment(part):
        for child in part.iter_parts():
            yield from _walk(child)


def _get_bodies(msg: EmailMessage) -> Tuple[Optional[str], Optional[str]]:
    text = html = None
    for part in _walk(msg):
        if part.is_multipart() or _is_attachment(part):
            continue
        content_type = part.get_content_type()
        if content_type == 'text/plain' and text is None:
            text = _part_text(part)
        elif content_type == 'text/html' and html is None:
            html = _part_text(part)
    return text, html


def _get_attachments(msg: EmailMessage, defects: List[str]) -> List[Attachment]:
    attachments = []
    index = 0
    for part in _walk(msg):
        if not _is_attachment(part):
            continue
        index += 1

        try:
            content = _attachment_bytes(part, index)
        except AttachmentDecodeError as e:
            logger.warning(f"⚠️ {e}")
            defects.append(str(e))
            # Placeholder keeps later attachment numbers stable
            content = b''

        attachments.append(Attachment(
            content=content,
            filename=part.get_filename(),
            content_type=part.get_content_type()
        ))
    return attachments


def _attachment_bytes(part: EmailMessage, index: int) -> bytes:
    if part.get_content_maintype() == 'message':
        # Attached message: keep it as an .eml byte stream
        return part.get_payload(0).as_bytes()

    payload = part.get_payload(decode=True)
    if payload is None:
        raise AttachmentDecodeError(index, 'no decodable payload')

    # Registered while decoding; the payload is then still base64 text
    if any(isinstance(d, email_errors.InvalidBase64LengthDefect) for d in part.defects):
        raise AttachmentDecodeError(index, 'invalid base64 length')
    return payload
