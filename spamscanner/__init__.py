"""Spam, phishing and malware scanning for email messages."""

from spamscanner.core.message_parser import parse_message
from spamscanner.core.url_normalizer import normalize_url
from spamscanner.errors import (
    AttachmentDecodeError, FeedUnavailableError, InvalidUrlError, ModelUnavailableError,
    NotLoadedError, ParseError, ScannerError
)
from spamscanner.schemas import Attachment, Classification, Message, PhishingResults, ScanResult
from spamscanner.services.scanner import SpamScanner

__all__ = [
    'SpamScanner', 'parse_message', 'normalize_url',
    'Attachment', 'Classification', 'Message', 'PhishingResults', 'ScanResult',
    'ScannerError', 'FeedUnavailableError', 'NotLoadedError', 'ModelUnavailableError',
    'ParseError', 'AttachmentDecodeError', 'InvalidUrlError',
]
