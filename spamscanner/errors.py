"""Exception types raised (or reported) by the scanner."""


class ScannerError(Exception):
    """Base class for all scanner errors"""


class FeedUnavailableError(ScannerError):
    """A single threat feed provider could not be fetched or parsed.

    Returned from ``load()`` rather than raised; the remaining providers
    still contribute to the snapshot.
    """

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class NotLoadedError(ScannerError):
    """Scanning was attempted before ``load()`` completed"""


class ModelUnavailableError(ScannerError):
    """The configured classifier model could not be read"""


class ParseError(ScannerError):
    """Raw message input could not be interpreted"""


class AttachmentDecodeError(ScannerError):
    """A single attachment could not be decoded or analyzed"""

    def __init__(self, index: int, reason: str):
        super().__init__(f"Attachment #{index} could not be read: {reason}")
        self.index = index
        self.reason = reason


class InvalidUrlError(ScannerError, ValueError):
    """A link could not be normalized"""
