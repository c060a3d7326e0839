from pydantic import BaseModel
from typing import Optional, List, Literal, Tuple
import re

_SENDER_DOMAIN_RE = re.compile(r'@([^\s<>@"]+)')


def extract_domain(address: str) -> str:
    """Domain of an email address, also in "Name <email@domain.com>" form; '' if none"""
    match = _SENDER_DOMAIN_RE.search(address or '')
    return match.group(1).lower().rstrip('.>') if match else ''


# ==========================================
# 📥 INPUT MODELS
# ==========================================

class Attachment(BaseModel):
    """Attachment bytes plus the (untrusted) declared metadata"""
    content: bytes = b''
    filename: Optional[str] = None
    content_type: Optional[str] = None


class Message(BaseModel):
    """
    Parsed email message.
    Headers keep their original order; either body may be missing.
    """
    headers: List[Tuple[str, str]] = []
    text: Optional[str] = None
    html: Optional[str] = None
    attachments: List[Attachment] = []

    # Problems found while parsing that did not prevent scanning
    defects: List[str] = []

    def get_header(self, name: str, default: str = '') -> str:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return default

    @property
    def subject(self) -> str:
        return self.get_header('subject')

    @property
    def sender(self) -> str:
        return self.get_header('from')

    @property
    def sender_domain(self) -> str:
        return extract_domain(self.sender)


# ==========================================
# 🧱 SHARED MODELS
# ==========================================

class Link(BaseModel):
    original: str
    normalized: str
    source: Literal['text', 'html']


class Classification(BaseModel):
    category: Literal['spam', 'ham']
    score: float


# ==========================================
# 📤 RESPONSE MODELS
# ==========================================

class PhishingResults(BaseModel):
    messages: List[str] = []
    links: List[str] = []


class ScanResult(BaseModel):
    is_spam: bool
    classification: Classification
    phishing: List[str] = []
    executables: List[str] = []
    viruses: List[str] = []
    arbitrary: List[str] = []

    # Every unique normalized link considered by the phishing detector
    links: List[str] = []
    warnings: List[str] = []
