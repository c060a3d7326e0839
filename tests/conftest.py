import io
import zipfile
from pathlib import Path

import pytest

from spamscanner.config import Settings
from spamscanner.core.classifier import train_classifier
from spamscanner.core.threat_feeds import StaticFeed
from spamscanner.services.scanner import SpamScanner

FIXTURES = Path(__file__).resolve().parent / 'fixtures'

ISSUES_URL = 'https://github.com/spamscanner/spamscanner/issues'

# Assembled at runtime so this file is not itself an EICAR sample
EICAR = ('X5O!P%@AP[4\\PZX54(P^)7CC)7}$' + 'EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*').encode('ascii')

PHISHTANK_URLS = [
    'http://phish.example.net/login.php',
    'https://secure-update.example.info/account/verify?id=1',
]

HAM_DOCUMENTS = [
    "Project meeting moved to Thursday afternoon in conference room B",
    "Please review the quarterly report before the design review",
    "Team notes from the project meeting are in the shared folder",
    "Thanks for the design notes, see you at the conference on Thursday",
    "Reminder: quarterly planning meeting with the team this afternoon",
    "Can you review my notes for the project report",
]

SPAM_DOCUMENTS = [
    "Congratulations winner, claim your free prize now",
    "Cheap viagra, buy now, limited offer",
    "Casino bonus with free spins, act now",
    "You are a winner! Claim your cash prize today, free",
    "Buy cheap pills now, limited time offer, act now",
    "Free casino spins and bonus cash for every winner",
]


def fixture_path(name: str) -> Path:
    return FIXTURES / name


def make_settings(**overrides) -> Settings:
    values = dict(
        ISSUES_URL=ISSUES_URL,
        CLOUDFLARE_FEED_URL=None,
        LOCAL_BLOCKLIST_PATH=None,
        SIGNATURE_DB_PATH=None,
        ARBITRARY_RULES={},
        SAME_ORG_SUPPRESSION=False,
    )
    values.update(overrides)
    return Settings(**values)


def make_corrupt_lzma_zip(name='setup.exe') -> bytes:
    """LZMA-compressed zip whose member stream is garbage after the properties"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_LZMA) as archive:
        archive.writestr(name, b'MZ' + bytes(range(256)) * 16)
    content = bytearray(buffer.getvalue())
    # Local header (30 bytes + name), then LZMA version/size (4) and properties (5)
    start = 30 + len(name) + 4 + 5
    content[start:start + 16] = b'\xff' * 16
    return bytes(content)


def make_providers():
    return [
        StaticFeed('PhishTank', 'phishing', PHISHTANK_URLS),
        StaticFeed('Cloudflare', 'family', ['xvideos.com']),
    ]


@pytest.fixture(scope='session')
def model():
    return train_classifier(
        HAM_DOCUMENTS + SPAM_DOCUMENTS,
        ['ham'] * len(HAM_DOCUMENTS) + ['spam'] * len(SPAM_DOCUMENTS)
    )


@pytest.fixture(scope='session')
def scanner(model):
    scanner = SpamScanner(settings=make_settings(), providers=make_providers(), model=model)
    errors = scanner.load()
    assert errors == []
    return scanner


@pytest.fixture
def unloaded_scanner(model):
    return SpamScanner(settings=make_settings(), providers=make_providers(), model=model)
