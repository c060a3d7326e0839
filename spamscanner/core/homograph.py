"""
IDN homograph detection.

A host is flagged when its Unicode display form folds (through a table of
look-alike characters) onto a well-known brand domain without being that
domain. Pure-ASCII hosts never match: typosquats such as ``paypa1.com``
are left to the threat feeds.
"""

import unicodedata
from dataclasses import dataclass
from typing import Mapping, Optional
import logging

from spamscanner.core.url_normalizer import get_host, registered_domain
from spamscanner.errors import InvalidUrlError

logger = logging.getLogger(__name__)

# Most impersonated brands, keyed by their real registered domain
BRAND_DOMAINS: Mapping[str, str] = {
    'paypal.com': 'PayPal',
    'apple.com': 'Apple',
    'icloud.com': 'Apple',
    'google.com': 'Google',
    'gmail.com': 'Google',
    'youtube.com': 'YouTube',
    'microsoft.com': 'Microsoft',
    'office.com': 'Microsoft',
    'outlook.com': 'Microsoft',
    'live.com': 'Microsoft',
    'amazon.com': 'Amazon',
    'facebook.com': 'Facebook',
    'instagram.com': 'Instagram',
    'whatsapp.com': 'WhatsApp',
    'netflix.com': 'Netflix',
    'linkedin.com': 'LinkedIn',
    'twitter.com': 'Twitter',
    'github.com': 'GitHub',
    'dropbox.com': 'Dropbox',
    'docusign.com': 'DocuSign',
    'adobe.com': 'Adobe',
    'ebay.com': 'eBay',
    'chase.com': 'Chase',
    'wellsfargo.com': 'Wells Fargo',
    'bankofamerica.com': 'Bank of America',
    'citibank.com': 'Citibank',
    'americanexpress.com': 'American Express',
    'dhl.com': 'DHL',
    'fedex.com': 'FedEx',
    'ups.com': 'UPS',
    'usps.com': 'USPS',
    'irs.gov': 'IRS',
    'coinbase.com': 'Coinbase',
    'binance.com': 'Binance',
    'blockchain.com': 'Blockchain.com',
    'steampowered.com': 'Steam',
    'epicgames.com': 'Epic Games',
    'spotify.com': 'Spotify',
    'yahoo.com': 'Yahoo',
}

# Look-alike glyphs folded onto the ASCII letter they imitate
CONFUSABLES: Mapping[str, str] = {
    # Cyrillic
    'а': 'a', 'в': 'b', 'е': 'e', 'ё': 'e', 'һ': 'h', 'і': 'i', 'ї': 'i',
    'ј': 'j', 'к': 'k', 'ӏ': 'l', 'м': 'm', 'н': 'h', 'о': 'o', 'р': 'p',
    'с': 'c', 'т': 't', 'у': 'y', 'х': 'x', 'ѕ': 's', 'ԁ': 'd', 'ԛ': 'q',
    'ԝ': 'w', 'ү': 'y', 'ɡ': 'g', 'ь': 'b', 'п': 'n', 'г': 'r',
    # Greek
    'α': 'a', 'β': 'b', 'ε': 'e', 'η': 'n', 'ι': 'i', 'κ': 'k', 'ν': 'v',
    'ο': 'o', 'ρ': 'p', 'τ': 't', 'υ': 'u', 'χ': 'x', 'ω': 'w', 'γ': 'y',
    # Armenian
    'օ': 'o', 'ս': 'u', 'ց': 'g', 'հ': 'h', 'ո': 'n', 'զ': 'q',
    # Latin extended / IPA
    'ı': 'i', 'ȷ': 'j', 'ł': 'l', 'ƅ': 'b', 'ɑ': 'a', 'ɩ': 'i', 'ɪ': 'i',
    'ʀ': 'r', 'ꜱ': 's', 'ᴄ': 'c', 'ᴅ': 'd', 'ᴇ': 'e', 'ᴋ': 'k', 'ᴍ': 'm',
    'ᴏ': 'o', 'ᴘ': 'p', 'ᴛ': 't', 'ᴜ': 'u', 'ᴠ': 'v', 'ᴡ': 'w', 'ᴢ': 'z',
    'ø': 'o', 'đ': 'd', 'ħ': 'h',
}

HOMOGRAPH_PROVIDER = 'Homograph Detection'


@dataclass(frozen=True)
class HomographHit:
    host: str
    brand: str
    brand_domain: str


def _strip_marks(value: str) -> str:
    """Remove combining accents: ``páypal`` and ``paypal`` share a skeleton"""
    decomposed = unicodedata.normalize('NFKD', value)
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch))


def skeleton(value: str) -> str:
    """Fold a Unicode string onto the ASCII letters it visually resembles"""
    value = unicodedata.normalize('NFKC', value).lower()
    folded = ''.join(CONFUSABLES.get(ch, ch) for ch in value)
    return _strip_marks(folded)


def _script(ch: str) -> Optional[str]:
    if not ch.isalpha():
        return None
    try:
        return unicodedata.name(ch).split(' ')[0]
    except ValueError:
        return None


def is_mixed_script(label: str) -> bool:
    scripts = {_script(ch) for ch in label} - {None}
    return len(scripts) > 1


class HomographDetector:
    def __init__(self, brands: Optional[Mapping[str, str]] = None):
        self.brands = dict(brands if brands is not None else BRAND_DOMAINS)
        # Brand label ("paypal") -> brand domain, for mixed-script checks
        self.brand_labels = {domain.split('.')[0]: domain for domain in self.brands}

    def check(self, url: str) -> Optional[HomographHit]:
        """
        Check a link's host for brand impersonation

        Args:
            url: Raw or normalized link

        Returns:
            HomographHit when the host imitates a brand, else None
        """
        try:
            host = get_host(url)
        except InvalidUrlError:
            return None
        return self.check_host(host)

    def check_host(self, host: str) -> Optional[HomographHit]:
        if host.isascii():
            return None

        domain = registered_domain(host)
        folded = skeleton(domain)

        brand_domain = None
        if folded in self.brands and domain != folded:
            brand_domain = folded
        else:
            # Mixed-script label imitating a brand under any suffix
            label = domain.split('.')[0]
            if is_mixed_script(label):
                brand_domain = self.brand_labels.get(skeleton(label))

        if brand_domain is None:
            return None

        logger.debug(f"Homograph {host!r} imitates {brand_domain}")
        return HomographHit(host=host, brand=self.brands[brand_domain], brand_domain=brand_domain)
