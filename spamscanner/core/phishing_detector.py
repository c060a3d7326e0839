from typing import List, Optional
import logging

from spamscanner.core.homograph import HomographDetector, HOMOGRAPH_PROVIDER
from spamscanner.core.link_extractor import LinkExtractor
from spamscanner.core.threat_feeds import FeedSnapshot, ThreatFeedEntry
from spamscanner.core.url_normalizer import get_host
from spamscanner.errors import InvalidUrlError
from spamscanner.schemas import Link, PhishingResults

logger = logging.getLogger(__name__)

# Default wording per feed category
CATEGORY_PHRASES = {
    'phishing': 'be phishing-related',
    'malware': 'contain malware',
    'adult': 'contain adult content',
    'family': 'contain malware, phishing, and/or adult content',
}


class OrganizationRule:
    """Decides whether a link belongs to the sender's own organization"""

    def same_organization(self, link_host: str, sender_domain: str) -> bool:
        raise NotImplementedError


class ExactDomainRule(OrganizationRule):
    """Same organization only when the link host is exactly the sender domain"""

    def same_organization(self, link_host: str, sender_domain: str) -> bool:
        return bool(sender_domain) and link_host == sender_domain.strip().lower()


class PhishingDetector:
    def __init__(self,
                 issues_url: str,
                 homograph_detector: Optional[HomographDetector] = None,
                 organization_rule: Optional[OrganizationRule] = None,
                 link_extractor: Optional[LinkExtractor] = None):
        """
        Args:
            issues_url: Where whitelist requests are filed
            homograph_detector: Brand impersonation check run on every link
            organization_rule: Optional same-organization suppression
            link_extractor: Link source for html/text content
        """
        self.issues_url = issues_url
        self.homograph_detector = homograph_detector or HomographDetector()
        self.organization_rule = organization_rule
        self.link_extractor = link_extractor or LinkExtractor()

    def detect(self,
               snapshot: FeedSnapshot,
               html: Optional[str] = None,
               text: Optional[str] = None,
               sender_domain: Optional[str] = None) -> PhishingResults:
        """
        Check every link in the content against the feeds and for homographs

        Returns:
            PhishingResults with per-link messages (plus the whitelist
            notice when anything was found) and all normalized links
        """
        links = self.link_extractor.extract(html=html, text=text)

        messages: List[str] = []
        for link in links:
            try:
                messages.extend(self._check_link(snapshot, link, sender_domain))
            except (InvalidUrlError, ValueError, UnicodeError) as e:
                # One bad link must not hide findings on the others
                logger.warning(f"⚠️ Could not check link {link.original!r}: {e}")

        if messages:
            messages.append(f"Phishing whitelist requests can be filed at {self.issues_url}.")

        return PhishingResults(messages=messages, links=[link.normalized for link in links])

    def _check_link(self, snapshot: FeedSnapshot, link: Link, sender_domain: Optional[str]) -> List[str]:
        host = get_host(link.normalized)

        if (self.organization_rule is not None and sender_domain
                and self.organization_rule.same_organization(host, sender_domain)):
            logger.debug(f"Link {link.original!r} belongs to sender organization {sender_domain}")
            return []

        messages = []
        for entry in self._ordered(snapshot, snapshot.query(link.normalized)):
            phrase = snapshot.phrases.get(entry.provider) or self._category_phrase(entry.category)
            messages.append(f'Link of "{link.original}" was detected by {entry.provider} to {phrase}.')

        hit = self.homograph_detector.check_host(host)
        if hit:
            messages.append(
                f'Link of "{link.original}" was detected by {HOMOGRAPH_PROVIDER} to impersonate {hit.brand}.'
            )

        return messages

    def _ordered(self, snapshot: FeedSnapshot, entries) -> List[ThreatFeedEntry]:
        order = {name: index for index, name in enumerate(snapshot.providers)}
        # A provider listing both the URL and its domain is reported once
        unique = {(entry.provider, entry.category): entry for entry in entries}
        return sorted(unique.values(), key=lambda e: (order.get(e.provider, len(order)), e.provider, e.category))

    def _category_phrase(self, category: str) -> str:
        return CATEGORY_PHRASES.get(category, f'be flagged as {category}')
