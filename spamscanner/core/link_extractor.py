import re
from typing import List, Optional, Iterator, Tuple
from bs4 import BeautifulSoup
import logging

from spamscanner.core.url_normalizer import normalize_url, get_host, has_public_suffix
from spamscanner.errors import InvalidUrlError
from spamscanner.schemas import Link

logger = logging.getLogger(__name__)


class LinkExtractor:
    """
    Pulls candidate links out of message content.

    Sources, in order:
    - ``href`` attributes in the html part
    - URL-shaped tokens in the html part's visible text
    - URL-shaped tokens in the text part

    Links are deduplicated by normalized key, keeping the first-seen
    original string for display.
    """

    # Schemes that never point at a web resource
    ignored_schemes = ('mailto:', 'tel:', 'sms:', 'javascript:', 'data:', 'cid:', 'about:', 'file:')

    def __init__(self):
        # Explicit scheme or www. prefix
        self.url_pattern = re.compile(
            r'(?:(?:https?|ftps?)://|www\.)'
            r'[a-zA-Z0-9\-._~:/?#\[\]@!$&\'()*+,;=%\u00a1-\uffff]+',
            re.IGNORECASE
        )

        # Bare domains (optionally followed by a path), not part of an email address
        self.bare_domain_pattern = re.compile(
            r'(?<![@\w.\-/])'
            r'(?:[a-zA-Z0-9\u00a1-\uffff](?:[a-zA-Z0-9\-\u00a1-\uffff]{0,61}[a-zA-Z0-9\u00a1-\uffff])?\.)+'
            r'(?:[a-zA-Z\u00a1-\uffff]{2,63}|xn--[a-zA-Z0-9\-]{2,59})'
            r'(?::\d{1,5})?'
            r'(?:/[a-zA-Z0-9\-._~:/?#\[\]@!$&\'()*+,;=%]*)?'
            r'(?![@\w\-])'
        )

        self.trailing_punctuation = re.compile(r'[.,;:!?)\]}>\'"]+$')

    def extract(self, html: Optional[str] = None, text: Optional[str] = None) -> List[Link]:
        """
        Extract unique links from html and/or text content

        Args:
            html: HTML body (optional)
            text: Plain text body (optional)

        Returns:
            List of Link objects in first-seen order
        """
        links: List[Link] = []
        seen = set()

        for original, source in self._candidates(html, text):
            try:
                normalized = normalize_url(original)
            except InvalidUrlError as e:
                logger.debug(f"Skipping link {original!r}: {e}")
                continue

            if normalized in seen:
                continue
            seen.add(normalized)
            links.append(Link(original=original, normalized=normalized, source=source))

        return links

    def _candidates(self, html: Optional[str], text: Optional[str]) -> Iterator[Tuple[str, str]]:
        if html:
            soup = BeautifulSoup(html, 'lxml')

            for tag in soup.find_all(href=True):
                href = self._clean(str(tag.get('href')))
                if href and self._is_web_reference(href):
                    yield href, 'html'

            for url in self._find_urls(soup.get_text(separator=' ')):
                yield url, 'html'

        if text:
            for url in self._find_urls(text):
                yield url, 'text'

    def _find_urls(self, content: str) -> Iterator[str]:
        matches = []
        for match in self.url_pattern.finditer(content):
            matches.append((match.start(), match.end()))
        for match in self.bare_domain_pattern.finditer(content):
            # Skip domains already covered by an explicit URL match
            if any(start <= match.start() < end for start, end in matches):
                continue
            if not self._looks_like_domain(match.group(0)):
                continue
            matches.append((match.start(), match.end()))

        for start, end in sorted(matches):
            url = self._clean(content[start:end])
            if url:
                yield url

    def _clean(self, url: str) -> str:
        # Remove trailing punctuation picked up from surrounding prose
        return self.trailing_punctuation.sub('', url.strip())

    def _is_web_reference(self, href: str) -> bool:
        lowered = href.lower()
        if lowered.startswith('#') or lowered.startswith(self.ignored_schemes):
            return False
        # Relative paths have no host to check
        if lowered.startswith(('/', './', '../', '?')) and not lowered.startswith('//'):
            return False
        if '://' not in lowered and not lowered.startswith('//'):
            return self._looks_like_domain(href)
        return True

    def _looks_like_domain(self, candidate: str) -> bool:
        try:
            host = get_host(self._clean(candidate))
        except InvalidUrlError:
            return False
        return has_public_suffix(host)


def extract_links(html: Optional[str] = None, text: Optional[str] = None) -> List[Link]:
    return _default_extractor.extract(html=html, text=text)


_default_extractor = LinkExtractor()
