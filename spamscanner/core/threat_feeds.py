import json
import threading
import time
import requests
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple
import logging

from spamscanner.core.url_normalizer import normalize_url, normalize_host, domain_candidates, get_host
from spamscanner.errors import FeedUnavailableError, InvalidUrlError

logger = logging.getLogger(__name__)

USER_AGENT = 'SpamScanner/1.0'


@dataclass(frozen=True)
class ThreatFeedEntry:
    key: str
    provider: str
    category: str


# ===== Providers =====

class FeedProvider:
    """
    A source of known-bad URLs or domains.

    Subclasses implement ``fetch`` and return raw items (URLs or bare
    domains); the store normalizes them.
    """

    def __init__(self, name: str, category: str, phrase: Optional[str] = None):
        self.name = name
        self.category = category
        # Overrides the category's default wording in phishing messages
        self.phrase = phrase

    def fetch(self, session: requests.Session, timeout: float) -> Iterable[str]:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r}, category={self.category!r})"


class PhishTankFeed(FeedProvider):
    """PhishTank bulk download (``online-valid.json``)"""

    def __init__(self, url: str = 'https://data.phishtank.com/data/online-valid.json',
                 app_key: Optional[str] = None, name: str = 'PhishTank'):
        super().__init__(name, 'phishing')
        if app_key:
            url = url.replace('/data/online-valid', f'/data/{app_key}/online-valid')
        self.url = url

    def fetch(self, session: requests.Session, timeout: float) -> Iterable[str]:
        response = session.get(self.url, timeout=timeout)
        if response.status_code == 429:
            raise FeedUnavailableError(self.name, 'rate limit exceeded')
        if response.status_code != 200:
            raise FeedUnavailableError(self.name, f'status code {response.status_code}')

        try:
            rows = response.json()
        except ValueError as e:
            raise FeedUnavailableError(self.name, f'invalid JSON: {e}') from e

        if not isinstance(rows, list):
            raise FeedUnavailableError(self.name, 'expected a JSON array')
        return [row['url'] for row in rows if isinstance(row, dict) and row.get('url')]


class PlainListFeed(FeedProvider):
    """
    Plain text list over HTTP: one URL or domain per line, ``#`` comments,
    hosts-file lines (``0.0.0.0 example.com``) accepted.
    """

    def __init__(self, name: str, url: str, category: str, phrase: Optional[str] = None):
        super().__init__(name, category, phrase)
        self.url = url

    def fetch(self, session: requests.Session, timeout: float) -> Iterable[str]:
        response = session.get(self.url, timeout=timeout)
        if response.status_code != 200:
            raise FeedUnavailableError(self.name, f'status code {response.status_code}')
        return parse_plain_list(response.text)


class LocalListFeed(FeedProvider):
    """Operator blocklist on disk (``{"bad_domains": [...], "bad_urls": [...]}``)"""

    def __init__(self, path: str, name: str = 'Local Blacklist', category: str = 'phishing'):
        super().__init__(name, category)
        self.path = Path(path)

    def fetch(self, session: requests.Session, timeout: float) -> Iterable[str]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise FeedUnavailableError(self.name, f'JSON decode error in {self.path}: {e}') from e
        except OSError as e:
            raise FeedUnavailableError(self.name, f'IO error loading {self.path}: {e}') from e

        return list(data.get('bad_domains', [])) + list(data.get('bad_urls', []))


class StaticFeed(FeedProvider):
    """In-memory list of items"""

    def __init__(self, name: str, category: str, items: Sequence[str], phrase: Optional[str] = None):
        super().__init__(name, category, phrase)
        self.items = tuple(items)

    def fetch(self, session: requests.Session, timeout: float) -> Iterable[str]:
        return self.items


def parse_plain_list(content: str) -> List[str]:
    items = []
    for line in content.splitlines():
        line = line.split('#', 1)[0].strip()
        if not line:
            continue
        fields = line.split()
        # hosts-file format: "<sink address> <domain>"
        if len(fields) >= 2 and fields[0] in ('0.0.0.0', '127.0.0.1', '::'):
            items.append(fields[1])
        else:
            items.append(fields[0])
    return items


def feed_key(item: str) -> str:
    """URL-shaped items are keyed by full URL, bare domains by host"""
    item = item.strip()
    if '://' in item or '/' in item:
        return normalize_url(item)
    return normalize_host(item)


# ===== Snapshot =====

@dataclass(frozen=True)
class FeedSnapshot:
    """Immutable result of one ``load()``; never edited after construction"""
    entries: Mapping[str, FrozenSet[ThreatFeedEntry]] = field(default_factory=lambda: MappingProxyType({}))
    sources: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    providers: Tuple[str, ...] = ()
    # Provider-specific message wording, when set
    phrases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    generation: int = 0

    def query(self, link: str) -> FrozenSet[ThreatFeedEntry]:
        """
        Entries matching a link: the full normalized URL, or the host and
        any of its parent domains for domain-level entries.
        """
        try:
            key = normalize_url(link)
            host = get_host(key)
        except InvalidUrlError:
            return frozenset()

        matches: Set[ThreatFeedEntry] = set()
        for candidate in [key] + domain_candidates(host):
            matches.update(self.entries.get(candidate, ()))
        return frozenset(matches)


def build_snapshot(results: Sequence[Tuple[FeedProvider, Sequence[str]]], generation: int) -> FeedSnapshot:
    entries: Dict[str, Set[ThreatFeedEntry]] = {}
    sources: Dict[str, Tuple[str, ...]] = {}

    for provider, items in results:
        kept = []
        for item in items:
            if not isinstance(item, str) or not item.strip():
                continue
            try:
                key = feed_key(item)
            except InvalidUrlError as e:
                logger.debug(f"Skipping {provider.name} entry {item!r}: {e}")
                continue
            entries.setdefault(key, set()).add(ThreatFeedEntry(key, provider.name, provider.category))
            kept.append(item.strip())
        sources[provider.name] = tuple(kept)

    return FeedSnapshot(
        entries=MappingProxyType({key: frozenset(value) for key, value in entries.items()}),
        sources=MappingProxyType(sources),
        providers=tuple(provider.name for provider, _ in results),
        phrases=MappingProxyType({p.name: p.phrase for p, _ in results if p.phrase}),
        generation=generation
    )


# ===== Store =====

class ThreatFeedStore:
    def __init__(self,
                 providers: Sequence[FeedProvider],
                 timeout: float = 30,
                 max_workers: int = 4,
                 session: Optional[requests.Session] = None):
        """
        Initialize the feed store

        Args:
            providers: Feed providers, in the order their hits are reported
            timeout: Seconds allowed for each request and for the whole load
            max_workers: Concurrent provider fetches
            session: Optional shared HTTP session
        """
        self.providers = list(providers)
        self.timeout = timeout
        self.max_workers = max(1, max_workers)

        # Reuse TCP connections for all provider downloads
        self.http_session = session or requests.Session()
        self.http_session.headers.update({'User-Agent': USER_AGENT})

        self._snapshot: Optional[FeedSnapshot] = None
        self._load_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def snapshot(self) -> Optional[FeedSnapshot]:
        return self._snapshot

    @property
    def entries(self) -> Mapping[str, FrozenSet[ThreatFeedEntry]]:
        """Read-only view of the loaded entries"""
        if self._snapshot is None:
            return MappingProxyType({})
        return self._snapshot.entries

    def load(self) -> List[FeedUnavailableError]:
        """
        Fetch every provider and atomically replace the snapshot.

        Returns:
            One FeedUnavailableError per provider that failed; those
            providers contribute nothing to the new snapshot
        """
        with self._load_lock:
            snapshot, errors = self._fetch_all()
            self._snapshot = snapshot

        logger.info(f"✓ Loaded {len(snapshot.entries)} feed entries from "
                    f"{len(snapshot.providers) - len(errors)}/{len(snapshot.providers)} providers")
        return errors

    def query_blocklist(self, link: str) -> Set[Tuple[str, str]]:
        snapshot = self._snapshot
        if snapshot is None:
            return set()
        return {(entry.provider, entry.category) for entry in snapshot.query(link)}

    def _fetch_all(self) -> Tuple[FeedSnapshot, List[FeedUnavailableError]]:
        results: List[Tuple[FeedProvider, Sequence[str]]] = []
        errors: List[FeedUnavailableError] = []

        if not self.providers:
            logger.warning("⚠️ No threat feed providers configured")

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            # One deadline shared by every provider
            deadline = time.monotonic() + self.timeout
            futures = [
                (provider, executor.submit(self._fetch_provider, provider))
                for provider in self.providers
            ]
            for provider, future in futures:
                try:
                    items = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeoutError:
                    future.cancel()
                    error = FeedUnavailableError(provider.name, f'timed out after {self.timeout}s')
                    items = None
                except FeedUnavailableError as e:
                    error = e
                    items = None

                if items is None:
                    logger.warning(f"⚠️ Threat feed unavailable: {error}")
                    errors.append(error)
                    items = []
                else:
                    logger.info(f"✓ Loaded {len(items)} entries from {provider.name}")
                results.append((provider, items))
        finally:
            # A hung provider must not block the swap
            executor.shutdown(wait=False, cancel_futures=True)

        generation = (self._snapshot.generation + 1) if self._snapshot else 1
        return build_snapshot(results, generation), errors

    def _fetch_provider(self, provider: FeedProvider) -> List[str]:
        try:
            return list(provider.fetch(self.http_session, self.timeout))
        except FeedUnavailableError:
            raise
        except requests.Timeout as e:
            raise FeedUnavailableError(provider.name, 'request timeout') from e
        except requests.RequestException as e:
            raise FeedUnavailableError(provider.name, f'request error: {e}') from e
        except (ValueError, KeyError, TypeError) as e:
            raise FeedUnavailableError(provider.name, f'malformed feed: {e}') from e
