"""
URL canonicalization.

Every detector and every threat feed compares links through
``normalize_url`` so that the same URL always maps to the same key.
"""

import re
import unicodedata
from typing import List
from urllib.parse import urlsplit, urlunsplit, unquote

import tldextract

from spamscanner.errors import InvalidUrlError

DEFAULT_PORTS = {'http': 80, 'https': 443, 'ftp': 21}

_SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.\-]*://')

# Characters that cannot survive inside a hostname once it is decoded
_ILLEGAL_HOST_RE = re.compile(r'[\s/\\?#@\[\]<>"\'`]')

_MAX_UNQUOTE_ROUNDS = 8

# Bundled public suffix snapshot only; never fetched at scan time
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())


def _unquote_fully(value: str) -> str:
    for _ in range(_MAX_UNQUOTE_ROUNDS):
        decoded = unquote(value)
        if decoded == value:
            return value
        value = decoded
    raise InvalidUrlError(f"Too many levels of percent-encoding: {value!r}")


def _decode_label(label: str) -> str:
    """Decode a single ``xn--`` label; undecodable labels are kept as-is"""
    if not label.startswith('xn--'):
        return label
    try:
        return label[4:].encode('ascii').decode('punycode')
    except UnicodeError:
        return label


def normalize_host(host: str, allow_colon: bool = False) -> str:
    """
    Canonical display form of a hostname: percent-decoded, lower-cased,
    punycode labels decoded to Unicode, trailing root dot removed.
    """
    host = _unquote_fully(host).strip().lower().rstrip('.')
    host = '.'.join(_decode_label(label) for label in host.split('.')).lower()

    # urlsplit rejects hosts that only turn illegal under NFKC (fullwidth slash, colon)
    folded = unicodedata.normalize('NFKC', host)
    if not host or _ILLEGAL_HOST_RE.search(host) or _ILLEGAL_HOST_RE.search(folded):
        raise InvalidUrlError(f"Invalid host: {host!r}")
    if ':' in folded and not allow_colon:
        raise InvalidUrlError(f"Invalid host: {host!r}")
    return host


def normalize_url(url: str) -> str:
    """
    Normalize a URL into the key used for comparisons.

    Args:
        url: Raw URL as found in a message (scheme optional)

    Returns:
        Normalized URL string

    Raises:
        InvalidUrlError: when the URL has no usable host or port
    """
    if not isinstance(url, str):
        raise InvalidUrlError(f"URL must be a string, got {type(url).__name__}")

    candidate = url.strip()
    if not candidate:
        raise InvalidUrlError("Empty URL")

    # Add scheme if missing
    if candidate.startswith('//'):
        candidate = 'http:' + candidate
    elif not _SCHEME_RE.match(candidate):
        candidate = 'http://' + candidate

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(f"Malformed URL {url!r}: {e}") from e

    scheme = parts.scheme.lower()
    raw_host = parts.hostname
    if not raw_host:
        raise InvalidUrlError(f"URL has no host: {url!r}")

    is_ipv6 = ':' in raw_host
    host = normalize_host(raw_host, allow_colon=is_ipv6)

    netloc = f'[{host}]' if is_ipv6 else host
    userinfo, at, _ = parts.netloc.rpartition('@')
    if at:
        netloc = f'{userinfo}@{netloc}'
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f'{netloc}:{port}'

    return urlunsplit((scheme, netloc, parts.path.rstrip('/'), parts.query, ''))


def get_host(url: str) -> str:
    """Normalized host of a URL (raw or already normalized)"""
    host = urlsplit(normalize_url(url)).hostname
    if not host:
        raise InvalidUrlError(f"URL has no host: {url!r}")
    return host


def registered_domain(host: str) -> str:
    """
    Registrable part of a host (``mail.example.co.uk`` -> ``example.co.uk``).
    IP addresses and hosts without a known suffix are returned unchanged.
    """
    extracted = _tld_extract(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return host


def has_public_suffix(host: str) -> bool:
    extracted = _tld_extract(host)
    return bool(extracted.domain and extracted.suffix)


def domain_candidates(host: str) -> List[str]:
    """
    The host followed by each parent domain, stopping at the registered
    domain. Used to match domain-level blocklist entries.
    """
    floor = registered_domain(host)
    candidates = [host]
    labels = host.split('.')
    while len(labels) > 1 and '.'.join(labels) != floor:
        labels = labels[1:]
        candidates.append('.'.join(labels))
    return candidates
