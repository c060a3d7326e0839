import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple, Union
import logging

from bs4 import BeautifulSoup
from pydantic import ValidationError

from spamscanner.config import Settings, settings as default_settings
from spamscanner.core.attachment_analyzer import AttachmentAnalyzer
from spamscanner.core.classifier import ClassifierModel, SpamClassifier
from spamscanner.core.homograph import HomographDetector
from spamscanner.core.link_extractor import LinkExtractor
from spamscanner.core.message_parser import RawMessage, parse_message
from spamscanner.core.phishing_detector import ExactDomainRule, PhishingDetector
from spamscanner.core.rule_detector import RuleDetector
from spamscanner.core.signatures import SignatureSet, load_signature_db
from spamscanner.core.threat_feeds import (
    FeedProvider, FeedSnapshot, LocalListFeed, PhishTankFeed, PlainListFeed, ThreatFeedStore
)
from spamscanner.core.url_normalizer import normalize_url
from spamscanner.errors import AttachmentDecodeError, FeedUnavailableError, NotLoadedError
from spamscanner.schemas import (
    Attachment, Classification, Message, PhishingResults, ScanResult, extract_domain
)

logger = logging.getLogger(__name__)


def default_providers(config: Settings) -> List[FeedProvider]:
    """Feed providers enabled by configuration, in reporting order"""
    providers: List[FeedProvider] = [
        PhishTankFeed(url=config.PHISHTANK_URL, app_key=config.PHISHTANK_APP_KEY)
    ]
    if config.CLOUDFLARE_FEED_URL:
        providers.append(PlainListFeed('Cloudflare', config.CLOUDFLARE_FEED_URL, 'family'))
    if config.LOCAL_BLOCKLIST_PATH and os.path.exists(config.LOCAL_BLOCKLIST_PATH):
        providers.append(LocalListFeed(config.LOCAL_BLOCKLIST_PATH))
    return providers


@dataclass(frozen=True)
class ScannerSnapshot:
    """Everything a scan reads, produced together by one ``load()``"""
    feeds: FeedSnapshot
    classifier: SpamClassifier
    signatures: SignatureSet
    loaded_at: float


class SpamScanner:
    def __init__(self,
                 settings: Optional[Settings] = None,
                 providers: Optional[Sequence[FeedProvider]] = None,
                 model: Optional[ClassifierModel] = None,
                 model_path: Optional[str] = None):
        """
        Initialize the scanner. Nothing is fetched or read until ``load()``.

        Args:
            settings: Configuration (defaults to the environment)
            providers: Threat feed providers (defaults to the configured ones)
            model: Pre-built classifier model; skips reading a model file
            model_path: Model file read at load time
        """
        self.settings = settings or default_settings
        self.model = model
        self.model_path = model_path or self.settings.CLASSIFIER_MODEL_PATH

        self.feed_store = ThreatFeedStore(
            providers if providers is not None else default_providers(self.settings),
            timeout=self.settings.FEED_TIMEOUT,
            max_workers=self.settings.FEED_MAX_WORKERS
        )
        self.link_extractor = LinkExtractor()
        self.phishing_detector = PhishingDetector(
            issues_url=self.settings.ISSUES_URL,
            homograph_detector=HomographDetector(),
            organization_rule=ExactDomainRule() if self.settings.SAME_ORG_SUPPRESSION else None,
            link_extractor=self.link_extractor
        )
        self.attachment_analyzer = AttachmentAnalyzer(
            risky_types=self.settings.RISKY_EXECUTABLE_TYPES,
            max_scan_bytes=self.settings.MAX_ATTACHMENT_SCAN_BYTES,
            max_archive_members=self.settings.MAX_ARCHIVE_MEMBERS
        )
        self.rule_detector = RuleDetector(self.settings.ARBITRARY_RULES)

        self._snapshot: Optional[ScannerSnapshot] = None
        self._load_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    # ===== Loading =====

    def load(self) -> List[FeedUnavailableError]:
        """
        Load feeds, signatures and the classifier, then swap the snapshot.

        Returns:
            Providers that could not be loaded (they contribute nothing)

        Raises:
            ModelUnavailableError: the classifier model cannot be read
        """
        with self._load_lock:
            model = self.model or ClassifierModel.load(self.model_path)
            signatures = self._load_signatures()
            errors = self.feed_store.load()

            self._snapshot = ScannerSnapshot(
                feeds=self.feed_store.snapshot,
                classifier=SpamClassifier(model, threshold=self.settings.SPAM_THRESHOLD),
                signatures=signatures,
                loaded_at=time.time()
            )

        logger.info(f"✓ Scanner ready (feed generation {self._snapshot.feeds.generation}, "
                    f"{len(signatures)} malware signatures, {len(errors)} feeds unavailable)")
        return errors

    def _load_signatures(self) -> SignatureSet:
        path = self.settings.SIGNATURE_DB_PATH
        if not path:
            return SignatureSet()
        try:
            return load_signature_db(path)
        except OSError as e:
            logger.warning(f"⚠️ Could not read signature database {path}: {e}; using built-in signatures")
            return SignatureSet()

    def _require_snapshot(self) -> ScannerSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise NotLoadedError("Scanner is not loaded; call load() first")
        return snapshot

    # ===== Scanning =====

    def scan(self, message: Union[Message, RawMessage]) -> ScanResult:
        """
        Run every detector over one message

        Args:
            message: Parsed Message, raw bytes/str, or a path to an .eml file

        Returns:
            ScanResult with the aggregated verdict

        Raises:
            NotLoadedError: ``load()`` has not completed
            ParseError: raw input could not be parsed
        """
        snapshot = self._require_snapshot()
        if not isinstance(message, Message):
            message = parse_message(message)

        warnings = list(message.defects)
        attachments = self._coerce_attachments(message.attachments, warnings)

        phishing = self.phishing_detector.detect(
            snapshot.feeds, html=message.html, text=message.text,
            sender_domain=message.sender_domain
        )
        executables = self.attachment_analyzer.executable_results(attachments, warnings)
        viruses = self.attachment_analyzer.virus_results(attachments, snapshot.signatures, warnings)
        arbitrary = self.rule_detector.detect(html=message.html, text=message.text)
        classification = snapshot.classifier.classify(
            message.subject, self._body_text(message.text, message.html)
        )

        is_spam = (classification.category == 'spam' or bool(phishing.messages)
                   or bool(executables) or bool(viruses) or bool(arbitrary))

        logger.debug(f"Scanned message {message.subject!r}: spam={is_spam} "
                     f"({classification.category} {classification.score:.2f})")

        return ScanResult(
            is_spam=is_spam,
            classification=classification,
            phishing=phishing.messages,
            executables=executables,
            viruses=viruses,
            arbitrary=arbitrary,
            links=phishing.links,
            warnings=warnings
        )

    # ===== Standalone detectors =====

    def get_phishing_results(self,
                             html: Optional[str] = None,
                             text: Optional[str] = None,
                             sender: Optional[str] = None) -> PhishingResults:
        snapshot = self._require_snapshot()
        return self.phishing_detector.detect(
            snapshot.feeds, html=html, text=text, sender_domain=self._sender_domain(sender)
        )

    def get_virus_results(self, attachments: Iterable[Any]) -> List[str]:
        snapshot = self._require_snapshot()
        warnings: List[str] = []
        coerced = self._coerce_attachments(attachments, warnings)
        return self.attachment_analyzer.virus_results(coerced, snapshot.signatures)

    def get_executable_results(self, attachments: Iterable[Any]) -> List[str]:
        warnings: List[str] = []
        return self.attachment_analyzer.executable_results(self._coerce_attachments(attachments, warnings))

    def get_arbitrary_results(self, html: Optional[str] = None, text: Optional[str] = None) -> List[str]:
        return self.rule_detector.detect(html=html, text=text)

    def get_classification(self, subject: str, body: str) -> Classification:
        return self._require_snapshot().classifier.classify(subject, body)

    def get_normalized_url(self, url: str) -> str:
        return normalize_url(url)

    def query_blocklist(self, link: str) -> Set[Tuple[str, str]]:
        """(provider, category) pairs of every feed listing the link"""
        snapshot = self._require_snapshot()
        return {(entry.provider, entry.category) for entry in snapshot.feeds.query(link)}

    # ===== Helpers =====

    def _coerce_attachments(self, attachments: Iterable[Any], warnings: List[str]) -> List[Attachment]:
        """
        Accept Attachment objects, dicts or raw bytes. An unreadable entry
        keeps its slot as an empty attachment so later indices stay stable.
        """
        coerced = []
        for index, item in enumerate(attachments or [], 1):
            try:
                coerced.append(self._to_attachment(index, item))
            except AttachmentDecodeError as e:
                logger.warning(f"⚠️ {e}")
                warnings.append(str(e))
                coerced.append(Attachment())
        return coerced

    def _to_attachment(self, index: int, item: Any) -> Attachment:
        if isinstance(item, Attachment):
            return item
        if isinstance(item, (bytes, bytearray)):
            return Attachment(content=bytes(item))
        if isinstance(item, dict):
            try:
                return Attachment(**item)
            except ValidationError as e:
                raise AttachmentDecodeError(index, f"invalid attachment fields: {e.errors()[0]['msg']}") from e
        raise AttachmentDecodeError(index, f"unsupported attachment type {type(item).__name__}")

    def _body_text(self, text: Optional[str], html: Optional[str]) -> str:
        if text:
            return text
        if html:
            return BeautifulSoup(html, 'lxml').get_text(separator=' ')
        return ''

    def _sender_domain(self, sender: Optional[str]) -> Optional[str]:
        if not sender:
            return None
        # A bare domain is accepted as well as an address
        return extract_domain(sender) or sender.strip().lower()
