from typing import Dict, List, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

# Split so this module is not itself flagged by scanners that read it
GTUBE = 'XJS*C4JDBQADN1.NSBN3*2IDNEN*' + 'GTUBE-STANDARD-ANTI-UBE-TEST-EMAIL*C.34X'

GTUBE_MESSAGE = 'Message detected to contain the GTUBE test from <https://spamassassin.apache.org/gtube/>'

BUILTIN_RULES: Tuple[Tuple[str, str], ...] = (
    (GTUBE, GTUBE_MESSAGE),
)


class RuleDetector:
    """Literal, case-sensitive substring rules over the message bodies"""

    def __init__(self, rules: Optional[Mapping[str, str]] = None):
        combined: Dict[str, str] = dict(BUILTIN_RULES)
        for needle, message in (rules or {}).items():
            if not needle:
                logger.warning(f"⚠️ Ignoring empty arbitrary rule for message {message!r}")
                continue
            combined[needle] = message
        self.rules: Tuple[Tuple[str, str], ...] = tuple(combined.items())

    def detect(self, html: Optional[str] = None, text: Optional[str] = None) -> List[str]:
        """
        Each rule fires at most once, whether it matches text, html or both
        """
        bodies = [body for body in (text, html) if body]
        if not bodies:
            return []

        messages = []
        for needle, message in self.rules:
            if any(needle in body for body in bodies):
                messages.append(message)
        return messages
