from pydantic_settings import BaseSettings
from typing import Dict, Optional, Set

class Settings(BaseSettings):
    # API Configuration
    APP_NAME: str = "Spam Scanner"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Whitelist requests for phishing false positives
    ISSUES_URL: str = "https://github.com/spamscanner/spamscanner/issues"

    # Threat Feeds
    PHISHTANK_URL: str = "https://data.phishtank.com/data/online-valid.json"
    PHISHTANK_APP_KEY: Optional[str] = None
    # Cloudflare family-filter domain list; no Cloudflare coverage unless set
    CLOUDFLARE_FEED_URL: Optional[str] = None
    LOCAL_BLOCKLIST_PATH: Optional[str] = "./data/intel_db.json"
    FEED_TIMEOUT: int = 30
    FEED_MAX_WORKERS: int = 4

    # Attachment Scanning
    RISKY_EXECUTABLE_TYPES: Set[str] = {
        'exe', 'elf', 'macho', 'java-class', 'script', 'lnk',
        'jar', 'apk', 'office-macro', 'msi'
    }
    MAX_ATTACHMENT_SCAN_BYTES: int = 10 * 1024 * 1024
    MAX_ARCHIVE_MEMBERS: int = 256
    SIGNATURE_DB_PATH: Optional[str] = None

    # Classifier
    CLASSIFIER_MODEL_PATH: str = "./models/classifier.joblib"
    SPAM_THRESHOLD: float = 0.5

    # Phishing
    SAME_ORG_SUPPRESSION: bool = False

    # Literal rules (substring -> message), added to the built-in GTUBE rule
    ARBITRARY_RULES: Dict[str, str] = {}

    class Config:
        env_file = ".env"
        env_prefix = "SPAMSCANNER_"
        case_sensitive = True

settings = Settings()
