"""
Static signature tables.

File-type signatures identify what an attachment really is from its
leading bytes. Malware signatures identify known samples, either by byte
pattern or by MD5 hash (ClamAV ``.hdb`` style). Operator signatures can be
added from a database file at load time.
"""

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


# ===== File types =====

@dataclass(frozen=True)
class FileSignature:
    magic: bytes
    type: str
    description: str
    offset: int = 0

    def matches(self, head: bytes) -> bool:
        return head[self.offset:self.offset + len(self.magic)] == self.magic


FILE_SIGNATURES: Tuple[FileSignature, ...] = (
    FileSignature(b'MZ', 'exe', 'Windows executable'),
    FileSignature(b'\x7fELF', 'elf', 'ELF executable'),
    FileSignature(b'\xfe\xed\xfa\xce', 'macho', 'Mach-O executable'),
    FileSignature(b'\xfe\xed\xfa\xcf', 'macho', 'Mach-O executable'),
    FileSignature(b'\xce\xfa\xed\xfe', 'macho', 'Mach-O executable'),
    FileSignature(b'\xcf\xfa\xed\xfe', 'macho', 'Mach-O executable'),
    FileSignature(b'\xca\xfe\xba\xbe', 'java-class', 'Java class or Mach-O universal binary'),
    FileSignature(b'#!', 'script', 'interpreter script'),
    FileSignature(b'L\x00\x00\x00\x01\x14\x02\x00', 'lnk', 'Windows shortcut'),
    FileSignature(b'PK\x03\x04', 'zip', 'zip archive'),
    FileSignature(b'PK\x05\x06', 'zip', 'zip archive'),
    FileSignature(b'\x1f\x8b', 'gzip', 'gzip archive'),
    FileSignature(b'ustar', 'tar', 'tar archive', offset=257),
    FileSignature(b'\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1', 'ole', 'OLE compound document'),
    FileSignature(b'%PDF-', 'pdf', 'PDF document'),
    FileSignature(b'Rar!\x1a\x07', 'rar', 'RAR archive'),
    FileSignature(b"7z\xbc\xaf'\x1c", '7z', '7-Zip archive'),
    FileSignature(b'MSCF', 'cab', 'Cabinet archive'),
    FileSignature(b'\x89PNG\r\n\x1a\n', 'png', 'PNG image'),
    FileSignature(b'\xff\xd8\xff', 'jpeg', 'JPEG image'),
    FileSignature(b'GIF8', 'gif', 'GIF image'),
)

# libmagic MIME types that map onto a risky file type
RISKY_MIME_TYPES: Mapping[str, Tuple[str, str]] = MappingProxyType({
    'application/x-dosexec': ('exe', 'Windows executable'),
    'application/vnd.microsoft.portable-executable': ('exe', 'Windows executable'),
    'application/x-msdownload': ('exe', 'Windows executable'),
    'application/x-executable': ('elf', 'ELF executable'),
    'application/x-pie-executable': ('elf', 'ELF executable'),
    'application/x-sharedlib': ('elf', 'ELF shared library'),
    'application/x-mach-binary': ('macho', 'Mach-O executable'),
    'application/x-ms-shortcut': ('lnk', 'Windows shortcut'),
    'application/x-msi': ('msi', 'Windows installer package'),
    'application/java-archive': ('jar', 'Java archive'),
    'application/vnd.android.package-archive': ('apk', 'Android package'),
    'text/x-shellscript': ('script', 'shell script'),
    'text/x-python': ('script', 'Python script'),
    'text/x-perl': ('script', 'Perl script'),
    'text/x-msdos-batch': ('script', 'batch script'),
    'application/x-bat': ('script', 'batch script'),
})

# Text formats that only their extension can identify
SCRIPT_EXTENSIONS = frozenset({
    '.bat', '.cmd', '.vbs', '.vbe', '.js', '.jse', '.wsf', '.wsh',
    '.ps1', '.psm1', '.hta', '.sh', '.command', '.scpt',
})

# Names inside archives we cannot read (encrypted members)
EXECUTABLE_EXTENSIONS = SCRIPT_EXTENSIONS | frozenset({
    '.exe', '.scr', '.com', '.pif', '.dll', '.cpl', '.msi', '.jar',
    '.apk', '.lnk', '.app', '.dmg', '.elf',
})

EXTENSION_TYPES: Mapping[str, str] = MappingProxyType({
    '.exe': 'exe', '.scr': 'exe', '.com': 'exe', '.pif': 'exe', '.dll': 'exe', '.cpl': 'exe',
    '.msi': 'msi', '.jar': 'jar', '.apk': 'apk', '.lnk': 'lnk',
    '.app': 'macho', '.dmg': 'macho', '.elf': 'elf',
})

# Root storage CLSIDs of Windows Installer packages and patches
MSI_CLSIDS = frozenset({
    '000C1084-0000-0000-C000-000000000046',
    '000C1086-0000-0000-C000-000000000046',
})


# ===== Malware =====

# Split so this module is not itself detected as the test file
EICAR_SIGNATURE = b'X5O!P%@AP[4\\PZX54(P^)7CC)7}$' + b'EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*'


@dataclass(frozen=True)
class MalwareSignature:
    name: str
    pattern: bytes
    # None matches anywhere in the content
    offset: Optional[int] = None
    max_size: Optional[int] = None
    # Only whitespace may follow the pattern
    exact: bool = False

    def matches(self, content: bytes) -> bool:
        if self.max_size is not None and len(content) > self.max_size:
            return False
        if self.offset is None:
            return self.pattern in content

        end = self.offset + len(self.pattern)
        if content[self.offset:end] != self.pattern:
            return False
        return not (self.exact and content[end:].strip())


@dataclass(frozen=True)
class HashSignature:
    name: str
    md5: str
    size: Optional[int] = None


BUILTIN_SIGNATURES: Tuple[MalwareSignature, ...] = (
    MalwareSignature('Win.Test.EICAR_HDB-1', EICAR_SIGNATURE, offset=0, max_size=128, exact=True),
)


@dataclass(frozen=True)
class SignatureSet:
    patterns: Tuple[MalwareSignature, ...] = BUILTIN_SIGNATURES
    hashes: Mapping[str, Tuple[HashSignature, ...]] = field(default_factory=lambda: MappingProxyType({}))

    def match(self, content: bytes) -> Optional[str]:
        """Name of the first signature matching the content, if any"""
        for signature in self.patterns:
            if signature.matches(content):
                return signature.name

        if self.hashes:
            digest = hashlib.md5(content).hexdigest()
            for signature in self.hashes.get(digest, ()):
                if signature.size is None or signature.size == len(content):
                    return signature.name
        return None

    def __len__(self):
        return len(self.patterns) + sum(len(v) for v in self.hashes.values())


def load_signature_db(path: str) -> SignatureSet:
    """
    Load operator signatures on top of the built-ins.

    Accepted line formats:
        ``md5:size:Name``                      (ClamAV .hdb, size may be ``*``)
        ``Name:target:offset:hexsignature``    (ClamAV .ndb, offset ``*`` or ``0``)

    Lines that cannot be used (wildcards, other offsets) are skipped.
    """
    patterns: List[MalwareSignature] = list(BUILTIN_SIGNATURES)
    hashes: Dict[str, List[HashSignature]] = {}

    with open(Path(path), 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            fields = line.split(':')
            try:
                if len(fields) == 3 and len(fields[0]) == 32:
                    md5, size, name = fields
                    hashes.setdefault(md5.lower(), []).append(
                        HashSignature(name, md5.lower(), None if size == '*' else int(size))
                    )
                elif len(fields) >= 4:
                    name, _target, offset, hexsig = fields[:4]
                    if offset not in ('*', '0') or not hexsig:
                        logger.debug(f"Skipping signature {name}: unsupported offset {offset}")
                        continue
                    patterns.append(MalwareSignature(
                        name, bytes.fromhex(hexsig), offset=None if offset == '*' else 0
                    ))
                else:
                    logger.debug(f"Skipping malformed signature line {line_no}")
            except ValueError as e:
                logger.debug(f"Skipping signature line {line_no}: {e}")

    logger.info(f"✓ Loaded {len(patterns) - len(BUILTIN_SIGNATURES)} pattern and "
                f"{sum(len(v) for v in hashes.values())} hash signatures from {path}")
    return SignatureSet(
        patterns=tuple(patterns),
        hashes=MappingProxyType({k: tuple(v) for k, v in hashes.items()})
    )
