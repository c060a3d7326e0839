import io
import lzma
import os
import zipfile
import zlib
import magic
import olefile
from dataclasses import dataclass
from typing import Iterable, List, Optional
import logging

from spamscanner.core.signatures import (
    FILE_SIGNATURES, RISKY_MIME_TYPES, SCRIPT_EXTENSIONS, EXECUTABLE_EXTENSIONS,
    EXTENSION_TYPES, MSI_CLSIDS, SignatureSet
)
from spamscanner.errors import AttachmentDecodeError
from spamscanner.schemas import Attachment

logger = logging.getLogger(__name__)

# Bytes read from each archive member to type it
MEMBER_HEAD_BYTES = 512

# Inflated bytes taken from a gzip stream
GZIP_PEEK_BYTES = 4096

# Below this size olefile would treat the buffer as a file name
OLE_MIN_SIZE = 1536

@dataclass(frozen=True)
class FileType:
    name: str
    description: str
    # Risky payload found inside an archive
    inner: Optional['FileType'] = None

    @property
    def label(self) -> str:
        if self.inner:
            return f"{self.description} containing {self.inner.label}"
        return self.description


class AttachmentAnalyzer:
    def __init__(self,
                 risky_types: Iterable[str],
                 max_scan_bytes: int = 10 * 1024 * 1024,
                 max_archive_members: int = 256):
        self.risky_types = frozenset(risky_types)
        self.max_scan_bytes = max_scan_bytes
        self.max_archive_members = max_archive_members

    # ===== Executables =====

    def executable_results(self,
                           attachments: List[Attachment],
                           warnings: Optional[List[str]] = None) -> List[str]:
        """
        One message per attachment whose true type is a risky executable

        Args:
            attachments: Attachments in message order (reported 1-based)
            warnings: Collects a message for each attachment that could not be analyzed
        """
        messages = []
        for index, attachment in enumerate(attachments, 1):
            try:
                file_type = self.identify(attachment.content, attachment.filename)
            except Exception as e:
                self._report_failure(index, e, warnings)
                continue
            if file_type and self.is_risky(file_type):
                filename = attachment.filename or 'unnamed_attachment'
                messages.append(
                    f'Attachment #{index} is an executable file named "{filename}" ({file_type.label}).'
                )
        return messages

    def is_risky(self, file_type: FileType) -> bool:
        if file_type.name in self.risky_types:
            return True
        return file_type.inner is not None and self.is_risky(file_type.inner)

    def identify(self, content: bytes, filename: Optional[str] = None) -> Optional[FileType]:
        """
        Identify the true file type from content, ignoring the declared name
        except for text formats (scripts) that bytes cannot identify.
        """
        if not content:
            return None

        file_type = self._identify_bytes(content)
        if file_type is None:
            file_type = self._identify_mime(content)
        if file_type is None and filename:
            file_type = self._identify_extension(filename, SCRIPT_EXTENSIONS)
        if file_type is None:
            return None

        # Look one level inside containers
        if file_type.name == 'zip':
            return self._inspect_zip(content, file_type)
        if file_type.name == 'gzip':
            return self._inspect_gzip(content, file_type)
        if file_type.name == 'tar':
            return self._inspect_tar_head(content[:GZIP_PEEK_BYTES], file_type)
        if file_type.name == 'ole':
            return self._inspect_ole(content, file_type)
        return file_type

    def _identify_bytes(self, head: bytes) -> Optional[FileType]:
        for signature in FILE_SIGNATURES:
            if signature.matches(head):
                return FileType(signature.type, signature.description)
        return None

    def _identify_mime(self, content: bytes) -> Optional[FileType]:
        """Identify file type using libmagic"""
        try:
            mime = magic.from_buffer(content[:self.max_scan_bytes], mime=True)
        except magic.MagicException as e:
            logger.debug(f"libmagic could not identify attachment: {e}")
            return None

        if mime in RISKY_MIME_TYPES:
            name, description = RISKY_MIME_TYPES[mime]
            return FileType(name, description)
        return None

    def _identify_extension(self, filename: str, extensions) -> Optional[FileType]:
        extension = os.path.splitext(filename.lower())[1]
        if extension not in extensions:
            return None
        return FileType(EXTENSION_TYPES.get(extension, 'script'), f"{extension} file")

    def _identify_member(self, head: bytes, name: str) -> Optional[FileType]:
        # No recursion: nested archives are typed, never opened
        return self._identify_bytes(head) or self._identify_extension(name, EXECUTABLE_EXTENSIONS)

    def _inspect_zip(self, content: bytes, base: FileType) -> FileType:
        try:
            with zipfile.ZipFile(io.BytesIO(content)) as archive:
                names = set(archive.namelist())

                if 'AndroidManifest.xml' in names and 'classes.dex' in names:
                    return FileType('apk', 'Android package')
                if 'META-INF/MANIFEST.MF' in names and any(n.endswith('.class') for n in names):
                    return FileType('jar', 'Java archive')
                if names & {'word/vbaProject.bin', 'xl/vbaProject.bin', 'ppt/vbaProject.bin'}:
                    return FileType('office-macro', 'Office document with VBA macros')

                for info in archive.infolist()[:self.max_archive_members]:
                    if info.is_dir():
                        continue

                    # Encrypted: only the name is available
                    if info.flag_bits & 0x1:
                        inner = self._identify_extension(info.filename, EXECUTABLE_EXTENSIONS)
                    else:
                        with archive.open(info) as member:
                            inner = self._identify_member(member.read(MEMBER_HEAD_BYTES), info.filename)

                    if inner and self.is_risky(inner):
                        return FileType(base.name, base.description, inner)

        except (zipfile.BadZipFile, zipfile.LargeZipFile, NotImplementedError,
                RuntimeError, EOFError, OSError, zlib.error, lzma.LZMAError) as e:
            logger.debug(f"Could not inspect zip archive: {e}")

        return base

    def _inspect_gzip(self, content: bytes, base: FileType) -> FileType:
        try:
            inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)
            head = inflater.decompress(content[:self.max_scan_bytes], GZIP_PEEK_BYTES)
        except zlib.error as e:
            logger.debug(f"Could not inflate gzip stream: {e}")
            return base

        inner = self._identify_bytes(head)
        if inner and inner.name == 'tar':
            inner = self._inspect_tar_head(head, inner)
        if inner and self.is_risky(inner):
            return FileType(base.name, base.description, inner)
        return base

    def _inspect_tar_head(self, head: bytes, base: FileType) -> FileType:
        """Type the first tar member from its header block and first bytes"""
        name = head[:100].split(b'\0', 1)[0].decode('utf-8', errors='replace')
        inner = self._identify_member(head[512:512 + MEMBER_HEAD_BYTES], name)
        if inner and self.is_risky(inner):
            return FileType(base.name, base.description, inner)
        return base

    def _inspect_ole(self, content: bytes, base: FileType) -> FileType:
        """Windows Installer packages and documents carrying VBA macros"""
        if len(content) < OLE_MIN_SIZE:
            return base

        try:
            ole = olefile.OleFileIO(content)
        except (OSError, ValueError) as e:
            logger.debug(f"Could not open OLE document: {e}")
            return base

        try:
            if ole.root is not None and (ole.root.clsid or '').upper() in MSI_CLSIDS:
                return FileType('msi', 'Windows installer package')
            if ole.exists('Macros') or ole.exists('_VBA_PROJECT_CUR') or ole.exists('VBA'):
                return FileType('office-macro', 'Office document with VBA macros')
        finally:
            ole.close()

        return base

    # ===== Malware =====

    def virus_results(self,
                      attachments: List[Attachment],
                      signatures: SignatureSet,
                      warnings: Optional[List[str]] = None) -> List[str]:
        """One message per infected attachment (first matching signature)"""
        messages = []
        for index, attachment in enumerate(attachments, 1):
            try:
                name = self.find_malware(attachment.content, signatures)
            except Exception as e:
                self._report_failure(index, e, warnings)
                continue
            if name:
                messages.append(f"Attachment #{index} was infected with {name}")
        return messages

    def find_malware(self, content: bytes, signatures: SignatureSet) -> Optional[str]:
        if not content:
            return None
        return signatures.match(content[:self.max_scan_bytes])

    def _report_failure(self, index: int, error: Exception, warnings: Optional[List[str]]):
        failure = AttachmentDecodeError(index, f"analysis failed ({type(error).__name__}: {error})")
        logger.warning(f"⚠️ {failure}")
        if warnings is not None:
            warnings.append(str(failure))
