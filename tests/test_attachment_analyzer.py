import gzip
import hashlib
import io
import zipfile

import pytest

from spamscanner.core.attachment_analyzer import AttachmentAnalyzer
from spamscanner.core.signatures import MalwareSignature, SignatureSet, load_signature_db
from spamscanner.schemas import Attachment

from conftest import EICAR, make_corrupt_lzma_zip, make_settings

PE_HEADER = b'MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff\x00\x00' + b'\x00' * 48


@pytest.fixture
def analyzer():
    settings = make_settings()
    return AttachmentAnalyzer(
        risky_types=settings.RISKY_EXECUTABLE_TYPES,
        max_scan_bytes=settings.MAX_ATTACHMENT_SCAN_BYTES,
        max_archive_members=settings.MAX_ARCHIVE_MEMBERS
    )


def make_zip(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return buffer.getvalue()


# ===== Executables =====

def test_windows_executable_detected_by_content(analyzer):
    messages = analyzer.executable_results([Attachment(content=PE_HEADER, filename='invoice.pdf')])
    assert messages == ['Attachment #1 is an executable file named "invoice.pdf" (Windows executable).']


def test_elf_and_shebang(analyzer):
    messages = analyzer.executable_results([
        Attachment(content=b'\x7fELF\x02\x01\x01' + b'\x00' * 32, filename='tool'),
        Attachment(content=b'#!/bin/sh\nrm -rf ~\n', filename='notes.txt'),
    ])
    assert messages == [
        'Attachment #1 is an executable file named "tool" (ELF executable).',
        'Attachment #2 is an executable file named "notes.txt" (interpreter script).',
    ]


def test_indices_are_one_based_and_stable(analyzer):
    messages = analyzer.executable_results([
        Attachment(content=b'%PDF-1.4\n%clean document\n', filename='report.pdf'),
        Attachment(content=b'\x89PNG\r\n\x1a\n' + b'\x00' * 16, filename='logo.png'),
        Attachment(content=PE_HEADER, filename='setup.exe'),
    ])
    assert messages == ['Attachment #3 is an executable file named "setup.exe" (Windows executable).']


def test_zip_containing_executable(analyzer):
    content = make_zip({'readme.txt': b'hello', 'setup.exe': PE_HEADER})

    messages = analyzer.executable_results([Attachment(content=content, filename='invoice.zip')])

    assert messages == [
        'Attachment #1 is an executable file named "invoice.zip" (zip archive containing Windows executable).'
    ]


def test_zip_without_executables_is_not_flagged(analyzer):
    content = make_zip({'readme.txt': b'hello', 'report.pdf': b'%PDF-1.4\n'})
    assert analyzer.executable_results([Attachment(content=content, filename='docs.zip')]) == []


def test_corrupt_lzma_member_is_typed_as_plain_zip(analyzer):
    file_type = analyzer.identify(make_corrupt_lzma_zip(), 'bundle.zip')

    assert file_type.name == 'zip'
    assert file_type.inner is None


def test_failing_attachment_is_reported_and_others_still_analyzed(analyzer, monkeypatch):
    identify = analyzer.identify

    def flaky_identify(content, filename=None):
        if filename == 'bad.bin':
            raise RuntimeError('boom')
        return identify(content, filename)

    monkeypatch.setattr(analyzer, 'identify', flaky_identify)
    warnings = []

    messages = analyzer.executable_results([
        Attachment(content=b'anything', filename='bad.bin'),
        Attachment(content=PE_HEADER, filename='setup.exe'),
    ], warnings)

    assert messages == ['Attachment #2 is an executable file named "setup.exe" (Windows executable).']
    assert warnings == ['Attachment #1 could not be read: analysis failed (RuntimeError: boom)']


def test_jar_archive(analyzer):
    content = make_zip({
        'META-INF/MANIFEST.MF': b'Manifest-Version: 1.0\n',
        'com/example/Main.class': b'\xca\xfe\xba\xbe\x00\x00\x00\x34',
    })
    file_type = analyzer.identify(content, 'update.zip')

    assert file_type.name == 'jar'
    assert analyzer.is_risky(file_type)


def test_office_document_with_macros(analyzer):
    content = make_zip({'[Content_Types].xml': b'<Types/>', 'word/vbaProject.bin': b'\x00' * 8})
    assert analyzer.identify(content, 'letter.docm').name == 'office-macro'


def test_gzip_containing_executable(analyzer):
    file_type = analyzer.identify(gzip.compress(PE_HEADER), 'payload.gz')

    assert file_type.name == 'gzip'
    assert file_type.inner.name == 'exe'
    assert analyzer.is_risky(file_type)


def test_script_extension_decides_for_unidentified_text(analyzer):
    messages = analyzer.executable_results([Attachment(content=b'@echo off\r\ndel /q *\r\n', filename='run.bat')])

    assert len(messages) == 1
    assert messages[0].startswith('Attachment #1 is an executable file named "run.bat" (')


def test_declared_extension_alone_is_not_enough(analyzer):
    assert analyzer.executable_results([Attachment(content=b'%PDF-1.4\n', filename='invoice.exe')]) == []


def test_risky_types_are_configurable():
    analyzer = AttachmentAnalyzer(risky_types={'elf'})
    assert analyzer.executable_results([Attachment(content=PE_HEADER, filename='setup.exe')]) == []


def test_empty_attachment(analyzer):
    assert analyzer.identify(b'', 'empty.exe') is None
    assert analyzer.executable_results([Attachment()]) == []


# ===== Malware =====

def test_eicar_detected(analyzer):
    messages = analyzer.virus_results([Attachment(content=EICAR, filename='eicar.com')], SignatureSet())
    assert messages == ['Attachment #1 was infected with Win.Test.EICAR_HDB-1']


def test_eicar_with_trailing_whitespace(analyzer):
    messages = analyzer.virus_results(
        [Attachment(content=b'clean'), Attachment(content=EICAR + b'\r\n')], SignatureSet()
    )
    assert messages == ['Attachment #2 was infected with Win.Test.EICAR_HDB-1']


def test_eicar_embedded_in_larger_file_is_not_the_test_file(analyzer):
    content = b'prefix ' + EICAR
    assert analyzer.virus_results([Attachment(content=content)], SignatureSet()) == []


def test_signature_database(tmp_path, analyzer):
    sample = b'totally harmless sample'
    path = tmp_path / 'custom.db'
    path.write_text(
        "# operator signatures\n"
        "Test.Pattern-1:0:*:deadbeef\n"
        "Test.Anchored-1:0:0:cafebabe00\n"
        "Test.Offset-1:0:EOF-10:aa\n"
        f"{hashlib.md5(sample).hexdigest()}:{len(sample)}:Test.Hash-1\n"
        "not a signature\n"
    )

    signatures = load_signature_db(str(path))

    assert len(signatures) == 4
    assert analyzer.find_malware(b'xx\xde\xad\xbe\xefyy', signatures) == 'Test.Pattern-1'
    assert analyzer.find_malware(b'\xca\xfe\xba\xbe\x00rest', signatures) == 'Test.Anchored-1'
    assert analyzer.find_malware(b'rest\xca\xfe\xba\xbe\x00', signatures) is None
    assert analyzer.find_malware(sample, signatures) == 'Test.Hash-1'
    assert analyzer.find_malware(EICAR, signatures) == 'Win.Test.EICAR_HDB-1'


def test_scan_byte_cap():
    signatures = SignatureSet(patterns=(MalwareSignature('Test.Tail-1', b'MALWARE'),))
    content = b'a' * 32 + b'MALWARE'

    assert AttachmentAnalyzer(risky_types=set()).find_malware(content, signatures) == 'Test.Tail-1'
    assert AttachmentAnalyzer(risky_types=set(), max_scan_bytes=16).find_malware(content, signatures) is None
