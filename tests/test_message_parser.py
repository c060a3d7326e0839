from email.message import EmailMessage

import pytest

from spamscanner.core.message_parser import parse_message
from spamscanner.errors import ParseError
from spamscanner.schemas import extract_domain

from conftest import fixture_path


def build_message():
    msg = EmailMessage()
    msg['From'] = 'Alice Example <alice@Example.com>'
    msg['To'] = 'bob@example.org'
    msg['Subject'] = 'Quarterly report'
    msg.set_content('Plain body with https://example.org/report')
    msg.add_alternative('<p>Html body <a href="https://example.org/report">report</a></p>', subtype='html')
    msg.add_attachment(b'MZ\x90\x00binary', maintype='application', subtype='octet-stream',
                       filename='setup.exe')
    msg.add_attachment('col1,col2\n1,2\n', subtype='csv', filename='data.csv')
    return msg


def test_extract_domain():
    assert extract_domain('Alice <alice@Mail.Example.com>') == 'mail.example.com'
    assert extract_domain('bob@example.org.') == 'example.org'
    assert extract_domain('example.org') == ''


def test_parse_bytes():
    message = parse_message(build_message().as_bytes())

    assert message.subject == 'Quarterly report'
    assert message.sender == 'Alice Example <alice@Example.com>'
    assert message.sender_domain == 'example.com'
    assert message.text.strip() == 'Plain body with https://example.org/report'
    assert 'href="https://example.org/report"' in message.html

    assert [a.filename for a in message.attachments] == ['setup.exe', 'data.csv']
    assert message.attachments[0].content == b'MZ\x90\x00binary'
    assert message.attachments[0].content_type == 'application/octet-stream'
    assert message.attachments[1].content.replace(b'\r\n', b'\n') == b'col1,col2\n1,2\n'


def test_headers_keep_order():
    message = parse_message(build_message().as_bytes())
    names = [name for name, _ in message.headers]
    assert names[:3] == ['From', 'To', 'Subject']
    assert message.get_header('SUBJECT') == 'Quarterly report'
    assert message.get_header('X-Missing', 'none') == 'none'


def test_parse_string_and_path():
    path = fixture_path('ham.eml')

    from_path = parse_message(path)
    from_str_path = parse_message(str(path))
    from_text = parse_message(path.read_text())

    assert from_path.subject == 'Project meeting moved to Thursday'
    assert from_str_path == from_path
    assert from_text.text == from_path.text
    assert from_path.html is None
    assert from_path.attachments == []


def test_encoded_headers_and_8bit_body():
    message = parse_message(fixture_path('spam-fuzzy.eml'))

    assert message.subject == 'Cóngratulations WÍNNER'
    assert 'FRÉE' in message.text


def test_base64_attachment_fixture():
    message = parse_message(fixture_path('executable.eml'))

    assert len(message.attachments) == 1
    assert message.attachments[0].filename == 'invoice.pdf'
    assert message.attachments[0].content.startswith(b'MZ')


def test_undecodable_attachment_is_reported():
    raw = (
        b'From: a@example.com\r\n'
        b'Subject: broken\r\n'
        b'MIME-Version: 1.0\r\n'
        b'Content-Type: multipart/mixed; boundary="b"\r\n'
        b'\r\n'
        b'--b\r\n'
        b'Content-Type: text/plain\r\n'
        b'\r\n'
        b'hello\r\n'
        b'--b\r\n'
        b'Content-Type: application/octet-stream\r\n'
        b'Content-Disposition: attachment; filename="broken.bin"\r\n'
        b'Content-Transfer-Encoding: base64\r\n'
        b'\r\n'
        b'QUJDR\r\n'
        b'--b\r\n'
        b'Content-Type: application/octet-stream\r\n'
        b'Content-Disposition: attachment; filename="ok.bin"\r\n'
        b'Content-Transfer-Encoding: base64\r\n'
        b'\r\n'
        b'QUJD\r\n'
        b'--b--\r\n'
    )

    message = parse_message(raw)

    assert message.text.strip() == 'hello'
    assert [a.filename for a in message.attachments] == ['broken.bin', 'ok.bin']
    assert message.attachments[0].content == b''
    assert message.attachments[1].content == b'ABC'
    assert 'Attachment #1 could not be read: invalid base64 length' in message.defects


def test_attached_message_is_not_descended():
    inner = EmailMessage()
    inner['Subject'] = 'Forwarded'
    inner.set_content('inner body')

    outer = EmailMessage()
    outer['From'] = 'a@example.com'
    outer['Subject'] = 'Fwd'
    outer.set_content('outer body')
    outer.add_attachment(inner)

    message = parse_message(outer.as_bytes())

    assert message.text.strip() == 'outer body'
    assert len(message.attachments) == 1
    assert b'inner body' in message.attachments[0].content


@pytest.mark.parametrize('raw', [b'', b'   \r\n', 'just some words without headers'])
def test_unparseable_input(raw):
    with pytest.raises(ParseError):
        parse_message(raw)


def test_missing_file(tmp_path):
    with pytest.raises(ParseError):
        parse_message(tmp_path / 'missing.eml')
