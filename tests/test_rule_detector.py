from spamscanner.core.rule_detector import GTUBE, GTUBE_MESSAGE, RuleDetector

GTUBE_EMAIL = f"""
Subject: Test spam mail (GTUBE)
Message-ID: <GTUBE1.1010101@example.net>
From: Sender <sender@example.net>
To: Recipient <recipient@example.net>

This is the GTUBE, the
  Generic
  Test for
  Unsolicited
  Bulk
  Email

{GTUBE}

You should send this test mail from an account outside of your network.
""".strip()


def test_gtube_marker():
    assert RuleDetector().detect(html=GTUBE_EMAIL) == [
        'Message detected to contain the GTUBE test from <https://spamassassin.apache.org/gtube/>'
    ]


def test_rule_fires_once_across_bodies():
    assert RuleDetector().detect(html=GTUBE_EMAIL, text=GTUBE_EMAIL) == [GTUBE_MESSAGE]


def test_match_is_case_sensitive():
    assert RuleDetector().detect(text=GTUBE.lower()) == []


def test_operator_rules():
    detector = RuleDetector({'CONFIDENTIAL-TEST-MARKER': 'Message contains the internal test marker', '': 'ignored'})

    assert detector.detect(text='... CONFIDENTIAL-TEST-MARKER ...') == ['Message contains the internal test marker']
    assert detector.detect(text=f'{GTUBE} CONFIDENTIAL-TEST-MARKER') == [
        GTUBE_MESSAGE,
        'Message contains the internal test marker',
    ]


def test_no_content():
    assert RuleDetector().detect() == []
    assert RuleDetector().detect(text='Just a normal message') == []
