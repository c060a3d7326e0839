from spamscanner.core.homograph import HomographDetector, is_mixed_script, skeleton

detector = HomographDetector()


def test_skeleton_folds_confusables():
    # Cyrillic а р р ӏ е
    assert skeleton('аррӏе') == 'apple'
    assert skeleton('pаypal.com') == 'paypal.com'
    assert skeleton('PÁYPAL') == 'paypal'


def test_mixed_script():
    assert is_mixed_script('pаypal')
    assert not is_mixed_script('paypal')
    assert not is_mixed_script('аррӏе')


def test_punycode_homograph_is_detected():
    hit = detector.check('https://www.xn--80ak6aa92e.com/signin')

    assert hit is not None
    assert hit.brand == 'Apple'
    assert hit.brand_domain == 'apple.com'


def test_mixed_script_label_under_other_suffix():
    hit = detector.check('http://pаypal.net/login')

    assert hit is not None
    assert hit.brand == 'PayPal'


def test_ascii_hosts_are_never_homographs():
    assert detector.check('https://paypal.com/') is None
    assert detector.check('https://paypa1.com/') is None
    assert detector.check('https://www.apple.com/') is None


def test_unrelated_unicode_host():
    assert detector.check('http://bücher.example/') is None


def test_invalid_url():
    assert detector.check('http://') is None


def test_custom_brand_table():
    custom = HomographDetector(brands={'example.com': 'Example Corp'})
    hit = custom.check('http://еxample.com')

    assert hit.brand == 'Example Corp'
    assert custom.check('https://www.xn--80ak6aa92e.com/') is None
