import pytest

from po_translate_openai import (
    DEFAULT_CONFIG,
    check_translation,
    escape_po,
    reject_known_bad,
    reject_too_long,
    reject_unencodable,
    reject_wrong_language,
    unescape_po,
)


@pytest.mark.parametrize("candidate", ["", " ", "\t", "翻译失败", "  翻译失败\n"])
def test_known_bad_outputs(candidate):
    assert reject_known_bad("Cat", candidate, DEFAULT_CONFIG) == "known_bad"


def test_known_bad_accepts_real_translation():
    assert reject_known_bad("Cat", "Gato", DEFAULT_CONFIG) is None


def test_known_bad_list_comes_from_config():
    config = dict(DEFAULT_CONFIG, known_bad_outputs=["N/A"])
    assert reject_known_bad("Cat", "N/A", config) == "known_bad"
    assert reject_known_bad("Cat", "翻译失败", config) is None


def test_too_long():
    assert reject_too_long("abc", "x" * 12, DEFAULT_CONFIG) is None
    assert reject_too_long("abc", "x" * 13, DEFAULT_CONFIG) == "too_long"


def test_first_failing_check_wins():
    checks = [
        lambda source, candidate, config: None,
        lambda source, candidate, config: "first",
        lambda source, candidate, config: "second",
    ]
    assert check_translation("Cat", "Gato", DEFAULT_CONFIG, checks) == "first"


def test_known_bad_checked_before_length():
    # too long for "a" as well, but the known-bad check runs first
    assert check_translation("a", "翻译失败", dict(DEFAULT_CONFIG, max_length_ratio=1)) == "known_bad"


def test_wrong_language_is_off_by_default():
    config = dict(DEFAULT_CONFIG, target_language="de")
    candidate = "The quick brown fox jumps over the lazy dog near the river bank."
    assert reject_wrong_language("Fox", candidate, config) is None


def test_wrong_language_when_enabled():
    config = dict(DEFAULT_CONFIG, target_language="de", check_target_language=True)
    english = "The weather is really nice today and we are going to the beach together."
    german = "Das Wetter ist heute wirklich schön und wir gehen zusammen an den Strand."

    assert reject_wrong_language("x", english, config) == "wrong_language"
    assert reject_wrong_language("x", german, config) is None


def test_wrong_language_ignores_short_replies():
    config = dict(DEFAULT_CONFIG, target_language="de", check_target_language=True)
    assert reject_wrong_language("OK", "OK", config) is None


def test_escape_po():
    assert escape_po('Say "hi"\n\tC:\\dir') == 'Say \\"hi\\"\\n\\tC:\\\\dir'
    assert escape_po("") == ""


def test_unescape_po():
    assert unescape_po('Say \\"hi\\"\\n\\tC:\\\\dir') == 'Say "hi"\n\tC:\\dir'
    assert unescape_po("100%") == "100%"
    assert unescape_po("") == ""


def test_unencodable_reply():
    config = dict(DEFAULT_CONFIG, output_encoding="latin-1")
    assert reject_unencodable("Coffee", "咖啡", config) == "unencodable"
    assert reject_unencodable("Coffee", "Café", config) is None


def test_unencodable_needs_known_encoding():
    assert reject_unencodable("Coffee", "咖啡", DEFAULT_CONFIG) is None
