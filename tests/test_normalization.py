"""Query text normalization."""
import pytest

from intent.pipelines.normalization import (
    clean_html,
    normalize_punctuation,
    normalize_query,
    normalize_whitespace,
    remove_control_chars,
    truncate,
)


def test_whitespace():
    assert normalize_whitespace("  paint\n\n the   wall\t") == "paint the wall"


def test_punctuation():
    assert normalize_punctuation("“Help” — it’s leaking!!!") == "\"Help\" - it's leaking!"


def test_html_and_control_chars():
    assert clean_html("<b>fix</b> sink").split() == ["fix", "sink"]
    assert remove_control_chars("a\x00b\x07c") == "a b c"


def test_comparison_signs_are_not_tags():
    text = "outlet <20 ft from panel and >3 ft high"
    assert normalize_query(text) == text
    assert normalize_query("a < b, <p>c</p>") == "a < b, c"


def test_case_is_preserved():
    assert normalize_query("Install 15-Amp Outlet") == "Install 15-Amp Outlet"


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_input(text):
    assert normalize_query(text) == ""


def test_html_only_input_is_blank():
    assert normalize_query("<div> <br/> </div>") == ""


def test_truncate_backs_off_to_word_boundary():
    text = "replace kitchen faucet and fix leaking drain"
    cut = truncate(text, 40)
    assert len(cut) <= 40
    assert text.startswith(cut)
    assert not cut.endswith(" ")
    assert truncate("short", 40) == "short"


def test_normalize_query_applies_limit():
    assert len(normalize_query("word " * 100, max_chars=50)) <= 50
