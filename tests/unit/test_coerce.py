import pytest

from estate_import.common.coerce import collapse_whitespace, parse_bool, parse_float, parse_int, parse_number


@pytest.mark.parametrize(
    "text, expected",
    [
        ("250000", 250000),
        ("250.000", 250000),
        ("250.000 €", 250000),
        ("€ 1.200.000", 1200000),
        ("$1,200,000", 1200000),
        ("1.234,50", 1234.5),
        ("1,234.50", 1234.5),
        ("102,5", 102.5),
        ("  95  ", 95),
        ("850 EUR", 850),
        ("0", 0),
    ],
)
def test_parse_number_strips_symbols_and_separators(text, expected):
    assert parse_number(text) == expected


@pytest.mark.parametrize("text", [None, "", "   ", "n/d", "trattativa riservata", "€", "nan", "inf"])
def test_parse_number_returns_none_for_unparseable(text):
    assert parse_number(text) is None


def test_parse_number_keeps_zero_distinct_from_absent():
    assert parse_number("0,00") == 0
    assert parse_number("0,00") is not None


def test_parse_int_rejects_fractions():
    assert parse_int("3") == 3
    assert parse_int("3,5") is None
    assert parse_int("abc") is None


def test_parse_float():
    assert parse_float("46.0679") == pytest.approx(46.0679)
    assert parse_float("") is None


@pytest.mark.parametrize("text", ["1", "true", "YES", "si", "Sì", "on"])
def test_parse_bool_true_words(text):
    assert parse_bool(text) is True


@pytest.mark.parametrize("text", ["0", "false", "No", "off", "falso"])
def test_parse_bool_false_words(text):
    assert parse_bool(text) is False


@pytest.mark.parametrize("text", [None, "", "forse", "2", "maybe"])
def test_parse_bool_unknown_is_none(text):
    assert parse_bool(text) is None


def test_collapse_whitespace():
    assert collapse_whitespace("  a \n  b\tc ") == "a b c"
    assert collapse_whitespace("   ") is None
    assert collapse_whitespace(None) is None


@pytest.mark.parametrize("text", ["1e5000", "9" * 5000, "1E+20", "-1e400"])
def test_parse_number_treats_absurd_magnitudes_as_absent(text):
    assert parse_number(text) is None
    assert parse_int(text) is None
    assert parse_float(text) is None


def test_parse_number_keeps_large_real_prices():
    assert parse_number("12.500.000.000 €") == 12_500_000_000
