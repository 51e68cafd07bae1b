import pytest

from flapburn.core.utils.units import (
    format_native,
    format_whole_tokens,
    parse_token_amount,
    parse_wei_string,
)

E18 = 10**18


@pytest.mark.parametrize(
    "value,expected",
    [
        ("123", 123),
        (" 42 ", 42),
        (7, 7),
        ("1000000000000000000000000000000", 10**30),
        (None, 0),
        ("", 0),
        ("abc", 0),
        ("1.5", 0),
        ("-5", 0),
        (-5, 0),
        (True, 0),
        ("²", 0),
        ({"x": 1}, 0),
    ],
)
def test_parse_wei_string_is_total(value, expected):
    assert parse_wei_string(value) == expected


@pytest.mark.parametrize(
    "value,expected",
    [
        (0, "0"),
        (None, "0"),
        (E18, "1"),
        (3 * E18 // 2, "1.5"),
        (12_345_678 * 10**12, "12.3456"),
        (1_234_567 * 10**9, "0.001234"),
        (10**16, "0.01"),
        (1, "0"),
    ],
)
def test_format_native(value, expected):
    assert format_native(value) == expected


def test_format_native_custom_digits():
    assert format_native(12_345_678 * 10**12, digits=2) == "12.34"


def test_format_whole_tokens():
    assert format_whole_tokens(5_090 * E18 + E18 // 2) == "5090"
    assert format_whole_tokens(0) == "0"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1.5", 3 * E18 // 2),
        ("100", 100 * E18),
        ("0.000000000000000001", 1),
        ("", 0),
        (None, 0),
        ("abc", 0),
        ("-1", 0),
        ("NaN", 0),
        ("inf", 0),
    ],
)
def test_parse_token_amount(text, expected):
    assert parse_token_amount(text) == expected

