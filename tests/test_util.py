import sys
from unittest import mock

import pytest

from geminid.util import NumberError, parse_portno, program_name, strtonum


def test_strtonum_parses_in_range():
    assert strtonum("42", 0, 100) == int("42")
    assert strtonum("+5", 0, 10) == int("5")
    assert strtonum("-3", -10, 10) == int("-3")


def test_strtonum_accepts_leading_whitespace():
    assert strtonum(" \t7", 0, 10) == int("7")


@pytest.mark.parametrize("text", ["", "abc", "7 ", "1.5", "0x10", "--1", " "])
def test_strtonum_invalid(text):
    with pytest.raises(NumberError) as info:
        strtonum(text, 0, 100)
    assert info.value.reason == "invalid"


def test_strtonum_bounds_are_inclusive():
    assert strtonum("0", 0, 5) == 0
    assert strtonum("5", 0, 5) == int("5")


def test_strtonum_too_small():
    with pytest.raises(NumberError) as info:
        strtonum("-1", 0, 5)
    assert info.value.reason == "too small"


def test_strtonum_too_large():
    with pytest.raises(NumberError) as info:
        strtonum("6", 0, 5)
    assert info.value.reason == "too large"


def test_strtonum_overflow_is_too_large():
    with pytest.raises(NumberError) as info:
        strtonum("99999999999999999999999", -(2**63), 2**63 - 1)
    assert info.value.reason == "too large"


def test_strtonum_min_above_max_is_invalid():
    with pytest.raises(NumberError) as info:
        strtonum("3", 10, 1)
    assert info.value.reason == "invalid"


def test_number_error_is_value_error():
    with pytest.raises(ValueError):
        strtonum("x", 0, 1)


def test_parse_portno():
    assert parse_portno("1965") == 1965
    assert parse_portno("65535") == 0xFFFF


@pytest.mark.parametrize(
    "text, reason",
    [("65536", "too large"), ("-1", "too small"), ("http", "invalid")],
)
def test_parse_portno_errors(text, reason):
    with pytest.raises(NumberError) as info:
        parse_portno(text)
    assert info.value.reason == reason
    assert str(info.value) == f"port number is {reason}: {text}"


def test_program_name_uses_argv():
    with mock.patch.object(sys, "argv", ["/usr/local/bin/myserver", "-f"]):
        assert program_name() == "myserver"


def test_program_name_fallback():
    with mock.patch.object(sys, "argv", []):
        assert program_name() == "geminid"