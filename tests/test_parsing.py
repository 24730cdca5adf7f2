"""Tests for reply sanitizing and parsing."""

import pytest

from psu_lib.errors import InvalidResponse
from psu_lib.parsing import (
    adjust_setpoint,
    make_sanitizer,
    parse_float_reply,
    parse_measurement,
    parse_number,
    parse_output_state,
    strip_glyphs,
)


def test_parse_two_field_measurement() -> None:
    m = parse_measurement("5.0000,0.2500")
    assert m.voltage == 5.0
    assert m.current == 0.25
    assert m.extra == ()
    assert m.power == pytest.approx(1.25)


def test_parse_measurement_with_extra_fields() -> None:
    """Fields beyond voltage and current are kept in order."""
    m = parse_measurement("12.000, 0.500, 6.000")
    assert (m.voltage, m.current) == (12.0, 0.5)
    assert m.extra == (6.0,)


@pytest.mark.parametrize("raw", ["\u00ab5.0,1.0", "5.0,1.0\u00ab", "\ufffd5.0,1.0", " 5.0 , 1.0 "])
def test_stray_glyphs_stripped(raw) -> None:
    """Known framing noise never reaches float()."""
    m = parse_measurement(raw)
    assert (m.voltage, m.current) == (5.0, 1.0)


@pytest.mark.parametrize("raw", ["", "5.0", "\u00ab", "abc,def", "5.0,,1.0"])
def test_parse_measurement_mismatch(raw) -> None:
    with pytest.raises(InvalidResponse):
        parse_measurement(raw)


def test_custom_sanitizer() -> None:
    """Sanitization is pluggable per device."""
    sanitizer = make_sanitizer(["#", ">"])

    m = parse_measurement("#>3.30,0.010", sanitizer)
    assert (m.voltage, m.current) == (3.3, 0.01)

    # The default glyph is not stripped by this sanitizer
    with pytest.raises(InvalidResponse):
        parse_measurement("\u00ab3.30,0.010", sanitizer)


def test_strip_glyphs_trims() -> None:
    assert strip_glyphs("  \u00abOK\u00ab  ") == "OK"


def test_parse_float_reply() -> None:
    assert parse_float_reply("12.345") == 12.345
    assert parse_float_reply("\u00ab0.100") == 0.1
    with pytest.raises(InvalidResponse):
        parse_float_reply("ERR")


@pytest.mark.parametrize(
    "raw,expected",
    [("1", True), ("0", False), ("ON", True), ("off", False), (" 1 ", True)],
)
def test_parse_output_state(raw, expected) -> None:
    assert parse_output_state(raw) is expected


def test_parse_output_state_unknown() -> None:
    with pytest.raises(InvalidResponse):
        parse_output_state("2")


@pytest.mark.parametrize(
    "text,expected",
    [("5", 5.0), (" 3.30 ", 3.3), ("", 0.0), ("abc", 0.0), ("1e-3", 0.001)],
)
def test_parse_number_falls_back_to_zero(text, expected) -> None:
    assert parse_number(text) == expected


def test_adjust_setpoint() -> None:
    assert adjust_setpoint("5.00", 0.1, 2) == "5.10"
    assert adjust_setpoint("0.500", -0.01, 3) == "0.490"


def test_adjust_setpoint_clamps_at_zero() -> None:
    assert adjust_setpoint("0.05", -1.0, 2) == "0.00"


def test_adjust_setpoint_malformed_text() -> None:
    assert adjust_setpoint("volts", 0.5, 3) == "0.500"
