import pytest

from rrdseries.errors import (
    FormatError,
    LanguageDisabledError,
    NotCommittedError,
    PartitionExistsError,
    ScriptError,
    StateUninitError,
    TimeseriesError,
    UnknownFormatVersionError,
    ZeroWidthError,
)


@pytest.mark.parametrize(
    ("cls", "message"),
    [
        (FormatError, "Failed to parse format. Data corrupted."),
        (UnknownFormatVersionError, "Unknown version prefix."),
        (PartitionExistsError, "Tried to open a new partition, but it already exists."),
        (NotCommittedError, "Previous tier not committed..."),
    ],
)
def test_default_messages(cls, message):
    assert str(cls()) == message


def test_custom_message_overrides_default():
    assert str(StateUninitError("custom")) == "custom"


def test_language_disabled_reports_language():
    error = LanguageDisabledError("wasm")
    assert error.disabled_language() == "wasm"
    assert str(error) == "Found disabled language integration (wasm)."


@pytest.mark.parametrize(
    "cls", [FormatError, NotCommittedError, StateUninitError, ScriptError]
)
def test_other_errors_report_no_language(cls):
    assert cls().disabled_language() is None


def test_zero_width_is_a_value_error():
    error = ZeroWidthError()
    assert isinstance(error, ValueError)
    assert isinstance(error, TimeseriesError)
    assert str(error) == "Required a non-zero value, got 0."
    assert error.disabled_language() is None


def test_language_error_caught_as_base():
    error = LanguageDisabledError("rune")
    assert isinstance(error, TimeseriesError)
    assert error.disabled_language() == "rune"
    assert str(error) == "Found disabled language integration (rune)."


def test_script_error_message_passes_through():
    assert str(ScriptError("boom")) == "boom"