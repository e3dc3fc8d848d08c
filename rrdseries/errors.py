"""Exceptions raised by the timeseries store."""

from __future__ import annotations


class TimeseriesError(Exception):
    """Base class of every error the package raises."""

    default_message = "Timeseries operation failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(self.default_message if message is None else message)

    def disabled_language(self) -> str | None:
        """Name of the disabled language integration this error is about, if any."""
        return None


class ZeroWidthError(TimeseriesError, ValueError):
    """A width or interval that must be non-zero was zero."""

    default_message = "Required a non-zero value, got 0."


class StateUninitError(TimeseriesError):
    """A handler ran without the state it operates on."""

    default_message = "Tried to execute a handler but the state is not initialized."


class PartitionExistsError(TimeseriesError):
    """A new partition was requested under a name that is taken."""

    default_message = "Tried to open a new partition, but it already exists."


class NotCommittedError(TimeseriesError):
    """The previous tier has not been committed yet."""

    default_message = "Previous tier not committed..."


class FormatError(TimeseriesError):
    """Stored bytes could not be parsed or values could not be encoded."""

    default_message = "Failed to parse format. Data corrupted."


class UnknownFormatVersionError(TimeseriesError):
    """Stored bytes carry a version prefix this package does not know."""

    default_message = "Unknown version prefix."


class LanguageDisabledError(TimeseriesError):
    """Stored metadata refers to a language integration that is unavailable."""

    def __init__(self, language: str) -> None:
        self.language = language
        super().__init__(f"Found disabled language integration ({language}).")

    def disabled_language(self) -> str | None:
        return self.language


class ScriptError(TimeseriesError):
    """A collection script could not be resolved or failed while running."""

    default_message = "Script execution failed."