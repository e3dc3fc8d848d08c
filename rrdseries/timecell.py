"""Mapping of timestamps onto cells of a round-robin collection."""

from __future__ import annotations

from collections.abc import MutableSequence, Sequence
from typing import Any, TypeVar

from .errors import ZeroWidthError

T = TypeVar("T")

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFF_FFFF


def _check_interval(interval: int) -> None:
    if interval == 0:
        raise ZeroWidthError()
    if not 0 < interval <= _U32_MAX:
        raise ValueError(f"interval out of range: {interval}")


def _check_width(width: int) -> None:
    if width == 0:
        raise ZeroWidthError()
    if not 0 < width <= _U16_MAX:
        raise ValueError(f"collection width out of range: {width}")


def timestamp_bucket(timestamp: int, interval: int) -> int:
    """Return which bucket of ``interval`` seconds the timestamp falls into.

    Timestamps 0..14 fall into bucket 0 for an interval of 15, and 15 starts
    bucket 1. Negative timestamps are truncated towards zero.
    """
    _check_interval(interval)
    bucket = abs(timestamp) // interval
    return bucket if timestamp >= 0 else -bucket


def stamp_cell(timestamp: int, width: int, interval: int) -> int:
    """Return the cell index for a timestamp in a collection of ``width`` cells."""
    _check_width(width)
    return abs(timestamp_bucket(timestamp, interval)) % width


def cell_index(cells: Sequence[Any], timestamp: int, interval: int) -> int:
    """Return the index of the cell of ``cells`` that the timestamp maps to."""
    return stamp_cell(timestamp, len(cells), interval)


def get_cell(cells: Sequence[T], timestamp: int, interval: int) -> T:
    """Return the cell of ``cells`` that the timestamp maps to."""
    return cells[cell_index(cells, timestamp, interval)]


def set_cell(cells: MutableSequence[T], timestamp: int, interval: int, value: T) -> None:
    """Replace the cell of ``cells`` that the timestamp maps to."""
    cells[cell_index(cells, timestamp, interval)] = value