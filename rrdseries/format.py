"""Versioned binary format of keys, partition metadata and series data.

Every stored value starts with a one-byte format version. Bodies use a
compact encoding: unsigned integers as LEB128 varints, signed integers
zigzag-encoded, byte strings and sequences length-prefixed, and enum
variants as a varint index.
"""

from __future__ import annotations

import enum
from collections.abc import Iterator
from dataclasses import dataclass, field
from itertools import chain, islice
from typing import Any, Union

from .errors import (
    FormatError,
    LanguageDisabledError,
    UnknownFormatVersionError,
    ZeroWidthError,
)
from .timecell import cell_index, timestamp_bucket

FORMAT_VERSION = 0
NEVER_COMMITTED = -(2**63)

_U16_LIMIT = 1 << 16
_U64_LIMIT = 1 << 64
_I64_MAX = (1 << 63) - 1

_SINGLE_SCRIPT = "single_script"
_TIERED_SCRIPT = "tiered_script"
_DISABLED_VARIANTS = {"single_wasm": "wasm", "tiered_wasm": "wasm"}


def _require_nonzero_u16(value: int, what: str) -> None:
    if value == 0:
        raise ZeroWidthError()
    if not 0 < value < _U16_LIMIT:
        raise ValueError(f"{what} out of range: {value}")


class CellKind(enum.IntEnum):
    """The kinds of value a cell can hold, in wire order."""

    EMPTY = 0
    U64 = 1
    PERCENT = 2
    TEXT = 3
    CUSTOM = 4


@dataclass(frozen=True)
class DataCell:
    """A single value stored in a round-robin cell."""

    kind: CellKind
    value: Any = None

    def __post_init__(self) -> None:
        kind = CellKind(self.kind)
        object.__setattr__(self, "kind", kind)
        value = self.value
        if kind is CellKind.EMPTY:
            if value is not None:
                raise ValueError("an empty cell holds no value")
        elif kind in (CellKind.U64, CellKind.PERCENT):
            limit = _U64_LIMIT if kind is CellKind.U64 else 256
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"{kind.name} cell needs an int")
            if not 0 <= value < limit:
                raise ValueError(f"{kind.name} cell value out of range: {value}")
        elif kind is CellKind.TEXT:
            if not isinstance(value, str):
                raise TypeError("TEXT cell needs a str")
        else:
            if not isinstance(value, (bytes, bytearray, memoryview)):
                raise TypeError("CUSTOM cell needs bytes")
            object.__setattr__(self, "value", bytes(value))

    @staticmethod
    def empty() -> DataCell:
        return _EMPTY

    @staticmethod
    def u64(value: int) -> DataCell:
        return DataCell(CellKind.U64, value)

    @staticmethod
    def percent(value: int) -> DataCell:
        return DataCell(CellKind.PERCENT, value)

    @staticmethod
    def text(value: str) -> DataCell:
        return DataCell(CellKind.TEXT, value)

    @staticmethod
    def custom(data: bytes) -> DataCell:
        return DataCell(CellKind.CUSTOM, data)

    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY


_EMPTY = DataCell(CellKind.EMPTY)


@dataclass(frozen=True)
class SingleKey:
    """Points to the data of one item in a single round-robin partition."""

    inner_key: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "inner_key", bytes(self.inner_key))


@dataclass(frozen=True)
class TieredKey:
    """Points to one tier of an item in a tiered partition."""

    inner_key: bytes
    nth_tier: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "inner_key", bytes(self.inner_key))


@dataclass(frozen=True)
class SingleScriptMetadata:
    """Layout and collection script of a single round-robin partition."""

    width: int
    interval: int
    script: str

    def __post_init__(self) -> None:
        _require_nonzero_u16(self.width, "width")
        _require_nonzero_u16(self.interval, "interval")


@dataclass(frozen=True)
class TieredScriptMetadata:
    """Collection script of a tiered partition."""

    script: str


@dataclass
class SingleData:
    """Round-robin cells of one item plus the state around them."""

    last_timestamp: int
    custom_data: DataCell
    data: list[DataCell]
    dirty: bool = field(default=False, compare=False)

    @staticmethod
    def new_empty(width: int) -> SingleData:
        _require_nonzero_u16(width, "width")
        return SingleData(NEVER_COMMITTED, _EMPTY, [_EMPTY] * width, dirty=True)

    def pristine(self) -> bool:
        """True when the item was never committed and has not been touched."""
        return self.last_timestamp == NEVER_COMMITTED and not self.dirty


def _backwards(idx: int, length: int) -> Iterator[int]:
    """Indices from ``idx`` down to 0, then from the end down to ``idx + 1``."""
    return chain(range(idx, -1, -1), range(length - 1, idx, -1))


@dataclass
class TieredData:
    """Round-robin cells of one tier of an item."""

    last_timestamp: int
    custom_data: DataCell
    width: int
    interval: int
    data: list[DataCell]
    dirty: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        _require_nonzero_u16(self.width, "width")
        _require_nonzero_u16(self.interval, "interval")

    @staticmethod
    def new_empty(width: int, interval: int) -> TieredData:
        _require_nonzero_u16(width, "width")
        _require_nonzero_u16(interval, "interval")
        return TieredData(
            NEVER_COMMITTED, _EMPTY, width, interval, [_EMPTY] * width, dirty=True
        )

    def pristine(self) -> bool:
        return self.last_timestamp == NEVER_COMMITTED

    def _total_interval(self, cumulative_interval: int) -> int:
        if cumulative_interval == 0:
            return self.interval
        return cumulative_interval * self.interval

    def _walk(self, timestamp: int, cumulative_interval: int) -> Iterator[int]:
        total = self._total_interval(cumulative_interval)
        idx = cell_index(self.data, timestamp, total)
        return _backwards(idx, len(self.data))

    def look_back(
        self, timestamp: int, cumulative_interval: int, how_far: int
    ) -> list[DataCell]:
        """Cells from the current one backwards, at most ``how_far`` of them."""
        count = min(how_far, self.width)
        walk = self._walk(timestamp, cumulative_interval)
        return [self.data[i] for i in islice(walk, count)]

    def write_multi_back(
        self, timestamp: int, cumulative_interval: int, back: int, metric: DataCell
    ) -> None:
        """Write ``metric`` into the current cell and ``back`` cells before it."""
        for i in islice(self._walk(timestamp, cumulative_interval), back + 1):
            self.data[i] = metric
        self.dirty = True

    def clear_misses(self, timestamp: int, cumulative_interval: int) -> None:
        """Empty the cells of buckets skipped since the last commit."""
        if self.pristine():
            return
        total = self._total_interval(cumulative_interval)
        current_bucket = timestamp_bucket(timestamp, total)
        previous_bucket = timestamp_bucket(self.last_timestamp, total)
        offset = max(0, min(current_bucket - previous_bucket, self.width))

        changed = False
        for i in islice(self._walk(timestamp, cumulative_interval), offset):
            if not self.data[i].is_empty():
                self.data[i] = _EMPTY
                changed = True
        self.dirty = self.dirty or changed


Key = Union[SingleKey, TieredKey]
Metadata = Union[SingleScriptMetadata, TieredScriptMetadata]
SeriesData = Union[SingleData, TieredData]


# --- writing -----------------------------------------------------------------


def _put_varint(out: bytearray, value: int) -> None:
    if value < 0:
        raise FormatError()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return


def _put_u16(out: bytearray, value: int) -> None:
    if not 0 <= value < _U16_LIMIT:
        raise FormatError()
    _put_varint(out, value)


def _put_i64(out: bytearray, value: int) -> None:
    if not NEVER_COMMITTED <= value <= _I64_MAX:
        raise FormatError()
    _put_varint(out, value << 1 if value >= 0 else ((-value) << 1) - 1)


def _put_blob(out: bytearray, data: bytes) -> None:
    _put_varint(out, len(data))
    out.extend(data)


def _put_str(out: bytearray, text: str) -> None:
    _put_blob(out, text.encode("utf-8"))


def _put_cell(out: bytearray, cell: DataCell) -> None:
    _put_varint(out, int(cell.kind))
    if cell.kind is CellKind.U64:
        _put_varint(out, cell.value)
    elif cell.kind is CellKind.PERCENT:
        out.append(cell.value)
    elif cell.kind is CellKind.TEXT:
        _put_str(out, cell.value)
    elif cell.kind is CellKind.CUSTOM:
        _put_blob(out, cell.value)


def _put_cells(out: bytearray, cells: list[DataCell]) -> None:
    _put_varint(out, len(cells))
    for cell in cells:
        _put_cell(out, cell)


# --- reading -----------------------------------------------------------------


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def byte(self) -> int:
        if self._pos >= len(self._data):
            raise FormatError()
        value = self._data[self._pos]
        self._pos += 1
        return value

    def take(self, length: int) -> bytes:
        end = self._pos + length
        if end > len(self._data):
            raise FormatError()
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def varint(self, bits: int) -> int:
        value = 0
        for shift in range(0, 7 * ((bits + 6) // 7), 7):
            byte = self.byte()
            value |= (byte & 0x7F) << shift
            if not byte & 0x80:
                if value >> bits:
                    raise FormatError()
                return value
        raise FormatError()

    def u16(self) -> int:
        return self.varint(16)

    def nonzero_u16(self) -> int:
        value = self.u16()
        if value == 0:
            raise FormatError()
        return value

    def i64(self) -> int:
        zigzag = self.varint(64)
        return (zigzag >> 1) ^ -(zigzag & 1)

    def blob(self) -> bytes:
        return self.take(self.varint(64))

    def text(self) -> str:
        try:
            return self.blob().decode("utf-8")
        except UnicodeDecodeError:
            raise FormatError() from None

    def cell(self) -> DataCell:
        try:
            kind = CellKind(self.varint(32))
        except ValueError:
            raise FormatError() from None
        if kind is CellKind.EMPTY:
            return _EMPTY
        if kind is CellKind.U64:
            return DataCell(kind, self.varint(64))
        if kind is CellKind.PERCENT:
            return DataCell(kind, self.byte())
        if kind is CellKind.TEXT:
            return DataCell(kind, self.text())
        return DataCell(kind, self.blob())

    def cells(self) -> list[DataCell]:
        return [self.cell() for _ in range(self.varint(64))]


def _versioned_body(data: bytes) -> _Reader:
    if len(data) < 1:
        raise FormatError()
    if data[0] != FORMAT_VERSION:
        raise UnknownFormatVersionError()
    return _Reader(data[1:])


# --- public codecs -----------------------------------------------------------


def encode_key(key: Key) -> bytes:
    """Encode a partition key; tiers of one item sort together by tier."""
    out = bytearray([FORMAT_VERSION])
    if isinstance(key, TieredKey):
        _put_varint(out, 0)
        _put_blob(out, key.inner_key)
        _put_u16(out, key.nth_tier)
    elif isinstance(key, SingleKey):
        _put_varint(out, 1)
        _put_blob(out, key.inner_key)
    else:
        raise TypeError(f"not a key: {key!r}")
    return bytes(out)


def decode_key(data: bytes) -> Key:
    reader = _versioned_body(data)
    tag = reader.varint(32)
    if tag == 0:
        inner = reader.blob()
        return TieredKey(inner, reader.u16())
    if tag == 1:
        return SingleKey(reader.blob())
    raise FormatError()


def encode_metadata(metadata: Metadata) -> bytes:
    """Encode partition metadata, tagged with its variant name."""
    body = bytearray()
    if isinstance(metadata, SingleScriptMetadata):
        name = _SINGLE_SCRIPT
        _put_u16(body, metadata.width)
        _put_u16(body, metadata.interval)
        _put_str(body, metadata.script)
    elif isinstance(metadata, TieredScriptMetadata):
        name = _TIERED_SCRIPT
        _put_str(body, metadata.script)
    else:
        raise TypeError(f"not partition metadata: {metadata!r}")
    encoded_name = name.encode("utf-8")
    return bytes([FORMAT_VERSION, len(encoded_name)]) + encoded_name + bytes(body)


def decode_metadata(data: bytes) -> Metadata:
    if len(data) < 1:
        raise FormatError()
    if data[0] != FORMAT_VERSION:
        raise UnknownFormatVersionError()
    if len(data) < 2:
        raise FormatError()
    name_length = data[1]
    raw_name = data[2 : 2 + name_length]
    if len(raw_name) < name_length:
        raise FormatError()
    try:
        name = bytes(raw_name).decode("utf-8")
    except UnicodeDecodeError:
        raise FormatError() from None

    reader = _Reader(data[2 + name_length :])
    if name == _SINGLE_SCRIPT:
        width = reader.nonzero_u16()
        interval = reader.nonzero_u16()
        return SingleScriptMetadata(width, interval, reader.text())
    if name == _TIERED_SCRIPT:
        return TieredScriptMetadata(reader.text())
    if name in _DISABLED_VARIANTS:
        raise LanguageDisabledError(_DISABLED_VARIANTS[name])
    raise FormatError()


def encode_series(series: SeriesData) -> bytes:
    """Encode an item's data; the dirty flag is not stored."""
    out = bytearray([FORMAT_VERSION])
    if isinstance(series, SingleData):
        _put_varint(out, 0)
        _put_i64(out, series.last_timestamp)
        _put_cell(out, series.custom_data)
        _put_cells(out, series.data)
    elif isinstance(series, TieredData):
        _put_varint(out, 1)
        _put_i64(out, series.last_timestamp)
        _put_cell(out, series.custom_data)
        _put_u16(out, series.width)
        _put_u16(out, series.interval)
        _put_cells(out, series.data)
    else:
        raise TypeError(f"not series data: {series!r}")
    return bytes(out)


def decode_series(data: bytes) -> SeriesData:
    reader = _versioned_body(data)
    tag = reader.varint(32)
    if tag == 0:
        last_timestamp = reader.i64()
        custom = reader.cell()
        return SingleData(last_timestamp, custom, reader.cells())
    if tag == 1:
        last_timestamp = reader.i64()
        custom = reader.cell()
        width = reader.nonzero_u16()
        interval = reader.nonzero_u16()
        return TieredData(last_timestamp, custom, width, interval, reader.cells())
    raise FormatError()