"""Single round-robin partitions driven by a registered collection script."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator

from .errors import PartitionExistsError, ScriptError, TimeseriesError
from .format import (
    DataCell,
    SingleData,
    SingleKey,
    SingleScriptMetadata,
    decode_series,
    encode_key,
    encode_metadata,
    encode_series,
)
from .scripting import Handler, ScriptRegistry
from .store import KeyLike, Keyspace, Partition, _as_bytes
from .timecell import cell_index, set_cell, timestamp_bucket


def _walk_back(idx: int, length: int) -> Iterator[int]:
    """Indices from ``idx`` down to 0, then from the end down to ``idx + 1``."""
    yield from range(idx, -1, -1)
    yield from range(length - 1, idx, -1)


class SingleContext:
    """What a collection script sees while handling one insert."""

    def __init__(
        self,
        *,
        partition_name: str,
        inner_key: bytes,
        metadata: SingleScriptMetadata,
        data: SingleData,
        timestamp: int,
        metric: DataCell,
    ) -> None:
        self._partition_name = partition_name
        self.inner_key = inner_key
        self._metadata = metadata
        self.data = data
        self.timestamp = timestamp
        self._metric = metric

    def _current_index(self) -> int:
        return cell_index(self.data.data, self.timestamp, self._metadata.interval)

    def _bucket_gap(self) -> int:
        interval = self._metadata.interval
        current = timestamp_bucket(self.timestamp, interval)
        previous = timestamp_bucket(self.data.last_timestamp, interval)
        return max(0, min(current - previous, self.width()))

    def width(self) -> int:
        return self._metadata.width

    def interval(self) -> int:
        return self._metadata.interval

    def missed(self) -> int:
        """Number of buckets skipped since the last commit."""
        if self.pristine():
            return 0
        return max(0, self._bucket_gap() - 1)

    def metric(self) -> DataCell:
        return self._metric

    def pristine(self) -> bool:
        return self.data.pristine()

    def write_metric(self, metric: DataCell) -> None:
        """Write ``metric`` into the cell of the current bucket."""
        set_cell(self.data.data, self.timestamp, self._metadata.interval, metric)
        self.data.dirty = True

    def write_multi_metric(self, back: int, metric: DataCell) -> None:
        """Overwrite the non-empty cells among the ``back`` most recent ones."""
        cells = self.data.data
        for _, i in zip(range(back), _walk_back(self._current_index(), len(cells))):
            if not cells[i].is_empty():
                cells[i] = metric
        self.data.dirty = True

    def write_custom(self, custom: DataCell) -> None:
        self.data.custom_data = custom
        self.data.dirty = True

    def get_custom(self) -> DataCell:
        return self.data.custom_data

    def clear_misses(self) -> None:
        """Empty the cells between the last modified cell and the current one."""
        if self.pristine():
            return
        cells = self.data.data
        changed = False
        offset = self._bucket_gap()
        for _, i in zip(range(offset), _walk_back(self._current_index(), len(cells))):
            if not cells[i].is_empty():
                cells[i] = DataCell.empty()
                changed = True
        self.data.dirty = self.data.dirty or changed

    def partition_name(self) -> str:
        return self._partition_name

    def look_back(self, n_cells: int) -> list[DataCell]:
        """Cells from the current one backwards, at most ``n_cells`` of them."""
        count = min(n_cells, self.width())
        cells = self.data.data
        return [
            cells[i]
            for _, i in zip(range(count), _walk_back(self._current_index(), len(cells)))
        ]


class SinglePartition:
    """A partition holding one round-robin collection per key."""

    def __init__(
        self,
        name: str,
        partition: Partition,
        metadata: SingleScriptMetadata,
        scripts: ScriptRegistry,
    ) -> None:
        self.name = name
        self.partition = partition
        self.metadata = metadata
        self._scripts = scripts
        self._lock = threading.Lock()
        self._handler: Handler = scripts.resolve(metadata.script)

    @classmethod
    def open_new(
        cls,
        keyspace: Keyspace,
        meta: Partition,
        scripts: ScriptRegistry,
        name: str,
        width: int,
        interval: int,
        script: str,
    ) -> SinglePartition:
        """Create a partition and record its metadata in ``meta``."""
        if meta.get(name) is not None:
            raise PartitionExistsError()
        metadata = SingleScriptMetadata(width, interval, script)
        partition = keyspace.open_partition(name)
        created = cls(name, partition, metadata, scripts)
        meta.insert(name, encode_metadata(metadata))
        return created

    def update_script(self, script: str) -> None:
        """Switch to the handler registered under ``script``."""
        handler = self._scripts.resolve(script)
        with self._lock:
            self._handler = handler

    def _load(self, encoded_key: bytes) -> SingleData:
        stored = self.partition.get(encoded_key)
        if stored is not None:
            data = decode_series(stored)
            if isinstance(data, SingleData):
                return data
        return SingleData.new_empty(self.metadata.width)

    def insert_metric(
        self, key: KeyLike, metric: DataCell, timestamp: int | None = None
    ) -> None:
        """Run the collection script for ``metric`` and store the result.

        ``timestamp`` defaults to the current time in whole seconds.
        """
        user_key = _as_bytes(key)
        encoded_key = encode_key(SingleKey(user_key))
        data = self._load(encoded_key)
        if timestamp is None:
            timestamp = int(time.time())

        context = SingleContext(
            partition_name=self.name,
            inner_key=user_key,
            metadata=self.metadata,
            data=data,
            timestamp=timestamp,
            metric=metric,
        )
        with self._lock:
            handler = self._handler
        try:
            handler(context)
        except TimeseriesError:
            raise
        except Exception as exc:
            raise ScriptError(f"Script {self.metadata.script!r} failed: {exc}") from exc

        if data.dirty:
            data.last_timestamp = timestamp
            self.partition.insert(encoded_key, encode_series(data))