"""Tiered round-robin partitions driven by a registered collection script."""

from __future__ import annotations

import threading
import time

from .errors import PartitionExistsError, ScriptError, TimeseriesError
from .format import (
    DataCell,
    TieredData,
    TieredKey,
    TieredScriptMetadata,
    decode_key,
    decode_series,
    encode_key,
    encode_metadata,
    encode_series,
)
from .scripting import Handler, ScriptRegistry
from .store import KeyLike, Keyspace, Partition, _as_bytes
from .timecell import set_cell, timestamp_bucket


def _total_interval(cumulative_interval: int, tier: TieredData) -> int:
    if cumulative_interval == 0:
        return tier.interval
    return cumulative_interval * tier.interval


class TieredContext:
    """What a collection script sees while handling one tier of an insert.

    ``nth_tier`` is ``None`` when the item has no tiers yet; the script is then
    expected to create them with :meth:`create_tier`.
    """

    def __init__(
        self,
        *,
        partition_name: str,
        inner_key: bytes,
        tiers: list[TieredData],
        nth_tier: int | None,
        timestamp: int,
        cumulative_interval: int,
        metric: DataCell,
    ) -> None:
        self._partition_name = partition_name
        self.inner_key = inner_key
        self.tiers = tiers
        self.nth_tier = nth_tier
        self._timestamp = timestamp
        self.cumulative_interval = cumulative_interval
        self._metric = metric

    def _current(self) -> TieredData | None:
        if self.nth_tier is None or not 0 <= self.nth_tier < len(self.tiers):
            return None
        return self.tiers[self.nth_tier]

    def _previous(self) -> TieredData | None:
        if self.nth_tier is None or self.nth_tier < 1:
            return None
        index = self.nth_tier - 1
        return self.tiers[index] if index < len(self.tiers) else None

    def empty(self) -> bool:
        """True when the item has no tiers to handle."""
        return self.nth_tier is None

    def metric(self) -> DataCell:
        return self._metric

    def missed(self) -> int | None:
        """Buckets skipped in the current tier since its last write."""
        tier = self._current()
        if tier is None:
            return None
        if tier.pristine():
            return 0
        total = _total_interval(self.cumulative_interval, tier)
        current = timestamp_bucket(self._timestamp, total)
        previous = timestamp_bucket(tier.last_timestamp, total)
        gap = max(0, min(current - previous, tier.width))
        return max(0, gap - 1)

    def write_custom_current(self, data: DataCell) -> None:
        tier = self._current()
        if tier is None:
            return
        tier.custom_data = data
        tier.dirty = True
        tier.last_timestamp = self._timestamp

    def get_custom_current(self) -> DataCell | None:
        tier = self._current()
        return None if tier is None else tier.custom_data

    def current_width(self) -> int:
        tier = self._current()
        return 0 if tier is None else tier.width

    def current_interval(self) -> int:
        tier = self._current()
        return 0 if tier is None else tier.interval

    def write_metric(self, metric: DataCell) -> None:
        """Write ``metric`` into the current tier's cell for this timestamp."""
        tier = self._current()
        if tier is None:
            return
        total = _total_interval(self.cumulative_interval, tier)
        set_cell(tier.data, self._timestamp, total, metric)
        tier.dirty = True
        tier.last_timestamp = self._timestamp

    def create_tier(self, width: int, interval: int) -> None:
        """Append a new, empty tier; raises ``ZeroWidthError`` on a zero value."""
        self.tiers.append(TieredData.new_empty(width, interval))

    def clear_misses(self) -> None:
        tier = self._current()
        if tier is None:
            return
        tier.clear_misses(self._timestamp, self.cumulative_interval)

    def timestamp(self) -> int:
        """Timestamp of the insert being handled."""
        return self._timestamp

    def partition_name(self) -> str:
        return self._partition_name

    def look_back_previous(self, n_cells: int) -> list[DataCell] | None:
        """The last ``n_cells`` cells of the previous tier, or ``None`` on tier 0."""
        previous = self._previous()
        if previous is None:
            return None
        cumulative = self.cumulative_interval
        if cumulative == 0 or cumulative == previous.interval:
            cumulative = 0
        else:
            cumulative //= previous.interval
        return previous.look_back(self._timestamp, cumulative, n_cells)

    def look_back_current(self, n_cells: int) -> list[DataCell] | None:
        """The last ``n_cells`` cells of the current tier."""
        tier = self._current()
        if tier is None:
            return None
        return tier.look_back(self._timestamp, self.cumulative_interval, n_cells)


class TieredPartition:
    """A partition holding a stack of round-robin tiers per key."""

    def __init__(
        self,
        name: str,
        partition: Partition,
        metadata: TieredScriptMetadata,
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
        script: str,
    ) -> TieredPartition:
        """Create a partition and record its metadata in ``meta``."""
        if meta.get(name) is not None:
            raise PartitionExistsError()
        metadata = TieredScriptMetadata(script)
        partition = keyspace.open_partition(name)
        created = cls(name, partition, metadata, scripts)
        meta.insert(name, encode_metadata(metadata))
        return created

    def update_script(self, script: str) -> None:
        """Switch to the handler registered under ``script``."""
        handler = self._scripts.resolve(script)
        with self._lock:
            self._handler = handler

    def _load(self, user_key: bytes) -> list[TieredData]:
        start = encode_key(TieredKey(user_key, 0))
        tiers: list[TieredData] = []
        for raw_key, raw_value in self.partition.range_from(start):
            key = decode_key(raw_key)
            series = decode_series(raw_value)
            if not (isinstance(key, TieredKey) and key.inner_key == user_key):
                break
            if isinstance(series, TieredData):
                tiers.append(series)
        return tiers

    def _run(self, handler: Handler, context: TieredContext) -> None:
        try:
            handler(context)
        except TimeseriesError:
            raise
        except Exception as exc:
            raise ScriptError(f"Script {self.metadata.script!r} failed: {exc}") from exc

    def insert_metric(
        self, key: KeyLike, metric: DataCell, timestamp: int | None = None
    ) -> None:
        """Run the collection script once per tier and store the dirty tiers.

        ``timestamp`` defaults to the current time in whole seconds.
        """
        user_key = _as_bytes(key)
        tiers = self._load(user_key)
        if timestamp is None:
            timestamp = int(time.time())

        with self._lock:
            handler = self._handler

        def context(nth_tier: int | None, cumulative: int) -> TieredContext:
            return TieredContext(
                partition_name=self.name,
                inner_key=user_key,
                tiers=tiers,
                nth_tier=nth_tier,
                timestamp=timestamp,
                cumulative_interval=cumulative,
                metric=metric,
            )

        cumulative = 0
        if not tiers:
            self._run(handler, context(None, cumulative))

        n = 0
        while n < len(tiers):
            self._run(handler, context(n, cumulative))
            if n < len(tiers):
                interval = tiers[n].interval
                cumulative = interval if cumulative == 0 else cumulative * interval
            n += 1

        for nth_tier, tier in enumerate(tiers):
            if tier.dirty:
                tier.last_timestamp = timestamp
                self.partition.insert(
                    encode_key(TieredKey(user_key, nth_tier)), encode_series(tier)
                )