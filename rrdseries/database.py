"""Timeseries database holding named partitions of round-robin data."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Union

from .format import SingleScriptMetadata, TieredScriptMetadata, decode_metadata
from .scripting import ScriptRegistry
from .single import SinglePartition
from .store import Keyspace
from .tiered import TieredPartition

TimeseriesPartition = Union[SinglePartition, TieredPartition]


class TimeseriesDatabase:
    """Opens partitions with separately stored timeseries data.

    Each partition has its own collection script. The metadata of every
    partition is kept in the keyspace partition named ``partition_name``,
    and all partitions recorded there are opened when the database is created.
    """

    def __init__(
        self,
        keyspace: Keyspace,
        partition_name: str,
        scripts: ScriptRegistry | None = None,
    ) -> None:
        self.keyspace = keyspace
        self.scripts = scripts if scripts is not None else ScriptRegistry()
        self._meta = keyspace.open_partition(partition_name)
        self._lock = threading.RLock()
        self._partitions: dict[str, TimeseriesPartition] = {}

        for raw_name, raw_meta in self._meta.items():
            name = raw_name.decode("utf-8", errors="replace")
            partition = keyspace.open_partition(name)
            metadata = decode_metadata(raw_meta)
            if isinstance(metadata, SingleScriptMetadata):
                opened: TimeseriesPartition = SinglePartition(
                    name, partition, metadata, self.scripts
                )
            elif isinstance(metadata, TieredScriptMetadata):
                opened = TieredPartition(name, partition, metadata, self.scripts)
            else:
                raise TypeError(f"unsupported partition metadata: {metadata!r}")
            self._partitions[name] = opened

    def open_single(
        self, name: str, width: int, interval: int, script: str
    ) -> SinglePartition:
        """Create a single round-robin partition driven by ``script``."""
        created = SinglePartition.open_new(
            self.keyspace, self._meta, self.scripts, name, width, interval, script
        )
        with self._lock:
            self._partitions[name] = created
        return created

    def open_tiered(self, name: str, script: str) -> TieredPartition:
        """Create a tiered round-robin partition driven by ``script``."""
        created = TieredPartition.open_new(
            self.keyspace, self._meta, self.scripts, name, script
        )
        with self._lock:
            self._partitions[name] = created
        return created

    def get_partition(self, name: str) -> TimeseriesPartition | None:
        """Return the partition called ``name``, or ``None`` if there is none."""
        with self._lock:
            return self._partitions.get(name)

    def partitions(self) -> Iterator[TimeseriesPartition]:
        """Iterate over a snapshot of all open partitions."""
        with self._lock:
            snapshot = list(self._partitions.values())
        return iter(snapshot)