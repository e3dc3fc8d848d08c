import pytest

from rrdseries.database import TimeseriesDatabase
from rrdseries.errors import (
    LanguageDisabledError,
    PartitionExistsError,
    ScriptError,
    UnknownFormatVersionError,
)
from rrdseries.format import (
    DataCell,
    SingleKey,
    TieredData,
    TieredKey,
    decode_series,
    encode_key,
)
from rrdseries.scripting import ScriptRegistry
from rrdseries.single import SinglePartition
from rrdseries.store import Keyspace
from rrdseries.tiered import TieredPartition
from rrdseries.timecell import get_cell


def _single_handler(ctx):
    ctx.clear_misses()
    ctx.write_metric(ctx.metric())


def _tiered_handler(ctx):
    if ctx.empty():
        ctx.create_tier(4, 10)
    else:
        ctx.write_metric(ctx.metric())


@pytest.fixture
def scripts():
    registry = ScriptRegistry()
    registry.register("single", _single_handler)
    registry.register("tiered", _tiered_handler)
    return registry


@pytest.fixture
def keyspace():
    with Keyspace(":memory:") as ks:
        yield ks


def test_open_single_is_returned_by_get_partition(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    part = db.open_single("cpu", 4, 10, "single")
    assert isinstance(part, SinglePartition)
    assert db.get_partition("cpu") is part


def test_get_partition_missing_returns_none(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    assert db.get_partition("nothing") is None


def test_open_same_name_twice_raises(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    db.open_single("cpu", 4, 10, "single")
    with pytest.raises(PartitionExistsError):
        db.open_single("cpu", 4, 10, "single")
    with pytest.raises(PartitionExistsError):
        db.open_tiered("cpu", "tiered")


def test_partitions_lists_all(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    db.open_single("cpu", 4, 10, "single")
    db.open_tiered("mem", "tiered")
    names = sorted(p.name for p in db.partitions())
    assert names == ["cpu", "mem"]


def test_single_insert_through_database(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    db.open_single("cpu", 4, 10, "single")
    part = db.get_partition("cpu")
    metric = DataCell.u64(7)
    part.insert_metric(b"host", metric, timestamp=25)

    stored = part.partition.get(encode_key(SingleKey(b"host")))
    data = decode_series(stored)
    assert get_cell(data.data, 25, 10) == metric
    assert data.last_timestamp == 25


def test_tiered_insert_through_database(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    part = db.open_tiered("mem", "tiered")
    metric = DataCell.percent(50)
    part.insert_metric("host", metric, timestamp=33)

    stored = part.partition.get(encode_key(TieredKey(b"host", 0)))
    tier = decode_series(stored)
    assert isinstance(tier, TieredData)
    assert tier.width == 4
    assert get_cell(tier.data, 33, 10) == metric


def test_reopen_restores_partitions(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    db.open_single("cpu", 4, 10, "single")
    db.open_tiered("mem", "tiered")

    reopened = TimeseriesDatabase(keyspace, "meta", scripts)
    cpu = reopened.get_partition("cpu")
    mem = reopened.get_partition("mem")
    assert isinstance(cpu, SinglePartition)
    assert isinstance(mem, TieredPartition)
    assert (cpu.metadata.width, cpu.metadata.interval) == (4, 10)
    assert mem.metadata.script == "tiered"


def test_reopen_from_file(tmp_path, scripts):
    path = tmp_path / "series.db"
    with Keyspace(path) as ks:
        db = TimeseriesDatabase(ks, "meta", scripts)
        db.open_single("cpu", 4, 10, "single").insert_metric(
            b"k", DataCell.text("up"), timestamp=5
        )

    with Keyspace(path) as ks:
        db = TimeseriesDatabase(ks, "meta", scripts)
        part = db.get_partition("cpu")
        data = decode_series(part.partition.get(encode_key(SingleKey(b"k"))))
        assert get_cell(data.data, 5, 10) == DataCell.text("up")


def test_reopen_with_unregistered_script_raises(keyspace, scripts):
    TimeseriesDatabase(keyspace, "meta", scripts).open_single("cpu", 4, 10, "single")
    with pytest.raises(ScriptError):
        TimeseriesDatabase(keyspace, "meta", ScriptRegistry())


def test_unknown_metadata_version_raises(keyspace, scripts):
    keyspace.open_partition("meta").insert("bad", bytes([1, 0]))
    with pytest.raises(UnknownFormatVersionError):
        TimeseriesDatabase(keyspace, "meta", scripts)


def test_disabled_language_metadata_raises(keyspace, scripts):
    keyspace.open_partition("meta").insert("wasm", bytes([0, 11]) + b"single_wasm")
    with pytest.raises(LanguageDisabledError) as info:
        TimeseriesDatabase(keyspace, "meta", scripts)
    assert info.value.disabled_language() == "wasm"


def test_partitions_snapshot_unaffected_by_later_open(keyspace, scripts):
    db = TimeseriesDatabase(keyspace, "meta", scripts)
    db.open_single("cpu", 4, 10, "single")
    snapshot = db.partitions()
    db.open_tiered("mem", "tiered")
    assert [p.name for p in snapshot] == ["cpu"]
    assert len(list(db.partitions())) == 2