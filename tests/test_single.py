import pytest

from rrdseries.errors import PartitionExistsError, ScriptError, ZeroWidthError
from rrdseries.format import (
    NEVER_COMMITTED,
    DataCell,
    SingleKey,
    SingleScriptMetadata,
    decode_metadata,
    decode_series,
    encode_key,
)
from rrdseries.scripting import ScriptRegistry
from rrdseries.single import SinglePartition
from rrdseries.store import Keyspace
from rrdseries.timecell import cell_index

WIDTH = 4
INTERVAL = 10


def store_metric(ctx):
    ctx.write_metric(ctx.metric())


def do_nothing(ctx):
    pass


@pytest.fixture
def env():
    with Keyspace() as ks:
        registry = ScriptRegistry()
        registry.register("store", store_metric)
        registry.register("noop", do_nothing)
        meta = ks.open_partition("meta")
        yield ks, meta, registry


def make(env, script="store", name="cpu"):
    ks, meta, registry = env
    return SinglePartition.open_new(ks, meta, registry, name, WIDTH, INTERVAL, script)


def stored(part, key=b"host"):
    return decode_series(part.partition.get(encode_key(SingleKey(key))))


def test_open_new_records_metadata(env):
    make(env)
    _, meta, _ = env
    assert decode_metadata(meta.get("cpu")) == SingleScriptMetadata(WIDTH, INTERVAL, "store")


def test_open_new_twice_raises(env):
    make(env)
    with pytest.raises(PartitionExistsError):
        make(env)


def test_open_new_unknown_script(env):
    with pytest.raises(ScriptError):
        make(env, script="missing")


def test_open_new_zero_width(env):
    ks, meta, registry = env
    with pytest.raises(ZeroWidthError):
        SinglePartition.open_new(ks, meta, registry, "cpu", 0, INTERVAL, "store")


def test_write_metric_lands_in_current_cell(env):
    part = make(env)
    metric = DataCell.u64(7)
    part.insert_metric(b"host", metric, timestamp=25)
    data = stored(part)
    assert data.data[cell_index(data.data, 25, INTERVAL)] == metric
    assert data.last_timestamp == 25


def test_fresh_item_is_stored_even_by_noop(env):
    part = make(env, script="noop")
    part.insert_metric(b"host", DataCell.u64(1), timestamp=100)
    data = stored(part)
    assert data.last_timestamp == 100
    assert all(cell.is_empty() for cell in data.data)
    assert len(data.data) == WIDTH


def test_clean_item_is_not_rewritten(env):
    part = make(env)
    part.insert_metric(b"host", DataCell.u64(1), timestamp=100)
    part.update_script("noop")
    part.insert_metric(b"host", DataCell.u64(2), timestamp=200)
    assert stored(part).last_timestamp == 100


def test_update_script_unknown_raises(env):
    part = make(env)
    with pytest.raises(ScriptError):
        part.update_script("missing")


def test_context_accessors(env):
    ks, meta, registry = env
    seen = {}

    def inspect(ctx):
        seen.update(
            name=ctx.partition_name(),
            width=ctx.width(),
            interval=ctx.interval(),
            metric=ctx.metric(),
            pristine=ctx.pristine(),
            missed=ctx.missed(),
        )

    registry.register("inspect", inspect)
    part = make(env, script="inspect")
    part.insert_metric(b"host", DataCell.text("up"), timestamp=5)
    assert seen["name"] == "cpu"
    assert seen["width"] == WIDTH
    assert seen["interval"] == INTERVAL
    assert seen["metric"] == DataCell.text("up")
    # A fresh item is already marked dirty, so it is not pristine.
    assert seen["pristine"] is False
    assert seen["missed"] == WIDTH - 1


def test_missed_counts_skipped_buckets(env):
    ks, meta, registry = env
    missed = []
    registry.register("count", lambda ctx: (missed.append(ctx.missed()), store_metric(ctx)))
    part = make(env, script="count")
    part.insert_metric(b"host", DataCell.u64(1), timestamp=0)
    skipped = 3
    part.insert_metric(b"host", DataCell.u64(2), timestamp=skipped * INTERVAL)
    assert missed[-1] == skipped - 1


def test_look_back_order_and_limit(env):
    ks, meta, registry = env
    looked = []

    def collect(ctx):
        store_metric(ctx)
        looked.append(ctx.look_back(100))

    registry.register("collect", collect)
    part = make(env, script="collect")
    values = [DataCell.u64(n) for n in (11, 22, 33, 44)]
    for step, value in enumerate(values):
        part.insert_metric(b"host", value, timestamp=step * INTERVAL)
    assert looked[-1] == list(reversed(values))


def test_clear_misses_empties_skipped_cells(env):
    ks, meta, registry = env

    def clear_then_store(ctx):
        ctx.clear_misses()
        store_metric(ctx)

    registry.register("clear", clear_then_store)
    part = make(env)
    for step in range(WIDTH):
        part.insert_metric(b"host", DataCell.u64(step + 1), timestamp=step * INTERVAL)
    part.update_script("clear")
    last = (WIDTH - 1) * INTERVAL
    later = last + 2 * INTERVAL
    part.insert_metric(b"host", DataCell.u64(99), timestamp=later)
    data = stored(part)
    skipped = cell_index(data.data, last + INTERVAL, INTERVAL)
    assert data.data[skipped].is_empty()
    assert data.data[cell_index(data.data, later, INTERVAL)] == DataCell.u64(99)
    kept = cell_index(data.data, last, INTERVAL)
    assert data.data[kept] == DataCell.u64(WIDTH)


def test_write_multi_metric_only_overwrites_filled_cells(env):
    ks, meta, registry = env
    registry.register("multi", lambda ctx: ctx.write_multi_metric(2, ctx.metric()))
    part = make(env)
    part.insert_metric(b"host", DataCell.u64(1), timestamp=0)
    part.update_script("multi")
    part.insert_metric(b"host", DataCell.u64(5), timestamp=INTERVAL)
    data = stored(part)
    assert data.data[cell_index(data.data, 0, INTERVAL)] == DataCell.u64(5)
    assert data.data[cell_index(data.data, INTERVAL, INTERVAL)].is_empty()


def test_custom_data_persists(env):
    ks, meta, registry = env
    custom = []
    registry.register("write_custom", lambda ctx: ctx.write_custom(DataCell.custom(b"\x01\x02")))
    registry.register("read_custom", lambda ctx: custom.append(ctx.get_custom()))
    part = make(env, script="write_custom")
    part.insert_metric(b"host", DataCell.empty(), timestamp=0)
    part.update_script("read_custom")
    part.insert_metric(b"host", DataCell.empty(), timestamp=INTERVAL)
    assert custom == [DataCell.custom(b"\x01\x02")]


def test_keys_are_separate(env):
    part = make(env)
    part.insert_metric(b"a", DataCell.u64(1), timestamp=0)
    part.insert_metric("b", DataCell.u64(2), timestamp=0)
    assert stored(part, b"a").data[0] == DataCell.u64(1)
    assert stored(part, b"b").data[0] == DataCell.u64(2)


def test_handler_failure_becomes_script_error(env):
    ks, meta, registry = env

    def broken(ctx):
        raise RuntimeError("boom")

    registry.register("broken", broken)
    part = make(env, script="broken")
    with pytest.raises(ScriptError):
        part.insert_metric(b"host", DataCell.u64(1), timestamp=0)
    assert part.partition.get(encode_key(SingleKey(b"host"))) is None


def test_timeseries_errors_pass_through(env):
    ks, meta, registry = env

    def raises_zero(ctx):
        raise ZeroWidthError()

    registry.register("zero", raises_zero)
    part = make(env, script="zero")
    with pytest.raises(ZeroWidthError):
        part.insert_metric(b"host", DataCell.u64(1), timestamp=0)


def test_default_timestamp_is_now(env):
    part = make(env)
    part.insert_metric(b"host", DataCell.u64(1))
    assert stored(part).last_timestamp > NEVER_COMMITTED
    assert stored(part).last_timestamp > 0