# rrdseries

Round-robin ("RRD") timeseries storage for Python 3.10 and later, with no
dependencies beyond the standard library.

Each partition holds fixed-width rings of cells per key. What goes into those
cells is decided by a handler: a Python callable that you register under a
script name in a `ScriptRegistry`. A partition records the script name, and on
every insert it calls the registered handler with a context object.

There are two kinds of partition:

- **Single** partitions (`rrdseries.single.SinglePartition`) keep one ring per
  key, with a fixed width (number of cells) and interval (seconds per cell).
- **Tiered** partitions (`rrdseries.tiered.TieredPartition`) keep any number of
  rings per key. The handler creates tiers as it needs them. The first tier's
  interval is in seconds; each higher tier's interval is counted in cells of
  the tier below it, so data can waterfall from fine to coarse resolution.

## Cells

Every cell holds a `DataCell` from `rrdseries.format`, an immutable value with
a `kind` (a `CellKind`) and a `value`:

```python
from rrdseries.format import DataCell

DataCell.empty()
DataCell.u64(42)            # 0 .. 2**64 - 1
DataCell.percent(75)        # 0 .. 255
DataCell.text("ok")
DataCell.custom(b"\x01\x02")
```

Out-of-range numbers raise `ValueError`, values of the wrong type `TypeError`.
`cell.is_empty()` tells whether a cell is empty.

## Storage

`rrdseries.store.Keyspace(path)` opens an SQLite database file (the default
`":memory:"` keeps everything in memory). `open_partition(name)` returns a
`Partition`, a byte-ordered map with `get(key)`, `insert(key, value)`,
`items()` and `range_from(start)`. Keys and values may be `bytes` or `str`.
A `Keyspace` is a context manager and is closed on exit.

## Opening a database

```python
from rrdseries.database import TimeseriesDatabase
from rrdseries.format import DataCell
from rrdseries.scripting import ScriptRegistry
from rrdseries.store import Keyspace


def keep_latest(ctx):
    ctx.clear_misses()
    ctx.write_metric(ctx.metric())


scripts = ScriptRegistry()
scripts.register("keep-latest", keep_latest)

with Keyspace("metrics.sqlite") as keyspace:
    db = TimeseriesDatabase(keyspace, "meta", scripts)

    cpu = db.open_single("cpu", 60, 15, "keep-latest")
    cpu.insert_metric(b"host-a", DataCell.percent(37), 1_700_000_000)
```

`insert_metric(key, metric, timestamp=None)` takes the timestamp in seconds;
without one it uses the current time. After the handler runs, the key's data
is written back only if the handler changed it.

Partitions and their script names are recorded in the metadata partition
(here `"meta"`), so a `TimeseriesDatabase` opened later on the same keyspace
brings them back. The handlers they name must already be registered in the
`ScriptRegistry` passed to it, or `ScriptError` is raised. `get_partition(name)`
returns a partition by name (or `None`), and `partitions()` iterates over all of
them. Opening a partition whose name is already recorded raises
`PartitionExistsError`.

A partition's handler can be swapped with `update_script(script)`, which looks
the new name up in the registry.

## Single handlers

A single handler receives a `SingleContext` with:

- `width()`, `interval()`, `partition_name()`, `metric()` (the cell being
  inserted)
- `pristine()`: the key was never stored and nothing has been written yet
- `missed()`: how many buckets were skipped since the last commit
- `write_metric(metric)`: write into the cell of the current bucket
- `write_multi_metric(back, metric)`: among the `back` most recent cells
  (current one first, going backwards around the ring), overwrite those that
  are not empty
- `write_custom(custom)`, `get_custom()`: a per-key cell kept outside the ring
- `clear_misses()`: empty the cells of buckets skipped since the last commit
- `look_back(n_cells)`: up to `n_cells` cells from the current one backwards

## Tiered handlers

A tiered handler is called once with `empty()` true when a key has no tiers
yet, so it can `create_tier(width, interval)`. It is then called once per tier,
lowest first, in the same insert. It receives a `TieredContext` with:

- `empty()`, `metric()`, `timestamp()`, `partition_name()`
- `create_tier(width, interval)`: append an empty tier (`ZeroWidthError` on 0)
- `current_width()`, `current_interval()` (0 when there is no current tier)
- `missed()`: buckets skipped in the current tier, or `None`
- `write_metric(metric)`, `write_custom_current(data)`, `get_custom_current()`
- `clear_misses()`
- `look_back_current(n_cells)`, and `look_back_previous(n_cells)`, which
  returns `None` on the first tier

```python
def rollup(ctx):
    if ctx.empty():
        ctx.create_tier(60, 15)   # 60 cells of 15 seconds
        ctx.create_tier(24, 60)   # 24 cells of 60 lower cells
        return
    ctx.clear_misses()
    ctx.write_metric(ctx.metric())


scripts.register("rollup", rollup)
load = db.open_tiered("load", "rollup")
load.insert_metric(b"host-a", DataCell.u64(3), 1_700_000_000)
```

## Lower-level helpers

- `rrdseries.timecell`: `timestamp_bucket`, `stamp_cell`, `cell_index`,
  `get_cell` and `set_cell` map timestamps onto ring cells.
- `rrdseries.format`: `encode_key`/`decode_key`, `encode_metadata`/
  `decode_metadata` and `encode_series`/`decode_series` read and write the
  versioned binary format the partitions store.

## Errors

All errors derive from `rrdseries.errors.TimeseriesError`, among them
`ZeroWidthError` (also a `ValueError`), `PartitionExistsError`, `FormatError`,
`UnknownFormatVersionError`, `LanguageDisabledError` and `ScriptError`.
An exception raised inside a handler is re-raised as `ScriptError`, unless it
is already a `TimeseriesError`.

## What it does not do

- Handlers are Python callables only. Stored metadata that describes
  WebAssembly-based partitions is recognised but cannot be opened: decoding it
  raises `LanguageDisabledError`.
- There is no command-line tool, no network server and no backup or restore.