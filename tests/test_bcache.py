from types import SimpleNamespace

import pytest

from nodestats.bcache import (
    BcacheCollector,
    PeriodStats,
    period_stats_metrics,
    read_bcache_stats,
)
from nodestats.metrics import build_fq_name, format_text

UUID = "aaaaaaaa-bbbb-4ccc-8ddd-eeeeeeeeeeee"

WRITEBACK = (
    "rate:\t\t512/sec\n"
    "dirty:\t\t0\n"
    "target:\t\t7\n"
    "proportional:\t-5\n"
    "integral:\t6\n"
    "change:\t\t8/sec\n"
    "next io:\t-1ms\n"
)


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _make_fixture(root, priority=True):
    base = root / "fs" / "bcache" / UUID
    files = {
        "average_key_size": "0",
        "btree_cache_size": "4.0k",
        "cache_available_percent": "100",
        "congested": "0",
        "root_usage_percent": "0",
        "tree_depth": "0",
        "internal/active_journal_entries": "1",
        "internal/btree_nodes": "2",
        "internal/btree_read_average_duration_us": "1000",
        "internal/cache_read_races": "3",
        "bdev0/dirty_data": "0",
        "bdev0/writeback_rate_debug": WRITEBACK,
        "bdev0/stats_total/bypassed": "9",
        "bdev0/stats_total/cache_hits": "10",
        "bdev0/stats_total/cache_misses": "0",
        "bdev0/stats_total/cache_bypass_hits": "0",
        "bdev0/stats_total/cache_bypass_misses": "0",
        "bdev0/stats_total/cache_miss_collisions": "0",
        "bdev0/stats_total/cache_readaheads": "0",
        "cache0/io_errors": "0",
        "cache0/metadata_written": "11",
        "cache0/written": "12",
    }
    if priority:
        files["cache0/priority_stats"] = "Unused:\t\t99%\nMetadata:\t1%\nAverage:\t10473\n"
    for rel, text in files.items():
        _write(base / rel, text + "\n")
    return base


def _settings(root):
    return SimpleNamespace(sys_path=str(root))


def _name(short):
    return build_fq_name("node", "bcache", short)


def test_read_stats(tmp_path):
    _make_fixture(tmp_path)
    stats = read_bcache_stats(str(tmp_path), True)
    assert [s.name for s in stats] == [UUID]
    s = stats[0]
    assert s.btree_cache_size == 4096
    assert s.btree_read_average_duration_ns == 1_000_000
    assert s.cache_available_percent == 100
    assert s.cache_read_races == 3
    bdev = s.bdevs[0]
    assert bdev.name == "bdev0"
    assert bdev.writeback_rate == 512
    assert bdev.writeback_target == 7
    assert bdev.writeback_proportional == -5
    assert bdev.writeback_change == 8
    assert bdev.total.cache_hits == 10
    assert bdev.total.bypassed == 9
    cache = s.caches[0]
    assert cache.name == "cache0"
    assert cache.written == 12
    assert cache.unused_percent == 99
    assert cache.metadata_percent == 1


def test_priority_stats_only_read_on_request(tmp_path):
    _make_fixture(tmp_path, priority=False)
    stats = read_bcache_stats(str(tmp_path), False)
    assert stats[0].caches[0].metadata_written == 11
    with pytest.raises(FileNotFoundError):
        read_bcache_stats(str(tmp_path), True)


def test_no_cache_sets(tmp_path):
    assert read_bcache_stats(str(tmp_path), False) == []


def test_period_stats_metrics():
    metrics = period_stats_metrics(PeriodStats(bypassed=5, cache_readaheads=6), "bdev3")
    assert [m.name for m in metrics] == [
        "bypassed_bytes_total",
        "cache_hits_total",
        "cache_misses_total",
        "cache_bypass_hits_total",
        "cache_bypass_misses_total",
        "cache_miss_collisions_total",
        "cache_readaheads_total",
    ]
    assert all(m.extra_label == ("backing_device",) for m in metrics)
    assert all(m.extra_label_value == "bdev3" for m in metrics)
    assert metrics[0].value == 5
    assert metrics[-1].value == 6


def test_update_labels_and_values(tmp_path):
    _make_fixture(tmp_path)
    metrics = list(BcacheCollector(_settings(tmp_path), priority_stats=True).update())
    by_name = {m.name: m for m in metrics}
    written = by_name[_name("written_bytes_total")]
    assert written.labels == {"uuid": UUID, "cache_device": "cache0"}
    assert written.value == 12
    hits = by_name[_name("cache_hits_total")]
    assert hits.labels == {"uuid": UUID, "backing_device": "bdev0"}
    assert hits.value == 10
    assert by_name[_name("tree_depth")].labels == {"uuid": UUID}
    assert by_name[_name("btree_read_average_duration_seconds")].value == pytest.approx(0.001)
    assert by_name[_name("priority_stats_unused_percent")].value == 99
    assert by_name[_name("writeback_rate_proportional_term")].value == -5


def test_priority_metrics_absent_when_disabled(tmp_path):
    _make_fixture(tmp_path, priority=False)
    names = {m.name for m in BcacheCollector(_settings(tmp_path), priority_stats=False).update()}
    assert _name("priority_stats_unused_percent") not in names
    assert _name("written_bytes_total") in names


def test_output_renders(tmp_path):
    _make_fixture(tmp_path)
    text = format_text(BcacheCollector(_settings(tmp_path), priority_stats=True).update())
    assert f'{_name("cache_hits_total")}{{backing_device="bdev0",uuid="{UUID}"}} 10\n' in text


def test_missing_sysfs(tmp_path):
    with pytest.raises(OSError):
        BcacheCollector(_settings(tmp_path / "absent"))


def test_bad_value(tmp_path):
    base = _make_fixture(tmp_path)
    (base / "btree_cache_size").write_text("lots\n")
    with pytest.raises(RuntimeError):
        list(BcacheCollector(_settings(tmp_path)).update())