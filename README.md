# nodestats

`nodestats` reads a Linux host's kernel statistics from `/proc` and `/sys`
and turns them into metrics in the Prometheus text exposition format. It has
no dependencies outside the standard library.

## Collectors

Each kind of statistic has its own collector class:

| Name        | Class                               | Reads                                          | Enabled by default |
|-------------|-------------------------------------|------------------------------------------------|--------------------|
| `arp`       | `nodestats.arp.ArpCollector`        | `/proc/net/arp`                                | yes                |
| `bcache`    | `nodestats.bcache.BcacheCollector`  | `/sys/fs/bcache`                               | yes                |
| `bonding`   | `nodestats.bonding.BondingCollector`| `/sys/class/net/bonding_masters` and below     | yes                |
| `btrfs`     | `nodestats.btrfs.BtrfsCollector`    | `/sys/fs/btrfs`                                | yes                |
| `buddyinfo` | `nodestats.buddyinfo.BuddyinfoCollector` | `/proc/buddyinfo`                         | no                 |
| `conntrack` | `nodestats.conntrack.ConntrackCollector` | `/proc/sys/net/netfilter`, `/proc/net/stat/nf_conntrack` | yes |
| `cpu`       | `nodestats.cpu.CPUCollector`        | `/proc/stat`, `/proc/cpuinfo`, `/sys/devices/system/cpu` | yes      |
| `cpufreq`   | `nodestats.cpufreq.CPUFreqCollector`| `/sys/devices/system/cpu/cpu*/cpufreq`         | yes                |
| `diskstats` | `nodestats.diskstats.DiskstatsCollector` | `/proc/diskstats`                         | yes                |
| `drbd`      | `nodestats.drbd.DRBDCollector`      | `/proc/drbd`                                   | no                 |
| `drm`       | `nodestats.drm.DRMCollector`        | `/sys/class/drm` (cards bound to `amdgpu`)     | no                 |
| `edac`      | `nodestats.edac.EdacCollector`      | `/sys/devices/system/edac/mc`                  | yes                |
| `entropy`   | `nodestats.entropy.EntropyCollector`| `/proc/sys/kernel/random`                      | yes                |

Every metric name starts with `node_`, for example
`node_disk_reads_completed_total` or `node_cpu_seconds_total`.

Each collector is built from a `Settings` object and an optional
`logging.Logger`, and its `update()` method yields `Metric` samples.

## Usage

`nodestats.catalog.default_registry()` returns a fresh `CollectorRegistry`
with every collector above registered in its default state. Turn collectors
on or off, then create a `NodeCollector`:

```python
from nodestats.catalog import default_registry
from nodestats.metrics import format_text
from nodestats.registry import Settings

registry = default_registry()
registry.set_enabled("buddyinfo", True)

node = registry.create(Settings())
print(format_text(node.collect()))
```

`CollectorRegistry` offers:

- `register(name, default_enabled, factory)`: add a collector; registering
  a name twice raises `ValueError`.
- `set_enabled(name, enabled)`: explicitly enable or disable a collector
  (`KeyError` for an unknown name).
- `disable_defaults()`: disable every collector that was not explicitly
  enabled or disabled with `set_enabled`.
- `is_enabled(name)` and `names()`.
- `create(settings, *names)`: build a `NodeCollector` from the enabled
  collectors. When names are given, only those run; an unknown name raises
  `ValueError("missing collector: ...")` and a disabled one
  `ValueError("disabled collector: ...")`. Collector instances are created
  once per registry and reused by later calls.

`NodeCollector.collect()` runs its collectors concurrently in threads and
returns all samples as a list. For each collector it adds:

- `node_scrape_collector_duration_seconds{collector="..."}`: how long the
  collector took.
- `node_scrape_collector_success{collector="..."}`: `1` when it succeeded,
  `0` when it raised.

A failing collector does not stop the scrape; its error is logged and its
success sample is `0`. A collector that finds nothing to report (no bonding
interfaces, no conntrack module, no `/proc/drbd`) raises
`nodestats.registry.NoDataError`; this also gives `0` but is logged only at
debug level. `NodeCollector.describe()` returns the descriptors of those two
scrape metrics. Logging goes through the standard `logging` module under
the `nodestats.registry` logger.

## Settings

`nodestats.registry.Settings` is a dataclass holding:

| Field                        | Default                                        | Used by     |
|------------------------------|------------------------------------------------|-------------|
| `proc_path`                  | `"/proc"`                                      | all         |
| `sys_path`                   | `"/sys"`                                       | all         |
| `arp_device_include`         | `""` (regular expression of devices to keep)   | `arp`       |
| `arp_device_exclude`         | `""` (regular expression of devices to drop)   | `arp`       |
| `bcache_priority_stats`      | `False` (also read `priority_stats`)           | `bcache`    |
| `cpu_guest`                  | `True` (export `node_cpu_guest_seconds_total`) | `cpu`       |
| `cpu_info`                   | `False` (export `node_cpu_info`)               | `cpu`       |
| `cpu_flags_include`          | `""` (regular expression of flags to export)   | `cpu`       |
| `cpu_bugs_include`           | `""` (regular expression of bugs to export)    | `cpu`       |
| `diskstats_ignored_devices`  | `^(ram\|loop\|fd\|(h\|s\|v\|xv)d[a-z]\|nvme\d+n\d+p)\d+$` | `diskstats` |

Setting `cpu_flags_include` or `cpu_bugs_include` turns on the CPU info
metrics even when `cpu_info` is off. An invalid pattern makes
`CPUCollector` raise `ValueError`.

`Settings.proc_file(...)` and `Settings.sys_file(...)` join paths below
the configured roots.

## Reading other roots

The collectors read only the paths that `Settings` gives them, so they can
be pointed at a copy of `/proc` and `/sys` taken from another machine; the
tests run this way against fixture trees. The parsers are also usable on
their own, for example `nodestats.diskstats.parse_diskstats(text)`,
`nodestats.cpu.parse_proc_stat(text)`, `nodestats.cpu.parse_cpuinfo(text)`,
`nodestats.buddyinfo.parse_buddyinfo(text)`,
`nodestats.conntrack.parse_conntrack_stat(text)`,
`nodestats.arp.parse_arp_entries(lines)`,
`nodestats.bonding.read_bonding_stats(root)`,
`nodestats.btrfs.read_btrfs_stats(sys_path)`,
`nodestats.bcache.read_bcache_stats(sys_path, priority_stats)`,
`nodestats.cpufreq.read_cpufreq(sys_path)` and
`nodestats.drm.read_amdgpu_stats(sys_path)`.

`/proc/stat` values are converted to seconds assuming 100 clock ticks per
second.

## Building metrics directly

`nodestats.metrics` holds the small metric model the collectors use:
`ValueType` (`COUNTER`, `GAUGE`, `UNTYPED`), `Desc` describes a metric
family, `Desc.metric(value_type, value, *label_values)` makes one sample,
`TypedDesc` pairs a `Desc` with its value type, and `format_text` renders
samples in the text exposition format, grouped by family name and sorted
by labels. `format_text` raises `ValueError` on duplicate samples or a
family with mixed types.

```python
from nodestats.metrics import Desc, ValueType, build_fq_name, format_text

desc = Desc(build_fq_name("node", "demo", "things"), "Number of things.", ["kind"])
print(format_text([desc.metric(ValueType.GAUGE, 3, "widget")]))
```

## What it does not do

`nodestats` is a library only. It has no command-line program, does not
parse command-line flags and does not serve metrics over HTTP; call
`format_text(node.collect())` and deliver the text yourself. It covers Linux
only, and only the collectors listed above.