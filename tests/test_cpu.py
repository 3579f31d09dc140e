import dataclasses
import logging

import pytest

from nodestats.cpu import (
    CPUCollector,
    CPUInfo,
    CPUStat,
    parse_cpuinfo,
    parse_proc_stat,
)
from nodestats.registry import Settings

FIELDS = [f.name for f in dataclasses.fields(CPUStat)]


def uniform(value):
    return CPUStat(**{name: value for name in FIELDS})


def make_collector(stats, settings=None):
    collector = CPUCollector(settings or Settings(), logging.getLogger("test"))
    collector.cpu_stats = [dataclasses.replace(s) for s in stats]
    return collector


PROC_STAT = """cpu  3000 0 0 0 0 0 0 0 0 0
cpu0 100 200 300 400 500 600 700 800 900 1000
cpu1 10 20 30 40 50 60 70 80 90 100
intr 12345 0 0
ctxt 999
"""

CPUINFO = """processor\t: 0
vendor_id\t: GenuineIntel
cpu family\t: 6
model\t\t: 142
model name\t: Intel(R) Core(TM) i7-8650U CPU @ 1.90GHz
stepping\t: 10
microcode\t: 0xb4
cpu MHz\t\t: 799.998
cache size\t: 8192 KB
physical id\t: 0
core id\t\t: 0
flags\t\t: fpu vme de pse tsc msr vmx
bugs\t\t: cpu_meltdown spectre_v1 spectre_v2

processor\t: 1
vendor_id\t: GenuineIntel
cpu family\t: 6
model\t\t: 142
model name\t: Intel(R) Core(TM) i7-8650U CPU @ 1.90GHz
stepping\t: 10
microcode\t: 0xb4
cpu MHz\t\t: 800.037
cache size\t: 8192 KB
physical id\t: 0
core id\t\t: 1
flags\t\t: fpu vme de pse tsc msr vmx
bugs\t\t: cpu_meltdown spectre_v1 spectre_v2
"""


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


@pytest.fixture
def fixture_root(tmp_path):
    proc = tmp_path / "proc"
    sys = tmp_path / "sys"
    write(proc / "stat", PROC_STAT)
    write(proc / "cpuinfo", CPUINFO)
    cpu_dir = sys / "devices" / "system" / "cpu"
    write(cpu_dir / "cpu0" / "topology" / "physical_package_id", "0\n")
    write(cpu_dir / "cpu0" / "topology" / "core_id", "0\n")
    write(cpu_dir / "cpu0" / "thermal_throttle" / "core_throttle_count", "5\n")
    write(cpu_dir / "cpu0" / "thermal_throttle" / "package_throttle_count", "30\n")
    write(cpu_dir / "cpu1" / "topology" / "physical_package_id", "0\n")
    write(cpu_dir / "cpu1" / "topology" / "core_id", "1\n")
    write(cpu_dir / "cpu1" / "thermal_throttle" / "core_throttle_count", "6\n")
    write(cpu_dir / "cpu1" / "thermal_throttle" / "package_throttle_count", "31\n")
    # cpu2 has no topology and is skipped
    (cpu_dir / "cpu2").mkdir(parents=True)
    (cpu_dir / "cpufreq").mkdir(parents=True)
    return tmp_path


def settings_for(root, **kwargs):
    return Settings(proc_path=str(root / "proc"), sys_path=str(root / "sys"), **kwargs)


def by_key(metrics, name):
    return {m.label_values: m.value for m in metrics if m.name == name}


def test_update_cpu_stats_increase():
    collector = make_collector([uniform(100.0)])
    want = [uniform(101.0)]
    collector.update_cpu_stats(want)
    assert collector.cpu_stats == want


def test_update_cpu_stats_jump_back_keeps_old_values():
    first = [uniform(100.0)]
    collector = make_collector(first)
    jump_back = [uniform(99.9)]
    collector.update_cpu_stats(jump_back)
    assert collector.cpu_stats != jump_back
    assert collector.cpu_stats == first


def test_update_cpu_stats_idle_reset():
    collector = make_collector([uniform(100.0)])
    reset_idle = [dataclasses.replace(uniform(102.0), idle=1.0)]
    collector.update_cpu_stats(reset_idle)
    assert collector.cpu_stats == reset_idle


def test_update_cpu_stats_resets_on_cpu_count_change():
    collector = make_collector([uniform(100.0)])
    new = [uniform(5.0), uniform(6.0)]
    collector.update_cpu_stats(new)
    assert collector.cpu_stats == new


def test_parse_proc_stat():
    stats = parse_proc_stat(PROC_STAT)
    assert len(stats) == 2
    assert stats[0] == CPUStat(1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0)
    assert stats[1].user == pytest.approx(0.1)
    assert stats[1].guest_nice == pytest.approx(1.0)


def test_parse_proc_stat_partial_fields():
    stats = parse_proc_stat("cpu0 100 200 300 400\n")
    assert stats == [CPUStat(user=1.0, nice=2.0, system=3.0, idle=4.0)]


def test_parse_proc_stat_bad_cpu_id():
    with pytest.raises(ValueError):
        parse_proc_stat("cpuX 1 2 3 4\n")


def test_parse_cpuinfo():
    info = parse_cpuinfo(CPUINFO)
    assert [c.processor for c in info] == [0, 1]
    first = info[0]
    assert first.vendor_id == "GenuineIntel"
    assert first.cpu_family == "6"
    assert first.model == "142"
    assert first.microcode == "0xb4"
    assert first.cache_size == "8192 KB"
    assert first.cpu_mhz == pytest.approx(799.998)
    assert first.flags == ["fpu", "vme", "de", "pse", "tsc", "msr", "vmx"]
    assert first.bugs == ["cpu_meltdown", "spectre_v1", "spectre_v2"]
    assert info[1].core_id == "1"


def test_parse_cpuinfo_requires_processor_first():
    with pytest.raises(ValueError):
        parse_cpuinfo("vendor_id : GenuineIntel\nprocessor : 0\n")


def test_update_seconds_and_guest(fixture_root):
    collector = CPUCollector(settings_for(fixture_root))
    metrics = list(collector.update())
    seconds = by_key(metrics, "node_cpu_seconds_total")
    assert seconds[("0", "user")] == 1.0
    assert seconds[("0", "steal")] == 8.0
    assert len(seconds) == 16
    guest = by_key(metrics, "node_cpu_guest_seconds_total")
    assert guest[("0", "user")] == 9.0
    assert guest[("0", "nice")] == 10.0
    assert by_key(metrics, "node_cpu_info") == {}


def test_update_without_guest(fixture_root):
    collector = CPUCollector(settings_for(fixture_root, cpu_guest=False))
    metrics = list(collector.update())
    assert by_key(metrics, "node_cpu_guest_seconds_total") == {}


def test_update_thermal_throttle(fixture_root):
    collector = CPUCollector(settings_for(fixture_root))
    metrics = list(collector.update())
    assert by_key(metrics, "node_cpu_package_throttles_total") == {("0",): 30.0}
    assert by_key(metrics, "node_cpu_core_throttles_total") == {
        ("0", "0"): 5.0,
        ("0", "1"): 6.0,
    }


def test_flags_include_enables_info(fixture_root):
    collector = CPUCollector(settings_for(fixture_root, cpu_flags_include="^(vmx|tsc)$"))
    assert collector.enable_info is True
    metrics = list(collector.update())
    assert set(by_key(metrics, "node_cpu_flag_info")) == {("vmx",), ("tsc",)}
    assert by_key(metrics, "node_cpu_bug_info") == {}
    info = by_key(metrics, "node_cpu_info")
    assert len(info) == 2
    key = (
        "0", "0", "0", "GenuineIntel", "6", "142",
        "Intel(R) Core(TM) i7-8650U CPU @ 1.90GHz", "0xb4", "10", "8192 KB",
    )
    assert info[key] == 1.0


def test_bugs_include(fixture_root):
    collector = CPUCollector(settings_for(fixture_root, cpu_bugs_include="spectre"))
    metrics = list(collector.update())
    assert set(by_key(metrics, "node_cpu_bug_info")) == {("spectre_v1",), ("spectre_v2",)}


def test_invalid_regex_raises():
    with pytest.raises(ValueError, match="regular expressions"):
        CPUCollector(Settings(cpu_flags_include="("))


def test_update_missing_stat_file(tmp_path):
    collector = CPUCollector(settings_for(tmp_path))
    with pytest.raises(FileNotFoundError):
        list(collector.update())


def test_info_entry_default_fields():
    entry = CPUInfo(processor=3)
    assert (entry.processor, entry.flags, entry.model_name) == (3, [], "")