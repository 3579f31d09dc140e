import pytest

from nodestats.catalog import default_registry

ALL = {
    "arp", "bcache", "bonding", "btrfs", "buddyinfo", "conntrack", "cpu",
    "cpufreq", "diskstats", "drbd", "drm", "edac", "entropy",
}


def test_all_collectors_registered():
    names = list(default_registry().names())
    assert set(names) == ALL
    assert len(names) == len(set(names))


@pytest.mark.parametrize(
    "name, enabled",
    [
        ("arp", True),
        ("bcache", True),
        ("btrfs", True),
        ("cpu", True),
        ("diskstats", True),
        ("entropy", True),
        ("buddyinfo", False),
        ("drbd", False),
        ("drm", False),
    ],
)
def test_default_states(name, enabled):
    assert default_registry().is_enabled(name) is enabled


def test_registries_are_independent():
    first = default_registry()
    first.set_enabled("cpu", False)
    assert first.is_enabled("cpu") is False
    assert default_registry().is_enabled("cpu") is True