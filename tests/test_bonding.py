import pytest

from nodestats.bonding import BondingCollector, read_bonding_stats
from nodestats.registry import NoDataError, Settings


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


@pytest.fixture
def sys_root(tmp_path):
    net = tmp_path / "sys" / "class" / "net"
    _write(net / "bonding_masters", "bond0 dmz int\n")
    _write(net / "bond0" / "bonding" / "slaves", "\n")
    _write(net / "dmz" / "bonding" / "slaves", "eth0 eth4\n")
    _write(net / "dmz" / "lower_eth0" / "bonding_slave" / "mii_status", "up\n")
    _write(net / "dmz" / "slave_eth4" / "bonding_slave" / "mii_status", "up\n")
    _write(net / "int" / "bonding" / "slaves", "eth5 eth1\n")
    _write(net / "int" / "slave_eth5" / "bonding_slave" / "mii_status", "down\n")
    _write(net / "int" / "lower_eth1" / "bonding_slave" / "mii_status", "up\n")
    return tmp_path / "sys"


def test_bonding(sys_root):
    stats = read_bonding_stats(str(sys_root / "class" / "net"))
    assert stats["bond0"] == (0, 0)
    assert stats["int"] == (2, 1)
    assert stats["dmz"] == (2, 2)


def test_missing_slave_state(sys_root):
    (sys_root / "class" / "net" / "int" / "lower_eth1" / "bonding_slave" / "mii_status").unlink()
    with pytest.raises(FileNotFoundError):
        read_bonding_stats(str(sys_root / "class" / "net"))


def test_collector_update(sys_root):
    metrics = list(BondingCollector(Settings(sys_path=str(sys_root))).update())
    values = {(m.name, m.labels["master"]): m.value for m in metrics}
    assert values[("node_bonding_slaves", "int")] == 2.0
    assert values[("node_bonding_active", "int")] == 1.0
    assert values[("node_bonding_active", "dmz")] == 2.0
    assert len(metrics) == 6


def test_collector_no_data(tmp_path):
    collector = BondingCollector(Settings(sys_path=str(tmp_path)))
    with pytest.raises(NoDataError):
        list(collector.update())