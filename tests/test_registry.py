import logging

import pytest

from nodestats.metrics import Desc, ValueType
from nodestats.registry import (
    SCRAPE_DURATION_DESC,
    SCRAPE_SUCCESS_DESC,
    Collector,
    CollectorRegistry,
    NodeCollector,
    NoDataError,
    Settings,
    execute,
    is_no_data_error,
    read_uint_from_file,
)

SAMPLE = Desc("node_test_value", "Test value.", ("key",))
LOGGER = logging.getLogger("test")


class StaticCollector(Collector):
    def __init__(self, settings=None, logger=None):
        self.settings = settings

    def update(self):
        yield SAMPLE.metric(ValueType.GAUGE, 7, "a")


class NoDataCollector(Collector):
    def update(self):
        raise NoDataError()


class PartialCollector(Collector):
    def update(self):
        yield SAMPLE.metric(ValueType.GAUGE, 1, "first")
        raise RuntimeError("boom")


def _by_name(metrics, name):
    return [m for m in metrics if m.name == name]


def test_settings_paths():
    settings = Settings(proc_path="/tmp/proc", sys_path="/tmp/sys")
    assert settings.proc_file("net/arp") == "/tmp/proc/net/arp"
    assert settings.sys_file("class", "net") == "/tmp/sys/class/net"


def test_read_uint_from_file(tmp_path):
    path = tmp_path / "value"
    path.write_text("42\n")
    assert read_uint_from_file(str(path)) == 42


@pytest.mark.parametrize("content", ["abc", "-1", "", "18446744073709551616"])
def test_read_uint_from_file_rejects(tmp_path, content):
    path = tmp_path / "value"
    path.write_text(content)
    with pytest.raises(ValueError):
        read_uint_from_file(str(path))


def test_read_uint_from_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_uint_from_file(str(tmp_path / "absent"))


def test_is_no_data_error():
    assert is_no_data_error(NoDataError())
    assert not is_no_data_error(RuntimeError("x"))


def test_execute_success():
    metrics = execute("static", StaticCollector(), LOGGER)
    assert _by_name(metrics, "node_test_value")[0].value == 7.0
    success = _by_name(metrics, "node_scrape_collector_success")
    assert [(m.labels, m.value) for m in success] == [({"collector": "static"}, 1.0)]
    duration = _by_name(metrics, "node_scrape_collector_duration_seconds")
    assert len(duration) == 1 and duration[0].value >= 0


def test_execute_no_data():
    metrics = execute("nodata", NoDataCollector(), LOGGER)
    assert _by_name(metrics, "node_scrape_collector_success")[0].value == 0.0
    assert len(metrics) == 2


def test_execute_failure_keeps_partial_metrics():
    metrics = execute("partial", PartialCollector(), LOGGER)
    assert [m.label_values for m in _by_name(metrics, "node_test_value")] == [("first",)]
    assert _by_name(metrics, "node_scrape_collector_success")[0].value == 0.0


def _registry():
    registry = CollectorRegistry()
    registry.register("static", True, StaticCollector)
    registry.register("nodata", True, lambda s, l: NoDataCollector())
    registry.register("off", False, StaticCollector)
    return registry


def test_register_duplicate():
    registry = _registry()
    with pytest.raises(ValueError):
        registry.register("static", True, StaticCollector)


def test_names_sorted():
    assert _registry().names() == ["nodata", "off", "static"]


def test_create_uses_enabled_collectors():
    node = _registry().create(Settings())
    assert sorted(node.collectors) == ["nodata", "static"]


def test_create_with_filter():
    node = _registry().create(Settings(), "static")
    assert list(node.collectors) == ["static"]


def test_create_missing_filter():
    with pytest.raises(ValueError, match="missing collector: nope"):
        _registry().create(Settings(), "nope")


def test_create_disabled_filter():
    with pytest.raises(ValueError, match="disabled collector: off"):
        _registry().create(Settings(), "off")


def test_create_reuses_instances():
    registry = _registry()
    first = registry.create(Settings()).collectors["static"]
    second = registry.create(Settings()).collectors["static"]
    assert first is second


def test_factory_receives_settings():
    settings = Settings(proc_path="/x")
    node = _registry().create(settings, "static")
    assert node.collectors["static"].settings is settings


def test_disable_defaults_keeps_forced():
    registry = _registry()
    registry.set_enabled("off", True)
    registry.disable_defaults()
    assert registry.is_enabled("off") is True
    assert registry.is_enabled("static") is False
    assert registry.is_enabled("nodata") is False


def test_set_enabled_unknown():
    with pytest.raises(KeyError):
        _registry().set_enabled("nope", True)


def test_describe():
    node = NodeCollector({})
    assert node.describe() == [SCRAPE_DURATION_DESC, SCRAPE_SUCCESS_DESC]


def test_collect_runs_all_collectors():
    node = _registry().create(Settings())
    metrics = node.collect()
    success = {m.labels["collector"]: m.value for m in _by_name(metrics, "node_scrape_collector_success")}
    assert success == {"nodata": 0.0, "static": 1.0}
    assert len(_by_name(metrics, "node_test_value")) == 1


def test_collect_empty():
    assert NodeCollector({}).collect() == []