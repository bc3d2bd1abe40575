import threading
import time
from dataclasses import dataclass, field

import pytest

from datacollector.collectors import AvtechCollector, Collector, CollectorGroupConfig
from datacollector.devices import AvtechSensor

SAMPLE = b'{"sensor": [{"label": "Sensor 1", "tempf": "72.50", "tempc": "22.50"}]}'


@dataclass
class FakeDevice:
    name: str
    poll_interval: float
    ip: str = "10.0.0.9"
    target: int = 1
    calls: int = 0
    reached: threading.Event = field(default_factory=threading.Event)

    def fetch_data(self):
        self.calls += 1
        if self.calls >= self.target:
            self.reached.set()


class FakeStore:
    def __init__(self):
        self.records = []

    def write_avtech_record(self, params):
        self.records.append(params)


def run_in_background(collector):
    thread = threading.Thread(target=collector.start, daemon=True)
    thread.start()
    return thread


def test_start_with_stop_already_set_polls_each_device_once():
    config = CollectorGroupConfig()
    config.stop_event.set()
    devices = [FakeDevice("a", 10.0), FakeDevice("b", 10.0)]
    collector = AvtechCollector(config, devices)
    collector.start()
    collector.stop()
    assert [device.calls for device in devices] == [1, 1]
    assert isinstance(collector, Collector)


def test_start_blocks_until_stopped_and_polls_periodically():
    config = CollectorGroupConfig()
    device = FakeDevice("fast", 0.01, target=3)
    collector = AvtechCollector(config, [device])
    runner = run_in_background(collector)
    assert device.reached.wait(5)
    assert runner.is_alive()
    config.stop_event.set()
    runner.join(5)
    assert not runner.is_alive()
    collector.stop()
    settled = device.calls
    assert settled >= 3
    time.sleep(0.05)
    assert device.calls == settled


def test_non_positive_interval_is_rejected_before_polling():
    config = CollectorGroupConfig()
    good = FakeDevice("good", 5.0)
    bad = FakeDevice("bad", 0.0)
    collector = AvtechCollector(config, [good, bad])
    with pytest.raises(ValueError):
        collector.start()
    assert (good.calls, bad.calls) == (0, 0)


def test_collector_stores_readings_from_real_sensor():
    store = FakeStore()
    sensor = AvtechSensor(
        device_id=4,
        device_type_id=2,
        ip="10.0.0.8",
        name="probe",
        poll_interval=60.0,
        db_store=store,
        fetch=lambda url, timeout: SAMPLE,
    )
    config = CollectorGroupConfig(db_store=store)
    config.stop_event.set()
    collector = AvtechCollector(config, [sensor])
    collector.start()
    collector.stop()
    assert [(r.device_id, r.temp_f) for r in store.records] == [(4, 72.5)]


def test_stop_without_start_returns_and_devices_are_kept():
    devices = [FakeDevice("idle", 1.0)]
    collector = AvtechCollector(CollectorGroupConfig(), iter(devices))
    collector.stop()
    assert collector.devices == devices
    assert devices[0].calls == 0