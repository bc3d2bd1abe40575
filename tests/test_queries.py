from datetime import datetime, timezone

import pytest

from datacollector import queries as q
from datacollector.models import (
    CollectorGroup,
    DeviceByTypeIdRow,
    DeviceByTypeNameRow,
    DeviceList,
    DeviceWithGroupRow,
    WriteAvtechRecordParams,
)
from datacollector.queries import Queries, ScanError


class FakeRows:
    def __init__(self, rows):
        self._rows = list(rows)
        self.closed = False

    def __iter__(self):
        return iter(self._rows)

    def close(self):
        self.closed = True


class FakeDB:
    def __init__(self, rows=(), error=None):
        self.rows = rows
        self.error = error
        self.calls = []
        self.last_rows = None

    def execute(self, query, *args):
        self.calls.append(("execute", query, args))
        if self.error:
            raise self.error

    def query(self, query, *args):
        self.calls.append(("query", query, args))
        if self.error:
            raise self.error
        self.last_rows = FakeRows(self.rows)
        return self.last_rows


DEVICE_ROWS = [
    (1, "sensor-a", "lab", "192.0.2.10", 2, 7, True, 30),
    (3, "sensor-b", None, None, 2, None, None, None),
]
GROUP_DEVICE_ROWS = [row + ("avtechSensors",) for row in DEVICE_ROWS]
GROUP_ROWS = [(1, "avtechSensors", True, 60), (2, "ambient", False, None)]


def test_write_avtech_record_passes_params_in_order():
    db = FakeDB()
    ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    params = WriteAvtechRecordParams(ts, 70.25, 21.25, 5, 2)
    Queries(db).write_avtech_record(params)
    assert db.calls == [("execute", q.WRITE_AVTECH_RECORD, (ts, 70.25, 21.25, 5, 2))]
    assert "INSERT INTO" in db.calls[0][1]
    assert "avtech_data" in db.calls[0][1]


def test_write_avtech_record_propagates_error():
    db = FakeDB(error=RuntimeError("connection lost"))
    params = WriteAvtechRecordParams(None, 1.0, 2.0, 3, 4)
    with pytest.raises(RuntimeError, match="connection lost"):
        Queries(db).write_avtech_record(params)


@pytest.mark.parametrize(
    "method, sql",
    [
        ("get_all_collector_groups", q.GET_ALL_COLLECTOR_GROUPS),
        ("get_enabled_collector_groups", q.GET_ENABLED_COLLECTOR_GROUPS),
    ],
)
def test_collector_group_queries(method, sql):
    db = FakeDB(GROUP_ROWS)
    result = getattr(Queries(db), method)()
    assert result == [CollectorGroup(*row) for row in GROUP_ROWS]
    assert db.calls == [("query", sql, ())]
    assert db.last_rows.closed


def test_enabled_collector_groups_sends_enabled_filter():
    enabled_db = FakeDB([])
    Queries(enabled_db).get_enabled_collector_groups()
    all_db = FakeDB([])
    Queries(all_db).get_all_collector_groups()
    assert "where enabled = true" in enabled_db.calls[0][1]
    assert "where" not in all_db.calls[0][1]


def test_get_device_list():
    db = FakeDB(DEVICE_ROWS)
    result = Queries(db).get_device_list()
    assert result == [DeviceList(*row) for row in DEVICE_ROWS]
    assert result[1].ip_address is None
    assert db.calls == [("query", q.GET_DEVICE_LIST, ())]


def test_get_device_list_by_device_type_id():
    rows = [("sensor-a", "lab", "192.0.2.10", 2)]
    db = FakeDB(rows)
    result = Queries(db).get_device_list_by_device_type_id(2)
    assert result == [DeviceByTypeIdRow("sensor-a", "lab", "192.0.2.10", 2)]
    assert db.calls == [("query", q.GET_DEVICE_LIST_BY_DEVICE_TYPE_ID, (2,))]


def test_get_device_list_by_device_type_name():
    rows = [(9, "sensor-a", "lab", "192.0.2.10", 2)]
    db = FakeDB(rows)
    result = Queries(db).get_device_list_by_device_type_name("avtech")
    assert result == [DeviceByTypeNameRow(9, "sensor-a", "lab", "192.0.2.10", 2)]
    assert db.calls == [("query", q.GET_DEVICE_LIST_BY_DEVICE_TYPE_NAME, ("avtech",))]


@pytest.mark.parametrize(
    "method, sql",
    [
        ("get_devices_by_collector_group_id", q.GET_DEVICES_BY_COLLECTOR_GROUP_ID),
        (
            "get_enabled_devices_by_collector_group_id",
            q.GET_ENABLED_DEVICES_BY_COLLECTOR_GROUP_ID,
        ),
    ],
)
def test_devices_by_group_id(method, sql):
    db = FakeDB(DEVICE_ROWS)
    result = getattr(Queries(db), method)(7)
    assert result == [DeviceList(*row) for row in DEVICE_ROWS]
    assert db.calls == [("query", sql, (7,))]


def test_devices_by_group_id_accepts_null():
    db = FakeDB([])
    assert Queries(db).get_devices_by_collector_group_id(None) == []
    assert db.calls[0][2] == (None,)


@pytest.mark.parametrize(
    "method, sql",
    [
        ("get_devices_by_collector_group_name", q.GET_DEVICES_BY_COLLECTOR_GROUP_NAME),
        (
            "get_enabled_devices_by_collector_group_name",
            q.GET_ENABLED_DEVICES_BY_COLLECTOR_GROUP_NAME,
        ),
    ],
)
def test_devices_by_group_name(method, sql):
    db = FakeDB(GROUP_DEVICE_ROWS)
    result = getattr(Queries(db), method)("avtechSensors")
    assert result == [DeviceWithGroupRow(*row) for row in GROUP_DEVICE_ROWS]
    assert all(r.group_name == "avtechSensors" for r in result)
    assert db.calls == [("query", sql, ("avtechSensors",))]


def test_empty_result_is_empty_list():
    db = FakeDB([])
    assert Queries(db).get_enabled_collector_groups() == []
    assert db.last_rows.closed


def test_wrong_column_count_raises_scan_error_and_closes():
    db = FakeDB([(1, "only-two")])
    with pytest.raises(ScanError):
        Queries(db).get_device_list()
    assert db.last_rows.closed


def test_query_error_propagates():
    db = FakeDB(error=LookupError("relation missing"))
    with pytest.raises(LookupError, match="relation missing"):
        Queries(db).get_all_collector_groups()


def test_plain_iterable_rows_supported():
    class ListDB:
        def execute(self, query, *args):
            raise AssertionError("unused")

        def query(self, query, *args):
            return list(GROUP_ROWS)

    result = Queries(ListDB()).get_all_collector_groups()
    assert [g.group_name for g in result] == ["avtechSensors", "ambient"]


def test_with_tx_binds_new_handle():
    base = FakeDB(GROUP_ROWS)
    tx = FakeDB([GROUP_ROWS[0]])
    queries = Queries(base)
    tx_queries = queries.with_tx(tx)
    assert tx_queries.db is tx
    assert queries.db is base
    assert tx_queries.get_all_collector_groups() == [CollectorGroup(*GROUP_ROWS[0])]
    assert base.calls == []
    assert len(tx.calls) == 1