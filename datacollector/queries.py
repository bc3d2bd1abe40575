"""Typed queries against the collector database."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Callable, Optional, Protocol, TypeVar

from .models import (
    CollectorGroup,
    DeviceByTypeIdRow,
    DeviceByTypeNameRow,
    DeviceList,
    DeviceWithGroupRow,
    WriteAvtechRecordParams,
)

T = TypeVar("T")

WRITE_AVTECH_RECORD = """-- name: WriteAvtechRecord :exec
INSERT INTO
    avtech_data(id, timestamp, temp_f, temp_c, device_id, device_type_id)
VALUES (DEFAULT, $1, $2, $3, $4, $5)
"""

GET_ALL_COLLECTOR_GROUPS = """-- name: GetAllCollectorGroups :many
select id, group_name, enabled, poll_interval_seconds from collector_groups
"""

GET_DEVICE_LIST = """-- name: GetDeviceList :many
SELECT id, device_name, location, ip_address, device_type_id, collector_group_id, enabled, poll_interval_seconds FROM device_list
"""

GET_DEVICE_LIST_BY_DEVICE_TYPE_ID = """-- name: GetDeviceListByDeviceTypeId :many
SELECT 
    dl.device_name,
    dl.location,
    dl.ip_address,
    dl.device_type_id
FROM device_list dl 
WHERE dl.device_type_id = $1
"""

GET_DEVICE_LIST_BY_DEVICE_TYPE_NAME = """-- name: GetDeviceListByDeviceTypeName :many
SELECT 
    dl.id,
    dl.device_name,
    dl.location,
    dl.ip_address,
    dl.device_type_id
FROM device_list dl 
INNER JOIN device_types dt ON dl.device_type_id = dt.id
WHERE dt.device_type = $1
"""

GET_DEVICES_BY_COLLECTOR_GROUP_ID = """-- name: GetDevicesByCollectorGroupID :many
select id, device_name, location, ip_address, device_type_id, collector_group_id, enabled, poll_interval_seconds from device_list where collector_group_id = $1
"""

GET_DEVICES_BY_COLLECTOR_GROUP_NAME = """-- name: GetDevicesByCollectorGroupName :many
select dl.id, dl.device_name, dl.location, dl.ip_address, dl.device_type_id, dl.collector_group_id, dl.enabled, dl.poll_interval_seconds, cg.group_name
from device_list dl
inner join collector_groups cg on dl.collector_group_id = cg.id
where cg.group_name = $1
"""

GET_ENABLED_COLLECTOR_GROUPS = """-- name: GetEnabledCollectorGroups :many
select id, group_name, enabled, poll_interval_seconds from collector_groups where enabled = true
"""

GET_ENABLED_DEVICES_BY_COLLECTOR_GROUP_ID = """-- name: GetEnabledDevicesByCollectorGroupID :many
select id, device_name, location, ip_address, device_type_id, collector_group_id, enabled, poll_interval_seconds from device_list where collector_group_id = $1 and enabled = true
"""

GET_ENABLED_DEVICES_BY_COLLECTOR_GROUP_NAME = """-- name: GetEnabledDevicesByCollectorGroupName :many
select dl.id, dl.device_name, dl.location, dl.ip_address, dl.device_type_id, dl.collector_group_id, dl.enabled, dl.poll_interval_seconds, cg.group_name
from device_list dl
inner join collector_groups cg on dl.collector_group_id = cg.id
where cg.group_name = $1 and dl.enabled = true
"""


class ScanError(RuntimeError):
    """Raised when a result row does not match the expected columns."""


class DBTX(Protocol):
    """A connection or transaction that runs queries with ``$n`` placeholders."""

    def execute(self, query: str, *args: Any) -> Any:
        """Run a statement that returns no rows."""

    def query(self, query: str, *args: Any) -> Iterable[Sequence[Any]]:
        """Run a statement and return its rows."""


class Queries:
    """Named queries bound to a database handle."""

    def __init__(self, db: DBTX) -> None:
        self._db = db

    @property
    def db(self) -> DBTX:
        """The handle the queries run on."""
        return self._db

    def with_tx(self, tx: DBTX) -> "Queries":
        """Return the same queries bound to a transaction."""
        return Queries(tx)

    def _many(self, sql: str, build: Callable[..., T], *args: Any) -> list[T]:
        rows = self._db.query(sql, *args)
        try:
            items = []
            for row in rows:
                try:
                    items.append(build(*row))
                except TypeError as exc:
                    raise ScanError(f"cannot scan row {row!r}: {exc}") from exc
            return items
        finally:
            close = getattr(rows, "close", None)
            if callable(close):
                close()

    def write_avtech_record(self, params: WriteAvtechRecordParams) -> None:
        """Insert one Avtech temperature reading."""
        self._db.execute(
            WRITE_AVTECH_RECORD,
            params.timestamp,
            params.temp_f,
            params.temp_c,
            params.device_id,
            params.device_type_id,
        )

    def get_all_collector_groups(self) -> list[CollectorGroup]:
        """Return every collector group."""
        return self._many(GET_ALL_COLLECTOR_GROUPS, CollectorGroup)

    def get_device_list(self) -> list[DeviceList]:
        """Return every device."""
        return self._many(GET_DEVICE_LIST, DeviceList)

    def get_device_list_by_device_type_id(self, device_type_id: int) -> list[DeviceByTypeIdRow]:
        """Return the devices of one device type id."""
        return self._many(GET_DEVICE_LIST_BY_DEVICE_TYPE_ID, DeviceByTypeIdRow, device_type_id)

    def get_device_list_by_device_type_name(self, device_type: str) -> list[DeviceByTypeNameRow]:
        """Return the devices of the named device type."""
        return self._many(GET_DEVICE_LIST_BY_DEVICE_TYPE_NAME, DeviceByTypeNameRow, device_type)

    def get_devices_by_collector_group_id(
        self, collector_group_id: Optional[int]
    ) -> list[DeviceList]:
        """Return the devices in one collector group."""
        return self._many(GET_DEVICES_BY_COLLECTOR_GROUP_ID, DeviceList, collector_group_id)

    def get_devices_by_collector_group_name(self, group_name: str) -> list[DeviceWithGroupRow]:
        """Return the devices in the named collector group."""
        return self._many(GET_DEVICES_BY_COLLECTOR_GROUP_NAME, DeviceWithGroupRow, group_name)

    def get_enabled_collector_groups(self) -> list[CollectorGroup]:
        """Return the collector groups that are enabled."""
        return self._many(GET_ENABLED_COLLECTOR_GROUPS, CollectorGroup)

    def get_enabled_devices_by_collector_group_id(
        self, collector_group_id: Optional[int]
    ) -> list[DeviceList]:
        """Return the enabled devices in one collector group."""
        return self._many(
            GET_ENABLED_DEVICES_BY_COLLECTOR_GROUP_ID, DeviceList, collector_group_id
        )

    def get_enabled_devices_by_collector_group_name(
        self, group_name: str
    ) -> list[DeviceWithGroupRow]:
        """Return the enabled devices in the named collector group."""
        return self._many(
            GET_ENABLED_DEVICES_BY_COLLECTOR_GROUP_NAME, DeviceWithGroupRow, group_name
        )