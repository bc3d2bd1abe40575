"""Records stored in and read from the collector database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class AmbientStationDatum:
    """One reading from an ambient weather station."""

    id: int
    timestamp: Optional[datetime] = None
    date: Optional[str] = None
    timezone: Optional[str] = None
    date_utc: Optional[int] = None
    inside_temp_f: Optional[float] = None
    inside_temp_f_feels_like: Optional[float] = None
    inside_temp_c: Optional[float] = None
    outside_temp_f: Optional[float] = None
    outside_temp_f_feels_like: Optional[float] = None
    inside_humidity: Optional[float] = None
    outside_humidity: Optional[float] = None
    inside_dew_point: Optional[float] = None
    outside_dew_point: Optional[float] = None
    barometric_relative: Optional[float] = None
    barometric_absolute: Optional[float] = None
    wind_direction: Optional[float] = None
    wind_speed_mph: Optional[float] = None
    wind_gust_mph: Optional[float] = None
    max_daily_gust_mph: Optional[float] = None
    hourly_rain_inches: Optional[float] = None
    event_rain_inches: Optional[float] = None
    daily_rain_inches: Optional[float] = None
    weekly_rain_inches: Optional[float] = None
    monthly_rain_inches: Optional[float] = None
    total_rain_inches: Optional[float] = None
    uv_index: Optional[float] = None
    solar_radiation: Optional[float] = None
    outside_batt_status: Optional[int] = None
    co2_bat_status: Optional[int] = None
    device_id: Optional[int] = None
    device_type_id: Optional[int] = None


@dataclass(frozen=True)
class AvtechDatum:
    """A stored Avtech temperature reading."""

    id: int
    timestamp: Optional[datetime]
    temp_f: float
    temp_c: float
    device_id: int
    device_type_id: int


@dataclass(frozen=True)
class CollectorGroup:
    """A group of devices polled by one collector."""

    id: int
    group_name: str
    # Global flag to enable collection for all devices in this group.
    enabled: bool
    # Default poll interval for each device in the group.
    poll_interval_seconds: Optional[int]


@dataclass(frozen=True)
class DeviceList:
    """A row of the device list."""

    id: int
    device_name: str
    location: Optional[str]
    ip_address: Optional[str]
    device_type_id: int
    collector_group_id: Optional[int]
    enabled: Optional[bool]
    poll_interval_seconds: Optional[int]


@dataclass(frozen=True)
class DeviceType:
    """A kind of device."""

    id: int
    device_type: str


@dataclass(frozen=True)
class WriteAvtechRecordParams:
    """Values for inserting a new Avtech reading."""

    timestamp: Optional[datetime]
    temp_f: float
    temp_c: float
    device_id: int
    device_type_id: int


@dataclass(frozen=True)
class DeviceByTypeIdRow:
    """A device selected by its device type id."""

    device_name: str
    location: Optional[str]
    ip_address: Optional[str]
    device_type_id: int


@dataclass(frozen=True)
class DeviceByTypeNameRow:
    """A device selected by its device type name."""

    id: int
    device_name: str
    location: Optional[str]
    ip_address: Optional[str]
    device_type_id: int


@dataclass(frozen=True)
class DeviceWithGroupRow:
    """A device joined with the name of its collector group."""

    id: int
    device_name: str
    location: Optional[str]
    ip_address: Optional[str]
    device_type_id: int
    collector_group_id: Optional[int]
    enabled: Optional[bool]
    poll_interval_seconds: Optional[int]
    group_name: str