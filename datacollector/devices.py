"""Polled devices and the readings they produce."""

from __future__ import annotations

import json
import logging
import math
import struct
import urllib.error
import urllib.request
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Optional

from .models import WriteAvtechRecordParams
from .queries import Queries
from .timeutils import utc_timestamp

_LOG = logging.getLogger(__name__)

Fetcher = Callable[[str, Optional[float]], bytes]


class DeviceDataError(ValueError):
    """Raised when a device answers with data that cannot be used."""


def http_get(url: str, timeout: Optional[float] = None) -> bytes:
    """Fetch ``url`` and return the response body, whatever the status code."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        try:
            return exc.read()
        finally:
            exc.close()


def round_float(val: float, precision: int) -> float:
    """Scale by ``precision``, round half away from zero, and scale back."""
    p = float(precision)
    if p == 0.0:
        return math.nan
    scaled = val * p
    if not math.isfinite(scaled):
        return scaled / p
    whole = float(math.trunc(scaled))
    if abs(scaled - whole) >= 0.5:
        whole += math.copysign(1.0, scaled)
    return math.copysign(whole, scaled) / p if whole == 0.0 else whole / p


def _parse_float32(text: str) -> tuple[float, Optional[str]]:
    """Parse ``text`` at single precision; return the value and an error, if any."""
    if not text or text != text.strip() or "_" in text:
        return 0.0, f"invalid syntax: {text!r}"
    try:
        value = float(text)
    except ValueError:
        return 0.0, f"invalid syntax: {text!r}"
    try:
        return struct.unpack("f", struct.pack("f", value))[0], None
    except OverflowError:
        return math.copysign(math.inf, value), f"value out of range: {text!r}"


@dataclass(frozen=True)
class AvtechReading:
    """One sensor entry of an Avtech ``getData.json`` document."""

    label: str = field(default="", metadata={"json": "label"})
    temp_f: str = field(default="", metadata={"json": "tempf"})
    temp_c: str = field(default="", metadata={"json": "tempc"})
    high_f: str = field(default="", metadata={"json": "highf"})
    high_c: str = field(default="", metadata={"json": "highc"})
    low_f: str = field(default="", metadata={"json": "lowf"})
    low_c: str = field(default="", metadata={"json": "lowc"})


def _lookup(document: dict[str, Any], key: str) -> Any:
    found = None
    for name, value in document.items():
        if name.lower() == key:
            found = value
    return found


def _reading(item: Any) -> AvtechReading:
    if item is None:
        return AvtechReading()
    if not isinstance(item, dict):
        raise DeviceDataError(f"sensor entry is not an object: {item!r}")
    values: dict[str, str] = {}
    for spec in fields(AvtechReading):
        value = _lookup(item, spec.metadata["json"])
        if value is None:
            continue
        if not isinstance(value, str):
            raise DeviceDataError(
                f"sensor field {spec.metadata['json']!r} is not a string: {value!r}"
            )
        values[spec.name] = value
    return AvtechReading(**values)


def parse_avtech_response(payload: str | bytes | bytearray) -> list[AvtechReading]:
    """Decode an Avtech JSON document into its sensor readings."""
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DeviceDataError(f"response is not UTF-8: {exc}") from exc
    try:
        document = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise DeviceDataError(f"invalid JSON: {exc}") from exc
    if document is None:
        return []
    if not isinstance(document, dict):
        raise DeviceDataError("response is not a JSON object")
    sensors = _lookup(document, "sensor")
    if sensors is None:
        return []
    if not isinstance(sensors, list):
        raise DeviceDataError("sensor field is not a list")
    return [_reading(item) for item in sensors]


@dataclass
class DeviceConfig:
    """Settings shared by every polled device.

    Intervals and timeouts are in seconds.
    """

    device_id: int = 0
    device_type_id: int = 0
    ip: str = ""
    port: int = 0
    name: str = ""
    location: str = ""
    poll_interval: float = 0.0
    timeout: float = 0.0
    logger: logging.Logger = field(default=_LOG, repr=False)
    db_store: Optional[Queries] = field(default=None, repr=False)
    fetch: Fetcher = field(default=http_get, repr=False)


@dataclass
class AvtechSensor(DeviceConfig):
    """An Avtech temperature sensor read over HTTP."""

    @property
    def url(self) -> str:
        """Where the sensor publishes its readings."""
        return f"http://{self.ip}/getData.json"

    def fetch_data(self) -> None:
        """Poll the sensor once and store its reading; failures are logged."""
        log = self.logger
        log.debug("fetching avtech sensor data deviceName=%s deviceIP=%s", self.name, self.ip)
        try:
            body = self.fetch(self.url, self.timeout or None)
        except OSError as exc:
            log.error(
                "error performing http request for avtech sensor deviceName=%s deviceIP=%s error=%s",
                self.name, self.ip, exc,
            )
            return
        try:
            readings = parse_avtech_response(body)
        except DeviceDataError as exc:
            log.error(
                "error decoding json for avtech sensor deviceName=%s deviceIP=%s error=%s",
                self.name, self.ip, exc,
            )
            return
        try:
            self.process_response(readings)
        except DeviceDataError as exc:
            log.error(
                "error processing avtech sensor response deviceName=%s deviceIP=%s error=%s",
                self.name, self.ip, exc,
            )

    def process_response(self, response: list[AvtechReading]) -> WriteAvtechRecordParams:
        """Store the first reading of ``response`` and return what was written."""
        log = self.logger
        log.debug("processing avtech sensor response")
        if not response:
            raise DeviceDataError("avtech response holds no sensor readings")
        first = response[0]

        temp_f, error = _parse_float32(first.temp_f)
        if error:
            log.error("error converting avtech temp f value to float error=%s", error)
        temp_c, error = _parse_float32(first.temp_c)
        if error:
            log.error("error converting avtech temp c value to float error=%s", error)

        params = WriteAvtechRecordParams(
            timestamp=utc_timestamp(),
            temp_f=round_float(temp_f, 2),
            temp_c=round_float(temp_c, 2),
            device_id=int(self.device_id),
            device_type_id=int(self.device_type_id),
        )
        log.debug("avtech write params built params=%r", params)

        try:
            if self.db_store is None:
                raise RuntimeError("no database store configured")
            self.db_store.write_avtech_record(params)
        except Exception as exc:  # noqa: BLE001 - any store failure is only logged
            log.error("error writing avtech record error=%s", exc)
        return params