"""The collector service: database setup and collector group wiring."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
import re
import socket
import struct
import threading
import urllib.parse
from datetime import datetime
from typing import Any, Callable, Optional

from .collectors import AvtechCollector, Collector, CollectorGroupConfig
from .config import AppConfig
from .devices import AvtechSensor
from .models import CollectorGroup, DeviceList
from .queries import Queries

_LOG = logging.getLogger(__name__)

AVTECH_GROUP = "avtechSensors"
AVTECH_PORT = 999
DEVICE_TIMEOUT_SECONDS = 1.0

Connector = Callable[[str], Any]


def build_dsn(config: AppConfig) -> str:
    """Return the PostgreSQL connection URL for ``config``."""
    return (
        f"postgres://{config.db_user}:{config.db_password}"
        f"@{config.db_host}:{config.db_port}/{config.db_name}?sslmode=disable"
    )


class _PostgresError(RuntimeError):
    """Raised when the database server reports an error."""


_TIMESTAMP = re.compile(
    r"(?P<base>\d{4}-\d\d-\d\d[ T]\d\d:\d\d:\d\d)(?:\.(?P<frac>\d+))?"
    r"(?P<tz>[+-]\d\d(?::?\d\d)?)?$"
)


def _parse_timestamp(text: str) -> Any:
    match = _TIMESTAMP.match(text)
    if not match:
        return text
    frac = (match["frac"] or "").ljust(6, "0")[:6]
    tz = match["tz"] or ""
    if len(tz) == 3:
        tz += ":00"
    elif len(tz) == 5:
        tz = f"{tz[:3]}:{tz[3:]}"
    return datetime.fromisoformat(f"{match['base']}.{frac}{tz}")


_DECODERS: dict[int, Callable[[str], Any]] = {
    16: lambda text: text == "t",
    20: int,
    21: int,
    23: int,
    700: float,
    701: float,
    1700: float,
    1114: _parse_timestamp,
    1184: _parse_timestamp,
}


def _encode_param(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    if isinstance(value, bool):
        return b"t" if value else b"f"
    if isinstance(value, datetime):
        return value.isoformat().encode()
    if isinstance(value, float):
        return repr(value).encode()
    return str(value).encode()


def _error_text(body: bytes) -> str:
    parts = {chr(part[0]): part[1:].decode(errors="replace") for part in body.split(b"\0") if part}
    return f"{parts.get('S', 'ERROR')}: {parts.get('M', 'unknown error')} (SQLSTATE {parts.get('C', '?')})"


class _PgConnection:
    """A single PostgreSQL connection speaking the frontend/backend protocol."""

    def __init__(self, dsn: str, timeout: float = 10.0) -> None:
        parts = urllib.parse.urlsplit(dsn)
        user = urllib.parse.unquote(parts.username or "")
        secret = urllib.parse.unquote(parts.password or "")
        host = parts.hostname or "localhost"
        port = parts.port or 5432
        dbname = urllib.parse.unquote(parts.path.lstrip("/")) or user
        self._sock = socket.create_connection((host, port), timeout)
        self._sock.settimeout(None)
        self._reader = self._sock.makefile("rb")
        self._lock = threading.Lock()
        try:
            self._startup(user, secret, dbname)
        except BaseException:
            self.close()
            raise

    def _read(self, size: int) -> bytes:
        data = self._reader.read(size)
        if data is None or len(data) < size:
            raise ConnectionError("database connection closed")
        return data

    def _receive(self) -> tuple[bytes, bytes]:
        header = self._read(5)
        (length,) = struct.unpack("!I", header[1:])
        return header[:1], self._read(length - 4)

    @staticmethod
    def _message(kind: bytes, payload: bytes) -> bytes:
        return kind + struct.pack("!I", len(payload) + 4) + payload

    def _send(self, kind: bytes, payload: bytes) -> None:
        self._sock.sendall(self._message(kind, payload))

    def _startup(self, user: str, secret: str, dbname: str) -> None:
        payload = (
            struct.pack("!I", 196608)
            + b"user\0" + user.encode() + b"\0"
            + b"database\0" + dbname.encode() + b"\0\0"
        )
        self._sock.sendall(struct.pack("!I", len(payload) + 4) + payload)
        while True:
            kind, body = self._receive()
            if kind == b"E":
                raise _PostgresError(_error_text(body))
            if kind == b"Z":
                return
            if kind != b"R":
                continue
            (code,) = struct.unpack("!I", body[:4])
            if code == 0:
                continue
            if code == 3:
                self._send(b"p", secret.encode() + b"\0")
            elif code == 5:
                inner = hashlib.md5((secret + user).encode()).hexdigest()
                outer = "md5" + hashlib.md5(inner.encode() + body[4:8]).hexdigest()
                self._send(b"p", outer.encode() + b"\0")
            elif code == 10:
                if b"SCRAM-SHA-256" not in body[4:].split(b"\0"):
                    raise _PostgresError("server offers no supported SASL mechanism")
                self._scram(secret)
            else:
                raise _PostgresError(f"unsupported authentication method {code}")

    def _expect_auth(self, expected: int) -> str:
        kind, body = self._receive()
        if kind == b"E":
            raise _PostgresError(_error_text(body))
        if kind != b"R" or struct.unpack("!I", body[:4])[0] != expected:
            raise _PostgresError("unexpected message during SCRAM authentication")
        return body[4:].decode()

    def _scram(self, secret: str) -> None:
        nonce = base64.b64encode(os.urandom(18)).decode()
        first_bare = f"n=,r={nonce}"
        first = b"n,," + first_bare.encode()
        self._send(b"p", b"SCRAM-SHA-256\0" + struct.pack("!i", len(first)) + first)

        server_first = self._expect_auth(11)
        attrs = dict(item.split("=", 1) for item in server_first.split(","))
        server_nonce = attrs["r"]
        if not server_nonce.startswith(nonce):
            raise _PostgresError("SCRAM server nonce does not extend the client nonce")
        salted = hashlib.pbkdf2_hmac(
            "sha256", secret.encode(), base64.b64decode(attrs["s"]), int(attrs["i"])
        )
        client_key = hmac.new(salted, b"Client Key", hashlib.sha256).digest()
        stored_key = hashlib.sha256(client_key).digest()
        without_proof = f"c=biws,r={server_nonce}"
        auth_message = f"{first_bare},{server_first},{without_proof}".encode()
        signature = hmac.new(stored_key, auth_message, hashlib.sha256).digest()
        proof = bytes(a ^ b for a, b in zip(client_key, signature))
        self._send(b"p", f"{without_proof},p={base64.b64encode(proof).decode()}".encode())

        server_final = self._expect_auth(12)
        final_attrs = dict(item.split("=", 1) for item in server_final.split(","))
        server_key = hmac.new(salted, b"Server Key", hashlib.sha256).digest()
        expected = hmac.new(server_key, auth_message, hashlib.sha256).digest()
        if not hmac.compare_digest(base64.b64decode(final_attrs.get("v", "")), expected):
            raise _PostgresError("SCRAM server signature mismatch")

    def _run(self, sql: str, args: tuple[Any, ...]) -> tuple[list[tuple[Any, ...]], str]:
        parse = b"\0" + sql.encode() + b"\0" + struct.pack("!H", 0)
        bind = bytearray(b"\0\0" + struct.pack("!HH", 0, len(args)))
        for value in args:
            encoded = _encode_param(value)
            if encoded is None:
                bind += struct.pack("!i", -1)
            else:
                bind += struct.pack("!i", len(encoded)) + encoded
        bind += struct.pack("!H", 0)
        batch = b"".join(
            (
                self._message(b"P", parse),
                self._message(b"B", bytes(bind)),
                self._message(b"D", b"P\0"),
                self._message(b"E", b"\0" + struct.pack("!I", 0)),
                self._message(b"S", b""),
            )
        )
        rows: list[tuple[Any, ...]] = []
        oids: list[int] = []
        tag = ""
        error: Optional[str] = None
        with self._lock:
            self._sock.sendall(batch)
            while True:
                kind, body = self._receive()
                if kind == b"T":
                    oids = self._column_types(body)
                elif kind == b"D":
                    rows.append(self._data_row(body, oids))
                elif kind == b"C":
                    tag = body.rstrip(b"\0").decode()
                elif kind == b"E":
                    error = _error_text(body)
                elif kind == b"Z":
                    break
        if error is not None:
            raise _PostgresError(error)
        return rows, tag

    @staticmethod
    def _column_types(body: bytes) -> list[int]:
        (count,) = struct.unpack("!H", body[:2])
        offset = 2
        oids = []
        for _ in range(count):
            offset = body.index(b"\0", offset) + 1
            (oid,) = struct.unpack("!I", body[offset + 6 : offset + 10])
            oids.append(oid)
            offset += 18
        return oids

    @staticmethod
    def _data_row(body: bytes, oids: list[int]) -> tuple[Any, ...]:
        (count,) = struct.unpack("!H", body[:2])
        offset = 2
        values = []
        for column in range(count):
            (length,) = struct.unpack("!i", body[offset : offset + 4])
            offset += 4
            if length < 0:
                values.append(None)
                continue
            text = body[offset : offset + length].decode()
            offset += length
            oid = oids[column] if column < len(oids) else 0
            values.append(_DECODERS.get(oid, str)(text))
        return tuple(values)

    def execute(self, query: str, *args: Any) -> str:
        """Run a statement and return its command tag."""
        return self._run(query, args)[1]

    def query(self, query: str, *args: Any) -> list[tuple[Any, ...]]:
        """Run a statement and return its rows."""
        return self._run(query, args)[0]

    def ping(self) -> None:
        """Check that the server answers."""
        self.query("SELECT 1")

    def close(self) -> None:
        """Say goodbye to the server and close the socket."""
        try:
            self._sock.sendall(self._message(b"X", b""))
        except OSError:
            pass
        self._reader.close()
        self._sock.close()


def _connect_postgres(dsn: str) -> _PgConnection:
    return _PgConnection(dsn)


class Server:
    """Connects to the database and runs the enabled collector groups."""

    def __init__(
        self,
        stop_event: Optional[threading.Event] = None,
        config: Optional[AppConfig] = None,
        connect: Optional[Connector] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.config = config if config is not None else AppConfig()
        self._connect = connect if connect is not None else _connect_postgres
        self.logger = logger if logger is not None else _LOG
        self.collector_groups: dict[str, Collector] = {}
        self.db_store: Optional[Queries] = None
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        """Set up the database and run the collectors until the stop event is set.

        Failures are logged and make ``start`` return early.
        """
        log = self.logger
        log.info("Starting server...")
        try:
            self._setup_database()
        except Exception as exc:  # noqa: BLE001 - reported, then the server idles
            log.error("error setting up database error=%s", exc)
            return

        self._configure_collectors()
        if not self.collector_groups:
            log.warning("No collectors configured, server will not collect any data")
            return

        for group_name, group in list(self.collector_groups.items()):
            log.info("Starting collector groupName=%s", group_name)
            try:
                group.start()
            except Exception as exc:  # noqa: BLE001
                log.error("Failed to start collector error=%s", exc)
                return
        log.info("Server started successfully")

    def stop(self) -> None:
        """Wait for the collectors and the database to shut down."""
        log = self.logger
        log.info("Stopping server...")
        for group in self.collector_groups.values():
            group.stop()
        while self._threads:
            self._threads.pop().join()
        log.info("Server stopped successfully")

    def _setup_database(self) -> None:
        log = self.logger
        try:
            handle = self._connect(build_dsn(self.config))
        except Exception as exc:
            log.error("failed to create database connection pool error=%s", exc)
            raise
        ping = getattr(handle, "ping", None)
        if callable(ping):
            try:
                ping()
            except Exception as exc:
                log.error("failed to ping database error=%s", exc)
                self._close(handle)
                raise
        log.info("Database ping successful")
        self.db_store = Queries(handle)

        closer = threading.Thread(
            target=self._close_on_stop, args=(handle,), name="db-closer", daemon=True
        )
        self._threads.append(closer)
        closer.start()

    @staticmethod
    def _close(handle: Any) -> None:
        close = getattr(handle, "close", None)
        if callable(close):
            close()

    def _close_on_stop(self, handle: Any) -> None:
        self.stop_event.wait()
        self._close(handle)
        self.logger.info("Database pool closed")

    def _configure_collectors(self) -> None:
        log = self.logger
        assert self.db_store is not None
        try:
            groups = self.db_store.get_enabled_collector_groups()
        except Exception as exc:  # noqa: BLE001
            log.error("error fetching collector groups from database error=%s", exc)
            return
        if not groups:
            log.warning("no enabled collector groups exist")
            return

        for group in groups:
            try:
                rows = self.db_store.get_enabled_devices_by_collector_group_id(group.id)
            except Exception as exc:  # noqa: BLE001
                log.error(
                    "error fetching devices from database collectorGroup=%r error=%s", group, exc
                )
                continue
            if not rows:
                log.warning("no enabled devices found for collector group group=%r", group)
                continue
            if group.group_name == AVTECH_GROUP:
                log.debug("adding devices to enabledDevicesMap devices=%r", rows)
                self.collector_groups[group.group_name] = self._configure_avtech_sensors(
                    rows, group
                )

    def _configure_avtech_sensors(
        self, rows: list[DeviceList], group: CollectorGroup
    ) -> AvtechCollector:
        log = self.logger
        group_interval = group.poll_interval_seconds or 0
        sensors = []
        for row in rows:
            log.debug("creating device row=%r", row)
            if row.poll_interval_seconds is not None:
                interval = float(row.poll_interval_seconds)
                log.debug(
                    "using device-specific poll interval device=%s interval=%ss",
                    row.device_name, interval,
                )
            else:
                interval = float(group_interval)
                log.debug(
                    "using group default poll interval device=%s interval=%ss",
                    row.device_name, interval,
                )
            sensors.append(
                AvtechSensor(
                    device_id=row.id,
                    device_type_id=row.device_type_id,
                    ip=row.ip_address or "",
                    port=AVTECH_PORT,
                    name=row.device_name,
                    location=row.location or "",
                    poll_interval=interval,
                    timeout=DEVICE_TIMEOUT_SECONDS,
                    logger=log,
                    db_store=self.db_store,
                )
            )
        config = CollectorGroupConfig(
            stop_event=self.stop_event, logger=log, db_store=self.db_store
        )
        return AvtechCollector(config, sensors)