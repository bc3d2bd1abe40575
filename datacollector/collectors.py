"""Collector groups that poll their devices in the background."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from .devices import AvtechSensor
from .queries import Queries

_LOG = logging.getLogger(__name__)


class Collector(ABC):
    """A group of devices collected together."""

    @abstractmethod
    def start(self) -> None:
        """Begin collecting; returns once collection is told to stop."""

    @abstractmethod
    def stop(self) -> None:
        """Wait for collection to finish."""


@dataclass
class CollectorGroupConfig:
    """What a collector group shares with the rest of the service."""

    stop_event: threading.Event = field(default_factory=threading.Event)
    logger: logging.Logger = field(default=_LOG, repr=False)
    db_store: Optional[Queries] = field(default=None, repr=False)


class AvtechCollector(Collector):
    """Polls a set of Avtech sensors, each on its own interval."""

    def __init__(self, config: CollectorGroupConfig, devices: Iterable[AvtechSensor]) -> None:
        self.config = config
        self.devices = list(devices)
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        """Start polling every device and block until the stop event is set."""
        self.config.logger.info("Starting Avtech collector...")
        for device in self.devices:
            if device.poll_interval <= 0:
                raise ValueError(
                    f"non-positive poll interval for device {device.name!r}: {device.poll_interval}"
                )
        for device in self.devices:
            thread = threading.Thread(
                target=self._collect, args=(device,), name=f"avtech-{device.name}", daemon=True
            )
            self._threads.append(thread)
            thread.start()
        self.config.stop_event.wait()

    def stop(self) -> None:
        """Wait for every polling thread to finish."""
        log = self.config.logger
        log.info("Stopping Avtech collector...")
        while self._threads:
            self._threads.pop().join()
        log.info("Avtech collector stopped successfully")

    def _collect(self, device: AvtechSensor) -> None:
        self.config.logger.info(
            "collecting avtech sensor data deviceName=%s deviceIP=%s pollInterval=%s",
            device.name, device.ip, device.poll_interval,
        )
        stop = self.config.stop_event
        interval = device.poll_interval
        next_tick = time.monotonic() + interval
        device.fetch_data()
        while True:
            if stop.wait(max(next_tick - time.monotonic(), 0.0)):
                return
            device.fetch_data()
            now = time.monotonic()
            next_tick += interval
            while next_tick <= now:
                next_tick += interval