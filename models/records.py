"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class KeyEntry:
    """A Torque field code bound to a metric name and static labels."""

    field_code: str
    metric_name: str
    tag: str = ""


@dataclass(frozen=True, slots=True)
class GeoTimeSeries:
    """A single geolocated reading in the Warp10 GTS input format.

    ``timestamp`` is expressed in microseconds since the epoch; ``None`` leaves
    the slot empty so the datastore assigns its own ingestion time.
    ``elevation`` is in millimetres. Latitude, longitude, labels and value are
    written as-is, without escaping.
    """

    timestamp: Optional[int]
    latitude: str
    longitude: str
    elevation: int
    metric_name: str
    labels: str
    value: str

    def serialize(self) -> str:
        ts = "" if self.timestamp is None else str(self.timestamp)
        return (
            f"{ts}/{self.latitude}:{self.longitude}/{self.elevation} "
            f"{self.metric_name}{{{self.labels}}} {self.value}"
        )

    def to_bytes(self) -> bytes:
        return self.serialize().encode("utf-8")


def build_labels(device_id: str, tag: str) -> str:
    """Prefix the directory tag with the device identity label."""
    identity = f"id={device_id}"
    if not tag:
        return identity
    return f"{identity},{tag}"
