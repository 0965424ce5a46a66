"""Translation of Torque uploads into GTS records and their delivery."""

from __future__ import annotations

import logging
import os
import signal
from dataclasses import dataclass, field
from decimal import Decimal, DecimalException
from functools import lru_cache
from typing import Callable, Iterable, List, Mapping, Optional

from models.records import GeoTimeSeries, build_labels
from services.forwarder import ForwardingError, Warp10Forwarder
from services.key_directory import KeyDirectory, load_key_directory
from settings import ConfigurationError, get_settings

logger = logging.getLogger(__name__)

LONGITUDE_KEY = "kff1005"
LATITUDE_KEY = "kff1006"
ELEVATION_KEY = "kff1010"
DEVICE_ID_KEY = "id"
TIMESTAMP_KEY = "time"
CALLER_KEY = "eml"

_GEO_KEYS = (LONGITUDE_KEY, LATITUDE_KEY, ELEVATION_KEY)

# GTS timestamps and elevations are signed 64-bit integers.
_INT64_MAX = 2**63 - 1
_MAX_ELEVATION_METRES = Decimal(_INT64_MAX) / 1000


@dataclass
class RelayOutcome:
    """What happened to a single Torque upload."""

    gated: Optional[str] = None
    records: List[GeoTimeSeries] = field(default_factory=list)
    forwarded: int = 0
    failed: int = 0


def _terminate_process() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


def parse_elevation(raw: str) -> int:
    """Convert metres to whole millimetres, truncating toward zero.

    Unparseable, non-finite or out-of-range input yields ``0`` so the upload
    is still relayed.
    """
    try:
        metres = Decimal(raw.strip())
        if not metres.is_finite() or abs(metres) > _MAX_ELEVATION_METRES:
            raise ValueError(f"elevation out of range: {raw!r}")
        return int(metres * 1000)
    except (DecimalException, ValueError):
        logger.warning(
            "Invalid elevation, using 0",
            extra={"field_code": ELEVATION_KEY, "invalid_value": raw},
        )
        return 0


def parse_timestamp(raw: Optional[str], scale: int) -> Optional[int]:
    if not raw:
        return None
    try:
        value = int(raw.strip()) * scale
        if abs(value) > _INT64_MAX:
            raise ValueError(f"timestamp out of range: {raw!r}")
        return value
    except ValueError:
        logger.warning(
            "Invalid timestamp, leaving it to the datastore",
            extra={"field_code": TIMESTAMP_KEY, "invalid_value": raw},
        )
        return None


class TorqueRelay:
    """Gates, translates and forwards Torque uploads."""

    def __init__(
        self,
        directory: KeyDirectory,
        forwarder: Warp10Forwarder,
        allowed_users: Iterable[str],
        failure_policy: str = "log",
        timestamp_scale: int = 1000,
        terminate: Callable[[], None] = _terminate_process,
    ) -> None:
        if failure_policy not in ("log", "fatal"):
            raise ConfigurationError(f"Unknown forwarding failure policy {failure_policy!r}.")
        self.directory = directory
        self.forwarder = forwarder
        self.allowed_users = frozenset(allowed_users)
        self.failure_policy = failure_policy
        self.timestamp_scale = timestamp_scale
        self._terminate = terminate

    def is_authorized(self, caller: Optional[str]) -> bool:
        return caller is not None and caller in self.allowed_users

    def gate(self, params: Mapping[str, str]) -> Optional[str]:
        """Return the reason an upload is ignored, or ``None`` when it passes."""
        caller = params.get(CALLER_KEY)
        if not self.is_authorized(caller):
            logger.info("Unauthorized upload ignored", extra={"caller": caller})
            return "unauthorized"
        if any(not params.get(key) for key in _GEO_KEYS):
            logger.info(
                "No GPS data, moving on",
                extra={"device_id": params.get(DEVICE_ID_KEY)},
            )
            return "no_gps"
        return None

    def translate(self, params: Mapping[str, str]) -> List[GeoTimeSeries]:
        """Build one record per recognised field code, in query order.

        Expects an upload that already passed :meth:`gate`.
        """
        device_id = params.get(DEVICE_ID_KEY, "")
        latitude = params[LATITUDE_KEY]
        longitude = params[LONGITUDE_KEY]
        elevation = parse_elevation(params[ELEVATION_KEY])
        timestamp = parse_timestamp(params.get(TIMESTAMP_KEY), self.timestamp_scale)

        records: List[GeoTimeSeries] = []
        for key, value in params.items():
            entry = self.directory.lookup(key)
            if entry is None:
                continue
            records.append(
                GeoTimeSeries(
                    timestamp=timestamp,
                    latitude=latitude,
                    longitude=longitude,
                    elevation=elevation,
                    metric_name=entry.metric_name,
                    labels=build_labels(device_id, entry.tag),
                    value=value,
                )
            )
        return records

    def relay(self, params: Mapping[str, str]) -> RelayOutcome:
        """Forward every record of an upload; failures never propagate."""
        reason = self.gate(params)
        if reason is not None:
            return RelayOutcome(gated=reason)

        outcome = RelayOutcome(records=self.translate(params))
        for record in outcome.records:
            try:
                self.forwarder.send(record)
            except ForwardingError as exc:
                outcome.failed += 1
                if self.failure_policy == "fatal":
                    logger.critical(
                        "Forwarding failed, terminating relay",
                        extra={
                            "metric": record.metric_name,
                            "status_code": exc.status_code,
                            "reason": str(exc),
                        },
                    )
                    self._terminate()
                    break
                logger.error(
                    "Forwarding failed",
                    extra={
                        "metric": record.metric_name,
                        "status_code": exc.status_code,
                        "reason": str(exc),
                    },
                )
                continue
            outcome.forwarded += 1

        logger.info(
            "Relayed Torque upload",
            extra={
                "device_id": params.get(DEVICE_ID_KEY),
                "forwarded": outcome.forwarded,
                "failed": outcome.failed,
            },
        )
        return outcome

    def shutdown(self) -> None:
        self.forwarder.close()


@lru_cache
def build_default_relay() -> TorqueRelay:
    """Factory that wires the relay from environment settings."""
    settings = get_settings()
    directory = load_key_directory(settings.keys_source)
    forwarder = Warp10Forwarder(
        endpoint=settings.warp10_endpoint,
        token=settings.warp10_token,
        timeout=settings.forward_timeout,
    )
    return TorqueRelay(
        directory=directory,
        forwarder=forwarder,
        allowed_users=settings.allowed_users,
        failure_policy=settings.failure_policy,
        timestamp_scale=settings.timestamp_scale,
    )
