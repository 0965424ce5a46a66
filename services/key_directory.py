"""Lookup table binding Torque field codes to metric names."""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional

import httpx

from models.records import KeyEntry
from settings import ConfigurationError

logger = logging.getLogger(__name__)

_COLUMN_COUNT = 3


class KeyDirectory:
    """Read-only mapping of field codes to :class:`KeyEntry` values."""

    def __init__(self, entries: Mapping[str, KeyEntry]) -> None:
        self._entries: Mapping[str, KeyEntry] = MappingProxyType(dict(entries))

    def lookup(self, field_code: str) -> Optional[KeyEntry]:
        return self._entries.get(field_code)

    def __contains__(self, field_code: object) -> bool:
        return field_code in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[KeyEntry]:
        return iter(self._entries.values())


def parse_key_table(text: str) -> KeyDirectory:
    """Parse a ``code,metric,tag`` CSV document, skipping its header row.

    Every non-blank row must carry exactly three columns. A repeated field
    code keeps the last row seen.
    """
    reader = csv.reader(io.StringIO(text))
    entries: Dict[str, KeyEntry] = {}
    header_seen = False
    for row in reader:
        if not row:
            continue
        if len(row) != _COLUMN_COUNT:
            raise ConfigurationError(
                f"Key table line {reader.line_num} has {len(row)} columns, expected {_COLUMN_COUNT}."
            )
        if not header_seen:
            header_seen = True
            continue
        field_code, metric_name, tag = row
        entries[field_code] = KeyEntry(field_code=field_code, metric_name=metric_name, tag=tag)
        logger.debug(
            "Registered Torque key",
            extra={"field_code": field_code, "metric": metric_name},
        )
    return KeyDirectory(entries)


def _fetch_remote(source: str, client: Optional[httpx.Client]) -> str:
    owns_client = client is None
    http = client or httpx.Client(timeout=30.0, follow_redirects=True)
    try:
        response = http.get(source)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise ConfigurationError(
            f"Key table at {source} returned status {exc.response.status_code}."
        ) from exc
    except httpx.HTTPError as exc:
        raise ConfigurationError(f"Key table at {source} is unreachable: {exc}") from exc
    finally:
        if owns_client:
            http.close()
    return response.text


def _read_local(source: str) -> str:
    path = Path(source)
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Key table at {path} cannot be read: {exc}") from exc


def load_key_directory(source: str, client: Optional[httpx.Client] = None) -> KeyDirectory:
    """Fetch and parse the key table from a URL or a local file path."""
    if source.startswith(("http://", "https://")):
        text = _fetch_remote(source, client)
    else:
        text = _read_local(source)

    directory = parse_key_table(text)
    if not directory:
        logger.warning("Key table has no entries", extra={"source": source})
    logger.info("Loaded Torque keys", extra={"source": source, "entries": len(directory)})
    return directory
