"""HTTP client pushing GTS records to a Warp10 datastore."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from models.records import GeoTimeSeries

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Warp10-Token"
UPDATE_PATH = "/api/v0/update"


class ForwardingError(RuntimeError):
    """Raised when a record could not be delivered to the datastore."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Warp10Forwarder:
    """Sends one record per ``POST /api/v0/update`` call."""

    def __init__(
        self,
        endpoint: str,
        token: str,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.update_url = f"{self.endpoint}{UPDATE_PATH}"
        self._token = token
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def send(self, record: GeoTimeSeries) -> None:
        try:
            response = self._client.post(
                self.update_url,
                content=record.to_bytes(),
                headers={TOKEN_HEADER: self._token},
            )
        except httpx.HTTPError as exc:
            raise ForwardingError(f"Warp10 request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise ForwardingError(
                f"Warp10 rejected record with status {response.status_code}: {response.text.strip()}",
                status_code=response.status_code,
            )
        logger.debug(
            "Forwarded record",
            extra={"metric": record.metric_name, "status_code": response.status_code},
        )
