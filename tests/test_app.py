from typing import Iterator, List

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from models.records import GeoTimeSeries
from services.forwarder import ForwardingError
from services.key_directory import parse_key_table
from services.relay import TorqueRelay

KEY_TABLE = "code,name,tag\nkfx1,rpm,\nkd,speed,type=sensor\n"


class StubForwarder:
    def __init__(self) -> None:
        self.bodies: List[str] = []
        self.fail = False
        self.closed = False

    def send(self, record: GeoTimeSeries) -> None:
        if self.fail:
            raise ForwardingError("Warp10 rejected record with status 503", status_code=503)
        self.bodies.append(record.serialize())

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def forwarder() -> StubForwarder:
    return StubForwarder()


@pytest.fixture
def api_client(forwarder: StubForwarder, monkeypatch) -> Iterator[TestClient]:
    relays: List[TorqueRelay] = []

    def build_test_relay() -> TorqueRelay:
        if not relays:
            relays.append(
                TorqueRelay(
                    directory=parse_key_table(KEY_TABLE),
                    forwarder=forwarder,  # type: ignore[arg-type]
                    allowed_users=["driver@example.com"],
                )
            )
        return relays[0]

    build_test_relay.cache_clear = relays.clear  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_relay", build_test_relay)
    monkeypatch.setattr("app.api.build_default_relay", build_test_relay)

    app = create_app()
    with TestClient(app) as client:
        yield client


def _query(**overrides: str) -> list[tuple[str, str]]:
    params = {
        "eml": "driver@example.com",
        "id": "7",
        "time": "100",
        "kff1005": "3.0",
        "kff1006": "45.0",
        "kff1010": "12.345",
    }
    params.update(overrides)
    return list(params.items())


def _assert_ack(response) -> None:
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert response.text == "OK!"


def test_upload_is_relayed_and_acknowledged(api_client: TestClient, forwarder: StubForwarder) -> None:
    response = api_client.get("/api/torque", params=_query(kfx1="3000", k999="1"))

    _assert_ack(response)
    assert forwarder.bodies == ["100000/45.0:3.0/12345 rpm{id=7} 3000"]


def test_repeated_keys_use_first_value(api_client: TestClient, forwarder: StubForwarder) -> None:
    params = _query(kfx1="3000") + [("kfx1", "4000")]

    _assert_ack(api_client.get("/api/torque", params=params))
    assert forwarder.bodies == ["100000/45.0:3.0/12345 rpm{id=7} 3000"]


def test_upload_without_gps_is_acknowledged(api_client: TestClient, forwarder: StubForwarder) -> None:
    response = api_client.get("/api/torque", params=_query(kfx1="3000", kff1006=""))

    _assert_ack(response)
    assert forwarder.bodies == []


def test_unauthorized_upload_is_acknowledged(api_client: TestClient, forwarder: StubForwarder) -> None:
    response = api_client.get("/api/torque", params=_query(kfx1="3000", eml="nobody@example.com"))

    _assert_ack(response)
    assert forwarder.bodies == []


def test_empty_upload_is_acknowledged(api_client: TestClient, forwarder: StubForwarder) -> None:
    _assert_ack(api_client.get("/api/torque"))
    assert forwarder.bodies == []


@pytest.mark.parametrize("elevation", ["1e5000", "1e999999", "1e1000000"])
def test_out_of_range_elevation_is_acknowledged(
    api_client: TestClient, forwarder: StubForwarder, elevation: str
) -> None:
    response = api_client.get("/api/torque", params=_query(kfx1="3000", kff1010=elevation))

    _assert_ack(response)
    assert forwarder.bodies == ["100000/45.0:3.0/0 rpm{id=7} 3000"]


def test_out_of_range_time_is_acknowledged(api_client: TestClient, forwarder: StubForwarder) -> None:
    response = api_client.get("/api/torque", params=_query(kfx1="3000", time="9" * 5000))

    _assert_ack(response)
    assert forwarder.bodies == ["/45.0:3.0/12345 rpm{id=7} 3000"]


def test_forwarding_failure_does_not_change_response(
    api_client: TestClient, forwarder: StubForwarder
) -> None:
    forwarder.fail = True

    _assert_ack(api_client.get("/api/torque", params=_query(kfx1="3000", kd="87")))
    assert forwarder.bodies == []


def test_health_reports_directory(api_client: TestClient) -> None:
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "keys_loaded": 2, "failure_policy": "log"}


def test_root_points_to_health(api_client: TestClient) -> None:
    assert api_client.get("/").json()["status"] == "ok"


def test_lifespan_closes_forwarder(forwarder: StubForwarder, monkeypatch) -> None:
    relay = TorqueRelay(
        directory=parse_key_table(KEY_TABLE),
        forwarder=forwarder,  # type: ignore[arg-type]
        allowed_users=["driver@example.com"],
    )
    cleared: List[bool] = []

    def build_test_relay() -> TorqueRelay:
        return relay

    build_test_relay.cache_clear = lambda: cleared.append(True)  # type: ignore[attr-defined]
    monkeypatch.setattr("app.main.build_default_relay", build_test_relay)
    monkeypatch.setattr("app.api.build_default_relay", build_test_relay)

    with TestClient(create_app()):
        assert forwarder.closed is False

    assert forwarder.closed is True
    assert cleared == [True]


def test_startup_fails_without_configuration(monkeypatch) -> None:
    from services.relay import build_default_relay
    from settings import ConfigurationError, get_settings

    monkeypatch.delenv("WARP10_ENDPOINT", raising=False)
    get_settings.cache_clear()
    build_default_relay.cache_clear()

    try:
        with pytest.raises(ConfigurationError):
            with TestClient(create_app()):
                pass
    finally:
        get_settings.cache_clear()
        build_default_relay.cache_clear()
