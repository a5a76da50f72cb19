"""Tests for the command builder and the Netatmo adapter."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import requests
from conftest import make_entry

from thermoplan import commands
from thermoplan.commands import (
    CommandError,
    InvalidScheduleError,
    NetatmoCommandAdapter,
    ThermostatCommand,
    build_command,
)
from thermoplan.netatmo import client as client_module
from thermoplan.netatmo.client import NetatmoAPIError, NetatmoClient

NOW = datetime(2025, 6, 10, 12, 0, tzinfo=UTC)


@dataclass
class DummyResponse:
    ok: bool
    status_code: int = 200
    text: str = '{"status":"ok"}'
    payload: dict[str, Any] = field(default_factory=lambda: {"status": "ok"})

    def json(self) -> dict[str, Any]:
        return self.payload


class DummySession:
    def __init__(self, response: DummyResponse | Exception) -> None:
        self._response = response
        self.headers: dict[str, str] = {}
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def request(self, **kwargs: Any) -> DummyResponse:
        self.calls.append(kwargs)
        if isinstance(self._response, Exception):
            raise self._response
        return self._response

    def close(self) -> None:
        self.closed = True


def _client(monkeypatch, response) -> tuple[NetatmoClient, DummySession]:
    session = DummySession(response)
    monkeypatch.setattr(client_module.requests, "Session", lambda: session)
    client = NetatmoClient("https://api.netatmo.example/", access_token="tok-123", timeout=7)
    return client, session


# build_command ---------------------------------------------------------------


def test_build_command_for_heat_entry():
    entry = make_entry(NOW)
    command = build_command(entry, NOW)
    assert command == ThermostatCommand(
        site_id="home-1",
        room_id="nt-1",
        mode="manual",
        temp=20.0,
        expires_at=entry.end_time,
    )


def test_build_command_for_stop_entry():
    command = build_command(make_entry(NOW, entry_type="stop"), NOW)
    assert command == ThermostatCommand(site_id="home-1", room_id="nt-1", mode="home")


def test_build_command_defaults_heat_expiry():
    entry = make_entry(NOW).model_copy(update={"end_time": None})
    assert build_command(entry, NOW).expires_at == NOW + timedelta(hours=1)


@pytest.mark.parametrize("changes", [{"temp": None}, {"mode": "home"}])
def test_build_command_rejects_malformed_heat(changes):
    entry = make_entry(NOW).model_copy(update=changes)
    with pytest.raises(InvalidScheduleError, match="requires mode=manual and temp number"):
        build_command(entry, NOW)


# NetatmoClient ---------------------------------------------------------------


def test_establish_connection_configures_session(monkeypatch):
    client, session = _client(monkeypatch, DummyResponse(ok=True))

    created = client.establish_connection()

    assert created is session
    assert session.headers["Authorization"] == "Bearer tok-123"
    assert session.headers["Accept"] == "application/json"
    assert client.establish_connection() is session


def test_missing_token_raises():
    client = NetatmoClient("https://api.netatmo.example")
    client.access_token = None
    with pytest.raises(NetatmoAPIError, match="NETATMO_ACCESS_TOKEN is not set"):
        client.establish_connection()


def test_set_room_thermpoint_manual_posts_form(monkeypatch):
    client, session = _client(monkeypatch, DummyResponse(ok=True))

    body = client.set_room_thermpoint("home-1", "nt-1", "manual", temp=21.5, endtime=1749600000)

    assert body == {"status": "ok"}
    assert session.calls == [
        {
            "method": "POST",
            "url": "https://api.netatmo.example/api/setroomthermpoint",
            "params": None,
            "data": {
                "home_id": "home-1",
                "room_id": "nt-1",
                "mode": "manual",
                "temp": "21.5",
                "endtime": "1749600000",
            },
            "timeout": 7,
        }
    ]


def test_set_room_thermpoint_home_omits_temp(monkeypatch):
    client, session = _client(monkeypatch, DummyResponse(ok=True))

    client.set_room_thermpoint("home-1", "nt-1", "home")

    assert session.calls[0]["data"] == {"home_id": "home-1", "room_id": "nt-1", "mode": "home"}


def test_manual_mode_requires_temp(monkeypatch):
    client, session = _client(monkeypatch, DummyResponse(ok=True))
    with pytest.raises(NetatmoAPIError, match="Temp is required"):
        client.set_room_thermpoint("home-1", "nt-1", "manual")
    assert session.calls == []


def test_upstream_error_is_truncated(monkeypatch):
    client, _ = _client(
        monkeypatch, DummyResponse(ok=False, status_code=403, text="x" * 500)
    )
    with pytest.raises(NetatmoAPIError) as excinfo:
        client.set_room_thermpoint("home-1", "nt-1", "home")
    assert str(excinfo.value) == "Upstream 403: " + "x" * 300
    assert excinfo.value.status_code == 403


def test_transport_error_is_wrapped(monkeypatch):
    client, _ = _client(monkeypatch, requests.ConnectionError("connection refused"))
    with pytest.raises(NetatmoAPIError, match="Netatmo request failed"):
        client.set_room_thermpoint("home-1", "nt-1", "home")


def test_close_releases_session(monkeypatch):
    client, session = _client(monkeypatch, DummyResponse(ok=True))
    client.establish_connection()
    client.close()
    assert session.closed is True


# NetatmoCommandAdapter -------------------------------------------------------


def test_adapter_sends_epoch_expiry(monkeypatch):
    client, session = _client(monkeypatch, DummyResponse(ok=True))
    adapter = NetatmoCommandAdapter(client)
    expires = datetime(2025, 6, 13, 10, 0, tzinfo=UTC)

    adapter.apply(
        ThermostatCommand(
            site_id="home-1", room_id="nt-1", mode="manual", temp=20.0, expires_at=expires
        )
    )

    form = session.calls[0]["data"]
    assert form["temp"] == "20.0"
    assert form["endtime"] == str(int(expires.timestamp()))


def test_adapter_converts_api_errors(monkeypatch):
    client, _ = _client(
        monkeypatch, DummyResponse(ok=False, status_code=500, text="boom")
    )
    adapter = NetatmoCommandAdapter(client)
    with pytest.raises(CommandError, match="Upstream 500: boom"):
        adapter.apply(ThermostatCommand(site_id="home-1", room_id="nt-1", mode="home"))


def test_adapter_context_closes_client(monkeypatch):
    session = DummySession(DummyResponse(ok=True))
    monkeypatch.setattr(client_module.requests, "Session", lambda: session)
    monkeypatch.setattr(
        commands,
        "_create_client",
        lambda: NetatmoClient("https://api.netatmo.example", access_token="tok"),
    )

    with commands.adapter_context() as adapter:
        adapter.apply(ThermostatCommand(site_id="home-1", room_id="nt-1", mode="home"))

    assert session.closed is True


def test_get_command_adapter_uses_settings(monkeypatch):
    session = DummySession(DummyResponse(ok=True))
    monkeypatch.setattr(client_module.requests, "Session", lambda: session)
    monkeypatch.setattr(
        commands,
        "settings",
        replace(
            commands.settings,
            netatmo_access_token="settings-token",
            netatmo_base_url="https://netatmo.internal",
            netatmo_timeout=3,
        ),
    )

    adapter = commands.get_command_adapter()
    adapter.apply(ThermostatCommand(site_id="home-1", room_id="nt-1", mode="home"))

    assert isinstance(adapter, NetatmoCommandAdapter)
    assert session.headers["Authorization"] == "Bearer settings-token"
    assert session.calls[0]["url"] == "https://netatmo.internal/api/setroomthermpoint"
    assert session.calls[0]["timeout"] == 3


def test_get_command_adapter_wraps_given_client(monkeypatch):
    client, session = _client(monkeypatch, DummyResponse(ok=True))

    commands.get_command_adapter(client).apply(
        ThermostatCommand(site_id="home-1", room_id="nt-2", mode="home")
    )

    assert session.calls[0]["data"]["room_id"] == "nt-2"
