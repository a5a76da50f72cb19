"""Netatmo energy API client utilities."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import requests  # type: ignore[import-untyped]
from requests import Response, Session

from .config import settings
from .utils import logger, truncate


class NetatmoAPIError(RuntimeError):
    """Raised when an HTTP request to the Netatmo API fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetatmoClient:
    """Minimal client for the Netatmo room setpoint endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        access_token: str | None = None,
        timeout: int = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token or settings.netatmo_access_token
        self.timeout = timeout
        self._session: Session | None = None

    def establish_connection(self) -> Session:
        """Initialize (or reuse) a requests.Session carrying the bearer token."""
        if self._session is not None:
            return self._session

        if not self.access_token:
            raise NetatmoAPIError(
                "NETATMO_ACCESS_TOKEN is not set; add it to .env or the environment."
            )

        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
            }
        )

        self._session = session
        return session

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> Response:
        """Execute an HTTP request against the Netatmo API."""
        session = self.establish_connection()
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            response = session.request(
                method=method.upper(),
                url=url,
                params=params,
                data=data,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetatmoAPIError(f"Netatmo request failed: {exc}") from exc

        if not response.ok:
            raise NetatmoAPIError(
                f"Upstream {response.status_code}: {truncate(response.text)}",
                status_code=response.status_code,
            )

        return response

    def set_room_thermpoint(
        self,
        home_id: str,
        room_id: str,
        mode: str,
        *,
        temp: float | None = None,
        endtime: int | None = None,
    ) -> dict[str, Any]:
        """Set a room to manual setpoint or hand it back to the home schedule."""
        if mode == "manual" and temp is None:
            raise NetatmoAPIError("Temp is required for manual mode")

        form: dict[str, Any] = {"home_id": home_id, "room_id": room_id, "mode": mode}
        if mode == "manual":
            form["temp"] = str(temp)
        if endtime is not None:
            form["endtime"] = str(endtime)

        logger.bind(home_id=home_id, room_id=room_id, mode=mode).debug(
            "Sending setroomthermpoint"
        )
        response = self.request("POST", "/api/setroomthermpoint", data=form)
        try:
            return response.json()
        except ValueError:
            return {}

    def close(self) -> None:
        """Close the underlying session if it was created."""
        if self._session is not None:
            self._session.close()
            self._session = None
