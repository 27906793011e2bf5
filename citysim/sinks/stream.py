"""StreamSink — pushes flattened tick records to an HTTP stream endpoint.

Authentication uses the OAuth2 client-credentials grant.  Every
simulation instance holds its own token.  A 401/403 on push triggers a
re-authentication and one more attempt, at most ``max_auth_retries``
consecutive times; the counter resets after any successful push.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from citysim.config import Settings
from citysim.domain.errors import SinkError
from citysim.domain.snapshot import TickSnapshot
from citysim.foundation.clock import utc_now
from citysim.sinks.base import TelemetrySink

logger = logging.getLogger(__name__)

USER_AGENT = "citysim/1.0.0"


@dataclass(frozen=True)
class StreamConfig:
    url: str
    client_id: str
    client_secret: str
    stream_id: str
    max_auth_retries: int = 3
    auth_timeout: float = 30.0
    push_timeout: float = 15.0

    @property
    def token_url(self) -> str:
        return f"{self.url.rstrip('/')}/multipass/api/oauth2/token"

    @property
    def records_url(self) -> str:
        return f"{self.url.rstrip('/')}/api/v1/streams/{self.stream_id}/records"

    @classmethod
    def from_settings(cls, settings: Settings) -> StreamConfig | None:
        """Build a config, or None when the stream settings are incomplete or unsafe."""
        url = settings.stream_url
        client_id = settings.stream_client_id
        secret = settings.stream_client_secret
        stream_id = settings.stream_id
        if not (url and client_id and secret and stream_id):
            logger.warning("Stream sink settings incomplete - push disabled")
            return None
        if not url.startswith("https://"):
            logger.error("Stream URL must use HTTPS - push disabled")
            return None
        return cls(
            url=url,
            client_id=client_id,
            client_secret=secret,
            stream_id=stream_id,
            max_auth_retries=settings.stream_max_auth_retries,
            auth_timeout=settings.stream_auth_timeout_seconds,
            push_timeout=settings.stream_push_timeout_seconds,
        )


def build_record(snapshot: TickSnapshot) -> dict[str, Any]:
    """Flatten a snapshot into one stream record."""
    weather = snapshot.weather
    traffic = snapshot.traffic
    events = snapshot.events
    return {
        "simulation_id": snapshot.simulation_id,
        "city_id": snapshot.city_id,
        "city_name": snapshot.city_name,
        "timestamp": snapshot.timestamp.isoformat(),
        "hour": snapshot.hour,
        "game_time": snapshot.timestamp.isoformat(),
        "real_time": utc_now().isoformat(),
        "weather_temperature": round(weather.temperature, 2),
        "weather_humidity": round(weather.humidity, 2),
        "weather_wind_speed": round(weather.wind_speed, 2),
        "weather_condition": weather.condition.value,
        "weather_pressure": weather.pressure,
        "traffic_congestion_level": round(traffic.congestion_level, 2),
        "traffic_average_speed": round(traffic.average_speed, 2),
        "traffic_total_vehicles": traffic.total_vehicles,
        "traffic_peak_hour": traffic.peak_hour,
        "traffic_weather_impact": traffic.weather_impact,
        "traffic_events_impact": traffic.events_impact,
        "events_active_count": events.active_count,
        "events_scheduled_count": events.scheduled_count,
        "events_completed_count": events.completed_count,
        "events_summary": json.dumps(
            [e.model_dump(mode="json") for e in events.events]
        ),
        "seconds_per_hour": snapshot.seconds_per_hour,
    }


class StreamSink(TelemetrySink):
    """HTTP push sink with per-instance bearer token."""

    def __init__(
        self,
        config: StreamConfig,
        simulation_id: str,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._simulation_id = simulation_id
        self._session = session
        self._owns_session = session is None
        self._token: str | None = None
        self._auth_failures = 0

    @property
    def name(self) -> str:
        return "push"

    @property
    def connected(self) -> bool:
        return self._token is not None

    async def open(self) -> None:
        try:
            await self._authenticate()
        except SinkError as exc:
            logger.error("Stream authentication failed for %s: %s", self._simulation_id, exc)

    async def push(self, snapshot: TickSnapshot) -> None:
        record = build_record(snapshot)
        if self._token is None:
            await self._authenticate()

        while True:
            status, body = await self._post(
                self._config.records_url,
                {"records": [record]},
                self._config.push_timeout,
                authorized=True,
            )
            if 200 <= status < 300:
                self._auth_failures = 0
                logger.info(
                    "Pushed %s tick %s to stream (%d)",
                    self._simulation_id,
                    snapshot.timestamp.isoformat(),
                    status,
                )
                return
            if status in (401, 403) and self._auth_failures < self._config.max_auth_retries:
                self._auth_failures += 1
                logger.warning(
                    "Stream rejected token for %s (%d), re-authenticating (%d/%d)",
                    self._simulation_id,
                    status,
                    self._auth_failures,
                    self._config.max_auth_retries,
                )
                self._token = None
                await self._authenticate()
                continue
            raise SinkError(body[:200], status)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
        self._token = None

    # ── Internals ────────────────────────────────────────────────────────

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
            self._owns_session = True
        return self._session

    async def _authenticate(self) -> None:
        cfg = self._config
        status, body = await self._post(
            cfg.token_url,
            {
                "grant_type": "client_credentials",
                "client_id": cfg.client_id,
                "client_secret": cfg.client_secret,
            },
            cfg.auth_timeout,
            authorized=False,
        )
        if status != 200:
            raise SinkError(f"authentication failed: {body[:200]}", status)
        try:
            self._token = json.loads(body)["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SinkError(f"malformed token response: {exc}", status) from exc
        logger.info("Stream authentication successful for %s", self._simulation_id)

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        timeout: float,
        authorized: bool,
    ) -> tuple[int, str]:
        headers = {"Content-Type": "application/json"}
        if authorized:
            headers["Authorization"] = f"Bearer {self._token}"
        session = self._ensure_session()
        try:
            async with session.post(
                url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                return response.status, await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SinkError(f"request to {url} failed: {exc!r}") from exc
