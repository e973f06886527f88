"""Async client for the Metropolitano de Lisboa ``tempoEspera`` arrival feed."""

import asyncio
import logging
import math
import re
import ssl
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import orjson

from app.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

METRO_ENDPOINT = "tempoEspera/Estacao/todos"

# Upstream row columns holding (train id, eta seconds) pairs
TRAIN_COLUMNS = (
    ("comboio", "tempoChegada1"),
    ("comboio2", "tempoChegada2"),
    ("comboio3", "tempoChegada3"),
)

_LEADING_INT = re.compile(r"\s*\+?(\d+)")


class FetchError(Exception):
    """A poll that produced no usable data."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    def is_throttling(self) -> bool:
        """Rate limited or server side failure, which deserves a longer backoff."""
        return self.status is not None and (self.status == 429 or self.status >= 500)


class UpstreamStatusError(FetchError):
    pass


class UpstreamTimeout(FetchError):
    pass


class MalformedPayload(FetchError):
    pass


def parse_eta(raw) -> int | None:
    """Lenient integer parse of an ETA column: '45' -> 45, '45s' -> 45, '' -> None.

    Negative values are rejected.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw >= 0 else None
    if isinstance(raw, float):
        return int(raw) if math.isfinite(raw) and raw >= 0 else None
    m = _LEADING_INT.match(str(raw))
    if not m:
        return None
    return int(m.group(1))


@dataclass
class RawObservation:
    station_id: str
    # (train id, eta as sent upstream) for each populated column
    trains: list[tuple[str, str]] = field(default_factory=list)
    destination_code: str | None = None
    observed_at: str = ""


@dataclass
class FeedResponse:
    rows: list[RawObservation] = field(default_factory=list)


def _opt_str(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_feed(data) -> FeedResponse:
    """Validate and convert a decoded ``tempoEspera`` body.

    A body without ``resposta`` (e.g. service suspended) is an empty feed.
    Anything else that does not look like the feed raises MalformedPayload.
    """
    if not isinstance(data, dict):
        raise MalformedPayload(f"expected JSON object, got {type(data).__name__}")
    rows = data.get("resposta")
    if rows is None:
        logger.info("Feed has no 'resposta' field (codigo=%s), treating as empty", data.get("codigo"))
        return FeedResponse()
    if not isinstance(rows, list):
        raise MalformedPayload(f"'resposta' is {type(rows).__name__}, expected list")

    feed = FeedResponse()
    for item in rows:
        if not isinstance(item, dict):
            raise MalformedPayload(f"row is {type(item).__name__}, expected object")
        station_id = _opt_str(item.get("stop_id"))
        if not station_id:
            logger.debug("Skipping row without stop_id: %s", item)
            continue
        obs = RawObservation(
            station_id=station_id,
            destination_code=_opt_str(item.get("destino")),
            observed_at=str(item.get("hora") or ""),
        )
        for train_col, eta_col in TRAIN_COLUMNS:
            train_id = _opt_str(item.get(train_col))
            eta = item.get(eta_col)
            if train_id and eta is not None and eta != "":
                obs.trains.append((train_id, str(eta)))
        feed.rows.append(obs)
    return feed


class MetroClient:
    """Fetches the station arrival feed with a hard time budget."""

    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = config or default_settings
        headers = {"Accept": "application/json"}
        if self._settings.metro_api_key:
            headers["Authorization"] = f"Bearer {self._settings.metro_api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url(self._settings.metro_api_base),
            timeout=self._settings.fetch_timeout_seconds,
            headers=headers,
            verify=self._verify(),
            transport=transport,
        )

    @staticmethod
    def _base_url(base: str) -> str:
        return base if base.endswith("/") else base + "/"

    def _verify(self) -> bool | ssl.SSLContext:
        if self._settings.metro_tls_insecure:
            logger.warning("METRO_TLS_INSECURE set - TLS certificate verification is DISABLED")
            return False
        if self._settings.metro_ca_file:
            return ssl.create_default_context(cafile=self._settings.metro_ca_file)
        return True

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch(self) -> FeedResponse:
        """One GET of the feed; raises FetchError on any failure."""
        if self._settings.metro_mock_file:
            return self._load_mock(self._settings.metro_mock_file)
        try:
            return await asyncio.wait_for(
                self._get(), timeout=self._settings.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(
                f"no response within {self._settings.fetch_timeout_seconds}s"
            ) from e

    async def _get(self) -> FeedResponse:
        try:
            resp = await self._client.get(METRO_ENDPOINT)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"{type(e).__name__}: {e}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e

        logger.debug("GET %s -> %d", resp.request.url, resp.status_code)
        if not resp.is_success:
            raise UpstreamStatusError(f"HTTP {resp.status_code}", status=resp.status_code)

        try:
            data = orjson.loads(resp.content)
        except orjson.JSONDecodeError as e:
            raise MalformedPayload(f"invalid JSON: {e}") from e
        return parse_feed(data)

    @staticmethod
    def _load_mock(path: str) -> FeedResponse:
        try:
            data = orjson.loads(Path(path).read_bytes())
        except OSError as e:
            raise FetchError(f"mock feed unavailable: {e}") from e
        except orjson.JSONDecodeError as e:
            raise MalformedPayload(f"invalid mock JSON: {e}") from e
        logger.debug("Using mock feed from %s", path)
        return parse_feed(data)
