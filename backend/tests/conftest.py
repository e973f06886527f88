"""Shared test helpers for the metro monitor backend."""

import asyncio
import datetime

import pytest

from app.config import Settings
from app.core.broadcaster import Broadcaster
from app.core.metro_client import FeedResponse, parse_feed

# Midday in Lisbon (WET, UTC+0 in winter), well inside service hours
OPEN_NOW = datetime.datetime(2025, 1, 15, 12, 0, 0, tzinfo=datetime.timezone.utc)
# 03:00 Lisbon, metro closed
CLOSED_NOW = datetime.datetime(2025, 1, 15, 3, 0, 0, tzinfo=datetime.timezone.utc)


def make_row(stop_id: str, *trains: tuple[str, str], destino: str | None = None) -> dict:
    """One upstream row with up to three (train id, eta) pairs."""
    row = {"stop_id": stop_id, "hora": "20250115120000"}
    columns = [("comboio", "tempoChegada1"), ("comboio2", "tempoChegada2"), ("comboio3", "tempoChegada3")]
    for (train_col, eta_col), (train_id, eta) in zip(columns, trains):
        row[train_col] = train_id
        row[eta_col] = eta
    if destino is not None:
        row["destino"] = destino
    return row


def make_feed(*rows: dict) -> FeedResponse:
    return parse_feed({"resposta": list(rows)})


def make_settings(**overrides) -> Settings:
    values = {"redis_url": "", "poll_jitter_ms": 0, "metro_api_base": "https://metro.test/api"}
    values.update(overrides)
    return Settings(**values)


class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the broadcaster makes."""

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.expiry: dict[str, int | None] = {}
        self.published: list[tuple[str, bytes]] = []
        self.fail = False
        self.closed = False
        # One list of channel messages per pubsub connection; an exception entry is raised
        self.pubsub_script: list[list] = []
        self.pubsub_channels: list[str] = []

    def pubsub(self) -> "FakePubSub":
        messages = self.pubsub_script.pop(0) if self.pubsub_script else []
        return FakePubSub(self, messages)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.values[key] = value
        self.expiry[key] = ex
        return True

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.values.get(key)

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1

    def expire_all(self) -> None:
        self.values.clear()

    async def aclose(self):
        self.closed = True


class FakePubSub:
    def __init__(self, owner: FakeRedis, messages: list) -> None:
        self.owner = owner
        self.messages = messages

    async def subscribe(self, channel):
        self.owner.pubsub_channels.append(channel)

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        for message in self.messages:
            if isinstance(message, Exception):
                raise message
            yield {"type": "message", "data": message}
        # Connection stays open with nothing more to say
        await asyncio.Event().wait()

    async def aclose(self):
        pass


class RecordingBroadcaster(Broadcaster):
    """Keeps every published value in memory."""

    enabled = True

    def __init__(self) -> None:
        super().__init__()
        self.published = []
        self.station_etas = []

    async def publish(self, snapshot) -> None:
        self.published.append(snapshot)

    async def store_station_etas(self, snapshot) -> None:
        self.station_etas.append(snapshot)

    async def get_latest(self):
        return self.published[-1] if self.published else None

    async def get_station_etas(self):
        return self.station_etas[-1] if self.station_etas else None


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
