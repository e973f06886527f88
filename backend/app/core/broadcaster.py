"""Redis-backed snapshot cache with pub/sub and in-process fan-out."""

import asyncio
import logging

import orjson
import redis.asyncio as aioredis
from pydantic import ValidationError

from app.config import Settings
from app.schemas.snapshot import Snapshot, StationEtaSnapshot, to_wire

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 10


class InvalidCachedValue(ValueError):
    """The cache holds a value that does not parse as the expected model."""


class Subscription:
    """Handle receiving every published snapshot payload until closed."""

    def __init__(self, owner: "Broadcaster") -> None:
        self._owner = owner
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self.closed = False

    def offer(self, payload: bytes) -> None:
        """Enqueue without blocking; a slow reader loses its oldest payload."""
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(payload)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> bytes:
        return await self._queue.get()

    def close(self) -> None:
        self.closed = True
        self._owner.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class Broadcaster:
    """Cache-plus-broadcast interface. Subclasses decide where values live."""

    enabled = False

    def __init__(self) -> None:
        self._subscribers: set[Subscription] = set()

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        for sub in list(self._subscribers):
            sub.close()

    async def publish(self, snapshot: Snapshot) -> None:
        pass

    async def store_station_etas(self, snapshot: StationEtaSnapshot) -> None:
        pass

    async def get_latest_raw(self) -> bytes | None:
        return None

    async def get_latest(self) -> Snapshot | None:
        return None

    async def get_station_etas(self) -> StationEtaSnapshot | None:
        return None

    async def subscribe(self) -> Subscription:
        """New subscription, primed with the cached snapshot when there is one."""
        sub = Subscription(self)
        self._subscribers.add(sub)
        latest = await self.get_latest_raw()
        # A publish that raced the cache read is newer than what we fetched
        if latest is not None and sub.pending() == 0:
            sub.offer(latest)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _fan_out(self, payload: bytes) -> None:
        for sub in list(self._subscribers):
            try:
                sub.offer(payload)
            except Exception:
                logger.exception("Dropping broken subscriber")
                self._subscribers.discard(sub)


class DisabledBroadcaster(Broadcaster):
    """Used when no cache backend is configured: nothing is stored or sent."""

    async def publish(self, snapshot: Snapshot) -> None:
        logger.debug("No cache backend configured, snapshot t=%d not published", snapshot.t)


class RedisBroadcaster(Broadcaster):
    """Stores the latest snapshot under a TTL'd key and publishes it on a channel."""

    enabled = True

    def __init__(self, config: Settings, client: aioredis.Redis | None = None) -> None:
        super().__init__()
        self._settings = config
        self._redis = client
        self._relay_task: asyncio.Task | None = None

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(self._settings.redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._relay_task:
            self._relay_task.cancel()
        await super().close()
        if self._redis:
            await self._redis.aclose()

    async def publish(self, snapshot: Snapshot) -> None:
        """Cache the snapshot and send it to every subscriber."""
        payload = orjson.dumps(to_wire(snapshot))
        try:
            await self._redis.set(
                self._settings.redis_snapshot_key, payload, ex=self._settings.redis_ttl_seconds,
            )
            await self._redis.publish(self._settings.redis_channel, payload)
        except Exception:
            logger.exception("Failed to publish snapshot to Redis")

        # When the ingestor runs in this process local viewers are fed directly
        if self._relay_task is None:
            self._fan_out(payload)

    async def store_station_etas(self, snapshot: StationEtaSnapshot) -> None:
        payload = orjson.dumps(to_wire(snapshot))
        try:
            await self._redis.set(
                self._settings.redis_station_eta_key, payload, ex=self._settings.redis_ttl_seconds,
            )
        except Exception:
            logger.exception("Failed to store station ETAs in Redis")

    async def _get(self, key: str) -> bytes | None:
        try:
            return await self._redis.get(key)
        except Exception:
            logger.exception("Failed to read %s from Redis", key)
            return None

    async def get_latest_raw(self) -> bytes | None:
        return await self._get(self._settings.redis_snapshot_key)

    async def get_latest(self) -> Snapshot | None:
        raw = await self.get_latest_raw()
        if raw is None:
            return None
        try:
            return Snapshot.model_validate_json(raw)
        except ValidationError:
            logger.error("Invalid snapshot JSON cached under %s", self._settings.redis_snapshot_key)
            raise InvalidCachedValue(self._settings.redis_snapshot_key)

    async def get_station_etas(self) -> StationEtaSnapshot | None:
        raw = await self._get(self._settings.redis_station_eta_key)
        if raw is None:
            return None
        try:
            return StationEtaSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.error("Invalid station ETA JSON cached under %s", self._settings.redis_station_eta_key)
            raise InvalidCachedValue(self._settings.redis_station_eta_key)

    def start_relay(self) -> None:
        """Feed local subscribers from the Redis channel (ingestor in another process)."""
        if self._relay_task is None:
            self._relay_task = asyncio.create_task(self.relay())

    async def relay(self) -> None:
        """Forward channel messages to local subscribers, reconnecting on Redis errors."""
        channel = self._settings.redis_channel
        while True:
            try:
                await self._listen(channel)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Relay from %s lost, reconnecting in %.1fs",
                    channel, self._settings.redis_relay_retry_seconds,
                )
            await asyncio.sleep(self._settings.redis_relay_retry_seconds)

    async def _listen(self, channel: str) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
            logger.info("Relaying %s to local subscribers", channel)
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    self._fan_out(message["data"])
        finally:
            await pubsub.aclose()


def create_broadcaster(config: Settings) -> Broadcaster:
    """Pick the cache backend once, from configuration."""
    if not config.redis_url:
        logger.warning("REDIS_URL not set - snapshots will not be cached or broadcast")
        return DisabledBroadcaster()
    return RedisBroadcaster(config)
