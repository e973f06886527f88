"""Main orchestrator: gate on service hours, fetch, normalize, publish, back off."""

import datetime
import logging
import random
from dataclasses import dataclass, field
from typing import Callable

from app.config import Settings
from app.core.broadcaster import Broadcaster
from app.core.metro_client import FeedResponse, FetchError, MetroClient
from app.core.normalizer import (
    TrainSegmentState,
    closed_snapshot,
    normalize,
    sweep_segment_state,
    to_snapshot,
)
from app.core.service_hours import service_status
from app.core.station_eta import build_station_eta_snapshot, empty_station_eta_snapshot
from app.schemas.snapshot import Snapshot, StationEtaSnapshot

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class PollerState:
    backoff_ms: int = 0
    # None until the first tick has evaluated service hours
    service_open: bool | None = None
    last_snapshot: Snapshot | None = None
    last_station_etas: StationEtaSnapshot | None = None
    segments: dict[str, TrainSegmentState] = field(default_factory=dict)
    ticks: int = 0
    consecutive_failures: int = 0


class MetroPoller:
    """Runs one poll cycle per tick and reports how long to wait before the next."""

    def __init__(
        self,
        client: MetroClient,
        broadcaster: Broadcaster,
        config: Settings,
        clock: Callable[[], datetime.datetime] = _utcnow,
        rng: random.Random | None = None,
        state: PollerState | None = None,
    ) -> None:
        self.client = client
        self.broadcaster = broadcaster
        self.settings = config
        self.clock = clock
        self.rng = rng or random.Random()
        self.state = state or PollerState()

    def _jitter_ms(self) -> int:
        spread = self.settings.poll_jitter_ms
        if spread <= 0:
            return 0
        return self.rng.randrange(-spread, spread)

    def _next_delay_ms(self, base_ms: float) -> float:
        return max(self.settings.poll_floor_ms, base_ms + self._jitter_ms())

    async def tick(self) -> float:
        """Single poll cycle. Returns the delay in ms until the next tick."""
        state = self.state
        state.ticks += 1
        now = self.clock()

        status = service_status(
            now,
            tz=self.settings.service_timezone,
            open_minute=self.settings.service_open_minute,
            close_minute=self.settings.service_close_minute,
        )
        if not status.is_open:
            if state.service_open is not False:
                logger.info(
                    "Metro closed - publishing closed snapshot, next check in %.0f min",
                    status.ms_until_open / 60_000,
                )
                await self.broadcaster.publish(closed_snapshot(now))
                await self.broadcaster.store_station_etas(empty_station_eta_snapshot(now))
                state.service_open = False
                state.backoff_ms = 0
            return self._next_delay_ms(status.ms_until_open)

        if state.service_open is False:
            logger.info("Metro open - resuming polling")
        state.service_open = True

        try:
            feed = await self.client.fetch()
        except FetchError as e:
            await self._on_failure(e)
        else:
            await self._on_success(feed, now)

        return self._next_delay_ms(self.settings.poll_interval_ms + state.backoff_ms)

    async def _on_success(self, feed: FeedResponse, now: datetime.datetime) -> None:
        state = self.state
        trains = normalize(feed, state.segments, self.settings.dwell_seconds, now)
        station_etas = build_station_eta_snapshot(feed, now)
        snapshot = to_snapshot(trains, now)

        await self.broadcaster.publish(snapshot)
        await self.broadcaster.store_station_etas(station_etas)

        if state.consecutive_failures:
            logger.info("Feed recovered after %d failed polls", state.consecutive_failures)
        state.last_snapshot = snapshot
        state.last_station_etas = station_etas
        state.backoff_ms = 0
        state.consecutive_failures = 0
        logger.info("Published %d trains t=%d", len(trains), snapshot.t)

    async def _on_failure(self, error: FetchError) -> None:
        state = self.state
        base = (
            self.settings.backoff_throttled_ms if error.is_throttling()
            else self.settings.backoff_base_ms
        )
        if state.backoff_ms:
            state.backoff_ms = min(state.backoff_ms * 2, self.settings.backoff_max_ms)
        else:
            state.backoff_ms = base
        state.consecutive_failures += 1
        logger.warning(
            "Feed poll failed: %s (status=%s) backoff=%dms",
            error, error.status if error.status is not None else "n/a", state.backoff_ms,
        )

        # Stale data keeps its original t so viewers can tell how old it is
        if state.last_snapshot is not None:
            await self.broadcaster.publish(
                state.last_snapshot.model_copy(update={"service_open": True})
            )
            logger.info("Re-published last snapshot (stale, t=%d)", state.last_snapshot.t)
        if state.last_station_etas is not None:
            await self.broadcaster.store_station_etas(
                state.last_station_etas.model_copy(update={"t": int(self.clock().timestamp())})
            )

    async def sweep(self) -> int:
        """Drop per-train memory for trains that left the feed.

        A coroutine so APScheduler runs it on the event loop next to tick().
        """
        return sweep_segment_state(
            self.state.segments, self.clock(),
            datetime.timedelta(seconds=self.settings.segment_state_max_age_seconds),
        )
