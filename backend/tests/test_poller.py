"""Tests for the poll/publish/backoff state machine."""

import asyncio
import datetime
import random

from app.core.metro_client import FetchError, MalformedPayload, UpstreamStatusError
from app.core.poller import MetroPoller, PollerState
from app.core.topology import LINE_NAMES

from conftest import CLOSED_NOW, OPEN_NOW, RecordingBroadcaster, make_feed, make_row, make_settings


class FakeClient:
    """Returns queued feeds or raises queued errors, one per fetch."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class Clock:
    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += datetime.timedelta(milliseconds=ms)


def make_poller(*results, now=OPEN_NOW, **overrides):
    client = FakeClient(*results)
    broadcaster = RecordingBroadcaster()
    clock = Clock(now)
    poller = MetroPoller(client, broadcaster, make_settings(**overrides), clock=clock, rng=random.Random(7))
    return poller, client, broadcaster, clock


def good_feed():
    return make_feed(make_row("CS", ("123C", "45")), make_row("PA", ("5A", "30"), destino="42"))


def test_successful_tick_publishes_both_snapshots():
    poller, client, broadcaster, _ = make_poller(good_feed())
    delay = asyncio.run(poller.tick())

    assert delay == 2000
    assert client.calls == 1
    [snap] = broadcaster.published
    assert snap.service_open is True
    assert list(snap.lines) == list(LINE_NAMES)
    assert [t.id for t in snap.lines["verde"].trains] == ["123C"]
    [etas] = broadcaster.station_etas
    assert etas.t == snap.t
    assert set(poller.state.segments) == {"123C", "5A"}
    assert poller.state.backoff_ms == 0


def test_server_errors_back_off_and_republish_last_snapshot():
    poller, _, broadcaster, clock = make_poller(
        good_feed(),
        UpstreamStatusError("HTTP 500", status=500),
        UpstreamStatusError("HTTP 500", status=500),
        UpstreamStatusError("HTTP 500", status=500),
        UpstreamStatusError("HTTP 500", status=500),
    )
    asyncio.run(poller.tick())
    good = broadcaster.published[0]

    backoffs, delays = [], []
    for _ in range(4):
        clock.advance(1000)
        delays.append(asyncio.run(poller.tick()))
        backoffs.append(poller.state.backoff_ms)

    assert backoffs == [6000, 12000, 24000, 30000]
    assert delays == [2000 + b for b in backoffs]
    for republished in broadcaster.published[1:]:
        assert republished.service_open is True
        assert republished.t == good.t
        assert republished.lines == good.lines
    # Station ETAs carry a fresh timestamp on every failure
    assert [e.t for e in broadcaster.station_etas[1:]] == [good.t + 1, good.t + 2, good.t + 3, good.t + 4]


def test_other_failures_use_smaller_base():
    poller, _, _, _ = make_poller(
        FetchError("connect refused"),
        MalformedPayload("invalid JSON"),
        UpstreamStatusError("HTTP 404", status=404),
    )
    backoffs = []
    for _ in range(3):
        asyncio.run(poller.tick())
        backoffs.append(poller.state.backoff_ms)
    assert backoffs == [4000, 8000, 16000]


def test_rate_limited_uses_larger_base():
    poller, _, _, _ = make_poller(UpstreamStatusError("HTTP 429", status=429))
    asyncio.run(poller.tick())
    assert poller.state.backoff_ms == 6000


def test_success_resets_backoff():
    poller, _, _, _ = make_poller(FetchError("down"), FetchError("down"), good_feed())
    asyncio.run(poller.tick())
    asyncio.run(poller.tick())
    assert poller.state.backoff_ms == 8000
    assert poller.state.consecutive_failures == 2
    assert asyncio.run(poller.tick()) == 2000
    assert poller.state.backoff_ms == 0
    assert poller.state.consecutive_failures == 0


def test_failure_before_any_data_publishes_nothing():
    poller, _, broadcaster, _ = make_poller(FetchError("down"))
    asyncio.run(poller.tick())
    assert broadcaster.published == []
    assert broadcaster.station_etas == []


def test_failure_leaves_segment_memory_untouched():
    poller, _, _, _ = make_poller(good_feed(), MalformedPayload("bad"))
    asyncio.run(poller.tick())
    before = dict(poller.state.segments)
    asyncio.run(poller.tick())
    assert poller.state.segments == before


def test_closed_publishes_once_and_skips_fetch():
    poller, client, broadcaster, clock = make_poller(now=CLOSED_NOW)
    delay = asyncio.run(poller.tick())

    assert client.calls == 0
    [snap] = broadcaster.published
    assert snap.service_open is False
    assert all(not line.trains for line in snap.lines.values())
    [etas] = broadcaster.station_etas
    assert all(not s.arrivals for line in etas.lines.values() for s in line.stations)
    # 03:00 -> 06:30 Lisbon
    assert delay == 3.5 * 3600 * 1000

    clock.advance(1000)
    asyncio.run(poller.tick())
    assert len(broadcaster.published) == 1
    assert client.calls == 0


def test_closing_resets_backoff():
    state = PollerState(backoff_ms=24000, service_open=True)
    poller, _, broadcaster, _ = make_poller(now=CLOSED_NOW)
    poller.state = state
    asyncio.run(poller.tick())
    assert state.backoff_ms == 0
    assert state.service_open is False
    assert broadcaster.published[0].service_open is False


def test_reopening_resumes_fetching():
    poller, client, broadcaster, clock = make_poller(good_feed(), now=CLOSED_NOW)
    asyncio.run(poller.tick())
    clock.now = OPEN_NOW
    asyncio.run(poller.tick())
    assert client.calls == 1
    assert poller.state.service_open is True
    assert broadcaster.published[-1].service_open is True


def test_delay_respects_floor_and_jitter_bounds():
    poller, _, _, _ = make_poller(
        *[good_feed() for _ in range(50)], poll_interval_ms=150, poll_jitter_ms=100,
    )
    delays = [asyncio.run(poller.tick()) for _ in range(50)]
    assert all(200 <= d < 250 for d in delays)

    poller, _, _, _ = make_poller(*[good_feed() for _ in range(50)], poll_jitter_ms=100)
    delays = [asyncio.run(poller.tick()) for _ in range(50)]
    assert all(1900 <= d < 2100 for d in delays)


def test_sweep_uses_clock():
    poller, _, _, clock = make_poller(good_feed(), segment_state_max_age_seconds=60)
    asyncio.run(poller.tick())
    assert asyncio.run(poller.sweep()) == 0
    clock.advance(61_000)
    assert asyncio.run(poller.sweep()) == 2
    assert poller.state.segments == {}
