"""Reconstruct train positions from per-station arrival observations.

Each upstream row lists the next (up to three) trains due at one station.
A train near a segment boundary therefore appears at several stations; the
station it is due at soonest is its next stop, and the destination terminal
(or the next-soonest station) tells which way it is heading.
"""

import datetime
import logging
import math
from dataclasses import dataclass

from app.core import topology
from app.core.metro_client import FeedResponse, parse_eta
from app.schemas.snapshot import InferredTrain, LineTrains, Snapshot

logger = logging.getLogger(__name__)


@dataclass
class TrainSegmentState:
    to: str
    segment_start_eta: float
    last_seen_at: datetime.datetime


@dataclass
class _Observation:
    station_id: str
    eta: int
    destination_code: str | None


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def _group_by_train(feed: FeedResponse) -> dict[str, list[_Observation]]:
    per_train: dict[str, list[_Observation]] = {}
    for row in feed.rows:
        for train_id, eta_raw in row.trains:
            eta = parse_eta(eta_raw)
            if eta is None:
                continue
            per_train.setdefault(train_id, []).append(
                _Observation(row.station_id, eta, row.destination_code)
            )
    return per_train


def _direction_sign(line: str, to: str, terminal: str, second: _Observation | None) -> int:
    idx_to = topology.station_index(line, to)
    idx_term = topology.station_index(line, terminal)
    sign = 0
    if idx_to is not None and idx_term is not None:
        sign = _sign(idx_term - idx_to)
    if sign == 0 and second is not None:
        idx_second = topology.station_index(line, second.station_id)
        if idx_to is not None and idx_second is not None:
            sign = _sign(idx_second - idx_to)
    return sign or 1


def _previous_station(line: str, to: str, sign: int) -> str:
    order = topology.LINE_ORDER[line]
    idx_to = topology.station_index(line, to)
    if idx_to is None:
        return to
    for candidate in (idx_to - sign, idx_to + sign):
        if 0 <= candidate < len(order):
            return order[candidate]
    return to


def normalize(
    feed: FeedResponse,
    segments: dict[str, TrainSegmentState],
    dwell_seconds: float,
    now: datetime.datetime,
) -> list[InferredTrain]:
    """Infer one InferredTrain per train id and update ``segments`` in place."""
    result: list[InferredTrain] = []

    for train_id, observations in _group_by_train(feed).items():
        observations.sort(key=lambda o: o.eta)
        first = observations[0]
        second = observations[1] if len(observations) > 1 else None
        to = first.station_id
        eta_next = first.eta

        dest = topology.destination(first.destination_code) or (
            topology.destination(second.destination_code) if second else None
        )
        if dest is not None:
            line, terminal, dest_name = dest.line, dest.terminal, dest.name
        else:
            line = topology.line_for_train(train_id) or topology.DEFAULT_LINE
            terminal, dest_name = to, ""

        sign = _direction_sign(line, to, terminal, second)
        from_station = _previous_station(line, to, sign)

        prev = segments.get(train_id)
        if prev is not None and prev.to == to:
            segment_start_eta = prev.segment_start_eta
        else:
            segment_start_eta = eta_next + dwell_seconds
        if not math.isfinite(segment_start_eta) or segment_start_eta <= 0:
            segment_start_eta = max(eta_next, 1)

        progress = 1.0 if eta_next == 0 else 1.0 - eta_next / segment_start_eta
        progress = min(max(progress, 0.0), 1.0)

        result.append(InferredTrain(
            id=train_id,
            line=line,
            from_station=from_station,
            to=to,
            eta_next=eta_next,
            progress=progress,
            destination_name=dest_name,
        ))
        segments[train_id] = TrainSegmentState(
            to=to, segment_start_eta=segment_start_eta, last_seen_at=now,
        )

    return result


def sweep_segment_state(
    segments: dict[str, TrainSegmentState],
    now: datetime.datetime,
    max_age: datetime.timedelta,
) -> int:
    """Forget trains not seen for longer than ``max_age``. Returns how many were dropped."""
    expired = [tid for tid, s in segments.items() if now - s.last_seen_at > max_age]
    for tid in expired:
        del segments[tid]
    if expired:
        logger.debug("Dropped segment state for %d vanished trains", len(expired))
    return len(expired)


def to_snapshot(
    trains: list[InferredTrain],
    now: datetime.datetime,
    service_open: bool = True,
) -> Snapshot:
    """Group trains by line; every line is present even when empty."""
    per_line: dict[str, list[InferredTrain]] = {name: [] for name in topology.LINE_NAMES}
    for train in trains:
        per_line.setdefault(train.line, []).append(train)
    return Snapshot(
        t=int(now.timestamp()),
        lines={name: LineTrains(trains=ts) for name, ts in per_line.items()},
        service_open=service_open,
    )


def closed_snapshot(now: datetime.datetime) -> Snapshot:
    return to_snapshot([], now, service_open=False)
