"""Per-station arrival boards built straight from the feed."""

import datetime

from app.core import topology
from app.core.metro_client import FeedResponse, parse_eta
from app.schemas.snapshot import Arrival, LineStations, StationEta, StationEtaSnapshot


def build_station_eta_snapshot(
    feed: FeedResponse,
    now: datetime.datetime,
) -> StationEtaSnapshot:
    """Group every (train, eta) observation by line and station.

    The line comes from the train id suffix, not from the destination, and an
    observation at a station that is not on that line is dropped. Each line
    lists all of its stations in canonical order, arrivals sorted by eta.
    """
    per_line: dict[str, dict[str, list[Arrival]]] = {
        name: {} for name in topology.LINE_NAMES
    }

    for row in feed.rows:
        dest = topology.destination(row.destination_code)
        for train_id, eta_raw in row.trains:
            eta = parse_eta(eta_raw)
            if eta is None:
                continue
            line = topology.line_for_train(train_id)
            if line is None or topology.station_index(line, row.station_id) is None:
                continue
            per_line[line].setdefault(row.station_id, []).append(Arrival(
                train_id=train_id,
                eta_seconds=eta,
                destination_code=row.destination_code,
                destination_name=dest.name if dest else None,
            ))

    lines = {}
    for name in topology.LINE_NAMES:
        stations = per_line[name]
        lines[name] = LineStations(stations=[
            StationEta(
                station_id=sid,
                arrivals=sorted(stations.get(sid, []), key=lambda a: a.eta_seconds),
            )
            for sid in topology.LINE_ORDER[name]
        ])
    return StationEtaSnapshot(t=int(now.timestamp()), lines=lines)


def empty_station_eta_snapshot(now: datetime.datetime) -> StationEtaSnapshot:
    return build_station_eta_snapshot(FeedResponse(), now)
