"""Metro operating hours: 06:30 until 00:59 the following night, local time."""

import datetime
from dataclasses import dataclass
from zoneinfo import ZoneInfo

DEFAULT_TZ = "Europe/Lisbon"
OPEN_MINUTE = 6 * 60 + 30
CLOSE_MINUTE = 59

_MS_PER_DAY = 24 * 3600 * 1000


@dataclass(frozen=True)
class ServiceStatus:
    is_open: bool
    ms_until_open: int = 0

    @classmethod
    def open(cls) -> "ServiceStatus":
        return cls(True, 0)

    @classmethod
    def closed(cls, ms_until_open: int) -> "ServiceStatus":
        return cls(False, ms_until_open)


def service_status(
    now: datetime.datetime,
    tz: str = DEFAULT_TZ,
    open_minute: int = OPEN_MINUTE,
    close_minute: int = CLOSE_MINUTE,
) -> ServiceStatus:
    """Open from ``open_minute`` through midnight until ``close_minute``.

    Naive datetimes are treated as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    zone = ZoneInfo(tz)
    local = now.astimezone(zone)
    minute = local.hour * 60 + local.minute
    if minute >= open_minute or minute < close_minute:
        return ServiceStatus.open()

    # Real elapsed time, so a DST jump inside the closed window is accounted for
    opening = datetime.datetime.combine(
        local.date(),
        datetime.time(open_minute // 60, open_minute % 60),
        tzinfo=zone,
    )
    remaining = opening.astimezone(datetime.timezone.utc) - now.astimezone(datetime.timezone.utc)
    ms = remaining // datetime.timedelta(milliseconds=1)
    return ServiceStatus.closed(min(max(ms, 0), _MS_PER_DAY))
