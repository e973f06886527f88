"""Wire models for the published snapshot and station-ETA values.

Field names on the wire follow the JSON consumed by the map frontend
(``t``, ``lines``, ``etaNext``, ``progress01``...), while Python code uses
snake_case attributes.
"""

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class InferredTrain(_WireModel):
    id: str
    line: str
    from_station: str = Field(alias="from")
    to: str
    eta_next: int = Field(alias="etaNext", ge=0)
    progress: float = Field(alias="progress01", ge=0.0, le=1.0)
    destination_name: str = Field(default="", alias="dest")


class LineTrains(_WireModel):
    trains: list[InferredTrain] = []


class Snapshot(_WireModel):
    t: int
    lines: dict[str, LineTrains]
    # Absent on older payloads, which always meant "open"
    service_open: bool = Field(default=True, alias="serviceOpen")


class Arrival(_WireModel):
    train_id: str = Field(alias="trainId")
    eta_seconds: int = Field(alias="etaSeconds", ge=0)
    destination_code: str | None = Field(default=None, alias="destinoId")
    destination_name: str | None = Field(default=None, alias="destination")


class StationEta(_WireModel):
    station_id: str = Field(alias="stationId")
    arrivals: list[Arrival] = []


class LineStations(_WireModel):
    stations: list[StationEta] = []


class StationEtaSnapshot(_WireModel):
    t: int
    lines: dict[str, LineStations]


def to_wire(model: BaseModel) -> dict:
    """Dump a model using its wire aliases, skipping unset optionals."""
    return model.model_dump(by_alias=True, exclude_none=True)
