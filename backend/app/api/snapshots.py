"""REST endpoints serving the cached snapshot values."""

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse

from app.core.broadcaster import InvalidCachedValue
from app.schemas.snapshot import to_wire

router = APIRouter(tags=["snapshots"])

# Will be set by main.py
broadcaster = None


@router.get("/now")
async def get_now():
    """Latest train positions, 204 when nothing has been published yet."""
    if broadcaster is None:
        return Response(status_code=204)
    try:
        snapshot = await broadcaster.get_latest()
    except InvalidCachedValue:
        return JSONResponse({"error": "Invalid snapshot JSON"}, status_code=500)
    if snapshot is None:
        return Response(status_code=204)
    return to_wire(snapshot)


@router.get("/station-etas")
async def get_station_etas():
    """Latest per-station arrival boards, 204 when none are cached."""
    if broadcaster is None:
        return Response(status_code=204)
    try:
        etas = await broadcaster.get_station_etas()
    except InvalidCachedValue:
        return JSONResponse({"error": "Invalid station ETA JSON"}, status_code=500)
    if etas is None:
        return Response(status_code=204)
    return to_wire(etas)
