from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...security.auth import User, get_current_user
from ...services.telemetry_sink import TelemetryEvent, list_recent_events

router = APIRouter(prefix="/telemetry", tags=["telemetry"])


class TelemetryRecentResponse(BaseModel):
    events: List[TelemetryEvent]


@router.get("/events/recent", response_model=TelemetryRecentResponse)
async def recent_events(
    limit: int = 25,
    _: User = Depends(get_current_user),
) -> TelemetryRecentResponse:
    return TelemetryRecentResponse(events=list_recent_events(limit))
