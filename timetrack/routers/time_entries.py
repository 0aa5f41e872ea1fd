from __future__ import annotations

from datetime import datetime
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from timetrack.core.errors import TimeTrackingError
from timetrack.deps.time_engine import get_time_engine
from timetrack.services.time_engine import EntryView, TimeEngine

router = APIRouter(
    prefix="/time_entries",
    tags=["Time Entries"],
)


class StartRequest(BaseModel):
    task_id: str = Field(..., min_length=1)


class TimeEntryResponse(BaseModel):
    id: str
    task_id: str
    start_time: datetime
    end_time: Optional[datetime]
    is_paused: bool
    last_resumed_at: Optional[datetime]
    paused_at: Optional[datetime]
    total_paused_duration: float
    duration: Optional[float]
    current_elapsed_seconds: Optional[float] = Field(
        default=None,
        description="Active seconds as of this response; only set for active entries.",
    )


def _to_response(view: EntryView) -> TimeEntryResponse:
    entry = view.entry
    return TimeEntryResponse(
        id=entry.id,
        task_id=entry.task_id,
        start_time=entry.start_time,
        end_time=entry.end_time,
        is_paused=entry.is_paused,
        last_resumed_at=entry.last_resumed_at,
        paused_at=entry.paused_at,
        total_paused_duration=entry.total_paused_duration,
        duration=entry.duration,
        current_elapsed_seconds=view.current_elapsed_seconds,
    )


def _raise_http(exc: TimeTrackingError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.get("", response_model=list[TimeEntryResponse])
def list_time_entries(
    task_id: Optional[str] = None,
    active: Optional[bool] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    engine: TimeEngine = Depends(get_time_engine),
):
    try:
        views = engine.list_entries(task_id=task_id, active=active, limit=limit, offset=offset)
    except TimeTrackingError as exc:
        _raise_http(exc)
    return [_to_response(v) for v in views]


@router.get("/{entry_id}", response_model=TimeEntryResponse)
def get_time_entry(entry_id: str, engine: TimeEngine = Depends(get_time_engine)):
    try:
        return _to_response(engine.get(entry_id))
    except TimeTrackingError as exc:
        _raise_http(exc)


@router.post("/start", response_model=TimeEntryResponse, status_code=201)
def start_time_entry(payload: StartRequest, engine: TimeEngine = Depends(get_time_engine)):
    try:
        entry = engine.start(payload.task_id)
        return _to_response(engine.view(entry, engine.clock()))
    except TimeTrackingError as exc:
        _raise_http(exc)


def _apply(engine: TimeEngine, transition, entry_id: str) -> TimeEntryResponse:
    try:
        entry = transition(entry_id)
        return _to_response(engine.view(entry, engine.clock()))
    except TimeTrackingError as exc:
        _raise_http(exc)


@router.put("/{entry_id}/pause", response_model=TimeEntryResponse)
def pause_time_entry(entry_id: str, engine: TimeEngine = Depends(get_time_engine)):
    return _apply(engine, engine.pause, entry_id)


@router.put("/{entry_id}/resume", response_model=TimeEntryResponse)
def resume_time_entry(entry_id: str, engine: TimeEngine = Depends(get_time_engine)):
    return _apply(engine, engine.resume, entry_id)


@router.put("/{entry_id}/stop", response_model=TimeEntryResponse)
def stop_time_entry(entry_id: str, engine: TimeEngine = Depends(get_time_engine)):
    return _apply(engine, engine.stop, entry_id)
