from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query

from sitter_availability.auth import assert_provider_authorized
from sitter_availability.models import (
    BoardingFetchResult,
    DateListRequest,
    EffectiveSlotsResult,
    ErrorDescriptor,
    OverrideResult,
    OverridesFetchResult,
    RemovalResponse,
    SaveResult,
    ScheduleFetchResult,
    SlotCheckRequest,
    SlotCheckResponse,
    UnavailableDateRequest,
    WeekScheduleUpdateRequest,
)
from sitter_availability.services.schedule import format_slot_range
from sitter_availability.services.slot_validator import check_candidate, validate_day
from sitter_availability.services.sync_coordinator import sync_coordinator

router = APIRouter(tags=["availability"])

_STATUS_BY_CODE = {
    "validation_error": 422,
    "duplicate_override": 409,
    "persistence_error": 503,
}


def _raise_http_error(error: ErrorDescriptor, detail: Optional[object] = None) -> None:
    raise HTTPException(status_code=_STATUS_BY_CODE.get(error.code, 400), detail=detail or error.message)


@router.get("/providers/{provider_id}/weekly", response_model=ScheduleFetchResult)
def get_weekly_schedule(provider_id: str):
    # Errors ride along with an empty schedule so clients always get something to render.
    return sync_coordinator.fetch(provider_id)


@router.put("/providers/{provider_id}/weekly", response_model=SaveResult)
def save_weekly_schedule(
    provider_id: str,
    request: WeekScheduleUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_provider_authorized(provider_id=provider_id, authorization=authorization)
    result = sync_coordinator.save(provider_id, request.schedule)
    if not result.success and result.error:
        detail = result.schedule_error.model_dump() if result.schedule_error else None
        _raise_http_error(result.error, detail)
    return result


@router.post("/slots/validate", response_model=SlotCheckResponse)
def validate_slot_candidate(request: SlotCheckRequest):
    candidate = request.candidate
    error = validate_day(request.existing) or check_candidate(request.existing, candidate)
    return SlotCheckResponse(valid=error is None, error=error, display=format_slot_range(candidate))


@router.get("/providers/{provider_id}/unavailable-dates", response_model=OverridesFetchResult)
def list_unavailable_dates(provider_id: str):
    return sync_coordinator.fetch_overrides(provider_id)


@router.post("/providers/{provider_id}/unavailable-dates", response_model=OverrideResult)
def add_unavailable_date(
    provider_id: str,
    request: UnavailableDateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_provider_authorized(provider_id=provider_id, authorization=authorization)
    result = sync_coordinator.add_override(provider_id, request.date)
    if result.error:
        _raise_http_error(result.error)
    return result


@router.put("/providers/{provider_id}/unavailable-dates", response_model=SaveResult)
def replace_unavailable_dates(
    provider_id: str,
    request: DateListRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_provider_authorized(provider_id=provider_id, authorization=authorization)
    result = sync_coordinator.save_overrides(provider_id, request.dates)
    if result.error:
        _raise_http_error(result.error)
    return result


@router.delete("/providers/{provider_id}/unavailable-dates/{unavailable_date}", response_model=RemovalResponse)
def remove_unavailable_date(
    provider_id: str,
    unavailable_date: str,
    authorization: Optional[str] = Header(default=None),
):
    assert_provider_authorized(provider_id=provider_id, authorization=authorization)
    result = sync_coordinator.remove_override(provider_id, unavailable_date)
    if result.error:
        _raise_http_error(result.error)
    return RemovalResponse(date=result.date, affected=result.affected)


@router.get("/providers/{provider_id}/effective", response_model=EffectiveSlotsResult)
def get_effective_slots(provider_id: str, date: str = Query(...)):
    result = sync_coordinator.effective_slots(provider_id, date)
    if result.error and result.error.code == "validation_error":
        _raise_http_error(result.error)
    return result


@router.get("/providers/{provider_id}/boarding", response_model=BoardingFetchResult)
def list_boarding_dates(provider_id: str, upcoming_only: bool = Query(default=False)):
    return sync_coordinator.fetch_boarding(provider_id, upcoming_only=upcoming_only)


@router.put("/providers/{provider_id}/boarding", response_model=SaveResult)
def save_boarding_dates(
    provider_id: str,
    request: DateListRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_provider_authorized(provider_id=provider_id, authorization=authorization)
    result = sync_coordinator.save_boarding(provider_id, request.dates)
    if result.error:
        _raise_http_error(result.error)
    return result
