"""
Work Center Capacity API Endpoints

Capacity queries and calendar maintenance for work centers.
"""
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from mfgplan.db.session import get_db
from mfgplan.exceptions import ValidationError
from mfgplan.logging_config import get_logger
from mfgplan.schemas.capacity import (
    AvailableHoursResponse,
    CalendarEntryResponse,
    CalendarGenerateRequest,
    DayCapacityResponse,
    HolidayRequest,
    MaintenanceRequest,
    SlotRequest,
    SlotResponse,
)
from mfgplan.schemas.common import CountResponse
from mfgplan.services.capacity_calendar import CapacityCalendar

router = APIRouter()
logger = get_logger(__name__)


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date", field="end_date")


# ============================================================================
# Reports (declared before /{work_center_id} routes)
# ============================================================================

@router.get("/load-report")
async def load_report(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    """Utilization per active work center: overloaded, underutilized or optimal."""
    _check_range(start_date, end_date)
    return CapacityCalendar(db).load_report(start_date, end_date)


@router.get("/bottlenecks")
async def bottleneck_analysis(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    _check_range(start_date, end_date)
    return CapacityCalendar(db).bottleneck_analysis(start_date, end_date)


@router.post("/calendar/generate-all")
async def generate_all_calendars(request: CalendarGenerateRequest, db: Session = Depends(get_db)):
    results = CapacityCalendar(db).generate_all_calendars(
        request.start_date, request.end_date, request.holidays
    )
    return {"work_centers": results}


# ============================================================================
# Capacity queries
# ============================================================================

@router.get("/{work_center_id}/available-hours", response_model=AvailableHoursResponse)
async def available_hours(
    work_center_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    hours = CapacityCalendar(db).available_hours(work_center_id, start_date, end_date)
    return {
        "work_center_id": work_center_id,
        "start_date": start_date,
        "end_date": end_date,
        "available_hours": round(hours, 2),
    }


@router.get("/{work_center_id}/daily", response_model=List[DayCapacityResponse])
async def daily_breakdown(
    work_center_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    days = CapacityCalendar(db).daily_breakdown(work_center_id, start_date, end_date)
    return [day.to_dict() for day in days]


@router.post("/{work_center_id}/next-slot", response_model=SlotResponse)
async def find_next_slot(work_center_id: int, request: SlotRequest, db: Session = Depends(get_db)):
    """
    Earliest run of days whose free hours cover ``required_hours``.

    ``found=false`` means the search bound was reached first; that is a
    normal answer, not an error.
    """
    slot = CapacityCalendar(db).find_next_slot(
        work_center_id, request.required_hours, request.start_from, request.max_days
    )
    if slot is None:
        return {
            "found": False,
            "work_center_id": work_center_id,
            "required_hours": float(request.required_hours),
        }
    return {"found": True, **slot.to_dict()}


# ============================================================================
# Calendar maintenance
# ============================================================================

@router.post("/{work_center_id}/calendar/generate", response_model=CountResponse)
async def generate_calendar(
    work_center_id: int,
    request: CalendarGenerateRequest,
    db: Session = Depends(get_db),
):
    created = CapacityCalendar(db).generate_calendar(
        work_center_id, request.start_date, request.end_date, request.holidays
    )
    return {"count": created, "message": f"{created} calendar entries created"}


@router.post("/{work_center_id}/calendar/holidays", response_model=CountResponse)
async def set_holiday(work_center_id: int, request: HolidayRequest, db: Session = Depends(get_db)):
    updated = CapacityCalendar(db).set_holiday(
        work_center_id, request.start_date, request.end_date, request.reason
    )
    return {"count": updated, "message": f"{updated} days marked as holiday"}


@router.post("/{work_center_id}/calendar/maintenance", response_model=CalendarEntryResponse)
async def set_maintenance(work_center_id: int, request: MaintenanceRequest, db: Session = Depends(get_db)):
    return CapacityCalendar(db).set_maintenance(
        work_center_id, request.on_date, request.reduced_hours, request.reason
    )
