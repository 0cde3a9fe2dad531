"""
Work center capacity schemas
"""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional
from datetime import date
from decimal import Decimal


class DateRangeParams(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class AvailableHoursResponse(BaseModel):
    work_center_id: int
    start_date: date
    end_date: date
    available_hours: float


class DayCapacityResponse(BaseModel):
    date: date
    day_name: str
    day_type: str
    available_hours: float
    scheduled_hours: float
    remaining_hours: float
    utilization_percent: float
    is_overloaded: bool
    has_calendar_entry: bool


class SlotRequest(BaseModel):
    required_hours: Decimal = Field(..., gt=0)
    start_from: Optional[date] = None
    max_days: Optional[int] = Field(None, ge=1, le=365)


class SlotResponse(BaseModel):
    found: bool
    work_center_id: int
    required_hours: float
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    accumulated_hours: Optional[float] = None
    days: List[DayCapacityResponse] = []


class CalendarGenerateRequest(DateRangeParams):
    holidays: List[date] = Field(default_factory=list)


class HolidayRequest(DateRangeParams):
    reason: str = Field(..., max_length=255)


class MaintenanceRequest(BaseModel):
    on_date: date
    reduced_hours: Decimal = Field(Decimal("0"), ge=0, le=24)
    reason: str = Field(..., max_length=255)


class CalendarEntryResponse(BaseModel):
    id: int
    work_center_id: int
    calendar_date: date
    day_type: str
    available_hours: Decimal
    capacity_override: Optional[Decimal] = None
    efficiency_override: Optional[Decimal] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
