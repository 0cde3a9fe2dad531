"""
Capacity Calendar Service

Per-work-center daily capacity from pre-generated calendar rows:
- AvailableHours over a date range (missing rows count as zero)
- DailyBreakdown with scheduled load and utilization
- FindNextSlot: earliest run of days whose free hours add up to a requirement
- Calendar generation, holidays and maintenance
- Load report and bottleneck analysis across work centers
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from mfgplan.core.settings import Settings, get_settings
from mfgplan.core.status_config import (
    CalendarDayType,
    OPERATION_TERMINAL_STATUSES,
    PRODUCTION_ORDER_TERMINAL_STATUSES,
)
from mfgplan.exceptions import ValidationError, WorkCenterNotFoundError
from mfgplan.logging_config import get_logger
from mfgplan.models.production_order import ProductionOrder, ProductionOrderOperation
from mfgplan.models.work_center import WorkCenter, WorkCenterCalendar

logger = get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _daterange(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


# ============================================================================
# Options and result types
# ============================================================================

@dataclass(frozen=True)
class CapacityOptions:
    slot_search_days: int = 90
    shift_start: time = time(8, 0)
    shift_end: time = time(17, 0)
    break_hours: Decimal = Decimal("1")
    working_weekdays: Tuple[int, ...] = (0, 1, 2, 3, 4)
    bottleneck_threshold: Decimal = Decimal("85")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CapacityOptions":
        settings = settings or get_settings()
        return cls(
            slot_search_days=settings.CAPACITY_SLOT_SEARCH_DAYS,
            shift_start=_parse_hhmm(settings.CAPACITY_DEFAULT_SHIFT_START),
            shift_end=_parse_hhmm(settings.CAPACITY_DEFAULT_SHIFT_END),
            break_hours=Decimal(str(settings.CAPACITY_DEFAULT_BREAK_HOURS)),
            working_weekdays=tuple(settings.CAPACITY_WORKING_WEEKDAYS),
            bottleneck_threshold=Decimal(str(settings.CAPACITY_BOTTLENECK_THRESHOLD)),
        )

    @property
    def default_shift_hours(self) -> Decimal:
        start = datetime.combine(date.min, self.shift_start)
        end = datetime.combine(date.min, self.shift_end)
        if end <= start:
            end += timedelta(days=1)  # overnight shift
        hours = Decimal(str((end - start).total_seconds() / 3600))
        return max(ZERO, hours - self.break_hours)


@dataclass
class DayCapacity:
    date: date
    day_type: str
    available_hours: Decimal
    scheduled_hours: Decimal
    has_calendar_entry: bool = True

    @property
    def remaining_hours(self) -> Decimal:
        return max(ZERO, self.available_hours - self.scheduled_hours)

    @property
    def utilization_percent(self) -> float:
        if self.available_hours <= 0:
            return 0.0
        return round(float(self.scheduled_hours / self.available_hours * HUNDRED), 1)

    @property
    def is_overloaded(self) -> bool:
        return self.scheduled_hours > self.available_hours

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "day_name": self.date.strftime("%A"),
            "day_type": self.day_type,
            "available_hours": round(float(self.available_hours), 2),
            "scheduled_hours": round(float(self.scheduled_hours), 2),
            "remaining_hours": round(float(self.remaining_hours), 2),
            "utilization_percent": self.utilization_percent,
            "is_overloaded": self.is_overloaded,
            "has_calendar_entry": self.has_calendar_entry,
        }


@dataclass
class CapacitySlot:
    """Days consumed to fit ``required_hours`` of work."""
    work_center_id: int
    start_date: date
    end_date: date
    required_hours: Decimal
    accumulated_hours: Decimal
    days: List[DayCapacity] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "work_center_id": self.work_center_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "required_hours": float(self.required_hours),
            "accumulated_hours": round(float(self.accumulated_hours), 2),
            "days": [d.to_dict() for d in self.days],
        }


# ============================================================================
# Service
# ============================================================================

class CapacityCalendar:
    def __init__(self, db: Session, options: Optional[CapacityOptions] = None):
        self.db = db
        self.options = options or CapacityOptions.from_settings()

    def _work_center(self, work_center_id: int) -> WorkCenter:
        wc = self.db.get(WorkCenter, work_center_id)
        if wc is None:
            raise WorkCenterNotFoundError(work_center_id)
        return wc

    @staticmethod
    def effective_hours(entry: WorkCenterCalendar, work_center: Optional[WorkCenter] = None) -> Decimal:
        """
        Capacity of one calendar day.

        Zero unless the day is a working day; otherwise
        (capacity_override or available_hours) × (efficiency_override or
        work-center efficiency or 100) / 100.
        """
        if entry.day_type != CalendarDayType.WORKING.value:
            return ZERO
        if entry.capacity_override is not None:
            hours = Decimal(str(entry.capacity_override))
        else:
            hours = Decimal(str(entry.available_hours or 0))
        if entry.efficiency_override is not None:
            efficiency = Decimal(str(entry.efficiency_override))
        elif work_center is not None and work_center.efficiency_percent is not None:
            efficiency = Decimal(str(work_center.efficiency_percent))
        else:
            efficiency = HUNDRED
        return max(ZERO, hours * efficiency / HUNDRED)

    def _entries(self, work_center_id: int, start: date, end: date) -> Dict[date, WorkCenterCalendar]:
        rows = self.db.query(WorkCenterCalendar).filter(
            WorkCenterCalendar.work_center_id == work_center_id,
            WorkCenterCalendar.calendar_date >= start,
            WorkCenterCalendar.calendar_date <= end,
        ).all()
        return {row.calendar_date: row for row in rows}

    # ========================================================================
    # Availability
    # ========================================================================

    def available_hours(self, work_center_id: int, start: date, end: date) -> float:
        """Sum of effective hours over [start, end]; days without a calendar row add nothing."""
        if end < start:
            raise ValidationError("End date is before start date", field="end")
        wc = self._work_center(work_center_id)
        total = sum(
            (self.effective_hours(entry, wc) for entry in self._entries(wc.id, start, end).values()),
            ZERO,
        )
        return float(total)

    def scheduled_hours_by_day(self, work_center_id: int, start: date, end: date) -> Dict[date, Decimal]:
        """
        Hours already loaded on each day by non-terminal operations of
        non-terminal production orders.

        An operation's hours are spread evenly over the days of its scheduled
        window (operation window, else order window, else the order due date).
        """
        rows = self.db.query(ProductionOrderOperation, ProductionOrder).join(
            ProductionOrder, ProductionOrderOperation.production_order_id == ProductionOrder.id
        ).filter(
            ProductionOrderOperation.work_center_id == work_center_id,
            ProductionOrderOperation.status.notin_(OPERATION_TERMINAL_STATUSES),
            ProductionOrder.status.notin_(PRODUCTION_ORDER_TERMINAL_STATUSES),
        ).all()

        load: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        for op, order in rows:
            op_start = _as_date(op.scheduled_start) or _as_date(order.scheduled_start)
            op_end = _as_date(op.scheduled_end) or _as_date(order.scheduled_end)
            if op_start is None and op_end is None:
                op_start = op_end = order.due_date
            elif op_start is None:
                op_start = op_end
            elif op_end is None or op_end < op_start:
                op_end = op_start
            if op_start is None:
                continue
            if op_end < start or op_start > end:
                continue
            span_days = (op_end - op_start).days + 1
            per_day = op.planned_hours / Decimal(span_days)
            for day in _daterange(max(op_start, start), min(op_end, end)):
                load[day] += per_day
        return dict(load)

    def daily_breakdown(self, work_center_id: int, start: date, end: date) -> List[DayCapacity]:
        if end < start:
            raise ValidationError("End date is before start date", field="end")
        wc = self._work_center(work_center_id)
        entries = self._entries(wc.id, start, end)
        scheduled = self.scheduled_hours_by_day(wc.id, start, end)

        days: List[DayCapacity] = []
        for day in _daterange(start, end):
            entry = entries.get(day)
            days.append(DayCapacity(
                date=day,
                day_type=entry.day_type if entry else CalendarDayType.HOLIDAY.value,
                available_hours=self.effective_hours(entry, wc) if entry else ZERO,
                scheduled_hours=scheduled.get(day, ZERO),
                has_calendar_entry=entry is not None,
            ))
        return days

    def find_next_slot(
        self,
        work_center_id: int,
        required_hours: Decimal,
        start_from: Optional[date] = None,
        max_days: Optional[int] = None,
    ) -> Optional[CapacitySlot]:
        """
        Walk forward from ``start_from`` (default today) adding each day's free
        hours until they cover ``required_hours``.

        Returns:
            The consumed day range, or None when the search bound is reached first.
        """
        required = Decimal(str(required_hours))
        if required <= 0:
            raise ValidationError("Required hours must be positive", field="required_hours", value=required_hours)

        start_from = start_from or date.today()
        bound = max_days if max_days is not None else self.options.slot_search_days
        last_day = start_from + timedelta(days=bound - 1)

        accumulated = ZERO
        consumed: List[DayCapacity] = []
        for day in self.daily_breakdown(work_center_id, start_from, last_day):
            free = day.remaining_hours
            if free <= 0 and not consumed:
                continue
            consumed.append(day)
            accumulated += free
            if accumulated >= required:
                return CapacitySlot(
                    work_center_id=work_center_id,
                    start_date=consumed[0].date,
                    end_date=day.date,
                    required_hours=required,
                    accumulated_hours=accumulated,
                    days=consumed,
                )

        logger.info(
            "No capacity slot within search bound",
            extra={
                "work_center_id": work_center_id,
                "required_hours": str(required),
                "search_days": bound,
                "accumulated_hours": str(accumulated),
            },
        )
        return None

    def check_capacity(
        self,
        requirements: Dict[int, Decimal],
        start: date,
        due: date,
    ) -> List[Dict[str, Any]]:
        """
        Work centers that cannot fit their hours between ``start`` and ``due``.

        ``requirements`` maps work center id to hours. An empty list means the
        work fits; otherwise one issue per work center with the shortage.
        """
        due = max(due, start)
        window = (due - start).days + 1
        issues: List[Dict[str, Any]] = []
        for work_center_id, hours in sorted(requirements.items()):
            hours = Decimal(str(hours))
            if hours <= 0:
                continue
            if self.find_next_slot(work_center_id, hours, start_from=start, max_days=window) is not None:
                continue
            wc = self._work_center(work_center_id)
            free = sum((d.remaining_hours for d in self.daily_breakdown(wc.id, start, due)), ZERO)
            issues.append({
                "work_center_id": wc.id,
                "work_center_code": wc.code,
                "required_hours": round(float(hours), 2),
                "available_hours": round(float(free), 2),
                "shortage": round(float(hours - free), 2),
            })
        return issues

    # ========================================================================
    # Working days
    # ========================================================================

    def _is_working(self, on_date: date, entries: Dict[date, WorkCenterCalendar]) -> bool:
        entry = entries.get(on_date)
        if entry is not None:
            return entry.day_type == CalendarDayType.WORKING.value
        return on_date.weekday() in self.options.working_weekdays

    def is_working_day(self, on_date: date, work_center_id: Optional[int] = None) -> bool:
        """A work center's calendar row decides when it has one; otherwise the standard working weekdays."""
        entries = self._entries(work_center_id, on_date, on_date) if work_center_id is not None else {}
        return self._is_working(on_date, entries)

    def subtract_working_days(self, from_date: date, days: int, work_center_id: Optional[int] = None) -> date:
        """
        The date ``days`` working days before ``from_date``.

        Used to offset lead times backwards from a required date. Falls back
        to calendar days when no working day turns up within a year.
        """
        if days <= 0:
            return from_date
        max_steps = days * 7 + 366
        entries: Dict[date, WorkCenterCalendar] = {}
        if work_center_id is not None:
            entries = self._entries(work_center_id, from_date - timedelta(days=max_steps), from_date)

        current = from_date
        remaining = days
        for _ in range(max_steps):
            current -= timedelta(days=1)
            if self._is_working(current, entries):
                remaining -= 1
                if remaining == 0:
                    return current

        logger.warning(
            "No working days found for lead time offset",
            extra={"from_date": from_date.isoformat(), "days": days, "work_center_id": work_center_id},
        )
        return from_date - timedelta(days=days)

    def capacity_summary(self, work_center: WorkCenter, start: date, end: date) -> Dict[str, Any]:
        days = self.daily_breakdown(work_center.id, start, end)
        available = sum((d.available_hours for d in days), ZERO)
        scheduled = sum((d.scheduled_hours for d in days), ZERO)
        return {
            "work_center_id": work_center.id,
            "work_center_code": work_center.code,
            "work_center_name": work_center.name,
            "available_hours": round(float(available), 2),
            "scheduled_hours": round(float(scheduled), 2),
            "remaining_hours": round(float(max(ZERO, available - scheduled)), 2),
            "utilization_percent": round(float(scheduled / available * HUNDRED), 1) if available > 0 else 0.0,
            "overloaded_days": sum(1 for d in days if d.is_overloaded),
        }

    # ========================================================================
    # Calendar maintenance
    # ========================================================================

    def generate_calendar(
        self,
        work_center_id: int,
        start: date,
        end: date,
        holidays: Optional[Iterable[date]] = None,
    ) -> int:
        """
        Create missing calendar rows for [start, end]. Existing rows are kept.

        Working weekdays get the default shift (or the work center's own
        capacity_hours_per_day); other weekdays and listed holidays become
        holiday rows.

        Returns:
            Number of rows created
        """
        if end < start:
            raise ValidationError("End date is before start date", field="end")
        wc = self._work_center(work_center_id)
        holiday_set = set(holidays or [])
        existing = self._entries(wc.id, start, end)

        shift_hours = self.options.default_shift_hours
        working_hours = (
            Decimal(str(wc.capacity_hours_per_day)) if wc.capacity_hours_per_day is not None else shift_hours
        )

        created = 0
        for day in _daterange(start, end):
            if day in existing:
                continue
            is_working = day.weekday() in self.options.working_weekdays and day not in holiday_set
            entry = WorkCenterCalendar(
                work_center_id=wc.id,
                calendar_date=day,
                day_type=CalendarDayType.WORKING.value if is_working else CalendarDayType.HOLIDAY.value,
                shift_start=self.options.shift_start if is_working else None,
                shift_end=self.options.shift_end if is_working else None,
                break_hours=self.options.break_hours if is_working else ZERO,
                available_hours=working_hours if is_working else ZERO,
                notes="Holiday" if day in holiday_set else None,
            )
            self.db.add(entry)
            created += 1

        self.db.commit()
        logger.info(
            "Work center calendar generated",
            extra={"work_center_id": wc.id, "start": start.isoformat(), "end": end.isoformat(), "entries_created": created},
        )
        return created

    def generate_all_calendars(
        self,
        start: date,
        end: date,
        holidays: Optional[Iterable[date]] = None,
    ) -> Dict[int, Dict[str, Any]]:
        holiday_list = list(holidays or [])
        results: Dict[int, Dict[str, Any]] = {}
        for wc in self.db.query(WorkCenter).filter(WorkCenter.is_active == True).all():  # noqa: E712
            results[wc.id] = {
                "work_center": wc.name,
                "entries_created": self.generate_calendar(wc.id, start, end, holiday_list),
            }
        return results

    def set_holiday(self, work_center_id: int, start: date, end: date, reason: str) -> int:
        """Mark existing rows in [start, end] as holidays. Returns rows updated."""
        self._work_center(work_center_id)
        updated = self.db.query(WorkCenterCalendar).filter(
            WorkCenterCalendar.work_center_id == work_center_id,
            WorkCenterCalendar.calendar_date >= start,
            WorkCenterCalendar.calendar_date <= end,
        ).update(
            {
                WorkCenterCalendar.day_type: CalendarDayType.HOLIDAY.value,
                WorkCenterCalendar.available_hours: ZERO,
                WorkCenterCalendar.notes: reason,
            },
            synchronize_session="fetch",
        )
        self.db.commit()
        return updated

    def set_maintenance(
        self,
        work_center_id: int,
        on_date: date,
        reduced_hours: Decimal,
        reason: str,
    ) -> WorkCenterCalendar:
        """
        Record maintenance on one day.

        ``reduced_hours == 0`` makes it a maintenance day (no capacity);
        otherwise the day stays a working day capped at ``reduced_hours``.
        """
        wc = self._work_center(work_center_id)
        hours = Decimal(str(reduced_hours))
        if hours < 0:
            raise ValidationError("Reduced hours cannot be negative", field="reduced_hours")

        entry = self.db.query(WorkCenterCalendar).filter(
            WorkCenterCalendar.work_center_id == wc.id,
            WorkCenterCalendar.calendar_date == on_date,
        ).first()
        if entry is None:
            entry = WorkCenterCalendar(
                work_center_id=wc.id,
                calendar_date=on_date,
                available_hours=hours,
                break_hours=ZERO,
            )
            self.db.add(entry)

        if hours == 0:
            entry.day_type = CalendarDayType.MAINTENANCE.value
            entry.capacity_override = None
        else:
            entry.day_type = CalendarDayType.WORKING.value
            entry.capacity_override = hours
        entry.notes = reason
        self.db.commit()
        self.db.refresh(entry)
        return entry

    # ========================================================================
    # Reports
    # ========================================================================

    def _active_work_centers(self) -> List[WorkCenter]:
        return self.db.query(WorkCenter).filter(
            WorkCenter.is_active == True  # noqa: E712
        ).order_by(WorkCenter.code).all()

    def load_report(self, start: date, end: date) -> Dict[str, Any]:
        """Utilization per active work center: overloaded (>100%), underutilized (<50%) or optimal."""
        report: Dict[str, Any] = {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "summary": {
                "total_work_centers": 0,
                "overloaded_count": 0,
                "underutilized_count": 0,
                "optimal_count": 0,
            },
            "work_centers": [],
        }
        for wc in self._active_work_centers():
            capacity = self.capacity_summary(wc, start, end)
            utilization = capacity["utilization_percent"]
            if utilization > 100:
                status = "overloaded"
            elif utilization < 50:
                status = "underutilized"
            else:
                status = "optimal"
            report["summary"][f"{status}_count"] += 1
            report["summary"]["total_work_centers"] += 1
            report["work_centers"].append({
                "id": wc.id,
                "code": wc.code,
                "name": wc.name,
                "type": wc.center_type,
                "capacity": capacity,
                "status": status,
            })
        return report

    def bottleneck_analysis(self, start: date, end: date) -> Dict[str, Any]:
        threshold = float(self.options.bottleneck_threshold)
        overview = [self.capacity_summary(wc, start, end) for wc in self._active_work_centers()]
        bottlenecks = sorted(
            (wc for wc in overview if wc["utilization_percent"] > threshold),
            key=lambda wc: wc["utilization_percent"],
            reverse=True,
        )

        recommendations = []
        for wc in bottlenecks:
            utilization = wc["utilization_percent"]
            if utilization > 100:
                recommendations.append({
                    "work_center": wc["work_center_name"],
                    "severity": "critical",
                    "message": f"Work center is overloaded at {utilization}% utilization",
                    "suggestions": [
                        "Consider overtime or additional shifts",
                        "Reschedule some work orders",
                        "Outsource to subcontractors",
                    ],
                })
            elif utilization > 90:
                recommendations.append({
                    "work_center": wc["work_center_name"],
                    "severity": "warning",
                    "message": f"Work center is near capacity at {utilization}% utilization",
                    "suggestions": [
                        "Monitor closely for delays",
                        "Avoid scheduling additional work if possible",
                    ],
                })

        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "threshold_percent": threshold,
            "bottlenecks": bottlenecks,
            "recommendations": recommendations,
        }
