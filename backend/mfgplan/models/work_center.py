"""
Work Center and calendar models for capacity planning.

Work Centers are logical groups of resources (e.g., "CNC Cell", "Assembly Station").
Their capacity per day comes from pre-generated calendar rows.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Date, Time, ForeignKey, Text, Boolean, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime

from mfgplan.db.base import Base


class WorkCenter(Base):
    """
    Work Centers are logical production areas/departments.

    Examples:
    - "CNC Cell" - Several machining centers
    - "Assembly Station" - Manual assembly area
    - "Paint Line" - Finishing operations
    """
    __tablename__ = "work_centers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    center_type = Column(String(50), default="production", nullable=False)  # production, assembly, finishing, etc.

    # Capacity Planning
    capacity_hours_per_day = Column(Numeric(10, 2), nullable=True)
    efficiency_percent = Column(Numeric(5, 2), default=100, nullable=False)

    hourly_rate = Column(Numeric(10, 2), default=0, nullable=False)

    # Scheduling
    is_bottleneck = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    calendar_entries = relationship(
        "WorkCenterCalendar", back_populates="work_center", cascade="all, delete-orphan"
    )
    operations = relationship("ProductionOrderOperation", back_populates="work_center")

    def __repr__(self):
        return f"<WorkCenter {self.code}: {self.name}>"


class WorkCenterCalendar(Base):
    """
    One row per (work center, date).

    Only ``working`` days carry capacity. On those,
    effective hours = (capacity_override or available_hours)
                      × (efficiency_override or work center efficiency) / 100
    """
    __tablename__ = "work_center_calendars"
    __table_args__ = (
        UniqueConstraint("work_center_id", "calendar_date", name="uq_work_center_calendar_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    work_center_id = Column(
        Integer, ForeignKey("work_centers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    calendar_date = Column(Date, nullable=False, index=True)

    # working, holiday, maintenance, shutdown
    day_type = Column(String(20), default="working", nullable=False)

    shift_start = Column(Time, nullable=True)
    shift_end = Column(Time, nullable=True)
    break_hours = Column(Numeric(5, 2), default=0, nullable=False)
    available_hours = Column(Numeric(6, 2), default=0, nullable=False)

    efficiency_override = Column(Numeric(5, 2), nullable=True)  # percent
    capacity_override = Column(Numeric(6, 2), nullable=True)  # hours

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    work_center = relationship("WorkCenter", back_populates="calendar_entries")

    def __repr__(self):
        return f"<WorkCenterCalendar wc={self.work_center_id} {self.calendar_date} {self.day_type}>"

    @property
    def is_available(self) -> bool:
        return self.day_type == "working"
