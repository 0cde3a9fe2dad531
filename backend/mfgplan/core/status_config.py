"""Status Configuration and Transition Rules

Valid status values and allowed transitions for BOMs, MRP runs and MRP
recommendations, plus the order statuses the planning engines read from
the surrounding ERP (which sales orders are demand, which purchase
orders are open supply, which production orders still load capacity).
"""
from enum import Enum
from typing import Dict, List, Set


# =============================================================================
# BOM Status
# =============================================================================

class BomStatus(str, Enum):
    """Lifecycle of a bill of materials"""
    DRAFT = "draft"
    ACTIVE = "active"
    OBSOLETE = "obsolete"


BOM_TRANSITIONS: Dict[str, Set[str]] = {
    BomStatus.DRAFT: {BomStatus.ACTIVE},
    BomStatus.ACTIVE: {BomStatus.OBSOLETE, BomStatus.DRAFT},
    BomStatus.OBSOLETE: {BomStatus.DRAFT},
}


def get_allowed_bom_transitions(current_status: str) -> List[str]:
    """Get list of allowed next statuses for a BOM"""
    return sorted(s.value for s in BOM_TRANSITIONS.get(current_status, set()))


def is_valid_bom_transition(current_status: str, new_status: str) -> bool:
    if current_status == new_status:
        return True
    return new_status in BOM_TRANSITIONS.get(current_status, set())


# =============================================================================
# MRP Run Status
# =============================================================================

class MrpRunStatus(str, Enum):
    """Valid status values for MRP runs"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


MRP_RUN_TRANSITIONS: Dict[str, Set[str]] = {
    MrpRunStatus.PENDING: {MrpRunStatus.RUNNING, MrpRunStatus.CANCELLED},
    MrpRunStatus.RUNNING: {
        MrpRunStatus.COMPLETED,
        MrpRunStatus.FAILED,
        MrpRunStatus.CANCELLED,
    },
    MrpRunStatus.COMPLETED: set(),  # Terminal
    MrpRunStatus.FAILED: set(),  # Terminal
    MrpRunStatus.CANCELLED: set(),  # Terminal
}

MRP_RUN_TERMINAL_STATUSES: Set[str] = {
    MrpRunStatus.COMPLETED.value,
    MrpRunStatus.FAILED.value,
    MrpRunStatus.CANCELLED.value,
}


def is_valid_mrp_run_transition(current_status: str, new_status: str) -> bool:
    """No self-transitions here: a run is started or finished exactly once."""
    return new_status in MRP_RUN_TRANSITIONS.get(current_status, set())


# =============================================================================
# MRP Recommendation Status
# =============================================================================

class RecommendationStatus(str, Enum):
    """Valid status values for MRP recommendations"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIONED = "actioned"
    EXPIRED = "expired"


RECOMMENDATION_TRANSITIONS: Dict[str, Set[str]] = {
    RecommendationStatus.PENDING: {
        RecommendationStatus.APPROVED,
        RecommendationStatus.REJECTED,
        RecommendationStatus.EXPIRED,
    },
    RecommendationStatus.APPROVED: {
        RecommendationStatus.ACTIONED,
        RecommendationStatus.REJECTED,
        RecommendationStatus.EXPIRED,
    },
    RecommendationStatus.REJECTED: set(),  # Terminal
    RecommendationStatus.ACTIONED: set(),  # Terminal
    RecommendationStatus.EXPIRED: set(),  # Terminal
}

RECOMMENDATION_FINAL_STATUSES: Set[str] = {
    RecommendationStatus.REJECTED.value,
    RecommendationStatus.ACTIONED.value,
    RecommendationStatus.EXPIRED.value,
}


def is_valid_recommendation_transition(current_status: str, new_status: str) -> bool:
    return new_status in RECOMMENDATION_TRANSITIONS.get(current_status, set())


class RecommendationType(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    WORK_ORDER = "work_order"


class RecommendationPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Sort rank, lower is more urgent
PRIORITY_RANK: Dict[str, int] = {
    RecommendationPriority.CRITICAL.value: 0,
    RecommendationPriority.HIGH.value: 1,
    RecommendationPriority.MEDIUM.value: 2,
    RecommendationPriority.LOW.value: 3,
}


# =============================================================================
# Calendar Day Types
# =============================================================================

class CalendarDayType(str, Enum):
    """Only WORKING days contribute capacity"""
    WORKING = "working"
    HOLIDAY = "holiday"
    MAINTENANCE = "maintenance"
    SHUTDOWN = "shutdown"


# =============================================================================
# External order statuses read by the planning engines
# =============================================================================

# Production orders in these states no longer load work centers
PRODUCTION_ORDER_TERMINAL_STATUSES: Set[str] = {"complete", "completed", "cancelled", "closed"}

# Production orders whose remaining quantity counts as WIP supply
PRODUCTION_ORDER_WIP_STATUSES: Set[str] = {"released", "in_progress"}

# Operations in these states no longer load work centers
OPERATION_TERMINAL_STATUSES: Set[str] = {"complete", "completed", "skipped", "cancelled"}

# Sales orders whose open lines are independent demand
SALES_ORDER_DEMAND_STATUSES: Set[str] = {"confirmed", "in_production"}

# Purchase orders whose open lines are scheduled receipts
PURCHASE_ORDER_OPEN_STATUSES: Set[str] = {"ordered", "partially_received"}
