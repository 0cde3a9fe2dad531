"""
Manufacturing Planning - Custom Exception Hierarchy

Provides structured, typed exceptions with error codes for consistent
error handling across the planning engines and the API.

Usage:
    from mfgplan.exceptions import BomNotFoundError, CyclicBomError

    raise BomNotFoundError(bom_id)
    raise CyclicBomError([12, 40, 12])
"""
from typing import Any, Dict, List, Optional


class PlanningException(Exception):
    """
    Base exception for all planning errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "NOT_FOUND", "CYCLIC_BOM")
        status_code: HTTP status code to return
        details: Additional context for debugging
    """

    error_code: str = "PLANNING_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ===================
# 400 Bad Request Errors
# ===================


class ValidationError(PlanningException):
    """Raised when input validation fails."""

    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details=details)


class UnitConversionError(PlanningException):
    """Raised when two units of measure cannot be converted into each other."""

    error_code = "UNIT_CONVERSION_ERROR"
    status_code = 400

    def __init__(
        self,
        from_unit: str,
        to_unit: str,
        *,
        product_id: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.product_id = product_id
        details: Dict[str, Any] = {"from_unit": from_unit, "to_unit": to_unit}
        if product_id is not None:
            details["product_id"] = product_id
        message = f"Cannot convert {from_unit} to {to_unit}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details=details)


# ===================
# 404 Not Found Errors
# ===================


class NotFoundError(PlanningException):
    """Raised when a requested resource is not found."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Any = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["resource"] = resource
        if resource_id is not None:
            details["id"] = str(resource_id)
            message = f"{resource} with ID '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, details=details)


class BomNotFoundError(NotFoundError):
    error_code = "BOM_NOT_FOUND"

    def __init__(self, bom_id: Any):
        self.bom_id = bom_id
        super().__init__("BOM", bom_id)


class WorkCenterNotFoundError(NotFoundError):
    error_code = "WORK_CENTER_NOT_FOUND"

    def __init__(self, work_center_id: Any):
        super().__init__("Work center", work_center_id)


class MrpRunNotFoundError(NotFoundError):
    error_code = "MRP_RUN_NOT_FOUND"

    def __init__(self, run_id: Any):
        super().__init__("MRP run", run_id)


# ===================
# 409 Conflict Errors
# ===================


class InvalidStateError(PlanningException):
    """Raised when an operation is invalid for the current state."""

    error_code = "INVALID_STATE"
    status_code = 409

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        *,
        current_state: Optional[str] = None,
        allowed_states: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        if allowed_states:
            details["allowed_states"] = allowed_states
        super().__init__(message, details=details)


# ===================
# 422 Structural / Business Rule Errors
# ===================


class BusinessRuleError(PlanningException):
    """Raised when a business rule is violated."""

    error_code = "BUSINESS_RULE_VIOLATION"
    status_code = 422

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if rule:
            details["rule"] = rule
        super().__init__(message, details=details)


class CyclicBomError(BusinessRuleError):
    """
    A BOM reappeared on its own ancestor path during explosion.

    ``path`` is the chain of BOM ids from the outermost BOM down to the
    repeated one, so ``path[0]`` ... ``path[-1]`` reproduces the loop.
    """

    error_code = "CYCLIC_BOM"

    def __init__(self, path: List[int], *, message: Optional[str] = None):
        self.path = list(path)
        chain = " -> ".join(str(p) for p in self.path)
        super().__init__(
            message or f"Circular BOM reference detected: {chain}",
            rule="bom_acyclic",
            details={"path": self.path},
        )


class CyclicProductDependencyError(BusinessRuleError):
    """The product graph built from default BOMs contains a cycle."""

    error_code = "CYCLIC_PRODUCT_DEPENDENCY"

    def __init__(self, path: List[int]):
        self.path = list(path)
        chain = " -> ".join(str(p) for p in self.path)
        super().__init__(
            f"Cyclic product dependency: {chain}",
            rule="product_graph_acyclic",
            details={"path": self.path},
        )


class MaxDepthExceededError(PlanningException):
    """
    Recursion reached the configured depth bound without a cycle.

    The explosion engine catches this and returns the partial result with
    ``truncated=True``; callers of ``explode`` never see it.
    """

    error_code = "MAX_DEPTH_EXCEEDED"
    status_code = 422

    def __init__(self, max_depth: int, bom_id: Optional[int] = None):
        self.max_depth = max_depth
        self.bom_id = bom_id
        super().__init__(
            f"BOM explosion exceeded maximum depth of {max_depth}",
            details={"max_depth": max_depth, "bom_id": bom_id},
        )
