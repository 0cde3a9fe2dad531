"""
API v1 Router - MfgPlan
"""
from fastapi import APIRouter
from mfgplan.api.v1.endpoints import (
    boms,
    work_centers,
    mrp,
)

router = APIRouter()

# Bills of materials and explosion
router.include_router(
    boms.router,
    prefix="/boms",
    tags=["boms"]
)

# Work center capacity
router.include_router(
    work_centers.router,
    prefix="/work-centers",
    tags=["capacity"]
)

# MRP runs and recommendations
router.include_router(
    mrp.router,
    prefix="/mrp",
    tags=["mrp"]
)
