"""
BOM API Endpoints

- BOM creation, line editing and lifecycle (activate / obsolete / default)
- Explosion (tree, flat, aggregated) with a structure indicator
- Explosion cache invalidation
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from mfgplan.db.session import get_db
from mfgplan.logging_config import get_logger
from mfgplan.core.settings import settings
from mfgplan.schemas.bom import (
    BOMCreate,
    BOMLineCreate,
    BOMLineResponse,
    BOMLineUpdate,
    BOMResponse,
    CacheInvalidationResponse,
    ExplosionRequest,
    ExplosionResponse,
    StructureResponse,
)
from mfgplan.schemas.common import MessageResponse
from mfgplan.services.bom_explosion import BomExplosionEngine
from mfgplan.services.bom_helpers import get_bom_or_raise
from mfgplan.services.bom_service import BomService
from mfgplan.services.explosion_cache import get_explosion_cache

router = APIRouter()
logger = get_logger(__name__)


# ============================================================================
# BOM CRUD
# ============================================================================

@router.post("/", response_model=BOMResponse, status_code=status.HTTP_201_CREATED)
async def create_bom(request: BOMCreate, db: Session = Depends(get_db)):
    """Create a draft BOM, optionally with its lines."""
    service = BomService(db)
    bom = service.create_bom(
        product_id=request.product_id,
        base_quantity=request.base_quantity,
        unit=request.unit,
        code=request.code,
        name=request.name,
        version=request.version,
        effective_date=request.effective_date,
        expiry_date=request.expiry_date,
        notes=request.notes,
    )
    for line in request.lines:
        service.add_line(bom.id, **line.model_dump())
    db.refresh(bom)
    return bom


@router.get("/{bom_id}", response_model=BOMResponse)
async def get_bom(bom_id: int, db: Session = Depends(get_db)):
    return get_bom_or_raise(db, bom_id)


@router.post("/{bom_id}/lines", response_model=BOMLineResponse, status_code=status.HTTP_201_CREATED)
async def add_bom_line(bom_id: int, request: BOMLineCreate, db: Session = Depends(get_db)):
    """
    Add a component line.

    Rejects self-references and circular references through default BOMs
    (422, CYCLIC_BOM) and units that cannot be converted (400).
    """
    return BomService(db).add_line(bom_id, **request.model_dump())


@router.patch("/lines/{line_id}", response_model=BOMLineResponse)
async def update_bom_line(line_id: int, request: BOMLineUpdate, db: Session = Depends(get_db)):
    return BomService(db).update_line(line_id, **request.model_dump(exclude_unset=True))


@router.delete("/lines/{line_id}", response_model=MessageResponse)
async def delete_bom_line(line_id: int, db: Session = Depends(get_db)):
    BomService(db).remove_line(line_id)
    return {"message": f"BOM line {line_id} removed"}


# ============================================================================
# Lifecycle
# ============================================================================

@router.post("/{bom_id}/activate", response_model=BOMResponse)
async def activate_bom(bom_id: int, db: Session = Depends(get_db)):
    return BomService(db).activate(bom_id)


@router.post("/{bom_id}/set-default", response_model=BOMResponse)
async def set_default_bom(bom_id: int, db: Session = Depends(get_db)):
    return BomService(db).set_default(bom_id)


@router.post("/{bom_id}/obsolete", response_model=BOMResponse)
async def obsolete_bom(bom_id: int, db: Session = Depends(get_db)):
    return BomService(db).obsolete(bom_id)


@router.post("/{bom_id}/revert-to-draft", response_model=BOMResponse)
async def revert_bom_to_draft(bom_id: int, db: Session = Depends(get_db)):
    return BomService(db).revert_to_draft(bom_id)


# ============================================================================
# Explosion
# ============================================================================

@router.post("/{bom_id}/explode", response_model=ExplosionResponse)
async def explode_bom(bom_id: int, request: ExplosionRequest, db: Session = Depends(get_db)):
    """
    Explode a BOM.

    With neither ``as_tree`` nor ``aggregate_by_product`` given, multi-level
    BOMs come back as a tree and single-level BOMs as an aggregated flat list.
    Full-depth explosions in the BOM's own unit are served from the cache.
    """
    cache = get_explosion_cache()
    engine = BomExplosionEngine(db)
    cacheable = request.explode_all_levels and request.max_depth is None and request.unit is None

    if cacheable and request.as_tree is None and request.aggregate_by_product is None:
        result = cache.explode_auto(
            db, bom_id, request.quantity, include_optional=request.include_optional, engine=engine
        )
    elif cacheable:
        result = cache.explode(
            db,
            bom_id,
            request.quantity,
            include_optional=request.include_optional,
            aggregate_by_product=bool(request.aggregate_by_product),
            as_tree=bool(request.as_tree),
            engine=engine,
        )
    else:
        result = engine.explode(
            bom_id,
            quantity=request.quantity,
            max_depth=request.max_depth,
            include_optional=request.include_optional,
            explode_all_levels=request.explode_all_levels,
            aggregate_by_product=bool(request.aggregate_by_product),
            as_tree=bool(request.as_tree),
            unit=request.unit,
        )
    return result.to_dict(settings.BOM_QUANTITY_DECIMALS)


@router.get("/{bom_id}/structure", response_model=StructureResponse)
async def bom_structure(bom_id: int, db: Session = Depends(get_db)):
    """Whether the BOM explodes below level 0 (cached)."""
    return {"bom_id": bom_id, "is_multi_level": get_explosion_cache().is_multi_level(db, bom_id)}


@router.post("/{bom_id}/invalidate-cache", response_model=CacheInvalidationResponse)
async def invalidate_bom_cache(bom_id: int, db: Session = Depends(get_db)):
    """Drop cached explosions of this BOM and of every BOM that inlines it."""
    service = BomService(db)
    bom = get_bom_or_raise(db, bom_id)
    ids = service.affected_bom_ids(bom)
    removed = sum(service.cache.invalidate(affected_id) for affected_id in ids)
    logger.info("BOM cache invalidated via API", extra={"bom_id": bom_id, "bom_ids": ids})
    return {"bom_ids": ids, "entries_removed": removed}
