"""
Explosion Cache

Quantity-independent memoization of BOM explosions:
- Explosions are computed at quantity 1 and scaled linearly on read
- Key: (bom_id, include_optional, aggregate_by_product, as_tree, on_date)
- A separate "is this BOM multi-level" fact is cached with its own TTL
- Invalidation is explicit, per BOM id

The cache is never a source of truth: a miss, an expiry or an
invalidation always falls back to BomExplosionEngine.
"""
import threading
import time
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from mfgplan.core.settings import Settings, get_settings
from mfgplan.logging_config import get_logger
from mfgplan.services.bom_explosion import BomExplosionEngine, ExplosionResult

logger = get_logger(__name__)

CacheKey = Tuple[int, bool, bool, bool, date]
V = TypeVar("V")


class _TTLStore(Generic[V]):
    """Thread-safe dict with per-entry expiry. Last writer wins."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def put(self, key: Hashable, value: V) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._data[key] = (self._clock() + self.ttl_seconds, value)

    def discard_where(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            doomed = [k for k in self._data if predicate(k)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


def make_key(
    bom_id: int,
    include_optional: bool,
    aggregate_by_product: bool,
    as_tree: bool,
    on_date: Optional[date] = None,
) -> CacheKey:
    # Aggregation is ignored in tree mode, so both spellings share one entry.
    # BOM versions are picked by effectivity date, so the date is part of the key.
    return (
        bom_id,
        bool(include_optional),
        bool(aggregate_by_product) and not as_tree,
        bool(as_tree),
        on_date or date.today(),
    )


class ExplosionCache:
    """
    Holds unit-quantity explosions and structural facts.

    Example:
        cache = get_explosion_cache()
        result = cache.explode(db, bom_id=5, quantity=Decimal("40"))
        ...
        cache.invalidate(5)   # after BOM 5's lines change
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        structure_ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._explosions: _TTLStore[ExplosionResult] = _TTLStore(ttl_seconds, clock)
        self._structure: _TTLStore[bool] = _TTLStore(structure_ttl_seconds, clock)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ExplosionCache":
        settings = settings or get_settings()
        return cls(
            ttl_seconds=settings.BOM_EXPLOSION_CACHE_TTL_SECONDS,
            structure_ttl_seconds=settings.BOM_STRUCTURE_CACHE_TTL_SECONDS,
        )

    # ------------------------------------------------------------------
    # Raw get / put / scale
    # ------------------------------------------------------------------

    def get(
        self,
        bom_id: int,
        include_optional: bool = False,
        aggregate_by_product: bool = False,
        as_tree: bool = False,
        on_date: Optional[date] = None,
    ) -> Optional[ExplosionResult]:
        """Cached unit-quantity explosion effective on ``on_date`` (default today), or None."""
        return self._explosions.get(make_key(bom_id, include_optional, aggregate_by_product, as_tree, on_date))

    def put(
        self,
        bom_id: int,
        include_optional: bool,
        aggregate_by_product: bool,
        as_tree: bool,
        result: ExplosionResult,
        on_date: Optional[date] = None,
    ) -> None:
        """Store an explosion. Results for other quantities are normalized to quantity 1 first."""
        if result.quantity != Decimal("1"):
            result = self.scale_quantities(result, Decimal("1"))
        self._explosions.put(make_key(bom_id, include_optional, aggregate_by_product, as_tree, on_date), result)

    @staticmethod
    def scale_quantities(base_result: ExplosionResult, target_quantity: Decimal) -> ExplosionResult:
        """Scale every node, child and aggregated total linearly to ``target_quantity``."""
        return base_result.scaled(Decimal(str(target_quantity)))

    # ------------------------------------------------------------------
    # Read-through helpers
    # ------------------------------------------------------------------

    def explode(
        self,
        db: Session,
        bom_id: int,
        quantity: Decimal = Decimal("1"),
        include_optional: bool = False,
        aggregate_by_product: bool = False,
        as_tree: bool = False,
        engine: Optional[BomExplosionEngine] = None,
    ) -> ExplosionResult:
        """
        Explosion of ``bom_id`` at ``quantity``, served from the cache when possible.

        Only full-depth explosions in the BOM's own unit are cached; callers
        needing other depths or units use the engine directly. Entries are
        keyed on the engine's effectivity date.
        """
        engine = engine or BomExplosionEngine(db)
        on_date = engine.options.on_date
        cached = self.get(bom_id, include_optional, aggregate_by_product, as_tree, on_date)
        if cached is None:
            logger.debug("Explosion cache miss", extra={"bom_id": bom_id, "on_date": str(on_date)})
            cached = engine.explode(
                bom_id,
                quantity=Decimal("1"),
                include_optional=include_optional,
                explode_all_levels=True,
                aggregate_by_product=aggregate_by_product,
                as_tree=as_tree,
            )
            self.put(bom_id, include_optional, aggregate_by_product, as_tree, cached, on_date)
        else:
            logger.debug("Explosion cache hit", extra={"bom_id": bom_id})

        # Always a copy, so callers cannot mutate the cached entry
        return self.scale_quantities(cached, Decimal(str(quantity)))

    def is_multi_level(
        self,
        db: Session,
        bom_id: int,
        engine: Optional[BomExplosionEngine] = None,
    ) -> bool:
        """Whether a full explosion of ``bom_id`` goes below level 0 (cached separately)."""
        engine = engine or BomExplosionEngine(db)
        key = (bom_id, engine.options.on_date or date.today())
        cached = self._structure.get(key)
        if cached is not None:
            return cached
        value = engine.has_sub_levels(bom_id)
        self._structure.put(key, value)
        return value

    def explode_auto(
        self,
        db: Session,
        bom_id: int,
        quantity: Decimal = Decimal("1"),
        include_optional: bool = False,
        engine: Optional[BomExplosionEngine] = None,
    ) -> ExplosionResult:
        """Tree for multi-level BOMs, aggregated flat list for single-level ones."""
        engine = engine or BomExplosionEngine(db)
        if self.is_multi_level(db, bom_id, engine=engine):
            return self.explode(db, bom_id, quantity, include_optional, False, True, engine=engine)
        return self.explode(db, bom_id, quantity, include_optional, True, False, engine=engine)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, bom_id: int) -> int:
        """Drop every cached explosion and structural fact for one BOM."""
        removed = self._explosions.discard_where(lambda key: key[0] == bom_id)
        removed += self._structure.discard_where(lambda key: key[0] == bom_id)
        logger.info("Explosion cache invalidated", extra={"bom_id": bom_id, "entries_removed": removed})
        return removed

    def clear(self) -> None:
        self._explosions.clear()
        self._structure.clear()

    def stats(self) -> Dict[str, int]:
        return {"explosions": len(self._explosions), "structures": len(self._structure)}


_cache: Optional[ExplosionCache] = None
_cache_lock = threading.Lock()


def get_explosion_cache() -> ExplosionCache:
    """Process-wide cache instance."""
    global _cache
    if _cache is None:
        with _cache_lock:
            if _cache is None:
                _cache = ExplosionCache.from_settings()
    return _cache
