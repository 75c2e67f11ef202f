"""Reservation locks: time-bounded holds on consumable stock, one per pending order."""
from typing import List, Optional
from cardshop.common.utils import now_ts as _now_ts
from cardshop.config.settings import config_settings
from cardshop.inventory import repository as inv_repo
from cardshop.inventory.services import reserve
from cardshop.schema.full_schema import InventoryLock, Orders, Product


async def acquire(session, product: Product, order: Orders, ttl_seconds: Optional[int] = None,
                  now_ts: Optional[int] = None) -> Optional[InventoryLock]:
    ttl = ttl_seconds if ttl_seconds is not None else config_settings.INVENTORY_LOCK_TTL_SECONDS
    return await reserve(session, product, order.quantity, order.id, ttl, now_ts=now_ts)


async def release_by_order(session, order_id: int) -> bool:
    """Drop the hold for an order. Returns False when there was none."""
    return await inv_repo.delete_lock_by_order(session, order_id) > 0


async def sweep_expired(session, now_ts: Optional[int] = None, limit: Optional[int] = None) -> List[InventoryLock]:
    """Locks whose hold ran out. Rows are not deleted here; the owning order's
    terminal transition does that."""
    return await inv_repo.expired_locks(session, now_ts if now_ts is not None else _now_ts(), limit=limit)
