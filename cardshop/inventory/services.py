"""Inventory ledger.

The ledger functions run inside a transaction owned by the caller, which must already
hold ``write_locks`` for the product, and never commit on the caller's behalf.
``add_cards`` and the product admin operations at the bottom own their transactions.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from cardshop.common.custom_exceptions import InvalidStateTransition, NotFound, OutOfStock, ValidationFailed
from cardshop.common.utils import as_utc, now_ts as _now_ts
from cardshop.db.locks import write_locks
from cardshop.inventory import repository as inv_repo
from cardshop.inventory.constants import MAX_CARD_LENGTH, logger
from cardshop.inventory.models import ProductCreateIn
from cardshop.schema.full_schema import CardRecord, InventoryLock, Orders, Product, ProductStatus, UNLIMITED_STOCK


@dataclass(frozen=True)
class Availability:
    ok: bool
    available: int


async def physical_stock(session, product: Product) -> int:
    """Units that exist regardless of reservations."""
    if product.card_mode:
        return await inv_repo.count_cards(session, product.id, unused_only=False)

    unused = await inv_repo.count_cards(session, product.id, unused_only=True)
    if product.stock != UNLIMITED_STOCK:
        return min(unused, max(product.stock, 0))
    return unused


async def check_availability(session, product: Product, quantity: int, now_ts: Optional[int] = None) -> Availability:
    physical = await physical_stock(session, product)
    if product.card_mode:
        # shared codes are handed out in rotation, reservations never deplete the pool
        return Availability(ok=physical > 0 and quantity <= physical, available=physical)

    locked = await inv_repo.locked_quantity(session, product.id, now_ts if now_ts is not None else _now_ts())
    available = max(physical - locked, 0)
    return Availability(ok=quantity <= available, available=available)


async def reserve(session, product: Product, quantity: int, order_id: int, ttl_seconds: int,
                  now_ts: Optional[int] = None) -> Optional[InventoryLock]:
    """Hold `quantity` units for an order. card_mode products need no hold and return None."""
    ts = now_ts if now_ts is not None else _now_ts()
    avail = await check_availability(session, product, quantity, now_ts=ts)
    if not avail.ok:
        logger.info("inventory.reserve.out_of_stock",
                    extra={"product_id": product.id, "requested": quantity, "available": avail.available})
        raise OutOfStock(f"insufficient stock, available {avail.available}", available=avail.available)

    if product.card_mode:
        return None

    lock = await inv_repo.insert_lock(session, order_id=order_id, product_id=product.id,
                                      quantity=quantity, expires_at=ts + int(ttl_seconds))
    logger.debug("inventory.reserve.locked",
                 extra={"product_id": product.id, "order_id": order_id, "quantity": quantity, "expires_at": lock.expires_at})
    return lock


async def consume(session, order: Orders, product: Product) -> List[str]:
    """Hand over card contents for a paid order.

    Consumable products take the oldest unused cards and may deliver fewer than ordered
    if the pool ran dry. card_mode products deliver by rotation: the caller must have
    flipped the order to paid first so that it is counted in the paid total.
    """
    if product.card_mode:
        contents = await inv_repo.all_card_contents(session, product.id)
        if not contents:
            return []
        paid_count = await inv_repo.paid_order_count(session, product.id)
        total = len(contents)
        return [contents[(paid_count - 1 + i) % total] for i in range(order.quantity)]

    cards = await inv_repo.oldest_unused_cards(session, product.id, order.quantity)
    taken = await inv_repo.mark_cards_used(session, [c.id for c in cards], order.id)
    if taken:
        await inv_repo.decrement_stock(session, product.id, taken)
    if taken < order.quantity:
        logger.warning("inventory.consume.short",
                       extra={"order_id": order.id, "product_id": product.id, "wanted": order.quantity, "taken": taken})
    return [c.content for c in cards[:taken]]


async def release(session, order: Orders, product: Product) -> int:
    """Return an order's cards to the pool. Safe to call more than once."""
    count = await inv_repo.unmark_cards_for_order(session, order.id)
    if count and not product.card_mode:
        await inv_repo.increment_stock(session, product.id, count)
    return count


def parse_card_lines(text: str) -> List[str]:
    lines = []
    for raw in (text or "").splitlines():
        line = raw.strip()
        if line:
            lines.append(line)
    return lines


async def add_cards(session, product_id: int, lines: List[str]) -> int:
    """Seed cards for a product; consumable stock is recomputed from the unused pool."""
    contents = [ln.strip() for ln in lines if ln and ln.strip()]
    for content in contents:
        if len(content) > MAX_CARD_LENGTH:
            raise ValidationFailed(f"card content longer than {MAX_CARD_LENGTH} characters")
    if not contents:
        raise ValidationFailed("no card content given")

    async with write_locks.hold(product_id):
        try:
            product = await inv_repo.get_product(session, product_id, for_update=True)
            if product is None:
                raise NotFound("product not found")

            added = await inv_repo.insert_cards(session, product_id, contents)
            if not product.card_mode:
                unused = await inv_repo.count_cards(session, product_id, unused_only=True)
                await inv_repo.set_stock(session, product_id, unused)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info("inventory.cards.added", extra={"product_id": product_id, "added": added})
    return added


async def list_cards(session, product_id: int, used: Optional[bool] = None,
                     limit: int = 100, offset: int = 0) -> List[CardRecord]:
    product = await inv_repo.get_product(session, product_id)
    if product is None:
        raise NotFound("product not found")
    return await inv_repo.list_cards(session, product_id, used=used, limit=limit, offset=offset)


# product admin

def product_view(product: Product) -> Dict[str, Any]:
    updated_at = as_utc(product.updated_at)
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": product.price,
        "stock": product.stock,
        "card_mode": product.card_mode,
        "purchase_limit": product.purchase_limit,
        "sold_count": product.sold_count,
        "status": product.status,
        "updated_at": updated_at.isoformat() if updated_at else None,
    }


async def create_product(session, payload: ProductCreateIn) -> Product:
    fields = payload.model_dump()
    fields["status"] = int(payload.status)
    if payload.card_mode:
        fields["stock"] = UNLIMITED_STOCK
    try:
        product = await inv_repo.insert_product(session, **fields)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("inventory.product.created", extra={"product_id": product.id, "card_mode": product.card_mode})
    return product


async def update_product(session, product_id: int, updates: Dict[str, Any]) -> Product:
    """Partial update. Switching a product out of card_mode without a new stock value
    resets stock to the unused card count."""
    if not updates:
        raise ValidationFailed("nothing to update")
    updates = dict(updates)
    if updates.get("status") is not None:
        updates["status"] = int(updates["status"])

    async with write_locks.hold(product_id):
        try:
            product = await inv_repo.get_product(session, product_id, for_update=True)
            if product is None:
                raise NotFound("product not found")

            card_mode = updates.get("card_mode")
            if card_mode is None:
                card_mode = product.card_mode
            if card_mode:
                updates["stock"] = UNLIMITED_STOCK
            elif product.card_mode and updates.get("stock") is None:
                updates["stock"] = await inv_repo.count_cards(session, product_id, unused_only=True)
            updates = {k: v for k, v in updates.items() if v is not None or k == "description"}

            if not await inv_repo.patch_product(session, product_id, updates):
                raise NotFound("product not found")
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info("inventory.product.updated", extra={"product_id": product_id, "fields": sorted(updates)})
    return await inv_repo.get_product(session, product_id)


async def toggle_product_status(session, product_id: int) -> Product:
    """on sale <-> off shelf. Pending orders of an off-shelf product can still be paid."""
    async with write_locks.hold(product_id):
        try:
            product = await inv_repo.get_product(session, product_id, for_update=True)
            if product is None:
                raise NotFound("product not found")
            current = product.status
            target = ProductStatus.OFF_SHELF if current == ProductStatus.ON_SALE else ProductStatus.ON_SALE
            if not await inv_repo.set_product_status(session, product_id, current, int(target)):
                raise InvalidStateTransition("product status changed concurrently", status=current)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info("inventory.product.status", extra={"product_id": product_id, "status": int(target)})
    return await inv_repo.get_product(session, product_id)


async def list_products(session, limit: int = 50, offset: int = 0) -> List[Product]:
    return await inv_repo.list_products(session, limit=limit, offset=offset)
