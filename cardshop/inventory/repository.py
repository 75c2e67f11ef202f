from typing import List, Optional, Sequence
from sqlalchemy import case, func, select, update, delete
from cardshop.common.utils import now
from cardshop.schema.full_schema import CardRecord, InventoryLock, Orders, OrderStatus, Product


async def get_product(session, product_id: int, for_update: bool = False) -> Optional[Product]:
    stmt = select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def count_cards(session, product_id: int, unused_only: bool = True) -> int:
    stmt = select(func.count(CardRecord.id)).where(CardRecord.product_id == product_id)
    if unused_only:
        stmt = stmt.where(CardRecord.used.is_(False))
    res = await session.execute(stmt)
    return int(res.scalar_one() or 0)


async def locked_quantity(session, product_id: int, now_ts: int) -> int:
    """Sum of quantities held by unexpired inventory locks for a product."""
    stmt = (
        select(func.coalesce(func.sum(InventoryLock.quantity), 0))
        .where(InventoryLock.product_id == product_id, InventoryLock.expires_at >= now_ts)
    )
    res = await session.execute(stmt)
    return int(res.scalar_one() or 0)


async def insert_lock(session, order_id: int, product_id: int, quantity: int, expires_at: int) -> InventoryLock:
    lock = InventoryLock(order_id=order_id, product_id=product_id, quantity=quantity, expires_at=expires_at)
    session.add(lock)
    await session.flush()
    return lock


async def delete_lock_by_order(session, order_id: int) -> int:
    res = await session.execute(delete(InventoryLock).where(InventoryLock.order_id == order_id))
    return res.rowcount or 0


async def get_lock_by_order(session, order_id: int) -> Optional[InventoryLock]:
    res = await session.execute(select(InventoryLock).where(InventoryLock.order_id == order_id))
    return res.scalar_one_or_none()


async def expired_locks(session, now_ts: int, limit: Optional[int] = None) -> List[InventoryLock]:
    stmt = select(InventoryLock).where(InventoryLock.expires_at < now_ts).order_by(InventoryLock.expires_at)
    if limit:
        stmt = stmt.limit(limit)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def oldest_unused_cards(session, product_id: int, limit: int) -> List[CardRecord]:
    stmt = (
        select(CardRecord)
        .where(CardRecord.product_id == product_id, CardRecord.used.is_(False))
        .order_by(CardRecord.id)
        .limit(limit)
        .with_for_update()
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def mark_cards_used(session, card_ids: Sequence[int], order_id: int) -> int:
    if not card_ids:
        return 0
    stmt = (
        update(CardRecord)
        .where(CardRecord.id.in_(list(card_ids)), CardRecord.used.is_(False))
        .values(used=True, order_id=order_id)
    )
    res = await session.execute(stmt)
    return res.rowcount or 0


async def unmark_cards_for_order(session, order_id: int) -> int:
    stmt = (
        update(CardRecord)
        .where(CardRecord.order_id == order_id, CardRecord.used.is_(True))
        .values(used=False, order_id=None)
    )
    res = await session.execute(stmt)
    return res.rowcount or 0


async def all_card_contents(session, product_id: int) -> List[str]:
    stmt = select(CardRecord.content).where(CardRecord.product_id == product_id).order_by(CardRecord.id)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def paid_order_count(session, product_id: int) -> int:
    stmt = (
        select(func.count(Orders.id))
        .where(Orders.product_id == product_id, Orders.status == OrderStatus.PAID.value)
    )
    res = await session.execute(stmt)
    return int(res.scalar_one() or 0)


async def decrement_stock(session, product_id: int, count: int) -> None:
    # -1 (unlimited) stays untouched; finite stock never goes below zero
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= 0)
        .values(stock=case((Product.stock - count < 0, 0), else_=Product.stock - count))
    )
    await session.execute(stmt)


async def increment_stock(session, product_id: int, count: int) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= 0)
        .values(stock=Product.stock + count)
    )
    await session.execute(stmt)


async def set_stock(session, product_id: int, stock: int) -> None:
    await session.execute(update(Product).where(Product.id == product_id).values(stock=stock))


async def add_sold_count(session, product_id: int, delta: int) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(sold_count=case((Product.sold_count + delta < 0, 0), else_=Product.sold_count + delta))
    )
    await session.execute(stmt)


async def insert_cards(session, product_id: int, contents: Sequence[str]) -> int:
    for content in contents:
        session.add(CardRecord(product_id=product_id, content=content))
    await session.flush()
    return len(contents)


async def list_cards(session, product_id: int, used: Optional[bool] = None,
                     limit: int = 100, offset: int = 0) -> List[CardRecord]:
    stmt = select(CardRecord).where(CardRecord.product_id == product_id)
    if used is not None:
        stmt = stmt.where(CardRecord.used.is_(used))
    stmt = stmt.order_by(CardRecord.id).limit(limit).offset(offset)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def insert_product(session, **fields) -> Product:
    product = Product(**fields)
    session.add(product)
    await session.flush()
    return product


async def patch_product(session, product_id: int, updates: dict) -> bool:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(**updates, updated_at=now())
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return (res.rowcount or 0) == 1


async def set_product_status(session, product_id: int, from_status: int, to_status: int) -> bool:
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.status == from_status)
        .values(status=to_status, updated_at=now())
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return (res.rowcount or 0) == 1


async def list_products(session, limit: int = 50, offset: int = 0) -> List[Product]:
    stmt = select(Product).order_by(Product.id.desc()).limit(limit).offset(offset)
    res = await session.execute(stmt)
    return list(res.scalars().all())
