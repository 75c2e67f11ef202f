from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import func, or_, select, update
from cardshop.schema.full_schema import Orders, OrderStatus


async def get_order(session, order_id: int, for_update: bool = False) -> Optional[Orders]:
    stmt = select(Orders).where(Orders.id == order_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_order_by_no(session, order_no: str) -> Optional[Orders]:
    stmt = select(Orders).where(Orders.order_no == order_no).execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def product_id_of_order(session, order_id: int) -> Optional[int]:
    res = await session.execute(select(Orders.product_id).where(Orders.id == order_id))
    return res.scalar_one_or_none()


async def insert_order(session, **fields) -> Orders:
    order = Orders(**fields)
    session.add(order)
    await session.flush()  # populate order.id
    return order


async def user_open_quantity(session, user_id: int, product_id: int) -> int:
    """Units a user holds or is about to hold (pending + paid) of one product."""
    stmt = (
        select(func.coalesce(func.sum(Orders.quantity), 0))
        .where(
            Orders.user_id == user_id,
            Orders.product_id == product_id,
            Orders.status.in_([OrderStatus.PENDING.value, OrderStatus.PAID.value]),
        )
    )
    res = await session.execute(stmt)
    return int(res.scalar_one() or 0)


async def transition(session, order_id: int, from_status: OrderStatus, values: Dict[str, Any]) -> bool:
    """Conditional status update. True only for the caller whose update hit the row."""
    stmt = (
        update(Orders)
        .where(Orders.id == order_id, Orders.status == from_status.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return (res.rowcount or 0) == 1


async def set_delivered_cards(session, order_id: int, cards: Optional[List[str]]) -> None:
    stmt = (
        update(Orders)
        .where(Orders.id == order_id)
        .values(delivered_cards=cards)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def stale_pending_order_ids(session, created_before: datetime, expired_lock_order_ids: List[int],
                                  limit: int = 100) -> List[int]:
    """Pending orders past the payment window or whose inventory lock has run out."""
    conditions = [Orders.created_at < created_before]
    if expired_lock_order_ids:
        conditions.append(Orders.id.in_(expired_lock_order_ids))
    stmt = (
        select(Orders.id)
        .where(
            Orders.status == OrderStatus.PENDING.value,
            or_(*conditions),
        )
        .order_by(Orders.id)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())



async def list_user_orders(session, user_id: int, limit: int = 100) -> List[Orders]:
    stmt = select(Orders).where(Orders.user_id == user_id).order_by(Orders.id.desc()).limit(limit)
    res = await session.execute(stmt)
    return list(res.scalars().all())
