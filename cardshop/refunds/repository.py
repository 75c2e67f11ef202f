from typing import List, Optional, Set
from sqlalchemy import select, update
from cardshop.common.utils import now
from cardshop.schema.full_schema import RefundRequest, RefundStatus


async def get_pending_request(session, order_id: int) -> Optional[RefundRequest]:
    stmt = (
        select(RefundRequest)
        .where(RefundRequest.order_id == order_id, RefundRequest.status == RefundStatus.PENDING.value)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_request(session, request_id: int) -> Optional[RefundRequest]:
    stmt = select(RefundRequest).where(RefundRequest.id == request_id).execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def insert_request(session, order_id: int) -> RefundRequest:
    req = RefundRequest(order_id=order_id, status=RefundStatus.PENDING.value, requested_at=now())
    session.add(req)
    await session.flush()
    return req


async def close_request(session, request_id: int, status: RefundStatus, note: Optional[str] = None) -> bool:
    """pending -> approved/rejected. False if someone else already processed it."""
    stmt = (
        update(RefundRequest)
        .where(RefundRequest.id == request_id, RefundRequest.status == RefundStatus.PENDING.value)
        .values(status=status.value, processed_at=now(), note=note)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return (res.rowcount or 0) == 1


async def pending_request_order_ids(session, order_ids: List[int]) -> Set[int]:
    if not order_ids:
        return set()
    stmt = select(RefundRequest.order_id).where(
        RefundRequest.order_id.in_(order_ids), RefundRequest.status == RefundStatus.PENDING.value,
    )
    res = await session.execute(stmt)
    return set(res.scalars().all())
