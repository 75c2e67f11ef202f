from typing import Optional
from sqlalchemy import select, update
from cardshop.schema.full_schema import Users


async def get_user(session, user_id: int) -> Optional[Users]:
    stmt = select(Users).where(Users.id == user_id).execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def debit_points(session, user_id: int, points: int) -> bool:
    """Take points from a balance. False when the balance is too low (nothing changes)."""
    if points <= 0:
        return True
    stmt = (
        update(Users)
        .where(Users.id == user_id, Users.points >= points)
        .values(points=Users.points - points)
    )
    res = await session.execute(stmt)
    return (res.rowcount or 0) == 1


async def credit_points(session, user_id: Optional[int], points: int) -> bool:
    if not user_id or points <= 0:
        return False
    stmt = update(Users).where(Users.id == user_id).values(points=Users.points + points)
    res = await session.execute(stmt)
    return (res.rowcount or 0) == 1
