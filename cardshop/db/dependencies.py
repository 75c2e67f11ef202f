from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from cardshop.db.connection import async_session

async def get_session(request: Request) -> AsyncGenerator[AsyncSession,None]:
    session_factory = getattr(request.app.state, "session_factory", None) or async_session
    async with session_factory() as session:  # closes the session at the end of the with block
        yield session

