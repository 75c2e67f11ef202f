from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from cardshop.common.constants import request_id_ctx
from cardshop.common.utils import build_success, json_ok
from cardshop.db.dependencies import get_session
from cardshop.payments.payment_log import list_payment_logs, payment_log_view

payments_admin_router = APIRouter()


@payments_admin_router.get("/payment-logs")
async def payment_logs(order_no: Optional[str] = Query(default=None, max_length=64),
                       page: int = Query(default=1, ge=1),
                       session: AsyncSession = Depends(get_session)):
    logs, pagination = await list_payment_logs(session, order_no=(order_no or "").strip() or None, page=page)
    data = {"logs": [payment_log_view(e) for e in logs], "pagination": pagination}
    return json_ok(build_success(data, request_id=request_id_ctx.get(None)))
