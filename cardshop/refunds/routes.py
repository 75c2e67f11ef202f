from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from cardshop.common.constants import request_id_ctx
from cardshop.common.utils import build_success, json_ok
from cardshop.db.dependencies import get_session
from cardshop.orders.services import order_view
from cardshop.payments.dependencies import get_gateway
from cardshop.payments.epay_client import EpayClient
from cardshop.refunds.services import approve_refund, refund_order, reject_refund
from cardshop.schema.full_schema import RefundRequest

refunds_admin_router = APIRouter()


class RejectRefundRequest(BaseModel):
    note: Optional[str] = None


def _request_view(req: RefundRequest):
    return {"refund_request_id": req.id, "order_id": req.order_id, "status": req.status, "note": req.note}


@refunds_admin_router.post("/{order_id}/refund")
async def admin_refund(order_id: int, session: AsyncSession = Depends(get_session),
                       gateway: EpayClient = Depends(get_gateway)):
    order = await refund_order(session, order_id, gateway=gateway)
    return json_ok(build_success(order_view(order), request_id=request_id_ctx.get(None)))


@refunds_admin_router.post("/{order_id}/refund-approve")
async def admin_refund_approve(order_id: int, session: AsyncSession = Depends(get_session),
                               gateway: EpayClient = Depends(get_gateway)):
    req = await approve_refund(session, order_id, gateway=gateway)
    return json_ok(build_success(_request_view(req), request_id=request_id_ctx.get(None)))


@refunds_admin_router.post("/{order_id}/refund-reject")
async def admin_refund_reject(order_id: int, body: Optional[RejectRefundRequest] = None,
                              session: AsyncSession = Depends(get_session)):
    req = await reject_refund(session, order_id, note=body.note if body else None)
    return json_ok(build_success(_request_view(req), request_id=request_id_ctx.get(None)))
