from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from cardshop.common.constants import request_id_ctx
from cardshop.common.custom_exceptions import NotFound
from cardshop.common.utils import build_success, json_ok
from cardshop.db.dependencies import get_session
from cardshop.orders.models import CreateOrderRequest
from cardshop.orders.services import cancel_order, create_order, get_order_or_404, list_orders_for_user, order_view
from cardshop.payments.dependencies import get_gateway
from cardshop.payments.epay_client import EpayClient
from cardshop.payments.services import lookup_order_cards, poll_order_result, start_payment
from cardshop.refunds.services import request_refund
from cardshop.schema.full_schema import OrderStatus
from cardshop.user.dependencies import current_user_id, require_user_id

orders_router=APIRouter()


@orders_router.get("")
async def my_orders(session: AsyncSession = Depends(get_session), user_id: int = Depends(require_user_id)):
    items = await list_orders_for_user(session, user_id)
    return json_ok(build_success({"orders": items}, request_id=request_id_ctx.get(None)))


@orders_router.post("")
async def place_order(request: Request, body: CreateOrderRequest,
                      session: AsyncSession = Depends(get_session),
                      gateway: EpayClient = Depends(get_gateway)):

    user_id = current_user_id(request)
    order = await create_order(session, body.product_id, body.quantity, user_id=user_id,
                               points=body.points, contact=body.contact)

    data = order_view(order, include_cards=True)
    data["redirect_url"] = None
    if order.status == OrderStatus.PENDING.value:
        # a gateway failure surfaces as 503 and leaves the order pending until it expires
        data["redirect_url"] = await start_payment(session, order, gateway=gateway)

    payload = build_success(data, request_id=request_id_ctx.get(None))
    return json_ok(payload, status_code=status.HTTP_201_CREATED)


# buyer lands here after the gateway; the order is synced with the gateway if still pending
@orders_router.get("/{order_no}/result")
async def order_result(order_no: str, session: AsyncSession = Depends(get_session),
                       gateway: EpayClient = Depends(get_gateway)):
    order = await poll_order_result(session, order_no, gateway=gateway)
    payload = build_success(order_view(order, include_cards=True), request_id=request_id_ctx.get(None))
    return json_ok(payload)


@orders_router.get("/{order_no}/cards")
async def order_cards(order_no: str, session: AsyncSession = Depends(get_session),
                      gateway: EpayClient = Depends(get_gateway)):
    order = await lookup_order_cards(session, order_no, gateway=gateway)
    payload = build_success(order_view(order, include_cards=True), request_id=request_id_ctx.get(None))
    return json_ok(payload)


@orders_router.post("/{order_no}/cancel")
async def cancel(request: Request, order_no: str, session: AsyncSession = Depends(get_session)):
    order = await get_order_or_404(session, order_no)
    user_id = current_user_id(request)
    if order.user_id is not None and order.user_id != user_id:
        # other buyers' orders look the same as missing ones
        raise NotFound("order not found")
    cancelled = await cancel_order(session, order.id, reason="user")
    payload = build_success(order_view(cancelled), request_id=request_id_ctx.get(None))
    return json_ok(payload)


@orders_router.post("/{order_no}/refund-request")
async def refund_request(order_no: str, session: AsyncSession = Depends(get_session),
                         user_id: int = Depends(require_user_id)):
    req = await request_refund(session, user_id, order_no)
    data = {"order_no": order_no, "refund_request_id": req.id, "status": req.status}
    payload = build_success(data, request_id=request_id_ctx.get(None))
    return json_ok(payload, status_code=status.HTTP_201_CREATED)
