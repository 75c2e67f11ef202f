from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession
from cardshop.common.custom_exceptions import GatewayAmountMismatch, GatewaySignatureInvalid
from cardshop.common.utils import build_success, json_ok
from cardshop.db.dependencies import get_session
from cardshop.orders.services import get_order_or_404, order_view
from cardshop.payments.constants import NOTIFY_FAIL
from cardshop.payments.dependencies import get_gateway
from cardshop.payments.epay_client import EpayClient
from cardshop.payments.services import handle_webhook

pay_router = APIRouter()


# the gateway sends notifications as query params (GET) or as a form (POST)
@pay_router.api_route("/notify", methods=["GET", "POST"], response_class=PlainTextResponse)
async def epay_notify(request: Request,
                      session: AsyncSession = Depends(get_session),
                      gateway: EpayClient = Depends(get_gateway)):
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})

    try:
        reply = await handle_webhook(session, params, gateway=gateway)
    except (GatewaySignatureInvalid, GatewayAmountMismatch):
        return PlainTextResponse(NOTIFY_FAIL, status_code=400)
    return PlainTextResponse(reply.text, status_code=reply.status_code)


@pay_router.get("/order-status/{order_no}")
async def order_status(order_no: str, session: AsyncSession = Depends(get_session)):
    order = await get_order_or_404(session, order_no)
    payload = build_success(order_view(order, include_cards=True))
    return json_ok(payload)
