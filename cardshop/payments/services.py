import asyncio
from dataclasses import dataclass
from typing import Mapping, Optional
from cardshop.api import version_prefix
from cardshop.common.constants import LOG_FAIL, LOG_IGNORE, LOG_SUCCESS
from cardshop.common.custom_exceptions import GatewayAmountMismatch, GatewaySignatureInvalid, GatewayUnavailable
from cardshop.common.utils import money
from cardshop.config.settings import config_settings
from cardshop.orders import repository as orders_repo
from cardshop.orders.services import get_order_or_404, mark_paid
from cardshop.payments.constants import (
    NOTIFY_IGNORE, NOTIFY_SUCCESS, PAY_CREATE, PAY_NOTIFY, PAY_QUERY, TRADE_SUCCESS, logger,
)
from cardshop.payments.epay_client import EpayClient, epay_client
from cardshop.payments.payment_log import log_payment
from cardshop.schema.full_schema import Orders, OrderStatus


@dataclass
class WebhookReply:
    text: str
    status_code: int = 200


def _base_url() -> str:
    return config_settings.BASE_URL.rstrip("/")


def notify_url() -> str:
    return config_settings.EPAY_NOTIFY_URL or f"{_base_url()}{version_prefix}/pay/notify"


def return_url(order_no: str) -> str:
    if config_settings.EPAY_RETURN_URL:
        return config_settings.EPAY_RETURN_URL
    return f"{_base_url()}{version_prefix}/orders/{order_no}/result"


async def start_payment(session, order: Orders, gateway: Optional[EpayClient] = None) -> str:
    """Create the gateway payment for a pending order and return the buyer's redirect url."""
    gateway = gateway or epay_client
    order_id, order_no, amount = order.id, order.order_no, order.amount
    name = order.product_name + (f" x{order.quantity}" if order.quantity > 1 else "")

    try:
        redirect = await gateway.create_payment(
            out_trade_no=order_no, name=name, money=amount,
            notify_url=notify_url(), return_url=return_url(order_no),
        )
    except GatewayUnavailable as exc:
        await log_payment(session, PAY_CREATE, order_id=order_id, order_no=order_no,
                          payload={"amount": amount}, result=LOG_FAIL, message=exc.message)
        raise

    await log_payment(session, PAY_CREATE, order_id=order_id, order_no=order_no,
                      payload={"amount": amount, "redirect_url": redirect.redirect_url}, result=LOG_SUCCESS)
    logger.info("payments.create.ok", extra={"order_no": order_no, "amount": amount})
    return redirect.redirect_url


async def sync_order_by_gateway(session, order_no: str, gateway: Optional[EpayClient] = None) -> bool:
    """Ask the gateway whether a pending order was paid and apply it if so.

    Raises GatewayUnavailable when the gateway cannot be reached and GatewayAmountMismatch
    when it reports a payment for a different amount; in both cases the order stays pending.
    """
    gateway = gateway or epay_client
    order = await orders_repo.get_order_by_no(session, order_no)
    if order is None or order.status != OrderStatus.PENDING.value:
        return False
    order_id, amount = order.id, order.amount
    # no transaction stays open across the gateway call
    await session.commit()

    result = await gateway.query_order(order_no)
    if not result.paid:
        logger.debug("payments.query.unpaid", extra={"order_no": order_no, "code": result.code, "gateway_status": result.status})
        return False

    if not result.amount_matches(amount):
        logger.warning("payments.query.amount_mismatch",
                       extra={"order_no": order_no, "expected": amount, "reported": result.money})
        await log_payment(session, PAY_QUERY, order_id=order_id, order_no=order_no, payload=result.raw,
                          result=LOG_FAIL, message="amount mismatch")
        raise GatewayAmountMismatch(expected=amount, reported=result.money)

    applied = await mark_paid(session, order_id, trade_no=result.trade_no)
    await log_payment(session, PAY_QUERY, order_id=order_id, order_no=order_no, payload=result.raw,
                      result=LOG_SUCCESS if applied else LOG_IGNORE,
                      message="paid" if applied else "already settled")
    return applied


async def _try_sync(session, order_no: str, gateway: Optional[EpayClient]) -> None:
    try:
        await sync_order_by_gateway(session, order_no, gateway=gateway)
    except (GatewayUnavailable, GatewayAmountMismatch) as exc:
        # the buyer sees "pending"; webhook or sweeper will settle it later
        logger.warning("payments.poll.not_synced", extra={"order_no": order_no, "error": exc.message})


async def poll_order_result(session, order_no: str, gateway: Optional[EpayClient] = None,
                            retry_delay: Optional[float] = None) -> Orders:
    """Result page path: sync a pending order, wait once and sync again if still pending."""
    order = await get_order_or_404(session, order_no)
    if order.status != OrderStatus.PENDING.value:
        return order

    await _try_sync(session, order_no, gateway)
    order = await get_order_or_404(session, order_no)
    if order.status != OrderStatus.PENDING.value:
        return order

    delay = config_settings.POLL_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
    await asyncio.sleep(delay)
    await _try_sync(session, order_no, gateway)
    return await get_order_or_404(session, order_no)


async def lookup_order_cards(session, order_no: str, gateway: Optional[EpayClient] = None) -> Orders:
    """Card lookup path: a single sync when the order is still pending."""
    order = await get_order_or_404(session, order_no)
    if order.status == OrderStatus.PENDING.value:
        await _try_sync(session, order_no, gateway)
        order = await get_order_or_404(session, order_no)
    return order


async def handle_webhook(session, params: Mapping[str, str], gateway: Optional[EpayClient] = None) -> WebhookReply:
    """Asynchronous payment notification.

    Replays and notifications for orders that are no longer pending are acknowledged
    without touching anything.
    """
    gateway = gateway or epay_client
    params = dict(params)
    order_no = params.get("out_trade_no")

    if params.get("trade_status") != TRADE_SUCCESS:
        await log_payment(session, PAY_NOTIFY, order_no=order_no, payload=params, result=LOG_IGNORE,
                          message=f"trade_status={params.get('trade_status')}")
        return WebhookReply(NOTIFY_IGNORE, status_code=400)

    if not gateway.verify_webhook_signature(params):
        await log_payment(session, PAY_NOTIFY, order_no=order_no, payload=params, result=LOG_FAIL,
                          message="bad signature")
        logger.warning("payments.webhook.bad_signature", extra={"order_no": order_no})
        raise GatewaySignatureInvalid()

    order = await orders_repo.get_order_by_no(session, order_no) if order_no else None
    if order is None or order.status != OrderStatus.PENDING.value:
        await log_payment(session, PAY_NOTIFY, order_id=order.id if order else None, order_no=order_no,
                          payload=params, result=LOG_IGNORE, message="order not pending")
        return WebhookReply(NOTIFY_SUCCESS)

    order_id, amount = order.id, order.amount
    try:
        reported = money(params.get("money"))
    except (TypeError, ValueError):
        reported = None
    if reported is None or abs(reported - money(amount)) > 0.01:
        await log_payment(session, PAY_NOTIFY, order_id=order_id, order_no=order_no, payload=params,
                          result=LOG_FAIL, message="amount mismatch")
        logger.warning("payments.webhook.amount_mismatch",
                       extra={"order_no": order_no, "expected": amount, "reported": params.get("money")})
        raise GatewayAmountMismatch(expected=amount, reported=params.get("money"))

    applied = await mark_paid(session, order_id, trade_no=params.get("trade_no"))
    await log_payment(session, PAY_NOTIFY, order_id=order_id, order_no=order_no, payload=params,
                      result=LOG_SUCCESS if applied else LOG_IGNORE,
                      message="paid" if applied else "already settled")
    return WebhookReply(NOTIFY_SUCCESS)
