from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError
from cardshop.common.constants import LOG_FAIL, LOG_SUCCESS
from cardshop.common.custom_exceptions import (
    GatewayRefundFailed, GatewayUnavailable, InvalidStateTransition, NotFound, RefundAlreadyRequested,
)
from cardshop.orders import repository as orders_repo
from cardshop.orders.services import refund_and_rollback
from cardshop.payments.constants import REFUND_API, REFUND_APPROVE, REFUND_REJECT, REFUND_REQUEST
from cardshop.payments.epay_client import EpayClient, epay_client
from cardshop.payments.payment_log import log_payment
from cardshop.refunds import repository as refunds_repo
from cardshop.refunds.constants import NOT_REFUNDABLE_NOTE, logger
from cardshop.schema.full_schema import Orders, OrderStatus, RefundRequest, RefundStatus


def _refundable_via_gateway(order: Optional[Orders]) -> bool:
    return order is not None and order.status == OrderStatus.PAID.value and bool(order.epay_trade_no)


async def request_refund(session, user_id: int, order_no: str) -> RefundRequest:
    """Buyer asks for a refund; an admin approves or rejects it later."""
    order = await orders_repo.get_order_by_no(session, order_no)
    if order is None or order.user_id != user_id:
        raise NotFound("order not found")
    if not _refundable_via_gateway(order):
        raise InvalidStateTransition("order is not refundable", status=order.status)

    order_id = order.id
    if await refunds_repo.get_pending_request(session, order_id) is not None:
        raise RefundAlreadyRequested()

    try:
        req = await refunds_repo.insert_request(session, order_id)
        await session.commit()
    except IntegrityError as exc:
        # a concurrent request won the partial unique index
        await session.rollback()
        raise RefundAlreadyRequested() from exc

    await log_payment(session, REFUND_REQUEST, order_id=order_id, order_no=order_no,
                      payload={"refund_request_id": req.id}, result=LOG_SUCCESS)
    logger.info("refunds.request.created", extra={"order_no": order_no, "refund_request_id": req.id})
    return req


async def _gateway_refund(session, order: Orders, gateway: EpayClient, event_type: str,
                          extra_payload: Optional[Dict[str, Any]] = None) -> None:
    """Full refund at the gateway. Raises unless the gateway confirms the money went back."""
    order_id, order_no = order.id, order.order_no
    request_payload = {"trade_no": order.epay_trade_no, "money": order.amount, "order_no": order_no}
    try:
        result = await gateway.refund(order.epay_trade_no, order.amount)
    except GatewayUnavailable as exc:
        await log_payment(session, event_type, order_id=order_id, order_no=order_no,
                          payload={"request": request_payload, **(extra_payload or {})},
                          result=LOG_FAIL, message=exc.message)
        raise

    await log_payment(session, event_type, order_id=order_id, order_no=order_no,
                      payload={"request": request_payload, "response": result.raw, **(extra_payload or {})},
                      result=LOG_SUCCESS if result.success else LOG_FAIL, message=result.msg)
    if not result.success:
        logger.warning("refunds.gateway.declined", extra={"order_no": order_no, "code": result.code})
        raise GatewayRefundFailed(result.msg or "gateway refund failed", gateway_code=result.code)


async def _rollback_after_refund(session, order_id: int) -> Orders:
    try:
        return await refund_and_rollback(session, order_id)
    except InvalidStateTransition:
        # a concurrent refund already rolled the order back
        order = await orders_repo.get_order(session, order_id)
        if order is not None and order.status == OrderStatus.REFUNDED.value:
            return order
        raise


async def refund_order(session, order_id: int, gateway: Optional[EpayClient] = None) -> Orders:
    """Admin refund without a buyer request."""
    gateway = gateway or epay_client
    order = await orders_repo.get_order(session, order_id)
    if order is None:
        raise NotFound("order not found")
    if order.status != OrderStatus.PAID.value:
        raise InvalidStateTransition(f"cannot refund an order that is {order.status}", status=order.status)
    via_gateway = bool(order.epay_trade_no)
    await session.commit()

    if via_gateway:
        await _gateway_refund(session, order, gateway, REFUND_API)
    elif order.amount > 0:
        raise InvalidStateTransition("paid order has no gateway trade to refund", status=order.status)
    # else: settled entirely with points, nothing to send back through the gateway

    refunded = await _rollback_after_refund(session, order_id)
    logger.info("refunds.order.refunded", extra={"order_id": order_id, "via_gateway": via_gateway})
    return refunded


async def approve_refund(session, order_id: int, gateway: Optional[EpayClient] = None) -> RefundRequest:
    gateway = gateway or epay_client
    req = await refunds_repo.get_pending_request(session, order_id)
    if req is None:
        raise NotFound("no pending refund request for this order")
    request_id = req.id

    order = await orders_repo.get_order(session, order_id)
    if not _refundable_via_gateway(order):
        await refunds_repo.close_request(session, request_id, RefundStatus.REJECTED, note=NOT_REFUNDABLE_NOTE)
        await session.commit()
        await log_payment(session, REFUND_APPROVE, order_id=order.id if order else order_id,
                          order_no=order.order_no if order else None,
                          payload={"refund_request_id": request_id, "action": "approve"},
                          result=LOG_FAIL, message=NOT_REFUNDABLE_NOTE)
        raise InvalidStateTransition(NOT_REFUNDABLE_NOTE, status=order.status if order else None)
    await session.commit()

    # on failure the request stays pending so it can be retried
    await _gateway_refund(session, order, gateway, REFUND_APPROVE,
                          extra_payload={"refund_request_id": request_id})

    await _rollback_after_refund(session, order_id)
    try:
        await refunds_repo.close_request(session, request_id, RefundStatus.APPROVED)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("refunds.request.approved", extra={"order_id": order_id, "refund_request_id": request_id})
    return await refunds_repo.get_request(session, request_id)


async def reject_refund(session, order_id: int, note: Optional[str] = None) -> RefundRequest:
    req = await refunds_repo.get_pending_request(session, order_id)
    if req is None:
        raise NotFound("no pending refund request for this order")
    request_id = req.id

    try:
        closed = await refunds_repo.close_request(session, request_id, RefundStatus.REJECTED, note=note)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    if not closed:
        raise InvalidStateTransition("refund request was already processed")

    order = await orders_repo.get_order(session, order_id)
    await log_payment(session, REFUND_REJECT, order_id=order_id, order_no=order.order_no if order else None,
                      payload={"refund_request_id": request_id, "action": "reject"},
                      result=LOG_SUCCESS, message=note or "refund request rejected")
    logger.info("refunds.request.rejected", extra={"order_id": order_id, "refund_request_id": request_id})
    return await refunds_repo.get_request(session, request_id)
