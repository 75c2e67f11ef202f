from typing import Any, Dict, List, Optional
from typing import Any, Dict, Optional
from cardshop.common.custom_exceptions import (
    InsufficientPoints, InvalidStateTransition, NotFound, OutOfStock, PurchaseLimitExceeded, ValidationFailed,
)
from cardshop.common.utils import as_utc, now
from cardshop.config.settings import config_settings
from cardshop.db.locks import write_locks
from cardshop.inventory import locks as reservations
from cardshop.inventory import repository as inv_repo
from cardshop.inventory.services import check_availability, consume, release
from cardshop.orders import repository as orders_repo
from cardshop.orders.constants import MIN_ORDER_QUANTITY, logger
from cardshop.orders.utils import compute_amount, generate_order_no
from cardshop.refunds import repository as refunds_repo
from cardshop.schema.full_schema import Orders, OrderStatus, Product, ProductStatus
from cardshop.user import repository as user_repo


async def _product_for_order(session, order_id: int) -> int:
    """Resolve the lock key for an order and end the read so no transaction is open
    while waiting on the product lock."""
    product_id = await orders_repo.product_id_of_order(session, order_id)
    await session.commit()
    if product_id is None:
        raise NotFound("order not found")
    return product_id


async def create_order(session, product_id: int, quantity: int, user_id: Optional[int] = None,
                       points: int = 0, contact: Optional[str] = None,
                       ttl_seconds: Optional[int] = None) -> Orders:
    """Reserve stock and open a pending order in one transaction.

    Orders that points fully cover are completed on the spot and come back paid.
    """
    if quantity is None or quantity < MIN_ORDER_QUANTITY or quantity > config_settings.MAX_ORDER_QUANTITY:
        raise ValidationFailed(f"quantity must be between {MIN_ORDER_QUANTITY} and {config_settings.MAX_ORDER_QUANTITY}")
    if points and points < 0:
        raise ValidationFailed("points must not be negative")
    if points and not user_id:
        raise ValidationFailed("points can only be used by a signed in user")

    ttl = ttl_seconds if ttl_seconds is not None else config_settings.INVENTORY_LOCK_TTL_SECONDS

    async with write_locks.hold(product_id):
        try:
            product = await inv_repo.get_product(session, product_id, for_update=True)
            if product is None or product.status != ProductStatus.ON_SALE.value:
                raise NotFound("product not found or off shelf")

            if product.purchase_limit > 0 and user_id:
                held = await orders_repo.user_open_quantity(session, user_id, product_id)
                if held + quantity > product.purchase_limit:
                    raise PurchaseLimitExceeded(
                        f"limit is {product.purchase_limit} per user", limit=product.purchase_limit, held=held)

            avail = await check_availability(session, product, quantity)
            if not avail.ok:
                # checked before points are debited; reserve() checks again once the order row exists
                raise OutOfStock(f"insufficient stock, available {avail.available}", available=avail.available)

            amount, points_used = compute_amount(product.price, quantity, points, config_settings.POINTS_RATIO)
            if points_used:
                debited = await user_repo.debit_points(session, user_id, points_used)
                if not debited:
                    raise InsufficientPoints("not enough points", requested=points_used)

            order = await orders_repo.insert_order(
                session,
                order_no=generate_order_no(),
                user_id=user_id,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                amount=amount,
                points_used=points_used,
                status=OrderStatus.PENDING.value,
                contact=contact,
                created_at=now(),
            )
            await reservations.acquire(session, product, order, ttl_seconds=ttl)

            completed = False
            if amount <= 0:
                completed = await _complete_payment(session, order, product, trade_no=None)

            await session.commit()
        except Exception:
            await session.rollback()
            raise

    order = await orders_repo.get_order(session, order.id)
    logger.info(
        "orders.create.ok",
        extra={"order_no": order.order_no, "product_id": product_id, "quantity": quantity,
               "amount": order.amount, "points_used": order.points_used, "completed": completed},
    )
    return order


async def _complete_payment(session, order: Orders, product: Product, trade_no: Optional[str]) -> bool:
    """pending -> paid with delivery, inside the caller's transaction and product lock."""
    applied = await orders_repo.transition(
        session, order.id, OrderStatus.PENDING,
        {"status": OrderStatus.PAID.value, "paid_at": now(), "epay_trade_no": trade_no},
    )
    if not applied:
        return False

    cards = await consume(session, order, product)
    await orders_repo.set_delivered_cards(session, order.id, cards)
    await reservations.release_by_order(session, order.id)
    await inv_repo.add_sold_count(session, product.id, order.quantity)
    return True


async def mark_paid(session, order_id: int, trade_no: Optional[str] = None) -> bool:
    """The single pending -> paid transition shared by webhook, poll and sweep.

    Returns False (and changes nothing) when the order is no longer pending.
    """
    product_id = await _product_for_order(session, order_id)

    async with write_locks.hold(product_id):
        try:
            order = await orders_repo.get_order(session, order_id, for_update=True)
            product = await inv_repo.get_product(session, product_id, for_update=True)
            applied = False
            if order is not None and order.status == OrderStatus.PENDING.value:
                applied = await _complete_payment(session, order, product, trade_no=trade_no)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    if applied:
        logger.info("orders.mark_paid.applied", extra={"order_id": order_id, "trade_no": trade_no})
    else:
        logger.info("orders.mark_paid.skipped", extra={"order_id": order_id, "trade_no": trade_no})
    return applied


async def cancel_order(session, order_id: int, reason: str = "user") -> Orders:
    product_id = await _product_for_order(session, order_id)

    async with write_locks.hold(product_id):
        try:
            order = await orders_repo.get_order(session, order_id, for_update=True)
            if order is None:
                raise NotFound("order not found")
            applied = await orders_repo.transition(
                session, order_id, OrderStatus.PENDING,
                {"status": OrderStatus.CANCELLED.value, "cancelled_at": now()},
            )
            if not applied:
                raise InvalidStateTransition(f"cannot cancel an order that is {order.status}", status=order.status)

            await reservations.release_by_order(session, order_id)
            await user_repo.credit_points(session, order.user_id, order.points_used)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info("orders.cancel.ok", extra={"order_id": order_id, "reason": reason})
    return await orders_repo.get_order(session, order_id)


async def refund_and_rollback(session, order_id: int) -> Orders:
    """paid -> refunded. Call only after the gateway confirmed the money went back."""
    product_id = await _product_for_order(session, order_id)

    async with write_locks.hold(product_id):
        try:
            order = await orders_repo.get_order(session, order_id, for_update=True)
            if order is None:
                raise NotFound("order not found")
            product = await inv_repo.get_product(session, product_id, for_update=True)
            applied = await orders_repo.transition(
                session, order_id, OrderStatus.PAID,
                {"status": OrderStatus.REFUNDED.value, "refunded_at": now(), "delivered_cards": None},
            )
            if not applied:
                raise InvalidStateTransition(f"cannot refund an order that is {order.status}", status=order.status)

            await user_repo.credit_points(session, order.user_id, order.points_used)
            returned = await release(session, order, product)
            await reservations.release_by_order(session, order_id)
            await inv_repo.add_sold_count(session, product_id, -order.quantity)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info("orders.refund.rolled_back", extra={"order_id": order_id, "cards_returned": returned})
    return await orders_repo.get_order(session, order_id)


async def get_order_or_404(session, order_no: str) -> Orders:
    order = await orders_repo.get_order_by_no(session, order_no)
    if order is None:
        raise NotFound("order not found")
    return order


def order_view(order: Orders, include_cards: bool = False) -> Dict[str, Any]:
    created_at = as_utc(order.created_at)
    paid_at = as_utc(order.paid_at)
    data = {
        "order_no": order.order_no,
        "product_id": order.product_id,
        "product_name": order.product_name,
        "quantity": order.quantity,
        "amount": order.amount,
        "points_used": order.points_used,
        "status": order.status,
        "created_at": created_at.isoformat() if created_at else None,
        "paid_at": paid_at.isoformat() if paid_at else None,
    }
    if include_cards and order.status == OrderStatus.PAID.value:
        data["cards"] = list(order.delivered_cards or [])
    return data


async def list_orders_for_user(session, user_id: int, limit: int = 100) -> List[Dict[str, Any]]:
    """Newest first; each entry says whether a refund request is waiting on an admin."""
    orders = await orders_repo.list_user_orders(session, user_id, limit=limit)
    pending = await refunds_repo.pending_request_order_ids(session, [o.id for o in orders])
    items = []
    for order in orders:
        view = order_view(order, include_cards=True)
        view["refund_pending"] = order.id in pending
        items.append(view)
    return items
