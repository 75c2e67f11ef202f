import pytest
from cardshop.common.custom_exceptions import GatewayAmountMismatch, GatewayUnavailable
from cardshop.orders.services import create_order, mark_paid
from cardshop.payments.services import lookup_order_cards, poll_order_result, sync_order_by_gateway
from cardshop.schema.full_schema import OrderStatus
from tests.factories import seed_product


async def _pending_order(session):
    product_id = await seed_product(session, price=10.0, cards=3)
    order = await create_order(session, product_id, 1)
    return order.id, order.order_no, order.amount


@pytest.mark.asyncio
async def test_poll_marks_order_paid_when_gateway_reports_payment(db_session, gateway):
    _, order_no, amount = await _pending_order(db_session)
    gateway.report_paid(order_no, amount, trade_no="T-55")

    order = await poll_order_result(db_session, order_no, gateway=gateway, retry_delay=0)

    assert order.status == OrderStatus.PAID.value
    assert order.epay_trade_no == "T-55"
    assert gateway.queries == [order_no]


@pytest.mark.asyncio
async def test_poll_queries_twice_then_gives_up(db_session, gateway):
    _, order_no, _ = await _pending_order(db_session)

    order = await poll_order_result(db_session, order_no, gateway=gateway, retry_delay=0)

    assert order.status == OrderStatus.PENDING.value
    assert gateway.queries == [order_no, order_no]


@pytest.mark.asyncio
async def test_poll_survives_unreachable_gateway(db_session, gateway):
    _, order_no, _ = await _pending_order(db_session)
    gateway.report_unavailable(order_no)

    order = await poll_order_result(db_session, order_no, gateway=gateway, retry_delay=0)

    assert order.status == OrderStatus.PENDING.value
    with pytest.raises(GatewayUnavailable):
        await sync_order_by_gateway(db_session, order_no, gateway=gateway)


@pytest.mark.asyncio
async def test_gateway_amount_mismatch_keeps_order_pending(db_session, gateway):
    _, order_no, amount = await _pending_order(db_session)
    gateway.report_paid(order_no, amount + 5)

    with pytest.raises(GatewayAmountMismatch):
        await sync_order_by_gateway(db_session, order_no, gateway=gateway)
    order = await poll_order_result(db_session, order_no, gateway=gateway, retry_delay=0)
    assert order.status == OrderStatus.PENDING.value


@pytest.mark.asyncio
async def test_card_lookup_syncs_once(db_session, gateway):
    _, order_no, _ = await _pending_order(db_session)

    order = await lookup_order_cards(db_session, order_no, gateway=gateway)

    assert order.status == OrderStatus.PENDING.value
    assert gateway.queries == [order_no]


@pytest.mark.asyncio
async def test_settled_order_is_not_queried(db_session, gateway):
    order_id, order_no, _ = await _pending_order(db_session)
    await mark_paid(db_session, order_id, trade_no="T-1")

    order = await poll_order_result(db_session, order_no, gateway=gateway, retry_delay=0)
    assert order.status == OrderStatus.PAID.value
    order = await lookup_order_cards(db_session, order_no, gateway=gateway)
    assert len(order.delivered_cards) == 1
    assert gateway.queries == []
