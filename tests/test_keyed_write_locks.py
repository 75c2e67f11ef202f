import asyncio
import pytest
from cardshop.common.custom_exceptions import OutOfStock
from cardshop.inventory import repository as inv_repo
from cardshop.orders import repository as orders_repo
from cardshop.orders.services import create_order, mark_paid
from cardshop.schema.full_schema import OrderStatus
from tests.factories import seed_product


async def _buy(session_factory, product_id, quantity):
    async with session_factory() as session:
        try:
            return (await create_order(session, product_id, quantity)).id
        except OutOfStock:
            return None


@pytest.mark.asyncio
async def test_locks_are_per_product(keyed_write_locks):
    assert not keyed_write_locks.single_writer
    async with keyed_write_locks.hold(1):
        assert keyed_write_locks.locked(1)
        assert not keyed_write_locks.locked(2)


@pytest.mark.asyncio
async def test_racing_mark_paid_applies_once_per_product(session_factory, keyed_write_locks):
    async with session_factory() as session:
        first = await seed_product(session, name="First", cards=4)
        second = await seed_product(session, name="Second", cards=4)
        first_order = (await create_order(session, first, 2)).id
        second_order = (await create_order(session, second, 1)).id

    async def pay(order_id, i):
        async with session_factory() as session:
            return await mark_paid(session, order_id, trade_no=f"T-{order_id}-{i}")

    results = await asyncio.gather(*(pay(oid, i) for i in range(4) for oid in (first_order, second_order)))
    assert results.count(True) == 2

    async with session_factory() as session:
        for product_id, order_id, quantity in ((first, first_order, 2), (second, second_order, 1)):
            order = await orders_repo.get_order(session, order_id)
            assert order.status == OrderStatus.PAID.value
            assert len(order.delivered_cards) == quantity
            product = await inv_repo.get_product(session, product_id)
            assert product.sold_count == quantity
            assert product.stock == 4 - quantity
            assert await inv_repo.count_cards(session, product_id, unused_only=True) == 4 - quantity


@pytest.mark.asyncio
async def test_orders_across_products_never_oversell(session_factory, keyed_write_locks):
    async with session_factory() as session:
        first = await seed_product(session, name="First", cards=3)
        second = await seed_product(session, name="Second", cards=3)

    buys = [_buy(session_factory, first, 2) for _ in range(3)] + [_buy(session_factory, second, 2) for _ in range(3)]
    results = await asyncio.gather(*buys)

    assert len([r for r in results[:3] if r is not None]) == 1
    assert len([r for r in results[3:] if r is not None]) == 1
    async with session_factory() as session:
        assert await inv_repo.locked_quantity(session, first, 0) == 2
        assert await inv_repo.locked_quantity(session, second, 0) == 2


@pytest.mark.asyncio
async def test_payment_and_new_order_on_same_product(session_factory, keyed_write_locks):
    async with session_factory() as session:
        product_id = await seed_product(session, cards=2)
        order_id = (await create_order(session, product_id, 1)).id

    async def pay():
        async with session_factory() as session:
            return await mark_paid(session, order_id, trade_no="T-1")

    paid, second_id, third_id = await asyncio.gather(
        pay(), _buy(session_factory, product_id, 1), _buy(session_factory, product_id, 1))

    assert paid is True
    # one unit went to the paid order, so only one of the two new buyers gets the last card
    assert [second_id, third_id].count(None) == 1
    async with session_factory() as session:
        product = await inv_repo.get_product(session, product_id)
        assert product.stock == 1
        assert await inv_repo.locked_quantity(session, product_id, 0) == 1
