import pytest
from cardshop.common.custom_exceptions import (
    InsufficientPoints, InvalidStateTransition, NotFound, PurchaseLimitExceeded, ValidationFailed,
)
from cardshop.inventory import repository as inv_repo
from cardshop.orders import repository as orders_repo
from cardshop.orders.services import cancel_order, create_order, mark_paid, order_view
from cardshop.orders.utils import compute_amount, generate_order_no
from cardshop.schema.full_schema import OrderStatus, ProductStatus
from cardshop.user import repository as user_repo
from tests.factories import seed_product, seed_user


@pytest.mark.asyncio
async def test_create_order_reserves_stock_and_stays_pending(db_session):
    product_id = await seed_product(db_session, price=12.5, cards=5)

    order = await create_order(db_session, product_id, 2, contact="buyer@example.com")

    assert order.status == OrderStatus.PENDING.value
    assert order.amount == 25.0
    assert order.order_no.startswith("O")
    assert order.delivered_cards is None
    lock = await inv_repo.get_lock_by_order(db_session, order.id)
    assert lock is not None
    assert lock.quantity == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -1, 101])
async def test_create_order_rejects_quantity_out_of_range(db_session, quantity):
    product_id = await seed_product(db_session)
    with pytest.raises(ValidationFailed):
        await create_order(db_session, product_id, quantity)


@pytest.mark.asyncio
async def test_create_order_for_off_shelf_product(db_session):
    product_id = await seed_product(db_session, status=ProductStatus.OFF_SHELF)
    with pytest.raises(NotFound):
        await create_order(db_session, product_id, 1)


@pytest.mark.asyncio
async def test_purchase_limit_counts_open_orders(db_session):
    user_id = await seed_user(db_session)
    product_id = await seed_product(db_session, cards=5, purchase_limit=2)

    first_id = (await create_order(db_session, product_id, 2, user_id=user_id)).id
    with pytest.raises(PurchaseLimitExceeded):
        await create_order(db_session, product_id, 1, user_id=user_id)

    await cancel_order(db_session, first_id)
    again = await create_order(db_session, product_id, 1, user_id=user_id)
    assert again.status == OrderStatus.PENDING.value


@pytest.mark.asyncio
async def test_points_reduce_amount_and_are_debited(db_session):
    user_id = await seed_user(db_session, points=500)
    product_id = await seed_product(db_session, price=10.0, cards=5)

    order = await create_order(db_session, product_id, 2, user_id=user_id, points=500)

    assert order.amount == 15.0
    assert order.points_used == 500
    assert (await user_repo.get_user(db_session, user_id)).points == 0


@pytest.mark.asyncio
async def test_insufficient_points_leaves_nothing_behind(db_session):
    user_id = await seed_user(db_session, points=100)
    product_id = await seed_product(db_session, price=10.0, cards=5)

    with pytest.raises(InsufficientPoints):
        await create_order(db_session, product_id, 1, user_id=user_id, points=500)

    assert (await user_repo.get_user(db_session, user_id)).points == 100
    assert await orders_repo.user_open_quantity(db_session, user_id, product_id) == 0
    assert await inv_repo.locked_quantity(db_session, product_id, 0) == 0


@pytest.mark.asyncio
async def test_points_need_a_signed_in_user(db_session):
    product_id = await seed_product(db_session)
    with pytest.raises(ValidationFailed):
        await create_order(db_session, product_id, 1, points=100)


@pytest.mark.asyncio
async def test_order_fully_covered_by_points_completes_immediately(db_session):
    user_id = await seed_user(db_session, points=5000)
    product_id = await seed_product(db_session, price=10.0, cards=3)

    order = await create_order(db_session, product_id, 1, user_id=user_id, points=5000)

    assert order.status == OrderStatus.PAID.value
    assert order.amount == 0
    assert order.points_used == 1000
    assert order.delivered_cards == [f"CARD-{product_id}-0"]
    assert await inv_repo.get_lock_by_order(db_session, order.id) is None
    assert (await user_repo.get_user(db_session, user_id)).points == 4000
    product = await inv_repo.get_product(db_session, product_id)
    assert product.sold_count == 1
    assert product.stock == 2


@pytest.mark.asyncio
async def test_cancel_returns_points_and_frees_the_hold(db_session):
    user_id = await seed_user(db_session, points=300)
    product_id = await seed_product(db_session, price=10.0, cards=3)
    order = await create_order(db_session, product_id, 3, user_id=user_id, points=300)

    cancelled = await cancel_order(db_session, order.id)

    assert cancelled.status == OrderStatus.CANCELLED.value
    assert cancelled.cancelled_at is not None
    assert await inv_repo.get_lock_by_order(db_session, order.id) is None
    assert (await user_repo.get_user(db_session, user_id)).points == 300

    with pytest.raises(InvalidStateTransition):
        await cancel_order(db_session, order.id)
    # all three units can be bought again
    assert (await create_order(db_session, product_id, 3)).status == OrderStatus.PENDING.value


@pytest.mark.asyncio
async def test_cancel_of_order_deleted_under_the_lock_is_not_found(db_session, monkeypatch):
    product_id = await seed_product(db_session, cards=2)
    order_id = (await create_order(db_session, product_id, 1)).id
    real_get_order = orders_repo.get_order

    async def vanished(session, oid, for_update=False):
        # row gone between the product lookup and the locked read
        if for_update:
            return None
        return await real_get_order(session, oid, for_update=for_update)

    monkeypatch.setattr(orders_repo, "get_order", vanished)
    with pytest.raises(NotFound):
        await cancel_order(db_session, order_id)
    monkeypatch.undo()

    order = await orders_repo.get_order(db_session, order_id)
    assert order.status == OrderStatus.PENDING.value
    assert await inv_repo.get_lock_by_order(db_session, order_id) is not None


@pytest.mark.asyncio
async def test_mark_paid_delivers_once(db_session):
    product_id = await seed_product(db_session, cards=5)
    order = await create_order(db_session, product_id, 2)

    assert await mark_paid(db_session, order.id, trade_no="T-1") is True
    assert await mark_paid(db_session, order.id, trade_no="T-2") is False

    order = await orders_repo.get_order(db_session, order.id)
    assert order.status == OrderStatus.PAID.value
    assert order.epay_trade_no == "T-1"
    assert order.delivered_cards == [f"CARD-{product_id}-0", f"CARD-{product_id}-1"]
    assert await inv_repo.get_lock_by_order(db_session, order.id) is None

    product = await inv_repo.get_product(db_session, product_id)
    assert product.sold_count == 2
    assert product.stock == 3
    assert await inv_repo.count_cards(db_session, product_id, unused_only=True) == 3

    with pytest.raises(InvalidStateTransition):
        await cancel_order(db_session, order.id)


@pytest.mark.asyncio
async def test_order_view_shows_cards_only_when_paid(db_session):
    product_id = await seed_product(db_session, cards=2)
    order = await create_order(db_session, product_id, 1)
    assert "cards" not in order_view(order, include_cards=True)

    await mark_paid(db_session, order.id, trade_no="T-1")
    order = await orders_repo.get_order(db_session, order.id)
    view = order_view(order, include_cards=True)
    assert view["status"] == "paid"
    assert view["cards"] == [f"CARD-{product_id}-0"]
    assert "cards" not in order_view(order)


@pytest.mark.parametrize(
    "price, quantity, points, expected",
    [
        (10.0, 2, 0, (20.0, 0)),
        (10.0, 2, 500, (15.0, 500)),
        (10.0, 1, 5000, (0.0, 1000)),
        (9.99, 3, 0, (29.97, 0)),
        (0.05, 1, 3, (0.02, 3)),
    ],
)
def test_compute_amount(price, quantity, points, expected):
    assert compute_amount(price, quantity, points, 100) == expected


def test_order_numbers_are_unique():
    numbers = {generate_order_no() for _ in range(200)}
    assert len(numbers) == 200
    assert all(n.startswith("O") for n in numbers)
