import pytest
from cardshop.common.custom_exceptions import NotFound, OutOfStock, ValidationFailed
from cardshop.common.utils import now_ts
from cardshop.inventory import repository as inv_repo
from cardshop.inventory.services import add_cards, check_availability, list_cards, parse_card_lines, release
from cardshop.orders import repository as orders_repo
from cardshop.orders.services import create_order, mark_paid
from tests.factories import seed_product


@pytest.mark.asyncio
async def test_add_cards_sets_consumable_stock(db_session):
    product_id = await seed_product(db_session, cards=3)
    product = await inv_repo.get_product(db_session, product_id)
    assert product.stock == 3

    assert (await check_availability(db_session, product, 3)).ok
    avail = await check_availability(db_session, product, 4)
    assert not avail.ok
    assert avail.available == 3


@pytest.mark.asyncio
async def test_pending_order_holds_units_until_lock_expires(db_session):
    product_id = await seed_product(db_session, cards=3)
    await create_order(db_session, product_id, 2)

    product = await inv_repo.get_product(db_session, product_id)
    assert (await check_availability(db_session, product, 1)).available == 1
    # once the hold runs out the units count as available again
    later = now_ts() + 10_000
    assert (await check_availability(db_session, product, 3, now_ts=later)).ok

    with pytest.raises(OutOfStock):
        await create_order(db_session, product_id, 2)


@pytest.mark.asyncio
async def test_card_mode_hands_out_cards_in_rotation(db_session):
    product_id = await seed_product(db_session, cards=3, card_mode=True)
    cards = [f"CARD-{product_id}-{i}" for i in range(3)]

    delivered = []
    for qty in (1, 2, 1):
        order = await create_order(db_session, product_id, qty)
        # shared codes need no reservation
        assert await inv_repo.get_lock_by_order(db_session, order.id) is None
        assert await mark_paid(db_session, order.id, trade_no=f"T-{order.id}")
        order = await orders_repo.get_order(db_session, order.id)
        delivered.append(order.delivered_cards)

    assert delivered == [[cards[0]], [cards[1], cards[2]], [cards[2]]]
    assert await inv_repo.count_cards(db_session, product_id, unused_only=True) == 3


@pytest.mark.asyncio
async def test_card_mode_rotation_wraps_inside_one_order(db_session):
    product_id = await seed_product(db_session, cards=3, card_mode=True)
    cards = [f"CARD-{product_id}-{i}" for i in range(3)]

    for _ in range(5):
        order = await create_order(db_session, product_id, 1)
        assert await mark_paid(db_session, order.id, trade_no=f"T-{order.id}")

    sixth_id = (await create_order(db_session, product_id, 2)).id
    assert await mark_paid(db_session, sixth_id, trade_no="T-6")

    sixth = await orders_repo.get_order(db_session, sixth_id)
    assert sixth.delivered_cards == [cards[2], cards[0]]


@pytest.mark.asyncio
async def test_release_returns_cards_once(db_session):
    product_id = await seed_product(db_session, cards=2)
    order = await create_order(db_session, product_id, 2)
    await mark_paid(db_session, order.id, trade_no="T-1")

    product = await inv_repo.get_product(db_session, product_id)
    assert product.stock == 0

    assert await release(db_session, order, product) == 2
    assert await release(db_session, order, product) == 0
    await db_session.commit()

    product = await inv_repo.get_product(db_session, product_id)
    assert product.stock == 2
    assert await inv_repo.count_cards(db_session, product_id, unused_only=True) == 2


@pytest.mark.asyncio
async def test_list_cards_filters_by_used(db_session):
    product_id = await seed_product(db_session, cards=5)
    order = await create_order(db_session, product_id, 2)
    await mark_paid(db_session, order.id, trade_no="T-1")

    used = await list_cards(db_session, product_id, used=True)
    assert len(used) == 2
    assert {c.order_id for c in used} == {order.id}
    assert len(await list_cards(db_session, product_id, used=False)) == 3
    assert len(await list_cards(db_session, product_id)) == 5


@pytest.mark.asyncio
async def test_add_cards_rejects_bad_input(db_session):
    product_id = await seed_product(db_session, cards=0)

    with pytest.raises(ValidationFailed):
        await add_cards(db_session, product_id, ["x" * 501])
    with pytest.raises(ValidationFailed):
        await add_cards(db_session, product_id, ["  ", ""])
    with pytest.raises(NotFound):
        await add_cards(db_session, product_id + 999, ["CODE-1"])


def test_parse_card_lines_skips_blank_lines():
    assert parse_card_lines("  AAA-1 \n\n BBB-2\r\n   \n") == ["AAA-1", "BBB-2"]
    assert parse_card_lines("") == []
