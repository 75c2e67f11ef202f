import pytest
from cardshop.common.custom_exceptions import NotFound, ValidationFailed
from cardshop.inventory import repository as inv_repo
from cardshop.inventory.models import ProductCreateIn
from cardshop.inventory.services import add_cards, create_product, toggle_product_status, update_product
from cardshop.orders.services import create_order, mark_paid
from cardshop.schema.full_schema import OrderStatus, ProductStatus, UNLIMITED_STOCK
from tests.factories import seed_product


@pytest.mark.asyncio
async def test_created_product_takes_cards_and_orders(db_session):
    product = await create_product(db_session, ProductCreateIn(name="Steam 50", price=50.0, purchase_limit=2))
    product_id = product.id

    assert product.status == ProductStatus.ON_SALE
    assert product.stock == 0
    await add_cards(db_session, product_id, ["S-1", "S-2"])

    order = await create_order(db_session, product_id, 2)
    assert order.amount == 100.0
    assert order.status == OrderStatus.PENDING.value


@pytest.mark.asyncio
async def test_card_mode_product_gets_unlimited_stock(db_session):
    product = await create_product(db_session, ProductCreateIn(name="Shared", price=1.0, stock=7, card_mode=True))
    assert product.card_mode is True
    assert product.stock == UNLIMITED_STOCK


@pytest.mark.asyncio
async def test_update_changes_only_given_fields(db_session):
    product_id = await seed_product(db_session, name="Old", price=10.0, cards=2)

    product = await update_product(db_session, product_id, {"price": 12.5, "purchase_limit": 1})

    assert product.name == "Old"
    assert product.price == 12.5
    assert product.purchase_limit == 1
    assert product.stock == 2
    order = await create_order(db_session, product_id, 1)
    assert order.amount == 12.5


@pytest.mark.asyncio
async def test_leaving_card_mode_restores_stock_from_unused_cards(db_session):
    product_id = await seed_product(db_session, cards=3, card_mode=True)
    order = await create_order(db_session, product_id, 1)
    await mark_paid(db_session, order.id, trade_no="T-1")

    product = await update_product(db_session, product_id, {"card_mode": False})

    # rotation never consumes cards, so all three are still unused
    assert product.card_mode is False
    assert product.stock == 3

    product = await update_product(db_session, product_id, {"card_mode": True})
    assert product.stock == UNLIMITED_STOCK


@pytest.mark.asyncio
async def test_update_rejects_empty_and_unknown(db_session):
    product_id = await seed_product(db_session)
    with pytest.raises(ValidationFailed):
        await update_product(db_session, product_id, {})
    with pytest.raises(NotFound):
        await update_product(db_session, product_id + 999, {"price": 1.0})


@pytest.mark.asyncio
async def test_toggle_status_takes_product_off_shelf_and_back(db_session):
    product_id = await seed_product(db_session, cards=3)
    pending_id = (await create_order(db_session, product_id, 1)).id

    product = await toggle_product_status(db_session, product_id)
    assert product.status == ProductStatus.OFF_SHELF
    with pytest.raises(NotFound):
        await create_order(db_session, product_id, 1)
    # orders placed before the product went off shelf can still be paid
    assert await mark_paid(db_session, pending_id, trade_no="T-1")

    product = await toggle_product_status(db_session, product_id)
    assert product.status == ProductStatus.ON_SALE
    assert (await create_order(db_session, product_id, 1)).status == OrderStatus.PENDING.value

    with pytest.raises(NotFound):
        await toggle_product_status(db_session, product_id + 999)
    assert (await inv_repo.get_product(db_session, product_id)).status == ProductStatus.ON_SALE
