from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from cardshop.common.constants import request_id_ctx
from cardshop.common.utils import as_utc, build_success, json_ok
from cardshop.db.dependencies import get_session
from cardshop.inventory.models import AddCardsRequest, ProductCreateIn, ProductUpdateIn
from cardshop.inventory.services import (
    add_cards, create_product, list_cards, list_products, parse_card_lines, product_view,
    toggle_product_status, update_product,
)

inventory_admin_router = APIRouter()


@inventory_admin_router.post("")
async def add_product(payload: ProductCreateIn, session: AsyncSession = Depends(get_session)):
    product = await create_product(session, payload)
    resp = build_success(product_view(product), request_id=request_id_ctx.get(None))
    return json_ok(resp, status_code=status.HTTP_201_CREATED)


@inventory_admin_router.get("")
async def get_products(limit: int = Query(default=50, ge=1, le=200),
                       offset: int = Query(default=0, ge=0),
                       session: AsyncSession = Depends(get_session)):
    products = await list_products(session, limit=limit, offset=offset)
    payload = build_success({"products": [product_view(p) for p in products]}, request_id=request_id_ctx.get(None))
    return json_ok(payload)


@inventory_admin_router.patch("/{product_id}")
async def edit_product(product_id: int, payload: ProductUpdateIn, session: AsyncSession = Depends(get_session)):
    updates = payload.model_dump(exclude_unset=True)
    product = await update_product(session, product_id, updates)
    return json_ok(build_success(product_view(product), request_id=request_id_ctx.get(None)))


@inventory_admin_router.post("/{product_id}/toggle-status")
async def toggle_status(product_id: int, session: AsyncSession = Depends(get_session)):
    product = await toggle_product_status(session, product_id)
    return json_ok(build_success(product_view(product), request_id=request_id_ctx.get(None)))


@inventory_admin_router.post("/{product_id}/cards")
async def seed_cards(product_id: int, body: AddCardsRequest, session: AsyncSession = Depends(get_session)):
    added = await add_cards(session, product_id, parse_card_lines(body.content))
    payload = build_success({"product_id": product_id, "added": added}, request_id=request_id_ctx.get(None))
    return json_ok(payload, status_code=status.HTTP_201_CREATED)


@inventory_admin_router.get("/{product_id}/cards")
async def get_cards(product_id: int,
                    used: Optional[bool] = None,
                    limit: int = Query(default=100, ge=1, le=500),
                    offset: int = Query(default=0, ge=0),
                    session: AsyncSession = Depends(get_session)):
    cards = await list_cards(session, product_id, used=used, limit=limit, offset=offset)
    items = [
        {
            "id": c.id,
            "content": c.content,
            "used": c.used,
            "order_id": c.order_id,
            "created_at": as_utc(c.created_at).isoformat() if c.created_at else None,
        }
        for c in cards
    ]
    payload = build_success({"product_id": product_id, "cards": items}, request_id=request_id_ctx.get(None))
    return json_ok(payload)
