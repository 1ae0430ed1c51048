from fastapi import APIRouter, Depends, FastAPI, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging
import httpx

from storefront.shared.app_factory import create_service_app, get_db, get_http_client
from storefront.shared.config import CartSettings, get_settings
from storefront.shared.utils import (
    Principal, NotFoundException, UpstreamUnavailableException,
    require_auth, upstream_headers
)

from storefront.cart_service.schemas import CartItemAdd, CartItemUpdate, CartItemResponse, CartResponse
from storefront.cart_service.models import CartDB, CartItemDB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])

# --- Helpers ---
def calculate_total(items: List[dict]) -> float:
    # Decimal keeps sums like 0.1 + 0.2 exact before converting back
    total = Decimal(0)
    for item in items:
        total += Decimal(str(item["price"])) * item["quantity"]
    return float(total)

def to_cart_response(items: List[dict]) -> CartResponse:
    return CartResponse(
        items=[CartItemResponse(**item) for item in items],
        total=calculate_total(items),
    )

async def fetch_product(request: Request, client: httpx.AsyncClient, product_id: str) -> dict:
    settings = get_settings(request)
    try:
        response = await client.get(
            f"{settings.PRODUCT_SERVICE_URL}/api/products/{product_id}",
            headers=upstream_headers(request),
        )
    except httpx.RequestError as exc:
        logger.warning(f"Product service unreachable: {exc}", extra={"product_id": product_id})
        raise UpstreamUnavailableException("Product service unavailable")

    if response.status_code == 404:
        raise NotFoundException("Product not found")
    if response.is_error:
        raise UpstreamUnavailableException("Product service unavailable")
    return response.json()

async def load_cart(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    cart = await db.carts.find_one({"user_id": user_id})
    if not cart:
        raise NotFoundException("Cart not found")
    return cart

async def save_items(db: AsyncIOMotorDatabase, user_id: str, items: List[dict]):
    await db.carts.update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": datetime.utcnow()}},
        upsert=True,
    )

# --- Endpoints ---

@router.get("", response_model=CartResponse)
async def get_cart(principal: Principal = Depends(require_auth), db: AsyncIOMotorDatabase = Depends(get_db)):
    cart = await db.carts.find_one({"user_id": principal.id})
    if not cart:
        cart_db = CartDB(user_id=principal.id)
        await db.carts.update_one(
            {"user_id": principal.id},
            {"$setOnInsert": cart_db.model_dump(exclude={"id", "user_id"})},
            upsert=True,
        )
        cart = await db.carts.find_one({"user_id": principal.id})
    return to_cart_response(cart.get("items", []))

@router.post("/items", response_model=CartResponse)
async def add_to_cart(
    item: CartItemAdd,
    request: Request,
    principal: Principal = Depends(require_auth),
    db: AsyncIOMotorDatabase = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    product = await fetch_product(request, client, item.product_id)

    cart = await db.carts.find_one({"user_id": principal.id})
    items = cart.get("items", []) if cart else []

    for cart_item in items:
        if cart_item["product_id"] == item.product_id:
            cart_item["quantity"] += item.quantity
            break
    else:
        snapshot = CartItemDB(
            product_id=item.product_id,
            name=product["name"],
            price=product["price"],
            quantity=item.quantity,
            image_url=product.get("image_url") or "",
        )
        items.append(snapshot.model_dump())

    await save_items(db, principal.id, items)
    return to_cart_response(items)

@router.put("/items/{product_id}", response_model=CartResponse)
async def update_cart_item(
    product_id: str,
    update: CartItemUpdate,
    principal: Principal = Depends(require_auth),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    cart = await load_cart(db, principal.id)
    items = cart.get("items", [])

    for cart_item in items:
        if cart_item["product_id"] == product_id:
            cart_item["quantity"] = update.quantity
            break
    else:
        raise NotFoundException("Item not found in cart")

    await save_items(db, principal.id, items)
    return to_cart_response(items)

@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_cart_item(
    product_id: str,
    principal: Principal = Depends(require_auth),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    cart = await load_cart(db, principal.id)
    items = [i for i in cart.get("items", []) if i["product_id"] != product_id]

    await save_items(db, principal.id, items)
    return to_cart_response(items)

@router.delete("", response_model=CartResponse)
async def clear_cart(principal: Principal = Depends(require_auth), db: AsyncIOMotorDatabase = Depends(get_db)):
    await load_cart(db, principal.id)
    await save_items(db, principal.id, [])
    return CartResponse(items=[], total=0)


async def create_indexes(db: AsyncIOMotorDatabase):
    await db.carts.create_index("user_id", unique=True)


def create_app(
    settings: Optional[CartSettings] = None,
    mongodb_client=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or CartSettings()
    app = create_service_app(
        settings, "Cart Service", mongodb_client, transport, prepare_database=create_indexes
    )

    app.include_router(router)
    return app

app = create_app()
