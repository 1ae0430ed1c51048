from fastapi import APIRouter, Body, Depends, FastAPI, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from datetime import datetime
from typing import List, Optional
import logging
import httpx

from storefront.shared.app_factory import create_service_app, get_db, get_http_client
from storefront.shared.config import OrderSettings, get_settings
from storefront.shared.utils import (
    Principal, NotFoundException, ForbiddenException,
    require_auth, require_admin, serialize_doc, str_to_oid, upstream_headers
)

from storefront.order_service.schemas import OrderCreate, OrderResponse, OrderStatusUpdate
from storefront.order_service.workflow import OrderWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

def order_oid(order_id: str):
    return str_to_oid(order_id, "Order not found")

# --- Endpoints ---

@router.post("", response_model=OrderResponse, status_code=201)
async def create_order(
    request: Request,
    order_in: Optional[OrderCreate] = Body(None),
    principal: Principal = Depends(require_auth),
    db: AsyncIOMotorDatabase = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    workflow = OrderWorkflow(get_settings(request), client, db.orders, upstream_headers(request))
    shipping_override = order_in.shipping_address if order_in else None
    order = await workflow.create_order(principal, shipping_override)
    return OrderResponse(**serialize_doc(order))

@router.get("", response_model=List[OrderResponse])
async def list_orders(principal: Principal = Depends(require_auth), db: AsyncIOMotorDatabase = Depends(get_db)):
    orders = []
    async for doc in db.orders.find({"user_id": principal.id}).sort("created_at", -1):
        orders.append(OrderResponse(**serialize_doc(doc)))
    return orders

@router.get("/admin/all", response_model=List[OrderResponse])
async def list_all_orders(principal: Principal = Depends(require_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    orders = []
    async for doc in db.orders.find({}).sort("created_at", -1):
        orders.append(OrderResponse(**serialize_doc(doc)))
    return orders

@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    principal: Principal = Depends(require_auth),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await db.orders.find_one({"_id": order_oid(order_id)})
    if not order:
        raise NotFoundException("Order not found")

    if order["user_id"] != principal.id and not principal.is_admin:
        raise ForbiddenException("Not authorized")

    return OrderResponse(**serialize_doc(order))

@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    status_update: OrderStatusUpdate,
    principal: Principal = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await db.orders.find_one_and_update(
        {"_id": order_oid(order_id)},
        {"$set": {"status": status_update.status.value, "updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise NotFoundException("Order not found")

    logger.info(
        f"Order status set to {status_update.status.value}",
        extra={"order_id": order_id, "user_id": principal.id},
    )
    return OrderResponse(**serialize_doc(order))


async def create_indexes(db: AsyncIOMotorDatabase):
    await db.orders.create_index("user_id")


def create_app(
    settings: Optional[OrderSettings] = None,
    mongodb_client=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or OrderSettings()
    app = create_service_app(
        settings, "Order Service", mongodb_client, transport, prepare_database=create_indexes
    )

    app.include_router(router)
    return app

app = create_app()
