from fastapi import APIRouter, Depends, FastAPI
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from datetime import datetime
from typing import List, Optional
import logging
import httpx

from storefront.shared.app_factory import create_service_app, get_db
from storefront.shared.config import ProductSettings
from storefront.shared.utils import (
    Principal, MessageResponse, NotFoundException,
    require_auth, require_admin, serialize_doc, str_to_oid
)

from storefront.product_service.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, StockAdjustment
)
from storefront.product_service.models import ProductDB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

def product_oid(product_id: str):
    return str_to_oid(product_id, "Product not found")

# --- Endpoints ---

@router.get("", response_model=List[ProductResponse])
async def list_products(db: AsyncIOMotorDatabase = Depends(get_db)):
    products = []
    async for doc in db.products.find({}):
        products.append(ProductResponse(**serialize_doc(doc)))
    return products

@router.get("/category/{category}", response_model=List[ProductResponse])
async def list_products_by_category(category: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    products = []
    async for doc in db.products.find({"category": category}):
        products.append(ProductResponse(**serialize_doc(doc)))
    return products

@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await db.products.find_one({"_id": product_oid(product_id)})
    if not product:
        raise NotFoundException("Product not found")
    return ProductResponse(**serialize_doc(product))

@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    product: ProductCreate,
    principal: Principal = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    product_db = ProductDB(**product.model_dump())
    result = await db.products.insert_one(product_db.model_dump(by_alias=True, exclude={"id"}))
    created = await db.products.find_one({"_id": result.inserted_id})
    logger.info("Product created", extra={"product_id": str(result.inserted_id), "user_id": principal.id})
    return ProductResponse(**serialize_doc(created))

@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    product_update: ProductUpdate,
    principal: Principal = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    update_data = {k: v for k, v in product_update.model_dump().items() if v is not None}
    update_data["updated_at"] = datetime.utcnow()

    updated = await db.products.find_one_and_update(
        {"_id": product_oid(product_id)},
        {"$set": update_data},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundException("Product not found")
    return ProductResponse(**serialize_doc(updated))

@router.delete("/{product_id}", response_model=MessageResponse)
async def delete_product(
    product_id: str,
    principal: Principal = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    result = await db.products.delete_one({"_id": product_oid(product_id)})
    if result.deleted_count == 0:
        raise NotFoundException("Product not found")
    return MessageResponse(message="Product deleted")

@router.post("/{product_id}/stock", response_model=ProductResponse)
async def adjust_stock(
    product_id: str,
    stock: StockAdjustment,
    principal: Principal = Depends(require_auth),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    updated = await db.products.find_one_and_update(
        {"_id": product_oid(product_id)},
        {"$inc": {"stock": stock.adjustment}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundException("Product not found")
    if updated["stock"] < 0:
        logger.warning(
            f"Stock for product {product_id} went negative: {updated['stock']}",
            extra={"product_id": product_id, "user_id": principal.id},
        )
    return ProductResponse(**serialize_doc(updated))


async def create_indexes(db: AsyncIOMotorDatabase):
    await db.products.create_index("category")


def create_app(
    settings: Optional[ProductSettings] = None,
    mongodb_client=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or ProductSettings()
    app = create_service_app(
        settings, "Product Service", mongodb_client, transport, prepare_database=create_indexes
    )

    app.include_router(router)
    return app

app = create_app()
