"""Order placement across the cart, user and product services.

Placing an order is a fixed sequence of calls:

1. fetch the caller's cart from the cart service
2. fetch the caller's profile from the user service
3. snapshot cart items, cart total and shipping address into an order
4. insert the order
5. clear the cart
6. decrement stock for every ordered product

Steps 1-4 abort the request on failure. Steps 5 and 6 run after the order
exists, so their failures are logged and swallowed: the order stands even if
the cart keeps stale items or a product's stock is never decremented. There
are no retries and nothing is rolled back.
"""
from typing import List, Optional
import logging

import httpx
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from storefront.shared.config import OrderSettings
from storefront.shared.utils import (
    Principal, ValidationException, UpstreamUnavailableException, PersistenceException
)
from storefront.order_service.models import OrderDB, OrderItemDB, ShippingAddressDB
from storefront.order_service.schemas import CartSnapshot, UserSnapshot, ShippingAddress

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")

# --- Workflow errors ---
class CartUnavailable(UpstreamUnavailableException):
    def __init__(self, detail: str = "Failed to retrieve cart"):
        super().__init__(detail)

class EmptyCart(ValidationException):
    def __init__(self, detail: str = "Cart is empty"):
        super().__init__(detail)

class UserUnavailable(UpstreamUnavailableException):
    def __init__(self, detail: str = "Failed to retrieve user details"):
        super().__init__(detail)

class MissingAddress(ValidationException):
    def __init__(self, detail: str = "Shipping address is required"):
        super().__init__(detail)

class PersistenceError(PersistenceException):
    def __init__(self, detail: str = "Failed to save order"):
        super().__init__(detail)


class OrderWorkflow:
    def __init__(
        self,
        settings: OrderSettings,
        client: httpx.AsyncClient,
        orders: AsyncIOMotorCollection,
        headers: dict,
    ):
        self.settings = settings
        self.client = client
        self.orders = orders
        # Caller's credential and request id, forwarded on every upstream call
        self.headers = headers

    async def create_order(self, principal: Principal, shipping_override: Optional[ShippingAddress] = None) -> dict:
        cart = await self.fetch_cart()
        if not cart.items:
            raise EmptyCart()

        user = await self.fetch_user()
        if shipping_override is not None:
            address = ShippingAddressDB(**shipping_override.model_dump())
        else:
            address = self.address_from_profile(user)

        order_db = OrderDB(
            user_id=principal.id,
            items=[OrderItemDB(**item.model_dump()) for item in cart.items],
            total=cart.total,
            shipping_address=address,
        )
        order = order_db.model_dump(by_alias=True, exclude={"id"})
        try:
            result = await self.orders.insert_one(order)
        except PyMongoError as exc:
            logger.error(f"Failed to persist order: {exc}", extra={"user_id": principal.id})
            raise PersistenceError()
        order["_id"] = result.inserted_id

        order_id = str(result.inserted_id)
        logger.info("Order created", extra={"order_id": order_id, "user_id": principal.id})

        await self.clear_cart(order_id)
        await self.decrement_stock(order_id, order_db.items)
        return order

    async def fetch_cart(self) -> CartSnapshot:
        url = f"{self.settings.CART_SERVICE_URL}/api/cart"
        try:
            response = await self.client.get(url, headers=self.headers)
        except httpx.RequestError as exc:
            logger.warning(f"Cart service unreachable: {exc}", extra={"target": url})
            raise CartUnavailable()
        if response.is_error:
            logger.warning(
                f"Cart service returned {response.status_code}",
                extra={"target": url, "status_code": response.status_code},
            )
            raise CartUnavailable()
        try:
            return CartSnapshot(**response.json())
        except (ValueError, ValidationError):
            raise CartUnavailable("Cart service returned an invalid cart")

    async def fetch_user(self) -> UserSnapshot:
        url = f"{self.settings.USER_SERVICE_URL}/api/users/me"
        try:
            response = await self.client.get(url, headers=self.headers)
        except httpx.RequestError as exc:
            logger.warning(f"User service unreachable: {exc}", extra={"target": url})
            raise UserUnavailable()
        if response.is_error:
            logger.warning(
                f"User service returned {response.status_code}",
                extra={"target": url, "status_code": response.status_code},
            )
            raise UserUnavailable()
        try:
            return UserSnapshot(**response.json())
        except (ValueError, ValidationError):
            raise UserUnavailable("User service returned an invalid profile")

    @staticmethod
    def address_from_profile(user: UserSnapshot) -> ShippingAddressDB:
        address = user.address or {}
        # A partially filled address cannot be shipped to
        if not all(address.get(field) for field in ADDRESS_FIELDS):
            raise MissingAddress()
        return ShippingAddressDB(**{field: address[field] for field in ADDRESS_FIELDS})

    async def clear_cart(self, order_id: str):
        url = f"{self.settings.CART_SERVICE_URL}/api/cart"
        try:
            response = await self.client.delete(url, headers=self.headers)
        except httpx.RequestError as exc:
            logger.warning(f"Cart not cleared after order: {exc}", extra={"order_id": order_id, "target": url})
            return
        if response.is_error:
            logger.warning(
                f"Cart not cleared after order: status {response.status_code}",
                extra={"order_id": order_id, "target": url, "status_code": response.status_code},
            )

    async def decrement_stock(self, order_id: str, items: List[OrderItemDB]):
        for item in items:
            url = f"{self.settings.PRODUCT_SERVICE_URL}/api/products/{item.product_id}/stock"
            try:
                response = await self.client.post(url, json={"adjustment": -item.quantity}, headers=self.headers)
            except httpx.RequestError as exc:
                logger.warning(
                    f"Stock not decremented: {exc}",
                    extra={"order_id": order_id, "product_id": item.product_id, "target": url},
                )
                continue
            if response.is_error:
                logger.warning(
                    f"Stock not decremented: status {response.status_code}",
                    extra={"order_id": order_id, "product_id": item.product_id, "status_code": response.status_code},
                )
