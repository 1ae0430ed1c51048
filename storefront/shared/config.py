from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from fastapi import Request


# --- Configuration ---
class ServiceSettings(BaseSettings):
    SERVICE_NAME: str = "service"
    PORT: int = 3000
    MONGODB_URI: str = "mongodb://mongodb:27017"
    DATABASE_NAME: str = "storefront"
    JWT_SECRET: str = "secret"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24
    LOG_LEVEL: str = "INFO"
    RATE_LIMIT_ENABLED: bool = True
    # Seconds to wait on a sibling service before giving up
    UPSTREAM_TIMEOUT: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class ProductSettings(ServiceSettings):
    SERVICE_NAME: str = "product-service"
    PORT: int = 3001
    DATABASE_NAME: str = "product_db"


class UserSettings(ServiceSettings):
    SERVICE_NAME: str = "user-service"
    PORT: int = 3002
    DATABASE_NAME: str = "user_db"


class OrderSettings(ServiceSettings):
    SERVICE_NAME: str = "order-service"
    PORT: int = 3003
    DATABASE_NAME: str = "order_db"
    CART_SERVICE_URL: str = "http://cart-service:3004"
    USER_SERVICE_URL: str = "http://user-service:3002"
    PRODUCT_SERVICE_URL: str = "http://product-service:3001"


class CartSettings(ServiceSettings):
    SERVICE_NAME: str = "cart-service"
    PORT: int = 3004
    DATABASE_NAME: str = "cart_db"
    PRODUCT_SERVICE_URL: str = "http://product-service:3001"


class GatewaySettings(ServiceSettings):
    SERVICE_NAME: str = "api-gateway"
    PORT: int = 3000
    PRODUCT_SERVICE_URL: str = "http://product-service:3001"
    USER_SERVICE_URL: str = "http://user-service:3002"
    ORDER_SERVICE_URL: str = "http://order-service:3003"
    CART_SERVICE_URL: str = "http://cart-service:3004"
    PAYMENT_SERVICE_URL: Optional[str] = None
    INVENTORY_SERVICE_URL: Optional[str] = None
    # Wait for the upstream response
    PROXY_TIMEOUT: float = 10.0
    # Wait to acquire an idle connection from the client pool (httpx pool timeout).
    # Reads on an open connection are bounded by PROXY_TIMEOUT.
    PROXY_IDLE_TIMEOUT: float = 5.0


def get_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings
