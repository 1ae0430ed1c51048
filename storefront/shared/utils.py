from datetime import datetime, timedelta
from typing import Optional, Literal
from fastapi import FastAPI, HTTPException, Header, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from motor.motor_asyncio import AsyncIOMotorClient
from passlib.context import CryptContext
from pydantic import BaseModel
from jose import JWTError, jwt
from bson import ObjectId
from bson.errors import InvalidId
import logging
import uuid

from storefront.shared.config import ServiceSettings, get_settings

# --- Database ---
def get_db_client(url: str) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

def str_to_oid(id: str, detail: str = "Resource not found") -> ObjectId:
    # Malformed ids can never match a stored document
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        raise NotFoundException(detail)

def serialize_doc(doc: dict) -> dict:
    doc["id"] = str(doc.pop("_id"))
    return doc

# --- Passwords ---
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

# --- Tokens ---
class Principal(BaseModel):
    id: str
    role: Literal["user", "admin"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

def create_access_token(principal: Principal, settings: ServiceSettings, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS)

    to_encode = {
        "sub": principal.id,
        "role": principal.role,
        "jti": str(uuid.uuid4()),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

def verify_token(token: str, settings: ServiceSettings) -> Principal:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Token is not valid")
    if "sub" not in payload:
        raise UnauthorizedException("Token is not valid")
    return Principal(id=payload["sub"], role=payload.get("role", "user"))

# --- Response Models ---
class HealthResponse(BaseModel):
    service: str
    status: str
    version: str

class MessageResponse(BaseModel):
    message: str

# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class ValidationException(AppException):
    def __init__(self, detail: str = "Invalid input"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Not authorized"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class UpstreamUnavailableException(AppException):
    def __init__(self, detail: str = "Upstream service unavailable"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)

class PersistenceException(AppException):
    def __init__(self, detail: str = "Database error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

def register_exception_handlers(app: FastAPI, service_name: str):
    logger = logging.getLogger(service_name)

    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = {}
        for error in exc.errors():
            loc = [str(part) for part in error["loc"]]
            field = ".".join(loc[1:]) if len(loc) > 1 else loc[0]
            errors.setdefault(field, []).append(error["msg"])
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"errors": errors})

    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Server error"},
        )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Upstream calls ---
def upstream_headers(request: Request) -> dict:
    """Headers for a call to a sibling service on behalf of the caller."""
    headers = {}
    credential = getattr(request.state, "credential", None)
    if credential:
        headers["Authorization"] = f"Bearer {credential}"
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers["X-Request-ID"] = request_id
    return headers

# --- Dependencies ---
async def require_auth(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_auth_token: Optional[str] = Header(None),
    settings: ServiceSettings = Depends(get_settings),
) -> Principal:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise UnauthorizedException("Invalid authentication credentials")
    elif x_auth_token:
        token = x_auth_token
    else:
        raise UnauthorizedException("No token, authorization denied")

    principal = verify_token(token, settings)
    request.state.credential = token
    request.state.principal = principal
    return principal

async def require_admin(principal: Principal = Depends(require_auth)) -> Principal:
    if not principal.is_admin:
        raise ForbiddenException("Access denied, admin privileges required")
    return principal
