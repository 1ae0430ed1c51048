from fastapi import APIRouter, Depends, FastAPI, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from typing import List, Optional
import logging
import httpx

from storefront.shared.app_factory import create_service_app, get_db, get_limiter
from storefront.shared.config import ServiceSettings, UserSettings, get_settings
from storefront.shared.utils import (
    Principal, NotFoundException, ValidationException,
    create_access_token, hash_password, verify_password,
    require_auth, require_admin, serialize_doc, str_to_oid
)

from storefront.user_service.schemas import UserRegister, UserLogin, Token, ProfileUpdate, UserResponse
from storefront.user_service.models import UserDB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

def to_user_response(doc: dict) -> UserResponse:
    doc.pop("password_hash", None)
    return UserResponse(**serialize_doc(doc))

# --- Endpoints ---

@router.post("/register", response_model=Token, status_code=201)
async def register(
    user: UserRegister,
    db: AsyncIOMotorDatabase = Depends(get_db),
    settings: ServiceSettings = Depends(get_settings),
):
    existing_user = await db.users.find_one({"email": user.email})
    if existing_user:
        raise ValidationException("User already exists")

    user_db = UserDB(
        name=user.name,
        email=user.email,
        password_hash=hash_password(user.password),
        address=user.address.model_dump() if user.address else None,
    )
    try:
        result = await db.users.insert_one(user_db.model_dump(by_alias=True, exclude={"id"}))
    except DuplicateKeyError:
        # Lost a race with a concurrent registration for the same email
        raise ValidationException("User already exists")

    principal = Principal(id=str(result.inserted_id), role=user_db.role)
    logger.info("User registered", extra={"user_id": principal.id})
    return Token(token=create_access_token(principal, settings))

# Registered per app in create_app, under that app's rate limiter
async def login(
    user_credentials: UserLogin,
    request: Request,
    db: AsyncIOMotorDatabase = Depends(get_db),
    settings: ServiceSettings = Depends(get_settings),
):
    user = await db.users.find_one({"email": user_credentials.email})
    if not user or not verify_password(user_credentials.password, user["password_hash"]):
        raise ValidationException("Invalid credentials")

    principal = Principal(id=str(user["_id"]), role=user.get("role", "user"))
    return Token(token=create_access_token(principal, settings))

@router.get("/me", response_model=UserResponse)
async def get_me(principal: Principal = Depends(require_auth), db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db.users.find_one({"_id": str_to_oid(principal.id, "User not found")})
    if not user:
        raise NotFoundException("User not found")
    return to_user_response(user)

@router.put("/me", response_model=UserResponse)
async def update_me(
    profile_update: ProfileUpdate,
    principal: Principal = Depends(require_auth),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    update_data = profile_update.model_dump(exclude_none=True)

    user_oid = str_to_oid(principal.id, "User not found")
    if update_data:
        user = await db.users.find_one_and_update(
            {"_id": user_oid},
            {"$set": update_data},
            return_document=ReturnDocument.AFTER,
        )
    else:
        user = await db.users.find_one({"_id": user_oid})

    if not user:
        raise NotFoundException("User not found")
    return to_user_response(user)

@router.get("", response_model=List[UserResponse])
async def list_users(principal: Principal = Depends(require_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    users = []
    async for doc in db.users.find({}):
        users.append(to_user_response(doc))
    return users


async def create_indexes(db: AsyncIOMotorDatabase):
    await db.users.create_index("email", unique=True)


def create_app(
    settings: Optional[UserSettings] = None,
    mongodb_client=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or UserSettings()
    app = create_service_app(
        settings, "User Service", mongodb_client, transport, prepare_database=create_indexes
    )

    app.include_router(router)
    app.add_api_route(
        "/api/users/login",
        get_limiter(app).limit("5/minute")(login),
        methods=["POST"],
        response_model=Token,
        tags=["users"],
    )
    return app

app = create_app()
