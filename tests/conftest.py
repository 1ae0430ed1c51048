import httpx
import pytest
from bson import ObjectId
import mongomock

from storefront.shared.config import ServiceSettings
from storefront.shared.utils import Principal, create_access_token

JWT_SECRET = "test-secret"


def make_settings(settings_cls, **overrides):
    options = {"JWT_SECRET": JWT_SECRET, "RATE_LIMIT_ENABLED": False, "LOG_LEVEL": "WARNING"}
    options.update(overrides)
    return settings_cls(**options)


def make_token(user_id=None, role="user"):
    principal = Principal(id=user_id or str(ObjectId()), role=role)
    return create_access_token(principal, make_settings(ServiceSettings))


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


class FakeUpstream:
    """Canned sibling-service responses keyed by (method, path)."""

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.transport = httpx.MockTransport(self.handle)

    def add(self, method, path, status_code=200, json=None, exc=None):
        self.routes[(method, path)] = (status_code, json, exc)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body, exc = self.routes.get(
            (request.method, request.url.path), (404, {"message": "Not Found"}, None)
        )
        if exc is not None:
            raise exc(f"{request.method} {request.url} failed", request=request)
        return httpx.Response(status_code, json=body)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


class AsyncMockCursor:
    def __init__(self, cursor):
        self.cursor = cursor

    def sort(self, *args, **kwargs):
        self.cursor = self.cursor.sort(*args, **kwargs)
        return self

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return next(self.cursor)
        except StopIteration:
            raise StopAsyncIteration


class AsyncMockCollection:
    """Motor-shaped wrapper over a mongomock collection."""

    def __init__(self, collection):
        self.collection = collection

    def find(self, *args, **kwargs):
        return AsyncMockCursor(self.collection.find(*args, **kwargs))

    def __getattr__(self, name):
        method = getattr(self.collection, name)

        async def call(*args, **kwargs):
            return method(*args, **kwargs)
        return call


class AsyncMockDatabase:
    def __init__(self, database):
        self.database = database

    def __getitem__(self, name):
        return AsyncMockCollection(self.database[name])

    def __getattr__(self, name):
        return self[name]


class AsyncMockClient:
    def __init__(self):
        self.client = mongomock.MongoClient()

    def __getitem__(self, name):
        return AsyncMockDatabase(self.client[name])

    def close(self):
        pass


@pytest.fixture
def mongo_client():
    return AsyncMockClient()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def user_id():
    return str(ObjectId())


@pytest.fixture
def user_token(user_id):
    return make_token(user_id)


@pytest.fixture
def admin_token():
    return make_token(role="admin")
