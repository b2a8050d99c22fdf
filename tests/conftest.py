import pytest
from fastapi.testclient import TestClient

from app.core import security
from app.core.sql_storage import SqlStorage
from app.core.storage import InMemoryStorage
from app.main import create_app
from app.modules.auth.models import UserRole
from app.modules.items.models import ItemType
from app.modules.items.schemas import ItemCreate


@pytest.fixture
def memory_storage():
    return InMemoryStorage()


@pytest.fixture(params=["memory", "sql"])
async def storage(request, tmp_path):
    """Every store contract test runs against both backends."""
    if request.param == "memory":
        yield InMemoryStorage()
        return
    store = SqlStorage(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    await store.init()
    yield store
    await store.close()


async def make_user(storage, username, credits=0, role=UserRole.USER):
    user = await storage.create_user(username, security.get_password_hash("secret"), role=role)
    if credits:
        user = await storage.update_user_credits(user.id, credits)
    return user


def full_item(price=500, content="asset pack"):
    return ItemCreate(title="Neon Sword", description="blade", price=price, type=ItemType.FULL, content=content)


def sequential_item(price=100, pages=("p1", "p2", "p3")):
    return ItemCreate(
        title="Manifesto", description="guide", price=price, type=ItemType.SEQUENTIAL, contents=list(pages)
    )


# HTTP fixtures

@pytest.fixture
def client():
    app = create_app(storage=InMemoryStorage())
    return TestClient(app)


def auth_headers(client, username, password="secret"):
    response = client.post("/api/register", json={"username": username, "password": password})
    assert response.status_code == 201, response.text
    response = client.post("/api/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    # First account registered on a fresh store is the admin
    return auth_headers(client, "admin")


@pytest.fixture
def user_headers(client, admin_headers):
    return auth_headers(client, "alice")
