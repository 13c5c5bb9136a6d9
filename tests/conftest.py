import os

# 保险：就算 .env 不在也能跑；必须在导入 zagfer 之前设置
os.environ.setdefault("ZAGFER_DATABASE_URL", "sqlite://")
os.environ.setdefault("ZAGFER_SECRET_KEY", "test_secret")
os.environ.setdefault("ZAGFER_USE_INITIAL_DATA", "false")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from zagfer.main import app
from zagfer.db import get_session
from zagfer.models import Tool, User
from zagfer.store import SqlEntityStore

ADMIN = {"id": "u-admin", "name": "Gerente", "matricula": "459524", "active": True, "role": "admin"}
OPERATOR = {"id": "u-op", "name": "3S EDIMAR", "matricula": "123456", "active": True, "role": "user"}
RETIRED = {"id": "u-old", "name": "Cabo Antigo", "matricula": "999999", "active": False, "role": "user"}

TOOLS = [
    {"id": "T1", "name": "Chave de Fenda", "category": "Manual", "size": '1/4"', "sector": "Manutenção A"},
    {"id": "T2", "name": "Chave Phillips", "category": "Manual", "sector": "Manutenção A"},
    {"id": "T3", "name": "Alicate Universal", "category": "Manual", "sector": "Montagem", "bmp": "BMP-003"},
    {"id": "T4", "name": "Furadeira de Impacto", "category": "Elétrica", "sector": "Usinagem"},
    {"id": "T5", "name": "Multímetro", "category": "Elétrica", "sector": "Elétrica"},
]


def seed(store: SqlEntityStore) -> None:
    store.create_users([User(**ADMIN), User(**OPERATOR), User(**RETIRED)])
    store.create_tools([Tool(status="AVAILABLE", **row) for row in TOOLS])


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine):
    with Session(engine) as session:
        store = SqlEntityStore(session)
        seed(store)
        yield store


@pytest.fixture()
def admin(store):
    return store.get_user(ADMIN["id"])


@pytest.fixture()
def operator(store):
    return store.get_user(OPERATOR["id"])


@pytest.fixture()
def client(engine):
    with Session(engine) as session:
        seed(SqlEntityStore(session))

    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def login(client, matricula: str) -> dict:
    r = client.post("/auth/login", json={"matricula": matricula})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['accessToken']}"}


@pytest.fixture()
def admin_headers(client):
    return login(client, ADMIN["matricula"])


@pytest.fixture()
def user_headers(client):
    return login(client, OPERATOR["matricula"])
