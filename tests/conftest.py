import pytest
import os
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import storefront.models  # noqa: F401
from storefront.core.config import settings
from storefront.core.deps import get_db
from storefront.core.security import hash_password
from storefront.db.base import Base
from storefront.main import app
from storefront.models.product import Product
from storefront.models.user import User

GUEST_SESSION = "guest-session-0001"


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    original_provider = settings.gateway_provider
    settings.secret_key = "test-secret-key"
    settings.gateway_provider = "stub"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    settings.gateway_provider = original_provider


def seed_product(
    session_local,
    *,
    product_id: str,
    name: str,
    price: str = "10.00",
    stock: int = 10,
    active: bool = True,
) -> str:
    with session_local() as db:
        db.add(
            Product(
                id=product_id,
                name=name,
                price=Decimal(price),
                stock_quantity=stock,
                active=active,
                image_url=f"https://cdn.example.com/{product_id}.jpg",
            )
        )
        db.commit()
    return product_id


def seed_user(
    session_local,
    *,
    email: str,
    password: str = "password123",
    role: str = "customer",
    full_name: str = "Test Shopper",
) -> str:
    with session_local() as db:
        user = User(
            email=email.lower(),
            full_name=full_name,
            hashed_password=hash_password(password),
            role=role,
        )
        db.add(user)
        db.commit()
        return user.id


def login(client, *, email: str, password: str = "password123", session_id: str | None = None):
    headers = {"X-Session-Id": session_id} if session_id else {}
    return client.post("/auth/login", json={"email": email, "password": password}, headers=headers)


def auth_headers(token: str, session_id: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if session_id:
        headers["X-Session-Id"] = session_id
    return headers


def guest_headers(session_id: str = GUEST_SESSION) -> dict[str, str]:
    return {"X-Session-Id": session_id}
