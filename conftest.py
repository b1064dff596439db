"""
Mostrador: conftest raíz para pytest

Fixtures compartidas por los tests de cada módulo (mostrador/modules/*/tests.py).
Cada test corre contra una base SQLite en memoria recién creada.
"""

import os

# La configuración se lee al importar mostrador: el entorno va primero
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["RATE_LIMIT_BACKEND"] = "memory"

from decimal import Decimal
from uuid import uuid4

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mostrador.common.rate_limit import MemoryRateLimiter, get_rate_limiter
from mostrador.core.config import settings
from mostrador.database.database import Base, get_db
from mostrador.main import app
from mostrador.modules.clients.models import Client, ClientStatus
from mostrador.modules.products.models import Product, ProductVariant


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def make_product(db_session, tenant_id):
    """Crea productos del negocio de prueba."""
    def _make(name="Yerba 1kg", stock=10, price="100.00", cost="60.00", min_stock=0, is_active=True, tenant=None):
        product = Product(
            tenant_id=tenant or tenant_id,
            name=name,
            sku=f"SKU-{uuid4().hex[:8]}",
            stock=stock,
            min_stock=min_stock,
            price=Decimal(price),
            cost=Decimal(cost),
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product
    return _make


@pytest.fixture
def make_variant(db_session, tenant_id):
    def _make(product, name="Rojo", stock=5, price=None, is_active=True):
        variant = ProductVariant(
            tenant_id=product.tenant_id,
            product_id=product.id,
            name=name,
            sku=f"VAR-{uuid4().hex[:8]}",
            stock=stock,
            min_stock=0,
            price=Decimal(price) if price is not None else None,
            is_active=is_active,
        )
        db_session.add(variant)
        db_session.commit()
        db_session.refresh(variant)
        return variant
    return _make


@pytest.fixture
def make_client(db_session, tenant_id):
    """Crea clientes; por defecto con cuenta corriente habilitada."""
    def _make(name="Almacén Don Pepe", email=None, has_credit_account=True, credit_limit="500.00",
              current_debt="0.00", tenant=None):
        client = Client(
            tenant_id=tenant or tenant_id,
            name=name,
            email=email,
            has_credit_account=has_credit_account,
            credit_limit=Decimal(credit_limit),
            current_debt=Decimal(current_debt),
            status=ClientStatus.ACTIVE,
        )
        db_session.add(client)
        db_session.commit()
        db_session.refresh(client)
        return client
    return _make


@pytest.fixture
def rate_limiter():
    return MemoryRateLimiter()


@pytest.fixture
def api_client(session_factory, rate_limiter):
    """TestClient con la base de prueba y un limiter en memoria por test."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_token(tenant_id, user_id):
    def _make(role="OWNER", user=None, tenant=None, email="caja@mostrador.test"):
        payload = {
            "sub": str(user or user_id),
            "tenant_id": str(tenant or tenant_id),
            "user_role": role,
            "email": email,
        }
        return jwt.encode(payload, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)
    return _make


@pytest.fixture
def auth_headers(make_token):
    """Headers de un OWNER del negocio de prueba."""
    return {"Authorization": f"Bearer {make_token()}"}
