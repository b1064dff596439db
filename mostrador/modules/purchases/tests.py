"""
Tests para el módulo de Compras
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from mostrador.core.exceptions import ConflictError, NotFoundError
from mostrador.modules.products.models import StockMovement, StockMovementType
from mostrador.modules.purchases.models import PurchaseStatus
from mostrador.modules.purchases.schemas import PurchaseCreate, PurchaseItemCreate, PurchaseVoid
from mostrador.modules.purchases.service import PurchaseService


def purchase_payload(*items, tax="0"):
    return PurchaseCreate(
        supplier_name="Distribuidora Norte",
        invoice_number="A-0001-00001234",
        tax=Decimal(tax),
        items=[PurchaseItemCreate(product_id=p.id, quantity=q, cost=Decimal(c)) for p, q, c in items],
    )


class TestPurchaseService:

    def test_create_purchase_adds_stock_and_updates_cost(self, db_session, tenant_id, user_id, make_product):
        yerba = make_product(name="Yerba", stock=2, cost="50.00")
        azucar = make_product(name="Azúcar", stock=0, cost="20.00")

        purchase = PurchaseService(db_session).create_purchase(
            purchase_payload((yerba, 10, "55.00"), (azucar, 5, "22.50"), tax="21.00"), tenant_id, user_id
        )
        db_session.refresh(yerba)
        db_session.refresh(azucar)

        assert purchase.status == PurchaseStatus.RECIBIDA
        assert purchase.subtotal == Decimal("662.50")
        assert purchase.total == Decimal("683.50")
        assert (yerba.stock, azucar.stock) == (12, 5)
        assert yerba.cost == Decimal("55.00")

        movements = db_session.query(StockMovement).filter(StockMovement.reference == str(purchase.id)).all()
        assert {m.type for m in movements} == {StockMovementType.ENTRADA}
        assert len(movements) == 2

    def test_unknown_product_rolls_back(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=1, cost="10.00")
        foreign = make_product(tenant=uuid4())

        with pytest.raises(NotFoundError):
            PurchaseService(db_session).create_purchase(
                purchase_payload((product, 5, "12.00"), (foreign, 1, "1.00")), tenant_id, user_id
            )

        db_session.refresh(product)
        assert product.stock == 1
        assert product.cost == Decimal("10.00")

    def test_void_removes_stock_once(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=0)
        service = PurchaseService(db_session)
        purchase = service.create_purchase(purchase_payload((product, 8, "5.00")), tenant_id, user_id)

        voided = service.void_purchase(purchase.id, PurchaseVoid(reason="Mercadería devuelta"), tenant_id, user_id)
        db_session.refresh(product)

        assert voided.status == PurchaseStatus.ANULADA
        assert voided.void_reason == "Mercadería devuelta"
        assert product.stock == 0

        with pytest.raises(ConflictError):
            service.void_purchase(purchase.id, PurchaseVoid(), tenant_id, user_id)

    def test_list_purchases(self, db_session, tenant_id, user_id, make_product):
        product = make_product()
        service = PurchaseService(db_session)
        first = service.create_purchase(purchase_payload((product, 1, "5.00")), tenant_id, user_id)
        service.create_purchase(purchase_payload((product, 1, "5.00")), tenant_id, user_id)
        service.void_purchase(first.id, PurchaseVoid(), tenant_id, user_id)

        assert service.list_purchases(tenant_id).total == 2
        assert service.list_purchases(tenant_id, status="ANULADA").total == 1
        assert service.list_purchases(tenant_id, supplier="norte").total == 2


class TestPurchasesAPI:

    def test_create_get_and_void(self, api_client, auth_headers, make_product):
        product = make_product(stock=0)
        body = {
            "supplier_name": "Mayorista Sur",
            "items": [{"product_id": str(product.id), "quantity": 3, "cost": "10.00"}],
        }

        created = api_client.post("/api/v1/purchases", json=body, headers=auth_headers)
        assert created.status_code == 201
        purchase_id = created.json()["id"]

        fetched = api_client.get(f"/api/v1/purchases/{purchase_id}", headers=auth_headers)
        assert Decimal(fetched.json()["total"]) == Decimal("30")

        voided = api_client.post(f"/api/v1/purchases/{purchase_id}/void", json={}, headers=auth_headers)
        assert voided.status_code == 200
        again = api_client.post(f"/api/v1/purchases/{purchase_id}/void", json={}, headers=auth_headers)
        assert again.status_code == 409

    def test_gerente_cannot_void(self, api_client, make_token, make_product):
        product = make_product(stock=0)
        headers = {"Authorization": f"Bearer {make_token(role='GERENTE')}"}
        created = api_client.post(
            "/api/v1/purchases",
            json={"supplier_name": "Mayorista Sur",
                  "items": [{"product_id": str(product.id), "quantity": 1, "cost": "1.00"}]},
            headers=headers
        )
        assert created.status_code == 201

        response = api_client.post(f"/api/v1/purchases/{created.json()['id']}/void", json={}, headers=headers)
        assert response.status_code == 403
