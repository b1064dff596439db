"""
Tests para el libro de inventario

- apply_delta por tipo de movimiento, política de sobreventa y variantes
- Movimientos manuales, historial y alertas de stock bajo
"""

import pytest
from uuid import uuid4

from mostrador.core.config import settings
from mostrador.core.exceptions import ConflictError, NotFoundError, ValidationError
from mostrador.modules.inventory.schemas import StockMovementCreate
from mostrador.modules.inventory.service import InventoryLedger
from mostrador.modules.products.models import StockMovement, StockMovementType


class TestApplyDelta:
    """Tests para InventoryLedger.apply_delta"""

    @pytest.mark.parametrize("movement_type,quantity,expected", [
        (StockMovementType.ENTRADA, 4, 14),
        (StockMovementType.SALIDA, 4, 6),
        (StockMovementType.TRANSFERENCIA, 4, 6),
        (StockMovementType.AJUSTE, 3, 3),
    ])
    def test_movement_types(self, db_session, tenant_id, make_product, movement_type, quantity, expected):
        product = make_product(stock=10)

        movement = InventoryLedger(db_session).apply_delta(tenant_id, product.id, quantity, movement_type)

        assert movement.previous_stock == 10
        assert movement.new_stock == expected
        assert product.stock == expected

    def test_oversell_is_clamped_by_default(self, db_session, tenant_id, make_product):
        product = make_product(stock=2)

        movement = InventoryLedger(db_session).apply_delta(tenant_id, product.id, 5, "SALIDA", reference="venta-x")

        assert movement.new_stock == 0
        assert product.stock == 0

    def test_oversell_rejected_by_policy(self, db_session, tenant_id, make_product, monkeypatch):
        monkeypatch.setattr(settings, "STOCK_OVERSELL_POLICY", "reject")
        product = make_product(stock=2)

        with pytest.raises(ConflictError) as exc:
            InventoryLedger(db_session).apply_delta(tenant_id, product.id, 5, "SALIDA")

        assert exc.value.extra["available"] == 2
        assert exc.value.extra["requested"] == 5

    def test_variant_stock_is_the_one_mutated(self, db_session, tenant_id, make_product, make_variant):
        product = make_product(stock=10)
        variant = make_variant(product, stock=3)

        InventoryLedger(db_session).apply_delta(tenant_id, product.id, 2, "ENTRADA", variant_id=variant.id)

        assert variant.stock == 5
        assert product.stock == 10

    def test_zero_quantity_is_invalid(self, db_session, tenant_id, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            InventoryLedger(db_session).apply_delta(tenant_id, product.id, 0, "ENTRADA")

    def test_product_of_other_tenant(self, db_session, make_product):
        product = make_product(tenant=uuid4())
        with pytest.raises(NotFoundError):
            InventoryLedger(db_session).apply_delta(uuid4(), product.id, 1, "ENTRADA")


class TestInventoryService:

    def test_register_movement_commits(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=1)

        output = InventoryLedger(db_session).register_movement(
            tenant_id,
            StockMovementCreate(product_id=product.id, type="ENTRADA", quantity=9, reason="Reposición"),
            user_id
        )

        assert output.new_stock == 10
        assert output.product_name == product.name
        assert db_session.query(StockMovement).count() == 1

    def test_adjust_to_zero_is_allowed(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=7)
        output = InventoryLedger(db_session).register_movement(
            tenant_id, StockMovementCreate(product_id=product.id, type="AJUSTE", quantity=0), user_id
        )
        assert output.new_stock == 0

    def test_history_filters_by_reference(self, db_session, tenant_id, make_product):
        product = make_product(stock=10)
        ledger = InventoryLedger(db_session)
        ledger.apply_delta(tenant_id, product.id, 1, "SALIDA", reference="A")
        ledger.apply_delta(tenant_id, product.id, 1, "SALIDA", reference="B")
        db_session.commit()

        assert ledger.get_movements(tenant_id, product_id=product.id).total == 2
        assert ledger.get_movements(tenant_id, reference="A").total == 1

    def test_low_stock_alerts(self, db_session, tenant_id, make_product, make_variant):
        make_product(name="Azúcar", stock=0, min_stock=5)
        make_product(name="Arroz", stock=3, min_stock=5)
        make_product(name="Fideos", stock=30, min_stock=5)
        remera = make_product(name="Remera", stock=30, min_stock=0)
        make_variant(remera, name="XL", stock=0)

        alerts = InventoryLedger(db_session).get_low_stock_alerts(tenant_id)

        names = {a.name for a in alerts.items}
        assert names == {"Azúcar", "Arroz", "Remera - XL"}
        assert alerts.out_of_stock_count == 2


class TestInventoryAPI:

    def test_manual_movement_endpoint(self, api_client, auth_headers, make_product):
        product = make_product(stock=5)
        response = api_client.post(
            "/api/v1/inventory/movements",
            json={"product_id": str(product.id), "type": "SALIDA", "quantity": 2, "reason": "Rotura"},
            headers=auth_headers
        )
        assert response.status_code == 201
        assert response.json()["new_stock"] == 3

        history = api_client.get(f"/api/v1/inventory/movements?product_id={product.id}", headers=auth_headers)
        assert history.json()["total"] == 1

    def test_seller_cannot_adjust_stock(self, api_client, make_token, make_product):
        product = make_product()
        headers = {"Authorization": f"Bearer {make_token(role='VENDEDOR')}"}
        response = api_client.post(
            "/api/v1/inventory/movements",
            json={"product_id": str(product.id), "type": "AJUSTE", "quantity": 100},
            headers=headers
        )
        assert response.status_code == 403

    def test_alerts_endpoint(self, api_client, auth_headers, make_product):
        make_product(name="Leche", stock=1, min_stock=4)
        response = api_client.get("/api/v1/inventory/alerts", headers=auth_headers)
        assert response.status_code == 200
        assert [a["name"] for a in response.json()["items"]] == ["Leche"]
