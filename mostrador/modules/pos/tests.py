"""
Tests para el módulo POS

- Apertura y cierre de caja con arqueo
- Caja actual y listado
- Libro de caja: movimientos manuales y totales
"""

import pytest
from unittest.mock import patch
from decimal import Decimal
from uuid import uuid4

from mostrador.core.exceptions import ConflictError, NotFoundError, ValidationError
from mostrador.modules.pos.models import CashMovement, CashMovementType, CashRegister, CashRegisterStatus
from mostrador.modules.pos.schemas import CashRegisterOpen, CashRegisterClose, CashMovementCreate
from mostrador.modules.pos.services import CashLedger, CashRegisterService
from mostrador.modules.sales.schemas import SaleCreate, SaleItemCreate
from mostrador.modules.sales.service import SaleService


def _sell(db_session, tenant_id, user_id, product, amount, method="EFECTIVO"):
    return SaleService(db_session).create_sale(
        SaleCreate(
            items=[SaleItemCreate(product_id=product.id, quantity=1, unit_price=Decimal(amount))],
            payment_method=method,
            total=Decimal(amount),
        ),
        tenant_id, user_id
    )


class TestCashRegisterSession:
    """Tests para CashRegisterService"""

    def test_open_creates_register_and_opening_movement(self, db_session, tenant_id, user_id):
        register = CashRegisterService(db_session).open_cash_register(
            CashRegisterOpen(opening_amount=Decimal("250.00"), notes="Turno mañana"), tenant_id, user_id
        )

        assert register.status == CashRegisterStatus.OPEN
        assert register.opening_amount == Decimal("250.00")
        movements = db_session.query(CashMovement).filter(CashMovement.cash_register_id == register.id).all()
        assert len(movements) == 1
        assert movements[0].type == CashMovementType.APERTURA
        assert movements[0].amount == Decimal("250.00")

    def test_open_with_zero_amount(self, db_session, tenant_id, user_id):
        register = CashRegisterService(db_session).open_cash_register(
            CashRegisterOpen(opening_amount=Decimal("0")), tenant_id, user_id
        )
        assert register.opening_amount == Decimal("0.00")

    def test_each_user_has_own_register(self, db_session, tenant_id, user_id):
        service = CashRegisterService(db_session)
        service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("10")), tenant_id, user_id)
        service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("10")), tenant_id, uuid4())

        assert db_session.query(CashRegister).filter(CashRegister.status == CashRegisterStatus.OPEN).count() == 2

    def test_concurrent_open_is_stopped_by_unique_index(self, db_session, tenant_id, user_id):
        service = CashRegisterService(db_session)
        service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("100")), tenant_id, user_id)

        # La segunda apertura no ve la primera (como otra transacción que leyó antes del commit)
        with patch.object(service.ledger, "find_open_register", return_value=None):
            with pytest.raises(ConflictError):
                service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("50")), tenant_id, user_id)

        assert db_session.query(CashRegister).count() == 1
        assert db_session.query(CashMovement).filter(CashMovement.type == CashMovementType.APERTURA).count() == 1

    def test_close_groups_payment_methods(self, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=20)
        client = make_client(credit_limit="10000.00")
        service = CashRegisterService(db_session)
        service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("100")), tenant_id, user_id)
        _sell(db_session, tenant_id, user_id, product, "50.00")
        _sell(db_session, tenant_id, user_id, product, "70.00", "TARJETA_CREDITO")
        _sell(db_session, tenant_id, user_id, product, "30.00", "QR")
        _sell(db_session, tenant_id, user_id, product, "20.00", "OTRO")
        SaleService(db_session).create_sale(
            SaleCreate(
                items=[SaleItemCreate(product_id=product.id, quantity=1, unit_price=Decimal("40"))],
                payment_method="CUENTA_CORRIENTE",
                client_id=client.id,
                total=Decimal("40"),
            ),
            tenant_id, user_id
        )

        closed = service.close_cash_register(
            CashRegisterClose(closing_amount=Decimal("140.00"), notes="Faltan 10"), tenant_id, user_id
        )
        summary = closed.summary

        assert summary.sales_count == 5
        assert summary.total_cash == Decimal("50.00")
        assert summary.total_card == Decimal("70.00")
        assert summary.total_transfer == Decimal("30.00")
        assert summary.total_other == Decimal("60.00")
        assert summary.expected_amount == Decimal("150.00")
        assert summary.difference == Decimal("-10.00")
        assert closed.register.total_other == Decimal("60.00")

    def test_close_ignores_canceled_sales(self, db_session, tenant_id, user_id, make_product):
        from mostrador.modules.sales.schemas import SaleCancel

        product = make_product(stock=5)
        service = CashRegisterService(db_session)
        service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("0")), tenant_id, user_id)
        sale = _sell(db_session, tenant_id, user_id, product, "80.00")
        SaleService(db_session).cancel_sale(sale.id, SaleCancel(reason="Error de carga en caja"), tenant_id, user_id)

        closed = service.close_cash_register(CashRegisterClose(closing_amount=Decimal("0")), tenant_id, user_id)
        assert closed.summary.sales_count == 0
        assert closed.summary.expected_amount == Decimal("0.00")

    def test_close_writes_closing_movement(self, db_session, tenant_id, user_id):
        service = CashRegisterService(db_session)
        register = service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("100")), tenant_id, user_id)

        service.close_cash_register(CashRegisterClose(closing_amount=Decimal("100")), tenant_id, user_id)

        closing = db_session.query(CashMovement).filter(
            CashMovement.cash_register_id == register.id,
            CashMovement.type == CashMovementType.CIERRE
        ).one()
        assert closing.amount == Decimal("100.00")

    def test_closed_register_is_terminal(self, db_session, tenant_id, user_id):
        service = CashRegisterService(db_session)
        register = service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("0")), tenant_id, user_id)
        service.close_cash_register(CashRegisterClose(closing_amount=Decimal("0")), tenant_id, user_id)

        with pytest.raises(ConflictError):
            service.close_cash_register(
                CashRegisterClose(cash_register_id=register.id, closing_amount=Decimal("0")), tenant_id, user_id
            )
        with pytest.raises(NotFoundError):
            service.close_cash_register(CashRegisterClose(closing_amount=Decimal("0")), tenant_id, user_id)

    def test_cannot_close_register_of_other_user(self, db_session, tenant_id, user_id):
        service = CashRegisterService(db_session)
        register = service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("0")), tenant_id, user_id)

        with pytest.raises(NotFoundError):
            service.close_cash_register(
                CashRegisterClose(cash_register_id=register.id, closing_amount=Decimal("0")), tenant_id, uuid4()
            )

    def test_reopen_after_close(self, db_session, tenant_id, user_id):
        service = CashRegisterService(db_session)
        service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("0")), tenant_id, user_id)
        service.close_cash_register(CashRegisterClose(closing_amount=Decimal("0")), tenant_id, user_id)

        second = service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("5")), tenant_id, user_id)
        assert second.status == CashRegisterStatus.OPEN

    def test_current_register_balance(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        service = CashRegisterService(db_session)
        service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("100")), tenant_id, user_id)
        _sell(db_session, tenant_id, user_id, product, "40.00")

        current = service.get_current_cash_register(tenant_id, user_id)
        assert current.balance == Decimal("140.00")
        assert current.summary.total_cash == Decimal("40.00")

    def test_current_without_open_register(self, db_session, tenant_id, user_id):
        with pytest.raises(NotFoundError):
            CashRegisterService(db_session).get_current_cash_register(tenant_id, user_id)


class TestCashLedger:
    """Tests para CashLedger"""

    def test_manual_movement_requires_open_register(self, db_session, tenant_id, user_id):
        with pytest.raises(ConflictError):
            CashLedger(db_session).register_manual_movement(
                tenant_id, user_id,
                CashMovementCreate(type="EGRESO", amount=Decimal("10"), description="Pago a proveedor")
            )

    def test_list_movements_totals(self, db_session, tenant_id, user_id):
        CashRegisterService(db_session).open_cash_register(
            CashRegisterOpen(opening_amount=Decimal("100")), tenant_id, user_id
        )
        ledger = CashLedger(db_session)
        ledger.register_manual_movement(
            tenant_id, user_id, CashMovementCreate(type="INGRESO", amount=Decimal("50"), description="Cambio extra")
        )
        ledger.register_manual_movement(
            tenant_id, user_id, CashMovementCreate(type="EGRESO", amount=Decimal("30"), description="Compra de bolsas")
        )

        listing = ledger.list_movements(tenant_id)
        assert listing.total == 3
        assert listing.totals.ingresos == Decimal("150.00")
        assert listing.totals.egresos == Decimal("30.00")
        assert listing.totals.balance == Decimal("120.00")

        egresos = ledger.list_movements(tenant_id, movement_type="EGRESO")
        assert egresos.total == 1

    def test_record_rejects_non_positive_amounts(self, db_session, tenant_id, user_id):
        with pytest.raises(ValidationError):
            CashLedger(db_session).record(tenant_id, user_id, "INGRESO", "MANUAL", Decimal("0"))

    def test_record_rejects_closed_register(self, db_session, tenant_id, user_id):
        service = CashRegisterService(db_session)
        register = service.open_cash_register(CashRegisterOpen(opening_amount=Decimal("0")), tenant_id, user_id)
        service.close_cash_register(CashRegisterClose(closing_amount=Decimal("0")), tenant_id, user_id)
        db_session.refresh(register)

        with pytest.raises(ConflictError):
            CashLedger(db_session).record(tenant_id, user_id, "INGRESO", "MANUAL", Decimal("5"), register=register)


class TestPosAPI:

    def test_open_twice_returns_conflict(self, api_client, auth_headers):
        first = api_client.post("/api/v1/cash-registers/open", json={"opening_amount": "100"}, headers=auth_headers)
        second = api_client.post("/api/v1/cash-registers/open", json={"opening_amount": "200"}, headers=auth_headers)

        assert first.status_code == 201
        assert second.status_code == 409
        assert "error" in second.json()

    def test_close_and_list(self, api_client, auth_headers):
        api_client.post("/api/v1/cash-registers/open", json={"opening_amount": "100"}, headers=auth_headers)
        current = api_client.get("/api/v1/cash-registers/current", headers=auth_headers)
        assert current.status_code == 200
        assert Decimal(current.json()["balance"]) == Decimal("100")

        closed = api_client.post("/api/v1/cash-registers/close", json={"closing_amount": "90"}, headers=auth_headers)
        assert closed.status_code == 200
        assert Decimal(closed.json()["summary"]["difference"]) == Decimal("-10")

        listing = api_client.get("/api/v1/cash-registers?status=CLOSED", headers=auth_headers)
        assert listing.json()["total"] == 1
        assert api_client.get("/api/v1/cash-registers/current", headers=auth_headers).status_code == 404

    def test_seller_sees_only_own_movements(self, api_client, make_token):
        seller = {"Authorization": f"Bearer {make_token(role='VENDEDOR')}"}
        other = {"Authorization": f"Bearer {make_token(role='VENDEDOR', user=uuid4())}"}
        api_client.post("/api/v1/cash-registers/open", json={"opening_amount": "10"}, headers=seller)
        api_client.post("/api/v1/cash-registers/open", json={"opening_amount": "20"}, headers=other)

        response = api_client.post(
            "/api/v1/cash-movements",
            json={"type": "INGRESO", "amount": "5", "description": "Cambio"},
            headers=seller
        )
        assert response.status_code == 201

        listing = api_client.get("/api/v1/cash-movements", headers=seller).json()
        assert listing["total"] == 2
        assert Decimal(listing["totals"]["balance"]) == Decimal("15")

    def test_supervisor_cannot_open_register(self, api_client, make_token):
        headers = {"Authorization": f"Bearer {make_token(role='SUPERVISOR')}"}
        response = api_client.post("/api/v1/cash-registers/open", json={"opening_amount": "10"}, headers=headers)
        assert response.status_code == 403
