"""
Tests para el módulo de Ventas y Devoluciones

Cubren:
- Creación de ventas (stock, caja, cuenta corriente, pagos mixtos, descuentos)
- Validaciones previas sin efectos parciales
- Anulación con reversión de stock, caja y deuda
- Devoluciones con límites de monto y cantidad
- Endpoints REST, permisos y rate limiting
"""

import pytest
from unittest.mock import patch
from decimal import Decimal
from uuid import uuid4

from mostrador.core.config import settings
from mostrador.core.exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from mostrador.modules.clients.models import ClientStatus
from mostrador.modules.clients.service import ClientCreditLedger
from mostrador.modules.pos.models import CashMovement, CashMovementConcept, CashMovementType
from mostrador.modules.pos.schemas import CashRegisterOpen, CashRegisterClose
from mostrador.modules.pos.services import CashLedger, CashRegisterService
from mostrador.modules.products.models import StockMovement, StockMovementType
from mostrador.modules.sales.models import Refund, Sale, SaleStatus
from mostrador.modules.sales.refunds import RefundService
from mostrador.modules.sales.schemas import (
    SaleCreate, SaleItemCreate, SalePaymentCreate, SaleCancel, RefundCreate, RefundItemCreate
)
from mostrador.modules.sales.service import SaleService


# ===== HELPERS =====

def open_register(db_session, tenant_id, user_id, amount="1000.00"):
    return CashRegisterService(db_session).open_cash_register(
        CashRegisterOpen(opening_amount=Decimal(amount)), tenant_id, user_id
    )


def sale_payload(product, quantity=1, unit_price="100.00", total=None, **kwargs):
    unit_price = Decimal(unit_price)
    data = {
        "items": [SaleItemCreate(product_id=product.id, quantity=quantity, unit_price=unit_price)],
        "payment_method": "EFECTIVO",
        "total": Decimal(total) if total is not None else unit_price * quantity,
    }
    data.update(kwargs)
    return SaleCreate(**data)


def refund_payload(sale, quantity, amount, **kwargs):
    item = sale.items[0]
    data = {
        "type": "PARCIAL",
        "reason": "Producto con fallas de fábrica",
        "refund_amount": Decimal(amount),
        "items": [RefundItemCreate(
            sale_item_id=item.id,
            quantity=quantity,
            price=item.price,
            subtotal=item.price * quantity,
        )],
    }
    data.update(kwargs)
    return RefundCreate(**data)


def movements_for(db_session, reference, movement_type=None):
    query = db_session.query(CashMovement).filter(CashMovement.reference == str(reference))
    if movement_type:
        query = query.filter(CashMovement.type == movement_type)
    return query.all()


# ===== ESCENARIOS =====

class TestScenarios:
    """Recorridos completos de caja, venta, anulación y devolución"""

    def test_cash_day_balances(self, db_session, tenant_id, user_id, make_product):
        """Apertura 1000, venta en efectivo 500, cierre contando 1500: diferencia 0"""
        product = make_product(stock=10, price="500.00")
        open_register(db_session, tenant_id, user_id, "1000.00")

        SaleService(db_session).create_sale(sale_payload(product, 1, "500.00"), tenant_id, user_id)

        closed = CashRegisterService(db_session).close_cash_register(
            CashRegisterClose(closing_amount=Decimal("1500.00")), tenant_id, user_id
        )
        assert closed.summary.expected_amount == Decimal("1500.00")
        assert closed.summary.difference == Decimal("0.00")
        assert closed.summary.total_cash == Decimal("500.00")
        assert closed.summary.sales_count == 1
        assert closed.register.status == "CLOSED"

    def test_cancel_restores_stock_and_cash(self, db_session, tenant_id, user_id, make_product):
        """Stock 10, venta de 3 -> 7; anulación -> 10 con EGRESO de 300"""
        product = make_product(stock=10, price="100.00")
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)

        sale = service.create_sale(sale_payload(product, 3, "100.00"), tenant_id, user_id)
        db_session.refresh(product)
        assert product.stock == 7

        reason = "Cliente se arrepintió de la compra"
        canceled = service.cancel_sale(sale.id, SaleCancel(reason=reason), tenant_id, user_id)
        db_session.refresh(product)

        assert product.stock == 10
        assert canceled.status == SaleStatus.CANCELADO
        assert canceled.cancel_reason == reason
        assert canceled.canceled_by == user_id

        egresos = movements_for(db_session, sale.id, CashMovementType.EGRESO)
        assert len(egresos) == 1
        assert egresos[0].concept == CashMovementConcept.ANULACION_VENTA
        assert egresos[0].amount == Decimal("300.00")

        venta = movements_for(db_session, sale.id, CashMovementType.INGRESO)[0]
        assert venta.description == f"ANULADO - {reason}"

    def test_credit_sale_marks_client_delinquent(self, db_session, tenant_id, user_id, make_product, make_client):
        """Venta en cuenta corriente de 1000 con límite 500: deuda 1000 y DELINQUENT"""
        product = make_product(stock=5, price="1000.00")
        client = make_client(credit_limit="500.00")

        sale = SaleService(db_session).create_sale(
            sale_payload(product, 1, "1000.00", payment_method="CUENTA_CORRIENTE", client_id=client.id),
            tenant_id, user_id
        )
        db_session.refresh(client)

        assert sale.cash_register_id is None
        assert client.current_debt == Decimal("1000.00")
        assert client.status == ClientStatus.DELINQUENT
        assert movements_for(db_session, sale.id) == []

    def test_partial_refunds_respect_sold_quantity(self, db_session, tenant_id, user_id, make_product):
        """Venta de 5; devolver 3 funciona; otras 3 se rechazan con máximo 2"""
        product = make_product(stock=10, price="100.00")
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 5, "100.00"), tenant_id, user_id)
        refunds = RefundService(db_session)

        refunds.create_refund(sale.id, refund_payload(sale, 3, "300.00"), tenant_id, user_id)
        db_session.refresh(sale)
        assert sale.status == SaleStatus.PARCIALMENTE_REEMBOLSADO

        with pytest.raises(ConflictError) as exc:
            refunds.create_refund(sale.id, refund_payload(sale, 3, "100.00"), tenant_id, user_id)
        assert exc.value.extra["max_refundable"] == 2

        db_session.refresh(product)
        assert product.stock == 8

    def test_second_open_register_is_rejected(self, db_session, tenant_id, user_id):
        """Una sola caja abierta por usuario; el segundo intento no crea filas"""
        from mostrador.modules.pos.models import CashRegister

        open_register(db_session, tenant_id, user_id, "100.00")
        with pytest.raises(ConflictError):
            open_register(db_session, tenant_id, user_id, "200.00")

        assert db_session.query(CashRegister).count() == 1
        assert db_session.query(CashMovement).count() == 1


# ===== CREACIÓN DE VENTAS =====

class TestCreateSale:
    """Tests para SaleService.create_sale"""

    def test_sale_writes_stock_movements_with_sale_reference(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=4)
        open_register(db_session, tenant_id, user_id)

        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)

        movements = db_session.query(StockMovement).filter(StockMovement.reference == str(sale.id)).all()
        assert len(movements) == 1
        assert movements[0].type == StockMovementType.SALIDA
        assert movements[0].previous_stock == 4
        assert movements[0].new_stock == 2

    def test_sale_records_cash_income(self, db_session, tenant_id, user_id, make_product):
        product = make_product()
        register = open_register(db_session, tenant_id, user_id)

        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)

        ingresos = movements_for(db_session, sale.id, CashMovementType.INGRESO)
        assert len(ingresos) == 1
        assert ingresos[0].concept == CashMovementConcept.VENTA
        assert ingresos[0].cash_register_id == register.id
        assert ingresos[0].amount == Decimal("200.00")
        assert sale.cash_register_id == register.id

    def test_ticket_numbers_are_sequential_per_tenant(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        other_product = make_product(stock=10, tenant=uuid4())
        open_register(db_session, tenant_id, user_id)
        open_register(db_session, other_product.tenant_id, user_id)
        service = SaleService(db_session)

        first = service.create_sale(sale_payload(product), tenant_id, user_id)
        second = service.create_sale(sale_payload(product), tenant_id, user_id)
        foreign = service.create_sale(sale_payload(other_product), other_product.tenant_id, user_id)

        assert (first.ticket_number, second.ticket_number) == (1, 2)
        assert foreign.ticket_number == 1

    def test_total_mismatch_is_rejected_without_side_effects(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)

        with pytest.raises(ValidationError) as exc:
            SaleService(db_session).create_sale(sale_payload(product, 2, total="150.00"), tenant_id, user_id)

        assert exc.value.details[0]["field"] == "total"
        db_session.refresh(product)
        assert product.stock == 10
        assert db_session.query(Sale).count() == 0

    def test_rounding_within_tolerance_is_accepted(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)

        sale = SaleService(db_session).create_sale(
            sale_payload(product, 3, "33.33", total="100.00"), tenant_id, user_id
        )
        assert sale.total == Decimal("99.99")

    def test_percentage_discount(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)

        sale = SaleService(db_session).create_sale(
            sale_payload(product, 2, "100.00", total="180.00", discount=Decimal("10"), discount_type="percentage"),
            tenant_id, user_id
        )
        assert sale.subtotal == Decimal("200.00")
        assert sale.discount == Decimal("20.00")
        assert sale.total == Decimal("180.00")

    def test_fixed_discount_floors_total_at_zero(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)

        sale = SaleService(db_session).create_sale(
            sale_payload(product, 1, "100.00", total="0", discount=Decimal("150")),
            tenant_id, user_id
        )
        assert sale.total == Decimal("0.00")
        assert movements_for(db_session, sale.id) == []

    def test_requires_open_register(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)

        with pytest.raises(ConflictError):
            SaleService(db_session).create_sale(sale_payload(product), tenant_id, user_id)

        db_session.refresh(product)
        assert product.stock == 10

    def test_insufficient_stock_is_conflict(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=2)
        open_register(db_session, tenant_id, user_id)

        with pytest.raises(ConflictError) as exc:
            SaleService(db_session).create_sale(sale_payload(product, 3), tenant_id, user_id)

        assert exc.value.extra == {"product_id": str(product.id), "available": 2, "requested": 3}
        db_session.refresh(product)
        assert product.stock == 2

    def test_stock_check_adds_repeated_lines(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=3)
        open_register(db_session, tenant_id, user_id)
        data = SaleCreate(
            items=[
                SaleItemCreate(product_id=product.id, quantity=2, unit_price=Decimal("100")),
                SaleItemCreate(product_id=product.id, quantity=2, unit_price=Decimal("100")),
            ],
            payment_method="EFECTIVO",
            total=Decimal("400"),
        )

        with pytest.raises(ConflictError):
            SaleService(db_session).create_sale(data, tenant_id, user_id)

    def test_inactive_product_is_rejected(self, db_session, tenant_id, user_id, make_product):
        product = make_product(is_active=False)
        open_register(db_session, tenant_id, user_id)

        with pytest.raises(ValidationError):
            SaleService(db_session).create_sale(sale_payload(product), tenant_id, user_id)

    def test_product_from_other_tenant_is_not_found(self, db_session, tenant_id, user_id, make_product):
        product = make_product(tenant=uuid4())
        open_register(db_session, tenant_id, user_id)

        with pytest.raises(NotFoundError):
            SaleService(db_session).create_sale(sale_payload(product), tenant_id, user_id)

    def test_variant_sale_decrements_variant_stock(self, db_session, tenant_id, user_id, make_product, make_variant):
        product = make_product(name="Remera", stock=10)
        variant = make_variant(product, name="Talle M", stock=4)
        open_register(db_session, tenant_id, user_id)
        data = SaleCreate(
            items=[SaleItemCreate(product_id=product.id, variant_id=variant.id, quantity=3, unit_price=Decimal("50"))],
            payment_method="EFECTIVO",
            total=Decimal("150"),
        )

        sale = SaleService(db_session).create_sale(data, tenant_id, user_id)
        db_session.refresh(product)
        db_session.refresh(variant)

        assert variant.stock == 1
        assert product.stock == 10
        assert sale.items[0].product_name == "Remera - Talle M"

    def test_credit_sale_requires_client(self, db_session, tenant_id, user_id, make_product):
        product = make_product()

        with pytest.raises(ValidationError):
            SaleService(db_session).create_sale(
                sale_payload(product, payment_method="CUENTA_CORRIENTE"), tenant_id, user_id
            )

    def test_credit_sale_requires_credit_account(self, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=5)
        client = make_client(has_credit_account=False)

        with pytest.raises(ValidationError):
            SaleService(db_session).create_sale(
                sale_payload(product, payment_method="CUENTA_CORRIENTE", client_id=client.id),
                tenant_id, user_id
            )
        db_session.refresh(product)
        assert product.stock == 5

    def test_unknown_client_is_not_found(self, db_session, tenant_id, user_id, make_product):
        product = make_product()
        open_register(db_session, tenant_id, user_id)

        with pytest.raises(NotFoundError):
            SaleService(db_session).create_sale(sale_payload(product, client_id=uuid4()), tenant_id, user_id)

    def test_mixed_payment_is_split_at_close(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id, "0")
        data = sale_payload(
            product, 1, "1000.00",
            payment_method="MIXTO",
            payments=[
                SalePaymentCreate(method="EFECTIVO", amount=Decimal("400")),
                SalePaymentCreate(method="TARJETA_DEBITO", amount=Decimal("600")),
            ],
        )

        sale = SaleService(db_session).create_sale(data, tenant_id, user_id)
        assert sale.has_mixed_payment is True
        assert len(sale.payments) == 2

        closed = CashRegisterService(db_session).close_cash_register(
            CashRegisterClose(closing_amount=Decimal("400")), tenant_id, user_id
        )
        assert closed.summary.total_cash == Decimal("400.00")
        assert closed.summary.total_card == Decimal("600.00")
        assert closed.summary.difference == Decimal("0.00")


class TestSaleSchemas:
    """Validaciones del esquema de entrada"""

    def test_payments_must_add_up_to_total(self):
        with pytest.raises(ValueError):
            SaleCreate(
                items=[SaleItemCreate(product_id=uuid4(), quantity=1, unit_price=Decimal("100"))],
                payment_method="MIXTO",
                total=Decimal("100"),
                payments=[
                    SalePaymentCreate(method="EFECTIVO", amount=Decimal("30")),
                    SalePaymentCreate(method="QR", amount=Decimal("30")),
                ],
            )

    def test_credit_account_is_not_a_split_part(self):
        with pytest.raises(ValueError):
            SaleCreate(
                items=[SaleItemCreate(product_id=uuid4(), quantity=1, unit_price=Decimal("100"))],
                payment_method="MIXTO",
                total=Decimal("100"),
                payments=[
                    SalePaymentCreate(method="EFECTIVO", amount=Decimal("50")),
                    SalePaymentCreate(method="CUENTA_CORRIENTE", amount=Decimal("50")),
                ],
            )

    def test_split_payments_require_mixed_method(self):
        with pytest.raises(ValueError):
            SaleCreate(
                items=[SaleItemCreate(product_id=uuid4(), quantity=1, unit_price=Decimal("100"))],
                payment_method="EFECTIVO",
                total=Decimal("100"),
                payments=[SalePaymentCreate(method="EFECTIVO", amount=Decimal("100"))],
            )

    def test_too_many_split_parts(self):
        with pytest.raises(ValueError):
            SaleCreate(
                items=[SaleItemCreate(product_id=uuid4(), quantity=1, unit_price=Decimal("90"))],
                payment_method="MIXTO",
                total=Decimal("90"),
                payments=[SalePaymentCreate(method="EFECTIVO", amount=Decimal("30"))] * 3,
            )

    def test_short_cancel_reason(self):
        with pytest.raises(ValueError):
            SaleCancel(reason="corto")


# ===== ANULACIÓN =====

class TestCancelSale:
    """Tests para SaleService.cancel_sale"""

    def test_second_cancel_is_conflict(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)
        sale = service.create_sale(sale_payload(product, 2), tenant_id, user_id)
        service.cancel_sale(sale.id, SaleCancel(reason="Error de carga en caja"), tenant_id, user_id)

        with pytest.raises(ConflictError):
            service.cancel_sale(sale.id, SaleCancel(reason="Error de carga en caja"), tenant_id, user_id)

        db_session.refresh(product)
        assert product.stock == 5
        assert len(movements_for(db_session, sale.id, CashMovementType.EGRESO)) == 1

    def test_refunded_sale_cannot_be_canceled(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)
        sale = service.create_sale(sale_payload(product, 2), tenant_id, user_id)
        RefundService(db_session).create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)

        with pytest.raises(ConflictError):
            service.cancel_sale(sale.id, SaleCancel(reason="Error de carga en caja"), tenant_id, user_id)

    def test_cancel_credit_sale_reverts_debt(self, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=5)
        client = make_client(credit_limit="500.00")
        service = SaleService(db_session)
        sale = service.create_sale(
            sale_payload(product, 1, "800.00", payment_method="CUENTA_CORRIENTE", client_id=client.id),
            tenant_id, user_id
        )
        db_session.refresh(client)
        assert client.status == ClientStatus.DELINQUENT

        service.cancel_sale(sale.id, SaleCancel(reason="Venta cargada al cliente equivocado"), tenant_id, user_id)
        db_session.refresh(client)

        assert client.current_debt == Decimal("0.00")
        assert client.status == ClientStatus.ACTIVE
        assert movements_for(db_session, sale.id) == []

    def test_cancel_without_open_register_books_tenant_movement(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)
        sale = service.create_sale(sale_payload(product, 1), tenant_id, user_id)
        CashRegisterService(db_session).close_cash_register(
            CashRegisterClose(closing_amount=Decimal("1100")), tenant_id, user_id
        )

        service.cancel_sale(sale.id, SaleCancel(reason="Anulación posterior al cierre"), tenant_id, user_id)

        egreso = movements_for(db_session, sale.id, CashMovementType.EGRESO)[0]
        assert egreso.cash_register_id is None

    def test_unknown_sale(self, db_session, tenant_id, user_id):
        with pytest.raises(NotFoundError):
            SaleService(db_session).cancel_sale(uuid4(), SaleCancel(reason="No existe esta venta"), tenant_id, user_id)


# ===== DEVOLUCIONES =====

class TestRefunds:
    """Tests para RefundService"""

    def test_full_refund_marks_sale_refunded(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)

        refund = RefundService(db_session).create_refund(
            sale.id, refund_payload(sale, 2, "200.00", type="TOTAL"), tenant_id, user_id
        )
        db_session.refresh(sale)
        db_session.refresh(product)

        assert sale.status == SaleStatus.REEMBOLSADO
        assert product.stock == 5
        egreso = movements_for(db_session, refund.id, CashMovementType.EGRESO)
        assert len(egreso) == 1
        assert egreso[0].concept == CashMovementConcept.DEVOLUCION
        restock = db_session.query(StockMovement).filter(StockMovement.reference == str(refund.id)).all()
        assert [m.type for m in restock] == [StockMovementType.ENTRADA]

    def test_refunded_sale_rejects_more_refunds(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)
        refunds = RefundService(db_session)
        refunds.create_refund(sale.id, refund_payload(sale, 1, "200.00"), tenant_id, user_id)

        with pytest.raises(ConflictError):
            refunds.create_refund(sale.id, refund_payload(sale, 1, "1.00"), tenant_id, user_id)

    def test_amount_over_remaining_total(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 3), tenant_id, user_id)
        refunds = RefundService(db_session)
        refunds.create_refund(sale.id, refund_payload(sale, 1, "250.00"), tenant_id, user_id)

        with pytest.raises(ConflictError) as exc:
            refunds.create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)

        assert Decimal(exc.value.extra["max_refundable"]) == Decimal("50.00")

    def test_canceled_sale_cannot_be_refunded(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)
        sale = service.create_sale(sale_payload(product, 1), tenant_id, user_id)
        service.cancel_sale(sale.id, SaleCancel(reason="Error de carga en caja"), tenant_id, user_id)

        with pytest.raises(ConflictError):
            RefundService(db_session).create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)

    def test_item_from_other_sale_is_rejected(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)
        sale = service.create_sale(sale_payload(product, 1), tenant_id, user_id)
        other = service.create_sale(sale_payload(product, 1), tenant_id, user_id)

        with pytest.raises(ValidationError):
            RefundService(db_session).create_refund(sale.id, refund_payload(other, 1, "100.00"), tenant_id, user_id)

    def test_without_restock_keeps_stock(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)

        RefundService(db_session).create_refund(
            sale.id, refund_payload(sale, 1, "100.00", restock_items=False), tenant_id, user_id
        )
        db_session.refresh(product)
        assert product.stock == 3

    def test_strict_policy_requires_matching_amount(self, db_session, tenant_id, user_id, make_product, monkeypatch):
        monkeypatch.setattr(settings, "REFUND_AMOUNT_POLICY", "strict")
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)

        with pytest.raises(ValidationError):
            RefundService(db_session).create_refund(sale.id, refund_payload(sale, 1, "150.00"), tenant_id, user_id)

        refund = RefundService(db_session).create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)
        assert refund.refund_amount == Decimal("100.00")

    def test_credit_sale_refund_lowers_debt(self, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=5)
        client = make_client(credit_limit="1000.00")
        sale = SaleService(db_session).create_sale(
            sale_payload(product, 2, "300.00", payment_method="CUENTA_CORRIENTE", client_id=client.id),
            tenant_id, user_id
        )

        RefundService(db_session).create_refund(sale.id, refund_payload(sale, 1, "300.00"), tenant_id, user_id)
        db_session.refresh(client)

        assert client.current_debt == Decimal("300.00")
        assert db_session.query(CashMovement).count() == 0

    def test_list_refunds_for_sale(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 3), tenant_id, user_id)
        refunds = RefundService(db_session)
        refunds.create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)
        refunds.create_refund(sale.id, refund_payload(sale, 1, "80.00"), tenant_id, user_id)

        listing = refunds.list_refunds_for_sale(tenant_id, sale.id)
        assert listing.total == 2
        assert listing.total_refunded == Decimal("180.00")

        tenant_listing = refunds.list_refunds(tenant_id, refund_type="PARCIAL")
        assert tenant_listing.total == 2


# ===== ATOMICIDAD =====

class TestRollback:
    """Una falla a mitad de la transacción deshace stock, caja, deuda y la venta/devolución"""

    def test_create_sale_cash_failure(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)

        with patch.object(CashLedger, "record", side_effect=RuntimeError("caja no disponible")):
            with pytest.raises(InternalError):
                SaleService(db_session).create_sale(sale_payload(product, 3), tenant_id, user_id)

        db_session.refresh(product)
        assert product.stock == 10
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(CashMovement).filter(CashMovement.type == CashMovementType.INGRESO).count() == 0

    def test_create_credit_sale_debt_failure(self, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=10)
        client = make_client(current_debt="50.00")

        with patch.object(ClientCreditLedger, "apply_debt_delta", side_effect=RuntimeError("sin conexión")):
            with pytest.raises(InternalError):
                SaleService(db_session).create_sale(
                    sale_payload(product, 2, payment_method="CUENTA_CORRIENTE", client_id=client.id),
                    tenant_id, user_id
                )

        db_session.refresh(product)
        db_session.refresh(client)
        assert product.stock == 10
        assert client.current_debt == Decimal("50.00")
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_cancel_sale_cash_failure(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)
        sale = service.create_sale(sale_payload(product, 2), tenant_id, user_id)

        with patch.object(CashLedger, "record", side_effect=RuntimeError("caja no disponible")):
            with pytest.raises(InternalError):
                service.cancel_sale(sale.id, SaleCancel(reason="Error de carga en caja"), tenant_id, user_id)

        db_session.refresh(product)
        db_session.refresh(sale)
        assert product.stock == 8
        assert sale.status == SaleStatus.COMPLETADO
        assert db_session.query(StockMovement).count() == 1
        venta = movements_for(db_session, sale.id, CashMovementType.INGRESO)[0]
        assert not venta.description.startswith("ANULADO")
        assert movements_for(db_session, sale.id, CashMovementType.EGRESO) == []

    def test_refund_cash_failure(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)

        with patch.object(CashLedger, "record", side_effect=RuntimeError("caja no disponible")):
            with pytest.raises(InternalError):
                RefundService(db_session).create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)

        db_session.refresh(product)
        db_session.refresh(sale)
        assert product.stock == 8
        assert sale.status == SaleStatus.COMPLETADO
        assert db_session.query(Refund).count() == 0
        assert db_session.query(StockMovement).count() == 1


# ===== ORDEN DE BLOQUEO =====

def spy_locks(monkeypatch, service):
    """Registra en orden los bloqueos y deltas que hace un servicio."""
    calls = []

    def spy(obj, name, label):
        original = getattr(obj, name)

        def wrapper(*args, **kwargs):
            calls.append(label)
            return original(*args, **kwargs)
        monkeypatch.setattr(obj, name, wrapper)

    spy(service.credit, "get_client", "cliente")
    spy(service.cash, "find_open_register", "caja")
    spy(service.inventory, "lock_products", "productos")
    spy(service.inventory, "apply_delta", "delta")
    return calls


def first_seen(calls):
    seen = []
    for call in calls:
        if call not in seen:
            seen.append(call)
    return seen


class TestLockOrder:
    """Ventas, anulaciones y devoluciones bloquean cliente o caja antes que los productos"""

    def test_credit_sale(self, monkeypatch, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=10)
        client = make_client()
        service = SaleService(db_session)
        calls = spy_locks(monkeypatch, service)

        service.create_sale(
            sale_payload(product, 1, payment_method="CUENTA_CORRIENTE", client_id=client.id), tenant_id, user_id
        )

        assert first_seen(calls) == ["cliente", "caja", "productos", "delta"]

    def test_cancel_locks_every_product_before_restocking(self, monkeypatch, db_session, tenant_id, user_id,
                                                          make_product, make_client):
        first = make_product(name="Yerba", stock=10)
        second = make_product(name="Azúcar", stock=10)
        client = make_client(credit_limit="5000.00")
        service = SaleService(db_session)
        sale = service.create_sale(
            SaleCreate(
                items=[
                    SaleItemCreate(product_id=second.id, quantity=1, unit_price=Decimal("10")),
                    SaleItemCreate(product_id=first.id, quantity=1, unit_price=Decimal("10")),
                ],
                payment_method="CUENTA_CORRIENTE",
                client_id=client.id,
                total=Decimal("20"),
            ),
            tenant_id, user_id
        )
        calls = spy_locks(monkeypatch, service)

        service.cancel_sale(sale.id, SaleCancel(reason="Venta cargada al cliente equivocado"), tenant_id, user_id)

        assert calls == ["cliente", "productos", "delta", "delta"]

    def test_cash_refund(self, monkeypatch, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=10)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 2), tenant_id, user_id)
        service = RefundService(db_session)
        calls = spy_locks(monkeypatch, service)

        service.create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)

        assert calls == ["caja", "productos", "delta"]


# ===== CONSULTAS =====

class TestReadSales:

    def test_get_sale_includes_refunded_amount(self, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=5)
        client = make_client(name="Kiosco La Esquina")
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product, 2, client_id=client.id), tenant_id, user_id)
        RefundService(db_session).create_refund(sale.id, refund_payload(sale, 1, "100.00"), tenant_id, user_id)

        detail = SaleService(db_session).get_sale(tenant_id, sale.id)
        assert detail.refunded_amount == Decimal("100.00")
        assert detail.client_name == "Kiosco La Esquina"
        assert detail.status == "PARCIALMENTE_REEMBOLSADO"

    def test_seller_only_sees_own_sales(self, db_session, tenant_id, user_id, make_product):
        product = make_product(stock=5)
        open_register(db_session, tenant_id, user_id)
        sale = SaleService(db_session).create_sale(sale_payload(product), tenant_id, user_id)

        with pytest.raises(NotFoundError):
            SaleService(db_session).get_sale(tenant_id, sale.id, only_user=uuid4())

    def test_list_sales_filters(self, db_session, tenant_id, user_id, make_product, make_client):
        product = make_product(stock=10)
        client = make_client()
        open_register(db_session, tenant_id, user_id)
        service = SaleService(db_session)
        service.create_sale(sale_payload(product), tenant_id, user_id)
        service.create_sale(sale_payload(product, payment_method="QR"), tenant_id, user_id)
        service.create_sale(
            sale_payload(product, payment_method="CUENTA_CORRIENTE", client_id=client.id), tenant_id, user_id
        )

        assert service.list_sales(tenant_id).total == 3
        assert service.list_sales(tenant_id, payment_method="QR").total == 1
        assert service.list_sales(tenant_id, client_id=client.id).total == 1
        assert service.list_sales(tenant_id, status="CANCELADO").total == 0
        assert service.list_sales(uuid4()).total == 0


# ===== ENDPOINTS =====

class TestSalesAPI:
    """Tests de integración de los endpoints de ventas"""

    def _open(self, api_client, headers, amount="1000"):
        response = api_client.post("/api/v1/cash-registers/open", json={"opening_amount": amount}, headers=headers)
        assert response.status_code == 201

    def _sale_body(self, product, quantity=1, total="100.00"):
        return {
            "items": [{"product_id": str(product.id), "quantity": quantity, "unit_price": "100.00"}],
            "payment_method": "EFECTIVO",
            "total": total,
        }

    def test_create_and_get_sale(self, api_client, auth_headers, make_product):
        product = make_product(stock=5)
        self._open(api_client, auth_headers)

        response = api_client.post("/api/v1/sales", json=self._sale_body(product, 2, "200.00"), headers=auth_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["ticket_number"] == 1
        assert body["status"] == "COMPLETADO"
        assert Decimal(body["total"]) == Decimal("200.00")

        detail = api_client.get(f"/api/v1/sales/{body['id']}", headers=auth_headers)
        assert detail.status_code == 200
        assert Decimal(detail.json()["refunded_amount"]) == Decimal("0")

    def test_total_mismatch_error_envelope(self, api_client, auth_headers, make_product):
        product = make_product(stock=5)
        self._open(api_client, auth_headers)

        response = api_client.post("/api/v1/sales", json=self._sale_body(product, 1, "90.00"), headers=auth_headers)
        assert response.status_code == 400
        body = response.json()
        assert "error" in body
        assert body["details"][0]["field"] == "total"

    def test_invalid_body_is_400(self, api_client, auth_headers):
        response = api_client.post("/api/v1/sales", json={"items": [], "payment_method": "EFECTIVO", "total": "0"},
                                   headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Datos inválidos"

    def test_missing_token_is_401(self, api_client):
        response = api_client.get("/api/v1/sales")
        assert response.status_code == 401

    def test_seller_cannot_cancel(self, api_client, make_token, make_product):
        product = make_product(stock=5)
        headers = {"Authorization": f"Bearer {make_token(role='VENDEDOR')}"}
        self._open(api_client, headers)
        sale = api_client.post("/api/v1/sales", json=self._sale_body(product), headers=headers).json()

        response = api_client.post(
            f"/api/v1/sales/{sale['id']}/cancel",
            json={"reason": "Quiero anular esta venta"},
            headers=headers
        )
        assert response.status_code == 403

    def test_cancel_and_refund_endpoints(self, api_client, auth_headers, make_product):
        product = make_product(stock=5)
        self._open(api_client, auth_headers)
        first = api_client.post("/api/v1/sales", json=self._sale_body(product, 2, "200.00"), headers=auth_headers).json()
        second = api_client.post("/api/v1/sales", json=self._sale_body(product, 1), headers=auth_headers).json()

        canceled = api_client.post(
            f"/api/v1/sales/{second['id']}/cancel",
            json={"reason": "Error de carga en caja"},
            headers=auth_headers
        )
        assert canceled.status_code == 200
        assert canceled.json()["status"] == "CANCELADO"

        again = api_client.post(
            f"/api/v1/sales/{second['id']}/cancel",
            json={"reason": "Error de carga en caja"},
            headers=auth_headers
        )
        assert again.status_code == 409

        item_id = first["items"][0]["id"]
        refund_body = {
            "type": "PARCIAL",
            "reason": "Producto con fallas de fábrica",
            "refund_amount": "100.00",
            "items": [{"sale_item_id": item_id, "quantity": 1, "price": "100.00", "subtotal": "100.00"}],
        }
        created = api_client.post(f"/api/v1/sales/{first['id']}/refunds", json=refund_body, headers=auth_headers)
        assert created.status_code == 201

        refund_body["items"][0]["quantity"] = 2
        refund_body["refund_amount"] = "50.00"
        rejected = api_client.post(f"/api/v1/sales/{first['id']}/refunds", json=refund_body, headers=auth_headers)
        assert rejected.status_code == 409
        assert rejected.json()["max_refundable"] == 1

        listing = api_client.get(f"/api/v1/sales/{first['id']}/refunds", headers=auth_headers)
        assert listing.json()["total"] == 1
        assert api_client.get("/api/v1/refunds", headers=auth_headers).json()["total"] == 1

    def test_create_sale_is_rate_limited(self, api_client, auth_headers, make_product, monkeypatch):
        monkeypatch.setattr(settings, "SALES_RATE_LIMIT_REQUESTS", 2)
        product = make_product(stock=10)
        self._open(api_client, auth_headers)

        for _ in range(2):
            assert api_client.post("/api/v1/sales", json=self._sale_body(product), headers=auth_headers).status_code == 201

        response = api_client.post("/api/v1/sales", json=self._sale_body(product), headers=auth_headers)
        assert response.status_code == 429
        assert "Retry-After" in response.headers
        assert response.json()["retry_after"] >= 1
