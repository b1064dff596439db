"""
Tests para el módulo de Clientes y Cuenta Corriente

- Libro de deuda: piso en 0 y estado DELINQUENT bidireccional
- Alta, edición, límite de crédito y pagos
- Endpoints y aislamiento por negocio
"""

import pytest
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

from mostrador.core.exceptions import ConflictError, NotFoundError
from mostrador.modules.clients.models import ClientActivityLog, ClientStatus
from mostrador.modules.clients.schemas import ClientCreate, ClientUpdate, CreditLimitUpdate, ClientPaymentCreate
from mostrador.modules.clients.service import ClientCreditLedger, ClientService


class TestClientCreditLedger:
    """Tests para ClientCreditLedger.apply_debt_delta"""

    def test_debt_over_limit_is_delinquent(self, db_session, tenant_id, make_client):
        client = make_client(credit_limit="500.00")
        ledger = ClientCreditLedger(db_session)

        previous, new = ledger.apply_debt_delta(ledger.lock_client(tenant_id, client.id), Decimal("600"))

        assert (previous, new) == (Decimal("0.00"), Decimal("600.00"))
        assert client.status == ClientStatus.DELINQUENT

    def test_debt_equal_to_limit_is_active(self, db_session, tenant_id, make_client):
        client = make_client(credit_limit="500.00")
        ClientCreditLedger(db_session).apply_debt_delta(client, Decimal("500"))
        assert client.status == ClientStatus.ACTIVE

    def test_debt_floors_at_zero(self, db_session, tenant_id, make_client):
        client = make_client(current_debt="100.00")
        _, new = ClientCreditLedger(db_session).apply_debt_delta(client, Decimal("-250"))
        assert new == Decimal("0.00")
        assert client.current_debt == Decimal("0.00")

    def test_lock_client_of_other_tenant(self, db_session, make_client):
        client = make_client(tenant=uuid4())
        with pytest.raises(NotFoundError):
            ClientCreditLedger(db_session).lock_client(uuid4(), client.id)


class TestClientService:
    """Tests para ClientService"""

    def test_create_client(self, db_session, tenant_id, user_id):
        client = ClientService(db_session).create_client(
            tenant_id,
            ClientCreate(name="  Ferretería Central ", email="compras@central.com",
                         has_credit_account=True, credit_limit=Decimal("2000")),
            user_id
        )
        assert client.name == "Ferretería Central"
        assert client.current_debt == Decimal("0.00")
        assert client.status == ClientStatus.ACTIVE

    def test_duplicated_email_is_conflict(self, db_session, tenant_id, user_id):
        service = ClientService(db_session)
        service.create_client(tenant_id, ClientCreate(name="Cliente Uno", email="uno@mail.com"), user_id)

        with pytest.raises(ConflictError):
            service.create_client(tenant_id, ClientCreate(name="Cliente Dos", email="UNO@mail.com"), user_id)

    def test_credit_limit_change_recomputes_status(self, db_session, tenant_id, user_id, make_client):
        client = make_client(credit_limit="1000.00", current_debt="800.00")
        service = ClientService(db_session)

        lowered = service.update_credit_limit(tenant_id, client.id, CreditLimitUpdate(credit_limit=Decimal("500")), user_id)
        assert lowered.status == ClientStatus.DELINQUENT

        raised = service.update_credit_limit(tenant_id, client.id, CreditLimitUpdate(credit_limit=Decimal("900")), user_id)
        assert raised.status == ClientStatus.ACTIVE

        actions = [log.action for log in db_session.query(ClientActivityLog).all()]
        assert actions.count("CREDIT_LIMIT_CHANGE") == 2

    def test_payment_reduces_debt_and_restores_status(self, db_session, tenant_id, user_id, make_client):
        client = make_client(credit_limit="500.00", current_debt="700.00")
        client.status = ClientStatus.DELINQUENT
        db_session.commit()

        result = ClientService(db_session).register_payment(
            tenant_id, client.id,
            ClientPaymentCreate(amount=Decimal("300"), payment_method="EFECTIVO", reference="REC-1"),
            user_id
        )

        assert result.client.current_debt == Decimal("400.00")
        assert result.client.status == ClientStatus.ACTIVE
        assert result.payment.amount == Decimal("300.00")

    def test_overpayment_floors_debt(self, db_session, tenant_id, user_id, make_client):
        client = make_client(current_debt="50.00")
        result = ClientService(db_session).register_payment(
            tenant_id, client.id, ClientPaymentCreate(amount=Decimal("80"), payment_method="QR"), user_id
        )
        assert result.client.current_debt == Decimal("0.00")

    def test_payment_queues_receipt_for_clients_with_email(self, db_session, tenant_id, user_id, make_client):
        client = make_client(email="cliente@mail.com", current_debt="100.00")

        with patch("mostrador.modules.clients.service.queue_client_payment_receipt") as queue:
            ClientService(db_session).register_payment(
                tenant_id, client.id, ClientPaymentCreate(amount=Decimal("10"), payment_method="EFECTIVO"), user_id
            )

        queue.assert_called_once()

    def test_list_payments_totals(self, db_session, tenant_id, user_id, make_client):
        client = make_client(current_debt="100.00")
        service = ClientService(db_session)
        for amount in ("10", "15"):
            service.register_payment(
                tenant_id, client.id, ClientPaymentCreate(amount=Decimal(amount), payment_method="EFECTIVO"), user_id
            )

        payments = service.list_payments(tenant_id, client.id)
        assert payments.total == 2
        assert payments.total_paid == Decimal("25.00")

    def test_update_logs_activity(self, db_session, tenant_id, user_id, make_client):
        client = make_client()
        service = ClientService(db_session)

        updated = service.update_client(tenant_id, client.id, ClientUpdate(phone="11-5555-1234"), user_id)

        assert updated.phone == "11-5555-1234"
        activity = service.list_activity(tenant_id, client.id)
        assert activity[0].action == "UPDATE"

    def test_search_and_filters(self, db_session, tenant_id, make_client):
        make_client(name="Panadería Sol", current_debt="10.00")
        make_client(name="Verdulería Luna")
        make_client(name="Panadería Otro Negocio", tenant=uuid4())
        service = ClientService(db_session)

        assert service.list_clients(tenant_id, search="panadería").total == 1
        assert service.list_clients(tenant_id, with_debt=True).total == 1
        assert service.list_clients(tenant_id).total == 2


class TestClientsAPI:

    def test_create_and_credit_summary(self, api_client, auth_headers):
        created = api_client.post(
            "/api/v1/clients",
            json={"name": "Kiosco 24", "has_credit_account": True, "credit_limit": "1000"},
            headers=auth_headers
        )
        assert created.status_code == 201
        client_id = created.json()["id"]

        summary = api_client.get(f"/api/v1/clients/{client_id}/credit", headers=auth_headers)
        assert summary.status_code == 200
        assert Decimal(summary.json()["available_credit"]) == Decimal("1000")

    def test_register_payment_endpoint(self, api_client, auth_headers, make_client):
        client = make_client(current_debt="200.00")
        response = api_client.post(
            f"/api/v1/clients/{client.id}/payments",
            json={"amount": "50", "payment_method": "TRANSFERENCIA"},
            headers=auth_headers
        )
        assert response.status_code == 201
        assert Decimal(response.json()["client"]["current_debt"]) == Decimal("150")

    def test_client_of_other_tenant_is_404(self, api_client, auth_headers, make_client):
        client = make_client(tenant=uuid4())
        response = api_client.get(f"/api/v1/clients/{client.id}", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Cliente no encontrado"

    def test_seller_cannot_change_credit_limit(self, api_client, make_token, make_client):
        client = make_client()
        headers = {"Authorization": f"Bearer {make_token(role='VENDEDOR')}"}
        response = api_client.put(
            f"/api/v1/clients/{client.id}/credit-limit", json={"credit_limit": "99999"}, headers=headers
        )
        assert response.status_code == 403
