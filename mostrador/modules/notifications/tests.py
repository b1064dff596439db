"""
Tests para los comprobantes por email: render de templates y tareas de Celery
"""

from unittest.mock import patch

from mostrador.modules.notifications.service import email_service
from mostrador.modules.notifications.tasks import send_client_payment_receipt_task, send_sale_receipt_task


SALE_CONTEXT = {
    "ticket_number": 42,
    "client_name": "Almacén Don Pedro",
    "created_at": "2026-10-19T10:30:00+00:00",
    "payment_method": "EFECTIVO",
    "subtotal": "250.00",
    "discount": "25.00",
    "total": "225.00",
    "items": [
        {"name": "Yerba 1kg", "quantity": 2, "price": "100.00", "subtotal": "200.00"},
        {"name": "Azúcar", "quantity": 1, "price": "50.00", "subtotal": "50.00"},
    ],
}

PAYMENT_CONTEXT = {
    "client_name": "Almacén Don Pedro",
    "amount": "300.00",
    "payment_method": "TRANSFERENCIA",
    "reference": "TRF-8841",
    "created_at": "2026-10-19T11:00:00+00:00",
    "current_debt": "400.00",
}


class TestReceiptTemplates:

    def test_sale_receipt_renders_lines_and_totals(self):
        html = email_service.render_template("sale_receipt.html", SALE_CONTEXT)

        assert "#42" in html
        assert "Almacén Don Pedro" in html
        assert "Yerba 1kg" in html and "Azúcar" in html
        assert "Descuento: $25.00" in html
        assert "Total: $225.00" in html

    def test_sale_receipt_without_discount(self):
        html = email_service.render_template("sale_receipt.html", {**SALE_CONTEXT, "discount": "0.00"})
        assert "Descuento" not in html

    def test_payment_receipt_renders_amount_and_balance(self):
        html = email_service.render_template("client_payment_receipt.html", PAYMENT_CONTEXT)

        assert "$300.00" in html
        assert "TRANSFERENCIA" in html
        assert "Referencia: TRF-8841" in html
        assert "$400.00" in html


class TestReceiptTasks:

    @patch("mostrador.modules.notifications.service.smtplib.SMTP")
    def test_sale_receipt_task_sends_email(self, smtp):
        result = send_sale_receipt_task.apply(args=("cliente@mail.com", SALE_CONTEXT)).get()

        assert result == {"status": "success", "recipient": "cliente@mail.com"}
        server = smtp.return_value.__enter__.return_value
        server.sendmail.assert_called_once()
        assert server.sendmail.call_args[0][1] == ["cliente@mail.com"]

    @patch("mostrador.modules.notifications.service.smtplib.SMTP")
    def test_payment_receipt_task_sends_email(self, smtp):
        result = send_client_payment_receipt_task.apply(args=("cliente@mail.com", PAYMENT_CONTEXT)).get()

        assert result["status"] == "success"
        smtp.return_value.__enter__.return_value.sendmail.assert_called_once()
