"""
Tareas asíncronas de Celery para comprobantes por email.
"""
import logging
from typing import Dict, Any
from mostrador.core.celery import celery_app
from mostrador.modules.notifications.service import email_service

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_sale_receipt_task(self, to_email: str, context: Dict[str, Any]):
    """Envía el comprobante de una venta al email del cliente."""
    try:
        if not email_service.send_sale_receipt(to_email, context):
            raise Exception("Failed to send sale receipt")
        return {"status": "success", "recipient": to_email}

    except Exception as exc:
        logger.error(f"Sale receipt #{context.get('ticket_number')} failed: {str(exc)}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))
        return {"status": "failed", "error": str(exc), "recipient": to_email}


@celery_app.task(bind=True, max_retries=3)
def send_client_payment_receipt_task(self, to_email: str, context: Dict[str, Any]):
    """Envía el recibo de un pago de cuenta corriente."""
    try:
        if not email_service.send_client_payment_receipt(to_email, context):
            raise Exception("Failed to send payment receipt")
        return {"status": "success", "recipient": to_email}

    except Exception as exc:
        logger.error(f"Payment receipt for {to_email} failed: {str(exc)}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))
        return {"status": "failed", "error": str(exc), "recipient": to_email}
