"""
Encolado de notificaciones después del commit.

Las notificaciones son "fire-and-forget": si el broker no responde se deja
constancia en el log y la operación de negocio ya confirmada no se altera.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from mostrador.core.config import settings

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if value is not None and not isinstance(value, (str, int, float, bool)):
        return str(value)
    return value


def _dispatch(task, to_email: Optional[str], context: Dict[str, Any]) -> bool:
    if not settings.NOTIFICATIONS_ENABLED or not to_email:
        return False
    try:
        task.delay(to_email, _jsonable(context))
        return True
    except Exception as e:
        logger.warning(f"No se pudo encolar {task.name} para {to_email}: {e}")
        return False


def queue_sale_receipt(sale, client) -> bool:
    """Encola el comprobante de la venta si el cliente tiene email."""
    if client is None or not client.email:
        return False
    from mostrador.modules.notifications.tasks import send_sale_receipt_task

    context = {
        "ticket_number": sale.ticket_number,
        "client_name": client.name,
        "created_at": sale.created_at,
        "payment_method": sale.payment_method.value,
        "subtotal": sale.subtotal,
        "discount": sale.discount,
        "total": sale.total,
        "items": [
            {
                "name": item.product_name,
                "quantity": item.quantity,
                "price": item.price,
                "subtotal": item.subtotal,
            }
            for item in sale.items
        ],
    }
    return _dispatch(send_sale_receipt_task, client.email, context)


def queue_client_payment_receipt(payment, client) -> bool:
    if client is None or not client.email:
        return False
    from mostrador.modules.notifications.tasks import send_client_payment_receipt_task

    context = {
        "client_name": client.name,
        "amount": payment.amount,
        "payment_method": payment.payment_method,
        "reference": payment.reference,
        "created_at": payment.created_at,
        "current_debt": client.current_debt,
    }
    return _dispatch(send_client_payment_receipt_task, client.email, context)
