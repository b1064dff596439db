import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional, Dict, Any
from pathlib import Path
import logging
from jinja2 import Environment, FileSystemLoader, select_autoescape
from mostrador.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """
    Servicio de correo electrónico con templates Jinja2 (comprobantes de venta y pago).
    """

    def __init__(self):
        self.smtp_server = settings.EMAIL_SMTP_SERVER
        self.smtp_port = settings.EMAIL_SMTP_PORT
        self.username = settings.EMAIL_USERNAME
        self.password = settings.EMAIL_PASSWORD
        self.use_tls = settings.EMAIL_USE_TLS
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME

        template_dir = Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def _create_smtp_connection(self):
        """Crear conexión SMTP segura."""
        if self.use_tls:
            context = ssl.create_default_context()
            server = smtplib.SMTP(self.smtp_server, self.smtp_port)
            server.starttls(context=context)
        else:
            server = smtplib.SMTP_SSL(self.smtp_server, self.smtp_port)

        if self.username:
            server.login(self.username, self.password)
        return server

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self.jinja_env.get_template(template_name)
        return template.render(**context)

    def send_email(
        self,
        to_emails: List[str],
        subject: str,
        html_content: Optional[str] = None,
        text_content: Optional[str] = None,
    ) -> bool:
        """
        Enviar correo electrónico.

        Returns:
            True si se envió correctamente, False en caso contrario
        """
        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = ', '.join(to_emails)

            if text_content:
                msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
            if html_content:
                msg.attach(MIMEText(html_content, 'html', 'utf-8'))

            with self._create_smtp_connection() as server:
                server.sendmail(self.from_email, to_emails, msg.as_string())

            logger.info(f"Email sent to {', '.join(to_emails)}: {subject}")
            return True

        except Exception as e:
            logger.error(f"Error sending email to {', '.join(to_emails)}: {str(e)}")
            return False

    def send_sale_receipt(self, to_email: str, context: Dict[str, Any]) -> bool:
        html = self.render_template("sale_receipt.html", context)
        subject = f"Comprobante de compra #{context.get('ticket_number')} - {context.get('business_name') or self.from_name}"
        return self.send_email([to_email], subject, html_content=html)

    def send_client_payment_receipt(self, to_email: str, context: Dict[str, Any]) -> bool:
        html = self.render_template("client_payment_receipt.html", context)
        subject = f"Recibo de pago - {context.get('business_name') or self.from_name}"
        return self.send_email([to_email], subject, html_content=html)


# Instancia global del servicio
email_service = EmailService()
