"""
Transactional email.

Mailer talks to the SMTP provider through fastapi-mail. Notifier decides
when a message goes out: dispatch() hands it to the request's background
tasks and never surfaces a failure to the caller, send_now() delivers inline
and reports success as a bool. Either way a failed delivery is logged.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import BackgroundTasks, Depends
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    recipient: str
    subject: str
    body: str


class Mailer:
    def __init__(self, settings: Settings):
        self.enabled = settings.EMAIL_ENABLED
        self._conf = None
        if self.enabled:
            self._conf = ConnectionConfig(
                MAIL_USERNAME=settings.POSTMARK_API_TOKEN,
                MAIL_PASSWORD=settings.POSTMARK_API_TOKEN,
                MAIL_FROM=settings.EMAIL_SENDER,
                MAIL_PORT=settings.MAIL_PORT,
                MAIL_SERVER=settings.MAIL_SERVER,
                MAIL_STARTTLS=True,
                MAIL_SSL_TLS=False,
                USE_CREDENTIALS=True,
                VALIDATE_CERTS=True,
            )

    async def send(self, message: EmailMessage):
        if not self.enabled:
            # Local/dev: don't attempt real delivery
            logger.info(
                "EMAIL_ENABLED is false; skipping send of %r to %s",
                message.subject,
                message.recipient,
            )
            return
        schema = MessageSchema(
            subject=message.subject,
            recipients=[message.recipient],
            body=message.body,
            subtype=MessageType.html,
        )
        await FastMail(self._conf).send_message(schema)
        logger.info("Email %r sent to %s", message.subject, message.recipient)


class Notifier:
    def __init__(self, mailer: Mailer, background_tasks: Optional[BackgroundTasks] = None):
        self.mailer = mailer
        self.background_tasks = background_tasks

    def dispatch(self, message: EmailMessage):
        """Fire-and-forget: runs after the response has been sent."""
        if self.background_tasks is None:
            raise RuntimeError("Notifier has no background task queue")
        self.background_tasks.add_task(self.send_now, message)

    async def send_now(self, message: EmailMessage) -> bool:
        try:
            await self.mailer.send(message)
        except Exception as e:
            logger.error("Failed to send email to %s: %s", message.recipient, e)
            return False
        return True


_mailer: Optional[Mailer] = None


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer(settings)
    return _mailer


def get_notifier(background_tasks: BackgroundTasks, mailer: Mailer = Depends(get_mailer)) -> Notifier:
    return Notifier(mailer, background_tasks)


# Message builders

def verification_email(recipient: str, token: str, settings: Settings) -> EmailMessage:
    link = f"{settings.PUBLIC_BASE_URL.rstrip('/')}/verify?token={token}"
    return EmailMessage(
        recipient=recipient,
        subject="Verify Your Email",
        body=(
            "<strong>Please verify your email by clicking on the following link:</strong> "
            f'<a href="{link}">Verify Email</a>'
        ),
    )


def order_confirmation_email(recipient: str, name: str, order_id: str, delivery_date: str,
                             total_amount: float, payment_method: str) -> EmailMessage:
    return EmailMessage(
        recipient=recipient,
        subject="Order Confirmation - E-commerce Platform",
        body=(
            f"Dear {name},<br><br>"
            f"Thank you for your purchase! Your order (ID: {order_id}) has been placed successfully "
            f"and will be delivered by <strong>{delivery_date}</strong>.<br><br>"
            f"Total Amount: <strong>${total_amount:.2f}</strong><br>"
            f"Payment Method: <strong>{payment_method}</strong><br><br>"
            "Thank you for shopping with us!"
        ),
    )


def crypto_payment_received_email(recipient: str, name: str, order_id: str) -> EmailMessage:
    return EmailMessage(
        recipient=recipient,
        subject="Crypto Payment Received - E-commerce Platform",
        body=(
            f"Dear {name},<br><br>"
            f"We have received your cryptocurrency payment proof for order {order_id}. "
            "Your order will be processed once the payment is verified.<br><br>"
            "Thank you for shopping with us!"
        ),
    )


def payment_status_email(recipient: str, name: str, order_id: str, status: str) -> EmailMessage:
    return EmailMessage(
        recipient=recipient,
        subject="Payment Status Updated - E-commerce Platform",
        body=(
            f"Dear {name},<br><br>"
            f"Your order (ID: {order_id}) payment status has been updated to '{status}'.<br><br>"
            "Thank you for shopping with us!"
        ),
    )
