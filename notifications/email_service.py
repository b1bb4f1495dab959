"""
Plain-text transactional emails for payout events.
Delivery failures never propagate: the ledger has already committed.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


class EmailService:

    @staticmethod
    def send_email(subject: str, recipient_email: str, body: str) -> bool:
        if not recipient_email:
            return False
        sent = send_mail(
            subject,
            body,
            settings.DEFAULT_FROM_EMAIL,
            [recipient_email],
            fail_silently=True,
        )
        if not sent:
            logger.warning("send_email: delivery failed subject=%r", subject)
        return bool(sent)

    @staticmethod
    def send_payout_completed_email(user, amount) -> bool:
        return EmailService.send_email(
            "Your Lynxx Club payout is on its way",
            user.email,
            f"Hi,\n\nYour withdrawal of ${amount} has been paid to your bank account.\n\nLynxx Club",
        )

    @staticmethod
    def send_payout_failed_email(user, amount) -> bool:
        return EmailService.send_email(
            "Your Lynxx Club payout needs attention",
            user.email,
            f"Hi,\n\nYour withdrawal of ${amount} could not be completed. "
            "Our team is reviewing it and will contact you; you do not need to do anything.\n\nLynxx Club",
        )
