# services/payment_service.py
import logging
import random
import string
from datetime import datetime
from typing import Dict, Optional

from services.collaborators import PaymentResult
from services.exceptions import NotFoundError, PaymentDeclinedError, ValidationError

logger = logging.getLogger(__name__)


class MockPaymentGateway:
    """
    In-process payment gateway for development and tests.

    Charges succeed unless the token is one of the well-known decline tokens.
    Payments are kept in memory so refunds can be checked against them.
    """

    DECLINED_TOKENS = {"tok_chargeDeclined", "tok_declined", "tok_insufficientFunds"}

    def __init__(self):
        self._payments: Dict[str, PaymentResult] = {}

    @staticmethod
    def _generate_payment_id() -> str:
        """Generate unique payment ID"""
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        random_suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))
        return f"PAY-{timestamp}-{random_suffix}"

    async def charge(
        self, amount: float, currency: str, payment_token: str, description: str = ""
    ) -> PaymentResult:
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if payment_token in self.DECLINED_TOKENS:
            logger.warning(f"[Payments] Charge declined for token {payment_token[:8]}...")
            raise PaymentDeclinedError("Your card was declined. Please use a different payment method.")

        result = PaymentResult(
            payment_id=self._generate_payment_id(),
            status="succeeded",
            amount=round(amount, 2),
            currency=currency,
            message=description,
        )
        self._payments[result.payment_id] = result
        logger.info(f"[Payments] Charged {result.amount} {currency} ({result.payment_id})")
        return result

    async def refund(self, payment_id: str, amount: Optional[float] = None) -> PaymentResult:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment")
        refund_amount = payment.amount if amount is None else amount
        if refund_amount > payment.amount:
            raise ValidationError("Refund exceeds the original charge")

        refunded = payment.model_copy(update={"status": "refunded", "amount": refund_amount})
        self._payments[payment_id] = refunded
        logger.info(f"[Payments] Refunded {refund_amount} {payment.currency} ({payment_id})")
        return refunded
