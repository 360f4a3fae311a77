"""
payment_gateway.py
------------------
Payment collaborator used by BookingManager.

The scheduling code only needs three operations:
- verify(reference, amount_cents): was this payment completed for this amount?
- charge(amount_cents, currency, description): take a new payment
- refund(reference, amount_cents): return money for an earlier payment

The concrete class is chosen with settings.PAYMENT_GATEWAY (dotted path),
the same way Django picks EMAIL_BACKEND. Gateways never run inside the
booking transaction.
"""

import logging
import uuid
from dataclasses import dataclass

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayResult:
    ok: bool
    reference: str = ""
    amount_cents: int = 0
    message: str = ""


class BasePaymentGateway:
    name = "base"

    def verify(self, reference: str, amount_cents: int) -> GatewayResult:
        raise NotImplementedError

    def charge(self, amount_cents: int, currency: str, description: str = "") -> GatewayResult:
        raise NotImplementedError

    def refund(self, reference: str, amount_cents: int) -> GatewayResult:
        raise NotImplementedError


class ManualPaymentGateway(BasePaymentGateway):
    """
    Cash / insurance / in-person payments recorded by staff.
    Verification accepts any non-empty reference; refunds are issued by
    staff outside the system, so a reference is generated for the ledger.
    """
    name = "manual"

    def verify(self, reference, amount_cents):
        if not reference:
            return GatewayResult(ok=False, message="Missing payment reference.")
        return GatewayResult(ok=True, reference=reference, amount_cents=amount_cents)

    def charge(self, amount_cents, currency, description=""):
        reference = f"manual-{uuid.uuid4().hex[:12]}"
        logger.info("Manual charge %s: %d %s (%s)", reference, amount_cents, currency, description)
        return GatewayResult(ok=True, reference=reference, amount_cents=amount_cents)

    def refund(self, reference, amount_cents):
        refund_ref = f"manual-refund-{uuid.uuid4().hex[:12]}"
        logger.info("Manual refund of %d cents recorded against %s", amount_cents, reference)
        return GatewayResult(
            ok=True,
            reference=refund_ref,
            amount_cents=amount_cents,
            message="Manual refund required for non-card payment",
        )


def get_payment_gateway(path=None) -> BasePaymentGateway:
    gateway_class = import_string(path or settings.PAYMENT_GATEWAY)
    return gateway_class()
