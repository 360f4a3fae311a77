# booking/services/refund_policy.py
#
# Purpose:
# - Tiered cancellation refund policy.
#
# Policy (REFUND_POLICY_TIERS setting, defaults shown):
#   hours until appointment > 24        -> 100%
#   12 < hours until appointment <= 24  -> 50%
#   hours until appointment <= 12       -> 0%
#   (exactly 24h falls in the 50% tier)
#
# Notes:
# - Money is computed in integer cents, then converted back to a Decimal
#   with two places for the ledger.
# - Both instants are compared as aware datetimes; naive values are read in
#   the clinic time zone.
# - Never raises: refunds are computed during a cancellation that must go
#   through. Bad input gives a 0% quote with flagged=True.

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
DEFAULT_TIERS = ((24, 100), (12, 50))


@dataclass(frozen=True)
class RefundQuote:
    amount_cents: int
    percent: int
    hours_until: float
    flagged: bool = False
    reason: str = ""

    @property
    def amount(self) -> Decimal:
        return (Decimal(self.amount_cents) / 100).quantize(CENT)

    def as_dict(self):
        return {
            "amount": str(self.amount),
            "amount_cents": self.amount_cents,
            "percent": self.percent,
            "hours_until": round(self.hours_until, 2),
            "flagged": self.flagged,
            "reason": self.reason,
        }


def to_cents(price) -> int:
    """Major-unit price -> integer cents, half-up."""
    return int((Decimal(str(price)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_aware(value: datetime) -> datetime:
    if timezone.is_naive(value):
        return timezone.make_aware(value, timezone.get_current_timezone())
    return value


def refund_tiers():
    tiers = getattr(settings, "REFUND_POLICY_TIERS", None) or DEFAULT_TIERS
    return sorted(((Decimal(str(h)), int(p)) for h, p in tiers), reverse=True)


def refund_percent(hours_until: Decimal) -> int:
    for threshold, percent in refund_tiers():
        if hours_until > threshold:
            return percent
    return 0


def _flagged(reason, hours_until=0.0) -> RefundQuote:
    logger.warning("Refund clamped to 0%%: %s", reason)
    return RefundQuote(amount_cents=0, percent=0, hours_until=hours_until, flagged=True, reason=reason)


def quote_refund(price_at_booking, scheduled_time: datetime, now: datetime = None) -> RefundQuote:
    try:
        full_cents = to_cents(price_at_booking)
    except (InvalidOperation, TypeError, ValueError):
        return _flagged(f"invalid price {price_at_booking!r}")
    if full_cents < 0:
        return _flagged(f"negative price {price_at_booking!r}")
    if scheduled_time is None:
        return _flagged("missing scheduled time")

    now = _as_aware(now or timezone.now())
    delta = _as_aware(scheduled_time) - now
    seconds = Decimal(delta.days * 86400 + delta.seconds) + Decimal(delta.microseconds) / Decimal(10**6)
    hours_until = seconds / Decimal(3600)

    if hours_until < 0:
        return _flagged("appointment time is already in the past", float(hours_until))

    percent = refund_percent(hours_until)
    cents = int((Decimal(full_cents) * percent / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return RefundQuote(amount_cents=cents, percent=percent, hours_until=float(hours_until))


def calculate_refund(price_at_booking, scheduled_time: datetime, now: datetime = None) -> Decimal:
    """Refund amount in major units (e.g. dollars) under the tiered policy."""
    return quote_refund(price_at_booking, scheduled_time, now).amount
