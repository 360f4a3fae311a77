# booking/services/price_management.py
#
# Purpose:
# - Change the price of a service option and keep an audit trail.
#
# Rules:
# - New price must be > 0 and <= 999,999.99.
# - Every change writes a PriceHistory row in the same transaction.
# - Existing bookings are untouched: they carry their own price_at_booking.

import logging
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.db import transaction

from ..models import PriceHistory

logger = logging.getLogger(__name__)

MAX_PRICE = Decimal("999999.99")


class PriceManagementService:
    """Validation and logging around ServiceOption.price updates."""

    @staticmethod
    def validate_price(price):
        """
        Returns:
            Decimal: the price, two decimal places

        Raises:
            ValidationError: not a number, <= 0, or above MAX_PRICE
        """
        try:
            price_decimal = Decimal(str(price))
        except (ValueError, TypeError, InvalidOperation):
            raise ValidationError(f"Invalid price format. Received: {price}")

        if not price_decimal.is_finite() or price_decimal <= 0:
            raise ValidationError(f"Price must be greater than zero. Received: {price_decimal}")
        if price_decimal > MAX_PRICE:
            raise ValidationError(
                f"Price exceeds maximum allowed value of ${MAX_PRICE}. Received: {price_decimal}"
            )
        return price_decimal.quantize(Decimal("0.01"))

    @staticmethod
    @transaction.atomic
    def update_option_price(service_option, new_price, changed_by=None):
        """
        Apply a new price to future bookings of `service_option`.

        Returns:
            PriceHistory row, or None when the price did not change.
        """
        validated = PriceManagementService.validate_price(new_price)
        old_price = service_option.price
        if old_price == validated:
            return None

        service_option.price = validated
        service_option.save(update_fields=["price"])
        change = PriceHistory.objects.create(
            service_option=service_option,
            old_price=old_price,
            new_price=validated,
        )
        logger.info(
            "Price of option %s changed %s -> %s by %s",
            service_option.pk, old_price, validated,
            getattr(changed_by, "username", None) or "system",
        )
        return change

    @staticmethod
    def format_price_for_display(price):
        try:
            return f"${Decimal(str(price)):.2f}"
        except (ValueError, InvalidOperation):
            return "$0.00"

    @staticmethod
    def get_price_change_summary(service_option, new_price):
        """Preview of a price change, for confirmation dialogs."""
        current = service_option.price
        validated = PriceManagementService.validate_price(new_price)
        fmt = PriceManagementService.format_price_for_display
        return {
            "service_name": service_option.service.name,
            "option_name": service_option.option_name,
            "current_price": fmt(current),
            "new_price": fmt(validated),
            "difference": fmt(validated - current),
            "percent_change": float((validated - current) / current * 100),
        }
