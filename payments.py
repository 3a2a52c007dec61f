"""Stripe payment gateway for application fees."""

import logging
from typing import Optional

import stripe

import config
from errors import DependencyError

logger = logging.getLogger(__name__)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class StripeGateway:
    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or config.STRIPE_SECRET_KEY

    def create_intent(self, amount_minor_units: int, currency: str, metadata: Optional[dict] = None) -> dict:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor_units,
                currency=currency,
                payment_method_types=["card"],
                metadata=metadata or {},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe create_intent failed: %s", e)
            raise DependencyError("Payment gateway unavailable") from e
        return {"id": intent.id, "clientSecret": intent.client_secret}

    def retrieve_intent(self, intent_id: str) -> dict:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error("Stripe retrieve_intent %s failed: %s", intent_id, e)
            raise DependencyError("Payment gateway unavailable") from e
        return {
            "id": intent.id,
            "status": intent.status,
            "amount": intent.amount,
            "currency": intent.currency,
            "metadata": dict(intent.metadata or {}),
        }
