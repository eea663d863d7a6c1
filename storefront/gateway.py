import json
import logging
from typing import List

import stripe
from starlette.concurrency import run_in_threadpool

from storefront.shared.utils import SignatureInvalidException, UpstreamException, ValidationException

logger = logging.getLogger(__name__)


class PaymentGateway:
    """Stripe Checkout client used for session creation and webhook verification."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        client_url: str,
        currency: str = "usd",
        tolerance: int = 300,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.client_url = client_url.rstrip("/")
        self.currency = currency
        self.tolerance = tolerance

    async def create_checkout_session(self, line_items: List[dict], order_id: str) -> dict:
        try:
            # The Stripe SDK is synchronous
            session = await run_in_threadpool(
                stripe.checkout.Session.create,
                api_key=self.api_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=line_items,
                success_url=f"{self.client_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.client_url}/cancel",
                metadata={"order_id": order_id},
            )
        except stripe.StripeError as e:
            logger.error(
                f"Checkout session creation failed: {type(e).__name__}",
                extra={"order_id": order_id},
            )
            raise UpstreamException("Payment processor unavailable")
        return {"session_id": session.id, "url": session.url}

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """Verify the Stripe-Signature header and return the decoded event."""
        if not signature:
            raise SignatureInvalidException("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance)
        except (UnicodeDecodeError, stripe.SignatureVerificationError):
            raise SignatureInvalidException()

        try:
            event = json.loads(body)
        except ValueError:
            raise ValidationException("Malformed webhook payload")
        if not isinstance(event, dict):
            raise ValidationException("Malformed webhook payload")
        return event
