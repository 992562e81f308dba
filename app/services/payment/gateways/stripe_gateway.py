"""
Stripe Payment Gateway
Customer + PaymentIntent flow. The storefront confirms the intent with the
client secret; verification re-reads the intent server side.

The Stripe SDK is synchronous, so calls run in a worker thread via
anyio.to_thread.run_sync to keep the event loop free.
"""
from typing import Dict, Any, Optional
from dataclasses import dataclass

import anyio
import stripe

from app.models.payment.gateway_config import GatewayProvider
from app.services.payment.gateways.base import (
    BasePaymentGateway,
    InitRequest,
    InitResult,
    VerifyResult,
)

# Placeholder address Stripe India needs for export transactions
DEFAULT_ADDRESS = {"country": "IN", "postal_code": "000000", "line1": "NA"}


@dataclass
class StripeInitResult(InitResult):
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    guest_access_token: Optional[str] = None

    def payment_fields(self) -> Dict[str, Any]:
        return {
            "client_secret": self.client_secret,
            "payment_intent_id": self.payment_intent_id,
            "guest_access_token": self.guest_access_token,
        }


class StripeGateway(BasePaymentGateway):
    """
    Stripe Payment Gateway Implementation

    - Authenticated buyers reuse their Stripe customer (matched by email)
    - Guests get a fresh customer carrying the guest access token
    - PaymentIntent with automatic payment methods and order metadata
    """

    provider = GatewayProvider.STRIPE
    gateway_name = "Stripe"

    async def _call(self, fn, *args, **kwargs):
        def _run():
            return fn(*args, api_key=self.credentials.secret_key, **kwargs)

        try:
            return await anyio.to_thread.run_sync(_run)
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            raise self.error(message)

    async def _get_or_create_customer(self, request: InitRequest) -> str:
        buyer = request.buyer
        discount_fields = request.discounts.discount_fields()

        if not buyer.is_guest:
            if buyer.email:
                existing = await self._call(stripe.Customer.list, email=buyer.email, limit=1)
                if existing and existing.data:
                    return existing.data[0].id

            customer = await self._call(
                stripe.Customer.create,
                name=buyer.name or "Customer",
                email=buyer.email,
                phone=buyer.phone or None,
                address=buyer.address or DEFAULT_ADDRESS,
                metadata={"userId": buyer.user_id, "type": "package_purchase", **discount_fields},
            )
            return customer.id

        customer = await self._call(
            stripe.Customer.create,
            name=buyer.name or "Guest Customer",
            email=buyer.email,
            phone=buyer.phone or None,
            address={**DEFAULT_ADDRESS, "line1": "Guest Address"},
            metadata={
                "guestCheckout": "true",
                "guestAccessToken": buyer.guest_access_token or "",
                **discount_fields,
            },
        )
        return customer.id

    async def init(self, request: InitRequest) -> StripeInitResult:
        customer_id = await self._get_or_create_customer(request)

        metadata = request.metadata_for(self.provider)
        print(f"[INFO] Stripe intent for order {request.order_id} ({metadata.get('type')})")

        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=request.amount_minor,
            currency=request.currency.lower(),
            customer=customer_id,
            receipt_email=request.buyer.email,
            description=f"eSIM purchase | Order {request.order_id}",
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )

        return StripeInitResult(
            provider=self.provider,
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            guest_access_token=request.buyer.guest_access_token,
        )

    async def verify(self, body: Dict[str, Any]) -> VerifyResult:
        payload = body.get("stripe") or body
        intent_id = payload.get("paymentIntentId") or payload.get("payment_intent_id") or payload.get("payment_intent")

        if not intent_id:
            return VerifyResult(success=False, provider=self.provider, message="Stripe paymentIntentId missing")

        intent = await self._call(stripe.PaymentIntent.retrieve, intent_id)
        metadata = dict(intent.metadata or {})

        if intent.status != "succeeded":
            return VerifyResult(
                success=False,
                provider=self.provider,
                transaction_id=intent.id,
                order_id=metadata.get("orderId"),
                message=f"Stripe payment not completed (status: {intent.status})",
            )

        return VerifyResult(
            success=True,
            provider=self.provider,
            transaction_id=intent.id,
            order_id=metadata.get("orderId"),
            amount=(intent.amount_received or intent.amount or 0) / 100,
            currency=(intent.currency or "").upper(),
            metadata=metadata,
        )
