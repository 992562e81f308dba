"""
Razorpay Payment Gateway
Orders API over REST. Razorpay has no customer metadata here, so the order
and discount metadata travel in the order notes.
"""
import hmac
import hashlib
from typing import Dict, Any, Optional
from dataclasses import dataclass

from app.models.payment.gateway_config import GatewayProvider
from app.services.payment.gateways.base import (
    BasePaymentGateway,
    InitRequest,
    InitResult,
    VerifyResult,
)


@dataclass
class RazorpayInitResult(InitResult):
    order_id: Optional[str] = None
    key_id: Optional[str] = None
    amount_minor: Optional[int] = None

    def payment_fields(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "public_key": self.key_id,
            "amount": self.amount_minor,
        }


class RazorpayGateway(BasePaymentGateway):
    """
    Razorpay Payment Gateway Implementation

    Features:
    - Order creation with notes metadata
    - Checkout signature verification (HMAC-SHA256 of "order_id|payment_id")
    """

    provider = GatewayProvider.RAZORPAY
    gateway_name = "Razorpay"

    # Test and live share one host; the key pair decides the mode
    SANDBOX_URL = "https://api.razorpay.com/v1"
    PRODUCTION_URL = "https://api.razorpay.com/v1"

    def _validate_config(self):
        super()._validate_config()
        if not self.credentials.public_key:
            raise self.error("Razorpay key id is not configured")

    @property
    def _auth(self):
        return (self.credentials.public_key, self.credentials.secret_key)

    async def init(self, request: InitRequest) -> RazorpayInitResult:
        payload = {
            "amount": request.amount_minor,
            "currency": (request.currency or "INR").upper(),
            "receipt": request.order_id,
            "notes": request.metadata_for(self.provider),
        }

        data = await self.send_json("POST", self.get_api_url("/orders"), auth=self._auth, json=payload)

        if not data.get("id"):
            raise self.error("Razorpay did not return an order id")

        print(f"[INFO] Razorpay order {data['id']} created for order {request.order_id}")

        return RazorpayInitResult(
            provider=self.provider,
            order_id=data["id"],
            key_id=self.credentials.public_key,
            amount_minor=data.get("amount", request.amount_minor),
        )

    def compute_signature(self, order_id: str, payment_id: str) -> str:
        return hmac.new(
            self.credentials.secret_key.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    async def verify(self, body: Dict[str, Any]) -> VerifyResult:
        r = body.get("razorpay") or body

        order_id = r.get("razorpay_order_id") or r.get("orderId")
        payment_id = r.get("razorpay_payment_id") or r.get("paymentId")
        signature = r.get("razorpay_signature") or r.get("signature")

        if not order_id or not payment_id or not signature:
            return VerifyResult(success=False, provider=self.provider, message="Missing Razorpay parameters")

        if not hmac.compare_digest(self.compute_signature(order_id, payment_id), signature):
            print(f"[SECURITY] Invalid Razorpay signature for order {order_id}")
            return VerifyResult(success=False, provider=self.provider, message="Invalid Razorpay signature")

        order = await self.send_json("GET", self.get_api_url(f"/orders/{order_id}"), auth=self._auth)
        notes = order.get("notes") or {}
        if not isinstance(notes, dict):
            notes = {}

        return VerifyResult(
            success=True,
            provider=self.provider,
            transaction_id=payment_id,
            order_id=notes.get("orderId") or order.get("receipt"),
            amount=(order.get("amount") or 0) / 100,
            currency=order.get("currency"),
            metadata=notes,
            raw_response=order,
        )
