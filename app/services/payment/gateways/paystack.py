"""
Paystack Payment Gateway
Transaction initialize + verify over REST
"""
from typing import Dict, Any, Optional
from dataclasses import dataclass

from app.models.payment.gateway_config import GatewayProvider
from app.services.payment.errors import ValidationError
from app.services.payment.gateways.base import (
    BasePaymentGateway,
    InitRequest,
    InitResult,
    VerifyResult,
)


@dataclass
class PaystackInitResult(InitResult):
    reference: Optional[str] = None
    authorization_url: Optional[str] = None
    amount_minor: Optional[int] = None

    def payment_fields(self) -> Dict[str, Any]:
        return {
            "order_id": self.reference,
            "redirect_url": self.authorization_url,
            "amount": self.amount_minor,
        }


class PaystackGateway(BasePaymentGateway):
    """Paystack Payment Gateway Implementation"""

    provider = GatewayProvider.PAYSTACK
    gateway_name = "Paystack"

    SANDBOX_URL = "https://api.paystack.co"
    PRODUCTION_URL = "https://api.paystack.co"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.secret_key}",
            "Content-Type": "application/json",
        }

    async def init(self, request: InitRequest) -> PaystackInitResult:
        if not request.buyer.email:
            raise ValidationError("Email is required for Paystack payment")

        payload = {
            "email": request.buyer.email,
            "amount": request.amount_minor,
            "currency": request.currency.upper(),
            "metadata": request.metadata_for(self.provider),
        }

        data = await self.send_json(
            "POST",
            self.get_api_url("/transaction/initialize"),
            headers=self._headers(),
            json=payload,
        )

        body = data.get("data") or {}
        if not data.get("status") or not body.get("reference"):
            raise self.error(data.get("message") or "Paystack initialization failed")

        return PaystackInitResult(
            provider=self.provider,
            reference=body["reference"],
            authorization_url=body.get("authorization_url"),
            amount_minor=request.amount_minor,
        )

    async def verify(self, body: Dict[str, Any]) -> VerifyResult:
        payload = body.get("paystack") or body
        reference = payload.get("reference") or payload.get("trxref")

        if not reference:
            return VerifyResult(success=False, provider=self.provider, message="Paystack reference missing")

        data = await self.send_json(
            "GET",
            self.get_api_url(f"/transaction/verify/{reference}"),
            headers=self._headers(),
        )

        transaction = data.get("data") or {}
        metadata = transaction.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}

        if transaction.get("status") != "success":
            return VerifyResult(
                success=False,
                provider=self.provider,
                transaction_id=reference,
                message=transaction.get("gateway_response") or f"Paystack payment not completed (status: {transaction.get('status')})",
            )

        return VerifyResult(
            success=True,
            provider=self.provider,
            transaction_id=str(transaction.get("id") or reference),
            order_id=metadata.get("orderId"),
            amount=(transaction.get("amount") or 0) / 100,
            currency=transaction.get("currency"),
            metadata=metadata,
            raw_response=transaction,
        )
