"""
PayPal Payment Gateway
Orders v2 API. PayPal has no structured notes field, so order metadata is
stored as a JSON string in purchase_units[0].custom_id and read back on verify.
"""
from typing import Dict, Any, Optional
from dataclasses import dataclass

from app.models.payment.gateway_config import GatewayProvider
from app.services.payment.gateways.base import (
    BasePaymentGateway,
    InitRequest,
    InitResult,
    VerifyResult,
    parse_paypal_custom_id,
)


@dataclass
class PaypalInitResult(InitResult):
    order_id: Optional[str] = None

    def payment_fields(self) -> Dict[str, Any]:
        return {"order_id": self.order_id}


class PaypalGateway(BasePaymentGateway):
    """PayPal Payment Gateway Implementation"""

    provider = GatewayProvider.PAYPAL
    gateway_name = "PayPal"

    SANDBOX_URL = "https://api-m.sandbox.paypal.com"
    PRODUCTION_URL = "https://api-m.paypal.com"

    def _validate_config(self):
        super()._validate_config()
        if not self.credentials.public_key:
            raise self.error("PayPal client id is not configured")

    def _error_message(self, data: Any) -> Optional[str]:
        if isinstance(data, dict):
            details = data.get("details") or []
            if details and isinstance(details[0], dict) and details[0].get("description"):
                return details[0]["description"]
        return super()._error_message(data)

    async def _access_token(self) -> str:
        data = await self.send_json(
            "POST",
            self.get_api_url("/v1/oauth2/token"),
            auth=(self.credentials.public_key, self.credentials.secret_key),
            data={"grant_type": "client_credentials"},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = data.get("access_token")
        if not token:
            raise self.error("PayPal did not return an access token")
        return token

    async def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {await self._access_token()}",
            "Content-Type": "application/json",
        }

    async def init(self, request: InitRequest) -> PaypalInitResult:
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.order_id,
                    "amount": {
                        "currency_code": request.currency.upper(),
                        "value": f"{request.amount:.2f}",
                    },
                    "custom_id": request.metadata_for(self.provider),
                }
            ],
        }

        data = await self.send_json(
            "POST",
            self.get_api_url("/v2/checkout/orders"),
            headers={**await self._headers(), "Prefer": "return=representation"},
            json=payload,
        )

        if not data.get("id"):
            raise self.error("PayPal did not return an order id")

        return PaypalInitResult(provider=self.provider, order_id=data["id"])

    async def verify(self, body: Dict[str, Any]) -> VerifyResult:
        payload = body.get("paypal") or body
        paypal_order_id = payload.get("orderId") or payload.get("order_id")

        if not paypal_order_id:
            return VerifyResult(success=False, provider=self.provider, message="PayPal orderId missing")

        data = await self.send_json(
            "GET",
            self.get_api_url(f"/v2/checkout/orders/{paypal_order_id}"),
            headers=await self._headers(),
        )

        status = data.get("status")
        if status != "COMPLETED":
            return VerifyResult(
                success=False,
                provider=self.provider,
                transaction_id=data.get("id"),
                message=f"PayPal payment not completed (status: {status})",
            )

        unit = (data.get("purchase_units") or [{}])[0]
        metadata = parse_paypal_custom_id(unit.get("custom_id"))
        amount = unit.get("amount") or {}

        return VerifyResult(
            success=True,
            provider=self.provider,
            transaction_id=data.get("id"),
            order_id=metadata.get("orderId") or unit.get("reference_id"),
            amount=float(amount.get("value") or 0),
            currency=amount.get("currency_code"),
            metadata=metadata,
            raw_response=data,
        )
