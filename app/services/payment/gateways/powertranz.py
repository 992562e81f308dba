"""
PowerTranz Payment Gateway
Two flows selected per checkout:

SPI: card fields are posted to the SPI sale endpoint, the bank answers with
     3-D Secure challenge HTML (rendered in an iframe) and an SpiToken.
     After the challenge the token is presented to the payment endpoint.
HPP: PowerTranz hosts the card form; we only hand out a redirect URL and
     classify the callback / notification it sends back. Those posts are
     signed with HMAC-SHA256 keyed by the merchant password and are only
     trusted when the signature matches.

SpiToken lifespan is about 5 minutes from the sale call.
"""
import os
import json
import uuid
import hmac
import hashlib
from typing import Dict, Any, Optional, List
from dataclasses import dataclass
from dotenv import load_dotenv

from app.models.payment.gateway_config import GatewayProvider
from app.services.payment.errors import ValidationError, MissingCardDetails
from app.services.payment.gateways.base import (
    BasePaymentGateway,
    InitRequest,
    InitResult,
    VerifyResult,
    CardData,
    SpiFlow,
    HppFlow,
    PowertranzFlow,
)

load_dotenv()

POWERTRANZ_API_URL = os.getenv("POWERTRANZ_API_URL", "https://staging.ptranz.com")
POWERTRANZ_LIVE_URL = os.getenv("POWERTRANZ_LIVE_URL", "https://gateway.ptranz.com")
HPP_PAGE_SET = os.getenv("POWERTRANZ_HPP_PAGE_SET", "esimmaster")
HPP_PAGE_NAME = os.getenv("POWERTRANZ_HPP_PAGE_NAME", "checkout")

# ISO 4217 numeric codes
CURRENCY_CODES = {
    "USD": "840",
    "EUR": "978",
    "GBP": "826",
    "INR": "356",
    "CAD": "124",
    "AUD": "036",
}

THREE_DS_SUCCESS = "3D0"
SPI_PREPROCESSED = "SP4"

# Fields covered by the hosted page signature, in signing order
HPP_SIGNED_FIELDS = ("TransactionIdentifier", "OrderIdentifier", "Approved", "TotalAmount")


def base_url() -> str:
    """Public URL of this API, used for bank callbacks"""
    return os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")


def select_powertranz_flow(payment_method: Optional[str], card: Optional[Dict[str, Any]]) -> PowertranzFlow:
    """
    Pick the PowerTranz flow. SPI is the default and needs card fields.

    Raises:
        MissingCardDetails: SPI without pan, cvv or expiry
        ValidationError: unknown payment method
    """
    method = (payment_method or "spi").lower()

    if method == "hpp":
        return HppFlow()
    if method != "spi":
        raise ValidationError(f"Unsupported PowerTranz payment method: {payment_method}")

    card = card or {}
    missing = [name for name in ("pan", "cvv", "expiry") if not card.get(name)]
    if missing:
        raise MissingCardDetails(missing)

    return SpiFlow(card=validate_card(card))


def validate_card(card: Dict[str, Any]) -> CardData:
    """Normalize and sanity check raw card fields"""
    pan = "".join(str(card.get("pan", "")).split())
    cvv = str(card.get("cvv", "")).strip()
    expiry = str(card.get("expiry", "")).replace("/", "").strip()

    if not pan.isdigit() or not 13 <= len(pan) <= 19:
        raise ValidationError("Invalid card number length")
    if not cvv.isdigit() or not 3 <= len(cvv) <= 4:
        raise ValidationError("Invalid CVV length")
    if not expiry.isdigit() or len(expiry) != 4 or not 1 <= int(expiry[:2]) <= 12:
        raise ValidationError("Invalid expiry format (must be MMYY)")

    return CardData(pan=pan, cvv=cvv, expiry=expiry, holder_name=card.get("holder_name") or card.get("holderName"))


def currency_code(currency: str) -> str:
    code = CURRENCY_CODES.get((currency or "").upper())
    if not code:
        raise ValidationError(f"Unsupported currency for PowerTranz: {currency}")
    return code


def _is_true(value: Any) -> bool:
    return value is True or str(value).lower() == "true"


def _error_messages(errors: Any) -> Optional[str]:
    if not isinstance(errors, list) or not errors:
        return None
    messages: List[str] = []
    for item in errors:
        if isinstance(item, dict):
            messages.append(str(item.get("Message") or item.get("Code") or ""))
        else:
            messages.append(str(item))
    return "; ".join(m for m in messages if m) or None


def classify_3ds_result(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Classify the bank's 3-D Secure callback.

    Priority:
    1. RiskManagement.ThreeDSecure present: success iff ResponseCode == 3D0
    2. IsoResponseCode == SP4: success
    3. Errors array: failure, messages joined
    """
    iso_code = payload.get("IsoResponseCode")
    three_ds = (payload.get("RiskManagement") or {}).get("ThreeDSecure")

    if three_ds:
        success = three_ds.get("ResponseCode") == THREE_DS_SUCCESS
        reason = None if success else (
            three_ds.get("CardholderInfo") or payload.get("ResponseMessage") or "3-D Secure authentication failed"
        )
    elif iso_code == SPI_PREPROCESSED:
        success, reason = True, None
    elif payload.get("Errors"):
        success, reason = False, _error_messages(payload.get("Errors")) or "3-D Secure authentication failed"
    else:
        success, reason = False, payload.get("ResponseMessage") or "3-D Secure authentication failed"

    return {
        "success": success,
        "spi_token": payload.get("SpiToken"),
        "iso_response_code": iso_code,
        "response_message": reason or payload.get("ResponseMessage"),
        "order_id": payload.get("OrderIdentifier"),
        "transaction_id": payload.get("TransactionIdentifier"),
    }


def classify_hpp_result(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Classify a hosted page callback or notification.
    Approved must be true and, when 3DS data is present, its code 3D0.
    """
    approved = _is_true(payload.get("Approved"))
    reason = payload.get("ResponseMessage")

    three_ds = (payload.get("RiskManagement") or {}).get("ThreeDSecure")
    if approved and three_ds:
        if three_ds.get("ResponseCode") != THREE_DS_SUCCESS and payload.get("IsoResponseCode") != THREE_DS_SUCCESS:
            approved = False
            reason = three_ds.get("CardholderInfo") or "3D Secure authentication failed"

    if not approved and payload.get("Errors"):
        reason = _error_messages(payload.get("Errors")) or reason

    return {
        "approved": approved,
        "transaction_id": payload.get("TransactionIdentifier"),
        "order_id": payload.get("OrderIdentifier"),
        "amount": payload.get("TotalAmount"),
        "iso_response_code": payload.get("IsoResponseCode"),
        "message": (reason or "Payment approved") if approved else (reason or "Payment was declined"),
    }


def hpp_signature(payload: Dict[str, Any], merchant_password: str) -> str:
    """
    Hex HMAC-SHA256 of the compact JSON of the signed fields, in the order
    the bank serializes them. Absent fields are left out.
    """
    canonical = json.dumps(
        {key: payload[key] for key in HPP_SIGNED_FIELDS if key in payload},
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hmac.new(merchant_password.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256).hexdigest()


@dataclass
class PowertranzSpiResult(InitResult):
    redirect_data: Optional[str] = None
    spi_token: Optional[str] = None
    transaction_id: Optional[str] = None
    method: str = "spi"

    def payment_fields(self) -> Dict[str, Any]:
        return {"method": self.method, "redirectData": self.redirect_data, "spiToken": self.spi_token}


@dataclass
class PowertranzHppResult(InitResult):
    redirect_url: Optional[str] = None
    hpp_token: Optional[str] = None
    transaction_id: Optional[str] = None
    method: str = "hpp"

    def payment_fields(self) -> Dict[str, Any]:
        return {"method": self.method, "redirectUrl": self.redirect_url, "hppToken": self.hpp_token}


class PowertranzGateway(BasePaymentGateway):
    """
    PowerTranz Payment Gateway Implementation
    public_key holds the PowerTranz id, secret_key the password.
    """

    provider = GatewayProvider.POWERTRANZ
    gateway_name = "PowerTranz"

    SANDBOX_URL = POWERTRANZ_API_URL
    PRODUCTION_URL = POWERTRANZ_LIVE_URL

    def _validate_config(self):
        super()._validate_config()
        if not self.credentials.public_key:
            raise self.error("PowerTranz id is not configured")

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "PowerTranz-PowerTranzId": self.credentials.public_key,
            "PowerTranz-PowerTranzPassword": self.credentials.secret_key,
        }

    def _error_message(self, data: Any) -> Optional[str]:
        if isinstance(data, dict):
            return data.get("ResponseMessage") or _error_messages(data.get("Errors")) or super()._error_message(data)
        return None

    async def init(self, request: InitRequest) -> InitResult:
        flow = request.flow
        if isinstance(flow, HppFlow):
            return await self._init_hpp(request)
        if isinstance(flow, SpiFlow):
            return await self._init_spi(request, flow.card)
        raise MissingCardDetails(["pan", "cvv", "expiry"])

    async def _init_spi(self, request: InitRequest, card: CardData) -> PowertranzSpiResult:
        transaction_id = str(uuid.uuid4())

        payload = {
            "TransactionIdentifier": transaction_id,
            "TotalAmount": round(request.amount, 2),
            "CurrencyCode": currency_code(request.currency),
            "ThreeDSecure": True,
            "Source": {
                "CardPan": card.pan,
                "CardCvv": card.cvv,
                "CardExpiration": card.expiry[2:] + card.expiry[:2],  # MMYY -> YYMM
                "CardholderName": card.holder_name or request.buyer.name or "Guest",
            },
            "OrderIdentifier": request.order_id,
            "AddressMatch": False,
            "ExtendedData": {
                "ThreeDSecure": {
                    "ChallengeWindowSize": 4,
                    "ChallengeIndicator": "03",
                },
                "MerchantResponseUrl": f"{base_url()}/api/payments/powertranz/3ds-response",
            },
        }

        print(f"[INFO] PowerTranz SPI sale for order {request.order_id}, card ending {card.last4}")

        data = await self.send_json("POST", self.get_api_url("/api/spi/Sale"), headers=self._headers(), json=payload)

        if data.get("IsoResponseCode") == SPI_PREPROCESSED and data.get("RedirectData"):
            return PowertranzSpiResult(
                provider=self.provider,
                redirect_data=data["RedirectData"],
                spi_token=data.get("SpiToken"),
                transaction_id=data.get("TransactionIdentifier") or transaction_id,
            )

        raise self.error(data.get("ResponseMessage") or _error_messages(data.get("Errors")) or "PowerTranz SPI init failed")

    async def _init_hpp(self, request: InitRequest) -> PowertranzHppResult:
        if request.amount <= 0:
            raise ValidationError("Invalid amount")

        transaction_id = str(uuid.uuid4())
        buyer = request.buyer

        payload = {
            "TransactionIdentifier": transaction_id,
            "TotalAmount": round(request.amount, 2),
            "CurrencyCode": currency_code(request.currency),
            "OrderIdentifier": request.order_id,
            "ThreeDSecure": True,
            "ExtendedData": {
                "HostedPage": {
                    "PageSet": HPP_PAGE_SET,
                    "PageName": HPP_PAGE_NAME,
                    "ReturnUrl": f"{base_url()}/api/payments/powertranz/hpp-callback",
                    "CancelUrl": f"{base_url()}/api/payments/powertranz/hpp-cancel",
                    "NotificationUrl": f"{base_url()}/api/payments/powertranz/hpp-notify",
                },
            },
            "ReferenceNumber": request.order_id,
            "Description": f"Payment for Order {request.order_id}",
        }
        if buyer.email:
            payload["CustomerEmail"] = buyer.email
        if buyer.name:
            payload["CustomerName"] = buyer.name
        if buyer.phone:
            payload["CustomerPhone"] = buyer.phone

        print(f"[INFO] PowerTranz HPP session for order {request.order_id}")

        data = await self.send_json("POST", self.get_api_url("/api/spi/Sale"), headers=self._headers(), json=payload)

        if not data.get("RedirectUrl"):
            raise self.error(data.get("ResponseMessage") or "HPP initialization failed")

        return PowertranzHppResult(
            provider=self.provider,
            redirect_url=data["RedirectUrl"],
            hpp_token=data.get("HppToken") or data.get("SpiToken"),
            transaction_id=data.get("TransactionIdentifier") or transaction_id,
        )

    async def verify(self, body: Dict[str, Any]) -> VerifyResult:
        """Finalize an SPI payment with the token returned after 3-D Secure"""
        payload = body.get("powertranz") or body
        spi_token = payload.get("spiToken") or payload.get("spi_token") or payload.get("SpiToken")

        if not spi_token:
            return VerifyResult(success=False, provider=self.provider, message="PowerTranz spiToken missing")

        data = await self.send_json(
            "POST",
            self.get_api_url("/api/spi/Payment"),
            headers=self._headers(),
            content=json.dumps(spi_token),
        )

        approved = _is_true(data.get("Approved"))
        order_id = data.get("OrderIdentifier") or payload.get("orderId") or payload.get("order_id")

        if not approved:
            return VerifyResult(
                success=False,
                provider=self.provider,
                transaction_id=data.get("TransactionIdentifier"),
                order_id=order_id,
                message=data.get("ResponseMessage") or _error_messages(data.get("Errors")) or "Payment was declined",
                raw_response=data,
            )

        return VerifyResult(
            success=True,
            provider=self.provider,
            transaction_id=data.get("TransactionIdentifier"),
            order_id=order_id,
            amount=data.get("TotalAmount"),
            currency=data.get("CurrencyCode"),
            metadata={"card_brand": data.get("CardBrand"), "iso_response_code": data.get("IsoResponseCode")},
            raw_response=data,
        )

    def verify_hpp_signature(self, payload: Dict[str, Any], signature: Optional[str]) -> bool:
        """Check a hosted page callback / notification against the merchant password"""
        if not signature:
            return False
        expected = hpp_signature(payload, self.credentials.secret_key)
        return hmac.compare_digest(expected, str(signature).strip().lower())
