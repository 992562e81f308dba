"""
Base Payment Gateway
Normalized adapter contract shared by all payment providers
"""
import os
import json
import secrets
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field
from enum import Enum

import httpx
from dotenv import load_dotenv

from app.models.payment.gateway_config import GatewayProvider, PaymentGatewayConfig
from app.services.payment.errors import GatewayError, GatewayTimeout, ValidationError

load_dotenv()

HTTP_TIMEOUT = float(os.getenv("PAYMENT_HTTP_TIMEOUT", "30"))

# PayPal rejects custom_id values longer than this
PAYPAL_CUSTOM_ID_LIMIT = 127


def to_minor_units(amount: float) -> int:
    """Amount in cents / paise / kobo"""
    return int(round(amount * 100))


def mint_guest_access_token() -> str:
    """Opaque token that lets a guest reach their own order later"""
    return secrets.token_urlsafe(24)


class PurchaseKind(str, Enum):
    """What the payment is for"""
    PACKAGE = "package"
    TOPUP = "topup"


@dataclass(frozen=True)
class GatewayCredentials:
    """Credentials of one gateway row"""
    provider: GatewayProvider
    public_key: Optional[str] = None
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    is_live: bool = False

    @classmethod
    def from_config(cls, gateway: PaymentGatewayConfig) -> "GatewayCredentials":
        return cls(
            provider=gateway.provider,
            public_key=gateway.public_key,
            secret_key=gateway.secret_key,
            webhook_secret=gateway.webhook_secret,
            is_live=gateway.is_live,
        )

    def secrets(self) -> List[str]:
        """Values that must never appear in error messages"""
        return [v for v in (self.secret_key, self.public_key, self.webhook_secret) if v]


@dataclass(frozen=True)
class BuyerIdentity:
    """Authenticated user XOR guest contact details"""
    user_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    address: Optional[Dict[str, str]] = None
    guest_access_token: Optional[str] = None

    def __post_init__(self):
        if self.user_id and self.guest_access_token:
            raise ValidationError("Authenticated checkout cannot carry a guest access token")
        if not self.user_id and not self.email:
            raise ValidationError("Email is required for guest checkout")

    @property
    def is_guest(self) -> bool:
        return not self.user_id


@dataclass(frozen=True)
class CardData:
    """Raw card fields for PowerTranz SPI"""
    pan: str
    cvv: str
    expiry: str  # MMYY
    holder_name: Optional[str] = None

    @property
    def last4(self) -> str:
        return self.pan[-4:]


@dataclass(frozen=True)
class SpiFlow:
    """PowerTranz inline card capture with a 3-D Secure iframe"""
    card: CardData
    method: str = "spi"


@dataclass(frozen=True)
class HppFlow:
    """PowerTranz hosted payment page redirect"""
    method: str = "hpp"


PowertranzFlow = Union[SpiFlow, HppFlow]


@dataclass(frozen=True)
class DiscountMetadata:
    """
    Discount identifiers attached to a payment.
    Computed once from pricing and never re-validated by adapters.
    """
    promo_code: Optional[str] = None
    promo_type: Optional[str] = None
    voucher_id: Optional[str] = None
    gift_card_id: Optional[str] = None
    referral_credits: Optional[float] = None
    promo_discount: Optional[float] = None

    def discount_fields(self) -> Dict[str, str]:
        return {
            "promoCode": self.promo_code or "",
            "promoType": self.promo_type or "",
            "voucherId": self.voucher_id or "",
            "giftCardId": self.gift_card_id or "",
            "referralCredits": _str(self.referral_credits),
            "promoDiscount": _str(self.promo_discount),
        }

    def serialize_for(self, provider: GatewayProvider, request: "InitRequest") -> Union[Dict[str, Any], str]:
        """
        Metadata in the shape each provider accepts.

        stripe:   flat dict of strings (payment intent metadata)
        razorpay: flat dict of strings (order notes)
        paypal:   compact JSON string for purchase_units[].custom_id
        paystack: dict (transaction metadata)
        """
        bag = {**order_shape(request), **self.discount_fields()}

        if provider in (GatewayProvider.STRIPE, GatewayProvider.RAZORPAY):
            return {k: str(v) for k, v in bag.items()}
        if provider == GatewayProvider.PAYSTACK:
            return dict(bag)
        if provider == GatewayProvider.PAYPAL:
            return _paypal_custom_id(bag)
        raise ValueError(f"{provider.value} does not carry payment metadata")


def _str(value: Any) -> str:
    return "" if value is None else str(value)


# Dropped first when the PayPal blob is too long
_PAYPAL_DROP_ORDER = [
    "guestPhone", "promoDiscount", "referralCredits", "promoType",
    "promoCode", "giftCardId", "voucherId", "quantity", "packageId", "guestEmail",
]


def _paypal_custom_id(bag: Dict[str, Any]) -> str:
    compact = {k: v for k, v in bag.items() if v not in ("", None)}
    encoded = json.dumps(compact, separators=(",", ":"))
    for key in _PAYPAL_DROP_ORDER:
        if len(encoded) <= PAYPAL_CUSTOM_ID_LIMIT:
            break
        compact.pop(key, None)
        encoded = json.dumps(compact, separators=(",", ":"))
    return encoded


def parse_paypal_custom_id(custom_id: Optional[str]) -> Dict[str, Any]:
    """Reverse of the PayPal custom_id serialization"""
    try:
        data = json.loads(custom_id or "{}")
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def order_shape(request: "InitRequest") -> Dict[str, Any]:
    """
    Identity fields for the four order shapes:
    user package, guest package, user top-up, guest top-up.
    """
    buyer = request.buyer

    if request.kind == PurchaseKind.TOPUP:
        shape: Dict[str, Any] = {
            "type": "topup_purchase",
            "packageId": request.package_id,
            "iccid": request.iccid or "",
            "orderId": request.order_id,
        }
    elif buyer.is_guest:
        shape = {
            "type": "guest_purchase",
            "packageId": request.package_id,
            "quantity": str(request.quantity),
            "orderId": request.order_id,
        }
    else:
        shape = {
            "type": "package_purchase",
            "packageId": request.package_id,
            "quantity": str(request.quantity),
            "orderId": request.order_id,
        }

    if buyer.is_guest:
        shape["guestEmail"] = buyer.email or ""
        shape["guestPhone"] = buyer.phone or ""
        shape["guestAccessToken"] = buyer.guest_access_token or ""
    else:
        shape["userId"] = buyer.user_id

    return shape


@dataclass(frozen=True)
class InitRequest:
    """Normalized adapter input"""
    credentials: GatewayCredentials
    amount: float
    currency: str
    package_id: str
    order_id: str
    buyer: BuyerIdentity
    quantity: int = 1
    discounts: DiscountMetadata = field(default_factory=DiscountMetadata)
    kind: PurchaseKind = PurchaseKind.PACKAGE
    iccid: Optional[str] = None
    flow: Optional[PowertranzFlow] = None

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)

    def metadata_for(self, provider: GatewayProvider) -> Union[Dict[str, Any], str]:
        return self.discounts.serialize_for(provider, self)


@dataclass
class InitResult:
    """Normalized adapter output"""
    provider: GatewayProvider

    def payment_fields(self) -> Dict[str, Any]:
        return {}


@dataclass
class VerifyResult:
    """Result of confirming a payment with the provider"""
    success: bool
    provider: GatewayProvider
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "transaction_id": self.transaction_id,
            "order_id": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "metadata": self.metadata,
        }


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateways.
    All payment gateways must implement init and verify.
    """

    provider: GatewayProvider
    gateway_name: str = "Base Gateway"

    SANDBOX_URL: str = ""
    PRODUCTION_URL: str = ""

    def __init__(self, credentials: GatewayCredentials, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize gateway with credentials.

        Args:
            credentials: Keys of the gateway row
            client: Optional shared HTTP client (a new one per call otherwise)
        """
        self.credentials = credentials
        self.client = client
        self.is_sandbox = not credentials.is_live
        self._validate_config()

    def _validate_config(self):
        """Validate required credentials"""
        if not self.credentials.secret_key:
            raise GatewayError(self.provider.value, "gateway secret key is not configured")

    @abstractmethod
    async def init(self, request: InitRequest) -> InitResult:
        """Create the provider-side payment session"""

    @abstractmethod
    async def verify(self, body: Dict[str, Any]) -> VerifyResult:
        """Confirm a payment outcome with the provider"""

    def get_api_url(self, endpoint: str) -> str:
        """Get full API URL for endpoint"""
        base_url = self.SANDBOX_URL if self.is_sandbox else self.PRODUCTION_URL
        return f"{base_url}/{endpoint.lstrip('/')}"

    def error(self, message: str) -> GatewayError:
        return GatewayError(self.provider.value, message, self.credentials.secrets())

    async def send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request to the provider.
        Timeouts raise GatewayTimeout; transport failures raise GatewayError.
        """
        try:
            if self.client is not None:
                return await self.client.request(method, url, **kwargs)
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise GatewayTimeout(self.provider.value, self.credentials.secrets())
        except httpx.HTTPError as e:
            raise self.error(str(e) or e.__class__.__name__)

    async def send_json(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """Send a request and return the decoded body, raising on HTTP errors"""
        response = await self.send(method, url, **kwargs)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            raise self.error(self._error_message(data) or f"HTTP {response.status_code}")

        return data if isinstance(data, dict) else {"data": data}

    def _error_message(self, data: Any) -> Optional[str]:
        """Pick the upstream error text out of a provider error body"""
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("description") or error.get("message")
        return data.get("message") or data.get("error_description") or (error if isinstance(error, str) else None)
