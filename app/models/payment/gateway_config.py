"""
Payment Gateway Configuration Models
Gateways are edited by admin tooling and read-only to checkout
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class GatewayProvider(str, Enum):
    """Supported payment providers"""
    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    PAYPAL = "paypal"
    PAYSTACK = "paystack"
    POWERTRANZ = "powertranz"


class PaymentGatewayConfig(BaseModel):
    """Payment gateway row in database"""
    gateway_id: str
    provider: GatewayProvider
    display_name: str       # "Card / Apple Pay", "UPI / NetBanking"

    is_enabled: bool = False

    # Credentials
    public_key: Optional[str] = None
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None

    # Provider specific extras, e.g. {"mode": "live"}
    config: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_live(self) -> bool:
        return str(self.config.get("mode", "test")).lower() == "live"


class GatewayConfigResponse(BaseModel):
    """Gateway info safe for the storefront (no secrets)"""
    gateway_id: str
    provider: GatewayProvider
    display_name: str
    public_key: Optional[str] = None


class CurrencyRate(BaseModel):
    """Currency with conversion rate relative to USD"""
    currency_id: str
    code: str               # USD, EUR, GBP, etc.
    name: str = ""
    conversion_rate: float  # units per 1 USD
    is_enabled: bool = True


class GatewayListResponse(BaseModel):
    """Gateway list response"""
    gateways: List[GatewayConfigResponse]
    in_app_purchase_enabled: bool = False
    currency: Optional[str] = None
