"""
Pricing Models
Discount inputs and the computed price breakdown
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from enum import Enum


class PromoType(str, Enum):
    """Primary discount source"""
    VOUCHER = "voucher"
    GIFT_CARD = "giftcard"
    REFERRAL = "referral"


class DiscountInputs(BaseModel):
    """Discount identifiers sent by checkout"""
    promo_code: Optional[str] = None
    promo_type: Optional[PromoType] = None
    voucher_id: Optional[str] = None
    gift_card_id: Optional[str] = None
    referral_credits: float = 0.0


class PricingResult(BaseModel):
    """Final price for one checkout attempt"""
    unit_price: float
    quantity: int
    subtotal: float
    primary_discount: float = 0.0
    primary_discount_source: Optional[PromoType] = None
    referral_credits: float = 0.0
    discount: float = 0.0           # primary_discount + referral_credits
    total: float
    currency: str
    is_free: bool = False

    class Config:
        frozen = True

    def breakdown(self) -> Dict[str, Any]:
        """Discount breakdown stored on free orders"""
        return {
            "subtotal": self.subtotal,
            "primary_discount": self.primary_discount,
            "primary_discount_source": self.primary_discount_source.value if self.primary_discount_source else None,
            "referral_credits": self.referral_credits,
            "total": self.total,
            "currency": self.currency,
        }
