"""
Checkout Request Models
Request bodies for payment init and confirmation.
Fields accept both camelCase (storefront) and snake_case names.
"""
from pydantic import BaseModel, Field
from typing import Optional

from app.models.payment.pricing import PromoType, DiscountInputs


class CardDetails(BaseModel):
    """Raw card fields (PowerTranz SPI only)"""
    pan: Optional[str] = None
    cvv: Optional[str] = None
    expiry: Optional[str] = None  # MMYY
    holder_name: Optional[str] = Field(None, alias="holderName")

    class Config:
        populate_by_name = True


class PaymentInitRequest(BaseModel):
    """Body of POST /payments/init"""
    gateway_id: Optional[str] = Field(None, alias="gatewayId")
    package_id: Optional[str] = Field(None, alias="packageId")
    quantity: int = 1
    currency: Optional[str] = None
    order_id: Optional[str] = Field(None, alias="orderId")

    promo_code: Optional[str] = Field(None, alias="promoCode")
    promo_type: Optional[PromoType] = Field(None, alias="promoType")
    voucher_id: Optional[str] = Field(None, alias="voucherId")
    gift_card_id: Optional[str] = Field(None, alias="giftCardId")
    referral_credits: Optional[float] = Field(None, alias="referralCredits")

    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None

    card: Optional[CardDetails] = None
    payment_method: Optional[str] = Field(None, alias="paymentMethod")  # spi | hpp

    class Config:
        populate_by_name = True

    def discount_inputs(self) -> DiscountInputs:
        return DiscountInputs(
            promo_code=self.promo_code,
            promo_type=self.promo_type,
            voucher_id=self.voucher_id,
            gift_card_id=self.gift_card_id,
            referral_credits=self.referral_credits or 0.0,
        )


class TopupInitRequest(BaseModel):
    """Body of POST /payments/topup/init"""
    gateway_id: Optional[str] = Field(None, alias="gatewayId")
    package_id: Optional[str] = Field(None, alias="packageId")
    iccid: Optional[str] = None
    order_id: Optional[str] = Field(None, alias="orderId")
    currency: str = "USD"

    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None

    card: Optional[CardDetails] = None
    payment_method: Optional[str] = Field(None, alias="paymentMethod")

    class Config:
        populate_by_name = True
