"""
Pricing Calculator
Computes the final checkout price: unit price x quantity, one primary
discount (voucher, gift card or referral code) and stackable referral credits.
"""
from datetime import datetime
from typing import Optional, Dict, Any, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId

from app.models.payment.pricing import PromoType, DiscountInputs, PricingResult
from app.models.payment.gateway_config import CurrencyRate
from app.services.payment.errors import ValidationError, UnsupportedCurrency, InvalidPricing

BASE_CURRENCY = "USD"
MIN_QUANTITY = 1
MAX_QUANTITY = 10

# Tolerance for float noise on two-decimal amounts
EPSILON = 0.005


def compute_pricing(
    unit_price: float,
    quantity: int,
    currency: str,
    primary_discount: float = 0.0,
    primary_source: Optional[PromoType] = None,
    requested_credits: float = 0.0,
    credit_balance: float = 0.0,
) -> PricingResult:
    """
    Pure pricing arithmetic.

    total = max(subtotal - primary_discount - referral_credits, 0)

    Referral credits are capped at min(requested, balance, subtotal - primary).
    A primary discount larger than the subtotal, or any negative input, is an
    upstream inconsistency and raises InvalidPricing instead of being clamped.
    """
    for label, value in (
        ("unit price", unit_price),
        ("primary discount", primary_discount),
        ("referral credits", requested_credits),
        ("referral balance", credit_balance),
    ):
        if value is None or value < 0:
            raise InvalidPricing(f"Invalid {label}: {value}")

    qty = max(MIN_QUANTITY, min(MAX_QUANTITY, int(quantity or MIN_QUANTITY)))
    subtotal = round(unit_price * qty, 2)
    primary = round(primary_discount, 2)

    if primary > subtotal + EPSILON:
        raise InvalidPricing(
            f"Discount {primary:.2f} exceeds subtotal {subtotal:.2f}"
        )

    cap = round(subtotal - primary, 2)
    applied_credits = round(min(requested_credits, credit_balance, cap), 2)

    remaining = subtotal - primary - applied_credits
    if remaining < -EPSILON:
        raise InvalidPricing("Referral credits exceed the remaining amount")

    total = round(max(remaining, 0.0), 2)

    return PricingResult(
        unit_price=round(unit_price, 2),
        quantity=qty,
        subtotal=subtotal,
        primary_discount=primary,
        primary_discount_source=primary_source if primary > 0 else None,
        referral_credits=applied_credits,
        discount=round(primary + applied_credits, 2),
        total=total,
        currency=currency,
        is_free=total == 0,
    )


def resolve_primary_source(discounts: DiscountInputs) -> Optional[PromoType]:
    """
    Work out which single primary discount the request asks for.
    More than one primary discount in the same request is rejected.
    """
    requested = set()
    if discounts.voucher_id:
        requested.add(PromoType.VOUCHER)
    if discounts.gift_card_id:
        requested.add(PromoType.GIFT_CARD)
    if discounts.promo_type:
        if discounts.promo_type == PromoType.REFERRAL:
            if discounts.promo_code:
                requested.add(PromoType.REFERRAL)
        else:
            requested.add(discounts.promo_type)

    if len(requested) > 1:
        names = ", ".join(sorted(p.value for p in requested))
        raise InvalidPricing(f"Only one primary discount can be applied per order (got {names})")

    return next(iter(requested), None)


class DiscountValidator:
    """
    Looks up and validates discount codes.
    Invalid, expired or inactive codes yield no discount.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.vouchers = db.vouchers
        self.gift_cards = db.gift_cards
        self.referral_settings = db.referral_settings
        self.users = db.users

    async def voucher_discount(self, discounts: DiscountInputs, subtotal: float) -> float:
        """Voucher: percentage (optionally capped) or fixed amount"""
        query = {"code": discounts.promo_code} if discounts.promo_code else {"voucher_id": discounts.voucher_id}
        voucher = await self.vouchers.find_one(query)
        if not voucher or voucher.get("status") != "active":
            return 0.0

        if discounts.voucher_id and voucher.get("voucher_id") not in (None, discounts.voucher_id):
            raise InvalidPricing("Voucher does not match the supplied code")

        now = datetime.utcnow()
        valid_from = voucher.get("valid_from")
        valid_until = voucher.get("valid_until")
        if (valid_from and now < valid_from) or (valid_until and now > valid_until):
            return 0.0

        value = float(voucher.get("value", 0))
        if voucher.get("type") == "percentage":
            amount = subtotal * value / 100
            if voucher.get("max_discount_amount"):
                amount = min(amount, float(voucher["max_discount_amount"]))
        else:
            amount = min(value, subtotal)

        return round(amount, 2)

    async def gift_card_discount(self, discounts: DiscountInputs, subtotal: float) -> float:
        """Gift card: spend up to the remaining balance"""
        query = {"code": discounts.promo_code} if discounts.promo_code else {"gift_card_id": discounts.gift_card_id}
        gift_card = await self.gift_cards.find_one(query)
        if not gift_card or gift_card.get("status") != "active":
            return 0.0

        if discounts.gift_card_id and gift_card.get("gift_card_id") not in (None, discounts.gift_card_id):
            raise InvalidPricing("Gift card does not match the supplied code")

        return round(min(float(gift_card.get("balance", 0)), subtotal), 2)

    async def referral_code_discount(self, discounts: DiscountInputs, subtotal: float) -> float:
        """Referral code discount for the referred buyer"""
        settings = await self.referral_settings.find_one({})
        if not settings or not settings.get("enabled"):
            return 0.0

        if subtotal < float(settings.get("min_order_amount", 0)):
            return 0.0

        reward = float(settings.get("referred_user_discount", 0))
        if settings.get("reward_type") == "percentage":
            amount = subtotal * reward / 100
        else:
            amount = reward

        return round(min(amount, subtotal), 2)

    async def referral_balance(self, user_id: Optional[str]) -> float:
        """Referral credit balance of an authenticated user"""
        if not user_id:
            return 0.0

        key = ObjectId(user_id) if ObjectId.is_valid(user_id) else user_id
        user = await self.users.find_one({"_id": key})
        if not user:
            return 0.0

        return float(user.get("referral_balance") or 0)


class PricingCalculator:
    """
    Resolves package price and discounts, then delegates the arithmetic to
    compute_pricing. Reads only; nothing is stored.
    """

    def __init__(self, db: AsyncIOMotorDatabase, validator: Optional[DiscountValidator] = None):
        self.db = db
        self.packages = db.packages
        self.currencies = db.currencies
        self.validator = validator or DiscountValidator(db)

    async def get_package(self, package_id: str) -> Dict[str, Any]:
        package = await self.packages.find_one({"package_id": package_id, "status": "active"})
        if not package:
            raise ValidationError("Package not found")
        return package

    async def convert_from_usd(self, amount_usd: float, currency: str) -> float:
        """Convert a USD amount with the currency table rates"""
        code = (currency or "").upper()
        from_currency = await self.currencies.find_one({"code": BASE_CURRENCY})
        to_currency = await self.currencies.find_one({"code": code})

        if not from_currency:
            raise ValidationError(f"Base currency {BASE_CURRENCY} is not configured")
        if not to_currency:
            raise UnsupportedCurrency(code)

        from_rate = CurrencyRate(**self._strip_id(from_currency)).conversion_rate
        to_rate = CurrencyRate(**self._strip_id(to_currency)).conversion_rate
        if from_rate <= 0 or to_rate <= 0:
            raise InvalidPricing(f"Invalid conversion rate for {code}")

        return round(amount_usd / from_rate * to_rate, 2)

    async def calculate_final_price(
        self,
        package_id: str,
        quantity: int,
        currency: str,
        discounts: Optional[DiscountInputs] = None,
        user_id: Optional[str] = None,
    ) -> PricingResult:
        """
        Compute the final price for a package checkout.

        Args:
            package_id: Package being bought
            quantity: Number of eSIMs (clamped to 1..10)
            currency: Requested currency code
            discounts: Promo / voucher / gift card / referral inputs
            user_id: Authenticated buyer (referral credits need one)

        Returns:
            PricingResult

        Raises:
            ValidationError, UnsupportedCurrency, InvalidPricing
        """
        discounts = discounts or DiscountInputs()
        primary_source = resolve_primary_source(discounts)

        package = await self.get_package(package_id)
        unit_price = await self.convert_from_usd(float(package.get("retail_price", 0)), currency)

        qty = max(MIN_QUANTITY, min(MAX_QUANTITY, int(quantity or MIN_QUANTITY)))
        subtotal = round(unit_price * qty, 2)

        primary = 0.0
        if primary_source == PromoType.VOUCHER:
            primary = await self.validator.voucher_discount(discounts, subtotal)
        elif primary_source == PromoType.GIFT_CARD:
            primary = await self.validator.gift_card_discount(discounts, subtotal)
        elif primary_source == PromoType.REFERRAL:
            primary = await self.validator.referral_code_discount(discounts, subtotal)

        balance = 0.0
        if discounts.referral_credits and discounts.referral_credits > 0:
            balance = await self.validator.referral_balance(user_id)

        return compute_pricing(
            unit_price=unit_price,
            quantity=qty,
            currency=currency.upper(),
            primary_discount=primary,
            primary_source=primary_source,
            requested_credits=discounts.referral_credits or 0.0,
            credit_balance=balance,
        )

    async def calculate_topup_price(
        self,
        package_id: str,
        currency: str,
        margin_percentage: float,
    ) -> Tuple[PricingResult, float]:
        """
        Top-up price: package retail price plus the platform top-up margin.

        Returns:
            (pricing, base_price)
        """
        if margin_percentage < 0:
            raise InvalidPricing(f"Invalid top-up margin: {margin_percentage}")

        package = await self.get_package(package_id)
        base_price = await self.convert_from_usd(float(package.get("retail_price", 0)), currency)
        unit_price = round(base_price * (1 + margin_percentage / 100), 2)

        return compute_pricing(unit_price=unit_price, quantity=1, currency=currency.upper()), base_price

    @staticmethod
    def _strip_id(row: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in row.items() if k != "_id"}
