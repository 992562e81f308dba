"""Pricing arithmetic and discount resolution."""
from datetime import datetime, timedelta

import pytest

from app.models.payment.pricing import DiscountInputs, PromoType
from app.services.payment.errors import InvalidPricing, UnsupportedCurrency, ValidationError
from app.services.payment.pricing import PricingCalculator, compute_pricing, resolve_primary_source


def test_total_is_subtotal_minus_discounts():
    result = compute_pricing(
        unit_price=10.0,
        quantity=3,
        currency="USD",
        primary_discount=4.5,
        primary_source=PromoType.VOUCHER,
        requested_credits=2.0,
        credit_balance=10.0,
    )

    assert result.subtotal == 30.0
    assert result.primary_discount == 4.5
    assert result.referral_credits == 2.0
    assert result.discount == 6.5
    assert result.total == 23.5
    assert result.is_free is False


@pytest.mark.parametrize(
    "primary, requested, balance, expected_credits",
    [
        (0.0, 50.0, 5.0, 5.0),    # capped by balance
        (0.0, 3.0, 50.0, 3.0),    # capped by request
        (8.0, 50.0, 50.0, 2.0),   # capped by what is left after the primary discount
        (10.0, 5.0, 5.0, 0.0),    # nothing left to cover
    ],
)
def test_referral_credits_are_capped(primary, requested, balance, expected_credits):
    result = compute_pricing(10.0, 1, "USD", primary, PromoType.GIFT_CARD, requested, balance)

    assert result.referral_credits == expected_credits
    assert result.total == round(max(10.0 - primary - expected_credits, 0), 2)
    assert result.total >= 0


def test_quantity_is_clamped():
    assert compute_pricing(2.0, 25, "USD").quantity == 10
    assert compute_pricing(2.0, 0, "USD").quantity == 1


def test_primary_discount_above_subtotal_is_rejected():
    with pytest.raises(InvalidPricing):
        compute_pricing(10.0, 1, "USD", primary_discount=12.0, primary_source=PromoType.VOUCHER)


def test_negative_amounts_are_rejected():
    with pytest.raises(InvalidPricing):
        compute_pricing(-1.0, 1, "USD")
    with pytest.raises(InvalidPricing):
        compute_pricing(10.0, 1, "USD", requested_credits=-5.0)


def test_only_one_primary_discount_per_order():
    with pytest.raises(InvalidPricing):
        resolve_primary_source(DiscountInputs(voucher_id="v-1", gift_card_id="gc-1"))

    with pytest.raises(InvalidPricing):
        resolve_primary_source(DiscountInputs(promo_type=PromoType.REFERRAL, promo_code="FRIEND", voucher_id="v-1"))


def test_referral_type_without_code_is_not_a_discount():
    assert resolve_primary_source(DiscountInputs(promo_type=PromoType.REFERRAL)) is None


@pytest.mark.anyio
async def test_plain_package_price(db):
    pricing = await PricingCalculator(db).calculate_final_price("pkg-10", 2, "USD")

    assert pricing.unit_price == 10.0
    assert pricing.subtotal == 20.0
    assert pricing.total == 20.0
    assert pricing.is_free is False


@pytest.mark.anyio
async def test_gift_card_covering_the_order_makes_it_free(db):
    db.gift_cards.docs.append({"gift_card_id": "gc-1", "code": "GIFT25", "balance": 25.0, "status": "active"})

    pricing = await PricingCalculator(db).calculate_final_price(
        "pkg-10", 1, "USD",
        DiscountInputs(promo_type=PromoType.GIFT_CARD, gift_card_id="gc-1"),
    )

    assert pricing.primary_discount == 10.0
    assert pricing.primary_discount_source == PromoType.GIFT_CARD
    assert pricing.total == 0.0
    assert pricing.is_free is True


@pytest.mark.anyio
async def test_price_is_converted_from_usd(db):
    pricing = await PricingCalculator(db).calculate_final_price("pkg-10", 1, "eur")

    assert pricing.unit_price == 5.0
    assert pricing.currency == "EUR"


@pytest.mark.anyio
async def test_unknown_currency(db):
    with pytest.raises(UnsupportedCurrency):
        await PricingCalculator(db).calculate_final_price("pkg-10", 1, "JPY")


@pytest.mark.anyio
async def test_inactive_package_is_not_sold(db):
    with pytest.raises(ValidationError):
        await PricingCalculator(db).calculate_final_price("pkg-retired", 1, "USD")


@pytest.mark.anyio
async def test_percentage_voucher_respects_cap(db):
    db.vouchers.docs.append({
        "voucher_id": "v-1",
        "code": "HALF",
        "type": "percentage",
        "value": 50,
        "max_discount_amount": 3,
        "status": "active",
    })

    pricing = await PricingCalculator(db).calculate_final_price(
        "pkg-10", 1, "USD", DiscountInputs(promo_type=PromoType.VOUCHER, promo_code="HALF"),
    )

    assert pricing.primary_discount == 3.0
    assert pricing.total == 7.0


@pytest.mark.anyio
async def test_expired_voucher_gives_no_discount(db):
    db.vouchers.docs.append({
        "voucher_id": "v-2",
        "code": "OLD",
        "type": "fixed",
        "value": 5,
        "status": "active",
        "valid_until": datetime.utcnow() - timedelta(days=1),
    })

    pricing = await PricingCalculator(db).calculate_final_price(
        "pkg-10", 1, "USD", DiscountInputs(promo_type=PromoType.VOUCHER, promo_code="OLD"),
    )

    assert pricing.primary_discount == 0.0
    assert pricing.primary_discount_source is None
    assert pricing.total == 10.0


@pytest.mark.anyio
async def test_referral_code_discount(db):
    db.referral_settings.docs.append({
        "enabled": True,
        "reward_type": "percentage",
        "referred_user_discount": 10,
        "min_order_amount": 5,
    })

    pricing = await PricingCalculator(db).calculate_final_price(
        "pkg-10", 2, "USD", DiscountInputs(promo_type=PromoType.REFERRAL, promo_code="FRIEND"),
    )

    assert pricing.primary_discount == 2.0
    assert pricing.total == 18.0


@pytest.mark.anyio
async def test_referral_credits_need_a_signed_in_user(db):
    db.users.docs.append({"_id": "user-1", "email": "a@example.com", "referral_balance": 4.0})
    discounts = DiscountInputs(referral_credits=10.0)

    guest = await PricingCalculator(db).calculate_final_price("pkg-10", 1, "USD", discounts)
    member = await PricingCalculator(db).calculate_final_price("pkg-10", 1, "USD", discounts, user_id="user-1")

    assert guest.referral_credits == 0.0
    assert guest.total == 10.0
    assert member.referral_credits == 4.0
    assert member.total == 6.0


@pytest.mark.anyio
async def test_topup_price_adds_margin(db):
    pricing, base_price = await PricingCalculator(db).calculate_topup_price("pkg-10", "USD", 40)

    assert base_price == 10.0
    assert pricing.total == 14.0
    assert pricing.quantity == 1
