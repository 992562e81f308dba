"""
Payment Service
Orchestrates checkout: pricing, gateway selection, adapter dispatch,
confirmation and order completion
"""
from typing import Optional, Dict, Any, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
import httpx

from app.models.payment.gateway_config import GatewayProvider, PaymentGatewayConfig, GatewayListResponse
from app.models.payment.payment_order import PaymentMethod, OrderStatus, OrderTransition, OrderInDB
from app.models.payment.pricing import PricingResult
from app.models.payment.checkout import PaymentInitRequest, TopupInitRequest
from app.services.payment.errors import ValidationError, GatewayDisabled, DeclinedPayment
from app.services.payment.gateway_registry import GatewayRegistry
from app.services.payment.pricing import PricingCalculator
from app.services.payment.settings_service import PlatformSettings
from app.services.payment.order_service import OrderService
from app.services.payment.gateways.factory import PaymentGatewayFactory
from app.services.payment.gateways.powertranz import select_powertranz_flow, classify_hpp_result
from app.services.payment.gateways.base import (
    InitRequest,
    InitResult,
    VerifyResult,
    BuyerIdentity,
    DiscountMetadata,
    GatewayCredentials,
    PurchaseKind,
    mint_guest_access_token,
)

# Payment method recorded when a provider confirms
CONFIRM_PAYMENT_METHODS = {
    GatewayProvider.STRIPE: PaymentMethod.STRIPE,
    GatewayProvider.RAZORPAY: PaymentMethod.RAZORPAY,
    GatewayProvider.PAYPAL: PaymentMethod.PAYPAL,
    GatewayProvider.PAYSTACK: PaymentMethod.PAYSTACK,
    GatewayProvider.POWERTRANZ: PaymentMethod.POWERTRANZ_SPI,
}


class PaymentService:
    """
    Service for payment operations.
    Pricing always runs before any gateway call; free orders never reach a gateway.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        client: Optional[httpx.AsyncClient] = None,
        order_service: Optional[OrderService] = None,
    ):
        self.db = db
        self.users = db.users
        self.client = client
        self.registry = GatewayRegistry(db)
        self.pricing = PricingCalculator(db)
        self.order_service = order_service or OrderService(db)

    async def list_gateways(self, currency: Optional[str], settings: PlatformSettings) -> Dict[str, Any]:
        """Enabled gateways for the storefront, optionally filtered by currency"""
        gateways = await self.registry.list_public_gateways(currency)
        return GatewayListResponse(
            gateways=gateways,
            in_app_purchase_enabled=settings.in_app_purchase_enabled,
            currency=currency.upper() if currency else None,
        ).model_dump(mode="json")

    async def init_payment(self, body: PaymentInitRequest, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Start a package checkout.

        Args:
            body: Checkout request
            user_id: Authenticated buyer, None for guests

        Returns:
            {pricing, payment} or {pricing, powertranz, payment}

        Raises:
            ValidationError, UnsupportedCurrency, InvalidPricing,
            GatewayDisabled, MissingCardDetails, GatewayError
        """
        if not body.package_id:
            raise ValidationError("packageId is required")
        if not body.order_id:
            raise ValidationError("orderId is required")
        if not body.currency:
            raise ValidationError("currency is required")
        if not user_id and not body.email:
            raise ValidationError("Email is required for guest checkout")

        pricing = await self.pricing.calculate_final_price(
            package_id=body.package_id,
            quantity=body.quantity,
            currency=body.currency,
            discounts=body.discount_inputs(),
            user_id=user_id,
        )

        if pricing.is_free:
            return await self._complete_free_order(body.order_id, pricing)

        gateway = await self.registry.get_enabled_gateway(body.gateway_id)

        flow = None
        if gateway.provider == GatewayProvider.POWERTRANZ:
            card = body.card.model_dump(exclude_none=True) if body.card else None
            flow = select_powertranz_flow(body.payment_method, card)

        buyer = await self._buyer_identity(user_id, body.email, body.name, body.phone)

        request = InitRequest(
            credentials=GatewayCredentials.from_config(gateway),
            amount=pricing.total,
            currency=pricing.currency,
            package_id=body.package_id,
            order_id=body.order_id,
            buyer=buyer,
            quantity=pricing.quantity,
            discounts=self._discount_metadata(body, pricing),
            kind=PurchaseKind.PACKAGE,
            flow=flow,
        )

        result = await self._dispatch(gateway, request)
        return self._shape_response(pricing, request, result)

    async def init_topup(
        self,
        body: TopupInitRequest,
        user_id: Optional[str],
        settings: PlatformSettings,
    ) -> Dict[str, Any]:
        """
        Start a top-up checkout for an installed eSIM.
        Price is the package retail price plus the platform top-up margin.
        """
        for field_name, label in (
            ("gateway_id", "gatewayId"),
            ("package_id", "packageId"),
            ("iccid", "iccid"),
            ("order_id", "orderId"),
        ):
            if not getattr(body, field_name):
                raise ValidationError(f"{label} is required")
        if not user_id and not body.email:
            raise ValidationError("Email is required for guest checkout")

        pricing, base_price = await self.pricing.calculate_topup_price(
            package_id=body.package_id,
            currency=body.currency,
            margin_percentage=settings.topup_margin,
        )

        gateway = await self.registry.get_enabled_gateway(body.gateway_id)

        flow = None
        if gateway.provider == GatewayProvider.POWERTRANZ:
            card = body.card.model_dump(exclude_none=True) if body.card else None
            flow = select_powertranz_flow(body.payment_method, card)

        buyer = await self._buyer_identity(user_id, body.email, body.name, body.phone)

        request = InitRequest(
            credentials=GatewayCredentials.from_config(gateway),
            amount=pricing.total,
            currency=pricing.currency,
            package_id=body.package_id,
            order_id=body.order_id,
            buyer=buyer,
            kind=PurchaseKind.TOPUP,
            iccid=body.iccid,
            flow=flow,
        )

        result = await self._dispatch(gateway, request)
        response = self._shape_response(pricing, request, result)
        response["pricing"]["base_price"] = base_price
        response["pricing"]["topup_margin"] = settings.topup_margin
        return response

    async def confirm_payment(self, provider: str, body: Dict[str, Any]) -> Tuple[VerifyResult, OrderTransition]:
        """
        Verify a payment with the provider and complete the order.

        A retry on an order that is already completed answers with the
        earlier success; single-use tokens (PowerTranz SpiToken) would
        otherwise come back declined on the second call.

        Raises:
            GatewayDisabled: no enabled gateway for the provider
            DeclinedPayment: provider did not approve the payment
        """
        try:
            provider_tag = GatewayProvider((provider or "").lower())
        except ValueError:
            raise GatewayDisabled(f"Unsupported payment provider: {provider}")

        gateway = await self.registry.get_enabled_gateway_for_provider(provider_tag.value)
        adapter = PaymentGatewayFactory.from_config(gateway, client=self.client)

        nested = body.get("powertranz") if isinstance(body.get("powertranz"), dict) else {}
        requested_order_id = body.get("orderId") or body.get("order_id") or nested.get("orderId")
        if requested_order_id:
            order = await self.order_service.get_order(requested_order_id)
            if order and order.status == OrderStatus.COMPLETED:
                print(f"[INFO] Order {requested_order_id} already completed, skipping {provider_tag.value} verification")
                return self._already_completed(provider_tag, order)

        result = await adapter.verify(body)
        order_id = result.order_id or requested_order_id

        if not result.success:
            if order_id:
                order = await self.order_service.get_order(order_id)
                if order and order.status == OrderStatus.COMPLETED:
                    print(f"[INFO] {provider_tag.value} re-verification for completed order {order_id} "
                          f"not approved ({result.message}), keeping completion")
                    return self._already_completed(provider_tag, order)

            print(f"[WARN] {provider_tag.value} payment not approved for order {order_id}: {result.message}")
            if provider_tag == GatewayProvider.POWERTRANZ and order_id:
                await self.order_service.mark_declined(order_id, result.message)
            raise DeclinedPayment(result.message or "Payment was not approved")

        if not order_id:
            raise ValidationError("Order id missing from payment confirmation")

        transition = await self.order_service.complete_order(
            order_id=order_id,
            payment_method=CONFIRM_PAYMENT_METHODS[provider_tag].value,
            transaction_id=result.transaction_id,
        )
        result.order_id = order_id
        return result, transition

    def _already_completed(self, provider: GatewayProvider, order: OrderInDB) -> Tuple[VerifyResult, OrderTransition]:
        result = VerifyResult(
            success=True,
            provider=provider,
            transaction_id=order.transaction_id,
            order_id=order.order_id,
            message="Payment already confirmed",
        )
        transition = OrderTransition(order_id=order.order_id, status=OrderStatus.COMPLETED, already_completed=True)
        return result, transition

    async def handle_hpp_callback(self, payload: Dict[str, Any], signature: Optional[str] = None) -> Dict[str, Any]:
        """Browser returning from the PowerTranz hosted page"""
        return await self._apply_hpp_result(payload, source="callback", signature=signature)

    async def handle_hpp_notify(self, payload: Dict[str, Any], signature: Optional[str] = None) -> Dict[str, Any]:
        """Server to server notification; may arrive more than once"""
        return await self._apply_hpp_result(payload, source="notify", signature=signature)

    async def _hpp_signature_valid(self, payload: Dict[str, Any], signature: Optional[str]) -> bool:
        """Signature from the header, or the Signature field the bank adds to the post"""
        signature = signature or payload.get("Signature")
        if not signature:
            return False
        try:
            gateway = await self.registry.get_enabled_gateway_for_provider(GatewayProvider.POWERTRANZ.value)
        except GatewayDisabled:
            return False
        adapter = PaymentGatewayFactory.from_config(gateway, client=self.client)
        return adapter.verify_hpp_signature(payload, signature)

    async def _apply_hpp_result(
        self,
        payload: Dict[str, Any],
        source: str,
        signature: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply a hosted page outcome to the order.
        Unsigned or badly signed posts never change the order, approved or not.
        """
        result = classify_hpp_result(payload)
        order_id = result["order_id"]

        if not order_id:
            print(f"[WARN] PowerTranz HPP {source} without OrderIdentifier")
            return {**result, "approved": False, "message": "Order reference missing", "applied": False, "already_completed": False}

        if not await self._hpp_signature_valid(payload, signature):
            print(f"[SECURITY] PowerTranz HPP {source} for order {order_id} failed signature check, order left unchanged")
            return {
                **result,
                "approved": False,
                "message": "Payment could not be verified",
                "applied": False,
                "already_completed": False,
            }

        if result["approved"]:
            transition = await self.order_service.complete_order(
                order_id=order_id,
                payment_method=PaymentMethod.POWERTRANZ_HPP.value,
                transaction_id=result["transaction_id"],
            )
        else:
            transition = await self.order_service.mark_declined(order_id, result["message"])

        print(f"[INFO] PowerTranz HPP {source} for order {order_id}: approved={result['approved']}")
        return {**result, "applied": transition.applied, "already_completed": transition.already_completed}

    async def _complete_free_order(self, order_id: str, pricing: PricingResult) -> Dict[str, Any]:
        """Zero total: no gateway involved"""
        print(f"[INFO] Order {order_id} fully covered by discounts, completing without payment")
        await self.order_service.complete_order(
            order_id=order_id,
            payment_method=PaymentMethod.FREE.value,
            transaction_id=f"FREE-{order_id}",
            extra={"discount_breakdown": pricing.breakdown()},
        )
        return {
            "pricing": pricing.model_dump(mode="json"),
            "payment": {"provider": "free", "status": "completed"},
        }

    async def _dispatch(self, gateway: PaymentGatewayConfig, request: InitRequest) -> InitResult:
        adapter = PaymentGatewayFactory.get_gateway(request.credentials, client=self.client)
        print(f"[INFO] Initializing {gateway.provider.value} payment for order {request.order_id} "
              f"({request.amount:.2f} {request.currency})")
        return await adapter.init(request)

    async def _buyer_identity(
        self,
        user_id: Optional[str],
        email: Optional[str],
        name: Optional[str],
        phone: Optional[str],
    ) -> BuyerIdentity:
        """Authenticated profile, or guest contact details with a fresh access token"""
        if not user_id:
            return BuyerIdentity(
                email=email,
                name=name,
                phone=phone,
                guest_access_token=mint_guest_access_token(),
            )

        key = ObjectId(user_id) if ObjectId.is_valid(user_id) else user_id
        user = await self.users.find_one({"_id": key}) or {}

        return BuyerIdentity(
            user_id=user_id,
            email=user.get("email") or email,
            name=user.get("full_name") or user.get("name") or name,
            phone=user.get("phone") or phone,
            address=user.get("address") if isinstance(user.get("address"), dict) else None,
        )

    @staticmethod
    def _discount_metadata(body: PaymentInitRequest, pricing: PricingResult) -> DiscountMetadata:
        return DiscountMetadata(
            promo_code=body.promo_code,
            promo_type=pricing.primary_discount_source.value if pricing.primary_discount_source else None,
            voucher_id=body.voucher_id,
            gift_card_id=body.gift_card_id,
            referral_credits=pricing.referral_credits or None,
            promo_discount=pricing.primary_discount or None,
        )

    @staticmethod
    def _shape_response(pricing: PricingResult, request: InitRequest, result: InitResult) -> Dict[str, Any]:
        provider = request.credentials.provider
        payment: Dict[str, Any] = {
            "provider": provider.value,
            "amount": pricing.total,
            "currency": pricing.currency,
        }
        if request.buyer.guest_access_token:
            payment["guest_access_token"] = request.buyer.guest_access_token

        response: Dict[str, Any] = {"pricing": pricing.model_dump(mode="json")}

        if provider == GatewayProvider.POWERTRANZ:
            response["powertranz"] = result.payment_fields()
        else:
            payment.update({k: v for k, v in result.payment_fields().items() if v is not None})

        response["payment"] = payment
        return response
