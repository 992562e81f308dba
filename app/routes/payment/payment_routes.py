"""
Payment Routes
API endpoints for checkout: gateway list, payment init, top-up init and confirmation
"""
from fastapi import APIRouter, Depends, Query, Request
from typing import Optional, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.payment.checkout import PaymentInitRequest, TopupInitRequest
from app.services.payment.errors import PaymentError
from app.services.payment.payment_service import PaymentService
from app.services.payment.settings_service import SettingsService, PlatformSettings
from app.routes.auth.dependencies import get_database, get_current_user_id
from app.utils.response import success_response, error_response, payment_error_response

router = APIRouter(prefix="/payments", tags=["Payments"])


async def get_payment_service(db: AsyncIOMotorDatabase = Depends(get_database)) -> PaymentService:
    """Payment service dependency"""
    return PaymentService(db)


async def get_platform_settings(db: AsyncIOMotorDatabase = Depends(get_database)) -> PlatformSettings:
    """Platform settings, read once per request"""
    return await SettingsService(db).load()


@router.get("/gateways")
async def get_available_gateways(
    currency: Optional[str] = Query(None, description="Only gateways supporting this currency"),
    payment_service: PaymentService = Depends(get_payment_service),
    settings: PlatformSettings = Depends(get_platform_settings),
):
    """
    Get enabled payment gateways.
    Public info only; secret keys never leave the server.
    """
    try:
        data = await payment_service.list_gateways(currency, settings)
    except PaymentError as e:
        return payment_error_response(e)

    return success_response(message="Gateways retrieved successfully", data=data)


@router.post("/init")
async def init_payment(
    body: PaymentInitRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    payment_service: PaymentService = Depends(get_payment_service),
):
    """
    Start a checkout for a package order.

    - Prices the cart (quantity, one primary discount, referral credits)
    - Completes zero-total orders directly without a gateway
    - Otherwise opens a payment session with the selected gateway

    Works for signed-in users and guests (guests must send an email).
    """
    try:
        data = await payment_service.init_payment(body, user_id)
    except PaymentError as e:
        return payment_error_response(e)
    except Exception as e:
        print(f"[ERROR] Payment init failed for order {body.order_id}: {e}")
        return error_response(message="Failed to initialize payment", status_code=500)

    if data["payment"].get("provider") == "free":
        return success_response(message="Order completed without payment", data=data)

    return success_response(message="Payment initialized", data=data)


@router.post("/topup/init")
async def init_topup(
    body: TopupInitRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    payment_service: PaymentService = Depends(get_payment_service),
    settings: PlatformSettings = Depends(get_platform_settings),
):
    """Start a checkout for a data top-up on an existing eSIM"""
    try:
        data = await payment_service.init_topup(body, user_id, settings)
    except PaymentError as e:
        return payment_error_response(e)
    except Exception as e:
        print(f"[ERROR] Top-up init failed for order {body.order_id}: {e}")
        return error_response(message="Failed to initialize top-up payment", status_code=500)

    return success_response(message="Top-up payment initialized", data=data)


@router.post("/confirm")
async def confirm_payment(
    request: Request,
    provider: Optional[str] = Query(None),
    payment_service: PaymentService = Depends(get_payment_service),
):
    """
    Confirm a payment after the storefront finished the provider flow.

    Body carries "provider" plus the provider's fields, e.g.
    stripe: paymentIntentId; razorpay: razorpay_order_id, razorpay_payment_id,
    razorpay_signature; paypal: orderId; paystack: reference;
    powertranz: spiToken.

    A declined payment is reported with success=false and HTTP 200.
    """
    try:
        body: Dict[str, Any] = await request.json()
    except ValueError:
        return error_response(message="Invalid JSON body", status_code=400)
    if not isinstance(body, dict):
        return error_response(message="Invalid JSON body", status_code=400)

    provider = provider or body.get("provider")
    if not provider:
        return error_response(message="provider is required", status_code=400)

    try:
        result, transition = await payment_service.confirm_payment(provider, body)
    except PaymentError as e:
        return payment_error_response(e)
    except Exception as e:
        print(f"[ERROR] Payment confirmation failed ({provider}): {e}")
        return error_response(message="Failed to confirm payment", status_code=500)

    message = "Payment already confirmed" if transition.already_completed else "Payment confirmed"
    return success_response(
        message=message,
        data={
            **result.to_dict(),
            "status": "completed",
            "already_completed": transition.already_completed,
        },
    )
