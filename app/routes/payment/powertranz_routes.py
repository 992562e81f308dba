"""
PowerTranz Callback Routes
Endpoints the bank calls during the SPI 3-D Secure and hosted page flows.
These are hit by the bank or the buyer's browser, never by the storefront API client.
"""
import json
from typing import Dict, Any

from fastapi import APIRouter, Request, Depends
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from app.services.payment.payment_service import PaymentService
from app.services.payment.gateways.powertranz import classify_3ds_result
from app.services.payment.powertranz_bridge import parse_3ds_payload, render_3ds_bridge, checkout_result_url
from app.routes.payment.payment_routes import get_payment_service

router = APIRouter(prefix="/payments/powertranz", tags=["PowerTranz"])

SIGNATURE_HEADER = "PowerTranz-Signature"


async def read_payload(request: Request) -> Dict[str, Any]:
    """Bank callbacks arrive as form posts or JSON"""
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    if "form" in content_type:
        form = await request.form()
        return {key: value for key, value in form.items()}

    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


@router.post("/3ds-response", response_class=HTMLResponse)
async def three_ds_response(request: Request):
    """
    MerchantResponseUrl for SPI payments.
    Returns a page that posts the 3DS outcome to the checkout iframe's parent.
    """
    payload = parse_3ds_payload(await read_payload(request))
    result = classify_3ds_result(payload)

    print(f"[INFO] PowerTranz 3DS response for order {result.get('order_id')}: "
          f"success={result['success']} iso={result.get('iso_response_code')}")

    return HTMLResponse(content=render_3ds_bridge(result), status_code=200)


@router.post("/hpp-callback")
async def hpp_callback(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
):
    """Browser return from the hosted payment page"""
    payload = parse_3ds_payload(await read_payload(request))

    try:
        result = await payment_service.handle_hpp_callback(payload, signature=request.headers.get(SIGNATURE_HEADER))
    except Exception as e:
        print(f"[ERROR] PowerTranz HPP callback failed: {e}")
        return RedirectResponse(
            url=checkout_result_url("failed", order_id=payload.get("OrderIdentifier"), message="Payment could not be processed"),
            status_code=303,
        )

    status = "success" if result["approved"] else "failed"
    return RedirectResponse(
        url=checkout_result_url(
            status,
            order_id=result.get("order_id"),
            transaction_id=result.get("transaction_id") if result["approved"] else None,
            message=None if result["approved"] else result.get("message"),
        ),
        status_code=303,
    )


@router.get("/hpp-cancel")
async def hpp_cancel(request: Request):
    """Buyer cancelled on the hosted payment page"""
    order_id = request.query_params.get("OrderIdentifier") or request.query_params.get("orderId")
    print(f"[INFO] PowerTranz HPP cancelled for order {order_id}")
    return RedirectResponse(url=checkout_result_url("cancelled", order_id=order_id), status_code=303)


@router.post("/hpp-notify")
async def hpp_notify(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
):
    """
    Server to server notification.
    Always answers 200 so the bank does not retry; completion is idempotent
    so a repeated notification is harmless. Unsigned posts are ignored.
    """
    try:
        payload = parse_3ds_payload(await read_payload(request))
        result = await payment_service.handle_hpp_notify(payload, signature=request.headers.get(SIGNATURE_HEADER))
        return JSONResponse(
            status_code=200,
            content={"status": "success" if result["approved"] else "declined", "message": result["message"]},
        )
    except Exception as e:
        print(f"[ERROR] PowerTranz HPP notify handler error: {e}")
        return JSONResponse(status_code=200, content={"status": "error", "message": "Internal error"})
