from typing import Any
from fastapi.responses import JSONResponse

from app.services.payment.errors import PaymentError


def success_response(
    message: str = "Success",
    data: Any = None,
    status_code: int = 200
) -> JSONResponse:
    """
    Standard success response

    Args:
        message: Success message
        data: Response data (optional)
        status_code: HTTP status code (default: 200)

    Returns:
        JSONResponse with success format
    """
    response = {
        "success": True,
        "message": message
    }

    if data is not None:
        response["data"] = data

    return JSONResponse(content=response, status_code=status_code)


def error_response(
    message: str = "Error",
    status_code: int = 400
) -> JSONResponse:
    """
    Standard error response.
    Also used with status 200 for declined payments.
    """
    return JSONResponse(
        content={
            "success": False,
            "message": message
        },
        status_code=status_code
    )


def payment_error_response(e: PaymentError) -> JSONResponse:
    """Render a payment engine error with its HTTP status"""
    if e.status_code >= 500:
        print(f"[ERROR] {e.__class__.__name__}: {e.message}")
    else:
        print(f"[WARN] {e.__class__.__name__}: {e.message}")
    return error_response(message=e.message, status_code=e.status_code)
