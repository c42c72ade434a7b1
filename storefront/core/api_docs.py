from storefront.schemas.common import ErrorOut

# OpenAPI examples: (error code, typical message, typical path).
_ERROR_EXAMPLES: dict[int, tuple[str, str, str]] = {
    400: ("bad_request", "Insufficient stock for Linen Shirt", "/checkout"),
    401: ("unauthorized", "Invalid webhook signature", "/payments/webhook"),
    403: ("forbidden", "Insufficient role for this action", "/payments/webhook-logs"),
    404: ("not_found", "Order not found", "/orders/3ZxkP9qLmW2"),
    422: ("validation_error", "Validation failed", "/cart/items"),
    500: ("internal_error", "Webhook processing failed", "/payments/webhook"),
    502: ("bad_gateway", "Gateway order creation failed after 3 attempts: HTTP 503", "/checkout/orders/3ZxkP9qLmW2/payment"),
}


def _error_doc(status_code: int) -> dict:
    code, message, path = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error", "/"))
    example = {
        "error": {
            "code": code,
            "message": message,
            "request_id": "5f0c1e9a2b7d4c3e8f6a1b2c3d4e5f60",
            "path": path,
            "details": None,
        }
    }
    return {
        "model": ErrorOut,
        "description": message,
        "content": {"application/json": {"example": example}},
    }


def error_responses(*status_codes: int) -> dict[int, dict]:
    return {status_code: _error_doc(status_code) for status_code in status_codes}
