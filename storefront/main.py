from sqlalchemy import text

from storefront.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from storefront.core.config import settings
from storefront.core.security_current import SESSION_HEADER
from storefront.db.session import engine
from storefront.routers import auth, cart, checkout, orders, payments

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Storefront cart, checkout and payment reconciliation API.\n\n"
        "Swagger quick test flow:\n"
        "1. Add products with `POST /cart/items` (guests keep the `X-Session-Id` header returned).\n"
        "2. Call `POST /auth/login` to merge the guest cart, or check out as a guest.\n"
        "3. Call `POST /checkout`; online orders return gateway payment details.\n"
        "4. The gateway confirms payment through `POST /payments/webhook`."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Customer accounts and sign-in."},
        {"name": "cart", "description": "Guest and account carts."},
        {"name": "checkout", "description": "Order placement and client-side payment verification."},
        {"name": "orders", "description": "Order history and order details."},
        {"name": "payments", "description": "Gateway webhooks and webhook delivery log."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
allow_origin_regex = settings.cors_origin_regex
if not allow_origin_regex and settings.is_local:
    # Local storefront dev servers run on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[SESSION_HEADER, "X-Request-ID"],
)

app.include_router(auth.router)
app.include_router(cart.router)
app.include_router(checkout.router)
app.include_router(orders.router)
app.include_router(payments.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
