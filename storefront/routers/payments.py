import base64

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.config import settings
from storefront.core.deps import get_db
from storefront.core.permissions import require_roles
from storefront.core.security_current import RequestIdentity
from storefront.models.webhook_log import WebhookLog
from storefront.schemas.common import PaginationMeta
from storefront.schemas.payment import WebhookAckOut, WebhookLogListOut, WebhookLogOut
from storefront.services.webhook_service import (
    ReconciliationFailed,
    WebhookSignatureError,
    ingest_webhook,
)

router = APIRouter(prefix="/payments", tags=["payments"])

SIGNATURE_HEADERS = ("X-Gateway-Signature", "X-Razorpay-Signature")


def _signature_header(request: Request) -> str | None:
    for name in SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return None


@router.post(
    "/webhook",
    response_model=WebhookAckOut,
    summary="Receive a payment gateway webhook",
    description=(
        "Every delivery is logged before its signature is checked. "
        "A 500 response leaves the delivery unprocessed so the gateway retries it."
    ),
    responses=error_responses(401, 500),
)
async def receive_payment_webhook(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    try:
        outcome = ingest_webhook(
            db,
            raw_body=raw_body,
            signature_header=_signature_header(request),
            secret=settings.gateway_webhook_secret,
        )
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from exc
    except ReconciliationFailed as exc:
        raise HTTPException(status_code=500, detail="Webhook processing failed") from exc
    return WebhookAckOut(ok=True, result=outcome.result, log_id=outcome.log_id)


@router.get(
    "/webhook-logs",
    response_model=WebhookLogListOut,
    summary="List received webhook deliveries",
    responses=error_responses(401, 403, 422, 500),
)
def list_webhook_logs(
    processed: bool | None = Query(default=None),
    event: str | None = Query(default=None, max_length=100),
    include_payload: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: RequestIdentity = Depends(require_roles("admin")),
):
    count_stmt = select(func.count(WebhookLog.id))
    data_stmt = select(WebhookLog)
    if processed is not None:
        count_stmt = count_stmt.where(WebhookLog.processed.is_(processed))
        data_stmt = data_stmt.where(WebhookLog.processed.is_(processed))
    if event:
        count_stmt = count_stmt.where(WebhookLog.event == event.strip())
        data_stmt = data_stmt.where(WebhookLog.event == event.strip())

    total_count = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(WebhookLog.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    count = len(rows)

    return WebhookLogListOut(
        items=[
            WebhookLogOut(
                id=row.id,
                event=row.event,
                signature_header=row.signature_header,
                received_at=row.received_at,
                processed=row.processed,
                processing_result=row.processing_result,
                gateway_payment_id=row.gateway_payment_id,
                gateway_order_id=row.gateway_order_id,
                order_id=row.order_id,
                payload=row.payload if include_payload else None,
                payload_base64=base64.b64encode(row.raw_payload).decode("ascii") if include_payload else None,
            )
            for row in rows
        ],
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        processed=processed,
    )
