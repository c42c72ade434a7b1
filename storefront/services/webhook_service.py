import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from storefront.core.observability import log_event
from storefront.db.unit_of_work import unit_of_work
from storefront.models.webhook_log import WebhookLog
from storefront.schemas.payment import (
    GatewayEvent,
    OrderEntity,
    OrderPaidEvent,
    PaymentCapturedEvent,
    PaymentEntity,
    PaymentFailedEvent,
    RefundEntity,
    RefundEvent,
    UnknownEvent,
)
from storefront.services.reconciliation_service import reconcile

logger = logging.getLogger("storefront.payments")

SIGNATURE_PREFIX = "sha256="
_MAX_RESULT_LENGTH = 255
_MAX_EVENT_LENGTH = 100


class WebhookSignatureError(Exception):
    def __init__(self, log_id: int):
        super().__init__("Invalid webhook signature")
        self.log_id = log_id


class ReconciliationFailed(Exception):
    def __init__(self, log_id: int, error_type: str):
        super().__init__(f"Webhook reconciliation failed ({error_type})")
        self.log_id = log_id
        self.error_type = error_type


class MalformedEventError(ValueError):
    pass


@dataclass(frozen=True)
class WebhookOutcome:
    log_id: int
    result: str


def verify_webhook_signature(raw_body: bytes, signature_header: str | None, secret: str) -> bool:
    """
    Accepts the HMAC-SHA256 of the raw body as hex (any case, optional
    ``sha256=`` prefix) or base64. Missing header or empty secret never match.
    """
    if not signature_header or not secret:
        return False

    provided = signature_header.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    if not provided:
        return False

    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    if hmac.compare_digest(digest.hex().encode("ascii"), provided.lower().encode("utf-8")):
        return True

    try:
        decoded = base64.b64decode(provided, validate=True)
    except (binascii.Error, ValueError):
        return False
    return hmac.compare_digest(digest, decoded)


def _entity(payload: dict[str, Any], key: str, model: type[BaseModel]) -> Any:
    wrapper = payload.get(key)
    if not isinstance(wrapper, dict):
        return None
    entity = wrapper.get("entity", wrapper)
    if not isinstance(entity, dict):
        return None
    try:
        return model.model_validate(entity)
    except ValidationError:
        return None


def decode_gateway_event(raw_body: bytes) -> GatewayEvent:
    try:
        data = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedEventError("Webhook body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("Webhook body must be a JSON object")

    event = data.get("event")
    if not isinstance(event, str) or not event.strip():
        raise MalformedEventError("Webhook body has no event name")
    event = event.strip()

    payload = data.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    if event == "payment.captured":
        return PaymentCapturedEvent(payment=_entity(payload, "payment", PaymentEntity))
    if event == "payment.failed":
        return PaymentFailedEvent(payment=_entity(payload, "payment", PaymentEntity))
    if event == "order.paid":
        return OrderPaidEvent(
            order=_entity(payload, "order", OrderEntity),
            payment=_entity(payload, "payment", PaymentEntity),
        )
    if event.startswith("refund."):
        return RefundEvent(event=event, refund=_entity(payload, "refund", RefundEntity))
    return UnknownEvent(event=event)


def _peek_event_name(raw_body: bytes) -> str:
    try:
        data = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError):
        return "unknown"
    if isinstance(data, dict) and isinstance(data.get("event"), str) and data["event"].strip():
        return data["event"].strip()[:_MAX_EVENT_LENGTH]
    return "unknown"


def record_delivery(db: Session, *, raw_body: bytes, signature_header: str | None) -> WebhookLog:
    with unit_of_work(db):
        entry = WebhookLog(
            event=_peek_event_name(raw_body),
            raw_payload=raw_body,
            payload=raw_body.decode("utf-8", errors="replace"),
            signature_header=signature_header or "",
            processed=False,
        )
        db.add(entry)
    db.refresh(entry)
    return entry


def _finish(db: Session, log_id: int, *, result: str, processed: bool) -> None:
    with unit_of_work(db):
        entry = db.get(WebhookLog, log_id)
        entry.processed = processed
        entry.processing_result = result[:_MAX_RESULT_LENGTH]


def ingest_webhook(
    db: Session,
    *,
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
) -> WebhookOutcome:
    """
    Record, authenticate and reconcile one gateway delivery.

    The delivery is committed to the webhook log before anything else, so
    rejected and failed deliveries remain available for review. Raises
    ``WebhookSignatureError`` for unauthenticated bodies and
    ``ReconciliationFailed`` when applying the event fails; in the second case
    the log entry stays unprocessed so a gateway retry is handled again.
    """
    entry = record_delivery(db, raw_body=raw_body, signature_header=signature_header)
    log_id = entry.id

    if not verify_webhook_signature(raw_body, signature_header, secret):
        _finish(db, log_id, result="InvalidSignature", processed=True)
        log_event(
            logger,
            "webhook.signature_invalid",
            level=logging.WARNING,
            log_id=log_id,
            event_name=entry.event,
            header_present=bool(signature_header),
        )
        raise WebhookSignatureError(log_id)

    try:
        event = decode_gateway_event(raw_body)
    except MalformedEventError as exc:
        _finish(db, log_id, result="MalformedPayload", processed=True)
        log_event(logger, "webhook.malformed", level=logging.WARNING, log_id=log_id, error=str(exc))
        return WebhookOutcome(log_id=log_id, result="MalformedPayload")

    try:
        result = reconcile(db, log=entry, event=event)
    except Exception as exc:
        error_type = type(exc).__name__
        db.rollback()
        _finish(db, log_id, result=f"Exception:{error_type}", processed=False)
        log_event(
            logger,
            "webhook.reconcile_failed",
            level=logging.ERROR,
            log_id=log_id,
            event_name=event.event,
            error=error_type,
        )
        raise ReconciliationFailed(log_id, error_type) from exc

    log_event(logger, "webhook.reconciled", log_id=log_id, event_name=event.event, result=result)
    return WebhookOutcome(log_id=log_id, result=result)
