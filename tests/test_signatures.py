import base64
import hashlib
import hmac
import json

import pytest

from storefront.services.payment_gateway import compute_client_signature, verify_client_signature
from storefront.services.webhook_service import verify_webhook_signature

SECRET = "whsec_test"

EVENT_BODIES = {
    "payment.captured": {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_1", "order_id": "order_1", "amount": 5100}}},
    },
    "payment.failed": {
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"id": "pay_2", "order_id": "order_1"}}},
    },
    "order.paid": {
        "event": "order.paid",
        "payload": {"order": {"entity": {"id": "order_1", "amount_paid": 5100}}},
    },
    "refund.processed": {
        "event": "refund.processed",
        "payload": {"refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_1"}}},
    },
}


def _hex_signature(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def test_client_signature_accepts_any_case():
    signature = compute_client_signature("order_1", "pay_1", "key_secret")
    assert verify_client_signature("order_1", "pay_1", signature, "key_secret")
    assert verify_client_signature("order_1", "pay_1", signature.upper(), "key_secret")


def test_client_signature_rejects_wrong_pairs_and_empty_input():
    signature = compute_client_signature("order_1", "pay_1", "key_secret")
    assert not verify_client_signature("order_1", "pay_2", signature, "key_secret")
    assert not verify_client_signature("order_1", "pay_1", signature, "other_secret")
    assert not verify_client_signature("", "pay_1", signature, "key_secret")
    assert not verify_client_signature("order_1", "pay_1", "", "key_secret")


def test_webhook_signature_accepts_hex_prefixed_and_base64_forms():
    body = json.dumps(EVENT_BODIES["payment.captured"]).encode("utf-8")
    digest = hmac.new(SECRET.encode("utf-8"), body, hashlib.sha256).digest()

    assert verify_webhook_signature(body, _hex_signature(body), SECRET)
    assert verify_webhook_signature(body, _hex_signature(body).upper(), SECRET)
    assert verify_webhook_signature(body, f"sha256={_hex_signature(body)}", SECRET)
    assert verify_webhook_signature(body, base64.b64encode(digest).decode("ascii"), SECRET)


def test_webhook_signature_rejects_missing_header_or_secret():
    body = b'{"event": "payment.captured"}'
    assert not verify_webhook_signature(body, None, SECRET)
    assert not verify_webhook_signature(body, "", SECRET)
    assert not verify_webhook_signature(body, _hex_signature(body, ""), "")
    assert not verify_webhook_signature(body, "not-a-signature", SECRET)


@pytest.mark.parametrize("event_name", sorted(EVENT_BODIES))
def test_single_flipped_byte_is_rejected_for_every_event(event_name):
    body = json.dumps(EVENT_BODIES[event_name]).encode("utf-8")
    signature = _hex_signature(body)
    assert verify_webhook_signature(body, signature, SECRET)

    for index in (0, len(body) // 2, len(body) - 1):
        tampered = bytearray(body)
        tampered[index] ^= 0x01
        assert not verify_webhook_signature(bytes(tampered), signature, SECRET)
