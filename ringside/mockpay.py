from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, TypedDict
import base64
import hashlib
import hmac
import os
import secrets
import time
import uuid

import orjson
from fastapi import HTTPException

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")

EVENT_KINDS = ("succeeded", "failed", "canceled")

# webhook event kind -> payment status
KIND_TO_STATUS = {
    "succeeded": "paid",
    "failed": "failed",
    "canceled": "cancelled",
}


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    reference_no: str
    qr_code: str
    redirect_url: str


class PaymentAdapter(ABC):
    @abstractmethod
    def create_session(self, amount: int,
                       detail: str) -> CreateSessionResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "succeeded" | "failed" | "canceled"
    @abstractmethod
    def event_kind(self, event: dict) -> str: ...

    # (reference_no, idempotency_key)
    @abstractmethod
    def event_ids(self, event: dict) -> Tuple[str, Optional[str]]: ...


# ----------------------------
# helpers shared with the emit endpoint
# ----------------------------
def new_reference_no() -> str:
    # 12 digits, no leading zero
    return str(secrets.randbelow(9 * 10**11) + 10**11)


def sign_payload(payload: bytes, secret: str = MOCK_SECRET) -> str:
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


def build_event(reference_no: str, kind: str, amount: int,
                currency: str = "thb") -> Dict[str, Any]:
    return {
        "type": f"payment.{kind}",
        "reference_no": reference_no,
        "amount": amount,
        "currency": currency,
        "created_at": int(time.time()),
        "idempotency_key": f"evt_{uuid.uuid4().hex}",
    }


def encode_event(event: Dict[str, Any],
                 secret: str = MOCK_SECRET) -> Tuple[bytes, Dict[str, str]]:
    payload = orjson.dumps(event)
    return payload, {
        "x-mockpay-signature": sign_payload(payload, secret),
        "content-type": "application/json",
    }


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """PromptPay-style QR sessions and card checkout pages, all local."""

    def __init__(self, secret: str = MOCK_SECRET):
        self.secret = secret

    def create_session(self, amount: int, detail: str) -> CreateSessionResult:
        ref = new_reference_no()
        # what a banking app would scan; the page renders it
        qr = f"mockpay://promptpay?ref={ref}&amount={amount}.00&currency=THB"
        return {
            "reference_no": ref,
            "qr_code": qr,
            "redirect_url": f"/mockpay/{ref}",
        }

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("x-mockpay-signature")
        expected = sign_payload(payload, self.secret)
        if not sig or not hmac.compare_digest(expected, sig):
            raise HTTPException(status_code=400, detail="Invalid signature")
        try:
            return orjson.loads(payload)
        except orjson.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON")

    def event_kind(self, event: dict) -> str:
        return event.get("type", "").split(".")[-1]

    def event_ids(self, event: dict) -> Tuple[str, Optional[str]]:
        return (
            event.get("reference_no", ""),
            event.get("idempotency_key"),
        )
