from abc import ABC, abstractmethod
from typing import Optional, TypedDict
from fastapi import HTTPException
import hmac
import hashlib
import base64
import json

from . import config

APPROVED_OUTCOMES = {"APPROVED", "PAID"}
REJECTED_OUTCOMES = {"REJECTED", "FAILED"}


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreatePaymentResult(TypedDict):
    payment_ref: str
    payment_url: str


class PaymentAdapter(ABC):
    name: str = "MANUAL"

    @abstractmethod
    def create_payment(
            self, order_id: str, amount: int, buyer_phone: str
    ) -> CreatePaymentResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "APPROVED" | "REJECTED" (or the provider's spelling of them)
    @abstractmethod
    def event_outcome(self, event: dict) -> str:
        ...

    @abstractmethod
    def event_reference(self, event: dict) -> Optional[str]:
        ...


# ----------------------------
# MockPay implementation
# ----------------------------
def sign(payload: bytes, secret: Optional[str] = None) -> str:
    secret = secret if secret is not None else config.MOCK_SECRET
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


class MockPay(PaymentAdapter):
    name = "MOCKPAY"

    def __init__(self, secret: Optional[str] = None) -> None:
        self.secret = secret

    def create_payment(
            self, order_id: str, amount: int, buyer_phone: str
    ) -> CreatePaymentResult:
        ref = f"MOCK-{order_id}"
        return {"payment_ref": ref, "payment_url": f"/mockpay/{ref}"}

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("x-mockpay-signature")
        expected = sign(payload, self.secret)
        if not sig or not hmac.compare_digest(expected, sig):
            raise HTTPException(status_code=401, detail="Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON")
        if not isinstance(event, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON")
        return event

    def event_outcome(self, event: dict) -> str:
        return str(event.get("status", "")).upper()

    def event_reference(self, event: dict) -> Optional[str]:
        return event.get("reference") or event.get("payment_ref") or None
