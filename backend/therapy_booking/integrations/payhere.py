"""PayHere checkout signing and notification verification."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
import hashlib
import hmac
import logging
import secrets
import time
from typing import Dict, Optional

from pydantic import SecretStr

from ..core.enums import PaymentStatus

logger = logging.getLogger(__name__)

ORDER_PREFIX_BOOKING = "ORDER"
ORDER_PREFIX_RESCHEDULE = "RESCHEDULE"

# PayHere status_code -> internal status. -3 is a chargeback.
STATUS_CODE_MAP: Dict[int, PaymentStatus] = {
    2: PaymentStatus.COMPLETED,
    0: PaymentStatus.PENDING,
    -1: PaymentStatus.CANCELLED,
    -2: PaymentStatus.FAILED,
    -3: PaymentStatus.FAILED,
}
CHARGEBACK_STATUS_CODE = -3

_METHOD_MAP = {
    "VISA": "VISA",
    "MASTER": "MASTERCARD",
    "MASTERCARD": "MASTERCARD",
    "AMEX": "AMEX",
    "EZCASH": "HELAPAY",
    "EZ CASH": "HELAPAY",
    "GENIE": "HELAPAY",
    "HELAPAY": "HELAPAY",
    "BANK": "BANK_TRANSFER",
}


class PayHereError(ValueError):
    """Raised when a notification cannot be interpreted."""


def format_amount(amount) -> str:
    """PayHere signs amounts with exactly two decimals and no grouping."""
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def map_status_code(status_code: str | int) -> PaymentStatus:
    try:
        code = int(str(status_code).strip())
    except ValueError as exc:
        raise PayHereError(f"Non-numeric status code: {status_code!r}") from exc
    if code not in STATUS_CODE_MAP:
        raise PayHereError(f"Unknown status code: {code}")
    return STATUS_CODE_MAP[code]


def map_payment_method(method: Optional[str]) -> str:
    if not method:
        return "CARD"
    normalized = method.strip().upper()
    return _METHOD_MAP.get(normalized, normalized.replace(" ", "_"))


def generate_order_id(prefix: str = ORDER_PREFIX_BOOKING) -> str:
    """``<PREFIX>_<epoch ms>_<8 hex>``, e.g. ORDER_1718000000000_9f1c2ab4."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class PayHereSigner:
    """Computes and checks PayHere MD5 signatures. The secret never leaves this object."""

    def __init__(self, *, merchant_id: str, merchant_secret: str | SecretStr) -> None:
        secret_value = (
            merchant_secret.get_secret_value()
            if isinstance(merchant_secret, SecretStr)
            else merchant_secret
        )
        if not merchant_id or not secret_value:
            raise ValueError("PayHere merchant id and secret must be configured")
        self.merchant_id = merchant_id
        self._hashed_secret = _md5_upper(secret_value)

    def checkout_hash(self, order_id: str, amount, currency: str) -> str:
        return _md5_upper(
            f"{self.merchant_id}{order_id}{format_amount(amount)}{currency}{self._hashed_secret}"
        )

    def notification_hash(
        self, merchant_id: str, order_id: str, amount: str, currency: str, status_code: str
    ) -> str:
        return _md5_upper(
            f"{merchant_id}{order_id}{amount}{currency}{status_code}{self._hashed_secret}"
        )

    def verify_notification(
        self,
        *,
        merchant_id: str,
        order_id: str,
        amount: str,
        currency: str,
        status_code: str,
        md5sig: str,
    ) -> bool:
        """
        Check a notify callback signature.

        The amount and status code are signed exactly as PayHere posted them.
        """
        if merchant_id != self.merchant_id:
            logger.error(
                "PayHere notification for unexpected merchant",
                extra={"order_id": order_id, "received_merchant_id": merchant_id},
            )
            return False

        computed = self.notification_hash(merchant_id, order_id, amount, currency, status_code)
        received = (md5sig or "").strip().upper()
        if not hmac.compare_digest(computed.encode("utf-8"), received.encode("utf-8")):
            logger.error(
                "PayHere signature mismatch",
                extra={
                    "order_id": order_id,
                    "computed_signature": computed,
                    "received_signature": received,
                },
            )
            return False
        return True
