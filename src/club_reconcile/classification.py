from __future__ import annotations

from typing import Optional

SUCCESS_STATUSES = ("successful", "succeeded")
FAILED_STATUSES = ("failed", "error", "declined", "expired", "incomplete")
PENDING_STATUSES = ("pending", "processing")
CANCELLED_STATUSES = ("cancelled", "canceled", "void")

PAYMENT_TYPES = (
    "платеж",
    "payment",
    "payment_card",
    "payment_erip",
    "payment_apple_pay",
    "payment_google_pay",
)
REFUND_TYPES = ("возврат средств", "refund", "refunded")
CANCEL_TYPES = ("отмена", "void", "cancellation", "authorization_void", "canceled", "cancelled")

CATEGORY_SUCCESSFUL = "successful"
CATEGORY_REFUNDED = "refunded"
CATEGORY_CANCELLED = "cancelled"
CATEGORY_FAILED = "failed"
CATEGORY_PENDING = "pending"
CATEGORY_UNKNOWN = "unknown"


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def is_success_status(status: Optional[str]) -> bool:
    return _norm(status) in SUCCESS_STATUSES


def is_failed_status(status: Optional[str]) -> bool:
    return _norm(status) in FAILED_STATUSES


def is_pending_status(status: Optional[str]) -> bool:
    return _norm(status) in PENDING_STATUSES


def is_refund_transaction(
    transaction_type: Optional[str], status: Optional[str], amount: Optional[float] = None
) -> bool:
    tx_type = _norm(transaction_type)
    if any(kind in tx_type for kind in REFUND_TYPES):
        return True
    if _norm(status) == "refunded":
        return True
    return amount is not None and amount < 0 and "возврат" in tx_type


def is_cancel_transaction(transaction_type: Optional[str], status: Optional[str]) -> bool:
    tx_type = _norm(transaction_type)
    if any(kind in tx_type for kind in CANCEL_TYPES):
        return True
    return _norm(status) in CANCELLED_STATUSES


def is_payment_transaction(transaction_type: Optional[str]) -> bool:
    tx_type = _norm(transaction_type)
    return bool(tx_type) and any(kind in tx_type for kind in PAYMENT_TYPES)


def classify_payment(
    status: Optional[str], transaction_type: Optional[str], amount: Optional[float] = None
) -> str:
    """
    Place a statement row in exactly one category.

    Checks run in priority order: refund, cancellation, pending, failed,
    successful. Anything else is ``unknown``.
    """
    if is_refund_transaction(transaction_type, status, amount):
        return CATEGORY_REFUNDED
    if is_cancel_transaction(transaction_type, status):
        return CATEGORY_CANCELLED
    if is_pending_status(status):
        return CATEGORY_PENDING
    if is_failed_status(status):
        return CATEGORY_FAILED
    if (
        is_success_status(status)
        and is_payment_transaction(transaction_type)
        and (amount is None or amount > 0)
    ):
        return CATEGORY_SUCCESSFUL
    return CATEGORY_UNKNOWN
