"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider→internal status mapping (payment intents and checkout sessions)
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "requires_payment_method": "failed",
        "requires_confirmation": "pending",
        "requires_action": "pending",
        "processing": "pending",
        "requires_capture": "pending",
        "succeeded": "succeeded",
        "canceled": "canceled",
        # checkout.session payment_status
        "paid": "succeeded",
        "unpaid": "pending",
        "no_payment_required": "succeeded",
    },
}

# Stripe dispute statuses → local dispute status
PROVIDER_DISPUTE_STATUS_TO_INTERNAL = {
    "stripe": {
        "warning_needs_response": "under_review",
        "warning_under_review": "under_review",
        "needs_response": "under_review",
        "under_review": "under_review",
        "won": "won",
        "lost": "lost",
        "warning_closed": "warning_closed",
    },
}
