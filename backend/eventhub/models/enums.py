"""Status vocabularies stored in string columns"""
from enum import Enum


class TransactionType(str, Enum):
    EVENT = "event"
    SUBSCRIPTION = "subscription"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"


class StripeAccountStatus(str, Enum):
    ACTIVE = "active"
    PENDING_VERIFICATION = "pending_verification"
    ACTION_REQUIRED = "action_required"
    ERROR = "error"


class AttendeePaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"
