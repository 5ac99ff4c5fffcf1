"""Domain exceptions for dues operations.

Every exception carries a stable ``kind`` and renders to the structured
``{"error": kind, ...}`` shape the command layer consumes.
"""

from decimal import Decimal
from typing import Any


class DuesError(Exception):
    """Base exception for dues errors."""

    kind = "dues_error"

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, **self.details()}


class ConfigurationError(DuesError):
    """Invalid billing policy or runtime configuration (e.g. fee <= 0)."""

    kind = "configuration_error"


class GroupNotConfigured(DuesError):
    """Group has no dues setup (no policy row or not registered)."""

    kind = "group_not_configured"

    def __init__(self, group_id: str):
        super().__init__(f"Dues are not set up for group {group_id}")
        self.group_id = group_id

    def details(self) -> dict[str, Any]:
        return {"group_id": self.group_id}


class NotEnrolled(DuesError):
    """Member has no subscriber record in the group."""

    kind = "not_enrolled"

    def __init__(self, subscriber_id: str, group_id: str):
        super().__init__(f"Member {subscriber_id} is not enrolled in group {group_id}")
        self.subscriber_id = subscriber_id
        self.group_id = group_id

    def details(self) -> dict[str, Any]:
        return {"subscriber_id": self.subscriber_id, "group_id": self.group_id}


class AlreadyEnrolled(DuesError):
    """Member already has a subscriber record in the group."""

    kind = "already_enrolled"

    def __init__(self, subscriber_id: str, group_id: str):
        super().__init__(f"Member {subscriber_id} is already enrolled in group {group_id}")
        self.subscriber_id = subscriber_id
        self.group_id = group_id

    def details(self) -> dict[str, Any]:
        return {"subscriber_id": self.subscriber_id, "group_id": self.group_id}


class InsufficientFunds(DuesError):
    """Balance does not cover the requested amount."""

    kind = "insufficient_funds"

    def __init__(self, required: Decimal, available: Decimal, source: str = "dedicated"):
        self.required = Decimal(required)
        self.available = Decimal(available)
        self.shortfall = max(Decimal("0"), self.required - self.available)
        self.source = source
        super().__init__(
            f"Insufficient {source} funds: required {self.required}, "
            f"available {self.available}, shortfall {self.shortfall}"
        )

    def details(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "required": self.required,
            "available": self.available,
            "shortfall": self.shortfall,
        }


class AlreadyPaid(DuesError):
    """The billing period is already settled; paying again is a no-op."""

    kind = "already_paid"

    def __init__(self, period_key: str):
        super().__init__(f"Period {period_key} is already paid")
        self.period_key = period_key

    def details(self) -> dict[str, Any]:
        return {"period_key": self.period_key}


class InvalidAmount(DuesError):
    """Amount is not a positive number."""

    kind = "invalid_amount"

    def __init__(self, amount: Any):
        super().__init__(f"Invalid amount: {amount!r}")
        self.amount = amount

    def details(self) -> dict[str, Any]:
        return {"amount": self.amount}


class TransferFailed(DuesError):
    """Wallet-to-dedicated transfer could not complete.

    ``refunded`` is False only when the compensating refund itself failed and
    the debit needs manual reconciliation.
    """

    kind = "transfer_failed"

    def __init__(self, reason: str, refunded: bool = True):
        super().__init__(f"Transfer failed: {reason}")
        self.reason = reason
        self.refunded = refunded

    def details(self) -> dict[str, Any]:
        return {"reason": self.reason, "refunded": self.refunded}


class MembershipRemovalFailed(DuesError):
    """The membership collaborator did not confirm removal."""

    kind = "membership_removal_failed"

    def __init__(self, subscriber_id: str, group_id: str, reason: str = ""):
        super().__init__(
            f"Could not remove {subscriber_id} from group {group_id}"
            + (f": {reason}" if reason else "")
        )
        self.subscriber_id = subscriber_id
        self.group_id = group_id
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "group_id": self.group_id,
            "reason": self.reason,
        }


__all__ = [
    "DuesError",
    "ConfigurationError",
    "GroupNotConfigured",
    "NotEnrolled",
    "AlreadyEnrolled",
    "InsufficientFunds",
    "AlreadyPaid",
    "InvalidAmount",
    "TransferFailed",
    "MembershipRemovalFailed",
]
