"""Ports to the systems the dues core does not own.

The enforcement core only talks to these protocols. Shipped adapters:
LocalWalletService (wallet), TelegramMembershipService (membership) and
NotificationService (notification sink).
"""

from decimal import Decimal
from typing import Protocol, runtime_checkable


@runtime_checkable
class WalletGateway(Protocol):
    """Primary (general-purpose) wallet owned by another service."""

    async def get_balance(self, owner_id: str) -> Decimal: ...

    async def debit(self, owner_id: str, amount: Decimal, reason: str) -> bool: ...

    async def credit(self, owner_id: str, amount: Decimal, reason: str) -> bool: ...


@runtime_checkable
class MembershipGateway(Protocol):
    """Group membership (who is in the chat)."""

    async def remove_member(self, group_id: str, subscriber_id: str) -> bool: ...

    async def list_members(self, group_id: str) -> list[str]: ...


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget message delivery; failures are logged, not raised."""

    async def notify(self, destination: str, text: str) -> None: ...


__all__ = ["WalletGateway", "MembershipGateway", "NotificationSink"]
