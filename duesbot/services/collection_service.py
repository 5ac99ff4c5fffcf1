"""Collection engine: settling dues and funding the dedicated balance.

transfer_in moves money between two stores that share no transaction: the
external wallet and the subscriber's dedicated balance. It is a
compensate-on-failure transfer rather than a two-phase commit:

1. debit the wallet (nothing happens unless the debit is confirmed)
2. credit the dedicated balance in one local commit
3. if step 2 fails, credit the wallet back and report TransferFailed

A failed refund is the only state that needs a human; it is logged at
CRITICAL and reported with ``refunded=False``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from duesbot.models.payment_event import PaymentMethod
from duesbot.models.subscriber import Subscriber
from duesbot.services.collaborators import WalletGateway
from duesbot.services.errors import (
    AlreadyPaid,
    InsufficientFunds,
    InvalidAmount,
    NotEnrolled,
    TransferFailed,
)
from duesbot.services.ledger_service import LedgerService, PaymentReceipt
from duesbot.services.period_service import BillingPeriod
from duesbot.services.policy_service import PolicySettings

logger = logging.getLogger(__name__)

TRANSFER_REASON = "Transfer to dues balance"
REFUND_REASON = "Refund - dues transfer failed"


@dataclass
class CollectionResult:
    """Outcome of an automatic collection attempt."""

    collected: bool
    new_balance: Decimal
    shortfall: Decimal = Decimal("0")
    already_paid: bool = False
    receipt: PaymentReceipt | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.collected,
            "collected": self.collected,
            "already_paid": self.already_paid,
            "new_balance": self.new_balance,
            "shortfall": self.shortfall,
        }


@dataclass
class TransferResult:
    """Balances after a successful wallet-to-dedicated transfer."""

    subscriber_id: str
    group_id: str
    amount: Decimal
    wallet_balance: Decimal
    dedicated_balance: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "amount": self.amount,
            "new_wallet_balance": self.wallet_balance,
            "new_balance": self.dedicated_balance,
        }


def parse_amount(raw: Any) -> Decimal:
    """Parse a user-supplied positive amount.

    Raises:
        InvalidAmount: If raw is not a positive finite number
    """
    try:
        amount = Decimal(str(raw).replace(",", "").strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(raw) from e
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount(raw)
    return amount.quantize(Decimal("0.01"))


class CollectionEngine:
    """Collects dues from dedicated balances and funds them from the wallet."""

    def __init__(self, db: Session, wallet: WalletGateway, ledger: LedgerService | None = None):
        self.db = db
        self.wallet = wallet
        self.ledger = ledger or LedgerService(db)

    def attempt_collection(
        self,
        subscriber: Subscriber,
        period: BillingPeriod,
        policy: PolicySettings,
        now: datetime | None = None,
    ) -> CollectionResult:
        """Collect the fee from the dedicated balance if possible.

        Never raises for an ordinary shortfall; the caller decides between a
        reminder and escalation from ``collected``.
        """
        balance = Decimal(str(subscriber.dedicated_balance))
        fee = policy.fee_amount

        if self.ledger.has_paid(subscriber.subscriber_id, subscriber.group_id, period):
            return CollectionResult(collected=False, new_balance=balance, already_paid=True)

        if not policy.auto_collect or balance < fee:
            return CollectionResult(
                collected=False,
                new_balance=balance,
                shortfall=max(Decimal("0"), fee - balance),
            )

        try:
            receipt = self.ledger.record_payment(
                subscriber, period, fee, PaymentMethod.AUTO_COLLECT, now
            )
        except InsufficientFunds as e:
            # Balance moved between the read and the debit
            return CollectionResult(
                collected=False, new_balance=e.available, shortfall=e.shortfall
            )

        return CollectionResult(collected=True, new_balance=receipt.new_balance, receipt=receipt)

    def pay_now(
        self,
        subscriber: Subscriber,
        period: BillingPeriod,
        policy: PolicySettings,
        now: datetime | None = None,
    ) -> PaymentReceipt:
        """Pay the period's fee from the dedicated balance on request.

        Raises:
            AlreadyPaid: If the period is already settled
            InsufficientFunds: With the exact shortfall
        """
        if self.ledger.has_paid(subscriber.subscriber_id, subscriber.group_id, period):
            raise AlreadyPaid(period.key)
        return self.ledger.record_payment(
            subscriber, period, policy.fee_amount, PaymentMethod.MANUAL, now
        )

    async def transfer_in(
        self,
        subscriber_id: str,
        group_id: str,
        amount: Decimal,
        reason: str = TRANSFER_REASON,
    ) -> TransferResult:
        """Move ``amount`` from the member's wallet into the dedicated balance.

        On success the wallet + dedicated total is unchanged. On any failure
        both balances are as they were before the call, unless the refund
        itself failed (``TransferFailed.refunded`` is False).

        Raises:
            InvalidAmount: If amount is not positive
            NotEnrolled: If the member has no subscriber record
            InsufficientFunds: If the wallet does not cover amount (source="wallet")
            TransferFailed: If the transfer could not complete
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount(amount)
        subscriber_id, group_id = str(subscriber_id), str(group_id)

        exists = self.db.execute(
            select(Subscriber.id).where(
                Subscriber.subscriber_id == subscriber_id,
                Subscriber.group_id == group_id,
            )
        ).first()
        if exists is None:
            raise NotEnrolled(subscriber_id, group_id)

        wallet_balance = await self.wallet.get_balance(subscriber_id)
        if wallet_balance < amount:
            raise InsufficientFunds(amount, wallet_balance, source="wallet")

        if not await self.wallet.debit(subscriber_id, amount, reason):
            wallet_balance = await self.wallet.get_balance(subscriber_id)
            if wallet_balance < amount:
                raise InsufficientFunds(amount, wallet_balance, source="wallet")
            raise TransferFailed("wallet debit was not confirmed")

        if not self._credit_dedicated(subscriber_id, group_id, amount):
            await self._refund(subscriber_id, group_id, amount)
            raise TransferFailed("dedicated balance could not be credited")

        dedicated = self.db.execute(
            select(Subscriber.dedicated_balance).where(
                Subscriber.subscriber_id == subscriber_id,
                Subscriber.group_id == group_id,
            )
        ).scalar_one()
        result = TransferResult(
            subscriber_id=subscriber_id,
            group_id=group_id,
            amount=amount,
            wallet_balance=await self.wallet.get_balance(subscriber_id),
            dedicated_balance=Decimal(str(dedicated)),
        )
        logger.info(
            "Transferred %s from wallet to dues balance for %s in group %s",
            amount,
            subscriber_id,
            group_id,
        )
        return result

    def _credit_dedicated(self, subscriber_id: str, group_id: str, amount: Decimal) -> bool:
        try:
            result = self.db.execute(
                update(Subscriber)
                .where(
                    Subscriber.subscriber_id == subscriber_id,
                    Subscriber.group_id == group_id,
                )
                .values(dedicated_balance=Subscriber.dedicated_balance + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                return False
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                "Dues balance credit failed for %s in group %s: %s",
                subscriber_id,
                group_id,
                e,
                exc_info=True,
            )
            return False
        self.db.expire_all()
        return True

    async def _refund(self, subscriber_id: str, group_id: str, amount: Decimal) -> None:
        try:
            refunded = await self.wallet.credit(subscriber_id, amount, REFUND_REASON)
        except Exception as e:
            logger.error("Refund raised for %s: %s", subscriber_id, e, exc_info=True)
            refunded = False

        if not refunded:
            logger.critical(
                "Refund of %s to wallet %s failed after a dues transfer in group %s; "
                "manual reconciliation required",
                amount,
                subscriber_id,
                group_id,
            )
            raise TransferFailed("refund to wallet failed", refunded=False)

        logger.warning(
            "Refunded %s to wallet %s after failed dues transfer in group %s",
            amount,
            subscriber_id,
            group_id,
        )


__all__ = [
    "CollectionEngine",
    "CollectionResult",
    "TransferResult",
    "parse_amount",
    "TRANSFER_REASON",
    "REFUND_REASON",
]
