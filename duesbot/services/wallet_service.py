"""SQL-backed primary wallet service.

Stands in for the external wallet: it keeps its own sessions and commits, so
from the dues ledger's point of view it is an independent store reached only
through the WalletGateway port.
"""

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from duesbot.models.wallet_account import WalletAccount

logger = logging.getLogger(__name__)


class LocalWalletService:
    """Wallet balances stored in the ``wallet_accounts`` table."""

    def __init__(self, session_factory: sessionmaker):
        """Initialize with a session factory.

        Args:
            session_factory: Factory producing sessions for the wallet store
        """
        self.session_factory = session_factory

    async def get_balance(self, owner_id: str) -> Decimal:
        with self.session_factory() as db:
            balance = db.execute(
                select(WalletAccount.balance).where(WalletAccount.owner_id == str(owner_id))
            ).scalar_one_or_none()
        return Decimal(str(balance)) if balance is not None else Decimal("0")

    async def debit(self, owner_id: str, amount: Decimal, reason: str) -> bool:
        """Withdraw ``amount`` if the balance covers it.

        The balance check and the subtraction are one conditional UPDATE, so two
        concurrent debits can never overdraw the account.

        Returns:
            True if the account was debited, False otherwise
        """
        amount = Decimal(amount)
        if amount <= 0:
            return False
        with self.session_factory() as db:
            try:
                result = db.execute(
                    update(WalletAccount)
                    .where(
                        WalletAccount.owner_id == str(owner_id),
                        WalletAccount.balance >= amount,
                    )
                    .values(balance=WalletAccount.balance - amount)
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Wallet debit failed for %s: %s", owner_id, e, exc_info=True)
                return False

        debited = result.rowcount == 1
        logger.info(
            "Wallet debit owner=%s amount=%s ok=%s reason=%s", owner_id, amount, debited, reason
        )
        return debited

    async def credit(self, owner_id: str, amount: Decimal, reason: str) -> bool:
        """Deposit ``amount``, creating the account on first use."""
        amount = Decimal(amount)
        if amount <= 0:
            return False
        with self.session_factory() as db:
            try:
                result = db.execute(
                    update(WalletAccount)
                    .where(WalletAccount.owner_id == str(owner_id))
                    .values(balance=WalletAccount.balance + amount)
                )
                if result.rowcount == 0:
                    db.add(WalletAccount(owner_id=str(owner_id), balance=amount))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Wallet credit failed for %s: %s", owner_id, e, exc_info=True)
                return False

        logger.info("Wallet credit owner=%s amount=%s reason=%s", owner_id, amount, reason)
        return True


__all__ = ["LocalWalletService"]
