"""Wallet account ORM model backing the local primary wallet service."""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from duesbot.models import Base, BaseModel


class WalletAccount(Base, BaseModel):
    """Primary (general-purpose) wallet of a member.

    Owned by the wallet service, not by the dues ledger: the dues code only
    reaches it through the WalletGateway port.
    """

    __tablename__ = "wallet_accounts"

    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0"),
    )

    __table_args__ = (
        Index("idx_wallet_owner", "owner_id", unique=True),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<WalletAccount(owner_id={self.owner_id!r}, balance={self.balance})>"


__all__ = ["WalletAccount"]
