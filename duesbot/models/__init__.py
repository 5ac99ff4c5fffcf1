"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from duesbot.models.audit_log import AuditLog  # noqa: E402
from duesbot.models.billing_policy import BillingPolicy, CycleKind  # noqa: E402
from duesbot.models.dues_group import DuesGroup  # noqa: E402
from duesbot.models.payment_event import PAYING_METHODS, PaymentEvent, PaymentMethod  # noqa: E402
from duesbot.models.reminder_marker import MarkerKind, ReminderMarker  # noqa: E402
from duesbot.models.subscriber import Subscriber  # noqa: E402
from duesbot.models.wallet_account import WalletAccount  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "AuditLog",
    "BillingPolicy",
    "CycleKind",
    "DuesGroup",
    "PaymentEvent",
    "PaymentMethod",
    "PAYING_METHODS",
    "ReminderMarker",
    "MarkerKind",
    "Subscriber",
    "WalletAccount",
]
