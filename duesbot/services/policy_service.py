"""Billing policy management.

PolicyService validates and persists per-group policies. Reads go through a
PolicyCache: an explicit read-through cache keyed by group id that is
invalidated whenever a policy is written. The cache stores immutable
PolicySettings snapshots, never ORM rows, so it is safe to share across
sessions.
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from duesbot.models.billing_policy import BillingPolicy, CycleKind
from duesbot.services.audit_service import AuditService
from duesbot.services.errors import ConfigurationError, GroupNotConfigured

logger = logging.getLogger(__name__)

MAX_FEE_AMOUNT = Decimal("10000000")
MAX_GRACE_PERIOD_DAYS = 30
MAX_REMINDER_OFFSET_DAYS = 31

DEFAULT_POLICY: dict[str, Any] = {
    "cycle_kind": CycleKind.MONTHLY,
    "due_day_of_month": 1,
    "due_weekday": 5,
    "fee_amount": Decimal("50000"),
    "grace_period_days": 3,
    "reminder_offsets_days": (7, 3, 1),
    "auto_collect": True,
    "auto_evict": True,
    "admin_only": False,
}

WEEKDAYS = {
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
    "sunday": 7,
}


@dataclass(frozen=True)
class PolicySettings:
    """Immutable snapshot of a group's billing policy."""

    group_id: str
    cycle_kind: CycleKind
    due_day_of_month: int
    due_weekday: int
    fee_amount: Decimal
    grace_period_days: int
    reminder_offsets_days: tuple[int, ...]
    auto_collect: bool
    auto_evict: bool
    admin_only: bool = False

    @classmethod
    def from_model(cls, policy: BillingPolicy) -> "PolicySettings":
        return cls(
            group_id=policy.group_id,
            cycle_kind=CycleKind(policy.cycle_kind),
            due_day_of_month=policy.due_day_of_month,
            due_weekday=policy.due_weekday,
            fee_amount=Decimal(str(policy.fee_amount)),
            grace_period_days=policy.grace_period_days,
            reminder_offsets_days=tuple(policy.reminder_offsets_days or ()),
            auto_collect=bool(policy.auto_collect),
            auto_evict=bool(policy.auto_evict),
            admin_only=bool(policy.admin_only),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["cycle_kind"] = self.cycle_kind.value
        data["fee_amount"] = str(self.fee_amount)
        data["reminder_offsets_days"] = list(self.reminder_offsets_days)
        return data


class PolicyCache:
    """Read-through cache of PolicySettings keyed by group id.

    Invalidation rule: every policy write calls ``invalidate(group_id)``.
    """

    def __init__(self):
        self._entries: dict[str, PolicySettings] = {}

    def get(self, group_id: str) -> PolicySettings | None:
        return self._entries.get(str(group_id))

    def put(self, settings: PolicySettings) -> None:
        self._entries[settings.group_id] = settings

    def invalidate(self, group_id: str) -> None:
        self._entries.pop(str(group_id), None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, group_id: str) -> bool:
        return str(group_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def validate_policy_values(values: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize policy fields.

    Only keys present in ``values`` are checked. The monthly due day is clamped
    to [1, 28]; every other violation raises.

    Raises:
        ConfigurationError: If a value is out of range
    """
    cleaned = dict(values)

    if "cycle_kind" in cleaned:
        try:
            cleaned["cycle_kind"] = CycleKind(cleaned["cycle_kind"])
        except ValueError as e:
            raise ConfigurationError(f"Unknown cycle kind: {cleaned['cycle_kind']!r}") from e

    if "fee_amount" in cleaned:
        try:
            fee = Decimal(str(cleaned["fee_amount"]))
        except (InvalidOperation, ValueError) as e:
            raise ConfigurationError(f"Fee is not a number: {cleaned['fee_amount']!r}") from e
        if fee <= 0:
            raise ConfigurationError("Fee must be greater than 0")
        if fee > MAX_FEE_AMOUNT:
            raise ConfigurationError(f"Fee must not exceed {MAX_FEE_AMOUNT}")
        cleaned["fee_amount"] = fee

    if "due_day_of_month" in cleaned:
        cleaned["due_day_of_month"] = max(1, min(int(cleaned["due_day_of_month"]), 28))

    if "due_weekday" in cleaned:
        weekday = int(cleaned["due_weekday"])
        if not 1 <= weekday <= 7:
            raise ConfigurationError("Due weekday must be between 1 (Monday) and 7 (Sunday)")
        cleaned["due_weekday"] = weekday

    if "grace_period_days" in cleaned:
        grace = int(cleaned["grace_period_days"])
        if not 0 <= grace <= MAX_GRACE_PERIOD_DAYS:
            raise ConfigurationError(
                f"Grace period must be between 0 and {MAX_GRACE_PERIOD_DAYS} days"
            )
        cleaned["grace_period_days"] = grace

    if "reminder_offsets_days" in cleaned:
        offsets = {int(day) for day in cleaned["reminder_offsets_days"]}
        if any(day < 0 or day > MAX_REMINDER_OFFSET_DAYS for day in offsets):
            raise ConfigurationError(
                f"Reminder offsets must be between 0 and {MAX_REMINDER_OFFSET_DAYS} days"
            )
        cleaned["reminder_offsets_days"] = tuple(sorted(offsets, reverse=True))

    for flag in ("auto_collect", "auto_evict", "admin_only"):
        if flag in cleaned:
            cleaned[flag] = bool(cleaned[flag])

    return cleaned


class PolicyService:
    """Service for billing policy database operations."""

    def __init__(self, db: Session, cache: PolicyCache | None = None):
        """Initialize with database session and an optional shared cache."""
        self.db = db
        self.cache = cache if cache is not None else PolicyCache()

    def _get_row(self, group_id: str) -> BillingPolicy | None:
        return self.db.execute(
            select(BillingPolicy).where(BillingPolicy.group_id == str(group_id))
        ).scalar_one_or_none()

    def get_policy(self, group_id: str) -> PolicySettings:
        """Return the group's policy, reading through the cache.

        Raises:
            GroupNotConfigured: If the group has no policy
        """
        cached = self.cache.get(group_id)
        if cached is not None:
            return cached

        row = self._get_row(group_id)
        if row is None:
            raise GroupNotConfigured(str(group_id))

        settings = PolicySettings.from_model(row)
        self.cache.put(settings)
        return settings

    def ensure_policy(self, group_id: str, **overrides: Any) -> PolicySettings:
        """Create the default policy for a group if it has none.

        Does not commit; the caller commits together with the rest of its setup.
        """
        row = self._get_row(group_id)
        if row is None:
            values = validate_policy_values({**DEFAULT_POLICY, **overrides})
            row = BillingPolicy(
                group_id=str(group_id),
                cycle_kind=values["cycle_kind"].value,
                due_day_of_month=values["due_day_of_month"],
                due_weekday=values["due_weekday"],
                fee_amount=values["fee_amount"],
                grace_period_days=values["grace_period_days"],
                reminder_offsets_days=list(values["reminder_offsets_days"]),
                auto_collect=values["auto_collect"],
                auto_evict=values["auto_evict"],
                admin_only=values["admin_only"],
            )
            self.db.add(row)
            self.db.flush()
            logger.info("Created default billing policy for group %s", group_id)
        self.cache.invalidate(group_id)
        return PolicySettings.from_model(row)

    def update_policy(
        self, group_id: str, actor_id: str | None = None, **changes: Any
    ) -> PolicySettings:
        """Validate and apply policy changes, then invalidate the cache entry.

        Args:
            group_id: Group whose policy changes
            actor_id: Member making the change (for the audit log)
            **changes: Field values to set (see DEFAULT_POLICY for names)

        Returns:
            Updated PolicySettings

        Raises:
            GroupNotConfigured: If the group has no policy
            ConfigurationError: If a value is invalid or a field is unknown
        """
        unknown = set(changes) - set(DEFAULT_POLICY)
        if unknown:
            raise ConfigurationError(f"Unknown policy fields: {', '.join(sorted(unknown))}")

        row = self._get_row(group_id)
        if row is None:
            raise GroupNotConfigured(str(group_id))

        values = validate_policy_values(changes)
        snapshot: dict[str, Any] = {}
        for field, value in values.items():
            if isinstance(value, CycleKind):
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            setattr(row, field, value)
            snapshot[field] = str(value) if isinstance(value, Decimal) else value

        try:
            AuditService.log(self.db, "policy", str(group_id), "update", actor_id, snapshot)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        finally:
            self.cache.invalidate(group_id)

        logger.info("Updated billing policy for group %s: %s", group_id, snapshot)
        return self.get_policy(group_id)


def parse_weekday(name: str) -> int:
    """Map a weekday name (or unambiguous prefix) to its ISO number.

    Raises:
        ConfigurationError: If the name is not a weekday
    """
    key = (name or "").strip().lower()
    if len(key) >= 3:
        for weekday, number in WEEKDAYS.items():
            if weekday.startswith(key):
                return number
    raise ConfigurationError(f"Unknown weekday: {name!r}")


__all__ = [
    "PolicySettings",
    "PolicyCache",
    "PolicyService",
    "DEFAULT_POLICY",
    "WEEKDAYS",
    "validate_policy_values",
    "parse_weekday",
]
