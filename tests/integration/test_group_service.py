"""Integration tests for group setup and enrollment."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from duesbot.models.audit_log import AuditLog
from duesbot.services.errors import AlreadyEnrolled, GroupNotConfigured, NotEnrolled
from duesbot.services.group_service import GroupService

NOW = datetime(2026, 3, 1, 12, tzinfo=timezone.utc)


@pytest.mark.integration
class TestSetupGroup:
    def test_setup_enrolls_unique_members(self, db_session):
        result = GroupService(db_session).setup_group("-100", ["1", "2", "2", 3], now=NOW)

        assert result.already_active is False
        assert result.enrolled == 3
        assert result.subscriber_count == 3
        assert result.to_dict()["policy"]["cycle_kind"] == "monthly"

    def test_setup_is_idempotent(self, db_session):
        groups = GroupService(db_session)
        groups.setup_group("-100", ["1"], now=NOW)

        again = groups.setup_group("-100", ["1", "2"], now=NOW)

        assert again.already_active is True
        assert again.enrolled == 0
        assert groups.count_subscribers("-100") == 1

    def test_disable_then_reactivate_keeps_members(self, db_session):
        groups = GroupService(db_session)
        groups.setup_group("-100", ["1"], now=NOW)

        disabled = groups.disable_group("-100", actor_id="9", now=NOW)
        assert disabled.subscriber_count == 1
        with pytest.raises(GroupNotConfigured):
            groups.require_active_group("-100")
        assert groups.list_active_groups() == []

        result = groups.setup_group("-100", ["1", "2"], now=NOW)

        assert result.reactivated is True
        assert result.enrolled == 1
        assert [g.group_id for g in groups.list_active_groups()] == ["-100"]
        actions = db_session.execute(select(AuditLog.action)).scalars().all()
        assert actions == ["setup", "disable", "reactivate"]

    def test_disable_unknown_group(self, db_session):
        with pytest.raises(GroupNotConfigured):
            GroupService(db_session).disable_group("-404")


@pytest.mark.integration
class TestEnroll:
    def test_enroll_new_member(self, db_session, make_group):
        make_group()

        subscriber = GroupService(db_session).enroll("5", "-100", now=NOW)

        assert subscriber.dedicated_balance == 0
        assert subscriber.payment_count == 0

    def test_enroll_twice_rejected(self, db_session, make_group):
        make_group()

        with pytest.raises(AlreadyEnrolled):
            GroupService(db_session).enroll("1", "-100")

    def test_enroll_requires_active_group(self, db_session):
        with pytest.raises(GroupNotConfigured):
            GroupService(db_session).enroll("1", "-100")

    def test_get_subscriber_missing(self, db_session, make_group):
        make_group()

        with pytest.raises(NotEnrolled):
            GroupService(db_session).get_subscriber("99", "-100")
