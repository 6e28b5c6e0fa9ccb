"""Tests for PlatformBillingService: trials and lapsed paid plans fall back to free."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import make_merchant
from subgate.lifecycle.platform import FreePlanMissingError, PlatformBillingService, run_platform_sweep
from subgate.models import AuditLog, PlatformPlan, PlatformSubscription, User


@pytest.fixture
def plans(db):
    free = PlatformPlan(slug="free", name="Free", limits={"max_subscribers": 50, "api_access": False})
    pro = PlatformPlan(slug="pro", name="Pro", price_monthly=29, limits={"max_subscribers": 0, "api_access": True})
    db.add_all([free, pro])
    db.commit()
    return free, pro


def _platform_sub(db, user, plan, now, status="active", period_end=None, trial_end=None):
    sub = PlatformSubscription(
        user_id=user.id,
        plan_id=plan.id,
        status=status,
        current_period_start=now - timedelta(days=30),
        current_period_end=period_end,
        trial_start=now - timedelta(days=14) if trial_end else None,
        trial_end=trial_end,
    )
    user.platform_plan_id = plan.id
    db.add_all([sub, user])
    db.commit()
    return sub


def _reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


class TestPlatformSweep:
    def test_expired_trial_falls_back_to_free(self, db, now, plans):
        free, pro = plans
        merchant = make_merchant(db)
        sub = _platform_sub(db, merchant, pro, now, status="trialing", trial_end=now - timedelta(hours=1))

        result = PlatformBillingService(db, grace_days=7).sweep(now)

        assert result.trials_expired == 1
        row = _reload(db, PlatformSubscription, sub.id)
        assert row.status == "expired"
        assert row.plan_id == free.id
        assert _reload(db, User, merchant.id).platform_plan_id == free.id

    def test_running_trial_untouched(self, db, now, plans):
        _, pro = plans
        merchant = make_merchant(db)
        sub = _platform_sub(db, merchant, pro, now, status="trialing", trial_end=now + timedelta(days=3))

        result = PlatformBillingService(db, grace_days=7).sweep(now)

        assert result.processed == 0
        assert _reload(db, PlatformSubscription, sub.id).status == "trialing"

    def test_paid_plan_inside_grace_is_past_due(self, db, now, plans):
        _, pro = plans
        merchant = make_merchant(db)
        sub = _platform_sub(db, merchant, pro, now, period_end=now - timedelta(days=2))

        result = PlatformBillingService(db, grace_days=7).sweep(now)

        assert result.marked_past_due == 1
        row = _reload(db, PlatformSubscription, sub.id)
        assert row.status == "past_due"
        assert row.plan_id == pro.id

    def test_lapsed_paid_plan_cascades_to_free(self, db, now, plans):
        free, pro = plans
        merchant = make_merchant(db)
        sub = _platform_sub(db, merchant, pro, now, status="past_due", period_end=now - timedelta(days=10))

        svc = PlatformBillingService(db, grace_days=7)
        assert svc.can_use_feature(merchant.id, "api_access") is True

        result = svc.sweep(now)

        assert result.marked_expired == 1
        row = _reload(db, PlatformSubscription, sub.id)
        assert row.status == "expired"
        assert row.expired_at is not None
        assert row.plan_id == free.id
        assert _reload(db, User, merchant.id).platform_plan_id == free.id
        assert svc.can_use_feature(merchant.id, "api_access") is False
        audit = db.query(AuditLog).one()
        assert audit.action == "platform_plan_downgraded"
        assert audit.entity_id == sub.id

    def test_second_sweep_is_a_no_op(self, db, now, plans):
        _, pro = plans
        merchant = make_merchant(db)
        _platform_sub(db, merchant, pro, now, status="past_due", period_end=now - timedelta(days=10))
        svc = PlatformBillingService(db, grace_days=7)

        assert svc.sweep(now).processed == 1
        assert svc.sweep(now).processed == 0

    def test_missing_free_plan_raises(self, db, now):
        with pytest.raises(FreePlanMissingError):
            PlatformBillingService(db).sweep(now)

    def test_user_without_subscription_is_on_free(self, db, plans):
        free, _ = plans
        merchant = make_merchant(db)
        assert PlatformBillingService(db).get_user_plan(merchant.id).id == free.id

    def test_locked_sweep_is_skipped(self, db, now):
        lock = MagicMock()
        lock.acquire.return_value = False
        result = run_platform_sweep(db, now=now, lock=lock)
        assert result.skipped is True
