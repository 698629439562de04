"""
Tests for trial math, lazy downgrade and admin plan changes
"""
from datetime import timedelta

from sqlalchemy import select

from saas_starter import plans
from saas_starter.audit import AuditActions
from saas_starter.models import PLAN_BASIC, PLAN_PRO, AuditLog, utcnow


def test_calculate_trial_end_date_defaults(monkeypatch):
    start = utcnow()
    assert plans.calculate_trial_end_date(start=start) == start + timedelta(days=14)

    monkeypatch.setenv("TRIAL_DURATION_DAYS", "30")
    assert plans.calculate_trial_end_date(start=start) == start + timedelta(days=30)
    assert plans.calculate_trial_end_date(7, start=start) == start + timedelta(days=7)


def test_is_on_trial():
    future = utcnow() + timedelta(days=3)
    past = utcnow() - timedelta(days=3)

    assert plans.is_on_trial(PLAN_PRO, future, False) is True
    assert plans.is_on_trial(PLAN_PRO, future, True) is False
    assert plans.is_on_trial(PLAN_BASIC, future, False) is False
    assert plans.is_on_trial(PLAN_PRO, past, False) is False


def test_days_remaining_rounds_up():
    end = utcnow() + timedelta(days=2, hours=1)
    assert plans.get_trial_days_remaining(PLAN_PRO, end, False) == 3
    assert plans.get_trial_days_remaining(PLAN_PRO, end, True) == 0
    assert plans.get_trial_days_remaining(PLAN_BASIC, end, False) == 0


def test_trial_status():
    end = utcnow() - timedelta(hours=1)
    status = plans.get_trial_status(PLAN_PRO, end, False)

    assert status.is_on_trial is False
    assert status.is_expired is True
    assert status.days_remaining == 0
    assert status.end_date == end


def test_should_downgrade_user(make_user):
    assert plans.should_downgrade_user(make_user("a@example.com", trial_days=-1)) is True
    assert plans.should_downgrade_user(make_user("b@example.com", trial_days=5)) is False
    assert plans.should_downgrade_user(make_user("c@example.com", trial_days=-1, plan_override=True)) is False
    assert plans.should_downgrade_user(make_user("d@example.com", trial_days=-1, plan=PLAN_BASIC)) is False


def test_downgrade_if_trial_expired_writes_audit(db, make_user):
    user = make_user(trial_days=-1)

    assert plans.downgrade_if_trial_expired(db, user) is True
    assert user.plan == PLAN_BASIC
    assert user.plan_changed_at is not None

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_PLAN_AUTO_DOWNGRADED))
    assert log.user_id == user.id
    assert log.details == {"previousPlan": PLAN_PRO, "newPlan": PLAN_BASIC, "reason": "trial_expired"}

    # Second call is a no-op
    assert plans.downgrade_if_trial_expired(db, user) is False


def test_upgrade_plan_sets_override(db, make_user, admin_user):
    user = make_user(plan=PLAN_BASIC, trial_days=-10)

    plans.upgrade_plan(db, user, PLAN_PRO, actor_id=admin_user.id)

    assert user.plan == PLAN_PRO
    assert user.plan_override is True
    # Override keeps the lapsed trial from downgrading again
    assert plans.should_downgrade_user(user) is False

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_PLAN_CHANGED))
    assert log.actor_id == admin_user.id
    assert log.details["oldPlan"] == PLAN_BASIC
    assert log.details["newPlan"] == PLAN_PRO


def test_extend_trial_from_future_end(db, make_user):
    user = make_user(trial_days=5)
    old_end = user.trial_end_date

    plans.extend_trial(db, user, 10)

    assert user.trial_end_date == old_end + timedelta(days=10)
    assert user.plan == PLAN_PRO


def test_extend_trial_from_lapsed_end_counts_from_now(db, make_user):
    user = make_user(plan=PLAN_BASIC, trial_days=-30, plan_override=True)
    before = utcnow()

    plans.extend_trial(db, user, 7)

    assert user.trial_end_date >= before + timedelta(days=7)
    assert user.plan == PLAN_PRO
    assert user.plan_override is False
    assert plans.trial_status_for(user).is_on_trial is True

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_TRIAL_EXTENDED))
    assert log.details["daysAdded"] == 7


def test_reset_trial(db, make_user):
    user = make_user(plan=PLAN_BASIC, trial_days=-30)

    plans.reset_trial(db, user, days=14)

    assert user.plan == PLAN_PRO
    assert plans.get_trial_days_remaining(user.plan, user.trial_end_date, user.plan_override) == 14

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_TRIAL_RESET))
    assert log.details["daysAdded"] == 14
    assert db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_TRIAL_EXTENDED)) is None
