from datetime import datetime, timedelta, timezone

import pytest
from fastapi import BackgroundTasks
from sqlmodel import select

from voxforge.core.errors import UsageLimitError
from voxforge.models.enums import UsageCategory
from voxforge.models.usage import UsageTracking
from voxforge.services.billing import usage as usage_svc

MAY = datetime(2025, 5, 14, 10, 0, tzinfo=timezone.utc)
JUNE = datetime(2025, 6, 1, 0, 5, tzinfo=timezone.utc)


@pytest.fixture
def starter_user(make_user, make_plan):
    make_plan(
        "starter",
        text_generation_limit=None,
        image_generation_limit=0,
        audio_generation_limit=3,
    )
    return make_user("starter@example.com", plan_tier="starter")


def test_unlimited_category_never_fails(session, starter_user):
    for _ in range(5):
        usage_svc.track_usage(session, starter_user.id, UsageCategory.text, now=MAY)
    assert usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.text, now=MAY) is None


def test_zero_limit_blocks_immediately(session, starter_user):
    with pytest.raises(UsageLimitError) as info:
        usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.image, now=MAY)
    assert info.value.limit == 0
    assert info.value.remaining_quota == 0


def test_limit_reached_after_exactly_limit_tracked_uses(session, starter_user):
    for expected_remaining in (3, 2, 1):
        assert usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.audio, now=MAY) == expected_remaining
        usage_svc.track_usage(session, starter_user.id, UsageCategory.audio, now=MAY)

    with pytest.raises(UsageLimitError) as info:
        usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.audio, now=MAY)
    assert info.value.details == {"category": "audio", "limit": 3, "used": 3, "remaining_quota": 0}


def test_new_month_starts_from_zero(session, starter_user):
    for _ in range(3):
        usage_svc.track_usage(session, starter_user.id, UsageCategory.audio, now=MAY)
    with pytest.raises(UsageLimitError):
        usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.audio, now=MAY)
    assert usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.audio, now=JUNE) == 3


def test_track_usage_keeps_one_row_per_month(session, starter_user):
    usage_svc.track_usage(session, starter_user.id, UsageCategory.audio, now=MAY)
    usage_svc.track_usage(session, starter_user.id, UsageCategory.text, now=MAY)
    usage_svc.track_usage(session, starter_user.id, UsageCategory.audio, now=MAY)

    rows = session.exec(select(UsageTracking).where(UsageTracking.user_id == starter_user.id)).all()
    assert len(rows) == 1
    session.refresh(rows[0])
    assert rows[0].audio_generation_count == 2
    assert rows[0].text_generation_count == 1
    assert (rows[0].month, rows[0].year) == (5, 2025)
    assert rows[0].updated_at.tzinfo is not None
    assert rows[0].created_at.utcoffset() == timedelta(0)


def test_user_without_plan_is_unlimited(session, make_user, caplog):
    u = make_user("noplan@example.com", plan_tier="advanced")
    assert usage_svc.check_usage_limit(session, u.id, UsageCategory.audio, now=MAY) is None
    assert "event=usage.plan_missing" in caplog.text
    assert "tier=advanced" in caplog.text


def test_naive_timestamps_are_stored_as_utc(session, starter_user):
    naive_may = MAY.replace(tzinfo=None)
    usage_svc.track_usage(session, starter_user.id, UsageCategory.audio, now=naive_may)
    assert usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.audio, now=naive_may) == 2
    assert usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.audio, now=MAY) == 2


def test_check_does_not_write(session, starter_user):
    usage_svc.check_usage_limit(session, starter_user.id, UsageCategory.audio, now=MAY)
    assert session.exec(select(UsageTracking)).first() is None


def test_usage_summary(session, starter_user):
    usage_svc.track_usage(session, starter_user.id, UsageCategory.audio, now=MAY)
    summary = usage_svc.get_usage_summary(session, starter_user.id, now=MAY)
    assert summary["month"] == 5
    assert summary["year"] == 2025
    assert summary["planTier"] == "starter"
    assert summary["categories"]["audio"] == {"used": 1, "limit": 3, "remaining": 2}
    assert summary["categories"]["text"] == {"used": 0, "limit": None, "remaining": None}


def test_schedule_usage_tracking_runs_in_background(session, starter_user):
    tasks = BackgroundTasks()
    usage_svc.schedule_usage_tracking(tasks, starter_user.id, UsageCategory.audio)
    assert session.exec(select(UsageTracking)).first() is None

    for task in tasks.tasks:
        task.func(*task.args, **task.kwargs)

    session.expire_all()
    row = session.exec(select(UsageTracking).where(UsageTracking.user_id == starter_user.id)).one()
    assert row.audio_generation_count == 1


def test_background_tracking_failure_is_logged(monkeypatch, caplog, starter_user):
    def boom(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(usage_svc, "track_usage", boom)
    usage_svc._track_usage_task(starter_user.id, UsageCategory.audio)
    assert "event=usage.track_failed" in caplog.text
