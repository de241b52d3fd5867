from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from src.models import TierStatus
from src.services.festival_service import derive_tier_status, refresh_tier_statuses
from src.timeutils import parse_local_datetime

NOW = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)


def _naive(delta_minutes):
    return (NOW + timedelta(minutes=delta_minutes)).replace(tzinfo=None)


def test_pending_tier_activates_once_started():
    assert derive_tier_status(TierStatus.PENDING, _naive(-5), _naive(60), NOW) == TierStatus.ACTIVE


def test_pending_tier_waits_for_its_start():
    assert derive_tier_status(TierStatus.PENDING, _naive(5), _naive(60), NOW) == TierStatus.PENDING


def test_tier_past_end_completes_even_from_pending():
    assert derive_tier_status(TierStatus.PENDING, _naive(-120), _naive(-60), NOW) == TierStatus.COMPLETED
    assert derive_tier_status(TierStatus.ACTIVE, None, _naive(-1), NOW) == TierStatus.COMPLETED


def test_completed_is_terminal():
    assert derive_tier_status(TierStatus.COMPLETED, _naive(-5), _naive(60), NOW) == TierStatus.COMPLETED


def test_untimed_tiers_keep_their_status():
    assert derive_tier_status(TierStatus.PENDING, None, None, NOW) == TierStatus.PENDING
    assert derive_tier_status("active", None, None, NOW) == TierStatus.ACTIVE


def test_refresh_only_reports_changed_tiers():
    tiers = [
        SimpleNamespace(status=TierStatus.PENDING, start_time=_naive(-5), end_time=_naive(60)),
        SimpleNamespace(status=TierStatus.PENDING, start_time=_naive(30), end_time=_naive(60)),
        SimpleNamespace(status=TierStatus.ACTIVE, start_time=_naive(-90), end_time=_naive(-30)),
    ]

    changed = refresh_tier_statuses(tiers, NOW)

    assert changed == [tiers[0], tiers[2]]
    assert [tier.status for tier in tiers] == [TierStatus.ACTIVE, TierStatus.PENDING, TierStatus.COMPLETED]


def test_naive_admin_input_is_reference_timezone_civil_time():
    # 18:30 in Asia/Kolkata is 13:00 UTC
    assert parse_local_datetime("2025-10-01T18:30") == datetime(2025, 10, 1, 13, 0)
    assert parse_local_datetime("2025-10-01T18:30:00Z") == datetime(2025, 10, 1, 18, 30)
    assert parse_local_datetime("") is None
