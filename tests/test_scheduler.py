from datetime import datetime, timedelta, timezone

from managed_upgrade.models import ObjectMeta, UpgradeConfig, UpgradeConfigSpec
from managed_upgrade.scheduler import Scheduler


def _config(upgrade_at: str) -> UpgradeConfig:
    return UpgradeConfig(
        metadata=ObjectMeta(name="upgradeconfig-example"),
        spec=UpgradeConfigSpec(upgrade_at=upgrade_at),
    )


def _rfc3339(moment: datetime) -> str:
    return moment.replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def test_ready_when_upgrade_at_is_ten_minutes_ago():
    result = Scheduler().is_ready_to_upgrade(_config(_rfc3339(_now() - timedelta(minutes=10))), timedelta(minutes=60))
    assert result.is_ready is True
    assert result.is_breached is False


def test_not_ready_when_upgrade_at_is_in_eighty_minutes():
    result = Scheduler().is_ready_to_upgrade(_config(_rfc3339(_now() + timedelta(minutes=80))), timedelta(minutes=60))
    assert result.is_ready is False
    assert result.time_until_upgrade > timedelta(minutes=79)


def test_breached_when_window_has_passed():
    result = Scheduler().is_ready_to_upgrade(_config(_rfc3339(_now() - timedelta(minutes=10))), timedelta(minutes=5))
    assert result.is_ready is True
    assert result.is_breached is True


def test_unparseable_time_is_not_ready():
    result = Scheduler().is_ready_to_upgrade(_config("not a time"), timedelta(minutes=60))
    assert (result.is_ready, result.is_breached, result.time_until_upgrade) == (False, False, timedelta(0))


def test_time_until_upgrade_with_fixed_clock():
    fixed = datetime(2020, 6, 19, 22, 30, tzinfo=timezone.utc)
    scheduler = Scheduler(clock=lambda: fixed)
    result = scheduler.is_ready_to_upgrade(_config("2020-06-20T00:00:00Z"), timedelta(minutes=60))
    assert result.is_ready is False
    assert result.time_until_upgrade == datetime(2020, 6, 20, tzinfo=timezone.utc) - fixed


def test_offset_timestamps_are_honoured():
    fixed = datetime(2020, 6, 20, 0, 30, tzinfo=timezone.utc)
    scheduler = Scheduler(clock=lambda: fixed)
    result = scheduler.is_ready_to_upgrade(_config("2020-06-20T02:00:00+02:00"), timedelta(minutes=60))
    assert result.is_ready is True
    assert result.is_breached is False
    assert result.time_until_upgrade == timedelta(0)