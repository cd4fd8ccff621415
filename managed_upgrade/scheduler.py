"""Decides whether an upgrade's scheduled time has arrived."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from managed_upgrade.models import UpgradeConfig

logger = logging.getLogger("scheduler")

_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def _parse_rfc3339(value: str) -> datetime:
    match = _RFC3339.match(value)
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    date, clock, fraction, offset = match.groups()
    text = f"{date}T{clock}"
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    text += "+00:00" if offset in ("Z", "z") else offset
    return datetime.fromisoformat(text)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SchedulerResult:
    """Whether an upgrade may start, whether its window is missed, and how long until it opens."""

    is_ready: bool
    is_breached: bool
    time_until_upgrade: timedelta


class Scheduler:
    """Compares an upgrade config's start time against the current time."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utc_now

    def is_ready_to_upgrade(self, upgrade_config: UpgradeConfig, timeout: timedelta) -> SchedulerResult:
        try:
            upgrade_time = _parse_rfc3339(upgrade_config.spec.upgrade_at)
        except ValueError:
            logger.exception("failed to parse spec.upgradeAt %s", upgrade_config.spec.upgrade_at)
            return SchedulerResult(is_ready=False, is_breached=False, time_until_upgrade=timedelta(0))

        now = self._clock()
        if now > upgrade_time:
            breached = not (upgrade_time + timeout > now)
            return SchedulerResult(is_ready=True, is_breached=breached, time_until_upgrade=timedelta(0))

        pending = upgrade_time - now
        hours = int(pending.total_seconds() // 3600)
        minutes = int(pending.total_seconds() // 60) - hours * 60
        logger.info("Upgrade is scheduled in %d hours %d mins", hours, minutes)
        return SchedulerResult(is_ready=False, is_breached=False, time_until_upgrade=pending)