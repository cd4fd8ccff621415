"""Configuration sections read by the notifier, providers and upgrade config manager."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit

from managed_upgrade.models import UpgradeType


class ConfigManagerSource(StrEnum):
    """Where configuration for upgrade specs and notifications comes from."""

    OCM = "OCM"
    LOCAL = "LOCAL"


class NoNotifierConfiguredError(ValueError):
    """No valid notifier source is configured."""

    def __init__(self, message: str = "no valid configured notifier") -> None:
        super().__init__(message)


class InvalidSpecProviderError(ValueError):
    """The spec provider configuration names an unsupported type."""

    def __init__(self, message: str = "invalid configManager spec provider type defined") -> None:
        super().__init__(message)


class NoSpecProviderConfigError(ValueError):
    """No spec provider is configured."""

    def __init__(self, message: str = "no configManager spec provider configured") -> None:
        super().__init__(message)


class NoConfigManagerDefinedError(ValueError):
    """The upgrade config manager section is missing or unusable."""

    def __init__(self, message: str = "no configManager defined in configuration") -> None:
        super().__init__(message)


_SOURCES = {source.value for source in ConfigManagerSource}


def _config_manager(data: Any) -> dict[str, Any] | None:
    if not isinstance(data, dict):
        return None
    section = data.get("configManager")
    return section if isinstance(section, dict) else None


def _text(section: dict[str, Any] | None, key: str) -> str:
    if section is None:
        return ""
    value = section.get(key)
    return "" if value is None else str(value)


def _check_url(url: str) -> str:
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in url):
        raise ValueError("OCM Base URL is not a parseable URL")
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError on a malformed port
    except ValueError as exc:
        raise ValueError("OCM Base URL is not a parseable URL") from exc
    return parts.geturl()


@dataclass
class NotifierConfig:
    """Selects which notifier reports upgrade state."""

    source: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> NotifierConfig:
        return cls(source=_text(_config_manager(data), "source"))

    def validate(self) -> None:
        """Raise NoNotifierConfiguredError if a non-empty source is unsupported."""
        if self.source and self.source.upper() not in _SOURCES:
            raise NoNotifierConfiguredError()


@dataclass
class OcmConfig:
    """Holds the base URL of the cluster service."""

    ocm_base_url: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> OcmConfig:
        return cls(ocm_base_url=_text(_config_manager(data), "ocmBaseUrl"))

    def validate(self) -> None:
        """Raise ValueError if the base URL cannot be parsed."""
        _check_url(self.ocm_base_url)

    def base_url(self) -> str | None:
        """Return the parsed base URL, or None if it cannot be parsed."""
        try:
            return _check_url(self.ocm_base_url)
        except ValueError:
            return None


@dataclass
class SpecProviderConfig:
    """Selects where upgrade specs are read from and which upgrader applies them."""

    upgrade_type: str = ""
    source: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> SpecProviderConfig:
        upgrade_type = data.get("upgradeType") if isinstance(data, dict) else None
        return cls(
            upgrade_type="" if upgrade_type is None else str(upgrade_type),
            source=_text(_config_manager(data), "source"),
        )

    def validate(self) -> None:
        """Raise if the source is missing or the source or upgrade type is unsupported."""
        if not self.source:
            raise NoSpecProviderConfigError()
        if self.source.upper() not in _SOURCES:
            raise InvalidSpecProviderError()
        if self.upgrade_type not in {"", *(t.value for t in UpgradeType)}:
            raise InvalidSpecProviderError()

    def effective_upgrade_type(self) -> UpgradeType:
        """Return the configured upgrade type, defaulting to ARO."""
        if not self.upgrade_type:
            return UpgradeType.ARO
        try:
            return UpgradeType(self.upgrade_type)
        except ValueError as exc:
            raise InvalidSpecProviderError() from exc


@dataclass
class UpgradeConfigManagerConfig:
    """How often the upgrade config manager syncs."""

    watch_interval_minutes: int = 1

    @classmethod
    def from_dict(cls, data: Any) -> UpgradeConfigManagerConfig:
        section = _config_manager(data)
        if section is None:
            return cls(watch_interval_minutes=0)
        value = section.get("watchInterval")
        return cls(watch_interval_minutes=1 if value is None else int(value))

    def validate(self) -> None:
        """Raise NoConfigManagerDefinedError unless the watch interval is positive."""
        if self.watch_interval_minutes <= 0:
            raise NoConfigManagerDefinedError()

    def watch_interval(self) -> timedelta:
        return timedelta(minutes=self.watch_interval_minutes)