"""Data types shared across the upgrade operator: cluster-service payloads and cluster objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Iterable, Protocol, runtime_checkable


def _section(data: Any) -> dict[str, Any]:
    return data if isinstance(data, dict) else {}


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    return 0 if value is None else int(value)


@dataclass
class ClusterVersion:
    """A cluster's version as reported by the cluster service."""

    id: str = ""
    channel_group: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> ClusterVersion:
        data = _section(data)
        return cls(id=_str(data, "id"), channel_group=_str(data, "channel_group"))


@dataclass
class NodeDrainGracePeriod:
    """A duration for node drain grace periods."""

    value: int = 0
    unit: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> NodeDrainGracePeriod:
        data = _section(data)
        return cls(value=_int(data, "value"), unit=_str(data, "unit"))


@dataclass
class ClusterInfo:
    """Partial cluster record from the cluster service."""

    id: str = ""
    version: ClusterVersion = field(default_factory=ClusterVersion)
    node_drain_grace_period: NodeDrainGracePeriod = field(default_factory=NodeDrainGracePeriod)

    @classmethod
    def from_dict(cls, data: Any) -> ClusterInfo:
        data = _section(data)
        return cls(
            id=_str(data, "id"),
            version=ClusterVersion.from_dict(data.get("version")),
            node_drain_grace_period=NodeDrainGracePeriod.from_dict(data.get("node_drain_grace_period")),
        )


@dataclass
class ClusterList:
    """A page of clusters from the cluster service."""

    kind: str = ""
    page: int = 0
    size: int = 0
    total: int = 0
    items: list[ClusterInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> ClusterList:
        data = _section(data)
        return cls(
            kind=_str(data, "kind"),
            page=_int(data, "page"),
            size=_int(data, "size"),
            total=_int(data, "total"),
            items=[ClusterInfo.from_dict(item) for item in data.get("items") or []],
        )


@dataclass
class UpgradePolicy:
    """A single upgrade policy from the cluster service."""

    id: str = ""
    kind: str = ""
    href: str = ""
    schedule: str = ""
    schedule_type: str = ""
    upgrade_type: str = ""
    version: str = ""
    next_run: str = ""
    prev_run: str = ""
    cluster_id: str = ""
    capacity_reservation: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> UpgradePolicy:
        data = _section(data)
        reservation = data.get("capacity_reservation")
        return cls(
            id=_str(data, "id"),
            kind=_str(data, "kind"),
            href=_str(data, "href"),
            schedule=_str(data, "schedule"),
            schedule_type=_str(data, "schedule_type"),
            upgrade_type=_str(data, "upgrade_type"),
            version=_str(data, "version"),
            next_run=_str(data, "next_run"),
            prev_run=_str(data, "prev_run"),
            cluster_id=_str(data, "cluster_id"),
            capacity_reservation=None if reservation is None else bool(reservation),
        )


@dataclass
class UpgradePolicyList:
    """A page of upgrade policies from the cluster service."""

    kind: str = ""
    page: int = 0
    size: int = 0
    total: int = 0
    items: list[UpgradePolicy] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> UpgradePolicyList:
        data = _section(data)
        return cls(
            kind=_str(data, "kind"),
            page=_int(data, "page"),
            size=_int(data, "size"),
            total=_int(data, "total"),
            items=[UpgradePolicy.from_dict(item) for item in data.get("items") or []],
        )


@dataclass
class UpgradePolicyState:
    """The state of an upgrade policy."""

    kind: str = ""
    href: str = ""
    value: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> UpgradePolicyState:
        data = _section(data)
        return cls(
            kind=_str(data, "kind"),
            href=_str(data, "href"),
            value=_str(data, "value"),
            description=_str(data, "description"),
        )


@dataclass
class UpgradePolicyStateRequest:
    """Body sent to update an upgrade policy's state."""

    value: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"value": self.value, "description": self.description}


class UpgradeType(StrEnum):
    """Which upgrader an upgrade config is handled by."""

    ARO = "ARO"
    OSD = "OSD"


class UpgradePhase(StrEnum):
    """Phase of an upgrade recorded in an upgrade config's history."""

    NEW = "New"
    PENDING = "Pending"
    UPGRADING = "Upgrading"
    UPGRADED = "Upgraded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


@dataclass
class Update:
    """The desired version and channel of an upgrade."""

    version: str = ""
    channel: str = ""


@dataclass
class UpgradeConfigSpec:
    """What upgrade to perform and when."""

    desired: Update = field(default_factory=Update)
    upgrade_at: str = ""
    pdb_force_drain_timeout: int = 0
    type: str = ""
    capacity_reservation: bool = False


@dataclass
class UpgradeCondition:
    """A condition recorded against an upgrade history entry."""

    type: str = ""
    status: str = ""


@dataclass
class UpgradeHistory:
    """The record of one upgrade attempt."""

    version: str = ""
    phase: UpgradePhase = UpgradePhase.UNKNOWN
    conditions: list[UpgradeCondition] = field(default_factory=list)


@dataclass
class ObjectMeta:
    """Metadata common to cluster objects."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: datetime | None = None
    creation_timestamp: datetime | None = None
    resource_version: str = ""


@dataclass
class UpgradeConfig:
    """The upgrade configuration resource held on the cluster."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: UpgradeConfigSpec = field(default_factory=UpgradeConfigSpec)
    history: list[UpgradeHistory] = field(default_factory=list)

    def history_for(self, version: str) -> UpgradeHistory | None:
        """Return the history entry for the given version, if any."""
        return next((entry for entry in self.history if entry.version == version), None)


@dataclass
class Pod:
    """A pod scheduled on a node."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    node_name: str = ""


@dataclass
class NodeCondition:
    """A condition reported by a node."""

    type: str = ""
    status: str = ""


@dataclass
class Node:
    """A cluster node."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    conditions: list[NodeCondition] = field(default_factory=list)


class NotFoundError(LookupError):
    """Raised by a cluster client when the requested object does not exist."""


@runtime_checkable
class KubeClient(Protocol):
    """Operations the operator needs from a cluster API client."""

    def get(self, kind: str, name: str, namespace: str | None = None) -> Any:
        """Return the named object; raise NotFoundError if it does not exist."""
        ...

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
        field_selector: dict[str, str] | None = None,
    ) -> Iterable[Any]:
        """Return objects of a kind matching the given selectors."""
        ...

    def create(self, obj: Any) -> None:
        """Create the object."""
        ...

    def update(self, obj: Any) -> None:
        """Update the object."""
        ...

    def delete(self, obj: Any, grace_period_seconds: int | None = None) -> None:
        """Delete the object."""
        ...