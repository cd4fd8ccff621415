"""Turns the cluster service's upgrade policies into upgrade config specs."""

from __future__ import annotations

import logging
from typing import Protocol

import semver

from managed_upgrade.models import (
    ClusterInfo,
    KubeClient,
    Update,
    UpgradeConfigSpec,
    UpgradePolicy,
    UpgradePolicyList,
    UpgradePolicyState,
)
from managed_upgrade.ocm_client import ClusterIdNotFoundError
from managed_upgrade.scheduler import _parse_rfc3339

logger = logging.getLogger("ocm-config-getter")

_IGNORED_STATES = frozenset({"pending", "completed", "cancelled"})


class ProviderUnavailableError(RuntimeError):
    """The cluster service could not be reached."""

    def __init__(self, message: str = "OCM Provider unavailable") -> None:
        super().__init__(message)


class RetrievingPoliciesError(RuntimeError):
    """The cluster's upgrade policies could not be retrieved."""

    def __init__(self, message: str = "could not retrieve provider upgrade policies") -> None:
        super().__init__(message)


class ProcessingPoliciesError(RuntimeError):
    """The cluster's upgrade policies could not be turned into specs."""

    def __init__(self, message: str = "could not process provider upgrade policies") -> None:
        super().__init__(message)


class _ClusterServiceClient(Protocol):
    def get_cluster(self) -> ClusterInfo: ...

    def get_cluster_upgrade_policies(self, cluster_id: str) -> UpgradePolicyList: ...

    def get_cluster_upgrade_policy_state(self, policy_id: str, cluster_id: str) -> UpgradePolicyState: ...


class OcmProvider:
    """Supplies upgrade specs from the cluster service's upgrade policies."""

    def __init__(
        self,
        kube_client: KubeClient,
        upgrade_type: str,
        ocm_client: _ClusterServiceClient,
    ) -> None:
        self.kube_client = kube_client
        self.upgrade_type = upgrade_type
        self.ocm_client = ocm_client

    def get(self) -> list[UpgradeConfigSpec]:
        """Return the specs for the next actionable upgrade policy, or an empty list."""
        logger.info("Commencing sync with OCM Spec provider")

        try:
            cluster = self.ocm_client.get_cluster()
        except ClusterIdNotFoundError:
            logger.exception("cannot obtain internal cluster ID")
            raise
        except Exception as exc:
            logger.exception("cannot obtain internal cluster ID")
            raise ProviderUnavailableError() from exc
        if not cluster.id:
            raise ClusterIdNotFoundError()

        try:
            policies = self.ocm_client.get_cluster_upgrade_policies(cluster.id)
        except Exception as exc:
            logger.exception("error retrieving upgrade policies")
            raise RetrievingPoliciesError() from exc

        if not policies.items:
            logger.info("No upgrade policies available")
            return []

        next_policy = get_next_occurring_upgrade_policy(policies)
        logger.info("Detected upgrade policy %s as next occurring.", next_policy.id)

        state = self.ocm_client.get_cluster_upgrade_policy_state(next_policy.id, cluster.id)
        if not is_actionable_upgrade_policy(next_policy, state):
            return []

        try:
            return build_upgrade_config_specs(next_policy, cluster, self.upgrade_type)
        except ValueError as exc:
            logger.exception("cannot build UpgradeConfigs from policy")
            raise ProcessingPoliciesError() from exc


def get_next_occurring_upgrade_policy(policies: UpgradePolicyList) -> UpgradePolicy:
    """Return the policy with the earliest next run, whatever its schedule type."""
    chosen = policies.items[0]
    for policy in policies.items:
        current_next = _parse_rfc3339(chosen.next_run)
        candidate_next = _parse_rfc3339(policy.next_run)
        if candidate_next < current_next:
            chosen = policy
    return chosen


def is_actionable_upgrade_policy(policy: UpgradePolicy, state: UpgradePolicyState) -> bool:
    """Tell whether a policy in the given state should become an upgrade config."""
    if state.value.lower() in _IGNORED_STATES:
        return False
    if not policy.version:
        logger.info("Upgrade policy %s has an empty version, will ignore.", policy.id)
        return False
    return True


def _int32(value: int) -> int:
    return ((value + 2**31) % 2**32) - 2**31


def build_upgrade_config_specs(
    policy: UpgradePolicy, cluster: ClusterInfo, upgrade_type: str
) -> list[UpgradeConfigSpec]:
    """Build the upgrade config specs a policy describes."""
    capacity_reservation = policy.capacity_reservation is not False
    try:
        channel = infer_upgrade_channel(cluster.version.channel_group, policy.version)
    except ValueError as exc:
        raise ValueError(
            f"unable to determine channel from channel group '{cluster.version.channel_group}' "
            f"and version '{policy.version}' for policy ID '{policy.id}'"
        ) from exc
    spec = UpgradeConfigSpec(
        desired=Update(version=policy.version, channel=channel),
        upgrade_at=policy.next_run,
        pdb_force_drain_timeout=_int32(cluster.node_drain_grace_period.value),
        type=upgrade_type,
        capacity_reservation=capacity_reservation,
    )
    return [spec]


def infer_upgrade_channel(channel_group: str, to_version: str) -> str:
    """Derive a channel name such as 'stable-4.9' from a channel group and target version."""
    group = channel_group or "stable"
    try:
        parsed = semver.Version.parse(to_version)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid semantic TO version: {to_version}") from exc
    return f"{group}-{parsed.major}.{parsed.minor}"