"""Adds temporary worker capacity during an upgrade by cloning worker machine sets."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from managed_upgrade.models import KubeClient, Node, ObjectMeta

LABEL_UPGRADE = "upgrade.managed.openshift.io"
LABEL_MACHINESET = "machine.openshift.io/cluster-api-machineset"
MACHINE_API_NAMESPACE = "openshift-machine-api"

_WORKER_POOL_LABELS = {"hive.openshift.io/machine-pool": "worker"}
_UPGRADE_LABELS = {LABEL_UPGRADE: "true"}
_NODE_READY = "Ready"
_CONDITION_TRUE = "True"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ScaleTimeOutError(TimeoutError):
    """Extra capacity did not become ready within the allowed time."""


class DrainTimeOutError(TimeoutError):
    """A node could not be drained in time; its name is the message."""

    def __init__(self, node_name: str) -> None:
        super().__init__(node_name)
        self.node_name = node_name


@dataclass
class MachineSet:
    """A set of machines managed together."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    replicas: int | None = None
    selector_match_labels: dict[str, str] = field(default_factory=dict)
    template_labels: dict[str, str] = field(default_factory=dict)
    status_replicas: int = 0
    status_ready_replicas: int = 0


@dataclass
class Machine:
    """A machine and the node it backs."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    phase: str | None = None
    node_ref: str | None = None


class _DrainResult(Protocol):
    message: str


class _DrainStrategy(Protocol):
    def execute(self, node: Node, logger: logging.Logger) -> Iterable[_DrainResult]: ...

    def has_failed(self, node: Node, logger: logging.Logger) -> bool: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def not_selector_from_set(labels: dict[str, str]) -> str:
    """Return a label selector matching objects whose labels differ from every given pair."""
    return ",".join(f"{key}!={value}" for key, value in sorted(labels.items()))


class MachineSetScaler:
    """Scales workers out with one extra machine per worker machine set, and back in."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utc_now

    def can_scale(self, client: KubeClient, logger: logging.Logger) -> bool:
        """Tell whether a worker machine set exists that can be cloned."""
        try:
            originals = list(
                client.list("MachineSet", namespace=MACHINE_API_NAMESPACE, labels=dict(_WORKER_POOL_LABELS))
            )
        except Exception as exc:
            logger.error("failed to get original machinesets: %s", exc)
            raise
        return bool(originals)

    def ensure_scale_up_nodes(self, client: KubeClient, timeout: timedelta, logger: logging.Logger) -> bool:
        """Create the extra machine sets if needed; return True once all their nodes are ready."""
        try:
            upgrade_sets = list(
                client.list("MachineSet", namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS))
            )
        except Exception as exc:
            logger.error("failed to get upgrade extra machinesets: %s", exc)
            raise
        try:
            originals = list(
                client.list("MachineSet", namespace=MACHINE_API_NAMESPACE, labels=dict(_WORKER_POOL_LABELS))
            )
        except Exception as exc:
            logger.error("failed to get original machinesets: %s", exc)
            raise
        if not originals:
            logger.info("failed to get machineset")
            raise LookupError("failed to get original machineset")

        if self._create_extra_machine_sets(client, originals, upgrade_sets, logger):
            logger.info("created upgrade machinesets, will re-check their state on reconcile")
            return False

        if not self._nodes_are_ready(client, timeout, upgrade_sets, logger):
            logger.info("not all nodes in the upgrade machinesets are ready yet")
            return False
        return True

    def ensure_scale_down_nodes(
        self, client: KubeClient, drain_strategy: _DrainStrategy | None, logger: logging.Logger
    ) -> bool:
        """Delete the extra machine sets, drain their nodes, and return True once the machines are gone."""
        upgrade_sets = list(
            client.list("MachineSet", namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS))
        )
        for machine_set in upgrade_sets:
            if machine_set.metadata.deletion_timestamp is None:
                client.delete(machine_set)

        if drain_strategy is not None:
            nodes = _extra_upgrade_nodes(client)
            _handle_drain_strategy(drain_strategy, nodes, logger)

        try:
            machines = list(
                client.list("Machine", namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS))
            )
        except Exception as exc:
            logger.error("Cannot get a list of extra upgrade machines: %s", exc)
            raise
        if machines:
            for machine in machines:
                logger.info("Found upgrade machines to be terminated :%s", machine)
            return False
        return True

    def _create_extra_machine_sets(
        self,
        client: KubeClient,
        originals: list[MachineSet],
        upgrade_sets: list[MachineSet],
        logger: logging.Logger,
    ) -> bool:
        upgrade_names = {machine_set.metadata.name for machine_set in upgrade_sets}
        for original in originals:
            name = original.metadata.name + "-upgrade"
            if name in upgrade_names:
                logger.info("machineset for upgrade already created :%s", original.metadata.name)
                return False

            extra = copy.deepcopy(original)
            extra.metadata = ObjectMeta(
                name=name,
                namespace=original.metadata.namespace,
                labels={LABEL_UPGRADE: "true"},
            )
            extra.replicas = 1
            extra.template_labels[LABEL_UPGRADE] = "true"
            extra.template_labels[LABEL_MACHINESET] = name
            extra.selector_match_labels[LABEL_UPGRADE] = "true"
            extra.selector_match_labels[LABEL_MACHINESET] = name
            logger.info("creating machineset %s for upgrade", name)
            try:
                client.create(extra)
            except Exception as exc:
                logger.error("failed to create machineset: %s", exc)
                raise
        return True

    def _nodes_are_ready(
        self,
        client: KubeClient,
        timeout: timedelta,
        upgrade_sets: list[MachineSet],
        logger: logging.Logger,
    ) -> bool:
        for machine_set in upgrade_sets:
            start = machine_set.metadata.creation_timestamp or _EPOCH
            timed_out = self._clock() > start + timeout
            if machine_set.status_replicas != machine_set.status_ready_replicas:
                if timed_out:
                    raise ScaleTimeOutError(f"Machineset {machine_set.metadata.name} provisioning timout")
                logger.info("not all machines are ready for machineset:%s", machine_set.metadata.name)
                return False

            try:
                machines = list(
                    client.list(
                        "Machine",
                        namespace=MACHINE_API_NAMESPACE,
                        labels={LABEL_UPGRADE: "true", LABEL_MACHINESET: machine_set.metadata.name},
                    )
                )
            except Exception as exc:
                logger.error("failed to list extra upgrade machine: %s", exc)
                raise
            if len(machines) != 1 or machines[0].node_ref is None:
                logger.error("failed to list extra upgrade machine")
                return False

            try:
                node: Any = client.get("Node", machines[0].node_ref)
            except Exception as exc:
                logger.error("failed to get node: %s", exc)
                raise

            ready = any(
                condition.type == _NODE_READY and condition.status == _CONDITION_TRUE
                for condition in node.conditions
            )
            if not ready:
                if self._clock() > start + timeout:
                    logger.info("node is not ready within timeout time")
                    raise ScaleTimeOutError(
                        f"Timeout waiting for node:{node.metadata.name} to become ready"
                    )
                return False
        return True


def _extra_upgrade_nodes(client: KubeClient) -> list[Node]:
    nodes = list(client.list("Node"))
    machines = list(client.list("Machine", namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS)))
    extra: list[Node] = []
    for machine in machines:
        if machine.phase not in ("Running", "Deleting"):
            continue
        for node in nodes:
            if machine.node_ref is None:
                raise LookupError(
                    f"an upgrade machine {machine.metadata.name} exists but has no node association"
                )
            if node.metadata.name == machine.node_ref:
                extra.append(node)
    return extra


def _handle_drain_strategy(strategy: _DrainStrategy, nodes: list[Node], logger: logging.Logger) -> None:
    for node in nodes:
        for result in strategy.execute(node, logger):
            logger.info(result.message)
    for node in nodes:
        if strategy.has_failed(node, logger):
            raise DrainTimeOutError(node.metadata.name)