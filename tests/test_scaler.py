import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from managed_upgrade.models import Node, NodeCondition, ObjectMeta
from managed_upgrade.scaler import (
    LABEL_MACHINESET,
    LABEL_UPGRADE,
    MACHINE_API_NAMESPACE,
    DrainTimeOutError,
    Machine,
    MachineSet,
    MachineSetScaler,
    ScaleTimeOutError,
    not_selector_from_set,
)

LOGGER = logging.getLogger("cluster upgrader test logger")
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
TEST_DURATION = timedelta(minutes=30)
WORKER = {"hive.openshift.io/machine-pool": "worker"}
UPGRADE = {LABEL_UPGRADE: "true"}


def _key(labels):
    return tuple(sorted((labels or {}).items()))


class FakeClient:
    def __init__(self):
        self.responses = {}
        self.list_calls = []
        self.created = []
        self.deleted = []
        self.create_error = None
        self.delete_error = None
        self.node = None

    def respond(self, kind, labels, *responses):
        self.responses[(kind, _key(labels))] = list(responses)

    def list(self, kind, namespace=None, labels=None, field_selector=None):
        self.list_calls.append((kind, namespace, dict(labels or {})))
        queue = self.responses.get((kind, _key(labels)), [[]])
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return list(response)

    def get(self, kind, name, namespace=None):
        return self.node

    def create(self, obj):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(obj)

    def delete(self, obj, grace_period_seconds=None):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(obj.metadata.name)


class FakeDrain:
    def __init__(self, failed=False):
        self.failed = failed
        self.executed = []

    def execute(self, node, logger):
        self.executed.append(node.metadata.name)
        return [SimpleNamespace(message="drained")]

    def has_failed(self, node, logger):
        return self.failed


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def scaler():
    return MachineSetScaler(clock=lambda: NOW)


def _ms(name, **kwargs):
    return MachineSet(metadata=ObjectMeta(name=name, namespace=MACHINE_API_NAMESPACE), **kwargs)


def test_can_scale_false_without_worker_machineset(client, scaler):
    assert scaler.can_scale(client, LOGGER) is False
    assert client.list_calls == [("MachineSet", MACHINE_API_NAMESPACE, WORKER)]


def test_can_scale_true_with_worker_machineset(client, scaler):
    client.respond("MachineSet", WORKER, [_ms("worker")])
    assert scaler.can_scale(client, LOGGER) is True


def test_scale_up_upgrade_list_error(client, scaler):
    error = RuntimeError("fake error")
    client.respond("MachineSet", UPGRADE, error)
    with pytest.raises(RuntimeError) as info:
        scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER)
    assert info.value is error


def test_scale_up_original_list_error(client, scaler):
    error = RuntimeError("fake error")
    client.respond("MachineSet", WORKER, error)
    with pytest.raises(RuntimeError) as info:
        scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER)
    assert info.value is error


def test_scale_up_without_original_machineset(client, scaler):
    with pytest.raises(LookupError, match="failed to get original machineset"):
        scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER)


def test_scale_up_creates_upgrade_machineset(client, scaler):
    original = _ms("test-infra")
    client.respond("MachineSet", WORKER, [original])
    assert scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER) is False
    assert len(client.created) == 1
    created = client.created[0]
    assert created.metadata.name == "test-infra-upgrade"
    assert created.metadata.namespace == MACHINE_API_NAMESPACE
    assert created.metadata.labels[LABEL_UPGRADE] == "true"
    assert created.replicas == 1
    assert created.template_labels[LABEL_UPGRADE] == "true"
    assert created.template_labels[LABEL_MACHINESET] == "test-infra-upgrade"
    assert created.selector_match_labels[LABEL_UPGRADE] == "true"
    assert original.template_labels == {}


def test_scale_up_create_error(client, scaler):
    error = RuntimeError("fake error")
    client.respond("MachineSet", WORKER, [_ms("test-infra")])
    client.create_error = error
    with pytest.raises(RuntimeError) as info:
        scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER)
    assert info.value is error


def test_scale_up_waiting_for_replicas(client, scaler):
    upgrade = _ms("test-infra-upgrade", status_replicas=1, status_ready_replicas=0)
    upgrade.metadata.creation_timestamp = NOW
    client.respond("MachineSet", UPGRADE, [upgrade])
    client.respond("MachineSet", WORKER, [_ms("test-infra")])
    assert scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER) is False
    assert client.created == []


def _ready_setup(client, created_at, ready):
    upgrade = _ms("test-infra-upgrade", status_replicas=1, status_ready_replicas=1)
    upgrade.metadata.creation_timestamp = created_at
    client.respond("MachineSet", UPGRADE, [upgrade])
    client.respond("MachineSet", WORKER, [_ms("test-infra")])
    machine = Machine(metadata=ObjectMeta(name="test-machine"), node_ref="test-node")
    client.respond("Machine", {LABEL_UPGRADE: "true", LABEL_MACHINESET: "test-infra-upgrade"}, [machine])
    status = "True" if ready else "False"
    client.node = Node(metadata=ObjectMeta(name="test-node"), conditions=[NodeCondition("Ready", status)])


def test_scale_up_node_not_ready_after_timeout(client, scaler):
    _ready_setup(client, NOW - timedelta(minutes=60), ready=False)
    with pytest.raises(ScaleTimeOutError, match="test-node"):
        scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER)


def test_scale_up_node_not_ready(client, scaler):
    _ready_setup(client, NOW, ready=False)
    assert scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER) is False


def test_scale_up_all_nodes_ready(client, scaler):
    _ready_setup(client, NOW, ready=True)
    assert scaler.ensure_scale_up_nodes(client, TEST_DURATION, LOGGER) is True


@pytest.fixture
def scaled_sets():
    return [_ms("scaled1"), _ms("scaled2")]


def test_scale_down_list_error(client, scaler):
    error = RuntimeError("fake error")
    client.respond("MachineSet", UPGRADE, error)
    with pytest.raises(RuntimeError) as info:
        scaler.ensure_scale_down_nodes(client, None, LOGGER)
    assert info.value is error


def test_scale_down_delete_error(client, scaler, scaled_sets):
    error = RuntimeError("fake error")
    client.respond("MachineSet", UPGRADE, scaled_sets)
    client.delete_error = error
    with pytest.raises(RuntimeError) as info:
        scaler.ensure_scale_down_nodes(client, None, LOGGER)
    assert info.value is error


def test_scale_down_deletes_all_and_waits_for_machines(client, scaler, scaled_sets):
    client.respond("MachineSet", UPGRADE, scaled_sets)
    client.respond("Machine", UPGRADE, [Machine(metadata=ObjectMeta(name="test-machine"))])
    assert scaler.ensure_scale_down_nodes(client, None, LOGGER) is False
    assert client.deleted == ["scaled1", "scaled2"]


def _drain_setup(client, scaled_sets, remaining):
    upgrade_machine = Machine(
        metadata=ObjectMeta(name="test-machine-1", namespace=MACHINE_API_NAMESPACE),
        phase="Running",
        node_ref="test-node-1",
    )
    client.respond("MachineSet", UPGRADE, scaled_sets)
    client.respond("Node", None, [Node(metadata=ObjectMeta(name="test-node-1")), Node()])
    client.respond("Machine", UPGRADE, [upgrade_machine], remaining)


def test_scale_down_machines_remain_after_drain(client, scaler, scaled_sets):
    _drain_setup(client, scaled_sets, [Machine(metadata=ObjectMeta(name="test-machine"))])
    drain = FakeDrain()
    assert scaler.ensure_scale_down_nodes(client, drain, LOGGER) is False
    assert drain.executed == ["test-node-1"]


def test_scale_down_applies_drain_strategy(client, scaler, scaled_sets):
    _drain_setup(client, scaled_sets, [])
    drain = FakeDrain()
    assert scaler.ensure_scale_down_nodes(client, drain, LOGGER) is True
    assert client.deleted == ["scaled1", "scaled2"]
    assert drain.executed == ["test-node-1"]


def test_scale_down_drain_failure(client, scaler, scaled_sets):
    _drain_setup(client, scaled_sets, [])
    with pytest.raises(DrainTimeOutError) as info:
        scaler.ensure_scale_down_nodes(client, FakeDrain(failed=True), LOGGER)
    assert info.value.node_name == "test-node-1"


def test_not_selector_from_set():
    assert not_selector_from_set({}) == ""
    assert not_selector_from_set({"b": "2", "a": "1"}) == "a!=1,b!=2"