# managed-upgrade

A library for managing cluster upgrades that follow upgrade policies published by a
cluster management service (OCM) or by an in-cluster OCM agent.

It provides:

- **Models** (`managed_upgrade.models`) for clusters, upgrade policies and policy
  states as returned by the service, and for the `UpgradeConfig` resource that
  describes a desired upgrade.
- **Configuration** (`managed_upgrade.config`) objects with validation for the
  notifier, the spec provider, the OCM client and the upgrade config manager.
- **OCM clients** (`managed_upgrade.ocm_client`, `managed_upgrade.ocm_agent`) that
  read cluster info and upgrade policies and report policy state over HTTP.
  `select_ocm_client` picks the agent client when the base URL points at the
  in-cluster agent service.
- **Spec providers** (`managed_upgrade.ocm_provider`, `managed_upgrade.spec_provider`)
  that turn the next occurring actionable upgrade policy into an `UpgradeConfigSpec`,
  inferring the update channel (for example `fast-4.9`) from the channel group and
  the target version.
- **A scheduler** (`managed_upgrade.scheduler`) that decides whether an upgrade is
  due and whether its window has been breached.
- **Node helpers** (`managed_upgrade.pod`, `managed_upgrade.scaler`) for filtering and
  deleting pods, removing finalizers, and adding and removing extra worker capacity
  through machine sets during an upgrade.
- **An upgrade config manager** (`managed_upgrade.upgrade_config_manager`) that keeps
  the cluster's `UpgradeConfig` in line with what the provider returns.
- **Notifiers** (`managed_upgrade.notifier`) that report upgrade state either to the
  log or back to OCM, sending only valid state transitions.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from datetime import timedelta

from managed_upgrade.models import UpgradeConfig, UpgradeConfigSpec
from managed_upgrade.scheduler import Scheduler

config = UpgradeConfig(spec=UpgradeConfigSpec(upgrade_at="2020-06-20T00:00:00Z"))
result = Scheduler().is_ready_to_upgrade(config, timedelta(minutes=60))
print(result.is_ready, result.is_breached)
```

```python
from managed_upgrade.ocm_provider import infer_upgrade_channel

infer_upgrade_channel("fast", "4.9.1")   # "fast-4.9"
infer_upgrade_channel("", "4.9.1")       # "stable-4.9"
```

Errors are raised as exceptions: for example `ProviderUnavailableError` when the
cluster service cannot be reached, and `ScaleTimeOutError` when extra worker nodes
do not become ready in time.