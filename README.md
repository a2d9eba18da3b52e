# storageop

Reconciliation logic for cluster storage, usable as a plain Python library.
Controllers work against in-memory clients and plain mappings, so the same
code can be driven from tests or wired to other storage by the caller.

## Modules

- **`storageop.api`**: the operator resource model. `OperatorCondition`,
  `OperatorSpec`, `OperatorStatus`, the `ConditionStatus` and
  `ManagementState` enums, and `NotFoundError`. Condition helpers
  `set_condition`, `remove_condition`, `is_condition_present_and_equal`,
  `update_condition_fn` and `remove_condition_fn`; `log_level_to_verbosity`
  maps `Normal`, `Debug`, `Trace` and `TraceAll` to 2, 4, 6 and 8 (anything
  else maps to 2). `InMemoryOperatorClient` holds one operator resource:
  `get_operator_state()` returns copies of spec and status plus a resource
  version, and `update_status(*fns)` applies update functions and reports
  whether the status changed. Both raise `NotFoundError` when the resource
  does not exist.
- **`storageop.defaultstorageclass`**: `DefaultStorageClassController` reads
  the `cluster` `Infrastructure` and reports the
  `DefaultStorageClassController*` conditions. On CSI-backed platforms (AWS,
  GCP, VSphere, Azure, IBMCloud, OpenStack, oVirt) it sets Available=True and
  Progressing=False; on any other platform, or when no platform is reported,
  it also sets Disabled=True and Upgradeable=True. Other failures (for
  example a missing `Infrastructure`) set Progressing=True, keep an existing
  Available=True rather than flipping it, and are raised again from `sync()`.
  `new_storage_class_for_cluster` raises `SupportedByCSIError` or
  `UnsupportedPlatformError`.
- **`storageop.detector_config`**: `parse_config_map` reads the
  `config.yaml` key of the `vsphere-problem-detector` ConfigMap into a
  `DetectorConfig`. A missing ConfigMap or an empty document gives the
  defaults (alerts enabled); a missing key, unknown field or non-boolean value
  raises `ConfigMapFormatError`.
- **`storageop.monitoring`**: `parse_prometheus_rule` decodes a
  `PrometheusRule` manifest (raising `PrometheusRuleError` on bad input).
  `InMemoryRuleClient` stores rules with `get`, `create`, `update` and
  `delete`. `MonitoringController.sync()` deletes the rule when alerts are
  disabled or the vSphere driver is `Removed`, and otherwise creates it or
  updates it when its spec, labels or annotations differ; it then sets
  `VSphereProblemDetectorMonitoringControllerAvailable=True`.
- **`storageop.metrics`**: `get_version` returns a `VersionInfo` (with the
  build-info metric `labels`); `default_storage_class_names` and
  `count_default_storage_classes` look at the
  `storageclass.kubernetes.io/is-default-class` annotation.
- **`storageop.problem_detector`**: `VSphereProblemDetectorStarter` calls its
  `start_controllers` callback once, and only when the platform is VSphere and
  the operator is Managed; `config_map_hash_hook` annotates a Deployment with
  the hash of the cloud-config ConfigMap. Helpers: `render_manifest` fills in
  `${OPERATOR_IMAGE}` (from `VSPHERE_PROBLEM_DETECTOR_OPERATOR_IMAGE`) and
  `${LOG_LEVEL}`; `add_object_hash` writes `operator.openshift.io/dep-*`
  annotations, hashing keys that would exceed 63 characters;
  `config_map_hash` hashes ConfigMap data.
- **`storageop.deployment`**: `get_required_deployment` renders a Deployment
  manifest with replacements, log level, node selector, extra labels (never
  overwriting existing template labels) and tolerations.
  `deployment_conditions` derives Available and Progressing conditions from a
  Deployment's status, and `create_deployment` applies a Deployment through
  the `apply` callable in `DeploymentOptions`, records the conditions and
  generation, and stores the target version once all replicas are updated.

## Example

```python
from storageop.api import ConditionStatus, InMemoryOperatorClient
from storageop.defaultstorageclass import (
    DefaultStorageClassController,
    Infrastructure,
    PlatformType,
)
from storageop.detector_config import parse_config_map

client = InMemoryOperatorClient()
infrastructures = {"cluster": Infrastructure(platform=PlatformType.BARE_METAL)}
DefaultStorageClassController(client, infrastructures, {}).sync()

_, status, _ = client.get_operator_state()
assert status.condition("DefaultStorageClassControllerDisabled").status == ConditionStatus.TRUE

config = parse_config_map({"vsphere-problem-detector": {"config.yaml": "alertsDisabled: true"}})
assert config.alerts_disabled is True
```

## What it does not do

- There is no command and no long-running process: controllers run one
  reconciliation per `sync()` call, and scheduling them is up to the caller.
- It does not talk to a cluster API. Objects live in the in-memory clients
  and mappings passed in; Deployments are applied through a callable you
  supply.
- It ships no manifest files: Deployment and PrometheusRule manifests are
  passed in as text or bytes.
- It exposes no metrics endpoint; `count_default_storage_classes` and
  `VersionInfo.labels` only compute the values.

## Tests

The test suite uses pytest and is installed through the `test` extra.