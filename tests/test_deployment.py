import copy

import pytest

from storageop.api import (
    ConditionStatus,
    InMemoryOperatorClient,
    log_level_to_verbosity,
)
from storageop.deployment import (
    DeploymentOptions,
    create_deployment,
    deployment_conditions,
    get_required_deployment,
)

NAME = "TestController"


def _deployment(generation=1, observed=1, replicas=2, updated=2, available=2):
    return {
        "kind": "Deployment",
        "metadata": {"name": "detector", "namespace": "ns", "generation": generation},
        "spec": {"replicas": replicas},
        "status": {
            "observedGeneration": observed,
            "updatedReplicas": updated,
            "availableReplicas": available,
        },
    }


def test_conditions_all_ready():
    available, progressing = deployment_conditions(NAME, _deployment())
    assert available.type == NAME + "Available"
    assert available.status == ConditionStatus.TRUE
    assert progressing.type == NAME + "Progressing"
    assert progressing.status == ConditionStatus.FALSE


def test_conditions_no_available_replicas():
    available, _ = deployment_conditions(NAME, _deployment(available=0))
    assert available.status == ConditionStatus.FALSE
    assert available.reason == "Deploying"
    assert available.message == "Waiting for a Deployment pod to start"


def test_conditions_new_generation():
    _, progressing = deployment_conditions(NAME, _deployment(generation=2, observed=1))
    assert progressing.status == ConditionStatus.TRUE
    assert progressing.reason == "NewGeneration"
    assert progressing.message == "desired generation 2, current generation 1"


def test_conditions_partial_rollout():
    _, progressing = deployment_conditions(NAME, _deployment(replicas=3, updated=1))
    assert progressing.status == ConditionStatus.TRUE
    assert progressing.reason == "Deploying"
    assert progressing.message == "1 out of 3 pods running"


class _Apply:
    def __init__(self, result):
        self.result = result
        self.generations = []

    def __call__(self, required, last_generation):
        self.generations.append(last_generation)
        return copy.deepcopy(self.result)


def test_create_deployment_records_status_and_version():
    client = InMemoryOperatorClient()
    applied = _deployment(generation=3, observed=3)
    apply = _Apply(applied)
    versions = {}
    options = DeploymentOptions(
        required=_deployment(),
        controller_name=NAME,
        operator_client=client,
        apply=apply,
        versions=versions,
        target_version="4.2",
        version_name="detector",
    )
    result = create_deployment(options)
    assert result == applied
    assert apply.generations == [-1]
    assert versions == {"detector": "4.2"}

    _, status, _ = client.get_operator_state()
    assert status.condition(NAME + "Available").status == ConditionStatus.TRUE
    assert status.condition(NAME + "Progressing").status == ConditionStatus.FALSE
    assert status.generations[("apps", "deployments", "ns", "detector")] == 3

    create_deployment(options)
    assert apply.generations == [-1, 3]


def test_create_deployment_no_version_while_progressing():
    client = InMemoryOperatorClient()
    versions = {}
    options = DeploymentOptions(
        required=_deployment(),
        controller_name=NAME,
        operator_client=client,
        apply=_Apply(_deployment(replicas=3, updated=1)),
        versions=versions,
        target_version="4.2",
        version_name="detector",
    )
    create_deployment(options)
    assert versions == {}
    _, status, _ = client.get_operator_state()
    assert status.condition(NAME + "Progressing").status == ConditionStatus.TRUE


def test_create_deployment_apply_error_leaves_status():
    client = InMemoryOperatorClient()

    def failing(required, last_generation):
        raise RuntimeError("apply failed")

    options = DeploymentOptions(
        required=_deployment(), controller_name=NAME, operator_client=client, apply=failing
    )
    with pytest.raises(RuntimeError):
        create_deployment(options)
    _, status, _ = client.get_operator_state()
    assert status.conditions == []


MANIFEST = """
kind: Deployment
metadata:
  name: detector
spec:
  template:
    metadata:
      labels:
        app: detector
    spec:
      tolerations:
        - key: existing
      containers:
        - name: main
          image: ${IMAGE}
          args: ["--v=${LOG_LEVEL}"]
"""


def test_get_required_deployment():
    deployment = get_required_deployment(
        MANIFEST,
        "Trace",
        node_selector={"role": "master"},
        labels={"app": "other", "extra": "yes"},
        tolerations=[{"key": "added"}],
        replacements=[None, {"${IMAGE}": "registry.example.com/img"}],
    )
    pod = deployment["spec"]["template"]
    container = pod["spec"]["containers"][0]
    assert container["image"] == "registry.example.com/img"
    assert container["args"] == [f"--v={log_level_to_verbosity('Trace')}"]
    assert pod["spec"]["nodeSelector"] == {"role": "master"}
    assert pod["metadata"]["labels"] == {"app": "detector", "extra": "yes"}
    assert pod["spec"]["tolerations"] == [{"key": "existing"}, {"key": "added"}]


def test_get_required_deployment_without_node_selector_keeps_manifest():
    deployment = get_required_deployment(MANIFEST.encode(), "Normal")
    pod_spec = deployment["spec"]["template"]["spec"]
    assert "nodeSelector" not in pod_spec
    assert pod_spec["tolerations"] == [{"key": "existing"}]
    assert pod_spec["containers"][0]["image"] == "${IMAGE}"


def test_get_required_deployment_rejects_other_kinds():
    with pytest.raises(ValueError):
        get_required_deployment("kind: ConfigMap\n", "Normal")