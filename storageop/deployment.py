"""Applying operand Deployments and reporting their Available and Progressing conditions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, MutableMapping

import yaml

from storageop.api import (
    AVAILABLE,
    PROGRESSING,
    ConditionStatus,
    InMemoryOperatorClient,
    OperatorCondition,
    OperatorStatus,
    log_level_to_verbosity,
    update_condition_fn,
)

ApplyFunc = Callable[[dict, int], dict]


@dataclass
class DeploymentOptions:
    """What create_deployment needs: the required Deployment and where to report on it.

    apply receives the required Deployment and the generation last recorded for
    it (-1 if none) and returns the Deployment as stored in the cluster.
    versions receives target_version under version_name once all replicas are updated.
    """

    required: dict
    controller_name: str
    operator_client: InMemoryOperatorClient
    apply: ApplyFunc
    versions: MutableMapping[str, str] = field(default_factory=dict)
    target_version: str = ""
    version_name: str = ""
    op_status: OperatorStatus | None = None


def _generation_key(deployment: Mapping) -> tuple[str, str, str, str]:
    metadata = deployment.get("metadata") or {}
    return ("apps", "deployments", metadata.get("namespace", ""), metadata.get("name", ""))


def _generation(deployment: Mapping) -> int:
    return int((deployment.get("metadata") or {}).get("generation", 0))


def deployment_conditions(
    controller_name: str, deployment: Mapping
) -> tuple[OperatorCondition, OperatorCondition]:
    """Return the Available and Progressing conditions for a Deployment."""
    status = deployment.get("status") or {}
    spec = deployment.get("spec") or {}

    available = OperatorCondition(type=controller_name + AVAILABLE)
    if status.get("availableReplicas", 0) > 0:
        available.status = ConditionStatus.TRUE
    else:
        available.status = ConditionStatus.FALSE
        available.reason = "Deploying"
        available.message = "Waiting for a Deployment pod to start"

    progressing = OperatorCondition(type=controller_name + PROGRESSING)
    generation = _generation(deployment)
    observed = status.get("observedGeneration", 0)
    if observed != generation:
        progressing.status = ConditionStatus.TRUE
        progressing.reason = "NewGeneration"
        progressing.message = f"desired generation {generation}, current generation {observed}"
    elif spec.get("replicas") is not None:
        replicas = spec["replicas"]
        updated = status.get("updatedReplicas", 0)
        if updated == replicas:
            progressing.status = ConditionStatus.FALSE
        else:
            progressing.status = ConditionStatus.TRUE
            progressing.reason = "Deploying"
            progressing.message = f"{updated} out of {replicas} pods running"
    return available, progressing


def create_deployment(options: DeploymentOptions) -> dict:
    """Apply the required Deployment and report its conditions in the operator status."""
    op_status = options.op_status
    if op_status is None:
        _, op_status, _ = options.operator_client.get_operator_state()
    last_generation = op_status.generations.get(_generation_key(options.required), -1)

    deployment = options.apply(options.required, last_generation)

    available, progressing = deployment_conditions(options.controller_name, deployment)
    if progressing.status == ConditionStatus.FALSE:
        # All replicas were updated.
        options.versions[options.version_name] = options.target_version

    def record_generation(status: OperatorStatus) -> None:
        status.generations[_generation_key(deployment)] = _generation(deployment)

    options.operator_client.update_status(
        update_condition_fn(available),
        update_condition_fn(progressing),
        record_generation,
    )
    return deployment


def _substitute(text: str, pairs: Mapping[str, str]) -> str:
    """Replace every old string with its new one in a single pass."""
    if not pairs:
        return text
    pattern = re.compile("|".join(re.escape(old) for old in pairs))
    return pattern.sub(lambda match: pairs[match.group(0)], text)


def get_required_deployment(
    manifest: bytes | str,
    log_level: str,
    node_selector: Mapping[str, str] | None = None,
    labels: Mapping[str, str] | None = None,
    tolerations: Iterable[dict] | None = None,
    replacements: Iterable[Mapping[str, str] | None] = (),
) -> dict:
    """Build the Deployment from its manifest.

    Each replacement mapping is applied in turn, then the log level is filled in.
    Existing pod template labels are kept, as the selector relies on them.
    """
    text = manifest.decode("utf-8") if isinstance(manifest, bytes) else manifest
    for pairs in replacements:
        if pairs is not None:
            text = _substitute(text, pairs)
    text = text.replace("${LOG_LEVEL}", str(log_level_to_verbosity(log_level)))

    try:
        deployment = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"cannot decode Deployment: {exc}") from exc
    if not isinstance(deployment, dict) or deployment.get("kind") != "Deployment":
        raise ValueError(f"not a Deployment: {deployment!r}")

    template = deployment.setdefault("spec", {}).setdefault("template", {})
    pod_spec = template.setdefault("spec", {})
    if node_selector is not None:
        pod_spec["nodeSelector"] = dict(node_selector)

    template_metadata = template.setdefault("metadata", {})
    if template_metadata.get("labels") is None:
        template_metadata["labels"] = {}
    for key, value in (labels or {}).items():
        template_metadata["labels"].setdefault(key, value)

    pod_spec["tolerations"] = list(pod_spec.get("tolerations") or []) + list(tolerations or [])
    return deployment