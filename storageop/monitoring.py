"""Controller that manages the alerting rules of the vSphere problem detector."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Mapping

import yaml

from storageop.api import (
    AVAILABLE,
    ConditionStatus,
    InMemoryOperatorClient,
    ManagementState,
    NotFoundError,
    OperatorCondition,
    update_condition_fn,
)
from storageop.detector_config import parse_config_map

log = logging.getLogger(__name__)

MONITORING_CONTROLLER_NAME = "VSphereProblemDetectorMonitoringController"
PROMETHEUS_RULE_FILE = "vsphere_problem_detector/12_prometheusrules.yaml"
VSPHERE_DRIVER_NAME = "csi.vsphere.vmware.com"

RULE_API_VERSION = "monitoring.coreos.com/v1"
RULE_KIND = "PrometheusRule"


class PrometheusRuleError(Exception):
    """A PrometheusRule manifest could not be decoded or stored."""


@dataclass
class PrometheusRule:
    """A PrometheusRule object: its metadata and its rule spec."""

    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    spec: dict = field(default_factory=dict)
    resource_version: str = ""

    @property
    def groups(self) -> list[dict]:
        """The rule groups of the spec."""
        return list(self.spec.get("groups") or [])


def parse_prometheus_rule(data: bytes | str) -> PrometheusRule:
    """Decode a PrometheusRule manifest."""
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise PrometheusRuleError(f'cannot decode "{PROMETHEUS_RULE_FILE}": {exc}') from exc

    if (
        not isinstance(document, dict)
        or document.get("apiVersion") != RULE_API_VERSION
        or document.get("kind") != RULE_KIND
    ):
        raise PrometheusRuleError(f"invalid prometheusrule: {document!r}")

    metadata = document.get("metadata") or {}
    return PrometheusRule(
        name=str(metadata.get("name", "")),
        namespace=str(metadata.get("namespace", "")),
        labels=dict(metadata.get("labels") or {}),
        annotations=dict(metadata.get("annotations") or {}),
        spec=dict(document.get("spec") or {}),
        resource_version=str(metadata.get("resourceVersion", "")),
    )


class InMemoryRuleClient:
    """Stores PrometheusRule objects in memory, keyed by namespace and name."""

    def __init__(self, rules: list[PrometheusRule] | None = None) -> None:
        self._rules: dict[tuple[str, str], PrometheusRule] = {}
        self._next_version = 1
        self._lock = threading.Lock()
        for rule in rules or []:
            self.create(rule)

    def get(self, namespace: str, name: str) -> PrometheusRule:
        """Return a copy of the stored rule."""
        with self._lock:
            try:
                return copy.deepcopy(self._rules[(namespace, name)])
            except KeyError:
                raise NotFoundError(f'prometheusrule "{namespace}/{name}" not found') from None

    def create(self, rule: PrometheusRule) -> PrometheusRule:
        """Store a new rule; raise PrometheusRuleError if it already exists."""
        with self._lock:
            key = (rule.namespace, rule.name)
            if key in self._rules:
                raise PrometheusRuleError(
                    f'prometheusrule "{rule.namespace}/{rule.name}" already exists'
                )
            stored = replace(copy.deepcopy(rule), resource_version=self._bump())
            self._rules[key] = stored
            return copy.deepcopy(stored)

    def update(self, rule: PrometheusRule) -> PrometheusRule:
        """Replace an existing rule."""
        with self._lock:
            key = (rule.namespace, rule.name)
            if key not in self._rules:
                raise NotFoundError(f'prometheusrule "{rule.namespace}/{rule.name}" not found')
            stored = replace(copy.deepcopy(rule), resource_version=self._bump())
            self._rules[key] = stored
            return copy.deepcopy(stored)

    def delete(self, namespace: str, name: str) -> None:
        """Remove a rule."""
        with self._lock:
            if self._rules.pop((namespace, name), None) is None:
                raise NotFoundError(f'prometheusrule "{namespace}/{name}" not found')

    def __len__(self) -> int:
        return len(self._rules)

    def _bump(self) -> str:
        version = str(self._next_version)
        self._next_version += 1
        return version


def _merge_metadata(existing: PrometheusRule, required: PrometheusRule) -> tuple[PrometheusRule, bool]:
    """Merge required labels and annotations into existing ones; report whether anything changed."""
    labels = {**existing.labels, **required.labels}
    annotations = {**existing.annotations, **required.annotations}
    modified = labels != existing.labels or annotations != existing.annotations
    return replace(existing, labels=labels, annotations=annotations), modified


class MonitoringController:
    """Keeps the detector's PrometheusRule in line with the detector configuration."""

    def __init__(
        self,
        operator_client: InMemoryOperatorClient,
        rule_client: InMemoryRuleClient,
        config_maps: Mapping[str, Mapping[str, str]],
        driver_management_state: ManagementState | None,
        rule_asset: bytes | str,
    ) -> None:
        self.operator_client = operator_client
        self.rule_client = rule_client
        self.config_maps = config_maps
        self.driver_management_state = driver_management_state
        self.rule_asset = rule_asset

    def sync(self) -> None:
        """Create or delete the alerting rule and report the Available condition."""
        try:
            spec, _, _ = self.operator_client.get_operator_state()
        except NotFoundError:
            return
        if spec.management_state != ManagementState.MANAGED:
            return

        config = parse_config_map(self.config_maps)

        if self.driver_management_state is None:
            raise NotFoundError(f'clustercsidriver "{VSPHERE_DRIVER_NAME}" not found')

        if config.alerts_disabled or self.driver_management_state == ManagementState.REMOVED:
            self.delete_prometheus_rule(self.rule_asset)
            message = "vsphere-problem-detector alerts are disabled"
        else:
            self.sync_prometheus_rule(self.rule_asset)
            message = "vsphere-problem-detector alerts are enabled"

        self.operator_client.update_status(
            update_condition_fn(
                OperatorCondition(
                    type=MONITORING_CONTROLLER_NAME + AVAILABLE,
                    status=ConditionStatus.TRUE,
                    message=message,
                )
            )
        )

    def sync_prometheus_rule(self, rule_bytes: bytes | str) -> tuple[PrometheusRule, bool]:
        """Apply the rule; return the stored rule and whether it was created or changed."""
        required = parse_prometheus_rule(rule_bytes)

        try:
            existing = self.rule_client.get(required.namespace, required.name)
        except NotFoundError:
            try:
                created = self.rule_client.create(required)
            except Exception as exc:
                raise PrometheusRuleError(f"failed to create prometheus rule: {exc}") from exc
            return created, True

        merged, modified = _merge_metadata(existing, required)
        if existing.spec == required.spec and not modified:
            return existing, False

        desired = replace(merged, spec=copy.deepcopy(required.spec))
        log.debug("prometheus rule %s is modified outside of openshift - updating", PROMETHEUS_RULE_FILE)
        return self.rule_client.update(desired), True

    def delete_prometheus_rule(self, rule_bytes: bytes | str) -> None:
        """Delete the rule if it exists."""
        rule = parse_prometheus_rule(rule_bytes)
        try:
            self.rule_client.get(rule.namespace, rule.name)
            self.rule_client.delete(rule.namespace, rule.name)
        except NotFoundError:
            return
        log.info("prometheus rule %s deleted", PROMETHEUS_RULE_FILE)