"""Starter and deployment hooks of the vSphere problem detector."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from typing import Callable, Mapping

from storageop.api import (
    InMemoryOperatorClient,
    ManagementState,
    NotFoundError,
    log_level_to_verbosity,
)
from storageop.defaultstorageclass import Infrastructure, PlatformType

log = logging.getLogger(__name__)

INFRA_CONFIG_NAME = "cluster"
OPERATOR_IMAGE_ENV = "VSPHERE_PROBLEM_DETECTOR_OPERATOR_IMAGE"
CLOUD_CRED_SECRET_NAME = "vsphere-cloud-credentials"
METRICS_CERT_SECRET_NAME = "vsphere-problem-detector-serving-cert"
CLOUD_CONFIG_NAMESPACE = "openshift-config"

ANNOTATION_PREFIX = "operator.openshift.io/dep-"
MAX_ANNOTATION_KEY_LENGTH = 63

STATIC_ASSETS = (
    "vsphere_problem_detector/01_sa.yaml",
    "vsphere_problem_detector/02_role.yaml",
    "vsphere_problem_detector/03_rolebinding.yaml",
    "vsphere_problem_detector/04_clusterrole.yaml",
    "vsphere_problem_detector/05_clusterrolebinding.yaml",
    "vsphere_problem_detector/06_configmap.yaml",
    "vsphere_problem_detector/10_service.yaml",
)
DEPLOYMENT_ASSET = "vsphere_problem_detector/07_deployment.yaml"


def _substitute(text: str, pairs: Mapping[str, str]) -> str:
    """Replace every old string with its new one in a single pass."""
    if not pairs:
        return text
    pattern = re.compile("|".join(re.escape(old) for old in pairs))
    return pattern.sub(lambda match: pairs[match.group(0)], text)


def render_manifest(
    log_level: str, manifest: bytes | str, environ: Mapping[str, str] | None = None
) -> bytes | str:
    """Fill in the operator image and log level of the detector's Deployment manifest."""
    env = os.environ if environ is None else environ
    pairs = {
        "${OPERATOR_IMAGE}": env.get(OPERATOR_IMAGE_ENV, ""),
        "${LOG_LEVEL}": str(log_level_to_verbosity(log_level)),
    }
    if isinstance(manifest, bytes):
        return _substitute(manifest.decode("utf-8"), pairs).encode("utf-8")
    return _substitute(manifest, pairs)


def config_map_hash(config_map: Mapping[str, str]) -> str:
    """Return a stable hash of a ConfigMap's data."""
    content = json.dumps(dict(config_map), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _annotations(metadata: dict) -> dict:
    if metadata.get("annotations") is None:
        metadata["annotations"] = {}
    return metadata["annotations"]


def add_object_hash(deployment: dict | None, input_hashes: Mapping[str, str]) -> None:
    """Record dependency hashes as annotations of the Deployment and its pod template."""
    if deployment is None:
        raise ValueError(f"invalid deployment: {deployment}")
    metadata = deployment.setdefault("metadata", {})
    template = deployment.setdefault("spec", {}).setdefault("template", {})
    template_metadata = template.setdefault("metadata", {})
    annotations = _annotations(metadata)
    template_annotations = _annotations(template_metadata)
    for key, value in input_hashes.items():
        annotation_key = ANNOTATION_PREFIX + key
        if len(annotation_key) > MAX_ANNOTATION_KEY_LENGTH:
            digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
            annotation_key = (ANNOTATION_PREFIX + digest)[:MAX_ANNOTATION_KEY_LENGTH]
        annotations[annotation_key] = value
        template_annotations[annotation_key] = value


class VSphereProblemDetectorStarter:
    """Starts the detector's controllers once the cluster is found to run on vSphere."""

    def __init__(
        self,
        operator_client: InMemoryOperatorClient,
        infrastructures: Mapping[str, Infrastructure],
        start_controllers: Callable[[], None],
    ) -> None:
        self.operator_client = operator_client
        self.infrastructures = infrastructures
        self.start_controllers = start_controllers
        self.running = False

    def sync(self) -> None:
        """Start the detector controllers on vSphere; do nothing elsewhere."""
        log.debug("VSphereProblemDetectorStarter.Sync started")
        try:
            self._sync()
        finally:
            log.debug("VSphereProblemDetectorStarter.Sync finished")

    def _sync(self) -> None:
        try:
            spec, _, _ = self.operator_client.get_operator_state()
        except NotFoundError:
            return
        if spec.management_state != ManagementState.MANAGED:
            return

        infrastructure = self._infrastructure()
        if infrastructure.platform != PlatformType.VSPHERE:
            return

        if not self.running:
            self.start_controllers()
            self.running = True

    def config_map_hash_hook(
        self,
        deployment: dict,
        config_maps: Mapping[tuple[str, str], Mapping[str, str]],
        namespace: str = CLOUD_CONFIG_NAMESPACE,
    ) -> None:
        """Annotate the Deployment with the hash of the cloud-config ConfigMap.

        config_maps maps (namespace, name) to ConfigMap data; a missing
        ConfigMap contributes no hash.
        """
        cloud_config_name = self._infrastructure().cloud_config_name
        hashes: dict[str, str] = {}
        data = config_maps.get((namespace, cloud_config_name))
        if data is not None:
            hashes[f"configmaps.{namespace}.{cloud_config_name}"] = config_map_hash(data)
        add_object_hash(deployment, hashes)

    def _infrastructure(self) -> Infrastructure:
        infrastructure = self.infrastructures.get(INFRA_CONFIG_NAME)
        if infrastructure is None:
            raise NotFoundError(f'infrastructure "{INFRA_CONFIG_NAME}" not found')
        return infrastructure