"""Controller that manages the default StorageClass for in-tree volume plugins.

It reports these conditions:
DefaultStorageClassControllerAvailable: the default storage class is in place;
DefaultStorageClassControllerProgressing: it has not been created yet (typically on error);
DefaultStorageClassControllerDisabled: the platform has no default storage class.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping, MutableMapping

from storageop.api import (
    AVAILABLE,
    PROGRESSING,
    UPGRADEABLE,
    ConditionStatus,
    InMemoryOperatorClient,
    ManagementState,
    NotFoundError,
    OperatorCondition,
    is_condition_present_and_equal,
    remove_condition_fn,
    update_condition_fn,
)

log = logging.getLogger(__name__)

CONDITIONS_PREFIX = "DefaultStorageClassController"
INFRA_CONFIG_NAME = "cluster"
DISABLED_CONDITION_TYPE = "Disabled"


class UnsupportedPlatformError(Exception):
    """The platform has no default StorageClass."""

    def __init__(self, message: str = "unsupported platform") -> None:
        super().__init__(message)


class SupportedByCSIError(Exception):
    """The default StorageClass is provided by a CSI driver."""

    def __init__(self, message: str = "only supported by a provided CSI Driver") -> None:
        super().__init__(message)


class PlatformType(str, Enum):
    AWS = "AWS"
    AZURE = "Azure"
    BARE_METAL = "BareMetal"
    GCP = "GCP"
    LIBVIRT = "Libvirt"
    OPENSTACK = "OpenStack"
    NONE = "None"
    VSPHERE = "VSphere"
    OVIRT = "oVirt"
    IBM_CLOUD = "IBMCloud"
    KUBEVIRT = "KubeVirt"
    EQUINIX_METAL = "EquinixMetal"
    POWER_VS = "PowerVS"
    ALIBABA_CLOUD = "AlibabaCloud"
    NUTANIX = "Nutanix"
    EXTERNAL = "External"


@dataclass
class Infrastructure:
    """Cluster infrastructure; platform is None when no platform status is reported."""

    name: str = INFRA_CONFIG_NAME
    platform: PlatformType | None = None
    cloud_config_name: str = ""


@dataclass
class StorageClass:
    name: str
    provisioner: str = ""
    parameters: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    reclaim_policy: str = "Delete"
    volume_binding_mode: str = "Immediate"
    allow_volume_expansion: bool = False


_CSI_PLATFORMS = frozenset(
    {
        PlatformType.AWS,
        PlatformType.GCP,
        PlatformType.VSPHERE,
        PlatformType.AZURE,
        PlatformType.IBM_CLOUD,
        PlatformType.OPENSTACK,
        PlatformType.OVIRT,
    }
)


def new_storage_class_for_cluster(infrastructure: Infrastructure) -> StorageClass:
    """Return the default StorageClass for the platform.

    Every known platform either delegates to a CSI driver or is unsupported,
    so this raises SupportedByCSIError or UnsupportedPlatformError.
    """
    if infrastructure.platform in _CSI_PLATFORMS:
        raise SupportedByCSIError()
    raise UnsupportedPlatformError()


def _condition(suffix: str, status: ConditionStatus) -> OperatorCondition:
    return OperatorCondition(type=CONDITIONS_PREFIX + suffix, status=status)


class DefaultStorageClassController:
    """Reconciles the default StorageClass and reports its conditions."""

    def __init__(
        self,
        operator_client: InMemoryOperatorClient,
        infrastructures: Mapping[str, Infrastructure],
        storage_classes: MutableMapping[str, StorageClass],
    ) -> None:
        self.operator_client = operator_client
        self.infrastructures = infrastructures
        self.storage_classes = storage_classes

    def sync(self) -> None:
        """Run one reconciliation; raise if the storage class could not be synced."""
        log.debug("DefaultStorageClassController sync started")
        try:
            self._sync()
        finally:
            log.debug("DefaultStorageClassController sync finished")

    def _sync(self) -> None:
        spec, status, _ = self.operator_client.get_operator_state()
        if spec.management_state != ManagementState.MANAGED:
            return

        available = _condition(AVAILABLE, ConditionStatus.TRUE)
        progressing = _condition(PROGRESSING, ConditionStatus.FALSE)

        sync_err: Exception | None = None
        try:
            self.sync_storage_class()
        except UnsupportedPlatformError as exc:
            disabled = OperatorCondition(
                type=CONDITIONS_PREFIX + DISABLED_CONDITION_TYPE,
                status=ConditionStatus.TRUE,
                reason="UnsupportedPlatform",
                message=str(exc),
            )
            upgradeable = _condition(UPGRADEABLE, ConditionStatus.TRUE)
            # Nothing to do; the cluster operator still needs Available/Progressing set.
            available.message = "No default StorageClass for this platform"
            self.operator_client.update_status(
                update_condition_fn(disabled),
                update_condition_fn(available),
                update_condition_fn(progressing),
                update_condition_fn(upgradeable),
            )
            return
        except SupportedByCSIError:
            available.message = (
                "StorageClass provided by supplied CSI Driver instead of the cluster-storage-operator"
            )
            self.operator_client.update_status(
                update_condition_fn(available),
                update_condition_fn(progressing),
            )
            return
        except Exception as exc:  # noqa: BLE001 - any sync failure is reported
            sync_err = exc
            # Don't flip Available from True to False on a transient error.
            if not is_condition_present_and_equal(
                status.conditions, available.type, ConditionStatus.TRUE
            ):
                available.status = ConditionStatus.FALSE
            available.reason = "SyncError"
            available.message = str(exc)
            progressing.status = ConditionStatus.TRUE
            progressing.reason = "SyncError"
            progressing.message = str(exc)

        try:
            self.operator_client.update_status(
                update_condition_fn(available),
                update_condition_fn(progressing),
                remove_condition_fn(CONDITIONS_PREFIX + DISABLED_CONDITION_TYPE),
            )
        except Exception as update_err:
            if sync_err is None:
                raise
            raise update_err from sync_err

        if sync_err is not None:
            raise sync_err

    def sync_storage_class(self) -> None:
        """Create or reconcile the default StorageClass for the cluster's platform."""
        infrastructure = self.infrastructures.get(INFRA_CONFIG_NAME)
        if infrastructure is None:
            raise NotFoundError(f'infrastructure "{INFRA_CONFIG_NAME}" not found')
        # Some installs report no platform status at all.
        if infrastructure.platform is None:
            raise UnsupportedPlatformError()

        expected = new_storage_class_for_cluster(infrastructure)
        existing = self.storage_classes.get(expected.name)
        if existing is None:
            log.info("StorageClass %s does not exist, creating", expected.name)
            self.storage_classes[expected.name] = expected
            return

        # Keep the existing annotations: the user may have made it non-default.
        expected = replace(expected, annotations=dict(existing.annotations))
        log.info("Existing StorageClass %s found, reconciling", expected.name)
        self.storage_classes[expected.name] = expected