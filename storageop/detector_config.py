"""Configuration of the vSphere problem detector, read from a ConfigMap."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import yaml

log = logging.getLogger(__name__)

OPERATOR_NAMESPACE = "openshift-cluster-storage-operator"
DETECTOR_CONFIG_MAP_NAME = "vsphere-problem-detector"
CONFIG_KEY = "config.yaml"

_FIELDS = {"alertsDisabled": "alerts_disabled"}


@dataclass(frozen=True)
class DetectorConfig:
    # Alerts are enabled by default.
    alerts_disabled: bool = False


class ConfigMapFormatError(ValueError):
    """The detector ConfigMap does not hold a valid configuration."""


def _invalid(reason: str) -> ConfigMapFormatError:
    return ConfigMapFormatError(f"invalid format of ConfigMap {DETECTOR_CONFIG_MAP_NAME}: {reason}")


def parse_config_map(config_maps: Mapping[str, Mapping[str, str]]) -> DetectorConfig:
    """Read the detector configuration.

    config_maps maps ConfigMap names in the operator namespace to their data.
    A missing ConfigMap yields the default configuration.
    """
    data = config_maps.get(DETECTOR_CONFIG_MAP_NAME)
    if data is None:
        log.debug("Using default config, %s does not exist", DETECTOR_CONFIG_MAP_NAME)
        return DetectorConfig()

    if CONFIG_KEY not in data:
        raise _invalid(f"expected key {CONFIG_KEY}")

    try:
        document = yaml.safe_load(data[CONFIG_KEY])
    except yaml.YAMLError as exc:
        raise _invalid(str(exc)) from exc

    if document is None:
        config = DetectorConfig()
    else:
        if not isinstance(document, dict):
            raise _invalid(f"expected a mapping, got {type(document).__name__}")
        values = {}
        for key, value in document.items():
            if key not in _FIELDS:
                raise _invalid(f"field {key} not found in DetectorConfig")
            if value is None:
                continue
            if not isinstance(value, bool):
                raise _invalid(f"cannot unmarshal {value!r} into bool for field {key}")
            values[_FIELDS[key]] = value
        config = DetectorConfig(**values)

    log.debug("Parsed ConfigMap %s: %s", DETECTOR_CONFIG_MAP_NAME, config)
    return config