"""Build version information and default StorageClass counting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from storageop.defaultstorageclass import StorageClass

log = logging.getLogger(__name__)

VERSION = "0.0.1"

DEFAULT_SC_ANNOTATION_KEY = "storageclass.kubernetes.io/is-default-class"
DEFAULT_SC_COUNT_METRIC = "default_storage_class_count"
DEFAULT_SC_COUNT_HELP = "Number of default storage classes currently configured."

BUILD_INFO_METRIC = "openshift_cluster_storage_operator"

# Filled in at build time; empty in development builds.
_COMMIT_FROM_GIT = ""
_VERSION_FROM_GIT = ""
_MAJOR_FROM_GIT = ""
_MINOR_FROM_GIT = ""
_BUILD_DATE = ""


@dataclass(frozen=True)
class VersionInfo:
    """What code a build was made from."""

    major: str = ""
    minor: str = ""
    git_commit: str = ""
    git_version: str = ""
    build_date: str = ""

    @property
    def labels(self) -> dict[str, str]:
        """Labels of the build-info metric."""
        return {
            "major": self.major,
            "minor": self.minor,
            "gitCommit": self.git_commit,
            "gitVersion": self.git_version,
        }


def get_version() -> VersionInfo:
    """Return the overall codebase version."""
    return VersionInfo(
        major=_MAJOR_FROM_GIT,
        minor=_MINOR_FROM_GIT,
        git_commit=_COMMIT_FROM_GIT,
        git_version=_VERSION_FROM_GIT,
        build_date=_BUILD_DATE,
    )


def default_storage_class_names(storage_classes: Iterable[StorageClass]) -> list[str]:
    """Names of the storage classes annotated as default, in the given order."""
    return [
        sc.name
        for sc in storage_classes
        if sc.annotations.get(DEFAULT_SC_ANNOTATION_KEY) == "true"
    ]


def count_default_storage_classes(storage_classes: Iterable[StorageClass]) -> float:
    """Number of default storage classes, as reported by the gauge."""
    names = default_storage_class_names(storage_classes)
    log.debug("Current default StorageClass count: %d (%s)", len(names), names)
    return float(len(names))