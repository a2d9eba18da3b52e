"""Cluster storage reconciliation: operator conditions, default StorageClass, vSphere problem detector, alert rules and deployments."""

__version__ = "0.0.1"