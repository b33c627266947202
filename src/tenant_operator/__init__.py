"""Kubernetes operator provisioning isolated per-tenant application stacks."""

__version__ = "0.1.0"
