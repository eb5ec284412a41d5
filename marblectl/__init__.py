"""Kubernetes helpers and a Coordinator client for a confidential computing service mesh."""

__version__ = "0.3.0"