"""Removing the resources Marblerun set up for its injection webhook."""

from __future__ import annotations

from typing import Any

from marblectl.kube import NotFoundError
from marblectl.util import WEBHOOK_NAME

NAMESPACE = "marblerun"
RELEASE_NAME = "marblerun-coordinator"
WEBHOOK_SECRET_NAME = "marble-injector-webhook-certs"


def server_version_below_1_19(client: Any) -> bool:
    """True if the cluster runs a Kubernetes version older than 1.19."""
    version = client.server_version()
    major = int(version["major"])
    minor = int(version["minor"])
    return major == 1 and minor < 19


def cleanup_secrets(client: Any) -> None:
    """Delete the secret holding the webhook's certificate and key."""
    client.delete_secret(NAMESPACE, WEBHOOK_SECRET_NAME)


def cleanup_csr(client: Any) -> None:
    """Delete a leftover certificate signing request of the webhook.

    Clusters older than 1.19 never get such a request, so nothing is done there.
    """
    if server_version_below_1_19(client):
        return
    client.delete_csr(WEBHOOK_NAME)


def uninstall(client: Any) -> None:
    """Remove the webhook secret and signing request; missing ones are fine."""
    for cleanup in (cleanup_secrets, cleanup_csr):
        try:
            cleanup(client)
        except NotFoundError:
            pass
    print("Marblerun successfully removed from your cluster")