"""Waiting for the Marblerun control plane deployments to become available."""

from __future__ import annotations

import sys
import time
from typing import Any

from marblectl.kube import NotFoundError

NAMESPACE = "marblerun"
INJECTOR_DEPLOYMENT = "marble-injector"
COORDINATOR_DEPLOYMENT = "marblerun-coordinator"


def deployment_is_ready(client: Any, name: str, namespace: str) -> tuple[bool, str]:
    """Return whether all replicas are available, and the count as 'available/total'."""
    deployment = client.get_deployment(namespace, name)
    status = deployment.get("status") or {}
    replicas = int(status.get("replicas") or 0)
    available = int(status.get("availableReplicas") or 0)
    return replicas == available, f"{available}/{replicas}"


def _is_tty() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def check_deployment_status(client: Any, name: str, namespace: str, timeout: int) -> str | None:
    """Wait up to timeout seconds for a deployment to become available.

    Returns the final 'available/total' count, or None if the deployment is not
    installed. Raises TimeoutError if it does not become available in time.
    """
    try:
        client.get_deployment(namespace, name)
    except NotFoundError:
        print(f"{name} is not installed on this cluster")
        return None

    tty = _is_tty()
    if tty:
        # remember the cursor so updates can overwrite the same line
        print("\033[s", end="", flush=True)

    ready = False
    pods_ready = ""
    for _ in range(timeout):
        ready, pods_ready = deployment_is_ready(client, name, namespace)
        if tty:
            print(f"\033[u\033[K{name} pods ready: {pods_ready}", end="", flush=True)
        else:
            print(f"{name} pods ready: {pods_ready}")
        if ready:
            break
        time.sleep(1)
    print()

    if not ready:
        raise TimeoutError(
            f"deployment {name} was not ready after {timeout} seconds ({pods_ready} pods available)"
        )
    return pods_ready


def check(client: Any, timeout: int) -> dict[str, str | None]:
    """Wait for the injector and the Coordinator; return each one's pod count."""
    return {
        name: check_deployment_status(client, name, NAMESPACE, timeout)
        for name in (INJECTOR_DEPLOYMENT, COORDINATOR_DEPLOYMENT)
    }