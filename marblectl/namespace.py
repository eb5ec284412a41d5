"""Adding namespaces to, listing and removing them from a Marblerun mesh."""

from __future__ import annotations

from typing import Any, Iterable

from marblectl.kube import KubeError

MARBLERUN_ANNOTATION = "marblerun/inject"
INJECTION_ANNOTATION = "marblerun/inject-sgx"


def namespace_add(namespaces: Iterable[str], client: Any, dont_inject_sgx: bool) -> None:
    """Label namespaces so that their pods join the mesh."""
    sgx = "disabled" if dont_inject_sgx else "enabled"
    for name in namespaces:
        labels = {MARBLERUN_ANNOTATION: "enabled", INJECTION_ANNOTATION: sgx}
        try:
            client.patch_namespace_labels(name, labels)
        except KubeError:
            print("Could not apply patch")
            raise
        print(f"Added namespace [{name}] to Marblerun mesh")


def select_namespaces(client: Any) -> list[dict[str, Any]]:
    """Return the namespaces that belong to the mesh."""
    return client.list_namespaces(f"{MARBLERUN_ANNOTATION}=enabled")


def namespace_list(client: Any) -> list[str]:
    """Print and return the names of the namespaces in the mesh."""
    names = [ns.get("metadata", {}).get("name", "") for ns in select_namespaces(client)]
    if not names:
        print("No namespaces have been added to the Marblerun mesh")
    for name in names:
        print(name)
    return names


def namespace_remove(namespace: str, client: Any) -> None:
    """Remove the mesh labels from a namespace."""
    labels = client.get_namespace(namespace).get("metadata", {}).get("labels") or {}
    if MARBLERUN_ANNOTATION not in labels:
        raise ValueError(f"namespace [{namespace}] does not belong to the Marblerun mesh")
    value = labels[MARBLERUN_ANNOTATION]
    if value != "enabled":
        raise ValueError(f"unexpected value in namespace label: {value}")
    client.patch_namespace_labels(namespace, {MARBLERUN_ANNOTATION: None, INJECTION_ANNOTATION: None})
    print(f"Namespace [{namespace}] successfully removed from the Marblerun mesh")