"""Checking whether the nodes of a cluster offer SGX."""

from __future__ import annotations

from typing import Any, Mapping

from marblectl.kube import parse_quantity

INTEL_EPC = "sgx.intel.com/epc"
INTEL_ENCLAVE = "sgx.intel.com/enclave"
INTEL_PROVISION = "sgx.intel.com/provision"
AZURE_EPC = "kubernetes.azure.com/sgx_epc_mem_in_MiB"


def node_has_azure_dev_plugin(capacity: Mapping[str, Any] | None) -> bool:
    """True if the node advertises Azure's SGX device plugin resources."""
    capacity = capacity or {}
    return parse_quantity(capacity.get(AZURE_EPC)) != 0


def node_has_intel_dev_plugin(capacity: Mapping[str, Any] | None) -> bool:
    """True if the node advertises all of Intel's SGX device plugin resources."""
    capacity = capacity or {}
    return all(
        parse_quantity(capacity.get(resource)) != 0
        for resource in (INTEL_EPC, INTEL_ENCLAVE, INTEL_PROVISION)
    )


def node_supports_sgx(capacity: Mapping[str, Any] | None) -> bool:
    """True if the node supports SGX through any known device plugin."""
    return node_has_azure_dev_plugin(capacity) or node_has_intel_dev_plugin(capacity)


def _capacity(node: Mapping[str, Any]) -> Mapping[str, Any]:
    return (node.get("status") or {}).get("capacity") or {}


def check_sgx_support(client: Any) -> int:
    """Report how many cluster nodes support SGX and return that number."""
    supported = sum(1 for node in client.list_nodes() if node_supports_sgx(_capacity(node)))

    if supported == 0:
        print("Cluster does not support SGX, you may still run Marblerun in simulation mode")
        print("To install Marblerun run [marblerun install --simulation]")
    else:
        noun = "nodes" if supported > 1 else "node"
        print(f"Cluster supports SGX on {supported} {noun}")
        print("To install Marblerun run [marblerun install]")
    return supported