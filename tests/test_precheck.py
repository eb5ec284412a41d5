import pytest

from marblectl.kube import Cluster
from marblectl.precheck import (
    AZURE_EPC,
    INTEL_ENCLAVE,
    INTEL_EPC,
    INTEL_PROVISION,
    check_sgx_support,
    node_has_azure_dev_plugin,
    node_has_intel_dev_plugin,
    node_supports_sgx,
)

INTEL_CAPACITY = {INTEL_ENCLAVE: "10", INTEL_EPC: "500", INTEL_PROVISION: "10"}


def node(name, capacity=None):
    result = {"metadata": {"name": name}}
    if capacity is not None:
        result["status"] = {"capacity": dict(capacity)}
    return result


def only_capacity(client):
    return client.list_nodes()[0].get("status", {}).get("capacity")


def test_node_supports_sgx():
    client = Cluster()

    client.create_node(node("regular-node"))
    assert node_supports_sgx(only_capacity(client)) is False
    client.delete_node("regular-node")

    client.create_node(node("intel-sgx-node", INTEL_CAPACITY))
    assert node_supports_sgx(only_capacity(client)) is True
    client.delete_node("intel-sgx-node")

    client.create_node(node("azure-sgx-node", {AZURE_EPC: "500"}))
    assert node_supports_sgx(only_capacity(client)) is True


def test_device_plugin_detection():
    assert node_has_intel_dev_plugin(INTEL_CAPACITY) is True
    assert node_has_azure_dev_plugin(INTEL_CAPACITY) is False
    assert node_has_azure_dev_plugin({AZURE_EPC: "500"}) is True
    assert node_has_intel_dev_plugin({AZURE_EPC: "500"}) is False


@pytest.mark.parametrize("missing", [INTEL_EPC, INTEL_ENCLAVE, INTEL_PROVISION])
def test_intel_plugin_needs_all_resources(missing):
    capacity = {k: v for k, v in INTEL_CAPACITY.items() if k != missing}
    assert node_has_intel_dev_plugin(capacity) is False
    assert node_supports_sgx(capacity) is False


def test_zero_quantity_is_not_support():
    assert node_has_azure_dev_plugin({AZURE_EPC: "0"}) is False


def test_check_sgx_support(capsys):
    client = Cluster()
    client.create_node(node("regular-node"))
    assert check_sgx_support(client) == 0
    assert "Cluster does not support SGX" in capsys.readouterr().out

    client.create_node(node("sgx-node", INTEL_CAPACITY))
    assert check_sgx_support(client) == 1
    assert "Cluster supports SGX on 1 node\n" in capsys.readouterr().out

    client.create_node(node("sgx-node-2", INTEL_CAPACITY))
    assert check_sgx_support(client) == 2
    assert "Cluster supports SGX on 2 nodes\n" in capsys.readouterr().out