import pytest

from marblectl.kube import Cluster, NotFoundError
from marblectl.uninstall import (
    NAMESPACE,
    WEBHOOK_SECRET_NAME,
    cleanup_csr,
    cleanup_secrets,
    server_version_below_1_19,
    uninstall,
)
from marblectl.util import WEBHOOK_NAME


def _csr():
    return {
        "metadata": {"name": WEBHOOK_NAME},
        "spec": {
            "request": b"\xaa\xaa\xaa",
            "signerName": "kubernetes.io/kubelet-serving",
            "usages": ["key encipherment", "digital signature", "server auth"],
        },
    }


def _secret():
    return {
        "metadata": {"name": WEBHOOK_SECRET_NAME, "namespace": NAMESPACE},
        "data": {"cert.pem": b"\xaa\xaa\xaa", "key.pem": b"\xbb\xbb\xbb"},
    }


@pytest.mark.parametrize(
    "major, minor, expected",
    [("1", "18", True), ("1", "19", False), ("1", "20", False), ("2", "0", False), ("1", "5", True)],
)
def test_server_version_below_1_19(major, minor, expected):
    assert server_version_below_1_19(Cluster(major=major, minor=minor)) is expected


def test_server_version_rejects_non_numeric():
    with pytest.raises(ValueError):
        server_version_below_1_19(Cluster(major="1", minor="19+"))


def test_cleanup_csr():
    cluster = Cluster(major="1", minor="19")
    with pytest.raises(NotFoundError):
        cluster.get_csr(WEBHOOK_NAME)
    with pytest.raises(NotFoundError):
        cleanup_csr(cluster)

    cluster.create_csr(_csr())
    assert cluster.get_csr(WEBHOOK_NAME)["metadata"]["name"] == WEBHOOK_NAME
    cleanup_csr(cluster)
    with pytest.raises(NotFoundError):
        cluster.get_csr(WEBHOOK_NAME)


def test_cleanup_csr_skipped_below_1_19():
    cluster = Cluster(major="1", minor="18")
    cleanup_csr(cluster)
    cluster.create_csr(_csr())
    cleanup_csr(cluster)
    assert cluster.get_csr(WEBHOOK_NAME)["metadata"]["name"] == WEBHOOK_NAME


def test_cleanup_secrets():
    cluster = Cluster()
    with pytest.raises(NotFoundError):
        cluster.get_secret(NAMESPACE, WEBHOOK_SECRET_NAME)
    with pytest.raises(NotFoundError):
        cleanup_secrets(cluster)

    cluster.create_secret(NAMESPACE, _secret())
    assert cluster.get_secret(NAMESPACE, WEBHOOK_SECRET_NAME)["data"]["key.pem"] == b"\xbb\xbb\xbb"
    cleanup_secrets(cluster)
    with pytest.raises(NotFoundError):
        cluster.get_secret(NAMESPACE, WEBHOOK_SECRET_NAME)


def test_uninstall_without_resources(capsys):
    uninstall(Cluster())
    assert "Marblerun successfully removed from your cluster" in capsys.readouterr().out


def test_uninstall_removes_resources():
    cluster = Cluster()
    cluster.create_secret(NAMESPACE, _secret())
    cluster.create_csr(_csr())
    uninstall(cluster)
    with pytest.raises(NotFoundError):
        cluster.get_secret(NAMESPACE, WEBHOOK_SECRET_NAME)
    with pytest.raises(NotFoundError):
        cluster.get_csr(WEBHOOK_NAME)


def test_uninstall_propagates_other_errors():
    with pytest.raises(ValueError):
        uninstall(Cluster(major="1", minor="x"))