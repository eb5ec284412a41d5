"""Access to the Kubernetes API: an HTTP client and an in-memory cluster."""

from __future__ import annotations

import base64
import copy
import math
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import requests
import yaml

RECOMMENDED_CONFIG_PATH_ENV_VAR = "KUBECONFIG"
RECOMMENDED_HOME_DIR = ".kube"
RECOMMENDED_FILE_NAME = "config"


class KubeError(Exception):
    """An error reported by the Kubernetes API or its configuration."""


class NotFoundError(KubeError):
    """The requested resource does not exist."""


class AlreadyExistsError(KubeError):
    """A resource with the same name already exists."""


class EmptyConfigError(KubeError):
    """The kubeconfig file holds no usable configuration."""


@dataclass
class KubeConfig:
    """Connection settings read from a kubeconfig file."""

    server: str
    ca_data: bytes = b""
    ca_file: str = ""
    token: str = ""
    client_cert_data: bytes = b""
    client_key_data: bytes = b""
    client_cert_file: str = ""
    client_key_file: str = ""
    insecure: bool = False


def kube_config_path() -> str:
    """Return the kubeconfig path from the environment or the home directory."""
    path = os.environ.get(RECOMMENDED_CONFIG_PATH_ENV_VAR, "")
    if path:
        return path
    return str(Path.home() / RECOMMENDED_HOME_DIR / RECOMMENDED_FILE_NAME)


def _named(entries: list[dict[str, Any]], name: str | None, field: str) -> dict[str, Any]:
    if not entries:
        return {}
    if name:
        for entry in entries:
            if entry.get("name") == name:
                return entry.get(field) or {}
    return entries[0].get(field) or {}


def _b64(value: str | None) -> bytes:
    return base64.b64decode(value) if value else b""


def load_kube_config(path: str | os.PathLike[str]) -> KubeConfig:
    """Read the active cluster and user from a kubeconfig file."""
    doc = yaml.safe_load(Path(path).read_text())
    if not isinstance(doc, dict) or not doc.get("clusters"):
        raise EmptyConfigError("invalid configuration: no configuration has been provided")

    contexts = doc.get("contexts") or []
    context: dict[str, Any] = _named(contexts, doc.get("current-context"), "context")
    cluster = _named(doc["clusters"], context.get("cluster"), "cluster")
    user = _named(doc.get("users") or [], context.get("user"), "user")

    server = cluster.get("server")
    if not server:
        raise EmptyConfigError("invalid configuration: no server found for cluster")
    try:
        return KubeConfig(
            server=server,
            ca_data=_b64(cluster.get("certificate-authority-data")),
            ca_file=cluster.get("certificate-authority", "") or "",
            insecure=bool(cluster.get("insecure-skip-tls-verify", False)),
            token=user.get("token", "") or "",
            client_cert_data=_b64(user.get("client-certificate-data")),
            client_key_data=_b64(user.get("client-key-data")),
            client_cert_file=user.get("client-certificate", "") or "",
            client_key_file=user.get("client-key", "") or "",
        )
    except ValueError as exc:
        raise KubeError(f"invalid base64 data in kubeconfig: {exc}") from exc


_BINARY_SUFFIXES = {"Ki": 2**10, "Mi": 2**20, "Gi": 2**30, "Ti": 2**40, "Pi": 2**50, "Ei": 2**60}
_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}


def parse_quantity(value: str | int | None) -> int:
    """Return the integer value of a resource quantity, rounded up."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return 0
    try:
        for suffix, factor in _BINARY_SUFFIXES.items():
            if text.endswith(suffix):
                return math.ceil(Decimal(text[: -len(suffix)]) * factor)
        if text[-1] in _DECIMAL_SUFFIXES and not text[-1].isdigit():
            if text[-1] == "E" and len(text) > 1 and text[:-1].lstrip("+-").replace(".", "").isdigit():
                return math.ceil(Decimal(text[:-1]) * _DECIMAL_SUFFIXES["E"])
            return math.ceil(Decimal(text[:-1]) * _DECIMAL_SUFFIXES[text[-1]])
        return math.ceil(Decimal(text))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid quantity: {value!r}") from exc


def _name_of(obj: dict[str, Any]) -> str:
    return obj.get("metadata", {}).get("name", "")


def _matches(labels: dict[str, str], selector: str) -> bool:
    for term in filter(None, (t.strip() for t in selector.split(","))):
        key, _, wanted = term.partition("=")
        if labels.get(key.strip()) != wanted.strip():
            return False
    return True


class Cluster:
    """An in-memory cluster that keeps resources as plain dictionaries."""

    def __init__(self, major: str = "1", minor: str = "19") -> None:
        self.major = major
        self.minor = minor
        self._namespaces: dict[str, dict[str, Any]] = {}
        self._deployments: dict[tuple[str, str], dict[str, Any]] = {}
        self._nodes: dict[str, dict[str, Any]] = {}
        self._secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self._csrs: dict[str, dict[str, Any]] = {}

    @staticmethod
    def _get(store: dict, key: Any, kind: str, name: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(store[key])
        except KeyError:
            raise NotFoundError(f'{kind} "{name}" not found') from None

    @staticmethod
    def _create(store: dict, key: Any, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        name = _name_of(obj)
        if key in store:
            raise AlreadyExistsError(f'{kind} "{name}" already exists')
        store[key] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    @staticmethod
    def _delete(store: dict, key: Any, kind: str, name: str) -> None:
        if store.pop(key, None) is None:
            raise NotFoundError(f'{kind} "{name}" not found')

    def server_version(self) -> dict[str, str]:
        return {"major": self.major, "minor": self.minor}

    def get_namespace(self, name: str) -> dict[str, Any]:
        return self._get(self._namespaces, name, "namespaces", name)

    def create_namespace(self, namespace: dict[str, Any]) -> dict[str, Any]:
        return self._create(self._namespaces, _name_of(namespace), "namespaces", namespace)

    def patch_namespace_labels(self, name: str, labels: dict[str, str | None]) -> dict[str, Any]:
        if name not in self._namespaces:
            raise NotFoundError(f'namespaces "{name}" not found')
        current = self._namespaces[name].setdefault("metadata", {}).setdefault("labels", {})
        for key, value in labels.items():
            if value is None:
                current.pop(key, None)
            else:
                current[key] = value
        return copy.deepcopy(self._namespaces[name])

    def list_namespaces(self, label_selector: str = "") -> list[dict[str, Any]]:
        return [
            copy.deepcopy(ns)
            for ns in self._namespaces.values()
            if _matches(ns.get("metadata", {}).get("labels") or {}, label_selector)
        ]

    def get_deployment(self, namespace: str, name: str) -> dict[str, Any]:
        return self._get(self._deployments, (namespace, name), "deployments.apps", name)

    def create_deployment(self, namespace: str, deployment: dict[str, Any]) -> dict[str, Any]:
        key = (namespace, _name_of(deployment))
        return self._create(self._deployments, key, "deployments.apps", deployment)

    def update_deployment_status(self, namespace: str, deployment: dict[str, Any]) -> dict[str, Any]:
        name = _name_of(deployment)
        key = (namespace, name)
        if key not in self._deployments:
            raise NotFoundError(f'deployments.apps "{name}" not found')
        self._deployments[key]["status"] = copy.deepcopy(deployment.get("status", {}))
        return copy.deepcopy(self._deployments[key])

    def delete_deployment(self, namespace: str, name: str) -> None:
        self._delete(self._deployments, (namespace, name), "deployments.apps", name)

    def list_nodes(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(node) for node in self._nodes.values()]

    def create_node(self, node: dict[str, Any]) -> dict[str, Any]:
        return self._create(self._nodes, _name_of(node), "nodes", node)

    def delete_node(self, name: str) -> None:
        self._delete(self._nodes, name, "nodes", name)

    def get_secret(self, namespace: str, name: str) -> dict[str, Any]:
        return self._get(self._secrets, (namespace, name), "secrets", name)

    def create_secret(self, namespace: str, secret: dict[str, Any]) -> dict[str, Any]:
        return self._create(self._secrets, (namespace, _name_of(secret)), "secrets", secret)

    def delete_secret(self, namespace: str, name: str) -> None:
        self._delete(self._secrets, (namespace, name), "secrets", name)

    def get_csr(self, name: str) -> dict[str, Any]:
        return self._get(self._csrs, name, "certificatesigningrequests.certificates.k8s.io", name)

    def create_csr(self, csr: dict[str, Any]) -> dict[str, Any]:
        return self._create(
            self._csrs, _name_of(csr), "certificatesigningrequests.certificates.k8s.io", csr
        )

    def update_csr_approval(self, name: str, csr: dict[str, Any]) -> dict[str, Any]:
        if name not in self._csrs:
            raise NotFoundError(f'certificatesigningrequests.certificates.k8s.io "{name}" not found')
        conditions = copy.deepcopy(csr.get("status", {}).get("conditions", []))
        self._csrs[name].setdefault("status", {})["conditions"] = conditions
        return copy.deepcopy(self._csrs[name])

    def delete_csr(self, name: str) -> None:
        self._delete(self._csrs, name, "certificatesigningrequests.certificates.k8s.io", name)


_CSR_PATH = "/apis/certificates.k8s.io/v1/certificatesigningrequests"


def _secret_to_wire(secret: dict[str, Any]) -> dict[str, Any]:
    wire = copy.deepcopy(secret)
    wire.setdefault("apiVersion", "v1")
    wire.setdefault("kind", "Secret")
    wire["data"] = {k: base64.b64encode(v).decode() for k, v in (secret.get("data") or {}).items()}
    return wire


def _secret_from_wire(wire: dict[str, Any]) -> dict[str, Any]:
    wire["data"] = {k: base64.b64decode(v) for k, v in (wire.get("data") or {}).items()}
    return wire


def _csr_to_wire(csr: dict[str, Any]) -> dict[str, Any]:
    wire = copy.deepcopy(csr)
    wire.setdefault("apiVersion", "certificates.k8s.io/v1")
    wire.setdefault("kind", "CertificateSigningRequest")
    spec = wire.get("spec", {})
    if isinstance(spec.get("request"), bytes):
        spec["request"] = base64.b64encode(spec["request"]).decode()
    status = wire.get("status", {})
    if isinstance(status.get("certificate"), bytes):
        status["certificate"] = base64.b64encode(status["certificate"]).decode()
    return wire


def _csr_from_wire(wire: dict[str, Any]) -> dict[str, Any]:
    spec = wire.get("spec", {})
    if isinstance(spec.get("request"), str):
        spec["request"] = base64.b64decode(spec["request"])
    status = wire.setdefault("status", {})
    status["certificate"] = base64.b64decode(status.get("certificate") or "")
    return wire


class HttpKubeClient:
    """A client for the Kubernetes REST API."""

    def __init__(self, config: KubeConfig) -> None:
        self._base = config.server.rstrip("/")
        self._session = requests.Session()
        self._temp_files: list[str] = []
        if config.insecure:
            self._session.verify = False
        elif config.ca_data:
            self._session.verify = self._write_temp(config.ca_data)
        elif config.ca_file:
            self._session.verify = config.ca_file
        if config.token:
            self._session.headers["Authorization"] = f"Bearer {config.token}"
        cert = config.client_cert_file or (
            self._write_temp(config.client_cert_data) if config.client_cert_data else ""
        )
        key = config.client_key_file or (
            self._write_temp(config.client_key_data) if config.client_key_data else ""
        )
        if cert and key:
            self._session.cert = (cert, key)

    def _write_temp(self, data: bytes) -> str:
        with tempfile.NamedTemporaryFile(delete=False, suffix=".pem") as handle:
            handle.write(data)
        self._temp_files.append(handle.name)
        return handle.name

    def close(self) -> None:
        self._session.close()
        for name in self._temp_files:
            Path(name).unlink(missing_ok=True)
        self._temp_files.clear()

    def __enter__(self) -> HttpKubeClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = self._session.request(method, self._base + path, timeout=30, **kwargs)
        if resp.status_code >= 400:
            try:
                message = resp.json().get("message", "") or resp.text
            except ValueError:
                message = resp.text
            if resp.status_code == 404:
                raise NotFoundError(message)
            if resp.status_code == 409:
                raise AlreadyExistsError(message)
            raise KubeError(f"{resp.status_code}: {message}")
        return resp.json() if resp.content else {}

    def server_version(self) -> dict[str, str]:
        info = self._request("GET", "/version")
        return {"major": info.get("major", ""), "minor": info.get("minor", "")}

    def get_namespace(self, name: str) -> dict[str, Any]:
        return self._request("GET", f"/api/v1/namespaces/{name}")

    def create_namespace(self, namespace: dict[str, Any]) -> dict[str, Any]:
        body = {"apiVersion": "v1", "kind": "Namespace", **namespace}
        return self._request("POST", "/api/v1/namespaces", json=body)

    def patch_namespace_labels(self, name: str, labels: dict[str, str | None]) -> dict[str, Any]:
        return self._request(
            "PATCH",
            f"/api/v1/namespaces/{name}",
            json={"metadata": {"labels": labels}},
            headers={"Content-Type": "application/strategic-merge-patch+json"},
        )

    def list_namespaces(self, label_selector: str = "") -> list[dict[str, Any]]:
        params = {"labelSelector": label_selector} if label_selector else None
        return self._request("GET", "/api/v1/namespaces", params=params).get("items") or []

    def get_deployment(self, namespace: str, name: str) -> dict[str, Any]:
        return self._request("GET", f"/apis/apps/v1/namespaces/{namespace}/deployments/{name}")

    def list_nodes(self) -> list[dict[str, Any]]:
        return self._request("GET", "/api/v1/nodes").get("items") or []

    def get_secret(self, namespace: str, name: str) -> dict[str, Any]:
        return _secret_from_wire(self._request("GET", f"/api/v1/namespaces/{namespace}/secrets/{name}"))

    def create_secret(self, namespace: str, secret: dict[str, Any]) -> dict[str, Any]:
        wire = self._request(
            "POST", f"/api/v1/namespaces/{namespace}/secrets", json=_secret_to_wire(secret)
        )
        return _secret_from_wire(wire)

    def delete_secret(self, namespace: str, name: str) -> None:
        self._request("DELETE", f"/api/v1/namespaces/{namespace}/secrets/{name}")

    def get_csr(self, name: str) -> dict[str, Any]:
        return _csr_from_wire(self._request("GET", f"{_CSR_PATH}/{name}"))

    def create_csr(self, csr: dict[str, Any]) -> dict[str, Any]:
        return _csr_from_wire(self._request("POST", _CSR_PATH, json=_csr_to_wire(csr)))

    def update_csr_approval(self, name: str, csr: dict[str, Any]) -> dict[str, Any]:
        wire = self._request("PUT", f"{_CSR_PATH}/{name}/approval", json=_csr_to_wire(csr))
        return _csr_from_wire(wire)

    def delete_csr(self, name: str) -> None:
        self._request("DELETE", f"{_CSR_PATH}/{name}")


def get_kubernetes_interface() -> HttpKubeClient:
    """Build a client from the user's kubeconfig."""
    return HttpKubeClient(load_kube_config(kube_config_path()))