"""Setting, updating, reading and verifying the Coordinator manifest."""

from __future__ import annotations

import hashlib
import json
import os
from http import HTTPStatus
from pathlib import Path

import yaml

from marblectl.util import CoordinatorError, PemBlock, rest_client, status_text


def _gjson_string(body: bytes, path: str) -> str:
    try:
        value = json.loads(body)
    except ValueError:
        return ""
    for key in path.split("."):
        if not isinstance(value, dict) or key not in value:
            return ""
        value = value[key]
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _server_error(code: int) -> CoordinatorError:
    return CoordinatorError(f"error connecting to server: {code} {status_text(code)}")


def load_manifest_file(filename: str | os.PathLike[str]) -> bytes:
    """Load a manifest in JSON or YAML and return it as JSON."""
    data = Path(filename).read_bytes()
    try:
        json.loads(data)
        return data
    except ValueError:
        pass
    document = yaml.safe_load(data)
    return json.dumps(document, separators=(",", ":"), default=str).encode()


def manifest_signature(raw_manifest: bytes) -> str:
    """Return the hex SHA-256 of the raw manifest."""
    return hashlib.sha256(raw_manifest).hexdigest()


def manifest_get(host: str, certs: list[PemBlock]) -> bytes:
    """Return the manifest signature the Coordinator reports."""
    with rest_client(certs) as client:
        resp = client.get(f"https://{host}/manifest", timeout=30)
    if resp.status_code != HTTPStatus.OK:
        raise _server_error(resp.status_code)
    return _gjson_string(resp.content, "data.ManifestSignature").encode()


def manifest_set(
    manifest: bytes, host: str, certs: list[PemBlock], recovery_file: str | None = None
) -> str | None:
    """Upload a manifest; return any recovery data the Coordinator sent back."""
    with rest_client(certs) as client:
        resp = client.post(
            f"https://{host}/manifest",
            data=manifest,
            headers={"Content-Type": "application/json"},
            timeout=30,
        )
    if resp.status_code == HTTPStatus.BAD_REQUEST:
        raise CoordinatorError(_gjson_string(resp.content, "message"))
    if resp.status_code != HTTPStatus.OK:
        raise _server_error(resp.status_code)

    print("Manifest successfully set")
    if not resp.content:
        return None
    recovery = _gjson_string(resp.content, "data")
    if not recovery:
        return None
    if recovery_file:
        Path(recovery_file).write_text(recovery)
        print(f"Recovery data saved to: {recovery_file}.")
    else:
        print(recovery)
    return recovery


def manifest_update(
    manifest: bytes,
    host: str,
    client_cert: str | None,
    client_key: str | None,
    certs: list[PemBlock],
) -> None:
    """Upload an update manifest, authenticating with an admin certificate."""
    with rest_client(certs) as client:
        if client_cert and client_key:
            client.cert = (client_cert, client_key)
        resp = client.post(
            f"https://{host}/update",
            data=manifest,
            headers={"Content-Type": "application/json"},
            timeout=30,
        )
    code = resp.status_code
    if code == HTTPStatus.OK:
        print("Manifest successfully updated")
        return
    if code == HTTPStatus.BAD_REQUEST:
        raise CoordinatorError(f"unable to update manifest: {code} {status_text(code)}")
    if code == HTTPStatus.UNAUTHORIZED:
        raise CoordinatorError(f"unable to authorize user: {code} {status_text(code)}")
    raise _server_error(code)


def signature_from_string(manifest: str) -> str:
    """Return the signature of a manifest file, or the string itself if it is a signature."""
    path = Path(manifest)
    if path.exists():
        return manifest_signature(path.read_bytes())
    if len(manifest) != 2 * hashlib.sha256().digest_size:
        raise ValueError(
            f"{manifest} is not a file and of invalid length to be a signature (needs to be 32 bytes)"
        )
    try:
        bytes.fromhex(manifest)
    except ValueError:
        raise ValueError(
            f"{manifest} is not a file and not a valid signature (needs to be in hex format)"
        ) from None
    return manifest


def manifest_verify(local_signature: str, host: str, certs: list[PemBlock]) -> None:
    """Check that the Coordinator's manifest signature equals the local one."""
    remote = manifest_get(host, certs).decode()
    if remote != local_signature:
        raise CoordinatorError(
            f"remote signature differs from local signature: {remote} != {local_signature}"
        )
    print("OK")