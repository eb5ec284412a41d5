"""Querying the Coordinator's status, recovering it, and saving its certificates."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from http import HTTPStatus
from pathlib import Path

from marblectl.util import CoordinatorError, PemBlock, encode_blocks, rest_client, status_text

DEFAULT_ROOT_OUTPUT = "marblerunRootCA.crt"
DEFAULT_INTERMEDIATE_OUTPUT = "marblerunIntermediateCA.crt"
DEFAULT_CHAIN_OUTPUT = "marblerunChainCA.crt"


@dataclass(frozen=True)
class Status:
    """The state reported by the Coordinator's /status endpoint."""

    code: int
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def _server_error(code: int) -> CoordinatorError:
    return CoordinatorError(f"error connecting to server: {code} {status_text(code)}")


def _string_at(body: bytes, *path: str) -> str:
    try:
        value = json.loads(body)
    except ValueError:
        return ""
    for key in path:
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


def status(host: str, certs: list[PemBlock]) -> Status:
    """Request and print the Coordinator's current state."""
    with rest_client(certs) as client:
        resp = client.get(f"https://{host}/status", timeout=30)
    if resp.status_code != HTTPStatus.OK:
        raise _server_error(resp.status_code)
    try:
        data = resp.json()["data"]
    except (ValueError, KeyError, TypeError) as exc:
        raise CoordinatorError("invalid status response from coordinator") from exc
    if not isinstance(data, dict):
        raise CoordinatorError("invalid status response from coordinator")
    try:
        result = Status(int(data.get("StatusCode", 0)), str(data.get("StatusMessage", "")))
    except (TypeError, ValueError) as exc:
        raise CoordinatorError("invalid status response from coordinator") from exc
    print(result)
    return result


def recover(host: str, key: bytes, certs: list[PemBlock]) -> str:
    """Upload a recovery key to unseal the Coordinator; return its status message."""
    with rest_client(certs) as client:
        resp = client.post(
            f"https://{host}/recover",
            data=key,
            headers={"Content-Type": "text/plain"},
            timeout=30,
        )
    if resp.status_code != HTTPStatus.OK:
        raise _server_error(resp.status_code)
    message = _string_at(resp.content, "data", "StatusMessage")
    print(f"{message} ")
    return message


def save_root_certificate(
    certs: list[PemBlock], output: str | os.PathLike[str] = DEFAULT_ROOT_OUTPUT
) -> Path:
    """Write the root certificate (the last in the chain) to a file."""
    if not certs:
        raise CoordinatorError("no certificate received from host")
    path = Path(output)
    path.write_bytes(certs[-1].encode())
    print("Root certificate written to", output)
    return path


def save_intermediate_certificate(
    certs: list[PemBlock], output: str | os.PathLike[str] = DEFAULT_INTERMEDIATE_OUTPUT
) -> bool:
    """Write the intermediate certificate to a file; False if there is none."""
    if len(certs) > 1:
        Path(output).write_bytes(certs[0].encode())
        print("Intermediate certificate written to", output)
        return True
    print("WARNING: No intermediate certificate received.")
    return False


def save_certificate_chain(
    certs: list[PemBlock], output: str | os.PathLike[str] = DEFAULT_CHAIN_OUTPUT
) -> Path:
    """Write the whole certificate chain to a file."""
    if len(certs) == 1:
        print("WARNING: Only received root certificate from host.")
    path = Path(output)
    path.write_bytes(encode_blocks(certs))
    print("Certificate chain written to", output)
    return path