"""Shared helpers: PEM handling, prompts and the Coordinator REST client."""

from __future__ import annotations

import base64
import json
import re
import tempfile
import warnings
from dataclasses import dataclass
from http import HTTPStatus
from pathlib import Path
from typing import Iterable, TextIO

import requests
from cryptography import x509

WEBHOOK_NAME = "marble-injector.marblerun"
PROMPT_FOR_CHANGES = "Do you want to automatically apply the suggested changes [y/n]? "

_PEM_RE = re.compile(r"-----BEGIN ([^-\r\n]+)-----(.*?)-----END \1-----", re.DOTALL)


class CoordinatorError(Exception):
    """An error talking to the Coordinator."""


@dataclass(frozen=True)
class PemBlock:
    """A PEM block: a type label and its binary contents."""

    type: str
    data: bytes

    def encode(self) -> bytes:
        body = base64.b64encode(self.data).decode()
        lines = [body[i : i + 64] for i in range(0, len(body), 64)]
        text = f"-----BEGIN {self.type}-----\n"
        text += "".join(line + "\n" for line in lines)
        text += f"-----END {self.type}-----\n"
        return text.encode()


def encode_blocks(blocks: Iterable[PemBlock]) -> bytes:
    """Concatenate the PEM encodings of the given blocks."""
    return b"".join(block.encode() for block in blocks)


def decode_blocks(data: bytes | str) -> list[PemBlock]:
    """Parse every PEM block in the data, in order."""
    text = data.decode() if isinstance(data, bytes) else data
    blocks = []
    for match in _PEM_RE.finditer(text):
        body = "".join(match.group(2).split())
        blocks.append(PemBlock(match.group(1), base64.b64decode(body)))
    return blocks


def prompt_yes_no(stdin: TextIO, question: str) -> bool:
    """Ask a question; True only for 'y' or 'yes' in any case."""
    print(question, end="", flush=True)
    line = stdin.readline()
    if not line.endswith("\n"):
        raise EOFError("no answer given")
    return line.strip().lower() in ("y", "yes")


def status_text(code: int) -> str:
    """Return the standard reason phrase for an HTTP status code."""
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


class _PinnedSession(requests.Session):
    """A session that trusts only a given CA bundle file, removed on close."""

    def __init__(self, bundle_path: str) -> None:
        super().__init__()
        self.verify = bundle_path
        self._bundle_path = bundle_path

    def close(self) -> None:
        super().close()
        Path(self._bundle_path).unlink(missing_ok=True)


def _check_certificate(block: PemBlock, what: str) -> None:
    try:
        x509.load_der_x509_certificate(block.data)
    except ValueError as exc:
        raise CoordinatorError(f"failed to parse {what} certificate") from exc


def rest_client(certs: list[PemBlock]) -> requests.Session:
    """Return a session that trusts the Coordinator's root (and intermediate) certificate."""
    if not certs:
        raise CoordinatorError("failed to parse root certificate")
    trusted = [certs[-1]]
    _check_certificate(certs[-1], "root")
    if len(certs) > 1:
        _check_certificate(certs[0], "intermediate")
        trusted.append(certs[0])
    with tempfile.NamedTemporaryFile(delete=False, suffix=".pem") as handle:
        handle.write(encode_blocks(trusted))
    return _PinnedSession(handle.name)


def fetch_coordinator_certificates(host: str) -> list[PemBlock]:
    """Fetch the Coordinator's certificate chain without quote verification."""
    print("Warning: skipping quote verification")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        resp = requests.get(f"https://{host}/quote", verify=False, timeout=30)
    if resp.status_code != HTTPStatus.OK:
        raise CoordinatorError(
            f"error connecting to server: {resp.status_code} {status_text(resp.status_code)}"
        )
    try:
        cert = resp.json()["data"]["Cert"]
    except (ValueError, KeyError, TypeError) as exc:
        raise CoordinatorError("no certificate in coordinator response") from exc
    blocks = decode_blocks(cert if isinstance(cert, str) else json.dumps(cert))
    if not blocks:
        raise CoordinatorError("no certificate in coordinator response")
    return blocks