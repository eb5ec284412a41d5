"""Adjusting a Graphene manifest so that an application runs as a Marble."""

from __future__ import annotations

import os
import re
import sys
import tomllib
from dataclasses import dataclass
from http import HTTPStatus
from pathlib import Path
from typing import Any, TextIO

import requests
from termcolor import cprint

from marblectl.util import PROMPT_FOR_CHANGES, prompt_yes_no

PREMAIN_NAME = "premain-graphene"
UUID_NAME = "uuid"
COMMENT_MARBLERUN_ADDITIONS = "\n# MARBLERUN -- auto generated configuration entries \n"

_RELEASES_URL = "https://github.com/edgelesssys/marblerun/releases/download"
_RELEASE_VERSION = "0.3.0"

_SEARCHED_KEYS = (
    "libos.entrypoint",
    "loader.insecure__use_host_env",
    "loader.argv0_override",
    "sgx.remote_attestation",
    "sgx.enclave_size",
    "sgx.thread_num",
    "sgx.trusted_files.marblerun_premain",
    "sgx.allowed_files.marblerun_uuid",
)

_UNITS: dict[str, int] = {}
for _names, _power in (
    (("", "b", "byte"), 0),
    (("k", "kb", "kilo", "kilobyte", "kilobytes"), 1),
    (("m", "mb", "mega", "megabyte", "megabytes"), 2),
    (("g", "gb", "giga", "gigabyte", "gigabytes"), 3),
    (("t", "tb", "tera", "terabyte", "terabytes"), 4),
    (("p", "pb", "peta", "petabyte", "petabytes"), 5),
    (("e", "eb", "exa", "exabyte", "exabytes"), 6),
):
    for _name in _names:
        _UNITS[_name] = 1024**_power
_BIT_UNITS = frozenset({"Kb", "Mb", "Gb", "Tb", "Pb", "Eb"})
_MAX_BYTES = 2**64 - 1


@dataclass(frozen=True)
class Diff:
    """One manifest entry to write, and whether it replaces an existing one."""

    manifest_entry: str
    already_exists: bool


def parse_byte_size(text: str) -> int:
    """Parse a size such as '128M' or '1 GB' into bytes (binary multiples)."""
    match = re.match(r"[0-9]+", text)
    if not match:
        raise ValueError(f"invalid byte size: {text!r}")
    value = int(match.group())
    unit = text[match.end():].strip()
    if unit in _BIT_UNITS:
        raise ValueError(f"byte size given in bits: {text!r}")
    try:
        factor = _UNITS[unit.lower()]
    except KeyError:
        raise ValueError(f"invalid byte size unit: {text!r}") from None
    return min(value * factor, _MAX_BYTES)


def lookup(tree: dict[str, Any], dotted_key: str) -> Any:
    """Return the value at a dotted key in a parsed TOML document, or None."""
    value: Any = tree
    for part in dotted_key.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def parse_tree_for_changes(tree: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return the relevant original values and the values Marblerun needs."""
    original = {key: lookup(tree, key) for key in _SEARCHED_KEYS}
    changes: dict[str, Any] = {}

    entrypoint = original["libos.entrypoint"]
    if entrypoint is None:
        raise ValueError("cannot find libos.entrypoint")
    entrypoint = str(entrypoint)

    if (
        entrypoint == "file:" + PREMAIN_NAME
        or original["sgx.trusted_files.marblerun_premain"] is not None
        or original["sgx.allowed_files.marblerun_uuid"] is not None
    ):
        cprint(
            "The supplied manifest already contains changes for Marblerun. "
            "Have you selected the correct file?",
            "yellow",
        )
        raise ValueError("manifest already contains Marblerun changes")

    changes["libos.entrypoint"] = "file:" + PREMAIN_NAME
    changes["sgx.trusted_files.marblerun_premain"] = "file:" + PREMAIN_NAME

    if original["loader.argv0_override"] is None:
        parts = entrypoint.split("file:")
        if len(parts) != 2:
            cprint(f"ERROR: Cannot process the current entrypoint: {entrypoint}", "red")
            cprint("Note: This tool only supports 'file:' URIs for automatic modification.", "red")
            cprint(
                "If you chose another type of path reference, please change it to 'file:' to continue.",
                "red",
            )
            cprint("Otherwise, please file a bug report!", "red")
            raise ValueError("cannot determine entrypoint for argv0 override correctly")
        changes["loader.argv0_override"] = parts[1]

    if not original["loader.insecure__use_host_env"]:
        changes["loader.insecure__use_host_env"] = 1

    if not original["sgx.remote_attestation"]:
        changes["sgx.remote_attestation"] = 1

    enclave_size = 0
    if original["sgx.enclave_size"] is not None:
        try:
            enclave_size = parse_byte_size(str(original["sgx.enclave_size"]))
        except ValueError:
            enclave_size = 0
    if enclave_size / 2**30 < 1.0:
        changes["sgx.enclave_size"] = "1024M"

    if original["sgx.thread_num"] is None or original["sgx.thread_num"] < 16:
        changes["sgx.thread_num"] = 16

    changes["sgx.allowed_files.marblerun_uuid"] = "file:" + UUID_NAME

    return original, changes


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def calculate_changes(original: dict[str, Any], updates: dict[str, Any]) -> list[Diff]:
    """Return TOML entries for every original key that has an update, sorted."""
    diffs = []
    for key, original_value in original.items():
        if key not in updates:
            continue
        value = updates[key]
        if isinstance(value, str):
            entry = f'{key} = "{value}"'
        else:
            entry = f"{key} = {_format_value(value)}"
        diffs.append(Diff(entry, original_value is not None))
    return sorted(diffs, key=lambda diff: diff.manifest_entry)


def append_and_replace(diffs: list[Diff], content: bytes) -> bytes:
    """Replace existing flat entries in place and append new ones at the end."""
    result = bytes(content)
    first_addition_done = False
    for diff in diffs:
        entry = diff.manifest_entry.encode()
        if diff.already_exists:
            key = diff.manifest_entry.split(" =")[0]
            pattern = re.compile(rb"^" + re.escape(key.encode()) + rb"\s?=.*$", re.MULTILINE)
            matches = pattern.findall(result)
            if not matches:
                cprint(
                    "ERROR: Cannot find specified entry. Your Graphene config might not be flat-mapped.",
                    "red",
                )
                cprint(
                    "Marblerun can only automatically modify manifests using a flat hierarchy, "
                    "as otherwise we would lose all styling & comments.",
                    "red",
                )
                cprint(
                    "To continue, please manually perform the changes printed above in your "
                    "Graphene manifest.",
                    "red",
                )
                raise ValueError("failed to detect position of config entry")
            if len(matches) > 1:
                cprint(
                    "ERROR: Found multiple potential matches for automatic value substitution.",
                    "red",
                )
                cprint("Is the configuration valid (no multiple declarations)?", "red")
                raise ValueError("found multiple matches for a single entry")
            result = pattern.sub(lambda _match: entry, result)
        else:
            if not first_addition_done:
                result += COMMENT_MARBLERUN_ADDITIONS.encode()
                first_addition_done = True
            result += entry + b"\n"
    return result


def download_premain(directory: str | os.PathLike[str], version: str) -> Path:
    """Download the premain executable of the given release into a directory."""
    clean_version = "v" + version.split("-")[0]
    url = f"{_RELEASES_URL}/{clean_version}/{PREMAIN_NAME}"
    with requests.get(url, stream=True, timeout=60) as resp:
        if resp.status_code != HTTPStatus.OK:
            raise requests.HTTPError("received a non-successful HTTP response", response=resp)
        target = Path(directory) / PREMAIN_NAME
        with target.open("wb") as out:
            for chunk in resp.iter_content(chunk_size=65536):
                out.write(chunk)
    print(f"Successfully downloaded {PREMAIN_NAME}.")
    return target


def perform_changes(diffs: list[Diff], file_name: str | os.PathLike[str], stdin: TextIO | None = None) -> bool:
    """Show the changes, ask for confirmation and apply them; False if declined."""
    print("\nMarblerun suggests the following changes to your Graphene manifest:")
    for diff in diffs:
        cprint(diff.manifest_entry, "yellow" if diff.already_exists else "green")

    if not prompt_yes_no(stdin if stdin is not None else sys.stdin, PROMPT_FOR_CHANGES):
        print("Aborting.")
        return False

    path = Path(file_name)
    directory = path.parent
    original = path.read_bytes()

    print("Applying changes...")
    modified = append_and_replace(diffs, original)

    backup_name = path.name + ".bak"
    print(f"Saving original manifest as {backup_name}...")
    (directory / backup_name).write_bytes(original)

    print(f"Saving changes to {path.name}...")
    path.write_bytes(modified)

    print("Downloading Marblerun premain from GitHub...")
    try:
        download_premain(directory, _RELEASE_VERSION)
    except (requests.RequestException, OSError):
        cprint(
            f"ERROR: Cannot download '{PREMAIN_NAME}' from GitHub. Please add the file manually.",
            "red",
        )

    print("\nDone! You should be good to go for Marblerun!")
    return True


def add_to_graphene_manifest(file_name: str | os.PathLike[str], stdin: TextIO | None = None) -> bool:
    """Read a Graphene manifest, work out Marblerun's changes and apply them."""
    print("Reading file:", file_name)
    try:
        tree = tomllib.loads(Path(file_name).read_text())
    except FileNotFoundError:
        raise FileNotFoundError(f"file does not exist: {file_name}") from None
    except tomllib.TOMLDecodeError:
        cprint("ERROR: Cannot parse manifest. Have you selected the correct file?", "red")
        raise
    original, changes = parse_tree_for_changes(tree)
    return perform_changes(calculate_changes(original, changes), file_name, stdin)