"""Reading the package signature properties (SIGSTRUCT) of an SGX SDK enclave binary."""

from __future__ import annotations

import hashlib
import os
import struct
from dataclasses import dataclass
from pathlib import Path

from termcolor import cprint

SGX_META_SECTION = ".note.sgxmeta"
OCCLUM_LIBOS = Path("build/lib/libocclum-libos.signed.so")

# Layout of the enclave signature structure as given in the Intel SDM, Vol. 3, Table 38-19.
SIG_STRUCT_HEADER = bytes(
    [0x06, 0x00, 0x00, 0x00, 0xE1, 0x00, 0x00, 0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x00]
)
SIG_STRUCT_HEADER2 = bytes(
    [0x01, 0x01, 0x00, 0x00, 0x60, 0x00, 0x00, 0x00, 0x60, 0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00]
)
SIG_STRUCT_SIZE = 1808

_SHT_NOBITS = 8


@dataclass(frozen=True)
class PackageProperties:
    """The identity of an enclave package as found in its SIGSTRUCT."""

    unique_id: bytes
    signer_id: bytes
    product_id: int
    security_version: int


def parse_sig_struct(sgx_meta_data: bytes) -> PackageProperties:
    """Locate SIGSTRUCT in SGX metadata and extract the package properties."""
    index = sgx_meta_data.find(SIG_STRUCT_HEADER)
    if index == -1:
        raise ValueError("could not find SIGSTRUCT header in given file")

    if len(sgx_meta_data) <= index + SIG_STRUCT_SIZE:
        raise ValueError("SGX metadata/SIGSTRUCT appears to be too small")

    sig_struct = sgx_meta_data[index : index + SIG_STRUCT_SIZE]

    if sig_struct.find(SIG_STRUCT_HEADER2) == -1:
        raise ValueError("found first SIGSTRUCT header, but cannot find second one")

    modulus = sig_struct[128:512]
    return PackageProperties(
        unique_id=bytes(sig_struct[960:992]),
        signer_id=hashlib.sha256(modulus).digest(),
        product_id=int.from_bytes(sig_struct[1024:1026], "little"),
        security_version=int.from_bytes(sig_struct[1026:1028], "little"),
    )


def read_elf_section(path: str | os.PathLike[str], section_name: str) -> bytes | None:
    """Return the contents of a named ELF section, or None if there is no such section."""
    data = Path(path).read_bytes()
    if len(data) < 16 or data[:4] != b"\x7fELF":
        raise ValueError(f"{path} is not an ELF file")

    order = {1: "<", 2: ">"}.get(data[5])
    if order is None:
        raise ValueError(f"unknown ELF data encoding in {path}")
    if data[4] == 2:
        header_fmt, section_fmt = "HHIQQQIHHHHHH", "IIQQQQIIQQ"
    elif data[4] == 1:
        header_fmt, section_fmt = "HHIIIIIHHHHHH", "IIIIIIIIII"
    else:
        raise ValueError(f"unknown ELF class in {path}")

    try:
        header = struct.unpack_from(order + header_fmt, data, 16)
        shoff, shentsize, shnum, shstrndx = header[5], header[10], header[11], header[12]
        sections = [
            struct.unpack_from(order + section_fmt, data, shoff + number * shentsize)
            for number in range(shnum)
        ]
    except struct.error as exc:
        raise ValueError(f"malformed ELF file: {path}") from exc

    if not sections:
        return None
    if shstrndx >= len(sections):
        raise ValueError(f"malformed ELF file: {path}")

    def contents(section: tuple[int, ...]) -> bytes:
        if section[1] == _SHT_NOBITS:
            return b""
        offset, size = section[4], section[5]
        if offset + size > len(data):
            raise ValueError(f"malformed ELF file: {path}")
        return data[offset : offset + size]

    names = contents(sections[shstrndx])
    wanted = section_name.encode()
    for section in sections:
        start = section[0]
        end = names.find(b"\0", start)
        name = names[start:] if end == -1 else names[start:end]
        if name == wanted:
            return contents(section)
    return None


def decode_sig_struct(path: str | os.PathLike[str]) -> PackageProperties:
    """Print and return the package properties of an enclave binary or Occlum image."""
    target = Path(path)
    if not target.exists():
        raise FileNotFoundError(f"no such file or directory: {path}")

    is_occlum = False
    binary = target
    if target.is_dir():
        binary = target / OCCLUM_LIBOS
        if not binary.exists():
            cprint("ERROR: A directory was supplied, but it appears not to be an Occlum instance.", "red")
            cprint(
                "Please either specify the SGX enclave binary directly, or the root of an Occlum instance.",
                "red",
            )
            raise FileNotFoundError(f"no such file or directory: {binary}")
        is_occlum = True

    meta = read_elf_section(binary, SGX_META_SECTION)
    if is_occlum:
        cprint("Detected Occlum image.", "green")
    if meta is None:
        raise ValueError("could not find SGX metadata section (.note.sgxmeta) in given file")

    properties = parse_sig_struct(meta)

    if is_occlum:
        cprint(f"PackageProperties for Occlum image at '{path}':\n", "cyan")
    else:
        cprint(f"PackageProperties for '{path}':\n", "cyan")
    print(f"UniqueID (MRENCLAVE)      : {properties.unique_id.hex()}")
    print(f"SignerID (MRSIGNER)       : {properties.signer_id.hex()}")
    print(f"ProductID (ISVPRODID)     : {properties.product_id}")
    print(f"SecurityVersion (ISVSVN)  : {properties.security_version}")
    return properties