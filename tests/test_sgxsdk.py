import hashlib
import struct

import pytest

from marblectl.sgxsdk import (
    SIG_STRUCT_HEADER,
    SIG_STRUCT_HEADER2,
    SIG_STRUCT_SIZE,
    decode_sig_struct,
    parse_sig_struct,
    read_elf_section,
)

MODULUS = bytes(range(256)) + bytes(range(128))
MRENCLAVE = bytes(range(100, 132))


def make_sig_struct(prod_id=3, svn=7, with_second_header=True):
    sig = bytearray(SIG_STRUCT_SIZE)
    sig[0:16] = SIG_STRUCT_HEADER
    if with_second_header:
        sig[24:40] = SIG_STRUCT_HEADER2
    sig[128:512] = MODULUS
    sig[960:992] = MRENCLAVE
    sig[1024:1026] = prod_id.to_bytes(2, "little")
    sig[1026:1028] = svn.to_bytes(2, "little")
    return bytes(sig)


def make_meta(**kwargs):
    return bytes(20) + make_sig_struct(**kwargs) + bytes(8)


def build_elf(sections, *, elf64=True, big=False):
    order = ">" if big else "<"
    names = list(sections) + [".shstrtab"]
    shstrtab = b"\0"
    name_offsets = {}
    for name in names:
        name_offsets[name] = len(shstrtab)
        shstrtab += name.encode() + b"\0"
    contents = {**sections, ".shstrtab": shstrtab}
    ehsize = 64 if elf64 else 52
    body = b""
    offsets = {}
    for name in names:
        offsets[name] = ehsize + len(body)
        body += contents[name]
    shoff = ehsize + len(body)
    sh_fmt = order + ("IIQQQQIIQQ" if elf64 else "IIIIIIIIII")
    shentsize = struct.calcsize(sh_fmt)
    headers = struct.pack(sh_fmt, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)
    for name in names:
        stype = 3 if name == ".shstrtab" else 7
        headers += struct.pack(
            sh_fmt, name_offsets[name], stype, 0, 0, offsets[name], len(contents[name]), 0, 0, 1, 0
        )
    ident = b"\x7fELF" + bytes([2 if elf64 else 1, 2 if big else 1, 1]) + bytes(9)
    hdr_fmt = order + ("16sHHIQQQIHHHHHH" if elf64 else "16sHHIIIIIHHHHHH")
    header = struct.pack(
        hdr_fmt, ident, 3, 62, 1, 0, 0, shoff, 0, ehsize, 0, 0, shentsize, len(names) + 1, len(names)
    )
    return header + body + headers


def test_parse_sig_struct_extracts_fields():
    props = parse_sig_struct(make_meta(prod_id=3, svn=7))
    assert props.unique_id == MRENCLAVE
    assert props.signer_id == hashlib.sha256(MODULUS).digest()
    assert props.product_id == 3
    assert props.security_version == 7


def test_parse_sig_struct_without_header():
    with pytest.raises(ValueError, match="could not find SIGSTRUCT header"):
        parse_sig_struct(bytes(4000))


def test_parse_sig_struct_exactly_at_cutoff_is_too_small():
    data = bytes(20) + make_sig_struct()
    with pytest.raises(ValueError, match="too small"):
        parse_sig_struct(data)


def test_parse_sig_struct_missing_second_header():
    with pytest.raises(ValueError, match="cannot find second one"):
        parse_sig_struct(make_meta(with_second_header=False))


@pytest.mark.parametrize("elf64,big", [(True, False), (False, True)])
def test_read_elf_section(tmp_path, elf64, big):
    binary = tmp_path / "enclave.so"
    binary.write_bytes(build_elf({".text": b"code", ".note.sgxmeta": b"meta"}, elf64=elf64, big=big))
    assert read_elf_section(binary, ".note.sgxmeta") == b"meta"
    assert read_elf_section(binary, ".text") == b"code"
    assert read_elf_section(binary, ".missing") is None


def test_read_elf_section_rejects_non_elf(tmp_path):
    binary = tmp_path / "plain.txt"
    binary.write_bytes(b"not an elf file at all")
    with pytest.raises(ValueError):
        read_elf_section(binary, ".note.sgxmeta")


def test_decode_sig_struct_from_binary(tmp_path, capsys):
    binary = tmp_path / "enclave.signed.so"
    binary.write_bytes(build_elf({".note.sgxmeta": make_meta(prod_id=5, svn=9)}))
    props = decode_sig_struct(binary)
    assert props.product_id == 5
    assert props.security_version == 9
    out = capsys.readouterr().out
    assert f"UniqueID (MRENCLAVE)      : {MRENCLAVE.hex()}" in out
    assert "ProductID (ISVPRODID)     : 5" in out


def test_decode_sig_struct_from_occlum_directory(tmp_path, capsys):
    lib = tmp_path / "build" / "lib"
    lib.mkdir(parents=True)
    (lib / "libocclum-libos.signed.so").write_bytes(build_elf({".note.sgxmeta": make_meta()}))
    props = decode_sig_struct(tmp_path)
    assert props.unique_id == MRENCLAVE
    assert "Detected Occlum image." in capsys.readouterr().out


def test_decode_sig_struct_directory_without_occlum(tmp_path):
    with pytest.raises(FileNotFoundError):
        decode_sig_struct(tmp_path)


def test_decode_sig_struct_without_meta_section(tmp_path):
    binary = tmp_path / "plain.so"
    binary.write_bytes(build_elf({".text": b"code"}))
    with pytest.raises(ValueError, match=r"\.note\.sgxmeta"):
        decode_sig_struct(binary)


def test_decode_sig_struct_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        decode_sig_struct(tmp_path / "absent.so")