import datetime

import pytest
import responses
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from marblectl.coordinator import (
    Status,
    recover,
    save_certificate_chain,
    save_intermediate_certificate,
    save_root_certificate,
    status,
)
from marblectl.util import CoordinatorError, PemBlock, decode_blocks

HOST = "localhost:4433"


@pytest.fixture
def mock_http():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture(scope="module")
def cert_block():
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return PemBlock("CERTIFICATE", cert.public_bytes(serialization.Encoding.DER))


def test_status_success(cert_block, capsys, mock_http):
    mock_http.add(
        responses.GET,
        f"https://{HOST}/status",
        json={"status": "success", "data": {"StatusCode": 1, "StatusMessage": "Test Server waiting"}},
    )
    result = status(HOST, [cert_block])
    assert result == Status(1, "Test Server waiting")
    assert "1: Test Server waiting" in capsys.readouterr().out


def test_status_server_error(cert_block, mock_http):
    mock_http.add(responses.GET, f"https://{HOST}/status", status=500)
    with pytest.raises(CoordinatorError, match="500"):
        status(HOST, [cert_block])


def test_status_missing_data(cert_block, mock_http):
    mock_http.add(responses.GET, f"https://{HOST}/status", json={"status": "success"})
    with pytest.raises(CoordinatorError):
        status(HOST, [cert_block])


def _recover_callback(request):
    assert request.headers["Content-Type"] == "text/plain"
    if request.body == b"Return Error":
        return (400, {}, "")
    body = '{"status": "success", "data": {"StatusMessage": "Recovery successful."}}'
    return (200, {"Content-Type": "application/json"}, body)


def test_recover(cert_block, mock_http):
    mock_http.add_callback(responses.POST, f"https://{HOST}/recover", callback=_recover_callback)
    assert recover(HOST, b"\xaa\xaa", [cert_block]) == "Recovery successful."
    with pytest.raises(CoordinatorError, match="400"):
        recover(HOST, b"Return Error", [cert_block])


def test_save_root_certificate(tmp_path):
    inter = PemBlock("CERTIFICATE", b"intermediate")
    root = PemBlock("CERTIFICATE", b"root")
    out = save_root_certificate([inter, root], tmp_path / "root.crt")
    assert decode_blocks(out.read_bytes()) == [root]


def test_save_root_certificate_without_certs(tmp_path):
    with pytest.raises(CoordinatorError):
        save_root_certificate([], tmp_path / "root.crt")


def test_save_intermediate_certificate(tmp_path):
    inter = PemBlock("CERTIFICATE", b"intermediate")
    root = PemBlock("CERTIFICATE", b"root")
    target = tmp_path / "inter.crt"
    assert save_intermediate_certificate([inter, root], target) is True
    assert decode_blocks(target.read_bytes()) == [inter]


def test_save_intermediate_certificate_missing(tmp_path):
    target = tmp_path / "inter.crt"
    assert save_intermediate_certificate([PemBlock("CERTIFICATE", b"root")], target) is False
    assert not target.exists()


def test_save_certificate_chain(tmp_path):
    blocks = [PemBlock("CERTIFICATE", b"intermediate"), PemBlock("CERTIFICATE", b"root")]
    out = save_certificate_chain(blocks, tmp_path / "chain.crt")
    assert decode_blocks(out.read_bytes()) == blocks


def test_save_certificate_chain_single_warns(tmp_path, capsys):
    blocks = [PemBlock("CERTIFICATE", b"root")]
    out = save_certificate_chain(blocks, tmp_path / "chain.crt")
    assert decode_blocks(out.read_bytes()) == blocks
    assert "Only received root certificate" in capsys.readouterr().out