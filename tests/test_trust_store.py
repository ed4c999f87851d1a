"""Tests for trust_store module."""

import pytest
from cryptography.hazmat.primitives import serialization

from devbox.exceptions import CertificateParseFailed
from devbox.trust_store import PemTrustStore, parse_certificate


def test_parse_certificate_pem(vm_certificate_pem, vm_thumbprint):
    certificate = parse_certificate(vm_certificate_pem)

    assert certificate.thumbprint == vm_thumbprint
    assert certificate.subject == "CN=devbox-vm1"
    assert certificate.pem.startswith(b"-----BEGIN CERTIFICATE-----")


def test_parse_certificate_der(vm_certificate, vm_thumbprint):
    der = vm_certificate.public_bytes(serialization.Encoding.DER)

    certificate = parse_certificate(der)

    assert certificate.thumbprint == vm_thumbprint


def test_parse_certificate_invalid():
    with pytest.raises(CertificateParseFailed):
        parse_certificate(b"garbage")


def test_parse_certificate_truncated_pem(vm_certificate_pem):
    with pytest.raises(CertificateParseFailed):
        parse_certificate(vm_certificate_pem[:120])


def test_thumbprint_is_upper_case_sha1(vm_certificate_pem):
    thumbprint = parse_certificate(vm_certificate_pem).thumbprint

    assert len(thumbprint) == 40
    assert thumbprint == thumbprint.upper()


def test_list_certificates_missing_store(trust_store):
    assert trust_store.list_certificates() == []


def test_list_certificates_empty_file(trust_store):
    trust_store.path.parent.mkdir(parents=True)
    trust_store.path.write_text("\n")

    assert trust_store.list_certificates() == []


def test_add_creates_store_and_appends(trust_store, vm_certificate_pem, other_certificate_pem):
    first = parse_certificate(vm_certificate_pem)
    second = parse_certificate(other_certificate_pem)

    trust_store.add(first)
    trust_store.add(second)

    thumbprints = [c.thumbprint for c in trust_store.list_certificates()]
    assert thumbprints == [first.thumbprint, second.thumbprint]


def test_store_survives_reopening(tmp_path, vm_certificate_pem):
    path = tmp_path / "bundle.pem"
    PemTrustStore(path).add(parse_certificate(vm_certificate_pem))

    reopened = PemTrustStore(path)

    assert len(reopened.list_certificates()) == 1


def test_load_certificate_from_file(tmp_path, trust_store, vm_certificate_pem, vm_thumbprint):
    cert_file = tmp_path / "vm.cer"
    cert_file.write_bytes(vm_certificate_pem)

    certificate = trust_store.load_certificate(cert_file)

    assert certificate.thumbprint == vm_thumbprint
    assert not trust_store.path.exists()


def test_corrupt_store_raises(trust_store):
    trust_store.path.parent.mkdir(parents=True)
    trust_store.path.write_bytes(b"-----BEGIN CERTIFICATE-----\nnope\n-----END CERTIFICATE-----\n")

    with pytest.raises(CertificateParseFailed, match="corrupt"):
        trust_store.list_certificates()
