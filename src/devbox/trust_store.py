"""Local trust store for VM remoting certificates."""

import logging
import os
from pathlib import Path
from typing import List, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from devbox.exceptions import CertificateParseFailed
from devbox.models import TrustCertificate

logger = logging.getLogger(__name__)


def thumbprint_of(certificate: x509.Certificate) -> str:
    """SHA-1 thumbprint in the upper-case hex form Windows reports."""
    return certificate.fingerprint(hashes.SHA1()).hex().upper()  # noqa: S303


def to_trust_certificate(certificate: x509.Certificate) -> TrustCertificate:
    return TrustCertificate(
        thumbprint=thumbprint_of(certificate),
        subject=certificate.subject.rfc4514_string(),
        pem=certificate.public_bytes(serialization.Encoding.PEM),
    )


def parse_certificate(data: bytes) -> TrustCertificate:
    """Parse one PEM or DER encoded certificate.

    Raises:
        CertificateParseFailed: If the data is not a valid X.509 certificate
    """
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            certificate = x509.load_pem_x509_certificate(data)
        else:
            certificate = x509.load_der_x509_certificate(data)
    except ValueError as e:
        raise CertificateParseFailed(f"Invalid certificate data: {e}") from e
    return to_trust_certificate(certificate)


class PemTrustStore:
    """Trusted certificates kept in a single PEM bundle file.

    The bundle doubles as the CA file handed to the WinRM client, so a
    certificate added here is immediately trusted for remoting.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()

    def load_certificate(self, path: Union[str, Path]) -> TrustCertificate:
        """Parse the certificate stored at path without touching the store."""
        with open(path, "rb") as f:
            return parse_certificate(f.read())

    def list_certificates(self) -> List[TrustCertificate]:
        if not self.path.is_file():
            return []

        data = self.path.read_bytes()
        if not data.strip():
            return []
        try:
            certificates = x509.load_pem_x509_certificates(data)
        except ValueError as e:
            raise CertificateParseFailed(f"Trust store {self.path} is corrupt: {e}") from e
        return [to_trust_certificate(c) for c in certificates]

    def add(self, certificate: TrustCertificate) -> None:
        """Append a certificate to the bundle, creating the file if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        pem = certificate.pem if certificate.pem.endswith(b"\n") else certificate.pem + b"\n"
        with open(self.path, "ab") as f:
            f.write(pem)
        os.chmod(self.path, 0o644)
        logger.info(f"🔐 Trusted certificate {certificate.thumbprint} ({certificate.subject})")
