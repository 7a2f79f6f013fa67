"""Serving certificates issued from an operator-supplied CA."""

import datetime
import logging
from typing import List, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .config import CERT_BACKDATE_HOURS, CERT_KEY_SIZE, CERT_VALIDITY_DAYS
from .errors import BootstrapError

logger = logging.getLogger(__name__)

_SUPPORTED_KEY_TYPES = (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey)


def load_private_key(pem_data: bytes):
    """
    Load a CA private key.

    PKCS#1 ("RSA PRIVATE KEY"), PKCS#8 ("PRIVATE KEY") and SEC1
    ("EC PRIVATE KEY") PEM blocks are accepted.
    """
    try:
        key = serialization.load_pem_private_key(pem_data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise BootstrapError(f"failed to parse private key: {e}") from e

    if not isinstance(key, _SUPPORTED_KEY_TYPES):
        raise BootstrapError(f"found unknown private key type {type(key).__name__}")
    return key


class Issuer:
    """Signs leaf serving certificates with a pre-provisioned CA."""

    def __init__(self, ca_cert_pem: bytes, ca_key_pem: bytes):
        """
        Initialize the issuer.

        Args:
            ca_cert_pem: CA certificate in PEM format
            ca_key_pem: CA private key in PEM format

        Raises:
            BootstrapError: If the CA material is missing or cannot be decoded
        """
        if not ca_cert_pem or not ca_key_pem:
            raise BootstrapError("CA certificate and key are required")

        try:
            self.ca_cert = x509.load_pem_x509_certificate(ca_cert_pem)
        except ValueError as e:
            raise BootstrapError(f"failed to parse CA certificate: {e}") from e

        self.ca_key = load_private_key(ca_key_pem)
        self.ca_data = ca_cert_pem

    @classmethod
    def from_files(cls, cert_path: str, key_path: str) -> "Issuer":
        if not cert_path or not key_path:
            raise BootstrapError("CA certificate and key paths are required for webhook TLS")
        try:
            with open(cert_path, "rb") as f:
                ca_cert_pem = f.read()
            with open(key_path, "rb") as f:
                ca_key_pem = f.read()
        except OSError as e:
            raise BootstrapError(f"failed to load CA files: {e}") from e

        logger.info(f"Creating cert issuer with CA {cert_path}")
        return cls(ca_cert_pem, ca_key_pem)

    def issue_csr(self, common_name: str, hosts: List[str]) -> Tuple[bytes, bytes]:
        """
        Issue a leaf certificate directly; no signing request is involved.

        Args:
            common_name: Subject common name
            hosts: DNS names for the subject alternative name extension

        Returns:
            (certificate PEM, private key PEM)
        """
        key = rsa.generate_private_key(public_exponent=65537, key_size=CERT_KEY_SIZE)

        # Backdated to absorb clock skew.
        valid_from = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(hours=CERT_BACKDATE_HOURS)
        valid_to = valid_from + datetime.timedelta(days=CERT_VALIDITY_DAYS)

        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
            .issuer_name(self.ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(valid_from)
            .not_valid_after(valid_to)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            )
        )
        if hosts:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(host) for host in hosts]),
                critical=False,
            )

        algorithm = None if isinstance(self.ca_key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
        certificate = builder.sign(private_key=self.ca_key, algorithm=algorithm)

        cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        logger.info(f"Issued serving certificate for {common_name} (hosts: {', '.join(hosts)})")
        return cert_pem, key_pem
