"""
Script: ci_helpers/regtest/certs.py
What: Self-signed TLS material for test registries.
Doing: Generates an RSA key and a certificate whose SANs cover the given hostnames and IPs.
Why: TLS registries need a certificate that clients can be told to trust or skip.
Goal: Write server.crt and server.key into a throwaway directory.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

CERT_FILE_NAME = "server.crt"
KEY_FILE_NAME = "server.key"
CERT_LIFETIME = timedelta(hours=24)


def _subject_alt_name(hostname: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(hostname))
    except ValueError:
        return x509.DNSName(hostname)


def generate_certs(directory: Path, hostnames: Sequence[str] = ("localhost",)) -> tuple[Path, Path]:
    """
    Write a self-signed certificate and its RSA key into `directory`.

    Files are named `server.crt` / `server.key`, the names the registry image
    is pointed at. Returns `(cert_path, key_path)`.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostnames[0])])
    now = datetime.now(timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + CERT_LIFETIME)
        .add_extension(
            x509.SubjectAlternativeName([_subject_alt_name(name) for name in hostnames]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / CERT_FILE_NAME
    key_path = directory / KEY_FILE_NAME

    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    key_path.chmod(0o600)
    return cert_path, key_path
