"""
Certificates for etcd.

Generates the cluster CA and the etcd certificate/key pair. The same pair
serves etcd's own TLS listeners and authenticates kubeferry as a client,
so it is issued for both server and client auth and carries every etcd
host's addresses as subject alternative names.
"""

import datetime
import ipaddress
import os
import ssl
import tempfile
from dataclasses import dataclass
from functools import cached_property

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from kubeferry.config import config
from kubeferry.models.host import Host
from kubeferry.pki.exceptions import CertificateGenerationError, PKIError
from kubeferry.utils.logger import get_logger

logger = get_logger(__name__)

CA_CERT_NAME = "kube-ca"
ETCD_CERT_NAME = "kube-etcd"

RSA_KEY_SIZE = 2048
DEFAULT_VALIDITY_DAYS = 3650


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class CertificateAuthority:
    """Cluster CA certificate and key, PEM encoded."""

    cert_pem: bytes
    key_pem: bytes

    @cached_property
    def certificate(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.cert_pem)

    @cached_property
    def private_key(self) -> rsa.RSAPrivateKey:
        return serialization.load_pem_private_key(self.key_pem, password=None)


@dataclass(frozen=True)
class EtcdClientIdentity:
    """
    CA-signed certificate and key used to talk to etcd over TLS.

    Created once per cluster bring-up and never changed afterwards, so it is
    safe to share between concurrent health checks.
    """

    ca_cert_pem: bytes
    cert_pem: bytes
    key_pem: bytes

    @cached_property
    def certificate(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.cert_pem)

    def ssl_context(self) -> ssl.SSLContext:
        """
        Client TLS context presenting this identity.

        Server certificates are not verified: the transport underneath is the
        host's SSH tunnel (or the operator's own network), which is what this
        client trusts, not the X.509 chain.
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        # ssl can only load a certificate chain from files
        with tempfile.TemporaryDirectory(prefix="kubeferry-") as tmp_dir:
            cert_file = os.path.join(tmp_dir, "cert.pem")
            key_file = os.path.join(tmp_dir, "key.pem")
            with open(cert_file, "wb") as f:
                f.write(self.cert_pem)
            with open(key_file, "wb", opener=lambda p, fl: os.open(p, fl, 0o600)) as f:
                f.write(self.key_pem)
            try:
                context.load_cert_chain(cert_file, key_file)
            except ssl.SSLError as e:
                raise PKIError(f"Invalid etcd client certificate/key pair: {e}") from e

        return context


# =============================================================================
# Generation
# =============================================================================


def _new_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def _private_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def generate_ca(validity_days: int = DEFAULT_VALIDITY_DAYS) -> CertificateAuthority:
    """Generate a self-signed cluster CA."""
    try:
        key = _new_private_key()
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(_name(CA_CERT_NAME))
            .issuer_name(_name(CA_CERT_NAME))
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise CertificateGenerationError(CA_CERT_NAME, str(e)) from e

    logger.debug(f"Generated {CA_CERT_NAME} CA certificate")
    return CertificateAuthority(
        cert_pem=cert.public_bytes(serialization.Encoding.PEM),
        key_pem=_private_key_pem(key),
    )


def etcd_alt_names(
    etcd_hosts: list[Host], cluster_domain: str | None = None
) -> list[x509.GeneralName]:
    """
    Subject alternative names for the etcd certificate.

    Covers each host's address, internal address and hostname, the loopback
    names etcdctl uses from inside a host-network helper, and the in-cluster
    kubernetes service names.
    """
    cluster_domain = cluster_domain or config.CLUSTER_DOMAIN
    names: list[str] = []
    for host in etcd_hosts:
        names.extend([host.address, host.internal_address, host.hostname])
    names.extend(["127.0.0.1", "localhost"])
    names.extend(
        [
            "kubernetes",
            "kubernetes.default",
            "kubernetes.default.svc",
            f"kubernetes.default.svc.{cluster_domain}",
        ]
    )

    seen: set[str] = set()
    alt_names: list[x509.GeneralName] = []
    for name in names:
        if not name or name in seen:
            continue
        seen.add(name)
        try:
            alt_names.append(x509.IPAddress(ipaddress.ip_address(name)))
        except ValueError:
            alt_names.append(x509.DNSName(name))
    return alt_names


def generate_etcd_identity(
    ca: CertificateAuthority,
    etcd_hosts: list[Host],
    cluster_domain: str | None = None,
    validity_days: int = DEFAULT_VALIDITY_DAYS,
) -> EtcdClientIdentity:
    """
    Issue the etcd certificate/key pair signed by the cluster CA.

    Args:
        ca: Cluster CA.
        etcd_hosts: Every etcd host, for the SAN list.
        cluster_domain: Kubernetes cluster domain (defaults to
            ``config.CLUSTER_DOMAIN``).
        validity_days: Certificate lifetime.
    """
    try:
        key = _new_private_key()
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(_name(ETCD_CERT_NAME))
            .issuer_name(ca.certificate.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=validity_days))
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
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
                ),
                critical=False,
            )
            .add_extension(
                x509.SubjectAlternativeName(etcd_alt_names(etcd_hosts, cluster_domain)), critical=False
            )
            .sign(ca.private_key, hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise CertificateGenerationError(ETCD_CERT_NAME, str(e)) from e

    logger.info(f"[certificates] Generated {ETCD_CERT_NAME} certificate for {len(etcd_hosts)} etcd hosts")
    return EtcdClientIdentity(
        ca_cert_pem=ca.cert_pem,
        cert_pem=cert.public_bytes(serialization.Encoding.PEM),
        key_pem=_private_key_pem(key),
    )
