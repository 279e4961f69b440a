"""Etcd certificates: generation and deployment."""

from kubeferry.pki.certs import (
    CertificateAuthority,
    EtcdClientIdentity,
    generate_ca,
    generate_etcd_identity,
)
from kubeferry.pki.deploy import deploy_etcd_certificates
from kubeferry.pki.exceptions import CertificateDeployError, CertificateGenerationError, PKIError

__all__ = [
    "CertificateAuthority",
    "EtcdClientIdentity",
    "generate_ca",
    "generate_etcd_identity",
    "deploy_etcd_certificates",
    "PKIError",
    "CertificateGenerationError",
    "CertificateDeployError",
]
