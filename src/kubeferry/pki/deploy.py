"""Writing etcd certificates onto hosts over SSH."""

import shlex

from kubeferry.config import ClusterConfig, config
from kubeferry.hosts.exceptions import HostError
from kubeferry.hosts.ssh import run_ssh_command
from kubeferry.models.host import Host
from kubeferry.pki.certs import CA_CERT_NAME, ETCD_CERT_NAME, EtcdClientIdentity
from kubeferry.pki.exceptions import CertificateDeployError
from kubeferry.utils.logger import get_logger

logger = get_logger(__name__)


def certificate_files(identity: EtcdClientIdentity) -> list[tuple[str, bytes, str]]:
    """(filename, content, mode) for every file etcd needs."""
    return [
        (f"{CA_CERT_NAME}.pem", identity.ca_cert_pem, "644"),
        (f"{ETCD_CERT_NAME}.pem", identity.cert_pem, "644"),
        (f"{ETCD_CERT_NAME}-key.pem", identity.key_pem, "600"),
    ]


async def deploy_etcd_certificates(
    host: Host,
    identity: EtcdClientIdentity,
    settings: ClusterConfig | None = None,
) -> None:
    """
    Write the CA and etcd certificate/key into the host's ``CERT_DIR``.

    Raises:
        CertificateDeployError: If any remote command fails.
    """
    settings = settings or config
    cert_dir = shlex.quote(settings.CERT_DIR)

    logger.info(f"[certificates] Deploying etcd certificates to host [{host.hostname}]")
    try:
        await run_ssh_command(host, f"mkdir -p {cert_dir}", settings)
        for filename, content, mode in certificate_files(identity):
            path = shlex.quote(settings.get_cert_path(filename))
            await run_ssh_command(
                host,
                "sh -c " + shlex.quote(f"cat > {path} && chmod {mode} {path}"),
                settings,
                input=content.decode(),
            )
    except HostError as e:
        raise CertificateDeployError(host.hostname, str(e)) from e
    logger.debug(f"[certificates] Certificates written to {settings.CERT_DIR} on [{host.hostname}]")
