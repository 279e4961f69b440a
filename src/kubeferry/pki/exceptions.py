"""PKI exception classes."""


class PKIError(Exception):
    """Base exception for certificate handling."""

    pass


class CertificateGenerationError(PKIError):
    """Certificate or key generation failed."""

    def __init__(self, common_name: str, reason: str):
        self.common_name = common_name
        super().__init__(f"Failed to generate {common_name} certificate: {reason}")


class CertificateDeployError(PKIError):
    """Certificates could not be written to a host."""

    def __init__(self, hostname: str, reason: str):
        self.hostname = hostname
        super().__init__(f"Failed to deploy etcd certificates to host [{hostname}]: {reason}")
