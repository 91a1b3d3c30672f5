"""
Self-signed certificate provisioning via the openssl CLI.
"""

import logging
import os
import shutil
import subprocess
from typing import List, Optional

from arpreview.config import ServerSettings
from arpreview.exceptions import CertificateError

logger = logging.getLogger(__name__)


class CertificateProvisioner:
    """
    Makes sure a certificate/key pair exists, generating a self-signed one
    with ``openssl req -x509`` when either file is missing.

    Example:
        >>> provisioner = CertificateProvisioner("cert.pem", "key.pem")
        >>> provisioner.ensure()   # True if a new pair was generated
    """

    def __init__(
        self,
        cert_path: str,
        key_path: str,
        common_name: str = "localhost",
        key_size: int = 2048,
        validity_days: int = 365,
        openssl_path: Optional[str] = None,
    ):
        self.cert_path = cert_path
        self.key_path = key_path
        self.common_name = common_name
        self.key_size = key_size
        self.validity_days = validity_days
        self.openssl_path = openssl_path

    @classmethod
    def from_settings(cls, settings: ServerSettings) -> "CertificateProvisioner":
        return cls(
            cert_path=settings.cert_path,
            key_path=settings.key_path,
            common_name=settings.common_name,
            key_size=settings.key_size,
            validity_days=settings.validity_days,
            openssl_path=settings.openssl_path,
        )

    def exists(self) -> bool:
        return os.path.exists(self.cert_path) and os.path.exists(self.key_path)

    def ensure(self) -> bool:
        """
        Generate the pair if either file is missing.

        Returns:
            True if a new pair was generated, False if both files existed

        Raises:
            CertificateError: If generation fails
        """
        if self.exists():
            return False
        self.generate()
        return True

    def command(self, openssl: str) -> List[str]:
        return [
            openssl, "req", "-x509",
            "-newkey", f"rsa:{self.key_size}",
            "-keyout", self.key_path,
            "-out", self.cert_path,
            "-days", str(self.validity_days),
            "-nodes",
            "-subj", f"/CN={self.common_name}",
        ]

    def generate(self) -> None:
        openssl = self.openssl_path or _find_openssl()
        if not openssl:
            raise CertificateError(
                "openssl not found. Install OpenSSL or set OPENSSL_PATH environment variable."
            )

        logger.info("Generating self-signed certificate...")
        try:
            result = subprocess.run(self.command(openssl), capture_output=True, text=True)
        except OSError as e:
            raise CertificateError(f"Could not run {openssl}: {e}") from e

        if result.returncode != 0:
            raise CertificateError(
                f"openssl exited with status {result.returncode}.\n"
                f"Error: {result.stderr.strip()}"
            )

        if not self.exists():
            raise CertificateError(
                f"openssl reported success but {self.cert_path} / {self.key_path} were not created"
            )

        logger.info(f"Generated {self.cert_path} and {self.key_path} (CN={self.common_name}, {self.validity_days} days)")


def _find_openssl() -> Optional[str]:
    """Find the openssl executable"""
    if os.getenv("OPENSSL_PATH"):
        return os.getenv("OPENSSL_PATH")
    return shutil.which("openssl")
