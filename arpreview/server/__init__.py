"""Local HTTPS static file server for testing the AR demo on mobile devices."""

from .certs import CertificateProvisioner
from .listener import MIME_TYPES, StaticFileHandler, StaticServer, create_server

__all__ = [
    "CertificateProvisioner",
    "MIME_TYPES",
    "StaticFileHandler",
    "StaticServer",
    "create_server",
]
