"""
Static file listener

Serves a directory over HTTPS with the provisioned certificate, or over
plain HTTP on the fallback port when no certificate could be generated.
"""

import functools
import logging
import os
import ssl
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from typing import List, Optional

from arpreview.config import ServerSettings
from arpreview.exceptions import CertificateError
from arpreview.server.certs import CertificateProvisioner

logger = logging.getLogger(__name__)

# AR assets that mimetypes doesn't know (or gets wrong) on every platform
MIME_TYPES = {
    '.glb': 'model/gltf-binary',
    '.gltf': 'model/gltf+json',
    '.usdz': 'model/vnd.usdz+zip',
    '.mind': 'application/octet-stream',
    '.js': 'application/javascript',
    '.mjs': 'application/javascript',
    '.wasm': 'application/wasm',
}


class StaticFileHandler(SimpleHTTPRequestHandler):
    extensions_map = {**SimpleHTTPRequestHandler.extensions_map, **MIME_TYPES}

    def log_message(self, format, *args):
        logger.info(f"{self.address_string()} - {format % args}")


class StaticServer:
    """A bound (not yet serving) static file server"""

    def __init__(self, httpd: ThreadingHTTPServer, secure: bool, directory: str):
        self.httpd = httpd
        self.secure = secure
        self.directory = directory

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    @property
    def port(self) -> int:
        return self.httpd.server_address[1]

    @property
    def url(self) -> str:
        return f"{self.scheme}://localhost:{self.port}"

    def banner(self) -> List[str]:
        """Operator instructions shown once the port is bound"""
        if not self.secure:
            return [
                "",
                f"✅ Server running at {self.url}",
                "⚠️  Note: Camera access requires HTTPS. Use chrome://flags/#unsafely-treat-insecure-origin-as-secure",
            ]
        return [
            "",
            "✅ HTTPS Server running!",
            f"🌐 Local: {self.url}",
            "",
            "📱 Next steps:",
            "   1. Accept the self-signed certificate warning",
            "   2. Upload marker to public/assets/markers/target.mind",
            "   3. Add 3D model to public/assets/models/model.glb",
            "   4. Open on mobile device and grant camera permissions",
            "",
        ]

    def serve_forever(self) -> None:
        self.httpd.serve_forever()

    def shutdown(self) -> None:
        """Stop serve_forever() (from another thread) and close the socket"""
        self.httpd.shutdown()
        self.httpd.server_close()


def create_server(
    settings: Optional[ServerSettings] = None,
    provisioner: Optional[CertificateProvisioner] = None,
) -> StaticServer:
    """
    Provision a certificate and bind the listener.

    A failed certificate generation is logged once and downgrades to plain
    HTTP on ``settings.fallback_port``; it is never fatal.
    """
    settings = settings or ServerSettings()
    provisioner = provisioner or CertificateProvisioner.from_settings(settings)

    try:
        provisioner.ensure()
    except CertificateError as e:
        logger.error(f"Failed to generate certificate: {e}")
        logger.warning(f"Starting HTTP server instead on port {settings.fallback_port}...")
        return _bind(settings, settings.fallback_port, None)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile=provisioner.cert_path, keyfile=provisioner.key_path)
    return _bind(settings, settings.port, context)


def _bind(settings: ServerSettings, port: int, context: Optional[ssl.SSLContext]) -> StaticServer:
    directory = os.path.abspath(settings.directory)
    handler = functools.partial(StaticFileHandler, directory=directory)
    httpd = ThreadingHTTPServer((settings.host, port), handler)

    if context is not None:
        httpd.socket = context.wrap_socket(httpd.socket, server_side=True)

    server = StaticServer(httpd, secure=context is not None, directory=directory)
    logger.info(f"Serving {directory} at {server.url}")
    return server
