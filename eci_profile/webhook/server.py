"""HTTPS server hosting the admission webhook."""

import logging
import os
import ssl
import tempfile
from typing import List

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError
from werkzeug.serving import make_server

from ..cert import Issuer
from ..config import ADMISSION_V1_MIN_VERSION, MUTATING_NAME, SERVICE_NAMESPACE, WEBHOOK_PORT
from ..errors import BootstrapError
from ..utils import parse_server_version
from .admission import MutatePodFunc, create_app
from .registration import WebhookRegistrar

logger = logging.getLogger(__name__)


def supports_admission_v1(api_client: client.ApiClient) -> bool:
    """
    Ask the API server whether it serves admission.k8s.io/v1.

    Raises:
        BootstrapError: If the version cannot be read or parsed
    """
    try:
        info = client.VersionApi(api_client).get_code()
    except (ApiException, HTTPError) as e:
        raise BootstrapError(f"get cluster server version failed: {e}") from e

    version = parse_server_version(info.git_version)
    supported = version >= ADMISSION_V1_MIN_VERSION
    logger.info(f"ServerVersion: {info.git_version}, Major: {info.major}, Minor: {info.minor}, "
                f"SupportAdmissionV1: {supported}")
    return supported


def service_hosts(name: str, namespace: str) -> List[str]:
    return [name, f"{name}.{namespace}", f"{name}.{namespace}.svc"]


class WebhookServer:
    """Registers the webhook and serves it over TLS."""

    def __init__(
        self,
        api_client: client.ApiClient,
        mutate_pod: MutatePodFunc,
        issuer: Issuer,
        host: str = "0.0.0.0",
        port: int = WEBHOOK_PORT,
        service_namespace: str = SERVICE_NAMESPACE
    ):
        """
        Initialize the server.

        Args:
            api_client: Shared API client
            mutate_pod: Callback producing JSON Patch operations for a Pod
            issuer: Certificate issuer holding the CA
            host: Address to bind
            port: Port to bind, also advertised in the webhook service reference
            service_namespace: Namespace of the Service fronting this process

        Raises:
            BootstrapError: If the server version cannot be read
        """
        self.issuer = issuer
        self.host = host
        self.port = port
        self.service_namespace = service_namespace
        self.admission_v1 = supports_admission_v1(api_client)
        self.registrar = WebhookRegistrar(
            api_client,
            issuer.ca_data,
            admission_v1=self.admission_v1,
            service_namespace=service_namespace,
            port=port,
        )
        self.app = create_app(mutate_pod)
        self._server = None

    def ssl_context(self) -> ssl.SSLContext:
        """Issue a fresh serving certificate and load it into a TLS context."""
        cert_pem, key_pem = self.issuer.issue_csr(
            MUTATING_NAME, service_hosts(MUTATING_NAME, self.service_namespace)
        )
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        with tempfile.TemporaryDirectory() as cert_dir:
            cert_file = os.path.join(cert_dir, "tls.crt")
            key_file = os.path.join(cert_dir, "tls.key")
            with open(cert_file, "wb") as f:
                f.write(cert_pem)
            with open(key_file, "wb") as f:
                f.write(key_pem)
            context.load_cert_chain(cert_file, key_file)
        return context

    def run(self) -> None:
        """Register the webhook, then serve until shutdown() is called."""
        logger.info("Start to register mutating webhook")
        self.registrar.register()
        logger.info("Register mutating webhook successfully")

        try:
            context = self.ssl_context()
        except ssl.SSLError as e:
            raise BootstrapError(f"failed to load webhook server cert: {e}") from e

        self._server = make_server(self.host, self.port, self.app, threaded=True, ssl_context=context)
        logger.info(f"Webhook listening on {self.host}:{self.port}")
        self._server.serve_forever()

    def shutdown(self) -> None:
        """Stop accepting requests; in-flight requests are not drained."""
        if self._server is not None:
            logger.info("Shutting down webhook server...")
            self._server.shutdown()
            self._server.server_close()
