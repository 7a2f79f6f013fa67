"""Idempotent registration of the MutatingWebhookConfiguration."""

import base64
import logging
from typing import Any, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..config import (
    MUTATING_NAME,
    SERVICE_NAMESPACE,
    WEBHOOK_NAME,
    WEBHOOK_NAME_V1BETA1,
    WEBHOOK_PATH,
    WEBHOOK_PORT,
    WEBHOOK_TIMEOUT_SECONDS,
)
from ..errors import BootstrapError

logger = logging.getLogger(__name__)

ADMISSIONREGISTRATION_V1 = "admissionregistration.k8s.io/v1"
ADMISSIONREGISTRATION_V1BETA1 = "admissionregistration.k8s.io/v1beta1"

JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


def build_mutating_webhook(
    ca_bundle: bytes,
    admission_v1: bool = True,
    service_namespace: str = SERVICE_NAMESPACE,
    port: int = WEBHOOK_PORT
) -> Dict[str, Any]:
    """
    Build the single webhook entry intercepting Pod creation.

    Args:
        ca_bundle: CA certificate PEM the API server uses to verify the webhook
        admission_v1: Build for admissionregistration.k8s.io/v1 instead of v1beta1
    """
    return {
        "name": WEBHOOK_NAME if admission_v1 else WEBHOOK_NAME_V1BETA1,
        "clientConfig": {
            "caBundle": base64.b64encode(ca_bundle).decode(),
            "service": {
                "namespace": service_namespace,
                "name": MUTATING_NAME,
                "path": WEBHOOK_PATH,
                "port": port,
            },
        },
        "rules": [{
            "operations": ["CREATE"],
            "apiGroups": [""],
            "apiVersions": ["v1"],
            "resources": ["pods", "pods/binding"],
            "scope": "*",
        }],
        "failurePolicy": "Ignore",
        "matchPolicy": "Equivalent",
        "sideEffects": "NoneOnDryRun" if admission_v1 else "Unknown",
        "timeoutSeconds": WEBHOOK_TIMEOUT_SECONDS,
        "admissionReviewVersions": ["v1", "v1beta1"] if admission_v1 else ["v1beta1"],
        "reinvocationPolicy": "Never",
    }


class WebhookRegistrar:
    """Creates or updates the MutatingWebhookConfiguration under a fixed name."""

    def __init__(
        self,
        api_client: client.ApiClient,
        ca_bundle: bytes,
        admission_v1: bool = True,
        service_namespace: str = SERVICE_NAMESPACE,
        port: int = WEBHOOK_PORT,
        name: str = MUTATING_NAME
    ):
        self.api_client = api_client
        self.admission_api = client.AdmissionregistrationV1Api(api_client)
        self.ca_bundle = ca_bundle
        self.admission_v1 = admission_v1
        self.service_namespace = service_namespace
        self.port = port
        self.name = name

    @property
    def api_version(self) -> str:
        return ADMISSIONREGISTRATION_V1 if self.admission_v1 else ADMISSIONREGISTRATION_V1BETA1

    def _request_v1beta1(self, method: str, name: Optional[str] = None,
                         body: Any = None, content_type: str = "application/json") -> Any:
        """
        Send a raw admissionregistration.k8s.io/v1beta1 request.

        The generated client no longer ships this group, so the request goes
        straight to the REST client with the configured bearer token.

        Raises:
            ApiException: If the API server answers with a non-2xx status
        """
        rate_limiter = getattr(self.api_client, "rate_limiter", None)
        if rate_limiter is not None:
            rate_limiter.acquire()

        configuration = self.api_client.configuration
        path = f"/apis/{ADMISSIONREGISTRATION_V1BETA1}/mutatingwebhookconfigurations"
        if name:
            path = f"{path}/{name}"

        headers = dict(self.api_client.default_headers)
        headers.update({"Accept": "application/json", "Content-Type": content_type})
        for auth in configuration.auth_settings().values():
            if auth.get("in") == "header" and auth.get("value"):
                headers[auth["key"]] = auth["value"]

        response = self.api_client.rest_client.request(
            method, configuration.host + path, headers=headers, body=body
        )
        if not 200 <= response.status <= 299:
            raise ApiException(status=response.status, reason=response.reason)
        return response

    def _read(self) -> Any:
        if self.admission_v1:
            return self.admission_api.read_mutating_webhook_configuration(self.name)
        return self._request_v1beta1("GET", self.name)

    def _create(self, body: Dict[str, Any]) -> Any:
        if self.admission_v1:
            return self.admission_api.create_mutating_webhook_configuration(body)
        return self._request_v1beta1("POST", body=body)

    def _patch(self, patch: List[Dict[str, Any]]) -> Any:
        if self.admission_v1:
            return self.admission_api.patch_mutating_webhook_configuration(
                self.name, patch, _content_type=JSON_PATCH_CONTENT_TYPE
            )
        return self._request_v1beta1("PATCH", self.name, body=patch, content_type=JSON_PATCH_CONTENT_TYPE)

    def webhooks(self) -> List[Dict[str, Any]]:
        return [build_mutating_webhook(
            self.ca_bundle,
            admission_v1=self.admission_v1,
            service_namespace=self.service_namespace,
            port=self.port,
        )]

    def delete_stale_v1beta1(self) -> None:
        """Best-effort removal of a configuration registered with the old schema."""
        try:
            self._request_v1beta1("DELETE", self.name)
            logger.info(f"Deleted stale v1beta1 MutatingWebhookConfiguration {self.name!r}")
        except ApiException as e:
            if e.status != 404:
                logger.warning(f"[v1] delete {self.name!r} v1beta1 MutatingWebhookConfiguration failed: {e.status} {e.reason}")

    def register(self) -> None:
        """
        Create the configuration, or replace its webhooks when it exists.

        Raises:
            BootstrapError: If the configuration cannot be read, created or patched
        """
        tag = "v1" if self.admission_v1 else "v1beta1"
        if self.admission_v1:
            self.delete_stale_v1beta1()

        webhooks = self.webhooks()
        try:
            self._read()
        except ApiException as e:
            if e.status != 404:
                raise BootstrapError(f"get {self.name!r} mutating admission failed: {e.status} {e.reason}") from e

            logger.info(f"[{tag}] create {self.name!r} MutatingWebhookConfiguration ......")
            body = {
                "apiVersion": self.api_version,
                "kind": "MutatingWebhookConfiguration",
                "metadata": {"name": self.name},
                "webhooks": webhooks,
            }
            try:
                self._create(body)
            except ApiException as create_error:
                raise BootstrapError(
                    f"create {self.name!r} MutatingWebhookConfiguration failed: "
                    f"{create_error.status} {create_error.reason}"
                ) from create_error
            logger.info(f"[{tag}] created {self.name!r} MutatingWebhookConfiguration")
            return

        patch = [{"op": "replace", "path": "/webhooks", "value": webhooks}]
        try:
            self._patch(patch)
        except ApiException as e:
            raise BootstrapError(f"error patching MutatingWebhookConfiguration {self.name!r}: {e.status} {e.reason}") from e
        logger.info(f"[{tag}] patched {self.name!r} MutatingWebhookConfiguration")
