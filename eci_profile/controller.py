"""Wiring of the ECI profile service."""

import logging
import threading
from typing import Any, Dict, List

from kubernetes import client

from .cert import Issuer
from .config import RESYNC_PERIOD_SECONDS, SERVICE_NAMESPACE, WEBHOOK_PORT
from .crd_client import SelectorClient
from .errors import CacheLookupError
from .policy import PatchInstruction, PolicyManager
from .reconciler import SelectorEventLogger, UnscheduledReconciler
from .resolver import SelectorResolver
from .resource_cache import ResourceCache
from .utils import pod_name
from .webhook import WebhookServer

logger = logging.getLogger(__name__)


class ProfileController:
    """
    Admission webhook plus unscheduled-pod reconciler, sharing one
    resource cache, resolver and policy manager.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        issuer: Issuer,
        port: int = WEBHOOK_PORT,
        service_namespace: str = SERVICE_NAMESPACE,
        resync_period: int = RESYNC_PERIOD_SECONDS
    ):
        """
        Initialize the controller.

        Args:
            api_client: Shared API client
            issuer: Certificate issuer holding the CA
            port: Webhook port
            service_namespace: Namespace of the webhook Service

        Raises:
            BootstrapError: If the webhook server cannot be set up
        """
        self.api_client = api_client
        self.cache = ResourceCache(api_client, resync_period=resync_period)
        self.resolver = SelectorResolver(self.cache)
        self.policy_manager = PolicyManager()
        self.reconciler = UnscheduledReconciler(self.resolver, self.policy_manager, client.CoreV1Api(api_client))
        self.webhook_server = WebhookServer(
            api_client,
            self.on_pod_creating,
            issuer,
            port=port,
            service_namespace=service_namespace,
        )

        self.cache.add_selector_event_handler(SelectorEventLogger())
        self.cache.add_pod_event_handler(self.reconciler)

        self._stop_event = threading.Event()

    def on_pod_creating(self, pod: Dict[str, Any]) -> List[PatchInstruction]:
        """Resolve the Selector for a Pod under admission and build its patches."""
        selector = self.resolver.resolve(pod)
        if selector is None:
            logger.debug(f"No selector matched for pod {pod_name(pod)}, skip it")
            return []

        uid = (pod.get("metadata") or {}).get("uid")
        logger.info(f"Pod {pod_name(pod)}({uid}) matched the selector {selector.name}({selector.uid})")
        return self.policy_manager.on_pod_creating(selector, pod)

    def check_selector_crd(self) -> None:
        """Log how many Selectors exist, warning if the CRD is missing."""
        try:
            selectors = SelectorClient(self.api_client).list_selectors()
        except CacheLookupError as e:
            logger.warning(str(e))
            return
        logger.info(f"Found {len(selectors.get('items') or [])} existing selector(s)")

    def run(self) -> None:
        """Start the caches, wait for them to sync, then serve the webhook."""
        logger.info("=" * 60)
        logger.info("Starting ECI profile service")
        logger.info("=" * 60)

        self.check_selector_crd()

        logger.info("Ready to start resource cache")
        self.cache.run(self._stop_event)

        logger.info("Waiting for resource cache syncing")
        if not self.cache.wait_for_cache_sync(self._stop_event):
            logger.info("Stopped before resource cache synced")
            return
        logger.info("Resource cache has synced")

        self.webhook_server.run()

    def stop(self) -> None:
        """Stop the informers and the webhook listener."""
        logger.info("Stopping ECI profile service...")
        self._stop_event.set()
        self.webhook_server.shutdown()
