"""Client for interacting with the Selector CRD."""

import functools
import logging
from typing import Any, Callable, Dict, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import CRD_GROUP, CRD_VERSION, CRD_PLURAL
from .errors import CacheLookupError

logger = logging.getLogger(__name__)


class SelectorClient:
    """Client for cluster-scoped Selector custom resources."""

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        """
        Initialize the CRD client.

        Args:
            api_client: Shared API client, the default client when omitted
        """
        self.custom_api = client.CustomObjectsApi(api_client)

    @property
    def list_func(self) -> Callable[..., Dict[str, Any]]:
        """List call bound to the Selector CRD, usable with a watch stream."""
        return functools.partial(
            self.custom_api.list_cluster_custom_object,
            group=CRD_GROUP,
            version=CRD_VERSION,
            plural=CRD_PLURAL,
        )

    def list_selectors(self) -> Dict[str, Any]:
        """
        List all Selector objects.

        Returns:
            The SelectorList object

        Raises:
            CacheLookupError: If the API call fails
        """
        try:
            return self.list_func()
        except ApiException as e:
            if e.status == 404:
                logger.warning("Selector CRD not found. Please install the CRD first.")
            raise CacheLookupError(f"failed to list selectors: {e.reason}") from e
