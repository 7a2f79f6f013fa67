"""Find the Selector that governs a Pod."""

import logging
from typing import Any, Dict, Optional

from .errors import CacheLookupError
from .selector import Selector, sort_by_priority

logger = logging.getLogger(__name__)


class SelectorResolver:
    """Matches Pods against cached Selectors and picks the winner."""

    def __init__(self, cache):
        """
        Initialize the resolver.

        Args:
            cache: ResourceCache (or anything with list_selectors/get_namespace)
        """
        self.cache = cache

    def resolve(self, pod: Dict[str, Any]) -> Optional[Selector]:
        """
        Find the highest-priority Selector matching a Pod.

        Equal priorities are ordered by Selector name.

        Args:
            pod: Pod object as a JSON dict

        Returns:
            The matching Selector, or None when nothing matches

        Raises:
            CacheLookupError: If listing Selectors or reading the namespace fails
            SelectorConfigError: If a Selector has a malformed predicate
        """
        selectors = self.cache.list_selectors()
        if not selectors:
            return None

        namespace_labels = None
        if any(s.namespace_labels is not None for s in selectors):
            namespace_labels = self._namespace_labels(pod)

        matched = [s for s in selectors if s.matches(pod, namespace_labels)]
        if not matched:
            return None
        return sort_by_priority(matched)[0]

    def _namespace_labels(self, pod: Dict[str, Any]) -> Dict[str, str]:
        namespace = (pod.get("metadata") or {}).get("namespace") or "default"
        try:
            ns = self.cache.get_namespace(namespace)
        except CacheLookupError as e:
            raise CacheLookupError(f"failed to get namespace labels: {e}") from e
        return (ns.get("metadata") or {}).get("labels") or {}
