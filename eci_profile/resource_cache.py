"""Watched, locally cached views of cluster resources."""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .config import CACHE_SYNC_POLL_SECONDS, RESYNC_PERIOD_SECONDS, WATCH_RETRY_SECONDS, WATCH_TIMEOUT_SECONDS
from .crd_client import SelectorClient
from .errors import CacheLookupError
from .selector import Selector, label_predicate_matches

logger = logging.getLogger(__name__)


def object_key(obj: Dict[str, Any]) -> str:
    """Store key of an object: namespace/name, or name for cluster-scoped kinds."""
    metadata = obj.get("metadata") or {}
    namespace = metadata.get("namespace")
    name = metadata.get("name", "")
    return f"{namespace}/{name}" if namespace else name


class Informer:
    """
    List+watch cache of a single resource kind.

    Objects are stored as JSON dicts. Event handlers expose
    ``on_add(obj)``, ``on_update(old, new)`` and ``on_delete(obj)`` and are
    called one at a time, in the order the events were applied.

    The kind is listed once and then watched from the list's resource
    version; it is only relisted after a watch error or an expired
    resource version. Every resync period the cached objects are
    re-delivered as ``on_update(obj, obj)``.
    """

    def __init__(
        self,
        kind: str,
        list_func: Callable[..., Any],
        api_client: Optional[client.ApiClient] = None,
        resync_period: int = RESYNC_PERIOD_SECONDS,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
        **list_kwargs
    ):
        self.kind = kind
        self._list_func = list_func
        self._list_kwargs = list_kwargs
        self._api_client = api_client or client.ApiClient()
        self._resync_period = resync_period
        self._watch_timeout = watch_timeout

        self._store: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        # Held while the store changes and its events are delivered.
        self._delivery_lock = threading.RLock()
        self._handlers: List[Any] = []
        self._synced = threading.Event()
        self._resource_version: Optional[str] = None

    @property
    def resource_version(self) -> Optional[str]:
        return self._resource_version

    def add_event_handler(self, handler) -> None:
        """Register a handler; objects already cached are delivered as adds."""
        with self._delivery_lock:
            with self._lock:
                self._handlers.append(handler)
                existing = list(self._store.values())
            for obj in existing:
                self._call(handler.on_add, obj)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def list(self, namespace: Optional[str] = None, labels: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """
        List cached objects.

        Args:
            namespace: Only objects in this namespace (None for all)
            labels: Only objects carrying all of these labels
        """
        with self._lock:
            objects = list(self._store.values())

        if namespace is not None:
            objects = [o for o in objects if (o.get("metadata") or {}).get("namespace") == namespace]
        if labels:
            predicate = {"matchLabels": labels}
            objects = [
                o for o in objects
                if label_predicate_matches(predicate, (o.get("metadata") or {}).get("labels"))
            ]
        return objects

    def get(self, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """
        Get a cached object.

        Raises:
            CacheLookupError: If the object is not cached
        """
        key = f"{namespace}/{name}" if namespace else name
        with self._lock:
            obj = self._store.get(key)
        if obj is None:
            raise CacheLookupError(f'{self.kind} "{key}" not found')
        return obj

    def replace(self, items: List[Dict[str, Any]], resource_version: Optional[str]) -> None:
        """Replace the store with a fresh listing and deliver the differences."""
        fresh = {object_key(item): item for item in items}

        with self._delivery_lock:
            with self._lock:
                previous = self._store
                self._store = fresh
                self._resource_version = resource_version

            for key, obj in fresh.items():
                old = previous.get(key)
                if old is None:
                    self._dispatch("on_add", obj)
                else:
                    self._dispatch("on_update", old, obj)
            for key, obj in previous.items():
                if key not in fresh:
                    self._dispatch("on_delete", obj)

        if not self._synced.is_set():
            logger.info(f"{self.kind} cache synced with {len(fresh)} object(s)")
            self._synced.set()

    def handle_event(self, event_type: str, obj: Dict[str, Any]) -> None:
        """Apply a single watch event to the store and notify handlers."""
        resource_version = (obj.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            self._resource_version = resource_version

        if event_type == "BOOKMARK":
            return

        key = object_key(obj)
        with self._delivery_lock:
            with self._lock:
                old = self._store.get(key)
                if event_type == "DELETED":
                    self._store.pop(key, None)
                else:
                    self._store[key] = obj

            if event_type == "DELETED":
                self._dispatch("on_delete", obj)
            elif old is None:
                self._dispatch("on_add", obj)
            else:
                self._dispatch("on_update", old, obj)

    def resync(self) -> None:
        """Re-deliver every cached object as an update to itself."""
        with self._delivery_lock:
            with self._lock:
                objects = list(self._store.values())
            for obj in objects:
                self._dispatch("on_update", obj, obj)

    def relist(self) -> None:
        response = self._list_func(**self._list_kwargs)
        data = self._api_client.sanitize_for_serialization(response)
        metadata = data.get("metadata") or {}
        self.replace(data.get("items") or [], metadata.get("resourceVersion"))

    def watch(self, stop_event: threading.Event) -> None:
        """Stream events from the current resource version until the window closes or stop is requested."""
        w = watch.Watch()
        try:
            for event in w.stream(
                self._list_func,
                resource_version=self._resource_version,
                timeout_seconds=self._watch_timeout,
                **self._list_kwargs
            ):
                if stop_event.is_set():
                    break
                self.handle_event(event["type"], event["raw_object"])
        finally:
            w.stop()

    def run(self, stop_event: threading.Event) -> None:
        """List once, then watch in a loop until stopped, relisting after failures."""
        logger.info(f"Starting {self.kind} informer...")

        while not stop_event.is_set():
            try:
                if self._resource_version is None:
                    self.relist()
                self.watch(stop_event)
            except ApiException as e:
                self._resource_version = None
                if e.status == 410:
                    logger.info(f"{self.kind} resource version expired, relisting")
                    continue
                logger.error(f"{self.kind} watch error: {e.status} {e.reason}")
                stop_event.wait(WATCH_RETRY_SECONDS)
            except Exception as e:
                self._resource_version = None
                logger.error(f"Unexpected error in {self.kind} informer: {e}")
                stop_event.wait(WATCH_RETRY_SECONDS)

    def run_resync(self, stop_event: threading.Event) -> None:
        """Resync every resync period until stopped."""
        while not stop_event.wait(self._resync_period):
            if self.has_synced():
                self.resync()

    def _dispatch(self, method: str, *objs: Dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            self._call(getattr(handler, method), *objs)

    def _call(self, func: Callable[..., None], *objs: Dict[str, Any]) -> None:
        try:
            func(*objs)
        except Exception:
            logger.exception(f"{self.kind} event handler {getattr(func, '__qualname__', func)} failed")


class ResourceCache:
    """
    Cached views of Pods, Nodes, Namespaces, ResourceQuotas and Selectors.

    Core resources and Selectors are two independent watch subsystems; each
    kind delivers events on its own thread.
    """

    def __init__(self, api_client: Optional[client.ApiClient] = None,
                 resync_period: int = RESYNC_PERIOD_SECONDS):
        """
        Initialize the cache.

        Args:
            api_client: Shared API client
            resync_period: Seconds between re-deliveries of cached objects
        """
        core_api = client.CoreV1Api(api_client)
        selector_client = SelectorClient(api_client)

        def informer(kind, list_func):
            return Informer(kind, list_func, api_client=api_client, resync_period=resync_period)

        self.pods = informer("pods", core_api.list_pod_for_all_namespaces)
        self.nodes = informer("nodes", core_api.list_node)
        self.namespaces = informer("namespaces", core_api.list_namespace)
        self.resource_quotas = informer("resourcequotas", core_api.list_resource_quota_for_all_namespaces)
        self.selectors = informer("selectors", selector_client.list_func)

        self._threads: List[threading.Thread] = []

    @property
    def informers(self) -> List[Informer]:
        return [self.pods, self.nodes, self.namespaces, self.resource_quotas, self.selectors]

    def run(self, stop_event: threading.Event) -> None:
        """Start a watch thread and a resync thread per resource kind."""
        for informer in self.informers:
            for target, suffix in ((informer.run, "informer"), (informer.run_resync, "resync")):
                thread = threading.Thread(
                    target=target,
                    args=(stop_event,),
                    name=f"{informer.kind}-{suffix}",
                    daemon=True
                )
                thread.start()
                self._threads.append(thread)

    def has_synced(self) -> bool:
        return all(informer.has_synced() for informer in self.informers)

    def wait_for_cache_sync(self, stop_event: threading.Event, timeout: Optional[float] = None) -> bool:
        """
        Block until every informer has synced.

        Returns:
            True once synced, False if stopped or timed out first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.has_synced():
            if stop_event.is_set():
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            stop_event.wait(CACHE_SYNC_POLL_SECONDS)
        return True

    def add_pod_event_handler(self, handler) -> None:
        self.pods.add_event_handler(handler)

    def add_selector_event_handler(self, handler) -> None:
        self.selectors.add_event_handler(handler)

    def list_selectors(self) -> List[Selector]:
        """
        List cached Selectors.

        Raises:
            CacheLookupError: If a cached object cannot be read as a Selector
        """
        selectors = []
        for obj in self.selectors.list():
            try:
                selectors.append(Selector.from_crd(obj))
            except (TypeError, ValueError, AttributeError) as e:
                raise CacheLookupError(f"failed to read selector {object_key(obj)}: {e}") from e
        return selectors

    def get_namespace(self, name: str) -> Dict[str, Any]:
        return self.namespaces.get(name)
