"""Kubernetes client construction and client-side throttling."""

import logging
import threading
import time
from typing import Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from .config import DEFAULT_CLIENT_BURST, DEFAULT_CLIENT_QPS
from .errors import BootstrapError

logger = logging.getLogger(__name__)


class TokenBucket:
    """Allows ``qps`` requests per second with bursts of up to ``burst``."""

    def __init__(self, qps: float, burst: int, clock=time.monotonic, sleep=time.sleep):
        if qps <= 0 or burst <= 0:
            raise ValueError("qps and burst must be positive")
        self.qps = float(qps)
        self.burst = int(burst)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def _reserve(self) -> float:
        """Take a token and return how long the caller must wait for it."""
        with self._lock:
            now = self._clock()
            self._tokens = min(self.burst, self._tokens + (now - self._last) * self.qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def acquire(self) -> None:
        wait = self._reserve()
        if wait > 0:
            self._sleep(wait)


class RateLimitedApiClient(client.ApiClient):
    """ApiClient that takes a token before every request."""

    def __init__(self, configuration=None, rate_limiter: Optional[TokenBucket] = None, **kwargs):
        super().__init__(configuration, **kwargs)
        self.rate_limiter = rate_limiter

    def call_api(self, *args, **kwargs):
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()
        return super().call_api(*args, **kwargs)


def load_configuration(kubeconfig: str = "", master: str = "") -> client.Configuration:
    """
    Build the client configuration.

    Without kubeconfig and master, in-cluster config is tried first and the
    default kubeconfig is used as a fallback.

    Raises:
        BootstrapError: If no usable configuration is found
    """
    configuration = client.Configuration()
    try:
        if not kubeconfig and not master:
            try:
                config.load_incluster_config(client_configuration=configuration)
                logger.info("Loaded in-cluster configuration")
                return configuration
            except ConfigException:
                logger.info("Not running in cluster, falling back to kubeconfig")

        config.load_kube_config(config_file=kubeconfig or None, client_configuration=configuration)
        logger.info(f"Loaded kubeconfig from {kubeconfig or 'default location'}")
    except (ConfigException, OSError) as e:
        raise BootstrapError(f"failed to build client config: {e}") from e

    if master:
        configuration.host = master
    return configuration


def build_api_client(
    kubeconfig: str = "",
    master: str = "",
    qps: float = DEFAULT_CLIENT_QPS,
    burst: int = DEFAULT_CLIENT_BURST
) -> RateLimitedApiClient:
    """Create the shared, throttled API client."""
    configuration = load_configuration(kubeconfig, master)
    try:
        limiter = TokenBucket(qps, burst)
    except ValueError as e:
        raise BootstrapError(f"invalid client throttle settings: {e}") from e
    logger.info(f"API server: {configuration.host} (qps: {qps}, burst: {burst})")
    return RateLimitedApiClient(configuration, rate_limiter=limiter)
