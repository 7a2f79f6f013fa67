"""Configuration settings for the ECI profile service."""

# CRD Settings
CRD_GROUP = "eci.aliyun.com"
CRD_VERSION = "v1beta1"
CRD_PLURAL = "selectors"
CRD_KIND = "Selector"

# Virtual node placement
VNODE_KEY = "k8s.aliyun.com/vnode"
VNODE_VALUE = "true"
VIRTUAL_NODE_TOLERATION = {
    "key": VNODE_KEY,
    "operator": "Equal",
    "value": VNODE_VALUE,
    "effect": "NoSchedule",
}
VIRTUAL_NODE_SELECTOR = {VNODE_KEY: VNODE_VALUE}

# Webhook settings
MUTATING_NAME = "eci-profile"
WEBHOOK_NAME = "eci-profile.eci.aliyun.com"
# Entry name used when registering with admissionregistration.k8s.io/v1beta1
WEBHOOK_NAME_V1BETA1 = "autoscaler.eci.aliyun.com"
WEBHOOK_PATH = "/inject"
HEALTHZ_PATH = "/healthz"
WEBHOOK_PORT = 443
WEBHOOK_TIMEOUT_SECONDS = 5
SERVICE_NAMESPACE = "kube-system"

# admission.k8s.io/v1 is served by API servers from this version on
ADMISSION_V1_MIN_VERSION = (1, 16, 0)

# Watch settings
RESYNC_PERIOD_SECONDS = 30
WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_SECONDS = 5
CACHE_SYNC_POLL_SECONDS = 0.1

# Client throttle
DEFAULT_CLIENT_QPS = 500.0
DEFAULT_CLIENT_BURST = 1000

# Leaf certificate validity
CERT_BACKDATE_HOURS = 1
CERT_VALIDITY_DAYS = 365 * 100
CERT_KEY_SIZE = 2048
