"""Utility functions for pod patching and version handling."""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import VIRTUAL_NODE_TOLERATION
from .errors import BootstrapError, PatchApplyError

logger = logging.getLogger(__name__)

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"

_TOLERATION_FIELDS = ("key", "operator", "value", "effect")
_VERSION_PATTERN = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)")


class PatchDocument:
    """
    JSON Merge Patch for a Pod's labels, annotations and tolerations.

    Serialized as ``{"metadata": {...}, "spec": {...}}``; empty label and
    annotation maps are omitted, tolerations only appear once set.
    """

    def __init__(self):
        self.annotations: Dict[str, str] = {}
        self.labels: Dict[str, str] = {}
        self.tolerations: Optional[List[Dict[str, Any]]] = None

    def with_annotations(self, annotations: Optional[Dict[str, str]]) -> "PatchDocument":
        if annotations:
            self.annotations = dict(annotations)
        return self

    def with_labels(self, labels: Optional[Dict[str, str]]) -> "PatchDocument":
        if labels:
            self.labels = dict(labels)
        return self

    def with_tolerations(self, tolerations: List[Dict[str, Any]]) -> "PatchDocument":
        self.tolerations = list(tolerations)
        return self

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        if self.annotations:
            metadata["annotations"] = self.annotations
        if self.labels:
            metadata["labels"] = self.labels

        spec: Dict[str, Any] = {}
        if self.tolerations:
            spec["tolerations"] = self.tolerations

        return {"metadata": metadata, "spec": spec}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def __eq__(self, other) -> bool:
        if not isinstance(other, PatchDocument):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"PatchDocument({self.to_json()})"


def pod_tolerations(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list((pod.get("spec") or {}).get("tolerations") or [])


def is_virtual_node_toleration(toleration: Dict[str, Any]) -> bool:
    return all(toleration.get(f) == VIRTUAL_NODE_TOLERATION[f] for f in _TOLERATION_FIELDS)


def tolerates_virtual_node(pod: Dict[str, Any]) -> bool:
    """Check whether the Pod already carries the virtual-node toleration."""
    return any(is_virtual_node_toleration(t) for t in pod_tolerations(pod))


def with_virtual_node_toleration(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    """The Pod's tolerations with the virtual-node toleration appended."""
    return pod_tolerations(pod) + [dict(VIRTUAL_NODE_TOLERATION)]


def pod_name(pod: Dict[str, Any]) -> str:
    metadata = pod.get("metadata") or {}
    return f"{metadata.get('namespace', '')}/{metadata.get('name') or metadata.get('generateName', '')}"


def patch_pod(core_api: client.CoreV1Api, namespace: str, name: str, patch: PatchDocument):
    """
    Apply a merge patch to a Pod.

    Raises:
        PatchApplyError: If the API server rejects the patch
    """
    try:
        return core_api.patch_namespaced_pod(
            name=name,
            namespace=namespace,
            body=patch.to_dict(),
            _content_type=MERGE_PATCH_CONTENT_TYPE
        )
    except ApiException as e:
        raise PatchApplyError(f"failed to patch pod {namespace}/{name}: {e.status} {e.reason}") from e


def parse_server_version(git_version: str) -> Tuple[int, int, int]:
    """
    Parse an API server version string.

    Examples:
        "v1.20.4" -> (1, 20, 4)
        "v1.18.8-aliyun.1" -> (1, 18, 8)
    """
    match = _VERSION_PATTERN.match(git_version or "")
    if not match:
        raise BootstrapError(f"could not parse server version {git_version!r}")
    return tuple(int(part) for part in match.groups())
