"""Selector objects and label predicate matching."""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import SelectorConfigError

logger = logging.getLogger(__name__)

_OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")


class PolicyKind(enum.Enum):
    """Scheduling policies a Selector may carry."""
    FAIR = "fair"
    NORMAL_NODE_ONLY = "normalNodeOnly"
    NORMAL_NODE_PREFER = "normalNodePrefer"
    VIRTUAL_NODE_ONLY = "virtualNodeOnly"
    NAMESPACE_RESOURCE_LIMIT = "namespaceResourceLimit"


# Checked in this order; anything else falls back to VirtualNodeOnly.
_DISPATCH_ORDER = (
    PolicyKind.FAIR,
    PolicyKind.VIRTUAL_NODE_ONLY,
    PolicyKind.NORMAL_NODE_ONLY,
    PolicyKind.NORMAL_NODE_PREFER,
)


@dataclass
class Effect:
    """Annotations and labels injected into matched Pods."""
    annotations: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_crd(cls, effect: Optional[Dict[str, Any]]) -> "Effect":
        effect = effect or {}
        return cls(
            annotations=dict(effect.get("annotations") or {}),
            labels=dict(effect.get("labels") or {}),
        )


@dataclass
class Selector:
    """Parsed Selector custom resource."""
    name: str
    uid: str = ""
    namespace_labels: Optional[Dict[str, Any]] = None
    object_labels: Optional[Dict[str, Any]] = None
    policy: Dict[str, Any] = field(default_factory=dict)
    effect: Effect = field(default_factory=Effect)
    priority: int = 0

    @classmethod
    def from_crd(cls, crd_object: Dict[str, Any]) -> "Selector":
        """Create a Selector from the CRD object."""
        metadata = crd_object.get("metadata") or {}
        spec = crd_object.get("spec") or {}
        priority = spec.get("priority")

        return cls(
            name=metadata.get("name", ""),
            uid=metadata.get("uid", ""),
            namespace_labels=spec.get("namespaceLabels"),
            object_labels=spec.get("objectLabels"),
            policy=spec.get("policy") or {},
            effect=Effect.from_crd(spec.get("effect")),
            priority=int(priority) if priority is not None else 0,
        )

    @property
    def policy_kind(self) -> PolicyKind:
        """The executable policy, VirtualNodeOnly when none is recognized."""
        for kind in _DISPATCH_ORDER:
            if self.policy.get(kind.value) is not None:
                return kind
        return PolicyKind.VIRTUAL_NODE_ONLY

    def matches(self, pod: Dict[str, Any], namespace_labels: Optional[Dict[str, str]]) -> bool:
        return matches(self, pod, namespace_labels)


def _requirement_matches(requirement: Dict[str, Any], labels: Dict[str, str]) -> bool:
    key = requirement.get("key")
    operator = requirement.get("operator")
    values = requirement.get("values") or []

    if not key or not isinstance(key, str):
        raise SelectorConfigError(f"label requirement without key: {requirement}")
    if operator not in _OPERATORS:
        raise SelectorConfigError(f"{operator!r} is not a valid label selector operator")
    if operator in ("In", "NotIn") and not values:
        raise SelectorConfigError(f"values must be non-empty for operator {operator} on key {key}")
    if operator in ("Exists", "DoesNotExist") and values:
        raise SelectorConfigError(f"values must be empty for operator {operator} on key {key}")

    if operator == "In":
        return key in labels and labels[key] in values
    if operator == "NotIn":
        return key not in labels or labels[key] not in values
    if operator == "Exists":
        return key in labels
    return key not in labels


def label_predicate_matches(predicate: Dict[str, Any], labels: Optional[Dict[str, str]]) -> bool:
    """
    Evaluate a Kubernetes LabelSelector against a label set.

    An empty predicate matches everything.

    Raises:
        SelectorConfigError: If the predicate is malformed
    """
    if not isinstance(predicate, dict):
        raise SelectorConfigError(f"label selector must be an object, got {type(predicate).__name__}")

    labels = labels or {}
    match_labels = predicate.get("matchLabels") or {}
    match_expressions = predicate.get("matchExpressions") or []

    if not isinstance(match_labels, dict):
        raise SelectorConfigError("matchLabels must be an object")
    if not isinstance(match_expressions, list):
        raise SelectorConfigError("matchExpressions must be a list")

    # Evaluate every requirement so a malformed one is reported even after a miss.
    matched = True
    for key, value in match_labels.items():
        if labels.get(key) != value:
            matched = False
    for requirement in match_expressions:
        if not isinstance(requirement, dict):
            raise SelectorConfigError("matchExpressions entries must be objects")
        if not _requirement_matches(requirement, labels):
            matched = False
    return matched


def matches(selector: Selector, pod: Dict[str, Any], namespace_labels: Optional[Dict[str, str]]) -> bool:
    """
    Check whether a Selector applies to a Pod.

    Args:
        selector: The Selector to test
        pod: Pod object as a JSON dict
        namespace_labels: Labels of the Pod's namespace

    Returns:
        True if both the namespace and object predicates accept the Pod
    """
    if selector.namespace_labels is not None:
        if not label_predicate_matches(selector.namespace_labels, namespace_labels):
            return False

    if selector.object_labels is not None:
        pod_labels = (pod.get("metadata") or {}).get("labels")
        if not label_predicate_matches(selector.object_labels, pod_labels):
            return False

    return True


def sort_by_priority(selectors: Iterable[Selector]) -> List[Selector]:
    """Order selectors by descending priority, then by name."""
    return sorted(selectors, key=lambda s: (-s.priority, s.name))
