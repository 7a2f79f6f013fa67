"""Scheduling policy executors."""

import logging
from typing import Any, Dict, List, Optional

from .config import VIRTUAL_NODE_SELECTOR
from .errors import PolicyNotImplementedError
from .selector import PolicyKind, Selector
from .utils import PatchDocument, tolerates_virtual_node, with_virtual_node_toleration

logger = logging.getLogger(__name__)

PatchInstruction = Dict[str, Any]


def add_virtual_node_toleration(pod: Dict[str, Any]) -> PatchInstruction:
    return {
        "op": "add",
        "path": "/spec/tolerations",
        "value": with_virtual_node_toleration(pod),
    }


def replace_virtual_node_selector() -> PatchInstruction:
    return {
        "op": "replace",
        "path": "/spec/nodeSelector",
        "value": dict(VIRTUAL_NODE_SELECTOR),
    }


def add_annotations(selector: Selector, pod: Dict[str, Any]) -> PatchInstruction:
    annotations = dict((pod.get("metadata") or {}).get("annotations") or {})
    annotations.update(selector.effect.annotations)
    return {"op": "add", "path": "/metadata/annotations", "value": annotations}


def add_labels(selector: Selector, pod: Dict[str, Any]) -> PatchInstruction:
    labels = dict((pod.get("metadata") or {}).get("labels") or {})
    labels.update(selector.effect.labels)
    return {"op": "add", "path": "/metadata/labels", "value": labels}


def add_side_effects(selector: Selector, pod: Dict[str, Any]) -> List[PatchInstruction]:
    patches = []
    if selector.effect.annotations:
        patches.append(add_annotations(selector, pod))
    if selector.effect.labels:
        patches.append(add_labels(selector, pod))
    return patches


class Executor:
    """
    Behaviour of one scheduling policy.

    ``on_pod_creating`` returns JSON Patch operations for the admission
    response; ``on_pod_unscheduled`` returns a merge patch for a Pod the
    scheduler could not place, or None when nothing needs to change.
    """

    def on_pod_creating(self, selector: Selector, pod: Dict[str, Any]) -> List[PatchInstruction]:
        raise NotImplementedError

    def on_pod_unscheduled(self, selector: Selector, pod: Dict[str, Any]) -> Optional[PatchDocument]:
        raise NotImplementedError


class FairExecutor(Executor):
    """Let Pods land on either normal or virtual nodes."""

    def on_pod_creating(self, selector, pod):
        patches = []
        if not tolerates_virtual_node(pod):
            patches.append(add_virtual_node_toleration(pod))
        patches.extend(add_side_effects(selector, pod))
        return patches

    def on_pod_unscheduled(self, selector, pod):
        if tolerates_virtual_node(pod):
            return None
        return (PatchDocument()
                .with_tolerations(with_virtual_node_toleration(pod))
                .with_annotations(selector.effect.annotations)
                .with_labels(selector.effect.labels))


class NormalNodeOnlyExecutor(Executor):
    """Never touch the Pod."""

    def on_pod_creating(self, selector, pod):
        return []

    def on_pod_unscheduled(self, selector, pod):
        return None


class NormalNodePreferExecutor(Executor):
    """Try normal nodes first, open virtual nodes once scheduling fails."""

    def on_pod_creating(self, selector, pod):
        return []

    def on_pod_unscheduled(self, selector, pod):
        if tolerates_virtual_node(pod):
            return None
        return PatchDocument().with_tolerations(with_virtual_node_toleration(pod))

    def on_pod_scheduled(self, selector, pod):
        # Not wired to any event handler.
        patch = PatchDocument()
        if not tolerates_virtual_node(pod):
            patch.with_tolerations(with_virtual_node_toleration(pod))
        return patch.with_annotations(selector.effect.annotations).with_labels(selector.effect.labels)


class VirtualNodeOnlyExecutor(Executor):
    """Force Pods onto virtual nodes."""

    def on_pod_creating(self, selector, pod):
        patches = []
        if not tolerates_virtual_node(pod):
            patches.append(add_virtual_node_toleration(pod))
        patches.append(replace_virtual_node_selector())
        patches.extend(add_side_effects(selector, pod))
        return patches

    def on_pod_unscheduled(self, selector, pod):
        patch = PatchDocument()
        if not tolerates_virtual_node(pod):
            patch.with_tolerations(with_virtual_node_toleration(pod))
        return patch.with_annotations(selector.effect.annotations).with_labels(selector.effect.labels)

    def on_pod_scheduled(self, selector, pod):
        # Not wired to any event handler.
        return self.on_pod_unscheduled(selector, pod)


class NamespaceResourceLimitExecutor(Executor):
    """Reserved; Selectors carrying only this policy resolve to VirtualNodeOnly."""

    def on_pod_creating(self, selector, pod):
        raise PolicyNotImplementedError("namespaceResourceLimit policy is not implemented")

    def on_pod_unscheduled(self, selector, pod):
        raise PolicyNotImplementedError("namespaceResourceLimit policy is not implemented")


class PolicyManager:
    """Dispatches a matched Selector to its policy executor."""

    def __init__(self):
        self.executors: Dict[PolicyKind, Executor] = {
            PolicyKind.FAIR: FairExecutor(),
            PolicyKind.NORMAL_NODE_ONLY: NormalNodeOnlyExecutor(),
            PolicyKind.NORMAL_NODE_PREFER: NormalNodePreferExecutor(),
            PolicyKind.VIRTUAL_NODE_ONLY: VirtualNodeOnlyExecutor(),
            PolicyKind.NAMESPACE_RESOURCE_LIMIT: NamespaceResourceLimitExecutor(),
        }

    def find_executor(self, selector: Selector) -> Executor:
        return self.executors[selector.policy_kind]

    def on_pod_creating(self, selector: Selector, pod: Dict[str, Any]) -> List[PatchInstruction]:
        executor = self.find_executor(selector)
        logger.debug(f"Selector {selector.name} uses {type(executor).__name__} on pod creating")
        return executor.on_pod_creating(selector, pod)

    def on_pod_unscheduled(self, selector: Selector, pod: Dict[str, Any]) -> Optional[PatchDocument]:
        executor = self.find_executor(selector)
        logger.debug(f"Selector {selector.name} uses {type(executor).__name__} on pod unscheduled")
        return executor.on_pod_unscheduled(selector, pod)
